"""
URL configuration for the workspaces app.
"""
from django.urls import path
from . import views

app_name = 'workspaces'

urlpatterns = [
    path('workspace', views.workspace_view, name='workspace'),
    path('sources', views.sources_view, name='sources'),
]
