"""
URL patterns for the query endpoints.
"""
from django.urls import path

from apps.rag.views import ChatHistoryView, QueryView

app_name = 'rag'

urlpatterns = [
    path('query', QueryView.as_view(), name='query'),
    path('chats', ChatHistoryView.as_view(), name='chats'),
]
