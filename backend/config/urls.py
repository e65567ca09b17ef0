"""
URL configuration for the Sourcebook backend.
"""
from django.urls import path, include

from apps.ops.health import healthz, readyz


urlpatterns = [
    # Health check endpoints
    path('healthz', healthz, name='healthz'),
    path('readyz', readyz, name='readyz'),

    # API routes
    path('api/', include('apps.workspaces.urls')),
    path('api/', include('apps.rag.urls')),
]
