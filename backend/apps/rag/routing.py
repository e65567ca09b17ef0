"""
WebSocket URL routing for the query stream.
"""
from django.urls import re_path

from apps.rag.consumers import QueryStreamConsumer

websocket_urlpatterns = [
    re_path(r"ws/query/?$", QueryStreamConsumer.as_asgi()),
]
