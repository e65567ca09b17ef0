"""
WebSocket Consumer for query streams.

Clients connect to /ws/query and send
    {"type": "query", "workspaceId": "...", "query": "...", "selectedSources": [...]}
and receive the same lifecycle events as the SSE endpoint, one JSON message
per event. Closing the socket cancels the in-flight query.
"""
import asyncio
import logging
from contextlib import aclosing
from typing import Optional

from channels.generic.websocket import AsyncJsonWebsocketConsumer

from apps.rag.embeddings import QueryValidationError
from apps.rag.events import QueryEvent
from apps.rag.orchestrator import QueryRequest, get_orchestrator
from apps.workspaces.services import workspace_exists

logger = logging.getLogger(__name__)


class QueryStreamConsumer(AsyncJsonWebsocketConsumer):
    """
    Runs at most one query per connection at a time.

    The query runs in its own task so the consumer keeps receiving
    (and can notice a disconnect) while tokens are being generated.
    """

    task: Optional[asyncio.Task] = None

    async def connect(self):
        await self.accept()
        logger.info("Query WebSocket connected")
        await self.send_json({"type": "connected"})

    async def disconnect(self, close_code):
        if self.task and not self.task.done():
            logger.info(f"Query WebSocket closed mid-query (code={close_code}), cancelling")
            self.task.cancel()
        else:
            logger.info(f"Query WebSocket disconnected (code={close_code})")

    async def receive_json(self, content):
        message_type = content.get("type") if isinstance(content, dict) else None

        if message_type == "ping":
            await self.send_json({"type": "pong"})
            return

        if message_type != "query":
            await self.send_json(QueryEvent.error("Unknown message type", "VALIDATION_ERROR").to_dict())
            return

        if self.task and not self.task.done():
            await self.send_json(QueryEvent.error("A query is already running", "BUSY").to_dict())
            return

        try:
            query_request = QueryRequest.from_payload(content)
        except QueryValidationError as e:
            await self.send_json(QueryEvent.error(str(e), "VALIDATION_ERROR").to_dict())
            return

        if not await workspace_exists(query_request.workspace_id):
            await self.send_json(QueryEvent.error("Workspace not found", "NOT_FOUND").to_dict())
            return

        self.task = asyncio.create_task(self.run_query(query_request))

    async def run_query(self, query_request: QueryRequest):
        orchestrator = get_orchestrator()
        async with aclosing(orchestrator.stream(query_request)) as events:
            async for event in events:
                await self.send_json(event.to_dict())
