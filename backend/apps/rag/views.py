"""
RAG API views.

Provides endpoints for:
- Query (one-shot JSON or Server-Sent Events stream)
- Chat history of a workspace
"""
import json
import logging
import random
import uuid
from contextlib import aclosing

from django.http import JsonResponse, StreamingHttpResponse
from django.views import View
from django.views.decorators.csrf import csrf_exempt
from django.utils.decorators import method_decorator

from apps.ops.audit import audit_rag_query, audit_rag_query_failed
from apps.rag.conversation import ConversationLog
from apps.rag.embeddings import EmbeddingError, QueryValidationError
from apps.rag.events import QueryEventType
from apps.rag.evidence_store import StoreUnavailable
from apps.rag.llm_client import LLMError
from apps.rag.orchestrator import (
    GENERATION_FAILED_MESSAGES,
    QueryRequest,
    SEARCH_FAILED_MESSAGE,
    get_orchestrator,
)
from apps.workspaces.services import workspace_exists

logger = logging.getLogger(__name__)


def validation_error(message: str) -> JsonResponse:
    return JsonResponse({"error": message, "code": "VALIDATION_ERROR"}, status=400)


def workspace_not_found(workspace_id: str) -> JsonResponse:
    return JsonResponse(
        {"error": f"Workspace {workspace_id} not found", "code": "NOT_FOUND"},
        status=404
    )


def service_unavailable(message: str, code: str) -> JsonResponse:
    response = JsonResponse(
        {"error": message, "code": code, "retryable": True},
        status=503
    )
    response["Retry-After"] = "30"
    return response


@method_decorator(csrf_exempt, name='dispatch')
class QueryView(View):
    """
    POST /api/query

    Ask a question against a workspace's sources.

    Request body:
        {
            "workspaceId": "uuid",          // alias: sessionId
            "query": "How do I do X?",
            "selectedSources": ["uuid"],    // alias: sourceId; optional
            "streaming": false,             // optional
            "topK": 8,                      // optional, 1-20
            "topN": 40                      // optional, 1-100
        }

    One-shot response:
        {
            "userMessage": {...},
            "answer": "X is done like this [1].",
            "citations": [{"id", "index", "metadata", "sourceId"}],
            "retrievedChunks": [...],
            "chatMessage": {...},
            "followups": ["..."],
            "searchMode": "all|selected",
            "sourcesUsed": 0
        }

    Streaming response: text/event-stream with events
        searching, thinking, generating, token, complete, error
    """

    async def post(self, request):
        try:
            body = json.loads(request.body)
        except ValueError:
            return validation_error("Invalid JSON")

        try:
            query_request = QueryRequest.from_payload(body)
        except QueryValidationError as e:
            return validation_error(str(e))

        if not await workspace_exists(query_request.workspace_id):
            return workspace_not_found(query_request.workspace_id)

        orchestrator = get_orchestrator()

        if query_request.streaming:
            return self._stream(request, orchestrator, query_request)

        try:
            result = await orchestrator.run(query_request)
        except (EmbeddingError, StoreUnavailable) as e:
            logger.error(f"Query search failed: {e}")
            audit_rag_query_failed(request, query_request.workspace_id, "SEARCH_UNAVAILABLE", streaming=False)
            return service_unavailable(SEARCH_FAILED_MESSAGE, "SEARCH_UNAVAILABLE")
        except LLMError as e:
            logger.error(f"Query generation failed: {e}")
            audit_rag_query_failed(request, query_request.workspace_id, "LLM_UNAVAILABLE", streaming=False)
            return service_unavailable(random.choice(GENERATION_FAILED_MESSAGES), "LLM_UNAVAILABLE")

        audit_rag_query(
            request,
            workspace_id=query_request.workspace_id,
            question_length=len(query_request.query),
            search_mode=query_request.search_mode,
            citation_count=len(result.citations),
            streaming=False,
        )
        return JsonResponse(result.to_dict())

    def _stream(self, request, orchestrator, query_request: QueryRequest) -> StreamingHttpResponse:

        async def event_stream():
            async with aclosing(orchestrator.stream(query_request)) as events:
                async for event in events:
                    if event.type == QueryEventType.COMPLETE:
                        audit_rag_query(
                            request,
                            workspace_id=query_request.workspace_id,
                            question_length=len(query_request.query),
                            search_mode=query_request.search_mode,
                            citation_count=len(event.data.get("citations", [])),
                            streaming=True,
                        )
                    elif event.type == QueryEventType.ERROR:
                        audit_rag_query_failed(
                            request, query_request.workspace_id, event.data.get("code", ""), streaming=True
                        )
                    yield event.to_sse()

        response = StreamingHttpResponse(
            event_stream(),
            content_type='text/event-stream'
        )
        response['Cache-Control'] = 'no-cache'
        response['X-Accel-Buffering'] = 'no'  # Disable nginx buffering
        return response


@method_decorator(csrf_exempt, name='dispatch')
class ChatHistoryView(View):
    """
    GET /api/chats?workspaceId=<uuid>

    Conversation turns of a workspace, oldest first.
    """

    async def get(self, request):
        workspace_id = request.GET.get('workspaceId') or request.GET.get('sessionId')
        if not workspace_id:
            return validation_error("workspaceId required")
        try:
            workspace_id = str(uuid.UUID(workspace_id))
        except ValueError:
            return validation_error(f"Invalid workspaceId: {workspace_id}")

        if not await workspace_exists(workspace_id):
            return workspace_not_found(workspace_id)

        turns = await ConversationLog().list(workspace_id)
        return JsonResponse({"chats": [t.to_dict() for t in turns]})
