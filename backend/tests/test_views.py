"""
Tests for the query and chat history endpoints.
"""
import json
import uuid

import pytest
from asgiref.sync import async_to_sync
from unittest.mock import AsyncMock, patch

from apps.rag.conversation import ConversationLog
from apps.rag.embeddings import EmbeddingError
from apps.rag.events import QueryEvent
from apps.rag.evidence_store import StoreUnavailable
from apps.rag.llm_client import LLMError
from apps.rag.models import TurnRole
from apps.rag.orchestrator import GENERATION_FAILED_MESSAGES
from apps.workspaces.models import Workspace

WORKSPACE_ID = str(uuid.uuid4())


def post_query(client, payload):
    return client.post('/api/query', data=json.dumps(payload), content_type='application/json')


class FakeResult:
    citations = []

    def to_dict(self):
        return {"answer": "Done.", "citations": [], "followups": [], "searchMode": "all", "sourcesUsed": 0}


class FakeOrchestrator:
    def __init__(self, result=None, error=None, events=None):
        self.result = result or FakeResult()
        self.error = error
        self.events = events or []
        self.requests = []

    async def run(self, request):
        self.requests.append(request)
        if self.error:
            raise self.error
        return self.result

    async def stream(self, request):
        self.requests.append(request)
        for event in self.events:
            yield event


@pytest.fixture
def existing_workspace():
    with patch('apps.rag.views.workspace_exists', new=AsyncMock(return_value=True)) as mock_exists:
        yield mock_exists


# ============================================================================
# Query Endpoint
# ============================================================================

class TestQueryValidation:
    """Tests for request validation on POST /api/query."""

    def test_invalid_json(self, client):
        """Should return 400 for a malformed body."""
        response = client.post('/api/query', data='{nope', content_type='application/json')

        assert response.status_code == 400
        assert response.json()['code'] == 'VALIDATION_ERROR'

    def test_body_not_utf8(self, client):
        """Should return 400 for a body that is not UTF-8."""
        response = client.post('/api/query', data=b'{"query": "\xff\xfe"}', content_type='application/json')

        assert response.status_code == 400
        assert response.json()['code'] == 'VALIDATION_ERROR'

    def test_missing_query(self, client):
        """Should return 400 without a query."""
        response = post_query(client, {"workspaceId": WORKSPACE_ID})

        assert response.status_code == 400

    def test_invalid_source_id(self, client):
        """Should return 400 for a malformed source id."""
        response = post_query(client, {"workspaceId": WORKSPACE_ID, "query": "q", "selectedSources": ["x"]})

        assert response.status_code == 400

    def test_unknown_workspace(self, client):
        """Should return 404 when the workspace does not exist."""
        with patch('apps.rag.views.workspace_exists', new=AsyncMock(return_value=False)):
            response = post_query(client, {"workspaceId": WORKSPACE_ID, "query": "q"})

        assert response.status_code == 404
        assert response.json()['code'] == 'NOT_FOUND'

    def test_get_not_allowed(self, client):
        """Should only accept POST."""
        assert client.get('/api/query').status_code == 405


class TestQueryOneShot:
    """Tests for non-streaming queries."""

    def test_success(self, client, existing_workspace):
        """Should return the orchestrator's response."""
        orchestrator = FakeOrchestrator()

        with patch('apps.rag.views.get_orchestrator', return_value=orchestrator):
            response = post_query(client, {"workspaceId": WORKSPACE_ID, "query": "What is X?"})

        assert response.status_code == 200
        assert response.json()['answer'] == "Done."
        assert orchestrator.requests[0].query == "What is X?"

    @pytest.mark.parametrize("error", [EmbeddingError("down"), StoreUnavailable("down")])
    def test_search_unavailable(self, client, existing_workspace, error):
        """Search failures map to 503 SEARCH_UNAVAILABLE."""
        with patch('apps.rag.views.get_orchestrator', return_value=FakeOrchestrator(error=error)):
            response = post_query(client, {"workspaceId": WORKSPACE_ID, "query": "What is X?"})

        assert response.status_code == 503
        assert response.json()['code'] == 'SEARCH_UNAVAILABLE'
        assert response.json()['retryable'] is True
        assert response['Retry-After'] == '30'

    def test_llm_unavailable(self, client, existing_workspace):
        """Generation failures map to 503 LLM_UNAVAILABLE."""
        with patch('apps.rag.views.get_orchestrator', return_value=FakeOrchestrator(error=LLMError("down"))):
            response = post_query(client, {"workspaceId": WORKSPACE_ID, "query": "What is X?"})

        assert response.status_code == 503
        assert response.json()['code'] == 'LLM_UNAVAILABLE'
        assert response.json()['error'] in GENERATION_FAILED_MESSAGES
        assert response['Retry-After'] == '30'


class TestQueryStreaming:
    """Tests for Server-Sent Events responses."""

    @pytest.mark.asyncio
    async def test_sse_frames(self, async_client, existing_workspace):
        """Should write one SSE frame per event."""
        events = [
            QueryEvent.searching(),
            QueryEvent.generating([]),
            QueryEvent.token("Hi", "u1"),
            QueryEvent.complete({"message": "Hi."}, [], ["Next?"]),
        ]

        with patch('apps.rag.views.get_orchestrator', return_value=FakeOrchestrator(events=events)):
            response = await async_client.post(
                '/api/query',
                data=json.dumps({"workspaceId": WORKSPACE_ID, "query": "q", "streaming": True}),
                content_type='application/json',
            )
            body = b''.join([chunk async for chunk in response.streaming_content]).decode()

        assert response.status_code == 200
        assert response['Content-Type'] == 'text/event-stream'
        frames = [f for f in body.split('\n\n') if f]
        assert [f.split('\n')[0] for f in frames] == [
            'event: searching', 'event: generating', 'event: token', 'event: complete',
        ]
        token = json.loads(frames[2].split('\n')[1][len('data: '):])
        assert token == {"type": "token", "content": "Hi", "userMessageId": "u1"}

    @pytest.mark.asyncio
    async def test_sse_error_frame(self, async_client, existing_workspace):
        """Errors arrive as an error frame on a 200 stream."""
        events = [QueryEvent.searching(), QueryEvent.error("Search failed", "SEARCH_UNAVAILABLE")]

        with patch('apps.rag.views.get_orchestrator', return_value=FakeOrchestrator(events=events)):
            response = await async_client.post(
                '/api/query',
                data=json.dumps({"workspaceId": WORKSPACE_ID, "query": "q", "streaming": True}),
                content_type='application/json',
            )
            body = b''.join([chunk async for chunk in response.streaming_content]).decode()

        assert body.endswith('event: error\ndata: {"type": "error", "error": "Search failed", '
                             '"code": "SEARCH_UNAVAILABLE"}\n\n')


# ============================================================================
# Chat History Endpoint
# ============================================================================

@pytest.mark.django_db
class TestChatHistory:
    """Tests for GET /api/chats."""

    def test_lists_turns(self, client):
        """Should return the workspace's turns."""
        workspace = Workspace.objects.create(name="Research")
        async_to_sync(ConversationLog().append)(str(workspace.id), TurnRole.USER, "What is X?")

        response = client.get(f'/api/chats?workspaceId={workspace.id}')

        assert response.status_code == 200
        chats = response.json()['chats']
        assert len(chats) == 1
        assert chats[0]['message'] == "What is X?"

    def test_missing_workspace_id(self, client):
        """Should return 400 without a workspace id."""
        assert client.get('/api/chats').status_code == 400

    def test_unknown_workspace(self, client):
        """Should return 404 for an unknown workspace."""
        response = client.get(f'/api/chats?workspaceId={WORKSPACE_ID}')

        assert response.status_code == 404
