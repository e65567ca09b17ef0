"""
Tests for workspace services, source endpoints and health probes.
"""
import pytest
from asgiref.sync import async_to_sync
from django.core.files.uploadedfile import SimpleUploadedFile
from unittest.mock import AsyncMock, patch

from apps.indexing.ingest import IngestionError, IngestionResult
from apps.workspaces.models import EvidenceSource, SourceKind, Workspace
from apps.workspaces.services import (
    get_or_create_default_workspace,
    list_sources,
    resolve_source_names,
    workspace_exists,
)


@pytest.fixture
def workspace(db):
    return Workspace.objects.create(name="Research")


def sources_url(workspace_id):
    return f"/api/sources?workspaceId={workspace_id}"


# ============================================================================
# Services
# ============================================================================

@pytest.mark.django_db
class TestDefaultWorkspace:
    """Tests for get_or_create_default_workspace."""

    @patch('apps.workspaces.services.audit_workspace_created')
    def test_created_once(self, mock_audit, settings):
        """Repeated calls return the same workspace."""
        settings.DEFAULT_WORKSPACE_NAME = 'My Notebook'

        first = async_to_sync(get_or_create_default_workspace)()
        second = async_to_sync(get_or_create_default_workspace)()

        assert first.id == second.id
        assert Workspace.objects.filter(name='My Notebook').count() == 1
        mock_audit.assert_called_once_with(str(first.id), 'My Notebook')

    def test_reuses_existing_row(self, settings):
        """An existing workspace with the default name is returned."""
        settings.DEFAULT_WORKSPACE_NAME = 'Shared'
        existing = Workspace.objects.create(name='Shared')

        assert async_to_sync(get_or_create_default_workspace)().id == existing.id


@pytest.mark.django_db
class TestWorkspaceServices:
    """Tests for lookup helpers."""

    def test_workspace_exists(self, workspace):
        """Should report known and unknown workspaces."""
        assert async_to_sync(workspace_exists)(str(workspace.id)) is True
        assert async_to_sync(workspace_exists)('00000000-0000-0000-0000-000000000000') is False

    def test_list_sources(self, workspace):
        """Should list only the workspace's sources."""
        EvidenceSource.objects.create(workspace=workspace, name="A", kind=SourceKind.PDF)
        other = Workspace.objects.create(name="Other")
        EvidenceSource.objects.create(workspace=other, name="B", kind=SourceKind.TXT)

        sources = async_to_sync(list_sources)(str(workspace.id))

        assert [s.name for s in sources] == ["A"]

    def test_resolve_source_names(self, workspace):
        """Unknown ids are left out."""
        source = EvidenceSource.objects.create(workspace=workspace, name="Handbook", kind=SourceKind.PDF)
        missing = '00000000-0000-0000-0000-000000000001'

        names = async_to_sync(resolve_source_names)([str(source.id), missing])

        assert names == {str(source.id): "Handbook"}

    def test_resolve_no_ids(self):
        """Should skip the query when nothing is asked for."""
        assert async_to_sync(resolve_source_names)([]) == {}


# ============================================================================
# Workspace Endpoint
# ============================================================================

@pytest.mark.django_db
class TestWorkspaceView:
    """Tests for GET /api/workspace."""

    def test_get_default_workspace(self, client, settings):
        """Should return the default workspace."""
        settings.DEFAULT_WORKSPACE_NAME = 'My Notebook'

        response = client.get('/api/workspace')

        assert response.status_code == 200
        assert response.json()['workspace']['name'] == 'My Notebook'

    def test_post_not_allowed(self, client):
        """Should reject other methods."""
        assert client.post('/api/workspace').status_code == 405


# ============================================================================
# Sources Endpoint
# ============================================================================

@pytest.mark.django_db
class TestSourcesView:
    """Tests for GET|POST /api/sources."""

    def test_missing_workspace_id(self, client):
        """Should return 400 without a workspace id."""
        response = client.get('/api/sources')

        assert response.status_code == 400
        assert response.json()['code'] == 'VALIDATION_ERROR'

    def test_invalid_workspace_id(self, client):
        """Should return 400 for a malformed id."""
        assert client.get(sources_url('nope')).status_code == 400

    def test_unknown_workspace(self, client):
        """Should return 404 for a workspace that does not exist."""
        response = client.get(sources_url('00000000-0000-0000-0000-000000000000'))

        assert response.status_code == 404
        assert response.json()['code'] == 'NOT_FOUND'

    def test_list(self, client, workspace):
        """Should list sources."""
        EvidenceSource.objects.create(workspace=workspace, name="Guide", kind=SourceKind.URL)

        response = client.get(sources_url(workspace.id))

        assert response.status_code == 200
        assert [s['name'] for s in response.json()['sources']] == ["Guide"]
        assert response.json()['sources'][0]['type'] == 'url'

    def test_session_id_alias(self, client, workspace):
        """Should accept sessionId."""
        assert client.get(f"/api/sources?sessionId={workspace.id}").status_code == 200

    def test_ingest_url(self, client, workspace):
        """Should ingest a URL and return 201 with the updated list."""
        source = EvidenceSource.objects.create(workspace=workspace, name="example.com", kind=SourceKind.URL)
        result = IngestionResult(source=source, chunk_count=4)

        with patch('apps.workspaces.views.ingest_url', new=AsyncMock(return_value=result)) as mock_ingest:
            response = client.post(sources_url(workspace.id), {'url': 'https://example.com'})

        assert response.status_code == 201
        mock_ingest.assert_awaited_once_with(str(workspace.id), 'https://example.com')
        assert response.json()['sources'][0]['id'] == str(source.id)

    def test_ingest_file(self, client, workspace):
        """Should hand the upload to file ingestion."""
        source = EvidenceSource.objects.create(workspace=workspace, name="notes", kind=SourceKind.TXT)
        upload = SimpleUploadedFile("notes.txt", b"hello world", content_type="text/plain")

        with patch('apps.workspaces.views.ingest_file',
                   new=AsyncMock(return_value=IngestionResult(source=source, chunk_count=1))) as mock_ingest:
            response = client.post(sources_url(workspace.id), {'file': upload})

        assert response.status_code == 201
        args = mock_ingest.await_args[0]
        assert args[1] == "notes.txt"
        assert args[3] == b"hello world"

    def test_invalid_extension(self, client, workspace):
        """Should reject unsupported file types."""
        upload = SimpleUploadedFile("image.png", b"data", content_type="image/png")

        response = client.post(sources_url(workspace.id), {'file': upload})

        assert response.status_code == 400
        assert response.json()['code'] == 'INVALID_EXTENSION'

    def test_empty_file(self, client, workspace):
        """Should reject empty uploads."""
        upload = SimpleUploadedFile("empty.txt", b"", content_type="text/plain")

        response = client.post(sources_url(workspace.id), {'file': upload})

        assert response.status_code == 400
        assert response.json()['code'] == 'EMPTY_FILE'

    def test_file_too_large(self, client, workspace, settings):
        """Should enforce MAX_UPLOAD_SIZE."""
        settings.MAX_UPLOAD_SIZE = 4
        upload = SimpleUploadedFile("big.txt", b"too big", content_type="text/plain")

        response = client.post(sources_url(workspace.id), {'file': upload})

        assert response.json()['code'] == 'FILE_TOO_LARGE'

    def test_nothing_to_ingest(self, client, workspace):
        """Should require a url or a file."""
        response = client.post(sources_url(workspace.id), {})

        assert response.status_code == 400

    def test_ingestion_failure(self, client, workspace):
        """Non-retryable failures are 400s."""
        with patch('apps.workspaces.views.ingest_url',
                   new=AsyncMock(side_effect=IngestionError("No content found at the specified URL"))):
            response = client.post(sources_url(workspace.id), {'url': 'https://example.com'})

        assert response.status_code == 400
        assert response.json()['code'] == 'INGESTION_FAILED'

    def test_embedding_unavailable(self, client, workspace):
        """Retryable failures are 503s with Retry-After."""
        with patch('apps.workspaces.views.ingest_url',
                   new=AsyncMock(side_effect=IngestionError("Embedding failed", retryable=True))):
            response = client.post(sources_url(workspace.id), {'url': 'https://example.com'})

        assert response.status_code == 503
        assert response['Retry-After'] == '30'
        assert response.json()['retryable'] is True


# ============================================================================
# Health
# ============================================================================

@pytest.mark.django_db
class TestHealth:
    """Tests for liveness and readiness probes."""

    def test_healthz(self, client):
        """Should always be healthy."""
        response = client.get('/healthz')

        assert response.status_code == 200
        assert response.json()['status'] == 'healthy'

    @patch('apps.ops.health.check_llm_provider', return_value=('degraded: down', True))
    def test_readyz_ignores_llm(self, mock_llm, client):
        """Should be ready while the model server is down."""
        response = client.get('/readyz')

        assert response.status_code == 200
        assert response.json()['checks']['llm'] == 'degraded: down'

    @patch('apps.ops.health.check_llm_provider', return_value=('ok', True))
    @patch('apps.ops.health.check_database', return_value=('error: gone', False))
    def test_readyz_database_down(self, mock_db, mock_llm, client):
        """Should report 503 without a database."""
        response = client.get('/readyz')

        assert response.status_code == 503
        assert response.json()['status'] == 'not_ready'
