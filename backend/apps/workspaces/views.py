"""
Workspace and source views.

Provides endpoints for:
- GET /api/workspace - The default workspace (created on first access)
- GET /api/sources?workspaceId= - List a workspace's sources
- POST /api/sources?workspaceId= - Ingest a URL or an uploaded file
"""
import logging
import uuid
from pathlib import Path

from django.conf import settings
from django.http import JsonResponse
from django.views.decorators.http import require_GET, require_http_methods
from django.views.decorators.csrf import csrf_exempt

from apps.indexing.ingest import IngestionError, ingest_file, ingest_url
from apps.ops.audit import audit_source_ingest_failed, audit_source_ingested
from apps.workspaces.models import SourceKind
from apps.workspaces.services import (
    get_or_create_default_workspace,
    list_sources,
    workspace_exists,
)

logger = logging.getLogger(__name__)


def get_extension(filename: str) -> str:
    """Extract file extension from filename."""
    return Path(filename).suffix.lower()


def validate_extension(filename: str) -> bool:
    """Check if file extension is allowed."""
    return get_extension(filename) in getattr(settings, 'ALLOWED_EXTENSIONS', ['.pdf', '.csv', '.txt'])


def error_response(message: str, code: str, status: int) -> JsonResponse:
    return JsonResponse({'error': message, 'code': code}, status=status)


def ingestion_error(error: IngestionError) -> JsonResponse:
    if error.retryable:
        response = JsonResponse(
            {'error': str(error), 'code': 'EMBEDDING_UNAVAILABLE', 'retryable': True},
            status=503
        )
        response['Retry-After'] = '30'
        return response
    return error_response(str(error), 'INGESTION_FAILED', 400)


@csrf_exempt
@require_GET
async def workspace_view(request):
    """
    GET /api/workspace

    Returns:
        {"workspace": {"id", "name", "description", "createdAt", "updatedAt"}}
    """
    workspace = await get_or_create_default_workspace()
    return JsonResponse({'workspace': workspace.to_dict()})


async def _sources_payload(workspace_id: str) -> dict:
    return {'sources': [s.to_dict() for s in await list_sources(workspace_id)]}


@csrf_exempt
@require_http_methods(["GET", "POST"])
async def sources_view(request):
    """
    GET|POST /api/sources?workspaceId=<uuid>

    POST accepts multipart/form-data with either a 'url' field or a 'file'
    field (PDF, CSV, TXT). Both methods return the workspace's sources,
    newest first.
    """
    workspace_id = request.GET.get('workspaceId') or request.GET.get('sessionId')
    if not workspace_id:
        return error_response('workspaceId required', 'VALIDATION_ERROR', 400)
    try:
        workspace_id = str(uuid.UUID(workspace_id))
    except ValueError:
        return error_response(f'Invalid workspaceId: {workspace_id}', 'VALIDATION_ERROR', 400)

    if not await workspace_exists(workspace_id):
        return error_response(f'Workspace {workspace_id} not found', 'NOT_FOUND', 404)

    if request.method == 'GET':
        return JsonResponse(await _sources_payload(workspace_id))

    url = (request.POST.get('url') or '').strip()
    uploaded_file = request.FILES.get('file')

    if url:
        kind = SourceKind.URL
        try:
            result = await ingest_url(workspace_id, url)
        except IngestionError as e:
            logger.warning(f"URL ingestion failed for {url}: {e}")
            audit_source_ingest_failed(request, workspace_id, kind, str(e))
            return ingestion_error(e)

    elif uploaded_file is not None:
        filename = uploaded_file.name
        if not validate_extension(filename):
            return error_response(
                f'File type not allowed. Allowed: {", ".join(settings.ALLOWED_EXTENSIONS)}',
                'INVALID_EXTENSION',
                400
            )

        max_size = getattr(settings, 'MAX_UPLOAD_SIZE', 50 * 1024 * 1024)
        if uploaded_file.size > max_size:
            return error_response(
                f'File too large. Maximum size: {max_size // (1024 * 1024)}MB',
                'FILE_TOO_LARGE',
                400
            )
        if uploaded_file.size == 0:
            return error_response('Empty file', 'EMPTY_FILE', 400)

        kind = get_extension(filename).lstrip('.')
        try:
            result = await ingest_file(
                workspace_id, filename, uploaded_file.content_type or '', uploaded_file.read()
            )
        except IngestionError as e:
            logger.warning(f"File ingestion failed for {filename}: {e}")
            audit_source_ingest_failed(request, workspace_id, kind, str(e))
            return ingestion_error(e)

    else:
        return error_response('Provide a url or a file', 'VALIDATION_ERROR', 400)

    audit_source_ingested(
        request,
        workspace_id=workspace_id,
        source_id=str(result.source.id),
        kind=result.source.kind,
        chunk_count=result.chunk_count,
    )
    return JsonResponse(await _sources_payload(workspace_id), status=201)
