"""
Health check endpoints for container probes.

- /healthz - Liveness (is process running?)
- /readyz - Readiness (can we serve traffic?)
"""
import logging
from datetime import datetime, timezone

import httpx
from django.conf import settings
from django.db import DatabaseError, connection
from django.http import JsonResponse
from django.views.decorators.http import require_GET
from django.views.decorators.csrf import csrf_exempt

logger = logging.getLogger(__name__)


def get_timestamp() -> str:
    """Get current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


@csrf_exempt
@require_GET
def healthz(request):
    """
    Liveness probe endpoint.

    Returns 200 if the Django process is running. Dependencies are checked
    by readyz.
    """
    return JsonResponse({
        'status': 'healthy',
        'timestamp': get_timestamp()
    })


def check_database() -> tuple[str, bool]:
    """Check database connectivity."""
    try:
        with connection.cursor() as cursor:
            cursor.execute('SELECT 1')
            cursor.fetchone()
        return 'ok', True
    except DatabaseError as e:
        logger.error(f"Database health check failed: {e}")
        return f'error: {str(e)[:50]}', False


def check_llm_provider() -> tuple[str, bool]:
    """
    Check that the generation/embedding endpoint answers.

    Never blocks readiness: stored sources and history stay readable
    while the model server is down.
    """
    provider = getattr(settings, 'LLM_PROVIDER', 'ollama').lower()
    if provider == 'openai':
        url = f"{getattr(settings, 'OPENAI_BASE_URL', 'https://api.openai.com/v1')}/models"
        headers = {"Authorization": f"Bearer {getattr(settings, 'OPENAI_API_KEY', '')}"}
    else:
        url = f"{getattr(settings, 'OLLAMA_BASE_URL', 'http://ollama:11434')}/api/version"
        headers = {}

    try:
        with httpx.Client(timeout=5.0) as client:
            response = client.get(url, headers=headers)
        if response.status_code == 200:
            return 'ok', True
        return f'status: {response.status_code}', True  # reachable
    except httpx.HTTPError as e:
        logger.warning(f"LLM provider health check failed: {e}")
        return f'degraded: {str(e)[:30]}', True


@csrf_exempt
@require_GET
def readyz(request):
    """
    Readiness probe endpoint.

    Returns 200 only if the database is reachable. The model provider is
    reported but does not affect the status code.
    """
    checks = {}

    status, db_ok = check_database()
    checks['database'] = status

    status, _ = check_llm_provider()
    checks['llm'] = status

    response_data = {
        'status': 'ready' if db_ok else 'not_ready',
        'timestamp': get_timestamp(),
        'checks': checks
    }

    return JsonResponse(response_data, status=200 if db_ok else 503)
