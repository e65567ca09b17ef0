"""
Audit logging.

Structured JSON events on the dedicated `audit` logger. Entries carry
lengths, counts and ids only; question and answer text never appear.
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Dedicated audit logger
audit_logger = logging.getLogger('audit')


class AuditEvent:
    """Standard audit event types."""
    # Query events
    RAG_QUERY = 'rag.query'
    RAG_QUERY_FAILED = 'rag.query_failed'

    # Source events
    SOURCE_INGESTED = 'source.ingested'
    SOURCE_INGEST_FAILED = 'source.ingest_failed'

    # Workspace events
    WORKSPACE_CREATED = 'workspace.created'


def get_client_ip(request) -> str:
    """Extract client IP from request, handling proxies."""
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        # First IP in the chain is the client
        return x_forwarded_for.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR', 'unknown')


def get_request_id(request) -> str:
    """Get or generate a request ID for correlation."""
    request_id = request.META.get('HTTP_X_REQUEST_ID')
    if not request_id:
        request_id = str(uuid.uuid4())[:8]
    return request_id


def log_audit(
    event_type: str,
    request_id: Optional[str] = None,
    client_ip: Optional[str] = None,
    outcome: str = 'success',
    metadata: Optional[Dict[str, Any]] = None
):
    """
    Log a structured audit event.

    Args:
        event_type: One of AuditEvent constants
        request_id: Correlation ID for request tracing
        client_ip: Client IP address
        outcome: 'success' or 'failure'
        metadata: Event-specific data (no content)
    """
    event = {
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'event_type': event_type,
        'request_id': request_id,
        'client_ip': client_ip,
        'outcome': outcome,
        'metadata': metadata or {}
    }
    audit_logger.info(json.dumps(event))


def log_audit_from_request(
    request,
    event_type: str,
    outcome: str = 'success',
    metadata: Optional[Dict[str, Any]] = None
):
    """Log an audit event with request id and client ip filled in."""
    log_audit(
        event_type=event_type,
        request_id=get_request_id(request),
        client_ip=get_client_ip(request),
        outcome=outcome,
        metadata=metadata
    )


# Convenience functions for common events

def audit_rag_query(request, workspace_id: str, question_length: int, search_mode: str, citation_count: int, streaming: bool):
    """Log a completed query (without the question text)."""
    log_audit_from_request(
        request,
        AuditEvent.RAG_QUERY,
        metadata={
            'workspace_id': workspace_id,
            'question_length': question_length,
            'search_mode': search_mode,
            'citation_count': citation_count,
            'streaming': streaming,
        }
    )


def audit_rag_query_failed(request, workspace_id: str, code: str, streaming: bool):
    """Log a query that ended in an error."""
    log_audit_from_request(
        request,
        AuditEvent.RAG_QUERY_FAILED,
        outcome='failure',
        metadata={
            'workspace_id': workspace_id,
            'code': code,
            'streaming': streaming,
        }
    )


def audit_source_ingested(request, workspace_id: str, source_id: str, kind: str, chunk_count: int):
    """Log a successfully ingested source."""
    log_audit_from_request(
        request,
        AuditEvent.SOURCE_INGESTED,
        metadata={
            'workspace_id': workspace_id,
            'source_id': source_id,
            'kind': kind,
            'chunk_count': chunk_count,
        }
    )


def audit_source_ingest_failed(request, workspace_id: str, kind: str, error: str):
    """Log a failed ingestion."""
    log_audit_from_request(
        request,
        AuditEvent.SOURCE_INGEST_FAILED,
        outcome='failure',
        metadata={
            'workspace_id': workspace_id,
            'kind': kind,
            'error': error[:200],  # Truncate error message
        }
    )


def audit_workspace_created(workspace_id: str, name: str):
    """Log creation of the default workspace."""
    log_audit(
        AuditEvent.WORKSPACE_CREATED,
        metadata={
            'workspace_id': workspace_id,
            'name': name,
        }
    )
