"""
Source ingestion.

Pipeline per source:
    load (crawl / extract) -> chunk -> embed -> persist

Embedding is the slow part and runs before the database transaction; the
source row and all of its chunks are then written atomically, so a failed
ingestion leaves nothing behind.
"""
import logging
import re
from dataclasses import dataclass
from typing import List
from urllib.parse import unquote, urlparse

from asgiref.sync import sync_to_async
from django.db import transaction

from apps.indexing.chunker import ChunkPayload, SourceDocument, split_documents
from apps.indexing.crawler import crawl_site
from apps.indexing.extractor import ExtractionError, detect_kind, extract_documents
from apps.indexing.models import EvidenceChunk
from apps.rag.embeddings import EmbeddingError, embed_documents
from apps.workspaces.models import EvidenceSource, SourceKind

logger = logging.getLogger(__name__)

# Chunks per INSERT
BATCH_SIZE = 50


class IngestionError(Exception):
    """Raised when a source cannot be ingested."""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


@dataclass
class IngestionResult:
    source: EvidenceSource
    chunk_count: int


def extract_name_from_url(url: str) -> str:
    """
    Readable name from a URL.

    Uses the last path segment when there is one, otherwise the host.
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return url[:30]

    segments = [s for s in parsed.path.split('/') if s]
    last = segments[-1] if segments else ''
    if last and last != 'index.html':
        name = unquote(last)
        name = re.sub(r'\.(html|htm|php)$', '', name, flags=re.IGNORECASE)
        name = re.sub(r'[-_]', ' ', name)
        return name[:50]

    host = parsed.hostname or url
    return host.replace('www.', '', 1)[:30]


def extract_name_from_file(filename: str) -> str:
    """File name without extension, shortened to 40 characters."""
    name = re.sub(r'\.[^/.]+$', '', filename)
    return name if len(name) <= 40 else name[:37] + '...'


def _write_source(workspace_id: str, name: str, kind: str, payloads: List[ChunkPayload], vectors) -> EvidenceSource:
    with transaction.atomic():
        source = EvidenceSource.objects.create(workspace_id=workspace_id, name=name, kind=kind)
        EvidenceChunk.objects.bulk_create(
            [
                EvidenceChunk(
                    source=source,
                    content=payload.text,
                    embedding=vector,
                    metadata=payload.metadata,
                )
                for payload, vector in zip(payloads, vectors)
            ],
            batch_size=BATCH_SIZE,
        )
    return source


async def persist_source(
    workspace_id: str,
    name: str,
    kind: str,
    payloads: List[ChunkPayload],
) -> IngestionResult:
    """
    Embed chunk payloads and store them under a new source.

    Raises:
        IngestionError: If there is nothing to store or embedding fails
    """
    if not payloads:
        raise IngestionError("No valid content chunks were generated")

    logger.info(f"Generating embeddings for {len(payloads)} chunks of '{name}'")
    try:
        vectors = await embed_documents([p.text for p in payloads])
    except EmbeddingError as e:
        raise IngestionError(f"Embedding failed: {e}", retryable=True) from e

    source = await sync_to_async(_write_source)(workspace_id, name, kind, payloads, vectors)
    logger.info(f"Stored source {source.id} ('{name}', {kind}) with {len(payloads)} chunks")
    return IngestionResult(source=source, chunk_count=len(payloads))


async def ingest_file(
    workspace_id: str,
    filename: str,
    content_type: str,
    data: bytes,
) -> IngestionResult:
    """
    Ingest an uploaded .pdf, .csv or .txt file.

    Raises:
        IngestionError: On unsupported type, empty content or embedding failure
    """
    kind = detect_kind(filename, content_type)
    if kind is None:
        raise IngestionError("Unsupported file type. Use PDF, CSV or TXT")

    try:
        documents = extract_documents(kind, data, filename)
    except ExtractionError as e:
        raise IngestionError(str(e)) from e

    payloads = split_documents(documents)
    return await persist_source(workspace_id, extract_name_from_file(filename), kind, payloads)


async def ingest_url(workspace_id: str, url: str) -> IngestionResult:
    """
    Crawl a site and ingest its pages as one source.

    Raises:
        IngestionError: On an invalid URL, no content or embedding failure
    """
    parsed = urlparse(url or '')
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise IngestionError("Invalid URL format")

    pages = await crawl_site(url)
    if not pages:
        raise IngestionError("No content found at the specified URL")

    documents = [
        SourceDocument(
            text=page.content,
            metadata={'url': page.url, 'pageIndex': i, 'title': page.title},
        )
        for i, page in enumerate(pages)
    ]
    payloads = split_documents(documents)
    return await persist_source(workspace_id, extract_name_from_url(url), SourceKind.URL, payloads)
