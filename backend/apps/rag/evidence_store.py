"""
Evidence Store: nearest-neighbour search over ingested chunks.

Two interchangeable backends satisfy the same contract:
- PgVectorEvidenceStore runs the cosine-distance query (<=>) inside
  PostgreSQL through pgvector.
- PythonEvidenceStore loads the scoped chunks through the ORM and ranks
  them with numpy. It works on any database, including SQLite.

Results are ordered by ascending distance (lower = more similar). Ties are
broken by chunk creation time, then chunk id.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from asgiref.sync import sync_to_async
from django.conf import settings
from django.db import DatabaseError, connection

from apps.indexing.models import EvidenceChunk

logger = logging.getLogger(__name__)


class StoreUnavailable(Exception):
    """Raised when the underlying vector index cannot be reached."""
    pass


@dataclass
class RetrievalCandidate:
    """One search hit. Lives only for the duration of a request."""
    chunk_id: str
    text: str
    metadata: Dict[str, Any]
    source_id: str
    score: float  # cosine distance

    def to_dict(self) -> dict:
        return {
            "id": self.chunk_id,
            "content": self.text,
            "metadata": self.metadata,
            "sourceId": self.source_id,
            "score": round(self.score, 4),
        }


@dataclass
class Citation:
    """
    Display-indexed pointer from answer text back to an evidence chunk.

    `index` is 1-based and matches the `[n]` markers in the answer.
    """
    chunk_id: str
    index: int
    metadata: Dict[str, Any]
    source_id: str

    def to_dict(self) -> dict:
        return {
            "id": self.chunk_id,
            "index": self.index,
            "metadata": self.metadata,
            "sourceId": self.source_id,
        }


def build_citations(candidates: Sequence[RetrievalCandidate]) -> List[Citation]:
    """Number candidates 1..n in the order they were given to the model."""
    return [
        Citation(
            chunk_id=c.chunk_id,
            index=i,
            metadata=c.metadata or {},
            source_id=c.source_id,
        )
        for i, c in enumerate(candidates, 1)
    ]


@dataclass(frozen=True)
class EvidenceScope:
    """
    Which chunks a search may return.

    Either every chunk of a workspace, or only chunks of an explicit set of
    sources.
    """
    workspace_id: Optional[str] = None
    source_ids: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def for_workspace(cls, workspace_id: str) -> 'EvidenceScope':
        return cls(workspace_id=str(workspace_id))

    @classmethod
    def for_sources(cls, source_ids: Sequence[str]) -> 'EvidenceScope':
        return cls(source_ids=tuple(str(s) for s in source_ids))

    @property
    def is_explicit(self) -> bool:
        return bool(self.source_ids)


def vector_literal(vector: Sequence[float]) -> str:
    """PostgreSQL vector literal, e.g. '[0.1,0.2]'."""
    return '[' + ','.join(str(float(x)) for x in vector) + ']'


class BaseEvidenceStore(ABC):
    """Read-only similarity search contract."""

    @abstractmethod
    async def search(
        self,
        query_vector: Sequence[float],
        scope: EvidenceScope,
        limit: int,
    ) -> List[RetrievalCandidate]:
        """
        Return at most `limit` candidates in ascending distance order.

        Raises:
            StoreUnavailable: If the index cannot be queried
        """


class PgVectorEvidenceStore(BaseEvidenceStore):
    """Cosine-distance search executed by pgvector (HNSW index)."""

    def _search_sync(self, query_vector, scope: EvidenceScope, limit: int) -> List[RetrievalCandidate]:
        embedding_str = vector_literal(query_vector)

        if scope.is_explicit:
            where = "c.source_id = ANY(%s::uuid[])"
            scope_param = list(scope.source_ids)
        else:
            where = "c.source_id IN (SELECT s.id FROM evidence_sources s WHERE s.workspace_id = %s::uuid)"
            scope_param = scope.workspace_id

        sql = f"""
            SELECT
                c.id,
                c.content,
                c.metadata,
                c.source_id,
                c.embedding <=> %s::vector AS distance
            FROM evidence_chunks c
            WHERE {where}
            ORDER BY distance, c.created_at, c.id
            LIMIT %s
        """

        try:
            with connection.cursor() as cursor:
                cursor.execute(sql, [embedding_str, scope_param, limit])
                rows = cursor.fetchall()
        except DatabaseError as e:
            logger.error(f"pgvector search failed: {e}")
            raise StoreUnavailable("Evidence store is unavailable") from e

        candidates = []
        for chunk_id, content, metadata, source_id, distance in rows:
            candidates.append(RetrievalCandidate(
                chunk_id=str(chunk_id),
                text=content,
                metadata=metadata or {},
                source_id=str(source_id),
                score=float(distance),
            ))
        return candidates

    async def search(self, query_vector, scope, limit):
        candidates = await sync_to_async(self._search_sync)(query_vector, scope, limit)
        logger.info(f"pgvector search returned {len(candidates)} candidates (limit={limit})")
        return candidates


def cosine_distances(query_vector: Sequence[float], matrix: np.ndarray) -> np.ndarray:
    """1 - cosine similarity for each row; zero vectors get distance 1."""
    query = np.asarray(query_vector, dtype=np.float32)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    with np.errstate(divide='ignore', invalid='ignore'):
        similarity = np.where(norms > 0, dots / norms, 0.0)
    return 1.0 - similarity


class PythonEvidenceStore(BaseEvidenceStore):
    """
    In-process search: fetch scoped chunks, rank with numpy.

    Suitable for small corpora and for databases without pgvector.
    """

    def _search_sync(self, query_vector, scope: EvidenceScope, limit: int) -> List[RetrievalCandidate]:
        queryset = EvidenceChunk.objects.all()
        if scope.is_explicit:
            queryset = queryset.filter(source_id__in=list(scope.source_ids))
        else:
            queryset = queryset.filter(source__workspace_id=scope.workspace_id)

        try:
            rows = list(
                queryset.order_by('created_at', 'id')
                .values_list('id', 'content', 'metadata', 'source_id', 'embedding')
            )
        except DatabaseError as e:
            logger.error(f"Chunk fetch failed: {e}")
            raise StoreUnavailable("Evidence store is unavailable") from e

        if not rows or limit <= 0:
            return []

        try:
            matrix = np.vstack([np.asarray(row[4], dtype=np.float32) for row in rows])
            distances = cosine_distances(query_vector, matrix)
        except ValueError as e:
            # Query and stored vectors come from different embedding models
            logger.error(f"Vector comparison failed: {e}")
            raise StoreUnavailable("Evidence store is unavailable") from e

        # Stable sort keeps creation order among equal distances
        order = np.argsort(distances, kind='stable')[:limit]

        return [
            RetrievalCandidate(
                chunk_id=str(rows[i][0]),
                text=rows[i][1],
                metadata=rows[i][2] or {},
                source_id=str(rows[i][3]),
                score=float(distances[i]),
            )
            for i in order
        ]

    async def search(self, query_vector, scope, limit):
        candidates = await sync_to_async(self._search_sync)(query_vector, scope, limit)
        logger.info(f"In-process search returned {len(candidates)} candidates (limit={limit})")
        return candidates


# =============================================================================
# Store Factory
# =============================================================================

_store_instance: Optional[BaseEvidenceStore] = None


def get_evidence_store() -> BaseEvidenceStore:
    """
    Get the configured Evidence Store.

    EVIDENCE_STORE_BACKEND selects "pgvector" or "python".
    """
    global _store_instance

    if _store_instance is not None:
        return _store_instance

    backend = getattr(settings, 'EVIDENCE_STORE_BACKEND', 'pgvector').lower()
    if backend == 'python':
        _store_instance = PythonEvidenceStore()
    else:
        _store_instance = PgVectorEvidenceStore()

    logger.info(f"Using {type(_store_instance).__name__} for evidence search")
    return _store_instance


def reset_evidence_store():
    """Reset the cached store instance. Useful for testing."""
    global _store_instance
    _store_instance = None
