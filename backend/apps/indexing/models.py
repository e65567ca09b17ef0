"""
Evidence chunk model for storing text chunks with embeddings.
"""
import uuid
from django.conf import settings
from django.db import models
from pgvector.django import VectorField

from apps.workspaces.models import EvidenceSource


class EvidenceChunk(models.Model):
    """
    A retrievable slice of a source's text with its embedding vector.

    Chunks are created in bulk during ingestion and never mutated by the
    query path.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Link to parent source
    source = models.ForeignKey(
        EvidenceSource,
        on_delete=models.CASCADE,
        related_name='chunks',
        help_text="The source this chunk was cut from"
    )

    # Chunk text content
    content = models.TextField(
        help_text="The text content of this chunk"
    )

    # Vector embedding (dimension depends on model, nomic-embed-text uses 768)
    embedding = VectorField(
        dimensions=getattr(settings, 'EMBEDDING_DIMENSION', 768),
        help_text="Vector embedding of the chunk content"
    )

    # Page number, row index, origin URL, ...
    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Free-form metadata copied into citations"
    )

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'evidence_chunks'
        ordering = ['created_at', 'id']
        indexes = [
            models.Index(fields=['source', 'created_at']),
        ]

    def __str__(self):
        preview = self.content[:50] + '...' if len(self.content) > 50 else self.content
        return f"Chunk of {self.source_id}: {preview}"
