"""
Workspace and EvidenceSource models.

A workspace is the shared container a user collects sources into; every
source, chunk and conversation turn hangs off exactly one workspace.
"""
import uuid
from django.db import models


class SourceKind(models.TextChoices):
    """Kind of ingested item."""
    URL = 'url', 'Web page'
    PDF = 'pdf', 'PDF document'
    CSV = 'csv', 'CSV file'
    TXT = 'txt', 'Text file'


class Workspace(models.Model):
    """
    A collaborative container for sources and conversation.

    The name is unique so the default workspace can be fetched or created
    idempotently without any in-process state.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    name = models.CharField(
        max_length=255,
        unique=True,
        help_text="Display name (unique)"
    )
    description = models.TextField(
        blank=True,
        default='',
        help_text="Optional description"
    )

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'workspaces'
        ordering = ['created_at']

    def __str__(self):
        return self.name

    def to_dict(self) -> dict:
        return {
            'id': str(self.id),
            'name': self.name,
            'description': self.description,
            'createdAt': self.created_at.isoformat(),
            'updatedAt': self.updated_at.isoformat(),
        }


class EvidenceSource(models.Model):
    """
    A logical ingested item (a crawled URL or an uploaded file).

    Deleting a source cascades to its chunks.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    workspace = models.ForeignKey(
        Workspace,
        on_delete=models.CASCADE,
        related_name='sources',
        help_text="Owning workspace"
    )

    name = models.CharField(
        max_length=255,
        help_text="Human-readable name derived from the URL or file name"
    )
    kind = models.CharField(
        max_length=10,
        choices=SourceKind.choices,
        help_text="Kind of ingested item"
    )

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'evidence_sources'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['workspace', 'created_at']),
        ]

    def __str__(self):
        return f"{self.name} ({self.kind})"

    def to_dict(self) -> dict:
        return {
            'id': str(self.id),
            'workspaceId': str(self.workspace_id),
            'name': self.name,
            'type': self.kind,
            'createdAt': self.created_at.isoformat(),
            'updatedAt': self.updated_at.isoformat(),
        }
