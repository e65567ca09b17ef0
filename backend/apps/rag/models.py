"""
Conversation turn model.

Turns are append-only: the query path creates them and nothing updates or
deletes them.
"""
import uuid
from django.db import models

from apps.workspaces.models import Workspace


class TurnRole(models.TextChoices):
    USER = 'user', 'User'
    ASSISTANT = 'assistant', 'Assistant'


class ConversationTurn(models.Model):
    """One user or assistant message in a workspace's conversation."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    workspace = models.ForeignKey(
        Workspace,
        on_delete=models.CASCADE,
        related_name='turns',
        help_text="Workspace this turn belongs to"
    )

    role = models.CharField(
        max_length=16,
        choices=TurnRole.choices,
    )
    message = models.TextField()

    # Ordered list of citation dicts (id, index, metadata, sourceId)
    citations = models.JSONField(
        default=list,
        blank=True,
        help_text="Citations supporting an assistant answer"
    )

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'conversation_turns'
        ordering = ['created_at', 'id']
        indexes = [
            models.Index(fields=['workspace', 'created_at']),
        ]

    def __str__(self):
        return f"{self.role}: {self.message[:50]}"

    def to_dict(self) -> dict:
        return {
            'id': str(self.id),
            'workspaceId': str(self.workspace_id),
            'role': self.role,
            'message': self.message,
            'citations': self.citations or [],
            'createdAt': self.created_at.isoformat(),
            'updatedAt': self.updated_at.isoformat(),
        }
