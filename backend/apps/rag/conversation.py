"""
Conversation Log: durable, append-only user/assistant turns.

Concurrent queries against one workspace are not serialized; turns land in
whatever order their appends complete.
"""
import logging
from typing import List, Optional, Sequence

from apps.rag.evidence_store import Citation
from apps.rag.models import ConversationTurn, TurnRole

logger = logging.getLogger(__name__)


class ConversationLog:

    async def append(
        self,
        workspace_id: str,
        role: str,
        text: str,
        citations: Optional[Sequence[Citation]] = None,
    ) -> ConversationTurn:
        """Persist one turn and return it."""
        if role not in TurnRole.values:
            raise ValueError(f"Unknown turn role: {role}")

        turn = await ConversationTurn.objects.acreate(
            workspace_id=workspace_id,
            role=role,
            message=text,
            citations=[c.to_dict() for c in citations or []],
        )
        logger.debug(f"Appended {role} turn {turn.id} to workspace {workspace_id}")
        return turn

    async def list(self, workspace_id: str) -> List[ConversationTurn]:
        """All turns of a workspace, oldest first."""
        queryset = ConversationTurn.objects.filter(workspace_id=workspace_id).order_by('created_at', 'id')
        return [turn async for turn in queryset]
