"""
Workspace services.

Default-workspace lookup is an idempotent upsert guarded by the unique
constraint on Workspace.name, so concurrent first requests converge on
the same row.
"""
import logging
from typing import Dict, Iterable, List

from django.conf import settings
from django.db import IntegrityError

from apps.ops.audit import audit_workspace_created
from apps.workspaces.models import EvidenceSource, Workspace

logger = logging.getLogger(__name__)


def get_default_workspace_name() -> str:
    return getattr(settings, 'DEFAULT_WORKSPACE_NAME', 'My Notebook')


async def get_or_create_default_workspace() -> Workspace:
    """
    Fetch the default workspace, creating it on first access.

    Returns:
        The default Workspace
    """
    name = get_default_workspace_name()
    try:
        workspace, created = await Workspace.objects.aget_or_create(
            name=name,
            defaults={'description': 'This is my notebook'},
        )
    except IntegrityError:
        # Another request created it between our SELECT and INSERT
        logger.info(f"Default workspace '{name}' created concurrently, re-reading")
        workspace = await Workspace.objects.aget(name=name)
        created = False

    if created:
        logger.info(f"Created default workspace {workspace.id} ('{name}')")
        audit_workspace_created(str(workspace.id), name)
    return workspace


async def workspace_exists(workspace_id: str) -> bool:
    return await Workspace.objects.filter(id=workspace_id).aexists()


async def list_sources(workspace_id: str) -> List[EvidenceSource]:
    """Sources of a workspace, newest first."""
    queryset = EvidenceSource.objects.filter(workspace_id=workspace_id).order_by('-created_at')
    return [source async for source in queryset]


async def resolve_source_names(source_ids: Iterable[str]) -> Dict[str, str]:
    """
    Map source ids to display names.

    Unknown ids are simply absent from the result.
    """
    ids = [str(s) for s in source_ids]
    if not ids:
        return {}
    names = {}
    async for source_id, name in EvidenceSource.objects.filter(id__in=ids).values_list('id', 'name'):
        names[str(source_id)] = name
    return names
