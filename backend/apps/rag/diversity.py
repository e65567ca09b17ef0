"""
Diversity ranking of retrieval candidates.

Turns a similarity-ordered candidate list into a bounded working set that
is free of duplicate text and balanced across sources:

1. First pass, in input order: skip duplicate fingerprints and accept a
   candidate only while its source is under the per-source cap.
2. Second pass, only when fewer than top_k were accepted: walk the input
   again ignoring the cap, still skipping duplicates.

Both passes keep the input order, and the function is pure.
"""
import hashlib
import logging
import re
from collections import defaultdict
from typing import Dict, List, Sequence, Set

from apps.rag.evidence_store import RetrievalCandidate

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 8
DEFAULT_POOL_SIZE = 40
DEFAULT_MAX_PER_SOURCE = 2


def content_fingerprint(text: str) -> str:
    """Hash of lowercased, whitespace-collapsed text."""
    normalized = re.sub(r'\s+', ' ', text or '').strip().lower()
    return hashlib.sha1(normalized.encode('utf-8')).hexdigest()


def select_diverse(
    candidates: Sequence[RetrievalCandidate],
    top_k: int = DEFAULT_TOP_K,
    pool_size: int = DEFAULT_POOL_SIZE,
    max_per_source: int = DEFAULT_MAX_PER_SOURCE,
) -> List[RetrievalCandidate]:
    """
    Pick at most top_k diverse candidates from the first pool_size inputs.

    Args:
        candidates: Candidates in ascending distance order
        top_k: Size of the working set (K)
        pool_size: How many inputs to consider (N)
        max_per_source: Per-source cap for the first pass

    Returns:
        Selected candidates, pass-1 picks first, each pass in input order
    """
    if top_k <= 0:
        return []

    pool = list(candidates[:pool_size])
    fingerprints = [content_fingerprint(c.text) for c in pool]

    selected: List[RetrievalCandidate] = []
    seen: Set[str] = set()
    per_source: Dict[str, int] = defaultdict(int)

    for candidate, fp in zip(pool, fingerprints):
        if len(selected) >= top_k:
            break
        if fp in seen:
            continue
        if per_source[candidate.source_id] >= max_per_source:
            continue
        selected.append(candidate)
        seen.add(fp)
        per_source[candidate.source_id] += 1

    first_pass = len(selected)

    if len(selected) < top_k:
        for candidate, fp in zip(pool, fingerprints):
            if len(selected) >= top_k:
                break
            if fp in seen:
                continue
            selected.append(candidate)
            seen.add(fp)

    logger.debug(
        f"Diversity ranking: {len(pool)} in pool, {first_pass} from first pass, "
        f"{len(selected) - first_pass} backfilled"
    )
    return selected
