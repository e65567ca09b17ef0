"""
Query mode selection.

Precedence:
1. GENERAL_CHAT when there is no explicit source scope and the query is
   small talk. No retrieval happens.
2. RAG otherwise; retrieval is always attempted first.
3. NO_EVIDENCE when retrieval came back empty. An unscoped query may fall
   back to GENERAL_CHAT instead, depending on RAG_UNSCOPED_EMPTY_FALLBACK.
"""
import re
from enum import Enum

UNSCOPED_FALLBACK_GENERAL = "general"
UNSCOPED_FALLBACK_NO_RESULTS = "no_results"

SMALL_TALK = re.compile(
    r"^(?:hi|hello|hey|how are you|what'?s up|good (?:morning|evening|afternoon))\b",
    re.IGNORECASE,
)


class QueryMode(str, Enum):
    GENERAL_CHAT = "general_chat"
    RAG = "rag"
    NO_EVIDENCE = "no_evidence"


def is_small_talk(query: str) -> bool:
    return bool(SMALL_TALK.match((query or '').strip()))


def select_mode(
    query: str,
    has_explicit_scope: bool,
    retrieval_empty: bool = False,
    unscoped_empty_fallback: str = UNSCOPED_FALLBACK_GENERAL,
) -> QueryMode:
    """
    Pure mode decision from the query text, scope and retrieval outcome.

    Called once before retrieval (retrieval_empty=False) and once after,
    when the ranked evidence turned out empty.
    """
    if not has_explicit_scope and is_small_talk(query):
        return QueryMode.GENERAL_CHAT

    if not retrieval_empty:
        return QueryMode.RAG

    if has_explicit_scope:
        return QueryMode.NO_EVIDENCE

    if unscoped_empty_fallback == UNSCOPED_FALLBACK_NO_RESULTS:
        return QueryMode.NO_EVIDENCE
    return QueryMode.GENERAL_CHAT
