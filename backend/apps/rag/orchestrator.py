"""
Query Orchestrator.

Sequences one query through the pipeline:

    user turn persisted -> mode selected -> [embed -> search -> rank]
        -> generation -> parse -> assistant turn persisted

run() returns a single QueryResponse; stream() yields QueryEvents as the
query progresses. The user turn is always written before any retrieval or
generation, the assistant turn only after the final answer is known. A
failed query keeps its user turn and writes no assistant turn. Nothing in
here retries: one failed search or generation ends the query.
"""
import asyncio
import logging
import random
import uuid
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence

from django.conf import settings

from apps.rag.conversation import ConversationLog
from apps.rag.diversity import select_diverse
from apps.rag.embeddings import EmbeddingError, QueryValidationError, embed_query, normalize_query
from apps.rag.events import QueryEvent
from apps.rag.evidence_store import (
    BaseEvidenceStore,
    Citation,
    EvidenceScope,
    RetrievalCandidate,
    StoreUnavailable,
    build_citations,
    get_evidence_store,
)
from apps.rag.llm_client import LLMError
from apps.rag.mode_selector import QueryMode, select_mode
from apps.rag.models import ConversationTurn, TurnRole
from apps.rag.synthesizer import GENERAL_FOLLOWUPS, AnswerSynthesizer, SynthesizedAnswer
from apps.workspaces.services import resolve_source_names

logger = logging.getLogger(__name__)

# Request bounds
MAX_TOP_K = 20
MAX_TOP_N = 100

SEARCH_FAILED_MESSAGE = "I encountered an issue while searching. Please try again."
INTERNAL_ERROR_MESSAGE = "Something went wrong while answering. Please try again."

# One is picked at random when generation fails
GENERATION_FAILED_MESSAGES = [
    "Sorry, I couldn't put an answer together just now. Please try again in a moment.",
    "I ran into a problem while writing the answer. Could you ask again?",
    "My answer got interrupted before it was finished. Please try once more.",
]


def _as_list(value) -> List[str]:
    if value is None or value == '':
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v not in (None, '')]
    return [str(value)]


def _validate_uuid(value: str, label: str) -> str:
    try:
        return str(uuid.UUID(str(value)))
    except (ValueError, TypeError, AttributeError):
        raise QueryValidationError(f"Invalid {label}: {value}")


def _bounded_int(value, label: str, upper: int) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 1 or value > upper:
        raise QueryValidationError(f"{label} must be an integer between 1 and {upper}")
    return value


@dataclass
class QueryRequest:
    workspace_id: str
    query: str
    selected_sources: List[str] = field(default_factory=list)
    streaming: bool = False
    top_k: Optional[int] = None
    top_n: Optional[int] = None

    @property
    def has_explicit_scope(self) -> bool:
        return bool(self.selected_sources)

    @property
    def search_mode(self) -> str:
        return "selected" if self.has_explicit_scope else "all"

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> 'QueryRequest':
        """
        Validate a query payload.

        Accepts `workspaceId` (or `sessionId`), `query`, `selectedSources`
        (or `sourceId`, scalar or list), `streaming`, `topK`, `topN`.

        Raises:
            QueryValidationError: On any missing or malformed field
        """
        if not isinstance(payload, dict):
            raise QueryValidationError("Request body must be a JSON object")

        workspace_id = payload.get('workspaceId') or payload.get('sessionId')
        if not workspace_id:
            raise QueryValidationError("workspaceId required")
        workspace_id = _validate_uuid(workspace_id, 'workspaceId')

        query = normalize_query(payload.get('query') or '')

        raw_sources = payload.get('selectedSources')
        if raw_sources is None:
            raw_sources = payload.get('sourceId')
        selected = []
        for source_id in _as_list(raw_sources):
            source_id = _validate_uuid(source_id, 'source id')
            if source_id not in selected:
                selected.append(source_id)

        return cls(
            workspace_id=workspace_id,
            query=query,
            selected_sources=selected,
            streaming=payload.get('streaming') is True,
            top_k=_bounded_int(payload.get('topK'), 'topK', MAX_TOP_K),
            top_n=_bounded_int(payload.get('topN'), 'topN', MAX_TOP_N),
        )


@dataclass
class QueryResponse:
    user_turn: ConversationTurn
    answer: str
    citations: List[Citation]
    retrieved: List[RetrievalCandidate]
    assistant_turn: ConversationTurn
    followups: List[str]
    search_mode: str
    sources_used: int
    mode: QueryMode = QueryMode.RAG

    def to_dict(self) -> dict:
        return {
            "userMessage": self.user_turn.to_dict(),
            "answer": self.answer,
            "citations": [c.to_dict() for c in self.citations],
            "retrievedChunks": [c.to_dict() for c in self.retrieved],
            "chatMessage": self.assistant_turn.to_dict(),
            "followups": self.followups,
            "searchMode": self.search_mode,
            "sourcesUsed": self.sources_used,
        }


class QueryOrchestrator:
    """
    Glue between mode selection, the Evidence Store, the Diversity Ranker,
    the Answer Synthesizer and the Conversation Log.

    Every collaborator can be injected; unset ones come from settings.
    """

    def __init__(
        self,
        store: Optional[BaseEvidenceStore] = None,
        synthesizer: Optional[AnswerSynthesizer] = None,
        conversation: Optional[ConversationLog] = None,
        embed: Optional[Callable[[str], Awaitable[List[float]]]] = None,
        source_names: Optional[Callable[[Sequence[str]], Awaitable[Dict[str, str]]]] = None,
        top_k: Optional[int] = None,
        pool_size: Optional[int] = None,
        max_per_source: Optional[int] = None,
        unscoped_empty_fallback: Optional[str] = None,
    ):
        self._store = store
        self.synthesizer = synthesizer or AnswerSynthesizer()
        self.conversation = conversation or ConversationLog()
        self.embed = embed or embed_query
        self.source_names = source_names or resolve_source_names
        self.top_k = top_k or getattr(settings, 'RAG_TOP_K', 8)
        self.pool_size = pool_size or getattr(settings, 'RAG_POOL_SIZE', 40)
        self.max_per_source = max_per_source or getattr(settings, 'RAG_MAX_PER_SOURCE', 2)
        self.unscoped_empty_fallback = unscoped_empty_fallback or getattr(
            settings, 'RAG_UNSCOPED_EMPTY_FALLBACK', 'general'
        )

    @property
    def store(self) -> BaseEvidenceStore:
        if self._store is None:
            self._store = get_evidence_store()
        return self._store

    # -------------------------------------------------------------------------
    # Shared steps
    # -------------------------------------------------------------------------

    async def _retrieve(self, request: QueryRequest) -> List[RetrievalCandidate]:
        """Embed, search the scoped store, then diversity-rank."""
        pool_size = request.top_n or self.pool_size
        top_k = request.top_k or self.top_k

        vector = await self.embed(request.query)

        if request.has_explicit_scope:
            scope = EvidenceScope.for_sources(request.selected_sources)
        else:
            scope = EvidenceScope.for_workspace(request.workspace_id)

        candidates = await self.store.search(vector, scope, pool_size)
        ranked = select_diverse(
            candidates,
            top_k=top_k,
            pool_size=pool_size,
            max_per_source=self.max_per_source,
        )
        logger.info(f"Ranked {len(ranked)} of {len(candidates)} candidates (search_mode={request.search_mode})")
        return ranked

    def _empty_retrieval_mode(self, request: QueryRequest) -> QueryMode:
        return select_mode(
            request.query,
            request.has_explicit_scope,
            retrieval_empty=True,
            unscoped_empty_fallback=self.unscoped_empty_fallback,
        )

    async def _no_results(self, request: QueryRequest) -> SynthesizedAnswer:
        names = []
        if request.selected_sources:
            resolved = await self.source_names(request.selected_sources)
            names = [resolved.get(s, "Unknown source") for s in request.selected_sources]
        return await self.synthesizer.no_results_answer(request.query, names)

    # -------------------------------------------------------------------------
    # One-shot
    # -------------------------------------------------------------------------

    async def run(self, request: QueryRequest) -> QueryResponse:
        """
        Answer a query in one shot.

        Raises:
            EmbeddingError, StoreUnavailable: If the search could not run
            LLMError: If generation failed
        """
        logger.info(f"Query for workspace {request.workspace_id}: '{request.query[:100]}'")
        user_turn = await self.conversation.append(request.workspace_id, TurnRole.USER, request.query)

        mode = select_mode(request.query, request.has_explicit_scope)
        evidence: List[RetrievalCandidate] = []

        if mode == QueryMode.GENERAL_CHAT:
            result = await self.synthesizer.synthesize(
                mode, request.query, default_followups=GENERAL_FOLLOWUPS
            )
        else:
            evidence = await self._retrieve(request)
            if evidence:
                result = await self.synthesizer.synthesize(mode, request.query, evidence)
            else:
                mode = self._empty_retrieval_mode(request)
                if mode == QueryMode.NO_EVIDENCE:
                    result = await self._no_results(request)
                else:
                    result = await self.synthesizer.synthesize(mode, request.query)

        citations = build_citations(evidence)
        assistant_turn = await self.conversation.append(
            request.workspace_id, TurnRole.ASSISTANT, result.answer, citations
        )

        return QueryResponse(
            user_turn=user_turn,
            answer=result.answer,
            citations=citations,
            retrieved=evidence,
            assistant_turn=assistant_turn,
            followups=result.followups,
            search_mode=request.search_mode,
            sources_used=len(request.selected_sources),
            mode=mode,
        )

    # -------------------------------------------------------------------------
    # Streaming
    # -------------------------------------------------------------------------

    async def stream(self, request: QueryRequest) -> AsyncIterator[QueryEvent]:
        """
        Answer a query as a sequence of events ending in complete or error.

        Closing the iterator (or cancelling the task consuming it) closes
        the generation stream; the partial answer is dropped and no
        assistant turn is written.
        """
        logger.info(f"Streaming query for workspace {request.workspace_id}: '{request.query[:100]}'")
        try:
            user_turn = await self.conversation.append(request.workspace_id, TurnRole.USER, request.query)
            user_turn_id = str(user_turn.id)

            mode = select_mode(request.query, request.has_explicit_scope)
            evidence: List[RetrievalCandidate] = []
            default_followups = None

            if mode == QueryMode.GENERAL_CHAT:
                yield QueryEvent.thinking()
                default_followups = GENERAL_FOLLOWUPS
            else:
                yield QueryEvent.searching()
                evidence = await self._retrieve(request)
                if evidence:
                    yield QueryEvent.generating([c.to_dict() for c in build_citations(evidence)])
                else:
                    mode = self._empty_retrieval_mode(request)
                    if mode == QueryMode.NO_EVIDENCE:
                        result = await self._no_results(request)
                        assistant_turn = await self.conversation.append(
                            request.workspace_id, TurnRole.ASSISTANT, result.answer
                        )
                        yield QueryEvent.complete(assistant_turn.to_dict(), [], result.followups)
                        return

            citations = build_citations(evidence)
            answer_stream = self.synthesizer.stream(mode, request.query, evidence, default_followups)
            async with aclosing(answer_stream):
                async for delta in answer_stream:
                    yield QueryEvent.token(delta, user_turn_id)

            result = answer_stream.finalize()
            assistant_turn = await self.conversation.append(
                request.workspace_id, TurnRole.ASSISTANT, result.answer, citations
            )
            yield QueryEvent.complete(
                assistant_turn.to_dict(),
                [c.to_dict() for c in citations],
                result.followups,
            )

        except (GeneratorExit, asyncio.CancelledError):
            logger.info(f"Query stream for workspace {request.workspace_id} cancelled by consumer")
            raise
        except (EmbeddingError, StoreUnavailable) as e:
            logger.error(f"Search failed: {e}")
            yield QueryEvent.error(SEARCH_FAILED_MESSAGE, "SEARCH_UNAVAILABLE")
        except LLMError as e:
            logger.error(f"Generation failed: {e}")
            yield QueryEvent.error(random.choice(GENERATION_FAILED_MESSAGES), "LLM_UNAVAILABLE")
        except Exception as e:
            logger.exception(f"Unexpected error in query stream: {e}")
            yield QueryEvent.error(INTERNAL_ERROR_MESSAGE, "INTERNAL_ERROR")


def get_orchestrator() -> QueryOrchestrator:
    """Orchestrator wired to the configured store and LLM client."""
    return QueryOrchestrator()
