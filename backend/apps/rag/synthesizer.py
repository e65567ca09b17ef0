"""
Answer synthesis: prompt building, generation and parsing.

The same logic runs in two shapes:
- synthesize(): one atomic generation call, then parse.
- stream(): an AnswerStream that forwards text deltas as they arrive and
  parses the accumulated text once the caller calls finalize().

Parsing never fails; see response_processor.
"""
import logging
import random
from dataclasses import dataclass, field
from typing import AsyncIterator, Iterable, List, Optional, Sequence

from apps.rag.evidence_store import RetrievalCandidate
from apps.rag.llm_client import BaseLLMClient, LLMError, LLMMessage, get_llm_client
from apps.rag.mode_selector import QueryMode
from apps.rag.prompts import (
    SYSTEM_GENERAL,
    SYSTEM_RAG_QA,
    build_context_block,
    build_no_results_prompt,
    build_rag_user_prompt,
)
from apps.rag.response_processor import (
    MAX_FOLLOWUPS,
    clean_answer_text,
    heuristic_followups,
    parse_model_output,
)

logger = logging.getLogger(__name__)

EMPTY_ANSWER_FALLBACK = "I had trouble processing the response. Please try again."

GENERAL_FOLLOWUPS = [
    "What would you like to know more about?",
    "How can I help you with your documents?",
    "Do you have any specific questions about your sources?",
]

NO_RESULTS_FOLLOWUPS = [
    "What topics are covered in my sources?",
    "Can you summarize what you found instead?",
    "What related information is available?",
]

# {query} and {sources} are filled in; one is picked at random
NO_RESULTS_ANSWERS = [
    "I looked through {sources} but didn't find specific information about \"{query}\". "
    "Could you try rephrasing your question or asking about a related topic?",
    "Hmm, I searched {sources} but couldn't find details on \"{query}\". Would you like to ask "
    "about something else, or perhaps add more sources that might contain this information?",
    "I went through {sources} but didn't come across information about \"{query}\". Sometimes "
    "the information is phrased differently, so could you try asking in another way?",
]


@dataclass
class SynthesizedAnswer:
    answer: str
    followups: List[str] = field(default_factory=list)
    structured: bool = False


def canned_no_results_answer(query: str, source_names: Iterable[str] = ()) -> SynthesizedAnswer:
    names = [n for n in source_names if n]
    sources = ', '.join(names) if names else 'your sources'
    template = random.choice(NO_RESULTS_ANSWERS)
    return SynthesizedAnswer(
        answer=template.format(sources=sources, query=query),
        followups=list(NO_RESULTS_FOLLOWUPS),
    )


class AnswerStream:
    """
    Lazy, finite, non-restartable sequence of text deltas.

    Iterate it to receive deltas; call finalize() after exhaustion to get
    the parsed answer. aclose() closes the underlying generation stream.
    """

    def __init__(
        self,
        synthesizer: 'AnswerSynthesizer',
        deltas: AsyncIterator[str],
        mode: QueryMode,
        query: str,
        default_followups: Optional[List[str]] = None,
    ):
        self._synthesizer = synthesizer
        self._deltas = deltas
        self._mode = mode
        self._query = query
        self._default_followups = default_followups
        self._parts: List[str] = []
        self._exhausted = False

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        try:
            delta = await self._deltas.__anext__()
        except StopAsyncIteration:
            self._exhausted = True
            raise
        self._parts.append(delta)
        return delta

    async def aclose(self):
        await self._deltas.aclose()

    @property
    def text(self) -> str:
        return ''.join(self._parts)

    def finalize(self) -> SynthesizedAnswer:
        if not self._exhausted:
            raise RuntimeError("AnswerStream.finalize() called before the stream ended")
        return self._synthesizer.finalize(
            self._mode, self._query, self.text, self._default_followups
        )


class AnswerSynthesizer:
    """Builds prompts, calls the LLM and turns its output into an answer."""

    def __init__(self, llm_client: Optional[BaseLLMClient] = None):
        self._llm_client = llm_client

    @property
    def llm_client(self) -> BaseLLMClient:
        if self._llm_client is None:
            self._llm_client = get_llm_client()
        return self._llm_client

    def build_messages(
        self,
        mode: QueryMode,
        query: str,
        evidence: Sequence[RetrievalCandidate] = (),
        source_names: Iterable[str] = (),
    ) -> List[LLMMessage]:
        if mode == QueryMode.GENERAL_CHAT:
            return [
                LLMMessage(role="system", content=SYSTEM_GENERAL),
                LLMMessage(role="user", content=query),
            ]
        if mode == QueryMode.NO_EVIDENCE:
            return [
                LLMMessage(role="system", content=SYSTEM_RAG_QA),
                LLMMessage(role="user", content=build_no_results_prompt(query, source_names)),
            ]
        context = build_context_block(evidence)
        return [
            LLMMessage(role="system", content=SYSTEM_RAG_QA),
            LLMMessage(role="user", content=build_rag_user_prompt(context, query)),
        ]

    def finalize(
        self,
        mode: QueryMode,
        query: str,
        raw: str,
        default_followups: Optional[List[str]] = None,
    ) -> SynthesizedAnswer:
        """
        Turn raw model text into an answer.

        General-chat text is only cleaned; RAG output goes through the
        JSON parse/repair step. Missing follow-ups are filled in from
        default_followups or the query heuristic.
        """
        if mode == QueryMode.GENERAL_CHAT:
            answer, followups, structured = clean_answer_text(raw), [], False
        else:
            parsed = parse_model_output(raw)
            answer, followups, structured = parsed.answer, parsed.followups, parsed.structured

        if not answer:
            logger.warning(f"Model produced no usable answer text ({len(raw or '')} raw chars)")
            answer = EMPTY_ANSWER_FALLBACK

        if not followups:
            followups = list(default_followups) if default_followups else heuristic_followups(query)

        return SynthesizedAnswer(answer=answer, followups=followups[:MAX_FOLLOWUPS], structured=structured)

    async def synthesize(
        self,
        mode: QueryMode,
        query: str,
        evidence: Sequence[RetrievalCandidate] = (),
        source_names: Iterable[str] = (),
        default_followups: Optional[List[str]] = None,
    ) -> SynthesizedAnswer:
        """
        Atomic generation.

        Raises:
            LLMError: If generation fails
        """
        messages = self.build_messages(mode, query, evidence, source_names)
        response = await self.llm_client.chat(messages)
        return self.finalize(mode, query, response.content, default_followups)

    def stream(
        self,
        mode: QueryMode,
        query: str,
        evidence: Sequence[RetrievalCandidate] = (),
        default_followups: Optional[List[str]] = None,
    ) -> AnswerStream:
        """Incremental generation; nothing is sent until the stream is iterated."""
        messages = self.build_messages(mode, query, evidence)
        deltas = self.llm_client.stream_chat(messages)
        return AnswerStream(self, deltas, mode, query, default_followups)

    async def no_results_answer(self, query: str, source_names: Iterable[str] = ()) -> SynthesizedAnswer:
        """
        Empathetic reply when the selected sources had nothing relevant.

        Uses one atomic generation with the no-results prompt. A failed call
        or unstructured output yields one of the canned replies instead.
        """
        names = list(source_names)
        try:
            result = await self.synthesize(
                QueryMode.NO_EVIDENCE, query, source_names=names,
                default_followups=NO_RESULTS_FOLLOWUPS,
            )
        except LLMError as e:
            logger.warning(f"No-results generation failed, using canned reply: {e}")
            return canned_no_results_answer(query, names)

        if not result.structured or result.answer == EMPTY_ANSWER_FALLBACK:
            return canned_no_results_answer(query, names)
        return result
