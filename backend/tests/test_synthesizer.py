"""
Tests for the Answer Synthesizer.

The LLM client is replaced by a scripted fake so prompt construction,
streaming accumulation and the no-results fallbacks can be checked
without a model server.
"""
import pytest
from contextlib import aclosing
from typing import List

from apps.rag.evidence_store import RetrievalCandidate
from apps.rag.llm_client import BaseLLMClient, LLMError, LLMResponse
from apps.rag.mode_selector import QueryMode
from apps.rag.prompts import SYSTEM_GENERAL, SYSTEM_RAG_QA
from apps.rag.synthesizer import (
    EMPTY_ANSWER_FALLBACK,
    GENERAL_FOLLOWUPS,
    NO_RESULTS_ANSWERS,
    NO_RESULTS_FOLLOWUPS,
    AnswerSynthesizer,
)


class ScriptedLLM(BaseLLMClient):
    """Returns canned text; records the messages it was sent."""

    def __init__(self, reply: str = "", deltas: List[str] = None, error: Exception = None):
        self.reply = reply
        self.deltas = deltas or []
        self.error = error
        self.calls = []
        self.stream_closed = False

    @property
    def model_name(self) -> str:
        return "scripted"

    async def chat(self, messages, temperature=None, max_tokens=None):
        self.calls.append(messages)
        if self.error:
            raise self.error
        return LLMResponse(content=self.reply, model=self.model_name)

    async def stream_chat(self, messages, temperature=None, max_tokens=None):
        self.calls.append(messages)
        try:
            for delta in self.deltas:
                yield delta
            if self.error:
                raise self.error
        finally:
            self.stream_closed = True


def evidence(*texts) -> List[RetrievalCandidate]:
    return [
        RetrievalCandidate(chunk_id=f"c{i}", text=t, metadata={}, source_id="s1", score=0.1 * i)
        for i, t in enumerate(texts, 1)
    ]


def canned_answers(query: str, sources: str) -> List[str]:
    return [t.format(sources=sources, query=query) for t in NO_RESULTS_ANSWERS]


# ============================================================================
# Prompt Construction
# ============================================================================

class TestBuildMessages:
    """Tests for message lists per mode."""

    def test_rag_messages_enumerate_context(self):
        """Should number evidence (1), (2) in ranked order."""
        synthesizer = AnswerSynthesizer(ScriptedLLM())

        messages = synthesizer.build_messages(QueryMode.RAG, "What is X?", evidence("first", "second"))

        assert messages[0].role == "system"
        assert messages[0].content == SYSTEM_RAG_QA
        assert "(1) first\n\n(2) second" in messages[1].content
        assert messages[1].content.rstrip().endswith("Respond strictly as valid JSON per the system instructions.")
        assert "What is X?" in messages[1].content

    def test_general_messages(self):
        """Should send the raw question under the general system prompt."""
        synthesizer = AnswerSynthesizer(ScriptedLLM())

        messages = synthesizer.build_messages(QueryMode.GENERAL_CHAT, "hello")

        assert messages[0].content == SYSTEM_GENERAL
        assert messages[1].content == "hello"

    def test_no_results_messages_name_sources(self):
        """Should mention the selected sources in the no-results prompt."""
        synthesizer = AnswerSynthesizer(ScriptedLLM())

        messages = synthesizer.build_messages(
            QueryMode.NO_EVIDENCE, "What is X?", source_names=["Handbook", "FAQ"]
        )

        assert "the selected sources (Handbook, FAQ)" in messages[1].content
        assert '"What is X?"' in messages[1].content

    def test_context_with_braces_is_kept_verbatim(self):
        """CSV rows serialized as JSON must survive prompt formatting."""
        synthesizer = AnswerSynthesizer(ScriptedLLM())

        messages = synthesizer.build_messages(QueryMode.RAG, "q", evidence('{"name": "Ada"}'))

        assert '(1) {"name": "Ada"}' in messages[1].content


# ============================================================================
# Atomic Synthesis
# ============================================================================

class TestSynthesize:
    """Tests for one-shot generation."""

    @pytest.mark.asyncio
    async def test_structured_answer(self):
        """Should return the parsed answer and follow-ups."""
        llm = ScriptedLLM(reply='{"answer": "X [1]", "followups": ["a", "b"]}')

        result = await AnswerSynthesizer(llm).synthesize(QueryMode.RAG, "What is X?", evidence("x"))

        assert result.answer == "X [1]"
        assert result.followups == ["a", "b"]
        assert len(llm.calls) == 1

    @pytest.mark.asyncio
    async def test_missing_followups_use_heuristic(self):
        """Should synthesize follow-ups from the question word."""
        llm = ScriptedLLM(reply='{"answer": "Steps [1]", "followups": []}')

        result = await AnswerSynthesizer(llm).synthesize(QueryMode.RAG, "How do I do X?", evidence("x"))

        assert len(result.followups) == 3
        assert result.followups[0].startswith("What are the steps for")

    @pytest.mark.asyncio
    async def test_plain_text_is_repaired(self):
        """Should fall back to cleaned raw text."""
        llm = ScriptedLLM(reply="just plain text")

        result = await AnswerSynthesizer(llm).synthesize(QueryMode.RAG, "What?", evidence("x"))

        assert result.answer == "Just plain text."
        assert result.structured is False

    @pytest.mark.asyncio
    async def test_empty_answer_gets_fallback(self):
        """Should never return an empty answer."""
        llm = ScriptedLLM(reply='{"answer": ""}')

        result = await AnswerSynthesizer(llm).synthesize(QueryMode.RAG, "What?", evidence("x"))

        assert result.answer == EMPTY_ANSWER_FALLBACK

    @pytest.mark.asyncio
    async def test_general_default_followups(self):
        """Should use the supplied default follow-ups for general chat."""
        llm = ScriptedLLM(reply="hi there! how can i help")

        result = await AnswerSynthesizer(llm).synthesize(
            QueryMode.GENERAL_CHAT, "hello", default_followups=GENERAL_FOLLOWUPS
        )

        assert result.answer == "Hi there! How can i help."
        assert result.followups == GENERAL_FOLLOWUPS

    @pytest.mark.asyncio
    async def test_llm_error_propagates(self):
        """Generation failures are for the caller to handle."""
        llm = ScriptedLLM(error=LLMError("down"))

        with pytest.raises(LLMError):
            await AnswerSynthesizer(llm).synthesize(QueryMode.RAG, "What?", evidence("x"))


# ============================================================================
# Streaming Synthesis
# ============================================================================

class TestStream:
    """Tests for the incremental AnswerStream."""

    @pytest.mark.asyncio
    async def test_forwards_deltas_and_parses_at_end(self):
        """Should yield every delta and parse the concatenation."""
        llm = ScriptedLLM(deltas=['{"answer": "X', ' [1]", "followups"', ': ["a"]}'])
        stream = AnswerSynthesizer(llm).stream(QueryMode.RAG, "What is X?", evidence("x"))

        received = [delta async for delta in stream]
        result = stream.finalize()

        assert received == ['{"answer": "X', ' [1]", "followups"', ': ["a"]}']
        assert result.answer == "X [1]"
        assert result.followups == ["a"]

    @pytest.mark.asyncio
    async def test_nothing_sent_before_iteration(self):
        """Should not call the model until iterated."""
        llm = ScriptedLLM(deltas=["a"])

        AnswerSynthesizer(llm).stream(QueryMode.GENERAL_CHAT, "hello")

        assert llm.calls == []

    @pytest.mark.asyncio
    async def test_finalize_before_end_raises(self):
        """Should refuse to parse a stream that has not finished."""
        llm = ScriptedLLM(deltas=["a", "b"])
        stream = AnswerSynthesizer(llm).stream(QueryMode.GENERAL_CHAT, "hello")

        async with aclosing(stream):
            await stream.__anext__()
            with pytest.raises(RuntimeError):
                stream.finalize()

    @pytest.mark.asyncio
    async def test_aclose_closes_generation(self):
        """Closing the stream early should close the model stream."""
        llm = ScriptedLLM(deltas=["a", "b", "c"])
        stream = AnswerSynthesizer(llm).stream(QueryMode.GENERAL_CHAT, "hello")

        async with aclosing(stream):
            async for delta in stream:
                break

        assert llm.stream_closed is True
        assert stream.text == "a"

    @pytest.mark.asyncio
    async def test_error_mid_stream_propagates(self):
        """Should raise LLMError after the deltas that did arrive."""
        llm = ScriptedLLM(deltas=["partial"], error=LLMError("reset"))
        stream = AnswerSynthesizer(llm).stream(QueryMode.RAG, "q", evidence("x"))

        received = []
        with pytest.raises(LLMError):
            async for delta in stream:
                received.append(delta)

        assert received == ["partial"]


# ============================================================================
# No-Results Answers
# ============================================================================

class TestNoResultsAnswer:
    """Tests for the empathetic no-results path."""

    @pytest.mark.asyncio
    async def test_uses_model_answer(self):
        """Should use the model's structured reply when available."""
        llm = ScriptedLLM(reply='{"answer": "Nothing about X in Handbook.", "followups": ["Try Y?"]}')

        result = await AnswerSynthesizer(llm).no_results_answer("What is X?", ["Handbook"])

        assert result.answer == "Nothing about X in Handbook."
        assert result.followups == ["Try Y?"]

    @pytest.mark.asyncio
    async def test_model_without_followups_gets_no_results_set(self):
        """Should fill missing follow-ups from the no-results set."""
        llm = ScriptedLLM(reply='{"answer": "Not found."}')

        result = await AnswerSynthesizer(llm).no_results_answer("What is X?", ["Handbook"])

        assert result.followups == NO_RESULTS_FOLLOWUPS

    @pytest.mark.asyncio
    async def test_llm_failure_uses_canned_reply(self):
        """Should pick one of the canned replies when generation fails."""
        llm = ScriptedLLM(error=LLMError("down"))

        result = await AnswerSynthesizer(llm).no_results_answer("What is X?", ["Handbook"])

        assert result.answer in canned_answers("What is X?", "Handbook")
        assert result.followups == NO_RESULTS_FOLLOWUPS

    @pytest.mark.asyncio
    async def test_unstructured_reply_uses_canned_reply(self):
        """Should not show raw prose from the no-results prompt."""
        llm = ScriptedLLM(reply="no json here")

        result = await AnswerSynthesizer(llm).no_results_answer("What is X?", [])

        assert result.answer in canned_answers("What is X?", "your sources")
