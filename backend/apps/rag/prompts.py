"""
Prompt templates.

The RAG and no-results prompts ask for a JSON object with exactly two
fields, `answer` and `followups`; the general prompt asks for plain text.
"""
from typing import Iterable, List, Sequence

from apps.rag.evidence_store import RetrievalCandidate

SYSTEM_RAG_QA = """You are a precise assistant. Answer ONLY using the provided context.
If the answer is not present in the context, reply exactly:
"I could not find relevant information in the sources."

Rules:
- Always include citation markers [1], [2], ... that match the numbering of the context items.
- Be concise and factual. Do not speculate.
- Do not reveal hidden reasoning.
- Output strictly valid JSON as described below. Do not include extra text.

Output JSON:
{
  "answer": "string",
  "followups": ["string", ...]
}

"followups" holds at most 3 short questions the user could ask next."""

SYSTEM_GENERAL = """You are a helpful assistant. Answer naturally and helpfully.
Keep answers concise and accurate. Do not fabricate specific
facts you don't know. No JSON output required."""

RAG_USER_TEMPLATE = """Context:
{context}

Question:
{question}

Respond strictly as valid JSON per the system instructions."""

NO_RESULTS_PROMPT = """The user asked: "{query}"
I searched through {source_context} but couldn't find specific information about it.

Write a helpful, empathetic reply that:
1. Acknowledges the question naturally
2. Says what was searched
3. Suggests alternative questions the user might ask
4. Offers to help in other ways

Respond in JSON format:
{{
  "answer": "Natural, helpful response",
  "followups": ["Alternative questions they could ask"]
}}"""


def build_context_block(evidence: Sequence[RetrievalCandidate]) -> str:
    """
    Enumerate evidence as "(1) ...", "(2) ..." in ranked order.

    Positions match the citation indices handed back to the caller.
    """
    return "\n\n".join(f"({i}) {c.text}" for i, c in enumerate(evidence, 1))


def build_rag_user_prompt(context: str, question: str) -> str:
    return RAG_USER_TEMPLATE.format(context=context, question=question)


def describe_sources(source_names: Iterable[str]) -> str:
    names: List[str] = [n for n in source_names if n]
    if not names:
        return "all your sources"
    return f"the selected sources ({', '.join(names)})"


def build_no_results_prompt(query: str, source_names: Iterable[str] = ()) -> str:
    return NO_RESULTS_PROMPT.format(query=query, source_context=describe_sources(source_names))
