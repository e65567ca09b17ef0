"""
Model output parsing and repair.

parse_model_output never raises: a structured {"answer", "followups"}
object is used when one can be sliced out of the raw text, otherwise the
raw text is cleaned up and used as the answer.
"""
import json
import logging
import re
from dataclasses import dataclass, field
from typing import List

logger = logging.getLogger(__name__)

MAX_FOLLOWUPS = 3

_FILLER_OPENERS = re.compile(
    r'^(?:'
    r'based on (?:the |this )?(?:provided |given )?(?:context|sources|documents|information),?'
    r'|according to the (?:provided )?(?:context|sources|documents),?'
    r'|well,|so,|basically,|in essence,|to summarize,'
    r')\s*',
    re.IGNORECASE,
)

_FILLER_PHRASES = re.compile(r'\s+(?:as mentioned earlier|as i mentioned|like i said),?\s+', re.IGNORECASE)

_STOP_WORDS = {'what', 'how', 'why', 'when', 'where', 'is', 'are', 'the', 'a', 'an', 'do', 'does', 'i', 'to'}

_TERMINAL = ('.', '!', '?', '"', "'", ')', ']', ':')


@dataclass
class ParsedAnswer:
    answer: str
    followups: List[str] = field(default_factory=list)
    structured: bool = False


def clean_answer_text(text: str) -> str:
    """
    Tidy free-form model text.

    Drops filler openers, collapses repeated whitespace, capitalizes
    sentence starts and makes sure the text ends with punctuation.
    """
    text = (text or '').strip()
    if not text:
        return ''

    text = _FILLER_OPENERS.sub('', text)
    text = _FILLER_PHRASES.sub(' ', text)
    text = re.sub(r'[ \t]+', ' ', text)
    text = re.sub(r' *\n *', '\n', text)
    text = re.sub(r'\n{3,}', '\n\n', text).strip()
    if not text:
        return ''

    text = text[0].upper() + text[1:]
    text = re.sub(r'([.!?]\s+)([a-z])', lambda m: m.group(1) + m.group(2).upper(), text)

    if not text.endswith(_TERMINAL):
        text += '.'
    return text


def _normalize_followups(value) -> List[str]:
    if not isinstance(value, list):
        return []
    followups = []
    for item in value:
        if isinstance(item, str) and item.strip():
            followups.append(item.strip())
    return followups[:MAX_FOLLOWUPS]


def parse_model_output(raw: str) -> ParsedAnswer:
    """
    Slice from the first "{" to the last "}" and parse it as JSON.

    Falls back to cleaned raw text with no follow-ups when there are no
    braces or the slice is not a JSON object.
    """
    raw = raw or ''
    start = raw.find('{')
    end = raw.rfind('}')

    if start != -1 and end > start:
        try:
            data = json.loads(raw[start:end + 1])
        except json.JSONDecodeError as e:
            logger.warning(f"Model output is not valid JSON, repairing: {e}")
        else:
            if isinstance(data, dict):
                answer = data.get('answer')
                answer = clean_answer_text(answer) if isinstance(answer, str) else ''
                return ParsedAnswer(
                    answer=answer,
                    followups=_normalize_followups(data.get('followups')),
                    structured=True,
                )
            logger.warning("Model output JSON is not an object, repairing")

    return ParsedAnswer(answer=clean_answer_text(raw), followups=[], structured=False)


def extract_main_topic(query: str) -> str:
    """First two non-stop-words of the query, lowercased."""
    words = [w.strip('?!.,;:"\'') for w in query.lower().split()]
    topic = [w for w in words if w and w not in _STOP_WORDS][:2]
    return ' '.join(topic) or 'this topic'


def heuristic_followups(query: str) -> List[str]:
    """Deterministic follow-ups keyed on the question word."""
    lowered = (query or '').lower()
    topic = extract_main_topic(query or '')

    if re.search(r'\bhow\b', lowered):
        return [
            f"What are the steps for {topic}?",
            "What tools are needed for this process?",
            "What are common challenges with this approach?",
        ]
    if re.search(r'\bwhat\b', lowered):
        return [
            f"How does {topic} work?",
            "What are the benefits and drawbacks?",
            "Show me examples from the sources",
        ]
    if re.search(r'\bwhy\b', lowered):
        return [
            f"What are alternatives to {topic}?",
            "What evidence supports this?",
            "How does this compare to other approaches?",
        ]
    if re.search(r'\bwhen\b', lowered):
        return [
            f"What led up to {topic}?",
            "What happened afterwards?",
            "Is there a timeline in the sources?",
        ]
    return [
        "Tell me more about this topic",
        "What related information is available?",
        "How can I apply this knowledge?",
    ]
