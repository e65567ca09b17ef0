"""
Query Stream Event Schema

Lifecycle events emitted while a query is processed. The same events are
written as Server-Sent Events frames on the HTTP transport and as JSON
messages on the WebSocket transport.

Order per query:
    searching -> generating -> token* -> complete     (RAG)
    thinking -> token* -> complete                    (general chat)
    ... -> error                                      (any failure)
Exactly one of complete/error ends the sequence.
"""
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List


class QueryEventType(str, Enum):
    SEARCHING = "searching"
    THINKING = "thinking"
    GENERATING = "generating"
    TOKEN = "token"
    COMPLETE = "complete"
    ERROR = "error"


TERMINAL_EVENTS = {QueryEventType.COMPLETE, QueryEventType.ERROR}


@dataclass
class QueryEvent:
    type: QueryEventType
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS

    def to_dict(self) -> dict:
        return {"type": self.type.value, **self.data}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    def to_sse(self) -> str:
        """One SSE frame: event name line, data line, blank line."""
        return f"event: {self.type.value}\ndata: {self.to_json()}\n\n"

    @classmethod
    def searching(cls) -> 'QueryEvent':
        return cls(QueryEventType.SEARCHING)

    @classmethod
    def thinking(cls) -> 'QueryEvent':
        return cls(QueryEventType.THINKING)

    @classmethod
    def generating(cls, citations: List[dict]) -> 'QueryEvent':
        return cls(QueryEventType.GENERATING, {"citations": citations})

    @classmethod
    def token(cls, content: str, user_message_id: str) -> 'QueryEvent':
        return cls(QueryEventType.TOKEN, {"content": content, "userMessageId": user_message_id})

    @classmethod
    def complete(cls, chat_message: dict, citations: List[dict], followups: List[str]) -> 'QueryEvent':
        return cls(QueryEventType.COMPLETE, {
            "chatMessage": chat_message,
            "citations": citations,
            "followups": followups,
        })

    @classmethod
    def error(cls, message: str, code: str) -> 'QueryEvent':
        return cls(QueryEventType.ERROR, {"error": message, "code": code})
