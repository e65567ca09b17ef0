"""
Tests for query stream events.
"""
import json

from apps.rag.events import QueryEvent, QueryEventType


class TestQueryEvent:
    """Tests for QueryEvent serialization."""

    def test_to_dict_flattens_data(self):
        event = QueryEvent.token("Hi", "u1")

        assert event.to_dict() == {"type": "token", "content": "Hi", "userMessageId": "u1"}

    def test_sse_frame(self):
        """Should produce an event line, a data line and a blank line."""
        frame = QueryEvent.searching().to_sse()

        assert frame == 'event: searching\ndata: {"type": "searching"}\n\n'

    def test_complete_payload(self):
        event = QueryEvent.complete({"id": "m1"}, [{"index": 1}], ["Next?"])

        assert json.loads(event.to_json()) == {
            "type": "complete",
            "chatMessage": {"id": "m1"},
            "citations": [{"index": 1}],
            "followups": ["Next?"],
        }

    def test_terminal_events(self):
        assert QueryEvent.complete({}, [], []).is_terminal
        assert QueryEvent.error("x", "INTERNAL_ERROR").is_terminal
        assert not QueryEvent.generating([]).is_terminal
        assert QueryEvent.thinking().type == QueryEventType.THINKING
