import json
import logging

from support_chat.logging_config import ConversationLoggerAdapter, JSONFormatter


def make_record(context=None):
    record = logging.LogRecord("support_chat.test", logging.INFO, __file__, 1, "hello %s", ("there",), None)
    if context is not None:
        record.context = context
    return record


class TestJSONFormatter:
    def test_basic_fields(self):
        entry = json.loads(JSONFormatter().format(make_record()))

        assert entry["message"] == "hello there"
        assert entry["level"] == "INFO"
        assert entry["logger"] == "support_chat.test"
        assert "context" not in entry

    def test_conversation_id_is_lifted(self):
        entry = json.loads(JSONFormatter().format(make_record({"conversation_id": "abc", "marked": 2})))

        assert entry["conversation_id"] == "abc"
        assert entry["context"] == {"marked": 2}


class TestConversationLoggerAdapter:
    def test_binds_conversation_and_merges_call_context(self):
        adapter = ConversationLoggerAdapter(logging.getLogger("support_chat.test"), "abc", reader_role="staff")

        msg, kwargs = adapter.process("written", {"context": {"marked": 3, "reader_role": "customer"}})

        assert msg == "written"
        assert kwargs["extra"]["context"] == {"conversation_id": "abc", "reader_role": "customer", "marked": 3}

    def test_without_call_context(self):
        adapter = ConversationLoggerAdapter(logging.getLogger("support_chat.test"), 42)

        _, kwargs = adapter.process("closed", {})

        assert kwargs["extra"]["context"] == {"conversation_id": "42"}
