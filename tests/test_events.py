"""Tests for chat event serialization, warnings and conversation state."""

from aide.conversation import ConversationRegistry
from aide.events import ApprovalRequestEvent, DoneEvent, MemoryContextEvent, MemorySnippet, WarningsEvent
from aide.warning import SINGLE_CHAT_PROVIDER, ConfigWarning, WarningCollector


class TestEventDicts:
    def test_done(self):
        assert DoneEvent("c1").to_dict() == {"type": "done", "conversation_id": "c1"}

    def test_approval_request(self):
        event = ApprovalRequestEvent(id="a1", skill_name="write_file", arguments={"path": "/x"},
                                     permission_level="mutating")
        assert event.to_dict() == {
            "type": "approval_request",
            "id": "a1",
            "skill_name": "write_file",
            "arguments": {"path": "/x"},
            "permission_level": "mutating",
        }

    def test_memory_context_nested(self):
        event = MemoryContextEvent([MemorySnippet("blue", 0.9, "preference")])
        assert event.to_dict()["memories"] == [{"text": "blue", "score": 0.9, "category": "preference"}]

    def test_warnings(self):
        event = WarningsEvent([ConfigWarning("x", "msg", "info")])
        assert event.to_dict() == {
            "type": "warnings",
            "warnings": [{"code": "x", "message": "msg", "severity": "info"}],
        }


class TestWarningCollector:
    def test_one_per_code(self):
        collector = WarningCollector()
        collector.add(ConfigWarning(SINGLE_CHAT_PROVIDER, "first"))
        collector.add(ConfigWarning(SINGLE_CHAT_PROVIDER, "second"))
        assert len(collector) == 1
        assert collector.current()[0].message == "second"

    def test_clear(self):
        collector = WarningCollector()
        collector.add(ConfigWarning("a", "x"))
        collector.clear("a")
        collector.clear("never-added")
        assert collector.current() == []


class TestConversationRegistry:
    def test_get_creates_once(self):
        registry = ConversationRegistry()
        state = registry.get("c1")
        assert registry.get("c1") is state
        assert "c1" in registry
        assert len(registry) == 1

    def test_peek_does_not_create(self):
        registry = ConversationRegistry()
        assert registry.peek("c1") is None
        assert len(registry) == 0

    def test_separate_locks(self):
        registry = ConversationRegistry()
        assert registry.get("a").lock is not registry.get("b").lock

    def test_remove(self):
        registry = ConversationRegistry()
        registry.get("c1").approved_skills.add("remember")
        assert registry.remove("c1") is True
        assert registry.remove("c1") is False
        assert "remember" not in registry.get("c1").approved_skills
