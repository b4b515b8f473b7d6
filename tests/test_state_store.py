import json
import threading

import pytest

from shopbot.models import ConversationState
from shopbot.state_store import ConversationStateStore


def test_get_or_create_builds_default_state(store):
    state = store.get_or_create("c1")

    assert state.message_count == 0
    assert state.conversation_history == []
    assert state.preferences == {}
    assert state.last_intent is None
    assert state.stage == "greeting"
    assert "c1" in store


def test_get_unknown_returns_none(store):
    assert store.get("missing") is None


def test_duplicate_user_message_is_stored_once(store):
    store.update("c1", last_message="hi", last_intent="greeting", message_count=1)
    state = store.update("c1", last_message="hi", last_intent="greeting", message_count=2)

    assert [(m.role, m.content) for m in state.conversation_history] == [("user", "hi")]
    assert state.message_count == 2


def test_same_message_after_bot_reply_is_appended(store):
    store.update("c1", last_message="hi", message_count=1)
    store.add_bot_response("c1", "Hello! How can I help?")
    state = store.update("c1", last_message="hi", message_count=2)

    assert [m.role for m in state.conversation_history] == ["user", "assistant", "user"]


def test_update_recomputes_stage(store):
    state = store.update("c1", last_intent="checkout_help", last_message="pay?", message_count=1)
    assert state.stage == "greeting"

    state = store.update("c1", last_intent="checkout_help", last_message="card?", message_count=2)
    assert state.stage == "checkout"


def test_update_merges_untouched_fields(store):
    store.update("c1", preferences={"size": "M"}, message_count=1)
    state = store.update("c1", last_intent="price_inquiry", message_count=2)

    assert state.preferences == {"size": "M"}
    assert state.last_intent == "price_inquiry"


def test_stage_is_not_settable(store):
    with pytest.raises(ValueError):
        store.update("c1", stage="checkout")


def test_unknown_fields_rejected(store):
    with pytest.raises(ValueError):
        store.update("c1", mood="happy")


def test_message_count_never_decreases(store):
    store.update("c1", message_count=3)
    with pytest.raises(ValueError):
        store.update("c1", message_count=2)


def test_returned_state_is_a_copy(store):
    state = store.update("c1", last_message="hello", message_count=1)
    state.conversation_history.clear()

    assert len(store.get("c1").conversation_history) == 1


def test_updated_at_moves_forward(store):
    created = store.get_or_create("c1")
    state = store.update("c1", message_count=1)

    assert state.updated_at >= created.updated_at
    assert state.created_at == created.created_at


def test_remove(store):
    store.get_or_create("c1")

    assert store.remove("c1") is True
    assert store.remove("c1") is False
    assert store.get("c1") is None


def test_persistence_round_trip(tmp_path):
    path = tmp_path / "state.json"
    first = ConversationStateStore(path)
    first.update("c1", last_message="do you ship to Canada?", last_intent="shipping_inquiry", message_count=1)
    first.add_bot_response("c1", "Yes, we do.")

    reloaded = ConversationStateStore(path)
    state = reloaded.get("c1")

    assert state is not None
    assert state.last_intent == "shipping_inquiry"
    assert [m.role for m in state.conversation_history] == ["user", "assistant"]
    assert json.loads(path.read_text(encoding="utf-8"))["conversations"]["c1"]["message_count"] == 1


def test_corrupt_state_file_is_ignored(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{not json", encoding="utf-8")

    store = ConversationStateStore(path)

    assert len(store) == 0


def test_prunes_least_recently_updated():
    capped = ConversationStateStore(max_conversations=2)
    capped.put("old", ConversationState(updated_at=1.0))
    capped.put("mid", ConversationState(updated_at=2.0))
    capped.put("new", ConversationState(updated_at=3.0))

    assert capped.list_ids() == ["new", "mid"]
    assert capped.get("old") is None


@pytest.mark.parametrize("content", ["[]", '{"conversations": []}', '"text"'])
def test_state_file_with_wrong_shape_is_ignored(tmp_path, content):
    path = tmp_path / "state.json"
    path.write_text(content, encoding="utf-8")

    store = ConversationStateStore(path)

    assert len(store) == 0


def test_invalid_entries_are_skipped(tmp_path):
    path = tmp_path / "state.json"
    path.write_text(
        json.dumps(
            {
                "conversations": {
                    "bad": {"message_count": "lots"},
                    "scalar": 3,
                    "good": {"message_count": 2, "last_intent": "greeting"},
                }
            }
        ),
        encoding="utf-8",
    )

    store = ConversationStateStore(path)

    assert store.list_ids() == ["good"]
    assert store.get("good").message_count == 2


def test_undecodable_state_file_is_ignored(tmp_path):
    path = tmp_path / "state.json"
    path.write_bytes(b"\xff\xfe\x00garbage")

    store = ConversationStateStore(path)

    assert len(store) == 0


def test_concurrent_updates_for_distinct_ids(tmp_path):
    path = tmp_path / "state.json"
    store = ConversationStateStore(path)
    errors = []

    def worker(n):
        try:
            for i in range(25):
                store.update(f"c{n}-{i}", last_message=f"hello {i}", message_count=1)
                store.add_bot_response(f"c{n}-{i}", "hi")
        except Exception as exc:
            errors.append(repr(exc))

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len(store) == 200
    reloaded = ConversationStateStore(path)
    assert len(reloaded) == 200
    assert [m.role for m in reloaded.get("c3-7").conversation_history] == ["user", "assistant"]
