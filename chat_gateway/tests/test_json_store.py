import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from chat_gateway.domain.exceptions import ValidationError
from chat_gateway.domain.models import CachedCompletion, ConversationTurn, ProjectSnapshot
from chat_gateway.gateway.cache import make_cache_key
from chat_gateway.infrastructure.storage.documents import (
    JsonCredentialStore,
    JsonModelRegistry,
    JsonProjectStore,
)
from chat_gateway.infrastructure.storage.json_store import JsonHistoryStore, JsonResponseCacheStore
from chat_gateway.providers.registry import DEFAULT_MODEL, GEMINI


def test_history_store_append_and_list():
    with tempfile.TemporaryDirectory() as d:
        store = JsonHistoryStore(root=Path(d) / ".storage")
        now = datetime.now(timezone.utc)
        store.append("p1", ConversationTurn(role="user", text="hi", created_at=now))
        store.append("p1", ConversationTurn(role="assistant", text="hello", created_at=now))
        turns = store.list("p1")
        assert [t.role for t in turns] == ["user", "assistant"]
        assert turns[1].text == "hello"
        assert store.list("other") == []


def test_history_store_skips_corrupt_lines():
    with tempfile.TemporaryDirectory() as d:
        root = Path(d) / ".storage"
        store = JsonHistoryStore(root=root)
        store.append("p1", ConversationTurn(role="user", text="hi", created_at=datetime.now(timezone.utc)))
        with (root / "history" / "p1" / "turns.jsonl").open("a", encoding="utf-8") as f:
            f.write('null\n[]\n"x"\n3\n{"role": "user"}\n{"role": "user", "text": "cut\n')
        assert [t.text for t in store.list("p1")] == ["hi"]


def test_history_store_orders_chronologically():
    with tempfile.TemporaryDirectory() as d:
        store = JsonHistoryStore(root=Path(d) / ".storage")
        now = datetime.now(timezone.utc)
        store.append("p1", ConversationTurn(role="user", text="second", created_at=now))
        store.append("p1", ConversationTurn(role="user", text="first", created_at=now - timedelta(seconds=5)))
        assert [t.text for t in store.list("p1")] == ["first", "second"]


def test_history_store_clear_is_scoped():
    with tempfile.TemporaryDirectory() as d:
        store = JsonHistoryStore(root=Path(d) / ".storage")
        now = datetime.now(timezone.utc)
        store.append("p1", ConversationTurn(role="user", text="a", created_at=now))
        store.append("p2", ConversationTurn(role="user", text="b", created_at=now))
        store.clear("p1")
        store.clear("missing")
        assert store.list("p1") == []
        assert [t.text for t in store.list("p2")] == ["b"]


def test_history_store_rejects_path_like_ids():
    with tempfile.TemporaryDirectory() as d:
        store = JsonHistoryStore(root=Path(d) / ".storage")
        with pytest.raises(ValidationError):
            store.list("../escape")


def test_response_cache_store_roundtrip_and_scoping():
    with tempfile.TemporaryDirectory() as d:
        store = JsonResponseCacheStore(root=Path(d) / ".storage")
        completion = CachedCompletion(
            id="gen-1",
            created_at=datetime.now(timezone.utc),
            reply_text="answer",
            finish_reason="stop",
        )
        k1 = make_cache_key("p1", "What's next?", "m1")
        k2 = make_cache_key("p2", "What's next?", "m1")
        store.put(k1, completion)
        store.put(k2, completion)
        assert store.find(k1).reply_text == "answer"
        assert store.find(make_cache_key("p1", "What's next?", "m2")) is None

        store.delete_conversation("p1")
        assert store.find(k1) is None
        assert store.find(k2).id == "gen-1"


def test_credential_store_save_and_fallback():
    with tempfile.TemporaryDirectory() as d:
        assert JsonCredentialStore(root=d).get() is None
        assert JsonCredentialStore(root=d, fallback="env-key-123456").get() == "env-key-123456"
        store = JsonCredentialStore(root=d)
        store.save("sk-or-1234567890")
        assert store.get() == "sk-or-1234567890"
        with pytest.raises(ValidationError):
            store.save("short")


def test_model_registry_defaults_and_switch():
    with tempfile.TemporaryDirectory() as d:
        registry = JsonModelRegistry(root=d)
        assert registry.active_model() == DEFAULT_MODEL
        registry.set_active_model(GEMINI.id)
        assert registry.active_model() == GEMINI
        with pytest.raises(ValidationError):
            registry.set_active_model("unknown/model")
        assert registry.active_model() == GEMINI


def test_model_registry_unknown_id_resolves_to_default():
    with tempfile.TemporaryDirectory() as d:
        (Path(d) / "model_config.json").write_text('{"model_id": "retired/model"}', encoding="utf-8")
        assert JsonModelRegistry(root=d).active_model() == DEFAULT_MODEL


def test_project_store_get_and_save():
    with tempfile.TemporaryDirectory() as d:
        store = JsonProjectStore(root=d)
        assert store.get("proj-42") is None
        store.save("proj-42", ProjectSnapshot(name="Pulse", description="Tracker", status="ACTIVE"))
        snap = store.get("proj-42")
        assert snap == ProjectSnapshot(name="Pulse", description="Tracker", status="ACTIVE")
