import logging
import tempfile
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from chat_gateway.domain.exceptions import (
    ApiError,
    MissingCredentialError,
    PersistenceError,
    ProjectNotFoundError,
    UpstreamError,
    UpstreamErrorKind,
    ValidationError,
)
from chat_gateway.domain.models import (
    CachedCompletion,
    ChatChoice,
    ChatMessage,
    ChatResult,
    ConversationTurn,
    ModelConfig,
    ProjectSnapshot,
)
from chat_gateway.gateway.cache import ResponseCache, VolatileCache, make_cache_key
from chat_gateway.gateway.context import ContextAggregator
from chat_gateway.gateway.orchestrator import ChatGateway
from chat_gateway.gateway.upstream import UpstreamCompletionClient
from chat_gateway.infrastructure.storage.documents import JsonCredentialStore, JsonProjectStore
from chat_gateway.infrastructure.storage.json_store import JsonHistoryStore, JsonResponseCacheStore


M1 = ModelConfig(id="m1", name="M1", description="test model")


class FakeProvider:
    name = "fake"

    def __init__(self, reply="done", error=None):
        self.reply = reply
        self.error = error
        self.requests = []

    def chat(self, req):
        self.requests.append(req)
        if self.error is not None:
            raise self.error
        msg = ChatMessage(role="assistant", content=self.reply)
        return ChatResult(
            model=req.model,
            choices=[ChatChoice(index=0, message=msg, finish_reason="stop")],
            id=f"gen-{len(self.requests)}",
            created=1700000000,
        )


class FixedModels:
    def active_model(self):
        return M1


class BrokenDurable(JsonResponseCacheStore):
    def put(self, key, completion):
        raise PersistenceError(code="STORE_WRITE_ERROR", message="disk full")


class BrokenHistory(JsonHistoryStore):
    def append(self, conversation_id, turn):
        raise PersistenceError(code="STORE_WRITE_ERROR", message="disk full")


class Env:
    def __init__(self, root, provider, credential="sk-test-credential", durable=None, history=None):
        self.history = history or JsonHistoryStore(root=root)
        self.projects = JsonProjectStore(root=root)
        self.credentials = JsonCredentialStore(root=root)
        if credential:
            self.credentials.save(credential)
        self.durable = durable or JsonResponseCacheStore(root=root)
        self.cache = ResponseCache(self.durable, VolatileCache(capacity=16))
        self.provider = provider
        self.gateway = ChatGateway(
            aggregator=ContextAggregator(
                credentials=self.credentials,
                history=self.history,
                models=FixedModels(),
                projects=self.projects,
            ),
            cache=self.cache,
            upstream=UpstreamCompletionClient(provider, temperature=0.7, max_tokens=1000),
            history=self.history,
        )

    def seed_project(self, project_id):
        self.projects.save(project_id, ProjectSnapshot(name="Pulse", description="Tracker", status="ACTIVE"))

    def seed_turns(self, conversation_id, n):
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        for i in range(n):
            self.history.append(
                conversation_id,
                ConversationTurn(
                    role="user" if i % 2 == 0 else "assistant",
                    text=f"turn-{i}",
                    created_at=base + timedelta(minutes=i),
                ),
            )


@pytest.fixture
def root():
    with tempfile.TemporaryDirectory() as d:
        yield Path(d) / ".storage"


def test_first_message_calls_upstream_with_last_ten_turns(root):
    env = Env(root, FakeProvider(reply="Ship the beta."))
    env.seed_project("proj-42")
    env.seed_turns("proj-42", 12)

    result = env.gateway.send_message("proj-42", "What's next?")

    assert result.reply_text == "Ship the beta."
    assert len(env.provider.requests) == 1
    req = env.provider.requests[0]
    assert req.model == "m1"
    assert req.credential == "sk-test-credential"
    assert req.messages[0].role == "system"
    assert 'project "Pulse"' in req.messages[0].content
    assert "Current Status: ACTIVE" in req.messages[0].content
    assert [m.content for m in req.messages[1:-1]] == [f"turn-{i}" for i in range(2, 12)]
    assert (req.messages[-1].role, req.messages[-1].content) == ("user", "What's next?")

    turns = env.gateway.get_history("proj-42")
    assert len(turns) == 14
    assert [(t.role, t.text) for t in turns[-2:]] == [("user", "What's next?"), ("assistant", "Ship the beta.")]

    key = make_cache_key("proj-42", "What's next?", "m1")
    assert key in env.cache.volatile
    assert env.durable.find(key).reply_text == "Ship the beta."


def test_repeated_message_is_served_from_cache_without_new_turns(root):
    env = Env(root, FakeProvider())
    env.seed_project("p1")
    first = env.gateway.send_message("p1", "status?")
    second = env.gateway.send_message("p1", "  status?  ")
    assert second == first
    assert len(env.provider.requests) == 1
    assert len(env.gateway.get_history("p1")) == 2


def test_durable_hit_skips_upstream_and_promotes(root):
    env = Env(root, FakeProvider())
    env.seed_project("p1")
    key = make_cache_key("p1", "What's next?", "m1")
    env.durable.put(
        key,
        CachedCompletion(id="gen-old", created_at=datetime.now(timezone.utc), reply_text="cached answer"),
    )

    result = env.gateway.send_message("p1", "What's next?")

    assert result.reply_text == "cached answer"
    assert env.provider.requests == []
    assert key in env.cache.volatile
    assert env.gateway.get_history("p1") == []


def test_missing_credential_fails_before_any_upstream_call(root):
    env = Env(root, FakeProvider(), credential=None)
    env.seed_project("p1")
    with pytest.raises(MissingCredentialError):
        env.gateway.send_message("p1", "hi")
    assert env.provider.requests == []


def test_unknown_project_fails(root):
    env = Env(root, FakeProvider())
    with pytest.raises(ProjectNotFoundError):
        env.gateway.send_message("ghost", "hi")
    assert env.provider.requests == []


def test_empty_message_is_rejected(root):
    env = Env(root, FakeProvider())
    env.seed_project("p1")
    with pytest.raises(ValidationError):
        env.gateway.send_message("p1", "   ")


def test_durable_write_failure_does_not_fail_call(root):
    env = Env(root, FakeProvider(reply="answer"), durable=BrokenDurable(root=root))
    env.seed_project("p1")
    result = env.gateway.send_message("p1", "hi")
    assert result.reply_text == "answer"
    assert make_cache_key("p1", "hi", "m1") in env.cache.volatile
    assert len(env.gateway.get_history("p1")) == 2


def test_history_write_failure_does_not_fail_call(root):
    env = Env(root, FakeProvider(reply="answer"), history=BrokenHistory(root=root))
    env.seed_project("p1")
    result = env.gateway.send_message("p1", "hi")
    assert result.reply_text == "answer"
    key = make_cache_key("p1", "hi", "m1")
    assert key in env.cache.volatile
    assert env.durable.find(key).reply_text == "answer"
    assert env.gateway.get_history("p1") == []


def test_cache_hit_events_carry_trace_id(root, caplog):
    caplog.set_level(logging.INFO, logger="chat_gateway")
    env = Env(root, FakeProvider())
    env.seed_project("p1")
    env.gateway.send_message("p1", "status?")
    env.gateway.send_message("p1", "status?")

    hits = [r for r in caplog.records if r.getMessage() == "Cache hit"]
    assert [r.extra["tier"] for r in hits] == ["volatile"]
    done = [r for r in caplog.records if r.getMessage() == "Completed from cache"]
    assert hits[0].extra["trace_id"] == done[0].extra["trace_id"]
    assert hits[0].extra["trace_id"].startswith("tr-")


def test_upstream_failure_is_classified_and_not_persisted(root):
    error = ApiError(code="API_ERROR", message="HTTP 401: invalid key", http_status=401)
    env = Env(root, FakeProvider(error=error))
    env.seed_project("p1")
    with pytest.raises(UpstreamError) as exc:
        env.gateway.send_message("p1", "hi")
    assert exc.value.kind == UpstreamErrorKind.AUTH_FAILED
    assert exc.value.__cause__ is error
    assert env.gateway.get_history("p1") == []
    assert make_cache_key("p1", "hi", "m1") not in env.cache.volatile


def test_clear_history_is_scoped_to_conversation(root):
    env = Env(root, FakeProvider())
    env.seed_project("P1")
    env.seed_project("P2")
    env.gateway.send_message("P1", "q")
    env.gateway.send_message("P2", "q")

    env.gateway.clear_history("P1")

    k1 = make_cache_key("P1", "q", "m1")
    k2 = make_cache_key("P2", "q", "m1")
    assert env.gateway.get_history("P1") == []
    assert env.durable.find(k1) is None and k1 not in env.cache.volatile
    assert len(env.gateway.get_history("P2")) == 2
    assert env.durable.find(k2) is not None and k2 in env.cache.volatile

    env.gateway.send_message("P1", "q")
    assert len(env.provider.requests) == 3


def test_concurrent_identical_requests_share_one_upstream_call(root):
    started = threading.Event()
    release = threading.Event()

    class SlowProvider(FakeProvider):
        def chat(self, req):
            started.set()
            release.wait(timeout=5)
            return super().chat(req)

    env = Env(root, SlowProvider(reply="once"))
    env.seed_project("p1")
    results = []

    def call():
        results.append(env.gateway.send_message("p1", "same question"))

    t1 = threading.Thread(target=call)
    t1.start()
    assert started.wait(timeout=5)
    t2 = threading.Thread(target=call)
    t2.start()
    release.set()
    t1.join(timeout=5)
    t2.join(timeout=5)

    assert len(env.provider.requests) == 1
    assert [r.reply_text for r in results] == ["once", "once"]
    assert len(env.gateway.get_history("p1")) == 2
