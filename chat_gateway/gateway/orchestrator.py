"""网关编排：send_message / clear_history / get_history。

一次 send_message 的状态流转：

    Idle -> Aggregating -> CacheCheck -> HitReturn            -> Done
                                      +-> Dispatching -> PersistAndCache -> Done
    Aggregating / Dispatching 出错 -> Failed

- 聚合阶段的 MissingCredentialError / ProjectNotFoundError 直接抛出，不发起任何网络调用。
- 缓存命中直接返回，不写历史（同一问题此前已记录过）。
- 上游失败经 classify 归类为 UpstreamError 后抛出，本层不重试。
- 上游成功后：先写用户消息再写助手消息，然后写持久缓存、易失缓存。
  历史与持久缓存写入失败只记日志，不影响返回；易失缓存总会写入。
- 同一 CacheKey 的并发请求只发一次上游调用，其余调用等待同一个 Future。
"""

import logging
import threading
import time
from concurrent.futures import Future
from datetime import datetime, timezone
from typing import Any, Dict, List
from uuid import uuid4

from chat_gateway.domain.exceptions import BusinessError, ValidationError
from chat_gateway.domain.models import CacheKey, CachedCompletion, CompletionResult, ConversationTurn, RequestContext
from chat_gateway.domain.stores import HistoryStore
from chat_gateway.gateway.cache import ResponseCache, make_cache_key
from chat_gateway.gateway.context import ContextAggregator
from chat_gateway.gateway.errors import classify
from chat_gateway.gateway.upstream import UpstreamCompletionClient
from chat_gateway.infrastructure.logging.logger import log_event
from chat_gateway.prompts import render_system_prompt


class ChatGateway:
    def __init__(
        self,
        aggregator: ContextAggregator,
        cache: ResponseCache,
        upstream: UpstreamCompletionClient,
        history: HistoryStore,
    ):
        self._aggregator = aggregator
        self._cache = cache
        self._upstream = upstream
        self._history = history
        self._inflight: Dict[CacheKey, "Future[CachedCompletion]"] = {}
        self._inflight_lock = threading.Lock()

    def send_message(self, conversation_id: str, text: str) -> CompletionResult:
        """发送一条用户消息并返回补全结果。

        Raises:
            ValidationError: 消息为空。
            MissingCredentialError / ProjectNotFoundError: 上下文无法组装。
            UpstreamError: 上游调用失败（已归类）。
        """
        start_time = time.time()
        log_ctx: Dict[str, Any] = {
            "trace_id": f"tr-{uuid4().hex}",
            "conversation_id": conversation_id,
        }
        if not text or not text.strip():
            raise ValidationError(code="EMPTY_MESSAGE", message="Message must not be empty")

        try:
            ctx = self._aggregator.aggregate(conversation_id, log_ctx)
        except BusinessError as e:
            log_event(logging.WARNING, "Context aggregation failed", log_ctx, code=e.code)
            raise

        key = make_cache_key(conversation_id, text, ctx.active_model.id)
        cached = self._cache.lookup(key, log_ctx)
        if cached is not None:
            log_event(
                logging.INFO,
                "Completed from cache",
                log_ctx,
                elapsed_seconds=round(time.time() - start_time, 2),
            )
            return cached

        completion = self._dispatch_once(key, ctx, text, log_ctx)
        log_event(
            logging.INFO,
            "Completed gateway call",
            log_ctx,
            elapsed_seconds=round(time.time() - start_time, 2),
            completion_id=completion.id,
        )
        return completion

    def clear_history(self, conversation_id: str) -> None:
        """清空会话历史，并使该会话的两级缓存失效。"""
        self._history.clear(conversation_id)
        self._cache.invalidate_conversation(conversation_id)
        log_event(logging.INFO, "Cleared history", {"conversation_id": conversation_id})

    def get_history(self, conversation_id: str) -> List[ConversationTurn]:
        """完整历史（不截断），按时间升序。"""
        return self._history.list(conversation_id)

    def close(self) -> None:
        self._aggregator.close()

    def _dispatch_once(
        self, key: CacheKey, ctx: RequestContext, text: str, log_ctx: Dict[str, Any]
    ) -> CachedCompletion:
        with self._inflight_lock:
            future = self._inflight.get(key)
            leader = future is None
            if leader:
                future = Future()
                self._inflight[key] = future
        if not leader:
            log_event(logging.INFO, "Joined in-flight request", log_ctx)
            return future.result()

        try:
            # 上一个 leader 可能在本次 lookup 之后才写入缓存
            completion = self._cache.volatile.get(key)
            if completion is None:
                completion = self._dispatch(key, ctx, text, log_ctx)
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(completion)
            return completion
        finally:
            with self._inflight_lock:
                self._inflight.pop(key, None)

    def _dispatch(
        self, key: CacheKey, ctx: RequestContext, text: str, log_ctx: Dict[str, Any]
    ) -> CachedCompletion:
        system_prompt = render_system_prompt(ctx.project)
        log_event(
            logging.INFO,
            "Dispatching upstream",
            log_ctx,
            provider=self._upstream.provider_name,
            model_id=ctx.active_model.id,
            history_turns=len(ctx.history_window),
        )
        try:
            completion = self._upstream.complete(
                system_prompt,
                ctx.history_window,
                text,
                ctx.active_model,
                ctx.credential,
            )
        except Exception as e:
            err = classify(e)
            log_event(
                logging.WARNING,
                "Upstream call failed",
                log_ctx,
                kind=err.kind.value,
                cause=str(e),
            )
            raise err from e

        self._persist_and_cache(key, text, completion, log_ctx)
        return completion

    def _persist_and_cache(
        self, key: CacheKey, text: str, completion: CachedCompletion, log_ctx: Dict[str, Any]
    ) -> None:
        user_at = datetime.now(timezone.utc)
        assistant_at = max(user_at, datetime.now(timezone.utc))
        try:
            self._history.append(key.conversation_id, ConversationTurn(role="user", text=text, created_at=user_at))
            self._history.append(
                key.conversation_id,
                ConversationTurn(role="assistant", text=completion.reply_text, created_at=assistant_at),
            )
            log_event(logging.INFO, "Stored conversation turns", log_ctx)
        except Exception as e:
            log_event(logging.WARNING, "Failed to persist conversation turns", log_ctx, error=str(e))

        try:
            self._cache.store_durable(key, completion)
        except Exception as e:
            log_event(logging.WARNING, "Failed to write durable cache", log_ctx, error=str(e))
        self._cache.store_volatile(key, completion)
