"""两级响应缓存。

- 易失层：进程内有界 LRU（VolatileCache），线程安全。
- 持久层：DurableCacheStore（默认 JsonResponseCacheStore），按三元组查询。

读：先易失层，再持久层；持久层命中后立即提升到易失层。
写：先持久层，再易失层。持久层失败由调用方决定是否吞掉（见 ChatGateway）。
缓存条目没有过期时间，只在清空会话历史时按会话失效。
"""

import logging
import re
import threading
from collections import OrderedDict
from typing import Any, Dict, Optional

from chat_gateway.domain.models import CacheKey, CachedCompletion
from chat_gateway.domain.stores import DurableCacheStore
from chat_gateway.infrastructure.logging.logger import log_event


_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """去掉首尾空白并把内部连续空白压成一个空格，大小写保留。"""
    return _WHITESPACE.sub(" ", text or "").strip()


def make_cache_key(conversation_id: str, user_text: str, model_id: str) -> CacheKey:
    return CacheKey(
        conversation_id=conversation_id,
        user_text=normalize_text(user_text),
        model_id=model_id,
    )


class VolatileCache:
    """容量受限的 LRU 映射，满时淘汰最久未访问的条目。"""

    def __init__(self, capacity: int = 256):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._items: "OrderedDict[CacheKey, CachedCompletion]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: CacheKey) -> Optional[CachedCompletion]:
        with self._lock:
            value = self._items.get(key)
            if value is not None:
                self._items.move_to_end(key)
            return value

    def put(self, key: CacheKey, value: CachedCompletion) -> None:
        with self._lock:
            self._items[key] = value
            self._items.move_to_end(key)
            while len(self._items) > self._capacity:
                self._items.popitem(last=False)

    def purge_conversation(self, conversation_id: str) -> int:
        with self._lock:
            stale = [k for k in self._items if k.conversation_id == conversation_id]
            for k in stale:
                del self._items[k]
            return len(stale)

    def __contains__(self, key: CacheKey) -> bool:
        with self._lock:
            return key in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class ResponseCache:
    def __init__(self, durable: DurableCacheStore, volatile: Optional[VolatileCache] = None):
        self._durable = durable
        self._volatile = volatile or VolatileCache()

    @property
    def volatile(self) -> VolatileCache:
        return self._volatile

    def lookup(self, key: CacheKey, log_ctx: Optional[Dict[str, Any]] = None) -> Optional[CachedCompletion]:
        """返回缓存结果；两层都未命中时返回 None。

        持久层读取失败按未命中处理。log_ctx 为调用级日志上下文（trace_id 等）。
        """
        log_ctx = log_ctx or {"conversation_id": key.conversation_id}
        hit = self._volatile.get(key)
        if hit is not None:
            log_event(logging.INFO, "Cache hit", log_ctx, tier="volatile")
            return hit
        try:
            hit = self._durable.find(key)
        except Exception as e:
            log_event(
                logging.WARNING,
                "Durable cache lookup failed",
                log_ctx,
                error=str(e),
            )
            return None
        if hit is None:
            return None
        self._volatile.put(key, hit)
        log_event(logging.INFO, "Cache hit", log_ctx, tier="durable")
        return hit

    def store_durable(self, key: CacheKey, completion: CachedCompletion) -> None:
        self._durable.put(key, completion)

    def store_volatile(self, key: CacheKey, completion: CachedCompletion) -> None:
        self._volatile.put(key, completion)

    def store(self, key: CacheKey, completion: CachedCompletion) -> None:
        """先写持久层再写易失层；持久层失败时异常向上抛出，易失层不写。"""
        self.store_durable(key, completion)
        self.store_volatile(key, completion)

    def invalidate_conversation(self, conversation_id: str) -> None:
        """清理某会话的全部缓存条目：易失层尽力清理，持久层失败则抛出。"""
        purged = self._volatile.purge_conversation(conversation_id)
        self._durable.delete_conversation(conversation_id)
        log_event(
            logging.INFO,
            "Cache invalidated",
            {"conversation_id": conversation_id},
            volatile_purged=purged,
        )
