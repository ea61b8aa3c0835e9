import hashlib
import json
import os
import shutil
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from chat_gateway.config.settings import settings
from chat_gateway.domain.exceptions import PersistenceError, ValidationError
from chat_gateway.domain.models import CacheKey, CachedCompletion, ConversationTurn
from chat_gateway.domain.stores import DurableCacheStore, HistoryStore


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_iso(value: Any) -> datetime:
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def safe_segment(conversation_id: str) -> str:
    """会话 ID 直接用作目录名，拒绝可能逃出存储根目录的值。"""
    if (
        not conversation_id
        or conversation_id in {".", ".."}
        or "/" in conversation_id
        or "\\" in conversation_id
        or "\x00" in conversation_id
    ):
        raise ValidationError(code="INVALID_CONVERSATION_ID", message=repr(conversation_id))
    return conversation_id


def write_json_atomic(path: Path, obj: Dict[str, Any]) -> None:
    tmp_path = path.parent / f"{path.stem}.{uuid4().hex}.json.tmp"
    try:
        tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp_path, path)
    except OSError as e:
        raise PersistenceError(code="STORE_WRITE_ERROR", message=str(e))


class JsonHistoryStore(HistoryStore):
    """按会话追加写入 turns.jsonl 的历史存储。"""

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._history_root = self._root / "history"
        self._history_root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def append(self, conversation_id: str, turn: ConversationTurn) -> None:
        cdir = self._history_root / safe_segment(conversation_id)
        line = json.dumps(
            {"role": turn.role, "text": turn.text, "created_at": _iso(turn.created_at)},
            ensure_ascii=False,
        )
        try:
            with self._lock:
                cdir.mkdir(parents=True, exist_ok=True)
                with (cdir / "turns.jsonl").open("a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except OSError as e:
            raise PersistenceError(code="STORE_WRITE_ERROR", message=str(e))

    def list(self, conversation_id: str) -> List[ConversationTurn]:
        path = self._history_root / safe_segment(conversation_id) / "turns.jsonl"
        items: List[ConversationTurn] = []
        if not path.exists():
            return items
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            raise PersistenceError(code="STORE_READ_ERROR", message=str(e))
        for line in lines:
            try:
                data = json.loads(line)
                if not isinstance(data, dict):
                    continue
                items.append(
                    ConversationTurn(
                        role=data["role"],
                        text=data.get("text") or "",
                        created_at=_parse_iso(data["created_at"]),
                    )
                )
            except (ValueError, KeyError):
                # 半行写入等损坏记录直接跳过
                continue
        # 稳定排序：同一时间戳保持写入顺序
        items.sort(key=lambda t: t.created_at)
        return items

    def clear(self, conversation_id: str) -> None:
        cdir = self._history_root / safe_segment(conversation_id)
        try:
            with self._lock:
                if cdir.exists():
                    shutil.rmtree(cdir)
        except OSError as e:
            raise PersistenceError(code="STORE_DELETE_ERROR", message=str(e))


class JsonResponseCacheStore(DurableCacheStore):
    """持久化缓存层。

    每个会话一个目录，条目文件名为 (user_text, model_id) 的 sha256，
    因此按会话清理只需删除目录。
    """

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._cache_root = self._root / "ai_responses"
        self._cache_root.mkdir(parents=True, exist_ok=True)

    def find(self, key: CacheKey) -> Optional[CachedCompletion]:
        path = self._entry_path(key)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise PersistenceError(code="STORE_READ_ERROR", message=str(e))
        if (
            data.get("conversation_id") != key.conversation_id
            or data.get("message") != key.user_text
            or data.get("model_id") != key.model_id
        ):
            return None
        return CachedCompletion(
            id=data.get("id") or "",
            created_at=_parse_iso(data["created_at"]),
            reply_text=data.get("response") or "",
            finish_reason=data.get("finish_reason") or "stop",
        )

    def put(self, key: CacheKey, completion: CachedCompletion) -> None:
        path = self._entry_path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(code="STORE_WRITE_ERROR", message=str(e))
        write_json_atomic(
            path,
            {
                "conversation_id": key.conversation_id,
                "message": key.user_text,
                "model_id": key.model_id,
                "id": completion.id,
                "response": completion.reply_text,
                "finish_reason": completion.finish_reason,
                "created_at": _iso(completion.created_at),
                "stored_at": _iso(datetime.now(timezone.utc)),
            },
        )

    def delete_conversation(self, conversation_id: str) -> None:
        cdir = self._cache_root / safe_segment(conversation_id)
        if not cdir.exists():
            return
        try:
            shutil.rmtree(cdir)
        except OSError as e:
            raise PersistenceError(code="STORE_DELETE_ERROR", message=str(e))

    def _entry_path(self, key: CacheKey) -> Path:
        digest = hashlib.sha256(f"{key.user_text}\x00{key.model_id}".encode("utf-8")).hexdigest()
        return self._cache_root / safe_segment(key.conversation_id) / f"{digest}.json"
