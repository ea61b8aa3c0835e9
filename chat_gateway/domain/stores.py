from typing import List, Optional, Protocol

from .models import CacheKey, CachedCompletion, ConversationTurn, ModelConfig, ProjectSnapshot


class CredentialStore(Protocol):
    def get(self) -> Optional[str]:
        ...


class HistoryStore(Protocol):
    def append(self, conversation_id: str, turn: ConversationTurn) -> None:
        ...

    def list(self, conversation_id: str) -> List[ConversationTurn]:
        ...

    def clear(self, conversation_id: str) -> None:
        ...


class ModelRegistry(Protocol):
    def active_model(self) -> ModelConfig:
        ...


class ProjectMetadataProvider(Protocol):
    def get(self, project_id: str) -> Optional[ProjectSnapshot]:
        ...


class DurableCacheStore(Protocol):
    """持久化缓存层，按 (conversation_id, user_text, model_id) 三元组查询。"""

    def find(self, key: CacheKey) -> Optional[CachedCompletion]:
        ...

    def put(self, key: CacheKey, completion: CachedCompletion) -> None:
        ...

    def delete_conversation(self, conversation_id: str) -> None:
        ...
