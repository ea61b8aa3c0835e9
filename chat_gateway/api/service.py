"""对外 API 服务模块。

create_gateway 是组合根：显式构造存储、缓存、上游客户端与聚合器并注入 ChatGateway，
生命周期由调用方持有，不使用模块级单例。

GatewayService 在 ChatGateway 之上提供返回 dict 的简化接口，以及管理端操作
（保存 API 密钥、切换当前模型、列出可用模型）。
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

from chat_gateway.config.settings import Settings, settings as default_settings
from chat_gateway.domain.models import CachedCompletion, ConversationTurn, ModelConfig, ProjectSnapshot
from chat_gateway.gateway.cache import ResponseCache, VolatileCache
from chat_gateway.gateway.context import ContextAggregator
from chat_gateway.gateway.orchestrator import ChatGateway
from chat_gateway.gateway.upstream import UpstreamCompletionClient
from chat_gateway.infrastructure.logging.logger import logger
from chat_gateway.infrastructure.storage.documents import (
    JsonCredentialStore,
    JsonModelRegistry,
    JsonProjectStore,
)
from chat_gateway.infrastructure.storage.json_store import JsonHistoryStore, JsonResponseCacheStore
from chat_gateway.providers import create_provider
from chat_gateway.providers.base import CompletionProvider
from chat_gateway.providers.registry import AVAILABLE_MODELS


class GatewayService:
    """ChatGateway 及管理端存储的组合。"""

    def __init__(
        self,
        gateway: ChatGateway,
        credentials: JsonCredentialStore,
        models: JsonModelRegistry,
        projects: JsonProjectStore,
    ):
        self.gateway = gateway
        self.credentials = credentials
        self.models = models
        self.projects = projects

    def chat(self, conversation_id: str, text: str) -> Dict[str, Any]:
        """发送消息。

        Returns:
            包含补全 id、回复文本、结束原因与创建时间的字典

        Raises:
            各种 domain.exceptions 中定义的异常
        """
        try:
            completion = self.gateway.send_message(conversation_id, text)
        except Exception as e:
            logger.error(f"Chat failed: {e}", extra={"extra": {
                "conversation_id": conversation_id,
                "error": str(e),
            }})
            raise
        return _completion_to_dict(completion)

    def history(self, conversation_id: str) -> List[Dict[str, Any]]:
        return [_turn_to_dict(t) for t in self.gateway.get_history(conversation_id)]

    def clear(self, conversation_id: str) -> None:
        self.gateway.clear_history(conversation_id)

    def save_api_key(self, api_key: str) -> None:
        self.credentials.save(api_key)

    def save_project(self, project_id: str, name: str, description: str = "", status: str = "PLANNING") -> None:
        self.projects.save(project_id, ProjectSnapshot(name=name, description=description, status=status))

    def active_model(self) -> Dict[str, Any]:
        return _model_to_dict(self.models.active_model())

    def set_active_model(self, model_id: str) -> Dict[str, Any]:
        return _model_to_dict(self.models.set_active_model(model_id))

    def list_models(self) -> List[Dict[str, Any]]:
        return [_model_to_dict(m) for m in AVAILABLE_MODELS.values()]

    def close(self) -> None:
        self.gateway.close()


def create_gateway(
    cfg: Optional[Settings] = None,
    root: str | Path | None = None,
    provider: Optional[CompletionProvider] = None,
) -> ChatGateway:
    """按配置装配 ChatGateway。存储默认全部落在 root（或 cfg.storage_root）下。"""

    return create_service(cfg, root, provider).gateway


def create_service(
    cfg: Optional[Settings] = None,
    root: str | Path | None = None,
    provider: Optional[CompletionProvider] = None,
) -> GatewayService:
    cfg = cfg or default_settings
    root = Path(root or cfg.storage_root)

    credential_store = JsonCredentialStore(root=root, fallback=cfg.openrouter_api_key)
    model_registry = JsonModelRegistry(root=root)
    project_store = JsonProjectStore(root=root)
    history_store = JsonHistoryStore(root=root)

    aggregator = ContextAggregator(
        credentials=credential_store,
        history=history_store,
        models=model_registry,
        projects=project_store,
        max_history_turns=cfg.max_history_turns,
        max_workers=cfg.context_fetch_workers,
    )
    cache = ResponseCache(
        durable=JsonResponseCacheStore(root=root),
        volatile=VolatileCache(capacity=cfg.volatile_cache_capacity),
    )
    upstream = UpstreamCompletionClient(
        provider or create_provider(cfg),
        temperature=cfg.temperature,
        max_tokens=cfg.max_tokens,
    )
    gateway = ChatGateway(aggregator=aggregator, cache=cache, upstream=upstream, history=history_store)
    return GatewayService(gateway, credential_store, model_registry, project_store)


def _completion_to_dict(c: CachedCompletion) -> Dict[str, Any]:
    return {
        "id": c.id,
        "content": c.reply_text,
        "finish_reason": c.finish_reason,
        "created_at": c.created_at.isoformat(),
    }


def _turn_to_dict(t: ConversationTurn) -> Dict[str, Any]:
    return {"role": t.role, "content": t.text, "created_at": t.created_at.isoformat()}


def _model_to_dict(m: ModelConfig) -> Dict[str, Any]:
    return {"id": m.id, "name": m.name, "description": m.description, "is_free": m.is_free}
