"""请求上下文聚合。

一次 send_message 需要四项互相独立的输入：API 凭据、最近 N 条历史、当前模型、项目快照。

- 凭据先行读取：缺失即抛 MissingCredentialError，其余查询一律不发起。
- 其余三项在有界线程池中并发拉取，全部完成后再组装。
- 项目不存在抛 ProjectNotFoundError；历史与模型属于可降级项，
  失败时分别退回空历史与 DEFAULT_MODEL。
"""

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any, Dict, Optional, Tuple

from chat_gateway.domain.exceptions import MissingCredentialError, ProjectNotFoundError
from chat_gateway.domain.models import ConversationTurn, ModelConfig, RequestContext
from chat_gateway.domain.stores import (
    CredentialStore,
    HistoryStore,
    ModelRegistry,
    ProjectMetadataProvider,
)
from chat_gateway.infrastructure.logging.logger import log_event
from chat_gateway.providers.registry import DEFAULT_MODEL


class ContextAggregator:
    def __init__(
        self,
        credentials: CredentialStore,
        history: HistoryStore,
        models: ModelRegistry,
        projects: ProjectMetadataProvider,
        max_history_turns: int = 10,
        max_workers: int = 4,
        default_model: ModelConfig = DEFAULT_MODEL,
    ):
        self._credentials = credentials
        self._history = history
        self._models = models
        self._projects = projects
        self._max_history_turns = max_history_turns
        self._default_model = default_model
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ctx-fetch")

    def aggregate(self, conversation_id: str, log_ctx: Optional[Dict[str, Any]] = None) -> RequestContext:
        """组装 RequestContext。conversation_id 同时也是所属项目的 ID。"""

        log_ctx = log_ctx or {"conversation_id": conversation_id}
        credential = self._fetch_credential(log_ctx)
        if not credential:
            raise MissingCredentialError()

        history_f = self._executor.submit(self._fetch_history_window, conversation_id, log_ctx)
        model_f = self._executor.submit(self._fetch_active_model, log_ctx)
        project_f = self._executor.submit(self._projects.get, conversation_id)
        wait([history_f, model_f, project_f])

        project = project_f.result()
        if project is None:
            raise ProjectNotFoundError(conversation_id)
        history_window = history_f.result()
        active_model = model_f.result()

        log_event(
            logging.INFO,
            "Context built",
            log_ctx,
            history_turns=len(history_window),
            model_id=active_model.id,
        )
        return RequestContext(
            credential=credential,
            history_window=history_window,
            active_model=active_model,
            project=project,
        )

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def _fetch_credential(self, log_ctx: Dict[str, Any]) -> Optional[str]:
        try:
            return self._credentials.get()
        except Exception as e:
            # 凭据读不到与未配置同等对待
            log_event(logging.WARNING, "Credential lookup failed", log_ctx, error=str(e))
            return None

    def _fetch_history_window(
        self, conversation_id: str, log_ctx: Dict[str, Any]
    ) -> Tuple[ConversationTurn, ...]:
        try:
            turns = self._history.list(conversation_id)
        except Exception as e:
            log_event(logging.WARNING, "History lookup failed, using empty history", log_ctx, error=str(e))
            return ()
        if len(turns) > self._max_history_turns:
            log_event(
                logging.INFO,
                "Truncated context",
                log_ctx,
                max_context=self._max_history_turns,
                trimmed=len(turns) - self._max_history_turns,
            )
        return tuple(turns[-self._max_history_turns:])

    def _fetch_active_model(self, log_ctx: Dict[str, Any]) -> ModelConfig:
        try:
            model = self._models.active_model()
        except Exception as e:
            log_event(logging.WARNING, "Active model lookup failed, using default", log_ctx, error=str(e))
            return self._default_model
        return model or self._default_model
