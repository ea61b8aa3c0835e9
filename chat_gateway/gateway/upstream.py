from datetime import datetime, timezone
from typing import List, Optional, Sequence
from uuid import uuid4

from chat_gateway.domain.exceptions import ApiError
from chat_gateway.domain.models import (
    CachedCompletion,
    ChatMessage,
    ChatRequest,
    ConversationTurn,
    ModelConfig,
)
from chat_gateway.providers.base import CompletionProvider


class UpstreamCompletionClient:
    """把系统提示词、历史窗口与新消息拼成请求，交给 Provider 执行。

    不做持久化也不做缓存；Provider 抛出的异常原样向上传递，由 ChatGateway 归类。
    temperature / max_tokens 来自配置，这里只负责透传。
    """

    def __init__(self, provider: CompletionProvider, temperature: float = 0.7, max_tokens: Optional[int] = 1000):
        self._provider = provider
        self._temperature = temperature
        self._max_tokens = max_tokens

    @property
    def provider_name(self) -> str:
        return getattr(self._provider, "name", "unknown")

    @staticmethod
    def build_messages(
        system_prompt: str, history_window: Sequence[ConversationTurn], user_text: str
    ) -> List[ChatMessage]:
        messages = [ChatMessage(role="system", content=system_prompt)]
        messages.extend(ChatMessage(role=t.role, content=t.text) for t in history_window)
        messages.append(ChatMessage(role="user", content=user_text))
        return messages

    def complete(
        self,
        system_prompt: str,
        history_window: Sequence[ConversationTurn],
        user_text: str,
        model: ModelConfig,
        credential: str,
    ) -> CachedCompletion:
        req = ChatRequest(
            model=model.id,
            messages=self.build_messages(system_prompt, history_window, user_text),
            credential=credential,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
        )
        result = self._provider.chat(req)
        if not result.choices:
            raise ApiError(code="EMPTY_COMPLETION", message="Upstream returned no choices", http_status=502)
        first = result.choices[0]
        created_at = (
            datetime.fromtimestamp(result.created, tz=timezone.utc)
            if result.created
            else datetime.now(timezone.utc)
        )
        return CachedCompletion(
            id=result.id or f"cmpl-{uuid4().hex}",
            created_at=created_at,
            reply_text=first.message.content,
            finish_reason=first.finish_reason or "stop",
        )
