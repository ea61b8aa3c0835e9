"""Provider 抽象接口。

网关不直接依赖具体厂商的 HTTP 细节，而是依赖此协议：

- 每个厂商实现一个 CompletionProvider（如 OpenRouterClient）。
- 负责：将 ChatRequest 转成具体 API 请求，并把响应 JSON 解析为 ChatResult。
- 失败时抛出 NetworkError / ApiError / RateLimitError，由 Error Classifier 归类。
"""

from typing import Protocol
from chat_gateway.domain.models import ChatRequest, ChatResult


class CompletionProvider(Protocol):
    """补全 Provider 客户端协议。

    - name: Provider 名称，用于日志。
    - chat(req): 执行一次非流式补全调用，返回统一的 ChatResult。
    """

    name: str

    def chat(self, req: ChatRequest) -> ChatResult:
        ...
