"""会话助手网关。

- context: 并发组装请求上下文。
- cache: 两级响应缓存。
- upstream: 上游补全调用。
- errors: 上游错误归类。
- orchestrator: ChatGateway，对外的唯一入口。
"""

from chat_gateway.gateway.orchestrator import ChatGateway

__all__ = ["ChatGateway"]
