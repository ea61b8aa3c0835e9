"""Chat Gateway 顶层包。

该包实现项目助手的会话网关：把用户消息与项目上下文组装成补全请求，
通过两级缓存避免重复的上游调用，并维护持久化的会话历史。
"""

from chat_gateway.api.service import GatewayService, create_gateway, create_service
from chat_gateway.gateway.orchestrator import ChatGateway

__all__ = ["ChatGateway", "GatewayService", "create_gateway", "create_service"]
