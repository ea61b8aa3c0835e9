"""上游补全 Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护可用模型目录与默认模型 (registry)。
- 提供具体实现 (openrouter_client)。
"""

from typing import Optional

from chat_gateway.config.settings import settings
from chat_gateway.providers.base import CompletionProvider
from chat_gateway.providers.openrouter_client import OpenRouterClient


def create_provider(cfg: Optional[object] = None) -> CompletionProvider:
    """根据配置创建 Provider 实例，默认取模块级 settings。"""

    return OpenRouterClient(cfg or settings)
