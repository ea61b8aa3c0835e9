"""可用模型目录。

上游（OpenRouter）模型 ID 统一在这里登记，网关与管理接口只从这里取值：

- AVAILABLE_MODELS：允许被设为"当前模型"的全部模型。
- DEFAULT_MODEL：进程级默认模型；模型配置缺失、读取失败或指向未知 ID 时都回退到它。
"""

from typing import Mapping, Optional

from chat_gateway.domain.models import ModelConfig


DEEPSEEK_CHAT = ModelConfig(
    id="deepseek/deepseek-chat-v3-0324",
    name="DeepSeek Chat v3",
    description="High-performance chat model with strong reasoning capabilities",
)

DEEPSEEK_BASE = ModelConfig(
    id="deepseek/deepseek-v3-base",
    name="DeepSeek Base v3",
    description="Base model for general text generation and analysis",
)

GEMINI = ModelConfig(
    id="google/gemini-2.5-pro-exp-03-25",
    name="Gemini 2.5 Pro",
    description="Google's advanced language model with strong capabilities",
)

MISTRAL = ModelConfig(
    id="mistralai/mistral-small-3.1-24b-instruct",
    name="Mistral Small",
    description="Efficient and fast model for general tasks",
)

DEFAULT_MODEL = DEEPSEEK_CHAT

AVAILABLE_MODELS: Mapping[str, ModelConfig] = {
    m.id: m for m in (DEEPSEEK_CHAT, DEEPSEEK_BASE, GEMINI, MISTRAL)
}


def find_model(model_id: Optional[str]) -> Optional[ModelConfig]:
    """按 ID 查找模型，未登记时返回 None。"""

    if not model_id:
        return None
    return AVAILABLE_MODELS.get(model_id)


def resolve_model(model_id: Optional[str]) -> ModelConfig:
    """按 ID 查找模型，未登记时回退到 DEFAULT_MODEL。"""

    return find_model(model_id) or DEFAULT_MODEL
