"""网关内部共享的数据模型。

两组模型：

- 会话侧：ConversationTurn / ProjectSnapshot / ModelConfig / RequestContext /
  CacheKey / CachedCompletion，描述一次 send_message 调用所需与所产出的数据。
- Provider 侧：ChatMessage / ChatRequest / ChatResult 等，
  是 Provider 适配器在厂商 JSON 与项目内部结构之间转换的统一格式。
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Optional, Any, Dict, List, Tuple


# 会话消息角色
Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True)
class ConversationTurn:
    """一条已持久化的会话记录，写入后不可变。"""

    role: Role
    text: str
    created_at: datetime


@dataclass(frozen=True)
class ProjectSnapshot:
    """所属项目的只读描述字段快照。"""

    name: str
    description: str
    status: str


@dataclass(frozen=True)
class ModelConfig:
    """可选模型的描述。id 即发给上游的模型标识。"""

    id: str
    name: str
    description: str
    is_free: bool = True


@dataclass(frozen=True)
class RequestContext:
    """单次调用内构造、用完即弃的请求上下文。

    history_window 按时间升序，最多包含最近 N 条记录。
    """

    credential: str
    history_window: Tuple[ConversationTurn, ...]
    active_model: ModelConfig
    project: ProjectSnapshot


@dataclass(frozen=True)
class CacheKey:
    """两级缓存共用的查找键。

    由 gateway.cache.make_cache_key 构造，user_text 已做规范化。
    """

    conversation_id: str
    user_text: str
    model_id: str


@dataclass(frozen=True)
class CachedCompletion:
    """一次补全结果。缓存命中与新生成的结果形状完全一致。"""

    id: str
    created_at: datetime
    reply_text: str
    finish_reason: str = "stop"


# 对调用方暴露的返回值类型
CompletionResult = CachedCompletion


@dataclass
class ChatMessage:
    """发往 Provider 的一条消息。"""

    role: Role
    content: str


@dataclass
class ChatRequest:
    """一次完整的补全请求。

    Provider 适配层负责把本结构转换成各家 API 的 JSON 请求体。
    credential 以 Bearer 方式携带，不写入日志。
    """

    model: str  # 上游模型 ID，如 "deepseek/deepseek-chat-v3-0324"
    messages: List[ChatMessage]
    credential: str = field(repr=False)
    temperature: float = 0.7
    max_tokens: Optional[int] = None


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ChatChoice:
    """单个候选回答（网关只使用第一条）。"""

    index: int
    message: ChatMessage
    finish_reason: Optional[str] = None


@dataclass
class ChatResult:
    """Provider 调用解析后的统一结果。

    - id / created: 上游响应的标识与 Unix 时间戳（可能缺失）。
    - choices: 一个或多个候选回答。
    - usage: 可选的 token 使用统计。
    - raw: 原始响应 JSON，用于调试。
    """

    model: str
    choices: List[ChatChoice]
    id: Optional[str] = None
    created: Optional[int] = None
    usage: Optional[ChatUsage] = None
    raw: Optional[Dict[str, Any]] = None
