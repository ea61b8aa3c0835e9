"""上游错误归类。

按错误特征（字符串/状态码嗅探）把原始异常映射为四类已知原因，优先级固定：
认证失败(401) > 请求无效(400) > 限流(429) > 超时(timeout)。
都不匹配时归为 UNREACHABLE，并保留原始信息。

匹配规则集中在本模块，替换时不影响 ChatGateway。
"""

from typing import List, Tuple

from chat_gateway.domain.exceptions import (
    ApiError,
    BusinessError,
    RateLimitError,
    UpstreamError,
    UpstreamErrorKind,
)


_RULES: List[Tuple[str, UpstreamErrorKind, str]] = [
    ("401", UpstreamErrorKind.AUTH_FAILED,
     "Invalid API key. Please check your OpenRouter API key in Admin Settings."),
    ("400", UpstreamErrorKind.BAD_REQUEST,
     "Invalid request. Please check your model selection and try again."),
    ("429", UpstreamErrorKind.RATE_LIMITED,
     "Rate limit exceeded. Please try again later."),
    ("timeout", UpstreamErrorKind.TIMEOUT,
     "Request timed out. Please check your internet connection and try again."),
]


def error_signature(raw: BaseException) -> str:
    """拼出用于匹配的特征串：异常文本，加上业务错误的 code 与 HTTP 状态码。"""

    parts = [str(raw)]
    if isinstance(raw, BusinessError):
        parts.append(raw.code)
    if isinstance(raw, (ApiError, RateLimitError)):
        parts.append(str(raw.http_status))
    return " ".join(p for p in parts if p).lower()


def classify(raw: BaseException) -> UpstreamError:
    if isinstance(raw, UpstreamError):
        return raw
    signature = error_signature(raw)
    for needle, kind, message in _RULES:
        if needle in signature:
            return UpstreamError(kind, message, cause=str(raw))
    return UpstreamError(
        UpstreamErrorKind.UNREACHABLE,
        f"Failed to connect to AI service: {raw}",
        cause=str(raw),
    )
