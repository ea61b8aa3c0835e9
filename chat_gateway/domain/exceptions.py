"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层或 UI 层做统一捕获与用户提示。

分层：
- 传输层（Provider 抛出）：NetworkError / ApiError / RateLimitError。
- 上下文层（聚合阶段，致命且不重试）：MissingCredentialError / ProjectNotFoundError。
- 上游层（经 Error Classifier 归类后对外暴露）：UpstreamError。
- 持久化层：PersistenceError。
"""

from enum import Enum


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 trace_id、provider 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(BusinessError):
    """第三方 API 返回非 2xx/429 错误时抛出。"""


class RateLimitError(BusinessError):
    """Provider 限流错误，重试/退避策略由外层调用方负责。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class PersistenceError(BusinessError):
    """存储读写失败。"""


class ContextError(BusinessError):
    """请求上下文无法组装，对本次调用是致命的。"""


class MissingCredentialError(ContextError):
    def __init__(self):
        super().__init__(
            code="MISSING_API_KEY",
            message=(
                "API key not configured. "
                "Please configure your OpenRouter API key in Admin Settings."
            ),
            http_status=412,
        )


class ProjectNotFoundError(ContextError):
    def __init__(self, project_id: str):
        super().__init__(
            code="PROJECT_NOT_FOUND",
            message="Project not found",
            http_status=404,
            project_id=project_id,
        )


class UpstreamErrorKind(str, Enum):
    AUTH_FAILED = "auth_failed"
    BAD_REQUEST = "bad_request"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    UNREACHABLE = "unreachable"


class UpstreamError(BusinessError):
    """上游补全调用失败（已归类）。

    kind 决定 code 与 http_status；message 为面向用户的提示文本。
    """

    _STATUS = {
        UpstreamErrorKind.AUTH_FAILED: 401,
        UpstreamErrorKind.BAD_REQUEST: 400,
        UpstreamErrorKind.RATE_LIMITED: 429,
        UpstreamErrorKind.TIMEOUT: 504,
        UpstreamErrorKind.UNREACHABLE: 502,
    }

    def __init__(self, kind: UpstreamErrorKind, message: str, **extra):
        self.kind = kind
        super().__init__(
            code=f"UPSTREAM_{kind.name}",
            message=message,
            http_status=self._STATUS[kind],
            **extra,
        )
