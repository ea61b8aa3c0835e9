"""OpenRouter Provider 适配器。

接口为 OpenAI 兼容的 chat/completions 端点：
- URL: {base_url}/chat/completions
- 认证: Authorization: Bearer <credential>（每次请求由调用方携带）
- 归属信息: HTTP-Referer / X-Title

本实现只依赖公共字段：model/messages/temperature/max_tokens。
超时沿用 httpx 客户端配置，超时与其它网络错误分别以 TIMEOUT / NETWORK_ERROR 抛出。
"""

from typing import Any, Dict

import httpx

from chat_gateway.domain.exceptions import ApiError, NetworkError, RateLimitError, ValidationError
from chat_gateway.domain.models import ChatChoice, ChatMessage, ChatRequest, ChatResult, ChatUsage


class OpenRouterClient:
    """OpenRouter 客户端实现。

    - name: Provider 名称（供日志/调试使用）。
    - chat: 对外统一调用入口，返回 ChatResult。
    """

    name = "openrouter"

    def __init__(self, settings):
        # Settings 里包含 base_url、超时、归属请求头等配置
        self._settings = settings

    def chat(self, req: ChatRequest) -> ChatResult:
        """执行一次非流式补全调用。

        步骤：
        1. 构造 HTTP 请求 payload。
        2. 发送请求并把网络错误/限流/服务端错误转换为业务异常。
        3. 解析响应 JSON 为 ChatResult。
        """

        if not req.credential:
            raise ValidationError(code="MISSING_API_KEY", message="credential not set")
        payload = self._build_payload(req)
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(
                    f"{self._settings.openrouter_base_url.rstrip('/')}/chat/completions",
                    json=payload,
                    headers=self._build_headers(req),
                )
        except httpx.TimeoutException as e:
            raise NetworkError(code="TIMEOUT", message=f"Request timeout: {e}", http_status=504)
        except httpx.RequestError as e:
            # DNS 失败、连接被拒等
            raise NetworkError(code="NETWORK_ERROR", message=str(e), http_status=503)
        if resp.status_code == 429:
            raise RateLimitError(code="RATE_LIMIT", message="HTTP 429: rate limit", http_status=429)
        if resp.status_code >= 400:
            raise ApiError(
                code="API_ERROR",
                message=f"HTTP {resp.status_code}: {resp.text}",
                http_status=resp.status_code,
            )
        try:
            data = resp.json()
        except ValueError as e:
            raise ApiError(code="BAD_RESPONSE", message=f"Malformed response body: {e}", http_status=502)
        return self._parse_response(data, req)

    def _build_headers(self, req: ChatRequest) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {req.credential}",
            "Content-Type": "application/json",
            "HTTP-Referer": self._settings.http_referer,
            "X-Title": self._settings.app_title,
        }

    def _build_payload(self, req: ChatRequest) -> Dict[str, Any]:
        """将 ChatRequest 转成请求 JSON。"""

        payload: Dict[str, Any] = {
            "model": req.model,
            "messages": [{"role": m.role, "content": m.content} for m in req.messages],
            "temperature": req.temperature,
        }
        if req.max_tokens:
            payload["max_tokens"] = req.max_tokens
        return payload

    def _parse_response(self, data: dict, req: ChatRequest) -> ChatResult:
        """将原始响应 JSON 解析为统一的 ChatResult。"""

        choices: list[ChatChoice] = []
        for i, ch in enumerate(data.get("choices") or []):
            msg = ch.get("message") or {}
            choices.append(
                ChatChoice(
                    index=ch.get("index", i),
                    message=ChatMessage(
                        role=msg.get("role") or "assistant",
                        content=msg.get("content") or "",
                    ),
                    finish_reason=ch.get("finish_reason"),
                )
            )
        usage_raw = data.get("usage") or {}
        usage = None
        if usage_raw:
            usage = ChatUsage(
                prompt_tokens=usage_raw.get("prompt_tokens", 0),
                completion_tokens=usage_raw.get("completion_tokens", 0),
                total_tokens=usage_raw.get("total_tokens", 0),
            )
        return ChatResult(
            model=data.get("model") or req.model,
            choices=choices,
            id=data.get("id"),
            created=data.get("created"),
            usage=usage,
            raw=data,
        )
