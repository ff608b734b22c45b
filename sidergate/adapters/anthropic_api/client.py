"""
Anthropic Messages API 客户端：官方端点用 x-api-key，第三方兼容端点用 Bearer + 客户端标识头。
"""

from __future__ import annotations

import json
from collections.abc import Callable
from contextlib import aclosing
from typing import Any

from pydantic import ValidationError

from sidergate.adapters.anthropic_api.model_mapper import ModelMapper
from sidergate.adapters.anthropic_compat.upstream import (
    _fetch_json,
    _forward_json,
    _forward_stream_lines,
    _safe_error_detail,
)
from sidergate.config.backends import AnthropicBackendConfig
from sidergate.core.errors import UpstreamError
from sidergate.core.models import ChatRequest, ChatResponse
from sidergate.util.logger import logger


OFFICIAL_HOST_MARKER = "anthropic.com"


def is_official_endpoint(base_url: str) -> bool:
    return OFFICIAL_HOST_MARKER in base_url


def build_anthropic_headers(config: AnthropicBackendConfig, *, json_body: bool = True) -> dict[str, str]:
    headers: dict[str, str] = {"anthropic-version": config.version}
    if json_body:
        headers["Content-Type"] = "application/json"
    if is_official_endpoint(config.base_url):
        headers["x-api-key"] = config.api_key
    else:
        # 第三方端点会校验来源，需模拟 Claude Code 客户端
        headers["Authorization"] = f"Bearer {config.api_key}"
        headers["User-Agent"] = "Claude-Code/1.0.0"
        headers["X-Client-Name"] = "claude-code"
        headers["X-Client-Version"] = "1.0.0"
    return headers


class AnthropicApiClient:
    def __init__(self, config: AnthropicBackendConfig, model_mapper: ModelMapper | None = None) -> None:
        self.config = config
        if model_mapper is None and config.dynamic_model_mapping and not is_official_endpoint(config.base_url):
            model_mapper = ModelMapper(config.base_url, config.api_key)
        self.model_mapper = model_mapper

    @property
    def messages_url(self) -> str:
        return f"{self.config.base_url}/v1/messages"

    async def _build_payload(self, request: ChatRequest, *, stream: bool) -> dict[str, Any]:
        model = request.model
        if self.model_mapper is not None:
            model = await self.model_mapper.map_model(model)
        return request.to_payload(model=model, stream=stream)

    async def send(self, request: ChatRequest) -> ChatResponse:
        payload = await self._build_payload(request, stream=False)
        logger.info(
            "forwarding to anthropic model=%s messages=%d tools=%d",
            payload["model"],
            len(request.messages),
            len(request.tools or []),
        )
        status, body = await _forward_json(
            self.messages_url,
            payload,
            build_anthropic_headers(self.config),
            self.config.timeout_seconds,
        )
        if status >= 400:
            detail = _safe_error_detail(body)
            logger.error("anthropic api error status=%s detail=%s", status, detail)
            raise UpstreamError(f"Anthropic API error: {status}", status_code=status, body=detail)
        if not isinstance(body, dict):
            logger.error("invalid response format from anthropic api status=%s", status)
            raise UpstreamError("Invalid response format from Anthropic API", status_code=status)
        try:
            response = ChatResponse.model_validate(body)
        except ValidationError as exc:
            raise UpstreamError(
                f"Invalid response format from Anthropic API: {exc.error_count()} errors",
                status_code=status,
                body=_safe_error_detail(body),
            ) from exc
        logger.info(
            "anthropic api response id=%s stop_reason=%s blocks=%d input_tokens=%d output_tokens=%d",
            response.id,
            response.stop_reason,
            len(response.content),
            response.usage.input_tokens,
            response.usage.output_tokens,
        )
        return response

    async def send_stream(
        self,
        request: ChatRequest,
        on_chunk: Callable[[dict[str, Any]], None],
        on_complete: Callable[[], None],
        on_error: Callable[[Exception], None],
    ) -> None:
        """Relay upstream SSE chunks to callbacks; errors go to ``on_error``."""
        try:
            payload = await self._build_payload(request, stream=True)
            completed = False
            lines = _forward_stream_lines(
                self.messages_url,
                payload,
                build_anthropic_headers(self.config),
                self.config.timeout_seconds,
            )
            async with aclosing(lines):
                async for line in lines:
                    if not line.startswith("data: "):
                        continue
                    data = line[6:].strip()
                    if data == "[DONE]":
                        completed = True
                        on_complete()
                        break
                    try:
                        chunk = json.loads(data)
                    except json.JSONDecodeError:
                        logger.warning("failed to parse anthropic sse chunk=%s", data[:100])
                        continue
                    on_chunk(chunk)
            # 官方端点以 message_stop 结束，不发送 [DONE]
            if not completed:
                on_complete()
        except UpstreamError as exc:
            on_error(exc)

    async def health_check(self) -> bool:
        try:
            status, _ = await _fetch_json(
                f"{self.config.base_url}/v1/models",
                build_anthropic_headers(self.config, json_body=False),
                self.config.timeout_seconds,
            )
        except UpstreamError as exc:
            logger.error("anthropic api health check failed error=%s", exc)
            return False
        return 200 <= status < 300
