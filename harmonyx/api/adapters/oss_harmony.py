# SPDX-License-Identifier: Apache-2.0
"""
Live adapter for gpt-oss completion endpoints that stream Harmony text.

Posts a chat request with `stream: true` and feeds the SSE response body
through normalize_stream. Transport failures are reported as a terminal
error event rather than raised, so callers only ever consume events.
"""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from ...exceptions import ConfigurationError
from ...settings import GlobalSettings
from ..normalizer import normalize_stream
from ..stream_models import ErrorEvent, StreamEvent

logger = logging.getLogger(__name__)


class OssHarmonyAdapter:
    """
    Streaming client for a Harmony-speaking completion endpoint.

    Args:
        endpoint: Full URL of the chat completions endpoint.
        api_key: Bearer token, if the endpoint requires one.
        timeout: Read/connect timeout in seconds.
        client: Existing httpx.AsyncClient to use (not closed by aclose()).
        settings: Decoder and framing settings.
    """

    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str] = None,
        timeout: float = 120.0,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[GlobalSettings] = None,
    ):
        self.endpoint = endpoint
        self.api_key = api_key
        self.timeout = timeout
        self.settings = settings or GlobalSettings()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    @classmethod
    def from_settings(
        cls,
        settings: GlobalSettings,
        client: Optional[httpx.AsyncClient] = None,
    ) -> "OssHarmonyAdapter":
        """Build an adapter from the transport section of settings."""
        if not settings.transport.endpoint:
            raise ConfigurationError("No completion endpoint configured", config_key="endpoint")
        return cls(
            endpoint=settings.transport.endpoint,
            api_key=settings.transport.api_key,
            timeout=settings.transport.timeout,
            client=client,
            settings=settings,
        )

    async def __aenter__(self) -> "OssHarmonyAdapter":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP client if this adapter created it."""
        if self._owns_client:
            await self._client.aclose()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def build_body(
        self,
        messages: List[Dict[str, Any]],
        model: Optional[str] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Request body: model, messages, tools and stream, then any extra options."""
        return {
            "model": model or self.settings.transport.model,
            "messages": messages,
            "tools": tools or [],
            "stream": True,
            **(options or {}),
        }

    async def chat(
        self,
        messages: List[Dict[str, Any]],
        model: Optional[str] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Send a chat request and stream normalized events.

        Args:
            messages: Chat messages in OpenAI format.
            model: Model name (defaults to the configured model).
            tools: Tool definitions.
            options: Extra request fields merged into the body.

        Yields:
            StreamEvent values ending with done, or a terminal error.
        """
        body = self.build_body(messages, model=model, tools=tools, options=options)
        logger.info(
            f"Starting Harmony stream: {len(messages)} messages, {len(body['tools'])} tools",
            extra={"endpoint": self.endpoint, "model": body["model"]},
        )

        try:
            async with self._client.stream(
                "POST",
                self.endpoint,
                json=body,
                headers=self._headers(),
            ) as response:
                if response.status_code < 200 or response.status_code >= 300:
                    await response.aread()
                    logger.warning(
                        f"Upstream returned HTTP {response.status_code}: {response.text[:200]}",
                        extra={"status_code": response.status_code},
                    )
                    yield ErrorEvent(
                        code="upstream_http",
                        detail=f"OSS Harmony HTTP {response.status_code}",
                    )
                    return

                async for event in normalize_stream(response.aiter_text(), self.settings):
                    yield event
        except httpx.HTTPError as e:
            logger.warning(f"Harmony stream transport failure: {type(e).__name__}: {e}")
            yield ErrorEvent(code="transport", detail=f"{type(e).__name__}: {e}")
