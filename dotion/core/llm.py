"""
Chat completion client for Dotion.

Streams an OpenAI-compatible chat completion over httpx. Unlike a plain
text stream, every decoded chunk is yielded whole so that tool-call
fragments reach the accumulator untouched.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from loguru import logger

from .errors import UpstreamError, handle_missing_config


@dataclass
class Message:
    """A chat message."""
    role: str  # "system", "user", "assistant"
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


class ChatCompletionClient:
    """
    Streaming chat-completions client.

    Usage:
        client = ChatCompletionClient(api_key=key)
        async for chunk in client.astream_chunks(messages, tools=tools):
            delta = chunk["choices"][0]["delta"]
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-4o",
        base_url: str = "https://api.openai.com/v1",
        temperature: float = 0.7,
        timeout: int = 60,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.timeout = timeout
        self._http_client = http_client

    def is_available(self) -> bool:
        return bool(self.api_key)

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _payload(self, messages: List[Message], tools: Optional[List[Dict[str, Any]]]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_dict() for m in messages],
            "temperature": self.temperature,
            "stream": True,
        }
        if tools:
            payload["tools"] = tools
        return payload

    async def astream_chunks(
        self,
        messages: List[Message],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        """
        Stream decoded completion chunks.

        Args:
            messages: Conversation including the system message.
            tools: Function-call schemas, omitted when empty.

        Yields:
            Each JSON chunk of the stream, until the [DONE] marker.

        Raises:
            ConfigurationError: No API key configured.
            UpstreamError: Non-200 response or transport failure.
        """
        if not self.api_key:
            raise handle_missing_config("openai_key", "OPENAI_API_KEY")

        client = self._http_client or httpx.AsyncClient(timeout=self.timeout)
        try:
            async with client.stream(
                "POST",
                f"{self.base_url}/chat/completions",
                headers=self._get_headers(),
                json=self._payload(messages, tools),
                timeout=self.timeout,
            ) as response:
                if response.status_code != 200:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    logger.error(f"Chat completion error ({response.status_code}): {body[:300]}")
                    raise UpstreamError(
                        "Chat completion request failed",
                        provider="openai",
                        provider_status=response.status_code,
                    )

                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data = line[5:].strip()
                    if data == "[DONE]":
                        break
                    try:
                        chunk = json.loads(data)
                    except json.JSONDecodeError:
                        logger.warning(f"Skipping malformed completion chunk: {data[:80]}")
                        continue
                    if isinstance(chunk, dict):
                        yield chunk
        except httpx.HTTPError as e:
            logger.error(f"Chat completion transport error: {e}")
            raise UpstreamError("Chat completion request failed", provider="openai") from e
        finally:
            if self._http_client is None:
                await client.aclose()
