"""
Stateless transport to an OpenAI-compatible chat completions endpoint.

Two modes share one payload builder:
  complete(): one request, one reply string
  stream():   async generator of text fragments, ends at the `[DONE]` frame
"""

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Union

import httpx

from models.errors import ConfigError, TransportError, UpstreamError, ValidationError
from models.schemas import ChatTurn, ImagePart, PartsContent, TextContent, TextPart
from services import credentials
from settings import settings

logger = logging.getLogger(__name__)


def content_payload(content: Union[TextContent, PartsContent]) -> Union[str, List[Dict[str, Any]]]:
    """Flatten message content into the wire shape the endpoint expects."""
    if isinstance(content, TextContent):
        return content.text
    if isinstance(content, PartsContent):
        parts = []
        for part in content.parts:
            if isinstance(part, TextPart):
                parts.append({"type": "text", "text": part.value})
            elif isinstance(part, ImagePart):
                parts.append({"type": "image_url", "image_url": {"url": part.data_uri()}})
            else:
                raise TypeError(f"Unknown content part: {type(part).__name__}")
        return parts
    raise TypeError(f"Unknown content type: {type(content).__name__}")


class CompletionClient:
    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        # Tests hand in an httpx.MockTransport; production uses the default network transport.
        self._transport = transport

    def require_api_key(self) -> str:
        api_key = credentials.get_api_key()
        if not api_key:
            raise ConfigError("OpenAI API key not configured")
        return api_key

    def build_payload(
        self,
        turns: Sequence[ChatTurn],
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        stream: bool = False,
    ) -> Dict[str, Any]:
        if not turns:
            raise ValidationError("Messages array is required")

        messages = [{"role": t.role, "content": content_payload(t.content)} for t in turns]
        system_prompt = settings.get_system_prompt()
        if system_prompt:
            messages.insert(0, {"role": "system", "content": system_prompt})

        return {
            "model": model or settings.get_model(),
            "messages": messages,
            "max_tokens": max_tokens if max_tokens is not None else settings.get_max_tokens(),
            "temperature": temperature if temperature is not None else settings.get_temperature(),
            "stream": stream,
        }

    def _headers(self, api_key: str) -> Dict[str, str]:
        return {
            "Authorization": credentials.auth_header(api_key),
            "Content-Type": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=settings.get_request_timeout())

    async def complete(self, turns: Sequence[ChatTurn], **options) -> str:
        """Send the history and return the assistant reply text."""
        api_key = self.require_api_key()
        payload = self.build_payload(turns, stream=False, **options)
        url = settings.get_completions_url()
        logger.info("Requesting completion from %s (model=%s, %d messages)", url, payload["model"], len(turns))

        try:
            async with self._client() as client:
                response = await client.post(url, headers=self._headers(api_key), json=payload)
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to reach model endpoint: {e}") from e

        if response.status_code != 200:
            raise UpstreamError(
                f"Model endpoint returned {response.status_code}",
                upstream_status=response.status_code,
                body=response.text,
            )

        try:
            data = response.json()
            reply = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError):
            reply = None
        if not reply:
            raise UpstreamError("No response from model", upstream_status=response.status_code, body=response.text)
        return reply

    async def stream(self, turns: Sequence[ChatTurn], **options) -> AsyncIterator[str]:
        """
        Yield text fragments as they arrive. Returns on the `[DONE]` frame; a
        connection that closes before it raises TransportError. Closing the
        generator early releases the connection.
        """
        api_key = self.require_api_key()
        payload = self.build_payload(turns, stream=True, **options)
        url = settings.get_completions_url()
        logger.info("Streaming completion from %s (model=%s, %d messages)", url, payload["model"], len(turns))

        try:
            async with self._client() as client:
                async with client.stream("POST", url, headers=self._headers(api_key), json=payload) as response:
                    if response.status_code != 200:
                        error_msg = await response.aread()
                        raise UpstreamError(
                            f"Model endpoint returned {response.status_code}",
                            upstream_status=response.status_code,
                            body=error_msg.decode(errors="replace"),
                        )

                    async for line in response.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        data = line[5:].strip()
                        if data == "[DONE]":
                            return
                        try:
                            chunk = json.loads(data)
                        except json.JSONDecodeError:
                            logger.debug("Skipping non-JSON stream line: %s", data)
                            continue
                        choices = chunk.get("choices") or []
                        if not choices:
                            continue
                        delta = (choices[0].get("delta") or {}).get("content")
                        if delta:
                            yield delta
        except httpx.HTTPError as e:
            raise TransportError(f"Stream from model endpoint failed: {e}") from e

        raise TransportError("Stream ended before [DONE]")
