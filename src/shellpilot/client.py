# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

import time
from collections.abc import AsyncIterator
from typing import Any
from uuid import uuid4

import httpx
from loguru import logger

from shellpilot.config import AgentConfig
from shellpilot.errors import AuthenticationError, ProtocolError, TransientError
from shellpilot.stream import LiveDisplay, SSEDecoder, StreamChunk, StreamEnd, StreamEvent, parse_decision

AUTH_STATUSES = frozenset({401, 403, 404})
TRANSIENT_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


def new_chat_id() -> str:
    return f"chat-{int(time.time() * 1000)}-{uuid4().hex[:9]}"


def _auth_headers(token: str | None) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"} if token else {}


async def _check_status(response: httpx.Response) -> None:
    """Map an HTTP failure onto the error taxonomy.

    Raises:
        AuthenticationError: 401, 403 or 404.
        TransientError: 408, 429 or 5xx.
        httpx.HTTPStatusError: Any other 4xx.
    """
    if response.status_code < 400:
        return
    body = (await response.aread()).decode("utf-8", errors="replace")[:500]
    message = f"HTTP {response.status_code}: {body or response.reason_phrase}"
    if response.status_code in AUTH_STATUSES:
        raise AuthenticationError(message, response.status_code)
    if response.status_code in TRANSIENT_STATUSES or response.status_code >= 500:
        raise TransientError(message, response.status_code)
    response.raise_for_status()


class ModelClient:
    """Streams one model turn over HTTP and yields its chunks and decision."""

    def __init__(self, config: AgentConfig, client: httpx.AsyncClient):
        """Initializes the ModelClient.

        Args:
            config: Agent configuration (endpoint, model name).
            client: Shared httpx.AsyncClient for connection pooling.
        """
        self.config = config
        self._client = client

    def _payload(self, prompt: str, page_id: int | None) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.config.model,
            "messages": [{"role": "user", "content": prompt}],
            "stream": True,
        }
        if page_id is not None:
            payload["pageId"] = page_id
        return payload

    async def stream(self, prompt: str, token: str | None, page_id: int | None = None) -> AsyncIterator[StreamEvent]:
        """Send a prompt and yield `StreamChunk`s followed by exactly one `StreamEnd`.

        Args:
            prompt: The full prompt text.
            token: Bearer token.
            page_id: Continuation token of the conversation, if any.

        Raises:
            AuthenticationError: If the credential is rejected.
            TransientError: On network failure or a retryable status.
        """
        headers = {
            **_auth_headers(token),
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        decoder = SSEDecoder()
        parts: list[str] = []

        try:
            async with self._client.stream(
                "POST",
                self.config.stream_url,
                params={"chat_id": new_chat_id()},
                json=self._payload(prompt, page_id),
                headers=headers,
            ) as response:
                await _check_status(response)
                async for data in response.aiter_bytes():
                    for delta in decoder.feed(data):
                        parts.append(delta)
                        yield StreamChunk(delta)
                    if decoder.done:
                        break
                for delta in decoder.flush():
                    parts.append(delta)
                    yield StreamChunk(delta)
        except httpx.TransportError as e:
            raise TransientError(f"Network error talking to {self.config.stream_url}: {e}") from e

        text = "".join(parts)
        logger.debug(f"Model turn finished: {len(parts)} chunks, {len(text)} chars")
        yield StreamEnd(decision=parse_decision(text), page_id=decoder.page_id or page_id, raw=text)

    async def decide(
        self,
        prompt: str,
        token: str | None,
        page_id: int | None = None,
        display: LiveDisplay | None = None,
    ) -> StreamEnd:
        """Consume a whole turn, publishing chunks to `display` as they arrive."""
        end: StreamEnd | None = None
        async for event in self.stream(prompt, token, page_id):
            if isinstance(event, StreamChunk):
                if display is not None:
                    display.publish(event.text)
            else:
                end = event
        if end is None:
            raise ProtocolError("Model stream ended without a result")  # pragma: no cover
        return end


class SessionClient:
    """Notifies the server that a conversation page can be released."""

    def __init__(self, config: AgentConfig, client: httpx.AsyncClient):
        self.config = config
        self._client = client

    async def release(self, page_id: int, token: str | None) -> None:
        """
        Release a page id on the server.
        """
        try:
            response = await self._client.post(
                self.config.exit_url,
                json={"pageId": page_id},
                headers=_auth_headers(token),
            )
        except httpx.TransportError as e:
            raise TransientError(f"Network error releasing page {page_id}: {e}") from e
        await _check_status(response)
        logger.info(f"Page {page_id} released")
