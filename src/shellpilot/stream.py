# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

"""Server-sent-event parsing for model turns.

The model endpoint answers with lines of ``data: <json>`` separated by blank
lines and ends with ``data: [DONE]``. Content deltas are concatenated into the
full response, which must be a single decision object.
"""

import asyncio
import codecs
import inspect
import json
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Union

from loguru import logger

from shellpilot.errors import ProtocolError
from shellpilot.models import AgentDecision

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"

# C0 and C1 control characters, stripped in the repair pass.
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f]")
_DIGITS = re.compile(r"\d+")
_THOUGHT = re.compile(r'"thought"\s*:\s*"((?:[^"\\]|\\.)*)')


@dataclass(frozen=True)
class StreamChunk:
    """One content delta, in arrival order."""

    text: str


@dataclass(frozen=True)
class StreamEnd:
    """Terminal event of a turn: the parsed decision and the page id, if any."""

    decision: AgentDecision
    page_id: int | None
    raw: str


StreamEvent = Union[StreamChunk, StreamEnd]


class SSEDecoder:
    """Incremental decoder for the event stream.

    Bytes may be split anywhere, including inside a UTF-8 sequence or in the
    middle of a line; incomplete data stays buffered until the next `feed`.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.done = False
        self.page_id: int | None = None

    def feed(self, data: bytes) -> list[str]:
        """Consume raw bytes and return the content deltas of every complete line."""
        if self.done:
            return []
        self._buffer += self._decoder.decode(data)
        *lines, self._buffer = self._buffer.split("\n")
        return self._process(lines)

    def flush(self) -> list[str]:
        """Process whatever is left once the transport reports end-of-stream."""
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        if self.done or not tail:
            return []
        return self._process([tail])

    def _process(self, lines: list[str]) -> list[str]:
        deltas: list[str] = []
        for line in lines:
            if self.done:
                break
            line = line.rstrip("\r")
            if not line.startswith(DATA_PREFIX):
                continue
            data = line[len(DATA_PREFIX) :]
            if data.startswith(" "):
                data = data[1:]

            if data.strip() == DONE_SENTINEL:
                self.done = True
                break

            try:
                event = json.loads(data)
            except json.JSONDecodeError:
                logger.debug(f"Skipping malformed stream event: {data[:200]!r}")
                continue
            if not isinstance(event, dict):
                continue

            self._note_page_id(event)

            choices = event.get("choices")
            if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
                continue
            delta = choices[0].get("delta")
            if not isinstance(delta, dict):
                continue

            content = delta.get("content")
            if isinstance(content, str) and content:
                deltas.append(content)
            if delta.get("status") == "finished":
                self.done = True
        return deltas

    def _note_page_id(self, event: dict[str, Any]) -> None:
        if self.page_id is not None:
            return
        created = event.get("response.created")
        if not isinstance(created, dict) or not created.get("parent_id"):
            return
        match = _DIGITS.search(str(created["parent_id"]))
        if match:
            self.page_id = int(match.group(0))


def parse_decision(text: str) -> AgentDecision:
    """Turn the accumulated response into a decision. Never raises.

    Tries the raw text, then the text with control characters removed. If both
    fail, or the JSON does not fit the decision schema, returns the fallback
    `ProtocolComplete` decision.
    """
    candidates = [text]
    cleaned = _CONTROL_CHARS.sub("", text)
    if cleaned != text:
        candidates.append(cleaned)

    for candidate in candidates:
        try:
            payload = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        try:
            return AgentDecision.from_wire(payload)
        except ProtocolError as e:
            logger.error(f"Model response does not match the decision schema: {e}")
            return AgentDecision.fallback(str(e))

    logger.error(f"Model response is not valid JSON ({len(text)} chars)")
    return AgentDecision.fallback()


class ThoughtPreview:
    """Best-effort extraction of the in-progress ``"thought"`` value for display.

    Feed it every chunk; it returns only the newly revealed part of the thought.
    Display only, the final decision always comes from `parse_decision`.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._shown = 0

    def feed(self, chunk: str) -> str:
        self._buffer += chunk
        match = _THOUGHT.search(self._buffer)
        if not match:
            return ""
        text = _unescape(match.group(1))
        if len(text) <= self._shown:
            return ""
        new = text[self._shown :]
        self._shown = len(text)
        return new

    @property
    def shown(self) -> int:
        return self._shown


def _unescape(raw: str) -> str:
    # A partial \uXXXX escape at the end fails to decode; drop it until it completes.
    while True:
        try:
            return json.loads(f'"{raw}"', strict=False)
        except json.JSONDecodeError:
            cut = raw.rfind("\\")
            if cut < 0:
                return raw
            raw = raw[:cut]


class LiveDisplay:
    """Side channel that forwards chunks to a subscriber without blocking the reader.

    `publish` never waits: when the queue is full the chunk is dropped. A
    background task drains the queue into the subscriber, which may be a plain
    function or a coroutine function.
    """

    def __init__(self, subscriber: Callable[[str], Any], maxsize: int = 256):
        self._subscriber = subscriber
        self._queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize)
        self._task: asyncio.Task[None] | None = None
        self.dropped = 0

    def publish(self, text: str) -> None:
        try:
            self._queue.put_nowait(text)
        except asyncio.QueueFull:
            self.dropped += 1

    async def __aenter__(self) -> "LiveDisplay":
        self._task = asyncio.create_task(self._pump())
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        await self._queue.put(None)
        if self._task is not None:
            await self._task
            self._task = None
        if self.dropped:
            logger.debug(f"Live display dropped {self.dropped} chunks")

    async def _pump(self) -> None:
        while True:
            text = await self._queue.get()
            if text is None:
                return
            try:
                result = self._subscriber(text)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(f"Live display subscriber failed: {e}")
