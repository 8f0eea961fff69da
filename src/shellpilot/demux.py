# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

"""Demultiplexer for the container runtime's attached-stream framing.

A non-TTY exec session carries stdout and stderr on one byte stream. Every frame
starts with an 8-byte header::

    [stream_id: 1][reserved: 3][length: 4, big-endian]

followed by `length` payload bytes. Frames may be split across reads in any way.
"""

import struct
from collections.abc import Iterable
from typing import BinaryIO

from loguru import logger

HEADER_SIZE = 8
STDIN, STDOUT, STDERR = 0, 1, 2

_HEADER = struct.Struct(">BxxxL")


class FrameDemuxer:
    """Incrementally splits a multiplexed byte stream into two sinks.

    One reader calls `feed` with whatever bytes arrive; payloads are written to
    the stdout or stderr sink as soon as a frame is complete. The sinks never wait
    on each other.
    """

    def __init__(self, stdout_sink: BinaryIO, stderr_sink: BinaryIO):
        self.stdout_sink = stdout_sink
        self.stderr_sink = stderr_sink
        self._buffer = bytearray()
        self.frames = 0

    def feed(self, data: bytes) -> None:
        self._buffer.extend(data)
        while len(self._buffer) >= HEADER_SIZE:
            stream_id, length = _HEADER.unpack_from(self._buffer)
            end = HEADER_SIZE + length
            if len(self._buffer) < end:
                return
            payload = bytes(self._buffer[HEADER_SIZE:end])
            del self._buffer[:end]
            self._dispatch(stream_id, payload)

    def _dispatch(self, stream_id: int, payload: bytes) -> None:
        self.frames += 1
        if stream_id == STDERR:
            self.stderr_sink.write(payload)
        elif stream_id in (STDOUT, STDIN):
            self.stdout_sink.write(payload)
        else:
            logger.warning(f"Dropping frame with unknown stream id {stream_id} ({len(payload)} bytes)")

    def close(self) -> None:
        """Signal end-of-file. A dangling partial frame is discarded."""
        if self._buffer:
            logger.warning(f"Stream ended inside a frame; discarding {len(self._buffer)} trailing bytes")
            self._buffer.clear()


def encode_frame(stream_id: int, payload: bytes) -> bytes:
    """Build one multiplexed frame. Used by fakes and tests."""
    return _HEADER.pack(stream_id, len(payload)) + payload


def demux_chunks(chunks: Iterable[bytes], stdout_sink: BinaryIO, stderr_sink: BinaryIO) -> int:
    """Run a demuxer over `chunks` until exhausted. Returns the number of frames seen."""
    demuxer = FrameDemuxer(stdout_sink, stderr_sink)
    for chunk in chunks:
        demuxer.feed(chunk)
    demuxer.close()
    return demuxer.frames
