# Copyright 2026 Firefly Software Solutions Inc
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Chunk channel between a capture client and its ingest relay.

The transport (a WebSocket in the service) pushes each binary message into
the channel with ``send()``. The channel numbers chunks in arrival order,
holds at most ``maxsize`` of them, and hands them to exactly one reader.
When the buffer is full the newest chunk is dropped whole, so buffered
memory stays bounded and the chunks that do pass keep their order.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional

from castladder.exceptions import ChannelError
from castladder.utils.logger import logger

# Sentinel placed on the queue by close()
_CLOSED = object()


@dataclass(frozen=True)
class Chunk:
    """One opaque media fragment and its arrival position."""

    sequence: int
    data: bytes
    received_at: float = field(default_factory=time.monotonic, compare=False)

    def __len__(self) -> int:
        return len(self.data)


@dataclass
class ChannelStats:
    """Counters for a chunk channel."""

    received: int = 0
    dropped: int = 0
    bytes_received: int = 0
    bytes_dropped: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "received": self.received,
            "dropped": self.dropped,
            "bytes_received": self.bytes_received,
            "bytes_dropped": self.bytes_dropped,
        }


class ChunkChannel:
    """Bounded, ordered, single-reader chunk channel.

    Example:
        >>> channel = ChunkChannel(maxsize=64)
        >>> channel.send(b"...")
        >>> async for chunk in channel:
        ...     await supervisor.write(chunk.data)
    """

    def __init__(self, maxsize: int = 256, name: str = "channel") -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")

        self.name = name
        self.maxsize = maxsize
        self.stats = ChannelStats()
        # One extra slot so the close sentinel always fits
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize + 1)
        self._next_sequence = 0
        self._closed = False
        self._close_reason: Optional[str] = None
        self._reader_attached = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def close_reason(self) -> Optional[str]:
        return self._close_reason

    @property
    def pending(self) -> int:
        """Number of chunks buffered but not yet consumed."""
        size = self._queue.qsize()
        return size - 1 if self._closed and size else size

    def send(self, data: bytes) -> bool:
        """Push one chunk without waiting.

        Fire-and-forget: there is no acknowledgement. Returns False when the
        chunk was dropped, either because the buffer is full or the channel
        has been closed.
        """
        if self._closed:
            logger.debug(f"[CHANNEL] {self.name}: send after close ignored ({len(data)} bytes)")
            return False

        sequence = self._next_sequence
        self._next_sequence += 1
        self.stats.received += 1
        self.stats.bytes_received += len(data)

        if self._queue.qsize() >= self.maxsize:
            self.stats.dropped += 1
            self.stats.bytes_dropped += len(data)
            logger.warning(
                f"[CHANNEL] {self.name}: buffer full ({self.maxsize} chunks), "
                f"dropped chunk #{sequence} ({len(data)} bytes, "
                f"{self.stats.dropped} dropped so far)"
            )
            return False

        self._queue.put_nowait(Chunk(sequence=sequence, data=bytes(data)))
        return True

    def close(self, reason: str = "closed") -> None:
        """Close the channel; buffered chunks are still delivered to the reader."""
        if self._closed:
            return
        self._closed = True
        self._close_reason = reason
        self._queue.put_nowait(_CLOSED)
        logger.debug(f"[CHANNEL] {self.name}: closed ({reason})")

    def __aiter__(self) -> AsyncIterator[Chunk]:
        if self._reader_attached:
            raise ChannelError(f"Channel {self.name} already has a reader")
        self._reader_attached = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Chunk]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item

    def discard_pending(self) -> int:
        """Drop every buffered chunk and return how many were discarded."""
        discarded = 0
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _CLOSED:
                # Keep the sentinel so an attached reader still terminates
                self._queue.put_nowait(_CLOSED)
                break
            discarded += 1
        return discarded
