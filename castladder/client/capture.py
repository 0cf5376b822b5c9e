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

"""
Capture producer client.

Pushes media chunks to the ingest WebSocket on a fixed interval, the way
the browser page pushes MediaRecorder slices, and collects the status
messages the server sends back.

Example:
    >>> producer = CaptureProducer("ws://localhost:3000/ingest", interval_ms=25)
    >>> result = await producer.run(iter_file_chunks("capture.webm", 16384))
    >>> result.chunks_sent, result.final_state
    (42, 'live')
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Union

import aiohttp

from castladder.utils.logger import logger

TERMINAL_STATES = ("stopped", "failed")


def iter_file_chunks(path: Union[str, Path], chunk_size: int = 16384) -> Iterator[bytes]:
    """Yield a file's bytes in fixed-size chunks."""
    if chunk_size < 1:
        raise ValueError("chunk_size must be at least 1")
    with open(path, "rb") as f:
        while True:
            data = f.read(chunk_size)
            if not data:
                return
            yield data


@dataclass
class CaptureResult:
    """Outcome of one capture push."""

    chunks_sent: int = 0
    bytes_sent: int = 0
    statuses: List[Dict[str, Any]] = field(default_factory=list)
    close_code: Optional[int] = None

    @property
    def session_id(self) -> Optional[str]:
        for message in self.statuses:
            if message.get("session_id"):
                return message["session_id"]
        return None

    @property
    def final_state(self) -> Optional[str]:
        for message in reversed(self.statuses):
            if message.get("state"):
                return message["state"]
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "chunks_sent": self.chunks_sent,
            "bytes_sent": self.bytes_sent,
            "final_state": self.final_state,
            "close_code": self.close_code,
            "statuses": self.statuses,
        }


class CaptureProducer:
    """WebSocket producer for the ingest endpoint."""

    def __init__(
        self,
        url: str,
        interval_ms: int = 25,
        session_id: Optional[str] = None,
        on_status: Optional[Callable[[Dict[str, Any]], None]] = None,
        close_timeout: float = 10.0,
    ) -> None:
        """
        Args:
            url: Ingest WebSocket URL, e.g. ws://localhost:3000/ingest
            interval_ms: Delay between chunks in milliseconds
            session_id: Session id to request (server generated if None)
            on_status: Called with every message received from the server
            close_timeout: Seconds to wait for the final status after sending
        """
        self.url = url
        self.interval_ms = interval_ms
        self.session_id = session_id
        self.on_status = on_status
        self.close_timeout = close_timeout

    async def run(self, chunks: Iterable[bytes]) -> CaptureResult:
        """Connect, push every chunk, then close and collect statuses."""
        result = CaptureResult()
        params = {"session_id": self.session_id} if self.session_id else None
        interval = self.interval_ms / 1000.0

        async with aiohttp.ClientSession() as http:
            async with http.ws_connect(self.url, params=params) as ws:
                logger.info(f"[CAPTURE] Connected to {self.url}")
                receiver = asyncio.create_task(self._receive(ws, result))

                for data in chunks:
                    if ws.closed or receiver.done():
                        logger.warning("[CAPTURE] Server ended the session, stopping push")
                        break
                    await ws.send_bytes(data)
                    result.chunks_sent += 1
                    result.bytes_sent += len(data)
                    if interval > 0:
                        await asyncio.sleep(interval)

                if not ws.closed:
                    await ws.close()
                try:
                    await asyncio.wait_for(receiver, timeout=self.close_timeout)
                except asyncio.TimeoutError:
                    logger.warning("[CAPTURE] Timed out waiting for the final status")
                result.close_code = ws.close_code

        logger.info(
            f"[CAPTURE] Sent {result.chunks_sent} chunks ({result.bytes_sent} bytes), "
            f"final state: {result.final_state}"
        )
        return result

    async def _receive(self, ws: aiohttp.ClientWebSocketResponse, result: CaptureResult) -> None:
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                try:
                    message = json.loads(msg.data)
                except json.JSONDecodeError:
                    logger.warning(f"[CAPTURE] Invalid message from server: {msg.data[:100]}")
                    continue
                result.statuses.append(message)
                if self.on_status:
                    self.on_status(message)
                if message.get("state") in TERMINAL_STATES:
                    return
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.error(f"[CAPTURE] WebSocket error: {ws.exception()}")
                return
