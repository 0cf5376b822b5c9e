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

"""Ingest relay from a chunk channel into a transcoder's stdin.

The relay is the only consumer of its channel and the only writer of its
transcoder's input. A single task awaits each write before reading the next
chunk, so the transcoder sees chunks in channel order.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Callable, Dict, Optional

from castladder.core.channel import ChunkChannel
from castladder.core.transcoder import TranscoderState, TranscoderSupervisor
from castladder.utils.logger import logger


class RelayExit(str, Enum):
    """Why a relay stopped."""

    CHANNEL_CLOSED = "channel_closed"
    TRANSCODER_EXITED = "transcoder_exited"
    CANCELLED = "cancelled"


class IngestRelay:
    """Single-reader bridge from a ChunkChannel to a TranscoderSupervisor."""

    def __init__(
        self,
        channel: ChunkChannel,
        supervisor: TranscoderSupervisor,
        on_failure: Optional[Callable[[str], None]] = None,
        name: str = "relay",
    ) -> None:
        self.channel = channel
        self.supervisor = supervisor
        self.name = name

        self.forwarded = 0
        self.write_failures = 0
        self.discarded = 0
        self.last_sequence: Optional[int] = None
        self.exit_reason: Optional[RelayExit] = None

        self._on_failure = on_failure
        self._failure_reported = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Start the reader task."""
        if self._task is not None:
            raise RuntimeError(f"Relay {self.name} already started")
        self._task = asyncio.create_task(self._run(), name=f"{self.name}-reader")
        return self._task

    async def wait(self) -> Optional[RelayExit]:
        """Wait for the reader task to finish."""
        if self._task is not None:
            try:
                await asyncio.shield(self._task)
            except asyncio.CancelledError:
                if not self._task.cancelled():
                    raise
        return self.exit_reason

    async def cancel(self) -> None:
        """Cancel forwarding immediately."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def _run(self) -> RelayExit:
        logger.debug(f"[RELAY] {self.name}: reader started")
        try:
            async for chunk in self.channel:
                if not self.supervisor.is_running:
                    self._discard(chunk.sequence)
                    continue

                if await self.supervisor.write(chunk.data):
                    self.forwarded += 1
                    self.last_sequence = chunk.sequence
                elif self.supervisor.is_running:
                    # Transient: the process is alive, only this chunk was lost
                    self.write_failures += 1
                    logger.warning(
                        f"[RELAY] {self.name}: write failed for chunk #{chunk.sequence} "
                        f"({len(chunk)} bytes), chunk dropped"
                    )
                else:
                    self._discard(chunk.sequence)
        except asyncio.CancelledError:
            self.exit_reason = RelayExit.CANCELLED
            logger.debug(f"[RELAY] {self.name}: reader cancelled")
            raise

        self.exit_reason = (
            RelayExit.TRANSCODER_EXITED
            if self._failure_reported or self.supervisor.state == TranscoderState.ERRORED
            else RelayExit.CHANNEL_CLOSED
        )
        logger.info(
            f"[RELAY] {self.name}: reader finished ({self.exit_reason.value}, "
            f"forwarded={self.forwarded}, discarded={self.discarded}, "
            f"write_failures={self.write_failures})"
        )
        return self.exit_reason

    def _discard(self, sequence: int) -> None:
        self.discarded += 1
        if not self._failure_reported:
            self._failure_reported = True
            reason = (
                f"transcoder {self.supervisor.state.value} "
                f"(exit code: {self.supervisor.exit_code})"
            )
            logger.error(
                f"[RELAY] {self.name}: {reason}, no further writes from chunk #{sequence}"
            )
            if self._on_failure:
                self._on_failure(reason)

    def get_stats(self) -> Dict[str, Any]:
        """Get relay counters."""
        return {
            "forwarded": self.forwarded,
            "write_failures": self.write_failures,
            "discarded": self.discarded,
            "last_sequence": self.last_sequence,
            "exit_reason": self.exit_reason.value if self.exit_reason else None,
        }
