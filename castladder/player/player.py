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
Adaptive client player state machine.

States:
    uninitialized -> loading -> playing <-> switching
    loading/playing/switching -> errored (fatal playback error)
    any -> uninitialized (stop)

The player never retries on its own. Recovering from ``errored`` requires
``stop()`` followed by a new ``initialize()``.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from castladder.core.ladder import RenditionLadder
from castladder.core.manifest import Manifest
from castladder.exceptions import (
    PlaybackError,
    RenditionIndexError,
    UnsupportedEnvironmentError,
)
from castladder.player.technology import (
    AdaptiveEngine,
    Capabilities,
    CapabilityProbe,
    DirectStreamPlayback,
    NativePlayback,
    PlaybackTechnology,
)
from castladder.utils.logger import logger

AUTO = -1

DEFAULT_NATIVE_URL = "http://localhost:8000/live/stream.m3u8"

STATUS_NOT_STREAMING = "Not streaming"
STATUS_STARTING = "Starting stream..."
STATUS_ADAPTIVE = "Playing HLS stream with adaptive quality"
STATUS_NATIVE = "Playing HLS stream (native player)"
STATUS_DIRECT = "Playing direct stream"
STATUS_UNSUPPORTED = "Error: Your browser doesn't support HLS streaming"


class PlayerState(str, Enum):
    """State of the adaptive client player."""

    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    PLAYING = "playing"
    SWITCHING = "switching"
    ERRORED = "errored"


def default_factories() -> Dict[str, Callable[..., PlaybackTechnology]]:
    return {
        "adaptive": AdaptiveEngine,
        "native": NativePlayback,
        "direct": DirectStreamPlayback,
    }


class AdaptivePlayer:
    """Client player bound to one playback technology.

    Example:
        >>> player = AdaptivePlayer(static_probe(Capabilities(adaptive_engine=True)))
        >>> player.initialize(synthesize_manifest(ladder, "http://localhost:8000/live/stream"))
        >>> player.on_manifest_parsed()
        >>> player.select_rendition(0)
        >>> player.on_level_switched(0)
        >>> player.status
        'Playing HLS stream (720p)'
    """

    def __init__(
        self,
        probe: CapabilityProbe,
        factories: Optional[Dict[str, Callable[..., PlaybackTechnology]]] = None,
        ladder: Optional[RenditionLadder] = None,
        native_url: str = DEFAULT_NATIVE_URL,
        direct_url: Optional[str] = None,
        on_status: Optional[Callable[[str], None]] = None,
    ) -> None:
        """Initialize the player.

        Args:
            probe: Capability probe, evaluated once on first initialize
            factories: Technology constructors keyed "adaptive", "native", "direct"
            ladder: Ladder used to validate selections before a manifest is loaded
            native_url: Single-stream playlist URL for native playback
            direct_url: Segment-free stream URL; direct playback is disabled if None
            on_status: Called with every status message
        """
        self._probe = probe
        self._factories = default_factories()
        if factories:
            self._factories.update(factories)
        self.ladder = ladder or RenditionLadder.default()
        self.native_url = native_url
        self.direct_url = direct_url
        self._on_status = on_status

        self._state = PlayerState.UNINITIALIZED
        self._capabilities: Optional[Capabilities] = None
        self._technology: Optional[PlaybackTechnology] = None
        self._manifest: Optional[Manifest] = None
        self._selected_index = AUTO
        self._current_index: Optional[int] = None
        self._status = STATUS_NOT_STREAMING

    @property
    def state(self) -> PlayerState:
        return self._state

    @property
    def status(self) -> str:
        return self._status

    @property
    def technology(self) -> Optional[PlaybackTechnology]:
        return self._technology

    @property
    def capabilities(self) -> Optional[Capabilities]:
        return self._capabilities

    @property
    def selected_index(self) -> int:
        """Requested rendition, -1 for automatic selection."""
        return self._selected_index

    @property
    def current_index(self) -> Optional[int]:
        """Rendition the engine is currently playing, if known."""
        return self._current_index

    @property
    def rendition_count(self) -> int:
        if self._manifest is not None:
            return len(self._manifest)
        return len(self.ladder)

    def set_status(self, message: str) -> None:
        self._status = message
        logger.info(f"[PLAYER] {message}")
        if self._on_status:
            self._on_status(message)

    def _set_state(self, state: PlayerState) -> None:
        if state != self._state:
            logger.debug(f"[PLAYER] {self._state.value} -> {state.value}")
            self._state = state

    def _rendition_name(self, index: int) -> str:
        if index == AUTO:
            return "Auto"
        if isinstance(self._technology, AdaptiveEngine) and index < len(self._technology.levels):
            return f"{self._technology.levels[index].height}p"
        if self._manifest is not None:
            return f"{self._manifest.entries[index].resolution.split('x')[1]}p"
        return f"{self.ladder[index].height}p"

    def initialize(self, manifest: Manifest) -> PlaybackTechnology:
        """Bind a playback technology and start loading.

        Re-initializing an active player tears the previous technology down
        first. The capability probe is evaluated on the first call only.

        Raises:
            UnsupportedEnvironmentError: If no technology is available
        """
        if self._state != PlayerState.UNINITIALIZED:
            self.stop()

        self._manifest = manifest
        self._set_state(PlayerState.LOADING)

        if self._capabilities is None:
            self._capabilities = self._probe()
            logger.info(f"[PLAYER] Capabilities: {self._capabilities.to_dict()}")
        caps = self._capabilities

        if caps.adaptive_engine:
            technology = self._factories["adaptive"](start_level=self._selected_index)
            technology.load(manifest)
            self._technology = technology
            self.set_status("Loading HLS stream with adaptive quality")
            return technology

        if caps.native_hls:
            technology = self._factories["native"](url=self.native_url)
            technology.load(manifest)
            self._technology = technology
            self._set_state(PlayerState.PLAYING)
            self.set_status(STATUS_NATIVE)
            return technology

        if caps.direct_stream and self.direct_url:
            technology = self._factories["direct"](url=self.direct_url)
            technology.load(manifest)
            self._technology = technology
            self._set_state(PlayerState.PLAYING)
            self.set_status(STATUS_DIRECT)
            return technology

        self._set_state(PlayerState.ERRORED)
        self.set_status(STATUS_UNSUPPORTED)
        logger.error("[PLAYER] HLS is not supported in this environment")
        raise UnsupportedEnvironmentError(STATUS_UNSUPPORTED)

    def on_manifest_parsed(self) -> None:
        """The engine parsed the master manifest."""
        if self._state != PlayerState.LOADING:
            logger.debug(f"[PLAYER] manifest parsed ignored in state {self._state.value}")
            return
        self._set_state(PlayerState.PLAYING)
        self.set_status(STATUS_ADAPTIVE)

    def on_level_switched(self, index: int) -> None:
        """The engine switched to rendition ``index``."""
        if self._state in (PlayerState.UNINITIALIZED, PlayerState.ERRORED):
            logger.debug(f"[PLAYER] level switch ignored in state {self._state.value}")
            return
        if not 0 <= index < self.rendition_count:
            raise RenditionIndexError(index, self.rendition_count)

        self._current_index = index
        self._set_state(PlayerState.PLAYING)
        self.set_status(f"Playing HLS stream ({self._rendition_name(index)})")

    def select_rendition(self, index: int) -> None:
        """Force rendition ``index``, or -1 for automatic selection.

        Raises:
            RenditionIndexError: If ``index`` is outside ``-1 <= index < N``;
                state and the current rendition are left unchanged
            PlaybackError: If the player is in the errored state
        """
        if not AUTO <= index < self.rendition_count:
            raise RenditionIndexError(index, self.rendition_count)
        if self._state == PlayerState.ERRORED:
            raise PlaybackError("Player is in errored state; stop and initialize again")

        self._selected_index = index
        logger.info(f"[PLAYER] Manually selected quality: {self._rendition_name(index)}")

        technology = self._technology
        if not isinstance(technology, AdaptiveEngine):
            # Remembered as the start level for the next adaptive initialize
            return

        technology.set_level(index)
        if self._state in (PlayerState.PLAYING, PlayerState.SWITCHING):
            if index != AUTO:
                self._set_state(PlayerState.SWITCHING)
            self.set_status(f"Playing HLS stream ({self._rendition_name(index)})")

    def on_error(self, fatal: bool, details: str = "") -> None:
        """Playback error reported by the technology."""
        if not fatal:
            logger.warning(f"[PLAYER] Non-fatal playback error ignored: {details}")
            return

        logger.error(f"[PLAYER] Fatal playback error: {details}")
        if self._state in (PlayerState.LOADING, PlayerState.PLAYING, PlayerState.SWITCHING):
            self._set_state(PlayerState.ERRORED)
            self.set_status(f"Error: {details}" if details else "Error: playback failed")

    def stop(self) -> None:
        """Destroy the bound technology and return to uninitialized."""
        if self._technology is not None:
            self._technology.destroy()
            self._technology = None
        self._manifest = None
        self._current_index = None
        self._set_state(PlayerState.UNINITIALIZED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "status": self._status,
            "selected_index": self._selected_index,
            "current_index": self._current_index,
            "technology": self._technology.name if self._technology else None,
        }


class PlaybackScheduler:
    """Starts the player once the published stream can be played.

    Capture starts emitting chunks immediately; player initialization waits
    for ``readiness`` when one is supplied, otherwise for a fixed grace
    period.
    """

    def __init__(
        self,
        player: AdaptivePlayer,
        grace_period: float = 2.0,
        readiness: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> None:
        self.player = player
        self.grace_period = grace_period
        self.readiness = readiness
        self._streaming = False
        self._task: Optional[asyncio.Task] = None

    @property
    def streaming(self) -> bool:
        return self._streaming

    def start(self, manifest: Manifest) -> asyncio.Task:
        """Mark streaming as started and schedule player initialization."""
        if self._streaming:
            raise PlaybackError("Streaming already started")
        self._streaming = True
        self.player.set_status(STATUS_STARTING)
        self._task = asyncio.create_task(self._initialize_when_ready(manifest))
        return self._task

    async def _initialize_when_ready(self, manifest: Manifest) -> PlaybackTechnology:
        if self.readiness is not None:
            ready = await self.readiness()
            if not ready:
                logger.warning("[PLAYER] Stream not ready, initializing player anyway")
        else:
            await asyncio.sleep(self.grace_period)
        return self.player.initialize(manifest)

    async def wait(self) -> Optional[PlaybackTechnology]:
        """Wait for the scheduled initialization."""
        if self._task is None:
            return None
        return await self._task

    async def stop(self) -> None:
        """Cancel a pending initialization and stop the player."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._streaming = False
        self.player.stop()
        self.player.set_status(STATUS_NOT_STREAMING)
