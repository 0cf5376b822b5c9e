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
Playback technologies and capability probing.

A player binds exactly one technology for its lifetime, chosen from the
capabilities of the environment in this order:

1. AdaptiveEngine: loads the master manifest and switches renditions itself
   (the hls.js path in the bundled page)
2. NativePlayback: hands a single playlist URL to a native HLS player
3. DirectStreamPlayback: segment-free fallback such as an FLV relay URL
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from castladder.core.manifest import Manifest
from castladder.utils.logger import logger


@dataclass(frozen=True)
class Capabilities:
    """What the playback environment supports."""

    adaptive_engine: bool = False
    native_hls: bool = False
    direct_stream: bool = False

    @property
    def any(self) -> bool:
        return self.adaptive_engine or self.native_hls or self.direct_stream

    def to_dict(self) -> Dict[str, bool]:
        """Convert to dictionary."""
        return {
            "adaptive_engine": self.adaptive_engine,
            "native_hls": self.native_hls,
            "direct_stream": self.direct_stream,
        }


CapabilityProbe = Callable[[], Capabilities]


def static_probe(capabilities: Capabilities) -> CapabilityProbe:
    """Probe that always reports ``capabilities``."""

    def probe() -> Capabilities:
        return capabilities

    return probe


@dataclass(frozen=True)
class Level:
    """One rendition as seen by the adaptive engine."""

    index: int
    label: str
    width: int
    height: int
    bitrate: int
    url: str


class PlaybackTechnology(ABC):
    """Base class for playback technologies."""

    name: str = "technology"

    def __init__(self) -> None:
        self.source: Optional[str] = None
        self.destroyed = False

    @property
    def supports_rendition_selection(self) -> bool:
        return False

    @abstractmethod
    def load(self, manifest: Manifest) -> None:
        """
        Attach the technology to its source.

        Args:
            manifest: Master manifest of the stream
        """
        pass

    def destroy(self) -> None:
        """Release the technology; it cannot be reused."""
        self.destroyed = True
        self.source = None
        logger.debug(f"[PLAYER] {self.name} destroyed")

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "source": self.source, "destroyed": self.destroyed}


class AdaptiveEngine(PlaybackTechnology):
    """Manifest-driven engine with automatic or forced rendition selection.

    ``current_level`` is -1 while the engine picks renditions itself.
    """

    name = "adaptive"

    def __init__(self, start_level: int = -1, cap_level_to_player_size: bool = True) -> None:
        super().__init__()
        self.start_level = start_level
        self.cap_level_to_player_size = cap_level_to_player_size
        self.current_level = start_level
        self.levels: List[Level] = []
        self.manifest_text: Optional[str] = None

    @property
    def supports_rendition_selection(self) -> bool:
        return True

    def load(self, manifest: Manifest) -> None:
        self.manifest_text = manifest.render()
        self.levels = []
        for index, entry in enumerate(manifest.entries):
            width, height = (int(v) for v in entry.resolution.split("x"))
            self.levels.append(
                Level(
                    index=index,
                    label=entry.label,
                    width=width,
                    height=height,
                    bitrate=entry.bandwidth,
                    url=entry.url,
                )
            )
        self.source = "master"
        logger.info(
            f"[PLAYER] Adaptive engine loaded master manifest with {len(self.levels)} levels: "
            + ", ".join(level.url for level in self.levels)
        )

    def set_level(self, index: int) -> None:
        """Force a rendition, or -1 to return to automatic selection."""
        self.current_level = index

    def destroy(self) -> None:
        self.levels = []
        self.manifest_text = None
        super().destroy()


class NativePlayback(PlaybackTechnology):
    """Native HLS player fed a single playlist URL."""

    name = "native"

    def __init__(self, url: str) -> None:
        super().__init__()
        self.url = url

    def load(self, manifest: Manifest) -> None:
        self.source = self.url
        logger.info(f"[PLAYER] Using native HLS player with URL: {self.url}")


class DirectStreamPlayback(PlaybackTechnology):
    """Segment-free playback of a direct stream URL."""

    name = "direct"

    def __init__(self, url: str) -> None:
        super().__init__()
        self.url = url

    def load(self, manifest: Manifest) -> None:
        self.source = self.url
        logger.info(f"[PLAYER] Using direct stream playback with URL: {self.url}")
