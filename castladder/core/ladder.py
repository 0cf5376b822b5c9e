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

"""Rendition ladder for CastLadder.

This module declares the fixed set of output renditions and drives the
segmenting side of the pipeline:
- RenditionProfile: immutable {label, audio/video bitrate, resolution, fps}
- RenditionLadder: profiles ordered by descending bandwidth
- LadderCoordinator: fission config, per-rendition segmenter commands,
  optional segmenter processes and a first-segment readiness check

Renditions whose resolution exceeds the capture are encoded anyway. The
source resolution is not probed, so upscaling is accepted.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple
from urllib.parse import urlparse

from castladder.core.transcoder import TranscoderConfig, TranscoderSupervisor
from castladder.exceptions import ConfigurationError, TranscoderLaunchError
from castladder.utils.logger import logger


@dataclass(frozen=True)
class RenditionProfile:
    """One fixed-quality output of the ladder.

    Attributes:
        label: Rendition key used in paths (e.g. "720" -> stream_720/)
        audio_bitrate_kbps: Target audio bitrate in kbit/s
        video_bitrate_kbps: Target video bitrate in kbit/s
        width: Output width in pixels
        height: Output height in pixels
        frame_rate: Output frames per second
    """

    label: str
    audio_bitrate_kbps: int
    video_bitrate_kbps: int
    width: int
    height: int
    frame_rate: int

    def __post_init__(self) -> None:
        if not self.label:
            raise ConfigurationError("Rendition label must not be empty")
        for name in ("audio_bitrate_kbps", "video_bitrate_kbps", "width", "height", "frame_rate"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(
                    f"Rendition {self.label}: {name} must be positive"
                )

    @property
    def bandwidth(self) -> int:
        """Declared bandwidth in bit/s (audio + video)."""
        return (self.audio_bitrate_kbps + self.video_bitrate_kbps) * 1000

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"

    def fission_model(self) -> Dict[str, str]:
        """Model entry in node-media-server fission format."""
        return {
            "ab": f"{self.audio_bitrate_kbps}k",
            "vb": f"{self.video_bitrate_kbps}k",
            "vs": self.resolution,
            "vf": str(self.frame_rate),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "label": self.label,
            "audio_bitrate_kbps": self.audio_bitrate_kbps,
            "video_bitrate_kbps": self.video_bitrate_kbps,
            "width": self.width,
            "height": self.height,
            "frame_rate": self.frame_rate,
            "bandwidth": self.bandwidth,
            "resolution": self.resolution,
        }


DEFAULT_PROFILES: Tuple[RenditionProfile, ...] = (
    RenditionProfile("720", 128, 1500, 1280, 720, 30),
    RenditionProfile("480", 96, 1000, 854, 480, 24),
    RenditionProfile("360", 64, 600, 640, 360, 20),
)


class RenditionLadder:
    """Immutable, bandwidth-descending sequence of rendition profiles.

    Registration order does not matter; ties in bandwidth are broken by
    height, then label, so the order is fully deterministic.
    """

    def __init__(self, profiles: Iterable[RenditionProfile]) -> None:
        ordered = sorted(profiles, key=lambda p: (-p.bandwidth, -p.height, p.label))
        if not ordered:
            raise ConfigurationError("Rendition ladder must contain at least one profile")

        labels = [p.label for p in ordered]
        duplicates = sorted({label for label in labels if labels.count(label) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate rendition labels: {', '.join(duplicates)}")

        self._profiles: Tuple[RenditionProfile, ...] = tuple(ordered)

    @classmethod
    def default(cls) -> "RenditionLadder":
        return cls(DEFAULT_PROFILES)

    def __len__(self) -> int:
        return len(self._profiles)

    def __iter__(self) -> Iterator[RenditionProfile]:
        return iter(self._profiles)

    def __getitem__(self, index: int) -> RenditionProfile:
        return self._profiles[index]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RenditionLadder):
            return NotImplemented
        return self._profiles == other._profiles

    def __hash__(self) -> int:
        return hash(self._profiles)

    def __repr__(self) -> str:
        return f"RenditionLadder({', '.join(p.label for p in self._profiles)})"

    @property
    def profiles(self) -> Tuple[RenditionProfile, ...]:
        return self._profiles

    @property
    def labels(self) -> List[str]:
        return [p.label for p in self._profiles]

    def with_profile(self, profile: RenditionProfile) -> "RenditionLadder":
        """Return a new ladder with ``profile`` added."""
        return RenditionLadder(self._profiles + (profile,))

    def get(self, label: str) -> Optional[RenditionProfile]:
        for profile in self._profiles:
            if profile.label == label:
                return profile
        return None

    def index_of(self, label: str) -> int:
        for index, profile in enumerate(self._profiles):
            if profile.label == label:
                return index
        raise KeyError(label)

    def is_valid_index(self, index: int) -> bool:
        return 0 <= index < len(self._profiles)


def split_publish_url(source_url: str) -> Tuple[str, str]:
    """Split a publish address like rtmp://host/live/stream into (app, stream)."""
    parts = [part for part in urlparse(source_url).path.split("/") if part]
    if len(parts) < 2:
        raise ConfigurationError(
            f"Publish URL must look like rtmp://host/<app>/<stream>: {source_url}"
        )
    return "/".join(parts[:-1]), parts[-1]


class LadderCoordinator:
    """Drives the external segmenter to produce one output per rendition.

    Two deployment shapes are supported:
    - An RTMP media server with a fission task: ``fission_tasks()`` returns
      the task configuration to hand it.
    - Local ffmpeg segmenters: ``start()`` spawns one supervised process per
      profile, each pulling the publish address and writing HLS under
      ``<media_root>/<app>/<stream>_<label>/index.m3u8``.

    In both shapes ``wait_until_ready()`` is the readiness signal for the
    player: it returns once the rendition playlists reference a segment
    that exists on disk.
    """

    def __init__(
        self,
        ladder: RenditionLadder,
        source_url: str = "rtmp://localhost:1935/live/stream",
        media_root: str = "./media",
        ffmpeg_path: Optional[str] = None,
        hls_time: int = 2,
        hls_list_size: int = 3,
    ) -> None:
        self.ladder = ladder
        self.source_url = source_url
        self.media_root = Path(media_root)
        self.ffmpeg_path = ffmpeg_path
        self.hls_time = hls_time
        self.hls_list_size = hls_list_size
        self.app_name, self.stream_name = split_publish_url(source_url)

        self._segmenters: Dict[str, TranscoderSupervisor] = {}
        self._start_lock = asyncio.Lock()

    def rendition_dir(self, profile: RenditionProfile) -> Path:
        return self.media_root / self.app_name / f"{self.stream_name}_{profile.label}"

    def playlist_path(self, profile: RenditionProfile) -> Path:
        return self.rendition_dir(profile) / "index.m3u8"

    def fission_tasks(self) -> List[Dict[str, Any]]:
        """Fission task configuration for an RTMP media server."""
        return [
            {
                "rule": f"{self.app_name}/{self.stream_name}",
                "model": [profile.fission_model() for profile in self.ladder],
            }
        ]

    def segmenter_command(self, profile: RenditionProfile) -> List[str]:
        """Build the ffmpeg command that materializes one rendition as HLS."""
        ffmpeg = TranscoderConfig(ffmpeg_path=self.ffmpeg_path).resolve_ffmpeg()
        out_dir = self.rendition_dir(profile)
        return [
            ffmpeg, "-y",
            "-i", self.source_url,
            "-c:v", "libx264",
            "-preset", "veryfast",
            "-tune", "zerolatency",
            "-b:v", f"{profile.video_bitrate_kbps}k",
            "-s", profile.resolution,
            "-r", str(profile.frame_rate),
            "-g", str(profile.frame_rate * self.hls_time),
            "-c:a", "aac",
            "-b:a", f"{profile.audio_bitrate_kbps}k",
            "-f", "hls",
            "-hls_time", str(self.hls_time),
            "-hls_list_size", str(self.hls_list_size),
            "-hls_flags", "delete_segments",
            "-hls_segment_filename", str(out_dir / "segment%d.ts"),
            str(self.playlist_path(profile)),
        ]

    @property
    def segmenters(self) -> Dict[str, TranscoderSupervisor]:
        return dict(self._segmenters)

    async def start(self) -> None:
        """Spawn one segmenter per rendition.

        Raises:
            RuntimeError: If the segmenters are already running
            TranscoderLaunchError: If any segmenter fails to launch; the
                ones already running are stopped first.
        """
        async with self._start_lock:
            if self._segmenters:
                raise RuntimeError("Segmenters already running")
            await self._spawn_segmenters()

    async def ensure_started(self) -> bool:
        """Start the segmenters unless they are already running.

        Concurrent callers are serialized, so only the first one spawns.

        Returns:
            True if this call started them, False if they were running
        """
        async with self._start_lock:
            if self._segmenters:
                return False
            await self._spawn_segmenters()
            return True

    async def _spawn_segmenters(self) -> None:
        for profile in self.ladder:
            out_dir = self.rendition_dir(profile)
            try:
                out_dir.mkdir(parents=True, exist_ok=True)
                command = self.segmenter_command(profile)
            except (OSError, ConfigurationError) as e:
                await self.stop()
                raise TranscoderLaunchError(f"Segmenter {profile.label}: {e}") from e

            segmenter = TranscoderSupervisor(
                command=command,
                name=f"segmenter-{profile.label}",
                feed_stdin=False,
                on_exit=partial(self._on_segmenter_exit, profile.label),
            )
            try:
                await segmenter.start()
            except TranscoderLaunchError:
                await self.stop()
                raise
            self._segmenters[profile.label] = segmenter

        logger.info(
            f"[LADDER] Segmenters started for {', '.join(self.ladder.labels)} "
            f"from {self.source_url}"
        )

    def _on_segmenter_exit(self, label: str, code: int) -> None:
        if code != 0:
            logger.error(f"[LADDER] Segmenter {label} exited with code {code}")

    async def stop(self, timeout: float = 5.0) -> None:
        """Stop all segmenters."""
        segmenters = list(self._segmenters.values())
        self._segmenters.clear()
        if segmenters:
            await asyncio.gather(*(s.stop(timeout=timeout) for s in segmenters))
            logger.info("[LADDER] Segmenters stopped")

    def is_ready(self, profile: RenditionProfile) -> bool:
        """True when the rendition playlist references an existing segment."""
        playlist_path = self.playlist_path(profile)
        if not playlist_path.exists():
            return False
        try:
            content = playlist_path.read_text()
        except OSError:
            # Playlist may be mid-rewrite
            return False
        if "#EXTINF" not in content:
            return False
        for line in content.splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                if (playlist_path.parent / line).exists():
                    return True
        return False

    async def wait_until_ready(
        self,
        label: Optional[str] = None,
        timeout: float = 10.0,
        poll_interval: float = 0.1,
    ) -> bool:
        """Wait until renditions have a playable first segment.

        Args:
            label: Rendition to wait for; all renditions when None
            timeout: Maximum time to wait in seconds
            poll_interval: Delay between checks

        Returns:
            True if ready, False on timeout
        """
        if label is None:
            profiles = list(self.ladder)
        else:
            profile = self.ladder.get(label)
            if profile is None:
                raise KeyError(label)
            profiles = [profile]

        deadline = time.monotonic() + timeout
        while True:
            if all(self.is_ready(p) for p in profiles):
                return True
            if time.monotonic() >= deadline:
                logger.warning(f"[LADDER] Timeout waiting for first segment after {timeout}s")
                return False
            await asyncio.sleep(poll_interval)

    def get_status(self) -> Dict[str, Any]:
        """Readiness and segmenter state per rendition."""
        status = {}
        for profile in self.ladder:
            segmenter = self._segmenters.get(profile.label)
            status[profile.label] = {
                "ready": self.is_ready(profile),
                "playlist": str(self.playlist_path(profile)),
                "segmenter": segmenter.state.value if segmenter else None,
            }
        return status
