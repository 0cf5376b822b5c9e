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

"""HLS master playlist synthesis.

The manifest is derived from the ladder and a base publish URL only. It is
never written to disk and carries no timestamps, so the same inputs always
render the same bytes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from castladder.core.ladder import RenditionLadder, RenditionProfile

# H.264 Main@3.1 + AAC-LC
DEFAULT_CODECS = "avc1.4d401f,mp4a.40.2"
MANIFEST_MIME_TYPE = "application/vnd.apple.mpegurl"


@dataclass(frozen=True)
class ManifestEntry:
    """One variant stream of the master playlist."""

    label: str
    bandwidth: int
    resolution: str
    frame_rate: int
    codecs: str
    url: str

    def render(self) -> str:
        return (
            f"#EXT-X-STREAM-INF:BANDWIDTH={self.bandwidth},"
            f"RESOLUTION={self.resolution},"
            f"FRAME-RATE={self.frame_rate},"
            f'CODECS="{self.codecs}"\n'
            f"{self.url}"
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "label": self.label,
            "bandwidth": self.bandwidth,
            "resolution": self.resolution,
            "frame_rate": self.frame_rate,
            "codecs": self.codecs,
            "url": self.url,
        }


@dataclass(frozen=True)
class Manifest:
    """Master playlist listing every rendition, highest bandwidth first."""

    entries: Tuple[ManifestEntry, ...]
    version: int = 3

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def urls(self) -> List[str]:
        return [entry.url for entry in self.entries]

    def render(self) -> str:
        lines = ["#EXTM3U", f"#EXT-X-VERSION:{self.version}"]
        lines.extend(entry.render() for entry in self.entries)
        return "\n".join(lines) + "\n"


def rendition_url(base_url: str, profile: RenditionProfile) -> str:
    """Playback URL of one rendition: ``<base>_<label>/index.m3u8``."""
    return f"{base_url.rstrip('/')}_{profile.label}/index.m3u8"


def synthesize_manifest(
    ladder: RenditionLadder,
    base_url: str,
    codecs: str = DEFAULT_CODECS,
) -> Manifest:
    """Build the master playlist for ``ladder`` published under ``base_url``.

    Args:
        ladder: Rendition ladder (already bandwidth-descending)
        base_url: Publish base such as http://host:8000/live/stream
        codecs: CODECS attribute shared by every rendition

    Returns:
        Manifest with one entry per profile, in ladder order
    """
    return Manifest(
        entries=tuple(
            ManifestEntry(
                label=profile.label,
                bandwidth=profile.bandwidth,
                resolution=profile.resolution,
                frame_rate=profile.frame_rate,
                codecs=codecs,
                url=rendition_url(base_url, profile),
            )
            for profile in ladder
        )
    )
