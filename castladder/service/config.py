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
Service configuration for CastLadder.

Settings are read from environment variables prefixed with ``CASTLADDER_``;
nested settings use ``__`` as delimiter.

Example:
    CASTLADDER_PORT=3000
    CASTLADDER_PUBLISH_URL=rtmp://media:1935/live/stream
    CASTLADDER_TRANSCODER__CRF=23
    CASTLADDER_LADDER='[{"label": "720", "audio_bitrate_kbps": 128, ...}]'
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from castladder.core.ladder import DEFAULT_PROFILES, RenditionLadder, RenditionProfile
from castladder.core.transcoder import TranscoderConfig


class TranscoderSettings(BaseModel):
    """Encoding settings for the ingest transcoder."""

    ffmpeg_path: Optional[str] = Field(default=None, description="Path to ffmpeg (PATH lookup if unset)")
    preset: str = Field(default="ultrafast", description="x264 preset")
    tune: Optional[str] = Field(default="zerolatency", description="x264 tune")
    frame_rate: int = Field(default=25, ge=1, description="Output frame rate")
    keyframe_interval: int = Field(default=2, ge=1, description="Keyframe interval in seconds")
    crf: int = Field(default=25, ge=0, le=51, description="Constant Rate Factor")
    audio_bitrate: str = Field(default="128k", description="Audio bitrate")
    audio_sample_rate: int = Field(default=32000, description="Audio sample rate in Hz")


class RenditionSettings(BaseModel):
    """One rendition of the ladder."""

    label: str = Field(..., min_length=1, description="Rendition label, e.g. 720")
    audio_bitrate_kbps: int = Field(..., gt=0, description="Audio bitrate in kbit/s")
    video_bitrate_kbps: int = Field(..., gt=0, description="Video bitrate in kbit/s")
    width: int = Field(..., gt=0, description="Frame width in pixels")
    height: int = Field(..., gt=0, description="Frame height in pixels")
    frame_rate: int = Field(..., gt=0, description="Frames per second")

    def to_profile(self) -> RenditionProfile:
        return RenditionProfile(
            label=self.label,
            audio_bitrate_kbps=self.audio_bitrate_kbps,
            video_bitrate_kbps=self.video_bitrate_kbps,
            width=self.width,
            height=self.height,
            frame_rate=self.frame_rate,
        )


def _default_ladder() -> List[RenditionSettings]:
    return [RenditionSettings(**profile.to_dict()) for profile in DEFAULT_PROFILES]


class ServiceConfig(BaseSettings):
    """CastLadder service settings."""

    model_config = SettingsConfigDict(
        env_prefix="CASTLADDER_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    host: str = Field(default="0.0.0.0", description="Host to bind to")
    port: int = Field(default=3000, description="Port to bind to")
    log_level: str = Field(default="INFO", description="Log level")

    static_dir: Optional[str] = Field(
        default=None, description="Capture/player page directory (bundled page if unset)"
    )
    media_root: str = Field(default="./media", description="Directory holding rendition outputs")

    publish_url: str = Field(
        default="rtmp://localhost:1935/live/stream",
        description="Address the ingest transcoder publishes to",
    )
    playback_base_url: str = Field(
        default="http://localhost:8000/live/stream",
        description="Base URL of the rendition playlists",
    )
    direct_stream_url: Optional[str] = Field(
        default=None, description="Segment-free stream URL for players without HLS"
    )

    transcoder: TranscoderSettings = Field(default_factory=TranscoderSettings)
    ladder: List[RenditionSettings] = Field(default_factory=_default_ladder)

    channel_size: int = Field(default=256, ge=1, description="Buffered chunks per session")
    stop_timeout: float = Field(default=5.0, gt=0, description="Graceful transcoder stop timeout")
    write_timeout: Optional[float] = Field(
        default=None, gt=0, description="Seconds a chunk may wait on a stalled pipe"
    )
    max_sessions: int = Field(default=10, ge=1, description="Maximum concurrent sessions")

    spawn_segmenters: bool = Field(
        default=False, description="Run one local ffmpeg segmenter per rendition"
    )
    hls_time: int = Field(default=2, ge=1, description="Segment duration in seconds")
    hls_list_size: int = Field(default=3, ge=1, description="Segments kept per playlist")

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()

    @field_validator("ladder")
    @classmethod
    def _validate_ladder(cls, value: List[RenditionSettings]) -> List[RenditionSettings]:
        if not value:
            raise ValueError("ladder must contain at least one rendition")
        labels = [r.label for r in value]
        if len(set(labels)) != len(labels):
            raise ValueError(f"ladder labels must be unique: {labels}")
        return value

    def build_ladder(self) -> RenditionLadder:
        return RenditionLadder(r.to_profile() for r in self.ladder)

    def build_transcoder_config(self) -> TranscoderConfig:
        t = self.transcoder
        return TranscoderConfig(
            output_url=self.publish_url,
            ffmpeg_path=t.ffmpeg_path,
            preset=t.preset,
            tune=t.tune,
            frame_rate=t.frame_rate,
            keyframe_interval=t.keyframe_interval,
            crf=t.crf,
            audio_bitrate=t.audio_bitrate,
            audio_sample_rate=t.audio_sample_rate,
        )


@lru_cache()
def get_config() -> ServiceConfig:
    """Return the cached service configuration."""
    return ServiceConfig()
