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
Pydantic models for the CastLadder REST API.

Example:
    >>> from castladder.service.models import RenditionResponse
    >>> RenditionResponse(label="720", bandwidth=1628000, resolution="1280x720",
    ...                   frame_rate=30, url="http://localhost:8000/live/stream_720/index.m3u8")
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SessionResponse(BaseModel):
    """Response containing ingest session information."""

    session_id: str = Field(..., description="Unique session identifier")
    state: str = Field(..., description="Session state (pending, live, stopping, stopped, failed)")
    detail: str = Field("", description="Last status detail")
    created_at: float = Field(..., description="Session creation timestamp")
    ended_at: Optional[float] = Field(None, description="Session end timestamp")
    channel: Dict[str, Any] = Field(default_factory=dict, description="Chunk channel counters")
    relay: Dict[str, Any] = Field(default_factory=dict, description="Relay counters")
    transcoder: Dict[str, Any] = Field(default_factory=dict, description="Transcoder metrics")


class SessionListResponse(BaseModel):
    """List of ingest sessions."""

    sessions: List[SessionResponse] = Field(default_factory=list, description="Sessions")
    total: int = Field(..., description="Number of sessions")


class SessionStopResponse(BaseModel):
    """Result of stopping a session."""

    session_id: str = Field(..., description="Session identifier")
    state: str = Field(..., description="Final session state")
    detail: str = Field("", description="Stop detail")
    exit_code: Optional[int] = Field(None, description="Transcoder exit code")


class RenditionResponse(BaseModel):
    """One rendition of the ladder."""

    label: str = Field(..., description="Rendition label")
    bandwidth: int = Field(..., description="Peak bandwidth in bits per second")
    resolution: str = Field(..., description="Frame size as WxH")
    frame_rate: int = Field(..., description="Frames per second")
    url: str = Field(..., description="Rendition playlist URL")


class RenditionListResponse(BaseModel):
    """The rendition ladder, highest bandwidth first."""

    renditions: List[RenditionResponse] = Field(..., description="Renditions")
    manifest_url: str = Field(..., description="Master playlist path")
    readiness: Dict[str, Any] = Field(default_factory=dict, description="Per-rendition readiness")
    direct_stream_url: Optional[str] = Field(
        None, description="Segment-free stream URL for players without HLS support"
    )


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Service status")
    version: str = Field(..., description="Service version")
    uptime_seconds: float = Field(..., description="Service uptime in seconds")
    active_sessions: int = Field(..., description="Number of live sessions")
    system_info: Dict[str, Any] = Field(default_factory=dict, description="System information")


class ErrorResponse(BaseModel):
    """Error response."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
