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
CastLadder ingest and publishing core.

This module provides:
- Chunk channel between the capture endpoint and the relay
- Transcoder supervisor for the external ffmpeg process
- Ingest relay feeding the transcoder in arrival order
- Rendition ladder and segmenter coordination
- HLS master manifest synthesis
- Ingest sessions and the session arena
"""

from castladder.core.channel import Chunk, ChunkChannel
from castladder.core.ladder import (
    DEFAULT_PROFILES,
    LadderCoordinator,
    RenditionLadder,
    RenditionProfile,
)
from castladder.core.manifest import Manifest, ManifestEntry, synthesize_manifest
from castladder.core.relay import IngestRelay, RelayExit
from castladder.core.session import (
    IngestSession,
    SessionManager,
    SessionState,
    SessionStatus,
)
from castladder.core.transcoder import (
    TranscoderConfig,
    TranscoderState,
    TranscoderSupervisor,
)

__all__ = [
    "Chunk",
    "ChunkChannel",
    "DEFAULT_PROFILES",
    "IngestRelay",
    "IngestSession",
    "LadderCoordinator",
    "Manifest",
    "ManifestEntry",
    "RelayExit",
    "RenditionLadder",
    "RenditionProfile",
    "SessionManager",
    "SessionState",
    "SessionStatus",
    "TranscoderConfig",
    "TranscoderState",
    "TranscoderSupervisor",
    "synthesize_manifest",
]
