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
CastLadder - live browser capture ingest with an adaptive HLS rendition ladder.

A capture arrives as ordered media chunks over a WebSocket, is relayed into a
supervised ffmpeg process that publishes to an RTMP address, is fanned out
into a fixed rendition ladder by a segmenter, and is played back through a
synthesized HLS master playlist.
"""

__version__ = "0.1.0"
__author__ = "Firefly Software Solutions Inc"
__license__ = "Apache-2.0"

from castladder.core.ladder import RenditionLadder, RenditionProfile
from castladder.core.manifest import Manifest, synthesize_manifest
from castladder.core.session import IngestSession, SessionManager
from castladder.core.transcoder import TranscoderConfig, TranscoderSupervisor
from castladder.player import AdaptivePlayer, Capabilities, PlaybackScheduler

__all__ = [
    # Core
    "IngestSession",
    "SessionManager",
    "TranscoderConfig",
    "TranscoderSupervisor",
    # Ladder
    "Manifest",
    "RenditionLadder",
    "RenditionProfile",
    "synthesize_manifest",
    # Player
    "AdaptivePlayer",
    "Capabilities",
    "PlaybackScheduler",
]
