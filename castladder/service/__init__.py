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
CastLadder service layer.

This module provides:
- WebSocket capture ingest (FastAPI-based)
- HLS master playlist and rendition ladder endpoints
- Session inspection and shutdown
- Configuration management

Example:
    >>> uvicorn castladder.service.app:app --host 0.0.0.0 --port 3000

    With a custom publish address and ladder file served from ./media:
    >>> CASTLADDER_PUBLISH_URL=rtmp://media:1935/live/stream CASTLADDER_MEDIA_ROOT=./media \\
    ...     uvicorn castladder.service.app:app --port 3000
"""

from castladder.service.config import (
    RenditionSettings,
    ServiceConfig,
    TranscoderSettings,
    get_config,
)

__all__ = [
    "RenditionSettings",
    "ServiceConfig",
    "TranscoderSettings",
    "get_config",
]
