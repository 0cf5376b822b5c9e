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

"""Custom exceptions for CastLadder.

All exceptions inherit from CastLadderError so callers can catch every
pipeline failure with a single except clause.

Exception Hierarchy:
    CastLadderError (base)
    ├── ConfigurationError - Invalid or missing configuration
    ├── ChannelError - Chunk channel misuse (second reader)
    ├── TranscoderError - Transcoder lifecycle errors
    │   └── TranscoderLaunchError - The executable could not be spawned
    ├── SessionError - Ingest session errors
    │   ├── SessionConflictError - Session id already has a live transcoder
    │   └── SessionNotFoundError - Unknown session id
    └── PlaybackError - Client player errors
        ├── UnsupportedEnvironmentError - No viable playback technology
        └── RenditionIndexError - Rendition index outside the ladder

Example:
    try:
        await manager.create_session("cam-1")
    except SessionConflictError:
        # Already streaming under that id
        pass
    except CastLadderError:
        # Anything else from the pipeline
        pass
"""

from typing import Optional


class CastLadderError(Exception):
    """Base exception for all CastLadder errors.

    Attributes:
        message: Error message describing what went wrong
    """

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(CastLadderError):
    """Exception raised for configuration errors.

    Examples:
        - ffmpeg binary not found
        - Empty rendition ladder
        - Duplicate rendition labels
    """
    pass


class ChannelError(CastLadderError):
    """Exception raised when a chunk channel is misused.

    The channel allows exactly one consumer; attaching a second reader
    would allow interleaved writes into the transcoder.
    """
    pass


class TranscoderError(CastLadderError):
    """Exception raised for transcoder lifecycle errors.

    Examples:
        - start() called while a process is already live
        - Process exited with a non-zero code
    """

    def __init__(self, message: str = "", exit_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class TranscoderLaunchError(TranscoderError):
    """Exception raised when the transcoder executable cannot be launched.

    Launch failure means the environment is misconfigured, so it is
    reported and never retried.
    """
    pass


class SessionError(CastLadderError):
    """Exception raised for ingest session errors."""

    def __init__(self, message: str = "", session_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.session_id = session_id


class SessionConflictError(SessionError):
    """Exception raised when a session id already owns a live transcoder."""

    def __init__(self, session_id: str) -> None:
        super().__init__(
            f"Session {session_id} already has a live transcoder",
            session_id=session_id,
        )


class SessionNotFoundError(SessionError):
    """Exception raised when a session id is unknown."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id} not found", session_id=session_id)


class PlaybackError(CastLadderError):
    """Base exception for client player errors."""
    pass


class UnsupportedEnvironmentError(PlaybackError):
    """Exception raised when no playback technology is supported.

    This is terminal for the player instance, not a transient failure.
    """
    pass


class RenditionIndexError(PlaybackError):
    """Exception raised for a rendition index outside the ladder bounds."""

    def __init__(self, index: int, ladder_size: int) -> None:
        super().__init__(
            f"Rendition index {index} out of range (ladder has {ladder_size} renditions)"
        )
        self.index = index
        self.ladder_size = ladder_size
