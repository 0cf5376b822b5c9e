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
Ingest sessions for CastLadder.

An IngestSession owns one capture channel, one transcoder process and the
relay between them. The SessionManager is the arena of sessions keyed by
session id and guarantees at most one live transcoder per id.

Lifecycle:
    pending -> live -> stopping -> stopped
    pending/live -> failed (transcoder launch failure or unexpected exit)

Status changes are pushed synchronously to subscribed listeners, so a
transcoder crash is visible to the client in the same event loop tick as
the exit is observed.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from castladder.core.channel import ChunkChannel
from castladder.core.relay import IngestRelay
from castladder.core.transcoder import TranscoderConfig, TranscoderSupervisor
from castladder.exceptions import (
    SessionConflictError,
    SessionError,
    SessionNotFoundError,
    TranscoderLaunchError,
)
from castladder.utils.logger import logger


class SessionState(str, Enum):
    """State of an ingest session."""

    PENDING = "pending"
    LIVE = "live"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.STOPPED, SessionState.FAILED)


@dataclass
class SessionStatus:
    """Status snapshot pushed to listeners."""

    session_id: str
    state: SessionState
    detail: str = ""
    exit_code: Optional[int] = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "type": "status",
            "session_id": self.session_id,
            "state": self.state.value,
            "detail": self.detail,
            "exit_code": self.exit_code,
            "timestamp": self.timestamp,
        }


StatusListener = Callable[[SessionStatus], None]


class IngestSession:
    """One capture-to-publish flow.

    Example:
        >>> session = IngestSession("cam-1", TranscoderConfig())
        >>> await session.start()
        >>> session.send(chunk_bytes)
        >>> await session.stop()
    """

    def __init__(
        self,
        session_id: str,
        transcoder_config: Optional[TranscoderConfig] = None,
        command: Optional[List[str]] = None,
        channel_size: int = 256,
        stop_timeout: float = 5.0,
        write_timeout: Optional[float] = None,
        on_closed: Optional[Callable[["IngestSession"], None]] = None,
    ) -> None:
        """Initialize the session.

        Args:
            session_id: Session identifier
            transcoder_config: Transcoder configuration
            command: Explicit transcoder argument vector
            channel_size: Maximum buffered chunks before drops
            stop_timeout: Seconds to wait for a graceful transcoder exit
            write_timeout: Seconds a chunk may wait on a stalled pipe
            on_closed: Called once the session has fully torn down
        """
        self.session_id = session_id
        self.stop_timeout = stop_timeout
        self.created_at = time.time()
        self.ended_at: Optional[float] = None

        self.channel = ChunkChannel(maxsize=channel_size, name=f"session-{session_id}")
        self.supervisor = TranscoderSupervisor(
            config=transcoder_config,
            command=command,
            on_exit=self._on_transcoder_exit,
            name=f"transcoder-{session_id}",
            write_timeout=write_timeout,
        )
        self.relay = IngestRelay(
            self.channel,
            self.supervisor,
            on_failure=self._on_relay_failure,
            name=f"relay-{session_id}",
        )

        self._status = SessionStatus(session_id=session_id, state=SessionState.PENDING)
        self._listeners: List[StatusListener] = []
        self._on_closed = on_closed
        self._stopping = False
        self._closed_notified = False
        self._teardown_task: Optional[asyncio.Task] = None
        self._stop_lock = asyncio.Lock()

    @property
    def state(self) -> SessionState:
        return self._status.state

    @property
    def status(self) -> SessionStatus:
        return self._status

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register a status listener; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_status(
        self,
        state: SessionState,
        detail: str = "",
        exit_code: Optional[int] = None,
    ) -> None:
        self._status = SessionStatus(
            session_id=self.session_id,
            state=state,
            detail=detail,
            exit_code=exit_code,
        )
        logger.info(f"[SESSION] {self.session_id}: {state.value} {detail}".rstrip())
        for listener in list(self._listeners):
            try:
                listener(self._status)
            except Exception as e:
                logger.error(f"[SESSION] {self.session_id}: status listener failed: {e}")

    async def start(self) -> SessionStatus:
        """Spawn the transcoder and start relaying chunks.

        Raises:
            TranscoderLaunchError: If the transcoder cannot be launched
        """
        if self.state != SessionState.PENDING:
            raise SessionError(
                f"Session {self.session_id} cannot start from {self.state.value}",
                session_id=self.session_id,
            )

        try:
            await self.supervisor.start()
        except TranscoderLaunchError as e:
            self.channel.close("transcoder launch failed")
            self.ended_at = time.time()
            self._set_status(SessionState.FAILED, f"transcoder launch failed: {e}")
            self._notify_closed()
            raise

        self.relay.start()
        self._set_status(SessionState.LIVE, f"transcoder pid {self.supervisor.pid}")
        return self._status

    def send(self, data: bytes) -> bool:
        """Push one captured chunk into the session (fire-and-forget)."""
        if self.state != SessionState.LIVE:
            logger.debug(
                f"[SESSION] {self.session_id}: chunk ignored in state {self.state.value}"
            )
            return False
        return self.channel.send(data)

    def _on_transcoder_exit(self, code: int) -> None:
        if self._stopping or self.state.is_terminal:
            return
        if code == 0:
            self._finish(SessionState.STOPPED, "transcoder exited", code)
        else:
            self._finish(SessionState.FAILED, f"transcoder exited with code {code}", code)

    def _on_relay_failure(self, reason: str) -> None:
        if self._stopping or self.state.is_terminal:
            return
        self._finish(SessionState.FAILED, reason, self.supervisor.exit_code)

    def _finish(self, state: SessionState, detail: str, exit_code: Optional[int]) -> None:
        """Mark the session ended by the transcoder and tear it down in the background."""
        self.channel.close(detail)
        self._set_status(state, detail, exit_code)
        self._teardown_task = asyncio.create_task(self._teardown())

    async def _teardown(self) -> None:
        await self.relay.wait()
        await self.supervisor.stop(timeout=self.stop_timeout)
        self.ended_at = time.time()
        self._notify_closed()

    def _notify_closed(self) -> None:
        if self._closed_notified:
            return
        self._closed_notified = True
        if self._on_closed:
            self._on_closed(self)

    async def stop(self, reason: str = "stop requested") -> SessionStatus:
        """Stop the session.

        Closes the channel, lets the relay forward what is already buffered
        (bounded by ``stop_timeout``), then shuts the transcoder down.
        """
        async with self._stop_lock:
            if self.state.is_terminal:
                if self._teardown_task is not None:
                    await self._teardown_task
                return self._status

            self._stopping = True
            self._set_status(SessionState.STOPPING, reason)

            self.channel.close(reason)
            try:
                await asyncio.wait_for(self.relay.wait(), timeout=self.stop_timeout)
            except asyncio.TimeoutError:
                discarded = self.channel.discard_pending()
                logger.warning(
                    f"[SESSION] {self.session_id}: relay did not drain in "
                    f"{self.stop_timeout:.1f}s, cancelling ({discarded} chunks discarded)"
                )
                await self.relay.cancel()

            exit_code = await self.supervisor.stop(timeout=self.stop_timeout)
            self.ended_at = time.time()

            detail = reason
            if self.supervisor.metrics.forced_kill:
                detail = f"{reason} (transcoder killed after {self.stop_timeout:.1f}s)"
            self._set_status(SessionState.STOPPED, detail, exit_code)
            self._notify_closed()
            return self._status

    def get_info(self) -> Dict[str, Any]:
        """Session details for the API."""
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "detail": self._status.detail,
            "created_at": self.created_at,
            "ended_at": self.ended_at,
            "channel": self.channel.stats.to_dict(),
            "relay": self.relay.get_stats(),
            "transcoder": self.supervisor.get_metrics(),
        }


class SessionManager:
    """Arena of ingest sessions keyed by session id.

    Coordinates ingest across the service:
    - Creates and starts sessions
    - Rejects a second live session under the same id
    - Removes sessions once they have torn down
    - Enforces a concurrent session limit
    """

    def __init__(
        self,
        transcoder_config: Optional[TranscoderConfig] = None,
        command: Optional[List[str]] = None,
        channel_size: int = 256,
        stop_timeout: float = 5.0,
        write_timeout: Optional[float] = None,
        max_sessions: int = 10,
    ) -> None:
        self.transcoder_config = transcoder_config or TranscoderConfig()
        self.command = command
        self.channel_size = channel_size
        self.stop_timeout = stop_timeout
        self.write_timeout = write_timeout
        self.max_sessions = max_sessions

        self._sessions: Dict[str, IngestSession] = {}
        self._lock = asyncio.Lock()
        self._total_sessions = 0
        self._failed_sessions = 0

        logger.info(f"SessionManager initialized (max sessions: {max_sessions})")

    async def create_session(self, session_id: Optional[str] = None) -> IngestSession:
        """Create and start a new session.

        Args:
            session_id: Session identifier (generated if None)

        Raises:
            SessionConflictError: If the id already has a live session
            SessionError: If the session limit is reached
            TranscoderLaunchError: If the transcoder cannot be launched
        """
        session_id = session_id or str(uuid.uuid4())

        async with self._lock:
            existing = self._sessions.get(session_id)
            if existing is not None and not existing.state.is_terminal:
                logger.error(f"[SESSION_MGR] Session {session_id} already has a live transcoder")
                raise SessionConflictError(session_id)

            live = sum(1 for s in self._sessions.values() if not s.state.is_terminal)
            if live >= self.max_sessions:
                raise SessionError(
                    f"Maximum concurrent sessions reached ({self.max_sessions})",
                    session_id=session_id,
                )

            session = IngestSession(
                session_id=session_id,
                transcoder_config=self.transcoder_config,
                command=self.command,
                channel_size=self.channel_size,
                stop_timeout=self.stop_timeout,
                write_timeout=self.write_timeout,
                on_closed=self._on_session_closed,
            )
            self._sessions[session_id] = session
            self._total_sessions += 1

            # Started under the lock so concurrent creates cannot both spawn
            await session.start()

        logger.info(f"[SESSION_MGR] Session created: {session_id}")
        return session

    def _on_session_closed(self, session: IngestSession) -> None:
        if session.state == SessionState.FAILED:
            self._failed_sessions += 1
        if self._sessions.get(session.session_id) is session:
            del self._sessions[session.session_id]
            logger.info(f"[SESSION_MGR] Session removed: {session.session_id}")

    def get_session(self, session_id: str) -> IngestSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def list_sessions(self) -> List[IngestSession]:
        return list(self._sessions.values())

    async def stop_session(self, session_id: str, reason: str = "stop requested") -> SessionStatus:
        """Stop a session by id."""
        session = self.get_session(session_id)
        return await session.stop(reason)

    async def stop_all(self) -> None:
        """Stop every session."""
        sessions = list(self._sessions.values())
        for session in sessions:
            try:
                await session.stop("service shutdown")
            except Exception as e:
                logger.error(f"Error stopping session {session.session_id}: {e}")
        logger.info("SessionManager stopped")

    def get_active_session_count(self) -> int:
        return sum(1 for s in self._sessions.values() if s.state == SessionState.LIVE)

    def get_stats(self) -> Dict[str, Any]:
        """Get session statistics."""
        return {
            "active_sessions": self.get_active_session_count(),
            "total_sessions": self._total_sessions,
            "failed_sessions": self._failed_sessions,
            "max_sessions": self.max_sessions,
        }
