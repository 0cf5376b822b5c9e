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

"""FFmpeg transcoder supervision for CastLadder.

This module owns the lifecycle of one external transcoder process:
- Fixed argument vector built from TranscoderConfig
- Raw capture bytes fed through stdin with pipe backpressure
- stdout/stderr drained into the log and a bounded tail buffer
- Exit detection with clean/abnormal classification
- Graceful stop (close stdin, bounded wait) with forced kill fallback

There is no automatic restart. A crashed transcoder ends its session.
"""

from __future__ import annotations

import asyncio
import re
import shutil
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from castladder.exceptions import (
    ConfigurationError,
    TranscoderError,
    TranscoderLaunchError,
)
from castladder.utils.logger import logger

_LINE_SPLIT = re.compile(rb"[\r\n]+")


class TranscoderState(str, Enum):
    """Lifecycle state of a supervised transcoder."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    DRAINING = "draining"
    ERRORED = "errored"


@dataclass
class TranscoderConfig:
    """Configuration for the ingest transcoder.

    The defaults reproduce a low-latency H.264/AAC encode of browser
    MediaRecorder output, published as FLV to a local RTMP server.

    Attributes:
        output_url: Publish address the transcoder pushes into
        ffmpeg_path: Path to ffmpeg binary (looked up in PATH if None)
        video_codec: ffmpeg video encoder
        preset: Encoding preset
        tune: Encoding tune
        frame_rate: Output frames per second
        keyframe_interval: Keyframe interval in seconds (GOP = rate * interval)
        crf: Constant Rate Factor
        pixel_format: Output pixel format
        profile: H.264 profile
        level: H.264 level
        audio_codec: ffmpeg audio encoder
        audio_bitrate: Audio bitrate (e.g. "128k")
        audio_sample_rate: Audio sample rate in Hz
        container: Output container format
        extra_args: Arguments inserted before the output address
    """

    output_url: str = "rtmp://localhost:1935/live/stream"
    ffmpeg_path: Optional[str] = None

    video_codec: str = "libx264"
    preset: str = "ultrafast"
    tune: Optional[str] = "zerolatency"
    frame_rate: int = 25
    keyframe_interval: int = 2
    crf: int = 25
    pixel_format: str = "yuv420p"
    profile: str = "main"
    level: str = "3.1"

    audio_codec: str = "aac"
    audio_bitrate: str = "128k"
    audio_sample_rate: int = 32000

    container: str = "flv"
    extra_args: List[str] = field(default_factory=list)

    def resolve_ffmpeg(self) -> str:
        """Return the ffmpeg binary, looking it up in PATH if unset."""
        if self.ffmpeg_path:
            return self.ffmpeg_path
        ffmpeg_path = shutil.which("ffmpeg")
        if not ffmpeg_path:
            raise ConfigurationError(
                "ffmpeg not found in PATH. Please install ffmpeg or provide ffmpeg_path."
            )
        return ffmpeg_path

    def build_command(self) -> List[str]:
        """Build the transcoder argument vector (input from stdin)."""
        cmd = [self.resolve_ffmpeg(), "-i", "-"]

        cmd.extend([
            "-c:v", self.video_codec,
            "-preset", self.preset,
        ])
        if self.tune:
            cmd.extend(["-tune", self.tune])

        cmd.extend([
            "-r", str(self.frame_rate),
            "-g", str(self.frame_rate * self.keyframe_interval),
            "-keyint_min", str(self.frame_rate),
            "-crf", str(self.crf),
            "-pix_fmt", self.pixel_format,
            "-sc_threshold", "0",
            "-profile:v", self.profile,
            "-level", self.level,
            "-c:a", self.audio_codec,
            "-b:a", self.audio_bitrate,
            "-ar", str(self.audio_sample_rate),
        ])
        cmd.extend(self.extra_args)
        cmd.extend(["-f", self.container, self.output_url])
        return cmd


@dataclass
class TranscoderMetrics:
    """Counters for one transcoder process."""

    chunks_written: int = 0
    bytes_written: int = 0
    write_failures: int = 0
    ignored_writes: int = 0
    dropped_chunks: int = 0
    exit_code: Optional[int] = None
    forced_kill: bool = False
    started_at: Optional[float] = None
    ended_at: Optional[float] = None

    @property
    def uptime_seconds(self) -> float:
        if self.started_at is None:
            return 0.0
        return (self.ended_at or time.time()) - self.started_at

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "chunks_written": self.chunks_written,
            "bytes_written": self.bytes_written,
            "write_failures": self.write_failures,
            "ignored_writes": self.ignored_writes,
            "dropped_chunks": self.dropped_chunks,
            "exit_code": self.exit_code,
            "forced_kill": self.forced_kill,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "uptime_seconds": self.uptime_seconds,
        }


class TranscoderSupervisor:
    """Supervisor for a single external transcoder process.

    States: stopped -> starting -> running -> draining -> stopped, with
    errored reachable from any live state on an unexpected exit. A
    supervisor is single-use; callers never see the process handle.

    Example:
        >>> supervisor = TranscoderSupervisor(TranscoderConfig(), on_exit=print)
        >>> await supervisor.start()
        >>> await supervisor.write(chunk)
        >>> await supervisor.stop(timeout=5.0)
    """

    def __init__(
        self,
        config: Optional[TranscoderConfig] = None,
        command: Optional[List[str]] = None,
        on_exit: Optional[Callable[[int], None]] = None,
        name: str = "transcoder",
        feed_stdin: bool = True,
        stderr_tail_lines: int = 50,
        write_timeout: Optional[float] = None,
    ) -> None:
        """Initialize the supervisor.

        Args:
            config: Transcoder configuration used to build the command
            command: Explicit argument vector, overriding ``config``
            on_exit: Callback invoked with the exit code once the process ends
            name: Name used in log messages
            feed_stdin: Open stdin as a pipe; False for processes that read
                from a network address instead
            stderr_tail_lines: Number of stderr lines kept for diagnostics
            write_timeout: Seconds a write may wait for the pipe to drain
                before the chunk is dropped; None waits indefinitely
        """
        self.config = config or TranscoderConfig()
        self.command = command
        self.name = name
        self.feed_stdin = feed_stdin
        self.write_timeout = write_timeout
        self.metrics = TranscoderMetrics()

        self._on_exit = on_exit
        self._state = TranscoderState.STOPPED
        self._launched = False
        self._stop_requested = False
        self._process: Optional[asyncio.subprocess.Process] = None
        self._monitor_task: Optional[asyncio.Task] = None
        self._drain_tasks: List[asyncio.Task] = []
        self._exited = asyncio.Event()
        self._stderr_tail: Deque[str] = deque(maxlen=stderr_tail_lines)

    @property
    def state(self) -> TranscoderState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == TranscoderState.RUNNING

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def exit_code(self) -> Optional[int]:
        return self.metrics.exit_code

    @property
    def stderr_tail(self) -> List[str]:
        return list(self._stderr_tail)

    def _set_state(self, state: TranscoderState) -> None:
        if state != self._state:
            logger.debug(f"[SUPERVISOR] {self.name}: {self._state.value} -> {state.value}")
            self._state = state

    async def start(self) -> int:
        """Spawn the transcoder.

        Returns:
            Process id

        Raises:
            TranscoderError: If this supervisor was already started
            TranscoderLaunchError: If the executable could not be launched
        """
        if self._launched:
            raise TranscoderError(
                f"Transcoder {self.name} already started (state: {self._state.value})"
            )
        self._launched = True
        self._set_state(TranscoderState.STARTING)

        try:
            cmd = self.command or self.config.build_command()
        except ConfigurationError as e:
            self._fail_launch()
            raise TranscoderLaunchError(str(e)) from e

        logger.info(f"[SUPERVISOR] {self.name}: command: {' '.join(cmd)}")

        try:
            self._process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE if self.feed_stdin else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            self._fail_launch()
            raise TranscoderLaunchError(f"Transcoder executable not found: {cmd[0]}") from e
        except PermissionError as e:
            self._fail_launch()
            raise TranscoderLaunchError(f"Permission denied starting transcoder: {e}") from e
        except OSError as e:
            self._fail_launch()
            raise TranscoderLaunchError(f"Failed to start transcoder: {e}") from e

        self.metrics.started_at = time.time()
        self._drain_tasks = [
            asyncio.create_task(self._drain_stream(self._process.stdout, "stdout")),
            asyncio.create_task(self._drain_stream(self._process.stderr, "stderr")),
        ]
        self._monitor_task = asyncio.create_task(self._monitor_exit())
        self._set_state(TranscoderState.RUNNING)

        logger.info(f"[SUPERVISOR] {self.name}: started (pid {self._process.pid})")
        return self._process.pid

    def _fail_launch(self) -> None:
        self._set_state(TranscoderState.ERRORED)
        self._exited.set()
        logger.error(f"[SUPERVISOR] {self.name}: launch failed, not retrying")

    async def write(self, data: bytes) -> bool:
        """Forward one chunk to the transcoder's stdin.

        Awaits the pipe's drain so a slow transcoder throttles the caller.
        Writing when the process is not running is a logged no-op.

        Returns:
            True if the chunk was handed to the pipe
        """
        stdin = self._process.stdin if self._process else None
        if self._state != TranscoderState.RUNNING or stdin is None:
            self.metrics.ignored_writes += 1
            if self.metrics.ignored_writes == 1:
                logger.warning(
                    f"[SUPERVISOR] {self.name}: write ignored, transcoder is {self._state.value}"
                )
            else:
                logger.debug(f"[SUPERVISOR] {self.name}: write ignored ({len(data)} bytes)")
            return False

        try:
            if self.write_timeout is None:
                stdin.write(data)
                await stdin.drain()
            else:
                # Wait for the backlog first so a stalled pipe drops whole chunks
                try:
                    await asyncio.wait_for(stdin.drain(), timeout=self.write_timeout)
                except asyncio.TimeoutError:
                    self.metrics.dropped_chunks += 1
                    logger.warning(
                        f"[SUPERVISOR] {self.name}: pipe stalled for {self.write_timeout:.1f}s, "
                        f"dropped {len(data)} bytes ({self.metrics.dropped_chunks} dropped so far)"
                    )
                    return False
                stdin.write(data)
        except (BrokenPipeError, ConnectionResetError) as e:
            self.metrics.write_failures += 1
            logger.warning(f"[SUPERVISOR] {self.name}: pipe error on write: {e}")
            return False

        self.metrics.chunks_written += 1
        self.metrics.bytes_written += len(data)
        return True

    async def _drain_stream(self, stream: Optional[asyncio.StreamReader], label: str) -> None:
        """Log a process output stream line by line until EOF."""
        if stream is None:
            return
        pending = b""
        while True:
            data = await stream.read(4096)
            if not data:
                break
            parts = _LINE_SPLIT.split(pending + data)
            pending = parts.pop()
            for part in parts:
                self._log_output_line(part, label)
        if pending:
            self._log_output_line(pending, label)

    def _log_output_line(self, raw: bytes, label: str) -> None:
        text = raw.decode("utf-8", errors="ignore").strip()
        if not text:
            return
        if label == "stderr":
            self._stderr_tail.append(text)
        logger.debug(f"[SUPERVISOR] {self.name} {label}: {text}")

    async def _monitor_exit(self) -> None:
        """Wait for the process to end and classify the exit."""
        code = await self._process.wait()

        # Let the drain tasks flush the last stderr lines
        if self._drain_tasks:
            await asyncio.wait(self._drain_tasks, timeout=1.0)

        self.metrics.exit_code = code
        self.metrics.ended_at = time.time()

        if code == 0 or self._stop_requested:
            self._set_state(TranscoderState.STOPPED)
            logger.info(f"[SUPERVISOR] {self.name}: exited with code {code}")
        else:
            self._set_state(TranscoderState.ERRORED)
            logger.error(
                f"[SUPERVISOR] {self.name}: terminated unexpectedly (exit code: {code})"
            )
            if self._stderr_tail:
                logger.error(
                    f"[SUPERVISOR] {self.name} stderr: " + " | ".join(list(self._stderr_tail)[-5:])
                )

        self._exited.set()

        if self._on_exit:
            try:
                self._on_exit(code)
            except Exception as e:
                logger.error(f"[SUPERVISOR] {self.name}: exit callback failed: {e}", exc_info=True)

    async def wait(self) -> Optional[int]:
        """Wait until the process has exited and return its exit code."""
        await self._exited.wait()
        if self._monitor_task:
            await asyncio.shield(self._monitor_task)
        return self.metrics.exit_code

    async def stop(self, timeout: float = 5.0) -> Optional[int]:
        """Stop the transcoder gracefully.

        Closes stdin so the transcoder can flush, waits up to ``timeout``
        seconds for it to exit, then kills it. A kill is recorded as an
        abnormal stop, not a crash.

        Returns:
            Exit code, or None if the process never started
        """
        if self._process is None:
            if not self._launched:
                self._launched = True
                self._exited.set()
            return None

        if self._exited.is_set():
            return await self.wait()

        self._stop_requested = True
        self._set_state(TranscoderState.DRAINING)
        logger.info(f"[SUPERVISOR] {self.name}: stopping (timeout {timeout:.1f}s)")

        stdin = self._process.stdin
        if stdin is not None and not stdin.is_closing():
            stdin.close()

        try:
            await asyncio.wait_for(asyncio.shield(self._exited.wait()), timeout=timeout)
        except asyncio.TimeoutError:
            self.metrics.forced_kill = True
            logger.warning(
                f"[SUPERVISOR] {self.name}: did not exit within {timeout:.1f}s, killing "
                f"(abnormal stop)"
            )
            try:
                self._process.kill()
            except ProcessLookupError:
                pass

        return await self.wait()

    def get_metrics(self) -> Dict[str, Any]:
        """Get supervisor metrics for monitoring."""
        metrics = self.metrics.to_dict()
        metrics["state"] = self._state.value
        metrics["pid"] = self.pid
        return metrics
