# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for TranscoderConfig and TranscoderSupervisor."""

import asyncio
from unittest.mock import MagicMock, patch

import pytest

from castladder.core.transcoder import (
    TranscoderConfig,
    TranscoderState,
    TranscoderSupervisor,
)
from castladder.exceptions import (
    ConfigurationError,
    TranscoderError,
    TranscoderLaunchError,
)


class TestTranscoderConfig:
    """Tests for TranscoderConfig."""

    def test_default_command(self):
        config = TranscoderConfig(ffmpeg_path="/usr/bin/ffmpeg")

        assert config.build_command() == [
            "/usr/bin/ffmpeg", "-i", "-",
            "-c:v", "libx264",
            "-preset", "ultrafast",
            "-tune", "zerolatency",
            "-r", "25",
            "-g", "50",
            "-keyint_min", "25",
            "-crf", "25",
            "-pix_fmt", "yuv420p",
            "-sc_threshold", "0",
            "-profile:v", "main",
            "-level", "3.1",
            "-c:a", "aac",
            "-b:a", "128k",
            "-ar", "32000",
            "-f", "flv", "rtmp://localhost:1935/live/stream",
        ]

    def test_gop_follows_frame_rate(self):
        config = TranscoderConfig(ffmpeg_path="ffmpeg", frame_rate=30, keyframe_interval=1)
        cmd = config.build_command()

        assert cmd[cmd.index("-g") + 1] == "30"
        assert cmd[cmd.index("-keyint_min") + 1] == "30"

    def test_no_tune(self):
        cmd = TranscoderConfig(ffmpeg_path="ffmpeg", tune=None).build_command()
        assert "-tune" not in cmd

    def test_extra_args_before_output(self):
        config = TranscoderConfig(ffmpeg_path="ffmpeg", extra_args=["-loglevel", "error"])
        cmd = config.build_command()

        assert cmd.index("-loglevel") < cmd.index("-f")
        assert cmd[-1] == config.output_url

    def test_ffmpeg_lookup_in_path(self):
        with patch("castladder.core.transcoder.shutil.which", return_value="/opt/bin/ffmpeg"):
            assert TranscoderConfig().resolve_ffmpeg() == "/opt/bin/ffmpeg"

    def test_ffmpeg_missing(self):
        with patch("castladder.core.transcoder.shutil.which", return_value=None):
            with pytest.raises(ConfigurationError):
                TranscoderConfig().resolve_ffmpeg()


class TestTranscoderSupervisorLaunch:
    """Tests for launching the transcoder."""

    @pytest.mark.asyncio
    async def test_missing_executable(self):
        supervisor = TranscoderSupervisor(command=["/nonexistent/castladder-ffmpeg"])

        with pytest.raises(TranscoderLaunchError):
            await supervisor.start()

        assert supervisor.state == TranscoderState.ERRORED
        assert supervisor.pid is None

    @pytest.mark.asyncio
    async def test_missing_ffmpeg_in_path(self):
        supervisor = TranscoderSupervisor(TranscoderConfig())

        with patch("castladder.core.transcoder.shutil.which", return_value=None):
            with pytest.raises(TranscoderLaunchError):
                await supervisor.start()

        assert supervisor.state == TranscoderState.ERRORED

    @pytest.mark.asyncio
    async def test_launch_failure_is_not_retried(self):
        supervisor = TranscoderSupervisor(command=["/nonexistent/castladder-ffmpeg"])
        with pytest.raises(TranscoderLaunchError):
            await supervisor.start()

        with pytest.raises(TranscoderError):
            await supervisor.start()

    @pytest.mark.asyncio
    async def test_start_twice_rejected(self, drain_command):
        supervisor = TranscoderSupervisor(command=drain_command)
        pid = await supervisor.start()

        assert pid > 0
        assert supervisor.is_running
        with pytest.raises(TranscoderError):
            await supervisor.start()

        await supervisor.stop(timeout=5.0)


class TestTranscoderSupervisorWrite:
    """Tests for feeding the transcoder."""

    @pytest.mark.asyncio
    async def test_writes_arrive_in_order(self, copy_command):
        command, output = copy_command
        supervisor = TranscoderSupervisor(command=command)
        await supervisor.start()

        for i in range(20):
            assert await supervisor.write(f"chunk-{i};".encode()) is True

        code = await supervisor.stop(timeout=5.0)

        assert code == 0
        assert supervisor.state == TranscoderState.STOPPED
        assert output.read_bytes() == b"".join(f"chunk-{i};".encode() for i in range(20))
        metrics = supervisor.get_metrics()
        assert metrics["chunks_written"] == 20
        assert metrics["forced_kill"] is False

    @pytest.mark.asyncio
    async def test_write_before_start_is_noop(self):
        supervisor = TranscoderSupervisor(command=["unused"])

        assert await supervisor.write(b"data") is False
        assert await supervisor.write(b"data") is False
        assert supervisor.metrics.ignored_writes == 2

    @pytest.mark.asyncio
    async def test_write_after_exit_is_noop(self, exit_command):
        supervisor = TranscoderSupervisor(command=exit_command(1))
        await supervisor.start()
        await supervisor.wait()

        assert await supervisor.write(b"data") is False
        assert supervisor.metrics.ignored_writes == 1

    @pytest.mark.asyncio
    async def test_broken_pipe_counts_write_failure(self):
        supervisor = TranscoderSupervisor(command=["unused"])
        stdin = MagicMock()
        stdin.drain.side_effect = BrokenPipeError("pipe closed")
        supervisor._process = MagicMock(stdin=stdin)
        supervisor._state = TranscoderState.RUNNING

        assert await supervisor.write(b"data") is False
        assert supervisor.metrics.write_failures == 1

    @pytest.mark.asyncio
    async def test_stalled_pipe_drops_chunk(self):
        supervisor = TranscoderSupervisor(command=["unused"], write_timeout=0.05)

        async def never_drains():
            await asyncio.sleep(10)

        stdin = MagicMock()
        stdin.drain = never_drains
        supervisor._process = MagicMock(stdin=stdin)
        supervisor._state = TranscoderState.RUNNING

        assert await supervisor.write(b"data") is False
        assert supervisor.metrics.dropped_chunks == 1
        stdin.write.assert_not_called()


class TestTranscoderSupervisorExit:
    """Tests for exit detection and stopping."""

    @pytest.mark.asyncio
    async def test_unexpected_exit_reported(self, exit_command):
        exits = []
        supervisor = TranscoderSupervisor(command=exit_command(1), on_exit=exits.append)
        await supervisor.start()

        code = await asyncio.wait_for(supervisor.wait(), timeout=5.0)

        assert code == 1
        assert exits == [1]
        assert supervisor.state == TranscoderState.ERRORED
        assert supervisor.exit_code == 1

    @pytest.mark.asyncio
    async def test_clean_exit(self, exit_command):
        supervisor = TranscoderSupervisor(command=exit_command(0))
        await supervisor.start()

        assert await supervisor.wait() == 0
        assert supervisor.state == TranscoderState.STOPPED

    @pytest.mark.asyncio
    async def test_stderr_tail_kept(self, failing_command):
        supervisor = TranscoderSupervisor(command=failing_command)
        await supervisor.start()
        await supervisor.wait()

        assert supervisor.exit_code == 3
        assert "boom: invalid data" in supervisor.stderr_tail

    @pytest.mark.asyncio
    async def test_exit_callback_error_does_not_break_monitor(self, exit_command):
        def broken_callback(code):
            raise RuntimeError("listener failed")

        supervisor = TranscoderSupervisor(command=exit_command(2), on_exit=broken_callback)
        await supervisor.start()

        assert await supervisor.wait() == 2

    @pytest.mark.asyncio
    async def test_stop_kills_after_timeout(self, stubborn_command):
        exits = []
        supervisor = TranscoderSupervisor(command=stubborn_command, on_exit=exits.append)
        await supervisor.start()

        code = await supervisor.stop(timeout=0.5)

        assert supervisor.metrics.forced_kill is True
        assert code != 0
        # A requested stop is not a crash
        assert supervisor.state == TranscoderState.STOPPED
        assert exits == [code]

    @pytest.mark.asyncio
    async def test_stop_before_start(self):
        supervisor = TranscoderSupervisor(command=["unused"])
        assert await supervisor.stop() is None

    @pytest.mark.asyncio
    async def test_stop_after_exit_returns_code(self, exit_command):
        supervisor = TranscoderSupervisor(command=exit_command(4))
        await supervisor.start()
        await supervisor.wait()

        assert await supervisor.stop() == 4
        assert supervisor.metrics.forced_kill is False
