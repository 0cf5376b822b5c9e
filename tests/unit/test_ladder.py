# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for the rendition ladder and its coordinator."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from castladder.core.ladder import (
    DEFAULT_PROFILES,
    LadderCoordinator,
    RenditionLadder,
    RenditionProfile,
    split_publish_url,
)
from castladder.exceptions import ConfigurationError, TranscoderLaunchError


class TestRenditionProfile:
    """Tests for RenditionProfile."""

    def test_bandwidth_and_resolution(self):
        profile = RenditionProfile("720", 128, 1500, 1280, 720, 30)

        assert profile.bandwidth == 1628000
        assert profile.resolution == "1280x720"

    def test_fission_model(self):
        profile = RenditionProfile("480", 96, 1000, 854, 480, 24)

        assert profile.fission_model() == {"ab": "96k", "vb": "1000k", "vs": "854x480", "vf": "24"}

    @pytest.mark.parametrize("field_index", [1, 2, 3, 4, 5])
    def test_non_positive_values_rejected(self, field_index):
        values = ["720", 128, 1500, 1280, 720, 30]
        values[field_index] = 0
        with pytest.raises(ConfigurationError):
            RenditionProfile(*values)

    def test_empty_label_rejected(self):
        with pytest.raises(ConfigurationError):
            RenditionProfile("", 128, 1500, 1280, 720, 30)

    def test_upscaling_accepted(self):
        profile = RenditionProfile("2160", 192, 12000, 3840, 2160, 30)
        assert profile.resolution == "3840x2160"


class TestRenditionLadder:
    """Tests for RenditionLadder."""

    def test_default_order(self):
        ladder = RenditionLadder.default()

        assert ladder.labels == ["720", "480", "360"]
        assert [p.bandwidth for p in ladder] == [1628000, 1096000, 664000]

    def test_registration_order_ignored(self):
        shuffled = [DEFAULT_PROFILES[2], DEFAULT_PROFILES[0], DEFAULT_PROFILES[1]]

        assert RenditionLadder(shuffled) == RenditionLadder.default()
        assert RenditionLadder(reversed(DEFAULT_PROFILES)).labels == ["720", "480", "360"]

    def test_empty_rejected(self):
        with pytest.raises(ConfigurationError):
            RenditionLadder([])

    def test_duplicate_labels_rejected(self):
        with pytest.raises(ConfigurationError):
            RenditionLadder([DEFAULT_PROFILES[0], RenditionProfile("720", 64, 600, 640, 360, 20)])

    def test_with_profile_keeps_order(self):
        ladder = RenditionLadder.default().with_profile(
            RenditionProfile("1080", 192, 3000, 1920, 1080, 30)
        )

        assert ladder.labels == ["1080", "720", "480", "360"]

    def test_lookup(self):
        ladder = RenditionLadder.default()

        assert ladder.get("480").height == 480
        assert ladder.get("999") is None
        assert ladder.index_of("360") == 2
        with pytest.raises(KeyError):
            ladder.index_of("999")
        assert ladder.is_valid_index(0)
        assert not ladder.is_valid_index(3)
        assert not ladder.is_valid_index(-1)


class TestSplitPublishUrl:
    def test_app_and_stream(self):
        assert split_publish_url("rtmp://localhost:1935/live/stream") == ("live", "stream")

    def test_missing_stream(self):
        with pytest.raises(ConfigurationError):
            split_publish_url("rtmp://localhost:1935/live")


class TestLadderCoordinator:
    """Tests for LadderCoordinator."""

    def test_fission_tasks(self):
        coordinator = LadderCoordinator(RenditionLadder.default())
        tasks = coordinator.fission_tasks()

        assert tasks[0]["rule"] == "live/stream"
        assert [m["vs"] for m in tasks[0]["model"]] == ["1280x720", "854x480", "640x360"]

    def test_rendition_paths(self, tmp_path):
        coordinator = LadderCoordinator(RenditionLadder.default(), media_root=str(tmp_path))
        profile = DEFAULT_PROFILES[0]

        assert coordinator.playlist_path(profile) == tmp_path / "live" / "stream_720" / "index.m3u8"

    def test_segmenter_command(self, tmp_path):
        coordinator = LadderCoordinator(
            RenditionLadder.default(), media_root=str(tmp_path), ffmpeg_path="ffmpeg"
        )
        cmd = coordinator.segmenter_command(DEFAULT_PROFILES[1])

        assert cmd[0] == "ffmpeg"
        assert cmd[cmd.index("-i") + 1] == "rtmp://localhost:1935/live/stream"
        assert cmd[cmd.index("-s") + 1] == "854x480"
        assert cmd[cmd.index("-b:v") + 1] == "1000k"
        assert cmd[cmd.index("-hls_time") + 1] == "2"
        assert cmd[cmd.index("-hls_list_size") + 1] == "3"
        assert cmd[cmd.index("-hls_flags") + 1] == "delete_segments"
        assert cmd[-1] == str(tmp_path / "live" / "stream_480" / "index.m3u8")

    def _write_playlist(self, coordinator, profile, segment_exists=True):
        out_dir = coordinator.rendition_dir(profile)
        out_dir.mkdir(parents=True, exist_ok=True)
        coordinator.playlist_path(profile).write_text(
            "#EXTM3U\n#EXT-X-TARGETDURATION:2\n#EXTINF:2.0,\nsegment0.ts\n"
        )
        if segment_exists:
            (out_dir / "segment0.ts").write_bytes(b"\x47" * 188)

    def test_is_ready(self, tmp_path):
        coordinator = LadderCoordinator(RenditionLadder.default(), media_root=str(tmp_path))
        profile = DEFAULT_PROFILES[0]

        assert coordinator.is_ready(profile) is False
        self._write_playlist(coordinator, profile, segment_exists=False)
        assert coordinator.is_ready(profile) is False
        (coordinator.rendition_dir(profile) / "segment0.ts").write_bytes(b"\x47")
        assert coordinator.is_ready(profile) is True

    @pytest.mark.asyncio
    async def test_wait_until_ready_for_one_label(self, tmp_path):
        coordinator = LadderCoordinator(RenditionLadder.default(), media_root=str(tmp_path))
        self._write_playlist(coordinator, DEFAULT_PROFILES[0])

        assert await coordinator.wait_until_ready("720", timeout=1.0) is True
        assert await coordinator.wait_until_ready(timeout=0.2, poll_interval=0.05) is False

    @pytest.mark.asyncio
    async def test_wait_until_ready_all(self, tmp_path):
        coordinator = LadderCoordinator(RenditionLadder.default(), media_root=str(tmp_path))
        for profile in DEFAULT_PROFILES:
            self._write_playlist(coordinator, profile)

        assert await coordinator.wait_until_ready(timeout=1.0) is True
        status = coordinator.get_status()
        assert all(entry["ready"] for entry in status.values())

    @pytest.mark.asyncio
    async def test_wait_until_ready_unknown_label(self, tmp_path):
        coordinator = LadderCoordinator(RenditionLadder.default(), media_root=str(tmp_path))
        with pytest.raises(KeyError):
            await coordinator.wait_until_ready("999", timeout=0.1)

    @pytest.mark.asyncio
    async def test_start_spawns_one_segmenter_per_rendition(self, tmp_path):
        coordinator = LadderCoordinator(
            RenditionLadder.default(), media_root=str(tmp_path), ffmpeg_path="ffmpeg"
        )
        supervisors = []

        def make_supervisor(**kwargs):
            supervisor = MagicMock()
            supervisor.start = AsyncMock(return_value=1234)
            supervisor.stop = AsyncMock(return_value=0)
            supervisor.kwargs = kwargs
            supervisors.append(supervisor)
            return supervisor

        with patch("castladder.core.ladder.TranscoderSupervisor", side_effect=make_supervisor):
            await coordinator.start()

        assert sorted(coordinator.segmenters) == ["360", "480", "720"]
        assert all(s.kwargs["feed_stdin"] is False for s in supervisors)
        assert (tmp_path / "live" / "stream_360").is_dir()

        await coordinator.stop()
        for supervisor in supervisors:
            supervisor.stop.assert_awaited_once()
        assert coordinator.segmenters == {}

    @pytest.mark.asyncio
    async def test_start_failure_stops_started_segmenters(self, tmp_path):
        coordinator = LadderCoordinator(
            RenditionLadder.default(), media_root=str(tmp_path), ffmpeg_path="ffmpeg"
        )
        supervisors = []

        def make_supervisor(**kwargs):
            supervisor = MagicMock()
            if len(supervisors) == 1:
                supervisor.start = AsyncMock(side_effect=TranscoderLaunchError("no ffmpeg"))
            else:
                supervisor.start = AsyncMock(return_value=1)
            supervisor.stop = AsyncMock(return_value=0)
            supervisors.append(supervisor)
            return supervisor

        with patch("castladder.core.ladder.TranscoderSupervisor", side_effect=make_supervisor):
            with pytest.raises(TranscoderLaunchError):
                await coordinator.start()

        supervisors[0].stop.assert_awaited_once()
        assert coordinator.segmenters == {}

    @pytest.mark.asyncio
    async def test_concurrent_ensure_started_spawns_once(self, tmp_path):
        coordinator = LadderCoordinator(
            RenditionLadder.default(), media_root=str(tmp_path), ffmpeg_path="ffmpeg"
        )
        supervisors = []

        async def slow_start():
            await asyncio.sleep(0.01)
            return 1234

        def make_supervisor(**kwargs):
            supervisor = MagicMock()
            supervisor.start = AsyncMock(side_effect=slow_start)
            supervisor.stop = AsyncMock(return_value=0)
            supervisors.append(supervisor)
            return supervisor

        with patch("castladder.core.ladder.TranscoderSupervisor", side_effect=make_supervisor):
            results = await asyncio.gather(
                coordinator.ensure_started(), coordinator.ensure_started()
            )

        assert sorted(results) == [False, True]
        assert len(supervisors) == 3
        assert sorted(coordinator.segmenters) == ["360", "480", "720"]

        with pytest.raises(RuntimeError):
            await coordinator.start()

    @pytest.mark.asyncio
    async def test_unusable_media_root_is_launch_error(self, tmp_path):
        media_root = tmp_path / "media"
        media_root.write_text("not a directory")
        coordinator = LadderCoordinator(
            RenditionLadder.default(), media_root=str(media_root), ffmpeg_path="ffmpeg"
        )

        with patch("castladder.core.ladder.TranscoderSupervisor") as supervisor_cls:
            with pytest.raises(TranscoderLaunchError, match="Segmenter 720"):
                await coordinator.ensure_started()

        supervisor_cls.assert_not_called()
        assert coordinator.segmenters == {}
