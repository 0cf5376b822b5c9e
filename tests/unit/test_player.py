# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for the adaptive client player."""

import asyncio
from unittest.mock import MagicMock

import pytest

from castladder.core.ladder import RenditionLadder
from castladder.core.manifest import synthesize_manifest
from castladder.exceptions import (
    PlaybackError,
    RenditionIndexError,
    UnsupportedEnvironmentError,
)
from castladder.player import (
    AUTO,
    AdaptiveEngine,
    AdaptivePlayer,
    Capabilities,
    DirectStreamPlayback,
    NativePlayback,
    PlaybackScheduler,
    PlayerState,
    static_probe,
)

BASE_URL = "http://localhost:8000/live/stream"


@pytest.fixture
def manifest():
    return synthesize_manifest(RenditionLadder.default(), BASE_URL)


def adaptive_player(**kwargs):
    return AdaptivePlayer(static_probe(Capabilities(adaptive_engine=True)), **kwargs)


def playing_player(manifest):
    player = adaptive_player()
    player.initialize(manifest)
    player.on_manifest_parsed()
    return player


class TestTechnologySelection:
    """The first available technology is bound for the player's lifetime."""

    def test_adaptive_engine_preferred(self, manifest):
        player = AdaptivePlayer(
            static_probe(Capabilities(adaptive_engine=True, native_hls=True, direct_stream=True))
        )

        technology = player.initialize(manifest)

        assert isinstance(technology, AdaptiveEngine)
        assert player.state == PlayerState.LOADING
        assert [level.height for level in technology.levels] == [720, 480, 360]
        assert technology.manifest_text == manifest.render()
        assert technology.start_level == AUTO

    def test_native_playback(self, manifest):
        player = AdaptivePlayer(static_probe(Capabilities(native_hls=True, direct_stream=True)))

        technology = player.initialize(manifest)

        assert isinstance(technology, NativePlayback)
        assert technology.source == "http://localhost:8000/live/stream.m3u8"
        assert player.state == PlayerState.PLAYING
        assert player.status == "Playing HLS stream (native player)"

    def test_direct_stream_fallback(self, manifest):
        player = AdaptivePlayer(
            static_probe(Capabilities(direct_stream=True)),
            direct_url="http://localhost:8000/live/stream.flv",
        )

        technology = player.initialize(manifest)

        assert isinstance(technology, DirectStreamPlayback)
        assert technology.source == "http://localhost:8000/live/stream.flv"
        assert player.state == PlayerState.PLAYING

    def test_direct_stream_without_url_is_unsupported(self, manifest):
        player = AdaptivePlayer(static_probe(Capabilities(direct_stream=True)))

        with pytest.raises(UnsupportedEnvironmentError):
            player.initialize(manifest)

    def test_unsupported_environment(self, manifest):
        statuses = []
        player = AdaptivePlayer(static_probe(Capabilities()), on_status=statuses.append)

        with pytest.raises(UnsupportedEnvironmentError):
            player.initialize(manifest)

        assert player.state == PlayerState.ERRORED
        assert player.status == "Error: Your browser doesn't support HLS streaming"
        assert statuses[-1] == player.status

    def test_probe_evaluated_once(self, manifest):
        probe = MagicMock(return_value=Capabilities(adaptive_engine=True))
        player = AdaptivePlayer(probe)

        player.initialize(manifest)
        player.stop()
        player.initialize(manifest)

        probe.assert_called_once()

    def test_custom_factory(self, manifest):
        engine = AdaptiveEngine()
        factory = MagicMock(return_value=engine)
        player = adaptive_player(factories={"adaptive": factory})

        assert player.initialize(manifest) is engine
        factory.assert_called_once_with(start_level=AUTO)


class TestPlaybackEvents:
    """Engine events drive the state machine."""

    def test_manifest_parsed(self, manifest):
        player = playing_player(manifest)

        assert player.state == PlayerState.PLAYING
        assert player.status == "Playing HLS stream with adaptive quality"

    def test_level_switched_status(self, manifest):
        player = playing_player(manifest)

        player.on_level_switched(0)

        assert player.state == PlayerState.PLAYING
        assert player.current_index == 0
        assert player.status == "Playing HLS stream (720p)"

    def test_level_switched_out_of_range(self, manifest):
        player = playing_player(manifest)

        with pytest.raises(RenditionIndexError):
            player.on_level_switched(3)

    def test_manifest_parsed_ignored_when_not_loading(self, manifest):
        player = adaptive_player()
        player.on_manifest_parsed()

        assert player.state == PlayerState.UNINITIALIZED


class TestRenditionSelection:
    """Manual rendition selection."""

    def test_forced_switch(self, manifest):
        player = playing_player(manifest)

        player.select_rendition(2)

        assert player.state == PlayerState.SWITCHING
        assert player.selected_index == 2
        assert player.technology.current_level == 2
        assert player.status == "Playing HLS stream (360p)"

        player.on_level_switched(2)
        assert player.state == PlayerState.PLAYING
        assert player.current_index == 2

    def test_auto_selection_delegates_to_engine(self, manifest):
        player = playing_player(manifest)
        player.select_rendition(1)
        player.on_level_switched(1)

        player.select_rendition(AUTO)

        assert player.state == PlayerState.PLAYING
        assert player.technology.current_level == AUTO
        assert player.status == "Playing HLS stream (Auto)"

    @pytest.mark.parametrize("index", [-2, 3, 100])
    def test_out_of_range_leaves_state_unchanged(self, manifest, index):
        player = playing_player(manifest)
        player.on_level_switched(1)

        with pytest.raises(RenditionIndexError) as exc_info:
            player.select_rendition(index)

        assert exc_info.value.index == index
        assert exc_info.value.ladder_size == 3
        assert player.state == PlayerState.PLAYING
        assert player.selected_index == AUTO
        assert player.current_index == 1
        assert player.technology.current_level == AUTO

    def test_selection_before_initialize_sets_start_level(self, manifest):
        player = adaptive_player()

        player.select_rendition(1)
        technology = player.initialize(manifest)

        assert technology.start_level == 1
        assert player.state == PlayerState.LOADING

    def test_selection_validated_against_ladder_before_initialize(self):
        ladder = RenditionLadder.default()
        player = adaptive_player(ladder=ladder)

        with pytest.raises(RenditionIndexError):
            player.select_rendition(len(ladder))

    def test_selection_in_native_mode_is_remembered(self, manifest):
        player = AdaptivePlayer(static_probe(Capabilities(native_hls=True)))
        player.initialize(manifest)

        player.select_rendition(0)

        assert player.selected_index == 0
        assert player.state == PlayerState.PLAYING

    def test_selection_when_errored(self, manifest):
        player = playing_player(manifest)
        player.on_error(fatal=True, details="manifestLoadError")

        with pytest.raises(PlaybackError):
            player.select_rendition(0)


class TestPlaybackErrors:
    """Fatal errors are terminal until restart."""

    @pytest.mark.parametrize("setup", ["loading", "playing", "switching"])
    def test_fatal_error(self, manifest, setup):
        player = adaptive_player()
        player.initialize(manifest)
        if setup in ("playing", "switching"):
            player.on_manifest_parsed()
        if setup == "switching":
            player.select_rendition(0)

        player.on_error(fatal=True, details="fragLoadError")

        assert player.state == PlayerState.ERRORED
        assert player.status == "Error: fragLoadError"

    def test_non_fatal_error_ignored(self, manifest):
        player = playing_player(manifest)

        player.on_error(fatal=False, details="bufferStalledError")

        assert player.state == PlayerState.PLAYING

    def test_no_automatic_recovery(self, manifest):
        player = playing_player(manifest)
        player.on_error(fatal=True, details="networkError")

        player.on_manifest_parsed()
        player.on_level_switched(0)

        assert player.state == PlayerState.ERRORED

    def test_manual_restart(self, manifest):
        player = playing_player(manifest)
        player.on_error(fatal=True, details="networkError")

        player.stop()
        player.initialize(manifest)
        player.on_manifest_parsed()

        assert player.state == PlayerState.PLAYING


class TestStop:
    def test_stop_destroys_technology(self, manifest):
        player = playing_player(manifest)
        technology = player.technology

        player.stop()

        assert technology.destroyed is True
        assert player.technology is None
        assert player.state == PlayerState.UNINITIALIZED

    def test_reinitialize_replaces_technology(self, manifest):
        player = playing_player(manifest)
        first = player.technology

        second = player.initialize(manifest)

        assert first.destroyed is True
        assert second is not first


class TestPlaybackScheduler:
    """Player start is deferred until the stream is playable."""

    @pytest.mark.asyncio
    async def test_grace_period(self, manifest):
        player = adaptive_player()
        scheduler = PlaybackScheduler(player, grace_period=0.05)

        scheduler.start(manifest)

        assert scheduler.streaming is True
        assert player.status == "Starting stream..."
        assert player.state == PlayerState.UNINITIALIZED

        technology = await asyncio.wait_for(scheduler.wait(), timeout=1.0)
        assert isinstance(technology, AdaptiveEngine)
        assert player.state == PlayerState.LOADING

    @pytest.mark.asyncio
    async def test_readiness_signal_preferred(self, manifest):
        ready = asyncio.Event()

        async def readiness():
            await ready.wait()
            return True

        player = adaptive_player()
        scheduler = PlaybackScheduler(player, grace_period=60.0, readiness=readiness)
        scheduler.start(manifest)
        await asyncio.sleep(0.01)
        assert player.state == PlayerState.UNINITIALIZED

        ready.set()
        await asyncio.wait_for(scheduler.wait(), timeout=1.0)

        assert player.state == PlayerState.LOADING

    @pytest.mark.asyncio
    async def test_not_ready_still_initializes(self, manifest):
        async def readiness():
            return False

        player = adaptive_player()
        scheduler = PlaybackScheduler(player, readiness=readiness)
        scheduler.start(manifest)

        await scheduler.wait()
        assert player.state == PlayerState.LOADING

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_start(self, manifest):
        player = adaptive_player()
        scheduler = PlaybackScheduler(player, grace_period=60.0)
        scheduler.start(manifest)

        await scheduler.stop()

        assert scheduler.streaming is False
        assert player.state == PlayerState.UNINITIALIZED
        assert player.status == "Not streaming"

    @pytest.mark.asyncio
    async def test_start_twice_rejected(self, manifest):
        scheduler = PlaybackScheduler(adaptive_player(), grace_period=60.0)
        scheduler.start(manifest)

        with pytest.raises(PlaybackError):
            scheduler.start(manifest)

        await scheduler.stop()
