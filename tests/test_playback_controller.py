import asyncio
import io
import math

import pytest

from reelstream.playback.controller import (
    CONTROLS_HIDE_DELAY,
    LOAD_ERROR,
    PlaybackController,
    PlaybackState,
    format_time,
)
from reelstream.playback.events import EventSource
from reelstream.playback.history import WatchHistoryReporter, storage_resolver
from reelstream.repositories.base import MovieRecord, RepositoryError


# ============================================
# Test doubles
# ============================================

class FakeElement:
    def __init__(self):
        self.source = None
        self.calls = []
        self.volume = 1.0
        self.muted = False

    def set_source(self, url):
        self.source = url

    def play(self):
        self.calls.append("play")

    def pause(self):
        self.calls.append("pause")

    def seek(self, position):
        self.calls.append(("seek", position))

    def set_volume(self, volume):
        self.volume = volume

    def set_muted(self, muted):
        self.muted = muted


class FakeHost:
    def __init__(self):
        self.fullscreen_changes = EventSource("fullscreen")
        self.pointer_moves = EventSource("pointer")
        self.is_fullscreen = False
        self.requests = []

    def request_fullscreen(self):
        self.requests.append("enter")

    def exit_fullscreen(self):
        self.requests.append("exit")


class FakeTimer:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    def __init__(self):
        self.timers = []

    def call_later(self, delay, callback):
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    def fire_pending(self):
        for timer in [t for t in self.timers if not t.cancelled]:
            timer.cancelled = True
            timer.callback()

    @property
    def pending(self):
        return [t for t in self.timers if not t.cancelled]


async def passthrough(reference):
    return f"https://cdn.example.com/{reference}"


async def failing(reference):
    raise RuntimeError("storage offline")


@pytest.fixture
def element():
    return FakeElement()


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def make_controller(element, host, scheduler):
    def factory(source="movies/1-heat.mp4", resolve=passthrough, **kwargs):
        return PlaybackController(source, element, host, resolve, scheduler=scheduler, title="Heat", **kwargs)
    return factory


@pytest.fixture
def player(make_controller):
    """A loaded 120 second video, paused at the start"""
    controller = make_controller()
    asyncio.run(controller.load())
    controller.handle_loaded_metadata(120)
    return controller


# ==================== LOADING ====================

def test_load_hands_resolved_url_to_element(make_controller, element):
    controller = make_controller()

    asyncio.run(controller.load())

    assert controller.state is PlaybackState.READY
    assert element.source == "https://cdn.example.com/movies/1-heat.mp4"


def test_load_failure_moves_to_error(make_controller, element):
    controller = make_controller(resolve=failing)

    asyncio.run(controller.load())

    assert controller.state is PlaybackState.ERROR
    assert controller.error == LOAD_ERROR
    assert element.source is None


def test_missing_source_is_an_error(make_controller):
    controller = make_controller(source=None)

    asyncio.run(controller.load())

    assert controller.state is PlaybackState.ERROR


def test_download_url_failure_does_not_block_playback(make_controller):
    controller = make_controller(resolve_download=failing)

    asyncio.run(controller.load())

    assert controller.state is PlaybackState.READY
    assert controller.download_url is None


def test_download_url_is_resolved(make_controller):
    controller = make_controller(resolve_download=passthrough)

    asyncio.run(controller.load())

    assert controller.download_url == "https://cdn.example.com/movies/1-heat.mp4"


# ==================== TRANSPORT ====================

def test_play_pause_follow_element_events(player, element):
    assert player.toggle_play() is True
    assert element.calls[-1] == "play"
    assert player.state is PlaybackState.READY

    player.handle_play()
    assert player.state is PlaybackState.PLAYING

    player.toggle_play()
    assert element.calls[-1] == "pause"
    player.handle_pause()
    assert player.state is PlaybackState.PAUSED


def test_toggle_play_ignored_while_loading_or_failed(make_controller, element):
    controller = make_controller()
    assert controller.toggle_play() is False

    controller.handle_error()
    assert controller.toggle_play() is False
    assert element.calls == []


def test_seek_is_clamped_to_duration(player, element):
    assert player.seek_to(500) == 120
    assert player.seek_to(-5) == 0
    assert element.calls[-1] == ("seek", 0)


def test_skip_forward_and_backward(player):
    player.seek_to(5)

    assert player.forward() == 15
    assert player.backward() == 5
    assert player.backward() == 0


def test_seek_from_click(player):
    assert player.seek_from_click(x=150, track_left=50, track_width=400) == 30
    assert player.seek_from_click(x=10, track_left=50, track_width=0) == player.position


def test_seek_ignored_after_error(player, element):
    player.handle_error("decode failed")
    calls = list(element.calls)

    player.seek_to(60)

    assert element.calls == calls
    assert player.error == "decode failed"


def test_buffering_flag(player):
    player.handle_waiting()
    assert player.buffering is True

    player.handle_playing()
    assert player.buffering is False


def test_progress_and_snapshot(player):
    player.handle_time_update(90)

    snapshot = player.snapshot()

    assert player.progress == 75.0
    assert snapshot["position"] == "1:30"
    assert snapshot["duration"] == "2:00"
    assert snapshot["state"] == "ready"


# ==================== WATCHED SIGNAL ====================

def test_watched_fires_once_after_thirty_seconds(make_controller):
    calls = []
    controller = make_controller(on_watched=lambda: calls.append(1))
    asyncio.run(controller.load())

    controller.handle_time_update(30)
    assert calls == []

    controller.handle_time_update(31)
    controller.handle_time_update(45)
    controller.seek_to(0)
    controller.handle_time_update(40)

    assert calls == [1]
    assert controller.watched is True


# ==================== VOLUME ====================

def test_volume_is_clamped(player, element):
    assert player.set_volume(1.7) == 1.0
    assert player.set_volume(-1) == 0.0
    assert player.muted is True
    assert element.muted is True


def test_unmute_restores_previous_volume(player, element):
    player.set_volume(0.4)

    assert player.toggle_mute() is True
    assert player.volume == 0.0

    assert player.toggle_mute() is False
    assert player.volume == 0.4
    assert element.volume == 0.4
    assert element.muted is False


def test_unmute_after_dragging_to_zero(player):
    player.set_volume(0.6)
    player.set_volume(0)

    player.toggle_mute()

    assert player.volume == 0.6


def test_unmute_defaults_to_full_volume(player):
    player.toggle_mute()
    player.toggle_mute()

    assert player.volume == 1.0


# ==================== FULLSCREEN & CONTROLS ====================

def test_fullscreen_flag_follows_host_notification(player, host):
    player.attach()

    player.toggle_fullscreen()
    assert host.requests == ["enter"]
    assert player.fullscreen is False

    host.is_fullscreen = True
    host.fullscreen_changes.emit()
    assert player.fullscreen is True

    player.toggle_fullscreen()
    assert host.requests == ["enter", "exit"]

    # Leaving fullscreen with the Escape key only produces a notification
    host.is_fullscreen = False
    host.fullscreen_changes.emit()
    assert player.fullscreen is False


def test_controls_hide_after_inactivity_while_playing(player, host, scheduler):
    player.attach()
    player.handle_play()

    host.pointer_moves.emit(10, 20)
    assert player.controls_visible is True
    assert scheduler.pending[-1].delay == CONTROLS_HIDE_DELAY

    scheduler.fire_pending()
    assert player.controls_visible is False

    host.pointer_moves.emit(11, 21)
    assert player.controls_visible is True


def test_pointer_move_restarts_hide_timer(player, host, scheduler):
    player.attach()
    player.handle_play()

    host.pointer_moves.emit()
    first = scheduler.pending[-1]
    host.pointer_moves.emit()

    assert first.cancelled is True
    assert len(scheduler.pending) == 1


def test_controls_stay_visible_while_paused(player, host, scheduler):
    player.attach()

    host.pointer_moves.emit()
    scheduler.fire_pending()

    assert player.controls_visible is True


def test_detach_unsubscribes_and_cancels_timer(player, host, scheduler):
    with player:
        player.handle_play()
        host.pointer_moves.emit()
        assert host.pointer_moves.handler_count == 1

    assert player.attached is False
    assert host.pointer_moves.handler_count == 0
    assert host.fullscreen_changes.handler_count == 0
    assert scheduler.pending == []

    host.is_fullscreen = True
    host.fullscreen_changes.emit()
    assert player.fullscreen is False


def test_default_scheduler_works_outside_an_event_loop(element, host):
    controller = PlaybackController("movies/1-heat.mp4", element, host, passthrough)
    asyncio.run(controller.load())

    controller.handle_play()
    controller.handle_pointer_move()

    assert controller.controls_visible is True
    controller.handle_pause()
    assert controller._hide_timer is None


def test_default_scheduler_uses_running_loop(element, host):
    async def scenario():
        controller = PlaybackController("movies/1-heat.mp4", element, host, passthrough)
        await controller.load()
        controller.handle_play()
        timer = controller._hide_timer
        controller.handle_pause()
        return timer

    timer = asyncio.run(scenario())

    assert isinstance(timer, asyncio.TimerHandle)
    assert timer.cancelled()


def test_attach_twice_subscribes_once(player, host):
    player.attach()
    player.attach()

    assert host.fullscreen_changes.handler_count == 1


# ==================== FORMATTING ====================

@pytest.mark.parametrize("seconds, expected", [
    (0, "0:00"),
    (59.9, "0:59"),
    (61, "1:01"),
    (3600, "60:00"),
    (-3, "0:00"),
    (math.nan, "0:00"),
    (math.inf, "0:00"),
    (None, "0:00"),
])
def test_format_time(seconds, expected):
    assert format_time(seconds) == expected


# ==================== EVENTS ====================

def test_subscription_unsubscribe_is_idempotent():
    source = EventSource("test")
    received = []
    subscription = source.subscribe(received.append)

    source.emit("a")
    subscription.unsubscribe()
    subscription.unsubscribe()
    source.emit("b")

    assert received == ["a"]
    assert subscription.active is False


def test_handler_may_unsubscribe_during_emit():
    source = EventSource()
    received = []
    holder = {}

    def once(value):
        received.append(value)
        holder["sub"].unsubscribe()

    holder["sub"] = source.subscribe(once)
    source.emit(1)
    source.emit(2)

    assert received == [1]


# ==================== HISTORY GLUE ====================

def test_watch_history_reporter_records_once_watched(user_repo, make_controller):
    movie = MovieRecord(id="m1", title="Heat", poster="posters/1-heat.jpg")
    reporter = WatchHistoryReporter(user_repo, "u1", movie)
    controller = make_controller(on_watched=reporter)
    asyncio.run(controller.load())

    controller.handle_time_update(31)

    history = user_repo.get_history("u1")
    assert [h.movie_id for h in history] == ["m1"]
    assert reporter.recorded.title == "Heat"


def test_watch_history_reporter_skips_anonymous(user_repo):
    reporter = WatchHistoryReporter(user_repo, None, MovieRecord(id="m1", title="Heat"))

    reporter()

    assert reporter.recorded is None


def test_watch_history_failure_is_logged_not_raised(user_repo, monkeypatch):
    def broken(user_id, item):
        raise RepositoryError("down")

    monkeypatch.setattr(user_repo, "record_watch", broken)
    reporter = WatchHistoryReporter(user_repo, "u1", MovieRecord(id="m1", title="Heat"))

    reporter()

    assert reporter.recorded is None


def test_storage_resolver(storage):
    resolve = storage_resolver(storage)
    storage.upload("movies/1-heat.mp4", io.BytesIO(b"mp4"))

    assert asyncio.run(resolve("movies/1-heat.mp4")).startswith("/api/media/movies/1-heat.mp4?token=")
    assert asyncio.run(resolve("https://cdn.example.com/a.mp4")) == "https://cdn.example.com/a.mp4"


def test_storage_resolver_missing_object_fails_load(storage, element, host, scheduler):
    controller = PlaybackController(
        "movies/missing.mp4", element, host, storage_resolver(storage), scheduler=scheduler
    )

    asyncio.run(controller.load())

    assert controller.state is PlaybackState.ERROR
