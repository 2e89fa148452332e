"""
Playback controller

Owns the transport state of one media element: loading, play/pause,
buffering, seeking, volume/mute, fullscreen and controls visibility. The
element and the host page are reached through small protocols so the
controller can drive a real player or a test double.

States: loading -> ready <-> playing <-> paused, and error (terminal).
``buffering`` and ``fullscreen`` are flags on top of the state.
"""
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Protocol
import asyncio
import logging
import math
import threading

from reelstream.playback.events import EventSource, Subscription

logger = logging.getLogger(__name__)

LOAD_ERROR = "Failed to load video. Please try again later."
WATCHED_AFTER_SECONDS = 30
SKIP_SECONDS = 10
CONTROLS_HIDE_DELAY = 3.0
DEFAULT_VOLUME = 1.0


class PlaybackState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    PLAYING = "playing"
    PAUSED = "paused"
    ERROR = "error"


class MediaElement(Protocol):
    def set_source(self, url: str) -> None: ...
    def play(self) -> None: ...
    def pause(self) -> None: ...
    def seek(self, position: float) -> None: ...
    def set_volume(self, volume: float) -> None: ...
    def set_muted(self, muted: bool) -> None: ...


class PlayerHost(Protocol):
    """The page hosting the player: fullscreen API and pointer events."""
    fullscreen_changes: EventSource
    pointer_moves: EventSource

    @property
    def is_fullscreen(self) -> bool: ...
    def request_fullscreen(self) -> None: ...
    def exit_fullscreen(self) -> None: ...


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle: ...


class AsyncioScheduler:
    """Timers on the running event loop, or a daemon thread timer when no loop is running."""

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            timer = threading.Timer(delay, callback)
            timer.daemon = True
            timer.start()
            return timer
        return loop.call_later(delay, callback)


SourceResolver = Callable[[str], Awaitable[str]]


def format_time(seconds: float) -> str:
    """``M:SS``; anything that is not a finite, non-negative number shows as 0:00"""
    if seconds is None or not math.isfinite(seconds) or seconds < 0:
        return "0:00"
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}:{secs:02d}"


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(value, high))


class PlaybackController:

    def __init__(
        self,
        source: Optional[str],
        element: MediaElement,
        host: PlayerHost,
        resolve_source: SourceResolver,
        *,
        resolve_download: Optional[SourceResolver] = None,
        on_watched: Optional[Callable[[], Any]] = None,
        scheduler: Optional[Scheduler] = None,
        title: str = "",
        poster: Optional[str] = None,
    ):
        self.source = source
        self.element = element
        self.host = host
        self.title = title
        self.poster = poster
        self._resolve_source = resolve_source
        self._resolve_download = resolve_download
        self._on_watched = on_watched
        self._scheduler = scheduler or AsyncioScheduler()

        self.state = PlaybackState.LOADING
        self.error: Optional[str] = None
        self.buffering = False
        self.fullscreen = False
        self.controls_visible = True
        self.duration = 0.0
        self.position = 0.0
        self.volume = DEFAULT_VOLUME
        self.muted = False
        self.download_url: Optional[str] = None
        self.watched = False

        # Volume to restore on unmute
        self._last_audible = DEFAULT_VOLUME
        self._hide_timer: Optional[TimerHandle] = None
        self._subscriptions: List[Subscription] = []

    # ==================== LIFECYCLE ====================

    async def load(self) -> None:
        """Resolve the source and hand it to the element"""
        if self.state is not PlaybackState.LOADING:
            return
        try:
            if not self.source:
                raise ValueError("No video source")
            url = await self._resolve_source(self.source)
            self.element.set_source(url)
        except Exception as e:
            logger.error(f"Error loading video '{self.title}': {e}")
            self._fail(LOAD_ERROR)
            return

        if self._resolve_download is not None:
            try:
                self.download_url = await self._resolve_download(self.source)
            except Exception as e:
                logger.warning(f"Error getting download URL for '{self.title}': {e}")

        # An element error may have arrived while resolving
        if self.state is PlaybackState.LOADING:
            self.state = PlaybackState.READY

    def attach(self) -> "PlaybackController":
        if not self._subscriptions:
            self._subscriptions = [
                self.host.fullscreen_changes.subscribe(self.handle_fullscreen_change),
                self.host.pointer_moves.subscribe(self.handle_pointer_move),
            ]
        return self

    def detach(self) -> None:
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []
        self._cancel_hide()

    def __enter__(self) -> "PlaybackController":
        return self.attach()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.detach()

    @property
    def attached(self) -> bool:
        return bool(self._subscriptions)

    # ==================== TRANSPORT ====================

    @property
    def is_playing(self) -> bool:
        return self.state is PlaybackState.PLAYING

    @property
    def progress(self) -> float:
        """Position as a percentage of the duration"""
        if self.duration <= 0:
            return 0.0
        return _clamp(self.position / self.duration * 100, 0.0, 100.0)

    def toggle_play(self) -> bool:
        """Ask the element to play or pause; the state follows its events"""
        if self.state in (PlaybackState.LOADING, PlaybackState.ERROR):
            return False
        if self.is_playing:
            self.element.pause()
        else:
            self.element.play()
        return True

    def seek_to(self, position: float) -> float:
        if self.state is PlaybackState.ERROR:
            return self.position
        target = _clamp(position, 0.0, self.duration)
        self.element.seek(target)
        self.position = target
        return target

    def seek_to_fraction(self, fraction: float) -> float:
        return self.seek_to(_clamp(fraction, 0.0, 1.0) * self.duration)

    def seek_from_click(self, x: float, track_left: float, track_width: float) -> float:
        """Seek to where the progress bar was clicked"""
        if track_width <= 0:
            return self.position
        return self.seek_to_fraction((x - track_left) / track_width)

    def skip(self, seconds: float) -> float:
        return self.seek_to(self.position + seconds)

    def forward(self) -> float:
        return self.skip(SKIP_SECONDS)

    def backward(self) -> float:
        return self.skip(-SKIP_SECONDS)

    # ==================== VOLUME ====================

    def set_volume(self, value: float) -> float:
        volume = _clamp(float(value), 0.0, 1.0)
        self.volume = volume
        self.element.set_volume(volume)
        self.muted = volume == 0
        self.element.set_muted(self.muted)
        if volume > 0:
            self._last_audible = volume
        return volume

    def toggle_mute(self) -> bool:
        if not self.muted:
            if self.volume > 0:
                self._last_audible = self.volume
            self.muted = True
            self.volume = 0.0
            self.element.set_muted(True)
        else:
            self.muted = False
            self.volume = self._last_audible
            self.element.set_volume(self.volume)
            self.element.set_muted(False)
        return self.muted

    # ==================== FULLSCREEN & CONTROLS ====================

    def toggle_fullscreen(self) -> None:
        """Request or exit fullscreen; ``fullscreen`` follows the host notification"""
        if self.host.is_fullscreen:
            self.host.exit_fullscreen()
        else:
            self.host.request_fullscreen()

    def handle_fullscreen_change(self, is_fullscreen: Optional[bool] = None) -> None:
        self.fullscreen = self.host.is_fullscreen if is_fullscreen is None else bool(is_fullscreen)

    def handle_pointer_move(self, *args: Any) -> None:
        self.controls_visible = True
        self._schedule_hide()

    def _schedule_hide(self) -> None:
        self._cancel_hide()
        self._hide_timer = self._scheduler.call_later(CONTROLS_HIDE_DELAY, self._hide_controls)

    def _cancel_hide(self) -> None:
        if self._hide_timer is not None:
            self._hide_timer.cancel()
            self._hide_timer = None

    def _hide_controls(self) -> None:
        self._hide_timer = None
        if self.is_playing:
            self.controls_visible = False

    # ==================== ELEMENT EVENTS ====================

    def handle_play(self) -> None:
        if self.state in (PlaybackState.READY, PlaybackState.PAUSED):
            self.state = PlaybackState.PLAYING
            self._schedule_hide()

    def handle_pause(self) -> None:
        if self.state is PlaybackState.PLAYING:
            self.state = PlaybackState.PAUSED
            self._cancel_hide()
            self.controls_visible = True

    def handle_waiting(self) -> None:
        if self.state is not PlaybackState.ERROR:
            self.buffering = True

    def handle_playing(self) -> None:
        self.buffering = False

    def handle_loaded_metadata(self, duration: float) -> None:
        if duration is not None and math.isfinite(duration) and duration > 0:
            self.duration = float(duration)

    def handle_time_update(self, position: float) -> None:
        if position is None or not math.isfinite(position):
            return
        self.position = max(0.0, float(position))
        if self.position > WATCHED_AFTER_SECONDS and not self.watched:
            self.watched = True
            if self._on_watched is not None:
                self._on_watched()

    def handle_error(self, message: Optional[str] = None) -> None:
        self._fail(message or LOAD_ERROR)

    def _fail(self, message: str) -> None:
        self.state = PlaybackState.ERROR
        self.error = message
        self.buffering = False
        self._cancel_hide()
        self.controls_visible = True

    def snapshot(self) -> dict:
        """Display state for rendering"""
        return {
            "state": self.state.value,
            "error": self.error,
            "buffering": self.buffering,
            "fullscreen": self.fullscreen,
            "controls_visible": self.controls_visible or not self.is_playing,
            "position": format_time(self.position),
            "duration": format_time(self.duration),
            "progress": self.progress,
            "volume": self.volume,
            "muted": self.muted,
            "download_url": self.download_url,
        }
