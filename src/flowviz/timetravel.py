"""
Time-travel controller - records one IR snapshot per event and replays them.

Wraps an ``IRBuilder``. Every ``handle_event`` call applies the event and
appends exactly one snapshot (a copy of the IR with deep-copied payloads),
whether or not recording is on. Recording only controls whether
``current_index`` follows the newest snapshot.

Architecture::

    handle_event(e) ──► IRBuilder.handle_event(e)
                           │
                           ▼
                   clone_ir(builder.get_ir()) ──► snapshots.append(...)
                           │
                           ▼
              is_recording? ──yes──► current_index = len(snapshots) - 1

    play() ──► PlaybackTimer.start(tick, interval_ms / speed)
                  tick: current_index += 1 ... stop at last snapshot
    pause() / dispose() ──► PlaybackTimer.cancel()

The default ``ThreadPlaybackTimer`` drives playback from a daemon thread
(the same stop-event loop the scheduler backends use). Tests inject a
manual timer and call ``fire()`` to advance deterministically.

Misuse never raises: seeks are clamped, ``play()`` with no snapshots or
while already playing is a no-op.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from flowviz.core.errors import PlaybackError
from flowviz.core.logging import get_logger
from flowviz.core.settings import VisualizerSettings, get_settings
from flowviz.events import WorkflowEvent
from flowviz.ir.builder import IRBuilder
from flowviz.ir.models import WorkflowIR, clone_ir

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Snapshot / state
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Snapshot:
    """IR copy taken immediately after one event was applied.

    Attributes:
        index: Sequence number of the event (0-based, never re-used).
        event: The event that produced this snapshot.
        ir: Copy of the IR; treat as read-only.
        ts: Timestamp of the event.
    """

    index: int
    event: WorkflowEvent
    ir: WorkflowIR
    ts: float


@dataclass(frozen=True)
class TimeTravelState:
    snapshots: tuple[Snapshot, ...]
    current_index: int
    is_playing: bool
    is_recording: bool
    playback_speed: float


# ---------------------------------------------------------------------------
# Playback timers
# ---------------------------------------------------------------------------

@runtime_checkable
class PlaybackTimer(Protocol):
    """Repeating timer used for playback."""

    def start(self, callback: Callable[[], None], interval_ms: float) -> None: ...

    def cancel(self) -> None: ...

    @property
    def is_active(self) -> bool: ...


class ThreadPlaybackTimer:
    """Daemon-thread repeating timer.

    ``cancel()`` sets the stop event and joins the thread unless called from
    the timer thread itself (a tick that pauses playback).
    """

    def __init__(self, join_timeout: float = 2.0) -> None:
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._join_timeout = join_timeout
        self._lock = threading.Lock()

    def start(self, callback: Callable[[], None], interval_ms: float) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                logger.warning("playback_timer_already_running")
                return
            self._stop_event = threading.Event()
            stop_event = self._stop_event
            interval = max(interval_ms, 1.0) / 1000

            def _loop() -> None:
                while not stop_event.wait(interval):
                    try:
                        callback()
                    except Exception as e:
                        logger.exception("playback_tick_failed", error=str(e))

            thread = threading.Thread(target=_loop, daemon=True, name="flowviz-playback")
            try:
                thread.start()
            except RuntimeError as e:
                raise PlaybackError("Could not start playback thread", cause=e) from e
            self._thread = thread

    def cancel(self) -> None:
        with self._lock:
            self._stop_event.set()
            thread = self._thread
            self._thread = None
        if thread is None or thread is threading.current_thread():
            return
        thread.join(timeout=self._join_timeout)
        if thread.is_alive():
            logger.warning("playback_timer_did_not_stop")

    @property
    def is_active(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive() and not self._stop_event.is_set()


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------

StateListener = Callable[[TimeTravelState], None]


class TimeTravelController:
    """Records IR snapshots and replays them.

    Parameters
    ----------
    builder
        Builder to wrap; a fresh ``IRBuilder`` by default.
    timer
        Playback timer; ``ThreadPlaybackTimer`` by default.
    playback_speed
        Multiplier applied to ``interval_ms``; defaults from settings.
    interval_ms
        Tick interval at speed 1.0; defaults from settings.
    max_snapshots
        Keep at most this many snapshots (oldest evicted). Unbounded if None.
    """

    def __init__(
        self,
        builder: IRBuilder | None = None,
        *,
        timer: PlaybackTimer | None = None,
        playback_speed: float | None = None,
        interval_ms: float | None = None,
        max_snapshots: int | None = None,
        settings: VisualizerSettings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._builder = builder or IRBuilder()
        self._timer: PlaybackTimer = timer or ThreadPlaybackTimer()
        self._speed = playback_speed if playback_speed and playback_speed > 0 else settings.playback_speed
        self._interval_ms = interval_ms if interval_ms and interval_ms > 0 else settings.playback_interval_ms
        self._max_snapshots = max_snapshots
        self._lock = threading.RLock()
        self._listeners: list[StateListener] = []
        self._snapshots: list[Snapshot] = []
        self._sequence = 0
        self._current_index = 0
        self._is_playing = False
        self._is_recording = True
        self._disposed = False

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def handle_event(self, event: WorkflowEvent) -> None:
        """Apply ``event`` and append exactly one snapshot."""
        with self._lock:
            self._builder.handle_event(event)
            snapshot = Snapshot(
                index=self._sequence,
                event=event,
                ir=clone_ir(self._builder.get_ir()),
                ts=getattr(event, "ts", 0.0),
            )
            self._sequence += 1
            self._snapshots.append(snapshot)
            if self._max_snapshots is not None and len(self._snapshots) > self._max_snapshots:
                del self._snapshots[0]
                self._current_index = max(0, self._current_index - 1)
            if self._is_recording:
                self._current_index = len(self._snapshots) - 1
        self._notify()

    def start_recording(self) -> None:
        """Follow the live edge; jumps to the newest snapshot immediately."""
        with self._lock:
            self._is_recording = True
            self._current_index = max(0, len(self._snapshots) - 1)
        self._notify()

    def stop_recording(self) -> None:
        with self._lock:
            self._is_recording = False
        self._notify()

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def seek(self, index: int) -> None:
        """Move the cursor, clamped to ``[0, len(snapshots) - 1]`` (0 when empty)."""
        with self._lock:
            last = len(self._snapshots) - 1
            self._current_index = max(0, min(int(index), last))
        self._notify()

    def step_forward(self) -> None:
        self.seek(self._current_index + 1)

    def step_backward(self) -> None:
        self.seek(self._current_index - 1)

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------

    def play(self, speed: float | None = None) -> None:
        """Advance the cursor on a timer until the last snapshot.

        No-op when there are no snapshots, when already playing, or after
        ``dispose()``.
        """
        with self._lock:
            if self._disposed or self._is_playing or not self._snapshots:
                return
            if speed is not None and speed > 0:
                self._speed = speed
            self._is_playing = True
            self._is_recording = False
            interval = self._interval_ms / self._speed
        self._start_timer(interval)
        self._notify()

    def pause(self) -> None:
        with self._lock:
            was_playing = self._is_playing
            self._is_playing = False
        self._timer.cancel()
        if was_playing:
            self._notify()

    def set_playback_speed(self, speed: float) -> None:
        if speed <= 0:
            logger.debug("playback_speed_ignored", speed=speed)
            return
        with self._lock:
            self._speed = speed
            restart = self._is_playing
        if restart:
            self._timer.cancel()
            self._start_timer(self._interval_ms / speed)
        self._notify()

    def _start_timer(self, interval: float) -> None:
        """Start the playback timer; on failure log it and stay paused."""
        try:
            self._timer.start(self._tick, interval)
        except PlaybackError as e:
            logger.warning("playback_start_failed", error=str(e))
            with self._lock:
                self._is_playing = False

    def _tick(self) -> None:
        with self._lock:
            if not self._is_playing:
                return
            last = len(self._snapshots) - 1
            if self._current_index < last:
                self._current_index += 1
            finished = self._current_index >= last
        if finished:
            self.pause()
        else:
            self._notify()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def get_state(self) -> TimeTravelState:
        with self._lock:
            return TimeTravelState(
                snapshots=tuple(self._snapshots),
                current_index=self._current_index,
                is_playing=self._is_playing,
                is_recording=self._is_recording,
                playback_speed=self._speed,
            )

    def get_snapshots(self) -> list[Snapshot]:
        with self._lock:
            return list(self._snapshots)

    def get_snapshot_at(self, index: int) -> Snapshot | None:
        with self._lock:
            if 0 <= index < len(self._snapshots):
                return self._snapshots[index]
            return None

    def get_current_ir(self) -> WorkflowIR | None:
        snapshot = self.get_snapshot_at(self._current_index)
        return snapshot.ir if snapshot else None

    @property
    def builder(self) -> IRBuilder:
        return self._builder

    # ------------------------------------------------------------------
    # Listeners / lifecycle
    # ------------------------------------------------------------------

    def on_change(self, listener: StateListener) -> Callable[[], None]:
        """Subscribe to state changes. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        state = self.get_state()
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                logger.exception("time_travel_listener_failed", error=str(e))

    def reset(self) -> None:
        """Stop playback and drop all snapshots and builder state."""
        self.pause()
        with self._lock:
            self._builder.reset()
            self._snapshots.clear()
            self._sequence = 0
            self._current_index = 0
            self._is_recording = True
        self._notify()

    def dispose(self) -> None:
        """Cancel playback and detach listeners. Further ``play()`` calls are no-ops."""
        self.pause()
        self._listeners.clear()
        self._disposed = True


__all__ = [
    "Snapshot",
    "TimeTravelState",
    "PlaybackTimer",
    "ThreadPlaybackTimer",
    "TimeTravelController",
]
