"""
Watch scheduler -- decides when a change becomes a save.

Everything that can happen in watch mode is an event on one queue:
file changes, timer expiries, the Keychain poll, save completions
and the stop signal. A single control loop drains the queue and is
the only code that touches WatchState, so handlers never re-enter.

    IDLE --change--> DEBOUNCE_WINDOW_OPEN --timer--> SAVE_IN_FLIGHT
                          |                              |
                          +--(too soon)--> THROTTLE_WAIT-+
    any --stop--> STOPPED            SAVE_IN_FLIGHT --fatal--> STOPPED

At most one save is in flight. A debounce window that closes while
a save is running is dropped; the next change opens a new one.
Stopping waits, up to a bound, for an in-flight save to report back.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from .config import WatchConfig
from .errors import SizeExceededError
from .log import LogContext
from .models import Snapshot, WatchState

logger = logging.getLogger("claude_profiles.scheduler")


class WatchPhase(str, Enum):
    IDLE = "idle"
    DEBOUNCE_WINDOW_OPEN = "debounce_window_open"
    SAVE_IN_FLIGHT = "save_in_flight"
    THROTTLE_WAIT = "throttle_wait"
    STOPPED = "stopped"


class EventType(str, Enum):
    CHANGE = "change"
    DEBOUNCE_ELAPSED = "debounce_elapsed"
    THROTTLE_ELAPSED = "throttle_elapsed"
    POLL = "poll"
    SAVE_FINISHED = "save_finished"
    STOP = "stop"


@dataclass(frozen=True)
class WatchEvent:
    """One item on the scheduler queue.

    Attributes:
        type: What happened.
        source: Changed path or label, for logging.
        generation: Timer generation; stale timer events are ignored.
        error: Exception raised by a finished save, if any.
        fingerprint: Fingerprint of the snapshot a successful save uploaded.
    """

    type: EventType
    source: str = ""
    generation: int = 0
    error: Optional[BaseException] = None
    fingerprint: Optional[str] = None


TimerFactory = Callable[[float, Callable[[], None]], Any]


def _thread_timer(delay: float, callback: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer


def _thread_spawn(target: Callable[[], None]) -> threading.Thread:
    thread = threading.Thread(target=target, name="watch-save", daemon=True)
    thread.start()
    return thread


class WatchScheduler:
    """Debounced, throttled save loop.

    Args:
        save: Performs one background save and returns the uploaded
            Snapshot. Raises on failure.
        fingerprint: Computes the current local fingerprint.
        config: Debounce, throttle, poll and stop timings.
        log: Interactive logging context.
        poll_keychain: Run the periodic fingerprint poll (macOS).
        clock: Monotonic time source in seconds.
        timer_factory: ``(delay, callback) -> timer`` that starts a
            timer; the returned object must have ``cancel()``.
        spawn: Runs a save callable off the control loop and returns a
            worker with ``join(timeout)``, or None.
    """

    def __init__(
        self,
        save: Callable[[], Snapshot],
        fingerprint: Callable[[], str],
        config: WatchConfig,
        log: LogContext,
        poll_keychain: bool = False,
        clock: Callable[[], float] = time.monotonic,
        timer_factory: TimerFactory = _thread_timer,
        spawn: Callable[[Callable[[], None]], Any] = _thread_spawn,
    ):
        self._save = save
        self._fingerprint = fingerprint
        self.config = config
        self.log = log
        self.poll_keychain = poll_keychain
        self._clock = clock
        self._timer_factory = timer_factory
        self._spawn = spawn

        self.state = WatchState()
        self.phase = WatchPhase.IDLE
        self.fatal = False

        self._queue: "queue.Queue[WatchEvent]" = queue.Queue()
        self._debounce_timer: Any = None
        self._throttle_timer: Any = None
        self._poll_timer: Any = None
        self._generation = 0
        self._debounce_generation = 0
        self._throttle_generation = 0
        self._observers: list[Any] = []
        self._worker: Any = None

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def add_observer(self, observer: Any) -> None:
        """Register something with ``stop()`` to close on shutdown."""
        self._observers.append(observer)

    def post(self, event: WatchEvent) -> None:
        """Queue an event. Safe from any thread."""
        self._queue.put(event)

    def notify_change(self, source: str = "") -> None:
        self.post(WatchEvent(EventType.CHANGE, source=source))

    def request_stop(self) -> None:
        self.post(WatchEvent(EventType.STOP, source="signal"))

    def start(self, initial_fingerprint: Optional[str] = None) -> None:
        """Record the starting fingerprint and arm the Keychain poll."""
        self.state.last_fingerprint = (
            initial_fingerprint if initial_fingerprint is not None else self._fingerprint()
        )
        self.log.debug(f"Initial files hash: {self.state.last_fingerprint}")
        if self.poll_keychain:
            self._arm_poll()

    def run(self) -> bool:
        """Drain events until stopped.

        Returns:
            True if watching stopped because of a fatal save error.
        """
        try:
            while self.phase != WatchPhase.STOPPED:
                try:
                    event = self._queue.get(timeout=1)
                except queue.Empty:
                    continue
                self.dispatch(event)
        except KeyboardInterrupt:
            self.dispatch(WatchEvent(EventType.STOP, source="interrupt"))
        return self.fatal

    def drain(self) -> None:
        """Dispatch every queued event without blocking."""
        while True:
            try:
                event = self._queue.get_nowait()
            except queue.Empty:
                return
            self.dispatch(event)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def dispatch(self, event: WatchEvent) -> None:
        """Apply one event. Only called from the control loop."""
        if self.phase == WatchPhase.STOPPED:
            return
        handler = {
            EventType.CHANGE: self._on_change,
            EventType.DEBOUNCE_ELAPSED: self._on_debounce_elapsed,
            EventType.THROTTLE_ELAPSED: self._on_throttle_elapsed,
            EventType.POLL: self._on_poll,
            EventType.SAVE_FINISHED: self._on_save_finished,
            EventType.STOP: self._on_stop,
        }[event.type]
        handler(event)

    def _on_change(self, event: WatchEvent) -> None:
        self.log.debug(f"File change detected: {event.source or 'unknown'}")
        if self.phase == WatchPhase.THROTTLE_WAIT:
            self.log.trace("Save already pending, change will be included")
            return

        if self._debounce_timer is not None:
            self._debounce_timer.cancel()
            self.log.trace("Cleared pending debounce timer due to new change")

        self._debounce_generation = self._next_generation()
        generation = self._debounce_generation
        self.log.trace(f"Setting debounce timer for {self.config.debounce_seconds:g}s")
        self._debounce_timer = self._timer_factory(
            self.config.debounce_seconds,
            lambda: self.post(WatchEvent(EventType.DEBOUNCE_ELAPSED, generation=generation)),
        )
        if self.phase == WatchPhase.IDLE:
            self.phase = WatchPhase.DEBOUNCE_WINDOW_OPEN

    def _on_debounce_elapsed(self, event: WatchEvent) -> None:
        if event.generation != self._debounce_generation:
            return
        self._debounce_timer = None

        if self.state.save_in_progress:
            self.log.debug("Save already in progress, skipping duplicate save request")
            return

        now = self._clock()
        if self.state.last_save_at is None:
            elapsed = float("inf")
        else:
            elapsed = now - self.state.last_save_at
        interval = self.config.min_save_interval_seconds

        if elapsed >= interval:
            self._begin_save("Changes detected, saving profile...")
            return

        wait = interval - elapsed
        self.state.pending_save_armed = True
        self.phase = WatchPhase.THROTTLE_WAIT
        self._throttle_generation = self._next_generation()
        generation = self._throttle_generation
        self.log.info(f"Changes detected, will save in {round(wait)} seconds...")
        self._throttle_timer = self._timer_factory(
            wait,
            lambda: self.post(WatchEvent(EventType.THROTTLE_ELAPSED, generation=generation)),
        )

    def _on_throttle_elapsed(self, event: WatchEvent) -> None:
        if event.generation != self._throttle_generation or not self.state.pending_save_armed:
            return
        self._throttle_timer = None
        self.state.pending_save_armed = False

        if self.state.save_in_progress:
            self.log.debug("Save already in progress, skipping pending save request")
            return
        self._begin_save("Saving pending changes...")

    def _on_poll(self, event: WatchEvent) -> None:
        if self.state.save_in_progress:
            self.log.trace("Skipping keychain check - save in progress")
        else:
            try:
                current = self._fingerprint()
            except Exception as exc:
                self.log.error(f"Error checking keychain: {exc}")
            else:
                if current != self.state.last_fingerprint:
                    self.log.debug("Keychain credentials changed, triggering save")
                    self._on_change(WatchEvent(EventType.CHANGE, source="macOS Keychain"))
        self._arm_poll()

    def _begin_save(self, message: str) -> None:
        try:
            current = self._fingerprint()
        except Exception as exc:
            self.log.error(f"Could not fingerprint local state: {exc}")
            self.phase = WatchPhase.IDLE
            return

        if current == self.state.last_fingerprint:
            self.log.debug("Content unchanged since last save, nothing to do")
            self.phase = WatchPhase.IDLE
            return

        self.log.info(message)
        self.state.save_in_progress = True
        self.phase = WatchPhase.SAVE_IN_FLIGHT
        self._worker = self._spawn(self._run_save)

    def _run_save(self) -> None:
        error: Optional[BaseException] = None
        fingerprint: Optional[str] = None
        try:
            snapshot = self._save()
            fingerprint = getattr(snapshot, "fingerprint", None)
        except Exception as exc:
            error = exc
        self.post(WatchEvent(EventType.SAVE_FINISHED, error=error, fingerprint=fingerprint))

    def _record_save(self, event: WatchEvent) -> bool:
        """Book a finished save. Returns True if the failure is fatal."""
        self.state.save_in_progress = False
        self._worker = None

        if event.error is None:
            self.state.last_save_at = self._clock()
            # Fingerprint of what was uploaded; later edits stay unsaved.
            if event.fingerprint is not None:
                self.state.last_fingerprint = event.fingerprint
            self.state.save_count += 1
            self.log.success(f"Profile auto-saved (save #{self.state.save_count})")
            self.log.trace(
                f"Next save allowed after {self.config.min_save_interval_seconds:g}s"
            )
            return False

        self.log.error(f"Failed to auto-save: {event.error}")
        if isinstance(event.error, SizeExceededError):
            for hint in event.error.hints:
                self.log.error(f"   {hint}")
            return True
        return False

    def _on_save_finished(self, event: WatchEvent) -> None:
        if self._record_save(event):
            self.fatal = True
            self._on_stop(WatchEvent(EventType.STOP, source="fatal"))
            return
        self.phase = (
            WatchPhase.DEBOUNCE_WINDOW_OPEN
            if self._debounce_timer is not None
            else WatchPhase.IDLE
        )

    def _await_save(self) -> None:
        """Block until the in-flight save reports back, or time out."""
        self.log.info("Waiting for the current save to finish...")
        if self._worker is not None:
            self._worker.join(timeout=self.config.stop_timeout_seconds)

        while True:
            try:
                event = self._queue.get_nowait()
            except queue.Empty:
                break
            if event.type == EventType.SAVE_FINISHED:
                if self._record_save(event):
                    self.fatal = True
                break

        if self.state.save_in_progress:
            self.log.warn(
                f"Save still running after {self.config.stop_timeout_seconds:g}s, "
                "stopping without it"
            )

    def _on_stop(self, event: WatchEvent) -> None:
        self.log.info("Stopping watch mode...")
        for timer in (self._debounce_timer, self._throttle_timer, self._poll_timer):
            if timer is not None:
                timer.cancel()
        if self.state.pending_save_armed:
            self.log.info("Cancelled pending save")
        self._debounce_timer = self._throttle_timer = self._poll_timer = None
        self.state.pending_save_armed = False

        for observer in self._observers:
            try:
                observer.stop()
            except Exception as exc:
                logger.debug("Observer stop failed: %s", exc)
        self._observers.clear()

        if self.state.save_in_progress:
            self._await_save()

        self.phase = WatchPhase.STOPPED
        self.log.info(f"Watch mode ended - Total saves: {self.state.save_count}")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _next_generation(self) -> int:
        self._generation += 1
        return self._generation

    def _arm_poll(self) -> None:
        if self.phase == WatchPhase.STOPPED:
            return
        self._poll_timer = self._timer_factory(
            self.config.keychain_poll_seconds,
            lambda: self.post(WatchEvent(EventType.POLL)),
        )
