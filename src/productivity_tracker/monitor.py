"""Session tracking state machine.

The monitor polls a :class:`~productivity_tracker.collector.WindowSource` on
one timer and checks for inactivity on another. Both timers run on daemon
threads; every state change happens under a single re-entrant lock, so a
sample tick and an idle tick can never end the same session twice. Events are
queued while the lock is held and delivered after it is released, which lets
subscribers call back into the monitor. Delivery itself is serialized, so
subscribers observe events in the order they were emitted even when both
timers fire together.
"""

from __future__ import annotations

import dataclasses
import logging
import socket
import sys
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from . import events as ev
from .classifier import ClassificationEngine
from .collector import IdleDetector, WindowSource, default_window_source, placeholder_window
from .config import MonitorSettings
from .db import SessionStore
from .models import ActivitySession, WindowInfo
from .normalization import sanitize_window_title

logger = logging.getLogger(__name__)


class MonitorError(RuntimeError):
    """Raised when an operation is not valid in the monitor's current state."""


@dataclass(slots=True)
class MonitorStatus:
    is_running: bool
    is_idle: bool
    has_active_session: bool
    current_session: Optional[dict[str, Any]]
    last_activity_time: datetime
    seconds_since_activity: float
    hostname: str
    os_name: str
    config: dict[str, Any]


class _PeriodicTask:
    """Runs ``callback`` every ``interval()`` seconds on a daemon thread."""

    def __init__(self, name: str, interval: Callable[[], float], callback: Callable[[], None]) -> None:
        self._interval = interval
        self._callback = callback
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self) -> None:
        self._thread.start()

    def cancel(self) -> None:
        self._stop_event.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is threading.current_thread():
            return
        self._thread.join(timeout)

    def _run(self) -> None:
        # Sleep in an interruptible manner.
        while not self._stop_event.wait(self._interval()):
            self._callback()


class ActivityMonitor:
    """Turns foreground window polls into classified activity sessions."""

    def __init__(
        self,
        store: SessionStore,
        engine: Optional[ClassificationEngine] = None,
        window_source: Optional[WindowSource] = None,
        settings: Optional[MonitorSettings] = None,
        *,
        events: Optional[ev.EventBus] = None,
        idle_detector: Optional[IdleDetector] = None,
        clock: Callable[[], datetime] = datetime.now,
        hostname: Optional[str] = None,
        os_name: Optional[str] = None,
    ) -> None:
        self.store = store
        self.engine = engine or ClassificationEngine(clock=clock)
        self.window_source = window_source or default_window_source()
        self.settings = settings or MonitorSettings()
        self.events = events or ev.EventBus()
        self.hostname = hostname or socket.gethostname()
        self.os_name = os_name or sys.platform
        self._idle_detector = idle_detector
        self._clock = clock

        self._lock = threading.RLock()
        # Held while delivering so subscribers see events in emission order.
        self._delivery_lock = threading.RLock()
        self._outbox: list[tuple[str, dict[str, Any]]] = []
        self._tasks: list[_PeriodicTask] = []
        self._running = False
        self._idle = False
        self._ending = False
        self._current: Optional[ActivitySession] = None
        self._last_window: Optional[WindowInfo] = None
        self._last_activity = clock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_idle(self) -> bool:
        return self._idle

    @property
    def current_session(self) -> Optional[ActivitySession]:
        return self._current

    def start(self) -> None:
        with self._lock:
            if self._running:
                raise MonitorError("Monitor is already running")
            self._running = True
            self._idle = False
            self._last_window = None
            self._last_activity = self._clock()
            self._tasks = [
                _PeriodicTask(
                    "monitor-sample",
                    lambda: self.settings.sample_interval.total_seconds(),
                    lambda: self._guarded(self.sample_once),
                ),
                _PeriodicTask(
                    "monitor-idle-check",
                    lambda: self.settings.idle_check_interval.total_seconds(),
                    lambda: self._guarded(self.check_idle),
                ),
            ]
            for task in self._tasks:
                task.start()
            self._emit(ev.STARTED, {})
        logger.info("Activity monitor started on %s (%s).", self.hostname, self.os_name)
        self._drain()

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        # Ticks already in progress finish before the open session is closed.
        for task in tasks:
            task.join()
        with self._lock:
            self._end_session_locked()
            self._emit(ev.STOPPED, {})
        logger.info("Activity monitor stopped.")
        self._drain()

    def run_until_stopped(self, stop_event: threading.Event) -> None:
        """Run the monitor until the provided event is set."""
        self.start()
        try:
            while not stop_event.wait(1.0):
                pass
        finally:
            self.stop()

    def run_forever(self) -> None:
        try:
            self.run_until_stopped(threading.Event())
        except KeyboardInterrupt:
            logger.info("Monitor interrupted; open session closed.")

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------
    def sample_once(self) -> None:
        """Capture the foreground window and open or close sessions."""
        window = self._capture()
        now = self._clock()
        with self._lock:
            if not self._window_unchanged(window):
                self._end_session_locked(now)
                if (
                    window is not None
                    and not self._idle
                    and not self.settings.is_excluded(window.application_name)
                ):
                    self._start_session_locked(window, now)
                self._last_window = window
            self._observe_activity(now)
        self._drain()

    def check_idle(self) -> None:
        """Switch between idle and active based on time since last activity."""
        now = self._clock()
        with self._lock:
            elapsed = now - self._last_activity
            should_be_idle = elapsed >= self.settings.idle_threshold
            if should_be_idle and not self._idle:
                self._idle = True
                logger.info("User idle for %s; closing open session.", elapsed)
                self._emit(ev.IDLE, {"idle_duration": elapsed})
                self._end_session_locked(now)
            elif not should_be_idle and self._idle:
                self._idle = False
                # Forget the last window so the next sample opens a session.
                self._last_window = None
                logger.info("User active again after %s idle.", elapsed)
                self._emit(ev.ACTIVE, {"idle_duration": elapsed})
        self._drain()

    def record_activity(self) -> None:
        """Report user input observed outside the window source."""
        with self._lock:
            self._last_activity = self._clock()

    # ------------------------------------------------------------------
    # Administrative operations
    # ------------------------------------------------------------------
    def force_end_current_session(self) -> bool:
        with self._lock:
            ended = self._end_session_locked()
        self._drain()
        return ended

    def update_config(self, **changes: Any) -> MonitorSettings:
        """Apply validated setting changes; invalid values raise ``ValueError``."""
        with self._lock:
            self.settings = self.settings.updated(**changes)
            self._emit(ev.CONFIG_UPDATED, {"config": self.settings})
        self._drain()
        return self.settings

    def status(self) -> MonitorStatus:
        now = self._clock()
        with self._lock:
            session = self._current
            current = None
            if session is not None:
                current = {
                    "id": session.id,
                    "application": session.application_name,
                    "start_time": session.start_time.isoformat(),
                    "duration": session.calculated_duration(now),
                    "category": session.category,
                    "productivity_score": session.productivity_score,
                }
            return MonitorStatus(
                is_running=self._running,
                is_idle=self._idle,
                has_active_session=session is not None,
                current_session=current,
                last_activity_time=self._last_activity,
                seconds_since_activity=(now - self._last_activity).total_seconds(),
                hostname=self.hostname,
                os_name=self.os_name,
                config=self.settings.as_dict(),
            )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _capture(self) -> Optional[WindowInfo]:
        try:
            window = self.window_source.capture()
        except Exception:
            logger.exception("Failed to capture the foreground window; using placeholder.")
            window = placeholder_window()
        if window is not None and not self.settings.track_window_titles:
            window = dataclasses.replace(window, window_title="")
        return window

    def _window_unchanged(self, window: Optional[WindowInfo]) -> bool:
        if window is None:
            return self._last_window is None
        return window.same_window(self._last_window)

    def _observe_activity(self, now: datetime) -> None:
        if self._idle_detector is not None:
            try:
                idle_ms = self._idle_detector.milliseconds_since_input()
            except Exception:
                logger.exception("Failed to query input idle time.")
            else:
                last_input = now - timedelta(milliseconds=idle_ms)
                if last_input > self._last_activity:
                    self._last_activity = last_input
                return
        if not self._idle:
            self._last_activity = now

    def _start_session_locked(self, window: WindowInfo, now: datetime) -> None:
        track_titles = self.settings.track_window_titles
        categorization = self.engine.categorize(
            window.application_name,
            window.window_title if track_titles else None,
        )
        session = ActivitySession(
            start_time=now,
            application_name=window.application_name,
            application_path=window.application_path,
            window_title=(
                sanitize_window_title(window.window_title, self.settings.window_title_max_length)
                if track_titles
                else None
            ),
            category=categorization.category.value,
            productivity_score=categorization.productivity_score,
            is_idle=False,
            is_active=True,
            hostname=self.hostname,
            os_name=self.os_name,
        )
        try:
            session = self.store.create(session)
        except Exception as exc:
            logger.exception("Failed to persist new session for %s.", window.application_name)
            self._emit(ev.ERROR, {"error": exc})
        self._current = session
        self._emit(ev.SESSION_STARTED, {"session": session, "categorization": categorization})
        logger.info(
            "New session started: %s (%s)",
            session.application_name,
            categorization.category.value,
        )

    def _end_session_locked(self, now: Optional[datetime] = None) -> bool:
        session = self._current
        if session is None or self._ending:
            return False
        self._ending = True
        try:
            session.end_session(now or self._clock())
            if session.id is None:
                logger.warning(
                    "Session for %s was never stored; skipping update.",
                    session.application_name,
                )
            else:
                try:
                    self.store.update(
                        session.id,
                        end_time=session.end_time,
                        duration=session.duration,
                        is_active=False,
                        updated_at=session.updated_at,
                    )
                except Exception as exc:
                    logger.exception("Failed to persist end of session %s.", session.id)
                    self._emit(ev.ERROR, {"error": exc})
            self._emit(ev.SESSION_ENDED, {"session": session})
            logger.info("Session ended: %s (%ss)", session.application_name, session.duration)
        finally:
            self._current = None
            self._ending = False
        return True

    def _guarded(self, tick: Callable[[], None]) -> None:
        try:
            tick()
        except Exception as exc:
            logger.exception("Error in monitor tick.")
            with self._lock:
                self._emit(ev.ERROR, {"error": exc})
            self._drain()

    def _emit(self, event: str, payload: dict[str, Any]) -> None:
        self._outbox.append((event, payload))

    def _drain(self) -> None:
        with self._delivery_lock:
            with self._lock:
                pending, self._outbox = self._outbox, []
            for event, payload in pending:
                self.events.publish(event, payload)
