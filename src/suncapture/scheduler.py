"""Capture session state machine.

The controller owns the idle/waiting/capturing/generating lifecycle. All
transitions run under a single re-entrant lock, so timer callbacks coming
from APScheduler worker threads, manual commands and the daily refresh are
applied one at a time. Each timer callback remembers the generation it was
armed in and does nothing once that generation is over.
"""

import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from suncapture.artifacts import ArtifactBuildFailed
from suncapture.camera import CameraError, CaptureAgent
from suncapture.config import Config
from suncapture.logger import get_logger
from suncapture.planner import (
    CaptureWindowPlanner,
    DeferToNextCycle,
    Idle,
    ScheduleAt,
    StartNow,
)
from suncapture.suntimes import CaptureWindow, SunTimesError, SunTimesProvider
from suncapture.timers import TimerHandle, Timers

logger = get_logger(__name__)


class Status(str, Enum):
    IDLE = "idle"
    WAITING = "waiting"
    CAPTURING = "capturing"
    GENERATING = "generating"


class Rejection(str, Enum):
    ALREADY_CAPTURING = "already_capturing"
    NOT_CAPTURING = "not_capturing"


@dataclass(frozen=True)
class ControlResult:
    """Outcome of a manual control command."""

    success: bool
    message: str
    rejection: Optional[Rejection] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "rejection": self.rejection.value if self.rejection else None,
        }


@dataclass
class SchedulerState:
    status: Status = Status.IDLE
    capture_count: int = 0
    max_captures: Optional[int] = None
    current_session_date: Optional[str] = None
    next_capture_window: Optional[CaptureWindow] = None
    last_error: Optional[str] = None


@dataclass(frozen=True)
class SchedulerSnapshot:
    """Read-only copy of the scheduler state."""

    status: Status
    capture_count: int
    max_captures: Optional[int]
    current_session_date: Optional[str]
    next_capture_window: Optional[CaptureWindow]
    last_error: Optional[str]
    next_refresh: Optional[datetime] = None

    def to_dict(self) -> dict:
        window = self.next_capture_window
        return {
            "status": self.status.value,
            "capture_count": self.capture_count,
            "max_captures": self.max_captures,
            "current_session_date": self.current_session_date,
            "next_capture_window": window.to_dict() if window else None,
            "last_error": self.last_error,
            "next_refresh": self.next_refresh.isoformat() if self.next_refresh else None,
        }


class SessionController:
    """Drives capture sessions around the daily sun event."""

    def __init__(
        self,
        settings: Callable[[], Config],
        planner: CaptureWindowPlanner,
        sun_times: SunTimesProvider,
        agent: CaptureAgent,
        builder,
        timers: Timers,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the controller.

        Args:
            settings: Returns the current settings snapshot.
            planner: Decides what to do about today's window.
            sun_times: Sun event provider, refreshed daily.
            agent: Acquires one image per tick.
            builder: Artifact builder with ``build(date, event_type) -> Path``;
                sessions spanning midnight also pass ``dates=``.
            timers: Scheduling abstraction handing out cancellable timers.
            clock: Returns the current aware datetime.
        """
        self.settings = settings
        self.planner = planner
        self.sun_times = sun_times
        self.agent = agent
        self.builder = builder
        self.timers = timers
        self._clock = clock

        self._lock = threading.RLock()
        self._state_lock = threading.Lock()
        self._state = SchedulerState()

        self._tick: Optional[TimerHandle] = None
        self._timeout: Optional[TimerHandle] = None  # window start or session end
        self._refresh: Optional[TimerHandle] = None
        self._generation = 0
        self._session_event_type: Optional[str] = None
        self._session_dates: list[str] = []
        self._manual_generation: Optional[int] = None
        self._last_session_captures = 0
        self._initialized = False

    # -- helpers ---------------------------------------------------------

    def _now(self) -> datetime:
        if self._clock is not None:
            return self._clock()
        return datetime.now(self.settings().location.tzinfo)

    def _today(self) -> str:
        tz = self.settings().location.tzinfo
        return self._now().astimezone(tz).date().isoformat()

    def _update(self, **changes) -> None:
        with self._state_lock:
            for key, value in changes.items():
                setattr(self._state, key, value)

    def _next_generation(self) -> int:
        self._generation += 1
        return self._generation

    def _cancel_tick(self) -> None:
        if self._tick is not None:
            self._tick.cancel()
            self._tick = None

    def _cancel_timeout(self) -> None:
        if self._timeout is not None:
            self._timeout.cancel()
            self._timeout = None

    def _is_current(self, generation: int, status: Status) -> bool:
        return generation == self._generation and self._state.status == status

    # -- public API ------------------------------------------------------

    def get_state(self) -> SchedulerSnapshot:
        """Return a snapshot of the current state."""
        refresh = self._refresh
        with self._state_lock:
            state = self._state
            snapshot = SchedulerSnapshot(
                status=state.status,
                capture_count=state.capture_count,
                max_captures=state.max_captures,
                current_session_date=state.current_session_date,
                next_capture_window=state.next_capture_window,
                last_error=state.last_error,
                next_refresh=refresh.next_run_time if refresh else None,
            )
        return snapshot

    def initialize(self) -> None:
        """Arm the daily refresh, fetch today's sun times and plan once.

        Calling it again while initialized does nothing.
        """
        with self._lock:
            if self._initialized:
                logger.warning("Scheduler already initialized")
                return

            logger.info("Initializing scheduler...")
            if not self.timers.is_running():
                self.timers.start()

            hour, minute = self.settings().schedule.refresh_hour_minute
            self._refresh = self.timers.daily(hour, minute, self._on_daily_refresh, "sun-times-refresh")
            self._initialized = True

            try:
                self.sun_times.today()
            except SunTimesError as e:
                logger.error(f"Initial sun times fetch failed: {e}")
                self._update(last_error=str(e))

            self._plan()
            logger.info("Scheduler initialized")

    def shutdown(self) -> None:
        """Cancel every timer and stop the scheduling backend."""
        with self._lock:
            logger.info("Shutting down scheduler...")
            self._next_generation()
            self._cancel_tick()
            self._cancel_timeout()
            if self._refresh is not None:
                self._refresh.cancel()
                self._refresh = None
            self.timers.stop()
            self._update(status=Status.IDLE)
            self._initialized = False

    def manual_start(
        self,
        interval_seconds: Optional[int] = None,
        max_captures: Optional[int] = None,
    ) -> ControlResult:
        """Start a capture session now, outside any window.

        The session ends after ``max_captures`` successful captures, or on
        :meth:`manual_stop` when no limit is given.
        """
        with self._lock:
            if self._state.status == Status.CAPTURING:
                return ControlResult(False, "Already capturing", Rejection.ALREADY_CAPTURING)

            interval = interval_seconds or self.settings().capture.interval_seconds
            limit = max_captures or None
            logger.info(
                f"Manual capture session started "
                f"(interval: {interval}s, max: {limit or 'unlimited'})"
            )
            generation = self.start_session(None, interval_seconds=interval, max_captures=limit)
            self._manual_generation = generation

            # ending re-plans, which may open a scheduled session right away
            if not self._is_current(generation, Status.CAPTURING):
                return ControlResult(
                    True,
                    f"Capture session completed ({self._last_session_captures} images)",
                )
            return ControlResult(True, "Capture session started")

    def manual_session_active(self) -> bool:
        """Whether the session opened by the last ``manual_start`` is still running."""
        with self._lock:
            generation = self._manual_generation
            return generation is not None and self._is_current(generation, Status.CAPTURING)

    def manual_stop(self) -> ControlResult:
        """End the running session and build its artifact."""
        with self._lock:
            if self._state.status != Status.CAPTURING:
                return ControlResult(False, "Not currently capturing", Rejection.NOT_CAPTURING)

            logger.info("Manual stop requested")
            self.end_session()
            return ControlResult(
                True,
                f"Capture session stopped ({self._last_session_captures} images)",
            )

    def reschedule(self) -> ControlResult:
        """Drop all session timers and plan again from scratch.

        A running session is discarded without an artifact build.
        """
        with self._lock:
            if self._state.status == Status.CAPTURING and self._state.capture_count > 0:
                logger.warning(
                    f"Rescheduling discards the running session "
                    f"({self._state.capture_count} images, no artifact)"
                )
            self._next_generation()
            self._cancel_tick()
            self._cancel_timeout()
            self._update(
                status=Status.IDLE,
                capture_count=0,
                max_captures=None,
                current_session_date=None,
            )
            self._plan()
            return ControlResult(True, "Rescheduled capture window")

    # -- transitions -----------------------------------------------------

    def start_session(
        self,
        end_instant: Optional[datetime],
        interval_seconds: Optional[int] = None,
        max_captures: Optional[int] = None,
    ) -> int:
        """Enter ``capturing``: capture once now, then every interval.

        Args:
            end_instant: When the session ends; None for count-bound sessions.
            interval_seconds: Tick interval; defaults to the configured one.
            max_captures: End after this many successful captures.

        Returns:
            The session's generation; it stops being current once the
            session ends.
        """
        with self._lock:
            config = self.settings()
            interval = interval_seconds or config.capture.interval_seconds
            if not self.timers.is_running():
                self.timers.start()

            self._cancel_tick()
            self._cancel_timeout()
            generation = self._next_generation()
            self._session_event_type = config.capture.event_type
            self._session_dates = []
            self._update(
                status=Status.CAPTURING,
                capture_count=0,
                max_captures=max_captures,
                current_session_date=self._today(),
                last_error=None,
            )
            if end_instant is not None:
                logger.info(f"Starting capture session until {end_instant.isoformat()}")

            self._capture_once()
            if self._limit_reached():
                self.end_session()
                return generation

            self._tick = self.timers.call_every(
                interval, lambda: self._on_tick(generation), "capture-tick"
            )
            if end_instant is not None:
                self._timeout = self.timers.call_at(
                    end_instant, lambda: self._on_session_end(generation), "capture-session-end"
                )
            return generation

    def end_session(self) -> None:
        """Leave ``capturing``, build the artifact if anything was captured, re-plan."""
        with self._lock:
            logger.info("Ending capture session")
            self._next_generation()
            self._cancel_tick()
            self._cancel_timeout()

            session_date = self._state.current_session_date
            capture_count = self._state.capture_count
            self._last_session_captures = capture_count

            if capture_count > 0 and session_date is not None:
                self._update(status=Status.GENERATING)
                self._build_artifact(session_date, capture_count)

            self._update(
                status=Status.IDLE,
                capture_count=0,
                max_captures=None,
                current_session_date=None,
            )
            self._plan()

    def _build_artifact(self, session_date: str, capture_count: int) -> None:
        event_type = self._session_event_type or self.settings().capture.event_type
        logger.info(f"Generating artifact from {capture_count} images")
        try:
            if len(self._session_dates) > 1:
                path = self.builder.build(
                    session_date, event_type, dates=list(self._session_dates)
                )
            else:
                path = self.builder.build(session_date, event_type)
            logger.info(f"Artifact generated: {path}")
        except ArtifactBuildFailed as e:
            logger.error(f"Error generating artifact: {e}")
            self._update(last_error=str(e))
        except Exception as e:
            logger.error(f"Unexpected error generating artifact: {e}")
            self._update(last_error=str(e))

    def _capture_once(self) -> bool:
        try:
            record = self.agent.capture()
        except CameraError as e:
            logger.error(f"Error capturing image: {e}")
            self._update(last_error=str(e))
            return False

        today = self._today()
        if today not in self._session_dates:
            self._session_dates.append(today)
        count = self._state.capture_count + 1
        self._update(capture_count=count)
        logger.info(f"Capture #{count}: {record.filename}")
        return True

    def _limit_reached(self) -> bool:
        limit = self._state.max_captures
        return limit is not None and self._state.capture_count >= limit

    def _plan(self) -> None:
        """Ask the planner for today's action and apply it."""
        with self._lock:
            try:
                action = self.planner.plan_next(self._now())
            except SunTimesError as e:
                logger.error(f"Error scheduling capture window: {e}")
                self._cancel_timeout()
                self._update(status=Status.IDLE, next_capture_window=None, last_error=str(e))
                return

            if isinstance(action, Idle):
                self._cancel_timeout()
                self._update(status=Status.IDLE, next_capture_window=None)
            elif isinstance(action, StartNow):
                self._update(next_capture_window=action.window)
                self.start_session(action.end)
            elif isinstance(action, DeferToNextCycle):
                self._cancel_timeout()
                self._update(status=Status.IDLE, next_capture_window=action.window)
            elif isinstance(action, ScheduleAt):
                self._cancel_timeout()
                generation = self._next_generation()
                self._update(status=Status.WAITING, next_capture_window=action.window)
                self._timeout = self.timers.call_at(
                    action.start,
                    lambda: self._on_window_start(generation, action.end),
                    "capture-window-start",
                )

    # -- timer callbacks -------------------------------------------------

    def _on_window_start(self, generation: int, end_instant: datetime) -> None:
        with self._lock:
            if not self._is_current(generation, Status.WAITING):
                return
            self._timeout = None
            try:
                self.start_session(end_instant)
            except Exception as e:
                logger.error(f"Failed to start capture session: {e}")
                self._update(last_error=str(e))

    def _on_tick(self, generation: int) -> None:
        with self._lock:
            if not self._is_current(generation, Status.CAPTURING):
                return
            try:
                self._capture_once()
                if self._limit_reached():
                    self.end_session()
            except Exception as e:
                logger.error(f"Capture tick failed: {e}")
                self._update(last_error=str(e))

    def _on_session_end(self, generation: int) -> None:
        with self._lock:
            if not self._is_current(generation, Status.CAPTURING):
                return
            self._timeout = None
            try:
                self.end_session()
            except Exception as e:
                logger.error(f"Failed to end capture session: {e}")
                self._update(last_error=str(e))

    def _on_daily_refresh(self) -> None:
        logger.info("Daily sun times refresh triggered")
        with self._lock:
            try:
                self.sun_times.refresh(self._today())
            except SunTimesError as e:
                logger.error(f"Error in daily sun times refresh: {e}")
                self._update(last_error=str(e))
                return

            if self._state.status in (Status.CAPTURING, Status.GENERATING):
                logger.info("Session in progress, planning resumes when it ends")
                return
            try:
                self._plan()
            except Exception as e:
                logger.error(f"Error planning after refresh: {e}")
                self._update(last_error=str(e))
