"""Capture window planning."""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Union

from suncapture.config import Config
from suncapture.logger import get_logger
from suncapture.suntimes import CaptureWindow, SunTimesProvider, capture_window

logger = get_logger(__name__)


@dataclass(frozen=True)
class Idle:
    """Capture is disabled; no window applies."""


@dataclass(frozen=True)
class StartNow:
    """Inside the window: capture now and stop at ``window.end``."""

    window: CaptureWindow

    @property
    def end(self) -> datetime:
        return self.window.end


@dataclass(frozen=True)
class ScheduleAt:
    """Before the window: arm a start timer for ``window.start``."""

    window: CaptureWindow

    @property
    def start(self) -> datetime:
        return self.window.start

    @property
    def end(self) -> datetime:
        return self.window.end


@dataclass(frozen=True)
class DeferToNextCycle:
    """Today's window has elapsed; wait for the next daily refresh."""

    window: CaptureWindow


PlanAction = Union[Idle, StartNow, ScheduleAt, DeferToNextCycle]


class CaptureWindowPlanner:
    """Decides what to do about today's capture window."""

    def __init__(
        self,
        settings: Callable[[], Config],
        sun_times: SunTimesProvider,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings
        self.sun_times = sun_times
        self._clock = clock

    def now(self) -> datetime:
        config = self.settings()
        if self._clock is not None:
            return self._clock()
        return datetime.now(config.location.tzinfo)

    def plan_next(self, now: Optional[datetime] = None) -> PlanAction:
        """Compute today's window and pick the action for ``now``.

        Raises:
            SunDataUnavailable: If today's event instant cannot be resolved.
        """
        config = self.settings()
        if not config.capture.enabled:
            logger.info("Capture is disabled")
            return Idle()

        now = now or self.now()
        event_type = config.capture.event_type
        today = now.astimezone(config.location.tzinfo).date()
        event_instant = self.sun_times.resolve_event(today, event_type)
        window = capture_window(event_instant, config.capture.offset_minutes, event_type)

        if window.contains(now):
            logger.info("Currently within capture window, starting capture")
            return StartNow(window)

        if now > window.end:
            logger.info("Today's capture window has passed, waiting for the next refresh")
            return DeferToNextCycle(window)

        minutes = round((window.start - now).total_seconds() / 60)
        logger.info(f"Scheduling capture to start in {minutes} minutes")
        return ScheduleAt(window)
