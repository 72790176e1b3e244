"""Sunrise/sunset resolution with a single-day on-disk cache."""

import json
from dataclasses import dataclass
from datetime import date as date_cls
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional, Union

import requests

from suncapture.config import EVENT_TYPES, Config
from suncapture.logger import get_logger

logger = get_logger(__name__)


class SunTimesError(Exception):
    """Base exception for sun event errors."""

    pass


class SunDataUnavailable(SunTimesError):
    """No fresh or same-day cached sun event data could be obtained."""

    pass


@dataclass(frozen=True)
class SunEventRecord:
    """Sun event instants for one calendar date."""

    date: str  # YYYY-MM-DD
    sunrise: datetime
    sunset: datetime
    solar_noon: datetime
    day_length: int  # seconds
    fetched_at: datetime

    def event(self, event_type: str) -> datetime:
        """Return the instant for ``sunrise`` or ``sunset``."""
        if event_type == "sunrise":
            return self.sunrise
        if event_type == "sunset":
            return self.sunset
        raise ValueError(f"Unknown event type: {event_type}")

    def to_dict(self) -> dict:
        return {
            "date": self.date,
            "sunrise": self.sunrise.isoformat(),
            "sunset": self.sunset.isoformat(),
            "solar_noon": self.solar_noon.isoformat(),
            "day_length": self.day_length,
            "fetched_at": self.fetched_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SunEventRecord":
        return cls(
            date=data["date"],
            sunrise=datetime.fromisoformat(data["sunrise"]),
            sunset=datetime.fromisoformat(data["sunset"]),
            solar_noon=datetime.fromisoformat(data["solar_noon"]),
            day_length=int(data["day_length"]),
            fetched_at=datetime.fromisoformat(data["fetched_at"]),
        )


@dataclass(frozen=True)
class CaptureWindow:
    """Capture interval centred on a sun event."""

    event_type: str
    event_instant: datetime
    start: datetime
    end: datetime

    def contains(self, instant: datetime) -> bool:
        """Both boundaries count as inside the window."""
        return self.start <= instant <= self.end

    def to_dict(self) -> dict:
        return {
            "event_type": self.event_type,
            "event_instant": self.event_instant.isoformat(),
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
        }


def capture_window(
    event_instant: datetime, offset_minutes: float, event_type: str
) -> CaptureWindow:
    """Build the window ``[event - offset, event + offset]``.

    Raises:
        ValueError: If ``offset_minutes`` is negative.
    """
    if offset_minutes < 0:
        raise ValueError("offset_minutes must be non-negative")
    offset = timedelta(minutes=offset_minutes)
    return CaptureWindow(
        event_type=event_type,
        event_instant=event_instant,
        start=event_instant - offset,
        end=event_instant + offset,
    )


DateLike = Union[str, date_cls]


def _date_str(value: DateLike) -> str:
    return value if isinstance(value, str) else value.isoformat()


class SunTimesProvider:
    """Resolves today's sun events from the remote service or the cache.

    The cache file holds exactly one record; every successful fetch
    overwrites it.
    """

    def __init__(
        self,
        settings: Callable[[], Config],
        cache_path: Path,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings
        self.cache_path = Path(cache_path)
        self._clock = clock

    def _today(self, config: Config) -> str:
        now = self._clock() if self._clock else datetime.now(config.location.tzinfo)
        return now.astimezone(config.location.tzinfo).date().isoformat()

    def load_cache(self) -> Optional[SunEventRecord]:
        """Read the cached record, or None if absent or unreadable."""
        if not self.cache_path.exists():
            return None
        try:
            with open(self.cache_path, "r", encoding="utf-8") as f:
                return SunEventRecord.from_dict(json.load(f))
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Error loading sun times cache: {e}")
            return None

    def save_cache(self, record: SunEventRecord) -> None:
        """Overwrite the cache with ``record``."""
        try:
            self.cache_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.cache_path, "w", encoding="utf-8") as f:
                json.dump(record.to_dict(), f, indent=2)
        except OSError as e:
            logger.error(f"Error saving sun times cache: {e}")

    def _fetch_remote(self, config: Config, target_date: str) -> SunEventRecord:
        location = config.location
        params = {
            "lat": location.latitude,
            "lng": location.longitude,
            "date": target_date,
            "formatted": 0,
            "tzid": location.timezone,
        }

        try:
            response = requests.get(
                config.sun_api.url, params=params, timeout=config.sun_api.timeout_seconds
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise SunDataUnavailable(f"Sun times request failed: {e}") from e

        if payload.get("status") != "OK":
            raise SunDataUnavailable(f"API returned status: {payload.get('status')}")

        tz = location.tzinfo
        try:
            results = payload["results"]
            return SunEventRecord(
                date=target_date,
                sunrise=datetime.fromisoformat(results["sunrise"]).astimezone(tz),
                sunset=datetime.fromisoformat(results["sunset"]).astimezone(tz),
                solar_noon=datetime.fromisoformat(results["solar_noon"]).astimezone(tz),
                day_length=int(results["day_length"]),
                fetched_at=datetime.now(tz),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise SunDataUnavailable(f"Malformed sun times response: {e}") from e

    def refresh(self, target_date: Optional[DateLike] = None) -> SunEventRecord:
        """Fetch sun events from the remote service and update the cache.

        On failure the cached record is returned only if it belongs to
        ``target_date``.

        Raises:
            SunDataUnavailable: If the fetch fails and no same-day cache exists.
        """
        config = self.settings()
        target = _date_str(target_date) if target_date else self._today(config)

        try:
            record = self._fetch_remote(config, target)
        except SunDataUnavailable as e:
            logger.error(f"Error fetching sun times: {e}")
            cached = self.load_cache()
            if cached is not None and cached.date == target:
                logger.info("Using cached sun times")
                return cached
            raise

        self.save_cache(record)
        logger.info(
            f"Fetched sun times for {target}: "
            f"sunrise={record.sunrise.isoformat()}, sunset={record.sunset.isoformat()}"
        )
        return record

    def get(self, target_date: DateLike) -> SunEventRecord:
        """Return the record for ``target_date``, fetching on a cache miss."""
        target = _date_str(target_date)
        cached = self.load_cache()
        if cached is not None and cached.date == target:
            return cached
        return self.refresh(target)

    def today(self) -> SunEventRecord:
        """Return today's record from the cache or the remote service."""
        return self.get(self._today(self.settings()))

    def resolve_event(
        self, target_date: Optional[DateLike] = None, event_type: Optional[str] = None
    ) -> datetime:
        """Return the instant of ``event_type`` on ``target_date``.

        Both default to today and the configured event type.
        """
        config = self.settings()
        event_type = event_type or config.capture.event_type
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event_type}")
        target = _date_str(target_date) if target_date else self._today(config)
        return self.get(target).event(event_type)
