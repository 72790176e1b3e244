"""Configuration management module for Sun Capture."""

import copy
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

EVENT_TYPES = ("sunrise", "sunset")

logger = logging.getLogger(__name__)


def _parse_hhmm(value: str) -> tuple[int, int]:
    """Parse an HH:MM (24-hour) string into (hour, minute)."""
    try:
        parts = value.split(":")
        if len(parts) != 2:
            raise ValueError()
        hour, minute = int(parts[0]), int(parts[1])
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            raise ValueError()
    except (ValueError, AttributeError):
        raise ValueError(f"time must be in HH:MM format (24-hour), got '{value}'")
    return hour, minute


@dataclass
class CameraConfig:
    """Network camera settings."""

    url: str = "http://192.168.1.72/capture"
    timeout_seconds: float = 10.0
    max_retries: int = 3
    retry_delay_seconds: float = 2.0

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if not self.url:
            raise ValueError("url must not be empty")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if self.retry_delay_seconds < 0:
            raise ValueError("retry_delay_seconds must be non-negative")


@dataclass
class CaptureConfig:
    """Capture window settings."""

    event_type: str = "sunrise"
    interval_seconds: int = 15  # seconds between captures
    offset_minutes: int = 30  # minutes before/after event
    enabled: bool = True

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.event_type not in EVENT_TYPES:
            raise ValueError("event_type must be 'sunrise' or 'sunset'")
        if self.interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if self.offset_minutes < 0:
            raise ValueError("offset_minutes must be non-negative")


@dataclass
class LocationConfig:
    """Observer location."""

    latitude: float = 39.4699
    longitude: float = -0.3763
    timezone: str = "Europe/Madrid"
    name: str = "Valencia, Spain"

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if not -90 <= self.latitude <= 90:
            raise ValueError("latitude must be between -90 and 90")
        if not -180 <= self.longitude <= 180:
            raise ValueError("longitude must be between -180 and 180")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Invalid timezone: {self.timezone}")

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


@dataclass
class ScheduleConfig:
    """Daily refresh settings."""

    refresh_time: str = "00:05"  # HH:MM format

    def __post_init__(self) -> None:
        """Validate configuration values."""
        _parse_hhmm(self.refresh_time)

    @property
    def refresh_hour_minute(self) -> tuple[int, int]:
        return _parse_hhmm(self.refresh_time)


@dataclass
class SunApiConfig:
    """Sunrise/sunset time service settings."""

    url: str = "https://api.sunrise-sunset.org/json"
    timeout_seconds: float = 10.0

    def __post_init__(self) -> None:
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")


@dataclass
class StorageConfig:
    """Storage configuration settings."""

    data_dir: Path = field(default_factory=lambda: Path.home() / ".suncapture" / "data")
    min_free_space_mb: int = 512

    def __post_init__(self) -> None:
        """Convert string path to Path object if necessary."""
        if isinstance(self.data_dir, str):
            self.data_dir = Path(self.data_dir).expanduser()
        if self.min_free_space_mb < 0:
            raise ValueError("min_free_space_mb must be non-negative")


@dataclass
class GifConfig:
    """GIF rendering settings."""

    frame_delay_ms: int = 100  # delay between frames
    resize_width: int = 800  # aspect ratio is kept

    def __post_init__(self) -> None:
        if self.frame_delay_ms <= 0:
            raise ValueError("frame_delay_ms must be positive")
        if self.resize_width <= 0:
            raise ValueError("resize_width must be positive")


@dataclass
class VideoConfig:
    """Video encoding settings."""

    fps: int = 10
    crf: int = 23
    width: int = 1280  # height follows the aspect ratio
    ffmpeg_path: str = "ffmpeg"

    def __post_init__(self) -> None:
        if self.fps <= 0:
            raise ValueError("fps must be positive")
        if self.width <= 0:
            raise ValueError("width must be positive")
        if not 0 <= self.crf <= 51:
            raise ValueError("crf must be between 0 and 51")


@dataclass
class LoggingConfig:
    """Logging configuration settings."""

    level: str = "INFO"
    file: Optional[Path] = None
    max_size_mb: int = 10
    backup_count: int = 5

    def __post_init__(self) -> None:
        """Validate and convert configuration values."""
        if isinstance(self.file, str):
            self.file = Path(self.file)
        valid_levels = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
        if self.level.upper() not in valid_levels:
            raise ValueError(f"level must be one of {valid_levels}")
        self.level = self.level.upper()


@dataclass
class Config:
    """Main configuration container."""

    camera: CameraConfig = field(default_factory=CameraConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    location: LocationConfig = field(default_factory=LocationConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    sun_api: SunApiConfig = field(default_factory=SunApiConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    gif: GifConfig = field(default_factory=GifConfig)
    video: VideoConfig = field(default_factory=VideoConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict) -> "Config":
        """Create Config from dictionary."""
        return cls(
            camera=CameraConfig(**data.get("camera", {})),
            capture=CaptureConfig(**data.get("capture", {})),
            location=LocationConfig(**data.get("location", {})),
            schedule=ScheduleConfig(**data.get("schedule", {})),
            sun_api=SunApiConfig(**data.get("sun_api", {})),
            storage=StorageConfig(**data.get("storage", {})),
            gif=GifConfig(**data.get("gif", {})),
            video=VideoConfig(**data.get("video", {})),
            logging=LoggingConfig(**data.get("logging", {})),
        )

    def to_dict(self) -> dict:
        """Convert Config to dictionary."""
        return {
            "camera": {
                "url": self.camera.url,
                "timeout_seconds": self.camera.timeout_seconds,
                "max_retries": self.camera.max_retries,
                "retry_delay_seconds": self.camera.retry_delay_seconds,
            },
            "capture": {
                "event_type": self.capture.event_type,
                "interval_seconds": self.capture.interval_seconds,
                "offset_minutes": self.capture.offset_minutes,
                "enabled": self.capture.enabled,
            },
            "location": {
                "latitude": self.location.latitude,
                "longitude": self.location.longitude,
                "timezone": self.location.timezone,
                "name": self.location.name,
            },
            "schedule": {
                "refresh_time": self.schedule.refresh_time,
            },
            "sun_api": {
                "url": self.sun_api.url,
                "timeout_seconds": self.sun_api.timeout_seconds,
            },
            "storage": {
                "data_dir": str(self.storage.data_dir),
                "min_free_space_mb": self.storage.min_free_space_mb,
            },
            "gif": {
                "frame_delay_ms": self.gif.frame_delay_ms,
                "resize_width": self.gif.resize_width,
            },
            "video": {
                "fps": self.video.fps,
                "crf": self.video.crf,
                "width": self.video.width,
                "ffmpeg_path": self.video.ffmpeg_path,
            },
            "logging": {
                "level": self.logging.level,
                "file": str(self.logging.file) if self.logging.file else None,
                "max_size_mb": self.logging.max_size_mb,
                "backup_count": self.logging.backup_count,
            },
        }


def deep_merge(base: dict, updates: dict) -> dict:
    """Recursively merge ``updates`` into a copy of ``base``.

    Nested dictionaries are merged key by key; any other value replaces
    the one in ``base``.
    """
    result = copy.deepcopy(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def find_config_path() -> Optional[Path]:
    """Return the first existing default configuration file, if any."""
    default_paths = [
        Path("config/config.yaml"),
        Path("/etc/suncapture/config.yaml"),
        Path.home() / ".config" / "suncapture" / "config.yaml",
    ]
    for path in default_paths:
        if path.exists():
            return path
    return None


def load_config(config_path: Optional[Path] = None) -> Config:
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration file. If None, searches the default paths.

    Returns:
        Config object with loaded or default values.
    """
    if config_path is None:
        config_path = find_config_path()

    if config_path is None or not config_path.exists():
        return Config()

    with open(config_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        return Config()

    return Config.from_dict(data)


def save_config(config: Config, config_path: Path) -> None:
    """Save configuration to YAML file.

    Args:
        config: Config object to save.
        config_path: Path to save configuration file.
    """
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, "w", encoding="utf-8") as f:
        yaml.dump(config.to_dict(), f, default_flow_style=False, allow_unicode=True)


class SettingsStore:
    """Settings snapshot provider backed by a YAML file.

    Every call to :meth:`load` re-reads the file so that each scheduling
    decision sees the latest settings.
    """

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = config_path

    def load(self) -> Config:
        """Read the current settings, falling back to defaults on error."""
        try:
            return load_config(self.config_path)
        except (OSError, yaml.YAMLError, TypeError, ValueError) as e:
            logger.error(f"Error loading settings, using defaults: {e}")
            return Config()

    def __call__(self) -> Config:
        return self.load()

    def update(self, updates: dict) -> Config:
        """Merge ``updates`` into the stored settings and save them.

        Raises:
            ValueError: If the merged settings do not validate.
        """
        merged = deep_merge(self.load().to_dict(), updates)
        config = Config.from_dict(merged)
        if self.config_path is not None:
            save_config(config, self.config_path)
        return config
