"""Capture storage module for Sun Capture.

Layout under the data directory::

    captures/YYYY-MM-DD/HH-MM-SS.jpg
    gifs/YYYY-MM-DD-<event>.gif
    videos/YYYY-MM-DD.mp4
    config/sun-times.json
"""

import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from suncapture.config import StorageConfig
from suncapture.logger import get_logger

logger = get_logger(__name__)

IMAGE_SUFFIX = ".jpg"


class StorageError(Exception):
    """Exception raised for storage-related errors."""

    pass


@dataclass(frozen=True)
class CaptureRecord:
    """One captured image written to disk."""

    file_path: Path
    filename: str
    date: str  # YYYY-MM-DD
    time: str  # HH-MM-SS
    byte_size: int

    def to_dict(self) -> dict:
        return {
            "file_path": str(self.file_path),
            "filename": self.filename,
            "date": self.date,
            "time": self.time,
            "byte_size": self.byte_size,
        }


@dataclass
class StorageInfo:
    """Storage usage information."""

    base_path: Path
    total_bytes: int
    used_bytes: int
    free_bytes: int
    image_count: int

    @property
    def total_gb(self) -> float:
        """Total storage in GB."""
        return self.total_bytes / (1024**3)

    @property
    def free_gb(self) -> float:
        """Free storage in GB."""
        return self.free_bytes / (1024**3)

    @property
    def free_mb(self) -> float:
        """Free storage in MB."""
        return self.free_bytes / (1024**2)


class CaptureStorage:
    """Owns the on-disk layout for captures and generated artifacts."""

    def __init__(self, config: StorageConfig):
        """Initialize storage manager.

        Args:
            config: Storage configuration.
        """
        self.config = config
        self.ensure_directories()

    @property
    def base_path(self) -> Path:
        return self.config.data_dir

    def ensure_directories(self) -> None:
        """Ensure the data directory tree exists."""
        for path in (
            self.base_path / "config",
            self.captures_dir(),
            self.gifs_dir(),
            self.videos_dir(),
        ):
            try:
                path.mkdir(parents=True, exist_ok=True)
            except PermissionError:
                raise StorageError(f"Permission denied creating storage directory: {path}")
            except OSError as e:
                raise StorageError(f"Error creating storage directory: {e}")

    def captures_dir(self, date: Optional[str] = None) -> Path:
        base = self.base_path / "captures"
        return base / date if date else base

    def gifs_dir(self) -> Path:
        return self.base_path / "gifs"

    def videos_dir(self) -> Path:
        return self.base_path / "videos"

    def sun_times_file(self) -> Path:
        return self.base_path / "config" / "sun-times.json"

    def save_capture(self, data: bytes, captured_at: datetime) -> CaptureRecord:
        """Write one image into its per-date directory.

        Two captures within the same second share a filename; the later
        one overwrites the earlier.

        Args:
            data: Encoded image bytes.
            captured_at: Capture instant in the location's timezone.

        Returns:
            CaptureRecord for the written file.

        Raises:
            StorageError: If the file cannot be written.
        """
        date_str = captured_at.strftime("%Y-%m-%d")
        time_str = captured_at.strftime("%H-%M-%S")
        filename = f"{time_str}{IMAGE_SUFFIX}"
        save_dir = self.captures_dir(date_str)

        try:
            save_dir.mkdir(parents=True, exist_ok=True)
            file_path = save_dir / filename
            file_path.write_bytes(data)
        except OSError as e:
            raise StorageError(f"Failed to save capture {filename}: {e}")

        logger.debug(f"Capture saved: {file_path} ({len(data)} bytes)")
        return CaptureRecord(
            file_path=file_path,
            filename=filename,
            date=date_str,
            time=time_str,
            byte_size=len(data),
        )

    def list_captures(self, date: str) -> list[CaptureRecord]:
        """List the captures for one date in time order."""
        capture_dir = self.captures_dir(date)
        if not capture_dir.is_dir():
            return []

        records = []
        for path in sorted(capture_dir.glob(f"*{IMAGE_SUFFIX}")):
            records.append(
                CaptureRecord(
                    file_path=path,
                    filename=path.name,
                    date=date,
                    time=path.stem,
                    byte_size=path.stat().st_size,
                )
            )
        return records

    def list_capture_dates(self) -> list[str]:
        """List dates that have a capture directory, newest first."""
        captures = self.captures_dir()
        if not captures.is_dir():
            return []
        return sorted((p.name for p in captures.iterdir() if p.is_dir()), reverse=True)

    def get_storage_info(self) -> StorageInfo:
        """Get storage usage information.

        Returns:
            StorageInfo object with current storage stats.
        """
        try:
            usage = shutil.disk_usage(self.base_path)
            image_count = len(list(self.captures_dir().rglob(f"*{IMAGE_SUFFIX}")))

            return StorageInfo(
                base_path=self.base_path,
                total_bytes=usage.total,
                used_bytes=usage.used,
                free_bytes=usage.free,
                image_count=image_count,
            )

        except OSError as e:
            logger.error(f"Error getting storage info: {e}")
            return StorageInfo(
                base_path=self.base_path,
                total_bytes=0,
                used_bytes=0,
                free_bytes=0,
                image_count=0,
            )

    def check_capacity(self) -> bool:
        """Check if storage capacity is sufficient.

        Returns:
            True if free space is above threshold, False otherwise.
        """
        info = self.get_storage_info()
        threshold_bytes = self.config.min_free_space_mb * 1024 * 1024

        if info.free_bytes < threshold_bytes:
            logger.warning(
                f"Low disk space: {info.free_mb:.1f}MB free "
                f"(threshold: {self.config.min_free_space_mb}MB)"
            )
            return False

        return True
