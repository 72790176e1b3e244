"""Network camera capture module."""

import time
from datetime import datetime
from typing import Callable, Optional

import requests

from suncapture.config import Config
from suncapture.logger import get_logger
from suncapture.storage import CaptureRecord, CaptureStorage, StorageError

logger = get_logger(__name__)

MAX_RETRIES = 3
RETRY_DELAY = 2.0  # seconds, fixed between attempts
REQUEST_TIMEOUT = 10.0  # seconds per attempt


class CameraError(Exception):
    """Base exception for camera-related errors."""

    pass


class AcquisitionFailed(CameraError):
    """Exception raised when an image could not be acquired after all retries."""

    pass


def fetch_image(
    url: str,
    retries: int = MAX_RETRIES,
    timeout: float = REQUEST_TIMEOUT,
    retry_delay: float = RETRY_DELAY,
) -> bytes:
    """Fetch image bytes from the camera endpoint with retry.

    Args:
        url: Camera snapshot URL.
        retries: Total number of attempts.
        timeout: Per-attempt network timeout in seconds.
        retry_delay: Fixed delay between attempts in seconds.

    Returns:
        Raw image bytes.

    Raises:
        AcquisitionFailed: If every attempt fails.
    """
    last_error: Optional[Exception] = None

    for attempt in range(1, retries + 1):
        try:
            response = requests.get(url, timeout=timeout)
            response.raise_for_status()
            if not response.content:
                raise CameraError("camera returned an empty body")
            return response.content

        except (requests.exceptions.RequestException, CameraError) as e:
            last_error = e
            logger.warning(f"Camera fetch attempt {attempt}/{retries} failed: {e}")

            if attempt < retries:
                time.sleep(retry_delay)

    raise AcquisitionFailed(
        f"Failed to fetch image after {retries} attempts: {last_error}"
    )


class CaptureAgent:
    """Acquires one image per call and stores it under its capture date."""

    def __init__(
        self,
        settings: Callable[[], Config],
        storage: CaptureStorage,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the capture agent.

        Args:
            settings: Returns the current settings snapshot.
            storage: Storage used to persist captures.
            clock: Returns the current aware datetime. Defaults to now in
                the configured location timezone.
        """
        self.settings = settings
        self.storage = storage
        self._clock = clock

    def _now(self, config: Config) -> datetime:
        if self._clock is not None:
            return self._clock()
        return datetime.now(config.location.tzinfo)

    def capture(self) -> CaptureRecord:
        """Acquire one image and save it.

        Returns:
            CaptureRecord for the saved image.

        Raises:
            AcquisitionFailed: If the image could not be fetched or written.
        """
        config = self.settings()
        captured_at = self._now(config).astimezone(config.location.tzinfo)

        data = fetch_image(
            config.camera.url,
            retries=config.camera.max_retries,
            timeout=config.camera.timeout_seconds,
            retry_delay=config.camera.retry_delay_seconds,
        )

        try:
            record = self.storage.save_capture(data, captured_at)
        except StorageError as e:
            raise AcquisitionFailed(str(e)) from e

        logger.info(f"Captured image: {record.file_path}")
        return record

    def test_connection(self) -> dict:
        """Try a single fetch and report the outcome without raising."""
        config = self.settings()
        try:
            data = fetch_image(
                config.camera.url, retries=1, timeout=config.camera.timeout_seconds
            )
            return {"success": True, "size": len(data), "url": config.camera.url}
        except AcquisitionFailed as e:
            return {"success": False, "error": str(e), "url": config.camera.url}

    def get_preview(self) -> bytes:
        """Fetch a single image without storing it.

        Raises:
            AcquisitionFailed: If the fetch fails.
        """
        config = self.settings()
        return fetch_image(
            config.camera.url, retries=1, timeout=config.camera.timeout_seconds
        )
