"""Main module for Sun Capture.

This module wires all components together and runs the capture daemon.
"""

import signal
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

from suncapture.artifacts import GifBuilder, VideoBuilder
from suncapture.camera import CaptureAgent
from suncapture.config import Config, SettingsStore, find_config_path
from suncapture.logger import get_logger, setup_logger
from suncapture.planner import CaptureWindowPlanner
from suncapture.scheduler import SessionController
from suncapture.storage import CaptureStorage
from suncapture.suntimes import SunTimesError, SunTimesProvider
from suncapture.timers import Timers

logger = get_logger(__name__)


class SunCaptureSystem:
    """Main system class that integrates all components."""

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize the system.

        Args:
            config_path: Settings file; defaults to the first existing default path.
        """
        self.settings = SettingsStore(config_path or find_config_path())
        config = self.settings.load()

        self.storage = CaptureStorage(config.storage)
        self.agent = CaptureAgent(self.settings, self.storage)
        self.sun_times = SunTimesProvider(self.settings, self.storage.sun_times_file())
        self.planner = CaptureWindowPlanner(self.settings, self.sun_times)
        self.gif_builder = GifBuilder(self.settings, self.storage)
        self.video_builder = VideoBuilder(self.settings, self.storage)
        self.timers = Timers(config.location.timezone)
        self.controller = SessionController(
            settings=self.settings,
            planner=self.planner,
            sun_times=self.sun_times,
            agent=self.agent,
            builder=self.gif_builder,
            timers=self.timers,
        )
        self._running = False

    @property
    def config(self) -> Config:
        return self.settings.load()

    def run_daemon(self) -> None:
        """Run the system as a daemon with scheduled captures."""
        logger.info("Starting Sun Capture daemon")

        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, shutting down...")
            self.stop()
            sys.exit(0)

        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)

        self.controller.initialize()
        self._running = True

        logger.info("Daemon started, waiting for capture windows...")

        try:
            while self._running:
                time.sleep(1)
        except KeyboardInterrupt:
            logger.info("Interrupted by user")
        finally:
            self.stop()

    def stop(self) -> None:
        """Stop the daemon gracefully."""
        if not self._running:
            return
        self._running = False
        self.controller.shutdown()
        logger.info("Daemon stopped")

    def get_status(self) -> dict:
        """Get current system status.

        Returns:
            Dictionary with system status information.
        """
        config = self.config
        storage_info = self.storage.get_storage_info()

        try:
            sun_times = self.sun_times.today().to_dict()
        except SunTimesError as e:
            logger.debug(f"Sun times not available: {e}")
            sun_times = None

        return {
            "daemon": {"running": self._running},
            "state": self.controller.get_state().to_dict(),
            "settings": {
                "event_type": config.capture.event_type,
                "interval_seconds": config.capture.interval_seconds,
                "offset_minutes": config.capture.offset_minutes,
                "enabled": config.capture.enabled,
            },
            "sun_times": sun_times,
            "storage": {
                "base_path": str(storage_info.base_path),
                "free_gb": round(storage_info.free_gb, 2),
                "total_gb": round(storage_info.total_gb, 2),
                "image_count": storage_info.image_count,
            },
            "server_time": datetime.now(config.location.tzinfo).isoformat(),
        }


def run_daemon(config_path: Optional[Path] = None) -> None:
    """Run the daemon.

    Args:
        config_path: Path to configuration file.
    """
    system = SunCaptureSystem(config_path)
    setup_logger(system.config.logging)
    system.run_daemon()
