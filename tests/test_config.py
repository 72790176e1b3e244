"""Tests for configuration module."""

import tempfile
from pathlib import Path

import pytest
import yaml

from suncapture.config import (
    CameraConfig,
    CaptureConfig,
    Config,
    LocationConfig,
    LoggingConfig,
    ScheduleConfig,
    SettingsStore,
    StorageConfig,
    VideoConfig,
    deep_merge,
    load_config,
    save_config,
)


class TestCameraConfig:
    """Tests for CameraConfig."""

    def test_default_values(self):
        """Test default camera configuration."""
        config = CameraConfig()
        assert config.timeout_seconds == 10.0
        assert config.max_retries == 3
        assert config.retry_delay_seconds == 2.0

    def test_invalid_retries(self):
        """Test that zero retries raises error."""
        with pytest.raises(ValueError, match="max_retries must be at least 1"):
            CameraConfig(max_retries=0)

    def test_invalid_timeout(self):
        """Test that non-positive timeout raises error."""
        with pytest.raises(ValueError, match="timeout_seconds must be positive"):
            CameraConfig(timeout_seconds=0)


class TestCaptureConfig:
    """Tests for CaptureConfig."""

    def test_default_values(self):
        """Test default capture configuration."""
        config = CaptureConfig()
        assert config.event_type == "sunrise"
        assert config.interval_seconds == 15
        assert config.offset_minutes == 30
        assert config.enabled is True

    def test_invalid_event_type(self):
        """Test that unknown event type raises error."""
        with pytest.raises(ValueError, match="event_type must be"):
            CaptureConfig(event_type="noon")

    def test_invalid_interval(self):
        """Test that non-positive interval raises error."""
        with pytest.raises(ValueError, match="interval_seconds must be positive"):
            CaptureConfig(interval_seconds=0)

    def test_zero_offset_allowed(self):
        """Test that a zero offset is accepted."""
        assert CaptureConfig(offset_minutes=0).offset_minutes == 0

    def test_negative_offset(self):
        """Test that negative offset raises error."""
        with pytest.raises(ValueError, match="offset_minutes must be non-negative"):
            CaptureConfig(offset_minutes=-5)


class TestLocationConfig:
    """Tests for LocationConfig."""

    def test_invalid_timezone(self):
        """Test that unknown timezone raises error."""
        with pytest.raises(ValueError, match="Invalid timezone"):
            LocationConfig(timezone="Invalid/Timezone")

    def test_invalid_latitude(self):
        """Test that out-of-range latitude raises error."""
        with pytest.raises(ValueError, match="latitude"):
            LocationConfig(latitude=95)

    def test_tzinfo(self):
        """Test tzinfo property."""
        assert str(LocationConfig(timezone="UTC").tzinfo) == "UTC"


class TestScheduleConfig:
    """Tests for ScheduleConfig."""

    def test_default_values(self):
        """Test default schedule configuration."""
        config = ScheduleConfig()
        assert config.refresh_time == "00:05"
        assert config.refresh_hour_minute == (0, 5)

    def test_invalid_refresh_time_format(self):
        """Test that invalid time format raises error."""
        with pytest.raises(ValueError, match="HH:MM format"):
            ScheduleConfig(refresh_time="12")

    def test_invalid_refresh_time_values(self):
        """Test that invalid time values raise error."""
        with pytest.raises(ValueError, match="HH:MM format"):
            ScheduleConfig(refresh_time="25:00")


class TestStorageConfig:
    """Tests for StorageConfig."""

    def test_string_path_conversion(self):
        """Test that string paths are converted to Path objects."""
        config = StorageConfig(data_dir="/tmp/test")
        assert isinstance(config.data_dir, Path)
        assert config.data_dir == Path("/tmp/test")


class TestVideoConfig:
    """Tests for VideoConfig."""

    def test_width_independent_of_gif(self):
        """Test the video width has its own default."""
        config = Config()
        assert config.video.width == 1280
        assert config.gif.resize_width == 800

    def test_invalid_width(self):
        """Test that a non-positive width raises ValueError."""
        with pytest.raises(ValueError, match="width must be positive"):
            VideoConfig(width=0)


class TestLoggingConfig:
    """Tests for LoggingConfig."""

    def test_level_case_insensitive(self):
        """Test that log level is case insensitive."""
        config = LoggingConfig(level="debug")
        assert config.level == "DEBUG"

    def test_invalid_level(self):
        """Test that invalid log level raises error."""
        with pytest.raises(ValueError, match="level must be one of"):
            LoggingConfig(level="TRACE")


class TestConfig:
    """Tests for main Config class."""

    def test_from_dict(self):
        """Test creating Config from dictionary."""
        data = {
            "camera": {"url": "http://cam.local/snap"},
            "capture": {"event_type": "sunset", "interval_seconds": 30},
            "location": {"timezone": "UTC"},
            "logging": {"level": "DEBUG"},
        }
        config = Config.from_dict(data)
        assert config.camera.url == "http://cam.local/snap"
        assert config.capture.event_type == "sunset"
        assert config.capture.interval_seconds == 30
        assert config.location.timezone == "UTC"
        assert config.logging.level == "DEBUG"
        assert config.gif.resize_width == 800

    def test_to_dict_round_trip(self):
        """Test that to_dict output rebuilds an equal Config."""
        config = Config()
        assert Config.from_dict(config.to_dict()) == config


class TestDeepMerge:
    """Tests for deep_merge."""

    def test_nested_merge(self):
        """Test that nested keys are merged, not replaced."""
        base = {"capture": {"event_type": "sunrise", "enabled": True}, "gif": {"resize_width": 800}}
        merged = deep_merge(base, {"capture": {"event_type": "sunset"}})
        assert merged["capture"] == {"event_type": "sunset", "enabled": True}
        assert merged["gif"] == {"resize_width": 800}

    def test_base_not_mutated(self):
        """Test that the base dictionary is left untouched."""
        base = {"capture": {"enabled": True}}
        deep_merge(base, {"capture": {"enabled": False}})
        assert base["capture"]["enabled"] is True


class TestLoadSaveConfig:
    """Tests for load_config and save_config functions."""

    def test_load_nonexistent_file(self):
        """Test loading when config file doesn't exist."""
        config = load_config(Path("/nonexistent/path.yaml"))
        assert config.capture.interval_seconds == 15

    def test_save_and_load_config(self):
        """Test saving and loading configuration."""
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "config.yaml"

            config = Config()
            config.capture.offset_minutes = 45
            config.schedule.refresh_time = "01:30"

            save_config(config, config_path)
            assert config_path.exists()

            loaded = load_config(config_path)
            assert loaded.capture.offset_minutes == 45
            assert loaded.schedule.refresh_time == "01:30"

    def test_load_empty_file(self):
        """Test loading empty config file."""
        with tempfile.NamedTemporaryFile(suffix=".yaml", delete=False) as f:
            f.write(b"")
            config_path = Path(f.name)

        try:
            config = load_config(config_path)
            assert config.capture.offset_minutes == 30
        finally:
            config_path.unlink()


class TestSettingsStore:
    """Tests for SettingsStore."""

    def test_load_reads_fresh_each_time(self, tmp_path):
        """Test that edits to the file are picked up on the next load."""
        config_path = tmp_path / "config.yaml"
        save_config(Config(), config_path)
        store = SettingsStore(config_path)
        assert store.load().capture.enabled is True

        data = yaml.safe_load(config_path.read_text())
        data["capture"]["enabled"] = False
        config_path.write_text(yaml.dump(data))

        assert store.load().capture.enabled is False

    def test_invalid_file_falls_back_to_defaults(self, tmp_path, caplog):
        """Test that an invalid settings file yields defaults."""
        config_path = tmp_path / "config.yaml"
        config_path.write_text("capture:\n  event_type: noon\n")
        store = SettingsStore(config_path)

        config = store.load()

        assert config.capture.event_type == "sunrise"
        assert "using defaults" in caplog.text

    def test_update_merges_and_saves(self, tmp_path):
        """Test that update merges into the stored file."""
        config_path = tmp_path / "config.yaml"
        store = SettingsStore(config_path)

        updated = store.update({"capture": {"event_type": "sunset"}})

        assert updated.capture.event_type == "sunset"
        assert updated.capture.interval_seconds == 15
        assert load_config(config_path).capture.event_type == "sunset"

    def test_update_rejects_invalid_values(self, tmp_path):
        """Test that invalid updates raise and leave the file alone."""
        config_path = tmp_path / "config.yaml"
        store = SettingsStore(config_path)

        with pytest.raises(ValueError):
            store.update({"capture": {"interval_seconds": 0}})
        assert not config_path.exists()
