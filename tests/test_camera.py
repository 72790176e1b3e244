"""Tests for camera module."""

from datetime import datetime
from unittest.mock import MagicMock, call, patch
from zoneinfo import ZoneInfo

import pytest
import requests

from suncapture.camera import AcquisitionFailed, CaptureAgent, fetch_image
from suncapture.config import Config, StorageConfig
from suncapture.storage import CaptureStorage, StorageError

TZ = ZoneInfo("Europe/Madrid")
URL = "http://192.168.1.72/capture"


def _response(content=b"\xff\xd8image", status=200):
    response = MagicMock()
    response.content = content
    response.status_code = status
    if status >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status}")
    return response


@pytest.fixture
def config(tmp_path):
    """Create configuration with temp storage."""
    config = Config()
    config.storage = StorageConfig(data_dir=tmp_path / "data")
    return config


@pytest.fixture
def storage(config):
    return CaptureStorage(config.storage)


@pytest.fixture
def agent(config, storage):
    clock = lambda: datetime(2026, 6, 21, 6, 40, 15, tzinfo=TZ)
    return CaptureAgent(lambda: config, storage, clock=clock)


class TestFetchImage:
    """Tests for fetch_image retry policy."""

    def test_success_first_attempt(self):
        """Test a successful fetch makes one request."""
        with patch("suncapture.camera.requests.get", return_value=_response()) as mock_get:
            with patch("time.sleep") as mock_sleep:
                data = fetch_image(URL)

        assert data == b"\xff\xd8image"
        mock_get.assert_called_once_with(URL, timeout=10.0)
        mock_sleep.assert_not_called()

    def test_two_failures_then_success(self):
        """Test retry with fixed delay after two failures."""
        side_effect = [
            requests.exceptions.ConnectionError("refused"),
            requests.exceptions.Timeout("timed out"),
            _response(),
        ]
        with patch("suncapture.camera.requests.get", side_effect=side_effect) as mock_get:
            with patch("time.sleep") as mock_sleep:
                data = fetch_image(URL)

        assert data == b"\xff\xd8image"
        assert mock_get.call_count == 3
        assert mock_sleep.call_args_list == [call(2.0), call(2.0)]

    def test_all_attempts_fail(self):
        """Test that three failures raise AcquisitionFailed without a fourth try."""
        with patch(
            "suncapture.camera.requests.get",
            side_effect=requests.exceptions.ConnectionError("refused"),
        ) as mock_get:
            with patch("time.sleep") as mock_sleep:
                with pytest.raises(AcquisitionFailed, match="after 3 attempts"):
                    fetch_image(URL)

        assert mock_get.call_count == 3
        assert mock_sleep.call_count == 2

    def test_http_error_is_retried(self):
        """Test that HTTP error statuses count as failed attempts."""
        side_effect = [_response(status=503), _response()]
        with patch("suncapture.camera.requests.get", side_effect=side_effect) as mock_get:
            with patch("time.sleep"):
                fetch_image(URL)
        assert mock_get.call_count == 2

    def test_empty_body_is_failure(self):
        """Test that an empty body is treated as a failed attempt."""
        with patch("suncapture.camera.requests.get", return_value=_response(content=b"")):
            with patch("time.sleep"):
                with pytest.raises(AcquisitionFailed, match="empty body"):
                    fetch_image(URL, retries=2)


class TestCaptureAgent:
    """Tests for CaptureAgent."""

    def test_capture_saves_record(self, agent, storage):
        """Test that capture writes the file under its date."""
        with patch("suncapture.camera.requests.get", return_value=_response(b"abc")):
            record = agent.capture()

        assert record.date == "2026-06-21"
        assert record.filename == "06-40-15.jpg"
        assert record.byte_size == 3
        assert record.file_path.parent == storage.captures_dir("2026-06-21")
        assert record.file_path.read_bytes() == b"abc"

    def test_capture_uses_location_timezone(self, config, storage):
        """Test that a UTC clock is converted to the location timezone."""
        utc_clock = lambda: datetime(2026, 6, 21, 23, 30, 0, tzinfo=ZoneInfo("UTC"))
        agent = CaptureAgent(lambda: config, storage, clock=utc_clock)

        with patch("suncapture.camera.requests.get", return_value=_response()):
            record = agent.capture()

        # Madrid is UTC+2 in June
        assert record.date == "2026-06-22"
        assert record.time == "01-30-00"

    def test_capture_failure(self, agent):
        """Test that exhausted retries propagate as AcquisitionFailed."""
        with patch(
            "suncapture.camera.requests.get",
            side_effect=requests.exceptions.ConnectionError("down"),
        ):
            with patch("time.sleep"):
                with pytest.raises(AcquisitionFailed):
                    agent.capture()

    def test_capture_storage_error(self, agent, storage):
        """Test that write failures surface as AcquisitionFailed."""
        with patch("suncapture.camera.requests.get", return_value=_response()):
            with patch.object(storage, "save_capture", side_effect=StorageError("disk full")):
                with pytest.raises(AcquisitionFailed, match="disk full"):
                    agent.capture()

    def test_test_connection_success(self, agent):
        """Test connection check reports size."""
        with patch("suncapture.camera.requests.get", return_value=_response(b"1234")):
            result = agent.test_connection()
        assert result == {"success": True, "size": 4, "url": URL}

    def test_test_connection_failure(self, agent):
        """Test connection check makes a single attempt and does not raise."""
        with patch(
            "suncapture.camera.requests.get",
            side_effect=requests.exceptions.ConnectionError("down"),
        ) as mock_get:
            result = agent.test_connection()

        assert result["success"] is False
        assert "down" in result["error"]
        mock_get.assert_called_once()

    def test_get_preview(self, agent, storage):
        """Test preview returns bytes without storing them."""
        with patch("suncapture.camera.requests.get", return_value=_response(b"preview")):
            assert agent.get_preview() == b"preview"
        assert storage.list_capture_dates() == []
