"""Artifact builders: animated GIF and MP4 from a day's captures.

Each builder exposes ``build(date, event_type) -> Path`` and raises
:class:`ArtifactBuildFailed` on any failure.
"""

import subprocess
from pathlib import Path
from typing import Callable, Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from suncapture.config import Config
from suncapture.logger import get_logger
from suncapture.storage import CaptureStorage

logger = get_logger(__name__)


class ArtifactBuildFailed(Exception):
    """Exception raised when an artifact cannot be produced."""

    pass


def _capture_paths(
    storage: CaptureStorage, date: str, dates: Optional[list[str]] = None
) -> list[Path]:
    """Frames for ``date``, or for every date in ``dates`` in order."""
    paths = [
        record.file_path
        for day in (dates or [date])
        for record in storage.list_captures(day)
    ]
    if not paths:
        raise ArtifactBuildFailed(f"No images found for date {date}")
    return paths


class GifBuilder:
    """Renders a day's captures into a looping GIF with Pillow."""

    def __init__(self, settings: Callable[[], Config], storage: CaptureStorage):
        self.settings = settings
        self.storage = storage

    def output_path(self, date: str, event_type: str) -> Path:
        return self.storage.gifs_dir() / f"{date}-{event_type}.gif"

    def build(self, date: str, event_type: str, dates: Optional[list[str]] = None) -> Path:
        """Build ``gifs/<date>-<event_type>.gif``.

        Frames are resized to the configured width, cropped to the first
        image's aspect ratio. Unreadable frames are skipped. A session that
        crossed midnight passes all of its ``dates``; the file keeps the
        first one.
        """
        config = self.settings().gif
        images = _capture_paths(self.storage, date, dates)
        logger.info(f"Processing {len(images)} images for GIF")

        try:
            with Image.open(images[0]) as first:
                aspect = first.height / first.width
        except (OSError, UnidentifiedImageError) as e:
            raise ArtifactBuildFailed(f"Cannot read first frame {images[0]}: {e}")

        size = (config.resize_width, max(1, round(config.resize_width * aspect)))

        frames = []
        for i, image_path in enumerate(images, start=1):
            try:
                with Image.open(image_path) as img:
                    frame = ImageOps.fit(img.convert("RGB"), size)
                frames.append(frame.convert("P", palette=Image.Palette.ADAPTIVE))
            except (OSError, UnidentifiedImageError) as e:
                logger.warning(f"Error processing image {image_path}: {e}")
                continue

            if i % 10 == 0:
                logger.debug(f"Processed {i}/{len(images)} frames")

        if not frames:
            raise ArtifactBuildFailed(f"No readable images for date {date}")

        output_path = self.output_path(date, event_type)
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            frames[0].save(
                output_path,
                "GIF",
                save_all=True,
                append_images=frames[1:],
                duration=config.frame_delay_ms,
                loop=0,
            )
        except OSError as e:
            raise ArtifactBuildFailed(f"Failed to write GIF {output_path}: {e}")

        size_kb = round(output_path.stat().st_size / 1024)
        logger.info(f"GIF generated: {output_path} ({size_kb} KB)")
        return output_path


class VideoBuilder:
    """Encodes a day's captures into an H.264 MP4 with ffmpeg."""

    def __init__(self, settings: Callable[[], Config], storage: CaptureStorage):
        self.settings = settings
        self.storage = storage

    def output_path(self, date: str) -> Path:
        return self.storage.videos_dir() / f"{date}.mp4"

    def _write_file_list(self, list_file: Path, images: list[Path], fps: int) -> None:
        frame_duration = 1 / fps
        lines = []
        for image in images:
            lines.append(f"file '{image}'")
            lines.append(f"duration {frame_duration}")
        # concat demuxer drops the last duration unless the file is repeated
        lines.append(f"file '{images[-1]}'")
        list_file.write_text("\n".join(lines) + "\n", encoding="utf-8")

    def build(
        self,
        date: str,
        event_type: Optional[str] = None,
        dates: Optional[list[str]] = None,
    ) -> Path:
        """Build ``videos/<date>.mp4``; ``event_type`` is accepted for the builder contract."""
        config = self.settings()
        images = _capture_paths(self.storage, date, dates)
        logger.info(f"Processing {len(images)} images for video ({date})")

        videos_dir = self.storage.videos_dir()
        videos_dir.mkdir(parents=True, exist_ok=True)
        list_file = videos_dir / f"{date}-filelist.txt"
        output_path = self.output_path(date)

        self._write_file_list(list_file, images, config.video.fps)

        cmd = [
            config.video.ffmpeg_path,
            "-y",
            "-f", "concat",
            "-safe", "0",
            "-i", str(list_file),
            "-vf", f"scale={config.video.width}:-2",
            "-c:v", "libx264",
            "-pix_fmt", "yuv420p",
            "-preset", "medium",
            "-crf", str(config.video.crf),
            "-movflags", "+faststart",
            str(output_path),
        ]

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=1800)
        except FileNotFoundError:
            raise ArtifactBuildFailed(
                f"{config.video.ffmpeg_path} not found. Install with: sudo apt install ffmpeg"
            )
        except subprocess.TimeoutExpired:
            raise ArtifactBuildFailed("Video generation timed out after 30 minutes")
        finally:
            list_file.unlink(missing_ok=True)

        if result.returncode != 0:
            logger.error(f"ffmpeg stderr: {result.stderr}")
            raise ArtifactBuildFailed(
                f"Video generation failed: ffmpeg exited with {result.returncode}"
            )

        size_kb = round(output_path.stat().st_size / 1024)
        logger.info(f"Video generated: {output_path} ({size_kb} KB)")
        return output_path


def list_artifacts(directory: Path, suffix: str) -> list[dict]:
    """List generated artifacts, newest name first."""
    if not directory.is_dir():
        return []

    artifacts = []
    for path in sorted(directory.glob(f"*{suffix}"), reverse=True):
        stem = path.stem
        # gifs are named <date>-<event>, videos just <date>
        date = stem[:10]
        event_type = stem[11:] or None
        artifacts.append(
            {
                "filename": path.name,
                "path": str(path),
                "date": date,
                "event_type": event_type,
                "size": path.stat().st_size,
            }
        )
    return artifacts


def delete_artifact(directory: Path, filename: str) -> bool:
    """Delete ``filename`` inside ``directory``.

    Returns:
        True if a file was deleted.

    Raises:
        ValueError: If ``filename`` points outside ``directory``.
    """
    target = (directory / filename).resolve()
    if target.parent != directory.resolve():
        raise ValueError(f"Invalid artifact name: {filename}")
    if target.is_file():
        target.unlink()
        logger.info(f"Deleted artifact: {target}")
        return True
    return False
