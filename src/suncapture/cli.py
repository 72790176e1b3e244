"""Command-line interface for Sun Capture."""

import json
import time
from pathlib import Path
from typing import Optional

import click
import yaml

from suncapture import __version__
from suncapture.artifacts import ArtifactBuildFailed, delete_artifact, list_artifacts
from suncapture.camera import AcquisitionFailed
from suncapture.config import Config, SettingsStore
from suncapture.logger import setup_logger
from suncapture.main import SunCaptureSystem
from suncapture.suntimes import SunTimesError

ARTIFACT_SUFFIXES = {"gif": "gif", "video": "mp4"}


def _parse_value(raw: str):
    """Interpret a ``--set`` value as YAML so numbers and booleans keep their type."""
    return yaml.safe_load(raw)


@click.group()
@click.version_option(version=__version__, prog_name="suncapture")
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path]) -> None:
    """Sun Capture.

    Captures webcam images around sunrise or sunset and turns each
    session into an animated GIF.
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


def _system(ctx: click.Context) -> SunCaptureSystem:
    system = SunCaptureSystem(ctx.obj.get("config_path"))
    setup_logger(system.config.logging)
    return system


@cli.command()
@click.pass_context
def daemon(ctx: click.Context) -> None:
    """Run as a daemon capturing around the daily sun event."""
    system = _system(ctx)
    config = system.config

    click.echo("Starting Sun Capture daemon...")
    click.echo(f"  Event: {config.capture.event_type} ±{config.capture.offset_minutes} min")
    click.echo(f"  Interval: {config.capture.interval_seconds}s")
    click.echo(f"  Location: {config.location.name} ({config.location.timezone})")
    click.echo(f"  Data dir: {config.storage.data_dir}")
    click.echo("\nPress Ctrl+C to stop.\n")

    try:
        system.run_daemon()
    except KeyboardInterrupt:
        click.echo("\nShutting down...")
    finally:
        system.stop()


@cli.command()
@click.pass_context
def capture(ctx: click.Context) -> None:
    """Capture a single image immediately."""
    system = _system(ctx)

    if not system.storage.check_capacity():
        click.echo("Warning: low disk space", err=True)

    try:
        record = system.agent.capture()
    except AcquisitionFailed as e:
        click.echo(f"Capture failed: {e}", err=True)
        ctx.exit(1)
        return

    click.echo("Capture successful!")
    click.echo(f"  Image saved to: {record.file_path}")
    click.echo(f"  Size: {record.byte_size} bytes")


@cli.command()
@click.option("--interval", "interval_seconds", type=click.IntRange(min=1), help="Seconds between captures")
@click.option("--max", "max_captures", type=click.IntRange(min=1), help="Stop after this many captures")
@click.pass_context
def session(
    ctx: click.Context, interval_seconds: Optional[int], max_captures: Optional[int]
) -> None:
    """Run a manual capture session and build its GIF.

    Without --max the session runs until Ctrl+C.
    """
    system = _system(ctx)
    controller = system.controller

    result = controller.manual_start(interval_seconds=interval_seconds, max_captures=max_captures)
    click.echo(result.message)
    if not result.success:
        ctx.exit(1)
        return

    try:
        while controller.manual_session_active():
            time.sleep(1)
    except KeyboardInterrupt:
        click.echo(controller.manual_stop().message)
    finally:
        controller.shutdown()

    last_error = controller.get_state().last_error
    if last_error:
        click.echo(f"Last error: {last_error}", err=True)


@cli.command("camera-test")
@click.pass_context
def camera_test(ctx: click.Context) -> None:
    """Check that the camera endpoint returns an image."""
    system = _system(ctx)
    result = system.agent.test_connection()

    if result["success"]:
        click.echo(f"Camera OK: {result['url']} ({result['size']} bytes)")
    else:
        click.echo(f"Camera unreachable: {result['url']}", err=True)
        click.echo(f"  {result['error']}", err=True)
        ctx.exit(1)


@cli.command("sun-times")
@click.option("--refresh", is_flag=True, help="Force a fetch from the remote service")
@click.option("--date", "target_date", type=str, help="Date (YYYY-MM-DD), default today")
@click.pass_context
def sun_times(ctx: click.Context, refresh: bool, target_date: Optional[str]) -> None:
    """Show sunrise/sunset times."""
    system = _system(ctx)

    try:
        if refresh:
            record = system.sun_times.refresh(target_date)
        elif target_date:
            record = system.sun_times.get(target_date)
        else:
            record = system.sun_times.today()
    except SunTimesError as e:
        click.echo(f"Sun times unavailable: {e}", err=True)
        ctx.exit(1)
        return

    hours, remainder = divmod(record.day_length, 3600)
    click.echo(f"Sun times for {record.date}:")
    click.echo(f"  Sunrise:    {record.sunrise.strftime('%H:%M:%S %Z')}")
    click.echo(f"  Solar noon: {record.solar_noon.strftime('%H:%M:%S %Z')}")
    click.echo(f"  Sunset:     {record.sunset.strftime('%H:%M:%S %Z')}")
    click.echo(f"  Day length: {hours}h {remainder // 60}m")


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Display system status."""
    system = _system(ctx)
    status_info = system.get_status()
    settings = status_info["settings"]

    click.echo("=== Sun Capture Status ===\n")

    click.echo("Capture:")
    click.echo(f"  Enabled: {'Yes' if settings['enabled'] else 'No'}")
    click.echo(f"  Event: {settings['event_type']} ±{settings['offset_minutes']} min")
    click.echo(f"  Interval: {settings['interval_seconds']}s")

    sun = status_info["sun_times"]
    click.echo("\nSun times:")
    if sun:
        click.echo(f"  Sunrise: {sun['sunrise']}")
        click.echo(f"  Sunset:  {sun['sunset']}")
    else:
        click.echo("  Not available")

    click.echo("\nStorage:")
    click.echo(f"  Path: {status_info['storage']['base_path']}")
    click.echo(
        f"  Free space: {status_info['storage']['free_gb']:.2f} GB / "
        f"{status_info['storage']['total_gb']:.2f} GB"
    )
    click.echo(f"  Image count: {status_info['storage']['image_count']}")


def _build(ctx: click.Context, builder, date: str, event_type: Optional[str]) -> None:
    try:
        path = builder.build(date, event_type)
    except ArtifactBuildFailed as e:
        click.echo(f"Build failed: {e}", err=True)
        ctx.exit(1)
        return
    click.echo(f"Created: {path}")


@cli.command()
@click.argument("date")
@click.option(
    "--event",
    "event_type",
    type=click.Choice(["sunrise", "sunset"]),
    help="Event label for the file name (default from settings)",
)
@click.pass_context
def gif(ctx: click.Context, date: str, event_type: Optional[str]) -> None:
    """Build the GIF for DATE (YYYY-MM-DD)."""
    system = _system(ctx)
    _build(ctx, system.gif_builder, date, event_type or system.config.capture.event_type)


@cli.command()
@click.argument("date")
@click.pass_context
def video(ctx: click.Context, date: str) -> None:
    """Build the MP4 video for DATE (YYYY-MM-DD)."""
    system = _system(ctx)
    _build(ctx, system.video_builder, date, None)


@cli.command("list-captures")
@click.argument("date", required=False)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def list_captures(ctx: click.Context, date: Optional[str], as_json: bool) -> None:
    """List capture dates, or the images captured on DATE."""
    system = SunCaptureSystem(ctx.obj.get("config_path"))

    if date is None:
        dates = system.storage.list_capture_dates()
        if as_json:
            click.echo(json.dumps(dates, indent=2))
        elif not dates:
            click.echo("No captures found.")
        else:
            for d in dates:
                click.echo(f"  {d}")
        return

    records = system.storage.list_captures(date)
    if as_json:
        click.echo(json.dumps([r.to_dict() for r in records], indent=2))
        return

    if not records:
        click.echo(f"No images found for {date}.")
        return

    click.echo(f"Found {len(records)} image(s):\n")
    for record in records:
        click.echo(f"  {record.file_path}")


def _artifact_dir(system: SunCaptureSystem, kind: str) -> Path:
    return system.storage.gifs_dir() if kind == "gif" else system.storage.videos_dir()


def _list_artifacts(ctx: click.Context, kind: str, as_json: bool) -> None:
    system = SunCaptureSystem(ctx.obj.get("config_path"))
    artifacts = list_artifacts(_artifact_dir(system, kind), f".{ARTIFACT_SUFFIXES[kind]}")

    if as_json:
        click.echo(json.dumps(artifacts, indent=2))
        return

    if not artifacts:
        click.echo(f"No {kind}s found.")
        return

    for artifact in artifacts:
        size_kb = round(artifact["size"] / 1024)
        click.echo(f"  {artifact['filename']} ({size_kb} KB)")


@cli.command("list-gifs")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def list_gifs(ctx: click.Context, as_json: bool) -> None:
    """List generated GIFs, newest first."""
    _list_artifacts(ctx, "gif", as_json)


@cli.command("list-videos")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def list_videos(ctx: click.Context, as_json: bool) -> None:
    """List generated videos, newest first."""
    _list_artifacts(ctx, "video", as_json)


@cli.command("delete-artifact")
@click.argument("kind", type=click.Choice(sorted(ARTIFACT_SUFFIXES)))
@click.argument("filename")
@click.pass_context
def delete_artifact_cmd(ctx: click.Context, kind: str, filename: str) -> None:
    """Delete a generated GIF or video by FILENAME."""
    system = _system(ctx)

    try:
        deleted = delete_artifact(_artifact_dir(system, kind), filename)
    except ValueError as e:
        click.echo(str(e), err=True)
        ctx.exit(1)
        return

    if not deleted:
        click.echo(f"Not found: {filename}", err=True)
        ctx.exit(1)
        return
    click.echo(f"Deleted: {filename}")


@cli.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),
    default=Path("preview.jpg"),
    help="Where to write the image",
)
@click.pass_context
def preview(ctx: click.Context, output: Path) -> None:
    """Fetch one image from the camera without storing it as a capture."""
    system = _system(ctx)

    try:
        data = system.agent.get_preview()
    except AcquisitionFailed as e:
        click.echo(f"Preview failed: {e}", err=True)
        ctx.exit(1)
        return

    output.write_bytes(data)
    click.echo(f"Preview saved to: {output} ({len(data)} bytes)")


@cli.command("config")
@click.option("--show", is_flag=True, help="Show current configuration")
@click.option("--create", is_flag=True, help="Create default configuration file")
@click.option(
    "--set",
    "assignments",
    multiple=True,
    metavar="SECTION.KEY=VALUE",
    help="Update one setting (repeatable)",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),
    default=Path("config/config.yaml"),
    help="Output path for configuration file",
)
@click.pass_context
def config_cmd(
    ctx: click.Context, show: bool, create: bool, assignments: tuple, output: Path
) -> None:
    """Manage configuration."""
    config_path = ctx.obj.get("config_path")

    if create:
        if output.exists():
            if not click.confirm(f"{output} already exists. Overwrite?"):
                return

        output.parent.mkdir(parents=True, exist_ok=True)
        with open(output, "w", encoding="utf-8") as f:
            yaml.dump(Config().to_dict(), f, default_flow_style=False, allow_unicode=True)

        click.echo(f"Configuration file created: {output}")
        return

    if assignments:
        updates: dict = {}
        for assignment in assignments:
            key, sep, raw = assignment.partition("=")
            section, dot, name = key.partition(".")
            if not sep or not dot:
                raise click.BadParameter(
                    f"expected SECTION.KEY=VALUE, got '{assignment}'", param_hint="--set"
                )
            updates.setdefault(section, {})[name] = _parse_value(raw)

        store = SettingsStore(config_path or output)
        try:
            store.update(updates)
        except (TypeError, ValueError) as e:
            click.echo(f"Invalid settings: {e}", err=True)
            ctx.exit(1)
            return
        click.echo(f"Configuration updated: {store.config_path}")
        return

    config = SettingsStore(config_path).load()
    click.echo(yaml.dump(config.to_dict(), default_flow_style=False, allow_unicode=True))


if __name__ == "__main__":
    cli()
