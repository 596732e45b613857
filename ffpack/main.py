import typer
from pathlib import Path
from typing import Optional

from ffpack.config.loader import load_config
from ffpack.config.models import AppConfig
from ffpack.config.profiles import resolve_profile
from ffpack.infrastructure.logging import setup_logging
from ffpack.infrastructure.event_bus import EventBus
from ffpack.infrastructure.file_scanner import FileScanner
from ffpack.infrastructure.ffmpeg import FFmpegAdapter
from ffpack.infrastructure.housekeeping import HousekeepingService
from ffpack.infrastructure.signals import install_cancel_handler
from ffpack.pipeline.admission import unique_path
from ffpack.pipeline.aggregator import LogSink
from ffpack.pipeline.coordinator import Coordinator, clamp_threads
from ffpack.ui.reporter import ConsoleReporter

app = typer.Typer(help="ffpack - batch transcode a folder with a pool of ffmpeg workers")


def _fail(message: str) -> typer.Exit:
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    return typer.Exit(code=1)


@app.command()
def pack(
    folder: Path = typer.Argument(..., help="Folder to work on (walked recursively)"),
    args: Optional[str] = typer.Argument(
        None,
        help="Custom encoder arguments placed between the input and the output; pass after -- (e.g. -- \"-c:v libaom-av1 -crf 35\")"
    ),
    threads: Optional[int] = typer.Option(None, "--jobs", "-j", help="Number of parallel ffmpeg workers"),
    dry: Optional[int] = typer.Option(None, "--dry", "-d", help="Dry run: print commands and sleep this many ms per job"),
    log: Optional[str] = typer.Option(None, "--log", "-l", help="File collecting ffmpeg output (suffixed if it exists)"),
    video: bool = typer.Option(False, "--video", "-v", help="Transcode videos to WebM instead of images to WebP"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    savings: Optional[bool] = typer.Option(None, "--savings/--no-savings", help="Track input/output byte totals"),
    cleanup_failed_output: Optional[str] = typer.Option(
        None,
        "--cleanup-failed-output",
        help="Remove partial outputs of failed jobs (auto, always, never)"
    ),
    ffmpeg_binary: Optional[str] = typer.Option(None, "--ffmpeg", help="ffmpeg executable to run"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
    debug_log: Optional[Path] = typer.Option(None, "--debug-log", help="Write diagnostic log to this file"),
):
    """Transcode every matching file under FOLDER, deleting sources that succeed."""
    try:
        config = load_config(config_path) if config_path is not None else AppConfig()
    except Exception as e:
        raise _fail(f"Cannot load config: {e}")

    # Apply CLI overrides
    general = config.general
    if threads is not None: general.threads = threads
    if dry is not None: general.dry_run_ms = dry
    if log is not None: general.log_path = log
    if video: general.mode = "video"
    if savings is not None: general.track_savings = savings
    if ffmpeg_binary is not None: general.ffmpeg_binary = ffmpeg_binary
    if debug: general.debug = True
    if debug_log is not None: general.debug_log = str(debug_log)
    if cleanup_failed_output is not None:
        if cleanup_failed_output not in ("auto", "always", "never"):
            raise _fail(f"Invalid --cleanup-failed-output: {cleanup_failed_output} (use auto, always, never)")
        general.cleanup_failed_output = cleanup_failed_output
    if general.dry_run_ms < 0:
        raise _fail("--dry must be >= 0")

    if not folder.is_dir():
        raise _fail(f"Folder does not exist: {folder}")

    logger = setup_logging(
        debug=general.debug,
        log_path=Path(general.debug_log) if general.debug_log else None,
    )

    try:
        profile = resolve_profile(config, custom_args=args)
    except ValueError as e:
        raise _fail(str(e))

    worker_count = clamp_threads(general.threads)
    log_path = unique_path(Path(general.log_path), lambda p: p.exists())
    logger.info(
        f"Config: threads={worker_count} (requested {general.threads}), profile={profile.name}, "
        f"dry_run_ms={general.dry_run_ms}, log={log_path}, savings={general.track_savings}, "
        f"cleanup_failed_output={general.cleanup_failed_output}"
    )

    try:
        log_sink = LogSink.create(log_path)
    except OSError as e:
        raise _fail(f"Cannot create log file {log_path}: {e}")

    housekeeper = HousekeepingService()
    bus = EventBus()
    ConsoleReporter(bus, verbose=general.debug)
    coordinator = Coordinator(
        config=config,
        event_bus=bus,
        file_scanner=FileScanner(),
        transcoder=FFmpegAdapter(profile, binary=general.ffmpeg_binary),
        profile=profile,
        log_sink=log_sink,
        housekeeping=housekeeper,
        threads=worker_count,
    )

    try:
        restore_signals = install_cancel_handler(coordinator.cancel)
    except (ValueError, OSError) as e:
        log_sink.close()
        housekeeper.remove_if_empty(log_path)
        raise _fail(f"Cannot install cancellation handler: {e}")

    try:
        coordinator.run(folder)
    except Exception as e:
        logger.exception("Fatal error during run")
        typer.secho(f"Fatal Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    finally:
        restore_signals()


if __name__ == "__main__":
    app()
