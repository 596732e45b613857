import logging
from pathlib import Path
from typing import Optional

def setup_logging(debug: bool = False, log_path: Optional[Path] = None) -> logging.Logger:
    """
    Setup diagnostic logging for ffpack.

    This is the application log, not the ffmpeg output log collected by the
    workers. Returns configured logger instance.

    Args:
        debug: If True, enable DEBUG level logging
        log_path: Optional file to log to (stderr when omitted)
    """
    level = logging.DEBUG if debug else logging.INFO

    if log_path:
        log_file = Path(log_path)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(log_file)
    else:
        handler = logging.StreamHandler()
        # Keep the terminal quiet unless asked; the reporter prints progress
        if not debug:
            handler.setLevel(logging.WARNING)

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[handler],
        force=True  # Override any existing configuration
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: {log_path or 'stderr'} (debug={'ON' if debug else 'OFF'})")

    return logger
