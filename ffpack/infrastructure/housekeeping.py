import logging
from pathlib import Path

logger = logging.getLogger(__name__)

class HousekeepingService:
    """Service for removing run artifacts that should not survive a run."""

    def remove_partial_output(self, path: Path) -> bool:
        """Removes a (possibly truncated) output left by a failed job."""
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Failed to remove partial output {path}: {e}")
            return False
        logger.info(f"PARTIAL_REMOVED: {path}")
        return True

    def remove_if_empty(self, path: Path) -> bool:
        """Removes the file when it exists and holds zero bytes."""
        try:
            if path.stat().st_size != 0:
                return False
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Failed to remove empty file {path}: {e}")
            return False
        return True
