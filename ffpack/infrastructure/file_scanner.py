import logging
import os
from pathlib import Path
from typing import Generator

logger = logging.getLogger(__name__)

class FileScanner:
    """Recursively walks a directory and lazily yields regular files.

    Extension filtering belongs to job admission; the scanner only skips what
    it cannot read.
    """

    def scan(self, root_dir: Path) -> Generator[Path, None, None]:
        """Yields file paths under root_dir in a deterministic order."""
        def _on_error(err: OSError):
            # Unreadable directories are skipped, traversal continues
            logger.warning(f"SCAN_SKIP: {err.filename}: {err.strerror}")

        for root, dirs, files in os.walk(str(root_dir), onerror=_on_error):
            root_path = Path(root)

            # Ensure deterministic traversal: sort directories and files
            dirs.sort()
            files.sort()

            for file_name in files:
                file_path = root_path / file_name
                try:
                    if not file_path.is_file():
                        continue
                except OSError:
                    # Skip files we can't access
                    continue
                yield file_path
