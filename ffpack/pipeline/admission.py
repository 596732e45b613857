"""Job admission: turns candidate paths into queued jobs with unique outputs."""

import itertools
import logging
from pathlib import Path
from typing import Callable, Iterable, Optional, Set
from ffpack.domain.models import Job
from ffpack.pipeline.job_queue import JobQueue


def unique_path(path: Path, is_taken: Callable[[Path], bool]) -> Path:
    """Returns path, or the first free `stem_N.suffix` (N = 0, 1, ...).

    The counter is unbounded; every probe rules out one more name.
    """
    if not is_taken(path):
        return path
    for counter in itertools.count():
        candidate = path.with_name(f"{path.stem}_{counter}{path.suffix}")
        if not is_taken(candidate):
            return candidate
    raise AssertionError("unreachable")


def extension_of(path: Path) -> Optional[str]:
    """Lowercased extension without the dot, or None when there is none."""
    suffix = path.suffix
    if not suffix or suffix == ".":
        return None
    return suffix[1:].lower()


class OutputPathAllocator:
    """Derives output paths that are free on disk and not yet claimed this run.

    Owned by the single admission thread; not thread-safe.
    """

    def __init__(self, output_extension: str):
        self.output_extension = output_extension.lstrip(".")
        self._claimed: Set[Path] = set()

    def _is_taken(self, path: Path) -> bool:
        return path in self._claimed or path.exists()

    def allocate(self, input_path: Path) -> Path:
        candidate = input_path.with_suffix(f".{self.output_extension}")
        output = unique_path(candidate, self._is_taken)
        self._claimed.add(output)
        return output

    @property
    def claimed(self) -> Set[Path]:
        return set(self._claimed)


class JobAdmission:
    """Filters candidates by extension and feeds the job queue.

    Args:
        queue: JobQueue shared with the workers.
        extensions: Accepted input extensions (case-insensitive, dot optional).
        output_extension: Extension of the produced files.
    """

    def __init__(self, queue: JobQueue, extensions: Iterable[str], output_extension: str):
        self.queue = queue
        self.extensions = {e.lstrip(".").lower() for e in extensions}
        self.allocator = OutputPathAllocator(output_extension)
        self.admitted = 0
        self.logger = logging.getLogger(__name__)

    def accepts(self, path: Path) -> bool:
        ext = extension_of(path)
        return ext is not None and ext in self.extensions

    def run(self, candidates: Iterable[Path]) -> int:
        """Admits jobs until candidates run out or cancellation is requested.

        Always marks admission done, even when the candidate source raises.
        Returns the number of admitted jobs.
        """
        try:
            for path in candidates:
                if self.queue.cancel_requested:
                    self.logger.info("ADMISSION_STOP: cancellation requested")
                    break
                path = Path(path)
                if not self.accepts(path):
                    continue

                output_path = self.allocator.allocate(path)
                self.queue.put(Job(input_path=path, output_path=output_path))
                self.admitted += 1
                self.logger.debug(f"ADMITTED: {path} -> {output_path}")
        finally:
            self.queue.finish_admission()

        return self.admitted
