import logging
import threading
from pathlib import Path
from typing import BinaryIO, Optional, Tuple

logger = logging.getLogger(__name__)

SIZE_UNITS = (
    (1024 ** 3, "GiB"),
    (1024 ** 2, "MiB"),
    (1024, "KiB"),
)


def format_size(size: int) -> str:
    """Formats a byte count with the largest unit it reaches (B/KiB/MiB/GiB)."""
    sign = "-" if size < 0 else ""
    size = abs(size)
    for threshold, unit in SIZE_UNITS:
        if size >= threshold:
            return f"{sign}{size / threshold:.2f} {unit}"
    return f"{sign}{size} B"


class RunStats:
    """Input/output byte totals accumulated by workers on successful jobs."""

    def __init__(self):
        self._lock = threading.Lock()
        self._input_bytes = 0
        self._output_bytes = 0

    def record(self, input_bytes: int, output_bytes: int) -> None:
        with self._lock:
            self._input_bytes += input_bytes
            self._output_bytes += output_bytes

    def totals(self) -> Tuple[int, int]:
        with self._lock:
            return self._input_bytes, self._output_bytes

    @property
    def total_input_bytes(self) -> int:
        return self.totals()[0]

    @property
    def total_output_bytes(self) -> int:
        return self.totals()[1]

    @property
    def saved_bytes(self) -> int:
        input_bytes, output_bytes = self.totals()
        return input_bytes - output_bytes


class LogSink:
    """Shared log file collecting the raw output of every job.

    Each `append` lands in the file as one contiguous chunk.
    """

    def __init__(self, path: Path, stream: Optional[BinaryIO] = None):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._stream = stream
        self._bytes_written = 0

    @classmethod
    def create(cls, path: Path) -> "LogSink":
        """Creates (truncates) the log file. Raises OSError on failure."""
        path = Path(path)
        if path.parent and not path.parent.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
        return cls(path, open(path, "wb"))

    def append(self, data: bytes) -> None:
        if not data:
            return
        with self._lock:
            if self._stream is None:
                raise ValueError(f"Log sink is closed: {self.path}")
            self._stream.write(data)
            self._bytes_written += len(data)

    @property
    def bytes_written(self) -> int:
        with self._lock:
            return self._bytes_written

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._stream is None

    def flush(self) -> None:
        with self._lock:
            if self._stream is not None:
                self._stream.flush()

    def close(self) -> None:
        with self._lock:
            if self._stream is None:
                return
            try:
                self._stream.flush()
            finally:
                self._stream.close()
                self._stream = None

    def __enter__(self):
        return self

    def __exit__(self, _exc_type, _exc_val, _exc_tb):
        self.close()
        return False
