from enum import Enum
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, ConfigDict

class JobStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    DRY_RUN = "DRY_RUN"  # Command printed, nothing executed

class WorkerExitReason(str, Enum):
    CANCELLED = "cancelled"
    DRAINED = "drained"

class RunState(str, Enum):
    RUNNING = "RUNNING"
    CANCELLING = "CANCELLING"
    DRAINING = "DRAINING"
    TERMINATED = "TERMINATED"

class Job(BaseModel):
    """One input/output pair. Immutable once admitted."""
    model_config = ConfigDict(frozen=True)

    input_path: Path
    output_path: Path

class TranscodeResult(BaseModel):
    exit_success: bool
    returncode: Optional[int] = None
    stdout: bytes = b""
    stderr: bytes = b""
    spawn_error: Optional[str] = None  # Set when the process could not be started

class JobOutcome(BaseModel):
    job: Job
    status: JobStatus = JobStatus.PENDING
    input_size_bytes: Optional[int] = None
    output_size_bytes: Optional[int] = None
    error_message: Optional[str] = None
    stderr: bytes = b""
    duration_seconds: Optional[float] = None

class RunReport(BaseModel):
    admitted: int = 0
    completed: int = 0
    failed: int = 0
    remaining: int = 0
    cancelled: bool = False
    state: RunState = RunState.TERMINATED
    track_savings: bool = True
    total_input_bytes: int = 0
    total_output_bytes: int = 0
    log_path: Optional[Path] = None
    log_removed: bool = False

    @property
    def saved_bytes(self) -> int:
        return self.total_input_bytes - self.total_output_bytes
