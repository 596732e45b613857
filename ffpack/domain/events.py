"""Domain events for the transcoding run.

Events flow through the EventBus from the pipeline (admission, workers,
coordinator) to the console reporter, keeping the pipeline free of any
printing concerns.

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from typing import Optional
from pydantic import BaseModel
from .models import Job, JobOutcome, RunReport, WorkerExitReason


class Event(BaseModel):
    """Base class for all domain events.

    Events are validated Pydantic models. They are not frozen by default.
    """

    pass


class JobEvent(Event):
    """Base class for events related to a specific job."""

    job: Job


class JobStarted(JobEvent):
    """Emitted right before the transcoder is invoked."""

    long_running: bool = False


class JobCompleted(Event):
    """Emitted when the transcoder succeeded and the input was handled."""

    outcome: JobOutcome
    long_running: bool = False


class JobFailed(Event):
    """Emitted when the transcoder failed or could not be spawned; input is kept."""

    outcome: JobOutcome


class DryRunCommand(JobEvent):
    """Emitted in dry-run mode with the command that would have run."""

    command: str


class AdmissionFinished(Event):
    """Emitted once the candidate sequence is exhausted or abandoned."""

    admitted: int
    remaining: int
    cancelled: bool = False


class CancelRequested(Event):
    """Emitted once by the coordinator, outside signal context, after cancellation lands."""

    signal_number: Optional[int] = None


class WorkerExited(Event):
    """Emitted when a worker leaves its loop."""

    worker_id: int
    reason: WorkerExitReason


class RunFinished(Event):
    """Emitted after all workers joined and the log sink was closed."""

    report: RunReport
