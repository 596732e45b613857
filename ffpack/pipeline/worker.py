"""Worker loop: take a job, run the transcoder, apply the post-job side effects."""

import logging
import os
import threading
import time
from pathlib import Path
from typing import Optional, Protocol
from ffpack.config.models import CleanupPolicy, EncodingProfile
from ffpack.domain.events import DryRunCommand, JobCompleted, JobFailed, JobStarted, WorkerExited
from ffpack.domain.models import Job, JobOutcome, JobStatus, TranscodeResult, WorkerExitReason
from ffpack.infrastructure.event_bus import EventBus
from ffpack.infrastructure.housekeeping import HousekeepingService
from ffpack.pipeline.aggregator import LogSink, RunStats
from ffpack.pipeline.job_queue import JobQueue


class Transcoder(Protocol):
    def run(self, job: Job) -> TranscodeResult: ...

    def format_command(self, job: Job) -> str: ...


def should_remove_partial_output(policy: CleanupPolicy, profile: EncodingProfile) -> bool:
    if policy == "always":
        return True
    if policy == "never":
        return False
    return profile.large_output


class Worker:
    """One long-lived consumer of the job queue.

    Per-job errors never leave `process()`: a job either completes or fails,
    and the loop goes on until the queue reports the end of the run.
    """

    def __init__(
        self,
        worker_id: int,
        queue: JobQueue,
        transcoder: Transcoder,
        profile: EncodingProfile,
        log_sink: LogSink,
        stats: RunStats,
        event_bus: EventBus,
        track_savings: bool = True,
        cleanup_policy: CleanupPolicy = "auto",
        dry_run_delay: Optional[float] = None,
        housekeeping: Optional[HousekeepingService] = None,
    ):
        self.worker_id = worker_id
        self.queue = queue
        self.transcoder = transcoder
        self.profile = profile
        self.log_sink = log_sink
        self.stats = stats
        self.event_bus = event_bus
        self.track_savings = track_savings
        self.remove_partial = should_remove_partial_output(cleanup_policy, profile)
        self.dry_run_delay = dry_run_delay
        self.housekeeping = housekeeping or HousekeepingService()
        self.logger = logging.getLogger(__name__)
        self.completed = 0
        self.failed = 0
        self._sleeper = threading.Event()  # Never set; wait() is an interruptible sleep

    def run(self) -> WorkerExitReason:
        """Consumes jobs until the queue signals termination."""
        self.logger.debug(f"WORKER_START: {self.worker_id} (thread {threading.get_ident()})")
        while True:
            item = self.queue.take()
            if isinstance(item, WorkerExitReason):
                reason = item
                break
            self.process(item)

        self.logger.info(f"WORKER_EXIT: {self.worker_id} reason={reason.value}")
        self._publish(WorkerExited(worker_id=self.worker_id, reason=reason))
        return reason

    def process(self, job: Job) -> JobOutcome:
        if self.dry_run_delay is not None:
            return self._dry_run(job)

        start_time = time.monotonic()
        outcome = JobOutcome(job=job, status=JobStatus.PROCESSING)
        try:
            self.event_bus.publish(JobStarted(job=job, long_running=self.profile.long_running))
            result = self.transcoder.run(job)
            if result.exit_success:
                self._on_success(job, result, outcome)
            else:
                self._on_failure(job, result, outcome)
        except Exception as e:
            # Log exception but don't crash the worker
            self.logger.error(f"Exception processing {job.input_path.name}: {e}")
            outcome.status = JobStatus.FAILED
            outcome.error_message = f"Exception: {e}"

        outcome.duration_seconds = time.monotonic() - start_time
        if outcome.status == JobStatus.COMPLETED:
            self.completed += 1
            self._publish(JobCompleted(outcome=outcome, long_running=self.profile.long_running))
        else:
            self.failed += 1
            self._publish(JobFailed(outcome=outcome))
        return outcome

    def _publish(self, event):
        # A failing subscriber must not take the worker thread down with it
        try:
            self.event_bus.publish(event)
        except Exception as e:
            self.logger.error(f"Event handler failed for {type(event).__name__}: {e}")

    def _dry_run(self, job: Job) -> JobOutcome:
        command = self.transcoder.format_command(job)
        self.logger.info(f"DRY_RUN: {command}")
        self._publish(DryRunCommand(job=job, command=command))
        if self.dry_run_delay > 0:
            self._sleeper.wait(self.dry_run_delay)
        return JobOutcome(job=job, status=JobStatus.DRY_RUN)

    def _on_success(self, job: Job, result: TranscodeResult, outcome: JobOutcome):
        filename = job.input_path.name
        self.log_sink.append(result.stdout + result.stderr)

        input_stat: Optional[os.stat_result] = None
        try:
            input_stat = job.input_path.stat()
            outcome.input_size_bytes = input_stat.st_size
        except OSError as e:
            self.logger.error(f"STAT_FAILED: {job.input_path}: {e}")

        try:
            job.input_path.unlink()
        except OSError as e:
            self.logger.error(f"DELETE_FAILED: {job.input_path}: {e}")

        output_size = self._output_size(job.output_path)
        outcome.output_size_bytes = output_size
        if self.track_savings and input_stat is not None and output_size is not None:
            self.stats.record(input_stat.st_size, output_size)

        if input_stat is not None:
            self._copy_timestamps(input_stat, job.output_path)

        outcome.status = JobStatus.COMPLETED
        self.logger.info(f"JOB_DONE: {filename} -> {job.output_path.name}")

    def _on_failure(self, job: Job, result: TranscodeResult, outcome: JobOutcome):
        outcome.status = JobStatus.FAILED
        outcome.stderr = result.stderr
        if result.spawn_error:
            outcome.error_message = result.spawn_error
        else:
            outcome.error_message = f"ffmpeg exited with code {result.returncode}"
        self.logger.error(f"JOB_FAILED: {job.input_path.name} - {outcome.error_message}")

        try:
            self.log_sink.append(result.stdout + result.stderr)
        finally:
            if self.remove_partial:
                self.housekeeping.remove_partial_output(job.output_path)

    def _output_size(self, path: Path) -> Optional[int]:
        try:
            return path.stat().st_size
        except OSError as e:
            self.logger.error(f"STAT_FAILED: {path}: {e}")
            return None

    def _copy_timestamps(self, input_stat: os.stat_result, output_path: Path):
        try:
            os.utime(output_path, ns=(input_stat.st_atime_ns, input_stat.st_mtime_ns))
        except OSError as e:
            self.logger.warning(f"Failed to copy timestamps to {output_path}: {e}")
