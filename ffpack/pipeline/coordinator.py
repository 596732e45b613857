"""Run lifecycle coordinator.

Starts the worker pool, runs job admission on the calling thread, reacts to
cancellation, joins the pool and publishes the final report.

State machine:
- RUNNING: admission producing, workers consuming.
- CANCELLING: cancellation requested; admission stops, workers finish their
  current job and exit without taking another one.
- DRAINING: admission finished without cancellation; workers empty the queue.
- TERMINATED: every worker has exited.

Different workers may exit for different reasons in the same run.
"""

import concurrent.futures
import logging
import os
import threading
from pathlib import Path
from typing import Callable, Iterable, List, Optional
from ffpack.config.models import AppConfig, EncodingProfile
from ffpack.domain.events import AdmissionFinished, CancelRequested, RunFinished
from ffpack.domain.models import RunReport, RunState
from ffpack.infrastructure.event_bus import EventBus
from ffpack.infrastructure.housekeeping import HousekeepingService
from ffpack.pipeline.admission import JobAdmission
from ffpack.pipeline.aggregator import LogSink, RunStats
from ffpack.pipeline.job_queue import JobQueue
from ffpack.pipeline.worker import Transcoder, Worker

CANCEL_POLL_SECONDS = 0.2


def clamp_threads(requested: int, cpu_count: Optional[int] = None) -> int:
    """Clamps the worker count to [1, available CPUs]."""
    available = cpu_count if cpu_count is not None else (os.cpu_count() or 1)
    return max(1, min(requested, max(1, available)))


class Coordinator:
    """Batch transcoding run coordinator.

    Args:
        config: AppConfig with thread count, dry run, savings and cleanup settings.
        event_bus: EventBus for lifecycle events.
        file_scanner: Object with `scan(root) -> Iterable[Path]`.
        transcoder: Object with `run(job)` and `format_command(job)`.
        profile: Resolved EncodingProfile (extensions and output format).
        log_sink: Open LogSink shared by the workers; closed by `run()`.
        housekeeping: Removes partial outputs and an empty log file.
        threads: Worker count after clamping (defaults to clamped config value).
    """

    def __init__(
        self,
        config: AppConfig,
        event_bus: EventBus,
        file_scanner,
        transcoder: Transcoder,
        profile: EncodingProfile,
        log_sink: LogSink,
        housekeeping: Optional[HousekeepingService] = None,
        threads: Optional[int] = None,
    ):
        self.config = config
        self.event_bus = event_bus
        self.file_scanner = file_scanner
        self.transcoder = transcoder
        self.profile = profile
        self.log_sink = log_sink
        self.housekeeping = housekeeping or HousekeepingService()
        self.threads = threads if threads is not None else clamp_threads(config.general.threads)
        self.logger = logging.getLogger(__name__)

        self.queue = JobQueue()
        self.stats = RunStats()
        self.workers: List[Worker] = []

        self._state = RunState.RUNNING
        self._state_lock = threading.RLock()  # Signal handlers may re-enter on the main thread
        self._cancel_signal: Optional[int] = None
        self._cancel_announced = False

    @property
    def state(self) -> RunState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: RunState):
        with self._state_lock:
            if self._state == RunState.TERMINATED:
                return
            if self._state == RunState.CANCELLING and state == RunState.DRAINING:
                return
            self._state = state

    def cancel(self, signal_number: Optional[int] = None):
        """Cancels the run from any thread or from a signal handler.

        Only flips the queue flag and the run state; the CancelRequested notice
        is published later from the coordinating thread. Repeated calls are no-ops.
        """
        with self._state_lock:
            if self.queue.cancel():
                self._cancel_signal = signal_number
                self._set_state(RunState.CANCELLING)

    def _announce_cancel(self):
        with self._state_lock:
            if self._cancel_announced or not self.queue.cancel_requested:
                return
            self._cancel_announced = True
            signal_number = self._cancel_signal
        self.logger.info(f"Cancellation requested (signal={signal_number})")
        self.event_bus.publish(CancelRequested(signal_number=signal_number))

    def _make_worker(self, worker_id: int) -> Worker:
        dry_run_delay = None
        if self.config.dry_run:
            dry_run_delay = self.config.general.dry_run_ms / 1000.0
        return Worker(
            worker_id=worker_id,
            queue=self.queue,
            transcoder=self.transcoder,
            profile=self.profile,
            log_sink=self.log_sink,
            stats=self.stats,
            event_bus=self.event_bus,
            track_savings=self.config.general.track_savings,
            cleanup_policy=self.config.general.cleanup_failed_output,
            dry_run_delay=dry_run_delay,
            housekeeping=self.housekeeping,
        )

    def run(self, root_dir: Path, candidates: Optional[Iterable[Path]] = None) -> RunReport:
        """Runs admission and the worker pool to completion.

        `candidates` replaces the scanner's traversal of root_dir when given.
        """
        self.logger.info(
            f"Run started: folder={root_dir}, threads={self.threads}, "
            f"profile={self.profile.name}, dry_run={self.config.dry_run}"
        )
        if candidates is None:
            candidates = self.file_scanner.scan(root_dir)

        admission = JobAdmission(
            self.queue,
            extensions=self.profile.input_extensions,
            output_extension=self.profile.output_extension,
        )
        self.workers = [self._make_worker(i) for i in range(self.threads)]

        with concurrent.futures.ThreadPoolExecutor(
            max_workers=self.threads, thread_name_prefix="ffpack-worker"
        ) as executor:
            futures = [executor.submit(worker.run) for worker in self.workers]
            try:
                admission.run(candidates)
            except Exception as e:
                # Traversal blew up: stop producing, let workers drain what is queued
                self.logger.error(f"Admission aborted: {e}")
            finally:
                self._announce_cancel()
                cancelled = self.queue.cancel_requested
                if not cancelled:
                    self._set_state(RunState.DRAINING)
                remaining = self.queue.pending
                self.logger.info(f"Admission finished: admitted={admission.admitted}, remaining={remaining}")
                self.event_bus.publish(AdmissionFinished(
                    admitted=admission.admitted,
                    remaining=remaining,
                    cancelled=cancelled,
                ))

            self._join(futures)

        self._announce_cancel()
        self._set_state(RunState.TERMINATED)
        return self._finish(admission.admitted)

    def _join(self, futures: List[concurrent.futures.Future]):
        pending = set(futures)
        while pending:
            done, pending = concurrent.futures.wait(
                pending,
                timeout=CANCEL_POLL_SECONDS,
                return_when=concurrent.futures.FIRST_COMPLETED
            )
            self._announce_cancel()
            for future in done:
                try:
                    future.result()
                except Exception as e:
                    self.logger.error(f"Worker failed with exception: {e}")

    def _finish(self, admitted: int) -> RunReport:
        remaining = self.queue.pending
        self.log_sink.close()
        log_removed = self.housekeeping.remove_if_empty(self.log_sink.path)
        total_in, total_out = self.stats.totals()

        report = RunReport(
            admitted=admitted,
            completed=sum(w.completed for w in self.workers),
            failed=sum(w.failed for w in self.workers),
            remaining=remaining,
            cancelled=self.queue.cancel_requested,
            state=self.state,
            track_savings=self.config.general.track_savings,
            total_input_bytes=total_in,
            total_output_bytes=total_out,
            log_path=self.log_sink.path,
            log_removed=log_removed,
        )
        self.logger.info(
            f"Run finished: completed={report.completed}, failed={report.failed}, "
            f"remaining={report.remaining}, cancelled={report.cancelled}"
        )
        self.event_bus.publish(RunFinished(report=report))
        return report
