from typing import Optional
from rich.console import Console
from rich.table import Table
from rich.text import Text
from ffpack.infrastructure.event_bus import EventBus
from ffpack.domain.events import (
    AdmissionFinished, CancelRequested, DryRunCommand,
    JobCompleted, JobFailed, JobStarted, RunFinished, WorkerExited,
)
from ffpack.pipeline.aggregator import format_size


class ConsoleReporter:
    """Subscribes to EventBus and prints run progress to the terminal."""

    def __init__(self, bus: EventBus, console: Optional[Console] = None, err_console: Optional[Console] = None, verbose: bool = False):
        self.bus = bus
        self.console = console or Console(highlight=False)
        self.err_console = err_console or Console(stderr=True, highlight=False)
        self.verbose = verbose
        self._cancel_reported = False
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(JobStarted, self.on_job_started)
        self.bus.subscribe(JobCompleted, self.on_job_completed)
        self.bus.subscribe(JobFailed, self.on_job_failed)
        self.bus.subscribe(DryRunCommand, self.on_dry_run_command)
        self.bus.subscribe(AdmissionFinished, self.on_admission_finished)
        self.bus.subscribe(CancelRequested, self.on_cancel_requested)
        self.bus.subscribe(WorkerExited, self.on_worker_exited)
        self.bus.subscribe(RunFinished, self.on_run_finished)

    def on_job_started(self, event: JobStarted):
        # Short jobs only report on completion
        if event.long_running:
            self.console.print(f"Start: {event.job.input_path} -> {event.job.output_path}")

    def on_job_completed(self, event: JobCompleted):
        job = event.outcome.job
        prefix = "End: " if event.long_running else ""
        self.console.print(f"{prefix}{job.input_path} -> {job.output_path}")

    def on_job_failed(self, event: JobFailed):
        job = event.outcome.job
        self.err_console.print(
            Text(f"Failed: {job.input_path} -> {job.output_path}", style="bold red")
        )
        if event.outcome.error_message:
            self.err_console.print(Text(event.outcome.error_message, style="red"))
        if event.outcome.stderr:
            self.err_console.print(Text(event.outcome.stderr.decode(errors="replace").rstrip()))

    def on_dry_run_command(self, event: DryRunCommand):
        self.console.print(Text(event.command))

    def on_admission_finished(self, event: AdmissionFinished):
        self.console.print("Done search!")
        self.console.print(f"Jobs {event.remaining} left")

    def on_cancel_requested(self, event: CancelRequested):
        if self._cancel_reported:
            return
        self._cancel_reported = True
        self.err_console.print(
            Text("Cancel requested: finishing running jobs, no new jobs will start", style="yellow")
        )

    def on_worker_exited(self, event: WorkerExited):
        if self.verbose:
            self.console.print(f"Worker {event.worker_id} quit ({event.reason.value})")

    def on_run_finished(self, event: RunFinished):
        report = event.report
        self.console.print(f"Jobs {report.remaining} left")

        table = Table(title="ffpack summary", show_header=False)
        table.add_column("Metric", style="bold")
        table.add_column("Value", justify="right")
        table.add_row("Admitted", str(report.admitted))
        table.add_row("Completed", str(report.completed))
        table.add_row("Failed", str(report.failed))
        if report.cancelled:
            table.add_row("Cancelled", "yes")
        if report.track_savings:
            table.add_row("Input", format_size(report.total_input_bytes))
            table.add_row("Output", format_size(report.total_output_bytes))
            table.add_row("Saved", format_size(report.saved_bytes))
        if report.log_path is not None:
            table.add_row("Log", "(empty, removed)" if report.log_removed else str(report.log_path))
        self.console.print(table)
