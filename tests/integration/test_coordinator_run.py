import threading
import time
from pathlib import Path
import pytest
from conftest import FakeTranscoder
from ffpack.config.models import AppConfig, GeneralConfig, IMAGE_PROFILE, VIDEO_PROFILE
from ffpack.domain.events import AdmissionFinished, CancelRequested, JobStarted, RunFinished, WorkerExited
from ffpack.domain.models import RunState, WorkerExitReason
from ffpack.infrastructure.event_bus import EventBus
from ffpack.infrastructure.file_scanner import FileScanner
from ffpack.pipeline.aggregator import LogSink
from ffpack.pipeline.coordinator import Coordinator, clamp_threads

pytestmark = pytest.mark.integration


def _make_coordinator(tmp_path, transcoder, threads=2, profile=IMAGE_PROFILE, bus=None, **general):
    config = AppConfig(general=GeneralConfig(threads=threads, **general))
    sink = LogSink.create(tmp_path / "ffpack.txt")
    return Coordinator(
        config=config,
        event_bus=bus or EventBus(),
        file_scanner=FileScanner(),
        transcoder=transcoder,
        profile=profile,
        log_sink=sink,
        threads=threads,
    )


def test_clamp_threads():
    assert clamp_threads(0, cpu_count=8) == 1
    assert clamp_threads(4, cpu_count=8) == 4
    assert clamp_threads(32, cpu_count=8) == 8
    assert clamp_threads(4, cpu_count=0) == 1


def test_three_images_two_workers(tmp_path, image_folder):
    transcoder = FakeTranscoder(output_bytes=b"w" * 250)
    coordinator = _make_coordinator(tmp_path, transcoder, threads=2)

    report = coordinator.run(image_folder)

    assert sorted(j.output_path.name for j in transcoder.calls) == ["a.webp", "b.webp", "c.webp"]
    assert sorted(p.name for p in image_folder.iterdir()) == ["a.webp", "b.webp", "c.webp"]
    log = (tmp_path / "ffpack.txt").read_bytes()
    assert log.count(b"encoded\n") == 3
    assert report.admitted == 3
    assert report.completed == 3
    assert report.failed == 0
    assert report.remaining == 0
    assert report.cancelled is False
    assert report.state == RunState.TERMINATED
    assert report.total_input_bytes == 3000
    assert report.total_output_bytes == 750
    assert report.log_removed is False


def test_existing_output_gets_suffix(tmp_path):
    folder = tmp_path / "images"
    folder.mkdir()
    (folder / "a.png").write_bytes(b"p")
    (folder / "a.webp").write_bytes(b"old")
    transcoder = FakeTranscoder()

    _make_coordinator(tmp_path, transcoder, threads=1).run(folder)

    assert [j.output_path.name for j in transcoder.calls] == ["a_0.webp"]
    assert (folder / "a.webp").read_bytes() == b"old"
    assert (folder / "a_0.webp").exists()


def test_colliding_inputs_resolve_to_distinct_outputs(tmp_path):
    folder = tmp_path / "images"
    folder.mkdir()
    for name in ("a.png", "a.jpg", "a.gif"):
        (folder / name).write_bytes(b"p")
    (folder / "a.webp").write_bytes(b"old")
    transcoder = FakeTranscoder()

    _make_coordinator(tmp_path, transcoder, threads=3).run(folder)

    outputs = [j.output_path.name for j in transcoder.calls]
    assert len(set(outputs)) == 3
    assert "a.webp" not in outputs


def test_failed_job_keeps_input_and_logs_error(tmp_path, image_folder):
    transcoder = FakeTranscoder(fail_names=["b.png"])
    coordinator = _make_coordinator(tmp_path, transcoder, threads=2)

    report = coordinator.run(image_folder)

    assert (image_folder / "b.png").exists()
    assert not (image_folder / "a.png").exists()
    assert not (image_folder / "c.png").exists()
    assert b"cannot decode b.png" in (tmp_path / "ffpack.txt").read_bytes()
    assert report.completed == 2
    assert report.failed == 1
    # Failed jobs contribute nothing to the byte totals
    assert report.total_input_bytes == 2000
    assert report.total_output_bytes == 6


def test_drain_completeness_many_jobs(tmp_path):
    folder = tmp_path / "many"
    folder.mkdir()
    for i in range(60):
        (folder / f"img{i:03d}.png").write_bytes(b"x" * (i + 1))
    transcoder = FakeTranscoder(output_bytes=b"")
    bus = EventBus()
    exits = []
    bus.subscribe(WorkerExited, exits.append)
    coordinator = _make_coordinator(tmp_path, transcoder, threads=4, bus=bus)

    report = coordinator.run(folder)

    names = [j.input_path.name for j in transcoder.calls]
    assert len(names) == 60
    assert len(set(names)) == 60
    assert report.completed == 60
    assert report.total_input_bytes == sum(range(1, 61))
    assert coordinator.queue.pending == 0
    assert all(e.reason == WorkerExitReason.DRAINED for e in exits)
    assert len(exits) == 4


def test_cancel_during_admission_stops_traversal(tmp_path):
    transcoder = FakeTranscoder()
    coordinator = _make_coordinator(tmp_path, transcoder, threads=2)
    pulled = []

    def candidates():
        for i in range(10):
            pulled.append(i)
            if i == 2:
                coordinator.cancel()
            path = tmp_path / f"img{i}.png"
            path.write_bytes(b"x")
            yield path

    report = coordinator.run(tmp_path, candidates=candidates())

    assert report.admitted <= 2
    assert len(pulled) == 3
    assert report.cancelled is True
    assert len(transcoder.calls) <= 2
    assert report.completed + report.remaining == report.admitted


def test_cancel_lets_in_flight_job_finish(tmp_path, image_folder):
    gate = threading.Event()
    transcoder = FakeTranscoder(gate=gate)
    bus = EventBus()
    exits = []
    bus.subscribe(WorkerExited, exits.append)
    coordinator = _make_coordinator(tmp_path, transcoder, threads=1, bus=bus)

    def cancel_when_busy():
        assert transcoder.started.acquire(timeout=5)
        coordinator.cancel()
        coordinator.cancel()  # repeated requests are harmless
        gate.set()

    helper = threading.Thread(target=cancel_when_busy)
    helper.start()
    report = coordinator.run(image_folder)
    helper.join(timeout=5)

    # The job in flight at cancel time completed; nothing else started
    assert len(transcoder.calls) == 1
    assert report.completed == 1
    assert report.cancelled is True
    assert exits[0].reason == WorkerExitReason.CANCELLED
    done = transcoder.calls[0]
    assert not done.input_path.exists()
    assert done.output_path.exists()
    remaining_inputs = sorted(p.name for p in image_folder.glob("*.png"))
    assert len(remaining_inputs) == 2


def test_cancel_before_run_admits_nothing(tmp_path, image_folder):
    bus = EventBus()
    notices = []
    bus.subscribe(CancelRequested, notices.append)
    transcoder = FakeTranscoder()
    coordinator = _make_coordinator(tmp_path, transcoder, threads=2, bus=bus)

    coordinator.cancel(signal_number=2)
    report = coordinator.run(image_folder)

    assert [n.signal_number for n in notices] == [2]
    assert report.admitted == 0
    assert transcoder.calls == []
    assert report.cancelled is True
    # Nothing was logged, so the empty log file is gone
    assert report.log_removed is True
    assert not (tmp_path / "ffpack.txt").exists()


def test_cancel_notice_is_published_once_from_the_coordinating_thread(tmp_path, image_folder):
    gate = threading.Event()
    transcoder = FakeTranscoder(gate=gate)
    bus = EventBus()
    notices = []
    bus.subscribe(CancelRequested, lambda e: notices.append((e.signal_number, threading.current_thread())))
    coordinator = _make_coordinator(tmp_path, transcoder, threads=1, bus=bus)

    def cancel_when_busy():
        assert transcoder.started.acquire(timeout=5)
        # Same call the SIGINT handler makes
        coordinator.cancel(signal_number=2)
        coordinator.cancel(signal_number=2)
        gate.set()

    helper = threading.Thread(target=cancel_when_busy)
    helper.start()
    report = coordinator.run(image_folder)
    helper.join(timeout=5)

    assert report.cancelled is True
    assert notices == [(2, threading.current_thread())]
    assert coordinator.state == RunState.TERMINATED


def test_empty_folder_removes_log(tmp_path):
    folder = tmp_path / "empty"
    folder.mkdir()
    bus = EventBus()
    finished = []
    admission = []
    bus.subscribe(RunFinished, finished.append)
    bus.subscribe(AdmissionFinished, admission.append)

    report = _make_coordinator(tmp_path, FakeTranscoder(), bus=bus).run(folder)

    assert report.admitted == 0
    assert report.log_removed is True
    assert not (tmp_path / "ffpack.txt").exists()
    assert admission[0].remaining == 0
    assert finished[0].report == report


def test_dry_run_simulates_without_side_effects(tmp_path, image_folder):
    transcoder = FakeTranscoder()
    coordinator = _make_coordinator(tmp_path, transcoder, threads=2, dry_run_ms=5)

    started = time.monotonic()
    report = coordinator.run(image_folder)
    elapsed = time.monotonic() - started

    assert transcoder.calls == []
    assert sorted(p.name for p in image_folder.iterdir()) == ["a.png", "b.png", "c.png"]
    assert report.completed == 0
    assert report.failed == 0
    assert elapsed >= 0.005
    assert report.log_removed is True


def test_video_failure_removes_partial_output(tmp_path):
    folder = tmp_path / "clips"
    folder.mkdir()
    (folder / "good.mp4").write_bytes(b"v" * 100)
    (folder / "bad.mkv").write_bytes(b"v" * 100)
    transcoder = FakeTranscoder(fail_names=["bad.mkv"], partial_on_failure=True)
    bus = EventBus()
    started = []
    bus.subscribe(JobStarted, started.append)

    report = _make_coordinator(tmp_path, transcoder, threads=2, profile=VIDEO_PROFILE, bus=bus).run(folder)

    assert (folder / "bad.mkv").exists()
    assert not (folder / "bad.webm").exists()
    assert (folder / "good.webm").exists()
    assert report.failed == 1
    assert all(e.long_running for e in started)


def test_cleanup_never_keeps_partial_video_output(tmp_path):
    folder = tmp_path / "clips"
    folder.mkdir()
    (folder / "bad.mkv").write_bytes(b"v")
    transcoder = FakeTranscoder(fail_names=["bad.mkv"], partial_on_failure=True)

    _make_coordinator(
        tmp_path, transcoder, threads=1, profile=VIDEO_PROFILE, cleanup_failed_output="never"
    ).run(folder)

    assert (folder / "bad.webm").read_bytes() == b"partial"


def test_state_transitions_to_draining_then_terminated(tmp_path, image_folder):
    states = []
    coordinator = None

    def record_state(job):
        states.append(coordinator.state)

    transcoder = FakeTranscoder(on_run=record_state)
    coordinator = _make_coordinator(tmp_path, transcoder, threads=1)
    assert coordinator.state == RunState.RUNNING

    coordinator.run(image_folder)

    assert set(states) <= {RunState.RUNNING, RunState.DRAINING}
    assert coordinator.state == RunState.TERMINATED


def test_traversal_error_still_drains_admitted_jobs(tmp_path):
    transcoder = FakeTranscoder()
    coordinator = _make_coordinator(tmp_path, transcoder, threads=2)

    def candidates():
        path = tmp_path / "only.png"
        path.write_bytes(b"x")
        yield path
        raise OSError("walk failed")

    report = coordinator.run(tmp_path, candidates=candidates())

    assert report.admitted == 1
    assert report.completed == 1
    assert not (tmp_path / "only.png").exists()
