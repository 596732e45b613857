import threading
import pytest
import yaml
from pathlib import Path
from typing import Callable, List, Optional
from ffpack.config.models import AppConfig, IMAGE_PROFILE, VIDEO_PROFILE
from ffpack.domain.models import Job, TranscodeResult
from ffpack.infrastructure.event_bus import EventBus
from ffpack.pipeline.aggregator import LogSink

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config():
    """Returns a sample AppConfig object for testing."""
    return AppConfig(
        general={
            "threads": 2,
            "mode": "image",
            "dry_run_ms": 0,
            "log_path": "ffpack.txt",
            "track_savings": True,
            "cleanup_failed_output": "auto",
            "debug": False,
        }
    )

@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "ffpack.yaml"

    content = {
        'general': {
            'threads': 3,
            'mode': 'video',
            'dry_run_ms': 0,
            'log_path': 'run.txt',
            'track_savings': False,
            'cleanup_failed_output': 'never',
            'extensions': ['MKV', '.mp4'],
        },
        'profiles': {
            'video': {
                'name': 'video',
                'output_extension': 'mkv',
                'codec_args': ['-c:v', 'libx265'],
                'long_running': True,
                'large_output': True,
            }
        }
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

@pytest.fixture
def image_profile():
    return IMAGE_PROFILE

@pytest.fixture
def video_profile():
    return VIDEO_PROFILE

# ============================================================================
# EventBus / Sink Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()

@pytest.fixture
def log_sink(tmp_path):
    sink = LogSink.create(tmp_path / "ffpack.txt")
    yield sink
    sink.close()

# ============================================================================
# Fake transcoder
# ============================================================================

class FakeTranscoder:
    """Stands in for ffmpeg: writes output bytes and returns canned results.

    `fail_names` makes jobs whose input name matches fail (leaving a partial
    output when `partial_on_failure` is set). `gate` blocks every job until set.
    """

    def __init__(
        self,
        output_bytes: bytes = b"out",
        fail_names: Optional[List[str]] = None,
        partial_on_failure: bool = False,
        gate: Optional[threading.Event] = None,
        on_run: Optional[Callable[[Job], None]] = None,
    ):
        self.output_bytes = output_bytes
        self.fail_names = set(fail_names or [])
        self.partial_on_failure = partial_on_failure
        self.gate = gate
        self.on_run = on_run
        self.started = threading.Semaphore(0)
        self.calls: List[Job] = []
        self._lock = threading.Lock()

    def format_command(self, job: Job) -> str:
        return f"ffmpeg -i {job.input_path} {job.output_path}"

    def run(self, job: Job) -> TranscodeResult:
        with self._lock:
            self.calls.append(job)
        self.started.release()
        if self.on_run:
            self.on_run(job)
        if self.gate is not None:
            self.gate.wait(timeout=10)
        if job.input_path.name in self.fail_names:
            if self.partial_on_failure:
                job.output_path.write_bytes(b"partial")
            return TranscodeResult(
                exit_success=False,
                returncode=1,
                stderr=f"error: cannot decode {job.input_path.name}\n".encode(),
            )
        job.output_path.write_bytes(self.output_bytes)
        return TranscodeResult(
            exit_success=True,
            returncode=0,
            stdout=b"",
            stderr=f"[{job.input_path.name}] encoded\n".encode(),
        )

@pytest.fixture
def fake_transcoder():
    return FakeTranscoder()

@pytest.fixture
def image_folder(tmp_path):
    """Creates a folder with three small PNG files."""
    folder = tmp_path / "images"
    folder.mkdir()
    for name in ("a", "b", "c"):
        (folder / f"{name}.png").write_bytes(b"p" * 1000)
    return folder

# ============================================================================
# Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
