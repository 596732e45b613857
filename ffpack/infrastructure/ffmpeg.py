import logging
import os
import shlex
import subprocess
import time
from typing import List
from ffpack.config.models import EncodingProfile
from ffpack.domain.models import Job, TranscodeResult

class FFmpegAdapter:
    """Wrapper around ffmpeg for one-file-at-a-time transcoding."""

    def __init__(self, profile: EncodingProfile, binary: str = "ffmpeg"):
        self.profile = profile
        self.binary = binary
        self.logger = logging.getLogger(__name__)

    def build_command(self, job: Job) -> List[str]:
        """Constructs the ffmpeg command line arguments."""
        cmd = [
            self.binary,
            "-hide_banner",
            "-n",  # Never overwrite; output paths are unique per run
            "-i", str(job.input_path),
        ]
        cmd.extend(self.profile.codec_args)
        cmd.append(str(job.output_path))
        return cmd

    def format_command(self, job: Job) -> str:
        return shlex.join(self.build_command(job))

    def _popen_kwargs(self) -> dict:
        # Run the child outside our process group so a terminal Ctrl+C only
        # cancels the run; in-flight encodes finish on their own
        if os.name == "nt":
            return {"creationflags": getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)}
        return {"start_new_session": True}

    def run(self, job: Job) -> TranscodeResult:
        """Executes ffmpeg and waits for it. Never raises for process errors."""
        filename = job.input_path.name
        cmd = self.build_command(job)
        self.logger.debug(f"FFMPEG_CMD: {shlex.join(cmd)}")
        start_time = time.monotonic()

        try:
            res = subprocess.run(
                cmd,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                **self._popen_kwargs(),
            )
        except OSError as e:
            # Missing binary, permission denied, ...: a failed job, not a dead worker
            msg = f"Failed to start {self.binary}: {e}"
            self.logger.error(f"FFMPEG_SPAWN_FAILED: {filename} - {e}")
            return TranscodeResult(
                exit_success=False,
                stderr=(msg + "\n").encode(),
                spawn_error=msg,
            )

        elapsed = time.monotonic() - start_time
        status = "completed" if res.returncode == 0 else f"failed code={res.returncode}"
        self.logger.info(f"FFMPEG_END: {filename} status={status} elapsed={elapsed:.2f}s")
        return TranscodeResult(
            exit_success=res.returncode == 0,
            returncode=res.returncode,
            stdout=res.stdout or b"",
            stderr=res.stderr or b"",
        )
