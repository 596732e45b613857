from typing import List, Dict, Optional, Literal
from pydantic import BaseModel, Field, field_validator

Mode = Literal["image", "video"]
CleanupPolicy = Literal["auto", "always", "never"]

IMAGE_EXTENSIONS = ["png", "jpg", "jpeg", "bmp", "tiff", "gif"]
VIDEO_EXTENSIONS = [
    "mp4", "mkv", "mov", "avi", "webm", "flv", "wmv", "m4v", "mpg", "mpeg", "3gp", "ts",
    "m2ts", "mts", "ogv", "f4v", "vob", "asf", "rm", "rmvb",
]


def _normalize_ext(ext: str) -> str:
    return ext.strip().lstrip(".").lower()


class EncodingProfile(BaseModel):
    """Target encoding: what to accept, what to produce and how to call ffmpeg."""
    name: str
    output_extension: str
    input_extensions: List[str] = Field(default_factory=list)
    codec_args: List[str] = Field(default_factory=list)
    long_running: bool = False  # Print Start/End lines per job
    large_output: bool = False  # Partial outputs are worth removing on failure

    @field_validator("output_extension")
    @classmethod
    def validate_output_extension(cls, v: str) -> str:
        v = _normalize_ext(v)
        if not v:
            raise ValueError("output_extension must not be empty")
        return v

    @field_validator("input_extensions")
    @classmethod
    def validate_input_extensions(cls, v: List[str]) -> List[str]:
        return [e for e in (_normalize_ext(x) for x in v) if e]


IMAGE_PROFILE = EncodingProfile(
    name="image",
    output_extension="webp",
    input_extensions=IMAGE_EXTENSIONS,
    codec_args=["-vcodec", "libwebp", "-qscale", "80"],
)

VIDEO_PROFILE = EncodingProfile(
    name="video",
    output_extension="webm",
    input_extensions=VIDEO_EXTENSIONS,
    codec_args=[
        "-c:v", "libvpx-vp9",
        "-crf", "30",
        "-b:v", "0",
        "-b:a", "128k",
        "-c:a", "libopus",
        "-row-mt", "1",
    ],
    long_running=True,
    large_output=True,
)


class GeneralConfig(BaseModel):
    threads: int = 4
    mode: Mode = "image"
    dry_run_ms: int = Field(default=0, ge=0)
    log_path: str = "ffpack.txt"
    track_savings: bool = True
    cleanup_failed_output: CleanupPolicy = "auto"
    custom_args: Optional[str] = None
    extensions: Optional[List[str]] = None
    ffmpeg_binary: str = "ffmpeg"
    debug: bool = False
    debug_log: Optional[str] = None

    @field_validator("extensions")
    @classmethod
    def validate_extensions(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return None
        normalized = [e for e in (_normalize_ext(x) for x in v) if e]
        if not normalized:
            raise ValueError("extensions must contain at least one entry")
        return normalized

    @field_validator("log_path")
    @classmethod
    def validate_log_path(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("log_path must not be empty")
        return v


class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    profiles: Dict[str, EncodingProfile] = Field(default_factory=dict)

    @property
    def dry_run(self) -> bool:
        return self.general.dry_run_ms > 0
