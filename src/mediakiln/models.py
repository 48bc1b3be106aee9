"""
Data model for mediakiln.

Contains:
- EncodeSettings (user intent for media and image conversions)
- FileMetadata (probe results)
- Job / JobState / JobResult (one engine job and its lifecycle)
- SearchTrial / SearchResult / ImageResult (quality-for-size search)
- DiagnosticEvent (log, error and progress events)
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

# -------------------- SETTINGS --------------------

CONTROL_MODES = ("quality", "size")
CRF_RANGE = (18, 51)
IMAGE_QUALITY_RANGE = (0, 100)


@dataclass
class EncodeSettings:
    """What the user asked for, in both media and image conversions."""

    # Media output
    format_id: str = "mp4-x264"
    resolution: str = "original"  # "original" or a pixel height such as "720"
    audio_codec: str = "aac"  # "none" mutes the output
    mode: str = "quality"  # "quality" or "size"
    crf: int = 23
    preset: str = "superfast"

    # Media size targeting
    target_mb: float = 10.0
    audio_bitrate: int = 128  # kbps
    video_floor: int = 50  # kbps

    # Image output
    image_format: str = "webp"
    image_quality: int = 80
    target_kb: float = 256.0
    slack: float = 10.0  # percent
    iterations: int = 10

    @property
    def muted(self) -> bool:
        return self.audio_codec == "none"

    def validate(self) -> None:
        """Raise ValueError if any value is out of range."""
        if self.mode not in CONTROL_MODES:
            raise ValueError(f"mode must be one of {CONTROL_MODES}, got {self.mode!r}")
        lo, hi = CRF_RANGE
        if not lo <= self.crf <= hi:
            raise ValueError(f"crf must be in [{lo}, {hi}], got {self.crf}")
        lo, hi = IMAGE_QUALITY_RANGE
        if not lo <= self.image_quality <= hi:
            raise ValueError(f"image quality must be in [{lo}, {hi}], got {self.image_quality}")
        if self.resolution != "original" and not str(self.resolution).isdigit():
            raise ValueError(f"resolution must be 'original' or a pixel height, got {self.resolution!r}")
        if self.mode == "size":
            if self.video_floor < 0:
                raise ValueError("video floor must be >= 0")
            if self.audio_bitrate < 0:
                raise ValueError("audio bitrate must be >= 0")
            if self.iterations < 1:
                raise ValueError("iterations must be >= 1")
            if self.target_mb <= 0 or self.target_kb <= 0:
                raise ValueError("target size must be > 0")
            if self.slack < 0:
                raise ValueError("slack must be >= 0")


# -------------------- METADATA --------------------


@dataclass
class FileMetadata:
    """Facts extracted from one probe run. Zero/"-" means unknown."""

    duration: float = 0.0  # seconds
    total_bitrate: int = 0  # kbps
    audio_codec: str = "-"
    audio_bitrate: int = 0  # kbps
    has_audio: bool = False


# -------------------- EVENTS --------------------


@dataclass
class DiagnosticEvent:
    """One entry in a job or probe diagnostic stream."""

    kind: str  # "info" | "error" | "progress"
    message: str = ""
    percent: Optional[float] = None
    timestamp: float = field(default_factory=time.time)
    origin: str = "mediakiln"  # "engine" for raw ffmpeg/ffprobe output


# -------------------- JOBS --------------------


class JobState(str, Enum):
    IDLE = "idle"
    STAGED = "staged"
    PASS1 = "pass1"
    PASS2 = "pass2"
    COLLECTED = "collected"
    CLEANED = "cleaned"
    COMPLETED = "completed"
    FAILED = "failed"


def new_job_id() -> str:
    """Return a short random id used to prefix engine namespace names."""
    return uuid.uuid4().hex[:12]


@dataclass
class PassSpec:
    """One engine execution inside a job."""

    number: int  # 1 for an analysis pass, 2 for the final pass
    argv: List[str]
    output_name: str
    discard: bool = False  # output is a throwaway to delete after success
    label: str = ""


@dataclass
class Job:
    """A single conversion against the shared engine."""

    input_path: Path
    staged_name: str
    passes: List[PassSpec]
    output_name: str
    display_name: str
    mime_type: str
    artifacts: List[str] = field(default_factory=list)
    id: str = field(default_factory=new_job_id)
    state: JobState = JobState.IDLE


@dataclass
class JobResult:
    """Collected output of a completed job."""

    name: str
    mime_type: str
    data: bytes
    commands: List[str] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.data)


# -------------------- SEARCH --------------------


@dataclass
class SearchTrial:
    """One encode attempted during a quality-for-size search."""

    quality: int
    size: int
    accepted: bool  # landed at or under the target


@dataclass
class SearchResult:
    """Outcome of a quality-for-size search."""

    quality: int
    data: bytes
    trials: List[SearchTrial] = field(default_factory=list)
    within_slack: bool = False
    degraded: bool = False  # could not meet target even at minimum quality

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class ImageResult:
    """Encoded image ready to be written out."""

    name: str
    mime_type: str
    data: bytes
    quality: int
    width: int = 0
    height: int = 0
    search: Optional[SearchResult] = None

    @property
    def size(self) -> int:
        return len(self.data)
