"""
mediakiln - Local media conversion with quality or target-size control.

Converts video, audio and images on the local machine through ffmpeg and
Pillow. Each conversion is driven either by direct quality settings (CRF,
image quality) or by a target output size that mediakiln approximates with
two-pass bitrate budgeting (video) or a quality search (images).

Example usage:
    # As a command-line tool
    $ mediakiln convert movie.mov --format webm-vp9 --mode size --target-mb 8
    $ mediakiln image photo.png --format avif --mode size --target-kb 200

    # As a Python module
    import asyncio
    from pathlib import Path
    from mediakiln import Config, convert_media

    config = Config.for_library(format_id="mp4-x265", crf=26)
    result = asyncio.run(convert_media(Path("movie.mov"), config.encode_settings()))
"""

__version__ = "1.0.0"
__author__ = "mediakiln contributors"
__license__ = "MIT"
__url__ = "https://github.com/mediakiln/mediakiln"
__description__ = "Local media conversion with quality or target-size control"

# Public API exports
from mediakiln.budget import BitrateBudget, allocate_bitrate
from mediakiln.commands import build_encode_cmd, format_command, plan_passes
from mediakiln.config import Config, get_app_dirs, load_config_file
from mediakiln.converter import (
    clip_media,
    convert_image,
    convert_media,
    plan_media_conversion,
    remove_audio,
)
from mediakiln.engine import ExecutionEngine, get_engine
from mediakiln.errors import (
    EncodeExecutionError,
    InitializationError,
    JobCancelledError,
    MediakilnError,
    OutputMissingError,
    ProbeParseError,
    UnsupportedFormatError,
)
from mediakiln.events import EventLog, JSONEventWriter
from mediakiln.imaging import ImageCodec, get_codec
from mediakiln.jobs import JobRunner
from mediakiln.models import EncodeSettings, FileMetadata, JobResult, JobState
from mediakiln.probe import MetadataProbe
from mediakiln.search import search_quality_for_size

__all__ = [
    # Version info
    "__version__",
    "__author__",
    "__license__",
    "__url__",
    # Config
    "Config",
    "get_app_dirs",
    "load_config_file",
    # Model
    "EncodeSettings",
    "FileMetadata",
    "JobResult",
    "JobState",
    # Core
    "BitrateBudget",
    "allocate_bitrate",
    "build_encode_cmd",
    "format_command",
    "plan_passes",
    "MetadataProbe",
    "JobRunner",
    "search_quality_for_size",
    # Engines
    "ExecutionEngine",
    "get_engine",
    "ImageCodec",
    "get_codec",
    # Operations
    "convert_media",
    "plan_media_conversion",
    "clip_media",
    "remove_audio",
    "convert_image",
    # Diagnostics
    "EventLog",
    "JSONEventWriter",
    # Errors
    "MediakilnError",
    "InitializationError",
    "UnsupportedFormatError",
    "EncodeExecutionError",
    "OutputMissingError",
    "ProbeParseError",
    "JobCancelledError",
]
