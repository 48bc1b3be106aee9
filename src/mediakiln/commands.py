"""
FFmpeg command building for mediakiln.

Everything here is pure: the same settings and names always give the same
argument list, and nothing touches the engine or the filesystem. The lists are
both what the engine runs and what the user is shown, so the displayed command
is always the one that actually ran.
"""

import re
import shlex
from pathlib import PurePath
from typing import List, Optional, Sequence, Tuple

from mediakiln.errors import UnsupportedFormatError
from mediakiln.formats import OutputFormat, compatible_audio_codec, effective_mode, get_format
from mediakiln.models import EncodeSettings, PassSpec

# Filters
GIF_FILTER = "fps=10,scale=320:-1:flags=lanczos"

# Fixed speed pair for the VPx family (the named preset only applies to x264/x265)
VPX_SPEED_ARGS = ["-deadline", "realtime", "-cpu-used", "4"]
PRESET_CODECS = ("libx264", "libx265")

_TIMESTAMP_RE = re.compile(r"^\d+(:\d{1,2}){0,2}(\.\d+)?$")


# -------------------- NAMING --------------------


def split_name(filename: str) -> Tuple[str, str]:
    """Split a filename into (stem, ".ext"); ext is empty when there is none."""
    p = PurePath(filename)
    return p.stem if p.suffix else p.name, p.suffix


def output_name_for(filename: str, fmt: OutputFormat) -> str:
    """Download name for a converted file: <stem>_conv.<ext>."""
    stem, _ext = split_name(filename)
    return f"{stem}_conv.{fmt.ext}"


def tagged_name_for(filename: str, tag: str) -> str:
    """Download name for stream-copy tools, keeping the input extension."""
    stem, ext = split_name(filename)
    return f"{stem}_{tag}{ext}"


def passlog_artifacts(prefix: str) -> List[str]:
    """Statistics files the encoders leave behind for a two-pass prefix."""
    return [f"{prefix}-0.log", f"{prefix}-0.log.mbtree"]


# -------------------- ARGUMENT LISTS --------------------


def _common_args(settings: EncodeSettings, fmt: OutputFormat, input_name: str) -> List[str]:
    args = ["-y", "-i", input_name]
    args += ["-fflags", "+genpts"]
    args += ["-avoid_negative_ts", "make_zero"]

    if fmt.is_video and settings.resolution != "original":
        args += ["-vf", f"scale=-2:{settings.resolution}"]
    elif fmt.is_gif:
        args += ["-vf", GIF_FILTER]

    if fmt.is_video:
        args += ["-c:v", fmt.codec]
    elif fmt.kind == "audio":
        args += ["-c:a", fmt.codec]

    if fmt.is_video:
        if fmt.is_vpx:
            args += VPX_SPEED_ARGS
        elif fmt.codec in PRESET_CODECS:
            args += ["-preset", settings.preset]
    return args


def _audio_args(settings: EncodeSettings, fmt: OutputFormat, bitrate_kbps: Optional[int] = None) -> List[str]:
    if fmt.kind == "audio":
        # The container codec was already selected
        return []
    audio_codec = compatible_audio_codec(fmt, settings.audio_codec)
    if not fmt.is_video or audio_codec == "none":
        return ["-an"]
    args = ["-c:a", audio_codec]
    if bitrate_kbps:
        args += ["-b:a", f"{bitrate_kbps}k"]
    return args


def build_encode_cmd(
    settings: EncodeSettings,
    input_name: str,
    output_name: str,
    video_kbps: Optional[int] = None,
    pass_number: Optional[int] = None,
    passlog_prefix: Optional[str] = None,
) -> List[str]:
    """
    Build the ffmpeg argument list for one conversion pass.

    Args:
        settings: User settings.
        input_name: Input name inside the engine namespace.
        output_name: Output name inside the engine namespace.
        video_kbps: Video bitrate for a size-targeted pass (None = quality mode).
        pass_number: 1 (analysis, audio disabled) or 2 (final) for two-pass jobs.
        passlog_prefix: Prefix for the pass statistics files.

    Returns:
        Argument list, without the program name.

    Raises:
        UnsupportedFormatError: if settings.format_id has no mapped codec.
        ValueError: if a size-targeted pass is missing its bitrate or pass number.
    """
    fmt = get_format(settings.format_id)
    args = _common_args(settings, fmt, input_name)

    if video_kbps is None:
        args += _audio_args(settings, fmt)
        if fmt.is_video:
            args += ["-crf", str(settings.crf)]
            if fmt.codec == "libvpx-vp9":
                # VP9 only honours -crf as constant quality with a zero target bitrate
                args += ["-b:v", "0"]
    else:
        if not fmt.supports_size_mode:
            raise UnsupportedFormatError(f"Target size is not supported for {fmt.label}")
        if pass_number not in (1, 2):
            raise ValueError("size-targeted passes need pass_number 1 or 2")
        if pass_number == 1:
            args += ["-an"]
        else:
            args += _audio_args(settings, fmt, settings.audio_bitrate)
        args += ["-b:v", f"{video_kbps}k", "-pass", str(pass_number)]
        if passlog_prefix:
            args += ["-passlogfile", passlog_prefix]

    args.append(output_name)
    return args


def plan_passes(
    settings: EncodeSettings,
    input_name: str,
    output_name: str,
    job_prefix: str,
    video_kbps: Optional[int] = None,
) -> List[PassSpec]:
    """
    Lay out the engine executions for one conversion job.

    Quality mode (or a format without size support) is one pass. Size mode is
    an analysis pass writing to a throwaway name followed by the final pass.
    """
    fmt = get_format(settings.format_id)
    mode = effective_mode(fmt, settings.mode)

    if mode == "quality" or video_kbps is None:
        argv = build_encode_cmd(settings, input_name, output_name)
        return [PassSpec(number=2, argv=argv, output_name=output_name, label=f"Encoding (CRF {settings.crf})")]

    throwaway = f"{job_prefix}_pass1.{fmt.ext}"
    pass1 = build_encode_cmd(settings, input_name, throwaway, video_kbps, 1, job_prefix)
    pass2 = build_encode_cmd(settings, input_name, output_name, video_kbps, 2, job_prefix)
    return [
        PassSpec(number=1, argv=pass1, output_name=throwaway, discard=True, label="Pass 1/2: Analysis"),
        PassSpec(number=2, argv=pass2, output_name=output_name, label="Pass 2/2: Encoding"),
    ]


def validate_timestamp(value: str) -> str:
    """Accept ffmpeg-style positions such as 00:01:30, 1:30.5 or 90."""
    if not _TIMESTAMP_RE.match(value.strip()):
        raise ValueError(f"Invalid timestamp: {value!r} (expected HH:MM:SS)")
    return value.strip()


def build_clip_cmd(start: str, end: str, input_name: str, output_name: str) -> List[str]:
    """Stream-copy the [start, end] segment. -ss before -i seeks fast."""
    start, end = validate_timestamp(start), validate_timestamp(end)
    return ["-ss", start, "-i", input_name, "-to", end, "-c", "copy", output_name]


def build_mute_cmd(input_name: str, output_name: str) -> List[str]:
    """Drop every audio stream without re-encoding video."""
    return ["-i", input_name, "-c", "copy", "-an", output_name]


def build_probe_cmd(input_name: str) -> List[str]:
    return ["-hide_banner", input_name]


def format_command(argv: Sequence[str], program: str = "ffmpeg") -> str:
    """Shell-quoted display text for a command."""
    return shlex.join([program, *argv])
