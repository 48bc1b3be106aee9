"""
High-level conversion operations for mediakiln.

Contains:
- Settings normalization (container/audio compatibility, forced quality mode)
- Conversion planning (metadata, bitrate budget, pass layout)
- convert_media / clip_media / remove_audio against the shared engine
- convert_image with optional quality-for-size search

Every function accepts an explicit engine; when none is given the
process-wide engine from get_engine() is used.
"""

import asyncio
import mimetypes
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import List, Optional

from mediakiln.budget import BitrateBudget, allocate_bitrate, estimate_size_mb
from mediakiln.commands import (
    build_clip_cmd,
    build_mute_cmd,
    format_command,
    output_name_for,
    passlog_artifacts,
    plan_passes,
    split_name,
    tagged_name_for,
)
from mediakiln.engine import ExecutionEngine, get_engine
from mediakiln.events import EventLog
from mediakiln.formats import OutputFormat, compatible_audio_codec, effective_mode, get_format
from mediakiln.imaging import decode_image, get_codec, get_image_format
from mediakiln.jobs import JobRunner, new_job
from mediakiln.models import EncodeSettings, FileMetadata, ImageResult, Job, JobResult, PassSpec
from mediakiln.probe import MetadataProbe
from mediakiln.search import search_quality_for_size

# -------------------- PLANNING --------------------


@dataclass
class ConversionPlan:
    """Everything decided before a media job touches the engine."""

    settings: EncodeSettings
    format: OutputFormat
    mode: str
    job: Job
    metadata: FileMetadata = field(default_factory=FileMetadata)
    budget: Optional[BitrateBudget] = None

    @property
    def commands(self) -> List[str]:
        return [format_command(p.argv) for p in self.job.passes]

    @property
    def estimated_mb(self) -> float:
        if self.budget is None:
            return 0.0
        return estimate_size_mb(self.budget.video_kbps, self.budget.audio_kbps, self.metadata.duration)


def normalize_settings(settings: EncodeSettings, events: Optional[EventLog] = None) -> EncodeSettings:
    """
    Return settings the chosen container can honour.

    The audio codec is swapped for one the container holds, and size mode
    falls back to quality mode for formats without two-pass support.
    Each adjustment is reported as an info event.

    Raises:
        UnsupportedFormatError: unknown format id.
        ValueError: out-of-range values.
    """
    events = events or EventLog()
    settings.validate()
    fmt = get_format(settings.format_id)

    audio_codec = compatible_audio_codec(fmt, settings.audio_codec)
    if audio_codec != settings.audio_codec:
        events.info(f"{fmt.label} cannot hold {settings.audio_codec}; using {audio_codec}")

    mode = effective_mode(fmt, settings.mode)
    if mode != settings.mode:
        events.info(f"Target size is not supported for {fmt.label}; using quality mode")

    return replace(settings, audio_codec=audio_codec, mode=mode)


async def plan_media_conversion(
    input_path: Path,
    settings: EncodeSettings,
    engine: Optional[ExecutionEngine] = None,
    events: Optional[EventLog] = None,
    probe: Optional[MetadataProbe] = None,
) -> ConversionPlan:
    """
    Decide the passes for converting input_path.

    Size mode probes the input (through probe, so repeated plans for the same
    file reuse its metadata) and allocates the bitrate budget. When the floors
    cannot fit the target a warning is emitted and the job still runs at the
    floor. An input whose duration cannot be read is encoded in quality mode.
    """
    events = events or EventLog()
    settings = normalize_settings(settings, events)
    fmt = get_format(settings.format_id)

    job = new_job(input_path, output_name_for(input_path.name, fmt), fmt.mime_type, f".{fmt.ext}")
    plan = ConversionPlan(settings=settings, format=fmt, mode=settings.mode, job=job)

    video_kbps = None
    if plan.mode == "size":
        if engine is None:
            engine = await get_engine()
        probe = probe or MetadataProbe(engine)
        plan.metadata = await probe.probe(input_path, events)

        if plan.metadata.duration <= 0:
            events.error("Duration unknown; falling back to quality mode")
            plan.mode = "quality"
            plan.settings = replace(settings, mode="quality")
        else:
            audio_kbps = 0 if settings.muted else settings.audio_bitrate
            plan.budget = allocate_bitrate(settings.target_mb, plan.metadata.duration, audio_kbps, settings.video_floor)
            video_kbps = plan.budget.video_kbps
            events.info(f"Start: 2-Pass Mode. Target Video: {video_kbps}k, Audio: {audio_kbps}k")
            if plan.budget.is_impossible:
                events.info(
                    f"WARNING: Minimum floors exceed target size. Expect output > {settings.target_mb:g}MB "
                    f"(minimum {plan.budget.min_possible_mb:.2f}MB)."
                )

    if plan.mode == "quality":
        events.info(f"Start: Quality Mode (CRF {plan.settings.crf})")

    job.passes = plan_passes(plan.settings, job.staged_name, job.output_name, job.id, video_kbps)
    if video_kbps is not None:
        job.artifacts = passlog_artifacts(job.id)
    return plan


# -------------------- MEDIA OPERATIONS --------------------


async def run_plan(
    plan: ConversionPlan,
    engine: Optional[ExecutionEngine] = None,
    events: Optional[EventLog] = None,
    runner: Optional[JobRunner] = None,
) -> JobResult:
    """Execute a planned job. Raises whatever the job runner raises."""
    if runner is None:
        if engine is None:
            engine = await get_engine()
        runner = JobRunner(engine, events)
    return await runner.run(plan.job)


async def convert_media(
    input_path: Path,
    settings: EncodeSettings,
    engine: Optional[ExecutionEngine] = None,
    events: Optional[EventLog] = None,
    probe: Optional[MetadataProbe] = None,
) -> JobResult:
    """
    Convert a video/audio file to settings.format_id.

    Args:
        input_path: Input media file.
        settings: Conversion settings.
        engine: Execution engine (the shared one if not provided).
        events: Diagnostic stream for logs and progress.
        probe: MetadataProbe to reuse cached metadata across calls.

    Returns:
        JobResult holding the output bytes and its download name.

    Example:
        >>> settings = EncodeSettings(format_id="webm-vp9", mode="size", target_mb=8)
        >>> result = asyncio.run(convert_media(Path("clip.mov"), settings))
        >>> Path(result.name).write_bytes(result.data)
    """
    events = events or EventLog()
    if engine is None:
        engine = await get_engine()
    plan = await plan_media_conversion(input_path, settings, engine, events, probe)
    return await run_plan(plan, engine, events)


def _copy_job(input_path: Path, display_name: str, build_argv) -> Job:
    _stem, ext = split_name(input_path.name)
    mime_type = mimetypes.guess_type(input_path.name)[0] or "application/octet-stream"
    job = new_job(input_path, display_name, mime_type, ext)
    argv = build_argv(job.staged_name, job.output_name)
    job.passes = [PassSpec(number=2, argv=argv, output_name=job.output_name)]
    return job


def plan_clip(input_path: Path, start: str, end: str) -> Job:
    """Job that stream-copies [start, end] of input_path. Raises ValueError for bad timestamps."""
    return _copy_job(
        input_path,
        tagged_name_for(input_path.name, "clipped"),
        lambda staged, out: build_clip_cmd(start, end, staged, out),
    )


def plan_mute(input_path: Path) -> Job:
    return _copy_job(input_path, tagged_name_for(input_path.name, "muted"), build_mute_cmd)


async def clip_media(
    input_path: Path,
    start: str,
    end: str,
    engine: Optional[ExecutionEngine] = None,
    events: Optional[EventLog] = None,
) -> JobResult:
    """Cut a segment out of input_path without re-encoding."""
    job = plan_clip(input_path, start, end)
    if engine is None:
        engine = await get_engine()
    return await JobRunner(engine, events).run(job)


async def remove_audio(
    input_path: Path,
    engine: Optional[ExecutionEngine] = None,
    events: Optional[EventLog] = None,
) -> JobResult:
    """Drop every audio stream from input_path without re-encoding video."""
    job = plan_mute(input_path)
    if engine is None:
        engine = await get_engine()
    return await JobRunner(engine, events).run(job)


# -------------------- IMAGES --------------------


def image_output_name(filename: str, format_id: str) -> str:
    stem, _ext = split_name(filename)
    return f"{stem}.{get_image_format(format_id).ext}"


async def convert_image(
    input_path: Path,
    settings: EncodeSettings,
    events: Optional[EventLog] = None,
) -> ImageResult:
    """
    Re-encode an image in settings.image_format.

    Quality mode encodes once at settings.image_quality. Size mode searches
    for the quality that lands under settings.target_kb. Lossless formats
    always use quality mode.

    Raises:
        UnsupportedFormatError: unknown image format.
        InitializationError: the codec backend is unavailable.
        OSError / PIL.UnidentifiedImageError: the input cannot be read.
    """
    events = events or EventLog()
    settings.validate()
    fmt = get_image_format(settings.image_format)

    data = await asyncio.to_thread(input_path.read_bytes)
    pixels, width, height = await decode_image(data, input_path.name)
    codec = await get_codec(fmt.id)

    mode = settings.mode
    if mode == "size" and fmt.lossless:
        events.info(f"{fmt.label} is lossless; using quality mode")
        mode = "quality"

    name = image_output_name(input_path.name, fmt.id)
    if mode == "quality":
        events.info(f"Encoding with quality: {settings.image_quality}")
        out = await codec.encode(pixels, width, height, settings.image_quality)
        events.progress(100.0)
        return ImageResult(name, fmt.mime_type, out, settings.image_quality, width, height)

    target_bytes = int(settings.target_kb * 1024)
    events.info(f"Starting search for target size: ~{settings.target_kb:g} KB (slack: {settings.slack:g}%)")
    result = await search_quality_for_size(
        codec, pixels, width, height, target_bytes, settings.slack, settings.iterations, events
    )
    events.progress(100.0)
    return ImageResult(name, fmt.mime_type, result.data, result.quality, width, height, search=result)
