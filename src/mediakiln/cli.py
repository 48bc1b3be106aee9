"""
Command-line interface for mediakiln.

This is the main entry point for the application.
"""

import argparse
import asyncio
import datetime
import importlib.util
import json
import re
import shutil
import subprocess
import sys
import time
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from PIL import features

from mediakiln import __author__, __license__, __url__, __version__
from mediakiln.commands import format_command, output_name_for, split_name
from mediakiln.config import (
    CFG,
    TOML_AVAILABLE,
    Config,
    apply_config_to_args,
    get_app_dirs,
    load_config_file,
    save_default_config,
)
from mediakiln.converter import (
    clip_media,
    convert_image,
    convert_media,
    image_output_name,
    plan_clip,
    plan_media_conversion,
    plan_mute,
    remove_audio,
)
from mediakiln.engine import get_engine, shutdown_engine
from mediakiln.errors import MediakilnError
from mediakiln.events import EventLog, JSONEventWriter
from mediakiln.formats import AUDIO_BITRATES, AUDIO_CODECS, FORMATS, PRESETS, RESOLUTIONS, get_format
from mediakiln.imaging import IMAGE_FORMATS
from mediakiln.models import CONTROL_MODES, CRF_RANGE
from mediakiln.probe import MetadataProbe
from mediakiln.ui import fmt_hms, fmt_size, make_ui

# -------------------- GLOBAL STATE --------------------

# Global app directories (initialized in main)
APP_DIRS: Dict[str, Path] = {}

ITERATIONS_RANGE = (5, 20)


def _crf(value: str) -> int:
    crf = int(value)
    lo, hi = CRF_RANGE
    if not lo <= crf <= hi:
        raise argparse.ArgumentTypeError(f"CRF must be between {lo} and {hi}")
    return crf


def _quality(value: str) -> int:
    q = int(value)
    if not 0 <= q <= 100:
        raise argparse.ArgumentTypeError("quality must be between 0 and 100")
    return q


def _iterations(value: str) -> int:
    n = int(value)
    lo, hi = ITERATIONS_RANGE
    if not lo <= n <= hi:
        raise argparse.ArgumentTypeError(f"iterations must be between {lo} and {hi}")
    return n


def _positive(value: str) -> float:
    v = float(value)
    if v <= 0:
        raise argparse.ArgumentTypeError("value must be > 0")
    return v


def build_parser() -> argparse.ArgumentParser:
    defaults = Config()
    parser = argparse.ArgumentParser(
        prog="mediakiln",
        description="Convert video, audio and images locally, by quality or by target size.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s convert movie.mov                              # MP4 (H.264) at CRF 23
  %(prog)s convert movie.mov --format webm-vp9 --mode size --target-mb 8
  %(prog)s convert talk.mp4 --format mp3                  # Extract audio
  %(prog)s image photo.png --format avif --mode size --target-kb 200
  %(prog)s clip movie.mp4 --start 00:01:00 --end 00:01:30
  %(prog)s mute movie.mp4
  %(prog)s probe movie.mp4
  %(prog)s -n convert movie.mov --mode size               # Show commands without running
  %(prog)s --show-dirs                                    # Show config/cache/log directories
        """,
    )

    # Version
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        version=f"%(prog)s {__version__}\nAuthor: {__author__}\nLicense: {__license__}\nURL: {__url__}",
    )

    # Output settings
    out_group = parser.add_argument_group("Output settings")
    out_group.add_argument("-o", "--output-dir", default=None, help="Output directory (default: next to input)")

    # Debug/test
    debug_group = parser.add_argument_group("Debug/test")
    debug_group.add_argument("-d", "--debug", action="store_true", help="Show engine output")
    debug_group.add_argument("-n", "--dryrun", action="store_true", help="Print commands without running them")

    # UI settings
    ui_group = parser.add_argument_group("UI settings")
    ui_group.add_argument("--no-progress", action="store_false", dest="progress")
    ui_group.add_argument(
        "--json-progress", action="store_true", help="Emit one JSON object per event on stdout (for scripts)"
    )

    # Utility commands
    util_group = parser.add_argument_group("Utility commands")
    util_group.add_argument("--show-dirs", action="store_true")
    util_group.add_argument("--check-requirements", action="store_true")

    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    # convert
    p = sub.add_parser("convert", help="Convert video/audio (or make a GIF)")
    p.add_argument("file")
    p.add_argument("--format", dest="format_id", choices=list(FORMATS), default=defaults.format_id)
    p.add_argument("--resolution", choices=RESOLUTIONS, default=defaults.resolution)
    p.add_argument("--audio-codec", choices=list(AUDIO_CODECS), default=defaults.audio_codec)
    p.add_argument("--mode", choices=CONTROL_MODES, default=defaults.mode)
    p.add_argument("--crf", type=_crf, default=defaults.crf, help="Constant quality, 18 (best) to 51 (smallest)")
    p.add_argument("--preset", choices=PRESETS, default=defaults.preset)
    p.add_argument("--target-mb", type=_positive, default=defaults.target_mb, help="Target size in MB (size mode)")
    p.add_argument(
        "--audio-bitrate",
        type=int,
        choices=AUDIO_BITRATES,
        default=defaults.audio_bitrate,
        help="Audio kbps (size mode)",
    )
    p.add_argument("--video-floor", type=int, default=defaults.video_floor, help="Minimum video kbps (size mode)")

    # image
    p = sub.add_parser("image", help="Convert an image")
    p.add_argument("file")
    p.add_argument("--format", dest="image_format", choices=list(IMAGE_FORMATS), default=defaults.image_format)
    p.add_argument("--mode", choices=CONTROL_MODES, default=defaults.mode)
    p.add_argument("--quality", dest="image_quality", type=_quality, default=defaults.image_quality)
    p.add_argument("--target-kb", type=_positive, default=defaults.target_kb, help="Target size in KB (size mode)")
    p.add_argument("--slack", type=float, default=defaults.slack, help="Accepted undershoot in percent")
    p.add_argument("--iterations", type=_iterations, default=defaults.iterations, help="Search steps (5-20)")

    # clip
    p = sub.add_parser("clip", help="Cut a segment without re-encoding")
    p.add_argument("file")
    p.add_argument("--start", required=True, help="Start position (HH:MM:SS)")
    p.add_argument("--end", required=True, help="End position (HH:MM:SS)")

    # mute
    p = sub.add_parser("mute", help="Remove audio without re-encoding")
    p.add_argument("file")

    # probe
    p = sub.add_parser("probe", help="Show duration, bitrate and audio details")
    p.add_argument("file")

    return parser


_CONFIG_ARGS = (
    "format_id",
    "resolution",
    "audio_codec",
    "mode",
    "crf",
    "preset",
    "target_mb",
    "audio_bitrate",
    "video_floor",
    "image_format",
    "image_quality",
    "target_kb",
    "slack",
    "iterations",
)


def parse_args(args: Optional[List[str]] = None) -> Tuple[Config, argparse.Namespace]:
    """Parse command-line arguments and return config + the parsed namespace."""
    parser = build_parser()
    parsed_args = parser.parse_args(args)

    cfg = Config(
        output_dir=parsed_args.output_dir,
        debug=parsed_args.debug,
        dryrun=parsed_args.dryrun,
        progress=parsed_args.progress,
        json_progress=parsed_args.json_progress,
    )
    for name in _CONFIG_ARGS:
        if hasattr(parsed_args, name):
            setattr(cfg, name, getattr(parsed_args, name))

    if parsed_args.command is None and not (parsed_args.show_dirs or parsed_args.check_requirements):
        parser.error("a command is required (convert, image, clip, mute, probe)")
    return cfg, parsed_args


# -------------------- PATHS --------------------


def get_log_path(inp: Path) -> Path:
    """Generate log path for input file."""
    logs_dir = APP_DIRS.get("logs", Path.home() / ".local" / "state" / "mediakiln" / "logs")
    logs_dir.mkdir(parents=True, exist_ok=True)

    date_str = datetime.date.today().isoformat()
    safe_name = re.sub(r"[^\w\-.]", "_", inp.stem)[:80]
    return logs_dir / f"{date_str}_{safe_name}.log"


def get_output_path(inp: Path, name: str, cfg: Config) -> Path:
    """Where a result named name is written; never the input itself."""
    out_dir = Path(cfg.output_dir).expanduser() if cfg.output_dir else inp.parent
    out_dir.mkdir(parents=True, exist_ok=True)
    out_path = out_dir / name
    if out_path.resolve() == inp.resolve():
        stem, ext = split_name(name)
        out_path = out_dir / f"{stem}_conv{ext}"
    return out_path


# -------------------- UTILITY COMMANDS --------------------


def _tool_version(binary: str) -> Optional[str]:
    try:
        result = subprocess.run([binary, "-version"], capture_output=True, text=True, timeout=5)
    except (OSError, subprocess.SubprocessError):
        return None
    if result.returncode != 0:
        return None
    return result.stdout.split("\n")[0] if result.stdout else "unknown"


def check_requirements(cfg: Config) -> int:
    """Check system requirements."""
    print(f"mediakiln v{__version__} - Requirements Check")
    print("=" * 50)
    print()

    all_ok = True

    print("System requirements (mandatory):")
    print("-" * 40)

    for binary in (cfg.ffmpeg, cfg.ffprobe):
        if shutil.which(binary) is None:
            print(f"  ✗ {binary}: NOT FOUND")
            all_ok = False
            continue
        version_line = _tool_version(binary)
        if version_line is None:
            print(f"  ✗ {binary}: installed but returned error")
            all_ok = False
        else:
            print(f"  ✓ {binary}: {version_line}")

    py_version = sys.version_info
    if py_version >= (3, 9):
        print(f"  ✓ Python: {py_version.major}.{py_version.minor}.{py_version.micro}")
    else:
        print(f"  ✗ Python: {py_version.major}.{py_version.minor} (need 3.9+)")
        all_ok = False

    print()
    print("Image formats:")
    print("-" * 40)
    for fmt in IMAGE_FORMATS.values():
        if fmt.plugin:
            ok = importlib.util.find_spec(fmt.plugin) is not None
        else:
            ok = fmt.feature is None or bool(features.check(fmt.feature))
        print(f"  {'✓' if ok else '○'} {fmt.label}: {'available' if ok else 'not available'}")

    print()
    print("Optional dependencies:")
    print("-" * 40)
    print(f"  {'✓' if TOML_AVAILABLE else '○'} TOML support: {'available' if TOML_AVAILABLE else 'not available'}")

    print()
    if all_ok:
        print("✓ All requirements satisfied")
        return 0
    else:
        print("✗ Some requirements missing")
        return 1


def handle_utility_commands(cfg: Config, args: argparse.Namespace) -> Optional[int]:
    """Handle utility commands that exit immediately."""
    if args.check_requirements:
        return check_requirements(cfg)

    if args.show_dirs:
        print("mediakiln directories:")
        print()
        print("User directories (XDG):")
        print(f"  Config:  {APP_DIRS['config']}")
        print(f"  State:   {APP_DIRS['state']}")
        print(f"  Logs:    {APP_DIRS['logs']}")
        print(f"  Cache:   {APP_DIRS['cache']}")
        print(f"  Tmp:     {APP_DIRS['tmp']}")
        return 0

    return None


# -------------------- COMMANDS --------------------

def _print_json(kind: str, inp: Path, **fields: Any) -> None:
    """One JSON line on stdout, same framing as JSONEventWriter."""
    print(json.dumps({"kind": kind, "source": inp.name, **fields}), flush=True)


_LABELS = {
    "convert": "Convert",
    "image": "Image",
    "clip": "Clip",
    "mute": "Remove audio",
    "probe": "Probe",
}


def _display_name(args: argparse.Namespace, inp: Path) -> str:
    if args.command == "convert":
        return output_name_for(inp.name, get_format(args.format_id))
    if args.command == "image":
        return image_output_name(inp.name, args.image_format)
    if args.command == "clip":
        return plan_clip(inp, args.start, args.end).display_name
    if args.command == "mute":
        return plan_mute(inp).display_name
    return inp.name


async def _dryrun(args: argparse.Namespace, inp: Path, cfg: Config, events: EventLog) -> List[str]:
    """Return the lines a dry run prints: compiled commands and budget."""
    if args.command == "convert":
        plan = await plan_media_conversion(inp, cfg.encode_settings(), events=events)
        lines = [f"DRYRUN: {c}" for c in plan.commands]
        if plan.budget is not None:
            b = plan.budget
            lines.append(
                f"Budget: video {b.video_kbps}k, audio {b.audio_kbps}k, "
                f"minimum {b.min_possible_mb:.2f} MB, estimated {plan.estimated_mb:.2f} MB"
                + (" (target impossible)" if b.is_impossible else "")
            )
        return lines
    if args.command == "clip":
        job = plan_clip(inp, args.start, args.end)
    elif args.command == "mute":
        job = plan_mute(inp)
    else:
        settings = cfg.encode_settings()
        if settings.mode == "size":
            return [f"DRYRUN: search {settings.image_format} quality for ~{settings.target_kb:g} KB"]
        return [f"DRYRUN: encode {settings.image_format} at quality {settings.image_quality}"]

    return [f"DRYRUN: {format_command(p.argv)}" for p in job.passes]


async def _probe(inp: Path, cfg: Config, events: EventLog, ui: Any) -> int:
    engine = await get_engine(cfg)
    meta = await MetadataProbe(engine).probe(inp, events)
    if ui is None:
        _print_json("metadata", inp, **asdict(meta))
        return 0
    ui.log(f"Duration:      {fmt_hms(meta.duration)} ({meta.duration:.2f}s)")
    ui.log(f"Bitrate:       {meta.total_bitrate} kb/s")
    ui.log(f"Audio:         {'yes' if meta.has_audio else 'no'}")
    ui.log(f"Audio codec:   {meta.audio_codec}")
    ui.log(f"Audio bitrate: {meta.audio_bitrate} kb/s")
    return 0


async def run_command(args: argparse.Namespace, cfg: Config) -> int:
    """Run one sub-command. Returns the process exit code."""
    inp = Path(args.file).expanduser()
    ui = None if cfg.json_progress else make_ui(progress=cfg.progress, verbose=cfg.debug)
    listener = JSONEventWriter(source=inp.name) if ui is None else ui
    events = EventLog(log_path=get_log_path(inp), listeners=[listener])

    def fail(message: str) -> int:
        if ui is None:
            _print_json("result", inp, ok=False, error=message)
        else:
            ui.failure(message)
        return 2

    if not inp.is_file():
        return fail(f"File not found: {inp}")

    start_time = time.time()
    try:
        if args.command == "probe":
            return await _probe(inp, cfg, events, ui)

        if ui is not None:
            ui.start(_LABELS[args.command], inp.name, _display_name(args, inp))

        if cfg.dryrun:
            for line in await _dryrun(args, inp, cfg, events):
                if ui is None:
                    _print_json("dryrun", inp, message=line)
                else:
                    ui.log(line)
            return 0

        if args.command == "image":
            result: Any = await convert_image(inp, cfg.encode_settings(), events)
        else:
            engine = await get_engine(cfg)
            if args.command == "convert":
                result = await convert_media(inp, cfg.encode_settings(), engine, events)
            elif args.command == "clip":
                result = await clip_media(inp, args.start, args.end, engine, events)
            else:
                result = await remove_audio(inp, engine, events)

        out_path = get_output_path(inp, result.name, cfg)
        await asyncio.to_thread(out_path.write_bytes, result.data)
    except (MediakilnError, ValueError, OSError) as e:
        return fail(str(e))
    finally:
        if ui is not None:
            ui.stop()
        await shutdown_engine()

    elapsed = time.time() - start_time
    events.info(f"Saved {out_path} ({fmt_size(result.size)})")
    if ui is None:
        _print_json("result", inp, ok=True, output=str(out_path), size=result.size)
    else:
        ui.success(str(out_path), result.size, elapsed)
    return 0


# -------------------- MAIN --------------------


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    global APP_DIRS

    # Parse arguments
    cfg, args = parse_args(argv)

    # Initialize directories
    APP_DIRS = get_app_dirs()

    # Create default config if needed
    save_default_config(APP_DIRS["config"])

    # Load config file
    file_config = load_config_file(APP_DIRS["config"])
    if file_config:
        apply_config_to_args(file_config, cfg)

    # Update global config
    CFG.__dict__.update(cfg.__dict__)

    # Handle utility commands
    result = handle_utility_commands(cfg, args)
    if result is not None:
        return result

    try:
        return asyncio.run(run_command(args, cfg))
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
