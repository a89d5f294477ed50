"""Thin CLI entry point — loads a segment script and runs the pipeline."""

import argparse
import logging
import sys
from pathlib import Path

from tapeforge import ffutil
from tapeforge.config import load_config, save_config
from tapeforge.engine import Pipeline
from tapeforge.errors import TapeForgeError
from tapeforge.noise import encode_profile
from tapeforge.script import load_script
from tapeforge.timecode import parse_range


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(message)s",
        datefmt="%c",
    )


def _transcode(args) -> int:
    config = load_config(args.config)
    script_path = args.script.resolve()
    directives = load_script(script_path)
    pipeline = Pipeline(config, workdir=script_path.parent)
    report = pipeline.run(directives)

    print()
    for result in report.results:
        print(f"  {result.path}: {result.state.value} ({len(result.stages)}/{result.stage_count} stages run)")
    for failure in report.failures:
        print(f"  {failure.path}: failed while {failure.stage}", file=sys.stderr)
    return 0 if report.ok else 1


def _profile(args) -> int:
    config = load_config(args.config)
    ffutil.check_tools("ffmpeg", "sox")
    profile = ffutil.sample_noise_profile(args.recording, parse_range(args.range), config.niceness)
    config.noise_profile = encode_profile(profile)
    path = save_config(config, args.config)
    print(f"Updated {path} with default noise profile")
    return 0


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(
        prog="tapeforge",
        description="TapeForge — transcode archival captures into segments.",
    )
    parser.add_argument("--config", "-c", type=Path, help="Configuration file (JSON)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log external commands")
    sub = parser.add_subparsers(dest="command")

    tr = sub.add_parser("transcode", help="Run a segment script")
    tr.add_argument("script", type=Path, help="Segment script next to the original recording")

    prof = sub.add_parser("profile", help="Save a default noise profile from a silent recording")
    prof.add_argument("recording", type=Path, help="Recording of background noise")
    prof.add_argument("range", help="Silent part of the recording, e.g. 00:00:00-00:00:01")

    serve = sub.add_parser("serve", help="Launch the web UI")
    serve.add_argument("--port", type=int, default=8321, help="Port to listen on")
    serve.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind to")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    _setup_logging(args.verbose)

    if args.command == "serve":
        from tapeforge.web import create_app
        app = create_app(config_file=args.config)
        print(f"TapeForge web UI: http://{args.host}:{args.port}")
        app.run(host=args.host, port=args.port, debug=False)
        return

    handler = _transcode if args.command == "transcode" else _profile
    try:
        sys.exit(handler(args))
    except TapeForgeError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
