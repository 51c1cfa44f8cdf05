"""Main entry point for the debug agent CLI."""

import argparse
import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import Callable, Optional

import structlog

from .config import get_settings
from .errors import DebugAgentError
from .inspector import format_report, inspect_recording
from .recording.recorder import BrowserRecorder
from .recording.store import load_recording
from .replay.engine import Replay
from .replay.instrumentation import load_instrumentation_file
from .replay.models import ReplayOptions
from .utils.logging import configure_logging, log_operation

logger = structlog.get_logger()

MIN_SPEED = 0.5
MAX_SPEED = 3.0


def _on_interrupt(callback: Callable[[], None]) -> None:
    """Route Ctrl+C to ``callback`` instead of raising KeyboardInterrupt."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, callback)
    except (NotImplementedError, RuntimeError):
        # Windows event loops have no signal handler support
        logger.debug("Signal handlers unavailable, Ctrl+C will abort")


def _error(message: str) -> int:
    print(f"Error: {message}", file=sys.stderr)
    return 1


async def record_session(filepath: str) -> int:
    """Record a browser session until the browser closes or Ctrl+C."""
    path = Path(filepath)
    if path.suffix != ".json":
        path = path.with_name(path.name + ".json")
    path = path.resolve()
    path.parent.mkdir(parents=True, exist_ok=True)

    recorder = BrowserRecorder(output_path=path)
    await recorder.start()
    _on_interrupt(recorder.request_stop)

    print(f"Recording to {path}")
    print("Close all browser tabs or press Ctrl+C to stop recording")

    try:
        await recorder.wait_until_closed()
        saved = await recorder.stop(path.stem)
    finally:
        await recorder.cleanup()

    print(f"Recording saved: {saved}")
    return 0


def inspect_file(filepath: str, show_events: bool = False, schema: bool = False, sample: int = 2) -> int:
    """Print the structure of a recording."""
    path = Path(filepath).resolve()
    if not path.exists():
        return _error(f"Recording file not found: {path}")

    recording = load_recording(path)
    report = inspect_recording(recording, sample=sample)
    print(format_report(report, schema=schema, show_events=show_events or not schema))
    return 0


async def replay_session(
    filepath: str,
    speed: float = 1.0,
    headless: bool = False,
    devtools: bool = False,
    instrument: Optional[str] = None,
    url: Optional[str] = None,
) -> int:
    """Replay a recording and print the instrumentation result."""
    if not MIN_SPEED <= speed <= MAX_SPEED:
        return _error(f"Speed must be between {MIN_SPEED} and {MAX_SPEED}")

    path = Path(filepath).resolve()
    if not path.exists():
        return _error(f"Recording file not found: {path}")

    replay = Replay(ReplayOptions(speed=speed, headless=headless, devtools=devtools, url_override=url))
    if instrument:
        instrument_path = Path(instrument).resolve()
        replay.set_instrumentation_code(load_instrumentation_file(instrument_path))
        print(f"Loaded instrumentation from: {instrument_path}")

    _on_interrupt(replay.stop)

    with log_operation("replay", logger, recording=str(path), speed=speed) as op:
        context = await replay.run(path)
        op["events_replayed"] = context.events_replayed
        op["stopped"] = context.stopped

    if context.final_results is not None:
        print("\nInstrumentation Results:")
        print(json.dumps(context.final_results, indent=2, default=str))

    print("\nReplay completed" if context.completed else "\nReplay stopped")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="debug-agent",
        description="Record and replay browser sessions for debugging and analysis",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    record = subparsers.add_parser(
        "record",
        help="Start recording a browser session to the specified file path",
    )
    record.add_argument("filepath", help="Where the recording JSON is saved (e.g. ./recording.json)")

    inspect = subparsers.add_parser(
        "inspect",
        help="Inspect a recording file to understand its structure and events",
    )
    inspect.add_argument("filepath", help="Path to the recording JSON file")
    inspect.add_argument("--events", action="store_true", help="List all event types and counts")
    inspect.add_argument(
        "--schema",
        action="store_true",
        help="Output the event schema for instrumentation development",
    )
    inspect.add_argument(
        "--sample",
        type=int,
        default=2,
        help="Show sample events of each type (max n per type, default: 2)",
    )

    replay = subparsers.add_parser("replay", help="Replay a recorded browser session")
    replay.add_argument("filepath", help="Path to the recording JSON file")
    replay.add_argument(
        "--speed", "-s",
        type=float,
        default=1.0,
        help="Playback speed multiplier (0.5 to 3, default: 1)",
    )
    replay.add_argument("--headless", action="store_true", help="Run without a visible browser window")
    replay.add_argument("--devtools", action="store_true", help="Open Chrome DevTools during replay")
    replay.add_argument(
        "--instrument", "-i",
        help="Python instrumentation file with replay hooks",
    )
    replay.add_argument(
        "--url",
        help="Override the base URL for all navigation events (e.g. http://localhost:3000)",
    )

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Run one CLI command and return its exit code."""
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings.log_level, json_format=settings.log_json)

    try:
        if args.command == "record":
            return asyncio.run(record_session(args.filepath))
        if args.command == "inspect":
            return inspect_file(args.filepath, args.events, args.schema, args.sample)
        return asyncio.run(
            replay_session(
                args.filepath,
                speed=args.speed,
                headless=args.headless,
                devtools=args.devtools,
                instrument=args.instrument,
                url=args.url,
            )
        )
    except DebugAgentError as e:
        return _error(str(e))


def cli():
    """Command-line interface."""
    sys.exit(main())


if __name__ == "__main__":
    cli()
