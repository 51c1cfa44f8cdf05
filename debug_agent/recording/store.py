"""Reading and writing recording files."""

import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

import structlog

from ..errors import RecordingLoadError
from .models import Recording

logger = structlog.get_logger()


def resolve_recording_path(name_or_path: Union[str, Path], recordings_dir: Union[str, Path]) -> Path:
    """Resolve a recording reference to a file path.

    Anything ending in ``.json`` is taken as a path; a bare name refers to
    ``<recordings_dir>/<name>.json``.
    """
    reference = str(name_or_path)
    if reference.endswith(".json"):
        return Path(reference)
    return Path(recordings_dir) / f"{reference}.json"


def load_recording(path: Union[str, Path]) -> Recording:
    """Load a recording from disk.

    Raises:
        RecordingLoadError: if the file is missing or is not a recording
    """
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise RecordingLoadError(f"Recording file not found: {path}") from e
    except OSError as e:
        raise RecordingLoadError(f"Could not read recording {path}: {e}") from e

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise RecordingLoadError(f"Recording {path} is not valid JSON: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("events", []), list):
        raise RecordingLoadError(f"Recording {path} has no event list")
    if data.get("metadata") is not None and not isinstance(data["metadata"], dict):
        raise RecordingLoadError(f"Recording {path} has malformed metadata")
    for i, event in enumerate(data.get("events", [])):
        if not isinstance(event, dict):
            raise RecordingLoadError(f"Recording {path} event {i} is not an object")

    recording = Recording.from_dict(data)
    logger.debug("Recording loaded", path=str(path), event_count=recording.event_count)
    return recording


def recording_filename(name: Optional[str] = None) -> str:
    """File name for a recording, derived from its name or the current time."""
    if name:
        return f"{re.sub(r'[^a-zA-Z0-9_-]', '_', name)}.json"
    stamp = datetime.now(timezone.utc).isoformat().replace(":", "-").replace(".", "-")
    return f"recording_{stamp}.json"


def save_recording(recording: Recording, path: Union[str, Path]) -> Path:
    """Write a recording as indented JSON, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(recording.to_dict(), f, indent=2, ensure_ascii=False)

    logger.info(
        "Recording saved",
        path=str(path),
        event_count=recording.event_count,
        duration_s=round((recording.metadata.duration or 0) / 1000),
    )
    return path
