"""metadata.json sidecar records stored beside a book's audio files."""

from __future__ import annotations

import json
from pathlib import Path

from loguru import logger

from .models import SIDECAR_FILENAME, BookMetadata

log = logger.bind(stage="sidecar")


def sidecar_path(folder: Path) -> Path:
    return folder / SIDECAR_FILENAME


def read_sidecar(folder: Path) -> BookMetadata | None:
    """Load the sidecar record for a book folder.

    Returns None (with a warning for anything but a missing file) when the
    record is absent, unreadable, or lacks a title.
    """
    path = sidecar_path(folder)
    if not path.is_file():
        return None

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        log.warning(f"Ignoring unreadable sidecar {path}: {e}")
        return None

    if not isinstance(data, dict):
        log.warning(f"Ignoring sidecar {path}: not a JSON object")
        return None

    metadata = BookMetadata.from_dict(data)
    if not metadata.title:
        log.warning(f"Ignoring sidecar {path}: no title")
        return None

    log.debug(f"Loaded sidecar {path}")
    return metadata


def write_sidecar(folder: Path, metadata: BookMetadata) -> Path:
    """Write the record as indented JSON via a temp file and atomic rename."""
    path = sidecar_path(folder)
    temp_file = path.with_name(path.name + ".tmp")
    temp_file.write_text(
        json.dumps(metadata.to_dict(), indent=2, ensure_ascii=False) + "\n",
        encoding="utf-8",
    )
    temp_file.replace(path)
    log.debug(f"Wrote sidecar {path}")
    return path
