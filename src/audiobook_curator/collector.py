"""Walk library paths and group audio files into books.

Every folder that directly contains audio files becomes one BookGroup.
Files inside a group are sorted by filename. Group and file ids are
stable 16-char hashes of their paths, so repeated scans agree.
"""

from __future__ import annotations

import hashlib
import os
import re
from collections.abc import Iterable
from pathlib import Path

from loguru import logger

from .concurrency import CancelToken
from .models import (
    AUDIO_EXTENSIONS,
    AudioFile,
    BookGroup,
    BookMetadata,
    GroupType,
    ScanMode,
    ScanStatus,
)
from .sidecar import read_sidecar

log = logger.bind(stage="collect")

BACKUP_DIR_NAMES: frozenset[str] = frozenset({"backups", ".backups"})

MULTI_PART_KEYWORDS: tuple[str, ...] = (
    "part", "disk", "disc", "cd", "chapter", "chap", "ch.",
    "track", "section", "segment", "volume", "vol.", "book",
    "episode", "ep.", "side",
)

_LEADING_NUM_RE = re.compile(r"^\d{1,3}[\s._-]")
_ROMAN_NUMERAL_RE = re.compile(
    r"\b(i{1,3}|iv|vi{0,3}|ix|xi{0,3}|xiv|xvi{0,3}|xix|xxi{0,3})[\s._-]",
    re.IGNORECASE,
)
_PART_NUM_RE = re.compile(
    r"(pt|part|ch|chap|chapter|ep|episode|sec|section|track|trk)\.?\s*\d",
    re.IGNORECASE,
)


def path_hash(path: Path) -> str:
    """16-char hex id derived from a path."""
    return hashlib.sha256(f"{path}\n".encode()).hexdigest()[:16]


def _is_backup_dir(name: str) -> bool:
    return name.startswith("backup_") or name in BACKUP_DIR_NAMES


def _is_audio_file(path: Path) -> bool:
    name = path.name
    if name.startswith("._") or name.endswith(".bak"):
        return False
    return path.suffix.lower() in AUDIO_EXTENSIONS


def find_audio_files(root: Path) -> list[Path]:
    """All audio files under root (or root itself), skipping backup dirs."""
    if root.is_file():
        return [root] if _is_audio_file(root) else []
    if not root.is_dir():
        log.warning(f"Path does not exist: {root}")
        return []

    found: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root, followlinks=True):
        skipped = [d for d in dirnames if _is_backup_dir(d)]
        for d in skipped:
            log.debug(f"Skipping backup directory: {Path(dirpath) / d}")
        dirnames[:] = sorted(d for d in dirnames if not _is_backup_dir(d))
        for name in filenames:
            path = Path(dirpath) / name
            if _is_audio_file(path):
                found.append(path)
    return found


def is_multi_part_filename(filename: str) -> bool:
    """Whether a filename looks like one piece of a chapter/part set."""
    lower = filename.lower()
    if any(k in lower for k in MULTI_PART_KEYWORDS):
        return True
    return bool(
        _LEADING_NUM_RE.match(lower)
        or _ROMAN_NUMERAL_RE.search(lower)
        or _PART_NUM_RE.search(lower)
    )


def detect_group_type(filenames: list[str]) -> GroupType:
    if len(filenames) == 1:
        return GroupType.SINGLE
    if any(is_multi_part_filename(f) for f in filenames):
        return GroupType.MULTIPART
    return GroupType.CHAPTERS


def build_group(folder: Path, files: list[Path], mode: ScanMode = ScanMode.NORMAL) -> BookGroup:
    """Create a group for one folder, adopting its sidecar in normal mode."""
    files = sorted(files, key=lambda p: p.name)
    name = folder.name or str(folder)

    group = BookGroup(
        id=path_hash(folder),
        name=name,
        group_type=detect_group_type([f.name for f in files]),
        metadata=BookMetadata(title=name, author="Unknown", authors=["Unknown"]),
        files=[AudioFile(id=path_hash(f), path=f, filename=f.name) for f in files],
    )

    if mode == ScanMode.NORMAL:
        stored = read_sidecar(folder)
        if stored is not None:
            group.metadata = stored
            group.scan_status = ScanStatus.LOADED_FROM_FILE
            log.debug(f"Adopted sidecar for {name!r}")

    return group


def collect_groups(
    paths: Iterable[Path],
    mode: ScanMode = ScanMode.NORMAL,
    cancel: CancelToken | None = None,
) -> list[BookGroup]:
    """Walk paths and return one group per audio-bearing folder, sorted by folder.

    Returns an empty list if cancellation is requested between paths.
    """
    by_folder: dict[Path, list[Path]] = {}
    for root in paths:
        if cancel is not None and cancel.cancelled:
            log.info("Collection cancelled")
            return []
        for f in find_audio_files(Path(root)):
            by_folder.setdefault(f.parent, []).append(f)

    total_files = sum(len(v) for v in by_folder.values())
    log.info(f"Collected {total_files} audio files in {len(by_folder)} folders")

    return [build_group(folder, files, mode) for folder, files in sorted(by_folder.items())]
