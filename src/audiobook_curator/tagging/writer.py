"""Apply a change-set to one audio file: precondition, backup, temp-copy write, swap."""

from __future__ import annotations

import shutil
from pathlib import Path

from loguru import logger

from ..errors import BackupError, CuratorError, FilePreconditionError, TagWriteError
from ..models import AudioFile, FileStatus
from .codecs import Changes, TagFamily, codec_for

log = logger.bind(stage="write")

BACKUP_SUFFIX = ".backup"


def backup_path(path: Path) -> Path:
    return path.with_name(path.name + BACKUP_SUFFIX)


def write_file_tags(path: Path, changes: Changes, backup: bool = True) -> None:
    """Write changes into path.

    The codec runs against a sibling temp copy; the original is only
    replaced once the codec has saved successfully.

    Raises:
        FilePreconditionError: path is missing or empty.
        UnsupportedFormatError: no codec for the extension.
        BackupError: backup requested but the copy failed (nothing written).
        TagWriteError: the codec failed (original untouched).
    """
    path = Path(path)
    log.debug(f"write_file_tags(path={path.name}, fields={sorted(changes)}, backup={backup})")

    if not path.is_file():
        raise FilePreconditionError(path, "file not found")
    if path.stat().st_size == 0:
        raise FilePreconditionError(path, "file is empty")

    codec = codec_for(path)
    if codec.family == TagFamily.UNSUPPORTED:
        codec.apply(path, changes)  # raises UnsupportedFormatError

    if not changes:
        log.debug(f"No changes for {path.name}")
        return

    if backup:
        target = backup_path(path)
        try:
            shutil.copy2(path, target)
        except OSError as e:
            raise BackupError(path, f"backup to {target.name} failed: {e}") from e
        log.debug(f"Backed up {path.name} -> {target.name}")

    # Keep the extension; codecs dispatch on it
    temp_file = path.with_name(f".{path.stem}.tmp{path.suffix}")
    try:
        shutil.copy2(path, temp_file)
        codec.apply(temp_file, changes)
        temp_file.replace(path)
    except Exception as e:
        temp_file.unlink(missing_ok=True)
        raise TagWriteError(path, str(e) or type(e).__name__) from e

    log.info(f"Wrote {len(changes)} field(s) to {path.name}")


def write_audio_file(file: AudioFile, backup: bool = True) -> None:
    """Write a file's pending changes and record the outcome on its status."""
    try:
        write_file_tags(file.path, file.changes, backup=backup)
    except CuratorError:
        file.status = FileStatus.FAILED
        raise
    file.status = FileStatus.WRITTEN
