"""Template-based file and folder renaming from the canonical record.

Templates mix literal text with optional segments in braces. A segment
names one or more fields and renders only when every field it names has a
value; "a|b" falls back to b when a is empty:

    {author} - {[series #sequence] }{title}{ (year)}
    -> "Frank Herbert - [Dune #2] Dune Messiah (1969)"
    -> "Frank Herbert - Dune Messiah" (no series, no year)

Folder templates use "/" between path components and are rooted at the
library root (by default the parent of the book's folder).
"""

from __future__ import annotations

import re
import shutil
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from .errors import ConfigError, FilePreconditionError
from .models import AudioFile, BookGroup, BookMetadata

log = logger.bind(stage="rename")

FIELDS: tuple[str, ...] = ("author", "title", "series", "sequence", "year", "narrator")

# name -> (file template, folder template)
TEMPLATES: dict[str, tuple[str, str | None]] = {
    "default": ("{author} - {[series #sequence] }{title}{ (year)}", None),
    "simple": ("{author} - {title}", None),
    "series-first": ("{[series #sequence] }{title} - {author}", None),
    "audiobookshelf": ("{author} - {series|title}{ #sequence}", "{author}/{series|title}"),
    "plex": ("{title}{ - Part sequence}", "{author}/{title}{ (year)}"),
}

_FIELD = "|".join(FIELDS)
_REFERENCE_RE = re.compile(rf"\b(?:{_FIELD})(?:\|(?:{_FIELD}))*\b")
_SEGMENT_RE = re.compile(r"\{([^{}]*)\}")


@dataclass
class RenamePlan:
    file: AudioFile
    target: Path

    @property
    def changed(self) -> bool:
        return self.file.path != self.target


def sanitize_filename(filename: str) -> str:
    """Sanitize a filename component (not a full path).

    Replaces unsafe chars with underscores, removes leading dots,
    collapses repeated underscores, truncates to 255 bytes preserving extension.
    """
    sanitized = re.sub(r'[/\\:"*?<>|;]+', "_", filename)
    sanitized = re.sub(r"^[._]+", "", sanitized)
    sanitized = re.sub(r"[._]+$", "", sanitized)
    sanitized = re.sub(r"__+", "_", sanitized)
    sanitized = re.sub(r"\s+", " ", sanitized).strip()

    if len(sanitized.encode("utf-8")) > 255:
        p = Path(sanitized)
        ext, stem = p.suffix, p.stem
        if ext:
            while len((stem + ext).encode("utf-8")) > 255 and stem:
                stem = stem[:-1]
            sanitized = stem + ext
        else:
            while len(sanitized.encode("utf-8")) > 255 and sanitized:
                sanitized = sanitized[:-1]

    return sanitized


def resolve_template(name_or_template: str) -> tuple[str, str | None]:
    """A built-in template by name, or a literal file template."""
    if name_or_template in TEMPLATES:
        return TEMPLATES[name_or_template]
    validate_template(name_or_template)
    return name_or_template, None


def validate_template(template: str) -> None:
    """Raise ConfigError for unbalanced braces or a segment naming no field."""
    stripped = _SEGMENT_RE.sub("", template)
    if "{" in stripped or "}" in stripped:
        raise ConfigError(f"Unbalanced braces in rename template {template!r}")
    for segment in _SEGMENT_RE.findall(template):
        if not _REFERENCE_RE.search(segment):
            raise ConfigError(
                f"Template segment {{{segment}}} names no field (one of {', '.join(FIELDS)})"
            )


def template_values(metadata: BookMetadata) -> dict[str, str]:
    values = {
        "author": metadata.author if metadata.author != "Unknown" else "",
        "title": metadata.title,
        "series": metadata.series,
        "sequence": metadata.sequence,
        "year": metadata.year,
        "narrator": metadata.narrator,
    }
    return {k: sanitize_filename(v) if v else "" for k, v in values.items()}


def render_template(template: str, values: dict[str, str]) -> str:
    """Fill a template; segments with a missing field are dropped whole."""
    validate_template(template)

    def fill_segment(match: re.Match) -> str:
        missing = False

        def fill_reference(ref: re.Match) -> str:
            nonlocal missing
            for name in ref.group(0).split("|"):
                if values.get(name):
                    return values[name]
            missing = True
            return ""

        rendered = _REFERENCE_RE.sub(fill_reference, match.group(1))
        return "" if missing else rendered

    text = _SEGMENT_RE.sub(fill_segment, template)
    text = re.sub(r"\s+", " ", text)
    return text.strip(" -")


def _folder_for(group: BookGroup, folder_template: str | None, library_root: Path | None) -> Path:
    if not folder_template:
        return group.folder
    root = library_root or group.folder.parent
    parts = [
        sanitize_filename(part)
        for part in render_template(folder_template, template_values(group.metadata)).split("/")
    ]
    parts = [p for p in parts if p]
    return root.joinpath(*parts) if parts else group.folder


def plan_group(
    group: BookGroup,
    file_template: str,
    folder_template: str | None = None,
    library_root: Path | None = None,
) -> list[RenamePlan]:
    """Target path for every file of group.

    Multi-file books get a " - Part N" suffix, numbered in file order and
    zero-padded to the width of the file count.
    """
    values = template_values(group.metadata)
    stem = render_template(file_template, values) or values["title"] or group.name
    folder = _folder_for(group, folder_template, library_root)

    count = len(group.files)
    width = len(str(count))
    plans = []
    for idx, file in enumerate(group.files, start=1):
        name = f"{stem} - Part {idx:0{width}d}" if count > 1 else stem
        target = folder / sanitize_filename(name + file.path.suffix)
        plans.append(RenamePlan(file=file, target=target))
    return plans


def move_file(source: Path, target: Path, stop_at: Path | None = None) -> Path:
    """Move source to target, refusing to overwrite. Returns target.

    Empty folders left behind are removed up to stop_at.
    """
    if not source.is_file():
        raise FilePreconditionError(source, "file does not exist")
    if source == target:
        return target
    if target.exists():
        raise FilePreconditionError(source, f"target already exists: {target}")

    target.parent.mkdir(parents=True, exist_ok=True)
    log.info(f"Rename {source} -> {target}")
    shutil.move(str(source), str(target))

    if source.parent != target.parent:
        _cleanup_empty_parents(source.parent, stop_at)
    return target


def _cleanup_empty_parents(directory: Path, stop_at: Path | None) -> None:
    """Walk up from directory removing empty dirs until stop_at or a non-empty dir."""
    current = directory
    while current != stop_at and current != current.parent:
        try:
            if current.is_dir() and not any(current.iterdir()):
                log.debug(f"Removed empty dir: {current}")
                current.rmdir()
            else:
                break
        except OSError:
            break
        current = current.parent
