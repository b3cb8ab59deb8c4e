"""Core enums, constants, and record types for the audiobook curator.

Enums:
    GroupType      -- How a book is laid out on disk (single, chapters, multipart).
    FileStatus     -- Per-file write state (unchanged, pending, written, failed).
    ScanStatus     -- Per-group reconciliation state. LOADED_FROM_FILE means a
                      sidecar metadata.json was adopted verbatim.
    ScanMode       -- How a scan treats sidecars and the cache.
    CoverSource    -- Origin of a cover candidate, ranked by trust.
    ErrorCategory  -- Error classification (transient, permanent).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from enum import StrEnum
from pathlib import Path
from typing import Any


class GroupType(StrEnum):
    SINGLE = "single"
    CHAPTERS = "chapters"
    MULTIPART = "multipart"


class FileStatus(StrEnum):
    UNCHANGED = "unchanged"
    PENDING = "pending"
    WRITTEN = "written"
    FAILED = "failed"


class ScanStatus(StrEnum):
    NOT_SCANNED = "not_scanned"
    LOADED_FROM_FILE = "loaded_from_file"
    MERGING = "merging"
    RECONCILED = "reconciled"


class ScanMode(StrEnum):
    """How a scan pass treats existing state.

    normal      -- adopt sidecars, use the cache
    refresh     -- ignore sidecars, keep the cache
    force_fresh -- ignore sidecars, clear the cache first
    """

    NORMAL = "normal"
    REFRESH = "refresh"
    FORCE_FRESH = "force_fresh"


class CoverSource(StrEnum):
    USER = "user"
    ITUNES = "itunes"
    AUDIBLE = "audible"
    EMBEDDED = "embedded"
    GOOGLE_BOOKS = "google_books"
    OPEN_LIBRARY = "open_library"
    UNKNOWN = "unknown"


class ErrorCategory(StrEnum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"


AUDIO_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".m4b",
        ".m4a",
        ".mp3",
        ".flac",
        ".ogg",
        ".opus",
        ".aac",
    }
)

SIDECAR_FILENAME = "metadata.json"


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return str(value).lower()
    text = str(value).strip()
    return text or None


def _str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(v).strip() for v in value if v is not None and str(v).strip()]


@dataclass
class BookMetadata:
    """Canonical metadata for one book-group."""

    title: str
    author: str = "Unknown"
    subtitle: str | None = None
    narrator: str | None = None
    series: str | None = None
    sequence: str | None = None
    genres: list[str] = field(default_factory=list)
    publisher: str | None = None
    year: str | None = None
    description: str | None = None
    isbn: str | None = None
    asin: str | None = None
    language: str | None = None
    cover_url: str | None = None
    cover_mime: str | None = None
    authors: list[str] = field(default_factory=list)
    narrators: list[str] = field(default_factory=list)
    abridged: bool | None = None
    runtime_minutes: int | None = None
    publish_date: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BookMetadata:
        """Build a record from a JSON-shaped dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                continue
            if key in ("genres", "authors", "narrators"):
                values[key] = _str_list(value)
            elif key == "abridged":
                values[key] = None if value is None else bool(value)
            elif key == "runtime_minutes":
                try:
                    values[key] = int(value) if value is not None else None
                except (TypeError, ValueError):
                    values[key] = None
            else:
                values[key] = _opt_str(value)

        title = values.pop("title", None) or ""
        author = values.pop("author", None) or "Unknown"
        return cls(title=title, author=author, **values)


@dataclass
class MetadataChange:
    old: str
    new: str


@dataclass
class FileTags:
    """Best-effort view of the tags currently embedded in one file."""

    title: str | None = None
    artist: str | None = None
    album: str | None = None
    genre: str | None = None
    year: str | None = None
    comment: str | None = None
    composer: str | None = None
    series: str | None = None
    sequence: str | None = None
    asin: str | None = None
    isbn: str | None = None
    publisher: str | None = None
    language: str | None = None
    subtitle: str | None = None


@dataclass
class AudioFile:
    id: str
    path: Path
    filename: str
    changes: dict[str, MetadataChange] = field(default_factory=dict)
    status: FileStatus = FileStatus.UNCHANGED


@dataclass
class BookGroup:
    """A cluster of files judged to be one audiobook."""

    id: str
    name: str
    group_type: GroupType
    metadata: BookMetadata
    files: list[AudioFile] = field(default_factory=list)
    scan_status: ScanStatus = ScanStatus.NOT_SCANNED
    total_changes: int = 0

    @property
    def folder(self) -> Path:
        return self.files[0].path.parent if self.files else Path(self.name)


@dataclass
class CoverCandidate:
    """A cover image candidate. quality_score is always derived from the inputs."""

    url: str
    source: CoverSource = CoverSource.UNKNOWN
    width: int = 0
    height: int = 0
    size_bytes: int = 0
    book_title: str | None = None
    is_best: bool = False

    @property
    def quality_score(self) -> int:
        from .covers import score_candidate

        return score_candidate(self)


@dataclass
class CoverImage:
    """Downloaded cover bytes plus what we learned about them."""

    data: bytes
    mime_type: str
    url: str
    source: CoverSource
    width: int = 0
    height: int = 0


@dataclass
class WriteError:
    item_id: str
    path: str
    error: str
    category: ErrorCategory = ErrorCategory.PERMANENT


@dataclass
class BatchResult:
    """Result summary from a batch run. Per-item failures land in errors."""

    completed: int = 0
    failed: int = 0
    total: int = 0
    errors: list[WriteError] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.failed == 0
