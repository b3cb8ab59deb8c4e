"""Change detection: canonical record vs. the tags currently on disk."""

from __future__ import annotations

from loguru import logger

from ..errors import TagReadError
from ..models import BookGroup, BookMetadata, FileStatus, FileTags, MetadataChange
from .codecs import Changes, is_narrator_credit, read_tags

log = logger.bind(stage="diff")


def _canonical_values(metadata: BookMetadata) -> dict[str, str | None]:
    narrator = "; ".join(metadata.narrators) if metadata.narrators else metadata.narrator
    return {
        "title": metadata.title,
        "author": metadata.author,
        "album": metadata.title,
        "narrator": narrator,
        "genre": ", ".join(metadata.genres) if metadata.genres else None,
        "year": metadata.year,
        "series": metadata.series,
        "sequence": metadata.sequence,
        "asin": metadata.asin,
        "isbn": metadata.isbn,
        "publisher": metadata.publisher,
        "language": metadata.language,
        "subtitle": metadata.subtitle,
        "description": metadata.description,
    }


def _embedded_values(tags: FileTags) -> dict[str, str | None]:
    return {
        "title": tags.title,
        "author": tags.artist,
        "album": tags.album,
        "narrator": tags.composer or tags.comment,
        "genre": tags.genre,
        "year": tags.year,
        "series": tags.series,
        "sequence": tags.sequence,
        "asin": tags.asin,
        "isbn": tags.isbn,
        "publisher": tags.publisher,
        "language": tags.language,
        "subtitle": tags.subtitle,
        "description": tags.comment,
    }


def compute_changes(metadata: BookMetadata, tags: FileTags) -> Changes:
    """Fields whose canonical value is set and differs from (or is missing in) the file."""
    embedded = _embedded_values(tags)
    changes: Changes = {}
    for field, new in _canonical_values(metadata).items():
        if not new:
            continue
        # The writer never stores a narrator credit as the description
        if field == "description" and is_narrator_credit(new):
            continue
        old = embedded.get(field)
        if old is None or old != new:
            changes[field] = MetadataChange(old=old or "", new=new)
    return changes


def calculate_changes(group: BookGroup) -> int:
    """Re-read every file, refresh its change-set and status, return the group total."""
    total = 0
    for file in group.files:
        try:
            tags = read_tags(file.path)
        except TagReadError as e:
            log.warning(f"Cannot read tags: {e}")
            tags = FileTags()
        file.changes = compute_changes(group.metadata, tags)
        file.status = FileStatus.PENDING if file.changes else FileStatus.UNCHANGED
        total += len(file.changes)

    group.total_changes = total
    log.debug(f"{group.name}: {total} pending change(s) across {len(group.files)} file(s)")
    return total
