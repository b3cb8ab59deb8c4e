"""Cover candidate scoring and source-priority selection.

score = resolution (0-50) + source trust (0-30) + aspect ratio (0-20),
clamped to [0, 100]. Scoring is a pure function of the candidate's
dimensions and source.

User-supplied covers (a file or a URL) and artwork already embedded in the
audio are turned into CoverImages here as well.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from pathlib import Path

from loguru import logger

from .api import covers as cover_api
from .errors import FilePreconditionError, SourceError
from .models import CoverCandidate, CoverImage, CoverSource
from .tagging.codecs import read_cover

log = logger.bind(stage="covers")

SOURCE_TRUST: dict[CoverSource, int] = {
    CoverSource.USER: 30,
    CoverSource.ITUNES: 28,
    CoverSource.AUDIBLE: 28,
    CoverSource.EMBEDDED: 22,
    CoverSource.GOOGLE_BOOKS: 20,
    CoverSource.OPEN_LIBRARY: 15,
    CoverSource.UNKNOWN: 5,
}

# (minimum short edge, points), checked top-down
RESOLUTION_BANDS: tuple[tuple[int, int], ...] = (
    (2000, 50),
    (1500, 45),
    (1000, 40),
    (500, 30),
    (300, 20),
)

# A lookup returns the URLs to try for one source, in order
UrlLookup = Callable[[], list[str]]

IMAGE_MIME_TYPES: dict[str, str] = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
}


def resolution_score(width: int, height: int) -> int:
    short_edge = min(width, height)
    for minimum, points in RESOLUTION_BANDS:
        if short_edge >= minimum:
            return points
    return 10


def source_score(source: CoverSource) -> int:
    return SOURCE_TRUST.get(source, SOURCE_TRUST[CoverSource.UNKNOWN])


def aspect_score(width: int, height: int) -> int:
    if width <= 0 or height <= 0:
        return 0
    ratio = height / width
    if 0.9 <= ratio <= 1.1:
        return 20
    if 1.3 <= ratio <= 1.7:
        return 18
    if 0.6 <= ratio <= 1.4:
        return 10
    return 5


def score_candidate(candidate: CoverCandidate) -> int:
    total = (
        resolution_score(candidate.width, candidate.height)
        + source_score(candidate.source)
        + aspect_score(candidate.width, candidate.height)
    )
    return max(0, min(100, total))


def rank_candidates(candidates: Iterable[CoverCandidate]) -> list[CoverCandidate]:
    """Sort candidates by score (descending) and flag the first as best."""
    ranked = sorted(candidates, key=score_candidate, reverse=True)
    for i, candidate in enumerate(ranked):
        candidate.is_best = i == 0
    if ranked:
        best = ranked[0]
        log.debug(
            f"Best cover: {best.source} {best.width}x{best.height} "
            f"score={best.quality_score} of {len(ranked)}"
        )
    return ranked


def cover_lookups(
    title: str,
    author: str = "",
    asin: str | None = None,
    isbn: str | None = None,
    audible_url: str | None = None,
    google_url: str | None = None,
    timeout: float = 15.0,
) -> list[tuple[CoverSource, UrlLookup]]:
    """Build the per-source URL lookups in priority order.

    Lookups are lazy so a source further down the list is never queried
    once a higher-priority source has produced an image.
    """
    return [
        (CoverSource.ITUNES, lambda: cover_api.itunes_artwork_urls(title, author, timeout)),
        (CoverSource.AUDIBLE, lambda: cover_api.audible_artwork_urls(asin, audible_url)),
        (CoverSource.GOOGLE_BOOKS, lambda: [google_url] if google_url else []),
        (
            CoverSource.OPEN_LIBRARY,
            lambda: cover_api.open_library_artwork_urls(title, author, isbn, timeout),
        ),
    ]


def select_cover(
    lookups: Iterable[tuple[CoverSource, UrlLookup]],
    timeout: float = 15.0,
) -> CoverImage | None:
    """Return the first image that downloads, walking sources in priority order."""
    for source, lookup in lookups:
        for url in lookup():
            image = cover_api.download_image(url, source, timeout=timeout)
            if image is not None:
                return image
    log.debug("No cover found from any source")
    return None


def search_covers(
    lookups: Iterable[tuple[CoverSource, UrlLookup]],
    book_title: str | None = None,
    timeout: float = 15.0,
    extra: Iterable[CoverCandidate] = (),
) -> list[CoverCandidate]:
    """Download every candidate from every source and rank them all, extra included."""
    candidates = list(extra)
    for source, lookup in lookups:
        for url in lookup():
            image = cover_api.download_image(url, source, timeout=timeout)
            if image is not None:
                candidates.append(candidate_from_image(image, book_title))
    return rank_candidates(candidates)


def candidate_from_image(image: CoverImage, book_title: str | None = None) -> CoverCandidate:
    return CoverCandidate(
        url=image.url,
        source=image.source,
        width=image.width,
        height=image.height,
        size_bytes=len(image.data),
        book_title=book_title,
    )


def embedded_cover(path: Path) -> CoverImage | None:
    """Artwork already embedded in an audio file."""
    found = read_cover(path)
    if found is None:
        return None
    data, mime_type = found
    width, height = cover_api.image_dimensions(data)
    return CoverImage(
        data=data,
        mime_type=mime_type,
        url=Path(path).resolve().as_uri(),
        source=CoverSource.EMBEDDED,
        width=width,
        height=height,
    )


def cover_from_file(path: Path) -> CoverImage:
    """Load a user-supplied cover image from disk.

    Raises FilePreconditionError if the file is missing or empty. The MIME
    type comes from the extension; anything unrecognized is treated as JPEG.
    """
    path = Path(path)
    if not path.is_file():
        raise FilePreconditionError(path, "cover image not found")
    data = path.read_bytes()
    if not data:
        raise FilePreconditionError(path, "cover image is empty")
    width, height = cover_api.image_dimensions(data)
    log.info(f"User cover from {path.name}: {len(data)} bytes, {width}x{height}")
    return CoverImage(
        data=data,
        mime_type=IMAGE_MIME_TYPES.get(path.suffix.lower(), "image/jpeg"),
        url=path.resolve().as_uri(),
        source=CoverSource.USER,
        width=width,
        height=height,
    )


def cover_from_url(url: str, timeout: float = 15.0) -> CoverImage:
    """Download a user-chosen cover. Raises SourceError when no image comes back."""
    image = cover_api.download_image(url, CoverSource.USER, timeout=timeout)
    if image is None:
        raise SourceError("cover", f"no usable image at {url}")
    return image
