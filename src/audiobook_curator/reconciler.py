"""Metadata reconciliation -- merge tags, catalog, retailer and AI into one record.

Flow per group (see Reconciler.reconcile):

    LoadedFromFile?  -> keep the sidecar record, only refresh change-sets
    cache hit?       -> adopt the cached record, skip every source
    seed             -> (title, author) from clean tags, AI extraction, or folder
    sources          -> Google Books + Audible in parallel, each independently fallible
    merge            -> field-by-field, first non-empty wins; the release year is sticky
    AI enhance       -> optional; never overrides the sticky year
    normalize        -> titles, names, series, description, publisher
    cover            -> first successful download by source priority, bytes to cache
    finalize         -> replace group.metadata, cache it, recompute change-sets
"""

from __future__ import annotations

import re
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from functools import partial

from loguru import logger

from . import ai
from . import covers as cover_ranker
from .api import audible, google_books
from .cache import Cache, book_key, cover_key, encode_cover, source_key
from .config import CuratorConfig
from .errors import CacheError, TagReadError
from .genres import classify_genres, split_genre_string
from .models import BookGroup, BookMetadata, CoverImage, FileTags, ScanStatus
from .normalize import (
    authors_match,
    clean_person_name,
    extract_narrator,
    extract_series_from_folder,
    is_plausible_person,
    is_valid_series,
    normalize_description,
    normalize_series_name,
    normalize_title,
    split_authors,
    split_leading_series,
    split_title_subtitle,
    strip_narrator_credits,
    title_case,
    validate_year,
)
from .tagging.codecs import read_tags
from .tagging.diff import calculate_changes

log = logger.bind(stage="reconcile")

SourceLookup = Callable[[str, str], dict | None]
CoverFetcher = Callable[[BookMetadata, dict | None, dict | None], CoverImage | None]

MIN_DESCRIPTION_LENGTH = 50
MIN_AI_DESCRIPTION_LENGTH = 100

_GENERIC_TITLE_PATTERNS: tuple[str, ...] = (
    "track", "chapter", "part 0", "part 1", "part 2", "part 3",
    "disc ", "cd ", "untitled", "unknown", "audio", ".mp3", ".m4b",
)

_PLACEHOLDER_ARTISTS: frozenset[str] = frozenset({"unknown", "various", "artist"})


def tags_are_clean(title: str | None, artist: str | None) -> bool:
    """Whether embedded (title, artist) can be trusted as the seed without AI help."""
    if not title or not artist:
        return False
    t, a = title.lower(), artist.lower()

    if any(p in t for p in _GENERIC_TITLE_PATTERNS):
        return False
    if re.fullmatch(r"[\d\s-]*", t):
        return False
    if a in _PLACEHOLDER_ARTISTS:
        return False
    return len(t) >= 3 and len(a) >= 3


def _strip_part_suffix(title: str) -> str:
    return title.replace(" - Part 1", "").replace(" - Part 2", "").strip()


def _clean_description(text: str | None) -> str | None:
    if not text:
        return None
    cleaned = strip_narrator_credits(normalize_description(text))
    return cleaned or None


def _accept_series(
    series: str | None,
    sequence: str | None,
    title: str,
) -> tuple[str, str | None] | None:
    if not series:
        return None
    name = normalize_series_name(series)
    if not name or not is_valid_series(name, title):
        return None
    return name, sequence or None


def author_agrees(record: dict, author: str) -> bool:
    """Whether a source record's authors fit the seed author.

    Records without authors, and seeds that are placeholders, always agree.
    """
    names = [n for n in record.get("authors") or [] if n]
    if not names or not is_plausible_person(author):
        return True
    seeds = split_authors(author) or [author]
    return any(authors_match(seed, name) for seed in seeds for name in names)


def _clean_names(names: list[str]) -> list[str]:
    out: list[str] = []
    for name in names:
        cleaned = clean_person_name(name)
        if is_plausible_person(cleaned) and cleaned not in out:
            out.append(cleaned)
    return out


def normalize_metadata(metadata: BookMetadata, description_max_length: int = 2000) -> BookMetadata:
    """Final cleaning pass over a merged record (in place, also returned)."""
    metadata.title = normalize_title(metadata.title) or metadata.title

    if metadata.subtitle is None:
        main, subtitle = split_title_subtitle(metadata.title)
        if subtitle:
            metadata.title, metadata.subtitle = main, subtitle
    else:
        metadata.subtitle = title_case(metadata.subtitle)

    parts = split_authors(metadata.author)
    if len(parts) > 1:
        metadata.author = ", ".join(clean_person_name(p) for p in parts)
    elif is_plausible_person(metadata.author):
        metadata.author = clean_person_name(metadata.author)
    if not metadata.author:
        metadata.author = "Unknown"

    metadata.authors = _clean_names(metadata.authors)
    if not metadata.authors and is_plausible_person(metadata.author):
        metadata.authors = _clean_names(parts)

    if metadata.narrator:
        narrator = clean_person_name(metadata.narrator)
        metadata.narrator = narrator if is_plausible_person(narrator) else None
    metadata.narrators = _clean_names(metadata.narrators)
    if not metadata.narrators and metadata.narrator:
        metadata.narrators = [metadata.narrator]

    metadata.year = validate_year(metadata.year)

    if metadata.description:
        metadata.description = normalize_description(
            metadata.description, description_max_length
        ) or None

    if metadata.series:
        metadata.series = title_case(normalize_series_name(metadata.series)) or None
    if metadata.sequence and metadata.sequence.isdigit():
        metadata.sequence = str(int(metadata.sequence))
    if not metadata.series:
        metadata.sequence = None

    if metadata.publisher is not None:
        clean = metadata.publisher.strip()
        metadata.publisher = title_case(clean) if clean and clean.lower() != "unknown" else None

    return metadata


def _default_cover_fetcher(config: CuratorConfig) -> CoverFetcher:
    def fetch(metadata: BookMetadata, audible_rec: dict | None, google_rec: dict | None) -> CoverImage | None:
        lookups = cover_ranker.cover_lookups(
            metadata.title,
            metadata.author,
            asin=metadata.asin,
            isbn=metadata.isbn,
            audible_url=(audible_rec or {}).get("cover_url") or None,
            google_url=(google_rec or {}).get("cover_url") or None,
            timeout=config.source_timeout,
        )
        return cover_ranker.select_cover(lookups, timeout=config.source_timeout)

    return fetch


class Reconciler:
    """Merges every metadata source for a group into one canonical record.

    Collaborators are injected: the cache, the AI client, the two source
    lookups and the cover fetcher. Defaults talk to the real services.
    """

    def __init__(
        self,
        config: CuratorConfig,
        cache: Cache,
        ai_client=None,
        audible_lookup: SourceLookup | None = None,
        google_lookup: SourceLookup | None = None,
        cover_fetcher: CoverFetcher | None = None,
    ) -> None:
        self.config = config
        self.cache = cache
        self.ai_client = ai_client
        self.audible_lookup = audible_lookup or partial(
            audible.lookup,
            region=config.audible_region,
            timeout=max(config.source_timeout, 30.0),
        )
        self.google_lookup = google_lookup or partial(
            google_books.lookup,
            api_key=config.google_books_api_key,
            timeout=config.source_timeout,
        )
        self.cover_fetcher = cover_fetcher or _default_cover_fetcher(config)

    # -- Cache helpers --

    def _cache_get(self, key: str):
        try:
            return self.cache.get(key)
        except CacheError as e:
            log.warning(f"Cache read failed, treating as miss: {e}")
            return None

    def _cache_set(self, key: str, value) -> None:
        try:
            self.cache.set(key, value)
        except CacheError as e:
            log.warning(f"Cache write failed: {e}")

    # -- Pipeline --

    def reconcile(self, group: BookGroup, force: bool = False) -> BookGroup:
        """Produce the canonical record for group and refresh its change-sets."""
        log.debug(f"reconcile(group={group.name!r}, force={force}, status={group.scan_status})")

        if group.scan_status == ScanStatus.LOADED_FROM_FILE and not force:
            log.debug(f"{group.name}: using sidecar record")
            calculate_changes(group)
            return group

        key = book_key(group.id)
        if not force:
            cached = self._cache_get(key)
            if isinstance(cached, dict) and cached.get("title"):
                log.debug(f"{group.name}: cache hit")
                group.metadata = BookMetadata.from_dict(cached)
                group.scan_status = ScanStatus.RECONCILED
                calculate_changes(group)
                return group

        tags = self._first_file_tags(group)
        title, author = self._seed(group, tags)

        google_rec, audible_rec = self._fetch_sources(title, author)

        group.scan_status = ScanStatus.MERGING
        metadata, sticky_year = self._merge(group, title, author, tags, google_rec, audible_rec)

        if self.ai_client is not None:
            series_hint = (metadata.series, metadata.sequence) if metadata.series else None
            enhanced = ai.enhance_metadata(
                self.ai_client,
                self.config.curator_llm_model,
                group.name,
                metadata.title,
                metadata.author,
                tags=tags,
                google=google_rec,
                audible=audible_rec,
                series_hint=series_hint,
                year=sticky_year,
            )
            if enhanced is not None:
                self._apply_ai(metadata, enhanced, raw_title=title)
            if sticky_year:
                metadata.year = sticky_year

        normalize_metadata(metadata, self.config.description_max_length)

        if self.config.fetch_covers:
            self._attach_cover(group, metadata, audible_rec, google_rec)

        group.metadata = metadata
        self._cache_set(key, metadata.to_dict())
        group.scan_status = ScanStatus.RECONCILED
        calculate_changes(group)

        log.info(
            f"Reconciled {group.name!r}: {metadata.title!r} by {metadata.author} "
            f"({', '.join(metadata.genres)})"
        )
        return group

    def _first_file_tags(self, group: BookGroup) -> FileTags:
        if not group.files:
            return FileTags()
        try:
            return read_tags(group.files[0].path)
        except TagReadError as e:
            log.warning(f"Cannot read seed tags: {e}")
            return FileTags()

    def _seed(self, group: BookGroup, tags: FileTags) -> tuple[str, str]:
        """(title, author) to query sources with."""
        if tags.title and tags.artist:
            clean_title = _strip_part_suffix(tags.title)
            if tags_are_clean(clean_title, tags.artist):
                log.debug(f"Fast path: clean tags for {clean_title!r}")
                return clean_title, tags.artist

        if self.ai_client is not None:
            filename = group.files[0].filename if group.files else ""
            extracted = ai.extract_book_info(
                self.ai_client, self.config.curator_llm_model, tags, group.name, filename,
            )
            if extracted is not None:
                return extracted

        return tags.title or group.name, tags.artist or "Unknown"

    def _fetch_source(self, name: str, lookup: SourceLookup, title: str, author: str) -> dict | None:
        key = source_key(name, title, author)
        cached = self._cache_get(key)
        if isinstance(cached, dict):
            log.debug(f"{name}: cache hit for {title!r}")
            return cached

        try:
            result = lookup(title, author)
        except Exception as e:
            log.warning(f"{name} lookup failed for {title!r}: {e}")
            return None

        if result and not author_agrees(result, author):
            log.debug(f"{name}: rejecting {result.get('title')!r} by {result.get('authors')}, seed author is {author!r}")
            return None

        if result:
            self._cache_set(key, result)
        else:
            log.debug(f"{name}: no match for {title!r}")
        return result or None

    def _fetch_sources(self, title: str, author: str) -> tuple[dict | None, dict | None]:
        """Query the catalog and the retailer in parallel."""
        with ThreadPoolExecutor(max_workers=2) as pool:
            google_future = pool.submit(self._fetch_source, "google", self.google_lookup, title, author)
            audible_future = pool.submit(self._fetch_source, "audible", self.audible_lookup, title, author)
            return google_future.result(), audible_future.result()

    def _merge(
        self,
        group: BookGroup,
        title: str,
        author: str,
        tags: FileTags,
        google_rec: dict | None,
        audible_rec: dict | None,
    ) -> tuple[BookMetadata, str | None]:
        """Heuristic field-by-field merge. Returns (record, sticky year)."""
        g = google_rec or {}
        a = audible_rec or {}

        # Narrator: comment credit, then retailer, then catalog
        narrators = list(a.get("narrators") or []) or list(g.get("narrators") or [])
        narrator = extract_narrator(tags.comment) or (narrators[0] if narrators else None)

        sticky_year = validate_year(a.get("release_date") or a.get("year")) or validate_year(g.get("year"))
        year = sticky_year or validate_year(tags.year)

        # Series: folder, leading "Series #N:" in the title, then retailer overrides
        _, lead_series, lead_number = split_leading_series(title)
        folder_series, folder_number = extract_series_from_folder(group.name)
        series_pick = (
            _accept_series(folder_series, folder_number, title)
            or _accept_series(lead_series, lead_number, title)
        )
        retailer_series = _accept_series(a.get("series"), a.get("position"), title)
        if retailer_series:
            series_pick = retailer_series
        series, sequence = series_pick if series_pick else (None, None)

        genre_tokens = split_genre_string(tags.genre or "") + list(g.get("genres") or []) + list(a.get("genres") or [])
        genres = classify_genres(
            genre_tokens,
            title=title,
            series=series,
            author=author,
            enforce_age=self.config.genre_enforcement,
        )

        description = None
        for candidate in (a.get("description"), g.get("description"), tags.comment):
            cleaned = _clean_description(candidate)
            if cleaned and len(cleaned) >= MIN_DESCRIPTION_LENGTH:
                description = cleaned
                break

        authors = list(a.get("authors") or []) or split_authors(author)

        metadata = BookMetadata(
            title=title,
            author=author,
            subtitle=g.get("subtitle") or a.get("subtitle") or None,
            narrator=narrator,
            series=series,
            sequence=sequence,
            genres=genres,
            publisher=g.get("publisher") or a.get("publisher") or tags.publisher or None,
            year=year,
            description=description,
            isbn=g.get("isbn") or tags.isbn or None,
            asin=a.get("asin") or tags.asin or None,
            language=a.get("language") or g.get("language") or None,
            authors=authors,
            narrators=narrators,
            abridged=a.get("abridged"),
            runtime_minutes=a.get("runtime_minutes"),
            publish_date=a.get("release_date") or None,
        )
        return metadata, sticky_year

    def _apply_ai(self, metadata: BookMetadata, enhanced: ai.AIMetadata, raw_title: str) -> None:
        """Layer AI output over the heuristic record."""
        if enhanced.title:
            metadata.title = enhanced.title
        if enhanced.author:
            metadata.author = enhanced.author
            metadata.authors = split_authors(enhanced.author)
        if enhanced.narrator:
            metadata.narrator = enhanced.narrator
            metadata.narrators = [enhanced.narrator]

        if enhanced.genres:
            metadata.genres = classify_genres(
                enhanced.genres,
                title=raw_title,
                series=metadata.series or enhanced.series,
                author=metadata.author,
                enforce_age=self.config.genre_enforcement,
            )

        ai_description = _clean_description(enhanced.description)
        if ai_description and len(ai_description) >= MIN_AI_DESCRIPTION_LENGTH:
            metadata.description = ai_description

        metadata.publisher = metadata.publisher or enhanced.publisher
        metadata.isbn = metadata.isbn or enhanced.isbn
        metadata.subtitle = metadata.subtitle or enhanced.subtitle

        if not metadata.series:
            picked = _accept_series(enhanced.series, enhanced.sequence, metadata.title)
            if picked:
                metadata.series, metadata.sequence = picked
            elif enhanced.series:
                log.debug(f"Rejecting AI series {enhanced.series!r}")

        if not metadata.year:
            metadata.year = validate_year(enhanced.year)

    def _attach_cover(
        self,
        group: BookGroup,
        metadata: BookMetadata,
        audible_rec: dict | None,
        google_rec: dict | None,
    ) -> None:
        try:
            image = self.cover_fetcher(metadata, audible_rec, google_rec)
        except Exception as e:
            log.warning(f"Cover lookup failed for {metadata.title!r}: {e}")
            return
        if image is None:
            return
        self._cache_set(cover_key(group.id), encode_cover(image.data, image.mime_type))
        metadata.cover_url = image.url
        metadata.cover_mime = image.mime_type
        log.debug(f"Cover from {image.source}: {image.width}x{image.height}")
