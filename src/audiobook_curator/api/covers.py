"""Cover art lookups and downloads.

Each lookup returns candidate image URLs for one source (iTunes storefront,
Audible by ASIN, Open Library); download_image fetches one URL and measures
it. Network failures are logged and yield empty results, never exceptions.
"""

from __future__ import annotations

import io

import httpx
from loguru import logger
from PIL import Image, UnidentifiedImageError

from ..models import CoverImage, CoverSource

log = logger.bind(stage="covers")

# Amazon answers unknown image ids with a tiny placeholder gif
MIN_IMAGE_BYTES = 1024

AUDIBLE_IMAGE_URL = "https://m.media-amazon.com/images/I/{asin}._SL{size}_.jpg"


def image_dimensions(data: bytes) -> tuple[int, int]:
    """Return (width, height) of an image payload, or (0, 0) if unreadable."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.size
    except (UnidentifiedImageError, OSError) as e:
        log.debug(f"Could not read image dimensions: {e}")
        return 0, 0


def download_image(
    url: str,
    source: CoverSource,
    timeout: float = 15.0,
) -> CoverImage | None:
    """Download one cover image. Returns None on any failure."""
    log.debug(f"Downloading cover: {url} ({source})")

    try:
        resp = httpx.get(url, timeout=timeout, follow_redirects=True)
        resp.raise_for_status()
    except httpx.HTTPError as e:
        log.warning(f"Cover download failed ({source}): {e}")
        return None

    mime_type = resp.headers.get("content-type", "").split(";")[0].strip().lower()
    if not mime_type.startswith("image/"):
        log.debug(f"Not an image ({mime_type or 'no content-type'}): {url}")
        return None
    if len(resp.content) < MIN_IMAGE_BYTES:
        log.debug(f"Placeholder image ({len(resp.content)} bytes): {url}")
        return None

    width, height = image_dimensions(resp.content)
    log.info(f"Cover downloaded from {source}: {len(resp.content)} bytes, {width}x{height}")
    return CoverImage(
        data=resp.content,
        mime_type=mime_type,
        url=url,
        source=source,
        width=width,
        height=height,
    )


def itunes_artwork_urls(title: str, author: str = "", timeout: float = 15.0) -> list[str]:
    """Search the iTunes audiobook storefront and return high-res artwork URLs."""
    term = f"{title} {author}".strip()
    params = {
        "term": term,
        "media": "audiobook",
        "entity": "audiobook",
        "limit": "3",
    }
    log.debug(f"iTunes artwork search: term={term!r}")

    try:
        resp = httpx.get("https://itunes.apple.com/search", params=params, timeout=timeout)
        resp.raise_for_status()
        data = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        log.warning(f"iTunes search error: {e}")
        return []

    urls = []
    for item in data.get("results", []):
        art = item.get("artworkUrl100") or item.get("artworkUrl60") or ""
        if art:
            urls.append(art.replace("100x100bb", "2048x2048bb").replace("60x60bb", "2048x2048bb"))
    return urls


def audible_artwork_urls(asin: str | None, catalog_url: str | None = None) -> list[str]:
    """Audible artwork: the catalog-provided URL first, then ASIN-derived sizes."""
    urls = []
    if catalog_url:
        urls.append(catalog_url)
    if asin:
        urls.extend(AUDIBLE_IMAGE_URL.format(asin=asin, size=size) for size in (2400, 1500))
    return urls


def open_library_artwork_urls(
    title: str,
    author: str = "",
    isbn: str | None = None,
    timeout: float = 15.0,
) -> list[str]:
    """Open Library covers by ISBN, else by a title/author search."""
    if isbn:
        return [f"https://covers.openlibrary.org/b/isbn/{isbn}-L.jpg"]

    params = {"title": title, "limit": "3"}
    if author:
        params["author"] = author
    log.debug(f"Open Library search: title={title!r} author={author!r}")

    try:
        resp = httpx.get("https://openlibrary.org/search.json", params=params, timeout=timeout)
        resp.raise_for_status()
        data = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        log.warning(f"Open Library search error: {e}")
        return []

    return [
        f"https://covers.openlibrary.org/b/id/{doc['cover_i']}-L.jpg"
        for doc in data.get("docs", [])
        if doc.get("cover_i")
    ]
