"""Google Books volumes client (catalog source).

Returns partial records with subtitle, authors, publisher, published
year, categories, description, ISBN, language and the largest available
cover image link.
"""

import httpx
from loguru import logger

from ..normalize import validate_year
from .search import best_match

log = logger.bind(stage="google")

API_URL = "https://www.googleapis.com/books/v1/volumes"

_IMAGE_PRIORITY = ("extraLarge", "large", "medium", "small", "thumbnail")


def search(
    title: str,
    author: str = "",
    api_key: str = "",
    timeout: float = 15.0,
) -> list[dict]:
    """Query Google Books for (title, author). Returns up to 5 partial records."""
    query = f"intitle:{title}"
    if author and author != "Unknown":
        query += f" inauthor:{author}"
    params = {"q": query, "maxResults": "5", "printType": "books"}
    if api_key:
        params["key"] = api_key

    log.debug(f"Google Books search: q={query!r}")

    try:
        resp = httpx.get(API_URL, params=params, timeout=timeout)
        resp.raise_for_status()
        data = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        log.warning(f"Google Books API error: {e}")
        return []

    return [_parse_volume(item.get("volumeInfo") or {}) for item in data.get("items", []) or []]


def lookup(
    title: str,
    author: str = "",
    api_key: str = "",
    timeout: float = 15.0,
) -> dict | None:
    """Best Google Books record for (title, author), or None."""
    return best_match(search(title, author, api_key, timeout), title, author)


def _parse_volume(info: dict) -> dict:
    published = info.get("publishedDate", "") or ""
    return {
        "title": info.get("title", "") or "",
        "subtitle": info.get("subtitle", "") or "",
        "authors": [a for a in (info.get("authors") or []) if a],
        "narrators": [],
        "publisher": info.get("publisher", "") or "",
        "release_date": published,
        "year": validate_year(published) or "",
        "genres": [c for c in (info.get("categories") or []) if c],
        "description": info.get("description", "") or "",
        "isbn": _pick_isbn(info.get("industryIdentifiers") or []),
        "language": info.get("language", "") or "",
        "cover_url": _pick_image(info.get("imageLinks") or {}),
    }


def _pick_isbn(identifiers: list[dict]) -> str:
    """ISBN-13 if present, else ISBN-10."""
    by_type = {i.get("type"): i.get("identifier", "") for i in identifiers}
    return by_type.get("ISBN_13") or by_type.get("ISBN_10") or ""


def _pick_image(links: dict) -> str:
    for size in _IMAGE_PRIORITY:
        url = links.get(size)
        if url:
            return url.replace("http://", "https://", 1)
    return ""
