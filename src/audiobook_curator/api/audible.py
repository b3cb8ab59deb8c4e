"""Audible catalog client (retailer source).

Queries the Audible product catalog API and returns partial metadata
records: asin, title, subtitle, authors, narrators, series/position,
release date, publisher, synopsis, language, runtime, abridged flag,
category ladder genres and cover URL.
"""

import re

import httpx
from loguru import logger

from .search import best_match

log = logger.bind(stage="audible")


def search(query: str, region: str = "com", timeout: float = 30.0) -> list[dict]:
    """Search Audible catalog API, return up to 10 partial records."""
    api_base = f"https://api.audible.{region}/1.0"
    params = {
        "keywords": query,
        "num_results": "10",
        "products_sort_by": "Relevance",
        "response_groups": (
            "category_ladders,contributors,media,product_desc,"
            "product_attrs,product_extended_attrs,series,product_details"
        ),
        "image_sizes": "500,1024,2400",
    }

    log.debug(f"Audible search: query={query!r} region={region}")

    try:
        resp = httpx.get(
            f"{api_base}/catalog/products",
            params=params,
            timeout=timeout,
        )
        resp.raise_for_status()
        data = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        log.warning(f"Audible API error: {e}")
        return []

    results = [_parse_product(p) for p in data.get("products", []) or []]
    log.debug(f"Audible results: {len(results)} products")
    return results


def lookup(
    title: str,
    author: str = "",
    region: str = "com",
    timeout: float = 30.0,
) -> dict | None:
    """Best Audible record for (title, author), or None."""
    query = f"{title} {author}".strip() if author and author != "Unknown" else title
    results = search(query, region=region, timeout=timeout)
    return best_match(results, title, author)


def _parse_product(p: dict) -> dict:
    authors = [a.get("name", "") for a in (p.get("authors") or []) if a.get("name")]
    narrators = [n.get("name", "") for n in (p.get("narrators") or []) if n.get("name")]
    series_info = _pick_best_series(p.get("series") or [])

    # Prefer larger cover sizes
    images = p.get("product_images") or {}
    cover_url = images.get("2400") or images.get("1024") or images.get("500") or ""

    release_date = p.get("release_date", "") or ""
    runtime = p.get("runtime_length_min")
    format_type = (p.get("format_type") or "").lower()

    return {
        "asin": p.get("asin", "") or "",
        "title": p.get("title", "") or "",
        "subtitle": p.get("subtitle", "") or "",
        "authors": authors,
        "narrators": narrators,
        "series": series_info.get("title", "") if series_info else "",
        "position": series_info.get("sequence", "") if series_info else "",
        "release_date": release_date,
        "year": release_date[:4] if release_date else "",
        "publisher": p.get("publisher_name", "") or "",
        "description": _strip_html(p.get("publisher_summary", "") or ""),
        "language": p.get("language", "") or "",
        "runtime_minutes": runtime if isinstance(runtime, int) else None,
        "abridged": format_type == "abridged" if format_type else None,
        "genres": _extract_genres(p.get("category_ladders") or []),
        "cover_url": cover_url,
    }


def _pick_best_series(series_list: list[dict]) -> dict | None:
    """Pick the most specific series when Audible returns multiple.

    Audible often lists both a specific sub-series (e.g., "Liveship Traders")
    and an umbrella super-series (e.g., "Realms of the Elderlings"). The
    sub-series has the lower position number, so prefer the lowest position.
    """
    if not series_list:
        return None
    if len(series_list) == 1:
        return series_list[0]

    def _sort_key(s: dict) -> float:
        seq = s.get("sequence", "") or ""
        try:
            return float(seq)
        except (ValueError, TypeError):
            return 999.0

    best = min(series_list, key=_sort_key)
    log.debug(
        f"Multi-series: picked '{best.get('title')}' #{best.get('sequence')} "
        f"from {[s.get('title') for s in series_list]}"
    )
    return best


def _extract_genres(category_ladders: list[dict]) -> list[str]:
    """Collect category names from every ladder, in ladder order.

    Example: [{"ladder": [{"name": "Science Fiction"}, {"name": "Space Opera"}]}]
    -> ["Science Fiction", "Space Opera"]
    """
    names: list[str] = []
    for ladder in category_ladders:
        for step in ladder.get("ladder", []) or []:
            name = step.get("name", "")
            if name and name not in names:
                names.append(name)
    return names


def _strip_html(text: str) -> str:
    """Strip HTML tags from text."""
    return re.sub(r"<[^>]+>", " ", text).strip()
