"""Fuzzy scoring of catalog and retailer search results.

Combines rapidfuzz string matching with search result order to pick the
record that best matches a (title, author) seed.
"""

from loguru import logger
from rapidfuzz import fuzz

log = logger.bind(stage="search")

# Below this a "best" hit is more likely a different book than a bad title
DEFAULT_MATCH_THRESHOLD = 55.0


def score_results(
    results: list[dict],
    title_hint: str,
    author_hint: str,
) -> list[dict]:
    """Score each result using rapidfuzz. Returns results with scores, sorted descending.

    Weights: title 60%, author 30%, position bonus 10%.
    """
    log.debug(f"Scoring {len(results)} results against title={title_hint!r}")

    scored = []
    for idx, r in enumerate(results):
        title_score = fuzz.token_sort_ratio(
            title_hint.lower(), (r.get("title") or "").lower(),
        ) * 0.6

        authors = r.get("authors") or []
        if author_hint and authors:
            author_scores = [
                fuzz.partial_ratio(author_hint.lower(), a.lower())
                for a in authors
            ]
            author_score = max(author_scores, default=0) * 0.3
        else:
            author_score = 0.0

        position_score = max(10 - (idx * 2), 0)

        total = title_score + author_score + position_score
        scored.append({**r, "score": round(total, 1)})

    scored.sort(key=lambda x: x["score"], reverse=True)

    if scored:
        best = scored[0]
        log.debug(f"Best match: {best.get('title')!r} score={best['score']:.0f}")

    return scored


def best_match(
    results: list[dict],
    title_hint: str,
    author_hint: str,
    threshold: float = DEFAULT_MATCH_THRESHOLD,
) -> dict | None:
    """Return the top-scoring result if it clears the threshold."""
    if not results:
        return None
    scored = score_results(results, title_hint, author_hint)
    best = scored[0]
    if best["score"] < threshold:
        log.debug(
            f"Best match {best.get('title')!r} below threshold "
            f"({best['score']:.0f} < {threshold:.0f})"
        )
        return None
    return best
