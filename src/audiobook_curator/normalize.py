"""Field normalization -- pure text cleaning for titles, names, years, and descriptions.

Nothing here does I/O or raises on input text; every function returns a
best-effort string (or None where a value is rejected outright).
"""

from __future__ import annotations

import re

from loguru import logger
from rapidfuzz import fuzz, utils

log = logger.bind(stage="normalize")

MINOR_WORDS: frozenset[str] = frozenset(
    {
        "a", "an", "the", "and", "but", "or", "nor", "for", "yet", "so",
        "at", "by", "in", "of", "on", "to", "up", "as", "is", "it", "if",
        "be", "vs", "via", "de", "la", "le", "el", "en", "et",
    }
)

JUNK_SUFFIXES: tuple[str, ...] = (
    "(Unabridged)", "[Unabridged]", "(Abridged)", "[Abridged]",
    "(Audiobook)", "[Audiobook]", "- Audiobook", "- Unabridged",
    "(Retail)", "[Retail]", "(MP3)", "[MP3]", "(M4B)", "[M4B]",
    "320kbps", "256kbps", "128kbps", "64kbps",
    "(HQ)", "[HQ]", "(Complete)", "[Complete]", "(Full Cast)", "[Full Cast]",
)

NAME_PARTICLES: frozenset[str] = frozenset(
    {"de", "van", "von", "la", "le", "da", "di", "del"}
)

NAME_SUFFIXES: frozenset[str] = frozenset(
    {"jr", "jr.", "sr", "sr.", "ii", "iii", "iv", "phd", "ph.d.", "md", "m.d."}
)

PLACEHOLDER_NAMES: frozenset[str] = frozenset(
    {
        "unknown", "unknown author", "unknown artist", "various",
        "various authors", "various artists", "n/a", "na", "none",
        "author", "narrator", "audiobook", "artist",
    }
)

_NAME_PREFIXES: tuple[str, ...] = (
    "written by ", "narrated by ", "performed by ", "read by ",
    "author:", "narrator:", "by ",
)

_SUBTITLE_REJECT_PREFIXES: tuple[str, ...] = (
    "read by ", "narrated by ", "performed by ", "with ",
)

_DASH_CHARS = "-–—"

_ACRONYM_RE = re.compile(r"^[A-Z0-9]{2,5}$")

_TRAILING_SERIES_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(
        r"\s*\([^)]*?(?:#\s*\d+(?:\.\d+)?|Book\s*\d+|Vol\.?\s*\d+)\s*\)\s*$",
        re.IGNORECASE,
    ),
    re.compile(
        r"\s*\[[^\]]*?(?:#\s*\d+(?:\.\d+)?|Book\s*\d+|Vol\.?\s*\d+)\s*\]\s*$",
        re.IGNORECASE,
    ),
    re.compile(r",?\s*Book\s*\d+\s*$", re.IGNORECASE),
    re.compile(r"\s*#\d+(?:\.\d+)?\s*$"),
)

_LEADING_SERIES_RE = re.compile(
    r"^(?P<series>.+?)\s*(?:#\s*(?P<hash>\d+(?:\.\d+)?)|,?\s+(?:Book|Vol\.?|Volume)\s*(?P<book>\d+))"
    r"\s*[:–—-]\s*(?P<title>.+)$",
    re.IGNORECASE,
)

_NARRATOR_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"narrated by\s+([^,\.\n]+)", re.IGNORECASE),
    re.compile(r"read by\s+([^,\.\n]+)", re.IGNORECASE),
    re.compile(r"performed by\s+([^,\.\n]+)", re.IGNORECASE),
    re.compile(r"narrator:\s*([^,\.\n]+)", re.IGNORECASE),
)

_NARRATOR_CREDIT_RE = re.compile(
    r"(?:\b(?:narrated|read|performed)\s+by|\bnarrator:)\s*[^.!?\n]*[.!?]?",
    re.IGNORECASE,
)

_BOOK_NUMBER_RE = re.compile(r"book\s*#?(\d+)|#(\d+)|[-_\s](\d{2})[-_\s]", re.IGNORECASE)

_FOLDER_SERIES_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"(.+?)\s+(?:Book\s*#?)?\d+", re.IGNORECASE),
    re.compile(r"(.+?)\s+#\d+"),
    re.compile(r"\[(.+?)\s+\d+\]"),
)

_HTML_ENTITIES: tuple[tuple[str, str], ...] = (
    ("&nbsp;", " "),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
    ("&amp;", "&"),
)

_SERIES_FALSE_POSITIVES: frozenset[str] = frozenset(
    {
        "book", "audiobook", "audio", "unabridged", "novel", "story",
        "fiction", "non-fiction", "chapter", "part", "volume",
    }
)


# -- Casing --


def _cap_first_alpha(part: str) -> str:
    for idx, ch in enumerate(part):
        if ch.isalpha():
            return part[:idx] + ch.upper() + part[idx + 1:]
    return part


def _is_mixed_case(word: str) -> bool:
    return any(c.islower() for c in word) and any(c.isupper() for c in word[1:])


def title_case(s: str) -> str:
    """Title-case word by word, keeping minor words, acronyms and mixed-case words."""
    words = s.split()
    if not words:
        return s.strip()

    last = len(words) - 1
    out = []
    for i, word in enumerate(words):
        if _ACRONYM_RE.match(word) or _is_mixed_case(word):
            out.append(word)
            continue
        lower = word.lower()
        if 0 < i < last and lower in MINOR_WORDS:
            out.append(lower)
            continue
        out.append("-".join(_cap_first_alpha(p) for p in lower.split("-")))
    return " ".join(out)


# -- Titles --


def strip_junk_suffixes(s: str) -> str:
    """Remove quality/edition markers until none remain, then trailing dashes."""
    text = s
    changed = True
    while changed:
        changed = False
        lowered = text.lower()
        for junk in JUNK_SUFFIXES:
            pos = lowered.rfind(junk.lower())
            if pos != -1:
                text = text[:pos] + " " + text[pos + len(junk):]
                text = re.sub(r"\s+", " ", text).strip()
                changed = True
                break
    return text.rstrip(_DASH_CHARS + " ").strip()


def strip_series_marker(s: str) -> str:
    """Strip trailing "(Series #N)", ", Book N" or "#N" markers."""
    text = s
    for pattern in _TRAILING_SERIES_PATTERNS:
        stripped = pattern.sub("", text)
        if stripped.strip():
            text = stripped
    return text.strip()


def split_leading_series(s: str) -> tuple[str, str | None, str | None]:
    """Split "Series #N: Title" into (title, series, number).

    Returns (s, None, None) when there is no leading series marker.
    """
    match = _LEADING_SERIES_RE.match(s.strip())
    if not match:
        return s, None, None
    title = match.group("title").strip()
    series = match.group("series").strip().rstrip(",").strip()
    number = match.group("hash") or match.group("book")
    if not title or not series:
        return s, None, None
    return title, series, number


def normalize_title(s: str) -> str:
    """Full title cleaning pass: junk, series markers, casing."""
    text = strip_junk_suffixes(s)
    text, _, _ = split_leading_series(text)
    text = strip_series_marker(text)
    result = title_case(text)
    if result != s:
        log.debug(f"normalize_title: {s!r} -> {result!r}")
    return result


def split_title_subtitle(s: str) -> tuple[str, str | None]:
    """Split "Main: Subtitle" (or a dash-separated pair) when the subtitle is real."""
    idx = s.find(":")
    sep_len = 1
    if idx == -1:
        for sep in (" - ", " – ", " — "):
            idx = s.find(sep)
            if idx != -1:
                sep_len = len(sep)
                break
    if idx == -1:
        return s, None

    main = s[:idx].strip()
    subtitle = s[idx + sep_len:].strip()
    if not main or len(subtitle) <= 2:
        return s, None
    if subtitle.lower().startswith(_SUBTITLE_REJECT_PREFIXES):
        return s, None
    return main, subtitle


# -- People --


def _cap_name_word(word: str) -> str:
    if _is_mixed_case(word):
        return word
    chars = list(word.lower())
    capitalize_next = True
    for i, ch in enumerate(chars):
        if ch.isalpha() and capitalize_next:
            chars[i] = ch.upper()
            capitalize_next = False
        elif ch in "-.'":
            capitalize_next = True
    return "".join(chars)


def clean_person_name(s: str) -> str:
    """Clean an author or narrator credit into "First Last" form."""
    name = s.strip().strip("\"'“”").strip()

    lowered = name.lower()
    for prefix in _NAME_PREFIXES:
        if lowered.startswith(prefix):
            name = name[len(prefix):].strip()
            break
    name = name.strip("\"'“”").strip()

    if "," in name:
        last, _, rest = name.partition(",")
        rest = rest.strip()
        first_token = rest.split()[0].lower() if rest else ""
        if last.strip() and rest and first_token not in NAME_SUFFIXES:
            name = f"{rest} {last.strip()}"

    words = []
    for word in name.split():
        if word.lower() in NAME_PARTICLES or word.lower() in NAME_SUFFIXES:
            words.append(word)
        else:
            words.append(_cap_name_word(word))
    return " ".join(words)


def is_plausible_person(s: str | None) -> bool:
    """Reject placeholder credits like "Unknown" or "Various Authors"."""
    if not s:
        return False
    text = s.strip()
    if text.lower() in PLACEHOLDER_NAMES:
        return False
    return len(text) >= 2 and any(c.isalpha() for c in text)


def split_authors(s: str) -> list[str]:
    """Split a combined author credit on the first separator present."""
    for sep in (" & ", " and ", ", ", "; "):
        if sep in s:
            return [part.strip() for part in s.split(sep) if part.strip()]
    return [s.strip()] if s.strip() else []


def authors_match(a: str, b: str, threshold: float = 70.0) -> bool:
    """Fuzzy author comparison tolerant of order and punctuation."""
    if not a or not b:
        return False
    score = fuzz.token_sort_ratio(a, b, processor=utils.default_process)
    return score >= threshold


def extract_narrator(comment: str | None) -> str | None:
    """Pull a narrator credit out of a free-text comment tag."""
    if not comment:
        return None
    for pattern in _NARRATOR_PATTERNS:
        match = pattern.search(comment)
        if match:
            name = clean_person_name(match.group(1))
            if is_plausible_person(name):
                return name
    return None


# -- Years and descriptions --


def validate_year(s: str | int | None) -> str | None:
    """Return a 4-digit year in [1800, 2100], or None."""
    if s is None:
        return None
    text = str(s).strip()
    try:
        value = int(text)
    except ValueError:
        value = None
    if value is not None and 1800 <= value <= 2100:
        return str(value)

    match = re.search(r"(?<!\d)(?:19|20)\d{2}(?!\d)", text)
    return match.group(0) if match else None


def normalize_description(text: str, max_length: int | None = None) -> str:
    """Strip HTML, decode common entities, collapse whitespace, optionally truncate."""
    cleaned = re.sub(r"<[^>]+>", " ", text)
    for entity, char in _HTML_ENTITIES:
        cleaned = cleaned.replace(entity, char)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()

    if max_length and len(cleaned) > max_length:
        cut = cleaned[:max_length]
        end = max(cut.rfind(". "), cut.rfind("! "), cut.rfind("? "))
        if cut.endswith((".", "!", "?")):
            end = len(cut) - 1
        if end > max_length // 2:
            cleaned = cut[: end + 1]
        else:
            cleaned = cleaned[: max_length - 3].rsplit(" ", 1)[0] + "..."
    return cleaned


def strip_narrator_credits(text: str) -> str:
    """Remove "Narrated by X." style sentences from a description."""
    cleaned = _NARRATOR_CREDIT_RE.sub(" ", text)
    return re.sub(r"\s+", " ", cleaned).strip()


# -- Series --


def normalize_series_name(name: str) -> str:
    """Reduce a series credit to its short umbrella name."""
    normalized = name.strip()

    for pattern in (" (Book", "(Book", " (Books", "(Books", " - Book", "- Book", ", Book"):
        pos = normalized.find(pattern)
        if pos != -1:
            normalized = normalized[:pos].strip()

    normalized = normalized.rstrip(",").strip()

    for suffix in (" Series", " Trilogy", " Saga", " Chronicles", " Collection", " Books"):
        if normalized.lower().endswith(suffix.lower()):
            normalized = normalized[: -len(suffix)].strip()

    lowered = normalized.lower()
    if "magic tree house" in lowered:
        return "Magic Tree House"
    if lowered.startswith("harry potter") and " and the " in lowered:
        return "Harry Potter"
    if "stormlight archive" in lowered:
        return "The Stormlight Archive"

    parts = normalized.split(" - ")
    if len(parts) == 2:
        first, second = parts[0].strip(), parts[1].strip()
        second_lower = second.lower()
        if (
            "series" in second_lower
            or "chronicle" in second_lower
            or "saga" in second_lower
            or len(second) < len(first)
        ):
            normalized = second
        else:
            normalized = first

    return normalized.strip()


def is_valid_series(series: str, title: str) -> bool:
    """Reject series values that are really the title or a generic word."""
    series_lower = series.lower().strip()
    if not series_lower:
        return False

    series_norm = series_lower.replace(" & ", " and ").replace("&", " and ")
    title_norm = title.lower().strip().replace(" & ", " and ").replace("&", " and ")

    if series_norm == title_norm:
        log.debug(f"Rejecting series {series!r}: same as title")
        return False

    if len(series_norm) > 30 and title_norm.startswith(series_norm):
        if len(title_norm) - len(series_norm) < 10:
            log.debug(f"Rejecting series {series!r}: too close to full title")
            return False

    if series_lower in _SERIES_FALSE_POSITIVES:
        log.debug(f"Rejecting series {series!r}: generic word")
        return False

    if (": " in series_lower or " - " in series_lower) and (
        "series" not in series_lower and len(series_lower) > 50
    ):
        log.debug(f"Rejecting series {series!r}: looks like a full title")
        return False

    return True


def extract_book_number(folder_name: str) -> str | None:
    """Find a book number in a folder name ("Book 3", "#3", " 03 ")."""
    match = _BOOK_NUMBER_RE.search(folder_name)
    if not match:
        return None
    number = match.group(1) or match.group(2) or match.group(3)
    # "03" -> "3"
    return str(int(number)) if number and number.isdigit() else number


def extract_series_from_folder(folder_name: str) -> tuple[str | None, str | None]:
    """Derive (series, sequence) from a folder name, when a book number is present."""
    number = extract_book_number(folder_name)
    if number is None:
        return None, None

    for pattern in _FOLDER_SERIES_PATTERNS:
        match = pattern.search(folder_name)
        if match:
            series = normalize_series_name(match.group(1).strip(" -_"))
            if series:
                return series, number
    return None, number
