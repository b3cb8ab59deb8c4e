"""Genre classification onto a fixed, bounded taxonomy.

Free-text genre tokens from any source (file tags, catalog categories,
retailer category ladders, AI suggestions) are split, mapped onto
APPROVED_GENRES, age-banded for children's and teen titles, ordered by
specificity and capped at three. The result is deterministic and idempotent
for a given (title, series, author) context.
"""

from __future__ import annotations

import re

from loguru import logger

log = logger.bind(stage="genres")

MAX_GENRES = 3
DEFAULT_GENRE = "Fiction"

AGE_BANDS: tuple[str, ...] = (
    "Children's 0-2",
    "Children's 3-5",
    "Children's 6-8",
    "Children's 9-12",
    "Teen 13-17",
)

BROAD_GENRES: tuple[str, ...] = ("Fiction", "Non-Fiction", "Adult")

APPROVED_GENRES: tuple[str, ...] = (
    # Fiction
    "Action", "Adventure", "Alternate History", "Anthology", "Classic",
    "Comedy", "Coming of Age", "Contemporary", "Cozy Mystery", "Crime",
    "Cyberpunk", "Drama", "Dystopian", "Epic Fantasy", "Erotica",
    "Fairy Tales", "Family Saga", "Fantasy", "Folklore", "Gothic",
    "Historical Fiction", "Horror", "Humor", "Legal Thriller", "LitRPG",
    "Literary Fiction", "Magic", "Magical Realism", "Military", "Mystery",
    "Mythology", "Noir", "Paranormal", "Poetry", "Post-Apocalyptic",
    "Psychological Thriller", "Romance", "Romantic Comedy", "Satire",
    "Science Fiction", "Short Stories", "Space Opera", "Spy", "Steampunk",
    "Superheroes", "Suspense", "Thriller", "Time Travel", "Urban Fantasy",
    "War", "Western", "Women's Fiction",
    # Non-fiction
    "Arts", "Biography", "Business", "Cooking", "Economics", "Education",
    "Essays", "Gardening", "Health", "History", "Language Learning",
    "LGBTQ+", "Memoir", "Music", "Nature", "Parenting", "Personal Finance",
    "Philosophy", "Politics", "Psychology", "Reference", "Religion",
    "Science", "Self-Help", "Social Science", "Spirituality", "Sports",
    "Technology", "Travel", "True Crime",
    # Format
    "Collection", "Comics", "Dramatized", "Full Cast", "Lectures",
    # Age bands
    *AGE_BANDS,
    # Broad
    *BROAD_GENRES,
)

_APPROVED_BY_LOWER: dict[str, str] = {g.lower(): g for g in APPROVED_GENRES}

GENRE_ALIASES: dict[str, str] = {
    # Science fiction and fantasy
    "sci-fi": "Science Fiction",
    "scifi": "Science Fiction",
    "sf": "Science Fiction",
    "science-fiction": "Science Fiction",
    "sci fi": "Science Fiction",
    "hard science fiction": "Science Fiction",
    "space": "Space Opera",
    "high fantasy": "Epic Fantasy",
    "sword and sorcery": "Epic Fantasy",
    "dark fantasy": "Fantasy",
    "fantasy fiction": "Fantasy",
    "urban": "Urban Fantasy",
    "litrpg": "LitRPG",
    "gamelit": "LitRPG",
    "progression fantasy": "LitRPG",
    "apocalyptic": "Post-Apocalyptic",
    "post apocalyptic": "Post-Apocalyptic",
    "alternative history": "Alternate History",
    "time-travel": "Time Travel",
    "superhero": "Superheroes",
    "myths": "Mythology",
    "fairy tale": "Fairy Tales",
    "fables": "Fairy Tales",
    # Mystery, thriller, crime
    "whodunit": "Mystery",
    "detective": "Mystery",
    "mysteries": "Mystery",
    "cozy": "Cozy Mystery",
    "thrillers": "Thriller",
    "espionage": "Spy",
    "legal": "Legal Thriller",
    "psychological": "Psychological Thriller",
    "domestic thriller": "Psychological Thriller",
    "police procedural": "Crime",
    "hardboiled": "Noir",
    "true-crime": "True Crime",
    # Literary and general fiction
    "literary": "Literary Fiction",
    "general fiction": "Fiction",
    "contemporary fiction": "Contemporary",
    "novel": "Fiction",
    "novels": "Fiction",
    "classics": "Classic",
    "classic literature": "Classic",
    "humour": "Humor",
    "funny": "Humor",
    "rom-com": "Romantic Comedy",
    "romcom": "Romantic Comedy",
    "love stories": "Romance",
    "chick lit": "Women's Fiction",
    "westerns": "Western",
    "military fiction": "Military",
    "war fiction": "War",
    "supernatural": "Paranormal",
    "ghost stories": "Paranormal",
    "short fiction": "Short Stories",
    "anthologies": "Anthology",
    "graphic novels": "Comics",
    "graphic novel": "Comics",
    "manga": "Comics",
    # Non-fiction
    "nonfiction": "Non-Fiction",
    "non fiction": "Non-Fiction",
    "biographies": "Biography",
    "autobiography": "Memoir",
    "biographical": "Biography",
    "memoirs": "Memoir",
    "personal development": "Self-Help",
    "self improvement": "Self-Help",
    "self-improvement": "Self-Help",
    "personal growth": "Self-Help",
    "motivational": "Self-Help",
    "money": "Personal Finance",
    "finance": "Personal Finance",
    "investing": "Personal Finance",
    "economy": "Economics",
    "entrepreneurship": "Business",
    "careers": "Business",
    "management": "Business",
    "leadership": "Business",
    "wellness": "Health",
    "fitness": "Health",
    "medicine": "Health",
    "food": "Cooking",
    "culinary": "Cooking",
    "cookbooks": "Cooking",
    "art": "Arts",
    "entertainment": "Arts",
    "computers": "Technology",
    "computer science": "Technology",
    "programming": "Technology",
    "political science": "Politics",
    "current affairs": "Politics",
    "sociology": "Social Science",
    "anthropology": "Social Science",
    "spiritual": "Spirituality",
    "religious": "Religion",
    "christian": "Religion",
    "theology": "Religion",
    "travel writing": "Travel",
    "foreign language study": "Language Learning",
    "language": "Language Learning",
    "study aids": "Education",
    "teaching": "Education",
    "family": "Parenting",
    "relationships": "Parenting",
    "lgbt": "LGBTQ+",
    "lgbtq": "LGBTQ+",
    "queer": "LGBTQ+",
    "theater": "Drama",
    "plays": "Drama",
    "radio drama": "Dramatized",
    "dramatization": "Dramatized",
    "full-cast": "Full Cast",
    "lecture": "Lectures",
    "the great courses": "Lectures",
    # Generic age tags resolve to a default band
    "children's": "Children's 6-8",
    "childrens": "Children's 6-8",
    "children": "Children's 6-8",
    "children's audiobooks": "Children's 6-8",
    "juvenile fiction": "Children's 6-8",
    "juvenile nonfiction": "Children's 6-8",
    "kids": "Children's 6-8",
    "early readers": "Children's 6-8",
    "chapter books": "Children's 6-8",
    "picture book": "Children's 3-5",
    "picture books": "Children's 3-5",
    "preschool": "Children's 3-5",
    "board book": "Children's 0-2",
    "board books": "Children's 0-2",
    "baby": "Children's 0-2",
    "toddler": "Children's 0-2",
    "middle grade": "Children's 9-12",
    "middle-grade": "Children's 9-12",
    "tween": "Children's 9-12",
    "young adult": "Teen 13-17",
    "young-adult": "Teen 13-17",
    "ya": "Teen 13-17",
    "teen": "Teen 13-17",
    "teens": "Teen 13-17",
    "teen fiction": "Teen 13-17",
    "adults": "Adult",
    "adult fiction": "Adult",
}

# Series and author names that pin a specific age band. Checked in order.
AGE_BAND_KEYWORDS: tuple[tuple[str, str], ...] = (
    # Baby/toddler
    ("goodnight moon", "Children's 0-2"),
    ("board book", "Children's 0-2"),
    ("pat the bunny", "Children's 0-2"),
    ("very hungry caterpillar", "Children's 0-2"),
    ("sandra boynton", "Children's 0-2"),
    ("guess how much i love you", "Children's 0-2"),
    # Preschool
    ("dr. seuss", "Children's 3-5"),
    ("dr seuss", "Children's 3-5"),
    ("peppa pig", "Children's 3-5"),
    ("curious george", "Children's 3-5"),
    ("berenstain bears", "Children's 3-5"),
    ("llama llama", "Children's 3-5"),
    ("pete the cat", "Children's 3-5"),
    ("elephant and piggie", "Children's 3-5"),
    ("mo willems", "Children's 3-5"),
    ("paw patrol", "Children's 3-5"),
    ("clifford the big red dog", "Children's 3-5"),
    # Early chapter books
    ("magic tree house", "Children's 6-8"),
    ("junie b. jones", "Children's 6-8"),
    ("junie b jones", "Children's 6-8"),
    ("dog man", "Children's 6-8"),
    ("diary of a wimpy kid", "Children's 6-8"),
    ("captain underpants", "Children's 6-8"),
    ("mr. putter", "Children's 6-8"),
    ("mr putter", "Children's 6-8"),
    ("cynthia rylant", "Children's 6-8"),
    ("henry and mudge", "Children's 6-8"),
    ("frog and toad", "Children's 6-8"),
    ("nate the great", "Children's 6-8"),
    ("ivy and bean", "Children's 6-8"),
    ("mercy watson", "Children's 6-8"),
    ("boxcar children", "Children's 6-8"),
    ("geronimo stilton", "Children's 6-8"),
    ("magic school bus", "Children's 6-8"),
    ("amelia bedelia", "Children's 6-8"),
    ("flat stanley", "Children's 6-8"),
    ("mary pope osborne", "Children's 6-8"),
    ("dav pilkey", "Children's 6-8"),
    ("jeff kinney", "Children's 6-8"),
    # Middle grade
    ("harry potter", "Children's 9-12"),
    ("j.k. rowling", "Children's 9-12"),
    ("percy jackson", "Children's 9-12"),
    ("heroes of olympus", "Children's 9-12"),
    ("rick riordan", "Children's 9-12"),
    ("narnia", "Children's 9-12"),
    ("goosebumps", "Children's 9-12"),
    ("r.l. stine", "Children's 9-12"),
    ("roald dahl", "Children's 9-12"),
    ("series of unfortunate events", "Children's 9-12"),
    ("lemony snicket", "Children's 9-12"),
    ("spiderwick", "Children's 9-12"),
    ("wings of fire", "Children's 9-12"),
    ("keeper of the lost cities", "Children's 9-12"),
    ("land of stories", "Children's 9-12"),
    ("artemis fowl", "Children's 9-12"),
    ("beverly cleary", "Children's 9-12"),
    # Teen
    ("hunger games", "Teen 13-17"),
    ("suzanne collins", "Teen 13-17"),
    ("divergent", "Teen 13-17"),
    ("veronica roth", "Teen 13-17"),
    ("twilight", "Teen 13-17"),
    ("stephenie meyer", "Teen 13-17"),
    ("throne of glass", "Teen 13-17"),
    ("sarah j. maas", "Teen 13-17"),
    ("sarah j maas", "Teen 13-17"),
    ("maze runner", "Teen 13-17"),
    ("mortal instruments", "Teen 13-17"),
    ("cassandra clare", "Teen 13-17"),
    ("shadow and bone", "Teen 13-17"),
    ("leigh bardugo", "Teen 13-17"),
    ("red queen", "Teen 13-17"),
)

_AGE_BAND_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = tuple(
    (re.compile(r"(?<!\w)" + re.escape(keyword) + r"(?!\w)"), band)
    for keyword, band in AGE_BAND_KEYWORDS
)

_SPLIT_SEPARATORS: tuple[str, ...] = (" / ", "/", ", ", ",", " & ", ";")

# Shortest token allowed to match as a substring of an approved genre
_MIN_REVERSE_MATCH = 4

# Loose age words inside longer tokens ("children's fiction", "ya fantasy")
_GENERIC_AGE_HINTS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b(?:board books?|baby|babies|toddlers?)\b"), "Children's 0-2"),
    (re.compile(r"\b(?:picture books?|preschool)\b"), "Children's 3-5"),
    (re.compile(r"\bmiddle[- ]grade\b"), "Children's 9-12"),
    (re.compile(r"\b(?:young adult|ya|teens?)\b"), "Teen 13-17"),
    (re.compile(r"\b(?:children'?s?|kids|juvenile)\b"), "Children's 6-8"),
)

_GENRE_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = tuple(
    (re.compile(r"(?<!\w)" + re.escape(g.lower()) + r"(?!\w)"), g)
    for g in APPROVED_GENRES
)


def split_genre_string(raw: str) -> list[str]:
    """Split a combined genre string on the first separator family present.

    " / " (hierarchy) wins over ", " (list) which wins over " & " (pair).
    Each piece is split again so "A / B, C" yields all three.
    """
    text = raw.strip()
    if not text:
        return []
    for sep in _SPLIT_SEPARATORS:
        if sep in text:
            parts: list[str] = []
            for piece in text.split(sep):
                parts.extend(split_genre_string(piece))
            return parts
    return [text]


def _split_all(tokens: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for raw in tokens:
        if not raw:
            continue
        for piece in split_genre_string(raw):
            key = piece.casefold()
            if key not in seen:
                seen.add(key)
                out.append(piece)
    return out


def map_genre(token: str) -> str | None:
    """Map one free-text token to an approved genre, or None to drop it."""
    lowered = token.strip().lower()
    if not lowered:
        return None

    exact = _APPROVED_BY_LOWER.get(lowered)
    if exact:
        return exact

    alias = GENRE_ALIASES.get(lowered)
    if alias:
        return alias

    for pattern, band in _GENERIC_AGE_HINTS:
        if pattern.search(lowered):
            return band

    contained = [g for pattern, g in _GENRE_PATTERNS if pattern.search(lowered)]
    if contained:
        return max(contained, key=len)

    if len(lowered) >= _MIN_REVERSE_MATCH:
        containing = [g for g in APPROVED_GENRES if lowered in g.lower()]
        if containing:
            return min(containing, key=len)

    log.debug(f"Dropping unmapped genre {token!r}")
    return None


def detect_age_band(
    title: str = "",
    series: str | None = None,
    author: str | None = None,
) -> str | None:
    """Look up a specific age band from well-known series and author names."""
    haystack = " | ".join(s for s in (title, series or "", author or "") if s).lower()
    if not haystack:
        return None
    for pattern, band in _AGE_BAND_PATTERNS:
        if pattern.search(haystack):
            return band
    return None


def _tier(genre: str) -> int:
    if genre in BROAD_GENRES:
        return 2
    if genre in AGE_BANDS:
        return 1
    return 0


def classify_genres(
    tokens: list[str],
    title: str = "",
    series: str | None = None,
    author: str | None = None,
    enforce_age: bool = True,
) -> list[str]:
    """Map arbitrary genre tokens to at most three approved genres.

    Args:
        tokens: Raw genre strings from any source; combined strings are split.
        title, series, author: Context for age-band detection.
        enforce_age: When False, skip keyword age-band detection.

    Returns:
        Deduplicated approved genres, specific first, never empty.
    """
    mapped: list[str] = []
    for piece in _split_all(tokens):
        genre = map_genre(piece)
        if genre and genre not in mapped:
            mapped.append(genre)

    pinned = detect_age_band(title, series, author) if enforce_age else None
    if pinned:
        mapped = [g for g in mapped if g not in AGE_BANDS]

    # Stable sort keeps source order within a tier
    ordered = sorted(mapped, key=_tier)

    if "Fiction" in ordered and any(_tier(g) == 0 for g in ordered):
        ordered.remove("Fiction")

    if pinned:
        ordered.insert(0, pinned)

    result = ordered[:MAX_GENRES]
    if not result:
        result = [DEFAULT_GENRE]

    log.debug(f"classify_genres: {tokens!r} -> {result!r}")
    return result
