"""AI-assisted metadata completion using OpenAI-compatible APIs.

Two passes, both optional and both best-effort:

    extract_book_info -- recover (title, author) when embedded tags are generic
                         ("Track 01", "Chapter 1") or missing.
    enhance_metadata  -- merge folder, tag, catalog and retailer evidence into
                         a full record (series, genres, description, ...).

Works with any OpenAI-compatible endpoint (OpenAI, LiteLLM, Ollama). Every
failure is logged and turns into None; the caller keeps what it had.
"""

from __future__ import annotations

import json
import re
import uuid
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .genres import APPROVED_GENRES
from .models import FileTags
from .normalize import extract_book_number

log = logger.bind(stage="ai")

_NULL_WORDS = frozenset({"", "null", "none", "n/a", "unknown"})

_GENERIC_TITLE_WORDS = ("track", "chapter", "part")


def get_client(base_url: str, api_key: str):
    """Return an OpenAI client configured for the given endpoint, or None.

    Returns None if base_url is empty (AI disabled).
    """
    if not base_url:
        return None

    from openai import OpenAI

    # The SDK appends /v1 itself
    clean_url = base_url.rstrip("/")
    if clean_url.endswith("/v1"):
        clean_url = clean_url[:-3].rstrip("/")

    return OpenAI(
        base_url=clean_url,
        api_key=api_key or "not-needed",
    )


class AIMetadata(BaseModel):
    """Permissive view of an AI JSON reply.

    Models return numbers for years and sequences, "null" strings, or a
    comma-joined genre string; all of that is coerced here so the
    reconciler only ever sees optional strings and string lists.
    """

    model_config = ConfigDict(extra="ignore")

    title: str | None = None
    subtitle: str | None = None
    author: str | None = None
    narrator: str | None = None
    series: str | None = None
    sequence: str | None = None
    genres: list[str] = []
    publisher: str | None = None
    year: str | None = None
    description: str | None = None
    isbn: str | None = None

    @field_validator(
        "title", "subtitle", "author", "narrator", "series", "sequence",
        "publisher", "year", "description", "isbn",
        mode="before",
    )
    @classmethod
    def _coerce_optional_str(cls, value: Any) -> str | None:
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        text = str(value).strip().strip('"').strip()
        if text.lower() in _NULL_WORDS:
            return None
        return text

    @field_validator("sequence")
    @classmethod
    def _normalize_sequence(cls, value: str | None) -> str | None:
        # "01" -> "1"
        if value and value.isdigit():
            return str(int(value))
        return value

    @field_validator("genres", mode="before")
    @classmethod
    def _coerce_genres(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        if not isinstance(value, (list, tuple)):
            return []
        return [str(v).strip() for v in value if v is not None and str(v).strip()]


def extract_book_info(
    client,
    model: str,
    tags: FileTags,
    folder_name: str,
    filename: str = "",
) -> tuple[str, str] | None:
    """Ask the model for the real (title, author) behind generic tags.

    Two attempts; a reply that still looks like a track or chapter title
    triggers the retry. Returns None when AI is unavailable or fails.
    """
    if client is None:
        return None

    book_number = extract_book_number(folder_name)
    book_hint = (
        f"\nBOOK NUMBER DETECTED: This is Book #{book_number} in a series"
        if book_number
        else ""
    )

    nonce = uuid.uuid4().hex[:8]
    prompt = (
        f"[{nonce}] Extract the actual book title and author from audiobook tags.\n\n"
        f"FOLDER NAME: {folder_name}\n"
        f"FILENAME: {filename}\n"
        "FILE TAGS:\n"
        f"* Title: {tags.title!r}\n"
        f"* Artist: {tags.artist!r}\n"
        f"* Album: {tags.album!r}{book_hint}\n\n"
        "RULES:\n"
        "1. Ignore generic titles like Track 01, Chapter 1, Part 1.\n"
        "2. Prefer the folder name or album when the title tag is generic.\n"
        "3. Output the specific book title, not just the series name.\n"
        "4. Remove track numbers, chapter numbers, and formatting noise.\n\n"
        "Return only valid JSON:\n"
        '{"book_title": "specific book title", "author": "author name"}'
    )

    fallback_author = tags.artist or "Unknown"
    for attempt in (1, 2):
        content = _chat(client, model, prompt, max_tokens=300)
        data = _parse_json_response(content) if content else None
        if data is None:
            continue

        title = str(data.get("book_title") or tags.title or folder_name).strip()
        author = str(data.get("author") or fallback_author).strip()

        if any(word in title.lower() for word in _GENERIC_TITLE_WORDS):
            log.debug(f"AI title still generic on attempt {attempt}: {title!r}")
            if attempt == 2:
                return folder_name, author
            continue

        log.debug(f"AI extracted title={title!r} author={author!r}")
        return title, author

    return None


def enhance_metadata(
    client,
    model: str,
    folder_name: str,
    title: str,
    author: str,
    tags: FileTags | None = None,
    google: dict | None = None,
    audible: dict | None = None,
    series_hint: tuple[str, str | None] | None = None,
    year: str | None = None,
) -> AIMetadata | None:
    """Merge every piece of evidence into one AI-completed record.

    Args:
        folder_name: Book folder name (leads the prompt, defeats prefix caching).
        title, author: Seed values; the model is told to keep them.
        tags: Embedded tags of the first file (comment is sampled).
        google, audible: Partial source records, or None.
        series_hint: (series, sequence) already known from retailer or folder.
        year: Pinned release year, passed as a hard constraint.
    """
    if client is None:
        return None

    nonce = uuid.uuid4().hex[:8]

    if series_hint:
        name, position = series_hint
        series_line = (
            f"SERIES INFO: This book is part of the {name!r} series"
            + (f", position {position}" if position else "")
            + ". Use this series name, or return null if it is clearly wrong."
        )
    else:
        series_line = (
            "NO SERIES DETECTED. If you KNOW this book belongs to a well-known "
            "series, give the SHORT series name. Return null if standalone."
        )

    year_line = (
        f"year: use EXACTLY {year} (from the retailer/catalog, DO NOT CHANGE)"
        if year
        else "year: if not found in the sources, return null"
    )

    prompt = (
        f"[{nonce}] Audiobook metadata for folder: {folder_name!r}\n\n"
        "SOURCES:\n"
        f"1. Seed: title={title!r}, author={author!r}\n"
        f"2. Catalog (Google Books): {_summarize(google)}\n"
        f"3. Retailer (Audible): {_summarize(audible)}\n"
        f"4. Sample comment: {(tags.comment if tags else None)!r}\n\n"
        f"{series_line}\n\n"
        f"APPROVED GENRES (maximum 3):\n{', '.join(APPROVED_GENRES)}\n\n"
        "FIELDS:\n"
        "* title / author: keep EXACTLY as given unless obviously malformed.\n"
        "* narrator: from retailer narrators or the comment.\n"
        "* series: SHORT umbrella series name only, never the book title.\n"
        "* sequence: book number in the series.\n"
        "* genres: 1-3 from the approved list. For children's and teen books use "
        "the age-specific genre (Children's 0-2, Children's 3-5, Children's 6-8, "
        "Children's 9-12, Teen 13-17), never a generic Children's or Young Adult.\n"
        f"* {year_line}\n"
        "* description: at least 150 characters, from the sources.\n"
        "* publisher, subtitle, isbn: from the sources, else null.\n\n"
        "Return ONLY valid JSON with keys: title, subtitle, author, narrator, "
        "series, sequence, genres, publisher, year, description, isbn."
    )

    log.debug(f"Enhancing metadata for {title!r}")
    content = _chat(client, model, prompt, max_tokens=1000)
    if not content:
        return None

    data = _parse_json_response(content)
    if data is None:
        log.warning(f"AI reply for {title!r} was not valid JSON")
        return None

    try:
        return AIMetadata.model_validate(data)
    except ValidationError as e:
        log.warning(f"AI reply for {title!r} failed validation: {e}")
        return None


def _chat(client, model: str, prompt: str, max_tokens: int) -> str | None:
    try:
        response = client.chat.completions.create(
            model=model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=max_tokens,
            temperature=0.1,
            extra_headers={"Cache-Control": "no-cache"},
        )
        return (response.choices[0].message.content or "").strip()
    except Exception as e:
        log.warning(f"AI request failed: {e}")
        return None


def _summarize(record: dict | None) -> str:
    if not record:
        return "No data"
    keys = ("title", "subtitle", "authors", "narrators", "series", "position",
            "publisher", "year", "genres")
    parts = [f"{k}={record[k]!r}" for k in keys if record.get(k)]
    return ", ".join(parts) or "No data"


def _parse_json_response(content: str) -> dict | None:
    """Pull the first JSON object out of a model reply (fenced or bare)."""
    text = re.sub(r"^```(?:json)?\s*|\s*```$", "", content.strip(), flags=re.IGNORECASE)
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        data = json.loads(text[start : end + 1])
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None
