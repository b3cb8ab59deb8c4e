"""Tests for normalize.py -- titles, names, years, descriptions, series."""

import pytest

from audiobook_curator.normalize import (
    authors_match,
    clean_person_name,
    extract_book_number,
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
    strip_junk_suffixes,
    strip_narrator_credits,
    strip_series_marker,
    title_case,
    validate_year,
)


class TestTitleCase:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("the lord of the rings", "The Lord of the Rings"),
            ("a tale of two cities", "A Tale of Two Cities"),
            ("NASA files", "NASA Files"),
            ("iPhone stories", "iPhone Stories"),
            ("war and peace", "War and Peace"),
        ],
    )
    def test_title_case(self, raw, expected):
        assert title_case(raw) == expected

    def test_last_word_capitalized(self):
        assert title_case("what dreams are made of") == "What Dreams Are Made Of"


class TestJunkSuffixes:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("The Hobbit (Unabridged)", "The Hobbit"),
            ("Dune - Unabridged", "Dune"),
            ("Dune [Retail] (Audiobook)", "Dune"),
            ("Dune 128kbps", "Dune"),
        ],
    )
    def test_strip(self, raw, expected):
        assert strip_junk_suffixes(raw) == expected

    @pytest.mark.parametrize(
        "raw",
        ["The Hobbit (Unabridged) [MP3]", "Dune - Audiobook -", "Plain Title"],
    )
    def test_idempotent(self, raw):
        once = strip_junk_suffixes(raw)
        assert strip_junk_suffixes(once) == once


class TestSeriesMarkers:
    def test_trailing_parenthetical(self):
        assert strip_series_marker("Words of Radiance (Stormlight Archive #2)") == "Words of Radiance"

    def test_trailing_book_number(self):
        assert strip_series_marker("The Way of Kings, Book 1") == "The Way of Kings"

    def test_never_empties(self):
        assert strip_series_marker("#1") == "#1"

    def test_leading_series_split(self):
        title, series, number = split_leading_series(
            "Magic Tree House #46: Dogs In The Dead Of Night"
        )
        assert title == "Dogs In The Dead Of Night"
        assert series == "Magic Tree House"
        assert number == "46"

    def test_no_leading_series(self):
        assert split_leading_series("Dune") == ("Dune", None, None)


class TestNormalizeTitle:
    def test_strips_leading_series_marker(self):
        assert normalize_title("Magic Tree House #46: Dogs In The Dead Of Night") == (
            "Dogs in the Dead of Night"
        )

    def test_junk_and_marker(self):
        assert normalize_title("words of radiance (Stormlight Archive #2) (Unabridged)") == (
            "Words of Radiance"
        )


class TestSubtitle:
    def test_colon_split(self):
        assert split_title_subtitle("Sapiens: A Brief History of Humankind") == (
            "Sapiens",
            "A Brief History of Humankind",
        )

    def test_narrator_subtitle_rejected(self):
        assert split_title_subtitle("Dune: Read by Scott Brick") == ("Dune: Read by Scott Brick", None)

    def test_no_separator(self):
        assert split_title_subtitle("Dune") == ("Dune", None)


class TestPeople:
    def test_last_first_flipped(self):
        assert clean_person_name("Tolkien, J.R.R.") == "J.R.R. Tolkien"

    def test_prefix_removed(self):
        assert clean_person_name("narrated by jim dale") == "Jim Dale"

    def test_suffix_not_flipped(self):
        assert clean_person_name("Martin Luther King, Jr.") == "Martin Luther King, Jr."

    @pytest.mark.parametrize("name", ["Unknown", "Various Authors", "", None, "1"])
    def test_implausible(self, name):
        assert is_plausible_person(name) is False

    def test_plausible(self):
        assert is_plausible_person("Stephen King") is True

    def test_split_authors(self):
        assert split_authors("Stephen King & Peter Straub") == ["Stephen King", "Peter Straub"]
        assert split_authors("Stephen King") == ["Stephen King"]

    def test_authors_match_ignores_order_and_punctuation(self):
        assert authors_match("Tolkien, J.R.R.", "J.R.R. Tolkien")
        assert not authors_match("Stephen King", "Brandon Sanderson")

    def test_extract_narrator(self):
        assert extract_narrator("Narrated by Jim Dale. Unabridged.") == "Jim Dale"
        assert extract_narrator("A fine book.") is None
        assert extract_narrator(None) is None


class TestYear:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("1999", "1999"),
            (1999, "1999"),
            ("Published 2010-05-01", "2010"),
            ("1700", None),
            ("2200", None),
            ("", None),
            (None, None),
        ],
    )
    def test_validate_year(self, raw, expected):
        assert validate_year(raw) == expected


class TestDescription:
    def test_strips_html_and_entities(self):
        assert normalize_description("<p>Salt &amp; <b>pepper</b></p>") == "Salt & pepper"

    def test_truncates_at_sentence(self):
        text = "First sentence. Second sentence is longer."
        assert normalize_description(text, 20) == "First sentence."

    def test_truncates_at_word(self):
        result = normalize_description("word " * 100, 50)
        assert len(result) <= 50
        assert result.endswith("...")

    def test_strip_narrator_credits(self):
        assert strip_narrator_credits("A great book. Narrated by Jim Dale. More text.") == (
            "A great book. More text."
        )


class TestSeries:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("Harry Potter (Book 1)", "Harry Potter"),
            ("The Expanse Series", "The Expanse"),
            ("Magic Tree House (Book 46)", "Magic Tree House"),
            ("Discworld,", "Discworld"),
        ],
    )
    def test_normalize_series_name(self, raw, expected):
        assert normalize_series_name(raw) == expected

    def test_series_equal_to_title_rejected(self):
        assert is_valid_series("Dune", "Dune") is False

    def test_generic_series_rejected(self):
        assert is_valid_series("Book", "Anything") is False

    def test_valid_series(self):
        assert is_valid_series("The Expanse", "Leviathan Wakes") is True

    def test_book_number(self):
        assert extract_book_number("Harry Potter Book 3") == "3"
        assert extract_book_number("Series 03 Title") == "3"
        assert extract_book_number("Dune") is None

    def test_series_from_folder(self):
        assert extract_series_from_folder("Harry Potter Book 3") == ("Harry Potter", "3")
        assert extract_series_from_folder("Dune") == (None, None)
