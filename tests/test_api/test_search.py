"""Tests for api/search.py -- fuzzy scoring and best-match selection."""

from audiobook_curator.api.search import DEFAULT_MATCH_THRESHOLD, best_match, score_results


class TestScoreResults:
    def test_exact_match_high_score(self):
        results = [{"asin": "B001", "title": "The Great Book", "authors": ["John Smith"]}]
        scored = score_results(results, "The Great Book", "John Smith")
        # Exact match: title 60 + author 30 + position 10 = 100
        assert 95 <= scored[0]["score"] <= 100

    def test_title_only_matching(self):
        results = [{"asin": "B001", "title": "Project Hail Mary", "authors": ["Andy Weir"]}]
        scored = score_results(results, "Project Hail Mary", "")
        # Exact title, no author: title 60 + position 10 = 70
        assert 65 <= scored[0]["score"] <= 70

    def test_position_bonus_favors_first_result(self):
        results = [
            {"asin": "B001", "title": "Good Match", "authors": ["Author One"]},
            {"asin": "B002", "title": "Good Match", "authors": ["Author Two"]},
        ]
        scored = score_results(results, "Good Match", "")
        assert scored[0]["asin"] == "B001"
        assert scored[0]["score"] > scored[1]["score"]

    def test_sorted_descending(self):
        results = [
            {"title": "Something Else"},
            {"title": "Dune", "authors": ["Frank Herbert"]},
        ]
        scored = score_results(results, "Dune", "Frank Herbert")
        assert scored[0]["title"] == "Dune"

    def test_missing_fields(self):
        scored = score_results([{}], "Dune", "Frank Herbert")
        assert scored[0]["score"] == 10

    def test_does_not_mutate_input(self):
        results = [{"title": "Dune"}]
        score_results(results, "Dune", "")
        assert "score" not in results[0]


class TestBestMatch:
    def test_empty(self):
        assert best_match([], "Dune", "Frank Herbert") is None

    def test_above_threshold(self):
        rec = best_match([{"title": "Dune", "authors": ["Frank Herbert"]}], "Dune", "Frank Herbert")
        assert rec["score"] >= DEFAULT_MATCH_THRESHOLD

    def test_below_threshold(self):
        assert best_match([{"title": "Zebra Husbandry"}], "Dune", "Frank Herbert") is None

    def test_custom_threshold(self):
        results = [{"title": "Dune"}]
        assert best_match(results, "Dune", "", threshold=80) is None
        assert best_match(results, "Dune", "", threshold=60) is not None
