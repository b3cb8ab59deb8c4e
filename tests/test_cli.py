"""Tests for cli.py -- Click CLI interface."""

import os
from unittest.mock import patch

import pytest
from click.testing import CliRunner
from loguru import logger

from audiobook_curator.cache import SqliteCache, book_key
from audiobook_curator.cli import _load_env_file, main
from audiobook_curator.collector import path_hash
from audiobook_curator.models import BatchResult, CoverCandidate, CoverSource, WriteError
from audiobook_curator.tagging.codecs import read_tags
from audiobook_curator.tagging.writer import backup_path


@pytest.fixture(autouse=True)
def _use_tmp_dirs(tmp_path, monkeypatch):
    """Point cache and logs at tmp_path and keep AI and covers off."""
    monkeypatch.setenv("CACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("FETCH_COVERS", "false")
    for var in (
        "CURATOR_LLM_BASE_URL", "MAX_WORKERS", "DRY_RUN", "BACKUP_TAGS", "WRITE_SIDECAR",
        "RENAME_TEMPLATE", "RENAME_FOLDER_TEMPLATE",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture(autouse=True)
def _no_env_file(monkeypatch):
    """Prevent CLI from loading the project .env file."""
    monkeypatch.setattr("audiobook_curator.cli._find_config_file", lambda: None)


@pytest.fixture(autouse=True)
def _keep_sigint(monkeypatch):
    monkeypatch.setattr("audiobook_curator.cli.signal.signal", lambda *a: None)


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    logger.remove()


@pytest.fixture
def offline(monkeypatch):
    """No network: both metadata sources find nothing."""
    monkeypatch.setattr("audiobook_curator.api.audible.lookup", lambda *a, **k: None)
    monkeypatch.setattr("audiobook_curator.api.google_books.lookup", lambda *a, **k: None)


@pytest.fixture
def library(tmp_path):
    book = tmp_path / "library" / "Dune Messiah"
    book.mkdir(parents=True)
    (book / "book.mp3").write_bytes(b"\xff\xfb\x90\x00" + b"\x00" * 1024)
    return tmp_path / "library"


class TestHelpOutput:
    def test_help_flag(self):
        result = CliRunner().invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "reconcile their metadata" in result.output
        for flag in (
            "--write", "--dry-run", "--mode", "--workers", "--no-backup", "--sidecar",
            "--cover-search", "--cover-file", "--cover-url", "--rename", "--template", "--folder-template",
        ):
            assert flag in result.output

    def test_mode_choices(self):
        result = CliRunner().invoke(main, ["--help"])
        for mode in ("normal", "refresh", "force_fresh"):
            assert mode in result.output

    def test_paths_required(self):
        result = CliRunner().invoke(main, [])
        assert result.exit_code == 2
        assert "Missing argument" in result.output


class TestScan:
    def test_empty_directory(self, tmp_path):
        empty = tmp_path / "empty"
        empty.mkdir()
        result = CliRunner().invoke(main, [str(empty)])
        assert result.exit_code == 0, result.output
        assert "No audiobooks found." in result.output

    def test_scan_only_reports_changes(self, library, offline):
        mp3 = library / "Dune Messiah" / "book.mp3"
        original = mp3.read_bytes()

        result = CliRunner().invoke(main, [str(library)])

        assert result.exit_code == 0, result.output + str(result.exception or "")
        assert "Dune Messiah -- Unknown" in result.output
        assert "title: '' -> 'Dune Messiah'" in result.output
        assert "Reconciled 1/1 book(s)" in result.output
        assert mp3.read_bytes() == original

    def test_write(self, library, offline):
        mp3 = library / "Dune Messiah" / "book.mp3"

        result = CliRunner().invoke(main, [str(library), "--write", "--workers", "2", "--sidecar"])

        assert result.exit_code == 0, result.output + str(result.exception or "")
        assert "Wrote 1/1 file(s), 0 failed" in result.output
        assert read_tags(mp3).title == "Dune Messiah"
        assert backup_path(mp3).exists()
        assert (library / "Dune Messiah" / "metadata.json").exists()

    def test_no_backup(self, library, offline):
        mp3 = library / "Dune Messiah" / "book.mp3"
        result = CliRunner().invoke(main, [str(library), "--write", "--no-backup"])
        assert result.exit_code == 0, result.output
        assert not backup_path(mp3).exists()

    def test_dry_run(self, library, offline):
        mp3 = library / "Dune Messiah" / "book.mp3"
        original = mp3.read_bytes()
        result = CliRunner().invoke(main, [str(library), "--dry-run"])
        assert result.exit_code == 0, result.output
        assert "Would write 1/1 file(s)" in result.output
        assert mp3.read_bytes() == original

    def test_write_failures_exit_nonzero(self, library):
        with patch("audiobook_curator.cli.CuratorOrchestrator") as mock_cls:
            orch = mock_cls.return_value
            orch.process_groups.return_value = BatchResult(completed=1, total=1)
            orch.write_groups.return_value = BatchResult(
                failed=1, total=1, errors=[WriteError("f", "/x/book.mp3", "file is empty")]
            )
            result = CliRunner().invoke(main, [str(library), "--write"])
        assert result.exit_code == 1
        assert "file is empty" in result.output

    def test_workers_flag_reaches_config(self, library):
        with patch("audiobook_curator.cli.CuratorOrchestrator") as mock_cls:
            mock_cls.return_value.process_groups.return_value = BatchResult(total=1, completed=1)
            CliRunner().invoke(main, [str(library), "--workers", "3", "--force"])
        config = mock_cls.call_args[0][0]
        assert config.max_workers == 3
        assert mock_cls.return_value.process_groups.call_args.kwargs["force"] is True


class TestCache:
    def test_clear_cache(self, tmp_path, library):
        cache = SqliteCache(tmp_path / "cache" / "cache.db")
        cache.set("book_dune", {"title": "Dune"})
        result = CliRunner().invoke(main, [str(library), "--clear-cache"])
        assert result.exit_code == 0, result.output
        assert "Cache cleared." in result.output
        assert cache.get("book_dune") is None

    def test_clear_cache_needs_no_paths(self, tmp_path):
        cache = SqliteCache(tmp_path / "cache" / "cache.db")
        cache.set("book_dune", {"title": "Dune"})
        result = CliRunner().invoke(main, ["--clear-cache"])
        assert result.exit_code == 0, result.output
        assert cache.get("book_dune") is None

    def test_force_fresh_clears_then_scans(self, tmp_path, library, offline):
        cache = SqliteCache(tmp_path / "cache" / "cache.db")
        cache.set(book_key(path_hash(library / "Dune Messiah")), {"title": "Stale", "author": "Nobody"})
        result = CliRunner().invoke(main, [str(library), "--mode", "force_fresh"])
        assert result.exit_code == 0, result.output
        assert "Stale" not in result.output
        assert "Dune Messiah -- Unknown" in result.output


class TestCovers:
    def test_cover_file_saved_on_write(self, tmp_path, library, offline):
        image = tmp_path / "mine.png"
        image.write_bytes(b"\x89PNG" + b"\x00" * 64)
        result = CliRunner().invoke(main, [str(library), "--cover-file", str(image), "--write"])
        assert result.exit_code == 0, result.output + str(result.exception or "")
        assert "Cover set for Dune Messiah." in result.output
        assert (library / "Dune Messiah" / "cover.png").read_bytes() == image.read_bytes()

    def test_cover_file_needs_one_book(self, tmp_path, library, offline):
        other = library / "Children of Dune"
        other.mkdir()
        (other / "book.mp3").write_bytes(b"\xff\xfb\x90\x00" + b"\x00" * 1024)
        image = tmp_path / "mine.png"
        image.write_bytes(b"\x89PNG" + b"\x00" * 64)
        result = CliRunner().invoke(main, [str(library), "--cover-file", str(image)])
        assert result.exit_code == 2
        assert "exactly one book" in result.output

    def test_cover_file_and_url_exclusive(self, tmp_path, library):
        image = tmp_path / "mine.png"
        image.write_bytes(b"\x89PNG")
        result = CliRunner().invoke(
            main, [str(library), "--cover-file", str(image), "--cover-url", "https://example.com/c.jpg"]
        )
        assert result.exit_code == 2

    def test_cover_search_lists_candidates(self, library, offline):
        candidates = [
            CoverCandidate(url="https://itunes/big.jpg", source=CoverSource.ITUNES, width=2400, height=2400, is_best=True),
            CoverCandidate(url="https://ol/small.jpg", source=CoverSource.OPEN_LIBRARY, width=300, height=450),
        ]
        with patch(
            "audiobook_curator.cli.CuratorOrchestrator.search_cover_options", return_value=candidates
        ):
            result = CliRunner().invoke(main, [str(library), "--cover-search"])
        assert result.exit_code == 0, result.output
        assert "Covers for Dune Messiah:" in result.output
        assert "*  98  itunes" in result.output
        assert "https://ol/small.jpg" in result.output


class TestRename:
    def test_rename_with_template(self, library, offline):
        result = CliRunner().invoke(main, [str(library), "--rename", "--template", "{title}"])
        assert result.exit_code == 0, result.output + str(result.exception or "")
        assert "Renamed 1/1 file(s), 0 failed" in result.output
        assert (library / "Dune Messiah" / "Dune Messiah.mp3").exists()
        assert not (library / "Dune Messiah" / "book.mp3").exists()

    def test_dry_run_rename(self, library, offline):
        result = CliRunner().invoke(main, [str(library), "--rename", "--template", "{title}", "--dry-run"])
        assert result.exit_code == 0, result.output
        assert "Would rename 1/1 file(s)" in result.output
        assert (library / "Dune Messiah" / "book.mp3").exists()

    def test_bad_template_reported(self, library, offline):
        result = CliRunner().invoke(main, [str(library), "--rename", "--template", "{title"])
        assert result.exit_code == 1
        assert "Unbalanced braces" in result.output


class TestLoadEnvFile:
    def test_sets_missing_vars_only(self, tmp_path, monkeypatch):
        monkeypatch.delenv("CURATOR_TEST_A", raising=False)
        monkeypatch.setenv("CURATOR_TEST_B", "keep")
        env = tmp_path / ".env"
        env.write_text(
            "# comment\n"
            'CURATOR_TEST_A="quoted value"\n'
            "CURATOR_TEST_B=override\n"
            "CURATOR_TEST_C=${HOME}/x\n"
            "not a pair\n"
        )
        _load_env_file(env)
        assert os.environ["CURATOR_TEST_A"] == "quoted value"
        assert os.environ["CURATOR_TEST_B"] == "keep"
        assert "CURATOR_TEST_C" not in os.environ
        monkeypatch.delenv("CURATOR_TEST_A")
