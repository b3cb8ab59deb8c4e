"""Tests for loguru-based curator logging."""

import pytest
from loguru import logger

from audiobook_curator import covers, reconciler, renamer
from audiobook_curator.config import CuratorConfig
from audiobook_curator.tagging import writer


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for var in ["CACHE_DIR", "LOG_DIR", "LOG_LEVEL", "VERBOSE"]:
        monkeypatch.delenv(var, raising=False)


def _lines(log_dir):
    return (log_dir / "curator.log").read_text().splitlines()


def _columns(line):
    """time, level, stage, message"""
    return [part.strip() for part in line.split(" | ", 3)]


class TestSetupLogging:
    def setup_method(self):
        logger.remove()

    def teardown_method(self):
        logger.remove()

    def test_setup_creates_log_dir(self, tmp_path):
        log_dir = tmp_path / "logs"
        CuratorConfig(_env_file=None, log_dir=log_dir).setup_logging()
        assert log_dir.is_dir()

    @pytest.mark.parametrize(
        ("module", "stage"),
        [(reconciler, "reconcile"), (renamer, "rename"), (covers, "covers"), (writer, "write")],
    )
    def test_module_logger_fills_stage_column(self, tmp_path, module, stage):
        log_dir = tmp_path / "logs"
        CuratorConfig(_env_file=None, log_dir=log_dir).setup_logging()
        module.log.info("Merged Dune Messiah")
        [line] = _lines(log_dir)
        _, level, column, message = _columns(line)
        assert (level, column, message) == ("INFO", stage, "Merged Dune Messiah")

    def test_unbound_logger_gets_blank_stage(self, tmp_path):
        log_dir = tmp_path / "logs"
        CuratorConfig(_env_file=None, log_dir=log_dir).setup_logging()
        logger.info("no stage bound")
        [line] = _lines(log_dir)
        assert _columns(line)[2:] == ["", "no stage bound"]

    def test_stderr_honours_log_level(self, tmp_path, capsys):
        log_dir = tmp_path / "logs"
        CuratorConfig(_env_file=None, log_dir=log_dir, log_level="WARNING").setup_logging()
        reconciler.log.info("Cache hit for Dune")
        reconciler.log.warning("Audible lookup failed for Dune")
        err = capsys.readouterr().err
        assert "Cache hit for Dune" not in err
        assert "Audible lookup failed for Dune" in err
        # the file keeps everything
        assert len(_lines(log_dir)) == 2

    def test_verbose_sends_debug_to_stderr(self, tmp_path, capsys):
        log_dir = tmp_path / "logs"
        CuratorConfig(_env_file=None, log_dir=log_dir, verbose=True).setup_logging()
        renamer.log.debug("Removed empty dir: Old Name")
        assert "Removed empty dir: Old Name" in capsys.readouterr().err

    def test_file_sink_keeps_debug(self, tmp_path):
        log_dir = tmp_path / "logs"
        CuratorConfig(_env_file=None, log_dir=log_dir, log_level="WARNING").setup_logging()
        covers.log.debug("Best cover: itunes 2400x2400 score=98 of 3")
        [line] = _lines(log_dir)
        assert _columns(line)[1:3] == ["DEBUG", "covers"]

    def test_setup_twice_does_not_duplicate(self, tmp_path):
        log_dir = tmp_path / "logs"
        config = CuratorConfig(_env_file=None, log_dir=log_dir)
        config.setup_logging()
        config.setup_logging()
        reconciler.log.info("Reconciled Dune")
        assert len(_lines(log_dir)) == 1
