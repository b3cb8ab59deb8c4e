"""Tests for tagging/writer.py -- precondition, backup, temp-copy swap."""

from unittest.mock import patch

import pytest

from audiobook_curator.errors import (
    BackupError,
    FilePreconditionError,
    TagWriteError,
    UnsupportedFormatError,
)
from audiobook_curator.models import AudioFile, FileStatus, MetadataChange
from audiobook_curator.tagging.codecs import read_tags
from audiobook_curator.tagging.writer import backup_path, write_audio_file, write_file_tags


def _changes(**fields):
    return {k: MetadataChange(old="", new=v) for k, v in fields.items()}


class TestWriteFileTags:
    def test_writes_and_backs_up(self, fake_mp3):
        path = fake_mp3()
        original = path.read_bytes()
        write_file_tags(path, _changes(title="Dune"))
        assert read_tags(path).title == "Dune"
        assert backup_path(path).read_bytes() == original

    def test_no_backup(self, fake_mp3):
        path = fake_mp3()
        write_file_tags(path, _changes(title="Dune"), backup=False)
        assert not backup_path(path).exists()

    def test_no_temp_left_behind(self, fake_mp3, tmp_path):
        path = fake_mp3()
        write_file_tags(path, _changes(title="Dune"), backup=False)
        assert [p.name for p in tmp_path.iterdir()] == ["book.mp3"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FilePreconditionError):
            write_file_tags(tmp_path / "gone.mp3", _changes(title="Dune"))

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.mp3"
        path.touch()
        with pytest.raises(FilePreconditionError):
            write_file_tags(path, _changes(title="Dune"))
        assert not backup_path(path).exists()

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "book.aac"
        path.write_bytes(b"\x00" * 64)
        with pytest.raises(UnsupportedFormatError):
            write_file_tags(path, _changes(title="Dune"))
        assert not backup_path(path).exists()

    def test_no_changes_is_a_no_op(self, fake_mp3):
        path = fake_mp3()
        original = path.read_bytes()
        write_file_tags(path, {})
        assert path.read_bytes() == original
        assert not backup_path(path).exists()

    def test_codec_failure_keeps_original(self, fake_mp3, tmp_path):
        path = fake_mp3()
        original = path.read_bytes()
        with patch(
            "audiobook_curator.tagging.codecs.Id3Codec.apply",
            side_effect=RuntimeError("bad frame"),
        ):
            with pytest.raises(TagWriteError, match="bad frame"):
                write_file_tags(path, _changes(title="Dune"))
        assert path.read_bytes() == original
        assert backup_path(path).read_bytes() == original
        assert sorted(p.name for p in tmp_path.iterdir()) == ["book.mp3", "book.mp3.backup"]

    def test_backup_failure_writes_nothing(self, fake_mp3):
        path = fake_mp3()
        original = path.read_bytes()
        with patch("audiobook_curator.tagging.writer.shutil.copy2", side_effect=OSError("disk full")):
            with pytest.raises(BackupError):
                write_file_tags(path, _changes(title="Dune"))
        assert path.read_bytes() == original


class TestWriteAudioFile:
    def test_status_written(self, fake_mp3):
        path = fake_mp3()
        f = AudioFile(id="1", path=path, filename=path.name, changes=_changes(title="Dune"))
        write_audio_file(f, backup=False)
        assert f.status == FileStatus.WRITTEN

    def test_status_failed(self, tmp_path):
        path = tmp_path / "empty.mp3"
        path.touch()
        f = AudioFile(id="1", path=path, filename=path.name, changes=_changes(title="Dune"))
        with pytest.raises(FilePreconditionError):
            write_audio_file(f)
        assert f.status == FileStatus.FAILED
