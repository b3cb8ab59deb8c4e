"""Shared test fixtures."""

from __future__ import annotations

import shutil
import subprocess

import pytest

_FFMPEG_ARGS = {
    ".m4a": ["-c:a", "aac"],
    ".m4b": ["-c:a", "aac", "-f", "ipod"],
    ".flac": ["-c:a", "flac"],
    ".ogg": ["-c:a", "libvorbis"],
    ".mp3": ["-q:a", "9"],
}


@pytest.fixture
def make_audio(tmp_path):
    """Factory fixture that creates short silent audio files with ffmpeg."""
    if shutil.which("ffmpeg") is None:
        pytest.skip("ffmpeg not installed")

    def _make(filename: str, duration_s: float = 0.5):
        path = tmp_path / filename
        cmd = [
            "ffmpeg", "-y",
            "-f", "lavfi", "-i", "anullsrc=r=44100:cl=mono",
            "-t", str(duration_s),
            "-map_metadata", "-1",
            *_FFMPEG_ARGS[path.suffix],
            str(path),
        ]
        result = subprocess.run(cmd, capture_output=True)
        if result.returncode != 0:
            pytest.skip(f"ffmpeg cannot encode {path.suffix}")
        return path

    return _make


@pytest.fixture
def fake_mp3(tmp_path):
    """An untagged file with an .mp3 name. ID3 tags can be written onto any bytes."""

    def _make(filename: str = "book.mp3"):
        path = tmp_path / filename
        path.write_bytes(b"\xff\xfb\x90\x00" + b"\x00" * 2048)
        return path

    return _make
