from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from utils.file_utils import FileMissingError, FileUtils, InvalidFileTypeError, UnsupportedFileFormatError

if TYPE_CHECKING:
    from pathlib import Path


def test_resolve_path_expands_user_and_variables(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("SPEECH_ENV", "dev")

    assert FileUtils.resolve_path("~/cache/$SPEECH_ENV") == (tmp_path / "cache" / "dev").resolve()


def test_resolve_path_relative_to_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    assert FileUtils.resolve_path("audio/out.wav") == (tmp_path / "audio" / "out.wav").resolve()


def test_resolve_path_strict_requires_existence(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        FileUtils.resolve_path(tmp_path / "missing", strict=True)


def test_ensure_directory_creates_parents(tmp_path: Path) -> None:
    target: Path = tmp_path / "a" / "b"

    assert FileUtils.ensure_directory(target) == target
    assert target.is_dir()
    # Existing directories are accepted
    FileUtils.ensure_directory(target)


def test_ensure_directory_rejects_file(tmp_path: Path) -> None:
    target: Path = tmp_path / "file"
    target.write_text("x")

    with pytest.raises(InvalidFileTypeError):
        FileUtils.ensure_directory(target)


def test_validate_file_path(tmp_path: Path) -> None:
    wav: Path = tmp_path / "voice.WAV"
    wav.write_bytes(b"RIFF")
    mp3: Path = tmp_path / "voice.mp3"
    mp3.write_bytes(b"ID3")

    FileUtils.validate_file_path(wav, ".wav")
    with pytest.raises(FileMissingError):
        FileUtils.validate_file_path(tmp_path / "none.wav", [".wav"])
    with pytest.raises(InvalidFileTypeError):
        FileUtils.validate_file_path(tmp_path, [".wav"])
    with pytest.raises(UnsupportedFileFormatError, match=r"\.mp3"):
        FileUtils.validate_file_path(mp3, [".wav"])


def test_atomic_write_bytes_replaces_content(tmp_path: Path) -> None:
    target: Path = tmp_path / "out.wav"
    target.write_bytes(b"old")

    FileUtils.atomic_write_bytes(target, b"new")

    assert target.read_bytes() == b"new"
    assert [p.name for p in tmp_path.iterdir()] == ["out.wav"]


def test_atomic_write_bytes_cleans_up_on_failure(tmp_path: Path) -> None:
    target: Path = tmp_path / "dir_in_the_way"
    (target / "child").mkdir(parents=True)

    with pytest.raises(OSError):
        FileUtils.atomic_write_bytes(target, b"data")

    assert [p.name for p in tmp_path.iterdir()] == ["dir_in_the_way"]
