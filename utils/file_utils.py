from __future__ import annotations

import os
import tempfile
from pathlib import Path

__all__: list[str] = [
    "FileMissingError",
    "FileUtils",
    "FileUtilsError",
    "InvalidFileTypeError",
    "UnsupportedFileFormatError",
]


class FileUtils:
    """Path and file helpers shared by the speech engines and the playback manager."""

    @staticmethod
    def resolve_path(path: str | Path, *, strict: bool = False) -> Path:
        """Convert a user-input path to an absolute path.

        Expands environment variables (e.g., $HOME, %APPDATA%), expands ~ to the home directory,
        and resolves relative paths against the current working directory.

        Args:
            path (str | Path): The input path (e.g., "~/.cache/$APP_ENV/speech").
            strict (bool): Raise if the path does not exist. Defaults to False.

        Returns:
            Path: The absolute path.
        """
        expanded: str = os.path.expandvars(str(path))
        user_expanded: Path = Path(expanded).expanduser()

        if user_expanded.is_absolute():
            return user_expanded.resolve(strict=strict)
        return (Path.cwd() / user_expanded).resolve(strict=strict)

    @staticmethod
    def ensure_directory(path: Path) -> Path:
        """Create a directory (and parents) if missing and return it.

        Raises:
            InvalidFileTypeError: If the path exists but is not a directory.
        """
        if path.exists() and not path.is_dir():
            msg = f"Not a directory: {path}"
            raise InvalidFileTypeError(msg)
        path.mkdir(parents=True, exist_ok=True)
        return path

    @staticmethod
    def validate_file_path(file_path: Path, suffix: list[str] | str) -> None:
        """Validate that a regular file exists and has an allowed suffix.

        Args:
            file_path (Path): The path to the file to validate.
            suffix (list[str] | str): Allowed file suffix(es) (e.g., [".wav"] or ".wav").

        Raises:
            FileMissingError: If the file does not exist.
            InvalidFileTypeError: If the path is a directory.
            UnsupportedFileFormatError: If the file's suffix is not in the allowed list.
        """
        if isinstance(suffix, str):
            suffix = [suffix]

        if not file_path.exists():
            msg = f"File does not exist: {file_path}"
            raise FileMissingError(msg)
        if file_path.is_dir():
            msg = f"Invalid file type (directory): {file_path}"
            raise InvalidFileTypeError(msg)
        if file_path.suffix.lower() not in [s.lower() for s in suffix]:
            msg = f"Unsupported file format: '{file_path.suffix}'. Supported formats are: {', '.join(suffix)}"
            raise UnsupportedFileFormatError(msg)

    @staticmethod
    def atomic_write_bytes(file_path: Path, data: bytes) -> None:
        """Write data to a temporary file in the target directory, then move it into place.

        Readers never observe a partially written file.

        Raises:
            OSError: If the file cannot be written or moved.
        """
        fd, tmp_name = tempfile.mkstemp(dir=file_path.parent, prefix=".tmp_", suffix=file_path.suffix)
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as fhdl:
                fhdl.write(data)
                fhdl.flush()
            tmp_path.replace(file_path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise


class FileUtilsError(Exception):
    """Custom exception for FileUtils-related errors."""


class FileMissingError(FileUtilsError):
    """Custom exception for file missing errors."""


class InvalidFileTypeError(FileUtilsError):
    """Custom exception for invalid file type errors."""


class UnsupportedFileFormatError(FileUtilsError):
    """Custom exception for unsupported file format errors."""
