"""Exception hierarchy and error categorization for the audiobook curator."""

from pathlib import Path

from .models import ErrorCategory


class CuratorError(Exception):
    """Base exception for all curator errors."""


class ConfigError(CuratorError):
    """Invalid or missing configuration."""


class CacheError(CuratorError):
    """Cache read/write failure."""


class CancelledError(CuratorError):
    """A batch was cancelled before it started."""


class SourceError(CuratorError):
    """An external metadata source failed (network, non-2xx, bad payload)."""

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source
        self.message = message


class FileError(CuratorError):
    """Base for per-file failures. Carries the path and a short reason."""

    def __init__(self, path: Path | str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = Path(path)
        self.reason = reason


class TagReadError(FileError):
    """File could not be opened for tag reading at all."""


class FilePreconditionError(FileError):
    """Target file is missing or empty."""


class UnsupportedFormatError(FileError):
    """No tag codec handles this extension."""

    def __init__(self, path: Path | str, extension: str) -> None:
        super().__init__(path, f"unsupported format {extension or '(none)'}")
        self.extension = extension


class BackupError(FileError):
    """Copy-before-write failed; the write was not attempted."""


class TagWriteError(FileError):
    """The tag library failed while serializing or saving."""


def categorize_error(exc: BaseException) -> ErrorCategory:
    """Map an exception to an error category.

    Source failures and plain OS errors (busy file, network share hiccup) are
    transient. Everything that will fail the same way on retry is permanent.
    """
    if isinstance(exc, SourceError):
        return ErrorCategory.TRANSIENT
    if isinstance(exc, FileError):
        return ErrorCategory.PERMANENT
    if isinstance(exc, OSError):
        return ErrorCategory.TRANSIENT
    return ErrorCategory.PERMANENT
