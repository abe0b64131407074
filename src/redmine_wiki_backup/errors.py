"""Error taxonomy shared by the backup components."""

from __future__ import annotations


class BackupError(Exception):
    """Base class for every error raised by the backup tool."""


class ConfigMissing(BackupError):
    """No usable configuration source could be read."""


class ConfigIncomplete(BackupError):
    """Configuration was found but lacks a required value."""


class TransportError(BackupError):
    """A request to the Redmine server failed before a usable body arrived."""

    def __init__(self, path: str, cause: Exception) -> None:
        super().__init__(f"Request to {path} failed: {cause}")
        self.path = path
        self.cause = cause


class DecodeError(BackupError):
    """A response body could not be decoded into the expected JSON shape."""

    def __init__(self, path: str, body: str, reason: str = "Cannot parse JSON string") -> None:
        super().__init__(f"{reason} from {path}")
        self.path = path
        self.body = body
        self.reason = reason


class FilesystemError(BackupError):
    """Local storage could not be prepared or written."""


class UnsafePathError(FilesystemError):
    """A remote name cannot be turned into a safe path segment."""

    def __init__(self, value: object, reason: str) -> None:
        super().__init__(f"Cannot use {value!r} as a path segment: {reason}")
        self.value = value
