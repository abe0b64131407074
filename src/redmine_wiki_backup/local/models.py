"""Dataclasses describing what a backup wrote to disk."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from ..errors import BackupError
from ..redmine.models import AttachmentRef


@dataclass(slots=True)
class FailedAttachment:
    """Attachment that could not be downloaded or named."""

    ref: AttachmentRef
    error: BackupError


@dataclass(slots=True)
class PageBackup:
    """Files written for one wiki page."""

    path: Path
    attachments: list[Path] = field(default_factory=list)
    failed: list[FailedAttachment] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed
