"""Materialize Redmine wiki pages and attachments on local storage."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

import frontmatter

from ..errors import FilesystemError, TransportError, UnsafePathError
from ..tasks import run_all
from .models import FailedAttachment, PageBackup
from .naming import safe_segment

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from ..redmine.client import RedmineClient
    from ..redmine.models import AttachmentRef, Project, WikiPage

logger = logging.getLogger(__name__)

PAGE_SUFFIX = ".md"
ATTACHMENTS_DIRNAME = "attachments"


class BackupWriter:
    """Persist wiki pages as ``<root>/<project>/<title>.md`` plus an attachments folder.

    Existing files are overwritten without any comparison, so running the
    backup twice against an unchanged server yields identical files. Files of
    pages removed on the server are left in place.
    """

    def __init__(
        self,
        root: Path,
        client: "RedmineClient",
        *,
        with_frontmatter: bool = False,
    ) -> None:
        self.root = root
        self.client = client
        self.with_frontmatter = with_frontmatter

    def prepare(self) -> Path:
        """Create the backup root if needed and return it."""

        return self._ensure_directory(self.root, parents=True)

    def project_directory(self, project: "Project") -> Path:
        return self.root / safe_segment(project.identifier)

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------
    async def write_page(self, project: "Project", page: "WikiPage") -> PageBackup:
        """Write ``page`` and download its attachments next to it."""

        project_dir = self._ensure_directory(self.project_directory(project))
        page_file = project_dir / safe_segment(page.title, suffix=PAGE_SUFFIX)
        self._write_bytes(page_file, self._render(page))
        logger.debug("[%s] wrote %s", project.identifier, page_file)

        backup = PageBackup(path=page_file)
        if page.attachments:
            attachment_dir = self._ensure_directory(project_dir / ATTACHMENTS_DIRNAME)
            await run_all(
                self._write_attachment(project, attachment_dir, ref, backup)
                for ref in page.attachments
            )
        return backup

    async def _write_attachment(
        self,
        project: "Project",
        directory: Path,
        ref: "AttachmentRef",
        backup: PageBackup,
    ) -> None:
        if ref is None or ref.id is None:
            return
        try:
            target = directory / safe_segment(ref.filename)
            content = await self.client.download_attachment(ref)
        except (TransportError, UnsafePathError) as exc:
            logger.warning("[%s] attachment %s skipped: %s", project.identifier, ref.filename, exc)
            backup.failed.append(FailedAttachment(ref=ref, error=exc))
            return
        if content is None:
            return
        self._write_bytes(target, content)
        backup.attachments.append(target)

    def _render(self, page: "WikiPage") -> bytes:
        if not self.with_frontmatter:
            return page.text.encode("utf-8")
        metadata = {key: value for key, value in page.metadata.items() if value is not None}
        post = frontmatter.Post(page.text, **metadata)
        return frontmatter.dumps(post).encode("utf-8")

    # ------------------------------------------------------------------
    # Filesystem primitives
    # ------------------------------------------------------------------
    @staticmethod
    def _ensure_directory(directory: Path, *, parents: bool = False) -> Path:
        try:
            directory.mkdir(parents=parents, exist_ok=True)
        except OSError as exc:
            raise FilesystemError(f"Cannot create directory {directory}: {exc}") from exc
        return directory

    @staticmethod
    def _write_bytes(path: Path, content: bytes) -> None:
        try:
            path.write_bytes(content)
        except OSError as exc:
            raise FilesystemError(f"Cannot write {path}: {exc}") from exc
