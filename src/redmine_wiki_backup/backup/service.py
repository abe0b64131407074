"""End-to-end crawl: projects, their wiki pages, page content and attachments."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Optional, TypeVar

from redmine_wiki_backup.config import BackupConfig, FetchPolicies
from redmine_wiki_backup.errors import BackupError, DecodeError, TransportError
from redmine_wiki_backup.local.writer import BackupWriter
from redmine_wiki_backup.redmine.client import DecodeErrorPolicy, RedmineClient
from redmine_wiki_backup.redmine.models import Project, WikiPage, WikiPageSummary
from redmine_wiki_backup.tasks import run_all

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class BackupIssue:
    """A fetch that failed without aborting the run."""

    operation: str
    context: str
    error: BackupError


@dataclass(slots=True)
class BackupResult:
    """Report produced after a backup run."""

    projects: int = 0
    pages_found: int = 0
    pages_written: int = 0
    attachments_written: int = 0
    issues: list[BackupIssue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.issues


class BackupService:
    """Coordinate the crawl between the Redmine client and the local writer."""

    def __init__(
        self,
        client: RedmineClient,
        writer: BackupWriter,
        *,
        policies: Optional[FetchPolicies] = None,
    ) -> None:
        self.client = client
        self.writer = writer
        self.policies = policies or FetchPolicies()

    async def run(self) -> BackupResult:
        """Back up every wiki page of every project and wait for all of it.

        Project listing failures propagate before anything is written, as do
        filesystem errors. Other failures are logged and collected in the
        returned report.
        """

        self.writer.prepare()
        result = BackupResult()
        projects = await self.client.list_projects(on_decode_error=self.policies.projects)
        result.projects = len(projects)
        logger.info("%d projects found.", len(projects))

        await run_all(self._backup_project(project, result) for project in projects)
        return result

    async def _backup_project(self, project: Project, result: BackupResult) -> None:
        pages: list[WikiPageSummary] = await self._guard(
            self.client.list_wiki_pages(project),
            result,
            operation="wiki_index",
            context=f"[{project.identifier}]",
            policy=self.policies.wiki_index,
            default=[],
        )
        if not pages:
            return
        result.pages_found += len(pages)
        logger.info("%d wiki pages found for project %s", len(pages), project.identifier)
        await run_all(self._backup_page(project, summary.title, result) for summary in pages)

    async def _backup_page(self, project: Project, title: str, result: BackupResult) -> None:
        page: Optional[WikiPage] = await self._guard(
            self.client.get_wiki_page(project, title),
            result,
            operation="wiki_page",
            context=f"[{project.identifier}][{title}]",
            policy=self.policies.wiki_page,
            default=None,
        )
        if page is None:
            return
        backup = await self.writer.write_page(project, page)
        result.pages_written += 1
        result.attachments_written += len(backup.attachments)
        for failed in backup.failed:
            result.issues.append(
                BackupIssue(
                    operation="attachment",
                    context=f"[{project.identifier}][{title}][{failed.ref.filename}]",
                    error=failed.error,
                )
            )

    @staticmethod
    async def _guard(
        awaitable: Awaitable[T],
        result: BackupResult,
        *,
        operation: str,
        context: str,
        policy: DecodeErrorPolicy,
        default: T,
    ) -> T:
        try:
            return await awaitable
        except DecodeError as exc:
            if policy is DecodeErrorPolicy.ABORT:
                raise
            logger.warning("%s %s: %s", context, exc.reason, exc.body)
            result.issues.append(BackupIssue(operation=operation, context=context, error=exc))
        except TransportError as exc:
            logger.warning("%s %s", context, exc)
            result.issues.append(BackupIssue(operation=operation, context=context, error=exc))
        return default


def create_client(config: BackupConfig) -> RedmineClient:
    return RedmineClient(config.service_config())


def create_service(config: BackupConfig, client: RedmineClient) -> BackupService:
    writer = BackupWriter(
        config.resolved_output_dir(),
        client,
        with_frontmatter=config.frontmatter,
    )
    return BackupService(client, writer, policies=config.on_decode_error)
