"""Command-line interface for the Redmine wiki backup tool."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .backup.service import BackupResult, create_client, create_service
from .config import BackupConfig, ensure_config
from .errors import BackupError, ConfigIncomplete, ConfigMissing, FilesystemError

app = typer.Typer(help="Back up Redmine wiki pages and attachments into a local folder tree.")
console = Console()
logger = logging.getLogger("redmine_wiki_backup")


def _configure_logging(*, verbose: bool, quiet: bool) -> None:
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="%H:%M:%S",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _format_result(result: BackupResult) -> None:
    table = Table(title="Redmine Wiki Backup Summary")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Projects", str(result.projects))
    table.add_row("Wiki pages found", str(result.pages_found))
    table.add_row("Wiki pages written", str(result.pages_written))
    table.add_row("Attachments written", str(result.attachments_written))
    table.add_row("Issues", str(len(result.issues)))
    console.print(table)

    if result.issues:
        issues = Table(title="Issues")
        issues.add_column("Operation")
        issues.add_column("Context")
        issues.add_column("Error")
        for issue in result.issues:
            issues.add_row(issue.operation, issue.context, str(issue.error))
        console.print(issues)


def _load_config(ctx: typer.Context, **overrides: object) -> BackupConfig:
    """Resolve configuration, exiting quietly (code 0) when it is unusable."""

    try:
        return ensure_config(config_path=ctx.obj.get("config_path"), overrides=overrides)
    except (ConfigMissing, ConfigIncomplete) as exc:
        logger.error("%s", exc)
        raise typer.Exit(code=0) from exc


@app.callback()
def main(
    ctx: typer.Context,
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a JSON or TOML configuration file",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every request"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only log errors"),
) -> None:
    _configure_logging(verbose=verbose, quiet=quiet)
    ctx.obj = {"config_path": config_path}


@app.command()
def backup(
    ctx: typer.Context,
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Backup root directory (defaults to outputDir or the working directory)",
    ),
    url: Optional[str] = typer.Option(None, "--url", help="Base URL of the Redmine server"),
    user: Optional[str] = typer.Option(None, help="Basic-auth user name"),
    password: Optional[str] = typer.Option(None, help="Basic-auth password"),
    api_key: Optional[str] = typer.Option(None, "--api-key", help="Redmine REST API key"),
    insecure: Optional[bool] = typer.Option(
        None,
        "--insecure/--secure",
        help="Skip TLS certificate validation",
    ),
    max_concurrency: Optional[int] = typer.Option(
        None,
        "--max-concurrency",
        min=1,
        help="Maximum number of requests in flight",
    ),
    with_frontmatter: Optional[bool] = typer.Option(
        None,
        "--frontmatter/--no-frontmatter",
        help="Prefix page files with YAML front matter",
    ),
    fail_on_issues: bool = typer.Option(
        False,
        "--fail-on-issues",
        help="Exit with code 2 when some pages or attachments could not be backed up",
    ),
) -> None:
    """Download every wiki page and attachment of every project."""

    config = _load_config(
        ctx,
        redmine_url=url,
        user=user,
        password=password,
        api_key=api_key,
        output_dir=output,
        insecure=insecure,
        max_concurrency=max_concurrency,
        frontmatter=with_frontmatter,
    )

    try:
        result = asyncio.run(_run_backup(config))
    except FilesystemError as exc:
        logger.error("Backup aborted: %s", exc)
        raise typer.Exit(code=1) from exc
    except BackupError as exc:
        logger.error("Backup aborted while listing projects: %s", exc)
        raise typer.Exit(code=1) from exc

    console.print(f"Backed up wiki pages into [bold]{config.resolved_output_dir()}[/bold].")
    _format_result(result)
    if fail_on_issues and not result.ok:
        raise typer.Exit(code=2)


async def _run_backup(config: BackupConfig) -> BackupResult:
    async with create_client(config) as client:
        service = create_service(config, client)
        return await service.run()


@app.command()
def projects(
    ctx: typer.Context,
    url: Optional[str] = typer.Option(None, "--url", help="Base URL of the Redmine server"),
    user: Optional[str] = typer.Option(None, help="Basic-auth user name"),
    password: Optional[str] = typer.Option(None, help="Basic-auth password"),
    api_key: Optional[str] = typer.Option(None, "--api-key", help="Redmine REST API key"),
) -> None:
    """List the projects visible to the configured account."""

    config = _load_config(ctx, redmine_url=url, user=user, password=password, api_key=api_key)

    async def _list():
        async with create_client(config) as client:
            return await client.list_projects(on_decode_error=config.on_decode_error.projects)

    try:
        found = asyncio.run(_list())
    except BackupError as exc:
        logger.error("%s", exc)
        raise typer.Exit(code=1) from exc

    table = Table(title=f"Projects on {config.base_url}")
    table.add_column("Identifier")
    table.add_column("Name")
    table.add_column("ID", justify="right")
    for project in found:
        table.add_row(project.identifier, project.name, str(project.id))
    console.print(table)


def run() -> None:
    """Entry point for console scripts."""

    app()


if __name__ == "__main__":  # pragma: no cover
    run()
