"""Async HTTP client wrapper for the Redmine REST API."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional
from urllib.parse import quote

import httpx

from ..errors import DecodeError, TransportError
from .models import AttachmentRef, Project, WikiPage, WikiPageSummary

logger = logging.getLogger(__name__)

PROJECTS_PER_PAGE = 25
DEFAULT_MAX_CONCURRENCY = 8


class ResponseKind(str, Enum):
    JSON = "json"
    BINARY = "binary"


class DecodeErrorPolicy(str, Enum):
    """What a fetch operation does when the server returns an undecodable body."""

    ABORT = "abort"
    SKIP = "skip"


@dataclass(frozen=True, slots=True)
class BasicAuth:
    """HTTP basic authentication payload."""

    user: str
    password: str


@dataclass(frozen=True, slots=True)
class ServiceConfig:
    """Transport settings for one Redmine client.

    TLS verification lives here instead of in process-wide state so that two
    clients in the same process can disagree about it.
    """

    base_url: str
    auth: Optional[BasicAuth] = None
    api_key: Optional[str] = None
    verify_tls: bool = True
    timeout: Optional[float] = None
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY

    def __post_init__(self) -> None:
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")


class RedmineClient:
    """Thin async wrapper above the Redmine REST API."""

    def __init__(
        self,
        config: ServiceConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config
        headers = {"X-Redmine-API-Key": config.api_key} if config.api_key else None
        auth = (config.auth.user, config.auth.password) if config.auth else None
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            auth=auth,
            headers=headers,
            verify=config.verify_tls,
            timeout=config.timeout,
            follow_redirects=True,
            transport=transport,
        )
        self._slots = asyncio.Semaphore(config.max_concurrency)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "RedmineClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Low-level helpers
    # ------------------------------------------------------------------
    async def _send(self, path: str, params: Optional[dict] = None) -> httpx.Response:
        async with self._slots:
            try:
                response = await self._client.get(path, params=params)
                response.raise_for_status()
            except httpx.HTTPError as exc:
                raise TransportError(path, exc) from exc
        return response

    @staticmethod
    def _decode(path: str, response: httpx.Response) -> Any:
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise DecodeError(path, response.text) from exc

    async def request(
        self,
        path: str,
        kind: ResponseKind = ResponseKind.JSON,
        *,
        params: Optional[dict] = None,
    ) -> Any:
        """GET ``path`` relative to the base URL and return JSON data or raw bytes."""

        response = await self._send(path, params)
        if kind is ResponseKind.BINARY:
            return response.content
        return self._decode(path, response)

    async def _get_member(
        self,
        path: str,
        key: str,
        expected: type,
        *,
        params: Optional[dict] = None,
    ) -> tuple[Any, str]:
        response = await self._send(path, params)
        data = self._decode(path, response)
        value = data.get(key) if isinstance(data, dict) else None
        if not isinstance(value, expected):
            raise DecodeError(path, response.text, reason=f"Missing {key!r} in response")
        return value, response.text

    # ------------------------------------------------------------------
    # Parsers
    # ------------------------------------------------------------------
    @staticmethod
    def _to_project(data: dict) -> Project:
        parent = data.get("parent") or {}
        return Project(
            id=int(data["id"]),
            identifier=str(data["identifier"]),
            name=data.get("name", ""),
            parent_id=parent.get("id"),
            raw=data,
        )

    @staticmethod
    def _to_page_summary(data: dict) -> WikiPageSummary:
        parent = data.get("parent") or {}
        return WikiPageSummary(
            title=str(data["title"]),
            parent_title=parent.get("title"),
            version=data.get("version"),
        )

    @staticmethod
    def _to_attachment(data: dict) -> AttachmentRef:
        raw_id = data.get("id")
        return AttachmentRef(
            id=int(raw_id) if raw_id is not None else None,
            filename=data.get("filename"),
            filesize=data.get("filesize"),
            content_type=data.get("content_type"),
        )

    @staticmethod
    def _to_wiki_page(data: dict) -> WikiPage:
        parent = data.get("parent") or {}
        author = data.get("author") or {}
        return WikiPage(
            title=str(data["title"]),
            text=data.get("text") or "",
            version=data.get("version"),
            author=author.get("name"),
            updated_on=data.get("updated_on"),
            comments=data.get("comments"),
            parent_title=parent.get("title"),
            attachments=[
                RedmineClient._to_attachment(item) for item in data.get("attachments") or []
            ],
        )

    @staticmethod
    def _parse(path: str, body: str, parser, data):
        if not isinstance(data, dict):
            raise DecodeError(path, body, reason=f"Unexpected entry {data!r}")
        try:
            return parser(data)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise DecodeError(path, body, reason=f"Unexpected payload ({exc})") from exc

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def list_projects(
        self,
        *,
        on_decode_error: DecodeErrorPolicy = DecodeErrorPolicy.ABORT,
    ) -> list[Project]:
        """Fetch every project, one page of ``PROJECTS_PER_PAGE`` at a time.

        A page holding fewer than ``PROJECTS_PER_PAGE`` entries ends the
        listing. A full page always triggers one more request, which may come
        back empty. Transport errors always propagate; decode errors propagate
        under ``ABORT`` and end the listing under ``SKIP``.
        """

        projects: list[Project] = []
        page = 0
        while True:
            path = "/projects.json"
            logger.info("requesting projects list (page=%d)...", page)
            try:
                entries, body = await self._get_member(
                    path,
                    "projects",
                    list,
                    params={"offset": page * PROJECTS_PER_PAGE},
                )
                batch = [self._parse(path, body, self._to_project, entry) for entry in entries]
            except DecodeError as exc:
                if on_decode_error is DecodeErrorPolicy.ABORT:
                    raise
                logger.warning("Cannot parse projects list (page=%d): %s", page, exc.body)
                return projects
            projects.extend(batch)
            if len(batch) < PROJECTS_PER_PAGE:
                return projects
            page += 1

    async def list_wiki_pages(self, project: Project) -> list[WikiPageSummary]:
        path = f"/projects/{project.identifier}/wiki/index.json"
        entries, body = await self._get_member(path, "wiki_pages", list)
        return [self._parse(path, body, self._to_page_summary, entry) for entry in entries]

    async def get_wiki_page(self, project: Project, title: str) -> WikiPage:
        path = f"/projects/{project.identifier}/wiki/{quote(title, safe='')}.json"
        logger.info("requesting %s?include=attachments...", path)
        data, body = await self._get_member(
            path, "wiki_page", dict, params={"include": "attachments"}
        )
        return self._parse(path, body, self._to_wiki_page, data)

    async def download_attachment(self, ref: Optional[AttachmentRef]) -> Optional[bytes]:
        """Return the binary content of ``ref``, or ``None`` when it has no id."""

        if ref is None or ref.id is None:
            return None
        return await self.request(f"/attachments/download/{ref.id}", ResponseKind.BINARY)
