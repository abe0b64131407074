"""Shared fixtures: an in-memory Redmine server behind ``httpx.MockTransport``."""

import asyncio
import json

import httpx
import pytest

from redmine_wiki_backup.local.writer import BackupWriter
from redmine_wiki_backup.redmine.client import RedmineClient, ServiceConfig
from redmine_wiki_backup.redmine.models import Project

BASE_URL = "https://x.test"


class FakeRedmine:
    """Route table keyed by ``path?query`` returning canned responses."""

    def __init__(self):
        self.routes = {}
        self.requests = []
        self.delays = {}

    def add_json(self, route, payload, *, status=200):
        self.routes[route] = (status, json.dumps(payload).encode("utf-8"))

    def add_raw(self, route, body, *, status=200):
        self.routes[route] = (status, body)

    def add_error(self, route):
        self.routes[route] = None

    def add_projects(self, *pages):
        for index, identifiers in enumerate(pages):
            self.add_json(
                f"/projects.json?offset={index * 25}",
                {"projects": [project_payload(identifier) for identifier in identifiers]},
            )

    def add_wiki(self, identifier, pages):
        """Register an index and full pages: ``pages`` maps title -> (text, attachments)."""

        self.add_json(
            f"/projects/{identifier}/wiki/index.json",
            {"wiki_pages": [{"title": title, "version": 1} for title in pages]},
        )
        for title, (text, attachments) in pages.items():
            self.add_json(
                f"/projects/{identifier}/wiki/{title}.json?include=attachments",
                {"wiki_page": {"title": title, "text": text, "version": 1, "attachments": attachments}},
            )

    @staticmethod
    def route_of(request):
        query = request.url.query.decode()
        return request.url.path + (f"?{query}" if query else "")

    def paths(self):
        return [self.route_of(request) for request in self.requests]

    async def handler(self, request):
        self.requests.append(request)
        route = self.route_of(request)
        if route in self.delays:
            await asyncio.sleep(self.delays[route])
        if route not in self.routes:
            return httpx.Response(404, content=b"")
        entry = self.routes[route]
        if entry is None:
            raise httpx.ConnectError("connection refused", request=request)
        status, body = entry
        return httpx.Response(status, content=body)


def project_payload(identifier, project_id=1):
    return {"id": project_id, "identifier": identifier, "name": identifier.title()}


@pytest.fixture
def fake_redmine():
    return FakeRedmine()


@pytest.fixture
def make_client(fake_redmine):
    def _make(**kwargs):
        config = ServiceConfig(base_url=BASE_URL, **kwargs)
        return RedmineClient(config, transport=httpx.MockTransport(fake_redmine.handler))

    return _make


@pytest.fixture
def client(make_client):
    return make_client()


@pytest.fixture
def writer(tmp_path, client):
    return BackupWriter(tmp_path / "out", client)


@pytest.fixture
def demo_project():
    return Project(id=1, identifier="demo", name="Demo")
