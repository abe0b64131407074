"""End-to-end tests of the backup orchestration against a fake Redmine."""

import asyncio
import logging
from pathlib import Path

import pytest

from redmine_wiki_backup.backup.service import BackupService
from redmine_wiki_backup.config import FetchPolicies
from redmine_wiki_backup.errors import DecodeError, FilesystemError, TransportError
from redmine_wiki_backup.redmine.client import DecodeErrorPolicy


def _snapshot(root):
    return {path.relative_to(root): path.read_bytes() for path in root.rglob("*") if path.is_file()}


@pytest.fixture
def service(client, writer):
    return BackupService(client, writer)


class TestBackupRun:
    @pytest.mark.asyncio
    async def test_single_page_without_attachments(self, fake_redmine, service, writer):
        fake_redmine.add_projects(["demo"])
        fake_redmine.add_wiki("demo", {"Home": ("hi", [])})

        result = await service.run()

        assert (writer.root / "demo" / "Home.md").read_text() == "hi"
        assert not (writer.root / "demo" / "attachments").exists()
        assert result.projects == 1
        assert result.pages_written == 1
        assert result.ok

    @pytest.mark.asyncio
    async def test_pages_and_attachments_across_projects(self, fake_redmine, service, writer):
        fake_redmine.add_projects(["alpha", "beta"])
        fake_redmine.add_wiki(
            "alpha",
            {
                "Home": ("alpha home", [{"id": 11, "filename": "diagram.svg"}]),
                "Install": ("steps", []),
            },
        )
        fake_redmine.add_wiki("beta", {"Wiki": ("beta wiki", [])})
        fake_redmine.add_raw("/attachments/download/11", b"<svg/>")

        result = await service.run()

        assert _snapshot(writer.root) == {
            Path("alpha", "Home.md"): b"alpha home",
            Path("alpha", "Install.md"): b"steps",
            Path("alpha", "attachments", "diagram.svg"): b"<svg/>",
            Path("beta", "Wiki.md"): b"beta wiki",
        }
        assert result.pages_found == 3
        assert result.pages_written == 3
        assert result.attachments_written == 1

    @pytest.mark.asyncio
    async def test_page_fetches_follow_listing_order(self, fake_redmine, service):
        fake_redmine.add_projects(["demo"])
        fake_redmine.add_wiki("demo", {"Zeta": ("z", []), "Alpha": ("a", []), "Mid": ("m", [])})

        await service.run()

        page_requests = [path for path in fake_redmine.paths() if "include=attachments" in path]
        assert page_requests == [
            "/projects/demo/wiki/Zeta.json?include=attachments",
            "/projects/demo/wiki/Alpha.json?include=attachments",
            "/projects/demo/wiki/Mid.json?include=attachments",
        ]

    @pytest.mark.asyncio
    async def test_running_twice_is_idempotent(self, fake_redmine, service, writer):
        fake_redmine.add_projects(["demo"])
        fake_redmine.add_wiki("demo", {"Home": ("text\r\n", [{"id": 1, "filename": "a.bin"}])})
        fake_redmine.add_raw("/attachments/download/1", b"\x00\x01")

        await service.run()
        first = _snapshot(writer.root)
        await service.run()

        assert _snapshot(writer.root) == first


class TestErrorPolicies:
    @pytest.mark.asyncio
    async def test_malformed_project_list_aborts_without_output(self, fake_redmine, service, writer):
        fake_redmine.add_projects(["demo"] * 25)
        fake_redmine.add_raw("/projects.json?offset=25", b"<html>")
        fake_redmine.add_wiki("demo", {"Home": ("hi", [])})

        with pytest.raises(DecodeError):
            await service.run()

        assert list(writer.root.iterdir()) == []
        assert not any("wiki" in path for path in fake_redmine.paths())

    @pytest.mark.asyncio
    async def test_project_list_transport_error_aborts(self, fake_redmine, service):
        fake_redmine.add_error("/projects.json?offset=0")

        with pytest.raises(TransportError):
            await service.run()

    @pytest.mark.asyncio
    async def test_malformed_wiki_index_skips_only_that_project(
        self, fake_redmine, service, writer, caplog
    ):
        caplog.set_level(logging.WARNING, logger="redmine_wiki_backup")
        fake_redmine.add_projects(["broken", "demo"])
        fake_redmine.add_raw("/projects/broken/wiki/index.json", b"Internal error")
        fake_redmine.add_wiki("demo", {"Home": ("hi", [])})

        result = await service.run()

        assert not (writer.root / "broken").exists()
        assert (writer.root / "demo" / "Home.md").read_text() == "hi"
        [issue] = result.issues
        assert issue.operation == "wiki_index"
        assert issue.context == "[broken]"
        assert isinstance(issue.error, DecodeError)
        [warning] = [record for record in caplog.records if record.levelno == logging.WARNING]
        assert "[broken]" in warning.getMessage()
        assert "Internal error" in warning.getMessage()

    @pytest.mark.asyncio
    async def test_project_without_wiki_is_reported(self, fake_redmine, service, writer):
        fake_redmine.add_projects(["nowiki"])

        result = await service.run()

        assert list(writer.root.iterdir()) == []
        assert isinstance(result.issues[0].error, TransportError)

    @pytest.mark.asyncio
    async def test_malformed_page_is_skipped(self, fake_redmine, service, writer, caplog):
        caplog.set_level(logging.WARNING, logger="redmine_wiki_backup")
        fake_redmine.add_projects(["demo"])
        fake_redmine.add_wiki("demo", {"Good": ("ok", []), "Bad": ("", [])})
        fake_redmine.add_raw("/projects/demo/wiki/Bad.json?include=attachments", b"{truncated")

        result = await service.run()

        assert (writer.root / "demo" / "Good.md").read_text() == "ok"
        assert not (writer.root / "demo" / "Bad.md").exists()
        assert result.pages_written == 1
        assert [issue.context for issue in result.issues] == ["[demo][Bad]"]
        [warning] = [record for record in caplog.records if record.levelno == logging.WARNING]
        assert "[demo][Bad]" in warning.getMessage()
        assert "{truncated" in warning.getMessage()

    @pytest.mark.asyncio
    async def test_abort_policy_for_pages(self, fake_redmine, client, writer):
        fake_redmine.add_projects(["demo"])
        fake_redmine.add_wiki("demo", {"Bad": ("", [])})
        fake_redmine.add_raw("/projects/demo/wiki/Bad.json?include=attachments", b"{")
        service = BackupService(
            client, writer, policies=FetchPolicies(wiki_page=DecodeErrorPolicy.ABORT)
        )

        with pytest.raises(DecodeError):
            await service.run()

    @pytest.mark.asyncio
    async def test_failed_attachment_is_reported(self, fake_redmine, service, writer):
        fake_redmine.add_projects(["demo"])
        fake_redmine.add_wiki("demo", {"Home": ("hi", [{"id": 4, "filename": "gone.zip"}])})
        fake_redmine.add_error("/attachments/download/4")

        result = await service.run()

        assert (writer.root / "demo" / "Home.md").read_text() == "hi"
        [issue] = result.issues
        assert issue.operation == "attachment"
        assert issue.context == "[demo][Home][gone.zip]"
        assert not result.ok


class TestMalformedEntries:
    @pytest.mark.asyncio
    async def test_null_index_entry_skips_only_that_project(self, fake_redmine, service, writer):
        fake_redmine.add_projects(["broken", "demo"])
        fake_redmine.add_json("/projects/broken/wiki/index.json", {"wiki_pages": [None]})
        fake_redmine.add_wiki("demo", {"Home": ("hi", [])})

        result = await service.run()

        assert (writer.root / "demo" / "Home.md").read_text() == "hi"
        [issue] = result.issues
        assert issue.context == "[broken]"
        assert isinstance(issue.error, DecodeError)

    @pytest.mark.asyncio
    async def test_null_attachment_entry_skips_only_that_page(self, fake_redmine, service, writer):
        fake_redmine.add_projects(["demo"])
        fake_redmine.add_wiki("demo", {"Home": ("hi", []), "Odd": ("odd", [None])})

        result = await service.run()

        assert (writer.root / "demo" / "Home.md").read_text() == "hi"
        assert not (writer.root / "demo" / "Odd.md").exists()
        assert [issue.context for issue in result.issues] == ["[demo][Odd]"]


class TestFatalErrors:
    @pytest.mark.asyncio
    async def test_pending_pages_are_cancelled_before_run_raises(self, fake_redmine, service, writer):
        fake_redmine.add_projects(["demo"])
        fake_redmine.add_wiki("demo", {"..": ("unsafe", []), "Slow": ("late", [])})
        fake_redmine.delays["/projects/demo/wiki/Slow.json?include=attachments"] = 0.2

        with pytest.raises(FilesystemError):
            await service.run()
        await asyncio.sleep(0.4)

        assert not (writer.root / "demo" / "Slow.md").exists()

    @pytest.mark.asyncio
    async def test_pending_attachments_are_cancelled_before_run_raises(
        self, fake_redmine, service, writer
    ):
        fake_redmine.add_projects(["demo"])
        fake_redmine.add_wiki(
            "demo",
            {"Home": ("hi", [{"id": 1, "filename": "clash"}, {"id": 2, "filename": "late.bin"}])},
        )
        fake_redmine.add_raw("/attachments/download/1", b"x")
        fake_redmine.add_raw("/attachments/download/2", b"y")
        fake_redmine.delays["/attachments/download/2"] = 0.2
        attachments = writer.root / "demo" / "attachments"
        (attachments / "clash").mkdir(parents=True)

        with pytest.raises(FilesystemError):
            await service.run()
        await asyncio.sleep(0.4)

        assert not (attachments / "late.bin").exists()
