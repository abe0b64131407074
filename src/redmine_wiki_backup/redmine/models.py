"""Typed models for Redmine projects and wiki content."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(slots=True)
class Project:
    """Redmine project as returned by the project listing."""

    id: int
    identifier: str
    name: str
    parent_id: Optional[int] = None
    raw: dict = field(default_factory=dict, repr=False)


@dataclass(slots=True)
class WikiPageSummary:
    """Entry of a project's wiki index, used to drive page retrieval."""

    title: str
    parent_title: Optional[str] = None
    version: Optional[int] = None


@dataclass(slots=True)
class AttachmentRef:
    """Attachment metadata included in a wiki page payload."""

    id: Optional[int]
    filename: Optional[str]
    filesize: Optional[int] = None
    content_type: Optional[str] = None


@dataclass(slots=True)
class WikiPage:
    """Full wiki page with its current text and attachment references."""

    title: str
    text: str
    version: Optional[int] = None
    author: Optional[str] = None
    updated_on: Optional[str] = None
    comments: Optional[str] = None
    parent_title: Optional[str] = None
    attachments: list[AttachmentRef] = field(default_factory=list)

    @property
    def metadata(self) -> dict[str, object]:
        """Return the descriptive fields stored alongside the page text."""

        return {
            "title": self.title,
            "version": self.version,
            "author": self.author,
            "updated_on": self.updated_on,
            "parent": self.parent_title,
            "comments": self.comments,
        }
