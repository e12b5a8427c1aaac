"""Shared data models and parsing constants."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass


class Origin(str, enum.Enum):
    """Which side of the editor/preview pair set the current page."""

    EDITOR = "editor"
    PREVIEW = "preview"


class Mode(str, enum.Enum):
    """Render target of the markdown pipeline."""

    PREVIEW = "preview"
    EXPORT = "export"


@dataclass(frozen=True)
class PageRecord:
    page: int
    start: int
    end: int
    content: str
    is_update: bool = True
    source_path: str = ""


@dataclass(frozen=True)
class SyncState:
    page: int
    set_by: Origin


@dataclass(frozen=True)
class PageUpdate:
    """Store notification: every page (``full``) or only the changed ones."""

    pages: tuple[PageRecord, ...]
    full: bool


@dataclass
class DocumentUpdate:
    """One change notification from the editor hosting a document."""

    text: str
    selection: int = 0
    doc_changed: bool = False
    selection_changed: bool = False
    viewport_changed: bool = False
    focus_changed: bool = False


# Separator placed between pages when a deck is reassembled.
PAGE_SEPARATOR = "\n---\n"

# Leading YAML front matter, closed by a second "---" line.
FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(?:.*?\r?\n)?---[ \t]*(?:\r?\n|\Z)", re.DOTALL)

# Embeds ![[name]] / ![[name|alt]] and plain wikilinks [[name]] / [[name|text]].
WIKILINK_RE = re.compile(r"(!?)\[\[([^\[\]|]+?)(?:\|([^\[\]]*))?\]\]")

# Image alt text used as a size: "200" or "200x100".
WIDTH_ALT_RE = re.compile(r"^\d+$")
SIZE_ALT_RE = re.compile(r"^(\d+)x(\d+)$")
