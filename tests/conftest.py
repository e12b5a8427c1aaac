"""Shared fixtures for deckpreview tests."""

from __future__ import annotations

import asyncio
import textwrap

import pytest


# ---------------------------------------------------------------------------
# Sample decks (strings) used across multiple test modules
# ---------------------------------------------------------------------------

MINIMAL_DECK = textwrap.dedent("""\
    ---
    marp: true
    ---

    # Slide One

    Hello world.

    ---

    # Slide Two
    """)

THREE_PAGE_DECK = textwrap.dedent("""\
    # One

    first

    ---

    # Two

    second

    ---

    # Three

    third
    """)


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------

class FakeResolver:
    """Resolves names listed in *files*; records every lookup."""

    def __init__(self, files: dict[str, str] | None = None, contents: dict[str, str] | None = None):
        self.files = files or {}
        self.contents = contents or {}
        self.calls: list[tuple[str, str]] = []

    def resolve_for_preview(self, url, source_path):
        self.calls.append(("preview", url))
        path = self.files.get(url)
        return f"file://{path}" if path else None

    def resolve_for_export(self, url, source_path):
        self.calls.append(("export", url))
        return self.files.get(url)

    async def read_file(self, path):
        await asyncio.sleep(0)
        if path not in self.contents:
            raise FileNotFoundError(path)
        return self.contents[path]


class FakeRasterizer:
    def __init__(self, data_url: str = "data:image/svg+xml;base64,PHN2Zz4=", error: Exception | None = None):
        self.data_url = data_url
        self.error = error
        self.rendered: list[str] = []

    async def render(self, code):
        await asyncio.sleep(0)
        self.rendered.append(code)
        if self.error is not None:
            raise self.error
        return self.data_url


class FakeCompiler:
    def __init__(self):
        self.compiled: list[str] = []

    async def compile(self, markdown):
        from deckpreview.marp import CompiledDeck

        self.compiled.append(markdown)
        return CompiledDeck(markup=f"<section>{len(self.compiled)}</section>", stylesheet="")


@pytest.fixture
def resolver():
    return FakeResolver(
        files={"pic.png": "/deck/pic.png", "theme.css": "/deck/theme.css.md"},
        contents={"/deck/theme.css.md": "# Theme\n\n```css\nsection { color: red; }\n```\n"},
    )


@pytest.fixture
def rasterizer():
    return FakeRasterizer()


@pytest.fixture
def compiler():
    return FakeCompiler()


@pytest.fixture
def tmp_deck(tmp_path):
    """Write MINIMAL_DECK to a temp file and return its path."""
    p = tmp_path / "deck.md"
    p.write_text(MINIMAL_DECK)
    return p
