"""Tests for deckpreview.preview — incremental page rendering and deck compilation."""

from __future__ import annotations

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

from deckpreview.diff import diff_pages
from deckpreview.marp import CompiledDeck
from deckpreview.models import PAGE_SEPARATOR, Mode, Origin, PageRecord, PageUpdate
from deckpreview.preview import PreviewRenderer, build_deck
from deckpreview.processor import MarkdownProcessor
from deckpreview.segmenter import segment
from deckpreview.store import DocumentRegistry

from conftest import THREE_PAGE_DECK


class CountingProcessor:
    def __init__(self):
        self.processed: list[int] = []

    async def process(self, page, mode):
        await asyncio.sleep(0)
        self.processed.append(page.page)
        return f"<{page.page}:{page.content.strip()}>"


class GatedProcessor:
    """Each call waits until the test resolves its future."""

    def __init__(self):
        self.calls: list[tuple[PageRecord, asyncio.Future]] = []

    async def process(self, page, mode):
        future = asyncio.get_running_loop().create_future()
        self.calls.append((page, future))
        return await future


class GatedCompiler:
    def __init__(self):
        self.calls: list[asyncio.Future] = []

    async def compile(self, markdown):
        future = asyncio.get_running_loop().create_future()
        self.calls.append(future)
        return await future


def _renderer(compiler=None, processor=None, **kwargs):
    registry = DocumentRegistry()
    processor = processor or CountingProcessor()
    renderer = PreviewRenderer(registry, "deck.md", processor, compiler=compiler, **kwargs)
    return registry, registry.store("deck.md"), processor, renderer


# ---------------------------------------------------------------------------
# Page rendering
# ---------------------------------------------------------------------------

class TestRender:
    def test_full_update_renders_every_page(self, compiler):
        _, store, processor, renderer = _renderer(compiler)
        store.replace_all(segment(THREE_PAGE_DECK, "deck.md"))
        deck = asyncio.run(renderer.flush())

        assert sorted(processor.processed) == [0, 1, 2]
        assert deck is renderer.deck
        assert compiler.compiled == [renderer.markdown]
        assert renderer.markdown.count(PAGE_SEPARATOR) == 2
        assert "<1:# Two\n\nsecond>" in renderer.markdown

    def test_partial_update_renders_changed_page_only(self, compiler):
        _, store, processor, renderer = _renderer(compiler)
        old = segment(THREE_PAGE_DECK, "deck.md")
        store.replace_all(old)
        asyncio.run(renderer.flush())
        processor.processed.clear()

        new = segment(THREE_PAGE_DECK.replace("third", "3rd"), "deck.md")
        store.merge_partial(diff_pages(old, new))
        asyncio.run(renderer.flush())

        assert processor.processed == [2]
        assert len(compiler.compiled) == 2
        assert "<2:# Three\n\n3rd>" in renderer.markdown
        assert "<0:# One\n\nfirst>" in renderer.markdown

    def test_page_count_change_resizes_cache(self):
        _, store, processor, renderer = _renderer()
        store.replace_all(segment(THREE_PAGE_DECK, "deck.md"))
        asyncio.run(renderer.flush())
        store.replace_all(segment("A\n\n---\n\nB\n", "deck.md"))
        asyncio.run(renderer.flush())
        assert len(renderer.markdown_cache) == 2
        assert renderer.markdown == "<0:A>" + PAGE_SEPARATOR + "<1:B>"

    def test_updates_inside_running_loop(self, compiler):
        rendered = []
        _, store, processor, renderer = _renderer(compiler, on_render=rendered.append)

        async def main():
            store.replace_all(segment(THREE_PAGE_DECK, "deck.md"))
            return await renderer.flush()

        deck = asyncio.run(main())
        assert rendered == [deck]
        assert sorted(processor.processed) == [0, 1, 2]

    def test_without_compiler_only_markdown_is_kept(self):
        _, store, _, renderer = _renderer()
        store.replace_all(segment(THREE_PAGE_DECK, "deck.md"))
        assert asyncio.run(renderer.flush()) is None
        assert renderer.deck is None
        assert all(m is not None for m in renderer.markdown_cache)

    def test_stale_page_render_is_discarded(self):
        processor = GatedProcessor()
        _, store, _, renderer = _renderer(processor=processor)
        store.replace_all([PageRecord(page=0, start=0, end=3, content="old")])
        renderer._pending.clear()

        async def main():
            older = asyncio.create_task(
                renderer.render(PageUpdate(pages=(PageRecord(0, 0, 3, "old"),), full=False))
            )
            while len(processor.calls) < 1:
                await asyncio.sleep(0)
            newer = asyncio.create_task(
                renderer.render(PageUpdate(pages=(PageRecord(0, 0, 3, "new"),), full=False))
            )
            while len(processor.calls) < 2:
                await asyncio.sleep(0)
            processor.calls[1][1].set_result("new result")
            await newer
            processor.calls[0][1].set_result("old result")
            await older

        asyncio.run(main())
        assert renderer.markdown_cache == ["new result"]

    def test_stale_deck_is_discarded(self):
        compiler = GatedCompiler()
        rendered = []
        _, store, _, renderer = _renderer(compiler, on_render=rendered.append)
        store.replace_all([PageRecord(page=0, start=0, end=1, content="a")])
        renderer._pending.clear()
        update = PageUpdate(pages=(PageRecord(0, 0, 1, "a"),), full=False)

        async def main():
            older = asyncio.create_task(renderer.render(update))
            while len(compiler.calls) < 1:
                await asyncio.sleep(0)
            newer = asyncio.create_task(renderer.render(update))
            while len(compiler.calls) < 2:
                await asyncio.sleep(0)
            compiler.calls[1].set_result(CompiledDeck(markup="new", stylesheet=""))
            await newer
            compiler.calls[0].set_result(CompiledDeck(markup="old", stylesheet=""))
            return await older

        returned = asyncio.run(main())
        assert renderer.deck.markup == "new"
        assert returned.markup == "new"
        assert [deck.markup for deck in rendered] == ["new"]

    def test_background_failure_is_logged(self, caplog):
        compiler = MagicMock()
        compiler.compile = AsyncMock(side_effect=RuntimeError("marp failed"))
        _, store, _, renderer = _renderer(compiler)

        async def main():
            store.replace_all(segment(THREE_PAGE_DECK, "deck.md"))
            return await renderer.flush()

        with caplog.at_level(logging.ERROR, logger="deckpreview"):
            assert asyncio.run(main()) is None

        assert "preview render failed: marp failed" in caplog.text
        assert renderer._tasks == set()

    def test_close_stops_rendering(self):
        _, store, processor, renderer = _renderer()
        renderer.close()
        store.replace_all(segment(THREE_PAGE_DECK, "deck.md"))
        asyncio.run(renderer.flush())
        assert processor.processed == []


# ---------------------------------------------------------------------------
# Page focus
# ---------------------------------------------------------------------------

class TestPageFocus:
    def test_editor_state_scrolls_preview(self):
        scrolled = []
        registry, _, _, renderer = _renderer(on_scroll=scrolled.append)
        registry.sync("deck.md").emit(2, Origin.EDITOR)
        assert scrolled == [2]
        assert renderer.current_page == 2

    def test_own_selection_does_not_scroll(self):
        scrolled = []
        registry, _, _, renderer = _renderer(on_scroll=scrolled.append)
        renderer.select_page(1)
        assert scrolled == []
        assert renderer.current_page == 1
        assert registry.sync("deck.md").state.set_by is Origin.PREVIEW
        assert registry.sync("deck.md").state.page == 1


# ---------------------------------------------------------------------------
# build_deck
# ---------------------------------------------------------------------------

class TestBuildDeck:
    def test_joins_pages_in_order(self, resolver, rasterizer):
        processor = MarkdownProcessor(resolver, rasterizer)
        deck = asyncio.run(build_deck(processor, segment(THREE_PAGE_DECK, "deck.md"), Mode.EXPORT))
        parts = deck.split(PAGE_SEPARATOR)
        assert len(parts) == 3
        assert "# One" in parts[0]
        assert "# Two" in parts[1]
        assert "# Three" in parts[2]
