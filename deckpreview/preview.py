"""Preview renderer — keeps transformed page markdown and the compiled deck current."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence

from .marp import CompiledDeck
from .models import PAGE_SEPARATOR, Mode, Origin, PageRecord, PageUpdate, SyncState
from .processor import MarkdownProcessor
from .store import DocumentRegistry

logger = logging.getLogger(__name__)


async def build_deck(processor: MarkdownProcessor, pages: Sequence[PageRecord], mode: Mode) -> str:
    """Transform every page concurrently and join them into one deck."""
    rendered = await asyncio.gather(*(processor.process(page, mode) for page in pages))
    return PAGE_SEPARATOR.join(rendered)


class PreviewRenderer:
    """Preview side of one open document.

    Listens to the document's page store and re-renders only the pages that
    changed, then recompiles the whole deck.  A per-page generation counter
    drops the result of a page render that was overtaken by a newer render
    of the same page; the compiled deck is guarded the same way.  Failed
    background renders are logged.  Page focus from the editor is forwarded to
    *on_scroll*; ``select_page`` publishes a page chosen in the preview.
    """

    def __init__(
        self,
        registry: DocumentRegistry,
        doc_id: str,
        processor: MarkdownProcessor,
        compiler=None,
        on_render: Callable[[CompiledDeck], None] | None = None,
        on_scroll: Callable[[int], None] | None = None,
    ):
        self.doc_id = doc_id
        self.processor = processor
        self.compiler = compiler
        self.on_render = on_render
        self.on_scroll = on_scroll
        self.store, self.channel = registry.open(doc_id)

        self.markdown_cache: list[str | None] = []
        self.deck: CompiledDeck | None = None
        self.current_page = self.channel.state.page
        self._generations: dict[int, int] = {}
        self._deck_generation = 0
        self._pending: list[PageUpdate] = []
        self._tasks: set[asyncio.Task] = set()
        self._unsubscribe = [
            self.store.subscribe(self._on_pages),
            self.channel.subscribe(self._on_sync),
        ]

    @property
    def markdown(self) -> str:
        return PAGE_SEPARATOR.join(m or "" for m in self.markdown_cache)

    def _on_pages(self, update: PageUpdate) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._pending.append(update)
            return
        task = loop.create_task(self.render(update))
        self._tasks.add(task)
        task.add_done_callback(self._on_render_done)

    def _on_render_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("%s: preview render failed: %s", self.doc_id, exc, exc_info=exc)

    def _on_sync(self, state: SyncState) -> None:
        if state.set_by is Origin.PREVIEW:
            return
        self.current_page = state.page
        if self.on_scroll is not None:
            self.on_scroll(state.page)

    def select_page(self, page: int) -> None:
        self.current_page = page
        self.channel.emit(page, Origin.PREVIEW)

    async def flush(self) -> CompiledDeck | None:
        """Render updates that arrived while no event loop was running."""
        pending, self._pending = self._pending, []
        for update in pending:
            await self.render(update)
        if self._tasks:
            # Failures are logged by _on_render_done.
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        return self.deck

    async def render(self, update: PageUpdate) -> CompiledDeck | None:
        current = self.store.current()
        if len(self.markdown_cache) != len(current):
            self.markdown_cache = [None] * len(current)

        wanted = {p.page: p for p in update.pages if p.page < len(current)}
        for record in current:
            if record.page not in wanted and self.markdown_cache[record.page] is None:
                wanted[record.page] = record
        logger.debug("%s: rendering page(s) %s", self.doc_id, sorted(wanted))
        await asyncio.gather(*(self._render_page(record) for record in wanted.values()))

        if self.compiler is None:
            return None
        self._deck_generation += 1
        generation = self._deck_generation
        deck = await self.compiler.compile(self.markdown)
        if generation != self._deck_generation:
            logger.debug("%s: discarding stale deck", self.doc_id)
            return self.deck
        self.deck = deck
        if self.on_render is not None:
            self.on_render(deck)
        return deck

    async def _render_page(self, record: PageRecord) -> None:
        generation = self._generations.get(record.page, 0) + 1
        self._generations[record.page] = generation
        markdown = await self.processor.process(record, Mode.PREVIEW)
        if self._generations[record.page] != generation:
            logger.debug("%s: discarding stale render of page %d", self.doc_id, record.page)
            return
        if record.page < len(self.markdown_cache):
            self.markdown_cache[record.page] = markdown

    def close(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []
        self.markdown_cache = []
