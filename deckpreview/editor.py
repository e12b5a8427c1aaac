"""Editor session — turns document notifications into page store updates."""

from __future__ import annotations

import logging
from collections.abc import Callable

from .diff import INVALIDATE, diff_pages
from .models import DocumentUpdate, PageRecord
from .segmenter import page_at, segment
from .store import DocumentRegistry
from .sync import CursorSync

logger = logging.getLogger(__name__)


class EditorSession:
    """Editor side of one open document.

    Keeps the last segmentation of the text, pushes full or sparse page
    updates to the document's store on edits, and reports the page under
    the cursor on selection moves.
    """

    def __init__(
        self,
        registry: DocumentRegistry,
        doc_id: str,
        text: str = "",
        set_cursor: Callable[[int], None] | None = None,
    ):
        self.registry = registry
        self.doc_id = doc_id
        self.text = text
        self.store, self.channel = registry.open(doc_id)
        self.pages: list[PageRecord] = segment(text, doc_id)
        self.cursor = CursorSync(
            self.channel,
            set_cursor=set_cursor,
            pages=lambda: self.pages,
            text=lambda: self.text,
        )
        self.store.replace_all(self.pages)

    def on_update(self, update: DocumentUpdate) -> None:
        if self.cursor.suppressed:
            return

        if update.doc_changed:
            self.text = update.text
            fresh = segment(update.text, self.doc_id)
            changed = diff_pages(self.pages, fresh)
            if changed is INVALIDATE:
                self.store.replace_all(fresh)
            elif changed:
                self.store.merge_partial(changed)
            self.pages = fresh
        elif not update.focus_changed and not update.viewport_changed:
            record = page_at(self.pages, update.selection)
            if record is not None:
                self.cursor.report(record.page)

    def close(self) -> None:
        self.cursor.close()
        self.registry.close(self.doc_id)
