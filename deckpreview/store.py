"""Per-document page store, offset reconciliation and the document registry."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import replace

from .models import PageRecord, PageUpdate
from .sync import SyncChannel

logger = logging.getLogger(__name__)

PageListener = Callable[[PageUpdate], None]


class PageStore:
    """Authoritative page list of one document.

    Subscribers receive a ``PageUpdate``: the full list after
    ``replace_all`` or only the changed pages after ``merge_partial``.
    """

    def __init__(self, doc_id: str = ""):
        self.doc_id = doc_id
        self._pages: list[PageRecord] = []
        self._listeners: list[PageListener] = []

    def current(self) -> tuple[PageRecord, ...]:
        return tuple(self._pages)

    def subscribe(self, listener: PageListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def replace_all(self, pages: Iterable[PageRecord]) -> None:
        self._pages = [replace(p, is_update=True) for p in pages]
        logger.debug("%s: replaced all pages (%d)", self.doc_id, len(self._pages))
        self._notify(PageUpdate(pages=tuple(self._pages), full=True))

    def merge_partial(self, changed: Iterable[PageRecord]) -> None:
        """Merge re-segmented pages into the stored list.

        Changed records already carry offsets of the edited document and are
        stored as they are.  Every untouched record after them is shifted by
        the distance the preceding changed records moved their end.
        """
        changed = list(changed)
        by_page = {p.page: p for p in changed}
        offset = 0
        merged: list[PageRecord] = []
        for old in self._pages:
            fresh = by_page.get(old.page)
            if fresh is not None:
                merged.append(replace(fresh, is_update=True))
                offset = fresh.end - old.end
            else:
                merged.append(
                    replace(old, start=old.start + offset, end=old.end + offset, is_update=False)
                )
        self._pages = merged
        logger.debug(
            "%s: merged %d changed page(s), trailing offset %+d",
            self.doc_id, len(changed), offset,
        )
        self._notify(PageUpdate(pages=tuple(replace(p, is_update=True) for p in changed), full=False))

    def _notify(self, update: PageUpdate) -> None:
        for listener in list(self._listeners):
            listener(update)


class DocumentRegistry:
    """Owns the page store and sync channel of every open document."""

    def __init__(self):
        self._stores: dict[str, PageStore] = {}
        self._channels: dict[str, SyncChannel] = {}

    def open(self, doc_id: str) -> tuple[PageStore, SyncChannel]:
        return self.store(doc_id), self.sync(doc_id)

    def close(self, doc_id: str) -> None:
        logger.debug("Closing document %s", doc_id)
        self._stores.pop(doc_id, None)
        self._channels.pop(doc_id, None)

    def store(self, doc_id: str) -> PageStore:
        if doc_id not in self._stores:
            logger.debug("Creating page store for %s", doc_id)
            self._stores[doc_id] = PageStore(doc_id)
        return self._stores[doc_id]

    def sync(self, doc_id: str) -> SyncChannel:
        if doc_id not in self._channels:
            logger.debug("Creating sync channel for %s", doc_id)
            self._channels[doc_id] = SyncChannel(doc_id)
        return self._channels[doc_id]

    def __contains__(self, doc_id: str) -> bool:
        return doc_id in self._stores or doc_id in self._channels
