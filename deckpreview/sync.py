"""Current-page synchronization between the editor and the preview.

Both sides write to the same ``SyncChannel``.  Each side ignores states it
originated itself, and the editor side additionally drops the selection
changes caused by its own programmatic cursor moves (``CursorSync``).
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Sequence

from .models import Origin, PageRecord, SyncState

logger = logging.getLogger(__name__)

SyncListener = Callable[[SyncState], None]


class SyncChannel:
    """Holds the current page of one document plus who set it."""

    def __init__(self, doc_id: str = ""):
        self.doc_id = doc_id
        self._state = SyncState(page=0, set_by=Origin.PREVIEW)
        self._listeners: list[SyncListener] = []

    @property
    def state(self) -> SyncState:
        return self._state

    def emit(self, page: int, origin: Origin) -> None:
        logger.debug("%s: current page %d set by %s", self.doc_id, page, origin.value)
        self._state = SyncState(page=page, set_by=origin)
        for listener in list(self._listeners):
            listener(self._state)

    def subscribe(self, listener: SyncListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe


class CursorState(enum.Enum):
    IDLE = "idle"
    APPLYING_EXTERNAL_UPDATE = "applying_external_update"


def cursor_line_for_page(text: str, page: PageRecord) -> int:
    """0-based editor line to place the cursor on when focusing *page*.

    Page 0 starts at the top; any other page starts on the line following
    the delimiter that opens it.
    """
    if page.page == 0:
        return 0
    return text.count("\n", 0, page.start) + 1


class CursorSync:
    """Editor-side end of the channel.

    Reacts to preview-originated states by moving the editor cursor through
    *set_cursor*.  While doing so it is in ``APPLYING_EXTERNAL_UPDATE``; the
    editor session consults ``suppressed`` and drops the selection change it
    caused, so the move is not echoed back as an editor-originated state.
    """

    def __init__(
        self,
        channel: SyncChannel,
        set_cursor: Callable[[int], None] | None = None,
        pages: Callable[[], Sequence[PageRecord]] = tuple,
        text: Callable[[], str] = str,
    ):
        self.channel = channel
        self.set_cursor = set_cursor
        self._pages = pages
        self._text = text
        self.state = CursorState.IDLE
        self._unsubscribe = channel.subscribe(self._on_state)

    @property
    def suppressed(self) -> bool:
        return self.state is CursorState.APPLYING_EXTERNAL_UPDATE

    def report(self, page: int) -> None:
        """Publish an editor-originated page change."""
        if self.suppressed:
            logger.debug("Dropping editor page %d while applying preview update", page)
            return
        self.channel.emit(page, Origin.EDITOR)

    def _on_state(self, state: SyncState) -> None:
        if state.set_by is Origin.EDITOR:
            return
        pages = self._pages()
        if self.set_cursor is None or not 0 <= state.page < len(pages):
            return
        line = cursor_line_for_page(self._text(), pages[state.page])
        self.state = CursorState.APPLYING_EXTERNAL_UPDATE
        try:
            self.set_cursor(line)
        finally:
            self.state = CursorState.IDLE

    def close(self) -> None:
        self._unsubscribe()
