"""Page diff engine — decides between a full invalidate and a sparse update."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from .models import PageRecord

logger = logging.getLogger(__name__)


class _Invalidate:
    """Sentinel: the change cannot be localized to individual pages."""

    def __repr__(self) -> str:
        return "INVALIDATE"


INVALIDATE = _Invalidate()


def diff_pages(
    old: Sequence[PageRecord], new: Sequence[PageRecord]
) -> _Invalidate | list[PageRecord]:
    """Compare two page lists.

    A different page count returns ``INVALIDATE``.  Otherwise the records of
    *new* whose content differs from the same-index record of *old* are
    returned; offsets are ignored so that edits in earlier pages do not mark
    later pages as changed.
    """
    if len(old) != len(new):
        logger.debug("Page count changed (%d -> %d), invalidating", len(old), len(new))
        return INVALIDATE
    changed = [fresh for stale, fresh in zip(old, new) if stale.content != fresh.content]
    logger.debug("Changed pages: %s", [p.page for p in changed])
    return changed
