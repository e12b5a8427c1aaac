"""Page segmenter — splits a markdown document into pages at ``---`` rules."""

from __future__ import annotations

import logging
import re

from markdown_it import MarkdownIt

from .models import FRONTMATTER_RE, PageRecord

logger = logging.getLogger(__name__)

# Line terminators as markdown-it normalizes them.
_NEWLINE_RE = re.compile(r"\r\n?|\n")

_md = MarkdownIt("commonmark")


def _line_starts(text: str) -> list[int]:
    return [0] + [m.end() for m in _NEWLINE_RE.finditer(text)]


def _mask_frontmatter(text: str) -> str:
    """Blank out a leading front matter block, keeping its line breaks.

    Its ``---`` fences must not be mistaken for page delimiters.
    """
    m = FRONTMATTER_RE.match(text)
    if not m:
        return text
    kept_breaks = "".join(_NEWLINE_RE.findall(m.group(0)))
    return kept_breaks + text[m.end():]


def delimiter_spans(text: str) -> list[tuple[int, int]]:
    """Return ``(start, end)`` offsets of every top-level thematic break.

    ``start`` is the first marker character of the rule, ``end`` the end of
    its line (line terminator excluded).
    """
    starts = _line_starts(text)
    spans: list[tuple[int, int]] = []
    for token in _md.parse(_mask_frontmatter(text)):
        if token.type != "hr" or token.level != 0 or not token.map:
            continue
        line_no = token.map[0]
        line_start = starts[line_no]
        line_end = starts[line_no + 1] if line_no + 1 < len(starts) else len(text)
        line = _NEWLINE_RE.sub("", text[line_start:line_end])
        marker = token.markup[:1] or "-"
        spans.append((line_start + line.index(marker), line_start + len(line)))
    return spans


def segment(text: str, source_path: str = "") -> list[PageRecord]:
    """Split *text* into contiguous page records.

    Each thematic break closes the current page at the start of the rule;
    the next page begins right after it.  The remainder after the last rule
    becomes a final page unless the document ends with the rule itself.
    """
    pages: list[PageRecord] = []
    cut = 0
    for start, end in delimiter_spans(text):
        pages.append(
            PageRecord(
                page=len(pages),
                start=cut,
                end=start,
                content=text[cut:start],
                is_update=True,
                source_path=source_path,
            )
        )
        cut = end

    if cut < len(text) or not pages:
        pages.append(
            PageRecord(
                page=len(pages),
                start=cut,
                end=len(text),
                content=text[cut:],
                is_update=True,
                source_path=source_path,
            )
        )

    logger.debug("Segmented %s into %d page(s)", source_path or "<document>", len(pages))
    return pages


def page_at(pages: list[PageRecord] | tuple[PageRecord, ...], offset: int) -> PageRecord | None:
    """Return the first page whose ``[start, end]`` range contains *offset*."""
    for record in pages:
        if record.start <= offset <= record.end:
            return record
    return None
