"""Markdown syntax tree helpers and the two-phase tree mutation committer.

Pages are parsed with markdown-it-py into a ``SyntaxTreeNode`` tree and
written back to markdown with mdformat's renderer.  The pipeline only ever
creates or inspects these node kinds: ``root``, ``text``, ``image``,
``link``, ``fence``, ``html_inline`` and ``html_block``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterator, Sequence
from dataclasses import dataclass

from markdown_it import MarkdownIt
from markdown_it.token import Token
from markdown_it.tree import SyntaxTreeNode
from mdformat.renderer import MDRenderer

logger = logging.getLogger(__name__)

_md = MarkdownIt("commonmark", renderer_cls=MDRenderer)
_md.options["mdformat"] = {"wrap": "keep", "number": False, "end_of_line": "lf"}
_md.options["parser_extension"] = []
_md.options["codeformatters"] = {}


class _Remove:
    def __repr__(self) -> str:
        return "REMOVE"


# Returned by a transformer to delete the visited node.
REMOVE = _Remove()

# A transformer returns None (no change), REMOVE, a node or a sequence of nodes.
Transformer = Callable[[SyntaxTreeNode], Awaitable[object]]


# ---------------------------------------------------------------------------
# Parsing and serialization
# ---------------------------------------------------------------------------

def parse(text: str) -> tuple[SyntaxTreeNode, dict]:
    """Parse markdown into a tree; the env must be passed back to ``serialize``."""
    env: dict = {}
    return SyntaxTreeNode(_md.parse(text, env)), env


def _collect_tokens(node: SyntaxTreeNode, out: list[Token]) -> None:
    if node.is_root:
        for child in node.children:
            _collect_tokens(child, out)
    elif node.token is not None:
        token = node.token
        # Inline and image tokens keep their children on the token itself.
        if token.children is not None or node.children:
            inner: list[Token] = []
            for child in node.children:
                _collect_tokens(child, inner)
            token.children = inner
        out.append(token)
    else:
        assert node.nester_tokens is not None
        out.append(node.nester_tokens.opening)
        for child in node.children:
            _collect_tokens(child, out)
        out.append(node.nester_tokens.closing)


def to_tokens(root: SyntaxTreeNode) -> list[Token]:
    """Linear token stream of *root*, including edits made to inline children."""
    tokens: list[Token] = []
    _collect_tokens(root, tokens)
    return tokens


def serialize(root: SyntaxTreeNode, env: dict | None = None) -> str:
    return _md.renderer.render(to_tokens(root), _md.options, env if env is not None else {})


# ---------------------------------------------------------------------------
# Node constructors
# ---------------------------------------------------------------------------

def _leaf(token: Token) -> SyntaxTreeNode:
    return SyntaxTreeNode([token], create_root=False)


def text_node(content: str) -> SyntaxTreeNode:
    return _leaf(Token("text", "", 0, content=content))


def image_node(url: str, alt: str, title: str | None = None) -> SyntaxTreeNode:
    attrs: dict = {"src": url, "alt": ""}
    if title:
        attrs["title"] = title
    token = Token(
        "image", "img", 0,
        attrs=attrs,
        content=alt,
        children=[Token("text", "", 0, content=alt)],
    )
    return _leaf(token)


def link_node(url: str, text: str) -> SyntaxTreeNode:
    return SyntaxTreeNode(
        [
            Token("link_open", "a", 1, attrs={"href": url}),
            Token("text", "", 0, content=text),
            Token("link_close", "a", -1),
        ],
        create_root=False,
    )


def html_inline_node(markup: str) -> SyntaxTreeNode:
    return _leaf(Token("html_inline", "", 0, content=markup))


def html_block_node(markup: str) -> SyntaxTreeNode:
    return _leaf(Token("html_block", "", 0, content=markup.rstrip("\n") + "\n", block=True))


def image_alt(node: SyntaxTreeNode) -> str:
    return "".join(child.content for child in node.children if child.type == "text")


def with_image(node: SyntaxTreeNode, *, url: str | None = None, alt: str | None = None) -> SyntaxTreeNode:
    """Copy of image *node* with a new url and/or alt text."""
    title = node.attrs.get("title")
    return image_node(
        url if url is not None else str(node.attrs.get("src", "")),
        alt if alt is not None else image_alt(node),
        str(title) if title else None,
    )


# ---------------------------------------------------------------------------
# Traversal and committing
# ---------------------------------------------------------------------------

def walk(node: SyntaxTreeNode) -> Iterator[tuple[SyntaxTreeNode, int, SyntaxTreeNode]]:
    """Yield ``(parent, index, child)`` in document order.

    Image alt text is not descended into.
    """
    for index, child in enumerate(node.children):
        yield node, index, child
        if child.type != "image":
            yield from walk(child)


@dataclass(frozen=True)
class PlannedEdit:
    """Replace ``parent.children[index]`` by ``replacement`` (empty: remove)."""

    parent: SyntaxTreeNode
    index: int
    replacement: tuple[SyntaxTreeNode, ...]


def plan_edit(parent: SyntaxTreeNode, index: int, result: object) -> PlannedEdit | None:
    if result is None:
        return None
    if result is REMOVE:
        return PlannedEdit(parent, index, ())
    if isinstance(result, SyntaxTreeNode):
        return PlannedEdit(parent, index, (result,))
    return PlannedEdit(parent, index, tuple(result))


def apply_edits(edits: Sequence[PlannedEdit]) -> None:
    """Apply planned edits, rebuilding each parent's children once.

    Indices refer to the children as they were when the edits were planned,
    so removals and multi-node replacements in one parent do not shift the
    positions of the other edits.
    """
    by_parent: dict[int, tuple[SyntaxTreeNode, dict[int, tuple[SyntaxTreeNode, ...]]]] = {}
    for edit in edits:
        _, planned = by_parent.setdefault(id(edit.parent), (edit.parent, {}))
        planned[edit.index] = edit.replacement

    for parent, planned in by_parent.values():
        children: list[SyntaxTreeNode] = []
        for index, child in enumerate(parent.children):
            if index not in planned:
                children.append(child)
                continue
            for node in planned[index]:
                node.parent = parent
                children.append(node)
        parent.children[:] = children


async def transform_async(root: SyntaxTreeNode, node_type: str, transformer: Transformer) -> list[PlannedEdit]:
    """Run *transformer* concurrently on every *node_type* node, then commit.

    All transformer calls are started before any is awaited; the tree is
    only mutated after every call has finished.
    """
    matches = [(parent, index, node) for parent, index, node in walk(root) if node.type == node_type]
    results = await asyncio.gather(*(transformer(node) for _, _, node in matches))
    edits: list[PlannedEdit] = []
    for (parent, index, _), result in zip(matches, results):
        edit = plan_edit(parent, index, result)
        if edit is not None:
            edits.append(edit)
    logger.debug("%s: %d match(es), %d edit(s)", node_type, len(matches), len(edits))
    apply_edits(edits)
    return edits
