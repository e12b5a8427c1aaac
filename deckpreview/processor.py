"""Markdown transform pipeline — rewrites one page for the preview or for export.

Stages run in a fixed order, each a full tree pass committed before the next:

1. front matter (page 0): cut off, re-prepended verbatim at the end
2. ``![[embed]]`` / ``[[wikilink]]`` markers in text
3. links to stylesheet notes, inlined as ``<style>``
4. Marp size directives from numeric image alt text
5. image URLs, resolved for the target
6. diagram code blocks, rasterized to images
"""

from __future__ import annotations

import html
import inspect
import logging
import re
from collections.abc import Iterable

from markdown_it.tree import SyntaxTreeNode

from .models import FRONTMATTER_RE, SIZE_ALT_RE, WIDTH_ALT_RE, WIKILINK_RE, Mode, PageRecord
from .resources import EmbedCache, is_data_url, is_image_name, is_remote
from .tree import (
    REMOVE,
    html_block_node,
    html_inline_node,
    image_alt,
    image_node,
    link_node,
    parse,
    serialize,
    text_node,
    transform_async,
    walk,
    with_image,
)

logger = logging.getLogger(__name__)

STYLESHEET_LINK_RE = re.compile(r"\.css(?:\.md)?$", re.IGNORECASE)

_DIMENSION_RE = re.compile(r"^([wh]):(\d+)(?:px)?$")


def split_frontmatter(content: str) -> tuple[str, str]:
    """Return ``(frontmatter, rest)``; frontmatter is ``""`` when absent."""
    m = FRONTMATTER_RE.match(content)
    if not m:
        return "", content
    frontmatter = m.group(0)
    if not frontmatter.endswith("\n"):
        frontmatter += "\n"
    return frontmatter, content[m.end():]


def size_style(meta: str) -> str:
    """Inline CSS for size directives such as ``w:300``, ``h:200`` or ``300x200``."""
    width = height = None
    for part in meta.split():
        m = _DIMENSION_RE.match(part)
        if m:
            if m.group(1) == "w":
                width = m.group(2)
            else:
                height = m.group(2)
            continue
        m = SIZE_ALT_RE.match(part)
        if m:
            width, height = m.groups()
    rules = []
    if width:
        rules.append(f"width: {width}px")
    if height:
        rules.append(f"height: {height}px")
    return "; ".join(rules)


def img_tag(src: str, alt: str, style: str = "", css_class: str = "") -> str:
    attrs = [f'src="{html.escape(src)}"', f'alt="{html.escape(alt)}"']
    if css_class:
        attrs.append(f'class="{css_class}"')
    if style:
        attrs.append(f'style="{style}"')
    return f"<img {' '.join(attrs)} />"


def marp_alt(alt: str) -> str:
    """Translate numeric alt text into Marp size directives."""
    if WIDTH_ALT_RE.match(alt):
        return f"w:{alt}"
    m = SIZE_ALT_RE.match(alt)
    if m:
        return f"w:{m.group(1)} h:{m.group(2)}"
    return alt or "image"


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


class MarkdownProcessor:
    """Turns a page's markdown into markdown ready for the slide compiler.

    *resolver* provides ``resolve_for_preview``, ``resolve_for_export`` (plain
    or coroutine functions) and ``read_file`` (coroutine).  *rasterizer*
    provides a ``render(code)`` coroutine returning a data URL.  *embed_cache*
    provides ``lookup(source_path, name)``.
    """

    def __init__(
        self,
        resolver,
        rasterizer=None,
        embed_cache=None,
        diagram_languages: Iterable[str] = ("mermaid",),
    ):
        self.resolver = resolver
        self.rasterizer = rasterizer
        self.embed_cache = embed_cache if embed_cache is not None else EmbedCache()
        self.diagram_languages = {lang.lower() for lang in diagram_languages}

    async def process(self, page: PageRecord, mode: Mode) -> str:
        content = page.content
        frontmatter = ""
        if page.page == 0:
            frontmatter, content = split_frontmatter(content)

        root, env = parse(content)
        await self.convert_wikilinks(root, page.source_path)
        await self.inline_stylesheets(root, page.source_path)
        await self.convert_image_size(root)
        if mode is Mode.PREVIEW:
            await self.resolve_images_for_preview(root, page.source_path)
        else:
            await self.resolve_images_for_export(root, page.source_path)
        await self.rasterize_diagrams(root)

        markdown = serialize(root, env)
        logger.debug("Page %d (%s): %d -> %d chars", page.page, mode.value, len(page.content), len(markdown))
        return frontmatter + markdown

    # -- stage 2 ----------------------------------------------------------

    def _embed(self, name: str, label: str | None, source_path: str) -> SyntaxTreeNode | None:
        if is_image_name(name):
            return image_node(name, label or "image")
        markup = self.embed_cache.lookup(source_path, name)
        if markup:
            return html_inline_node(markup)
        logger.debug("Embed %s left as text", name)
        return None

    async def convert_wikilinks(self, root: SyntaxTreeNode, source_path: str) -> None:
        async def transform(node: SyntaxTreeNode):
            text = node.content
            nodes: list[SyntaxTreeNode] = []
            pos = 0
            for m in WIKILINK_RE.finditer(text):
                bang, name, label = m.groups()
                name = name.strip()
                if bang:
                    replacement = self._embed(name, label, source_path)
                else:
                    replacement = link_node(name, label or name)
                if replacement is None:
                    continue
                if m.start() > pos:
                    nodes.append(text_node(text[pos:m.start()]))
                nodes.append(replacement)
                pos = m.end()
            if not nodes:
                return None
            if pos < len(text):
                nodes.append(text_node(text[pos:]))
            return nodes

        await transform_async(root, "text", transform)

    # -- stage 3 ----------------------------------------------------------

    async def _stylesheet_blocks(self, path: str) -> list[str]:
        try:
            source = await self.resolver.read_file(path)
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Cannot read stylesheet note %s: %s", path, exc)
            return []
        tree, _ = parse(source)
        return [
            node.content
            for _, _, node in walk(tree)
            if node.type == "fence" and node.info.strip().split(maxsplit=1)[:1] == ["css"]
        ]

    async def inline_stylesheets(self, root: SyntaxTreeNode, source_path: str) -> None:
        async def transform(node: SyntaxTreeNode):
            href = str(node.attrs.get("href", ""))
            if not STYLESHEET_LINK_RE.search(href.split("#", 1)[0]):
                return None
            path = await _maybe_await(self.resolver.resolve_for_export(href, source_path))
            if not path:
                return None
            blocks = await self._stylesheet_blocks(path)
            if not blocks:
                return None
            css = "\n".join(line for block in blocks for line in block.splitlines() if line.strip())
            return html_inline_node(f"<style>\n{css}\n</style>")

        await transform_async(root, "link", transform)

    # -- stage 4 ----------------------------------------------------------

    async def convert_image_size(self, root: SyntaxTreeNode) -> None:
        async def transform(node: SyntaxTreeNode):
            alt = image_alt(node)
            converted = marp_alt(alt)
            if converted == alt:
                return None
            return with_image(node, alt=converted)

        await transform_async(root, "image", transform)

    # -- stage 5 ----------------------------------------------------------

    async def resolve_images_for_preview(self, root: SyntaxTreeNode, source_path: str) -> None:
        async def transform(node: SyntaxTreeNode):
            url = str(node.attrs.get("src", ""))
            if is_data_url(url) or is_remote(url):
                return None
            resolved = await _maybe_await(self.resolver.resolve_for_preview(url, source_path))
            if not resolved:
                logger.info("Dropping unresolved image %s", url)
                return REMOVE
            return with_image(node, url=resolved)

        await transform_async(root, "image", transform)

    async def resolve_images_for_export(self, root: SyntaxTreeNode, source_path: str) -> None:
        async def transform(node: SyntaxTreeNode):
            url = str(node.attrs.get("src", ""))
            if is_data_url(url):
                alt = image_alt(node)
                return html_inline_node(img_tag(url, alt, style=size_style(alt)))
            if is_remote(url):
                return None
            resolved = await _maybe_await(self.resolver.resolve_for_export(url, source_path))
            if not resolved:
                logger.info("Dropping unresolved image %s", url)
                return REMOVE
            return with_image(node, url=resolved.replace("\\", "/"))

        await transform_async(root, "image", transform)

    # -- stage 6 ----------------------------------------------------------

    async def rasterize_diagrams(self, root: SyntaxTreeNode) -> None:
        async def transform(node: SyntaxTreeNode):
            lang, _, meta = node.info.strip().partition(" ")
            if lang.lower() not in self.diagram_languages or self.rasterizer is None:
                return None
            try:
                data_url = await self.rasterizer.render(node.content)
            except Exception as exc:
                logger.warning("Diagram rendering failed: %s", exc)
                return html_block_node(f'<pre class="diagram-error">{html.escape(str(exc))}</pre>')
            return html_block_node(
                img_tag(data_url, lang, style=size_style(meta), css_class=f"{lang}-image")
            )

        await transform_async(root, "fence", transform)
