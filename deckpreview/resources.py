"""Filesystem resource resolution, data URLs and the embed cache."""

from __future__ import annotations

import asyncio
import base64
import logging
import mimetypes
from pathlib import Path
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

logger = logging.getLogger(__name__)


def media_type(name: str) -> str | None:
    return mimetypes.guess_type(name)[0]


def is_image_name(name: str) -> bool:
    mime = media_type(name)
    return bool(mime and mime.startswith("image/"))


def is_remote(url: str) -> bool:
    return url.startswith(("http://", "https://"))


def is_data_url(url: str) -> bool:
    return url.startswith("data:")


def to_data_url(path: Path) -> str | None:
    """Read *path* and return it as a base64 data URL (None if unreadable)."""
    mime = media_type(path.name)
    if not mime:
        return None
    try:
        encoded = base64.b64encode(path.read_bytes()).decode("ascii")
    except OSError:
        logger.debug("Cannot read %s for data URL", path)
        return None
    return f"data:{mime};base64,{encoded}"


def svg_data_url(svg_text: str) -> str:
    encoded = base64.b64encode(svg_text.encode("utf-8")).decode("ascii")
    return f"data:image/svg+xml;base64,{encoded}"


class FileResourceResolver:
    """Resolves links in a document to files below *base_dir*.

    A link is looked up as an absolute path, relative to the linking
    document, relative to *base_dir* and finally by file name anywhere
    below *base_dir*.  Links without a suffix also match ``<link>.md``.
    """

    def __init__(self, base_dir: str | Path):
        self.base_dir = Path(base_dir).resolve()

    def find(self, url: str, source_path: str = "") -> Path | None:
        if url.startswith("file://"):
            path = Path(url2pathname(urlparse(url).path))
            return path if path.is_file() else None

        link = unquote(url.split("#", 1)[0]).strip()
        if not link:
            return None

        names = [link]
        if not Path(link).suffix or Path(link).suffix.lower() == ".css":
            names.append(f"{link}.md")

        source_dir = (self.base_dir / source_path).parent if source_path else self.base_dir
        for name in names:
            path = Path(name)
            candidates = [path] if path.is_absolute() else [source_dir / path, self.base_dir / path]
            for candidate in candidates:
                if candidate.is_file():
                    return candidate.resolve()

        for name in names:
            matches = sorted(p for p in self.base_dir.rglob(Path(name).name) if p.is_file())
            if matches:
                return matches[0].resolve()

        logger.debug("Link %s from %s not found", url, source_path or "<root>")
        return None

    # Lookups probe the disk and may walk the whole tree; they run in a worker thread.
    async def resolve_for_preview(self, url: str, source_path: str = "") -> str | None:
        path = await asyncio.to_thread(self.find, url, source_path)
        return path.as_uri() if path else None

    async def resolve_for_export(self, url: str, source_path: str = "") -> str | None:
        path = await asyncio.to_thread(self.find, url, source_path)
        return path.as_posix() if path else None

    async def read_file(self, path: str) -> str:
        return await asyncio.to_thread(Path(path).read_text, encoding="utf-8")


class EmbedCache:
    """Pre-rendered markup for non-image embeds, keyed by embed name.

    Entries registered for a specific source document take precedence over
    entries registered for every document.
    """

    def __init__(self, entries: dict[str, str] | None = None):
        self._entries: dict[tuple[str, str], str] = {}
        for name, markup in (entries or {}).items():
            self.put(name, markup)

    def put(self, name: str, markup: str, source_path: str = "") -> None:
        self._entries[(source_path, name)] = markup

    def lookup(self, source_path: str, name: str) -> str | None:
        return self._entries.get((source_path, name), self._entries.get(("", name)))
