"""Rasterize diagram code blocks with mermaid-cli."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import shutil
import subprocess
import tempfile
from collections import OrderedDict
from pathlib import Path

from .resources import svg_data_url

logger = logging.getLogger(__name__)


class RasterizeError(RuntimeError):
    """A diagram could not be rendered."""


def mermaid_command() -> list[str]:
    """Return the command prefix for mermaid-cli, preferring a global ``mmdc``."""
    if shutil.which("mmdc"):
        return ["mmdc"]
    if shutil.which("npx"):
        return ["npx", "--yes", "-p", "@mermaid-js/mermaid-cli", "mmdc"]
    raise RasterizeError(
        "Neither `mmdc` nor `npx` found on PATH. Install mermaid-cli with:\n"
        "  npm install -g @mermaid-js/mermaid-cli"
    )


def _prepare_source(code: str) -> str:
    return code.replace("\r\n", "\n").strip("\n") + "\n"


class MermaidRasterizer:
    """Renders mermaid source to an SVG data URL.

    Results are cached by source hash; the least recently used entry is
    evicted once *cache_size* diagrams are held.
    """

    def __init__(self, timeout: float = 60.0, cache_size: int = 128):
        self.timeout = timeout
        self.cache_size = cache_size
        self._cache: OrderedDict[str, str] = OrderedDict()

    async def render(self, code: str) -> str:
        source = _prepare_source(code)
        key = hashlib.sha1(source.encode("utf-8", errors="replace")).hexdigest()
        if key in self._cache:
            self._cache.move_to_end(key)
            return self._cache[key]
        data_url = await asyncio.to_thread(self._render_sync, source)
        self._cache[key] = data_url
        while len(self._cache) > self.cache_size:
            evicted, _ = self._cache.popitem(last=False)
            logger.debug("Evicted diagram %s from cache", evicted[:12])
        return data_url

    def _render_sync(self, source: str) -> str:
        with tempfile.TemporaryDirectory(prefix="deckpreview_mmd_") as tmp:
            src = Path(tmp) / "diagram.mmd"
            out = Path(tmp) / "diagram.svg"
            src.write_text(source, encoding="utf-8")
            cmd = [*mermaid_command(), "-i", str(src), "-o", str(out), "-b", "transparent"]
            logger.debug("mermaid-cli command: %s", " ".join(cmd))
            try:
                result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
            except subprocess.TimeoutExpired as exc:
                raise RasterizeError("mermaid-cli timed out") from exc
            logger.debug("mermaid-cli stderr: %s", result.stderr)
            if result.returncode != 0:
                raise RasterizeError(
                    f"mermaid-cli exited with code {result.returncode}: {result.stderr.strip()}"
                )
            if not out.exists():
                raise RasterizeError("mermaid-cli did not write an SVG file")
            svg = out.read_text(encoding="utf-8")
        if "<svg" not in svg.casefold():
            raise RasterizeError("mermaid-cli did not return SVG output")
        return svg_data_url(svg)
