"""Compile and export decks using marp-cli."""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
import subprocess
import sys
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, "str | None"], None]

EXPORT_FORMATS = ("pdf", "pptx", "html")

_STYLE_RE = re.compile(r"<style[^>]*>(.*?)</style>", re.DOTALL | re.IGNORECASE)
_BODY_RE = re.compile(r"<body[^>]*>(.*)</body>", re.DOTALL | re.IGNORECASE)


class ExportError(RuntimeError):
    """marp-cli exited with a non-zero status."""

    def __init__(self, returncode: int, stderr: str = ""):
        super().__init__(f"marp-cli exited with code {returncode}")
        self.returncode = returncode
        self.stderr = stderr


@dataclass
class MarpOptions:
    theme_dir: Path | None = None
    html: bool = True
    allow_local_files: bool = True
    keep_temp: bool = False


@dataclass(frozen=True)
class CompiledDeck:
    markup: str
    stylesheet: str


def check_marp_cli() -> None:
    """Exit with helpful instructions if marp-cli is not available."""
    if shutil.which("npx") is None and shutil.which("marp") is None:
        print(
            "Error: Neither `npx` nor `marp` found on PATH.\n"
            "Install marp-cli with one of:\n"
            "  npm install -g @marp-team/marp-cli\n"
            "  # or use npx (requires Node.js / npm)\n",
            file=sys.stderr,
        )
        sys.exit(1)


def marp_command() -> list[str]:
    """Command prefix for marp-cli, preferring a global ``marp``."""
    if shutil.which("marp"):
        return ["marp"]
    if shutil.which("npx"):
        # --yes auto-accepts the "Need to install @marp-team/marp-cli" prompt
        # so the pipeline never hangs waiting for hidden interactive input.
        return ["npx", "--yes", "@marp-team/marp-cli"]
    raise RuntimeError("Neither `npx` nor `marp` found on PATH; install @marp-team/marp-cli")


def _common_flags(options: MarpOptions) -> list[str]:
    flags: list[str] = []
    if options.html:
        flags.append("--html")
    if options.allow_local_files:
        flags.append("--allow-local-files")
    flags.append("--no-stdin")
    if options.theme_dir is not None and Path(options.theme_dir).is_dir():
        flags += ["--theme-set", str(options.theme_dir)]
    return flags


def split_html(html: str) -> CompiledDeck:
    """Separate the stylesheet from the slide markup of a marp-cli HTML page."""
    stylesheet = "\n".join(m.strip() for m in _STYLE_RE.findall(html))
    body = _BODY_RE.search(html)
    markup = _STYLE_RE.sub("", body.group(1) if body else html).strip()
    return CompiledDeck(markup=markup, stylesheet=stylesheet)


class _MarpRunner:
    """Writes a deck to a temporary file next to the source and runs marp-cli on it."""

    def __init__(self, work_dir: str | Path, options: MarpOptions | None = None):
        self.work_dir = Path(work_dir)
        self.options = options or MarpOptions()

    def _write_temp(self, markdown: str) -> Path:
        tmp = self.work_dir / f"deckpreview-{time.time_ns()}.md"
        tmp.write_text(markdown, encoding="utf-8")
        logger.debug("Wrote temporary deck %s", tmp)
        return tmp

    def _cleanup(self, tmp: Path) -> None:
        if self.options.keep_temp:
            logger.info("Temporary deck kept at: %s", tmp)
            return
        tmp.unlink(missing_ok=True)

    async def _run(self, markdown: str, extra: list[str]) -> bytes:
        tmp = self._write_temp(markdown)
        try:
            cmd = [*marp_command(), str(tmp), *_common_flags(self.options), *extra, "-o", "-"]
            logger.debug("marp-cli command: %s", " ".join(cmd))
            result = await asyncio.to_thread(
                subprocess.run, cmd, cwd=str(self.work_dir), capture_output=True
            )
            stderr = result.stderr.decode("utf-8", errors="replace") if result.stderr else ""
            logger.debug("marp-cli stderr: %s", stderr)
            if result.returncode != 0:
                raise ExportError(result.returncode, stderr)
            return result.stdout
        finally:
            self._cleanup(tmp)


class MarpCompiler(_MarpRunner):
    """Slide compiler: markdown deck to HTML markup plus stylesheet."""

    async def compile(self, markdown: str) -> CompiledDeck:
        html = await self._run(markdown, ["--template", "bare"])
        return split_html(html.decode("utf-8", errors="replace"))


class MarpExporter(_MarpRunner):
    """Export backend: markdown deck to a PDF, PPTX or HTML file's bytes."""

    async def export(
        self,
        markdown: str,
        fmt: str = "pdf",
        progress: ProgressCallback | None = None,
    ) -> bytes:
        if fmt not in EXPORT_FORMATS:
            raise ValueError(f"Unsupported export format: {fmt}")
        report = progress or (lambda percent, message=None: None)

        report(0, "Preparing deck")
        extra = [f"--{fmt}"] if fmt != "html" else []
        report(10, "Running marp-cli")
        data = await self._run(markdown, extra)
        report(90, "marp-cli finished")
        logger.info("Exported %d bytes of %s", len(data), fmt)
        report(100, "Done")
        return data
