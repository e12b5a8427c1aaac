"""deckpreview — Render or export a markdown slide deck through the Marp pipeline."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path

from .diagrams import MermaidRasterizer
from .marp import EXPORT_FORMATS, ExportError, MarpCompiler, MarpExporter, MarpOptions, check_marp_cli
from .models import Mode, PageRecord
from .preview import build_deck
from .processor import MarkdownProcessor
from .resources import FileResourceResolver
from .segmenter import segment

logger = logging.getLogger(__name__)

_HTML_PAGE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>{title}</title>
<style>
{stylesheet}
</style>
</head>
<body>
{markup}
</body>
</html>
"""


def _configure_logging(log_file: str | None, verbose: bool) -> None:
    root = logging.getLogger("deckpreview")
    root.setLevel(logging.DEBUG)
    formatter = logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s")
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
    if verbose:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setLevel(logging.DEBUG)
        stream_handler.setFormatter(formatter)
        root.addHandler(stream_handler)


def _load_pages(input_path: Path) -> list[PageRecord]:
    text = input_path.read_text(encoding="utf-8")
    return segment(text, input_path.name)


def _build_processor(input_path: Path, args: argparse.Namespace) -> MarkdownProcessor:
    return MarkdownProcessor(
        FileResourceResolver(input_path.parent),
        rasterizer=MermaidRasterizer(),
        diagram_languages=args.diagram_lang or ["mermaid"],
    )


def _print_progress(percent: int, message: str | None = None) -> None:
    print(f"  [{percent:3d}%] {message or ''}".rstrip())


def _cmd_pages(input_path: Path, args: argparse.Namespace) -> None:
    pages = _load_pages(input_path)
    print(f"Found {len(pages)} page(s) in {input_path}")
    for record in pages:
        first_line = next((line for line in record.content.splitlines() if line.strip()), "")
        print(f"  Page {record.page + 1}: {record.start}-{record.end}  {first_line[:60]}")


async def _cmd_preview(input_path: Path, args: argparse.Namespace) -> Path:
    output_path = Path(args.output) if args.output else input_path.with_suffix(".preview.html")
    print("[1/3] Parsing pages…")
    pages = _load_pages(input_path)
    print(f"  Found {len(pages)} page(s)")

    print("[2/3] Transforming pages…")
    t0 = time.monotonic()
    markdown = await build_deck(_build_processor(input_path, args), pages, Mode.PREVIEW)
    logger.info("[2/3] Transform completed in %.2fs", time.monotonic() - t0)

    print("[3/3] Compiling slides…")
    compiler = MarpCompiler(input_path.parent, MarpOptions(theme_dir=args.theme_dir, keep_temp=args.keep_temp))
    deck = await compiler.compile(markdown)
    output_path.write_text(
        _HTML_PAGE.format(title=input_path.stem, stylesheet=deck.stylesheet, markup=deck.markup),
        encoding="utf-8",
    )
    return output_path


async def _cmd_export(input_path: Path, args: argparse.Namespace) -> Path:
    output_path = Path(args.output) if args.output else input_path.with_suffix(f".{args.format}")
    print("[1/3] Parsing pages…")
    pages = _load_pages(input_path)
    print(f"  Found {len(pages)} page(s)")

    print("[2/3] Transforming pages…")
    t0 = time.monotonic()
    markdown = await build_deck(_build_processor(input_path, args), pages, Mode.EXPORT)
    logger.info("[2/3] Transform completed in %.2fs", time.monotonic() - t0)

    print(f"[3/3] Exporting {args.format.upper()}…")
    exporter = MarpExporter(input_path.parent, MarpOptions(theme_dir=args.theme_dir, keep_temp=args.keep_temp))
    data = await exporter.export(markdown, args.format, progress=_print_progress)
    output_path.write_bytes(data)
    return output_path


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="deckpreview",
        description="Render or export a markdown slide deck through the Marp pipeline.",
    )
    parser.add_argument("--log-file", help="Write a debug log to this file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log debug output to stderr")
    sub = parser.add_subparsers(dest="command", required=True)

    pages_parser = sub.add_parser("pages", help="List the pages of a deck")
    pages_parser.add_argument("input", help="Path to the markdown deck")

    for name, help_text in (
        ("preview", "Render the deck to a standalone HTML preview"),
        ("export", "Export the deck with marp-cli"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("input", help="Path to the markdown deck")
        cmd.add_argument("--output", help="Output path (default: derived from the input)")
        cmd.add_argument("--theme-dir", type=Path, default=None,
                         help="Directory of custom Marp themes (--theme-set)")
        cmd.add_argument("--diagram-lang", action="append", metavar="LANG",
                         help="Code block language rendered as a diagram (default: mermaid)")
        cmd.add_argument("--keep-temp", action="store_true",
                         help="Don't delete the intermediate markdown file")
        if name == "export":
            cmd.add_argument("--format", choices=EXPORT_FORMATS, default="pdf",
                             help="Export format (default: pdf)")

    args = parser.parse_args(argv)
    _configure_logging(args.log_file, args.verbose)
    logger.info("CLI arguments: %s", vars(args))

    input_path = Path(args.input)
    if not input_path.exists():
        print(f"Error: {input_path} not found.", file=sys.stderr)
        sys.exit(1)

    if args.command == "pages":
        _cmd_pages(input_path, args)
        return

    # Pre-flight checks
    check_marp_cli()

    try:
        if args.command == "preview":
            output_path = asyncio.run(_cmd_preview(input_path, args))
        else:
            output_path = asyncio.run(_cmd_export(input_path, args))
    except ExportError as exc:
        logger.error("marp-cli failed (code %d): %s", exc.returncode, exc.stderr)
        print(f"\nExport failed: marp-cli exited with code {exc.returncode}", file=sys.stderr)
        if exc.stderr:
            print(exc.stderr, file=sys.stderr)
        sys.exit(exc.returncode or 1)
    except Exception:
        logger.exception("Pipeline failed")
        raise

    print(f"\nDone! Output: {output_path}")


if __name__ == "__main__":
    main()
