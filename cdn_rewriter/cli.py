"""Command-line entry point for the CDN rewriter."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from dataclasses import replace
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from .config import CdnConfig
from .images import ImageConverter
from .merger import MERGE_KINDS, AssetMerger
from .processor import HtmlResponseProcessor

logger = logging.getLogger("cdn_rewriter.cli")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )


def load_config(path: Optional[Path]) -> CdnConfig:
    """Read a JSON object keyed by config path (``cdn/general/enabled`` ...)."""
    if path is None:
        return CdnConfig()
    with open(path, "r", encoding="utf-8") as handle:
        values = json.load(handle)
    if not isinstance(values, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")
    return CdnConfig.from_mapping(values)


def _add_rewrite_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("input", help="HTML file to rewrite, or - for standard input")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="JSON file with scope configuration values",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Where to write the rewritten HTML (default: standard output)",
    )
    parser.add_argument(
        "--request-path",
        default="",
        help="Request path of the page; admin paths are left untouched",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )


def _add_merge_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("files", nargs="+", help="Asset URLs or paths, in load order")
    parser.add_argument("--kind", choices=MERGE_KINDS, required=True, help="Bundle type")
    parser.add_argument(
        "--root",
        type=Path,
        required=True,
        help="Document root holding local assets and pub/static/merged",
    )
    parser.add_argument("--base-url", required=True, help="Public base URL of the store")
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )


def _add_webp_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "paths",
        nargs="+",
        type=Path,
        help="Images or directories of images to convert",
    )
    parser.add_argument(
        "--quality",
        type=int,
        default=80,
        help="WebP quality (0-100)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Redirect static assets to a CDN and apply page-speed transforms.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    rewrite_parser = subparsers.add_parser(
        "rewrite", help="Rewrite an HTML document to use CDN asset URLs"
    )
    _add_rewrite_arguments(rewrite_parser)

    merge_parser = subparsers.add_parser(
        "merge", help="Concatenate CSS or JS files into a merged bundle"
    )
    _add_merge_arguments(merge_parser)

    webp_parser = subparsers.add_parser("webp", help="Convert JPEG/PNG images to WebP")
    _add_webp_arguments(webp_parser)

    argv = list(sys.argv[1:] if argv is None else argv)
    return parser.parse_args(argv)


def _run_rewrite(args: argparse.Namespace) -> None:
    _configure_logging(args.verbose)
    config = load_config(args.config)
    if args.verbose:
        config = replace(config, debug_mode=True)

    if args.input == "-":
        html = sys.stdin.read()
    else:
        html = Path(args.input).read_text(encoding="utf-8")

    start = time.perf_counter()
    processor = HtmlResponseProcessor(config, request_path=args.request_path)
    result = processor.process_html(html)
    logger.info(
        "Processed document in %.3fs (%d -> %d characters)",
        time.perf_counter() - start,
        len(html),
        len(result),
    )

    if args.output is None:
        sys.stdout.write(result)
        sys.stdout.flush()
    else:
        args.output.write_text(result, encoding="utf-8")
        logger.info("Wrote %s", args.output)


def _run_merge(args: argparse.Namespace) -> None:
    _configure_logging(args.verbose)
    merger = AssetMerger(args.root, args.base_url)
    asset = merger.merge_asset(list(args.files), args.kind)
    if asset.cache_hit:
        logger.info("Reused existing bundle %s", asset.path)
    sys.stdout.write(asset.url + "\n")
    sys.stdout.flush()


def _iter_images(paths: Sequence[Path]) -> Iterator[Path]:
    for path in paths:
        if path.is_dir():
            for child in sorted(path.rglob("*")):
                if child.is_file() and ImageConverter.is_image_file(child):
                    yield child
        else:
            yield path


def _run_webp(args: argparse.Namespace) -> None:
    _configure_logging(args.verbose)
    converter = ImageConverter(quality=args.quality)
    converted: List[Path] = []
    failed = 0
    for path in _iter_images(args.paths):
        result = converter.convert_to_webp(path)
        if result is None:
            failed += 1
            logger.warning("Could not convert %s", path)
            continue
        converted.append(result)
        sys.stdout.write(f"{result}\n")
    sys.stdout.flush()
    logger.info("Converted %d images (%d failed)", len(converted), failed)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    if args.command == "rewrite":
        _run_rewrite(args)
    elif args.command == "merge":
        _run_merge(args)
    else:
        _run_webp(args)


if __name__ == "__main__":
    main()
