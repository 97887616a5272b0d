"""
phasecrawl command line.

Usage:
    phasecrawl crawl --url https://example.com --max-phases 20 --output ./output
    phasecrawl extract images --url https://example.com --download
    phasecrawl extract all --url https://example.com

Exit codes: 0 on success, 1 on initialization or unrecoverable failure,
2 on invalid arguments.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import pathlib
import sys
from typing import Any, Dict, List, Optional

from .config import AppConfig, get_config
from .discovery import DiscoveryLoop
from .extractors import EXTRACTORS
from .observability import init_logger
from .runtime import BrowserSession

logger = logging.getLogger("phasecrawl.cli")

EXTRACT_KINDS = ("images", "videos", "audio", "documents", "text", "all")
KIND_ALIASES = {"videos": "video", "all": "universal"}


def browser_options(args: argparse.Namespace, config: AppConfig) -> Dict[str, Any]:
    options = config.browser.to_options()
    options["headless"] = args.headless
    if args.rate_limit is not None:
        options["rate_limit"]["max_requests"] = args.rate_limit
    if getattr(args, "respect_robots", None) is not None:
        options["respect_robots"] = args.respect_robots
    return options


def extractor_options(args: argparse.Namespace, config: AppConfig) -> Dict[str, Any]:
    """Extractor keyword options from the command line, falling back to the environment config."""
    download = config.download
    options: Dict[str, Any] = {
        "download_media": args.download or download.download_media,
        "download_dir": args.download_dir or download.download_dir,
        "max_concurrent_downloads": args.max_concurrent_downloads or download.max_concurrent,
        "organize_by_type": download.organize_by_type,
        "organize_by_source": args.organize_by_source or download.organize_by_source,
        "retry_attempts": download.retry_attempts,
        "timeout": download.timeout,
    }
    knobs = {
        "max_scrolls": args.max_scrolls,
        "scroll_delay": args.scroll_delay,
        "min_width": args.min_width,
        "min_height": args.min_height,
        "observation_window": args.observation_window,
        "quality_preference": args.quality,
        "wait_for_dynamic_content": args.wait,
    }
    options.update({k: v for k, v in knobs.items() if v is not None})
    return options


def write_json(path: pathlib.Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")


# ───────── commands ─────────

async def run_crawl(args: argparse.Namespace, config: AppConfig) -> Dict[str, Any]:
    session = BrowserSession(browser_options(args, config))
    loop = DiscoveryLoop(session, {
        **config.crawl.to_options(),
        "max_phases": args.max_phases or config.crawl.max_phases,
        "save_interval": args.save_interval or config.crawl.save_interval,
        "output_dir": args.output or config.crawl.output_dir,
    })
    return await loop.run(args.url)


async def run_extract(args: argparse.Namespace, config: AppConfig) -> Dict[str, Any]:
    kind = KIND_ALIASES.get(args.kind, args.kind)
    session = BrowserSession(browser_options(args, config))
    options = extractor_options(args, config)
    if kind == "universal":
        per_kind = {k: dict(options) for k in ("text", "images", "video", "audio", "documents")}
        extractor = EXTRACTORS.create(kind, session, {**per_kind, "close_browser": True})
    else:
        extractor = EXTRACTORS.create(kind, session, options)
    results = await extractor.run(args.url)

    output = pathlib.Path(args.output or config.crawl.output_dir) / f"extracted-{args.kind}.json"
    write_json(output, results)
    logger.info(f"💾 Results written to {output}")
    return results


def cmd_crawl(args: argparse.Namespace) -> int:
    config = get_config()
    try:
        report = asyncio.run(run_crawl(args, config))
    except Exception as e:
        logger.error(f"❌ Crawl failed: {e}")
        return 1
    print(json.dumps(report, indent=2, default=str))
    return 0


def cmd_extract(args: argparse.Namespace) -> int:
    config = get_config()
    try:
        results = asyncio.run(run_extract(args, config))
    except Exception as e:
        logger.error(f"❌ Extraction failed: {e}")
        return 1
    summary = results.get("summary") or {"items": len(results.get("items") or []), "stats": results.get("stats")}
    print(json.dumps(summary, indent=2, default=str))
    return 0


# ───────── parser ─────────

def add_browser_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--url", "-u", required=True, help="Start URL")
    parser.add_argument("--output", "-o", help="Output directory")
    parser.add_argument("--no-headless", dest="headless", action="store_false", help="Run with a visible browser")
    parser.add_argument("--rate-limit", type=int, help="Requests per interval")
    parser.add_argument("--log-level", default=None, help="Logging level (default from PHASECRAWL_LOG_LEVEL)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="phasecrawl",
        description="Adaptive link discovery and media extraction with a headless browser",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Command")

    # crawl - adaptive link discovery
    p_crawl = subparsers.add_parser("crawl", help="Run the adaptive discovery loop")
    add_browser_arguments(p_crawl)
    p_crawl.add_argument("--max-phases", "-m", type=int, help="Maximum crawl phases")
    p_crawl.add_argument("--save-interval", type=int, help="Checkpoint save interval (phases)")
    p_crawl.add_argument("--no-respect-robots", dest="respect_robots", action="store_false",
                         default=None, help="Ignore robots.txt")
    p_crawl.set_defaults(func=cmd_crawl)

    # extract - one extractor kind, or all of them
    p_extract = subparsers.add_parser("extract", help="Extract media, documents or text from a page")
    p_extract.add_argument("kind", choices=EXTRACT_KINDS, help="What to extract")
    add_browser_arguments(p_extract)
    p_extract.add_argument("--download", action="store_true", help="Download extracted media")
    p_extract.add_argument("--download-dir", "-d", help="Download directory")
    p_extract.add_argument("--max-concurrent-downloads", type=int, help="Max concurrent downloads")
    p_extract.add_argument("--organize-by-source", action="store_true", help="Group downloads by source host")
    p_extract.add_argument("--max-scrolls", type=int, help="Maximum scroll iterations (images)")
    p_extract.add_argument("--scroll-delay", type=int, help="Delay between scrolls in ms (images)")
    p_extract.add_argument("--min-width", type=int, help="Minimum image width (images)")
    p_extract.add_argument("--min-height", type=int, help="Minimum image height (images)")
    p_extract.add_argument("--observation-window", type=int, help="Network observation window in ms (video, audio)")
    p_extract.add_argument("--quality", choices=("highest", "lowest", "all"), help="Player quality preference")
    p_extract.add_argument("--wait", type=int, help="Wait for dynamic content in ms (text)")
    p_extract.set_defaults(func=cmd_extract)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 2

    config = get_config()
    init_logger(args.log_level or config.system.log_level, config.system.log_dir)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
