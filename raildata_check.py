#!/usr/bin/env python3

import argparse
import io
import json
import logging
import sys
import time
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from raildata.checks import default_engine
from raildata.rail_config import RailConfig
from raildata.rail_errors import LoadError, RailDataError
from raildata.rail_model import DocumentType, Origin
from raildata.rail_overlay import GeoOverlay
from raildata.rail_parser import RawRecord
from raildata.rail_pipeline import check_store, open_store

__version__ = "0.1.0"

EXIT_CLEAN = 0
EXIT_FINDINGS = 1
EXIT_LOAD_FAILED = 2

# Directory names that declare the type of the records below them
TYPE_DIRECTORIES = {
    "lines": DocumentType.LINE,
    "points": DocumentType.POINT,
    "organizations": DocumentType.ORGANIZATION,
    "sources": DocumentType.SOURCE,
    "structures": DocumentType.STRUCTURE,
}

logger = logging.getLogger("raildata_check")


def discover(data_dir: Path) -> List[Path]:
    """All YAML files below data_dir, in a stable order."""
    files = [p for p in data_dir.rglob("*") if p.suffix in (".yaml", ".yml") and p.is_file()]
    return sorted(files)


def type_for(path: Path, root: Path) -> Optional[DocumentType]:
    for part in reversed(path.relative_to(root).parts[:-1]):
        if part in TYPE_DIRECTORIES:
            return TYPE_DIRECTORIES[part]
    return None


def _has_content(lines: List[str]) -> bool:
    return any(line.strip() and not line.lstrip().startswith("#") for line in lines)


def split_documents(text: str) -> Iterator[Tuple[int, str]]:
    """Yield (first line number, text) for each '---' separated document."""
    start = 1
    chunk: List[str] = []
    for lineno, line in enumerate(text.splitlines(), 1):
        if line.rstrip() == "---":
            if _has_content(chunk):
                yield start, "\n".join(chunk)
            chunk = []
            start = lineno + 1
        else:
            chunk.append(line)
    if _has_content(chunk):
        yield start, "\n".join(chunk)


def read_records(data_dir: Path, files: List[Path]) -> List[RawRecord]:
    records = []
    for path in files:
        doctype = type_for(path, data_dir)
        text = path.read_text(encoding="utf-8")
        for lineno, chunk in split_documents(text):
            records.append(RawRecord(doctype, chunk, Origin(str(path), lineno)))
    logger.info("Read %d records from %d files", len(records), len(files))
    return records


def fresh_cache(cache: Optional[Path], files: List[Path]) -> Optional[bytes]:
    """Cache bytes if the cache file is newer than every input file, overlay included."""
    if cache is None or not cache.is_file():
        return None
    cache_time = cache.stat().st_mtime
    if any(p.stat().st_mtime >= cache_time for p in files):
        logger.info("Cache %s is stale", cache)
        return None
    return cache.read_bytes()


def write_report(report, output_format: str, stream):
    if output_format == "json":
        json.dump(report.to_dict(), stream, indent=2, ensure_ascii=False)
        stream.write("\n")
        return
    for item in report.findings:
        stream.write(f"{item}\n")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Check a railway history dataset for data-quality problems."
    )
    parser.add_argument("data_dir", nargs="?", help="Root directory of the dataset")
    parser.add_argument("--cache", type=Path, default=None, help="Cache file to use and refresh")
    parser.add_argument(
        "--overlay", type=Path, default=None, help="Geographic overlay (YAML) for site checks"
    )
    parser.add_argument("--workers", type=int, default=None, help="Worker threads for parsing and checks")
    parser.add_argument(
        "--format",
        choices=["text", "json"],
        default="text",
        help="Output format for findings",
    )
    parser.add_argument(
        "--skip",
        action="append",
        default=[],
        metavar="CHECK",
        help="Skip a check by name (may be repeated)",
    )
    parser.add_argument(
        "--list-checks", action="store_true", help="List available checks and exit"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="WARNING",
        help="Set logging level",
    )
    parser.add_argument(
        "--show-timing",
        action="store_true",
        help="Show timing information",
    )
    parser.add_argument("--version", action="store_true", help="Show version and exit")

    args = parser.parse_args(argv)

    if args.version:
        print(f"raildata: {__version__}")
        return EXIT_CLEAN

    engine = default_engine()
    if args.list_checks:
        for check in engine.checks:
            print(f"{check.name}: {check.description}")
        return EXIT_CLEAN

    if not args.data_dir:
        parser.error("the following arguments are required: data_dir")

    logging.basicConfig(
        level=getattr(logging, args.log_level), format="[%(levelname)s] %(message)s"
    )

    overall_start = time.time()
    try:
        engine = engine.skip(args.skip)
    except ValueError as e:
        parser.error(str(e))
    config = RailConfig.with_workers(args.workers) if args.workers else RailConfig()

    data_dir = Path(args.data_dir)
    files = discover(data_dir)
    inputs = files + [args.overlay] if args.overlay else files

    try:
        overlay = GeoOverlay.load(str(args.overlay)) if args.overlay else None
        load_start = time.time()
        opened = open_store(
            lambda: read_records(data_dir, files),
            cached=fresh_cache(args.cache, inputs),
            overlay=overlay,
            config=config,
        )
    except LoadError as e:
        for error in e:
            sys.stderr.write(f"{error}\n")
        sys.stderr.write(f"Load failed with {len(e)} error(s)\n")
        return EXIT_LOAD_FAILED
    except (RailDataError, OSError) as e:
        sys.stderr.write(f"Load failed: {e}\n")
        return EXIT_LOAD_FAILED
    load_time = time.time() - load_start

    if args.cache and opened.cache is not None:
        args.cache.write_bytes(opened.cache)
        logger.info("Wrote cache %s", args.cache)

    check_start = time.time()
    report = check_store(opened.store, engine, overlay, config)
    check_time = time.time() - check_start

    write_report(report, args.format, sys.stdout)
    source = "cache" if opened.from_cache else f"{len(files)} files"
    sys.stderr.write(
        f"Checked {len(opened.store)} documents from {source}: "
        f"{len(report.findings)} finding(s)\n"
    )
    if args.show_timing:
        sys.stderr.write(f"Load time: {load_time:.3f}s\n")
        sys.stderr.write(f"Check time: {check_time:.3f}s\n")
        sys.stderr.write(f"Overall time: {time.time() - overall_start:.3f}s\n")

    return EXIT_CLEAN if report.ok else EXIT_FINDINGS


if __name__ == "__main__":
    # Ensure UTF-8 encoding for stdout
    sys.stdout = io.TextIOWrapper(sys.stdout.buffer, encoding="utf-8")
    sys.exit(main())
