#!/usr/bin/env python3
"""
qlbundle CLI - add workspace packs to a CodeQL bundle.

Usage:
  qlbundle --packs acme/java-customizations,acme/java-queries --workspace /path/to/repo
  qlbundle --bundle-path /tmp/codeql --packs acme/java-queries --workspace . --output dist
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

import structlog

from qlbundle.core.config import get_settings
from qlbundle.core.logging import setup_logging
from qlbundle.services.bundle import Bundle
from qlbundle.services.pack_repository import PackRepository, select

logger = structlog.get_logger(__name__)


def parse_packs(value: str) -> List[str]:
    return [name.strip() for name in value.split(",") if name.strip()]


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        prog="qlbundle",
        description="Customize a CodeQL bundle with packs from a workspace",
    )
    parser.add_argument(
        "--bundle-version",
        default="latest",
        help="Release tag of the bundle to customize (default: latest)",
    )
    parser.add_argument(
        "--repository",
        default=settings.release_repository,
        help="Repository hosting the bundle releases (owner/name)",
    )
    parser.add_argument(
        "--bundle-path",
        default=None,
        help="Use an already extracted bundle instead of downloading one",
    )
    parser.add_argument("--workspace", default=".", help="Workspace containing the packs")
    parser.add_argument(
        "--packs",
        required=True,
        type=parse_packs,
        help="Comma separated list of packs to add",
    )
    parser.add_argument(
        "--output", default=None, help="Directory for the customized bundle archive"
    )
    parser.add_argument(
        "--concurrency-limit",
        type=int,
        default=settings.concurrency_limit,
        help="Maximum number of packs processed concurrently",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    return parser


async def run(args: argparse.Namespace) -> Path:
    settings = get_settings()
    settings.concurrency_limit = max(1, args.concurrency_limit)
    tmp_dir = Path(settings.temp_root)

    if args.bundle_path:
        bundle = Bundle(Path(args.bundle_path), args.bundle_version, settings=settings)
    else:
        bundle = await Bundle.get_bundle_by_tag(
            args.repository, args.bundle_version, tmp_dir=tmp_dir
        )
    print(f"bundle-tag={bundle.get_tag()}")

    codeql = bundle.get_codeql()
    version = await codeql.version()
    logger.debug(
        "cli.codeql_version",
        version=version.version,
        location=version.unpacked_location,
    )

    workspace = Path(args.workspace).resolve()
    available = await PackRepository(codeql).list(workspace)
    packs_to_add = select(available, args.packs)

    await bundle.add_packs(workspace, *packs_to_add)
    output = await bundle.bundle(Path(args.output) if args.output else tmp_dir)
    print(f"bundle-path={output}")
    return output


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging("DEBUG" if args.verbose else None, args.json_logs or None)
    try:
        logger.debug("cli.start")
        asyncio.run(run(args))
    except Exception as e:
        logger.error(f"CodeQL bundle action failed: {e}")
        if args.verbose:
            logger.exception("cli.failure_detail")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
