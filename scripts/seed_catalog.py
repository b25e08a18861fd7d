#!/usr/bin/env python
"""Load banners, banner entries, and shop cosmetics from YAML into the gacha store."""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Optional

try:
    from dotenv import load_dotenv
except ImportError:  # pragma: no cover
    load_dotenv = None

from gachabot.seeding import CatalogFileError, catalog_documents, load_catalog_file, seed_store
from gachabot.store import DocumentStore
from gachabot.utils import path_from_env

logger = logging.getLogger("seed_catalog")


def parse_args() -> argparse.Namespace:
    if load_dotenv:
        load_dotenv()
    parser = argparse.ArgumentParser(
        description="Upsert a YAML catalog (banners, entries, cosmetics) into the gacha document store.",
    )
    parser.add_argument(
        "catalog",
        type=Path,
        nargs="?",
        default=Path("catalog.example.yaml"),
        help="Path to the YAML catalog file (default: catalog.example.yaml).",
    )
    parser.add_argument(
        "--db",
        type=Path,
        help="SQLite store path (defaults to GACHABOT_DB_PATH or gachabot.sqlite3).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate the catalog and list documents without writing them.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Increase logging verbosity.",
    )
    return parser.parse_args()


def resolve_db_path(explicit: Optional[Path]) -> Path:
    if explicit:
        return explicit.expanduser().resolve()
    return (path_from_env("GACHABOT_DB_PATH") or Path("gachabot.sqlite3")).resolve()


async def run(catalog_path: Path, db_path: Path, dry_run: bool) -> int:
    documents = catalog_documents(load_catalog_file(catalog_path))
    if dry_run:
        for path in sorted(documents):
            logger.info("would write %s", path)
        logger.info("Dry run complete: %d documents in %s.", len(documents), catalog_path)
        return 0

    store = DocumentStore(db_path)
    try:
        changed = await seed_store(store, documents)
    finally:
        store.close()
    logger.info("Seeded %s: %d of %d documents changed.", db_path, len(changed), len(documents))
    return 0


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(message)s")
    try:
        code = asyncio.run(run(args.catalog, resolve_db_path(args.db), args.dry_run))
    except (CatalogFileError, FileNotFoundError) as exc:
        raise SystemExit(str(exc)) from exc
    raise SystemExit(code)


if __name__ == "__main__":
    main()
