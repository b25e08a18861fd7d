"""Helpers for loading a YAML catalog file into the document store."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, MutableMapping

import yaml

from gachabot.catalog import banner_path, cosmetic_path, entries_collection
from gachabot.models import RARITY_ORDER
from gachabot.store import DocumentStore

logger = logging.getLogger("gachabot.seeding")


class CatalogFileError(ValueError):
    """Raised when a catalog file cannot be turned into documents."""


def load_catalog_file(path: Path) -> Mapping[str, Any]:
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise CatalogFileError(f"Failed to parse {path}: {exc}") from exc
    if not isinstance(payload, Mapping):
        raise CatalogFileError(f"Catalog file {path} must contain a mapping at the top level.")
    return payload


def _jsonable(value: Any) -> Any:
    """YAML turns timestamps into datetimes; the store only holds JSON."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc).isoformat()
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


def _section(payload: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    section = payload.get(key) or {}
    if not isinstance(section, Mapping):
        raise CatalogFileError(f"`{key}` must be a mapping of id -> definition.")
    return section


def catalog_documents(payload: Mapping[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Flatten a catalog mapping into ``{document path: document}``."""
    documents: Dict[str, Dict[str, Any]] = {}

    for banner_id, raw in _section(payload, "banners").items():
        if not isinstance(raw, Mapping):
            raise CatalogFileError(f"Banner {banner_id} must be a mapping.")
        banner: MutableMapping[str, Any] = dict(raw)
        entries = banner.pop("entries", {}) or {}
        if not isinstance(entries, Mapping):
            raise CatalogFileError(f"Banner {banner_id} entries must be a mapping.")
        banner.setdefault("active", False)
        documents[banner_path(str(banner_id))] = _jsonable(banner)

        for item_id, entry in entries.items():
            if isinstance(entry, str):
                entry = {"rarity": entry}
            if not isinstance(entry, Mapping):
                raise CatalogFileError(f"Entry {banner_id}/{item_id} must be a mapping or a rarity name.")
            rarity = str(entry.get("rarity") or "").lower()
            if rarity not in RARITY_ORDER:
                raise CatalogFileError(f"Entry {banner_id}/{item_id} has unknown rarity {entry.get('rarity')!r}.")
            document = dict(entry)
            document["rarity"] = rarity
            document.setdefault("enabled", True)
            document.setdefault("weight", 1)
            documents[f"{entries_collection(str(banner_id))}/{item_id}"] = _jsonable(document)

    for item_id, raw in _section(payload, "cosmetics").items():
        if not isinstance(raw, Mapping):
            raise CatalogFileError(f"Cosmetic {item_id} must be a mapping.")
        documents[cosmetic_path(str(item_id))] = _jsonable(raw)

    return documents


async def seed_store(store: DocumentStore, documents: Mapping[str, Mapping[str, Any]]) -> List[str]:
    """Write ``documents`` to the store and return the paths that changed."""
    changed: List[str] = []
    for path, document in sorted(documents.items()):
        current = await store.get(path)
        if current.data == dict(document):
            continue
        await store.set(path, document)
        changed.append(path)
        logger.debug("Seeded %s", path)
    return changed


__all__ = ["CatalogFileError", "catalog_documents", "load_catalog_file", "seed_store"]
