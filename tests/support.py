"""Shared fixtures for the gacha test-suite."""

from __future__ import annotations

import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from gachabot.rng import RandomSource
from gachabot.store import DocumentStore

FIXED_NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)

STANDARD_RATES = {"common": 0.6, "uncommon": 0.25, "rare": 0.1, "epic": 0.04, "legendary": 0.01}


class ScriptedRandom(RandomSource):
    """Returns queued values, then ``default`` once the queue is empty."""

    def __init__(self, values: Iterable[float] = (), default: Optional[float] = None) -> None:
        self._values = list(values)
        self.default = default
        self.calls = 0

    def push(self, *values: float) -> None:
        self._values.extend(values)

    def random(self) -> float:
        self.calls += 1
        if self._values:
            return self._values.pop(0)
        if self.default is None:
            raise AssertionError("ScriptedRandom ran out of values")
        return self.default


class TempStoreMixin:
    """Creates a fresh sqlite-backed store per test."""

    def make_store(self, store_cls: type = DocumentStore, **kwargs) -> DocumentStore:
        self._tmp = tempfile.TemporaryDirectory()
        store = store_cls(Path(self._tmp.name) / "store.sqlite3", **kwargs)
        self.addCleanup(self._tmp.cleanup)  # type: ignore[attr-defined]
        self.addCleanup(store.close)  # type: ignore[attr-defined]
        return store


def banner_document(**overrides) -> dict:
    document = {
        "name": "Lab Launch",
        "active": True,
        "rarityRates": dict(STANDARD_RATES),
        "pityRules": {"epicEvery": 20, "legendaryEvery": 40},
        "duplicateRefundCoinsByRarity": {"common": 20, "uncommon": 40, "rare": 100, "epic": 250, "legendary": 600},
    }
    document.update(overrides)
    return document


def economy_document(
    coins: int = 0,
    diamonds: int = 0,
    tickets: int = 0,
    owned: Iterable[str] = (),
    gacha_state: Optional[dict] = None,
) -> dict:
    """A user document whose economy already carries the starter loadout."""
    return {
        "economy": {
            "currencies": {"coins": coins, "diamonds": diamonds, "tickets": tickets},
            "ownedCosmetics": ["avatar_1_plain", "bg_1", *owned],
            "equippedCosmetics": {"avatarId": "avatar_1_plain", "backgroundId": "bg_1"},
            "gachaState": gacha_state or {},
        }
    }


GACHA_ENTRIES = {
    "c1": {"enabled": True, "rarity": "common", "weight": 1},
    "c2": {"enabled": True, "rarity": "common", "weight": 1},
    "u1": {"enabled": True, "rarity": "uncommon", "weight": 1},
    "r1": {"enabled": True, "rarity": "rare", "weight": 1},
    "e1": {"enabled": True, "rarity": "epic", "weight": 1},
    "l1": {"enabled": True, "rarity": "legendary", "weight": 1},
    "retired": {"enabled": False, "rarity": "legendary", "weight": 50},
}


async def seed_banner(store: DocumentStore, banner_id: str = "lab", **overrides) -> None:
    await store.set(f"banners/{banner_id}", banner_document(**overrides))
    for item_id, entry in GACHA_ENTRIES.items():
        await store.set(f"banners/{banner_id}/entries/{item_id}", entry)
