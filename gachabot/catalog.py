"""Read-only access to banners, their entries, and shop cosmetics."""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from gachabot.errors import FailedPrecondition, InvalidArgument, NotFound
from gachabot.models import (
    CURRENCIES,
    RARITY_ORDER,
    Banner,
    Cosmetic,
    PityRules,
    RarityPool,
)
from gachabot.store import DocumentStore
from gachabot.utils import parse_instant

logger = logging.getLogger("gachabot.catalog")

BANNERS = "banners"
ENTRIES = "entries"
COSMETICS = "cosmetics"

DEFAULT_PITY_RULES = PityRules()

_SHOP_COST_FIELDS: Mapping[str, str] = {
    "coins": "coinCost",
    "diamonds": "diamondCost",
    "tickets": "ticketCost",
}


def banner_path(banner_id: str) -> str:
    return f"{BANNERS}/{banner_id}"


def entries_collection(banner_id: str) -> str:
    return f"{BANNERS}/{banner_id}/{ENTRIES}"


def cosmetic_path(item_id: str) -> str:
    return f"{COSMETICS}/{item_id}"


def require_id(value: object, name: str) -> str:
    """Return ``value`` stripped, or raise ``InvalidArgument`` if it cannot be a document id."""
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgument(f"{name} is required.")
    cleaned = value.strip()
    if "/" in cleaned:
        raise InvalidArgument(f"{name} is malformed.")
    return cleaned


def _number(value: object, default: float, context: str) -> float:
    if value is None:
        return default
    if isinstance(value, bool):
        logger.warning("%s is not numeric; defaulting to %s", context, default)
        return default
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError):
        logger.warning("%s is not numeric; defaulting to %s", context, default)
        return default
    if not math.isfinite(number):
        logger.warning("%s is not finite; defaulting to %s", context, default)
        return default
    return number


def _instant(value: object, context: str) -> Optional[datetime]:
    try:
        return parse_instant(value)
    except ValueError:
        # An unreadable window must keep the banner closed rather than open.
        logger.warning("%s is not a valid instant: %r", context, value)
        raise FailedPrecondition(f"{context} is misconfigured.")


def parse_banner(banner_id: str, data: Mapping[str, object]) -> Banner:
    rates_raw = data.get("rarityRates")
    rates: Dict[str, float] = {}
    if isinstance(rates_raw, Mapping):
        for rarity, value in rates_raw.items():
            key = str(rarity).lower()
            if key not in RARITY_ORDER:
                logger.warning("Banner %s: ignoring rate for unknown rarity %s", banner_id, rarity)
                continue
            rates[key] = _number(value, 0.0, f"Banner {banner_id} rate {key}")

    rules_raw = data.get("pityRules")
    epic_every = DEFAULT_PITY_RULES.epic_every
    legendary_every = DEFAULT_PITY_RULES.legendary_every
    if isinstance(rules_raw, Mapping):
        epic_value = int(_number(rules_raw.get("epicEvery"), epic_every, f"Banner {banner_id} epicEvery"))
        legendary_value = int(
            _number(rules_raw.get("legendaryEvery"), legendary_every, f"Banner {banner_id} legendaryEvery")
        )
        epic_every = epic_value if epic_value > 0 else epic_every
        legendary_every = legendary_value if legendary_value > 0 else legendary_every

    refunds_raw = data.get("duplicateRefundCoinsByRarity")
    refunds: Dict[str, int] = {}
    if isinstance(refunds_raw, Mapping):
        for rarity, value in refunds_raw.items():
            amount = int(_number(value, 0, f"Banner {banner_id} refund {rarity}"))
            refunds[str(rarity).lower()] = max(0, amount)

    return Banner(
        banner_id=banner_id,
        active=data.get("active") is True,
        rarity_rates=rates,
        pity_rules=PityRules(epic_every=epic_every, legendary_every=legendary_every),
        duplicate_refunds=refunds,
        start_at=_instant(data.get("startAt"), f"Banner {banner_id} startAt"),
        end_at=_instant(data.get("endAt"), f"Banner {banner_id} endAt"),
        name=str(data.get("name") or banner_id),
        description=str(data.get("description") or ""),
    )


def compile_pool(entries: Iterable[Tuple[str, Mapping[str, object]]]) -> Dict[str, RarityPool]:
    """Build per-rarity cumulative weight tables from enabled ``(item_id, entry)`` pairs."""
    by_rarity: Dict[str, List[Tuple[str, int]]] = {}
    for item_id, entry in entries:
        if entry.get("enabled") is not True:
            continue
        rarity = str(entry.get("rarity") or "").lower()
        if rarity not in RARITY_ORDER:
            logger.warning("Skipping entry %s with unknown rarity %r", item_id, entry.get("rarity"))
            continue
        raw_weight = entry.get("weight")
        try:
            weight = int(raw_weight) if not isinstance(raw_weight, bool) else 1  # type: ignore[arg-type]
        except (TypeError, ValueError, OverflowError):
            weight = 1
        if weight < 1:
            weight = 1
        by_rarity.setdefault(rarity, []).append((item_id, weight))

    compiled: Dict[str, RarityPool] = {}
    for rarity, weighted in by_rarity.items():
        total = 0
        items: List[Tuple[str, int]] = []
        for item_id, weight in weighted:
            total += weight
            items.append((item_id, total))
        compiled[rarity] = RarityPool(items=tuple(items), total_weight=total)
    return compiled


def parse_cosmetic(item_id: str, data: Mapping[str, object]) -> Cosmetic:
    availability = data.get("availability") if isinstance(data.get("availability"), Mapping) else {}
    channels = availability.get("channels") if isinstance(availability.get("channels"), Mapping) else {}
    shop_data = data.get("shopData") if isinstance(data.get("shopData"), Mapping) else {}

    costs: Dict[str, int] = {}
    for currency in CURRENCIES:
        cost = _number(shop_data.get(_SHOP_COST_FIELDS[currency]), 0, f"Cosmetic {item_id} {currency} cost")
        costs[currency] = int(cost) if cost > 0 else 0

    return Cosmetic(
        item_id=item_id,
        cosmetic_type=str(data.get("type") or ""),
        name=str(data.get("name") or item_id),
        rarity=str(data.get("rarity") or "common").lower(),
        deprecated=data.get("deprecated") is True,
        shop_enabled=channels.get("shop") is True,
        gacha_enabled=channels.get("gacha") is True,
        start_at=_instant(availability.get("startAt"), f"Cosmetic {item_id} startAt"),
        end_at=_instant(availability.get("endAt"), f"Cosmetic {item_id} endAt"),
        shop_costs=costs,
    )


class CatalogLoader:
    """Fresh, non-transactional reads of catalog documents."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def load_banner(self, banner_id: str) -> Banner:
        banner_id = require_id(banner_id, "bannerId")
        snapshot = await self._store.get(banner_path(banner_id))
        if not snapshot.exists:
            raise NotFound(f'Banner "{banner_id}" not found.')
        return parse_banner(banner_id, snapshot.data or {})

    async def load_active_banner(self, banner_id: str, now: datetime) -> Banner:
        banner = await self.load_banner(banner_id)
        reason = banner.availability_error(now)
        if reason:
            raise FailedPrecondition(reason)
        return banner

    async def load_compiled_pool(self, banner_id: str) -> Dict[str, RarityPool]:
        banner_id = require_id(banner_id, "bannerId")
        snapshots = await self._store.list_documents(entries_collection(banner_id), where={"enabled": True})
        if not snapshots:
            raise FailedPrecondition("Banner has no enabled entries.")
        compiled = compile_pool((snapshot.doc_id, snapshot.data or {}) for snapshot in snapshots)
        if not compiled:
            logger.error("Banner %s has enabled entries but none with a usable rarity.", banner_id)
        return compiled

    async def load_cosmetic(self, item_id: str) -> Cosmetic:
        item_id = require_id(item_id, "itemId")
        snapshot = await self._store.get(cosmetic_path(item_id))
        if not snapshot.exists:
            raise NotFound(f'Cosmetic "{item_id}" not found.')
        return parse_cosmetic(item_id, snapshot.data or {})

    async def list_banners(self) -> List[Banner]:
        banners: List[Banner] = []
        for snapshot in await self._store.list_documents(BANNERS):
            try:
                banners.append(parse_banner(snapshot.doc_id, snapshot.data or {}))
            except FailedPrecondition as exc:
                logger.warning("Skipping banner %s: %s", snapshot.doc_id, exc)
        return banners


__all__ = [
    "BANNERS",
    "COSMETICS",
    "CatalogLoader",
    "ENTRIES",
    "banner_path",
    "compile_pool",
    "cosmetic_path",
    "entries_collection",
    "parse_banner",
    "parse_cosmetic",
    "require_id",
]
