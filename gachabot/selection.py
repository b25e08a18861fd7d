"""Rarity and item selection for a single pull."""

from __future__ import annotations

import logging
from typing import Mapping, Tuple

from gachabot.errors import PoolExhaustedError
from gachabot.models import RARITY_ORDER, CompiledPool, PityRules, PityState, rarity_rank
from gachabot.rng import RandomSource

logger = logging.getLogger("gachabot.selection")

# Soft-pity split rates used when a banner omits them.
DEFAULT_EPIC_RATE = 0.05
DEFAULT_LEGENDARY_RATE = 0.02


def _rate(rates: Mapping[str, float], rarity: str, default: float = 0.0) -> float:
    value = rates.get(rarity, default)
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def select_rarity(
    rates: Mapping[str, float],
    pity_rules: PityRules,
    pity_state: PityState,
    rng: RandomSource,
) -> Tuple[str, bool]:
    """Decide the rarity of one pull, returning ``(rarity, pitied)``.

    Hard legendary pity wins over soft epic pity, which wins over the normal
    roll. The Nth pull since the last legendary (N = ``legendary_every``) is
    guaranteed, so the check fires one pull before the counter reaches N.
    """
    if pity_state.since_legendary >= pity_rules.legendary_every - 1:
        return "legendary", True

    if pity_state.since_epic >= pity_rules.epic_every - 1:
        roll = rng.random()
        epic_rate = _rate(rates, "epic", DEFAULT_EPIC_RATE)
        legendary_rate = _rate(rates, "legendary", DEFAULT_LEGENDARY_RATE)
        total = epic_rate + legendary_rate
        if not total > 0:
            return "epic", True
        return ("legendary" if roll < legendary_rate / total else "epic"), True

    roll = rng.random()
    cumulative = 0.0
    for rarity in reversed(RARITY_ORDER):
        cumulative += _rate(rates, rarity)
        if roll <= cumulative:
            return rarity, False
    logger.debug("Roll %.6f exceeded cumulative rates %.6f; falling back to common", roll, cumulative)
    return "common", False


def select_item(pool: CompiledPool, rarity: str, rng: RandomSource) -> str:
    """Pick one item of ``rarity`` from ``pool``, stepping down when a tier is empty."""
    start = rarity_rank(rarity)
    if start < 0:
        start = len(RARITY_ORDER) - 1

    for index in range(start, -1, -1):
        tier = pool.get(RARITY_ORDER[index])
        if tier is None or tier.total_weight <= 0 or not tier.items:
            continue
        roll = rng.random() * tier.total_weight
        for item_id, cumulative in tier.items:
            if cumulative >= roll:
                return item_id
        return tier.items[-1][0]

    for fallback in reversed(RARITY_ORDER):
        tier = pool.get(fallback)
        if tier is not None and tier.items:
            logger.warning("No %s-or-lower items available; falling back to %s tier", rarity, fallback)
            return tier.items[0][0]

    raise PoolExhaustedError("No cosmetics available in pool.")


__all__ = ["select_item", "select_rarity"]
