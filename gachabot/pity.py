"""Pity counters and the multi-pull rarity floor."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from gachabot.models import Banner, CompiledPool, EconomyRecord, PityState, PullResult, rarity_rank
from gachabot.rng import RandomSource
from gachabot.selection import select_item
from gachabot.utils import utc_now

logger = logging.getLogger("gachabot.pity")

GUARANTEE_BATCH_SIZE = 10
GUARANTEE_FLOOR = "rare"


def update_pity(state: PityState, rarity: str, now: Optional[datetime] = None) -> PityState:
    """Return the pity state that follows a pull of ``rarity``."""
    stamp = (now or utc_now()).isoformat()
    if rarity == "legendary":
        since_epic, since_legendary = 0, 0
    elif rarity == "epic":
        since_epic, since_legendary = 0, state.since_legendary + 1
    else:
        since_epic, since_legendary = state.since_epic + 1, state.since_legendary + 1
    return PityState(
        since_epic=since_epic,
        since_legendary=since_legendary,
        lifetime_pulls=state.lifetime_pulls + 1,
        updated_at=stamp,
    )


def meets_floor(results: Sequence[PullResult], floor: str = GUARANTEE_FLOOR) -> bool:
    threshold = rarity_rank(floor)
    return any(rarity_rank(result.rarity) >= threshold for result in results)


def enforce_floor(
    results: Sequence[PullResult],
    pool: CompiledPool,
    record: EconomyRecord,
    banner: Banner,
    rng: RandomSource,
) -> Tuple[List[PullResult], int]:
    """Guarantee a rare-or-better result in a 10-pull batch.

    ``record`` is the in-transaction working copy whose owned set already
    reflects every slot of the batch. Only the last slot is ever replaced;
    the returned integer is the change to apply to the batch's refund total.
    Pity counters are left as they were after the original tenth pull.
    """
    corrected = list(results)
    if len(corrected) != GUARANTEE_BATCH_SIZE or meets_floor(corrected):
        return corrected, 0

    old = corrected[-1]
    item_id = select_item(pool, GUARANTEE_FLOOR, rng)
    is_new = record.grant(item_id)
    refund = 0 if is_new else banner.refund_for(GUARANTEE_FLOOR)

    delta = refund - (old.refund if not old.is_new else 0)
    corrected[-1] = PullResult(
        item_id=item_id,
        rarity=GUARANTEE_FLOOR,
        is_new=is_new,
        refund=refund,
        pitied=False,
        guaranteed=True,
    )
    logger.debug(
        "10-pull floor applied on %s: replaced %s (%s) with %s",
        banner.banner_id,
        old.item_id,
        old.rarity,
        item_id,
    )
    return corrected, delta


__all__ = ["GUARANTEE_BATCH_SIZE", "GUARANTEE_FLOOR", "enforce_floor", "meets_floor", "update_pity"]
