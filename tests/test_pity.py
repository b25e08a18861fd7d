import unittest
from typing import List

from gachabot.models import Banner, EconomyRecord, PityRules, PityState, PullResult, RarityPool
from gachabot.pity import enforce_floor, meets_floor, update_pity

from support import FIXED_NOW, STANDARD_RATES, ScriptedRandom

REFUNDS = {"common": 20, "uncommon": 40, "rare": 100, "epic": 250, "legendary": 600}


def _commons(last_is_new: bool = False) -> List[PullResult]:
    results = [PullResult(item_id="c1", rarity="common", is_new=False, refund=20, pitied=False) for _ in range(9)]
    if last_is_new:
        results.append(PullResult(item_id="c2", rarity="common", is_new=True, refund=0, pitied=False))
    else:
        results.append(PullResult(item_id="c1", rarity="common", is_new=False, refund=20, pitied=False))
    return results


class UpdatePityTests(unittest.TestCase):
    def setUp(self) -> None:
        self.state = PityState(since_epic=3, since_legendary=5, lifetime_pulls=10)

    def test_low_rarity_increments_both_counters(self) -> None:
        for rarity in ("common", "uncommon", "rare"):
            with self.subTest(rarity=rarity):
                updated = update_pity(self.state, rarity, FIXED_NOW)
                self.assertEqual((updated.since_epic, updated.since_legendary, updated.lifetime_pulls), (4, 6, 11))

    def test_epic_resets_epic_counter_only(self) -> None:
        updated = update_pity(self.state, "epic", FIXED_NOW)
        self.assertEqual((updated.since_epic, updated.since_legendary, updated.lifetime_pulls), (0, 6, 11))

    def test_legendary_resets_both_counters(self) -> None:
        updated = update_pity(self.state, "legendary", FIXED_NOW)
        self.assertEqual((updated.since_epic, updated.since_legendary, updated.lifetime_pulls), (0, 0, 11))
        self.assertEqual(updated.updated_at, FIXED_NOW.isoformat())

    def test_input_state_is_not_mutated(self) -> None:
        update_pity(self.state, "legendary", FIXED_NOW)
        self.assertEqual(self.state.since_legendary, 5)


class EnforceFloorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.banner = Banner(
            banner_id="lab",
            active=True,
            rarity_rates=STANDARD_RATES,
            pity_rules=PityRules(),
            duplicate_refunds=REFUNDS,
        )
        self.pool = {
            "common": RarityPool(items=(("c1", 1), ("c2", 2)), total_weight=2),
            "rare": RarityPool(items=(("r1", 1),), total_weight=1),
        }

    def test_batch_with_rare_is_untouched(self) -> None:
        results = _commons()
        results[4] = PullResult(item_id="r1", rarity="rare", is_new=True, refund=0, pitied=False)
        rng = ScriptedRandom()
        corrected, delta = enforce_floor(results, self.pool, EconomyRecord(owned=["c1", "r1"]), self.banner, rng)
        self.assertEqual(corrected, results)
        self.assertEqual(delta, 0)
        self.assertEqual(rng.calls, 0)

    def test_single_pull_is_never_corrected(self) -> None:
        results = _commons()[:1]
        corrected, delta = enforce_floor(results, self.pool, EconomyRecord(owned=["c1"]), self.banner, ScriptedRandom())
        self.assertEqual(corrected, results)
        self.assertEqual(delta, 0)

    def test_duplicate_last_slot_refund_is_reversed(self) -> None:
        record = EconomyRecord(owned=["c1"])
        corrected, delta = enforce_floor(_commons(), self.pool, record, self.banner, ScriptedRandom([0.5]))
        last = corrected[-1]
        self.assertEqual((last.item_id, last.rarity), ("r1", "rare"))
        self.assertTrue(last.is_new)
        self.assertTrue(last.guaranteed)
        self.assertFalse(last.pitied)
        self.assertEqual(last.refund, 0)
        self.assertEqual(delta, -20)
        self.assertIn("r1", record.owned)
        self.assertTrue(meets_floor(corrected))
        self.assertEqual(corrected[:9], _commons()[:9])

    def test_owned_replacement_pays_rare_refund(self) -> None:
        record = EconomyRecord(owned=["c1", "c2", "r1"])
        corrected, delta = enforce_floor(_commons(last_is_new=True), self.pool, record, self.banner, ScriptedRandom([0.5]))
        self.assertFalse(corrected[-1].is_new)
        self.assertEqual(corrected[-1].refund, 100)
        self.assertEqual(delta, 100)

    def test_empty_rare_tier_still_labels_slot_rare(self) -> None:
        pool = {"common": self.pool["common"]}
        record = EconomyRecord(owned=["c1"])
        corrected, _ = enforce_floor(_commons(), pool, record, self.banner, ScriptedRandom([0.9]))
        self.assertEqual(corrected[-1].item_id, "c2")
        self.assertEqual(corrected[-1].rarity, "rare")
        self.assertTrue(corrected[-1].guaranteed)


if __name__ == "__main__":
    unittest.main()
