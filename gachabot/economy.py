"""Transactional orchestration of draws, purchases, equips, and exchanges."""

from __future__ import annotations

import asyncio
import logging
import math
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Tuple

from gachabot.catalog import CatalogLoader, require_id
from gachabot.errors import FailedPrecondition, InvalidArgument, NotFound, PermissionDenied, Unauthenticated
from gachabot.models import (
    COINS,
    CURRENCIES,
    EQUIP_SLOTS,
    TICKETS,
    Banner,
    Caller,
    CompiledPool,
    Cosmetic,
    Currencies,
    DrawOutcome,
    EconomyRecord,
    ExchangeOutcome,
    PullResult,
    PurchaseOutcome,
)
from gachabot.pity import GUARANTEE_BATCH_SIZE, enforce_floor, update_pity
from gachabot.rng import RandomSource, SecureRandom
from gachabot.selection import select_item, select_rarity
from gachabot.store import DocumentStore, Transaction
from gachabot.utils import bool_from_env, int_from_env, parse_id_list, utc_now

logger = logging.getLogger("gachabot.economy")
_roll_logger = logging.getLogger("gachabot.economy.rolls")

USERS = "users"
DRAW_LOG = "gacha_draws"
PURCHASE_LOG = "purchases"

DRAW_COUNTS: Tuple[int, ...] = (1, GUARANTEE_BATCH_SIZE)
DRAW_CURRENCIES: Tuple[str, ...] = (TICKETS, COINS)

_SLOT_LABELS: Mapping[str, str] = {
    "avatarId": "avatar",
    "backgroundId": "background",
    "iconId": "icon",
}


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


def _as_number(value: object, *, allow_text: bool = False) -> float:
    """Coerce a request number to a float; anything unusable becomes NaN."""
    if isinstance(value, bool):
        return math.nan
    if not isinstance(value, (int, float)) and not (allow_text and isinstance(value, str)):
        return math.nan
    try:
        return float(value)
    except (OverflowError, ValueError):
        return math.nan


def user_path(uid: str) -> str:
    return f"{USERS}/{uid}"


def draw_log_collection(uid: str) -> str:
    return f"{USERS}/{uid}/{DRAW_LOG}"


def purchase_log_collection(uid: str) -> str:
    return f"{USERS}/{uid}/{PURCHASE_LOG}"


@dataclass(frozen=True)
class EconomySettings:
    draw_cost_tickets: int = 1
    draw_cost_coins: int = 500
    ticket_exchange_rate: int = 250
    starter_avatar: str = "avatar_1_plain"
    starter_background: str = "bg_1"
    auto_create_users: bool = True
    admin_uids: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def from_env(cls) -> "EconomySettings":
        return cls(
            draw_cost_tickets=int_from_env("GACHABOT_DRAW_COST_TICKETS", 1),
            draw_cost_coins=int_from_env("GACHABOT_DRAW_COST_COINS", 500),
            ticket_exchange_rate=int_from_env("GACHABOT_TICKET_EXCHANGE_RATE", 250),
            starter_avatar=os.getenv("GACHABOT_STARTER_AVATAR", "avatar_1_plain").strip() or "avatar_1_plain",
            starter_background=os.getenv("GACHABOT_STARTER_BACKGROUND", "bg_1").strip() or "bg_1",
            auto_create_users=bool_from_env("GACHABOT_AUTO_CREATE_USERS", True),
            admin_uids=frozenset(parse_id_list(os.getenv("GACHABOT_ADMIN_UIDS", ""))),
        )

    def unit_cost(self, pay_with: str) -> int:
        return self.draw_cost_tickets if pay_with == TICKETS else self.draw_cost_coins


class EconomyEngine:
    """Runs every economy mutation as one optimistic transaction on the user record.

    Transaction bodies only read through the transaction they are handed and
    only write through it, so the store may re-run them after a conflict.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        settings: Optional[EconomySettings] = None,
        rng: Optional[RandomSource] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._catalog = CatalogLoader(store)
        self.settings = settings or EconomySettings()
        self._rng = rng or SecureRandom()
        self._clock = clock or utc_now

    @property
    def catalog(self) -> CatalogLoader:
        return self._catalog

    # Shared helpers ---------------------------------------------------

    @staticmethod
    def _require_caller(caller: Optional[Caller]) -> str:
        if caller is None or not caller.uid:
            raise Unauthenticated("User must be signed in.")
        if "/" in caller.uid:
            raise InvalidArgument("Caller id is malformed.")
        return caller.uid

    def _apply_defaults(self, record: EconomyRecord) -> None:
        starter_avatar = self.settings.starter_avatar
        starter_background = self.settings.starter_background
        record.grant(starter_avatar)
        record.grant(starter_background)
        if not record.equipped.get("avatarId"):
            record.equipped["avatarId"] = starter_avatar
        if not record.equipped.get("backgroundId"):
            record.equipped["backgroundId"] = starter_background

    async def _load_record(self, tx: Transaction, uid: str) -> Tuple[Dict[str, Any], EconomyRecord]:
        snapshot = await tx.get(user_path(uid))
        if not snapshot.exists:
            raise NotFound("User not found.")
        user_data = dict(snapshot.data or {})
        return user_data, EconomyRecord.from_document(user_data.get("economy"))

    @staticmethod
    def _write_record(
        tx: Transaction,
        uid: str,
        user_data: Dict[str, Any],
        record: EconomyRecord,
        now: datetime,
    ) -> None:
        record.updated_at = now.isoformat()
        record.check_invariants()
        user_data["economy"] = record.to_document()
        tx.set(user_path(uid), user_data)

    async def ensure_economy(self, uid: str) -> EconomyRecord:
        """Create or repair the economy record with defaults. Safe to call repeatedly."""

        async def body(tx: Transaction) -> EconomyRecord:
            snapshot = await tx.get(user_path(uid))
            if not snapshot.exists and not self.settings.auto_create_users:
                raise NotFound("User profile not found.")
            user_data = dict(snapshot.data or {})
            raw = user_data.get("economy")
            record = EconomyRecord.from_document(raw)
            baseline = record.to_document() if isinstance(raw, Mapping) else None
            self._apply_defaults(record)
            if record.to_document() != baseline:
                logger.debug("Initialising economy defaults for %s", uid)
                self._write_record(tx, uid, user_data, record, self._clock())
            return record

        return await self._store.run_transaction(body)

    async def get_economy(self, caller: Optional[Caller]) -> EconomyRecord:
        uid = self._require_caller(caller)
        return await self.ensure_economy(uid)

    # Draws ------------------------------------------------------------

    def _roll_batch(
        self,
        record: EconomyRecord,
        banner: Banner,
        pool: CompiledPool,
        count: int,
        now: datetime,
    ) -> Tuple[List[PullResult], List[Dict[str, object]], int]:
        pity = record.pity_for(banner.banner_id)
        results: List[PullResult] = []
        trace: List[Dict[str, object]] = []
        refund_total = 0

        for index in range(count):
            rarity, pitied = select_rarity(banner.rarity_rates, banner.pity_rules, pity, self._rng)
            item_id = select_item(pool, rarity, self._rng)
            is_new = record.grant(item_id)
            refund = 0 if is_new else banner.refund_for(rarity)
            refund_total += refund
            pity = update_pity(pity, rarity, now)
            result = PullResult(item_id=item_id, rarity=rarity, is_new=is_new, refund=refund, pitied=pitied)
            results.append(result)
            trace.append(result.to_trace(index))
            _roll_logger.debug(
                "[Gacha] %s pull %s: %s (%s) pitied=%s new=%s refund=%s",
                banner.banner_id,
                index,
                item_id,
                rarity,
                pitied,
                is_new,
                refund,
            )

        if count == GUARANTEE_BATCH_SIZE:
            results, delta = enforce_floor(results, pool, record, banner, self._rng)
            refund_total += delta
            if results[-1].guaranteed:
                trace.append(results[-1].to_trace(count - 1))

        record.gacha_state[banner.banner_id] = pity
        return results, trace, refund_total

    async def draw(
        self,
        caller: Optional[Caller],
        banner_id: object,
        count: object,
        pay_with: object,
    ) -> DrawOutcome:
        uid = self._require_caller(caller)
        banner_id = require_id(banner_id, "bannerId")
        if not isinstance(count, int) or isinstance(count, bool) or count not in DRAW_COUNTS:
            raise InvalidArgument("count must be 1 or 10.")
        if pay_with not in DRAW_CURRENCIES:
            raise InvalidArgument('payWith must be "tickets" or "coins".')

        await self.ensure_economy(uid)
        banner, pool = await asyncio.gather(
            self._catalog.load_active_banner(banner_id, self._clock()),
            self._catalog.load_compiled_pool(banner_id),
        )
        total_cost = self.settings.unit_cost(pay_with) * count

        async def body(tx: Transaction) -> DrawOutcome:
            user_data, record = await self._load_record(tx, uid)
            now = self._clock()
            reason = banner.availability_error(now)
            if reason:
                raise FailedPrecondition(reason)

            balance = record.currencies.get(pay_with)
            if balance < total_cost:
                raise FailedPrecondition(f"Not enough {pay_with}. Need {total_cost}, have {balance}.")

            currencies_before = record.currencies
            pity_before = record.pity_for(banner_id)
            results, trace, refund_total = self._roll_batch(record, banner, pool, count, now)

            record.currencies = currencies_before.adjusted(pay_with, -total_cost).adjusted(COINS, refund_total)
            pity_after = record.pity_for(banner_id)
            self._write_record(tx, uid, user_data, record, now)
            tx.create(
                draw_log_collection(uid),
                {
                    "bannerId": banner_id,
                    "count": count,
                    "payWith": pay_with,
                    "totalCost": total_cost,
                    "coinRefundTotal": refund_total,
                    "results": trace,
                    "currenciesBefore": currencies_before.to_dict(),
                    "currenciesAfter": record.currencies.to_dict(),
                    "pityBefore": pity_before.to_dict(),
                    "pityAfter": pity_after.to_dict(),
                    "createdAt": now.isoformat(),
                },
            )
            return DrawOutcome(results=results, balances=record.currencies, pity=pity_after)

        outcome = await self._store.run_transaction(body)
        logger.info(
            "User %s drew %sx on %s with %s (cost %s, refund %s)",
            uid,
            count,
            banner_id,
            pay_with,
            total_cost,
            outcome.total_refund,
        )
        return outcome

    # Shop -------------------------------------------------------------

    @staticmethod
    def _shop_availability_error(cosmetic: Cosmetic, now: datetime) -> Optional[str]:
        if cosmetic.deprecated:
            return "Cosmetic is no longer available."
        if not cosmetic.shop_enabled:
            return "This cosmetic is not available in the shop."
        if cosmetic.start_at is not None and now < cosmetic.start_at:
            return "Cosmetic is not yet available."
        if cosmetic.end_at is not None and now > cosmetic.end_at:
            return "Cosmetic is no longer available."
        return None

    async def purchase(self, caller: Optional[Caller], item_id: object, currency: object) -> PurchaseOutcome:
        uid = self._require_caller(caller)
        item_id = require_id(item_id, "itemId")
        if currency not in CURRENCIES:
            raise InvalidArgument("currency must be coins, diamonds, or tickets.")

        await self.ensure_economy(uid)
        cosmetic = await self._catalog.load_cosmetic(item_id)
        reason = self._shop_availability_error(cosmetic, self._clock())
        if reason:
            raise FailedPrecondition(reason)
        cost = cosmetic.cost_in(currency)
        if cost <= 0:
            raise FailedPrecondition(f"This cosmetic cannot be purchased with {currency}.")

        async def body(tx: Transaction) -> PurchaseOutcome:
            user_data, record = await self._load_record(tx, uid)
            now = self._clock()
            if record.owns(item_id):
                raise FailedPrecondition("You already own this cosmetic.")
            reason = self._shop_availability_error(cosmetic, now)
            if reason:
                raise FailedPrecondition(reason)
            balance = record.currencies.get(currency)
            if balance < cost:
                raise FailedPrecondition(f"Not enough {currency}. Need {cost}, have {balance}.")

            currencies_before = record.currencies
            record.currencies = currencies_before.adjusted(currency, -cost)
            record.grant(item_id)
            self._write_record(tx, uid, user_data, record, now)
            tx.create(
                purchase_log_collection(uid),
                {
                    "itemId": item_id,
                    "currency": currency,
                    "cost": cost,
                    "currenciesBefore": currencies_before.to_dict(),
                    "currenciesAfter": record.currencies.to_dict(),
                    "createdAt": now.isoformat(),
                },
            )
            return PurchaseOutcome(item_id=item_id, balances=record.currencies)

        outcome = await self._store.run_transaction(body)
        logger.info("User %s bought %s for %s %s", uid, item_id, cost, currency)
        return outcome

    # Loadout ----------------------------------------------------------

    async def equip(
        self,
        caller: Optional[Caller],
        *,
        avatar_id: Any = UNSET,
        background_id: Any = UNSET,
        icon_id: Any = UNSET,
    ) -> Dict[str, str]:
        uid = self._require_caller(caller)
        provided: Dict[str, Optional[str]] = {}
        for slot, value in zip(EQUIP_SLOTS, (avatar_id, background_id, icon_id)):
            if value is UNSET:
                continue
            if value is not None and not isinstance(value, str):
                raise InvalidArgument(f"{slot} must be a string.")
            provided[slot] = value.strip() if isinstance(value, str) else None
        if not provided:
            raise InvalidArgument("Provide at least one of avatarId, backgroundId, or iconId.")

        await self.ensure_economy(uid)

        async def body(tx: Transaction) -> Dict[str, str]:
            user_data, record = await self._load_record(tx, uid)
            for slot, value in provided.items():
                if value and not record.owns(value):
                    raise FailedPrecondition(f'You do not own {_SLOT_LABELS[slot]} "{value}".')
            for slot, value in provided.items():
                if value:
                    record.equipped[slot] = value
                else:
                    record.equipped.pop(slot, None)
            self._write_record(tx, uid, user_data, record, self._clock())
            return dict(record.equipped)

        equipped = await self._store.run_transaction(body)
        logger.info("User %s equipped %s", uid, equipped)
        return equipped

    # Currency ---------------------------------------------------------

    async def exchange_for_tickets(self, caller: Optional[Caller], count: object) -> ExchangeOutcome:
        uid = self._require_caller(caller)
        requested = _as_number(count, allow_text=True)
        if not math.isfinite(requested) or requested <= 0:
            raise InvalidArgument("count must be a positive number.")
        ticket_count = math.floor(requested)
        if ticket_count <= 0:
            raise InvalidArgument("count must be a positive integer.")

        await self.ensure_economy(uid)
        total_cost = ticket_count * self.settings.ticket_exchange_rate

        async def body(tx: Transaction) -> ExchangeOutcome:
            user_data, record = await self._load_record(tx, uid)
            now = self._clock()
            coins = record.currencies.coins
            if coins < total_cost:
                raise FailedPrecondition(f"Not enough coins. Need {total_cost}, have {coins}.")

            currencies_before = record.currencies
            record.currencies = currencies_before.adjusted(COINS, -total_cost).adjusted(TICKETS, ticket_count)
            self._write_record(tx, uid, user_data, record, now)
            tx.create(
                purchase_log_collection(uid),
                {
                    "type": "tickets",
                    "ticketCount": ticket_count,
                    "currency": COINS,
                    "cost": total_cost,
                    "currenciesBefore": currencies_before.to_dict(),
                    "currenciesAfter": record.currencies.to_dict(),
                    "createdAt": now.isoformat(),
                },
            )
            return ExchangeOutcome(tickets_granted=ticket_count, balances=record.currencies)

        outcome = await self._store.run_transaction(body)
        logger.info("User %s exchanged %s coins for %s tickets", uid, total_cost, ticket_count)
        return outcome

    async def grant_currency(
        self,
        caller: Optional[Caller],
        target_uid: object,
        currency: object,
        amount: object,
    ) -> Currencies:
        """Credit (or debit, never below zero) a user's balance. Admins only."""
        uid = self._require_caller(caller)
        if not (caller.is_admin or uid in self.settings.admin_uids):
            raise PermissionDenied("Only admins can grant currency.")
        target = require_id(target_uid, "userId")
        if currency not in CURRENCIES:
            raise InvalidArgument("currency must be coins, diamonds, or tickets.")
        value = _as_number(amount)
        if not math.isfinite(value):
            raise InvalidArgument("amount must be a non-zero number.")
        delta = math.floor(value) if value > 0 else math.ceil(value)
        if delta == 0:
            raise InvalidArgument("amount must be a non-zero number.")

        await self.ensure_economy(target)

        async def body(tx: Transaction) -> Currencies:
            user_data, record = await self._load_record(tx, target)
            now = self._clock()
            balance = record.currencies.get(currency)
            if balance + delta < 0:
                raise FailedPrecondition(f"Cannot remove {-delta} {currency}; balance is {balance}.")
            currencies_before = record.currencies
            record.currencies = currencies_before.adjusted(currency, delta)
            self._write_record(tx, target, user_data, record, now)
            tx.create(
                purchase_log_collection(target),
                {
                    "type": "grant",
                    "currency": currency,
                    "amount": delta,
                    "grantedBy": uid,
                    "currenciesBefore": currencies_before.to_dict(),
                    "currenciesAfter": record.currencies.to_dict(),
                    "createdAt": now.isoformat(),
                },
            )
            return record.currencies

        balances = await self._store.run_transaction(body)
        logger.info("Admin %s granted %s %s to %s", uid, delta, currency, target)
        return balances


__all__ = [
    "DRAW_COUNTS",
    "DRAW_CURRENCIES",
    "EconomyEngine",
    "EconomySettings",
    "UNSET",
    "draw_log_collection",
    "purchase_log_collection",
    "user_path",
]
