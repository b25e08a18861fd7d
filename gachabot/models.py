"""Dataclasses and shared type definitions for the gacha economy."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Tuple

from gachabot.errors import InternalError

RARITY_ORDER: Tuple[str, ...] = ("common", "uncommon", "rare", "epic", "legendary")

COINS = "coins"
DIAMONDS = "diamonds"
TICKETS = "tickets"
CURRENCIES: Tuple[str, ...] = (COINS, DIAMONDS, TICKETS)

EQUIP_SLOTS: Tuple[str, ...] = ("avatarId", "backgroundId", "iconId")


def rarity_rank(rarity: str) -> int:
    """Position of ``rarity`` in :data:`RARITY_ORDER`, or -1 when unknown."""
    try:
        return RARITY_ORDER.index(rarity)
    except ValueError:
        return -1


def _coerce_int(value: object, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class Caller:
    uid: str
    is_admin: bool = False


@dataclass(frozen=True)
class PityRules:
    epic_every: int = 20
    legendary_every: int = 40


@dataclass(frozen=True)
class Banner:
    banner_id: str
    active: bool
    rarity_rates: Mapping[str, float]
    pity_rules: PityRules
    duplicate_refunds: Mapping[str, int]
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    name: str = ""
    description: str = ""

    def availability_error(self, now: datetime) -> Optional[str]:
        """Return a human-readable reason the banner cannot be drawn, if any."""
        if not self.active:
            return "Banner is not active."
        if self.start_at is not None and now < self.start_at:
            return "Banner has not started yet."
        if self.end_at is not None and now > self.end_at:
            return "Banner has ended."
        return None

    def refund_for(self, rarity: str) -> int:
        return max(0, int(self.duplicate_refunds.get(rarity, 0)))


@dataclass(frozen=True)
class RarityPool:
    """Cumulative-weight table for a single rarity."""

    items: Tuple[Tuple[str, int], ...]
    total_weight: int


CompiledPool = Mapping[str, RarityPool]


@dataclass(frozen=True)
class Cosmetic:
    item_id: str
    cosmetic_type: str
    name: str
    rarity: str
    deprecated: bool = False
    shop_enabled: bool = False
    gacha_enabled: bool = False
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    shop_costs: Mapping[str, int] = field(default_factory=dict)

    def cost_in(self, currency: str) -> int:
        return int(self.shop_costs.get(currency, 0))


@dataclass
class PityState:
    since_epic: int = 0
    since_legendary: int = 0
    lifetime_pulls: int = 0
    updated_at: Optional[str] = None

    @classmethod
    def from_dict(cls, payload: object) -> "PityState":
        if not isinstance(payload, Mapping):
            return cls()
        return cls(
            since_epic=max(0, _coerce_int(payload.get("sinceEpic"))),
            since_legendary=max(0, _coerce_int(payload.get("sinceLegendary"))),
            lifetime_pulls=max(0, _coerce_int(payload.get("lifetimePulls"))),
            updated_at=payload.get("updatedAt") if isinstance(payload.get("updatedAt"), str) else None,
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "sinceEpic": self.since_epic,
            "sinceLegendary": self.since_legendary,
            "lifetimePulls": self.lifetime_pulls,
            "updatedAt": self.updated_at,
        }


@dataclass
class Currencies:
    coins: int = 0
    diamonds: int = 0
    tickets: int = 0

    @classmethod
    def from_dict(cls, payload: object) -> "Currencies":
        if not isinstance(payload, Mapping):
            return cls()
        return cls(
            coins=_coerce_int(payload.get(COINS)),
            diamonds=_coerce_int(payload.get(DIAMONDS)),
            tickets=_coerce_int(payload.get(TICKETS)),
        )

    def get(self, currency: str) -> int:
        if currency not in CURRENCIES:
            raise KeyError(currency)
        return getattr(self, currency)

    def adjusted(self, currency: str, delta: int) -> "Currencies":
        """Return a copy with ``delta`` applied to ``currency``."""
        values = self.to_dict()
        values[currency] = self.get(currency) + delta
        return Currencies(**values)

    def to_dict(self) -> Dict[str, int]:
        return {COINS: self.coins, DIAMONDS: self.diamonds, TICKETS: self.tickets}


@dataclass
class EconomyRecord:
    """Aggregate holding every piece of per-user economy state.

    Transactions replace the whole aggregate, so the cross-field invariants
    (equipped items are owned, balances are non-negative) are checked here in
    one place before every write.
    """

    currencies: Currencies = field(default_factory=Currencies)
    owned: List[str] = field(default_factory=list)
    equipped: Dict[str, str] = field(default_factory=dict)
    gacha_state: Dict[str, PityState] = field(default_factory=dict)
    updated_at: Optional[str] = None

    @classmethod
    def from_document(cls, payload: object) -> "EconomyRecord":
        if not isinstance(payload, Mapping):
            return cls()
        owned_raw = payload.get("ownedCosmetics")
        owned: List[str] = []
        if isinstance(owned_raw, list):
            for item in owned_raw:
                item_id = str(item)
                if item_id not in owned:
                    owned.append(item_id)
        equipped_raw = payload.get("equippedCosmetics")
        equipped: Dict[str, str] = {}
        if isinstance(equipped_raw, Mapping):
            for slot in EQUIP_SLOTS:
                value = equipped_raw.get(slot)
                if isinstance(value, str) and value:
                    equipped[slot] = value
        state_raw = payload.get("gachaState")
        gacha_state: Dict[str, PityState] = {}
        if isinstance(state_raw, Mapping):
            for banner_id, pity in state_raw.items():
                gacha_state[str(banner_id)] = PityState.from_dict(pity)
        return cls(
            currencies=Currencies.from_dict(payload.get("currencies")),
            owned=owned,
            equipped=equipped,
            gacha_state=gacha_state,
            updated_at=payload.get("updatedAt") if isinstance(payload.get("updatedAt"), str) else None,
        )

    def to_document(self) -> Dict[str, object]:
        return {
            "currencies": self.currencies.to_dict(),
            "ownedCosmetics": list(self.owned),
            "equippedCosmetics": dict(self.equipped),
            "gachaState": {banner_id: pity.to_dict() for banner_id, pity in self.gacha_state.items()},
            "updatedAt": self.updated_at,
        }

    def owns(self, item_id: str) -> bool:
        return item_id in self.owned

    def grant(self, item_id: str) -> bool:
        """Add ``item_id`` to the owned set. Returns ``False`` if already owned."""
        if item_id in self.owned:
            return False
        self.owned.append(item_id)
        return True

    def pity_for(self, banner_id: str) -> PityState:
        return self.gacha_state.get(banner_id) or PityState()

    def check_invariants(self) -> None:
        for currency, amount in self.currencies.to_dict().items():
            if amount < 0:
                raise InternalError(f"Balance for {currency} would become negative ({amount}).")
        for slot, item_id in self.equipped.items():
            if item_id and item_id not in self.owned:
                raise InternalError(f"Equipped {slot} {item_id!r} is not owned.")


@dataclass
class PullResult:
    item_id: str
    rarity: str
    is_new: bool
    refund: int
    pitied: bool
    guaranteed: bool = False

    def to_response(self) -> Dict[str, object]:
        return {
            "itemId": self.item_id,
            "rarity": self.rarity,
            "isNew": self.is_new,
            "refundAmount": self.refund,
            "pitied": self.pitied,
        }

    def to_trace(self, index: int) -> Dict[str, object]:
        return {
            "i": index,
            "itemId": self.item_id,
            "rarity": self.rarity,
            "pitied": self.pitied,
            "isNew": self.is_new,
            "refundCoins": self.refund,
            "guaranteed": self.guaranteed,
        }


@dataclass
class DrawOutcome:
    results: List[PullResult]
    balances: Currencies
    pity: PityState

    @property
    def total_refund(self) -> int:
        return sum(result.refund for result in self.results)


@dataclass
class PurchaseOutcome:
    item_id: str
    balances: Currencies


@dataclass
class ExchangeOutcome:
    tickets_granted: int
    balances: Currencies


__all__ = [
    "Banner",
    "COINS",
    "CURRENCIES",
    "Caller",
    "CompiledPool",
    "Cosmetic",
    "Currencies",
    "DIAMONDS",
    "DrawOutcome",
    "EQUIP_SLOTS",
    "EconomyRecord",
    "ExchangeOutcome",
    "PityRules",
    "PityState",
    "PullResult",
    "PurchaseOutcome",
    "RARITY_ORDER",
    "RarityPool",
    "TICKETS",
    "rarity_rank",
]
