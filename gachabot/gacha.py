"""Chat commands that front the gacha economy engine."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

import discord
from discord.ext import commands

from gachabot.economy import UNSET, EconomyEngine
from gachabot.errors import GachaError, InternalError
from gachabot.models import (
    COINS,
    RARITY_ORDER,
    TICKETS,
    Caller,
    Currencies,
    PityState,
    PullResult,
    rarity_rank,
)
from gachabot.utils import int_from_env, is_admin

logger = logging.getLogger("gachabot.gacha")

RARITY_EMBED_COLORS: Dict[str, int] = {
    "common": 0x95A5A6,
    "uncommon": 0x1ABC9C,
    "rare": 0xF1C40F,
    "epic": 0x9B59B6,
    "legendary": 0xE67E22,
}
DEFAULT_EMBED_COLOR = 0x5865F2

RARITY_STARS: Dict[str, str] = {
    "common": "★",
    "uncommon": "★★",
    "rare": "★★★",
    "epic": "★★★★",
    "legendary": "★★★★★",
}

SLOT_ALIASES: Dict[str, str] = {
    "avatar": "avatar_id",
    "background": "background_id",
    "bg": "background_id",
    "icon": "icon_id",
}

_CLEAR_WORDS = {"none", "off", "clear", "-"}


def caller_for(member: discord.abc.User) -> Caller:
    return Caller(uid=f"discord:{member.id}", is_admin=is_admin(member))


def format_balances(balances: Currencies) -> str:
    return f"🪙 {balances.coins} coins · 💎 {balances.diamonds} diamonds · 🎟️ {balances.tickets} tickets"


def format_pity(pity: PityState) -> str:
    return (
        f"{pity.since_epic} since epic · {pity.since_legendary} since legendary · "
        f"{pity.lifetime_pulls} lifetime pulls"
    )


def format_pull(result: PullResult) -> str:
    stars = RARITY_STARS.get(result.rarity, result.rarity)
    tags: List[str] = []
    if result.is_new:
        tags.append("NEW")
    elif result.refund:
        tags.append(f"duplicate +{result.refund} coins")
    else:
        tags.append("duplicate")
    if result.pitied:
        tags.append("pity")
    if result.guaranteed:
        tags.append("guaranteed")
    return f"{stars} **{result.item_id}** ({result.rarity}) · {', '.join(tags)}"


def best_rarity(results: Sequence[PullResult]) -> Optional[str]:
    if not results:
        return None
    return max(results, key=lambda result: rarity_rank(result.rarity)).rarity


class GachaManager:
    """Registers gacha economy commands on the bot and relays them to the engine."""

    def __init__(self, *, bot: commands.Bot, engine: EconomyEngine) -> None:
        self.bot = bot
        self.engine = engine
        self.channel_id = int_from_env("GACHABOT_CHANNEL_ID", 0)

    def _validate_gacha_channel(self, ctx: commands.Context) -> bool:
        if not self.channel_id:
            return True
        return ctx.channel is not None and ctx.channel.id == self.channel_id

    def _embed_color_for_rarity(self, rarity: Optional[str]) -> int:
        if not rarity:
            return DEFAULT_EMBED_COLOR
        return RARITY_EMBED_COLORS.get(rarity.lower(), DEFAULT_EMBED_COLOR)

    async def _reply_error(self, ctx: commands.Context, exc: GachaError) -> None:
        if isinstance(exc, InternalError):
            logger.error("Command %s failed for %s: %s", ctx.command, ctx.author.id, exc.message)
        await ctx.reply(exc.message, mention_author=False)

    async def _reject_channel(self, ctx: commands.Context) -> bool:
        if self._validate_gacha_channel(ctx):
            return False
        await ctx.reply(f"Gacha commands must be used in <#{self.channel_id}>.", mention_author=False)
        return True

    def _register_command(self, command: commands.Command) -> None:
        existing = self.bot.get_command(command.name)
        if existing:
            self.bot.remove_command(existing.name)
        self.bot.add_command(command)

    def register_commands(self) -> None:
        @commands.command(name="draw")
        async def gacha_draw(
            ctx: commands.Context,
            banner_id: str = "",
            count: int = 1,
            pay_with: str = TICKETS,
        ) -> None:
            await self.command_draw(ctx, banner_id, count, pay_with)

        @commands.command(name="buy")
        async def gacha_buy(ctx: commands.Context, item_id: str = "", currency: str = COINS) -> None:
            await self.command_buy(ctx, item_id, currency)

        @commands.command(name="equip")
        async def gacha_equip(ctx: commands.Context, slot: str = "", item_id: str = "") -> None:
            await self.command_equip(ctx, slot, item_id)

        @commands.command(name="exchange")
        async def gacha_exchange(ctx: commands.Context, count: Optional[int] = None) -> None:
            await self.command_exchange(ctx, count)

        @commands.command(name="wallet")
        async def gacha_wallet(ctx: commands.Context) -> None:
            await self.command_wallet(ctx)

        @commands.command(name="pity")
        async def gacha_pity(ctx: commands.Context, banner_id: str = "") -> None:
            await self.command_pity(ctx, banner_id)

        @commands.command(name="banner")
        async def gacha_banner(ctx: commands.Context, banner_id: str = "") -> None:
            await self.command_banner(ctx, banner_id)

        @commands.command(name="grant")
        async def gacha_grant(
            ctx: commands.Context,
            member: Optional[discord.Member] = None,
            currency: str = COINS,
            amount: Optional[int] = None,
        ) -> None:
            await self.command_grant(ctx, member, currency, amount)

        for command in (
            gacha_draw,
            gacha_buy,
            gacha_equip,
            gacha_exchange,
            gacha_wallet,
            gacha_pity,
            gacha_banner,
            gacha_grant,
        ):
            self._register_command(command)

    async def command_draw(self, ctx: commands.Context, banner_id: str, count: int, pay_with: str) -> None:
        if await self._reject_channel(ctx):
            return
        try:
            outcome = await self.engine.draw(caller_for(ctx.author), banner_id, count, pay_with.lower())
        except GachaError as exc:
            await self._reply_error(ctx, exc)
            return

        embed = discord.Embed(
            title=f"{banner_id} · {count}x draw",
            description="\n".join(format_pull(result) for result in outcome.results),
            color=self._embed_color_for_rarity(best_rarity(outcome.results)),
        )
        embed.add_field(name="Balance", value=format_balances(outcome.balances), inline=False)
        embed.add_field(name="Pity", value=format_pity(outcome.pity), inline=False)
        await ctx.reply(embed=embed, mention_author=False)

    async def command_buy(self, ctx: commands.Context, item_id: str, currency: str) -> None:
        if await self._reject_channel(ctx):
            return
        try:
            outcome = await self.engine.purchase(caller_for(ctx.author), item_id, currency.lower())
        except GachaError as exc:
            await self._reply_error(ctx, exc)
            return
        await ctx.reply(
            f"Purchased **{outcome.item_id}**.\n{format_balances(outcome.balances)}",
            mention_author=False,
        )

    async def command_equip(self, ctx: commands.Context, slot: str, item_id: str) -> None:
        if await self._reject_channel(ctx):
            return
        field_name = SLOT_ALIASES.get(slot.lower())
        if field_name is None:
            await ctx.reply("Usage: `!equip avatar|background|icon <item id|none>`", mention_author=False)
            return
        value: Optional[str] = None if item_id.lower() in _CLEAR_WORDS or not item_id else item_id
        kwargs = {"avatar_id": UNSET, "background_id": UNSET, "icon_id": UNSET}
        kwargs[field_name] = value
        try:
            equipped = await self.engine.equip(caller_for(ctx.author), **kwargs)
        except GachaError as exc:
            await self._reply_error(ctx, exc)
            return
        lines = [f"{slot_name}: {equipped.get(slot_name) or '—'}" for slot_name in ("avatarId", "backgroundId", "iconId")]
        await ctx.reply("Loadout updated.\n" + "\n".join(lines), mention_author=False)

    async def command_exchange(self, ctx: commands.Context, count: Optional[int]) -> None:
        if await self._reject_channel(ctx):
            return
        try:
            outcome = await self.engine.exchange_for_tickets(caller_for(ctx.author), 1 if count is None else count)
        except GachaError as exc:
            await self._reply_error(ctx, exc)
            return
        plural = "s" if outcome.tickets_granted != 1 else ""
        await ctx.reply(
            f"Exchanged for {outcome.tickets_granted} ticket{plural}.\n{format_balances(outcome.balances)}",
            mention_author=False,
        )

    async def command_wallet(self, ctx: commands.Context) -> None:
        try:
            record = await self.engine.get_economy(caller_for(ctx.author))
        except GachaError as exc:
            await self._reply_error(ctx, exc)
            return
        embed = discord.Embed(title=f"{ctx.author.display_name}'s wallet", color=DEFAULT_EMBED_COLOR)
        embed.add_field(name="Balance", value=format_balances(record.currencies), inline=False)
        owned = ", ".join(sorted(record.owned)) or "—"
        if len(owned) > 1024:
            owned = owned[:1020] + " ..."
        embed.add_field(name=f"Owned cosmetics ({len(record.owned)})", value=owned, inline=False)
        equipped = "\n".join(f"{slot}: {item}" for slot, item in sorted(record.equipped.items())) or "—"
        embed.add_field(name="Equipped", value=equipped, inline=False)
        await ctx.reply(embed=embed, mention_author=False)

    async def command_pity(self, ctx: commands.Context, banner_id: str) -> None:
        if not banner_id:
            await ctx.reply("Usage: `!pity <banner id>`", mention_author=False)
            return
        try:
            record = await self.engine.get_economy(caller_for(ctx.author))
            banner = await self.engine.catalog.load_banner(banner_id)
        except GachaError as exc:
            await self._reply_error(ctx, exc)
            return
        pity = record.pity_for(banner_id)
        rules = banner.pity_rules
        await ctx.reply(
            f"**{banner.name}** pity: {format_pity(pity)}\n"
            f"Epic guaranteed within {max(0, rules.epic_every - pity.since_epic)} pulls, "
            f"legendary within {max(0, rules.legendary_every - pity.since_legendary)}.",
            mention_author=False,
        )

    async def command_banner(self, ctx: commands.Context, banner_id: str) -> None:
        try:
            if banner_id:
                banners = [await self.engine.catalog.load_banner(banner_id)]
            else:
                banners = await self.engine.catalog.list_banners()
        except GachaError as exc:
            await self._reply_error(ctx, exc)
            return
        if not banners:
            await ctx.reply("No banners are configured.", mention_author=False)
            return
        embed = discord.Embed(title="Banners", color=DEFAULT_EMBED_COLOR)
        for banner in banners[:25]:
            rates = " · ".join(
                f"{rarity} {banner.rarity_rates.get(rarity, 0.0) * 100:.1f}%" for rarity in reversed(RARITY_ORDER)
            )
            status = "active" if banner.active else "inactive"
            embed.add_field(
                name=f"{banner.name} ({banner.banner_id}, {status})",
                value=(
                    f"{rates}\nEpic every {banner.pity_rules.epic_every}, "
                    f"legendary every {banner.pity_rules.legendary_every}"
                ),
                inline=False,
            )
        await ctx.reply(embed=embed, mention_author=False)

    async def command_grant(
        self,
        ctx: commands.Context,
        member: Optional[discord.Member],
        currency: str,
        amount: Optional[int],
    ) -> None:
        if member is None or amount is None:
            await ctx.reply("Usage: `!grant @member <coins|diamonds|tickets> <amount>`", mention_author=False)
            return
        try:
            balances = await self.engine.grant_currency(
                caller_for(ctx.author),
                caller_for(member).uid,
                currency.lower(),
                amount,
            )
        except GachaError as exc:
            await self._reply_error(ctx, exc)
            return
        await ctx.reply(f"Updated {member.display_name}: {format_balances(balances)}", mention_author=False)


def setup_gacha_mode(bot: commands.Bot, *, engine: EconomyEngine) -> GachaManager:
    """Factory used by bot.py to bootstrap the gacha commands."""
    manager = GachaManager(bot=bot, engine=engine)
    manager.register_commands()
    return manager


__all__ = ["GachaManager", "caller_for", "format_pull", "setup_gacha_mode"]
