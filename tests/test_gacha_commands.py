import os
import unittest
from types import SimpleNamespace
from unittest import mock

import discord
from discord.ext import commands

from gachabot.economy import EconomyEngine
from gachabot.gacha import GachaManager, best_rarity, caller_for, format_pull
from gachabot.models import PullResult

from support import FIXED_NOW, ScriptedRandom, TempStoreMixin, economy_document, seed_banner


class FakeContext:
    def __init__(self, author_id: int = 42, channel_id: int = 1) -> None:
        self.author = SimpleNamespace(id=author_id, display_name="Ada")
        self.channel = SimpleNamespace(id=channel_id)
        self.command = "test"
        self.replies = []

    async def reply(self, content=None, **kwargs) -> None:
        self.replies.append((content, kwargs))


class FormattingTests(unittest.TestCase):
    def test_format_pull_tags(self) -> None:
        fresh = PullResult(item_id="r1", rarity="rare", is_new=True, refund=0, pitied=False, guaranteed=True)
        dupe = PullResult(item_id="c1", rarity="common", is_new=False, refund=20, pitied=True)
        self.assertIn("NEW", format_pull(fresh))
        self.assertIn("guaranteed", format_pull(fresh))
        self.assertIn("duplicate +20 coins", format_pull(dupe))
        self.assertIn("pity", format_pull(dupe))
        self.assertEqual(best_rarity([dupe, fresh]), "rare")
        self.assertIsNone(best_rarity([]))

    def test_caller_for_plain_user(self) -> None:
        caller = caller_for(SimpleNamespace(id=7))
        self.assertEqual(caller.uid, "discord:7")
        self.assertFalse(caller.is_admin)


class GachaCommandTests(TempStoreMixin, unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.store = self.make_store()
        engine = EconomyEngine(self.store, rng=ScriptedRandom(default=0.5), clock=lambda: FIXED_NOW)
        bot = commands.Bot(command_prefix="!", intents=discord.Intents.none())
        with mock.patch.dict(os.environ, {"GACHABOT_CHANNEL_ID": "0"}):
            self.manager = GachaManager(bot=bot, engine=engine)
        self.manager.register_commands()
        await seed_banner(self.store)
        await self.store.set("users/discord:42", economy_document(coins=600, tickets=1))

    async def test_commands_are_registered(self) -> None:
        for name in ("draw", "buy", "equip", "exchange", "wallet", "pity", "banner", "grant"):
            self.assertIsNotNone(self.manager.bot.get_command(name))

    async def test_draw_replies_with_embed(self) -> None:
        ctx = FakeContext()
        await self.manager.command_draw(ctx, "lab", 1, "Tickets")
        _, kwargs = ctx.replies[-1]
        embed = kwargs["embed"]
        self.assertIn("c1", embed.description)
        self.assertEqual(embed.colour.value, 0x95A5A6)

    async def test_exchange_reports_balance(self) -> None:
        ctx = FakeContext()
        await self.manager.command_exchange(ctx, 2)
        content, _ = ctx.replies[-1]
        self.assertTrue(content.startswith("Exchanged for 2 tickets."))
        self.assertIn("100 coins", content)

    async def test_exchange_zero_is_rejected(self) -> None:
        ctx = FakeContext()
        await self.manager.command_exchange(ctx, 0)
        self.assertEqual(ctx.replies[-1][0], "count must be a positive number.")
        currencies = (await self.store.get("users/discord:42")).data["economy"]["currencies"]
        self.assertEqual((currencies["coins"], currencies["tickets"]), (600, 1))

    async def test_exchange_defaults_to_one_ticket(self) -> None:
        ctx = FakeContext()
        await self.manager.command_exchange(ctx, None)
        self.assertTrue(ctx.replies[-1][0].startswith("Exchanged for 1 ticket."))

    async def test_malformed_banner_ids_get_a_reply(self) -> None:
        ctx = FakeContext()
        await self.manager.command_pity(ctx, "a/b")
        self.assertEqual(ctx.replies[-1][0], "bannerId is malformed.")
        await self.manager.command_banner(ctx, "a/b")
        self.assertEqual(ctx.replies[-1][0], "bannerId is malformed.")

    async def test_engine_errors_are_relayed(self) -> None:
        ctx = FakeContext()
        await self.manager.command_buy(ctx, "ghost", "coins")
        self.assertEqual(ctx.replies[-1][0], 'Cosmetic "ghost" not found.')

    async def test_equip_usage_and_clear(self) -> None:
        ctx = FakeContext()
        await self.manager.command_equip(ctx, "hat", "x")
        self.assertIn("Usage", ctx.replies[-1][0])
        await self.manager.command_equip(ctx, "icon", "none")
        self.assertIn("iconId: —", ctx.replies[-1][0])

    async def test_channel_restriction(self) -> None:
        self.manager.channel_id = 99
        ctx = FakeContext(channel_id=1)
        await self.manager.command_exchange(ctx, 1)
        self.assertIn("<#99>", ctx.replies[-1][0])
        self.assertEqual((await self.store.get("users/discord:42")).data["economy"]["currencies"]["coins"], 600)


if __name__ == "__main__":
    unittest.main()
