import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

import discord
from aiohttp import web
from discord.ext import commands
from dotenv import load_dotenv

from gachabot.auth import TokenVerifier
from gachabot.economy import EconomyEngine, EconomySettings
from gachabot.gacha import setup_gacha_mode
from gachabot.rpc import create_app, start_rpc_server
from gachabot.store import DocumentStore
from gachabot.utils import int_from_env, path_from_env

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent

logging.basicConfig(
    level=os.getenv("GACHABOT_LOG_LEVEL", "INFO"),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("gachabot")

DISCORD_TOKEN = os.getenv("DISCORD_TOKEN", "").strip()
AUTH_SECRET = os.getenv("GACHABOT_AUTH_SECRET", "").strip()
RPC_HOST = os.getenv("GACHABOT_RPC_HOST", "127.0.0.1")
RPC_PORT = int_from_env("GACHABOT_RPC_PORT", 8080)


def _resolve_db_path() -> Path:
    db_path = path_from_env("GACHABOT_DB_PATH") or Path("gachabot.sqlite3")
    if not db_path.is_absolute():
        db_path = BASE_DIR / db_path
    return db_path


def build_engine() -> EconomyEngine:
    store = DocumentStore(
        _resolve_db_path(),
        max_attempts=int_from_env("GACHABOT_TX_MAX_ATTEMPTS", 5),
    )
    return EconomyEngine(store, settings=EconomySettings.from_env())


async def _start_rpc(engine: EconomyEngine) -> Optional[web.AppRunner]:
    if not AUTH_SECRET:
        logger.info("GACHABOT_AUTH_SECRET not set; RPC server disabled.")
        return None
    verifier = TokenVerifier(AUTH_SECRET, admin_uids=engine.settings.admin_uids)
    return await start_rpc_server(create_app(engine, verifier), RPC_HOST, RPC_PORT)


class GachaBot(commands.Bot):
    def __init__(self, engine: EconomyEngine) -> None:
        intents = discord.Intents.default()
        intents.message_content = True
        super().__init__(command_prefix="!", intents=intents)
        self.engine = engine
        self._rpc_runner: Optional[web.AppRunner] = None

    async def setup_hook(self) -> None:
        setup_gacha_mode(self, engine=self.engine)
        self._rpc_runner = await _start_rpc(self.engine)

    async def close(self) -> None:
        if self._rpc_runner is not None:
            await self._rpc_runner.cleanup()
        await super().close()

    async def on_ready(self) -> None:
        logger.info("Logged in as %s", self.user)


async def _serve_rpc_only(engine: EconomyEngine) -> None:
    runner = await _start_rpc(engine)
    if runner is None:
        raise SystemExit("Set DISCORD_TOKEN and/or GACHABOT_AUTH_SECRET to run the bot.")
    try:
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()


def main() -> None:
    engine = build_engine()
    if DISCORD_TOKEN:
        GachaBot(engine).run(DISCORD_TOKEN, log_handler=None)
    else:
        logger.info("DISCORD_TOKEN not set; running RPC server only.")
        asyncio.run(_serve_rpc_only(engine))


if __name__ == "__main__":
    main()
