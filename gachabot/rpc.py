"""HTTP callable endpoints exposing the economy engine."""

from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from aiohttp import web

from gachabot.auth import TokenVerifier
from gachabot.economy import UNSET, EconomyEngine
from gachabot.errors import GachaError, InternalError, InvalidArgument, NotFound, Unauthenticated
from gachabot.models import Caller

logger = logging.getLogger("gachabot.rpc")

ENGINE_KEY = web.AppKey("engine", EconomyEngine)
VERIFIER_KEY = web.AppKey("verifier", TokenVerifier)

Handler = Callable[[EconomyEngine, Caller, Mapping[str, Any]], Awaitable[Dict[str, Any]]]


async def _gacha_draw(engine: EconomyEngine, caller: Caller, data: Mapping[str, Any]) -> Dict[str, Any]:
    outcome = await engine.draw(caller, data.get("bannerId"), data.get("count"), data.get("payWith"))
    return {
        "results": [result.to_response() for result in outcome.results],
        "newBalances": outcome.balances.to_dict(),
        "newPityState": outcome.pity.to_dict(),
    }


async def _purchase_cosmetic(engine: EconomyEngine, caller: Caller, data: Mapping[str, Any]) -> Dict[str, Any]:
    outcome = await engine.purchase(caller, data.get("itemId"), data.get("currency"))
    return {"itemId": outcome.item_id, "newBalances": outcome.balances.to_dict()}


async def _equip_cosmetics(engine: EconomyEngine, caller: Caller, data: Mapping[str, Any]) -> Dict[str, Any]:
    equipped = await engine.equip(
        caller,
        avatar_id=data.get("avatarId", UNSET),
        background_id=data.get("backgroundId", UNSET),
        icon_id=data.get("iconId", UNSET),
    )
    return {"equippedSlots": equipped}


async def _buy_tickets(engine: EconomyEngine, caller: Caller, data: Mapping[str, Any]) -> Dict[str, Any]:
    outcome = await engine.exchange_for_tickets(caller, data.get("count"))
    return {"ticketsGranted": outcome.tickets_granted, "newBalances": outcome.balances.to_dict()}


async def _grant_currency(engine: EconomyEngine, caller: Caller, data: Mapping[str, Any]) -> Dict[str, Any]:
    balances = await engine.grant_currency(caller, data.get("userId"), data.get("currency"), data.get("amount"))
    return {"newBalances": balances.to_dict()}


async def _get_economy(engine: EconomyEngine, caller: Caller, data: Mapping[str, Any]) -> Dict[str, Any]:
    record = await engine.get_economy(caller)
    document = record.to_document()
    document.pop("updatedAt", None)
    return document


OPERATIONS: Mapping[str, Handler] = {
    "gachaDraw": _gacha_draw,
    "purchaseCosmetic": _purchase_cosmetic,
    "equipCosmetics": _equip_cosmetics,
    "buyTickets": _buy_tickets,
    "grantCurrency": _grant_currency,
    "getEconomy": _get_economy,
}


def _error_response(error: GachaError) -> web.Response:
    return web.json_response({"error": error.to_payload()}, status=error.http_status)


async def _read_data(request: web.Request) -> Mapping[str, Any]:
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise InvalidArgument("Request body must be JSON.")
    if not isinstance(body, dict):
        raise InvalidArgument("Request body must be a JSON object.")
    data = body.get("data")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidArgument("data must be an object.")
    return data


async def handle_rpc(request: web.Request) -> web.Response:
    verifier = request.app[VERIFIER_KEY]
    engine = request.app[ENGINE_KEY]
    operation = request.match_info.get("operation", "")

    caller: Optional[Caller] = verifier.caller_from_header(request.headers.get("Authorization"))
    if caller is None:
        return _error_response(Unauthenticated("User must be signed in."))

    handler = OPERATIONS.get(operation)
    if handler is None:
        return _error_response(NotFound(f"Unknown operation {operation!r}."))

    try:
        data = await _read_data(request)
        result = await handler(engine, caller, data)
    except GachaError as exc:
        if isinstance(exc, InternalError):
            logger.error("%s failed for %s: %s", operation, caller.uid, exc.message)
        return _error_response(exc)
    except Exception:
        logger.exception("Unhandled error in %s for %s", operation, caller.uid)
        return _error_response(InternalError("Internal error."))
    return web.json_response({"result": result})


async def handle_health(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok"})


def create_app(engine: EconomyEngine, verifier: TokenVerifier) -> web.Application:
    app = web.Application()
    app[ENGINE_KEY] = engine
    app[VERIFIER_KEY] = verifier
    app.router.add_post("/rpc/{operation}", handle_rpc)
    app.router.add_get("/healthz", handle_health)
    return app


async def start_rpc_server(app: web.Application, host: str, port: int) -> web.AppRunner:
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("RPC server listening on %s:%s", host, port)
    return runner


__all__ = ["OPERATIONS", "create_app", "handle_rpc", "start_rpc_server"]
