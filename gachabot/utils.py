"""Utility helpers for the gacha bot."""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional, Set

import discord

logger = logging.getLogger("gachabot.utils")

_truthy = {"1", "true", "yes", "on"}
_falsy = {"0", "false", "no", "off"}


def int_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid integer for %s=%s. Falling back to %s.", name, raw, default)
        return default


def bool_from_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    if lowered in _truthy:
        return True
    if lowered in _falsy:
        return False
    logger.warning("Invalid boolean for %s=%s. Falling back to %s.", name, raw, default)
    return default


def path_from_env(name: str) -> Optional[Path]:
    value = os.getenv(name, "").strip()
    if not value:
        return None
    return Path(value).expanduser()


def parse_id_list(raw: str) -> Set[str]:
    ids: Set[str] = set()
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if chunk:
            ids.add(chunk)
    return ids


def is_admin(member: discord.abc.User) -> bool:
    if isinstance(member, discord.Member):
        if member.guild_permissions.administrator:
            return True
        roles: Iterable[discord.Role] = getattr(member, "roles", [])
        return any(role.name.lower() == "admin" for role in roles)
    return False


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_instant(value: object) -> Optional[datetime]:
    """Parse a stored instant (ISO-8601 string or epoch seconds) into an aware datetime.

    Naive values are assumed to be UTC. Empty values return ``None``;
    unparseable values raise ``ValueError``.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Unsupported instant value: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


__all__ = [
    "bool_from_env",
    "int_from_env",
    "is_admin",
    "parse_id_list",
    "parse_instant",
    "path_from_env",
    "utc_now",
]
