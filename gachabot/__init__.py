"""Gacha bot package providing the economy engine and its front-ends."""

from . import (  # noqa: F401
    auth,
    catalog,
    economy,
    errors,
    gacha,
    models,
    pity,
    rng,
    rpc,
    seeding,
    selection,
    store,
    utils,
)

__all__ = [
    "auth",
    "catalog",
    "economy",
    "errors",
    "gacha",
    "models",
    "pity",
    "rng",
    "rpc",
    "seeding",
    "selection",
    "store",
    "utils",
]
