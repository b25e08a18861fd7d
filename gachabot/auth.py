"""Signed caller tokens for the RPC surface."""

from __future__ import annotations

import logging
import time
from typing import Collection, Optional

import jwt

from gachabot.models import Caller

logger = logging.getLogger("gachabot.auth")

DEFAULT_TOKEN_TTL = 3600
TOKEN_ALGORITHM = "HS256"


class TokenVerifier:
    """Issue and verify HS256 JWTs carrying the caller uid in ``sub``."""

    def __init__(self, secret: str, *, admin_uids: Collection[str] = ()) -> None:
        if not secret:
            raise ValueError("A non-empty signing secret is required.")
        self._secret = secret
        self._admin_uids = frozenset(admin_uids)

    def issue(self, uid: str, *, ttl: int = DEFAULT_TOKEN_TTL, now: Optional[float] = None) -> str:
        issued = int(time.time() if now is None else now)
        payload = {"sub": uid, "iat": issued, "exp": issued + ttl}
        return jwt.encode(payload, self._secret, algorithm=TOKEN_ALGORITHM)

    def verify(self, token: str, *, now: Optional[float] = None) -> Optional[Caller]:
        """Return the caller for a valid token, or ``None``."""
        options = {"require": ["sub", "exp"]}
        try:
            if now is None:
                payload = jwt.decode(token.strip(), self._secret, algorithms=[TOKEN_ALGORITHM], options=options)
            else:
                # Expiry is checked against the supplied clock instead of the wall clock.
                payload = jwt.decode(
                    token.strip(),
                    self._secret,
                    algorithms=[TOKEN_ALGORITHM],
                    options={**options, "verify_exp": False, "verify_iat": False},
                )
                expires = payload["exp"]
                if isinstance(expires, bool) or not isinstance(expires, (int, float)):
                    raise jwt.DecodeError("Expiration Time claim (exp) must be a number")
                if expires <= now:
                    raise jwt.ExpiredSignatureError("Signature has expired")
        except jwt.InvalidTokenError as exc:
            logger.debug("Rejected token: %s", exc)
            return None
        uid = payload.get("sub")
        if not isinstance(uid, str) or not uid:
            return None
        return Caller(uid=uid, is_admin=uid in self._admin_uids)

    def caller_from_header(self, header: Optional[str]) -> Optional[Caller]:
        if not header:
            return None
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not token:
            return None
        return self.verify(token)


__all__ = ["DEFAULT_TOKEN_TTL", "TokenVerifier"]
