import unittest

import jwt

from gachabot.auth import TokenVerifier

SECRET = "unit-test-signing-secret-0123456789abcdef"


class TokenVerifierTests(unittest.TestCase):
    def setUp(self) -> None:
        self.verifier = TokenVerifier(SECRET, admin_uids={"discord:1"})

    def test_round_trip_and_admin_flag(self) -> None:
        caller = self.verifier.verify(self.verifier.issue("discord:1", now=1000), now=1500)
        self.assertIsNotNone(caller)
        self.assertEqual(caller.uid, "discord:1")
        self.assertTrue(caller.is_admin)
        player = self.verifier.verify(self.verifier.issue("player", now=1000), now=1500)
        self.assertFalse(player.is_admin)

    def test_token_is_a_standard_hs256_jwt(self) -> None:
        token = self.verifier.issue("player", ttl=60, now=1000)
        claims = jwt.decode(token, SECRET, algorithms=["HS256"], options={"verify_exp": False})
        self.assertEqual((claims["sub"], claims["exp"]), ("player", 1060))

    def test_expired_token(self) -> None:
        token = self.verifier.issue("player", ttl=60, now=1000)
        self.assertIsNone(self.verifier.verify(token, now=1061))
        self.assertIsNone(self.verifier.verify(token))

    def test_tampered_and_foreign_tokens(self) -> None:
        token = self.verifier.issue("player", now=1000)
        header, payload, signature = token.split(".")
        other_payload = self.verifier.issue("admin", now=1000).split(".")[1]
        forged = [
            f"{header}.{other_payload}.{signature}",
            f"{header}.{payload}",
            "",
            TokenVerifier("another-signing-secret-0123456789abcdef").issue("player", now=1000),
            jwt.encode({"sub": "player", "exp": 5000}, SECRET, algorithm="HS512"),
            jwt.encode({"sub": "player"}, SECRET, algorithm="HS256"),
            jwt.encode({"sub": "player", "exp": "later"}, SECRET, algorithm="HS256"),
        ]
        for candidate in forged:
            with self.subTest(token=candidate):
                self.assertIsNone(self.verifier.verify(candidate, now=1000))

    def test_header_parsing(self) -> None:
        token = self.verifier.issue("player")
        self.assertEqual(self.verifier.caller_from_header(f"Bearer {token}").uid, "player")
        self.assertIsNone(self.verifier.caller_from_header(f"Basic {token}"))
        self.assertIsNone(self.verifier.caller_from_header(None))
        self.assertIsNone(self.verifier.caller_from_header("Bearer"))

    def test_empty_secret_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            TokenVerifier("")


if __name__ == "__main__":
    unittest.main()
