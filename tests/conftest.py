"""
Shared pytest fixtures for Warrant tests.
"""

import pytest

from warrant import Key, KeySet, TokenSigner, generate_key

# 2023-11-14T22:13:20Z
NOW = 1700000000


class FixedClock:
    """A clock the tests can move by hand."""

    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FixedClock:
    """A clock frozen at NOW."""
    return FixedClock()


@pytest.fixture
def hmac_key() -> Key:
    """The symmetric key used across the HMAC scenarios."""
    return Key.from_secret(b"secret", kid="key_id")


@pytest.fixture
def hmac_signer(hmac_key: Key) -> TokenSigner:
    """HS256 bound to the shared secret."""
    return TokenSigner("HS256", hmac_key)


@pytest.fixture(scope="session")
def rsa_key() -> Key:
    """A 2048-bit RSA signing key (session scoped; generation is slow)."""
    return generate_key("RSA", kid="rsa-1")


@pytest.fixture(scope="session")
def other_rsa_key() -> Key:
    """A second, unrelated RSA key."""
    return generate_key("RSA", kid="rsa-1")


@pytest.fixture(scope="session")
def ec_keys() -> dict:
    """One EC key per supported curve, keyed by curve name."""
    return {crv: generate_key("EC", kid=f"ec-{crv}", crv=crv) for crv in ("P-256", "P-384", "P-521")}


@pytest.fixture(scope="session")
def ed25519_key() -> Key:
    """An Ed25519 signing key."""
    return generate_key("OKP", kid="ed-1")


@pytest.fixture
def sample_claims() -> dict:
    """Claims with fixed values so round trips compare exactly."""
    return {
        "jti": "10",
        "iss": "https://issuer.example.com",
        "sub": "agent-42",
        "aud": ["https://api.example.com"],
        "iat": NOW,
        "exp": NOW + 300,
        "scope": ["read", "list"],
    }


@pytest.fixture
def key_set(hmac_key: Key, rsa_key: Key, ec_keys: dict) -> KeySet:
    """A mixed key set."""
    return KeySet([hmac_key, rsa_key, ec_keys["P-256"]])
