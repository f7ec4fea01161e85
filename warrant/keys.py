"""
Warrant Keys - Key material, key sets and key resolution.

Keys are validated once, when they are constructed, and are read-only
afterwards. A KeySet is the in-memory key provider the decoder resolves
``kid`` values against; it never fetches anything.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed448, ed25519, rsa
from jwcrypto import jwk
from jwcrypto.common import JWException, base64url_decode, base64url_encode

from warrant.errors import (
    DuplicateKeyError,
    InvalidKeyError,
    KeyResolutionError,
    UnsupportedKeyTypeError,
)

logger = logging.getLogger(__name__)


SUPPORTED_KEY_TYPES = ("oct", "RSA", "EC", "OKP")

SIGNATURE_OPS = frozenset({"sign", "verify"})
ENCRYPTION_OPS = frozenset(
    {"encrypt", "decrypt", "wrapKey", "unwrapKey", "deriveKey", "deriveBits"}
)
KEY_OPS = SIGNATURE_OPS | ENCRYPTION_OPS

USE_OPS = {"sig": SIGNATURE_OPS, "enc": ENCRYPTION_OPS}

# JWK curve name -> cryptography curve name
_EC_CURVES = {"P-256": "secp256r1", "P-384": "secp384r1", "P-521": "secp521r1"}
_EC_CURVE_NAMES = {v: k for k, v in _EC_CURVES.items()}

_PRIVATE_TYPES = (
    rsa.RSAPrivateKey,
    ec.EllipticCurvePrivateKey,
    ed25519.Ed25519PrivateKey,
    ed448.Ed448PrivateKey,
)


def _kty_of(material: Any) -> str:
    if isinstance(material, (bytes, bytearray)):
        return "oct"
    if isinstance(material, (rsa.RSAPrivateKey, rsa.RSAPublicKey)):
        return "RSA"
    if isinstance(material, (ec.EllipticCurvePrivateKey, ec.EllipticCurvePublicKey)):
        return "EC"
    if isinstance(
        material,
        (
            ed25519.Ed25519PrivateKey,
            ed25519.Ed25519PublicKey,
            ed448.Ed448PrivateKey,
            ed448.Ed448PublicKey,
        ),
    ):
        return "OKP"
    raise UnsupportedKeyTypeError(f"Unsupported key material: {type(material).__name__}")


def check_key_usage(use: Optional[str], key_ops: Optional[Iterable[str]]) -> None:
    """
    Check that ``use`` and ``key_ops`` are well formed and agree.

    Raises:
        InvalidKeyError: On an unknown use or operation, a repeated operation,
            or operations that the declared use does not cover.
    """
    if use is not None and use not in USE_OPS:
        raise InvalidKeyError(f"Unknown key use: {use!r}")
    if key_ops is None:
        return

    ops = list(key_ops)
    unknown = [op for op in ops if op not in KEY_OPS]
    if unknown:
        raise InvalidKeyError(f"Unknown key_ops: {unknown}")
    if len(set(ops)) != len(ops):
        raise InvalidKeyError("Duplicate values in key_ops")
    if use is not None and not set(ops) <= USE_OPS[use]:
        raise InvalidKeyError(f"key_ops {ops} are inconsistent with use {use!r}")


@dataclass(frozen=True)
class Key:
    """
    A single key: symmetric secret, RSA, EC or OKP, public or private.

    Attributes:
        kty: JWK key type ("oct", "RSA", "EC" or "OKP").
        material: Raw secret bytes for "oct", a ``cryptography`` key otherwise.
        kid: Optional key identifier.
        use: Optional public key use ("sig" or "enc").
        key_ops: Optional tuple of permitted operations.
        alg: Optional algorithm hint carried in the JWK.

    Example:
        >>> key = Key.from_secret(b"secret", kid="key_id")
        >>> key.size
        48
    """

    kty: str
    material: Any = field(repr=False)
    kid: Optional[str] = None
    use: Optional[str] = None
    key_ops: Optional[Tuple[str, ...]] = None
    alg: Optional[str] = None

    def __post_init__(self):
        if self.kty not in SUPPORTED_KEY_TYPES:
            raise UnsupportedKeyTypeError(f"Unsupported key type: {self.kty!r}")
        actual = _kty_of(self.material)
        if actual != self.kty:
            raise InvalidKeyError(f"Key material is {actual}, not {self.kty}")
        if self.kty == "oct":
            if not self.material:
                raise InvalidKeyError("Symmetric key must not be empty")
            object.__setattr__(self, "material", bytes(self.material))
        if self.kty == "EC" and self.material.curve.name not in _EC_CURVE_NAMES:
            raise UnsupportedKeyTypeError(f"Unsupported curve: {self.material.curve.name}")
        if self.key_ops is not None:
            object.__setattr__(self, "key_ops", tuple(self.key_ops))
        check_key_usage(self.use, self.key_ops)

    # -------------------------------------------------------------------------
    # Constructors
    # -------------------------------------------------------------------------

    @classmethod
    def from_secret(cls, secret: Union[str, bytes], **kwargs) -> "Key":
        """Create a symmetric key. ``str`` secrets are UTF-8 encoded."""
        if isinstance(secret, str):
            secret = secret.encode("utf-8")
        return cls(kty="oct", material=secret, **kwargs)

    @classmethod
    def from_pyca(cls, material: Any, **kwargs) -> "Key":
        """Create a key from a ``cryptography`` key object."""
        return cls(kty=_kty_of(material), material=material, **kwargs)

    @classmethod
    def from_jwk(cls, data: Union[str, Mapping[str, Any], jwk.JWK]) -> "Key":
        """
        Create a key from a JWK (JSON string, dict or ``jwcrypto`` JWK).

        Raises:
            UnsupportedKeyTypeError: If the key type or curve is not supported.
            InvalidKeyError: If the JWK is malformed or its usage is inconsistent.
        """
        if isinstance(data, jwk.JWK):
            # Symmetric keys only have a private form
            private = data.has_private or data.get("kty") == "oct"
            params = json.loads(data.export(private_key=private))
        elif isinstance(data, str):
            try:
                params = json.loads(data)
            except ValueError as e:
                raise InvalidKeyError(f"Invalid JWK JSON: {e}")
        else:
            params = dict(data)
        if not isinstance(params, dict):
            raise InvalidKeyError("JWK must be a JSON object")

        kty = params.get("kty")
        if kty not in SUPPORTED_KEY_TYPES:
            raise UnsupportedKeyTypeError(f"Unsupported key type: {kty!r}")
        if kty == "OKP" and params.get("crv") not in ("Ed25519", "Ed448"):
            raise UnsupportedKeyTypeError(f"Unsupported OKP curve: {params.get('crv')!r}")

        # Check usage before jwcrypto sees it so the error is ours
        check_key_usage(params.get("use"), params.get("key_ops"))

        meta = {
            "kid": params.get("kid"),
            "use": params.get("use"),
            "key_ops": params.get("key_ops"),
            "alg": params.get("alg"),
        }

        if kty == "oct":
            try:
                secret = base64url_decode(params["k"])
            except (KeyError, TypeError, ValueError) as e:
                raise InvalidKeyError(f"Invalid symmetric JWK: {e}")
            return cls(kty="oct", material=secret, **meta)

        try:
            parsed = jwk.JWK(**params)
            if parsed.has_private:
                material = serialization.load_pem_private_key(
                    parsed.export_to_pem(private_key=True, password=None), password=None
                )
            else:
                material = serialization.load_pem_public_key(parsed.export_to_pem())
        except (JWException, ValueError, TypeError) as e:
            raise InvalidKeyError(f"Invalid JWK: {e}")
        return cls(kty=kty, material=material, **meta)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def is_private(self) -> bool:
        """True for symmetric keys and for the private half of key pairs."""
        return self.kty == "oct" or isinstance(self.material, _PRIVATE_TYPES)

    @property
    def size(self) -> int:
        """Key size in bits."""
        if self.kty == "oct":
            return len(self.material) * 8
        if self.kty == "RSA":
            return self.material.key_size
        if self.kty == "EC":
            return self.material.curve.key_size
        return 448 if self.curve == "Ed448" else 256

    @property
    def curve(self) -> Optional[str]:
        """JWK curve name for EC and OKP keys."""
        if self.kty == "EC":
            return _EC_CURVE_NAMES[self.material.curve.name]
        if self.kty == "OKP":
            if isinstance(self.material, (ed448.Ed448PrivateKey, ed448.Ed448PublicKey)):
                return "Ed448"
            return "Ed25519"
        return None

    def permits(self, operation: str) -> bool:
        """Return True if ``use``/``key_ops`` allow ``operation``."""
        if self.key_ops is not None:
            return operation in self.key_ops
        if self.use is not None:
            return operation in USE_OPS[self.use]
        return True

    # -------------------------------------------------------------------------
    # Conversions
    # -------------------------------------------------------------------------

    def public_key(self) -> "Key":
        """Return the public half (symmetric keys are returned unchanged)."""
        if self.kty == "oct" or not self.is_private:
            return self
        return replace(self, material=self.material.public_key())

    def to_jwk(self) -> jwk.JWK:
        """Return this key as a ``jwcrypto`` JWK, including metadata."""
        if self.kty == "oct":
            params: Dict[str, Any] = {"kty": "oct", "k": base64url_encode(self.material)}
        else:
            exported = jwk.JWK.from_pyca(self.material)
            params = json.loads(exported.export(private_key=self.is_private))
        for name in ("kid", "use", "alg"):
            value = getattr(self, name)
            if value is not None:
                params[name] = value
        if self.key_ops is not None:
            params["key_ops"] = list(self.key_ops)
        return jwk.JWK(**params)

    def to_dict(self, private: bool = False) -> Dict[str, Any]:
        """Export as a JWK dict. Private parameters only when ``private`` is set."""
        key = self if private else self.public_key()
        if key.kty == "oct" and not private:
            raise InvalidKeyError("Symmetric keys have no public form")
        exported = key.to_jwk()
        return json.loads(exported.export(private_key=private and key.is_private))

    def export_public(self) -> str:
        """Return the public JWK as a JSON string."""
        return json.dumps(self.to_dict(private=False), sort_keys=True)

    def thumbprint(self) -> str:
        """RFC 7638 SHA-256 thumbprint, base64url encoded."""
        return self.to_jwk().thumbprint()


def generate_key(
    kty: str = "OKP",
    kid: Optional[str] = None,
    use: Optional[str] = None,
    size: Optional[int] = None,
    crv: Optional[str] = None,
) -> Key:
    """
    Generate a fresh key.

    Args:
        kty: "oct", "RSA", "EC" or "OKP".
        kid: Optional key identifier.
        use: Optional key use ("sig" or "enc").
        size: Bits for "oct" (default 256) and "RSA" (default 2048) keys.
        crv: Curve for "EC" (default P-256) and "OKP" (default Ed25519) keys.

    Returns:
        A private Key.

    Example:
        >>> key = generate_key("EC", kid="signing-1", crv="P-384")
        >>> key.curve
        'P-384'
    """
    if kty not in SUPPORTED_KEY_TYPES:
        raise UnsupportedKeyTypeError(f"Unsupported key type: {kty!r}")

    if kty == "oct":
        params = {"kty": "oct", "size": size or 256}
    elif kty == "RSA":
        params = {"kty": "RSA", "size": size or 2048}
    elif kty == "EC":
        params = {"kty": "EC", "crv": crv or "P-256"}
    else:
        params = {"kty": "OKP", "crv": crv or "Ed25519"}

    generated = jwk.JWK.generate(**params)
    key = Key.from_jwk(generated)
    return replace(key, kid=kid, use=use)


# =============================================================================
# Key Resolution
# =============================================================================


class KeyResolver(ABC):
    """Abstract interface for anything the decoder can look keys up in."""

    @abstractmethod
    def resolve(self, kid: Optional[str] = None, algorithm: Any = None) -> Key:
        """
        Return the key a token should be checked with.

        Args:
            kid: The ``kid`` from the token header, if any.
            algorithm: The expected Algorithm, used to tell apart keys that
                share a ``kid`` but differ in key type.

        Raises:
            KeyResolutionError: If no key or more than one key matches.
        """
        pass


class KeySet(KeyResolver):
    """
    Immutable in-memory key set.

    Two keys may share a ``kid`` only when their key types differ; the
    decoder then uses the algorithm's key type to choose between them.

    Example:
        >>> keys = KeySet([Key.from_secret(b"secret", kid="key_id")])
        >>> keys.resolve("key_id").kid
        'key_id'
    """

    def __init__(self, keys: Iterable[Key]):
        """
        Build the set.

        Raises:
            DuplicateKeyError: If two keys share both ``kid`` and key type.
        """
        self._keys: Tuple[Key, ...] = tuple(keys)
        index: Dict[Optional[str], List[Key]] = {}

        for key in self._keys:
            if not isinstance(key, Key):
                raise InvalidKeyError(f"Not a Key: {type(key).__name__}")
            same_kid = index.setdefault(key.kid, [])
            if key.kid is not None and any(k.kty == key.kty for k in same_kid):
                raise DuplicateKeyError(
                    f"Duplicate key: kid={key.kid!r} kty={key.kty}",
                    details={"kid": key.kid, "kty": key.kty},
                )
            same_kid.append(key)

        self._by_kid = MappingProxyType({k: tuple(v) for k, v in index.items()})

    @classmethod
    def from_jwks(cls, jwks: Union[str, Mapping[str, Any]]) -> "KeySet":
        """
        Build a key set from a JWK Set document (already fetched by the caller).

        Raises:
            InvalidKeyError: If the document is malformed.
            UnsupportedKeyTypeError: If any key has an unsupported type.
        """
        if isinstance(jwks, str):
            try:
                jwks = json.loads(jwks)
            except ValueError as e:
                raise InvalidKeyError(f"Invalid JWK Set JSON: {e}")
        if not isinstance(jwks, Mapping) or not isinstance(jwks.get("keys"), list):
            raise InvalidKeyError("JWK Set must be an object with a 'keys' list")
        return cls(Key.from_jwk(entry) for entry in jwks["keys"])

    def to_jwks(self, private: bool = False) -> Dict[str, Any]:
        """Export as a JWK Set dict. Symmetric keys are skipped unless ``private``."""
        return {
            "keys": [
                key.to_dict(private=private)
                for key in self._keys
                if private or key.kty != "oct"
            ]
        }

    def resolve(self, kid: Optional[str] = None, algorithm: Any = None) -> Key:
        """Resolve a key by ``kid``, narrowing by the algorithm's key type."""
        if kid is None:
            if len(self._keys) == 1:
                return self._keys[0]
            raise KeyResolutionError(
                f"Token has no kid and the key set holds {len(self._keys)} keys"
            )

        candidates = self._by_kid.get(kid, ())
        key_type = getattr(algorithm, "key_type", None)
        if key_type is not None:
            candidates = tuple(k for k in candidates if k.kty == key_type)

        if not candidates:
            logger.debug(f"No key for kid={kid!r}")
            raise KeyResolutionError(f"Unknown kid: {kid!r}", details={"kid": kid})
        if len(candidates) > 1:
            raise KeyResolutionError(f"Ambiguous kid: {kid!r}", details={"kid": kid})
        return candidates[0]

    def get(self, kid: Optional[str]) -> Tuple[Key, ...]:
        """Return every key with this ``kid``."""
        return self._by_kid.get(kid, ())

    def __len__(self) -> int:
        return len(self._keys)

    def __iter__(self) -> Iterator[Key]:
        return iter(self._keys)

    def __contains__(self, kid: object) -> bool:
        return kid in self._by_kid
