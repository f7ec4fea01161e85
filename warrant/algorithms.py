"""
Warrant Algorithms - The capability table behind every sign, verify, wrap and
encrypt operation.

Dispatch is a table lookup: each Algorithm names its family, its key
requirements, and one capability object implementing that family's interface
(Signer/Verifier for JWS, KeyWrapper for JWE key management, ContentCipher for
JWE content encryption). Registries are immutable; adding an algorithm returns
a new registry.

Example:
    >>> from warrant.algorithms import DEFAULT_REGISTRY
    >>> from warrant.keys import Key
    >>> hs256 = DEFAULT_REGISTRY.get("HS256")
    >>> key = Key.from_secret(b"secret")
    >>> sig = hs256.sign(b"header.payload", key)
    >>> hs256.verify(b"header.payload", sig, key)
    True
"""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, FrozenSet, Iterable, Iterator, List, Optional, Tuple

from cryptography.exceptions import InvalidSignature, InvalidTag
from cryptography.hazmat.primitives import constant_time, hashes, hmac
from cryptography.hazmat.primitives.asymmetric import ec, padding
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
    encode_dss_signature,
)
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.keywrap import (
    InvalidUnwrap,
    aes_key_unwrap,
    aes_key_wrap,
)

from warrant import config
from warrant.errors import (
    KeyMismatchError,
    SignatureError,
    StructuralError,
    UnsupportedAlgorithmError,
)
from warrant.keys import Key

logger = logging.getLogger(__name__)


# =============================================================================
# Types
# =============================================================================


class AlgorithmFamily(str, Enum):
    """Families of algorithms, grouped by the capability they provide."""

    MAC = "MAC"
    RSA_SIGN = "RSA-sign"
    ECDSA = "ECDSA"
    EDDSA = "EdDSA"
    NONE = "none"
    RSA_ENCRYPT = "RSA-encrypt"
    AES_KW = "AES-KW"
    DIRECT = "direct"
    AEAD = "AEAD"


SIGNATURE_FAMILIES = frozenset(
    {
        AlgorithmFamily.MAC,
        AlgorithmFamily.RSA_SIGN,
        AlgorithmFamily.ECDSA,
        AlgorithmFamily.EDDSA,
        AlgorithmFamily.NONE,
    }
)
KEY_MANAGEMENT_FAMILIES = frozenset(
    {AlgorithmFamily.RSA_ENCRYPT, AlgorithmFamily.AES_KW, AlgorithmFamily.DIRECT}
)
CONTENT_FAMILIES = frozenset({AlgorithmFamily.AEAD})

# Operations that need the private half of an asymmetric key
_PRIVATE_OPERATIONS = frozenset({"sign", "unwrapKey", "decrypt"})


# =============================================================================
# Capability Interfaces
# =============================================================================


class Signer(ABC):
    """Produces a signature or MAC over a message."""

    @abstractmethod
    def sign(self, message: bytes, key: Optional[Key]) -> bytes:
        pass


class Verifier(ABC):
    """Checks a signature or MAC over a message."""

    @abstractmethod
    def verify(self, message: bytes, signature: bytes, key: Optional[Key]) -> bool:
        pass


class KeyWrapper(ABC):
    """Produces and recovers the content encryption key (CEK) of a JWE."""

    @abstractmethod
    def wrap(self, key: Key, cek_size: int) -> Tuple[bytes, bytes]:
        """Return ``(cek, encrypted_key)`` for a CEK of ``cek_size`` bits."""
        pass

    @abstractmethod
    def unwrap(self, encrypted_key: bytes, key: Key, cek_size: int) -> bytes:
        """Recover the CEK; raises SignatureError if it cannot be recovered."""
        pass


class ContentCipher(ABC):
    """Authenticated encryption of a JWE payload."""

    @abstractmethod
    def encrypt(self, cek: bytes, plaintext: bytes, aad: bytes) -> Tuple[bytes, bytes, bytes]:
        """Return ``(iv, ciphertext, tag)``."""
        pass

    @abstractmethod
    def decrypt(self, cek: bytes, iv: bytes, ciphertext: bytes, tag: bytes, aad: bytes) -> bytes:
        """Return the plaintext; raises SignatureError if authentication fails."""
        pass


# =============================================================================
# Signature Capabilities
# =============================================================================


class HMACSignature(Signer, Verifier):
    """HMAC with SHA-2. Verification recomputes the MAC and compares in constant time."""

    def __init__(self, hash_cls):
        self._hash_cls = hash_cls

    def sign(self, message: bytes, key: Key) -> bytes:
        mac = hmac.HMAC(key.material, self._hash_cls())
        mac.update(message)
        return mac.finalize()

    def verify(self, message: bytes, signature: bytes, key: Key) -> bool:
        return constant_time.bytes_eq(self.sign(message, key), signature)


class RSAPKCS1Signature(Signer, Verifier):
    """RSASSA-PKCS1-v1_5."""

    def __init__(self, hash_cls):
        self._hash_cls = hash_cls

    def _padding(self):
        return padding.PKCS1v15()

    def sign(self, message: bytes, key: Key) -> bytes:
        return key.material.sign(message, self._padding(), self._hash_cls())

    def verify(self, message: bytes, signature: bytes, key: Key) -> bool:
        try:
            key.public_key().material.verify(signature, message, self._padding(), self._hash_cls())
            return True
        except InvalidSignature:
            return False


class RSAPSSSignature(RSAPKCS1Signature):
    """RSASSA-PSS with MGF1 and a salt as long as the digest."""

    def _padding(self):
        digest = self._hash_cls()
        return padding.PSS(mgf=padding.MGF1(digest), salt_length=digest.digest_size)


class ECDSASignature(Signer, Verifier):
    """ECDSA with the raw ``r || s`` signature encoding JOSE uses."""

    def __init__(self, hash_cls):
        self._hash_cls = hash_cls

    @staticmethod
    def _coordinate_size(key: Key) -> int:
        return (key.size + 7) // 8

    def sign(self, message: bytes, key: Key) -> bytes:
        der = key.material.sign(message, ec.ECDSA(self._hash_cls()))
        r, s = decode_dss_signature(der)
        size = self._coordinate_size(key)
        return r.to_bytes(size, "big") + s.to_bytes(size, "big")

    def verify(self, message: bytes, signature: bytes, key: Key) -> bool:
        size = self._coordinate_size(key)
        if len(signature) != 2 * size:
            return False
        r = int.from_bytes(signature[:size], "big")
        s = int.from_bytes(signature[size:], "big")
        try:
            key.public_key().material.verify(
                encode_dss_signature(r, s), message, ec.ECDSA(self._hash_cls())
            )
            return True
        except InvalidSignature:
            return False


class EdDSASignature(Signer, Verifier):
    """EdDSA over Ed25519 or Ed448."""

    def sign(self, message: bytes, key: Key) -> bytes:
        return key.material.sign(message)

    def verify(self, message: bytes, signature: bytes, key: Key) -> bool:
        try:
            key.public_key().material.verify(signature, message)
            return True
        except InvalidSignature:
            return False


class NoneSignature(Signer, Verifier):
    """The unsecured "none" algorithm: an empty signature segment."""

    def sign(self, message: bytes, key: Optional[Key]) -> bytes:
        return b""

    def verify(self, message: bytes, signature: bytes, key: Optional[Key]) -> bool:
        return signature == b""


# =============================================================================
# Key Management Capabilities
# =============================================================================


class DirectKey(KeyWrapper):
    """``dir``: the shared symmetric key is the CEK; the encrypted key is empty."""

    def wrap(self, key: Key, cek_size: int) -> Tuple[bytes, bytes]:
        if key.size != cek_size:
            raise KeyMismatchError(
                f"dir requires a {cek_size}-bit key for this content encryption, got {key.size}"
            )
        return key.material, b""

    def unwrap(self, encrypted_key: bytes, key: Key, cek_size: int) -> bytes:
        if encrypted_key:
            raise StructuralError("dir tokens must have an empty encrypted key")
        if key.size != cek_size:
            raise KeyMismatchError(
                f"dir requires a {cek_size}-bit key for this content encryption, got {key.size}"
            )
        return key.material


class AESKeyWrap(KeyWrapper):
    """AES Key Wrap (RFC 3394) of a random CEK."""

    def wrap(self, key: Key, cek_size: int) -> Tuple[bytes, bytes]:
        cek = os.urandom(cek_size // 8)
        return cek, aes_key_wrap(key.material, cek)

    def unwrap(self, encrypted_key: bytes, key: Key, cek_size: int) -> bytes:
        try:
            cek = aes_key_unwrap(key.material, encrypted_key)
        except (InvalidUnwrap, ValueError):
            raise SignatureError("Key unwrap failed")
        if len(cek) * 8 != cek_size:
            raise SignatureError("Unwrapped key has the wrong size")
        return cek


class RSAOAEPKeyWrap(KeyWrapper):
    """RSAES-OAEP encryption of a random CEK."""

    def __init__(self, hash_cls):
        self._hash_cls = hash_cls

    def _padding(self):
        return padding.OAEP(
            mgf=padding.MGF1(algorithm=self._hash_cls()),
            algorithm=self._hash_cls(),
            label=None,
        )

    def wrap(self, key: Key, cek_size: int) -> Tuple[bytes, bytes]:
        cek = os.urandom(cek_size // 8)
        return cek, key.public_key().material.encrypt(cek, self._padding())

    def unwrap(self, encrypted_key: bytes, key: Key, cek_size: int) -> bytes:
        try:
            cek = key.material.decrypt(encrypted_key, self._padding())
        except ValueError:
            raise SignatureError("Key decryption failed")
        if len(cek) * 8 != cek_size:
            raise SignatureError("Decrypted key has the wrong size")
        return cek


# =============================================================================
# Content Encryption Capabilities
# =============================================================================


class AESGCMCipher(ContentCipher):
    """AES-GCM with a 96-bit random IV and a 128-bit tag."""

    IV_SIZE = 12
    TAG_SIZE = 16

    def __init__(self, key_size: int):
        self._key_size = key_size

    def _check_cek(self, cek: bytes) -> None:
        if len(cek) * 8 != self._key_size:
            raise KeyMismatchError(f"Content key must be {self._key_size} bits")

    def encrypt(self, cek: bytes, plaintext: bytes, aad: bytes) -> Tuple[bytes, bytes, bytes]:
        self._check_cek(cek)
        iv = os.urandom(self.IV_SIZE)
        sealed = AESGCM(cek).encrypt(iv, plaintext, aad)
        return iv, sealed[: -self.TAG_SIZE], sealed[-self.TAG_SIZE:]

    def decrypt(self, cek: bytes, iv: bytes, ciphertext: bytes, tag: bytes, aad: bytes) -> bytes:
        self._check_cek(cek)
        if len(iv) != self.IV_SIZE or len(tag) != self.TAG_SIZE:
            raise SignatureError("Invalid IV or authentication tag length")
        try:
            return AESGCM(cek).decrypt(iv, ciphertext + tag, aad)
        except InvalidTag:
            raise SignatureError("Content decryption failed")


# =============================================================================
# Algorithm
# =============================================================================


@dataclass(frozen=True)
class Algorithm:
    """
    One registered algorithm.

    Attributes:
        name: The JOSE identifier ("HS256", "A128KW", ...).
        family: The AlgorithmFamily.
        capability: Object implementing the family's interface.
        key_type: Required JWK key type, or None when no Key is used.
        min_key_size: Smallest accepted key size in bits.
        max_key_size: Largest accepted key size in bits, if bounded.
        output_size: Signature/tag size in bits; 0 when it depends on the key.
        curves: Accepted curves for EC and OKP keys.
    """

    name: str
    family: AlgorithmFamily
    capability: Any = field(repr=False, compare=False)
    key_type: Optional[str] = None
    min_key_size: int = 0
    max_key_size: Optional[int] = None
    output_size: int = 0
    curves: Tuple[str, ...] = ()

    @property
    def is_signature(self) -> bool:
        return self.family in SIGNATURE_FAMILIES

    @property
    def is_key_management(self) -> bool:
        return self.family in KEY_MANAGEMENT_FAMILIES

    @property
    def is_content_encryption(self) -> bool:
        return self.family in CONTENT_FAMILIES

    @property
    def requires_key(self) -> bool:
        return self.key_type is not None

    def check_key(self, key: Optional[Key], operation: str) -> None:
        """
        Enforce this algorithm's key precondition.

        Args:
            key: The key about to be used.
            operation: The JWK key operation ("sign", "verify", "wrapKey",
                "unwrapKey", "encrypt" or "decrypt").

        Raises:
            KeyMismatchError: If the key cannot be used for ``operation``.
        """
        if not self.requires_key:
            return
        if key is None:
            raise KeyMismatchError(f"{self.name} requires a key")
        if key.kty != self.key_type:
            raise KeyMismatchError(
                f"{self.name} requires a {self.key_type} key, got {key.kty}",
                details={"algorithm": self.name, "kty": key.kty},
            )
        if self.curves and key.curve not in self.curves:
            raise KeyMismatchError(f"{self.name} does not support curve {key.curve}")
        if key.size < self.min_key_size:
            raise KeyMismatchError(
                f"{self.name} requires at least {self.min_key_size}-bit keys, got {key.size}"
            )
        if self.max_key_size is not None and key.size > self.max_key_size:
            raise KeyMismatchError(
                f"{self.name} requires at most {self.max_key_size}-bit keys, got {key.size}"
            )
        if operation in _PRIVATE_OPERATIONS and not key.is_private:
            raise KeyMismatchError(f"{self.name} {operation} requires a private key")
        if not key.permits(operation):
            raise KeyMismatchError(
                f"Key {key.kid!r} does not permit {operation}",
                details={"kid": key.kid, "operation": operation},
            )
        if self.family is AlgorithmFamily.MAC and key.size < self.output_size:
            logger.warning(
                f"{self.name} key {key.kid!r} is {key.size} bits, shorter than the "
                f"{self.output_size}-bit hash output"
            )

    def _capability(self, interface: type, what: str) -> Any:
        if not isinstance(self.capability, interface):
            raise UnsupportedAlgorithmError(f"{self.name} does not support {what}")
        return self.capability

    @property
    def key_operations(self) -> Tuple[str, str]:
        if self.family is AlgorithmFamily.DIRECT:
            return "encrypt", "decrypt"
        return "wrapKey", "unwrapKey"

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def sign(self, message: bytes, key: Optional[Key]) -> bytes:
        signer = self._capability(Signer, "signing")
        self.check_key(key, "sign")
        return signer.sign(message, key)

    def verify(self, message: bytes, signature: bytes, key: Optional[Key]) -> bool:
        verifier = self._capability(Verifier, "verification")
        self.check_key(key, "verify")
        return verifier.verify(message, signature, key)

    def wrap(self, key: Key, cek_size: int) -> Tuple[bytes, bytes]:
        wrapper = self._capability(KeyWrapper, "key management")
        self.check_key(key, self.key_operations[0])
        return wrapper.wrap(key, cek_size)

    def unwrap(self, encrypted_key: bytes, key: Key, cek_size: int) -> bytes:
        wrapper = self._capability(KeyWrapper, "key management")
        self.check_key(key, self.key_operations[1])
        return wrapper.unwrap(encrypted_key, key, cek_size)

    def encrypt(self, cek: bytes, plaintext: bytes, aad: bytes) -> Tuple[bytes, bytes, bytes]:
        cipher = self._capability(ContentCipher, "content encryption")
        return cipher.encrypt(cek, plaintext, aad)

    def decrypt(self, cek: bytes, iv: bytes, ciphertext: bytes, tag: bytes, aad: bytes) -> bytes:
        cipher = self._capability(ContentCipher, "content encryption")
        return cipher.decrypt(cek, iv, ciphertext, tag, aad)


# =============================================================================
# Registry
# =============================================================================


class AlgorithmRegistry:
    """
    Immutable table of algorithms keyed by name.

    Example:
        >>> registry = DEFAULT_REGISTRY.with_algorithm(my_algorithm)
        >>> registry.get("X-CUSTOM").family
    """

    def __init__(self, algorithms: Iterable[Algorithm]):
        """
        Build the table.

        Raises:
            ValueError: If two algorithms share a name.
        """
        table = {}
        for algorithm in algorithms:
            if algorithm.name in table:
                raise ValueError(f"Algorithm already registered: {algorithm.name}")
            table[algorithm.name] = algorithm
        self._table = MappingProxyType(table)

    def get(self, name: str) -> Algorithm:
        """
        Look up an algorithm.

        Raises:
            UnsupportedAlgorithmError: If ``name`` is not registered.
        """
        if not isinstance(name, str) or name not in self._table:
            raise UnsupportedAlgorithmError(
                f"Unsupported algorithm: {name!r}", details={"algorithm": str(name)}
            )
        return self._table[name]

    def names(self, family: Optional[AlgorithmFamily] = None) -> FrozenSet[str]:
        """Return the registered names, optionally limited to one family."""
        return frozenset(
            name for name, alg in self._table.items() if family is None or alg.family is family
        )

    def signing_algorithms(self) -> FrozenSet[str]:
        """Names of every JWS algorithm except "none"."""
        return frozenset(
            name
            for name, alg in self._table.items()
            if alg.is_signature and alg.family is not AlgorithmFamily.NONE
        )

    def with_algorithm(self, algorithm: Algorithm) -> "AlgorithmRegistry":
        """Return a new registry that also contains ``algorithm``."""
        return AlgorithmRegistry(list(self._table.values()) + [algorithm])

    def without_algorithm(self, name: str) -> "AlgorithmRegistry":
        """Return a new registry without ``name``."""
        return AlgorithmRegistry(alg for alg in self._table.values() if alg.name != name)

    def __contains__(self, name: object) -> bool:
        return name in self._table

    def __iter__(self) -> Iterator[Algorithm]:
        return iter(self._table.values())

    def __len__(self) -> int:
        return len(self._table)


def _default_algorithms() -> List[Algorithm]:
    rsa_bits = config.MIN_RSA_KEY_BITS
    sha = {256: hashes.SHA256, 384: hashes.SHA384, 512: hashes.SHA512}
    algorithms: List[Algorithm] = []

    for bits, hash_cls in sha.items():
        algorithms.append(
            Algorithm(
                name=f"HS{bits}",
                family=AlgorithmFamily.MAC,
                capability=HMACSignature(hash_cls),
                key_type="oct",
                min_key_size=8,
                output_size=bits,
            )
        )
        algorithms.append(
            Algorithm(
                name=f"RS{bits}",
                family=AlgorithmFamily.RSA_SIGN,
                capability=RSAPKCS1Signature(hash_cls),
                key_type="RSA",
                min_key_size=rsa_bits,
            )
        )
        algorithms.append(
            Algorithm(
                name=f"PS{bits}",
                family=AlgorithmFamily.RSA_SIGN,
                capability=RSAPSSSignature(hash_cls),
                key_type="RSA",
                min_key_size=rsa_bits,
            )
        )

    for name, curve, hash_cls, coordinate in (
        ("ES256", "P-256", hashes.SHA256, 32),
        ("ES384", "P-384", hashes.SHA384, 48),
        ("ES512", "P-521", hashes.SHA512, 66),
    ):
        algorithms.append(
            Algorithm(
                name=name,
                family=AlgorithmFamily.ECDSA,
                capability=ECDSASignature(hash_cls),
                key_type="EC",
                output_size=2 * coordinate * 8,
                curves=(curve,),
            )
        )

    algorithms.append(
        Algorithm(
            name="EdDSA",
            family=AlgorithmFamily.EDDSA,
            capability=EdDSASignature(),
            key_type="OKP",
            curves=("Ed25519", "Ed448"),
        )
    )
    algorithms.append(Algorithm(name="none", family=AlgorithmFamily.NONE, capability=NoneSignature()))

    # Key management
    algorithms.append(
        Algorithm(name="dir", family=AlgorithmFamily.DIRECT, capability=DirectKey(), key_type="oct")
    )
    for bits in (128, 192, 256):
        algorithms.append(
            Algorithm(
                name=f"A{bits}KW",
                family=AlgorithmFamily.AES_KW,
                capability=AESKeyWrap(),
                key_type="oct",
                min_key_size=bits,
                max_key_size=bits,
            )
        )
    algorithms.append(
        Algorithm(
            name="RSA-OAEP",
            family=AlgorithmFamily.RSA_ENCRYPT,
            capability=RSAOAEPKeyWrap(hashes.SHA1),
            key_type="RSA",
            min_key_size=rsa_bits,
        )
    )
    algorithms.append(
        Algorithm(
            name="RSA-OAEP-256",
            family=AlgorithmFamily.RSA_ENCRYPT,
            capability=RSAOAEPKeyWrap(hashes.SHA256),
            key_type="RSA",
            min_key_size=rsa_bits,
        )
    )

    # Content encryption
    for bits in (128, 192, 256):
        algorithms.append(
            Algorithm(
                name=f"A{bits}GCM",
                family=AlgorithmFamily.AEAD,
                capability=AESGCMCipher(bits),
                min_key_size=bits,
                max_key_size=bits,
                output_size=AESGCMCipher.TAG_SIZE * 8,
            )
        )

    return algorithms


DEFAULT_REGISTRY = AlgorithmRegistry(_default_algorithms())
