"""
Warrant Decoder - Parses, verifies and validates compact JWS and JWE tokens.

Decoding runs six stages in order:

    1. StructuralParse        segment count and base64url
    2. HeaderDecode           JSON header, "crit" handling
    3. AlgorithmCheck         header alg/enc must equal the expected binding
                              and be permitted by the policy
    4. KeyResolution          kid -> key through the KeyResolver
    5. SignatureVerification  (JWE: key unwrap and authenticated decryption)
    6. ClaimValidation        exp, nbf, required claims, issuer, audience

A failure in stages 1-5 halts the pipeline with a single error and no token,
since nothing after it could be trusted. Stage 6 always runs to completion
and reports every claim problem alongside the (verified) token.

Example:
    >>> key = Key.from_secret(b"secret", kid="key_id")
    >>> result = decode(token, TokenSigner("HS256", key))
    >>> if result.valid:
    ...     print(result.claims.jti)
"""

import logging
import time
import zlib
from typing import Any, Callable, Iterable, List, Optional, Tuple, Union

from warrant import config
from warrant.algorithms import DEFAULT_REGISTRY, Algorithm, AlgorithmRegistry
from warrant.builder import Binding, TokenEncrypter
from warrant.claims import ClaimSet, validate_claims
from warrant.compact import b64decode, parse_json_object, signing_input
from warrant.errors import (
    JoseError,
    KeyResolutionError,
    PolicyViolationError,
    SignatureError,
    StructuralError,
    UnsupportedAlgorithmError,
)
from warrant.keys import Key, KeyResolver
from warrant.policy import DEFAULT_POLICY, SecurityPolicy
from warrant.token import SUPPORTED_COMPRESSION, DecodeResult, Header, Token, check_critical

logger = logging.getLogger(__name__)

JWS_SEGMENTS = ("header", "payload", "signature")
JWE_SEGMENTS = ("header", "encrypted_key", "iv", "ciphertext", "tag")


def _as_text(token: Union[str, bytes]) -> str:
    if isinstance(token, bytes):
        try:
            token = token.decode("ascii")
        except UnicodeDecodeError:
            raise StructuralError("Token must be ASCII")
    if not isinstance(token, str):
        raise StructuralError("Token must be a string")
    return token


def unverified_header(token: Union[str, bytes]) -> Header:
    """
    Parse a token's header WITHOUT verifying anything.

    Useful for routing (for example picking which binding to decode with);
    never base a security decision on the result.

    Raises:
        StructuralError: If the token or its header is malformed.
    """
    segments = _as_text(token).split(".")
    if len(segments) not in (len(JWS_SEGMENTS), len(JWE_SEGMENTS)):
        raise StructuralError(f"Token has {len(segments)} segments")
    return Header.from_dict(parse_json_object(b64decode(segments[0], "header"), "header"))


def _inflate(data: bytes) -> bytes:
    """Raw-deflate decompression with an output cap."""
    inflater = zlib.decompressobj(wbits=-15)
    try:
        plaintext = inflater.decompress(data, config.MAX_DECOMPRESSED_BYTES)
    except zlib.error as e:
        raise StructuralError(f"Invalid compressed payload: {e}")
    if inflater.unconsumed_tail:
        raise StructuralError("Decompressed payload exceeds the size limit")
    if not inflater.eof:
        raise StructuralError("Truncated compressed payload")
    return plaintext


class _BoundKey(KeyResolver):
    """The single key carried by the expected binding."""

    def __init__(self, key: Optional[Key]):
        self.key = key

    def resolve(self, kid: Optional[str] = None, algorithm: Any = None) -> Key:
        if self.key is None:
            raise KeyResolutionError("No key bound to the expected algorithm")
        # A kid-less key answers for any kid; a tagged one only for its own
        if kid is not None and self.key.kid is not None and kid != self.key.kid:
            raise KeyResolutionError(f"Unknown kid: {kid!r}", details={"kid": kid})
        return self.key


class TokenDecoder:
    """
    Decodes tokens against one expected binding.

    The decoder never lets a token choose its own algorithm: the header's
    ``alg`` (and ``enc``) must equal the expected binding's. The decoder holds
    no per-call state and may be shared across threads.

    Args:
        expected: TokenSigner (JWS) or TokenEncrypter (JWE) naming the
            algorithm(s) to verify with, and optionally the key.
        keys: KeyResolver to look the key up in. Defaults to ``expected.key``
            alone, which matches any ``kid`` when the key itself has none.
        policy: SecurityPolicy to enforce.
        registry: AlgorithmRegistry to resolve algorithm names in.
        clock: Returns the current time in seconds since the epoch.
        critical_extensions: "crit" header names the caller handles itself.
    """

    def __init__(
        self,
        expected: Binding,
        keys: Optional[KeyResolver] = None,
        policy: SecurityPolicy = DEFAULT_POLICY,
        registry: AlgorithmRegistry = DEFAULT_REGISTRY,
        clock: Callable[[], float] = time.time,
        critical_extensions: Iterable[str] = (),
    ):
        self.expected = expected
        self.keys = keys if keys is not None else _BoundKey(expected.key)
        self.policy = policy
        self.registry = registry
        self._clock = clock
        self.critical_extensions = frozenset(critical_extensions)

    @property
    def _encrypted(self) -> bool:
        return isinstance(self.expected, TokenEncrypter)

    def decode(self, token: Union[str, bytes]) -> DecodeResult:
        """
        Run the decode pipeline.

        Returns:
            DecodeResult. ``token`` is None if any of stages 1-5 failed.
        """
        try:
            text = _as_text(token)
            segments, raw = self._parse_structure(text)
            header = self._decode_header(raw[0])
            algorithms = self._check_algorithm(header)
            key = self._resolve_key(header, algorithms[0])
            if self._encrypted:
                payload = self._decrypt(segments, raw, header, key, *algorithms)
            else:
                payload = self._verify(segments, raw, key, algorithms[0])
            claims = ClaimSet(parse_json_object(payload, "payload"))
        except JoseError as e:
            logger.debug(f"Token rejected: {e.code}: {e.message}")
            return DecodeResult(errors=(e,))

        errors = validate_claims(claims, self.policy, self._clock())

        if self._encrypted:
            parts = dict(zip(JWE_SEGMENTS[1:], raw[1:]))
        else:
            parts = {"signature": raw[2]}
        verified = Token(header=header, claims=claims, compact=text, **parts)
        return DecodeResult(token=verified, errors=tuple(errors))

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    def _parse_structure(self, token: str) -> Tuple[List[str], List[bytes]]:
        if len(token) > config.MAX_TOKEN_LENGTH:
            raise StructuralError(f"Token exceeds {config.MAX_TOKEN_LENGTH} characters")

        names = JWE_SEGMENTS if self._encrypted else JWS_SEGMENTS
        segments = token.split(".")
        if len(segments) != len(names):
            raise StructuralError(
                f"Expected {len(names)} segments, got {len(segments)}",
                details={"segments": len(segments)},
            )
        return segments, [b64decode(segment, name) for segment, name in zip(segments, names)]

    def _decode_header(self, raw: bytes) -> Header:
        data = parse_json_object(raw, "header")
        header = Header.from_dict(data)

        if self._encrypted and header.enc is None:
            raise StructuralError("JWE header is missing 'enc'")
        if not self._encrypted and header.enc is not None:
            raise StructuralError("JWS header must not carry 'enc'")
        if header.zip is not None:
            if not self._encrypted:
                raise StructuralError("'zip' is only valid for JWE")
            if header.zip not in SUPPORTED_COMPRESSION:
                raise StructuralError(f"Unsupported compression: {header.zip!r}")

        check_critical(data, self.critical_extensions)

        if header.jku is not None:
            logger.debug("Ignoring 'jku' header; keys are supplied by the caller")
        return header

    def _check_algorithm(self, header: Header) -> Tuple[Algorithm, ...]:
        expected: List[Tuple[str, str]] = [("alg", self.expected.algorithm)]
        if self._encrypted:
            expected.append(("enc", self.expected.encryption))

        algorithms = []
        for param, name in expected:
            algorithm = self.registry.get(name)
            actual = getattr(header, param)
            if actual != name:
                raise PolicyViolationError(
                    f"Token {param} {actual!r} does not match expected {name!r}",
                    details={param: actual, "expected": name},
                )
            if not self.policy.is_permitted(name):
                raise PolicyViolationError(
                    f"Algorithm {name!r} is not permitted by the policy",
                    details={param: name},
                )
            algorithms.append(algorithm)

        if self._encrypted:
            if not (algorithms[0].is_key_management and algorithms[1].is_content_encryption):
                raise UnsupportedAlgorithmError(
                    f"{algorithms[0].name}/{algorithms[1].name} is not a JWE algorithm pair"
                )
        elif not algorithms[0].is_signature:
            raise UnsupportedAlgorithmError(f"{algorithms[0].name} is not a signature algorithm")
        return tuple(algorithms)

    def _resolve_key(self, header: Header, algorithm: Algorithm) -> Optional[Key]:
        if not algorithm.requires_key:
            return None
        return self.keys.resolve(header.kid, algorithm)

    def _verify(
        self, segments: List[str], raw: List[bytes], key: Optional[Key], algorithm: Algorithm
    ) -> bytes:
        message = signing_input(segments[0], segments[1])
        if not algorithm.verify(message, raw[2], key):
            raise SignatureError(
                "Signature verification failed",
                details={"algorithm": algorithm.name, "kid": key.kid if key else None},
            )
        return raw[1]

    def _decrypt(
        self,
        segments: List[str],
        raw: List[bytes],
        header: Header,
        key: Key,
        key_alg: Algorithm,
        enc: Algorithm,
    ) -> bytes:
        encrypted_key, iv, ciphertext, tag = raw[1:]
        cek = key_alg.unwrap(encrypted_key, key, enc.min_key_size)
        plaintext = enc.decrypt(cek, iv, ciphertext, tag, segments[0].encode("ascii"))
        if header.zip == "DEF":
            plaintext = _inflate(plaintext)
        return plaintext


def decode(
    token: Union[str, bytes],
    expected: Binding,
    keys: Optional[KeyResolver] = None,
    policy: SecurityPolicy = DEFAULT_POLICY,
    **kwargs,
) -> DecodeResult:
    """
    Decode a token in one call.

    Args:
        token: Compact JWS or JWE.
        expected: TokenSigner or TokenEncrypter the token must match.
        keys: Optional KeyResolver; defaults to ``expected.key``.
        policy: SecurityPolicy to enforce.
        **kwargs: ``registry``, ``clock`` and ``critical_extensions``, as for
            TokenDecoder.

    Returns:
        DecodeResult.
    """
    return TokenDecoder(expected, keys=keys, policy=policy, **kwargs).decode(token)
