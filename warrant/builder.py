"""
Warrant Builder - Builds compact JWS and JWE tokens.

A binding (TokenSigner or TokenEncrypter) ties one algorithm to one key. The
builder checks the binding, the policy, the claims and the header all at once
and either returns a complete compact token or every problem it found, never
a partially signed or partially serialized token.

Example:
    >>> key = Key.from_secret(b"secret", kid="key_id")
    >>> result = build(TokenSigner("HS256", key), {"jti": "10"})
    >>> result.token.count(".")
    2
"""

import json
import logging
import time
import zlib
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from warrant import config
from warrant.algorithms import DEFAULT_REGISTRY, Algorithm, AlgorithmFamily, AlgorithmRegistry
from warrant.claims import ClaimsConfig
from warrant.compact import b64encode, canonical_json, signing_input
from warrant.errors import (
    JoseError,
    KeyMismatchError,
    MissingSignerError,
    PolicyViolationError,
    StructuralError,
    UnsupportedAlgorithmError,
)
from warrant.keys import Key, KeyResolver
from warrant.policy import DEFAULT_POLICY, SecurityPolicy
from warrant.token import BuildResult, check_critical

logger = logging.getLogger(__name__)

# Header parameters the builder owns
_RESERVED_HEADERS = ("alg", "enc", "zip")


# =============================================================================
# Bindings
# =============================================================================


@dataclass(frozen=True)
class TokenSigner:
    """
    Binds a JWS algorithm to a signing key.

    The same binding, holding the verification key, tells the decoder which
    algorithm to expect.

    Attributes:
        algorithm: JWS "alg" name.
        key: Signing (or verification) key; None only for "none".
    """

    algorithm: str
    key: Optional[Key] = None

    @classmethod
    def from_resolver(
        cls,
        algorithm: str,
        resolver: KeyResolver,
        kid: Optional[str] = None,
        registry: AlgorithmRegistry = DEFAULT_REGISTRY,
    ) -> "TokenSigner":
        """
        Bind ``algorithm`` to the key ``resolver`` returns for ``kid``.

        Raises:
            UnsupportedAlgorithmError: If ``algorithm`` is not registered.
            KeyResolutionError: If no single key matches.
        """
        return cls(algorithm, resolver.resolve(kid, registry.get(algorithm)))


@dataclass(frozen=True)
class TokenEncrypter:
    """
    Binds a JWE key-management algorithm and content encryption to a key.

    Attributes:
        algorithm: JWE "alg" name ("dir", "A128KW", "RSA-OAEP", ...).
        encryption: JWE "enc" name ("A128GCM", ...).
        key: Key-encryption (or direct) key.
        compress: Deflate the payload and set ``zip=DEF``.
    """

    algorithm: str
    encryption: str
    key: Optional[Key] = None
    compress: bool = False


Binding = Union[TokenSigner, TokenEncrypter]


# =============================================================================
# Builder
# =============================================================================


class TokenBuilder:
    """
    Builds tokens for one binding under one policy.

    The builder holds no per-call state, so one instance may be shared by
    many threads.

    Args:
        binding: A TokenSigner or TokenEncrypter.
        policy: SecurityPolicy deciding which algorithms may be used.
        registry: AlgorithmRegistry to resolve algorithm names in.
        clock: Returns the current time in seconds since the epoch.
        headers: Extra header parameters ("typ", "cty", "jku", "crit", custom).
    """

    def __init__(
        self,
        binding: Binding,
        policy: SecurityPolicy = DEFAULT_POLICY,
        registry: AlgorithmRegistry = DEFAULT_REGISTRY,
        clock: Callable[[], float] = time.time,
        headers: Optional[Mapping[str, Any]] = None,
    ):
        self.binding = binding
        self.policy = policy
        self.registry = registry
        self._clock = clock
        self._headers = dict(headers or {})

    def build(self, claims: Union[ClaimsConfig, Mapping[str, Any]]) -> BuildResult:
        """
        Build a compact token.

        Args:
            claims: A ClaimsConfig, or a plain mapping of claim names to values.

        Returns:
            BuildResult with the compact token, or with every error found.
        """
        now = self._clock()
        errors: List[JoseError] = []

        if isinstance(self.binding, TokenEncrypter):
            algorithms = self._check_encrypter(self.binding, errors)
        else:
            algorithms = self._check_signer(self.binding, errors)

        if not isinstance(claims, ClaimsConfig):
            claims = ClaimsConfig.from_mapping(claims)
        claim_values, claim_errors = claims.resolve(now)
        errors.extend(claim_errors)

        header = self._header(errors)

        if errors:
            logger.debug(f"Token build failed with {len(errors)} error(s)")
            return BuildResult(errors=tuple(errors))

        try:
            if isinstance(self.binding, TokenEncrypter):
                token = self._encrypt(header, claim_values, *algorithms)
            else:
                token = self._sign(header, claim_values, algorithms[0])
        except JoseError as e:
            return BuildResult(errors=(e,))

        logger.debug(f"Built {header['alg']} token (kid={header.get('kid')!r})")
        return BuildResult(token=token)

    # -------------------------------------------------------------------------
    # Checks
    # -------------------------------------------------------------------------

    def _check_signer(self, binding: TokenSigner, errors: List[JoseError]) -> Tuple[Algorithm, ...]:
        try:
            algorithm = self.registry.get(binding.algorithm)
        except UnsupportedAlgorithmError as e:
            errors.append(e)
            return ()
        if not algorithm.is_signature:
            errors.append(UnsupportedAlgorithmError(f"{algorithm.name} is not a signature algorithm"))
            return ()

        if algorithm.family is AlgorithmFamily.NONE:
            if not self.policy.allow_none:
                errors.append(
                    MissingSignerError("No signer bound and the policy does not allow 'none'")
                )
            return (algorithm,)

        if binding.key is None:
            errors.append(MissingSignerError(f"No key bound for {algorithm.name}"))
        if not self.policy.is_permitted(algorithm.name):
            errors.append(
                PolicyViolationError(
                    f"Algorithm {algorithm.name} is not permitted by the policy",
                    details={"algorithm": algorithm.name},
                )
            )
        if binding.key is not None:
            try:
                algorithm.check_key(binding.key, "sign")
            except KeyMismatchError as e:
                errors.append(e)
        return (algorithm,)

    def _check_encrypter(
        self, binding: TokenEncrypter, errors: List[JoseError]
    ) -> Tuple[Algorithm, ...]:
        found = []
        for name, kind in ((binding.algorithm, "key management"), (binding.encryption, "content encryption")):
            try:
                algorithm = self.registry.get(name)
            except UnsupportedAlgorithmError as e:
                errors.append(e)
                continue
            valid_kind = (
                algorithm.is_key_management if kind == "key management" else algorithm.is_content_encryption
            )
            if not valid_kind:
                errors.append(UnsupportedAlgorithmError(f"{name} is not a {kind} algorithm"))
                continue
            if not self.policy.is_permitted(name):
                errors.append(
                    PolicyViolationError(
                        f"Algorithm {name} is not permitted by the policy",
                        details={"algorithm": name},
                    )
                )
            found.append(algorithm)

        if binding.key is None:
            errors.append(MissingSignerError(f"No key bound for {binding.algorithm}"))
            return ()
        if len(found) != 2:
            return ()

        key_alg, enc = found
        try:
            key_alg.check_key(binding.key, key_alg.key_operations[0])
            if key_alg.family is AlgorithmFamily.DIRECT and binding.key.size != enc.min_key_size:
                raise KeyMismatchError(
                    f"dir with {enc.name} requires a {enc.min_key_size}-bit key, got {binding.key.size}"
                )
        except KeyMismatchError as e:
            errors.append(e)
        return key_alg, enc

    def _header(self, errors: List[JoseError]) -> Dict[str, Any]:
        binding = self.binding
        header: Dict[str, Any] = {"alg": binding.algorithm, "typ": config.DEFAULT_TOKEN_TYPE}
        if isinstance(binding, TokenEncrypter):
            header["enc"] = binding.encryption
            if binding.compress:
                header["zip"] = "DEF"
        if binding.key is not None and binding.key.kid is not None:
            header["kid"] = binding.key.kid

        for name, value in self._headers.items():
            if name in _RESERVED_HEADERS:
                errors.append(StructuralError(f"Header parameter {name!r} is set by the builder"))
            elif value is None:
                header.pop(name, None)
            else:
                header[name] = value

        try:
            json.dumps(header, allow_nan=False)
            check_critical(header, understood=header.get("crit") or ())
        except (TypeError, ValueError) as e:
            errors.append(StructuralError(f"Header is not JSON serializable: {e}"))
        except StructuralError as e:
            errors.append(e)
        return header

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def _sign(self, header: Dict[str, Any], claims: Dict[str, Any], algorithm: Algorithm) -> str:
        header_segment = b64encode(canonical_json(header))
        payload_segment = b64encode(canonical_json(claims))
        signature = algorithm.sign(signing_input(header_segment, payload_segment), self.binding.key)
        return f"{header_segment}.{payload_segment}.{b64encode(signature)}"

    def _encrypt(
        self, header: Dict[str, Any], claims: Dict[str, Any], key_alg: Algorithm, enc: Algorithm
    ) -> str:
        header_segment = b64encode(canonical_json(header))
        cek, encrypted_key = key_alg.wrap(self.binding.key, enc.min_key_size)

        plaintext = canonical_json(claims)
        if self.binding.compress:
            compressor = zlib.compressobj(wbits=-15)
            plaintext = compressor.compress(plaintext) + compressor.flush()

        iv, ciphertext, tag = enc.encrypt(cek, plaintext, header_segment.encode("ascii"))
        return ".".join(
            [
                header_segment,
                b64encode(encrypted_key),
                b64encode(iv),
                b64encode(ciphertext),
                b64encode(tag),
            ]
        )


def build(
    binding: Binding,
    claims: Union[ClaimsConfig, Mapping[str, Any]],
    policy: SecurityPolicy = DEFAULT_POLICY,
    **kwargs,
) -> BuildResult:
    """
    Build a token in one call.

    Args:
        binding: TokenSigner or TokenEncrypter.
        claims: ClaimsConfig or a plain mapping.
        policy: SecurityPolicy to enforce.
        **kwargs: ``registry``, ``clock`` and ``headers``, as for TokenBuilder.

    Returns:
        BuildResult with either the compact token or the errors.
    """
    return TokenBuilder(binding, policy=policy, **kwargs).build(claims)
