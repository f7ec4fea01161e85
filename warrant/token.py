"""
Warrant Tokens - Header, Token and the result types returned by build/decode.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Type

from warrant.claims import ClaimSet
from warrant.errors import JoseError, StructuralError

REGISTERED_HEADERS = ("alg", "kid", "typ", "cty", "jku", "enc", "zip", "crit")

_STRING_HEADERS = ("alg", "kid", "typ", "cty", "jku", "enc", "zip")

SUPPORTED_COMPRESSION = ("DEF",)


# =============================================================================
# Header
# =============================================================================


@dataclass(frozen=True)
class Header:
    """
    A JOSE protected header.

    Unrecognized parameters are kept in ``extra`` and serialized back unchanged.
    """

    alg: str
    kid: Optional[str] = None
    typ: Optional[str] = None
    cty: Optional[str] = None
    jku: Optional[str] = None
    enc: Optional[str] = None
    zip: Optional[str] = None
    crit: Optional[Tuple[str, ...]] = None
    extra: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self):
        if self.crit is not None:
            object.__setattr__(self, "crit", tuple(self.crit))
        object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Header":
        """
        Create a header from its JSON object.

        Raises:
            StructuralError: If ``alg`` is missing or a parameter has the wrong type.
        """
        if "alg" not in data:
            raise StructuralError("Header is missing 'alg'")
        for name in _STRING_HEADERS:
            if name in data and not isinstance(data[name], str):
                raise StructuralError(f"Header parameter {name!r} must be a string")

        crit = data.get("crit")
        if crit is not None:
            if not isinstance(crit, list) or not crit or not all(isinstance(c, str) for c in crit):
                raise StructuralError("Header parameter 'crit' must be a non-empty list of strings")

        known = {name: data[name] for name in REGISTERED_HEADERS if name in data}
        extra = {k: v for k, v in data.items() if k not in REGISTERED_HEADERS}
        return cls(**known, extra=extra)

    def to_dict(self) -> Dict[str, Any]:
        """Return the header as a JSON-ready dict, omitting unset parameters."""
        data: Dict[str, Any] = dict(self.extra)
        for name in REGISTERED_HEADERS:
            value = getattr(self, name)
            if value is not None:
                data[name] = list(value) if name == "crit" else value
        return data

    def get(self, name: str, default: Any = None) -> Any:
        """Look up any parameter, registered or extra."""
        if name in REGISTERED_HEADERS:
            value = getattr(self, name)
            return default if value is None else value
        return self.extra.get(name, default)


def check_critical(header: Mapping[str, Any], understood: Iterable[str] = ()) -> None:
    """
    Enforce the ``crit`` rules of RFC 7515 section 4.1.11.

    Raises:
        StructuralError: If ``crit`` names a registered parameter, a parameter
            absent from the header, or an extension not in ``understood``.
    """
    crit = header.get("crit")
    if crit is None:
        return
    if not isinstance(crit, (list, tuple)) or not crit:
        raise StructuralError("Header parameter 'crit' must be a non-empty list of strings")

    understood = set(understood)
    for name in crit:
        if not isinstance(name, str):
            raise StructuralError("Header parameter 'crit' must be a non-empty list of strings")
        if name in REGISTERED_HEADERS:
            raise StructuralError(f"Registered parameter {name!r} may not be critical")
        if name not in header:
            raise StructuralError(f"Critical parameter {name!r} is missing from the header")
        if name not in understood:
            raise StructuralError(
                f"Unsupported critical extension: {name!r}", details={"extension": name}
            )


# =============================================================================
# Token
# =============================================================================


@dataclass(frozen=True)
class Token:
    """
    A decoded token whose integrity has been established.

    JWS tokens carry ``signature``; JWE tokens carry ``encrypted_key``,
    ``iv``, ``ciphertext`` and ``tag``.
    """

    header: Header
    claims: ClaimSet = field(hash=False)
    compact: str
    signature: bytes = b""
    encrypted_key: bytes = b""
    iv: bytes = b""
    ciphertext: bytes = b""
    tag: bytes = b""

    @property
    def is_encrypted(self) -> bool:
        return self.header.enc is not None

    def __str__(self) -> str:
        return self.compact


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class BuildResult:
    """
    Outcome of building a token: either a compact string or a non-empty error tuple.

    Example:
        >>> result = build(TokenSigner("HS256", key), {"jti": "10"})
        >>> if result.ok:
        ...     send(result.token)
    """

    token: Optional[str] = None
    errors: Tuple[JoseError, ...] = ()

    @property
    def ok(self) -> bool:
        return self.token is not None and not self.errors

    def unwrap(self) -> str:
        """Return the token, or raise the first error."""
        if self.errors:
            raise self.errors[0]
        return self.token


@dataclass(frozen=True)
class DecodeResult:
    """
    Outcome of decoding a token.

    ``token`` is None when parsing or verification failed; in that case no
    claims are exposed at all. When only claim validation failed, ``token``
    is present (its integrity is established) alongside the claim errors.
    """

    token: Optional[Token] = None
    errors: Tuple[JoseError, ...] = ()

    @property
    def valid(self) -> bool:
        """True only when the token verified and every claim check passed."""
        return self.token is not None and not self.errors

    @property
    def claims(self) -> Optional[ClaimSet]:
        return self.token.claims if self.token is not None else None

    @property
    def header(self) -> Optional[Header]:
        return self.token.header if self.token is not None else None

    def has_error(self, error_type: Type[JoseError]) -> bool:
        """Return True if any error is an instance of ``error_type``."""
        return any(isinstance(e, error_type) for e in self.errors)

    def unwrap(self) -> Token:
        """Return the fully valid token, or raise the first error."""
        if self.errors:
            raise self.errors[0]
        return self.token
