"""
Warrant Claims - Claim assignment for the builder, the decoded ClaimSet, and
registered-claim validation.

Registered claims have fixed types:

    iss, sub, jti, nonce    string
    aud                     string or list of strings
    exp, nbf, iat           NumericDate (seconds since the epoch)

Anything else is a custom claim and passes through untouched.
"""

import json
import logging
import math
import secrets
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from warrant import config
from warrant.errors import ClaimValidationError

logger = logging.getLogger(__name__)


# =============================================================================
# Registered Claims
# =============================================================================


class ClaimType(str, Enum):
    """Semantic type of a registered claim."""

    STRING = "string"
    STRING_OR_LIST = "string_or_list"
    NUMERIC_DATE = "numeric_date"


REGISTERED_CLAIMS: Dict[str, ClaimType] = {
    "iss": ClaimType.STRING,
    "sub": ClaimType.STRING,
    "aud": ClaimType.STRING_OR_LIST,
    "exp": ClaimType.NUMERIC_DATE,
    "nbf": ClaimType.NUMERIC_DATE,
    "iat": ClaimType.NUMERIC_DATE,
    "jti": ClaimType.STRING,
    "nonce": ClaimType.STRING,
}

TimeValue = Union[int, float, datetime, timedelta]


def _is_number(value: Any) -> bool:
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        # Integers beyond float range
        return False


def check_claim_type(name: str, value: Any) -> Optional[ClaimValidationError]:
    """Return a ``malformed`` error if a registered claim has the wrong type."""
    claim_type = REGISTERED_CLAIMS.get(name)
    if claim_type is None:
        return None

    if claim_type is ClaimType.STRING:
        ok = isinstance(value, str)
    elif claim_type is ClaimType.NUMERIC_DATE:
        ok = _is_number(value)
    else:
        ok = isinstance(value, str) or (
            isinstance(value, list) and all(isinstance(v, str) for v in value)
        )

    if ok:
        return None
    return ClaimValidationError(
        "malformed",
        claim=name,
        message=f"Claim {name!r} must be a {claim_type.value.replace('_', ' ')}",
    )


def to_numeric_date(value: TimeValue, now: float) -> Union[int, float]:
    """
    Convert a time value to a NumericDate.

    Numbers are taken as-is, ``datetime`` values are converted (naive ones are
    read as UTC), and ``timedelta`` values are offsets from ``now``.
    """
    if isinstance(value, timedelta):
        return int(now + value.total_seconds())
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp())
    if _is_number(value):
        return value
    raise TypeError(f"Not a time value: {value!r}")


def generate_nonce() -> str:
    """Return a fresh random nonce from the OS CSPRNG."""
    return secrets.token_urlsafe(config.NONCE_BYTES)


# =============================================================================
# Builder Input
# =============================================================================


@dataclass(frozen=True)
class ClaimsConfig:
    """
    Every claim the builder knows how to set, plus one escape hatch.

    Attributes:
        jti, iss, sub, nonce: String claims.
        aud: A string or a sequence of strings.
        exp, nbf, iat: NumericDate, datetime, or timedelta from build time.
        custom: Unregistered claims, serialized as-is.
        generate_nonce: Add a random "nonce" when none is given.
        generate_iat: Set "iat" to the build time when none is given.

    Example:
        >>> claims = ClaimsConfig(jti="10", exp=timedelta(minutes=5), custom={"role": "admin"})
    """

    jti: Optional[str] = None
    iss: Optional[str] = None
    sub: Optional[str] = None
    aud: Optional[Union[str, Sequence[str]]] = None
    exp: Optional[TimeValue] = None
    nbf: Optional[TimeValue] = None
    iat: Optional[TimeValue] = None
    nonce: Optional[str] = None
    custom: Mapping = field(default_factory=dict)
    generate_nonce: bool = True
    generate_iat: bool = True

    @classmethod
    def from_mapping(cls, claims: Mapping, **options) -> "ClaimsConfig":
        """Split a plain claims dict into registered fields and custom claims."""
        registered = {k: v for k, v in claims.items() if k in REGISTERED_CLAIMS}
        custom = {k: v for k, v in claims.items() if k not in REGISTERED_CLAIMS}
        return cls(custom=custom, **registered, **options)

    def resolve(self, now: float) -> Tuple[Dict[str, Any], List[ClaimValidationError]]:
        """
        Produce the claims dict for a token built at ``now``.

        Returns:
            ``(claims, errors)``. When errors is non-empty the claims must not
            be used.
        """
        errors: List[ClaimValidationError] = []
        claims: Dict[str, Any] = {}

        for name in ("jti", "iss", "sub", "nonce"):
            value = getattr(self, name)
            if value is not None:
                claims[name] = value

        if self.aud is not None:
            # Anything but a str or list/tuple is kept raw and reported as malformed
            claims["aud"] = list(self.aud) if isinstance(self.aud, (list, tuple)) else self.aud

        for name in ("exp", "nbf", "iat"):
            value = getattr(self, name)
            if value is None:
                continue
            try:
                claims[name] = to_numeric_date(value, now)
            except TypeError:
                claims[name] = value  # reported as malformed below

        # Defaults
        if "iat" not in claims and self.generate_iat:
            claims["iat"] = int(now)
        if "nonce" not in claims and self.generate_nonce:
            claims["nonce"] = generate_nonce()

        for name, value in claims.items():
            error = check_claim_type(name, value)
            if error:
                errors.append(error)

        if isinstance(claims.get("aud"), list) and not claims["aud"]:
            errors.append(ClaimValidationError("malformed", "aud", "Claim 'aud' must not be empty"))

        exp, nbf = claims.get("exp"), claims.get("nbf")
        if _is_number(exp) and _is_number(nbf) and exp <= nbf:
            errors.append(
                ClaimValidationError("malformed", "exp", "Claim 'exp' must be after 'nbf'")
            )

        for name, value in self.custom.items():
            if not isinstance(name, str) or not name:
                errors.append(
                    ClaimValidationError("malformed", str(name), "Claim names must be non-empty strings")
                )
            elif name in REGISTERED_CLAIMS:
                errors.append(
                    ClaimValidationError(
                        "malformed", name, f"Registered claim {name!r} must be set by its own field"
                    )
                )
            else:
                try:
                    json.dumps(value, allow_nan=False)
                except (TypeError, ValueError):
                    errors.append(
                        ClaimValidationError(
                            "malformed", name, f"Claim {name!r} is not JSON serializable"
                        )
                    )
                    continue
                claims[name] = value

        return claims, errors


# =============================================================================
# Decoded Claims
# =============================================================================


class ClaimSet(Mapping):
    """
    Read-only claims of a token, with typed accessors for registered claims.

    Compares equal to any mapping with the same items, so
    ``result.claims == {"jti": "10"}`` works.

    Example:
        >>> claims = ClaimSet({"jti": "10", "exp": 1700000000, "role": "admin"})
        >>> claims.jti
        '10'
        >>> claims["role"]
        'admin'
    """

    def __init__(self, claims: Optional[Mapping] = None):
        self._claims: Dict[str, Any] = dict(claims or {})

    def __getitem__(self, name: str) -> Any:
        return self._claims[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._claims)

    def __len__(self) -> int:
        return len(self._claims)

    def __repr__(self) -> str:
        return f"ClaimSet({self._claims!r})"

    def _string(self, name: str) -> Optional[str]:
        value = self._claims.get(name)
        return value if isinstance(value, str) else None

    def _date(self, name: str) -> Optional[datetime]:
        value = self._claims.get(name)
        if not _is_number(value):
            return None
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    @property
    def iss(self) -> Optional[str]:
        return self._string("iss")

    @property
    def sub(self) -> Optional[str]:
        return self._string("sub")

    @property
    def jti(self) -> Optional[str]:
        return self._string("jti")

    @property
    def nonce(self) -> Optional[str]:
        return self._string("nonce")

    @property
    def aud(self) -> Tuple[str, ...]:
        """Audience as a tuple; a single string audience becomes a 1-tuple."""
        value = self._claims.get("aud")
        if isinstance(value, str):
            return (value,)
        if isinstance(value, list):
            return tuple(v for v in value if isinstance(v, str))
        return ()

    @property
    def expires_at(self) -> Optional[datetime]:
        return self._date("exp")

    @property
    def not_before(self) -> Optional[datetime]:
        return self._date("nbf")

    @property
    def issued_at(self) -> Optional[datetime]:
        return self._date("iat")

    @property
    def custom(self) -> Dict[str, Any]:
        """Every claim that is not a registered claim."""
        return {k: v for k, v in self._claims.items() if k not in REGISTERED_CLAIMS}

    def to_dict(self) -> Dict[str, Any]:
        """Return a shallow copy of the claims."""
        return dict(self._claims)


# =============================================================================
# Validation
# =============================================================================


def validate_claims(claims: ClaimSet, policy: Any, now: float) -> List[ClaimValidationError]:
    """
    Check a verified ClaimSet against a policy at time ``now``.

    Every problem is collected; validation never stops at the first one.

    Args:
        claims: Claims from a token whose integrity is already established.
        policy: The SecurityPolicy (skew, required claims, issuer, audience).
        now: Current time in seconds since the epoch.

    Returns:
        A list of ClaimValidationError, empty when the claims are acceptable.
    """
    errors: List[ClaimValidationError] = []
    skew = policy.skew.total_seconds()
    malformed = set()

    for name, value in claims.items():
        error = check_claim_type(name, value)
        if error:
            malformed.add(name)
            errors.append(error)

    exp = claims.get("exp")
    if exp is not None and "exp" not in malformed and now > exp + skew:
        errors.append(ClaimValidationError("expired", "exp", "Token expired"))

    nbf = claims.get("nbf")
    if nbf is not None and "nbf" not in malformed and now < nbf - skew:
        errors.append(ClaimValidationError("not_yet_valid", "nbf", "Token not yet valid"))

    for name in sorted(policy.required_claims):
        if name not in claims:
            errors.append(
                ClaimValidationError("missing", name, f"Required claim {name!r} is missing")
            )

    # An absent iss/aud never satisfies an expectation
    if policy.expected_issuer is not None and claims.get("iss") != policy.expected_issuer:
        errors.append(ClaimValidationError("invalid_issuer", "iss", "Unexpected issuer"))

    if policy.expected_audience is not None and policy.expected_audience not in claims.aud:
        errors.append(ClaimValidationError("invalid_audience", "aud", "Unexpected audience"))

    for error in errors:
        logger.debug(f"Claim validation failed: {error.reason} ({error.claim})")

    return errors
