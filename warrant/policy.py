"""
Warrant Security Policy - Immutable decode-time (and build-time) constraints.

A policy is built once and shared. Every "with_*" method returns a new policy
and leaves the original untouched, so one default can serve any number of
unrelated callers and threads.

Example:
    >>> from warrant.policy import DEFAULT_POLICY
    >>> strict = DEFAULT_POLICY.with_algorithm_removed("HS256").with_skew(5)
    >>> "HS256" in DEFAULT_POLICY.permitted_algorithms
    True
    >>> strict.is_permitted("HS256")
    False
"""

from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import FrozenSet, Iterable, Optional, Union

from warrant import config
from warrant.algorithms import DEFAULT_REGISTRY, AlgorithmRegistry

NONE_ALGORITHM = "none"

Duration = Union[timedelta, int, float]


def _as_timedelta(value: Duration) -> timedelta:
    if isinstance(value, bool):
        raise TypeError("Skew must be a timedelta or a number of seconds")
    if not isinstance(value, timedelta):
        value = timedelta(seconds=value)
    if value < timedelta(0):
        raise ValueError("Skew must not be negative")
    return value


@dataclass(frozen=True)
class SecurityPolicy:
    """
    Constraints applied when building and decoding tokens.

    Attributes:
        permitted_algorithms: Algorithm names a token may use (JWS "alg",
            JWE "alg" and "enc").
        allow_none: Whether unsecured "none" tokens are acceptable. Always
            agrees with "none" being in ``permitted_algorithms``.
        skew: Tolerance applied to exp/nbf checks.
        required_claims: Claims that must be present in a decoded token.
        expected_issuer: If set, the "iss" claim must equal it.
        expected_audience: If set, the "aud" claim must contain it.
    """

    permitted_algorithms: FrozenSet[str] = frozenset()
    allow_none: bool = False
    skew: timedelta = field(
        default_factory=lambda: timedelta(seconds=config.DEFAULT_CLOCK_SKEW_SECONDS)
    )
    required_claims: FrozenSet[str] = frozenset()
    expected_issuer: Optional[str] = None
    expected_audience: Optional[str] = None

    def __post_init__(self):
        permitted = frozenset(self.permitted_algorithms)
        if NONE_ALGORITHM in permitted and not self.allow_none:
            raise ValueError("'none' in permitted_algorithms requires allow_none=True")
        if self.allow_none:
            permitted = permitted | {NONE_ALGORITHM}

        object.__setattr__(self, "permitted_algorithms", permitted)
        object.__setattr__(self, "skew", _as_timedelta(self.skew))
        object.__setattr__(self, "required_claims", frozenset(self.required_claims))

    @classmethod
    def default(cls, registry: AlgorithmRegistry = DEFAULT_REGISTRY, **overrides) -> "SecurityPolicy":
        """
        Return the default policy for ``registry``.

        Every registered algorithm except "none" is permitted, "none" is
        refused, and the skew comes from configuration. Keyword arguments
        override individual fields.
        """
        permitted = registry.names() - {NONE_ALGORITHM}
        if overrides.get("allow_none"):
            permitted = permitted | {NONE_ALGORITHM}
        overrides.setdefault("permitted_algorithms", permitted)
        return cls(**overrides)

    def is_permitted(self, algorithm: str) -> bool:
        """Return True if ``algorithm`` may be used under this policy."""
        if algorithm == NONE_ALGORITHM:
            return self.allow_none
        return algorithm in self.permitted_algorithms

    # -------------------------------------------------------------------------
    # Transforms
    # -------------------------------------------------------------------------

    def with_algorithm_removed(self, algorithm: str) -> "SecurityPolicy":
        """Return a copy that no longer permits ``algorithm``."""
        return replace(
            self,
            permitted_algorithms=self.permitted_algorithms - {algorithm},
            allow_none=self.allow_none and algorithm != NONE_ALGORITHM,
        )

    def with_algorithm_added(self, algorithm: str) -> "SecurityPolicy":
        """Return a copy that also permits ``algorithm`` ("none" included)."""
        return replace(
            self,
            permitted_algorithms=self.permitted_algorithms | {algorithm},
            allow_none=self.allow_none or algorithm == NONE_ALGORITHM,
        )

    def with_algorithms(self, algorithms: Iterable[str]) -> "SecurityPolicy":
        """Return a copy permitting exactly ``algorithms``."""
        algorithms = frozenset(algorithms)
        return replace(
            self,
            permitted_algorithms=algorithms,
            allow_none=NONE_ALGORITHM in algorithms,
        )

    def with_skew(self, skew: Duration) -> "SecurityPolicy":
        """Return a copy with a different clock-skew tolerance."""
        return replace(self, skew=_as_timedelta(skew))

    def with_required_claims(self, *claims: str) -> "SecurityPolicy":
        """Return a copy that additionally requires ``claims`` to be present."""
        return replace(self, required_claims=self.required_claims | frozenset(claims))

    def with_issuer(self, issuer: Optional[str]) -> "SecurityPolicy":
        return replace(self, expected_issuer=issuer)

    def with_audience(self, audience: Optional[str]) -> "SecurityPolicy":
        return replace(self, expected_audience=audience)


DEFAULT_POLICY = SecurityPolicy.default()
