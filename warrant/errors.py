"""
Warrant Errors - The error kinds reported by the token engine.

Build and decode never raise these; they return them inside a result object
so the caller always sees every problem. Construction of keys, key sets,
policies and registries raises them directly.
"""

from typing import Any, Dict, Optional


class JoseError(Exception):
    """Base class for every error the engine reports."""

    code = "jose_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a dictionary suitable for an API error body."""
        return {"code": self.code, "message": self.message, "details": self.details}


class StructuralError(JoseError):
    """Malformed segment count, base64, JSON, or unrecognized critical extension."""

    code = "structural_error"


class UnsupportedAlgorithmError(JoseError):
    """The algorithm is not registered, or does not offer the requested operation."""

    code = "unsupported_algorithm"


class KeyMismatchError(JoseError):
    """The key does not satisfy the algorithm's key type, size or usage rules."""

    code = "key_mismatch"


class PolicyViolationError(JoseError):
    """The algorithm is not permitted, or differs from the one the caller expects."""

    code = "policy_violation"


class KeyResolutionError(JoseError):
    """No key, or more than one key, matches the token."""

    code = "key_resolution_error"


class UnsupportedKeyTypeError(KeyResolutionError):
    """The key type (or curve) is not one the engine can use."""

    code = "unsupported_key_type"


class SignatureError(JoseError):
    """Integrity check failed: bad signature, MAC, key unwrap or AEAD tag."""

    code = "signature_error"


class ClaimValidationError(JoseError):
    """
    A claim failed validation.

    Attributes:
        reason: Short machine-readable reason, one of ``expired``,
            ``not_yet_valid``, ``missing``, ``malformed``, ``invalid_issuer``
            or ``invalid_audience``.
        claim: Name of the offending claim, if any.
    """

    code = "claim_validation_error"

    def __init__(self, reason: str, claim: Optional[str] = None, message: Optional[str] = None):
        self.reason = reason
        self.claim = claim
        details: Dict[str, Any] = {"reason": reason}
        if claim is not None:
            details["claim"] = claim
        super().__init__(message or reason, details)


class MissingSignerError(JoseError):
    """The builder has no key to sign with and an unsigned token is not allowed."""

    code = "missing_signer"


class InvalidKeyError(JoseError, ValueError):
    """A key or key set failed validation at construction."""

    code = "invalid_key"


class DuplicateKeyError(InvalidKeyError):
    """Two keys in one key set share a ``kid`` and a key type."""

    code = "duplicate_key"
