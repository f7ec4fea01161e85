"""
Warrant - A secure-by-default JOSE token engine.

Builds, signs, encrypts, parses, verifies and validates compact JWS/JWE
tokens (JWT). The decoder never trusts a token to choose its own algorithm,
refuses "none" unless explicitly allowed, and never picks a key ambiguously.
"""

__version__ = "0.4.0"

# Build / decode
from .builder import TokenBuilder, TokenSigner, TokenEncrypter, build
from .decoder import TokenDecoder, decode, unverified_header
from .token import Header, Token, BuildResult, DecodeResult
from .claims import ClaimsConfig, ClaimSet

# Algorithms and policy
from .algorithms import Algorithm, AlgorithmFamily, AlgorithmRegistry, DEFAULT_REGISTRY
from .policy import SecurityPolicy, DEFAULT_POLICY

# Key management
from .keys import Key, KeySet, KeyResolver, generate_key

# Errors
from .errors import (
    JoseError,
    StructuralError,
    UnsupportedAlgorithmError,
    KeyMismatchError,
    PolicyViolationError,
    KeyResolutionError,
    UnsupportedKeyTypeError,
    SignatureError,
    ClaimValidationError,
    MissingSignerError,
    InvalidKeyError,
    DuplicateKeyError,
)


__all__ = [
    "__version__",
    # Build / decode
    "TokenBuilder",
    "TokenSigner",
    "TokenEncrypter",
    "build",
    "TokenDecoder",
    "decode",
    "unverified_header",
    "Header",
    "Token",
    "BuildResult",
    "DecodeResult",
    "ClaimsConfig",
    "ClaimSet",
    # Algorithms and policy
    "Algorithm",
    "AlgorithmFamily",
    "AlgorithmRegistry",
    "DEFAULT_REGISTRY",
    "SecurityPolicy",
    "DEFAULT_POLICY",
    # Key management
    "Key",
    "KeySet",
    "KeyResolver",
    "generate_key",
    # Errors
    "JoseError",
    "StructuralError",
    "UnsupportedAlgorithmError",
    "KeyMismatchError",
    "PolicyViolationError",
    "KeyResolutionError",
    "UnsupportedKeyTypeError",
    "SignatureError",
    "ClaimValidationError",
    "MissingSignerError",
    "InvalidKeyError",
    "DuplicateKeyError",
]
