# warrant/config.py
"""
Centralized configuration for Warrant.

All configurable values are read from environment variables with sensible defaults.
They are read once at import time; policies and keys built afterwards copy the
values they need, so changing the environment later has no effect on them.

Usage:
    from warrant.config import DEFAULT_CLOCK_SKEW_SECONDS

Environment Variables:
    WARRANT_CLOCK_SKEW_SECONDS: Default policy clock skew (default: 0)
    WARRANT_NONCE_BYTES: Random bytes in a generated nonce (default: 16)
    WARRANT_MIN_RSA_KEY_BITS: Smallest accepted RSA modulus (default: 2048)
    WARRANT_MAX_TOKEN_LENGTH: Longest compact token the decoder parses (default: 65536)
    WARRANT_MAX_DECOMPRESSED_BYTES: Inflation cap for zip=DEF payloads (default: 262144)
    WARRANT_DEFAULT_TOKEN_TYPE: Default "typ" header (default: JWT)
"""

import os
from typing import Final

# =============================================================================
# Claim Validation
# =============================================================================

# Tolerance applied to exp/nbf checks by the default policy
DEFAULT_CLOCK_SKEW_SECONDS: Final[int] = int(os.getenv("WARRANT_CLOCK_SKEW_SECONDS", "0"))

# Entropy of the nonce claim the builder generates
NONCE_BYTES: Final[int] = int(os.getenv("WARRANT_NONCE_BYTES", "16"))

# =============================================================================
# Key Requirements
# =============================================================================

MIN_RSA_KEY_BITS: Final[int] = int(os.getenv("WARRANT_MIN_RSA_KEY_BITS", "2048"))

# =============================================================================
# Decoder Limits
# =============================================================================

MAX_TOKEN_LENGTH: Final[int] = int(os.getenv("WARRANT_MAX_TOKEN_LENGTH", "65536"))

# Guards against compression bombs in JWE payloads
MAX_DECOMPRESSED_BYTES: Final[int] = int(os.getenv("WARRANT_MAX_DECOMPRESSED_BYTES", "262144"))

# =============================================================================
# Serialization
# =============================================================================

DEFAULT_TOKEN_TYPE: Final[str] = os.getenv("WARRANT_DEFAULT_TOKEN_TYPE", "JWT")


# =============================================================================
# Configuration Summary (for debugging)
# =============================================================================

def print_config() -> None:
    """Print current configuration (useful for debugging)."""
    print("Warrant Configuration:")
    print(f"  DEFAULT_CLOCK_SKEW_SECONDS: {DEFAULT_CLOCK_SKEW_SECONDS}")
    print(f"  NONCE_BYTES:                {NONCE_BYTES}")
    print(f"  MIN_RSA_KEY_BITS:           {MIN_RSA_KEY_BITS}")
    print(f"  MAX_TOKEN_LENGTH:           {MAX_TOKEN_LENGTH}")
    print(f"  MAX_DECOMPRESSED_BYTES:     {MAX_DECOMPRESSED_BYTES}")
    print(f"  DEFAULT_TOKEN_TYPE:         {DEFAULT_TOKEN_TYPE}")


if __name__ == "__main__":
    print_config()
