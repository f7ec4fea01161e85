"""
Compact serialization helpers: base64url segments and canonical JSON.
"""

import json
import re
from typing import Any, Dict, List

from jwcrypto.common import base64url_decode, base64url_encode

from warrant.errors import StructuralError

_B64URL = re.compile(r"^[A-Za-z0-9_-]*$")


def b64encode(data: bytes) -> str:
    """Encode bytes as unpadded base64url text."""
    if not data:
        return ""
    return base64url_encode(data)


def b64decode(segment: str, name: str = "segment") -> bytes:
    """
    Decode one unpadded base64url segment.

    Only the canonical encoding of a byte string is accepted: padding, characters
    outside the URL-safe alphabet and non-zero trailing bits are all rejected,
    so a segment has exactly one textual form.

    Raises:
        StructuralError: If the segment is not canonical base64url.
    """
    if not _B64URL.match(segment) or len(segment) % 4 == 1:
        raise StructuralError(f"Invalid base64url in {name}")
    if not segment:
        return b""
    try:
        data = base64url_decode(segment)
    except ValueError as e:
        raise StructuralError(f"Invalid base64url in {name}: {e}")
    if base64url_encode(data) != segment:
        raise StructuralError(f"Non-canonical base64url in {name}")
    return data


def canonical_json(value: Dict[str, Any]) -> bytes:
    """Serialize to compact JSON with sorted keys."""
    return json.dumps(
        value, sort_keys=True, separators=(",", ":"), allow_nan=False
    ).encode("utf-8")


def _reject_duplicates(pairs: List[tuple]) -> Dict[str, Any]:
    obj: Dict[str, Any] = {}
    for name, value in pairs:
        if name in obj:
            raise StructuralError(f"Duplicate member {name!r}")
        obj[name] = value
    return obj


def _reject_constant(name: str) -> Any:
    raise StructuralError(f"Non-finite number {name} is not JSON")


def parse_json_object(data: bytes, name: str = "segment") -> Dict[str, Any]:
    """
    Parse a JSON object, rejecting duplicate member names and NaN/Infinity.

    Raises:
        StructuralError: If the data is not UTF-8 JSON describing an object.
    """
    try:
        value = json.loads(
            data.decode("utf-8"),
            object_pairs_hook=_reject_duplicates,
            parse_constant=_reject_constant,
        )
    except StructuralError as e:
        raise StructuralError(f"Invalid JSON in {name}: {e.message}")
    except (UnicodeDecodeError, ValueError) as e:
        raise StructuralError(f"Invalid JSON in {name}: {e}")
    if not isinstance(value, dict):
        raise StructuralError(f"{name} must be a JSON object")
    return value


def signing_input(header_segment: str, payload_segment: str) -> bytes:
    """Return the ASCII bytes a JWS signature covers."""
    return f"{header_segment}.{payload_segment}".encode("ascii")
