"""Claim resolution for userinfo payloads.

Claims are arbitrary JSON trees. Paths use dot notation to reach nested
values (``address.locality``); all-digit segments index into lists
(``groups.0``).

Some providers (Zitadel) return user metadata under a reserved claim whose
values are Base64-encoded:

    {"urn:zitadel:iam:user:metadata": {"phone": "MDE3MQ=="}}

Those values are decoded opportunistically. A value that is not valid
Base64 (or not UTF-8 once decoded) is returned as-is, never as an error.
"""

import base64
import binascii
from collections.abc import Mapping
from typing import Any

from oidc_login.settings import DEFAULT_METADATA_CLAIM

_MISSING = object()


def _step(value: Any, segment: str) -> Any:
    if isinstance(value, Mapping):
        return value.get(segment, _MISSING)
    if isinstance(value, list) and segment.isdigit():
        index = int(segment)
        return value[index] if index < len(value) else _MISSING
    return _MISSING


def lookup_claim(claims: Mapping[str, Any], path: str) -> Any:
    """Return the raw value at ``path`` or None when any segment is missing."""
    if not path:
        return None

    value: Any = claims
    for segment in path.split("."):
        value = _step(value, segment)
        if value is _MISSING or value is None:
            return None
    return value


def resolve_claim(claims: Mapping[str, Any], path: str) -> str:
    """Resolve a claim path to a string.

    Args:
        claims: Userinfo claims
        path: Dot-separated claim path

    Returns:
        The string value, or "" when the path is empty, missing, or does not
        end on a string

    Example:
        >>> resolve_claim({"address": {"locality": "Berlin"}}, "address.locality")
        'Berlin'
        >>> resolve_claim({"address": {"locality": "Berlin"}}, "address.missing")
        ''
    """
    value = lookup_claim(claims, path)
    return value if isinstance(value, str) else ""


def decode_metadata_value(value: str) -> str:
    """Strictly Base64-decode a metadata value, falling back to the raw string."""
    try:
        return base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, ValueError):
        return value


def resolve_with_metadata_fallback(
    claims: Mapping[str, Any],
    name: str,
    metadata_claim: str = DEFAULT_METADATA_CLAIM,
) -> str | None:
    """Resolve ``name`` from root claims, then from provider metadata.

    Args:
        claims: Userinfo claims
        name: Claim path, or key inside the metadata claim
        metadata_claim: Reserved claim holding encoded metadata

    Returns:
        Root value if non-empty, else the decoded metadata value (raw when
        decoding fails), else None
    """
    root_value = resolve_claim(claims, name)
    if root_value:
        return root_value

    metadata = claims.get(metadata_claim)
    if isinstance(metadata, Mapping):
        value = metadata.get(name)
        if isinstance(value, str):
            return decode_metadata_value(value)

    return None


def decode_metadata(
    claims: Mapping[str, Any],
    metadata_claim: str = DEFAULT_METADATA_CLAIM,
) -> dict[str, Any]:
    """Return the metadata claim with string values decoded, for display."""
    metadata = claims.get(metadata_claim)
    if not isinstance(metadata, Mapping):
        return {}
    return {
        key: decode_metadata_value(value) if isinstance(value, str) else value
        for key, value in metadata.items()
    }
