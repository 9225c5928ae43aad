"""Sortable identifiers for campaign invocations."""

from __future__ import annotations

import re
import secrets
import time
from collections.abc import Callable
from typing import Final

CROCKFORD_BASE32_ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
ULID_LENGTH: Final[int] = 26
ULID_RANDOM_BYTES: Final[int] = 10
ULID_MAX_TIMESTAMP_MS: Final[int] = (1 << 48) - 1
CAMPAIGN_ID_PREFIX: Final[str] = "cmp"

_CAMPAIGN_ID_RE: Final[re.Pattern[str]] = re.compile(
    rf"^{CAMPAIGN_ID_PREFIX}-[{CROCKFORD_BASE32_ALPHABET}]{{{ULID_LENGTH}}}$"
)

_RandBytes = Callable[[int], bytes]


def generate_ulid(
    *,
    timestamp_ms: int | None = None,
    randbytes: _RandBytes | None = None,
) -> str:
    """Generate a ULID as a 26-character uppercase Crockford Base32 string."""
    ts_ms = time.time_ns() // 1_000_000 if timestamp_ms is None else timestamp_ms
    if not 0 <= ts_ms <= ULID_MAX_TIMESTAMP_MS:
        raise ValueError(
            f"timestamp_ms out of range: expected 0..{ULID_MAX_TIMESTAMP_MS}, got {ts_ms}"
        )
    raw = bytes((secrets.token_bytes if randbytes is None else randbytes)(ULID_RANDOM_BYTES))
    if len(raw) != ULID_RANDOM_BYTES:
        raise ValueError(f"randbytes must return exactly {ULID_RANDOM_BYTES} bytes")
    return _encode_crockford_base32((ts_ms << 80) | int.from_bytes(raw, "big"), ULID_LENGTH)


def generate_campaign_id(
    *, timestamp_ms: int | None = None, randbytes: _RandBytes | None = None
) -> str:
    return f"{CAMPAIGN_ID_PREFIX}-{generate_ulid(timestamp_ms=timestamp_ms, randbytes=randbytes)}"


def validate_campaign_id(id_str: str) -> None:
    if not isinstance(id_str, str) or _CAMPAIGN_ID_RE.fullmatch(id_str) is None:
        raise ValueError(f"invalid campaign id {id_str!r}; expected {CAMPAIGN_ID_PREFIX}-<ULID>")


def _encode_crockford_base32(value: int, length: int) -> str:
    if value >> (5 * length):
        raise ValueError(f"value does not fit into {length} Crockford Base32 characters")
    return "".join(
        CROCKFORD_BASE32_ALPHABET[(value >> shift) & 0x1F]
        for shift in range(5 * (length - 1), -1, -5)
    )


__all__ = [
    "CAMPAIGN_ID_PREFIX",
    "CROCKFORD_BASE32_ALPHABET",
    "ULID_LENGTH",
    "generate_campaign_id",
    "generate_ulid",
    "validate_campaign_id",
]
