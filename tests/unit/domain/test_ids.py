"""Unit tests for campaign identifiers."""

from __future__ import annotations

import pytest

from maintenance_orchestrator.domain import ids


def _zero_bytes(size: int) -> bytes:
    return b"\x00" * size


def _ff_bytes(size: int) -> bytes:
    return b"\xff" * size


def test_generate_ulid_no_collision_10000() -> None:
    generated = {ids.generate_ulid() for _ in range(10_000)}
    assert len(generated) == 10_000


def test_ulid_charset_and_length() -> None:
    value = ids.generate_ulid(timestamp_ms=123_456, randbytes=_ff_bytes)
    assert len(value) == ids.ULID_LENGTH
    assert all(char in ids.CROCKFORD_BASE32_ALPHABET for char in value)


def test_ulid_sorts_by_timestamp() -> None:
    earlier = ids.generate_ulid(timestamp_ms=1_000, randbytes=_ff_bytes)
    later = ids.generate_ulid(timestamp_ms=1_001, randbytes=_zero_bytes)
    assert earlier < later


def test_ulid_rejects_out_of_range_timestamp_and_short_randomness() -> None:
    with pytest.raises(ValueError, match="timestamp_ms out of range"):
        ids.generate_ulid(timestamp_ms=-1)
    with pytest.raises(ValueError, match="exactly 10 bytes"):
        ids.generate_ulid(timestamp_ms=0, randbytes=lambda size: b"\x00" * (size - 1))


def test_campaign_id_round_trips_validation() -> None:
    campaign_id = ids.generate_campaign_id(timestamp_ms=0, randbytes=_zero_bytes)

    assert campaign_id == "cmp-" + "0" * ids.ULID_LENGTH
    ids.validate_campaign_id(campaign_id)
    ids.validate_campaign_id(ids.generate_campaign_id())


@pytest.mark.parametrize(
    "value",
    ["", "cmp-", "run-" + "0" * 26, "cmp-" + "0" * 25, "cmp-" + "I" * 26, None],
)
def test_validate_campaign_id_rejects_malformed_values(value: object) -> None:
    with pytest.raises(ValueError, match="invalid campaign id"):
        ids.validate_campaign_id(value)  # type: ignore[arg-type]
