"""Unit tests for session and event identifier helpers."""

from __future__ import annotations

import pytest

from circuitforge_repair.domain import ids


def _zero_bytes(size: int) -> bytes:
    return b"\x00" * size


def _ff_bytes(size: int) -> bytes:
    return b"\xff" * size


def test_generate_ulid_no_collision() -> None:
    generated = {ids.generate_ulid() for _ in range(2_000)}
    assert len(generated) == 2_000


def test_ulid_charset_length_and_reject_invalid_chars() -> None:
    ulid_value = ids.generate_ulid(timestamp_ms=123_456, randbytes=_ff_bytes)
    assert len(ulid_value) == ids.ULID_LENGTH
    assert all(char in ids.CROCKFORD_BASE32_ALPHABET for char in ulid_value)

    ids.validate_ulid(ulid_value.lower())

    with pytest.raises(ValueError, match="ulid length must be"):
        ids.validate_ulid("0" * 25)
    with pytest.raises(ValueError, match="invalid ULID character"):
        ids.validate_ulid("U" + "0" * 25)
    with pytest.raises(ValueError, match="overflow"):
        ids.validate_ulid("8" + "0" * 25)


def test_generate_ulid_rejects_out_of_range_timestamp_and_short_randbytes() -> None:
    with pytest.raises(ValueError, match="timestamp_ms out of range"):
        ids.generate_ulid(timestamp_ms=-1)
    with pytest.raises(ValueError, match="randbytes must return exactly"):
        ids.generate_ulid(randbytes=lambda size: b"\x00" * (size - 1))


def test_ulid_timestamp_is_sortable() -> None:
    early = ids.generate_ulid(timestamp_ms=1_000, randbytes=_ff_bytes)
    late = ids.generate_ulid(timestamp_ms=1_001, randbytes=_zero_bytes)
    assert early < late


def test_session_and_event_ids_carry_prefixes() -> None:
    session_id = ids.generate_session_id()
    event_id = ids.generate_event_id()

    assert session_id.startswith("ses-")
    assert event_id.startswith("evt-")
    ids.validate_session_id(session_id)

    with pytest.raises(ValueError, match="expected prefix 'ses-'"):
        ids.validate_session_id(event_id)
    with pytest.raises(ValueError, match="invalid ULID part"):
        ids.validate_session_id("ses-not-a-ulid")


def test_generate_prefixed_id_rejects_bad_prefix() -> None:
    with pytest.raises(ValueError, match="invalid id prefix"):
        ids.generate_prefixed_id("")
    with pytest.raises(ValueError, match="invalid id prefix"):
        ids.generate_prefixed_id("a-b")
