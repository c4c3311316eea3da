"""Unit tests for deterministic hashing helpers."""

from __future__ import annotations

from circuitforge_repair.utils.hashing import sha256_bytes, sha256_text


def test_sha256_of_empty_input_is_the_known_digest() -> None:
    expected = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"

    assert sha256_bytes(b"") == expected
    assert sha256_text("") == expected


def test_text_digest_uses_utf8_and_distinguishes_sources() -> None:
    source = '<resistor name="R1" resistance="10kΩ" />'

    assert sha256_text(source) == sha256_bytes(source.encode("utf-8"))
    assert sha256_text(source) != sha256_text(source + " ")
    assert len(sha256_text(source)) == 64
