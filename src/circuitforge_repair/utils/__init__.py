"""Utility exports for hashing and concurrency helpers."""

from circuitforge_repair.utils.concurrency import CancellationToken, run_with_timeout
from circuitforge_repair.utils.hashing import sha256_bytes, sha256_text

__all__ = [
    "CancellationToken",
    "run_with_timeout",
    "sha256_bytes",
    "sha256_text",
]
