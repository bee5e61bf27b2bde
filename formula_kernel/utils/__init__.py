"""Utility modules for the formula kernel."""

from formula_kernel.utils.hashing import (
    canonicalize_json,
    formula_fingerprint,
    hash_payload,
)

__all__ = [
    "canonicalize_json",
    "formula_fingerprint",
    "hash_payload",
]
