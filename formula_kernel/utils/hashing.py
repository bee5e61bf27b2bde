"""
Deterministic hashing utilities.

Cache keys and configuration checksums must be content-addressed and
reproducible across processes.  This module provides the canonical hashing
functions used throughout.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from formula_kernel.domain.terms import (
    AccountRange,
    AccountRef,
    BinaryOp,
    Constant,
    FormulaRef,
    Grouping,
    Term,
)


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Decimal):
        # Normalize so 1.0 and 1.00 hash identically
        return str(obj.normalize())
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Produces a deterministic JSON representation:
    - Keys are sorted alphabetically
    - No whitespace
    - Consistent handling of Decimal, datetime and enums
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: dict | list) -> str:
    """Hex-encoded SHA-256 of the canonical JSON form of ``payload``."""
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def term_payload(term: Term) -> dict[str, Any]:
    """Plain-data form of a term tree, tagged by node type."""
    match term:
        case AccountRef(code=code):
            return {"t": "ref", "code": code}
        case AccountRange(start=start, end=end):
            return {"t": "range", "start": start, "end": end}
        case Constant(value=value):
            return {"t": "const", "value": value}
        case BinaryOp(left=left, op=op, right=right):
            return {"t": "op", "op": op.value, "l": term_payload(left), "r": term_payload(right)}
        case Grouping(inner=inner):
            return {"t": "group", "inner": term_payload(inner)}
        case FormulaRef(formula_id=formula_id):
            return {"t": "formula", "id": formula_id}
    raise TypeError(f"Not a formula term: {term!r}")


def formula_fingerprint(term: Term, result_kind: Any = None) -> str:
    """
    Content address of a formula body.

    Two formulas with the same AST and result kind share a fingerprint; any
    change to the body produces a new one.  Returns the first 32 hex chars
    of the SHA-256 digest.
    """
    payload = {"ast": term_payload(term), "kind": result_kind}
    return hash_payload(payload)[:32]
