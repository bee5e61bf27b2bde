"""
formula_engines.tracer -- FORMULA_ENGINE_TRACE records for pure engines.

Responsibility:
    ``@traced_engine`` wraps an engine entry point and emits one DEBUG
    record per call: which engine ran, a fingerprint of the inputs that
    determine its output, how long it took and, for evaluations, whether
    the result was valid.  Together with the ``formula_key`` bound in
    ``LogContext`` this lets a widget value be traced back to the exact
    formula tree that produced it.

Architecture position:
    Engines -- support for the pure calculation layer.  Logging is the only
    side effect; the wrapped function's result and exceptions pass through
    untouched.

Usage:
    @traced_engine("formula_evaluator", "1.0", fingerprint_fields=("ast",))
    def evaluate(ast, ledger, result_kind=ResultKind.AMOUNT):
        ...
"""

from __future__ import annotations

import functools
import inspect
import logging
import time
from collections.abc import Callable
from typing import Any

from formula_kernel.domain.results import EvaluationResult
from formula_kernel.domain.terms import Term
from formula_kernel.logging_config import get_logger
from formula_kernel.utils.hashing import hash_payload, term_payload

_logger = get_logger("engines.tracer")

_FINGERPRINT_LENGTH = 16


def _fingerprint_value(value: Any) -> Any:
    # Term trees hash by structure so equal formulas share a fingerprint.
    if isinstance(value, Term):
        return term_payload(value)
    if isinstance(value, (list, tuple)):
        return [_fingerprint_value(v) for v in value]
    return value if isinstance(value, (str, int, float, type(None))) else str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: dict[str, Any],
) -> str:
    """Short SHA-256 prefix over the named arguments; absent ones hash as null."""
    payload = {name: _fingerprint_value(arguments.get(name)) for name in fingerprint_fields}
    return hash_payload(payload)[:_FINGERPRINT_LENGTH]


def _outcome(result: Any) -> dict[str, Any]:
    if isinstance(result, EvaluationResult):
        return {
            "is_valid": result.is_valid,
            "error": result.error.value if result.error else None,
            "warning_count": len(result.warnings),
        }
    return {}


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """
    Emit FORMULA_ENGINE_TRACE around each call of the decorated engine.

    Args:
        engine_name: Engine identifier, e.g. "formula_evaluator".
        engine_version: Bumped when the engine's semantics change.
        fingerprint_fields: Parameter names hashed into ``input_fingerprint``.
    """

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            if not _logger.isEnabledFor(logging.DEBUG):
                return func(*args, **kwargs)

            bound = signature.bind_partial(*args, **kwargs)
            bound.apply_defaults()
            fingerprint = compute_input_fingerprint(fingerprint_fields, dict(bound.arguments))

            started = time.perf_counter()
            result = func(*args, **kwargs)
            elapsed_ms = round((time.perf_counter() - started) * 1000, 3)

            _logger.debug(
                "FORMULA_ENGINE_TRACE",
                extra={
                    "trace_type": "FORMULA_ENGINE_TRACE",
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fingerprint,
                    "duration_ms": elapsed_ms,
                    **_outcome(result),
                },
            )
            return result

        return wrapper

    return decorator
