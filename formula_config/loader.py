"""
Configuration Loader (``formula_config.loader``).

Responsibility
--------------
Loads YAML files and parses them into typed ``formula_config.schema``
dataclass instances.  Runtime callers go through
``formula_config.get_engine_settings()`` and
``formula_config.get_standard_library()`` instead of calling this directly.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass.
* Unknown settings keys are rejected rather than silently ignored.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the raw
  YAML data for change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Invalid values or formula text  -> ``ValueError`` (``ParseError`` is
  wrapped with the offending formula id).
"""

from __future__ import annotations

from dataclasses import fields
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from formula_config.schema import EngineSettings, FormulaCategory, StandardFormulaLibrary
from formula_engines.parser import parse
from formula_engines.serializer import serialize
from formula_kernel.domain.formula import Benchmarks, FormulaDefinition
from formula_kernel.domain.results import ResultKind
from formula_kernel.exceptions import ParseError
from formula_kernel.utils.hashing import hash_payload


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of parsed YAML data."""
    return hash_payload(data)


def parse_engine_settings(data: dict[str, Any]) -> EngineSettings:
    """
    Parse ``EngineSettings`` from the ``engine`` section of a settings file.

    Raises:
        ValueError: on unknown keys or out-of-range values.
    """
    section = data.get("engine", data)
    known = {f.name for f in fields(EngineSettings)}
    unknown = sorted(set(section) - known)
    if unknown:
        raise ValueError(f"Unknown engine settings: {', '.join(unknown)}")
    return EngineSettings(**section)


def parse_benchmarks(data: dict[str, Any] | None) -> Benchmarks | None:
    """Parse ``{excellent, good, poor}`` thresholds."""
    if not data:
        return None
    return Benchmarks(
        excellent=Decimal(str(data["excellent"])),
        good=Decimal(str(data["good"])),
        poor=Decimal(str(data["poor"])),
    )


def parse_formula_definition(data: dict[str, Any]) -> FormulaDefinition:
    """
    Parse one library entry.

    An entry has either ``expression`` (bracket text) or ``terms``
    (formula-builder term list), never both.

    Raises:
        KeyError: if ``id``, ``name`` or ``category`` is missing.
        ValueError: if the formula body is missing, ambiguous or malformed.
    """
    formula_id = data["id"]
    has_expression = "expression" in data
    has_terms = "terms" in data
    if has_expression == has_terms:
        raise ValueError(f"Formula {formula_id} needs exactly one of 'expression' or 'terms'")

    try:
        ast = parse(data["expression"] if has_expression else data["terms"])
    except ParseError as e:
        raise ValueError(f"Formula {formula_id}: {e}") from e

    try:
        result_kind = ResultKind(data.get("result_kind", ResultKind.AMOUNT.value))
    except ValueError as e:
        raise ValueError(f"Formula {formula_id}: unknown result_kind {data.get('result_kind')!r}") from e

    return FormulaDefinition(
        id=formula_id,
        name=data["name"],
        category=data["category"],
        ast=ast,
        result_kind=result_kind,
        description=data.get("description", ""),
        source_text=data["expression"] if has_expression else serialize(ast),
        version=data.get("version", 1),
        interpretation=data.get("interpretation"),
        benchmarks=parse_benchmarks(data.get("benchmarks")),
    )


def parse_standard_library(data: dict[str, Any]) -> StandardFormulaLibrary:
    """
    Parse the standard library file.

    Raises:
        ValueError: on duplicate ids or unknown categories.
    """
    categories = tuple(
        FormulaCategory(key=key, name=c["name"], description=c.get("description", ""))
        for key, c in (data.get("categories") or {}).items()
    )
    category_keys = {c.key for c in categories}

    formulas: list[FormulaDefinition] = []
    seen: set[str] = set()
    for entry in data.get("formulas") or []:
        definition = parse_formula_definition(entry)
        if definition.id in seen:
            raise ValueError(f"Duplicate standard formula id: {definition.id}")
        if category_keys and definition.category not in category_keys:
            raise ValueError(
                f"Formula {definition.id}: unknown category {definition.category!r}"
            )
        seen.add(definition.id)
        formulas.append(definition)

    return StandardFormulaLibrary(
        version=str(data.get("version", "1")),
        categories=categories,
        formulas=tuple(formulas),
        checksum=compute_checksum(data),
    )
