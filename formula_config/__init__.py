"""
formula_config -- public entrypoint for engine configuration.

Responsibility:
    Provides the ONLY way to obtain engine settings and the standard formula
    library at runtime.  Services receive these objects through their
    constructors; no other component reads configuration files.

Invariants enforced:
    - The standard library is loaded once per process and path, and is
      immutable afterwards (frozen dataclasses, tuple of definitions).
    - Deterministic loading: the same YAML always yields the same library
      checksum.

Failure modes:
    - ``FileNotFoundError`` -- the requested YAML file does not exist.
    - ``ValueError`` -- schema or formula validation failures.

Audit relevance:
    Every load emits a ``FORMULA_CONFIG_TRACE`` log entry with the library
    version, checksum and formula count, tying dashboard figures back to the
    exact library that produced them.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from formula_config.loader import (
    load_yaml_file,
    parse_engine_settings,
    parse_standard_library,
)
from formula_config.schema import EngineSettings, FormulaCategory, StandardFormulaLibrary
from formula_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
DEFAULT_SETTINGS_PATH = _DEFAULT_CONFIG_DIR / "engine.yaml"
DEFAULT_LIBRARY_PATH = _DEFAULT_CONFIG_DIR / "standard_formulas.yaml"


def get_engine_settings(config_path: Path | None = None) -> EngineSettings:
    """Load engine settings (defaults to ``sets/engine.yaml``)."""
    path = config_path or DEFAULT_SETTINGS_PATH
    settings = parse_engine_settings(load_yaml_file(path))
    _logger.info(
        "FORMULA_CONFIG_TRACE",
        extra={
            "trace_type": "FORMULA_CONFIG_TRACE",
            "config_path": str(path),
            "max_reference_depth": settings.max_reference_depth,
            "concurrency_limit": settings.concurrency_limit,
            "cache_max_entries": settings.cache_max_entries,
        },
    )
    return settings


@lru_cache(maxsize=None)
def get_standard_library(library_path: Path | None = None) -> StandardFormulaLibrary:
    """Load the standard formula library once per path."""
    path = library_path or DEFAULT_LIBRARY_PATH
    library = parse_standard_library(load_yaml_file(path))
    _logger.info(
        "FORMULA_CONFIG_TRACE",
        extra={
            "trace_type": "FORMULA_CONFIG_TRACE",
            "config_path": str(path),
            "library_version": library.version,
            "library_checksum": library.checksum,
            "formula_count": len(library.formulas),
        },
    )
    return library


__all__ = [
    "DEFAULT_LIBRARY_PATH",
    "DEFAULT_SETTINGS_PATH",
    "EngineSettings",
    "FormulaCategory",
    "StandardFormulaLibrary",
    "get_engine_settings",
    "get_standard_library",
]
