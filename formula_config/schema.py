"""
Formula engine configuration schema.

Defines the human-authored, reviewable configuration artifacts.  YAML files
under ``sets/`` are parsed into these types by ``formula_config.loader``.

Key distinction:
  EngineSettings          = runtime tuning (concurrency, cache, depth bound)
  StandardFormulaLibrary  = the preloaded, immutable formula definitions
"""

from __future__ import annotations

from dataclasses import dataclass

from formula_kernel.domain.formula import FormulaDefinition


@dataclass(frozen=True)
class EngineSettings:
    """Runtime settings for the calculation services."""

    # Formula registry: nesting bound for {formula_id} references
    max_reference_depth: int = 32
    # Concurrent ledger fetches per series/aggregate request
    concurrency_limit: int = 8
    # Result cache bounds; None disables the bound
    cache_max_entries: int | None = 4096
    cache_ttl_seconds: float | None = None
    # Amount display prefix
    currency_label: str = "kr"
    # Group ledger rows by mapped standard number before evaluation
    use_standard_mapping: bool = True

    def __post_init__(self) -> None:
        if self.max_reference_depth < 1:
            raise ValueError(f"max_reference_depth must be >= 1, got {self.max_reference_depth}")
        if self.concurrency_limit < 1:
            raise ValueError(f"concurrency_limit must be >= 1, got {self.concurrency_limit}")
        if self.cache_max_entries is not None and self.cache_max_entries < 1:
            raise ValueError(f"cache_max_entries must be >= 1, got {self.cache_max_entries}")
        if self.cache_ttl_seconds is not None and self.cache_ttl_seconds <= 0:
            raise ValueError(f"cache_ttl_seconds must be > 0, got {self.cache_ttl_seconds}")


@dataclass(frozen=True)
class FormulaCategory:
    """A display grouping for library formulas."""

    key: str
    name: str
    description: str = ""


@dataclass(frozen=True)
class StandardFormulaLibrary:
    """The standard formula library as loaded from YAML."""

    version: str
    categories: tuple[FormulaCategory, ...]
    formulas: tuple[FormulaDefinition, ...]
    checksum: str
