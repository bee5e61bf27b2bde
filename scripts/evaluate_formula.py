#!/usr/bin/env python3
"""
Evaluate a formula against stored trial balances.

Reads trial balance rows (grouped by the client's standard-chart mapping
unless settings or --no-standard-mapping say otherwise) from the database and prints the formatted result
for one fiscal year or a range of years.

Usage:
    python3 scripts/evaluate_formula.py --db sqlite:///ledger.db \\
        --client acme --year 2024 --formula-id equity_ratio
    python3 scripts/evaluate_formula.py --db sqlite:///ledger.db \\
        --client acme --years 2020 2024 --formula "[1] - [10]"
    python3 scripts/evaluate_formula.py --list
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def hline(char: str = "=", width: int = 64) -> str:
    return char * width


def print_library(registry) -> None:
    current = None
    for definition in registry.list_definitions():
        if definition.category != current:
            current = definition.category
            print()
            print(f"  [{current}]")
        print(f"    {definition.id:<22} {definition.name}")
        print(f"    {'':<22} {definition.source_text}")
    print()


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Evaluate a financial formula against stored trial balances.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--db", type=str, help="Database URL")
    parser.add_argument("--client", type=str, help="Client (entity) id; repeat for a group", action="append")
    years = parser.add_mutually_exclusive_group()
    years.add_argument("--year", type=int, help="Fiscal year")
    years.add_argument("--years", type=int, nargs=2, metavar=("START", "END"), help="Fiscal year range")
    formula = parser.add_mutually_exclusive_group()
    formula.add_argument("--formula", type=str, help="Formula text, e.g. \"[1] - [10]\"")
    formula.add_argument("--formula-id", type=str, help="Standard or saved formula id")
    parser.add_argument(
        "--kind", choices=["amount", "percentage", "ratio"], default="amount",
        help="Result kind for --formula (default: amount)",
    )
    parser.add_argument("--version", type=str, default=None, help="Ledger upload version")
    parser.add_argument(
        "--standard-mapping", action=argparse.BooleanOptionalAction, default=None,
        help="Group accounts by the client's standard-chart mapping "
             "(default: use_standard_mapping from engine settings)",
    )
    parser.add_argument("--list", action="store_true", help="List the formula library and exit")
    parser.add_argument("--verbose", action="store_true", help="Emit JSON logs to stderr")
    args = parser.parse_args()

    from formula_config import get_engine_settings, get_standard_library
    from formula_engines.formatting import assess_benchmark, format_result
    from formula_kernel.db.engine import get_session_factory, init_engine_from_url
    from formula_kernel.domain.results import EvaluationResult, ResultKind
    from formula_kernel.exceptions import FormulaError
    from formula_kernel.logging_config import configure_logging
    from formula_services import (
        EvaluationRequest,
        FormulaCalculationService,
        FormulaRegistry,
        FormulaSource,
        SqlFormulaStore,
        SqlLedgerSource,
    )

    if args.verbose:
        configure_logging(level=logging.DEBUG)
    else:
        logging.disable(logging.CRITICAL)

    settings = get_engine_settings()
    library = get_standard_library()

    if args.list:
        print(hline())
        print(f"  FORMULA LIBRARY {library.version}")
        print(hline())
        print_library(FormulaRegistry.from_library(library))
        return 0

    if not (args.db and args.client and (args.formula or args.formula_id)):
        parser.error("--db, --client and one of --formula/--formula-id are required")
    if args.year is None and args.years is None:
        parser.error("one of --year/--years is required")

    # Connect
    try:
        init_engine_from_url(args.db, echo=False)
    except Exception as exc:
        print(f"  ERROR: Cannot connect to database: {exc}", file=sys.stderr)
        return 1

    session_factory = get_session_factory()
    registry = FormulaRegistry.from_library(
        library,
        user=SqlFormulaStore(session_factory),
        max_reference_depth=settings.max_reference_depth,
    )
    service = FormulaCalculationService(
        registry,
        SqlLedgerSource.from_settings(
            session_factory, settings, use_standard_mapping=args.standard_mapping
        ),
        settings=settings,
    )

    if args.formula_id:
        source = FormulaSource.of_id(args.formula_id)
    else:
        source = FormulaSource.of_source(args.formula, ResultKind(args.kind))
    start, end = args.years if args.years else (args.year, args.year)
    if args.years:
        request = EvaluationRequest.series(args.client, start, end, source, args.version)
    else:
        request = EvaluationRequest(tuple(args.client), (start, end), source, args.version)

    try:
        outcome = asyncio.run(service.evaluate(request))
    except FormulaError as exc:
        print(f"  ERROR [{exc.code}]: {exc}", file=sys.stderr)
        return 2

    benchmarks = registry.get_definition(args.formula_id).benchmarks if args.formula_id else None
    points = [(start, outcome)] if isinstance(outcome, EvaluationResult) else [
        (p.year, p.result) for p in outcome
    ]

    print(hline())
    print(f"  {args.formula_id or args.formula}   ({', '.join(args.client)})")
    print(hline("-"))
    for year, result in points:
        line = f"  {year}  {format_result(result, settings.currency_label):>20}"
        if benchmarks is not None and result.is_valid:
            line += f"   {assess_benchmark(result.value, benchmarks).value}"
        if not result.is_valid and result.error is not None:
            line += f"   ({result.error.value})"
        print(line)
        for warning in result.warnings:
            print(f"        warning: {warning.message}")
    print(hline())
    return 0


if __name__ == "__main__":
    sys.exit(main())
