"""
formula_services.ledger_source -- Where ledger snapshots come from.

Responsibility:
    ``LedgerSource.fetch(entity_id, fiscal_year, version)`` is the only I/O
    the calculation service performs.  It returns a ``LedgerSnapshot`` or
    raises ``MissingLedgerDataError``.

Implementations:
    InMemoryLedgerSource  -- fixed snapshots, optional simulated latency;
                             used by tests and demos.
    SqlLedgerSource       -- trial balance rows via ``LedgerSelector``; the
                             blocking query runs in a worker thread.

Invariants enforced:
    - ``version=None`` applies no version filter.
    - Fetches are cancellable at their await point.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import Protocol, runtime_checkable

from sqlalchemy.orm import Session, sessionmaker

from formula_config.schema import EngineSettings
from formula_kernel.domain.ledger import LedgerSnapshot
from formula_kernel.exceptions import MissingLedgerDataError
from formula_kernel.logging_config import get_logger
from formula_kernel.selectors.ledger_selector import LedgerSelector

logger = get_logger("services.ledger_source")


@runtime_checkable
class LedgerSource(Protocol):
    """Async provider of ledger snapshots."""

    async def fetch(
        self, entity_id: str, fiscal_year: int, version: str | None = None
    ) -> LedgerSnapshot: ...


class InMemoryLedgerSource:
    """
    Ledger source over snapshots held in memory.

    With ``version=None`` the most recently added snapshot for the
    entity and year is returned.
    """

    def __init__(self, snapshots: Iterable[LedgerSnapshot] = (), latency: float = 0.0):
        self._snapshots: dict[tuple[str, int], list[LedgerSnapshot]] = {}
        self.latency = latency
        self.fetch_count = 0
        for snapshot in snapshots:
            self.add(snapshot)

    def add(self, snapshot: LedgerSnapshot) -> None:
        key = (snapshot.entity_id, snapshot.fiscal_year)
        self._snapshots.setdefault(key, []).append(snapshot)

    async def fetch(
        self, entity_id: str, fiscal_year: int, version: str | None = None
    ) -> LedgerSnapshot:
        self.fetch_count += 1
        if self.latency:
            await asyncio.sleep(self.latency)

        candidates = self._snapshots.get((entity_id, fiscal_year), [])
        if version is not None:
            candidates = [s for s in candidates if s.version == version]
        if not candidates:
            raise MissingLedgerDataError(entity_id, fiscal_year, version)
        return candidates[-1]


class SqlLedgerSource:
    """Ledger source over stored trial balance rows."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        use_standard_mapping: bool = False,
    ):
        self._session_factory = session_factory
        self._use_standard_mapping = use_standard_mapping

    @classmethod
    def from_settings(
        cls,
        session_factory: sessionmaker[Session],
        settings: EngineSettings,
        use_standard_mapping: bool | None = None,
    ) -> SqlLedgerSource:
        """
        Build a source whose mapping mode follows ``settings``.

        An explicit ``use_standard_mapping`` (e.g. from a CLI flag) wins over
        ``settings.use_standard_mapping``.
        """
        if use_standard_mapping is None:
            use_standard_mapping = settings.use_standard_mapping
        return cls(session_factory, use_standard_mapping=use_standard_mapping)

    @property
    def use_standard_mapping(self) -> bool:
        return self._use_standard_mapping

    async def fetch(
        self, entity_id: str, fiscal_year: int, version: str | None = None
    ) -> LedgerSnapshot:
        return await asyncio.to_thread(self._fetch, entity_id, fiscal_year, version)

    def _fetch(self, entity_id: str, fiscal_year: int, version: str | None) -> LedgerSnapshot:
        with self._session_factory() as session:
            snapshot = LedgerSelector(session).snapshot(
                entity_id,
                fiscal_year,
                version,
                use_standard_mapping=self._use_standard_mapping,
            )
        logger.debug(
            "ledger_fetched",
            extra={
                "entity_id": entity_id,
                "fiscal_year": fiscal_year,
                "balance_count": len(snapshot),
            },
        )
        return snapshot

    def available_years(self, entity_id: str) -> list[int]:
        with self._session_factory() as session:
            return LedgerSelector(session).available_years(entity_id)
