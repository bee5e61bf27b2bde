"""
formula_services.request_gate -- Newest request wins.

Responsibility:
    A dashboard widget re-requests its figures whenever the user changes a
    selection.  Responses can arrive out of order, and a slow response for
    an old selection must not overwrite the newer one.

    ``LatestRequestGate`` hands out increasing tickets per channel (one
    channel per widget).  ``WidgetSubscription`` submits computations
    through the gate and publishes a result only if its ticket is still the
    newest for the channel when the result arrives.

Invariants enforced:
    - A superseded result is discarded, never published.  The computation
      is not cancelled, so it still populates the result cache.
    - Tickets are strictly increasing across the whole gate.
"""

from __future__ import annotations

import itertools
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from formula_kernel.logging_config import get_logger

logger = get_logger("services.request_gate")

T = TypeVar("T")


class LatestRequestGate:
    """Per-channel request numbering."""

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._latest: dict[str, int] = {}

    def issue(self, channel: str) -> int:
        """Start a new request on ``channel``, superseding earlier ones."""
        ticket = next(self._counter)
        self._latest[channel] = ticket
        return ticket

    def is_current(self, channel: str, ticket: int) -> bool:
        return self._latest.get(channel) == ticket

    def latest(self, channel: str) -> int | None:
        return self._latest.get(channel)

    def close(self, channel: str) -> None:
        """Forget ``channel``; every outstanding ticket becomes stale."""
        self._latest.pop(channel, None)


class WidgetSubscription(Generic[T]):
    """
    The published state of one widget.

    ``listener`` is called with every published result.
    """

    def __init__(
        self,
        channel: str,
        gate: LatestRequestGate | None = None,
        listener: Callable[[T], None] | None = None,
    ):
        self.channel = channel
        self._gate = gate or LatestRequestGate()
        self._listener = listener
        self.latest: T | None = None
        self.published = 0
        self.discarded = 0

    async def submit(self, compute: Callable[[], Awaitable[T]]) -> T | None:
        """
        Run ``compute`` as the newest request of this widget.

        Returns the result if it was published, None if a newer request
        superseded it while it ran.
        """
        ticket = self._gate.issue(self.channel)
        result = await compute()

        if not self._gate.is_current(self.channel, ticket):
            self.discarded += 1
            logger.debug(
                "stale_result_discarded",
                extra={"channel": self.channel, "ticket": ticket},
            )
            return None

        self.latest = result
        self.published += 1
        if self._listener is not None:
            self._listener(result)
        return result

    def close(self) -> None:
        self._gate.close(self.channel)
