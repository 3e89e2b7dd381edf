"""Usage ledger: token and cost counters per provider and feature."""

import logging
import threading
from dataclasses import dataclass, replace
from decimal import Decimal

from ..interfaces import Feature, UsageRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageTotals:
    """Aggregate across every (provider, feature) row."""
    request_count: int
    total_tokens: int
    total_cost: Decimal
    failed_attempts: int


class UsageLedger:
    """Accumulates usage per (provider_id, feature).

    Rows are monotonically non-decreasing until ``reset()``. All mutation
    happens under one lock, so concurrent ``record()`` calls never lose
    an update and ``reset()`` never interleaves with a partial increment.
    """

    def __init__(self):
        self._rows: dict[tuple[str, Feature], UsageRecord] = {}
        self._lock = threading.Lock()

    def record(
        self,
        provider_id: str,
        feature: Feature,
        tokens: int = 0,
        cost: Decimal = Decimal("0"),
    ) -> None:
        """Count one successful request.

        Raises:
            ValueError: If tokens or cost are negative
        """
        cost = Decimal(cost)
        if tokens < 0 or cost < 0:
            raise ValueError("tokens and cost must be >= 0")
        key = (provider_id, feature)
        with self._lock:
            row = self._rows.get(key) or UsageRecord(provider_id=provider_id, feature=feature)
            self._rows[key] = replace(
                row,
                request_count=row.request_count + 1,
                total_tokens=row.total_tokens + tokens,
                total_cost=row.total_cost + cost,
            )

    def record_failure(self, provider_id: str, feature: Feature, attempts: int = 1) -> None:
        """Count failed attempts without crediting a request."""
        if attempts <= 0:
            return
        key = (provider_id, feature)
        with self._lock:
            row = self._rows.get(key) or UsageRecord(provider_id=provider_id, feature=feature)
            self._rows[key] = replace(row, failed_attempts=row.failed_attempts + attempts)

    def get(self, provider_id: str, feature: Feature) -> UsageRecord:
        """Current row for a pair; an all-zero row if never recorded."""
        with self._lock:
            return self._rows.get((provider_id, feature)) or UsageRecord(
                provider_id=provider_id, feature=feature
            )

    def snapshot(self) -> list[UsageRecord]:
        """Immutable copy of all rows, sorted by provider then feature."""
        with self._lock:
            rows = list(self._rows.values())
        return sorted(rows, key=lambda r: (r.provider_id, r.feature.value))

    def totals(self) -> UsageTotals:
        return self._sum(self.snapshot())

    @staticmethod
    def _sum(rows) -> UsageTotals:
        return UsageTotals(
            request_count=sum(r.request_count for r in rows),
            total_tokens=sum(r.total_tokens for r in rows),
            total_cost=sum((r.total_cost for r in rows), Decimal("0")),
            failed_attempts=sum(r.failed_attempts for r in rows),
        )

    def reset(self) -> UsageTotals:
        """Zero every row atomically.

        Returns:
            Totals of the rows as they stood at the instant of the reset
        """
        with self._lock:
            cleared = self._sum(list(self._rows.values()))
            self._rows = {
                key: UsageRecord(provider_id=row.provider_id, feature=row.feature)
                for key, row in self._rows.items()
            }
        logger.info("Usage ledger reset")
        return cleared
