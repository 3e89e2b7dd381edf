"""Interaction memory: recent AI interactions folded into prompt context.

Interactions are append-only and time-bounded. ``sweep()`` removes rows
older than the retention window (30 days by default).
"""

import asyncio
import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Optional

from ..interfaces import Feature, Interaction, utcnow

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 30


class InteractionStore(ABC):
    """Storage backend for interactions.

    Stores with ``blocking = True`` do I/O on ``add``; the memory moves
    those writes off the event loop.
    """

    blocking = False

    @abstractmethod
    def add(self, interaction: Interaction) -> None:
        """Append one interaction."""

    @abstractmethod
    def latest(self, feature: Feature, limit: int) -> list[Interaction]:
        """Most recent interactions for a feature, newest first."""

    @abstractmethod
    def since(self, cutoff: datetime) -> list[Interaction]:
        """Interactions at or after cutoff, newest first."""

    @abstractmethod
    def delete_before(self, cutoff: datetime) -> int:
        """Delete interactions strictly older than cutoff."""

    @abstractmethod
    def count(self) -> int:
        """Number of stored interactions."""

    def close(self) -> None:
        pass


class InMemoryInteractionStore(InteractionStore):
    """List-backed store for tests and session-scoped use."""

    def __init__(self):
        self._rows: list[Interaction] = []
        self._lock = threading.Lock()

    def add(self, interaction: Interaction) -> None:
        with self._lock:
            self._rows.append(interaction)

    def latest(self, feature: Feature, limit: int) -> list[Interaction]:
        with self._lock:
            rows = [r for r in self._rows if r.feature == feature]
        rows.sort(key=lambda r: r.timestamp, reverse=True)
        return rows[:limit]

    def since(self, cutoff: datetime) -> list[Interaction]:
        with self._lock:
            rows = [r for r in self._rows if r.timestamp >= cutoff]
        rows.sort(key=lambda r: r.timestamp, reverse=True)
        return rows

    def delete_before(self, cutoff: datetime) -> int:
        with self._lock:
            before = len(self._rows)
            self._rows = [r for r in self._rows if r.timestamp >= cutoff]
            return before - len(self._rows)

    def count(self) -> int:
        with self._lock:
            return len(self._rows)


class SQLiteInteractionStore(InteractionStore):
    """SQLite-backed store that survives restarts.

    Note: All methods are synchronous. Inside an event loop,
    ``InteractionMemory.record_nowait`` runs inserts in a worker thread.
    """

    blocking = True

    def __init__(self, db_path: str):
        """Initialize the store.

        Args:
            db_path: Path to the SQLite database file. Created if missing.
        """
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self._ensure_initialized()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _ensure_initialized(self) -> None:
        conn = self._get_conn()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS interactions (
                id TEXT PRIMARY KEY,
                timestamp TEXT NOT NULL,
                feature TEXT NOT NULL,
                query TEXT NOT NULL,
                response TEXT NOT NULL,
                metadata TEXT NOT NULL DEFAULT '{}'
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_interactions_feature_ts
            ON interactions (feature, timestamp)
        """)
        conn.commit()

    def _row_to_interaction(self, row: sqlite3.Row) -> Interaction:
        return Interaction(
            id=row["id"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
            feature=Feature(row["feature"]),
            query=row["query"],
            response=row["response"],
            metadata=json.loads(row["metadata"]),
        )

    def add(self, interaction: Interaction) -> None:
        with self._lock:
            conn = self._get_conn()
            conn.execute(
                "INSERT INTO interactions (id, timestamp, feature, query, response, metadata) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    interaction.id,
                    interaction.timestamp.isoformat(),
                    interaction.feature.value,
                    interaction.query,
                    interaction.response,
                    json.dumps(interaction.metadata, default=str),
                ),
            )
            conn.commit()

    def latest(self, feature: Feature, limit: int) -> list[Interaction]:
        with self._lock:
            rows = self._get_conn().execute(
                "SELECT * FROM interactions WHERE feature = ? "
                "ORDER BY timestamp DESC LIMIT ?",
                (feature.value, limit),
            ).fetchall()
        return [self._row_to_interaction(r) for r in rows]

    def since(self, cutoff: datetime) -> list[Interaction]:
        with self._lock:
            rows = self._get_conn().execute(
                "SELECT * FROM interactions WHERE timestamp >= ? ORDER BY timestamp DESC",
                (cutoff.isoformat(),),
            ).fetchall()
        return [self._row_to_interaction(r) for r in rows]

    def delete_before(self, cutoff: datetime) -> int:
        with self._lock:
            conn = self._get_conn()
            cursor = conn.execute(
                "DELETE FROM interactions WHERE timestamp < ?",
                (cutoff.isoformat(),),
            )
            conn.commit()
            return cursor.rowcount

    def count(self) -> int:
        with self._lock:
            return self._get_conn().execute("SELECT COUNT(*) FROM interactions").fetchone()[0]

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


class InteractionMemory:
    """Append-only, time-bounded log of AI interactions.

    Usage:
        memory = InteractionMemory(InMemoryInteractionStore())
        memory.record(Feature.PRICE, "distance=8.5km time=25min", "final_price=18.75")
        context = memory.context_for(Feature.PRICE, limit=10)
        memory.sweep(retention_days=30)

    Timestamps are stored as timezone-aware UTC datetimes; ISO strings of
    those sort chronologically, which the SQLite backend relies on.
    """

    def __init__(
        self,
        store: Optional[InteractionStore] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store or InMemoryInteractionStore()
        self._clock = clock
        self._pending: set[asyncio.Task] = set()

    def append(self, interaction: Interaction) -> None:
        """Append without ever raising into the caller's path."""
        try:
            self.store.add(interaction)
        except Exception:
            logger.exception(f"Failed to append interaction {interaction.id}")

    def record(
        self,
        feature: Feature,
        query: str,
        response: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Interaction:
        """Build an interaction stamped with the memory clock and append it."""
        interaction = Interaction(
            feature=feature,
            query=query,
            response=response,
            timestamp=self._clock(),
            metadata=dict(metadata or {}),
        )
        self.append(interaction)
        return interaction

    def record_nowait(
        self,
        feature: Feature,
        query: str,
        response: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Interaction:
        """Like ``record`` but never waits on storage I/O.

        With a blocking store and a running event loop the append runs in
        a worker thread; ``flush()`` awaits every write still in flight.
        """
        interaction = Interaction(
            feature=feature,
            query=query,
            response=response,
            timestamp=self._clock(),
            metadata=dict(metadata or {}),
        )
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is None or not self.store.blocking:
            self.append(interaction)
            return interaction

        task = loop.create_task(asyncio.to_thread(self.append, interaction))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return interaction

    async def flush(self) -> None:
        """Wait for background appends started by ``record_nowait``."""
        if self._pending:
            await asyncio.gather(*list(self._pending))

    def by_feature(self, feature: Feature, limit: int = 50) -> list[Interaction]:
        """Most recent interactions for a feature, newest first."""
        if limit <= 0:
            return []
        return self.store.latest(feature, limit)

    def recent(self, days: int = DEFAULT_RETENTION_DAYS) -> list[Interaction]:
        """Interactions from the last ``days`` days, newest first."""
        return self.store.since(self._clock() - timedelta(days=days))

    def context_for(self, feature: Feature, limit: int = 10) -> str:
        """Plain-text summary of the latest interactions for a feature.

        The ``limit`` most recent interactions are listed oldest to newest
        (most recent last). Returns an empty string when there are none.
        """
        interactions = list(reversed(self.by_feature(feature, limit)))
        if not interactions:
            return ""

        blocks = []
        for interaction in interactions:
            metadata = interaction.metadata
            lines = [
                f"[{interaction.timestamp.isoformat(timespec='seconds')}] User: {interaction.query}",
                f"Assistant: {interaction.response}",
            ]
            if metadata.get("vehicle_type"):
                lines.append(f"Preferred vehicle: {metadata['vehicle_type']}")
            if metadata.get("time_of_day"):
                lines.append(f"Time: {metadata['time_of_day']}")
            if metadata.get("price") is not None:
                lines.append(f"Price: ${metadata['price']}")
            blocks.append("\n".join(lines))

        return "Previous interactions:\n" + "\n\n".join(blocks) + "\n"

    def sweep(self, retention_days: int = DEFAULT_RETENTION_DAYS) -> int:
        """Delete interactions older than the retention window.

        Idempotent: a second sweep with the same clock removes nothing.

        Returns:
            Number of interactions deleted
        """
        if retention_days < 0:
            raise ValueError("retention_days must be >= 0")
        cutoff = self._clock() - timedelta(days=retention_days)
        deleted = self.store.delete_before(cutoff)
        if deleted:
            logger.info(f"Swept {deleted} interactions older than {retention_days} days")
        return deleted

    def analyze_patterns(self, days: int = DEFAULT_RETENTION_DAYS) -> dict[str, Any]:
        """Summarize recent behaviour.

        Returns:
            Dict with most_common_vehicle, average_price and peak_times
            (top three times of day); absent signals are None or empty.
        """
        vehicles: Counter = Counter()
        times: Counter = Counter()
        prices: list[float] = []

        for interaction in self.recent(days):
            metadata = interaction.metadata
            if metadata.get("vehicle_type"):
                vehicles[metadata["vehicle_type"]] += 1
            if metadata.get("time_of_day"):
                times[metadata["time_of_day"]] += 1
            if metadata.get("price") is not None:
                prices.append(float(metadata["price"]))

        return {
            "most_common_vehicle": vehicles.most_common(1)[0][0] if vehicles else None,
            "average_price": sum(prices) / len(prices) if prices else None,
            "peak_times": [t for t, _ in times.most_common(3)],
        }

    def count(self) -> int:
        return self.store.count()

    def close(self) -> None:
        self.store.close()
