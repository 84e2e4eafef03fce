"""PostgreSQL record store.

Latest prices live in ``stock_market`` keyed by symbol; history samples are
appended to ``stock_history``.  Every call borrows its own connection from a
:class:`psycopg2.pool.ThreadedConnectionPool`, so the store can be shared by
API worker threads and the consumer loop.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence

import psycopg2
from psycopg2.pool import ThreadedConnectionPool

from ..errors import RecordRejectedError, StorageError
from ..schemas import PriceRecord
from .base import HistoryStore, RecordStore

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS stock_market (
    symbol         TEXT PRIMARY KEY,
    price          NUMERIC NOT NULL,
    change         NUMERIC,
    change_percent NUMERIC,
    observed_at    TIMESTAMPTZ
);
CREATE TABLE IF NOT EXISTS stock_history (
    id             BIGSERIAL PRIMARY KEY,
    symbol         TEXT NOT NULL,
    price          NUMERIC NOT NULL,
    change         NUMERIC,
    change_percent NUMERIC,
    observed_at    TIMESTAMPTZ,
    recorded_at    TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS stock_history_symbol_recorded_idx
    ON stock_history (symbol, recorded_at DESC);
"""

# Every column is overwritten from EXCLUDED: a new message replaces the row.
UPSERT_SQL = """
INSERT INTO stock_market (symbol, price, change, change_percent, observed_at)
VALUES (%s, %s, %s, %s, %s)
ON CONFLICT (symbol) DO UPDATE SET
    price = EXCLUDED.price,
    change = EXCLUDED.change,
    change_percent = EXCLUDED.change_percent,
    observed_at = EXCLUDED.observed_at
"""

SELECT_ALL_SQL = (
    "SELECT symbol, price, change, change_percent, observed_at FROM stock_market"
)

SELECT_ONE_SQL = SELECT_ALL_SQL + " WHERE symbol = %s"

INSERT_HISTORY_SQL = """
INSERT INTO stock_history (symbol, price, change, change_percent, observed_at)
VALUES (%s, %s, %s, %s, %s)
"""

SELECT_HISTORY_SQL = """
SELECT symbol, price, change, change_percent, observed_at
FROM stock_history
WHERE symbol = %s
ORDER BY recorded_at DESC, id DESC
LIMIT %s
"""


def _params(record: PriceRecord) -> tuple:
    return (
        record.symbol,
        record.price,
        record.change,
        record.change_percent,
        record.observed_at,
    )


def _row_to_record(row: Sequence) -> PriceRecord:
    symbol, price, change, change_percent, observed_at = row
    return PriceRecord(
        symbol=symbol,
        price=price,
        change=change,
        change_percent=change_percent,
        observed_at=observed_at,
    )


class PostgresRecordStore(RecordStore, HistoryStore):
    """Record store backed by PostgreSQL through psycopg2."""

    def __init__(
        self,
        dsn: Optional[str] = None,
        *,
        minconn: int = 1,
        maxconn: int = 5,
        pool=None,
    ) -> None:
        if pool is None:
            if not dsn:
                raise ValueError("either dsn or pool is required")
            try:
                pool = ThreadedConnectionPool(minconn, maxconn, dsn)
            except psycopg2.Error as exc:
                raise StorageError(f"cannot connect to database: {exc}") from exc
        self._pool = pool

    @classmethod
    def from_settings(cls, settings) -> "PostgresRecordStore":
        return cls(
            settings.database_url,
            minconn=settings.db_pool_min,
            maxconn=settings.db_pool_max,
        )

    @contextmanager
    def _cursor(self) -> Iterator:
        """Yield a cursor inside one transaction on a pooled connection.

        The transaction is committed when the block exits normally and rolled
        back otherwise; the connection always goes back to the pool.  Values
        the database or the driver's adapters refuse raise
        :class:`RecordRejectedError`; other driver failures raise
        :class:`StorageError`.
        """

        try:
            conn = self._pool.getconn()
        except psycopg2.Error as exc:
            raise StorageError(f"no database connection available: {exc}") from exc
        try:
            with conn.cursor() as cur:
                yield cur
            conn.commit()
        except (psycopg2.DataError, ValueError) as exc:
            # ValueError comes from parameter adaptation, e.g. NUL in a string
            self._rollback(conn)
            raise RecordRejectedError(
                str(exc).strip() or exc.__class__.__name__
            ) from exc
        except psycopg2.Error as exc:
            self._rollback(conn)
            raise StorageError(str(exc).strip() or exc.__class__.__name__) from exc
        except BaseException:
            self._rollback(conn)
            raise
        finally:
            self._pool.putconn(conn)

    @staticmethod
    def _rollback(conn) -> None:
        try:
            conn.rollback()
        except psycopg2.Error:
            logger.warning("rollback failed on broken connection", exc_info=True)

    def ensure_schema(self) -> None:
        """Create the tables and index if they do not exist yet."""

        with self._cursor() as cur:
            cur.execute(SCHEMA_SQL)
        logger.info("database schema ready")

    def upsert(self, record: PriceRecord) -> None:
        with self._cursor() as cur:
            cur.execute(UPSERT_SQL, _params(record))

    def get_all(self) -> List[PriceRecord]:
        with self._cursor() as cur:
            cur.execute(SELECT_ALL_SQL)
            rows = cur.fetchall()
        return [_row_to_record(row) for row in rows]

    def get(self, symbol: str) -> Optional[PriceRecord]:
        try:
            with self._cursor() as cur:
                cur.execute(SELECT_ONE_SQL, (symbol,))
                row = cur.fetchone()
        except RecordRejectedError:
            # a key the database cannot even compare is never stored
            return None
        return _row_to_record(row) if row else None

    def append_history(self, record: PriceRecord) -> None:
        with self._cursor() as cur:
            cur.execute(INSERT_HISTORY_SQL, _params(record))

    def get_history(self, symbol: str, limit: int = 100) -> List[PriceRecord]:
        try:
            with self._cursor() as cur:
                cur.execute(SELECT_HISTORY_SQL, (symbol, limit))
                rows = cur.fetchall()
        except RecordRejectedError:
            return []
        return [_row_to_record(row) for row in rows]

    def close(self) -> None:
        self._pool.closeall()


__all__ = ["PostgresRecordStore", "SCHEMA_SQL", "UPSERT_SQL"]
