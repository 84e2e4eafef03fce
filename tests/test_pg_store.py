from datetime import datetime, timezone
from decimal import Decimal

import psycopg2
import pytest
from psycopg2.pool import PoolError

from livestock.errors import RecordRejectedError, StorageError
from livestock.schemas import PriceRecord
from livestock.storage.pg import SCHEMA_SQL, UPSERT_SQL, PostgresRecordStore


class DummyCursor:
    def __init__(self, rows=None, fail=None):
        self.executed = []
        self.rows = rows or []
        self.fail = fail

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, query, params=None):
        if self.fail is not None:
            raise self.fail
        self.executed.append((query, params))

    def fetchall(self):
        return list(self.rows)

    def fetchone(self):
        return self.rows[0] if self.rows else None


class DummyConn:
    def __init__(self, cursor):
        self.cur = cursor
        self.commits = 0
        self.rollbacks = 0

    def cursor(self):
        return self.cur

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


class DummyPool:
    def __init__(self, conn=None, fail=None):
        self.conn = conn
        self.fail = fail
        self.returned = []
        self.closed = False

    def getconn(self):
        if self.fail is not None:
            raise self.fail
        return self.conn

    def putconn(self, conn):
        self.returned.append(conn)

    def closeall(self):
        self.closed = True


def _store(rows=None, fail=None):
    conn = DummyConn(DummyCursor(rows=rows, fail=fail))
    pool = DummyPool(conn)
    return PostgresRecordStore(pool=pool), conn, pool


TS = datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_upsert_overwrites_every_column_in_one_statement():
    store, conn, pool = _store()
    record = PriceRecord(
        symbol="TSLA",
        price=Decimal("250.00"),
        change=Decimal("5.00"),
        change_percent=Decimal("2.04"),
        observed_at=TS,
    )

    store.upsert(record)

    query, params = conn.cur.executed[0]
    assert query == UPSERT_SQL
    assert "ON CONFLICT (symbol) DO UPDATE" in query
    for column in ("price", "change", "change_percent", "observed_at"):
        assert f"{column} = EXCLUDED.{column}" in query
    assert params == ("TSLA", Decimal("250.00"), Decimal("5.00"), Decimal("2.04"), TS)
    assert conn.commits == 1
    assert pool.returned == [conn]


def test_upsert_passes_nulls_for_missing_optional_fields():
    store, conn, _ = _store()
    store.upsert(PriceRecord(symbol="AAPL", price=Decimal("1")))
    _, params = conn.cur.executed[0]
    assert params == ("AAPL", Decimal("1"), None, None, None)


def test_driver_error_becomes_storage_error_and_rolls_back():
    store, conn, pool = _store(fail=psycopg2.OperationalError("server closed the connection"))

    with pytest.raises(StorageError) as info:
        store.upsert(PriceRecord(symbol="AAPL", price=Decimal("1")))

    assert isinstance(info.value.__cause__, psycopg2.OperationalError)
    assert conn.rollbacks == 1
    assert conn.commits == 0
    assert pool.returned == [conn]


def test_pool_exhaustion_is_storage_error():
    store = PostgresRecordStore(pool=DummyPool(fail=PoolError("connection pool exhausted")))
    with pytest.raises(StorageError):
        store.get_all()


def test_get_all_maps_rows_to_records():
    rows = [
        ("AAPL", Decimal("150"), None, None, None),
        ("TSLA", Decimal("250.00"), Decimal("5.00"), Decimal("2.04"), TS),
    ]
    store, _, _ = _store(rows=rows)

    records = store.get_all()

    assert [r.symbol for r in records] == ["AAPL", "TSLA"]
    assert records[1].change_percent == Decimal("2.04")
    assert records[1].observed_at == TS


def test_get_returns_none_for_unknown_symbol():
    store, conn, _ = _store(rows=[])
    assert store.get("NOPE") is None
    assert conn.cur.executed[0][1] == ("NOPE",)


def test_history_insert_and_read():
    rows = [("AAPL", Decimal("2"), None, None, TS), ("AAPL", Decimal("1"), None, None, TS)]
    store, conn, _ = _store(rows=rows)

    store.append_history(PriceRecord(symbol="AAPL", price=Decimal("2"), observed_at=TS))
    history = store.get_history("AAPL", limit=2)

    insert_query, insert_params = conn.cur.executed[0]
    assert "INSERT INTO stock_history" in insert_query
    assert insert_params[0] == "AAPL"
    select_query, select_params = conn.cur.executed[1]
    assert "ORDER BY recorded_at DESC" in select_query
    assert select_params == ("AAPL", 2)
    assert [r.price for r in history] == [Decimal("2"), Decimal("1")]


def test_ensure_schema_creates_tables():
    store, conn, _ = _store()
    store.ensure_schema()
    assert conn.cur.executed == [(SCHEMA_SQL, None)]
    assert "stock_market" in SCHEMA_SQL and "stock_history" in SCHEMA_SQL


def test_non_driver_errors_roll_back_and_propagate():
    store, conn, pool = _store()
    with pytest.raises(RuntimeError):
        with store._cursor():
            raise RuntimeError("boom")
    assert conn.rollbacks == 1
    assert pool.returned == [conn]


def test_close_closes_pool():
    store, _, pool = _store()
    store.close()
    assert pool.closed


def test_requires_dsn_or_pool():
    with pytest.raises(ValueError):
        PostgresRecordStore()


@pytest.mark.parametrize(
    "fail",
    [
        psycopg2.DataError("numeric field overflow"),
        ValueError("A string literal cannot contain NUL (0x00) characters."),
    ],
)
def test_rejected_values_are_not_retryable(fail):
    store, conn, pool = _store(fail=fail)

    with pytest.raises(RecordRejectedError) as info:
        store.upsert(PriceRecord(symbol="AAPL", price=Decimal("1")))

    assert isinstance(info.value, StorageError)
    assert info.value.__cause__ is fail
    assert conn.rollbacks == 1
    assert pool.returned == [conn]


def test_unreachable_database_is_retryable():
    store, _, _ = _store(fail=psycopg2.OperationalError("could not connect"))
    with pytest.raises(StorageError) as info:
        store.upsert(PriceRecord(symbol="AAPL", price=Decimal("1")))
    assert not isinstance(info.value, RecordRejectedError)


def test_lookup_of_unstorable_symbol_is_not_found():
    store, _, _ = _store(fail=ValueError("A string literal cannot contain NUL (0x00) characters."))
    assert store.get("A\x00B") is None
    assert store.get_history("A\x00B") == []
