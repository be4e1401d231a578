"""
Unit tests for ReadingRepository
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock

import pytest

from meterhub.config import DatabaseConfig
from meterhub.models import MeterReading, QueryResult
from meterhub.storage.database import Database
from meterhub.storage.readings import ReadingRepository


def make_db(rows=None):
    db = Mock(spec=Database)
    db.query = AsyncMock(return_value=QueryResult(rows=rows or []))
    return db


def make_readings(count):
    ts = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return [MeterReading(meterid=f"M{i}", timestamp=ts, energy=1000.0 * i, power=500.0) for i in range(count)]


class TestActiveMeters:
    def test_query_and_mapping(self):
        db = make_db([
            {"id": 1, "meterid": "A1", "status": "active", "tenant_id": 7},
            {"id": 2, "meterid": "B2", "status": "active", "ip": "10.0.0.9"},
        ])
        repository = ReadingRepository(db)

        meters = asyncio.run(repository.get_active_meters())

        sql, params = db.query.call_args.args
        assert sql == 'SELECT * FROM "meters" WHERE status = %s ORDER BY meterid'
        assert params == ["active"]
        assert [m.meterid for m in meters] == ["A1", "B2"]
        assert meters[1].ip == "10.0.0.9"

    def test_errors_propagate(self):
        db = make_db()
        db.query.side_effect = RuntimeError("no such table")

        with pytest.raises(RuntimeError):
            asyncio.run(ReadingRepository(db).get_active_meters())


class TestSaveReadings:
    """Batch versus single-row persistence"""

    def test_batch_chunks(self):
        db = make_db()
        repository = ReadingRepository(db, DatabaseConfig(max_batch_size=100))

        written = asyncio.run(repository.batch_insert_readings(make_readings(250)))

        assert written == 250
        assert db.query.await_count == 3
        columns = len(make_readings(1)[0].to_row())
        sizes = [len(call.args[1]) // columns for call in db.query.await_args_list]
        assert sizes == [100, 100, 50]

    def test_batch_sql_shape(self):
        db = make_db()
        repository = ReadingRepository(db)

        asyncio.run(repository.save_readings(make_readings(2)))

        db.query.assert_awaited_once()
        sql, params = db.query.call_args.args
        assert sql.startswith('INSERT INTO "meterreadings" (')
        assert '"kwh"' in sql and '"powerfactor"' in sql
        assert "RETURNING" not in sql
        row = make_readings(2)[1].to_row()
        assert len(params) == 2 * len(row)
        assert params[len(row):][list(row).index("kwh")] == 1.0

    def test_single_insert_when_disabled(self):
        db = make_db([{"id": 42}])
        repository = ReadingRepository(db, DatabaseConfig(batch_insert=False))

        asyncio.run(repository.save_readings(make_readings(3)))

        assert db.query.await_count == 3
        for call in db.query.await_args_list:
            assert call.args[0].endswith("RETURNING id")

    def test_single_reading_uses_single_insert(self):
        db = make_db([{"id": 1}])
        repository = ReadingRepository(db)

        asyncio.run(repository.save_readings(make_readings(1)))

        assert db.query.call_args.args[0].endswith("RETURNING id")

    def test_insert_single_returns_row(self):
        db = make_db([{"id": 42}])
        inserted = asyncio.run(ReadingRepository(db).insert_single_reading(make_readings(1)[0]))
        assert inserted == {"id": 42}

    def test_nothing_to_save(self):
        db = make_db()
        asyncio.run(ReadingRepository(db).save_readings([]))
        db.query.assert_not_called()

    def test_custom_tables(self):
        db = make_db()
        repository = ReadingRepository(db, DatabaseConfig(readings_table="readings_v2", meters_table="devices"))

        asyncio.run(repository.get_active_meters())
        asyncio.run(repository.save_readings(make_readings(2)))

        assert 'FROM "devices"' in db.query.await_args_list[0].args[0]
        assert 'INSERT INTO "readings_v2"' in db.query.await_args_list[1].args[0]
