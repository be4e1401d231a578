"""
Meter roster and reading persistence.
"""

import logging
from typing import Any, Dict, List, Optional

from meterhub.aggregation.query_builder import quote_identifier
from meterhub.config import DatabaseConfig
from meterhub.models import Meter, MeterReading
from meterhub.storage.database import Database

log = logging.getLogger(__name__)


class ReadingRepository:
    def __init__(self, db: Database, cfg: Optional[DatabaseConfig] = None):
        self.db = db
        self.cfg = cfg or DatabaseConfig()
        self.readings_table = quote_identifier(self.cfg.readings_table)
        self.meters_table = quote_identifier(self.cfg.meters_table)

    async def get_active_meters(self) -> List[Meter]:
        """Active meters ordered by meter id. Storage errors propagate to the caller."""
        result = await self.db.query(
            f"SELECT * FROM {self.meters_table} WHERE status = %s ORDER BY meterid",
            ["active"],
        )
        return [Meter.model_validate(row) for row in result.rows]

    async def save_readings(self, readings: List[MeterReading]) -> None:
        """Batch insert when enabled and there is more than one reading, else row by row."""
        if not readings:
            return
        log.info(f"Saving {len(readings)} meter readings to database...")
        if self.cfg.batch_insert and len(readings) > 1:
            await self.batch_insert_readings(readings)
        else:
            for reading in readings:
                await self.insert_single_reading(reading)
        log.info(f"Successfully saved {len(readings)} meter readings to database")

    async def batch_insert_readings(self, readings: List[MeterReading]) -> int:
        """Multi-row INSERT, split into chunks of ``max_batch_size`` rows. Returns rows written."""
        if not readings:
            return 0
        rows = [r.to_row() for r in readings]
        columns = list(rows[0].keys())
        written = 0
        size = self.cfg.max_batch_size
        for start in range(0, len(rows), size):
            chunk = rows[start:start + size]
            sql, params = self._insert_sql(columns, chunk)
            log.debug(f"Executing batch insert for {len(chunk)} readings...")
            await self.db.query(sql, params)
            written += len(chunk)
        return written

    async def insert_single_reading(self, reading: MeterReading) -> Dict[str, Any]:
        row = reading.to_row()
        sql, params = self._insert_sql(list(row.keys()), [row])
        result = await self.db.query(sql + "\nRETURNING id", params)
        inserted = result.rows[0] if result.rows else {}
        log.debug(f"Inserted reading for meter {reading.meterid} with ID: {inserted.get('id')}")
        return inserted

    def _insert_sql(self, columns: List[str], rows: List[Dict[str, Any]]):
        column_sql = ", ".join(quote_identifier(c) for c in columns)
        row_sql = "(" + ", ".join(["%s"] * len(columns)) + ")"
        values_sql = ", ".join([row_sql] * len(rows))
        params = [row.get(c) for row in rows for c in columns]
        sql = f"INSERT INTO {self.readings_table} ({column_sql})\nVALUES {values_sql}"
        return sql, params
