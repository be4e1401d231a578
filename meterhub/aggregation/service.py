"""
Dashboard card aggregation.

Aggregates meter reading data for the selected columns over a time window,
either as a single row or as ascending hour/day/week/month buckets.
The planner holds no mutable state and may be shared between callers.
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Union

from meterhub.aggregation.query_builder import AggregationQueryBuilder
from meterhub.errors import AggregationValidationError
from meterhub.models import AggregationRequest, Grouping
from meterhub.storage.database import Database
from meterhub.timezone_utils import to_configured

log = logging.getLogger(__name__)

AggregationResult = Union[Dict[str, Any], List[Dict[str, Any]]]


def parse_date(value: Any) -> Optional[datetime]:
    """datetime, date or ISO-8601 string -> aware datetime, None if unparseable."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    return to_configured(dt)


class DataAggregator:
    def __init__(self, db: Database, table: str = "meter_reading"):
        self.db = db
        self.builder = AggregationQueryBuilder(table)

    @staticmethod
    def _as_request(options: Union[AggregationRequest, Dict[str, Any]]) -> AggregationRequest:
        if isinstance(options, AggregationRequest):
            return options
        return AggregationRequest(**options)

    def validate_options(self, options: Union[AggregationRequest, Dict[str, Any]]) -> None:
        """
        Reject malformed requests before any query is built.

        Raises:
            AggregationValidationError: with a message naming the offending field
        """
        req = self._as_request(options)

        if not req.meter_element_id:
            raise AggregationValidationError("meterElementId is required")

        if not req.tenant_id:
            raise AggregationValidationError("tenantId is required")

        cols = req.selected_columns
        if not cols or not isinstance(cols, (list, tuple)):
            raise AggregationValidationError("selectedColumns must be a non-empty array")

        if not req.start_date:
            raise AggregationValidationError("startDate is required")

        if not req.end_date:
            raise AggregationValidationError("endDate is required")

        start = parse_date(req.start_date)
        end = parse_date(req.end_date)

        if start is None:
            raise AggregationValidationError("Invalid startDate")

        if end is None:
            raise AggregationValidationError("Invalid endDate")

        if start >= end:
            raise AggregationValidationError("startDate must be before endDate")

    async def _run(self, req: AggregationRequest, grouping: Grouping) -> List[Dict[str, Any]]:
        columns = list(req.selected_columns)
        start = parse_date(req.start_date)
        end = parse_date(req.end_date)

        log.info(f"Aggregating {grouping.value} data for meter element {req.meter_element_id}")
        log.debug(f"Columns: {', '.join(columns)} | Time frame: {start.isoformat()} to {end.isoformat()}")

        query = self.builder.build(
            columns, grouping, req.tenant_id, req.meter_element_id,
            start.isoformat(), end.isoformat(),
        )
        result = await self.db.query(query.sql, query.params)
        return result.rows or []

    async def aggregate(self, options: Union[AggregationRequest, Dict[str, Any]],
                        grouping: Any = Grouping.NONE) -> AggregationResult:
        """
        Validate and run an aggregation.

        ``none`` returns one row; an empty result gives every selected column
        set to None. Bucketed modes return rows in ascending time order, or an
        empty list. Storage errors propagate to the caller.
        """
        grouping = Grouping.parse(grouping)
        req = self._as_request(options)
        self.validate_options(req)

        rows = await self._run(req, grouping)

        if grouping is Grouping.NONE:
            if not rows:
                log.info("No meter readings found for aggregation")
                return self.get_empty_aggregation_result(req.selected_columns)
            log.info("Aggregation complete")
            return rows[0]

        if not rows:
            log.info(f"No meter readings found for {grouping.value} aggregation")
            return []
        log.info(f"{grouping.value.capitalize()} aggregation complete: {len(rows)} buckets")
        return rows

    async def aggregate_card_data(self, options) -> Dict[str, Any]:
        return await self.aggregate(options, Grouping.NONE)

    async def aggregate_card_data_by_hour(self, options) -> List[Dict[str, Any]]:
        return await self.aggregate(options, Grouping.HOURLY)

    async def aggregate_card_data_by_day(self, options) -> List[Dict[str, Any]]:
        return await self.aggregate(options, Grouping.DAILY)

    async def aggregate_card_data_by_week(self, options) -> List[Dict[str, Any]]:
        return await self.aggregate(options, Grouping.WEEKLY)

    async def aggregate_card_data_by_month(self, options) -> List[Dict[str, Any]]:
        return await self.aggregate(options, Grouping.MONTHLY)

    async def get_aggregated_data_by_grouping(self, options) -> AggregationResult:
        """Dispatch on the request's ``grouping`` (defaults to daily, ``total`` means none)."""
        req = self._as_request(options)
        return await self.aggregate(req, req.grouping)

    @staticmethod
    def get_empty_aggregation_result(selected_columns: Sequence[str]) -> Dict[str, Any]:
        return {column: None for column in selected_columns}

    async def validate_selected_columns(self, selected_columns: Sequence[str]) -> Dict[str, Any]:
        """
        Split candidate names into real columns of the readings table and unknown ones.

        Returns ``{"valid": [...], "invalid": [...], "is_valid": bool}``; the
        dashboard API calls the last key ``isValid``.
        """
        query = self.builder.build_column_existence(selected_columns)
        result = await self.db.query(query.sql, query.params)
        found = {row["column_name"] for row in result.rows or []}
        valid = [c for c in selected_columns if c in found]
        invalid = [c for c in selected_columns if c not in found]
        return {"valid": valid, "invalid": invalid, "is_valid": len(invalid) == 0}

    async def get_column_stats(self, column_name: str, meter_element_id, tenant_id) -> Optional[Dict[str, Any]]:
        """count, distinct count, min/max/avg/sum over non-null values of one column."""
        query = self.builder.build_column_stats(column_name, meter_element_id, tenant_id)
        result = await self.db.query(query.sql, query.params)
        if not result.rows:
            return None
        return result.rows[0]

    async def get_aggregation_stats(self, meter_element_id, tenant_id) -> Dict[str, Any]:
        query = self.builder.build_reading_stats(meter_element_id, tenant_id)
        result = await self.db.query(query.sql, query.params)
        if not result.rows:
            return {
                "total_readings": 0,
                "earliest_reading": None,
                "latest_reading": None,
                "days_with_readings": 0,
            }
        return result.rows[0]
