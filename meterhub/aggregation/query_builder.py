"""
SQL assembly for the aggregation planner (PostgreSQL dialect, psycopg2 ``%s`` placeholders).

Identifiers (table and column names) cannot be bound as parameters, so they are
checked against a strict pattern and double-quoted. Every value (tenant,
meter element, time window) is passed as a parameter.
"""

import re
from typing import Any, List, NamedTuple, Sequence

from meterhub.aggregation.rules import get_aggregation_function
from meterhub.errors import AggregationValidationError, UnsupportedGroupingError
from meterhub.models import Grouping

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Bucket expression and alias per grouping mode
_BUCKETS = {
    Grouping.HOURLY: [("DATE(created_at)", "date"), ("EXTRACT(HOUR FROM created_at)", "hour")],
    Grouping.DAILY: [("DATE(created_at)", "date")],
    Grouping.WEEKLY: [("DATE_TRUNC('week', created_at)", "week_start")],
    Grouping.MONTHLY: [("DATE_TRUNC('month', created_at)", "month_start")],
}


class BuiltQuery(NamedTuple):
    sql: str
    params: List[Any]


def quote_identifier(name: str) -> str:
    """Return ``name`` double-quoted, or raise if it is not a plain SQL identifier."""
    if not isinstance(name, str) or not _IDENTIFIER_RE.match(name):
        raise AggregationValidationError(f"Invalid column or table name: {name!r}")
    return f'"{name}"'


class AggregationQueryBuilder:
    """Builds time-scoped aggregate queries over a readings table."""

    def __init__(self, table: str = "meter_reading"):
        self.table = quote_identifier(table)
        self.table_name = table

    def select_clauses(self, columns: Sequence[str]) -> List[str]:
        """``FUNC("col") AS "col"`` for every column, keyed by the original column name."""
        clauses = []
        for column in columns:
            quoted = quote_identifier(column)
            func = get_aggregation_function(column).value
            clauses.append(f"{func}({quoted}) AS {quoted}")
        return clauses

    def build(self, columns: Sequence[str], grouping, tenant_id, meter_element_id,
              start_iso: str, end_iso: str) -> BuiltQuery:
        """
        Build the aggregation query for ``grouping``.

        The time filter is inclusive on both ends (``>= start AND <= end``).
        """
        grouping = Grouping.parse(grouping)
        select = self.select_clauses(columns)
        buckets = _BUCKETS.get(grouping, [])
        if grouping is not Grouping.NONE and not buckets:
            raise UnsupportedGroupingError(grouping)

        bucket_select = [f"{expr} AS {alias}" for expr, alias in buckets]
        select_sql = ",\n  ".join(bucket_select + select)

        sql = (
            f"SELECT\n  {select_sql}\n"
            f"FROM {self.table}\n"
            "WHERE\n"
            "  tenant_id = %s\n"
            "  AND meter_element_id = %s\n"
            "  AND created_at >= %s\n"
            "  AND created_at <= %s"
        )
        if buckets:
            exprs = [expr for expr, _ in buckets]
            sql += "\nGROUP BY " + ", ".join(exprs)
            sql += "\nORDER BY " + ", ".join(f"{expr} ASC" for expr in exprs)

        return BuiltQuery(sql, [tenant_id, meter_element_id, start_iso, end_iso])

    def build_column_existence(self, columns: Sequence[str]) -> BuiltQuery:
        sql = (
            "SELECT column_name\n"
            "FROM information_schema.columns\n"
            "WHERE table_name = %s\n"
            "  AND column_name = ANY(%s)"
        )
        return BuiltQuery(sql, [self.table_name, list(columns)])

    def build_column_stats(self, column: str, meter_element_id, tenant_id) -> BuiltQuery:
        quoted = quote_identifier(column)
        sql = (
            "SELECT\n"
            "  COUNT(*) AS count,\n"
            f"  COUNT(DISTINCT {quoted}) AS distinct_count,\n"
            f"  MIN({quoted}) AS min_value,\n"
            f"  MAX({quoted}) AS max_value,\n"
            f"  AVG({quoted}) AS avg_value,\n"
            f"  SUM({quoted}) AS sum_value\n"
            f"FROM {self.table}\n"
            f"WHERE meter_element_id = %s AND tenant_id = %s AND {quoted} IS NOT NULL"
        )
        return BuiltQuery(sql, [meter_element_id, tenant_id])

    def build_reading_stats(self, meter_element_id, tenant_id) -> BuiltQuery:
        sql = (
            "SELECT\n"
            "  COUNT(*) AS total_readings,\n"
            "  MIN(created_at) AS earliest_reading,\n"
            "  MAX(created_at) AS latest_reading,\n"
            "  COUNT(DISTINCT DATE(created_at)) AS days_with_readings\n"
            f"FROM {self.table}\n"
            "WHERE meter_element_id = %s AND tenant_id = %s"
        )
        return BuiltQuery(sql, [meter_element_id, tenant_id])
