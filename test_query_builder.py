"""
Unit tests for AggregationQueryBuilder
"""

import pytest

from meterhub.aggregation.query_builder import AggregationQueryBuilder, quote_identifier
from meterhub.errors import AggregationValidationError, UnsupportedGroupingError
from meterhub.models import Grouping

START = "2024-01-01T00:00:00+00:00"
END = "2024-01-31T23:59:59+00:00"


@pytest.fixture
def builder():
    return AggregationQueryBuilder("meter_reading")


def build(builder, grouping, columns=("active_energy", "power", "power_factor")):
    return builder.build(list(columns), grouping, 1, 5, START, END)


class TestSelectClauses:
    """Aggregate expressions are aliased back to the column name"""

    def test_clause_per_column(self, builder):
        clauses = builder.select_clauses(["active_energy", "power", "power_factor"])
        assert clauses == [
            'SUM("active_energy") AS "active_energy"',
            'MAX("power") AS "power"',
            'AVG("power_factor") AS "power_factor"',
        ]

    def test_alias_keeps_original_case(self, builder):
        assert builder.select_clauses(["Active_Energy"]) == ['SUM("Active_Energy") AS "Active_Energy"']


class TestNoneGrouping:
    """Single-row aggregate over the whole window"""

    def test_no_group_by(self, builder):
        query = build(builder, Grouping.NONE)
        assert "GROUP BY" not in query.sql
        assert "ORDER BY" not in query.sql
        assert 'FROM "meter_reading"' in query.sql

    def test_inclusive_time_filter(self, builder):
        query = build(builder, "none")
        assert "created_at >= %s" in query.sql
        assert "created_at <= %s" in query.sql

    def test_params_order(self, builder):
        query = build(builder, Grouping.NONE)
        assert query.params == [1, 5, START, END]
        assert query.sql.index("tenant_id = %s") < query.sql.index("meter_element_id = %s")

    def test_values_are_not_interpolated(self, builder):
        query = build(builder, Grouping.NONE)
        assert START not in query.sql
        assert query.sql.count("%s") == 4


class TestBucketedGroupings:
    """Bucket columns, GROUP BY and ascending ORDER BY per mode"""

    def test_hourly(self, builder):
        sql = build(builder, Grouping.HOURLY).sql
        assert "DATE(created_at) AS date" in sql
        assert "EXTRACT(HOUR FROM created_at) AS hour" in sql
        assert "GROUP BY DATE(created_at), EXTRACT(HOUR FROM created_at)" in sql
        assert "ORDER BY DATE(created_at) ASC, EXTRACT(HOUR FROM created_at) ASC" in sql

    def test_daily(self, builder):
        sql = build(builder, "daily").sql
        assert "DATE(created_at) AS date" in sql
        assert "GROUP BY DATE(created_at)" in sql
        assert "ORDER BY DATE(created_at) ASC" in sql
        assert "hour" not in sql

    def test_weekly(self, builder):
        sql = build(builder, Grouping.WEEKLY).sql
        assert "DATE_TRUNC('week', created_at) AS week_start" in sql
        assert "ORDER BY DATE_TRUNC('week', created_at) ASC" in sql

    def test_monthly(self, builder):
        sql = build(builder, Grouping.MONTHLY).sql
        assert "DATE_TRUNC('month', created_at) AS month_start" in sql
        assert "GROUP BY DATE_TRUNC('month', created_at)" in sql

    def test_bucket_columns_come_first(self, builder):
        sql = build(builder, Grouping.DAILY).sql
        assert sql.index("AS date") < sql.index('SUM("active_energy")')

    def test_total_alias(self, builder):
        assert build(builder, "total").sql == build(builder, Grouping.NONE).sql

    def test_unsupported_grouping(self, builder):
        with pytest.raises(UnsupportedGroupingError, match="Unsupported grouping type: yearly"):
            build(builder, "yearly")


class TestIdentifiers:
    """Column and table names are validated before they reach SQL"""

    def test_quote(self):
        assert quote_identifier("power") == '"power"'

    @pytest.mark.parametrize("name", ["power; DROP TABLE meters", "1power", "a-b", 'x"y', "", None])
    def test_invalid_identifier(self, name):
        with pytest.raises(AggregationValidationError):
            quote_identifier(name)

    def test_invalid_column_in_build(self, builder):
        with pytest.raises(AggregationValidationError):
            build(builder, Grouping.NONE, columns=["power", "power) FROM x --"])

    def test_invalid_table(self):
        with pytest.raises(AggregationValidationError):
            AggregationQueryBuilder("meter reading")


class TestAuxiliaryQueries:
    def test_column_existence(self, builder):
        query = builder.build_column_existence(["power", "bogus"])
        assert "information_schema.columns" in query.sql
        assert query.params == ["meter_reading", ["power", "bogus"]]

    def test_column_stats(self, builder):
        query = builder.build_column_stats("power", 5, 1)
        assert 'COUNT(DISTINCT "power") AS distinct_count' in query.sql
        assert '"power" IS NOT NULL' in query.sql
        assert query.params == [5, 1]

    def test_reading_stats(self, builder):
        query = builder.build_reading_stats(5, 1)
        assert "COUNT(DISTINCT DATE(created_at)) AS days_with_readings" in query.sql
        assert query.params == [5, 1]
