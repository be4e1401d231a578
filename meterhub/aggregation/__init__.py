"""
Aggregation planner for dashboard cards.

- rules: column name -> SUM / MAX / AVG
- query_builder: time-scoped, bucketed SQL
- service: validation, execution and result shaping
"""

from meterhub.aggregation.rules import AggregationFunction, get_aggregation_function
from meterhub.aggregation.query_builder import AggregationQueryBuilder, BuiltQuery, quote_identifier
from meterhub.aggregation.service import DataAggregator

__all__ = [
    'AggregationFunction',
    'get_aggregation_function',
    'AggregationQueryBuilder',
    'BuiltQuery',
    'quote_identifier',
    'DataAggregator',
]
