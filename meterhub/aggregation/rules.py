"""
Column classification for dashboard aggregation.

Each reading column maps to exactly one aggregate function:
- SUM for cumulative energy columns (kWh, reactive energy, ...)
- MAX for instantaneous columns (power, current, voltage, ...)
- AVG for ratio/quality columns (power factor, THD, ...)

Matching is a case-insensitive substring test. Energy patterns are tried
first, then factor patterns, then power patterns, so "power_factor" is AVG
and "energy_power" is SUM. Anything unmatched is summed.
"""

from enum import Enum


class AggregationFunction(str, Enum):
    SUM = "SUM"
    MAX = "MAX"
    AVG = "AVG"


ENERGY_COLUMN_PATTERNS = ("energy", "kwh", "kvarh", "kvah", "wh", "varh", "vah")

FACTOR_COLUMN_PATTERNS = ("factor", "thd", "distortion", "harmonic")

POWER_COLUMN_PATTERNS = ("power", "kw", "kvar", "kva", "w", "var", "va", "current", "voltage")


def get_aggregation_function(column_name: str) -> AggregationFunction:
    lower_name = column_name.lower()

    if any(p in lower_name for p in ENERGY_COLUMN_PATTERNS):
        return AggregationFunction.SUM

    if any(p in lower_name for p in FACTOR_COLUMN_PATTERNS):
        return AggregationFunction.AVG

    if any(p in lower_name for p in POWER_COLUMN_PATTERNS):
        return AggregationFunction.MAX

    return AggregationFunction.SUM
