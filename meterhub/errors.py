"""Exception types raised by the collection scheduler and the aggregation planner."""


class MeterHubError(Exception):
    """Base class for all meterhub errors."""


class AggregationValidationError(MeterHubError, ValueError):
    """Raised when an aggregation request is malformed."""


class UnsupportedGroupingError(MeterHubError, ValueError):
    def __init__(self, grouping):
        self.grouping = grouping
        super().__init__(f"Unsupported grouping type: {grouping}")


class CollectionError(MeterHubError):
    """A single meter could not be read. Never escapes a collection tick."""

    def __init__(self, meter_id, message: str):
        self.meter_id = meter_id
        super().__init__(message)


class IntervalError(MeterHubError, ValueError):
    """Raised when a runtime interval update falls below the allowed floor."""
