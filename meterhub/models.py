from typing import Optional, Dict, Any, List
from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, computed_field

from meterhub.errors import UnsupportedGroupingError


class Meter(BaseModel):
    """Row from the meter roster. Unknown columns are ignored."""
    model_config = ConfigDict(extra="ignore")

    id: Optional[Any] = None
    meterid: str
    name: Optional[str] = None
    type: Optional[str] = None
    status: str = "active"
    location_building: Optional[str] = None
    location_floor: Optional[str] = None
    location_room: Optional[str] = None
    last_reading_date: Optional[datetime] = None
    installation_date: Optional[datetime] = None
    # Optional per-meter connection overrides (fall back to configured defaults)
    ip: Optional[str] = None
    port: Optional[int] = None
    slave_id: Optional[int] = None


class MeterConnection(BaseModel):
    ip: str
    port: int
    slave_id: int = 1


class WorkerResult(BaseModel):
    """Reply of the worker dispatch layer for one message."""
    success: bool
    data: Optional[Dict[str, float]] = None
    error: Optional[str] = None


class QueryResult(BaseModel):
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    row_count: Optional[int] = None


class MeterReading(BaseModel):
    """
    One collected snapshot for a meter.

    Missing device values default to 0 for the primary fields and None for the
    phase and cumulative totals. The legacy mirror columns (v, a, kw, kwh and the
    duplicated provenance columns) are derived from the normalized values and are
    part of every row written to storage.
    """
    meterid: str
    timestamp: datetime
    reading_value: float = 0
    unit_of_measurement: str = "Wh"
    data_quality: str = "good"
    source: str = "modbus_auto_collection"
    device_ip: Optional[str] = None
    port: Optional[int] = None
    slave_id: Optional[int] = None

    voltage: float = 0
    current: float = 0
    power: float = 0
    energy: float = 0
    frequency: float = 0
    power_factor: float = 0

    phase_a_voltage: Optional[float] = None
    phase_b_voltage: Optional[float] = None
    phase_c_voltage: Optional[float] = None
    phase_a_current: Optional[float] = None
    phase_b_current: Optional[float] = None
    phase_c_current: Optional[float] = None

    total_active_energy_wh: Optional[float] = None
    total_reactive_energy_varh: Optional[float] = None
    total_apparent_energy_vah: Optional[float] = None

    status: str = "active"

    @computed_field
    @property
    def quality(self) -> str:
        return self.data_quality

    @computed_field
    @property
    def deviceip(self) -> Optional[str]:
        return self.device_ip

    @computed_field
    @property
    def slaveid(self) -> Optional[int]:
        return self.slave_id

    @computed_field
    @property
    def powerfactor(self) -> float:
        return self.power_factor

    @computed_field
    @property
    def v(self) -> float:
        return self.voltage

    @computed_field
    @property
    def a(self) -> float:
        return self.current

    @computed_field
    @property
    def kw(self) -> float:
        return self.power / 1000  # W -> kW

    @computed_field
    @property
    def kwh(self) -> float:
        return self.energy / 1000  # Wh -> kWh

    def to_row(self) -> Dict[str, Any]:
        """Column -> value mapping written to the readings table."""
        return self.model_dump()


@dataclass
class CollectionStats:
    """Process-wide running counters, mutated once per tick."""
    total_attempts: int = 0
    successful_reads: int = 0
    failed_reads: int = 0
    last_error: Optional[str] = None
    last_collection_time: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        """Percentage of successful reads, 0 when nothing was attempted."""
        if self.total_attempts == 0:
            return 0.0
        return round(self.successful_reads / self.total_attempts * 100, 1)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["success_rate"] = self.success_rate
        return d


class Grouping(str, Enum):
    NONE = "none"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @classmethod
    def parse(cls, value: Any) -> "Grouping":
        if isinstance(value, cls):
            return value
        if value == "total":  # dashboard alias for a single aggregate row
            return cls.NONE
        try:
            return cls(value)
        except (ValueError, TypeError):
            raise UnsupportedGroupingError(value) from None


class AggregationRequest(BaseModel):
    """
    Input of the aggregation planner. Accepts snake_case or the dashboard's
    camelCase keys. Field checks happen in ``DataAggregator.validate_options``.
    """
    meter_element_id: Optional[Any] = Field(default=None, validation_alias=AliasChoices("meter_element_id", "meterElementId"))
    tenant_id: Optional[Any] = Field(default=None, validation_alias=AliasChoices("tenant_id", "tenantId"))
    selected_columns: Optional[Any] = Field(default=None, validation_alias=AliasChoices("selected_columns", "selectedColumns"))
    # datetime, date or ISO-8601 string
    start_date: Optional[Any] = Field(default=None, validation_alias=AliasChoices("start_date", "startDate"))
    end_date: Optional[Any] = Field(default=None, validation_alias=AliasChoices("end_date", "endDate"))
    grouping: Any = Field(default=Grouping.DAILY, validation_alias=AliasChoices("grouping", "groupingType"))
