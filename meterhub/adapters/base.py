from typing import Dict, Any, Optional
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging

from meterhub.config import RegisterConfig
from meterhub.models import Meter, MeterConnection, WorkerResult

log = logging.getLogger(__name__)

COLLECT_METER_DATA = "collectMeterData"


@dataclass
class CollectMeterDataMessage:
    """Request sent to the worker dispatch layer to read one meter."""
    meter: Meter
    connection: MeterConnection
    registers: Dict[str, RegisterConfig]
    timeout_ms: int = 10000
    max_retries: int = 0
    priority: str = "normal"
    type: str = COLLECT_METER_DATA
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape of the message."""
        return {
            "type": self.type,
            "payload": {
                "meter": {
                    "meterid": self.meter.meterid,
                    "name": self.meter.name,
                    "type": self.meter.type,
                },
                "config": self.connection.model_dump(),
                "registers": {k: r.model_dump() for k, r in self.registers.items()},
            },
            "priority": self.priority,
            "timeout": self.timeout_ms,
            "maxRetries": self.max_retries,
        }


class MeterWorker(ABC):
    """
    Worker dispatch interface used by the collector.

    Implementations own device communication, including timeouts and retries.
    ``send_message`` reports failures through ``WorkerResult.success`` and
    ``WorkerResult.error``; it may also raise, which the collector records as a
    failed read for that meter only.
    """

    @abstractmethod
    async def send_message(self, message: CollectMeterDataMessage) -> WorkerResult: ...

    async def close(self) -> None:
        return None

    def get_stats(self) -> Dict[str, Any]:
        return {}
