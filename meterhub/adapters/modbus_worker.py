"""
Modbus/TCP worker for meter collection.

Handles ``collectMeterData`` messages: opens a Modbus/TCP connection to the
meter, reads every configured holding register, scales the raw words into
engineering units and returns them keyed by logical register name.
Each attempt is bounded by the message timeout; failed attempts are retried
with exponential backoff (1s, 2s, 4s ... capped at 10s).
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from pymodbus.client import AsyncModbusTcpClient

from meterhub.adapters.base import COLLECT_METER_DATA, CollectMeterDataMessage, MeterWorker
from meterhub.config import RegisterConfig
from meterhub.models import MeterConnection, WorkerResult

log = logging.getLogger(__name__)


class ModbusMeterWorker(MeterWorker):
    def __init__(
        self,
        client_factory: Callable[..., Any] = AsyncModbusTcpClient,
        retry_base_delay_ms: int = 1000,
        retry_max_delay_ms: int = 10000,
    ):
        self.client_factory = client_factory
        self.retry_base_delay_ms = retry_base_delay_ms
        self.retry_max_delay_ms = retry_max_delay_ms

        # Statistics
        self.messages_sent = 0
        self.messages_succeeded = 0
        self.messages_failed = 0
        self.retries = 0
        self.timeouts = 0

    def retry_delay_ms(self, attempt: int) -> int:
        """Backoff before retry number ``attempt + 1``."""
        return min(self.retry_base_delay_ms * (2 ** attempt), self.retry_max_delay_ms)

    async def send_message(self, message: CollectMeterDataMessage) -> WorkerResult:
        self.messages_sent += 1
        if message.type != COLLECT_METER_DATA:
            self.messages_failed += 1
            return WorkerResult(success=False, error=f"Unknown message type: {message.type}")

        meter_id = message.meter.meterid
        timeout_s = message.timeout_ms / 1000.0
        last_error: Optional[str] = None

        for attempt in range(message.max_retries + 1):
            if attempt > 0:
                self.retries += 1
                delay_ms = self.retry_delay_ms(attempt - 1)
                log.debug(f"Retrying meter {meter_id} in {delay_ms}ms (attempt {attempt + 1}/{message.max_retries + 1})")
                await asyncio.sleep(delay_ms / 1000.0)
            try:
                data = await asyncio.wait_for(
                    self._read_meter(message.connection, message.registers),
                    timeout=timeout_s,
                )
                self.messages_succeeded += 1
                return WorkerResult(success=True, data=data)
            except asyncio.TimeoutError:
                self.timeouts += 1
                last_error = f"Timeout after {message.timeout_ms}ms reading meter {meter_id}"
            except Exception as e:
                last_error = str(e) or e.__class__.__name__
            log.debug(f"Meter {meter_id} read attempt {attempt + 1} failed: {last_error}")

        self.messages_failed += 1
        attempts = message.max_retries + 1
        return WorkerResult(success=False, error=f"{last_error} ({attempts} attempts)")

    async def _read_meter(self, conn: MeterConnection, registers: Dict[str, RegisterConfig]) -> Dict[str, float]:
        client = self.client_factory(host=conn.ip, port=conn.port)
        try:
            ok = await client.connect()
            if not ok or not client.connected:
                raise RuntimeError(f"Failed to connect to meter at {conn.ip}:{conn.port}")

            data: Dict[str, float] = {}
            for name, reg in registers.items():
                result = await client.read_holding_registers(
                    address=reg.address,
                    count=reg.count,
                    device_id=conn.slave_id,
                )
                if result.isError():
                    raise RuntimeError(f"Modbus read error @{reg.address} ({name})")
                data[name] = self.decode(reg, list(result.registers or []))
            return data
        finally:
            client.close()

    @staticmethod
    def decode(reg: RegisterConfig, words: List[int]) -> float:
        """Combine 1 (U16) or 2 (U32 big-endian) words and apply the register scale."""
        if len(words) < reg.count:
            raise ValueError(f"Expected {reg.count} words @{reg.address}, got {len(words)}")
        if reg.count == 2:
            raw = (words[0] << 16) | words[1]
        else:
            raw = words[0]
        return raw / reg.scale

    def get_stats(self) -> Dict[str, Any]:
        return {
            "sent": self.messages_sent,
            "succeeded": self.messages_succeeded,
            "failed": self.messages_failed,
            "retries": self.retries,
            "timeouts": self.timeouts,
        }
