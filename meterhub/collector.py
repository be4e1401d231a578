"""
Automated meter collection.

Collects readings from every active meter on a fixed interval and saves them
to the database. Meters are dispatched through the worker in batches of
``collection.batch_size``; a batch is awaited as a group before the next one
starts. A failing meter never affects the other meters of the tick, and a
failing tick never stops the schedule.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from meterhub.adapters.base import CollectMeterDataMessage, MeterWorker
from meterhub.config import HubConfig
from meterhub.errors import CollectionError, IntervalError
from meterhub.models import CollectionStats, Meter, MeterConnection, MeterReading
from meterhub.storage.readings import ReadingRepository
from meterhub.timezone_utils import now_configured, now_configured_iso

log = logging.getLogger(__name__)

MIN_INTERVAL_MS = 5000


@dataclass
class MeterCollectionResult:
    meter_id: str
    success: bool
    reading: Optional[MeterReading] = None
    error: Optional[str] = None


def _num(value: Any) -> Optional[float]:
    """Coerce a raw worker value to float, None when it is missing or not numeric."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class AutoMeterCollector:
    def __init__(self, cfg: HubConfig, worker: MeterWorker, repository: ReadingRepository):
        self.cfg = cfg
        self.worker = worker
        self.repository = repository

        self.interval_ms = cfg.collection.interval_ms
        self.is_collecting = False
        self.stats = CollectionStats()

        self._collection_task: Optional[asyncio.Task] = None
        self._stats_task: Optional[asyncio.Task] = None
        self._initial_task: Optional[asyncio.Task] = None
        # Ticks run as their own tasks so stop() only cancels the timers
        self._tick_tasks: Set[asyncio.Task] = set()

        log.info(f"Auto meter collection initialized (interval: {self.interval_ms}ms, "
                 f"batch size: {cfg.collection.batch_size})")

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start(self) -> Dict[str, Any]:
        """Start the schedule. Must be called from a running event loop."""
        if self.is_collecting:
            log.warning("Auto meter collection is already running")
            return {"success": False, "message": "Collection already running"}

        if not self.cfg.collection.enabled:
            log.info("Auto meter collection is disabled in configuration")
            return {"success": False, "message": "Collection disabled in config"}

        # Raises RuntimeError outside a running loop, before any state changes
        asyncio.get_running_loop()

        self._collection_task = asyncio.create_task(self._collection_loop())

        stats_interval = self.cfg.logging.stats_interval_ms
        if stats_interval > 0:
            self._stats_task = asyncio.create_task(self._stats_loop(stats_interval))

        self._initial_task = asyncio.create_task(self._initial_collection())
        self.is_collecting = True

        log.info(f"Started auto meter collection (interval: {self.interval_ms}ms)")
        return {"success": True, "message": "Collection started successfully"}

    def stop(self) -> Dict[str, Any]:
        """
        Cancel the tick, stats and initial-collection timers.
        A tick already in progress runs to completion.
        """
        for task in (self._collection_task, self._stats_task, self._initial_task):
            if task is not None and not task.done():
                task.cancel()
        self._collection_task = None
        self._stats_task = None
        self._initial_task = None

        self.is_collecting = False
        log.info("Stopped auto meter collection")
        return {"success": True, "message": "Collection stopped successfully"}

    async def shutdown(self) -> None:
        """Stop the schedule, wait for in-flight ticks and release the worker."""
        self.stop()
        if self._tick_tasks:
            log.info(f"Waiting for {len(self._tick_tasks)} in-flight collection tick(s)")
            await asyncio.gather(*self._tick_tasks, return_exceptions=True)
        await self.worker.close()
        log.info("Auto meter collection service stopped")

    def update_interval(self, new_interval_ms: int) -> Dict[str, Any]:
        """Change the tick interval, restarting the schedule if it is running."""
        if new_interval_ms < MIN_INTERVAL_MS:
            raise IntervalError(f"Collection interval must be at least {MIN_INTERVAL_MS // 1000} seconds")

        was_collecting = self.is_collecting
        if was_collecting:
            self.stop()

        self.interval_ms = new_interval_ms

        if was_collecting:
            self.start()

        log.info(f"Collection interval updated to {new_interval_ms}ms ({new_interval_ms / 1000}s)")
        return {"success": True, "new_interval": new_interval_ms}

    @property
    def is_tick_running(self) -> bool:
        return any(not t.done() for t in self._tick_tasks)

    # ------------------------------------------------------------------ #
    # Timers
    # ------------------------------------------------------------------ #

    async def _initial_collection(self):
        await asyncio.sleep(self.cfg.collection.initial_delay_ms / 1000.0)
        self._trigger_tick()

    async def _collection_loop(self):
        while True:
            await asyncio.sleep(self.interval_ms / 1000.0)
            self._trigger_tick()

    async def _stats_loop(self, interval_ms: int):
        while True:
            await asyncio.sleep(interval_ms / 1000.0)
            self.log_collection_stats()

    def _trigger_tick(self) -> Optional[asyncio.Task]:
        if self.is_tick_running and not self.cfg.collection.allow_overlap:
            log.warning("Previous collection tick still running, skipping this tick")
            return None
        task = asyncio.create_task(self.perform_collection())
        self._tick_tasks.add(task)
        task.add_done_callback(self._tick_tasks.discard)
        return task

    # ------------------------------------------------------------------ #
    # Collection
    # ------------------------------------------------------------------ #

    async def perform_collection(self) -> Optional[Dict[str, Any]]:
        """
        Run one collection tick. Never raises: tick-level failures are recorded
        in ``stats.last_error`` and the tick ends early.
        """
        start = time.monotonic()
        log.info("Starting meter data collection cycle...")

        try:
            meters = await self.repository.get_active_meters()
            if not meters:
                log.info("No active meters found for collection")
                return {"attempted": 0, "successful": 0, "failed": 0}

            log.info(f"Found {len(meters)} active meters for collection")

            readings: List[MeterReading] = []
            failure_count = 0
            last_meter_error: Optional[str] = None
            batch_size = self.cfg.collection.batch_size

            for i in range(0, len(meters), batch_size):
                batch = meters[i:i + batch_size]
                results = await asyncio.gather(
                    *(self.collect_meter_data(m) for m in batch),
                    return_exceptions=True,
                )

                for meter, result in zip(batch, results):
                    if isinstance(result, BaseException):
                        # collect_meter_data catches Exception; this covers anything else
                        failure_count += 1
                        last_meter_error = str(result) or result.__class__.__name__
                        log.error(f"Unexpected failure collecting meter {meter.meterid}: {last_meter_error}")
                    elif result.success:
                        readings.append(result.reading)
                        if self.cfg.logging.log_successful_reads:
                            log.info(f"Collected data from meter {result.meter_id}")
                    else:
                        failure_count += 1
                        last_meter_error = result.error

                if i + batch_size < len(meters) and self.cfg.collection.batch_pause_ms > 0:
                    await asyncio.sleep(self.cfg.collection.batch_pause_ms / 1000.0)

            if readings:
                await self.repository.save_readings(readings)

            self.stats.total_attempts += len(meters)
            self.stats.successful_reads += len(readings)
            self.stats.failed_reads += failure_count
            self.stats.last_collection_time = now_configured()
            if last_meter_error:
                self.stats.last_error = last_meter_error

            duration_ms = int((time.monotonic() - start) * 1000)
            log.info(f"Collection cycle completed: {len(readings)}/{len(meters)} successful ({duration_ms}ms)")
            return {
                "attempted": len(meters),
                "successful": len(readings),
                "failed": failure_count,
                "duration_ms": duration_ms,
            }

        except Exception as e:
            log.error(f"Error during meter collection cycle: {e}", exc_info=True)
            self.stats.last_error = str(e) or e.__class__.__name__
            return None

    def get_meter_connection(self, meter: Meter) -> MeterConnection:
        """Meter-specific connection settings, falling back to the configured defaults."""
        defaults = self.cfg.meters
        return MeterConnection(
            ip=meter.ip or defaults.default_ip,
            port=meter.port or defaults.default_port,
            slave_id=meter.slave_id if meter.slave_id is not None else defaults.default_slave_id,
        )

    def _response_deadline_s(self) -> float:
        """Upper bound for one dispatch: every attempt times out plus the capped backoff between them."""
        c = self.cfg.collection
        return (c.timeout_ms * (c.retry_attempts + 1) + 10000 * c.retry_attempts) / 1000.0

    async def collect_meter_data(self, meter: Meter) -> MeterCollectionResult:
        """Read one meter through the worker. Failures are returned, not raised."""
        try:
            conn = self.get_meter_connection(meter)
            log.debug(f"Collecting data from meter {meter.meterid} at {conn.ip}:{conn.port}")

            message = CollectMeterDataMessage(
                meter=meter,
                connection=conn,
                registers=self.cfg.meters.registers,
                timeout_ms=self.cfg.collection.timeout_ms,
                max_retries=self.cfg.collection.retry_attempts,
            )
            try:
                result = await asyncio.wait_for(self.worker.send_message(message),
                                                timeout=self._response_deadline_s())
            except asyncio.TimeoutError:
                raise CollectionError(meter.meterid, f"No response from worker for meter {meter.meterid}") from None

            if not result.success:
                raise CollectionError(meter.meterid, result.error or "Failed to collect meter data via worker")
            if not isinstance(result.data, dict):
                raise CollectionError(meter.meterid, "Worker returned no data")

            reading = self.create_meter_reading(meter, result.data, conn)
            log.debug(f"Meter reading prepared for {meter.meterid}: energy={reading.energy} "
                      f"power={reading.power} voltage={reading.voltage}")
            return MeterCollectionResult(meter_id=meter.meterid, success=True, reading=reading)

        except Exception as e:
            error = str(e) or e.__class__.__name__
            if self.cfg.logging.log_failed_reads:
                log.error(f"Failed to collect data from meter {meter.meterid}: {error}")
            return MeterCollectionResult(meter_id=meter.meterid, success=False, error=error)

    def create_meter_reading(self, meter: Meter, data: Dict[str, Any], conn: MeterConnection) -> MeterReading:
        """
        Normalize worker values into a reading. Zero or missing primary values
        fall back to the phase A / cumulative registers and then to 0; phase and
        total fields fall back to None.
        """
        voltage = _num(data.get("voltage")) or _num(data.get("phaseAVoltage")) or 0
        current = _num(data.get("current")) or _num(data.get("phaseACurrent")) or 0
        power = _num(data.get("power")) or 0
        energy = _num(data.get("energy")) or _num(data.get("totalActiveEnergyWh")) or 0
        frequency = _num(data.get("frequency")) or 0
        power_factor = _num(data.get("powerFactor")) or 0

        return MeterReading(
            meterid=meter.meterid,
            timestamp=now_configured(),
            reading_value=energy,
            device_ip=conn.ip,
            port=conn.port,
            slave_id=conn.slave_id,
            voltage=voltage,
            current=current,
            power=power,
            energy=energy,
            frequency=frequency,
            power_factor=power_factor,
            phase_a_voltage=_num(data.get("phaseAVoltage")) or None,
            phase_b_voltage=_num(data.get("phaseBVoltage")) or None,
            phase_c_voltage=_num(data.get("phaseCVoltage")) or None,
            phase_a_current=_num(data.get("phaseACurrent")) or None,
            phase_b_current=_num(data.get("phaseBCurrent")) or None,
            phase_c_current=_num(data.get("phaseCCurrent")) or None,
            total_active_energy_wh=_num(data.get("totalActiveEnergyWh")) or None,
            total_reactive_energy_varh=_num(data.get("totalReactiveEnergyVARh")) or None,
            total_apparent_energy_vah=_num(data.get("totalApparentEnergyVAh")) or None,
        )

    # ------------------------------------------------------------------ #
    # Status
    # ------------------------------------------------------------------ #

    def get_collection_stats(self) -> Dict[str, Any]:
        """Current counters; the success rate is recomputed on every call."""
        last = self.stats.last_collection_time
        return {
            "is_collecting": self.is_collecting,
            "interval": self.interval_ms,
            "last_collection_time": last.isoformat() if last else None,
            "total_attempts": self.stats.total_attempts,
            "successful_reads": self.stats.successful_reads,
            "failed_reads": self.stats.failed_reads,
            "success_rate": self.stats.success_rate,
            "last_error": self.stats.last_error,
        }

    def get_health_status(self) -> Dict[str, Any]:
        return {
            "is_healthy": True,
            "is_collecting": self.is_collecting,
            "tick_in_progress": self.is_tick_running,
            "config": {
                "enabled": self.cfg.collection.enabled,
                "interval": self.interval_ms,
                "batch_size": self.cfg.collection.batch_size,
            },
            "worker": {
                "available": self.worker is not None,
                "stats": self.worker.get_stats() if self.worker is not None else {},
            },
            "statistics": self.get_collection_stats(),
            "last_check": now_configured_iso(),
        }

    def log_collection_stats(self):
        stats = self.get_collection_stats()
        log.info(f"Collection Stats: {stats['successful_reads']}/{stats['total_attempts']} successful "
                 f"({stats['success_rate']}%), Last: {stats['last_collection_time']}")
        if stats["last_error"]:
            log.info(f"Last Error: {stats['last_error']}")
