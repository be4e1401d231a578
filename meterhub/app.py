import asyncio
import logging
import sys
from typing import Any, Dict, Optional

from meterhub.adapters.base import MeterWorker
from meterhub.adapters.modbus_worker import ModbusMeterWorker
from meterhub.aggregation.service import DataAggregator
from meterhub.collector import AutoMeterCollector
from meterhub.config import HubConfig, LoggingConfig
from meterhub.storage.database import Database, PostgresDatabase
from meterhub.storage.readings import ReadingRepository

log = logging.getLogger(__name__)


def configure_logging(log_config: LoggingConfig) -> None:
    """Configure root logging from config settings."""
    root_logger = logging.getLogger()
    log_level = getattr(logging, log_config.level.upper(), logging.INFO)
    root_logger.setLevel(log_level)

    if not root_logger.handlers:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(logging.Formatter(log_config.format))
        root_logger.addHandler(console_handler)

    logging.getLogger("meterhub").setLevel(log_level)

    # pymodbus logs every connection failure itself; the collector reports them per meter
    logging.getLogger("pymodbus").setLevel(logging.CRITICAL)

    log.info(f"Logging configured - Level: {log_config.level}")


class MeterHubApp:
    """
    Process-level owner of the collector and the aggregation planner.
    Built once at startup; dependencies can be injected for tests.
    """

    def __init__(self, cfg: HubConfig, db: Optional[Database] = None, worker: Optional[MeterWorker] = None):
        self.cfg = cfg
        self.db = db or PostgresDatabase(cfg.database.dsn)
        self.worker = worker or ModbusMeterWorker()
        self.repository = ReadingRepository(self.db, cfg.database)
        self.collector = AutoMeterCollector(cfg, self.worker, self.repository)
        self.aggregator = DataAggregator(self.db, cfg.database.aggregation_table)

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Run the collection schedule until ``stop_event`` is set or the task is cancelled."""
        stop_event = stop_event or asyncio.Event()
        result = self.collector.start()
        if not result["success"]:
            log.warning(f"Collector not started: {result['message']}")
            return
        try:
            await stop_event.wait()
        finally:
            await self.shutdown()

    async def run_once(self) -> Dict[str, Any]:
        """Run a single collection tick and return the resulting statistics."""
        try:
            await self.collector.perform_collection()
            return self.collector.get_collection_stats()
        finally:
            await self.shutdown()

    async def aggregate(self, request: Dict[str, Any]) -> Any:
        try:
            return await self.aggregator.get_aggregated_data_by_grouping(request)
        finally:
            await self.db.close()

    async def shutdown(self) -> None:
        await self.collector.shutdown()
        await self.db.close()
