"""
Unit tests for configuration classes
Tests the Pydantic models and validation
"""

import pytest
from pydantic import ValidationError

from meterhub.config import (
    RegisterConfig, CollectionConfig, MeterDefaultsConfig, DatabaseConfig,
    LoggingConfig, HubConfig, default_registers
)
from meterhub.models import CollectionStats


class TestCollectionConfig:
    """Test collection schedule configuration"""

    def test_default_values(self):
        """Test default collection values"""
        config = CollectionConfig()

        assert config.enabled is True
        assert config.interval_ms == 30000
        assert config.initial_delay_ms == 5000
        assert config.batch_size == 10
        assert config.timeout_ms == 10000
        assert config.retry_attempts == 2
        assert config.batch_pause_ms == 500
        assert config.allow_overlap is False

    def test_invalid_batch_size(self):
        """Batch size must be at least 1"""
        with pytest.raises(ValidationError):
            CollectionConfig(batch_size=0)

    def test_invalid_interval(self):
        with pytest.raises(ValidationError):
            CollectionConfig(interval_ms=0)


class TestMeterDefaultsConfig:
    """Test meter connection defaults and register map"""

    def test_default_values(self):
        config = MeterDefaultsConfig()

        assert config.default_ip == "10.10.10.11"
        assert config.default_port == 502
        assert config.default_slave_id == 1
        assert len(config.registers) == 15

    def test_standard_register_map(self):
        registers = default_registers()

        assert registers["voltage"] == RegisterConfig(address=5, count=1, scale=200, unit="V")
        assert registers["frequency"].address == 0
        assert registers["powerFactor"].scale == 1000
        assert registers["totalActiveEnergyWh"].count == 2

    def test_custom_register_map(self):
        config = MeterDefaultsConfig(registers={"power": {"address": 100, "scale": 10}})
        assert list(config.registers) == ["power"]
        assert config.registers["power"].count == 1

    def test_invalid_register_count(self):
        with pytest.raises(ValidationError):
            RegisterConfig(address=1, count=3)

    def test_invalid_scale(self):
        with pytest.raises(ValidationError):
            RegisterConfig(address=1, scale=0)

    def test_invalid_port(self):
        with pytest.raises(ValidationError):
            MeterDefaultsConfig(default_port=70000)


class TestDatabaseConfig:
    def test_default_values(self):
        config = DatabaseConfig()

        assert config.dsn is None
        assert config.batch_insert is True
        assert config.max_batch_size == 100
        assert config.readings_table == "meterreadings"
        assert config.meters_table == "meters"
        assert config.aggregation_table == "meter_reading"

    def test_invalid_table_name(self):
        """Table names end up in SQL and must be plain identifiers"""
        with pytest.raises(ValidationError):
            DatabaseConfig(readings_table="readings; DROP TABLE meters")


class TestLoggingConfig:
    def test_default_values(self):
        config = LoggingConfig()

        assert config.level == "INFO"
        assert config.log_successful_reads is False
        assert config.log_failed_reads is True
        assert config.stats_interval_ms == 300000


class TestHubConfig:
    def test_from_empty_dict(self):
        config = HubConfig.model_validate({})

        assert config.timezone == "UTC"
        assert config.collection.batch_size == 10
        assert config.database.batch_insert is True

    def test_nested_values(self):
        config = HubConfig.model_validate({
            "collection": {"interval_ms": 60000, "batch_size": 25},
            "meters": {"default_ip": "192.168.1.50"},
        })

        assert config.collection.interval_ms == 60000
        assert config.collection.batch_size == 25
        assert config.collection.timeout_ms == 10000
        assert config.meters.default_ip == "192.168.1.50"


class TestCollectionStats:
    def test_success_rate_without_attempts(self):
        assert CollectionStats().success_rate == 0

    def test_success_rate_percentage(self):
        stats = CollectionStats(total_attempts=12, successful_reads=9, failed_reads=3)
        assert stats.success_rate == 75.0

    def test_success_rate_rounding(self):
        stats = CollectionStats(total_attempts=3, successful_reads=2, failed_reads=1)
        assert stats.success_rate == 66.7
        assert stats.to_dict()["success_rate"] == 66.7
