"""
Configuration Manager for MeterHub

Loads config.yaml, applies environment overrides and validates the result
into a HubConfig. Defaults are resolved here once; the rest of the code only
sees fully populated config objects.
"""

import os
import yaml
import logging
from typing import Any, Dict, Mapping, Optional
from pathlib import Path
from meterhub.config import HubConfig
from meterhub.timezone_utils import initialize_timezones

log = logging.getLogger(__name__)


def _int(value: str) -> int:
    return int(value.strip())


def _true_unless_false(value: str) -> bool:
    return value.strip().lower() != "false"


def _true_only_if_true(value: str) -> bool:
    return value.strip().lower() == "true"


# env var -> (section, key, parser)
ENV_OVERRIDES = {
    "METER_COLLECTION_BATCH_SIZE": ("collection", "batch_size", _int),
    "METER_COLLECTION_TIMEOUT": ("collection", "timeout_ms", _int),
    "METER_COLLECTION_RETRIES": ("collection", "retry_attempts", _int),
    "METER_COLLECTION_INTERVAL": ("collection", "interval_ms", _int),
    "DEFAULT_METER_IP": ("meters", "default_ip", str.strip),
    "DEFAULT_METER_PORT": ("meters", "default_port", _int),
    "DEFAULT_METER_SLAVE_ID": ("meters", "default_slave_id", _int),
    "BATCH_INSERT_ENABLED": ("database", "batch_insert", _true_unless_false),
    "MAX_BATCH_SIZE": ("database", "max_batch_size", _int),
    "DATABASE_URL": ("database", "dsn", str.strip),
    "LOG_SUCCESSFUL_READS": ("logging", "log_successful_reads", _true_only_if_true),
    "LOG_FAILED_READS": ("logging", "log_failed_reads", _true_unless_false),
    "LOG_STATS_INTERVAL": ("logging", "stats_interval_ms", _int),
}


def resolve_config_path(cli_path: Optional[str] = None) -> Path:
    """
    Resolve config path with the following precedence:
    1) CLI: --config /path/to/config.yaml
    2) ENV: METERHUB_CONFIG=/path/to/config.yaml
    3) Default: <project_root>/config.yaml  (parent of the 'meterhub' package dir)
    """
    if cli_path:
        return Path(cli_path).expanduser().resolve()

    env = os.getenv("METERHUB_CONFIG")
    if env:
        return Path(env).expanduser().resolve()

    return Path(__file__).resolve().parents[1] / "config.yaml"


class ConfigurationManager:
    """Builds the HubConfig from config.yaml plus environment overrides."""

    def __init__(self, config_path: str = "config.yaml", environ: Optional[Mapping[str, str]] = None):
        self.config_path = Path(config_path)
        self.environ = os.environ if environ is None else environ
        self._config_cache: Optional[HubConfig] = None

    def load_config(self) -> HubConfig:
        """Load config.yaml (defaults if missing), apply env overrides and validate."""
        raw = self._load_from_file()
        self.apply_env_overrides(raw)
        cfg = HubConfig.model_validate(raw)
        self._config_cache = cfg

        initialize_timezones(cfg.timezone)
        log.info(f"Configuration loaded - collection interval {cfg.collection.interval_ms}ms, "
                 f"batch size {cfg.collection.batch_size}, batch insert {cfg.database.batch_insert}")
        return cfg

    def get_config(self) -> HubConfig:
        if self._config_cache is None:
            return self.load_config()
        return self._config_cache

    def _load_from_file(self) -> Dict[str, Any]:
        if not self.config_path.exists():
            log.info(f"No configuration file at {self.config_path}, using defaults")
            return {}

        with open(self.config_path, "r") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Configuration file {self.config_path} must contain a mapping")
        log.info(f"Loaded configuration from {self.config_path}")
        return data

    def apply_env_overrides(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        """Overlay recognized environment variables onto the raw config dict in place."""
        for env_name, (section, key, parse) in ENV_OVERRIDES.items():
            value = self.environ.get(env_name)
            if value is None or value == "":
                continue
            try:
                parsed = parse(value)
            except ValueError:
                log.warning(f"Ignoring {env_name}={value!r}: not a valid value")
                continue
            section_dict = raw.get(section)
            if not isinstance(section_dict, dict):
                section_dict = {}
                raw[section] = section_dict
            section_dict[key] = parsed
            log.debug(f"Config override from {env_name}: {section}.{key}")
        return raw
