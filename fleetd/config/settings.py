"""
Alert engine configuration loader.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Environment variable -> (YAML section, key)
ENV_FIELDS = {
    "FLEETD_SPEED_LIMIT_KMH": ("engine", "speed_limit_kmh"),
    "FLEETD_REFRESH_INTERVAL_SECONDS": ("engine", "refresh_interval_seconds"),
    "FLEETD_FETCH_TIMEOUT_SECONDS": ("engine", "fetch_timeout_seconds"),
    "FLEETD_QUEUE_MAX_SIZE": ("engine", "queue_max_size"),
    "FLEETD_DEDUP_WINDOW_MINUTES": ("engine", "dedup_window_minutes"),
    "FLEETD_ALERT_RETENTION_HOURS": ("engine", "alert_retention_hours"),
    "FLEETD_CACHE_PATH": ("storage", "cache_path"),
    "FLEETD_DB_PATH": ("storage", "db_path"),
    "FLEETD_RETENTION_CONFIG_PATH": ("storage", "retention_config_path"),
    "FLEETD_RETENTION_LOGS_DIR": ("storage", "retention_logs_dir"),
    "FLEETD_RETENTION_STATE_PATH": ("storage", "retention_state_path"),
    "FLEETD_DISPATCHER_WORKERS": ("dispatcher", "workers"),
    "FLEETD_DISPATCHER_BUFFER_SIZE": ("dispatcher", "buffer_size"),
    "COLTRACK_API_URL": ("telemetry", "coltrack_url"),
    "COLTRACK_USER": ("telemetry", "coltrack_user"),
    "COLTRACK_PASSWORD": ("telemetry", "coltrack_password"),
    "FAGOR_API_URL": ("telemetry", "fagor_url"),
    "FAGOR_USER": ("telemetry", "fagor_user"),
    "FAGOR_PASSWORD": ("telemetry", "fagor_password"),
    "FAGOR_COMPANY": ("telemetry", "fagor_company"),
    "FLEETD_SOURCE_TIMEOUT_SECONDS": ("telemetry", "source_timeout_seconds"),
    "TELEGRAM_BOT_TOKEN": ("telegram", "bot_token"),
    "TELEGRAM_CHAT_ID": ("telegram", "chat_id"),
    "TELEGRAM_MIN_SEVERITY": ("telegram", "min_severity"),
    "FLEETD_METRICS_PORT": ("metrics", "port"),
}


class EngineSettings(BaseModel):
    """Classifier thresholds and refresh cycle timing."""
    speed_limit_kmh: float = 80.0
    refresh_interval_seconds: float = 300.0
    fetch_timeout_seconds: float = 60.0
    queue_max_size: int = 500
    dedup_window_minutes: float = 5.0
    alert_retention_hours: int = 24
    promoted_ttl_hours: int = 72
    idle_alert_minutes: float = 10.0


class StorageSettings(BaseModel):
    """File locations."""
    cache_path: str = "data/alert_cache.json"
    db_path: str = "data/fleetd.db"
    retention_config_path: str = "configs/retention.yaml"
    retention_logs_dir: str = "logs/retention"
    retention_state_path: str = "data/retention_state.json"


class DispatcherSettings(BaseModel):
    """Side-effect worker pool."""
    workers: int = 4
    buffer_size: int = 1000


class TelemetrySettings(BaseModel):
    """Carrier endpoints and credentials."""
    coltrack_url: Optional[str] = None
    coltrack_user: Optional[str] = None
    coltrack_password: Optional[str] = None
    fagor_url: Optional[str] = None
    fagor_user: Optional[str] = None
    fagor_password: Optional[str] = None
    fagor_company: str = ""
    timeout_seconds: float = 30.0
    source_timeout_seconds: float = 45.0


class TelegramSettings(BaseModel):
    """Telegram notifier; disabled unless both token and chat are set."""
    bot_token: Optional[str] = None
    chat_id: Optional[str] = None
    min_severity: str = "high"

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token and self.chat_id)


class MetricsSettings(BaseModel):
    """Prometheus endpoint; disabled when no port is set."""
    host: str = "0.0.0.0"
    port: Optional[int] = None


class FleetSettings(BaseModel):
    """Alert engine configuration."""
    engine: EngineSettings = Field(default_factory=EngineSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    dispatcher: DispatcherSettings = Field(default_factory=DispatcherSettings)
    telemetry: TelemetrySettings = Field(default_factory=TelemetrySettings)
    telegram: TelegramSettings = Field(default_factory=TelegramSettings)
    metrics: MetricsSettings = Field(default_factory=MetricsSettings)


def _read_yaml(config_path: Path) -> Dict[str, Any]:
    with open(config_path, 'r') as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file must contain a mapping: {config_path}")
    return data


def load_settings(config_path: Optional[Path] = None) -> FleetSettings:
    """
    Load settings from environment variables and the YAML config file.

    Environment variables (including a ``.env`` file) take precedence over
    the YAML file; anything set in neither keeps its default.
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(os.getenv("FLEETD_CONFIG", "configs/fleetd.yaml"))
    config_path = Path(config_path)

    config_data: Dict[str, Any] = _read_yaml(config_path) if config_path.exists() else {}

    for env_name, (section, key) in ENV_FIELDS.items():
        value = os.getenv(env_name)
        if value is None or value == "":
            continue
        config_data.setdefault(section, {})
        if config_data[section] is None:
            config_data[section] = {}
        config_data[section][key] = value

    return FleetSettings(**config_data)
