"""
Unit tests for configuration loading.
"""

import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml
from pydantic import ValidationError

from fleetd.app import build_source
from fleetd.config.settings import ENV_FIELDS, FleetSettings, load_settings
from fleetd.telemetry import CompositeTelemetrySource


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_FIELDS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("FLEETD_CONFIG", raising=False)
    with patch("fleetd.config.settings.load_dotenv"):
        yield monkeypatch


@pytest.fixture
def config_file():
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir) / "fleetd.yaml"


class TestLoadSettings:
    """Test YAML and environment configuration."""

    def test_defaults(self, clean_env, config_file):
        settings = load_settings(config_file)

        assert settings.engine.speed_limit_kmh == 80.0
        assert settings.engine.queue_max_size == 500
        assert settings.engine.dedup_window_minutes == 5.0
        assert settings.dispatcher.workers == 4
        assert settings.telegram.enabled is False
        assert settings.metrics.port is None
        assert settings.telemetry.source_timeout_seconds < settings.engine.fetch_timeout_seconds

    def test_yaml_values(self, clean_env, config_file):
        config_file.write_text(yaml.dump({
            'engine': {'speed_limit_kmh': 70, 'refresh_interval_seconds': 120},
            'telemetry': {'coltrack_url': 'https://coltrack.test/api'},
        }))

        settings = load_settings(config_file)

        assert settings.engine.speed_limit_kmh == 70
        assert settings.engine.refresh_interval_seconds == 120
        assert settings.telemetry.coltrack_url == 'https://coltrack.test/api'

    def test_environment_overrides_yaml(self, clean_env, config_file):
        config_file.write_text(yaml.dump({'engine': {'speed_limit_kmh': 70}}))
        clean_env.setenv("FLEETD_SPEED_LIMIT_KMH", "90")
        clean_env.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
        clean_env.setenv("TELEGRAM_CHAT_ID", "-100")
        clean_env.setenv("FLEETD_METRICS_PORT", "9108")

        settings = load_settings(config_file)

        assert settings.engine.speed_limit_kmh == 90.0
        assert settings.telegram.enabled is True
        assert settings.metrics.port == 9108

    def test_empty_environment_value_is_ignored(self, clean_env, config_file):
        clean_env.setenv("FLEETD_SPEED_LIMIT_KMH", "")

        assert load_settings(config_file).engine.speed_limit_kmh == 80.0

    def test_config_path_from_environment(self, clean_env, config_file):
        config_file.write_text(yaml.dump({'dispatcher': {'workers': 8}}))
        clean_env.setenv("FLEETD_CONFIG", str(config_file))

        assert load_settings().dispatcher.workers == 8

    def test_invalid_value_is_rejected(self, clean_env, config_file):
        clean_env.setenv("FLEETD_QUEUE_MAX_SIZE", "lots")

        with pytest.raises(ValidationError):
            load_settings(config_file)

    def test_non_mapping_file_is_rejected(self, clean_env, config_file):
        config_file.write_text("- just\n- a list\n")

        with pytest.raises(ValueError):
            load_settings(config_file)

    def test_settings_model_defaults(self):
        settings = FleetSettings()

        assert settings.storage.db_path == "data/fleetd.db"
        assert settings.telemetry.fagor_url is None

    @pytest.mark.asyncio
    async def test_composite_source_gets_per_source_timeout(self):
        settings = FleetSettings(telemetry={
            'coltrack_url': 'https://coltrack.test/api',
            'fagor_url': 'https://fagor.test/ws',
            'source_timeout_seconds': 12,
        })

        source = build_source(settings)

        assert isinstance(source, CompositeTelemetrySource)
        assert source.source_timeout_seconds == 12
        await source.close()
