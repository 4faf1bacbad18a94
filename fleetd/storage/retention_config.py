"""
Configuration management for the retention system.

This module handles loading, validation, and management of retention
configurations. Policies are read-only at runtime; a default file is
written when none exists.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .gateway import RecordCategory
from .retention_models import RetentionConfig, RetentionPolicy

logger = logging.getLogger(__name__)

DEFAULT_POLICIES: Dict[str, Dict[str, Any]] = {
    RecordCategory.RESOLVED_ALERTS.value: {
        'enabled': True,
        'retention_days': 7,
        'max_records': 1000,
        'description': 'Saved alerts in resolved status'
    },
    RecordCategory.ACTIVE_ALERTS.value: {
        'enabled': True,
        'retention_days': 30,
        'max_records': 500,
        'description': 'Saved alerts pending or in progress'
    },
    RecordCategory.INSPECTIONS.value: {
        'enabled': True,
        'retention_days': 7,
        'max_records': 5000,
        'description': 'Pre-operational inspection crossings'
    },
    RecordCategory.COMPLETED_ACTION_PLANS.value: {
        'enabled': True,
        'retention_days': 30,
        'max_records': 2000,
        'description': 'Completed action plans'
    },
}


class RetentionConfigManager:
    """Manages retention system configuration."""

    def __init__(self, config_path: str):
        self.config_path = Path(config_path)
        self.config = self._load_config()

    def _load_config(self) -> RetentionConfig:
        """Load configuration from YAML file."""
        if self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    config_data = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                logger.error(f"Failed to load config: {e}. Using defaults.")
                config_data = self._get_default_config()
        else:
            logger.warning(f"Config file not found at {self.config_path}. Using defaults.")
            config_data = self._get_default_config()
            self._save_config(config_data)

        return self._parse_config(config_data)

    def _parse_config(self, config_data: Dict[str, Any]) -> RetentionConfig:
        """Parse configuration data into RetentionConfig object."""
        defaults = self._get_default_config()

        policies = {}
        policy_data_by_category = dict(DEFAULT_POLICIES)
        policy_data_by_category.update(config_data.get('retention_policies') or {})
        for category, policy_data in policy_data_by_category.items():
            try:
                RecordCategory(category)
            except ValueError:
                logger.warning(f"Ignoring retention policy for unknown category: {category}")
                continue
            fallback = DEFAULT_POLICIES[category]
            policy_data = policy_data or {}
            policies[category] = RetentionPolicy(
                enabled=bool(policy_data.get('enabled', fallback['enabled'])),
                retention_days=int(policy_data.get('retention_days', fallback['retention_days'])),
                max_records=int(policy_data.get('max_records', fallback['max_records'])),
                description=policy_data.get('description', fallback['description'])
            )

        def section(name: str) -> Dict[str, Any]:
            merged = dict(defaults[name])
            merged.update(config_data.get(name) or {})
            return merged

        return RetentionConfig(
            global_settings=section('global'),
            scheduler_settings=section('scheduler'),
            retention_policies=policies,
            export_settings=section('export'),
            storage_monitoring=section('storage_monitoring')
        )

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration."""
        return {
            'global': {
                'enabled': True
            },
            'scheduler': {
                'enabled': True,
                'cleanup_interval_days': 1,
                'cleanup_hour': 2,
                'run_on_startup': True,
                'check_interval_minutes': 60
            },
            'retention_policies': {name: dict(values) for name, values in DEFAULT_POLICIES.items()},
            'export': {
                'directory': 'data/retention_exports',
                'format': 'csv',
                'timeout_seconds': 60
            },
            'storage_monitoring': {
                'avg_alert_size_bytes': 1024,
                'avg_inspection_size_bytes': 512,
                'avg_action_plan_size_bytes': 512,
                'max_database_size_bytes': 500 * 1024 * 1024,
                'warning_threshold': 0.8
            }
        }

    def _save_config(self, config_data: Dict[str, Any]):
        """Save configuration to YAML file."""
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, 'w') as f:
                yaml.dump(config_data, f, default_flow_style=False, indent=2)
        except OSError as e:
            logger.error(f"Failed to save config: {e}")

    def get_policy(self, category: str) -> Optional[RetentionPolicy]:
        """Get retention policy for a specific category."""
        return self.config.retention_policies.get(category)

    def is_enabled(self) -> bool:
        """Check if retention system is enabled."""
        return bool(self.config.global_settings.get('enabled', True))

    def get_retention_policies(self) -> Dict[str, RetentionPolicy]:
        """Get all retention policies."""
        return self.config.retention_policies
