"""
Configuration Management System

This module provides centralized configuration management using YAML and JSON files.
Supports dot-notation access, environment overrides and hot reloading.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


# Defaults used when a key is missing from every config file
DEFAULT_CORRIDOR_CONFIG: Dict[str, Any] = {
    'sceneArrivalMeters': 150,
    'hospitalArrivalMeters': 150,
    'corridorRadiusMeters': 200,
    'passedMarginMeters': 50,
    'overrideTtlSeconds': 600,
    'sweepIntervalSeconds': 30,
    'locationHistoryLimit': 50,
    'rejectUnknownLocationUpdates': True,
    'seedDemoData': True,
}

# Environment variable -> (dot key, parser)
ENV_OVERRIDES = {
    'SEED_DEMO_DATA': ('corridor.seedDemoData', lambda v: v.strip().lower() in ('1', 'true', 'yes')),
    'CORRIDOR_TTL_SECONDS': ('corridor.overrideTtlSeconds', float),
    'CORRIDOR_SWEEP_SECONDS': ('corridor.sweepIntervalSeconds', float),
    'LOG_LEVEL': ('logging.level', lambda v: v.strip().upper()),
}


class ConfigManager:
    """
    Manage application configuration from YAML and JSON files

    Provides:
    - Load all config files on startup
    - Dot notation access: config.get('corridor.overrideTtlSeconds')
    - Environment overrides (SEED_DEMO_DATA, LOG_LEVEL, ...)
    - Hot reload capability
    - Default values for missing keys
    """

    def __init__(self, config_dir: str = None, load_env: bool = True):
        """
        Initialize configuration manager

        Args:
            config_dir: Path to config directory (default: project_root/config)
            load_env: Whether to read a .env file before applying env overrides
        """
        if config_dir:
            self.config_dir = Path(config_dir)
        else:
            # Find config dir relative to this file
            self.config_dir = Path(__file__).parent.parent / "config"

        self.load_env = load_env
        self.configs: Dict[str, Any] = {}
        self._load_all_configs()

    def _load_all_configs(self):
        """Load all configuration files from config directory"""
        if self.load_env:
            load_dotenv()

        if not self.config_dir.exists():
            logger.warning("Config directory not found: %s (using defaults)", self.config_dir)
        else:
            # Load YAML configs
            for yaml_file in sorted(self.config_dir.glob("*.yaml")):
                try:
                    with open(yaml_file, 'r') as f:
                        self._merge(yaml.safe_load(f) or {})
                    logger.info("Loaded config: %s", yaml_file.name)
                except (OSError, yaml.YAMLError) as e:
                    logger.warning("Failed to load %s: %s", yaml_file.name, e)

            # Load JSON configs
            for json_file in sorted(self.config_dir.glob("*.json")):
                try:
                    with open(json_file, 'r') as f:
                        self._merge(json.load(f))
                    logger.info("Loaded config: %s", json_file.name)
                except (OSError, json.JSONDecodeError) as e:
                    logger.warning("Failed to load %s: %s", json_file.name, e)

        self._apply_env_overrides()

    def _merge(self, data: Dict[str, Any]):
        """Merge top-level sections of a config file into the loaded config"""
        for section, values in data.items():
            if isinstance(values, dict) and isinstance(self.configs.get(section), dict):
                self.configs[section].update(values)
            else:
                self.configs[section] = values

    def _apply_env_overrides(self):
        for env_name, (key, parse) in ENV_OVERRIDES.items():
            raw = os.getenv(env_name)
            if raw is None or raw == "":
                continue
            try:
                self.set(key, parse(raw))
            except ValueError:
                logger.warning("Ignoring invalid %s=%r", env_name, raw)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot notation key

        Examples:
            config.get('corridor.sceneArrivalMeters')
            config.get('logging.level', 'INFO')

        Args:
            key: Dot-separated key path
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        value = self.configs
        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def get_corridor_config(self) -> Dict[str, Any]:
        """Get corridor engine section merged over defaults"""
        merged = dict(DEFAULT_CORRIDOR_CONFIG)
        merged.update(self.configs.get('corridor', {}) or {})
        return merged

    def get_logging_config(self) -> Dict[str, Any]:
        """Get logging section"""
        return self.configs.get('logging', {}) or {}

    def get_server_config(self) -> Dict[str, Any]:
        """Get server section"""
        return self.configs.get('server', {}) or {}

    def reload(self):
        """Reload all configuration files"""
        logger.info("Reloading configuration...")
        self.configs.clear()
        self._load_all_configs()

    def set(self, key: str, value: Any):
        """
        Set a configuration value (runtime only, not persisted)

        Args:
            key: Dot-separated key path
            value: Value to set
        """
        keys = key.split('.')
        config = self.configs

        for k in keys[:-1]:
            if not isinstance(config.get(k), dict):
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value


# Global configuration instance (created on first use)
config: Optional[ConfigManager] = None


def get_config() -> ConfigManager:
    """Get the global configuration instance"""
    global config
    if config is None:
        config = ConfigManager()
    return config
