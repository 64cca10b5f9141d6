"""
Configuration Manager - client settings and MCP server declarations.

Handles YAML/JSON configuration files with environment overrides.
"""

import json
import os
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml
from loguru import logger

from mcpbridge.mcp.manager import MCPTimeouts
from mcpbridge.mcp.types import LATEST_PROTOCOL_VERSION, MCPServerConfig


class ConfigManager:
    """
    Configuration manager for mcpbridge.

    Features:
    - YAML/JSON configuration files
    - Environment variable overrides
    - Default values
    - Server lists (`mcp.servers`) or server maps (`mcpServers`)
    """

    DEFAULT_CONFIG = {
        "app": {
            "name": "mcpbridge",
            "debug": False,
        },
        "logging": {
            "level": "WARNING",
            "file": None,
        },
        "mcp": {
            "enabled": True,
            "protocol_version": LATEST_PROTOCOL_VERSION,
            "timeouts": {
                "connect_seconds": 30.0,
                "request_seconds": 30.0,
            },
            "servers": [],
        },
    }

    ENV_MAPPINGS: Dict[str, tuple] = {
        "MCPBRIDGE_DEBUG": ("app.debug", lambda x: x.lower() == "true"),
        "MCPBRIDGE_LOG_LEVEL": ("logging.level", str),
        "MCPBRIDGE_CONNECT_TIMEOUT": ("mcp.timeouts.connect_seconds", float),
        "MCPBRIDGE_REQUEST_TIMEOUT": ("mcp.timeouts.request_seconds", float),
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to configuration file
        """
        self._config_path = Path(config_path) if config_path else Path("mcpbridge.yaml")
        self._config: Dict[str, Any] = self._deep_copy(self.DEFAULT_CONFIG)
        self._watchers: List[Callable[[str, Any], None]] = []
        self._loaded = False

    @property
    def path(self) -> Path:
        return self._config_path

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def load(self) -> None:
        """Load configuration from file."""
        self._config = self._deep_copy(self.DEFAULT_CONFIG)

        if self._config_path.exists():
            content = self._config_path.read_text(encoding="utf-8")
            if self._config_path.suffix in [".yaml", ".yml"]:
                try:
                    file_config = yaml.safe_load(content) or {}
                except yaml.YAMLError as e:
                    raise ValueError(f"Invalid YAML in {self._config_path}: {e}") from e
            else:
                try:
                    file_config = json.loads(content) if content.strip() else {}
                except json.JSONDecodeError as e:
                    raise ValueError(f"Invalid JSON in {self._config_path}: {e}") from e

            if not isinstance(file_config, dict):
                raise ValueError(f"Configuration root must be a mapping: {self._config_path}")

            self._deep_merge(self._config, file_config)
            logger.info(f"Configuration loaded from {self._config_path}")
        else:
            logger.info(f"No configuration file at {self._config_path}, using defaults")

        self._apply_env_overrides()
        self._loaded = True

    async def save(self) -> None:
        """Save configuration to file."""
        self._config_path.parent.mkdir(parents=True, exist_ok=True)

        if self._config_path.suffix in [".yaml", ".yml"]:
            content = yaml.dump(self._config, default_flow_style=False, sort_keys=False)
        else:
            content = json.dumps(self._config, indent=2)

        self._config_path.write_text(content, encoding="utf-8")
        logger.debug(f"Configuration saved to {self._config_path}")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value.

        Args:
            key: Dot-notation key (e.g., "mcp.timeouts.request_seconds")
            default: Default value if not found

        Returns:
            Configuration value
        """
        parts = key.split(".")
        value = self._config

        for part in parts:
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return default

        return value

    def set(self, key: str, value: Any) -> None:
        """
        Set a configuration value.

        Args:
            key: Dot-notation key
            value: Value to set
        """
        parts = key.split(".")
        config = self._config

        for part in parts[:-1]:
            if not isinstance(config.get(part), dict):
                config[part] = {}
            config = config[part]

        config[parts[-1]] = value

        for watcher in self._watchers:
            try:
                watcher(key, value)
            except Exception as e:
                logger.warning(f"Config watcher error: {e}")

    def watch(self, callback: Callable[[str, Any], None]) -> None:
        """Register a configuration change watcher."""
        self._watchers.append(callback)

    def unwatch(self, callback: Callable[[str, Any], None]) -> None:
        """Unregister a watcher."""
        if callback in self._watchers:
            self._watchers.remove(callback)

    def get_timeouts(self) -> MCPTimeouts:
        def _seconds(key: str, default: float) -> float:
            try:
                return float(self.get(key, default))
            except (TypeError, ValueError):
                logger.warning(f"Invalid value for {key}, using {default}")
                return float(default)

        return MCPTimeouts(
            connect_seconds=_seconds("mcp.timeouts.connect_seconds", 30.0),
            request_seconds=_seconds("mcp.timeouts.request_seconds", 30.0),
        )

    def get_protocol_version(self) -> str:
        return str(self.get("mcp.protocol_version") or LATEST_PROTOCOL_VERSION)

    def get_server_configs(self) -> List[MCPServerConfig]:
        """All declared MCP servers, from `mcp.servers` and `mcpServers`."""
        if not self.get("mcp.enabled", True):
            return []

        entries: List[tuple] = []
        servers = self.get("mcp.servers", []) or []
        if isinstance(servers, dict):
            entries.extend((name, data) for name, data in servers.items())
        else:
            entries.extend((None, data) for data in servers)

        server_map = self.get("mcpServers", {}) or {}
        if isinstance(server_map, dict):
            entries.extend((name, data) for name, data in server_map.items())

        configs: List[MCPServerConfig] = []
        seen = set()
        for name, data in entries:
            if not isinstance(data, dict):
                logger.warning(f"Skipping MCP server entry that is not a mapping: {data!r}")
                continue
            try:
                config = MCPServerConfig.from_dict(data, name=name)
            except ValueError as e:
                logger.warning(f"Skipping MCP server entry: {e}")
                continue
            if config.name in seen:
                logger.warning(f"Duplicate MCP server name '{config.name}', keeping the first")
                continue
            if config.cwd is not None and not config.cwd.is_absolute():
                config = replace(config, cwd=(self._config_path.parent / config.cwd).resolve())
            seen.add(config.name)
            configs.append(config)

        return configs

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides."""
        for env_var, (config_key, converter) in self.ENV_MAPPINGS.items():
            value = os.getenv(env_var)
            if value:
                try:
                    self.set(config_key, converter(value))
                    logger.debug(f"Applied env override: {env_var}")
                except Exception as e:
                    logger.warning(f"Failed to apply {env_var}: {e}")

    def _deep_merge(self, base: dict, override: dict) -> None:
        """Deep merge override into base dict."""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def _deep_copy(self, obj: Any) -> Any:
        """Deep copy a dictionary."""
        if isinstance(obj, dict):
            return {k: self._deep_copy(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [self._deep_copy(item) for item in obj]
        return obj

    @property
    def all(self) -> Dict[str, Any]:
        """Get all configuration."""
        return self._deep_copy(self._config)
