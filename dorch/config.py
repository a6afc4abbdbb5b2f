"""
Configuration management for dorch.

Loads and validates the dorch.yaml configuration file.

Example:
    project:
      name: asto-energy
    paths:
      definitions: deploy
      artifacts: artifacts
      deployments: deployments
    networks:
      localhost:
        url: http://127.0.0.1:8545
        timeout_s: 60
      rinkeby:
        url: ${RINKEBY_URL}
        chain_id: 4
        accounts: [${DEPLOYER_KEY}, ${AGENT_KEY}]
        gas:
          max_fee_gwei: 50
          priority_fee_gwei: 2
        live: true
    accounts:
      deployer: 0
      agent:
        default: 1
        rinkeby: "0xb5c8..."

${VAR} and ${VAR:-default} are substituted from the environment after
loading a .env file next to the config.
"""

import os
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from dotenv import load_dotenv

from dorch.errors import ConfigError


CONFIG_ENV_VAR = "DORCH_CONFIG"
DEFAULT_CONFIG_NAME = "dorch.yaml"
DEFAULT_NETWORK_TIMEOUT_S = 300

ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def interpolate_env(value: Any, where: str = "config") -> Any:
    """
    Substitute ${VAR} / ${VAR:-default} in strings (recursively).

    Raises:
        ConfigError: If a variable without default is not set
    """
    if isinstance(value, str):
        def _replace(match: re.Match) -> str:
            name, default = match.group(1), match.group(2)
            env_value = os.environ.get(name)
            # ${VAR:-default} also applies the default to empty values
            if default is not None and not env_value:
                return default
            if env_value is not None:
                return env_value
            raise ConfigError(f"{where}: environment variable {name} is not set")
        return ENV_PATTERN.sub(_replace, value)
    elif isinstance(value, dict):
        return {k: interpolate_env(v, where) for k, v in value.items()}
    elif isinstance(value, list):
        return [interpolate_env(v, where) for v in value]
    return value


class NetworkConfig:
    """Configuration for a single target network."""

    def __init__(self, name: str, data: Dict[str, Any]):
        if not isinstance(data, dict):
            raise ConfigError(f"Network {name}: expected a mapping")
        data = interpolate_env(data, where=f"Network {name}")

        self.name = name
        self.url = data.get("url")
        self.chain_id = data.get("chain_id")
        self.timeout_s = data.get("timeout_s", DEFAULT_NETWORK_TIMEOUT_S)
        self.accounts: List[str] = [key for key in data.get("accounts", []) or [] if key]
        self.gas: Dict[str, Any] = data.get("gas", {}) or {}
        self.live = bool(data.get("live", False))

    def validate(self) -> None:
        """Validate network configuration."""
        if not self.url:
            raise ConfigError(f"Network {self.name}: missing 'url'")
        if self.chain_id is not None and not isinstance(self.chain_id, int):
            raise ConfigError(f"Network {self.name}: chain_id must be an integer")
        if not isinstance(self.timeout_s, (int, float)) or self.timeout_s <= 0:
            raise ConfigError(f"Network {self.name}: timeout_s must be a positive number")
        unknown_gas = set(self.gas) - {"max_fee_gwei", "priority_fee_gwei", "gas_limit_multiplier"}
        if unknown_gas:
            raise ConfigError(f"Network {self.name}: unknown gas setting(s): {', '.join(sorted(unknown_gas))}")

    def __repr__(self) -> str:
        return f"NetworkConfig(name={self.name}, url={self.url}, live={self.live})"


class DorchConfig:
    """Complete project configuration."""

    def __init__(self, config_path: Path):
        self.config_path = Path(config_path)
        self.base_dir = self.config_path.resolve().parent
        load_dotenv(self.base_dir / ".env")
        self.raw_config = self._load_yaml()

        project = self.raw_config.get("project", {}) or {}
        self.name = project.get("name", self.base_dir.name)

        self.paths = self.raw_config.get("paths", {}) or {}

        # Networks are interpolated on access so unused ones need no env vars
        self._networks_data: Dict[str, Any] = self.raw_config.get("networks", {}) or {}

        self.accounts: Dict[str, Any] = self.raw_config.get("accounts", {}) or {}

        # Logging
        self.logging = interpolate_env(self.raw_config.get("logging", {}) or {})

        # Behavior
        self.behavior = self.raw_config.get("behavior", {}) or {}

    def _load_yaml(self) -> Dict[str, Any]:
        """Load and parse YAML configuration file."""
        if not self.config_path.exists():
            raise ConfigError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, "r") as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML syntax: {e}")
        if not config:
            raise ConfigError("Configuration file is empty")
        if not isinstance(config, dict):
            raise ConfigError("Configuration file must contain a mapping")
        return config

    def _path(self, key: str, default: str) -> Path:
        path = Path(self.paths.get(key, default))
        return path if path.is_absolute() else self.base_dir / path

    @property
    def definitions_dir(self) -> Path:
        return self._path("definitions", "deploy")

    @property
    def artifacts_dir(self) -> Path:
        return self._path("artifacts", "artifacts")

    @property
    def deployments_dir(self) -> Path:
        return self._path("deployments", "deployments")

    @property
    def network_names(self) -> List[str]:
        return list(self._networks_data)

    def get_network(self, name: str) -> NetworkConfig:
        """
        Get network configuration by name.

        Raises:
            ConfigError: If the network is not configured or invalid
        """
        if name not in self._networks_data:
            known = ", ".join(self.network_names) or "none"
            raise ConfigError(f"Unknown network: {name} (configured: {known})")
        network = NetworkConfig(name, self._networks_data[name])
        network.validate()
        return network

    def named_accounts(self, network: str) -> Dict[str, Union[int, str]]:
        """
        Named accounts for a network.

        Each entry is an index into the network's signer accounts or an
        address. Per-network mappings fall back to their 'default' key.
        """
        resolved: Dict[str, Union[int, str]] = {}
        for name, value in self.accounts.items():
            if isinstance(value, dict):
                if network in value:
                    value = value[network]
                elif "default" in value:
                    value = value["default"]
                else:
                    continue
            value = interpolate_env(value, where=f"Account {name}")
            if isinstance(value, str) and value.isdigit():
                value = int(value)
            if not isinstance(value, (int, str)) or isinstance(value, bool):
                raise ConfigError(f"Account {name}: expected an index or an address, got {value!r}")
            resolved[name] = value
        if "deployer" not in resolved:
            resolved["deployer"] = 0
        return resolved

    def get_log_file_path(self) -> Optional[Path]:
        """Get log file path with date interpolation (None disables file logging)."""
        log_output = self.logging.get("output")
        if not log_output:
            return None
        log_output = log_output.replace("{date}", datetime.now().strftime("%Y-%m-%d"))
        path = Path(log_output)
        return path if path.is_absolute() else self.base_dir / path

    def get_log_level(self) -> str:
        """Get logging level."""
        return str(self.logging.get("level", "INFO")).upper()

    def get_log_format(self) -> str:
        """Get log format (structured or pretty)."""
        return self.logging.get("format", "pretty")

    def should_log_to_console(self) -> bool:
        """Check if console logging is enabled."""
        return self.logging.get("console", True)

    def should_track_calls(self) -> bool:
        """Check if call units are recorded and skipped on re-runs."""
        return bool(self.behavior.get("track_calls", False))

    def validate(self) -> None:
        """Validate the configuration (networks are validated on access)."""
        if not isinstance(self._networks_data, dict):
            raise ConfigError("'networks' must be a mapping")
        if not isinstance(self.accounts, dict):
            raise ConfigError("'accounts' must be a mapping")
        if self.get_log_format() not in ("structured", "pretty"):
            raise ConfigError(f"Invalid log format: {self.get_log_format()} (use structured or pretty)")
        if self.behavior.get("fail_fast", True) is not True:
            raise ConfigError("behavior.fail_fast cannot be disabled")

    def __repr__(self) -> str:
        return f"DorchConfig(name={self.name}, networks={len(self._networks_data)})"


def default_config_path() -> Path:
    """DORCH_CONFIG if set, else ./dorch.yaml."""
    return Path(os.environ.get(CONFIG_ENV_VAR, DEFAULT_CONFIG_NAME))


def load_config(config_path: Optional[Path] = None) -> DorchConfig:
    """
    Load project configuration from YAML file.

    Args:
        config_path: Path to config file. Defaults to $DORCH_CONFIG or ./dorch.yaml

    Returns:
        Validated DorchConfig instance

    Raises:
        ConfigError: If config is invalid or missing
    """
    if config_path is None:
        config_path = default_config_path()

    config = DorchConfig(Path(config_path))
    config.validate()
    return config
