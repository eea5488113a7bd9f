"""Settings for the Niimbot bridge.

Each setting is resolved from, in decreasing priority: an environment
variable, a CLI option, the YAML config file, the built-in default.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from niimbot_bridge.core.logging import get_logger

logger = get_logger()

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "niimbot-bridge" / "config.yaml"

# Environment overrides
ENV_DEVICE_PATH = "DEVICE_PATH"
ENV_DEVICE_BAUD_RATE = "DEVICE_BAUD_RATE"
ENV_DEVICE_PACKET_INTERVAL = "DEVICE_PACKET_INTERVAL"
ENV_DEVICE_NEGOTIATION_TIMEOUT = "DEVICE_NEGOTIATION_TIMEOUT"
ENV_DEVICE_INFO_TIMEOUT = "DEVICE_INFO_TIMEOUT"
ENV_DEVICE_HEARTBEAT_INTERVAL = "DEVICE_HEARTBEAT_INTERVAL"
ENV_DEVICE_HEARTBEAT_MAX_FAILS = "DEVICE_HEARTBEAT_MAX_FAILS"
ENV_PACKET_LOG_FILE = "PACKET_LOG_FILE"
ENV_CONFIG_FILE = "NIIMBOT_BRIDGE_CONFIG"

# (attribute, cast) pairs for the device section, shared by all config sources
_DEVICE_FIELDS: list[tuple[str, type]] = [
    ("path", str),
    ("baud_rate", int),
    ("packet_interval", float),
    ("negotiation_timeout", float),
    ("info_timeout", float),
    ("heartbeat_interval", float),
    ("heartbeat_max_fails", int),
]

_DEVICE_ENV_VARS: dict[str, str] = {
    "path": ENV_DEVICE_PATH,
    "baud_rate": ENV_DEVICE_BAUD_RATE,
    "packet_interval": ENV_DEVICE_PACKET_INTERVAL,
    "negotiation_timeout": ENV_DEVICE_NEGOTIATION_TIMEOUT,
    "info_timeout": ENV_DEVICE_INFO_TIMEOUT,
    "heartbeat_interval": ENV_DEVICE_HEARTBEAT_INTERVAL,
    "heartbeat_max_fails": ENV_DEVICE_HEARTBEAT_MAX_FAILS,
}


@dataclass
class DeviceConfig:
    """Serial printer configuration settings."""

    path: str | None = None
    baud_rate: int = 115200
    packet_interval: float = 10.0  # ms
    negotiation_timeout: float = 1000.0  # ms
    info_timeout: float = 1000.0  # ms
    heartbeat_interval: float = 2000.0  # ms, 0 disables the heartbeat
    heartbeat_max_fails: int = 5


@dataclass
class Config:
    """Main configuration container."""

    device: DeviceConfig = field(default_factory=DeviceConfig)
    packet_log_file: str | None = None

    @classmethod
    def load(
        cls,
        config_file: Path | str | None = None,
        cli_args: dict[str, Any] | None = None,
    ) -> "Config":
        """Resolve every setting from the environment, CLI, file and defaults.

        Args:
            config_file: YAML file to read. Falls back to $NIIMBOT_BRIDGE_CONFIG,
                then to DEFAULT_CONFIG_PATH. A missing file is not an error.
            cli_args: Option values keyed by DeviceConfig field name (plus
                packet_log_file); None values are ignored.

        Returns:
            The validated configuration.

        Raises:
            ValueError: If a loaded value is invalid.
        """
        config = cls()

        if config_file is None:
            config_file = os.environ.get(ENV_CONFIG_FILE, str(DEFAULT_CONFIG_PATH))

        config_path = Path(config_file).expanduser()

        if config_path.exists():
            config = cls._load_from_file(config_path)

        if cli_args:
            config = cls._apply_cli_args(config, cli_args)

        # Environment variables have the highest precedence
        config = cls._apply_env_vars(config)

        config._validate()

        return config

    @classmethod
    def _load_from_file(cls, path: Path) -> "Config":
        """Read the YAML config file on top of the defaults.

        Keys may be written hyphenated (``baud-rate``) or with underscores.
        An unreadable file is logged and the defaults are kept.
        """
        config = cls()

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (yaml.YAMLError, OSError) as e:
            logger.warning(f"Failed to load config file {path}: {e}")
            return config

        if not isinstance(data, dict):
            logger.warning(f"Ignoring config file {path}: expected a mapping, got {type(data).__name__}")
            return config

        device_data = data.get("device") or {}
        if not isinstance(device_data, dict):
            logger.warning(f"Ignoring 'device' section of {path}: expected a mapping")
            device_data = {}
        for name, cast in _DEVICE_FIELDS:
            value = _lookup(device_data, name)
            if value is not None:
                setattr(config.device, name, cast(value))

        packet_log_file = _lookup(data, "packet_log_file")
        if packet_log_file is not None:
            config.packet_log_file = str(packet_log_file)

        return config

    @classmethod
    def _apply_cli_args(cls, config: "Config", cli_args: dict[str, Any]) -> "Config":
        """Override settings with the CLI options that were given."""
        for name, cast in _DEVICE_FIELDS:
            if cli_args.get(name) is not None:
                setattr(config.device, name, cast(cli_args[name]))

        if cli_args.get("packet_log_file") is not None:
            config.packet_log_file = str(cli_args["packet_log_file"])

        return config

    @classmethod
    def _apply_env_vars(cls, config: "Config") -> "Config":
        """Override settings with the DEVICE_* and PACKET_LOG_FILE variables."""
        for name, cast in _DEVICE_FIELDS:
            env_var = _DEVICE_ENV_VARS[name]
            if env_var in os.environ:
                setattr(config.device, name, cast(os.environ[env_var]))

        if ENV_PACKET_LOG_FILE in os.environ:
            config.packet_log_file = os.environ[ENV_PACKET_LOG_FILE]

        return config

    def _validate(self) -> None:
        """Validate configuration values.

        Raises:
            ValueError: If a value is out of range.
        """
        if self.device.baud_rate <= 0:
            raise ValueError(f"Baud rate must be positive, got {self.device.baud_rate}")

        for name in ("packet_interval", "negotiation_timeout", "info_timeout",
                     "heartbeat_interval"):
            if getattr(self.device, name) < 0:
                raise ValueError(f"Device setting '{name}' must be non-negative")

        if self.device.heartbeat_max_fails < 1:
            raise ValueError("Device setting 'heartbeat_max_fails' must be at least 1")

    def to_dict(self) -> dict[str, Any]:
        """Plain dict of every setting, keyed by field name."""
        result: dict[str, Any] = {
            "device": {name: getattr(self.device, name) for name, _ in _DEVICE_FIELDS},
        }
        if self.packet_log_file is not None:
            result["packet_log_file"] = self.packet_log_file
        return result

    def save(self, path: Path | str | None = None) -> None:
        """Write the settings as hyphenated YAML, creating parent directories.

        Args:
            path: Target file. Defaults to DEFAULT_CONFIG_PATH.
        """
        if path is None:
            path = DEFAULT_CONFIG_PATH

        save_path = Path(path).expanduser()
        save_path.parent.mkdir(parents=True, exist_ok=True)

        # YAML-friendly format with hyphenated keys, unset path omitted
        device_data: dict[str, Any] = {
            name.replace("_", "-"): getattr(self.device, name)
            for name, _ in _DEVICE_FIELDS
            if getattr(self.device, name) is not None
        }

        data: dict[str, Any] = {"device": device_data}

        if self.packet_log_file is not None:
            data["packet-log-file"] = self.packet_log_file

        with open(save_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, default_flow_style=False)


def _lookup(data: dict[str, Any], name: str) -> Any:
    """Find a key in either its hyphenated or underscored spelling."""
    hyphenated = name.replace("_", "-")
    if hyphenated in data:
        return data[hyphenated]
    return data.get(name)
