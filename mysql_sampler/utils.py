"""Utility functions: configuration loading, value parsing, logging setup."""

import logging
import re
import socket
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .errors import ConfigError

logger = logging.getLogger("mysql-sampler.config")

DEFAULT_CONFIG_FILE = Path("instances.yaml")
DEFAULT_INTERVAL = 10.0

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

LOCAL_HOSTS = ("", "localhost", "127.0.0.1")


@dataclass
class SSLConfig:
    """TLS material handed to the client library."""
    key: Optional[str] = None
    cert: Optional[str] = None
    ca: Optional[str] = None
    capath: Optional[str] = None
    cipher: Optional[str] = None


@dataclass
class InstanceConfig:
    """One configured database target."""
    name: str
    alias: Optional[str] = None
    host: Optional[str] = None
    port: int = 0
    socket: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    database: Optional[str] = None
    connect_timeout: int = 0
    ssl: SSLConfig = field(default_factory=SSLConfig)
    primary_stats: bool = False
    replica_stats: bool = False
    innodb_stats: bool = False
    wsrep_stats: bool = False
    replica_notifications: bool = False

    @property
    def host_tag(self) -> str:
        """Host reported alongside every value and notification."""
        if self.alias:
            return self.alias
        if self.host is None or self.host in LOCAL_HOSTS:
            return socket.gethostname()
        return self.host

    @property
    def label(self) -> str:
        where = self.socket if self.socket else f"{self.host or 'localhost'}:{self.port or 3306}"
        return f"{self.name} ({where})"


# Option name -> (field, kind). Legacy spellings map to the same field.
_OPTIONS: Dict[str, Tuple[str, str]] = {
    "name": ("name", "str"),
    "instance": ("name", "str"),
    "alias": ("alias", "str"),
    "host": ("host", "str"),
    "port": ("port", "port"),
    "socket": ("socket", "str"),
    "user": ("user", "str"),
    "password": ("password", "str"),
    "database": ("database", "str"),
    "connect_timeout": ("connect_timeout", "int"),
    "ssl": ("ssl", "ssl"),
    "primary_stats": ("primary_stats", "bool"),
    "master_stats": ("primary_stats", "bool"),
    "replica_stats": ("replica_stats", "bool"),
    "slave_stats": ("replica_stats", "bool"),
    "innodb_stats": ("innodb_stats", "bool"),
    "wsrep_stats": ("wsrep_stats", "bool"),
    "replica_notifications": ("replica_notifications", "bool"),
    "slave_notifications": ("replica_notifications", "bool"),
}

_SSL_OPTIONS = ("key", "cert", "ca", "capath", "cipher")


def _convert(option: str, kind: str, value: Any) -> Any:
    if kind == "str":
        if value is None:
            return None
        if isinstance(value, (dict, list, bool)):
            raise ConfigError(f"Option `{option}' needs a string argument.")
        return str(value)
    if kind == "bool":
        if not isinstance(value, bool):
            raise ConfigError(f"Option `{option}' needs a boolean argument.")
        return value
    if kind == "int":
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"Option `{option}' needs an integer argument.")
        return value
    if kind == "port":
        if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 65535:
            raise ConfigError(f"Option `{option}' needs a port number between 1 and 65535.")
        return value
    if kind == "ssl":
        if not isinstance(value, dict):
            raise ConfigError(f"Option `{option}' needs a mapping of TLS settings.")
        ssl = SSLConfig()
        for key, item in value.items():
            key_lower = str(key).lower()
            if key_lower not in _SSL_OPTIONS:
                raise ConfigError(f"Option `ssl.{key}' not allowed here.")
            setattr(ssl, key_lower, None if item is None else str(item))
        return ssl
    raise ConfigError(f"Unknown option kind {kind!r} for `{option}'.")


def parse_instance(data: Dict[str, Any]) -> InstanceConfig:
    """
    Build an InstanceConfig from one ``instances`` entry.

    Raises:
        ConfigError: unknown option, wrong value type or missing name.
    """
    if not isinstance(data, dict):
        raise ConfigError("An instance entry must be a mapping.")

    values: Dict[str, Any] = {}
    for option, value in data.items():
        known = _OPTIONS.get(str(option).lower())
        if known is None:
            raise ConfigError(f"Option `{option}' not allowed here.")
        field_name, kind = known
        values[field_name] = _convert(str(option), kind, value)

    if not values.get("name"):
        raise ConfigError("An instance entry needs exactly one `name'.")
    return InstanceConfig(**values)


def load_config(path: Path = DEFAULT_CONFIG_FILE) -> Tuple[List[InstanceConfig], float]:
    """
    Load instances and the polling interval from a YAML file.

    A missing file means nothing is configured. Invalid entries are logged
    and skipped so the remaining instances still load.

    Returns:
        Tuple of (instance configs, interval in seconds)
    """
    path = Path(path)
    if not path.exists():
        logger.warning(f"Configuration file {path} not found - no instances configured")
        return [], DEFAULT_INTERVAL

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")

    interval = data.get("interval", DEFAULT_INTERVAL)
    if isinstance(interval, bool) or not isinstance(interval, (int, float)) or interval <= 0:
        raise ConfigError(f"{path}: `interval' must be a positive number")

    instances: List[InstanceConfig] = []
    seen = set()
    for i, entry in enumerate(data.get("instances") or [], 1):
        try:
            config = parse_instance(entry)
        except ConfigError as e:
            logger.warning(f"Skipping instance #{i} in {path}: {e}")
            continue
        if config.name in seen:
            logger.warning(f"Skipping instance #{i} in {path}: duplicate name {config.name!r}")
            continue
        seen.add(config.name)
        instances.append(config)

    return instances, float(interval)


_INT_PREFIX = re.compile(r"^\s*([-+]?\d+)")
_FLOAT_PREFIX = re.compile(r"^\s*([-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)")


def to_text(value: Any) -> Optional[str]:
    """Decode a driver value to str, keeping NULL as None."""
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def parse_int(value: Any) -> int:
    """Read the leading integer of a value; anything else counts as 0."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    match = _INT_PREFIX.match(to_text(value) or "")
    return int(match.group(1)) if match else 0


def parse_float(value: Any) -> float:
    """Read the leading number of a value; anything else counts as 0.0."""
    if isinstance(value, (int, float)):
        return float(value)
    match = _FLOAT_PREFIX.match(to_text(value) or "")
    return float(match.group(1)) if match else 0.0


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging the same way for every entry point."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
