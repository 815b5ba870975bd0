"""Value types shared by the sampler components."""

import enum
from dataclasses import dataclass
from typing import Any, Optional

from .utils import InstanceConfig


class MetricKind(str, enum.Enum):
    """How the sink should interpret a value."""
    gauge = "gauge"
    derive = "derive"


class Severity(str, enum.Enum):
    """Notification severity."""
    okay = "okay"
    warning = "warning"


@dataclass(frozen=True)
class Emission:
    """A single data point: series, optional label, kind and value."""
    series: str
    label: Optional[str]
    kind: MetricKind
    value: float

    @classmethod
    def gauge(cls, series: str, label: Optional[str], value: float) -> "Emission":
        return cls(series, label, MetricKind.gauge, float(value))

    @classmethod
    def derive(cls, series: str, label: Optional[str], value: int) -> "Emission":
        return cls(series, label, MetricKind.derive, int(value))


@dataclass(frozen=True)
class Notification:
    """An alert raised on a replication state change."""
    severity: Severity
    host: str
    instance: str
    message: str


@dataclass
class Instance:
    """
    Runtime state of one configured database target.

    The connection handle and the two replication booleans are owned by
    the instance and only ever touched by the cycle currently running for
    it.
    """
    config: InstanceConfig
    connection: Optional[Any] = None
    connected: bool = False
    server_version: int = 0
    server_info: str = ""
    # Start as running so that a replica found down on the first cycle
    # still produces a warning.
    io_running: bool = True
    sql_running: bool = True

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def host_tag(self) -> str:
        return self.config.host_tag

    @property
    def is_mariadb(self) -> bool:
        return "mariadb" in self.server_info.lower()
