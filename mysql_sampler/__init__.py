"""Periodic MySQL health sampler."""

from .errors import ConfigError, DatabaseConnectionError, QueryError, SamplerError, SchemaError
from .models import Emission, Instance, MetricKind, Notification, Severity
from .sampler import CycleResult, Sampler
from .scheduler import Scheduler
from .sinks import LoggingSink, PrometheusSink, RecordingSink
from .utils import InstanceConfig, SSLConfig, load_config

__version__ = "1.0.0"

__all__ = [
    "ConfigError",
    "CycleResult",
    "DatabaseConnectionError",
    "Emission",
    "Instance",
    "InstanceConfig",
    "LoggingSink",
    "MetricKind",
    "Notification",
    "PrometheusSink",
    "QueryError",
    "RecordingSink",
    "SSLConfig",
    "Sampler",
    "SamplerError",
    "Scheduler",
    "SchemaError",
    "Severity",
    "load_config",
]
