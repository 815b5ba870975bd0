"""
Destinations for emissions and notifications.

The sampler only depends on the :class:`MetricSink` and :class:`Notifier`
protocols. Production wiring uses :class:`PrometheusSink` or
:class:`LoggingSink`; dry runs and tests use :class:`RecordingSink`.
"""

import logging
import re
from typing import Dict, List, Optional, Protocol, Tuple, runtime_checkable

from prometheus_client import CollectorRegistry, Counter, Gauge

from .models import Emission, MetricKind, Notification, Severity

logger = logging.getLogger("mysql-sampler.sink")

_SEVERITY_LEVELS = {
    Severity.okay: logging.INFO,
    Severity.warning: logging.WARNING,
}


@runtime_checkable
class MetricSink(Protocol):
    """Accepts finished values."""

    def emit(self, emission: Emission, host: str, instance: str) -> None:
        """Submit one value tagged with its host and instance."""
        ...


@runtime_checkable
class Notifier(Protocol):
    """Accepts alerts."""

    def notify(self, notification: Notification) -> None:
        ...


class LoggingSink:
    """Writes values at DEBUG and notifications at their severity's level."""

    def __init__(self, name: str = "mysql-sampler.values") -> None:
        self._logger = logging.getLogger(name)

    def emit(self, emission: Emission, host: str, instance: str) -> None:
        series = emission.series if emission.label is None else f"{emission.series}-{emission.label}"
        self._logger.debug(f"{host}/mysql-{instance}/{series} {emission.kind.value}={emission.value}")

    def notify(self, notification: Notification) -> None:
        self._logger.log(
            _SEVERITY_LEVELS[notification.severity],
            f"[NOTIFY] {notification.severity.value.upper()} {notification.host}/mysql-{notification.instance}: "
            f"{notification.message}",
        )


_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_]")


class PrometheusSink:
    """
    Prometheus-backed sink.

    One labelled gauge per series lives on a private CollectorRegistry.
    Counter-kind values are exported as gauges carrying the raw server
    counter; rates are left to the query side.
    """

    PREFIX = "mysql_sampler"

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry or CollectorRegistry()
        self._gauges: Dict[Tuple[str, MetricKind], Gauge] = {}
        self._notifications = Counter(
            f"{self.PREFIX}_notifications",
            "Replication notifications raised",
            ["host", "instance", "severity"],
            registry=self.registry,
        )

    def metric_name(self, series: str, kind: MetricKind) -> str:
        name = f"{self.PREFIX}_{_INVALID_NAME_CHARS.sub('_', series)}"
        if kind is MetricKind.derive:
            name += "_counter"
        return name

    def _gauge(self, series: str, kind: MetricKind) -> Gauge:
        key = (series, kind)
        gauge = self._gauges.get(key)
        if gauge is None:
            gauge = Gauge(
                self.metric_name(series, kind),
                f"MySQL {series} ({kind.value})",
                ["host", "instance", "label"],
                registry=self.registry,
            )
            self._gauges[key] = gauge
        return gauge

    def emit(self, emission: Emission, host: str, instance: str) -> None:
        gauge = self._gauge(emission.series, emission.kind)
        gauge.labels(host=host, instance=instance, label=emission.label or "").set(emission.value)

    def notify(self, notification: Notification) -> None:
        self._notifications.labels(
            host=notification.host,
            instance=notification.instance,
            severity=notification.severity.value,
        ).inc()
        logger.log(
            _SEVERITY_LEVELS[notification.severity],
            f"[NOTIFY] {notification.host}/mysql-{notification.instance}: {notification.message}",
        )


class RecordingSink:
    """
    In-memory sink that keeps everything it is given.

    Usage:
        sink = RecordingSink()
        sink.emit(Emission.derive("mysql_commands", "select", 42), "db1", "main")
        assert sink.values("mysql_commands") == {"select": 42}
    """

    def __init__(self) -> None:
        self.emissions: List[Tuple[str, str, Emission]] = []
        self.notifications: List[Notification] = []

    def emit(self, emission: Emission, host: str, instance: str) -> None:
        self.emissions.append((host, instance, emission))

    def notify(self, notification: Notification) -> None:
        self.notifications.append(notification)

    # -- helpers --

    def values(self, series: str, instance: Optional[str] = None) -> Dict[Optional[str], float]:
        """Label -> value for one series, optionally limited to one instance."""
        return {
            e.label: e.value
            for _, inst, e in self.emissions
            if e.series == series and (instance is None or inst == instance)
        }

    def clear(self) -> None:
        self.emissions.clear()
        self.notifications.clear()
