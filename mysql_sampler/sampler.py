"""Sampling cycle: connect, read global status, then run the enabled sub-queries."""

import enum
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from . import classifier
from .connection import ConnectionManager
from .errors import SamplerError, SchemaError
from .models import Emission, Instance, Notification
from .query import execute
from .replication import ReplicationWatcher, classify_primary_status
from .sinks import MetricSink, Notifier

logger = logging.getLogger("mysql-sampler.sampler")


class CycleState(str, enum.Enum):
    idle = "idle"
    connecting = "connecting"
    primary_query = "primary_query"
    innodb = "innodb"
    primary = "primary"
    replica = "replica"
    wsrep = "wsrep"


@dataclass
class CycleResult:
    """What happened during one cycle for one instance."""
    instance: str
    started_at: datetime
    success: bool = False
    failed_state: Optional[CycleState] = None
    error: Optional[str] = None
    duration: float = 0.0
    emitted: int = 0
    notified: int = 0
    # Sub-query name -> error message, None when it succeeded.
    subqueries: Dict[str, Optional[str]] = field(default_factory=dict)

    @property
    def failed_subqueries(self) -> List[str]:
        return [name for name, error in self.subqueries.items() if error is not None]


SubQuery = Callable[[Instance, Any], Tuple[List[Emission], List[Notification]]]


class Sampler:
    """
    Runs sampling cycles and hands the results to a sink.

    Args:
        sink: Receives every emission.
        notifier: Receives replication notifications; defaults to ``sink``
            when it also implements ``notify``.
        connections: Connection manager, injectable for tests.
        watcher: Replication watcher.
    """

    def __init__(
        self,
        sink: MetricSink,
        notifier: Optional[Notifier] = None,
        connections: Optional[ConnectionManager] = None,
        watcher: Optional[ReplicationWatcher] = None,
    ):
        self.sink = sink
        if notifier is None and isinstance(sink, Notifier):
            notifier = sink
        self.notifier = notifier
        self.connections = connections or ConnectionManager()
        self.watcher = watcher or ReplicationWatcher()

    def run_cycle(self, instance: Instance) -> CycleResult:
        """
        Run one complete poll-and-emit pass for ``instance``.

        Connection and primary status failures end the cycle. Sub-query
        failures are recorded and the remaining sub-queries still run.
        """
        result = CycleResult(instance=instance.name, started_at=datetime.now())
        start_time = time.time()
        label = instance.config.label

        try:
            try:
                connection = self.connections.acquire(instance)
            except SamplerError as e:
                result.failed_state = CycleState.connecting
                result.error = str(e)
                logger.error(f"[CYCLE] {label}: connection failed, skipping cycle")
                return result

            try:
                query = classifier.status_query(instance.server_version)
                rows = execute(connection, query).rows
                self._submit(instance, result, classifier.classify_status(rows, instance.config.innodb_stats))
            except SamplerError as e:
                result.failed_state = CycleState.primary_query
                result.error = str(e)
                logger.error(f"[CYCLE] {label}: status query failed: {e}")
                return result

            for state, read in self._subqueries(instance):
                try:
                    emissions, notifications = read(instance, connection)
                except SamplerError as e:
                    result.subqueries[state.value] = str(e)
                    logger.error(f"[CYCLE] {label}: {state.value} statistics failed: {e}")
                    continue
                result.subqueries[state.value] = None
                self._submit(instance, result, emissions)
                self._notify(result, notifications)

            result.success = True
            return result
        finally:
            result.duration = time.time() - start_time
            if result.success and not result.failed_subqueries:
                logger.debug(f"[CYCLE] {label}: {result.emitted} value(s) in {result.duration:.2f}s")
            elif result.success:
                logger.warning(
                    f"[CYCLE] {label}: completed with errors in {result.duration:.2f}s "
                    f"- Failed: {result.failed_subqueries}"
                )

    def _subqueries(self, instance: Instance) -> Iterable[Tuple[CycleState, SubQuery]]:
        config = instance.config
        if config.innodb_stats and classifier.innodb_metrics_supported(instance.server_version):
            yield CycleState.innodb, self.read_innodb_stats
        if config.primary_stats:
            yield CycleState.primary, self.read_primary_stats
        if config.replica_stats or config.replica_notifications:
            yield CycleState.replica, self.read_replica_stats
        if config.wsrep_stats:
            yield CycleState.wsrep, self.read_wsrep_stats

    # -- sub-queries --

    def read_innodb_stats(self, instance: Instance, connection: Any) -> Tuple[List[Emission], List[Notification]]:
        query = classifier.innodb_metrics_query(instance.server_version)
        return classifier.classify_innodb_metrics(execute(connection, query).rows), []

    def read_primary_stats(self, instance: Instance, connection: Any) -> Tuple[List[Emission], List[Notification]]:
        query = classifier.primary_status_query(instance.server_version, instance.is_mariadb)
        return classify_primary_status(execute(connection, query)), []

    def read_replica_stats(self, instance: Instance, connection: Any) -> Tuple[List[Emission], List[Notification]]:
        query = classifier.replica_status_query(instance.server_version, instance.is_mariadb)
        return self.watcher.observe_result(instance, execute(connection, query))

    def read_wsrep_stats(self, instance: Instance, connection: Any) -> Tuple[List[Emission], List[Notification]]:
        result = execute(connection, classifier.WSREP_STATUS_QUERY)
        if not result.rows:
            raise SchemaError(f"`{result.query}' did not return any rows.", result.query)
        # Every row counts, the first one included.
        return classifier.classify_wsrep(result.rows), []

    # -- dispatch --

    def _submit(self, instance: Instance, result: CycleResult, emissions: List[Emission]) -> None:
        host = instance.host_tag
        for emission in emissions:
            try:
                self.sink.emit(emission, host, instance.name)
            except Exception:
                logger.warning(f"[CYCLE] {instance.name}: failed to submit {emission.series}", exc_info=True)
            result.emitted += 1

    def _notify(self, result: CycleResult, notifications: List[Notification]) -> None:
        for notification in notifications:
            result.notified += 1
            if self.notifier is None:
                logger.warning(f"[NOTIFY] {notification.instance}: {notification.message}")
                continue
            try:
                self.notifier.notify(notification)
            except Exception:
                logger.warning(f"[CYCLE] {notification.instance}: failed to dispatch notification", exc_info=True)

    def close(self, instance: Instance) -> None:
        """Release the instance's connection."""
        self.connections.close(instance)
