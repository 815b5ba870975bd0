"""Primary binlog position and replica status, with edge-triggered alerts."""

import logging
from typing import Any, List, Optional, Sequence, Tuple

from .errors import SchemaError
from .models import Emission, Instance, Notification, Severity
from .query import QueryResult
from .utils import parse_float, parse_int, to_text

logger = logging.getLogger("mysql-sampler.replication")

PRIMARY_MIN_COLUMNS = 2
PRIMARY_POSITION_IDX = 1

# Column positions in SHOW SLAVE STATUS / SHOW REPLICA STATUS.
READ_POSITION_IDX = 6
IO_RUNNING_IDX = 10
SQL_RUNNING_IDX = 11
EXEC_POSITION_IDX = 21
SECONDS_BEHIND_IDX = 32
REPLICA_MIN_COLUMNS = 33

IO_DOWN = "replica I/O thread not started or not connected to primary"
IO_UP = "replica I/O thread started and connected to primary"
SQL_DOWN = "replica SQL thread not started"
SQL_UP = "replica SQL thread started"


def is_running(value: Any) -> bool:
    text = to_text(value)
    return text is not None and text.lower() == "yes"


def classify_primary_status(result: QueryResult) -> List[Emission]:
    """
    Binary log position of a primary.

    Raises:
        SchemaError: no rows or fewer than two columns.
    """
    row = result.single_row(PRIMARY_MIN_COLUMNS)
    position = parse_int(row[PRIMARY_POSITION_IDX])
    return [Emission.derive("mysql_log_position", "primary-binlog", position)]


class ReplicationWatcher:
    """
    Turns replica status rows into values and state-change notifications.

    The last observed state of the I/O and SQL threads is kept on the
    instance; a notification is only produced when it changes.
    """

    def observe_result(self, instance: Instance, result: QueryResult) -> Tuple[List[Emission], List[Notification]]:
        row = result.single_row(REPLICA_MIN_COLUMNS)
        return self.observe(instance, row)

    def observe(self, instance: Instance, row: Sequence[Any]) -> Tuple[List[Emission], List[Notification]]:
        """
        Classify one replica status row.

        Raises:
            SchemaError: the row has fewer than 33 columns.
        """
        if len(row) < REPLICA_MIN_COLUMNS:
            raise SchemaError(f"replica status returned less than {REPLICA_MIN_COLUMNS} columns.")

        io_running = is_running(row[IO_RUNNING_IDX])
        sql_running = is_running(row[SQL_RUNNING_IDX])

        emissions: List[Emission] = []
        notifications: List[Notification] = []

        if instance.config.replica_stats:
            emissions.append(Emission.gauge("bool", "replica-sql-running", 1.0 if sql_running else 0.0))
            emissions.append(Emission.gauge("bool", "replica-io-running", 1.0 if io_running else 0.0))
            emissions.append(Emission.derive("mysql_log_position", "replica-read", parse_int(row[READ_POSITION_IDX])))
            emissions.append(Emission.derive("mysql_log_position", "replica-exec", parse_int(row[EXEC_POSITION_IDX])))
            lag = row[SECONDS_BEHIND_IDX]
            if lag is not None:
                emissions.append(Emission.gauge("time_offset", None, parse_float(lag)))

        if instance.config.replica_notifications:
            notification = self._transition(instance, "io_running", io_running, IO_DOWN, IO_UP)
            if notification is not None:
                notifications.append(notification)
            notification = self._transition(instance, "sql_running", sql_running, SQL_DOWN, SQL_UP)
            if notification is not None:
                notifications.append(notification)

        return emissions, notifications

    def _transition(
        self, instance: Instance, attr: str, running: bool, down_message: str, up_message: str
    ) -> Optional[Notification]:
        previous = getattr(instance, attr)
        if running == previous:
            return None

        setattr(instance, attr, running)
        severity = Severity.okay if running else Severity.warning
        message = up_message if running else down_message
        logger.debug(f"[REPLICA] {instance.name}: {attr} {previous} -> {running}")
        return Notification(
            severity=severity,
            host=instance.host_tag,
            instance=instance.name,
            message=message,
        )
