"""Unit tests for primary/replica status handling and edge-triggered alerts."""

import pytest

from mysql_sampler.errors import SchemaError
from mysql_sampler.models import Emission, MetricKind, Severity
from mysql_sampler.query import QueryResult
from mysql_sampler.replication import ReplicationWatcher, classify_primary_status

from .fakes import replica_row


# ---------------------------------------------------------------------------
# Primary status
# ---------------------------------------------------------------------------


class TestPrimaryStatus:
    """SHOW MASTER STATUS handling."""

    def test_position_emitted(self):
        result = QueryResult("SHOW MASTER STATUS", ["File", "Position"], [("log-bin.000123", "4096")])
        assert classify_primary_status(result) == [
            Emission("mysql_log_position", "primary-binlog", MetricKind.derive, 4096)
        ]

    def test_extra_rows_use_first(self, caplog):
        result = QueryResult(
            "SHOW MASTER STATUS", ["File", "Position"], [("a.000001", "10"), ("b.000001", "20")]
        )
        assert classify_primary_status(result)[0].value == 10
        assert "more than one row" in caplog.text

    def test_no_rows(self):
        with pytest.raises(SchemaError):
            classify_primary_status(QueryResult("SHOW MASTER STATUS", ["File", "Position"], []))

    def test_too_few_columns(self):
        with pytest.raises(SchemaError):
            classify_primary_status(QueryResult("SHOW MASTER STATUS", ["File"], [("a.000001",)]))


# ---------------------------------------------------------------------------
# Replica status
# ---------------------------------------------------------------------------


class TestReplicationWatcher:
    """Replica values and notifications."""

    def test_values_when_replica_stats_enabled(self, make_instance):
        instance = make_instance(replica_stats=True)
        emissions, notifications = ReplicationWatcher().observe(
            instance, replica_row(io="Yes", sql="No", read_pos=500, exec_pos=400, lag=12)
        )

        assert emissions == [
            Emission("bool", "replica-sql-running", MetricKind.gauge, 0.0),
            Emission("bool", "replica-io-running", MetricKind.gauge, 1.0),
            Emission("mysql_log_position", "replica-read", MetricKind.derive, 500),
            Emission("mysql_log_position", "replica-exec", MetricKind.derive, 400),
            Emission("time_offset", None, MetricKind.gauge, 12.0),
        ]
        # Notifications disabled: stored state untouched.
        assert notifications == []
        assert instance.sql_running is True

    def test_null_lag_not_emitted(self, make_instance):
        instance = make_instance(replica_stats=True)
        emissions, _ = ReplicationWatcher().observe(instance, replica_row(lag=None))
        assert all(e.series != "time_offset" for e in emissions)

    def test_running_flag_is_case_insensitive(self, make_instance):
        instance = make_instance(replica_stats=True)
        emissions, _ = ReplicationWatcher().observe(instance, replica_row(io="YES", sql="yes"))
        assert emissions[0].value == 1.0
        assert emissions[1].value == 1.0

    def test_short_row_is_schema_error(self, make_instance):
        instance = make_instance(replica_stats=True, replica_notifications=True)
        with pytest.raises(SchemaError):
            ReplicationWatcher().observe(instance, replica_row(columns=32))
        assert (instance.io_running, instance.sql_running) == (True, True)

    def test_io_down_on_first_cycle_warns_once(self, make_instance):
        instance = make_instance(replica_notifications=True)
        emissions, notifications = ReplicationWatcher().observe(instance, replica_row(io="No", sql="Yes"))

        assert emissions == []
        assert len(notifications) == 1
        notification = notifications[0]
        assert notification.severity is Severity.warning
        assert notification.message == "replica I/O thread not started or not connected to primary"
        assert notification.host == "db1"
        assert notification.instance == "main"
        assert (instance.io_running, instance.sql_running) == (False, True)

    def test_steady_state_produces_one_notification_per_transition(self, make_instance):
        instance = make_instance(replica_notifications=True)
        watcher = ReplicationWatcher()
        states = ["No", "No", "No", "Yes", "Yes", None, None, "Yes"]

        seen = []
        for sql in states:
            _, notifications = watcher.observe(instance, replica_row(sql=sql))
            seen.extend((n.severity, n.message) for n in notifications)

        assert seen == [
            (Severity.warning, "replica SQL thread not started"),
            (Severity.okay, "replica SQL thread started"),
            (Severity.warning, "replica SQL thread not started"),
            (Severity.okay, "replica SQL thread started"),
        ]
        assert instance.sql_running is True

    def test_recovery(self, make_instance):
        instance = make_instance(replica_notifications=True)
        instance.io_running = False
        _, notifications = ReplicationWatcher().observe(instance, replica_row(io="Yes"))
        assert [n.message for n in notifications] == ["replica I/O thread started and connected to primary"]
        assert instance.io_running is True

    def test_both_threads_down(self, make_instance):
        instance = make_instance(replica_notifications=True, replica_stats=True)
        emissions, notifications = ReplicationWatcher().observe(instance, replica_row(io="No", sql="No"))
        assert len(emissions) == 5
        assert [n.severity for n in notifications] == [Severity.warning, Severity.warning]

    def test_observe_result_requires_rows(self, make_instance):
        instance = make_instance(replica_stats=True)
        with pytest.raises(SchemaError):
            ReplicationWatcher().observe_result(instance, QueryResult("SHOW SLAVE STATUS", [], []))
