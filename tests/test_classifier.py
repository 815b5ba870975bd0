"""Unit tests for status row classification and query selection."""

import math

import pytest

from mysql_sampler import classifier
from mysql_sampler.classifier import (
    Action,
    StatusAccumulator,
    classify_innodb_metrics,
    classify_status,
    classify_wsrep,
    match_status,
)
from mysql_sampler.models import Emission, MetricKind


def by_series(emissions, series):
    return {e.label: e.value for e in emissions if e.series == series}


# ---------------------------------------------------------------------------
# match_status
# ---------------------------------------------------------------------------


class TestMatchStatus:
    """Per-row rule matching."""

    def test_command_counter_emitted_with_label(self):
        match = match_status("Com_select", "42")
        assert match.action is Action.emit
        assert match.emission == Emission("mysql_commands", "select", MetricKind.derive, 42)

    def test_zero_command_counter_suppressed(self):
        assert match_status("Com_select", "0").action is Action.ignore

    def test_prepared_statement_commands_ignored(self):
        assert match_status("Com_stmt_execute", "17").action is Action.ignore

    def test_handler_zero_suppressed_nonzero_emitted(self):
        assert match_status("Handler_write", "0").action is Action.ignore
        match = match_status("Handler_write", "5")
        assert match.emission == Emission("mysql_handler", "write", MetricKind.derive, 5)

    @pytest.mark.parametrize("key, series, label", [
        ("Table_locks_waited", "mysql_locks", "waited"),
        ("Select_full_join", "mysql_select", "full_join"),
    ])
    def test_unsuppressed_prefix_groups_emit_zero(self, key, series, label):
        match = match_status(key, "0")
        assert match.action is Action.emit
        assert match.emission == Emission(series, label, MetricKind.derive, 0)

    def test_slow_queries_has_no_label(self):
        match = match_status("Slow_queries", "3")
        assert match.emission == Emission("mysql_slow_queries", None, MetricKind.derive, 3)

    def test_sort_table(self):
        assert match_status("Sort_rows", "8").emission.series == "mysql_sort_rows"
        assert match_status("Sort_scan", "8").emission.label == "scan"
        assert match_status("Sort_priority_queue_sorts", "8").action is Action.ignore

    def test_uptime_and_questions_are_gauges(self):
        assert match_status("Uptime", "3600").emission.kind is MetricKind.gauge
        assert match_status("Questions", "12").emission.kind is MetricKind.gauge

    def test_accumulator_keys(self):
        match = match_status("Qcache_hits", "10")
        assert match.action is Action.accumulate
        assert (match.group, match.field, match.value) == ("qcache", "hits", 10)

    def test_unknown_members_of_accumulated_families_ignored(self):
        assert match_status("Qcache_free_memory", "1024").action is Action.ignore
        assert match_status("Threads_slow_launch", "1").action is Action.ignore

    def test_innodb_keys_need_flag(self):
        assert match_status("Innodb_rows_read", "100").action is Action.ignore
        match = match_status("Innodb_rows_read", "100", innodb_stats=True)
        assert match.emission == Emission("mysql_innodb_rows", "read", MetricKind.derive, 100)

    def test_innodb_gauge_and_unknown_key(self):
        match = match_status("Innodb_buffer_pool_pages_free", "7", innodb_stats=True)
        assert match.emission == Emission("mysql_bpool_pages", "free", MetricKind.gauge, 7.0)
        assert match_status("Innodb_page_size", "16384", innodb_stats=True).action is Action.ignore

    def test_unknown_key_ignored(self):
        assert match_status("Aborted_clients", "4").action is Action.ignore

    def test_non_numeric_value_reads_as_zero(self):
        assert match_status("Com_select", "OFF").action is Action.ignore
        assert match_status("Select_scan", "12abc").emission.value == 12


# ---------------------------------------------------------------------------
# Accumulator groups
# ---------------------------------------------------------------------------


class TestStatusAccumulator:
    """End-of-scan composite groups."""

    def test_idle_groups_suppressed_traffic_always_sent(self):
        emissions = StatusAccumulator().flush()
        assert [e.series for e in emissions] == ["mysql_octets", "mysql_octets"]
        assert by_series(emissions, "mysql_octets") == {"rx": 0, "tx": 0}

    def test_cache_group_emitted_together_when_any_member_moves(self):
        acc = StatusAccumulator()
        acc.add("qcache", "prunes", 3)
        acc.add("qcache", "queries_in_cache", 11)
        emissions = acc.flush()

        assert by_series(emissions, "cache_result") == {
            "qcache-hits": 0,
            "qcache-inserts": 0,
            "qcache-not_cached": 0,
            "qcache-prunes": 3,
        }
        assert by_series(emissions, "cache_size") == {"qcache": 11.0}

    def test_cache_occupancy_alone_does_not_trigger_group(self):
        acc = StatusAccumulator()
        acc.add("qcache", "queries_in_cache", 11)
        assert by_series(acc.flush(), "cache_result") == {}

    def test_thread_group_requires_created(self):
        acc = StatusAccumulator()
        acc.add("threads", "running", 4)
        acc.add("threads", "connected", 9)
        assert by_series(acc.flush(), "threads") == {}

        acc.add("threads", "created", 20)
        emissions = acc.flush()
        threads = by_series(emissions, "threads")
        assert threads["running"] == 4.0
        assert threads["connected"] == 9.0
        assert math.isnan(threads["cached"])
        assert by_series(emissions, "total_threads") == {"created": 20}


# ---------------------------------------------------------------------------
# Full scans
# ---------------------------------------------------------------------------


class TestClassifyStatus:
    """Classification of a complete SHOW GLOBAL STATUS result."""

    ROWS = [
        ("Bytes_received", "1500"),
        ("Bytes_sent", "9000"),
        ("Com_select", "42"),
        ("Com_insert", "0"),
        ("Handler_read_key", "77"),
        ("Innodb_rows_read", "5"),
        ("Qcache_hits", "0"),
        ("Qcache_inserts", "0"),
        ("Threads_connected", "3"),
        ("Threads_created", "8"),
        ("Threads_running", "1"),
        ("Threads_cached", "2"),
        ("Uptime", "86400"),
    ]

    def test_scan(self):
        emissions = classify_status(self.ROWS)

        assert by_series(emissions, "mysql_commands") == {"select": 42}
        assert by_series(emissions, "mysql_handler") == {"read_key": 77}
        assert by_series(emissions, "mysql_octets") == {"rx": 1500, "tx": 9000}
        assert by_series(emissions, "threads") == {"running": 1.0, "connected": 3.0, "cached": 2.0}
        assert by_series(emissions, "uptime") == {None: 86400.0}
        assert by_series(emissions, "cache_result") == {}
        assert by_series(emissions, "mysql_innodb_rows") == {}

    def test_scan_with_innodb(self):
        emissions = classify_status(self.ROWS, innodb_stats=True)
        assert by_series(emissions, "mysql_innodb_rows") == {"read": 5}

    def test_bytes_and_short_rows(self):
        emissions = classify_status([(b"Com_select", b"42"), ("Broken",)])
        assert by_series(emissions, "mysql_commands") == {"select": 42}

    def test_each_row_emitted_once(self):
        emissions = classify_status([("Com_select", "42")])
        assert len([e for e in emissions if e.series == "mysql_commands"]) == 1


class TestTables:
    """Allow-list tables for innodb_metrics and wsrep status."""

    def test_innodb_metrics(self):
        rows = [
            ("lock_deadlocks", "2", "counter"),
            ("buffer_pool_size", "134217728", "value"),
            ("not_in_table", "9", "counter"),
        ]
        emissions = classify_innodb_metrics(rows)
        assert emissions == [
            Emission("mysql_locks", "lock_deadlocks", MetricKind.derive, 2),
            Emission("bytes", "buffer_pool_size", MetricKind.gauge, 134217728.0),
        ]

    def test_wsrep(self):
        rows = [
            ("wsrep_cluster_size", "3"),
            ("wsrep_received_bytes", "4096"),
            ("wsrep_local_state_comment", "Synced"),
        ]
        emissions = classify_wsrep(rows)
        assert emissions == [
            Emission("gauge", "wsrep_cluster_size", MetricKind.gauge, 3.0),
            Emission("total_bytes", "wsrep_received_bytes", MetricKind.derive, 4096),
        ]

    def test_tables_are_read_only(self):
        with pytest.raises(TypeError):
            classifier.WSREP_TABLE["wsrep_new"] = ("gauge", MetricKind.gauge)


# ---------------------------------------------------------------------------
# Query selection
# ---------------------------------------------------------------------------


class TestQuerySelection:
    """Version-gated query text."""

    def test_status_query(self):
        assert classifier.status_query(50001) == "SHOW STATUS"
        assert classifier.status_query(50002) == "SHOW GLOBAL STATUS"

    def test_innodb_metrics_minimum(self):
        assert not classifier.innodb_metrics_supported(50599)
        assert classifier.innodb_metrics_supported(50600)

    def test_innodb_metrics_query_switches_at_10_5(self):
        assert classifier.innodb_metrics_query(100499).endswith("WHERE status = 'enabled'")
        assert classifier.innodb_metrics_query(100500).endswith("WHERE enabled")
        assert classifier.innodb_metrics_query(80035).endswith("WHERE status = 'enabled'")

    def test_primary_status_query(self):
        assert classifier.primary_status_query(80035) == "SHOW MASTER STATUS"
        assert classifier.primary_status_query(80400) == "SHOW BINARY LOG STATUS"
        assert classifier.primary_status_query(101106, is_mariadb=True) == "SHOW MASTER STATUS"

    def test_replica_status_query(self):
        assert classifier.replica_status_query(80021) == "SHOW SLAVE STATUS"
        assert classifier.replica_status_query(80022) == "SHOW REPLICA STATUS"
        assert classifier.replica_status_query(101106, is_mariadb=True) == "SHOW SLAVE STATUS"
