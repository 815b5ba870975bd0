"""
Classification of status rows into metric emissions.

All lookup tables are built once at import time and are read-only. The
per-row decision is made by :func:`match_status`, which returns a tagged
:class:`Match` so it can be tested without a database.
"""

import enum
import logging
import math
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional, Sequence, Tuple

from .models import Emission, MetricKind
from .utils import parse_int, to_text

logger = logging.getLogger("mysql-sampler.classifier")

GAUGE = MetricKind.gauge
DERIVE = MetricKind.derive

# =============================================================================
# QUERY SELECTION
# =============================================================================

GLOBAL_STATUS_MIN_VERSION = 50002
INNODB_METRICS_MIN_VERSION = 50600
INNODB_METRICS_ENABLED_COLUMN_VERSION = 100500
REPLICA_STATUS_MIN_VERSION = 80022
BINARY_LOG_STATUS_MIN_VERSION = 80200

LEGACY_STATUS_QUERY = "SHOW STATUS"
GLOBAL_STATUS_QUERY = "SHOW GLOBAL STATUS"
INNODB_METRICS_QUERY = "SELECT name, count, type FROM information_schema.innodb_metrics WHERE enabled"
INNODB_METRICS_LEGACY_QUERY = (
    "SELECT name, count, type FROM information_schema.innodb_metrics WHERE status = 'enabled'"
)
MASTER_STATUS_QUERY = "SHOW MASTER STATUS"
BINARY_LOG_STATUS_QUERY = "SHOW BINARY LOG STATUS"
SLAVE_STATUS_QUERY = "SHOW SLAVE STATUS"
REPLICA_STATUS_QUERY = "SHOW REPLICA STATUS"
WSREP_STATUS_QUERY = "SHOW GLOBAL STATUS LIKE 'wsrep_%'"


def status_query(version: int) -> str:
    """Primary status query; servers before 5.0.2 only know SHOW STATUS."""
    if version >= GLOBAL_STATUS_MIN_VERSION:
        return GLOBAL_STATUS_QUERY
    return LEGACY_STATUS_QUERY


def innodb_metrics_supported(version: int) -> bool:
    return version >= INNODB_METRICS_MIN_VERSION


def innodb_metrics_query(version: int) -> str:
    """The ``innodb_metrics`` table lost its ``status`` column in favour of ``enabled``."""
    if version >= INNODB_METRICS_ENABLED_COLUMN_VERSION:
        return INNODB_METRICS_QUERY
    return INNODB_METRICS_LEGACY_QUERY


def primary_status_query(version: int, is_mariadb: bool = False) -> str:
    if not is_mariadb and version >= BINARY_LOG_STATUS_MIN_VERSION:
        return BINARY_LOG_STATUS_QUERY
    return MASTER_STATUS_QUERY


def replica_status_query(version: int, is_mariadb: bool = False) -> str:
    if not is_mariadb and version >= REPLICA_STATUS_MIN_VERSION:
        return REPLICA_STATUS_QUERY
    return SLAVE_STATUS_QUERY


# =============================================================================
# STATIC TABLES
# =============================================================================

class PrefixRule(NamedTuple):
    prefix: str
    series: Optional[str]
    skip_zero: bool = False
    ignore_prefix: Optional[str] = None
    # Keep the remainder of the key as the label.
    labelled: bool = True


# Evaluated in order; the first matching prefix decides.
PREFIX_RULES: Tuple[PrefixRule, ...] = (
    PrefixRule("Com_", "mysql_commands", skip_zero=True, ignore_prefix="Com_stmt_"),
    PrefixRule("Handler_", "mysql_handler", skip_zero=True),
    PrefixRule("Table_locks_", "mysql_locks"),
    PrefixRule("Select_", "mysql_select"),
    PrefixRule("Slow_queries", "mysql_slow_queries", labelled=False),
)

# Status keys that are collected across the whole scan.
ACCUMULATOR_KEYS: Mapping[str, Tuple[str, str]] = MappingProxyType({
    "Qcache_hits": ("qcache", "hits"),
    "Qcache_inserts": ("qcache", "inserts"),
    "Qcache_not_cached": ("qcache", "not_cached"),
    "Qcache_lowmem_prunes": ("qcache", "prunes"),
    "Qcache_queries_in_cache": ("qcache", "queries_in_cache"),
    "Bytes_received": ("traffic", "rx"),
    "Bytes_sent": ("traffic", "tx"),
    "Threads_running": ("threads", "running"),
    "Threads_connected": ("threads", "connected"),
    "Threads_cached": ("threads", "cached"),
    "Threads_created": ("threads", "created"),
})

# Families owned by an accumulator or exact table: unknown members are dropped.
OWNED_PREFIXES: Tuple[str, ...] = ("Qcache_", "Bytes_", "Threads_", "Sort_")

STATUS_TABLE: Mapping[str, Tuple[str, Optional[str], MetricKind]] = MappingProxyType({
    "Sort_merge_passes": ("mysql_sort_merge_passes", None, DERIVE),
    "Sort_rows": ("mysql_sort_rows", None, DERIVE),
    "Sort_range": ("mysql_sort", "range", DERIVE),
    "Sort_scan": ("mysql_sort", "scan", DERIVE),
    "Uptime": ("uptime", None, GAUGE),
    "Questions": ("questions", None, GAUGE),
})

INNODB_STATUS_TABLE: Mapping[str, Tuple[str, Optional[str], MetricKind]] = MappingProxyType({
    # buffer pool
    "Innodb_buffer_pool_pages_data": ("mysql_bpool_pages", "data", GAUGE),
    "Innodb_buffer_pool_pages_dirty": ("mysql_bpool_pages", "dirty", GAUGE),
    "Innodb_buffer_pool_pages_flushed": ("mysql_bpool_counters", "pages_flushed", DERIVE),
    "Innodb_buffer_pool_pages_free": ("mysql_bpool_pages", "free", GAUGE),
    "Innodb_buffer_pool_pages_misc": ("mysql_bpool_pages", "misc", GAUGE),
    "Innodb_buffer_pool_pages_total": ("mysql_bpool_pages", "total", GAUGE),
    "Innodb_buffer_pool_read_ahead_rnd": ("mysql_bpool_counters", "read_ahead_rnd", DERIVE),
    "Innodb_buffer_pool_read_ahead": ("mysql_bpool_counters", "read_ahead", DERIVE),
    "Innodb_buffer_pool_read_ahead_evicted": ("mysql_bpool_counters", "read_ahead_evicted", DERIVE),
    "Innodb_buffer_pool_read_requests": ("mysql_bpool_counters", "read_requests", DERIVE),
    "Innodb_buffer_pool_reads": ("mysql_bpool_counters", "reads", DERIVE),
    "Innodb_buffer_pool_wait_free": ("mysql_bpool_counters", "wait_free", DERIVE),
    "Innodb_buffer_pool_write_requests": ("mysql_bpool_counters", "write_requests", DERIVE),
    "Innodb_buffer_pool_bytes_data": ("mysql_bpool_bytes", "data", GAUGE),
    "Innodb_buffer_pool_bytes_dirty": ("mysql_bpool_bytes", "dirty", GAUGE),
    # data
    "Innodb_data_fsyncs": ("mysql_innodb_data", "fsyncs", DERIVE),
    "Innodb_data_read": ("mysql_innodb_data", "read", DERIVE),
    "Innodb_data_reads": ("mysql_innodb_data", "reads", DERIVE),
    "Innodb_data_writes": ("mysql_innodb_data", "writes", DERIVE),
    "Innodb_data_written": ("mysql_innodb_data", "written", DERIVE),
    # doublewrite
    "Innodb_dblwr_writes": ("mysql_innodb_dblwr", "writes", DERIVE),
    "Innodb_dblwr_pages_written": ("mysql_innodb_dblwr", "written", DERIVE),
    "Innodb_dblwr_page_size": ("mysql_innodb_dblwr", "page_size", GAUGE),
    # log
    "Innodb_log_waits": ("mysql_innodb_log", "waits", DERIVE),
    "Innodb_log_write_requests": ("mysql_innodb_log", "write_requests", DERIVE),
    "Innodb_log_writes": ("mysql_innodb_log", "writes", DERIVE),
    "Innodb_os_log_fsyncs": ("mysql_innodb_log", "fsyncs", DERIVE),
    "Innodb_os_log_written": ("mysql_innodb_log", "written", DERIVE),
    # pages
    "Innodb_pages_created": ("mysql_innodb_pages", "created", DERIVE),
    "Innodb_pages_read": ("mysql_innodb_pages", "read", DERIVE),
    "Innodb_pages_written": ("mysql_innodb_pages", "written", DERIVE),
    # row lock
    "Innodb_row_lock_time": ("mysql_innodb_row_lock", "time", DERIVE),
    "Innodb_row_lock_waits": ("mysql_innodb_row_lock", "waits", DERIVE),
    # rows
    "Innodb_rows_deleted": ("mysql_innodb_rows", "deleted", DERIVE),
    "Innodb_rows_inserted": ("mysql_innodb_rows", "inserted", DERIVE),
    "Innodb_rows_read": ("mysql_innodb_rows", "read", DERIVE),
    "Innodb_rows_updated": ("mysql_innodb_rows", "updated", DERIVE),
})

# information_schema.innodb_metrics allow-list; the label is the metric name.
INNODB_METRICS_TABLE: Mapping[str, Tuple[str, MetricKind]] = MappingProxyType({
    "metadata_mem_pool_size": ("bytes", GAUGE),
    "lock_deadlocks": ("mysql_locks", DERIVE),
    "lock_timeouts": ("mysql_locks", DERIVE),
    "lock_row_lock_current_waits": ("mysql_locks", DERIVE),
    "buffer_pool_size": ("bytes", GAUGE),
    "os_log_bytes_written": ("operations", DERIVE),
    "os_log_pending_fsyncs": ("operations", DERIVE),
    "os_log_pending_writes": ("operations", DERIVE),
    "trx_rseg_history_len": ("gauge", GAUGE),
    "adaptive_hash_searches": ("operations", DERIVE),
    "file_num_open_files": ("gauge", GAUGE),
    "ibuf_merges_insert": ("operations", DERIVE),
    "ibuf_merges_delete_mark": ("operations", DERIVE),
    "ibuf_merges_delete": ("operations", DERIVE),
    "ibuf_merges_discard_insert": ("operations", DERIVE),
    "ibuf_merges_discard_delete_mark": ("operations", DERIVE),
    "ibuf_merges_discard_delete": ("operations", DERIVE),
    "ibuf_merges_discard_merges": ("operations", DERIVE),
    "ibuf_size": ("bytes", GAUGE),
    "innodb_activity_count": ("gauge", GAUGE),
    "innodb_rwlock_s_spin_waits": ("operations", DERIVE),
    "innodb_rwlock_x_spin_waits": ("operations", DERIVE),
    "innodb_rwlock_s_spin_rounds": ("operations", DERIVE),
    "innodb_rwlock_x_spin_rounds": ("operations", DERIVE),
    "innodb_rwlock_s_os_waits": ("operations", DERIVE),
    "innodb_rwlock_x_os_waits": ("operations", DERIVE),
    "dml_reads": ("operations", DERIVE),
    "dml_inserts": ("operations", DERIVE),
    "dml_deletes": ("operations", DERIVE),
    "dml_updates": ("operations", DERIVE),
})

# Galera cluster status allow-list; the label is the status name.
WSREP_TABLE: Mapping[str, Tuple[str, MetricKind]] = MappingProxyType({
    "wsrep_apply_oooe": ("operations", DERIVE),
    "wsrep_apply_oool": ("operations", DERIVE),
    "wsrep_causal_reads": ("operations", DERIVE),
    "wsrep_commit_oooe": ("operations", DERIVE),
    "wsrep_commit_oool": ("operations", DERIVE),
    "wsrep_flow_control_recv": ("operations", DERIVE),
    "wsrep_flow_control_sent": ("operations", DERIVE),
    "wsrep_flow_control_paused": ("operations", DERIVE),
    "wsrep_local_bf_aborts": ("operations", DERIVE),
    "wsrep_local_cert_failures": ("operations", DERIVE),
    "wsrep_local_commits": ("operations", DERIVE),
    "wsrep_local_replays": ("operations", DERIVE),
    "wsrep_received": ("operations", DERIVE),
    "wsrep_replicated": ("operations", DERIVE),
    "wsrep_received_bytes": ("total_bytes", DERIVE),
    "wsrep_replicated_bytes": ("total_bytes", DERIVE),
    "wsrep_apply_window": ("gauge", GAUGE),
    "wsrep_commit_window": ("gauge", GAUGE),
    "wsrep_cluster_size": ("gauge", GAUGE),
    "wsrep_cert_deps_distance": ("gauge", GAUGE),
    "wsrep_local_recv_queue": ("queue_length", GAUGE),
    "wsrep_local_send_queue": ("queue_length", GAUGE),
})


# =============================================================================
# ROW MATCHING
# =============================================================================

class Action(str, enum.Enum):
    ignore = "ignore"
    emit = "emit"
    accumulate = "accumulate"


@dataclass(frozen=True)
class Match:
    """Outcome of matching one status row."""
    action: Action
    emission: Optional[Emission] = None
    group: Optional[str] = None
    field: Optional[str] = None
    value: int = 0


NO_MATCH = Match(Action.ignore)


def _make(series: str, label: Optional[str], kind: MetricKind, value: int) -> Emission:
    if kind is GAUGE:
        return Emission.gauge(series, label, value)
    return Emission.derive(series, label, value)


def match_status(key: str, raw_value: Any, innodb_stats: bool = False) -> Match:
    """Decide what a single ``SHOW GLOBAL STATUS`` row turns into."""
    value = parse_int(raw_value)

    accumulator = ACCUMULATOR_KEYS.get(key)
    if accumulator is not None:
        group, field_name = accumulator
        return Match(Action.accumulate, group=group, field=field_name, value=value)

    exact = STATUS_TABLE.get(key)
    if exact is not None:
        series, label, kind = exact
        return Match(Action.emit, emission=_make(series, label, kind, value))

    if key.startswith("Innodb_"):
        if not innodb_stats:
            return NO_MATCH
        entry = INNODB_STATUS_TABLE.get(key)
        if entry is None:
            return NO_MATCH
        series, label, kind = entry
        return Match(Action.emit, emission=_make(series, label, kind, value))

    if key.startswith(OWNED_PREFIXES):
        return NO_MATCH

    for rule in PREFIX_RULES:
        if not key.startswith(rule.prefix):
            continue
        if rule.skip_zero and value == 0:
            return NO_MATCH
        if rule.ignore_prefix and key.startswith(rule.ignore_prefix):
            return NO_MATCH
        label = key[len(rule.prefix):] if rule.labelled else None
        return Match(Action.emit, emission=Emission.derive(rule.series, label, value))

    return NO_MATCH


class StatusAccumulator:
    """
    Collects the query cache, thread and traffic counters of one scan.

    Groups are emitted together by :meth:`flush`; the cache group only if
    some counter moved, the thread group only if threads were ever created.
    """

    def __init__(self) -> None:
        self.qcache: Dict[str, float] = {
            "hits": 0, "inserts": 0, "not_cached": 0, "prunes": 0, "queries_in_cache": math.nan,
        }
        self.threads: Dict[str, float] = {
            "running": math.nan, "connected": math.nan, "cached": math.nan, "created": 0,
        }
        self.traffic: Dict[str, int] = {"rx": 0, "tx": 0}

    def add(self, group: str, field_name: str, value: int) -> None:
        if group == "traffic":
            self.traffic[field_name] += value
        else:
            getattr(self, group)[field_name] = value

    def flush(self) -> List[Emission]:
        emissions: List[Emission] = []

        q = self.qcache
        if q["hits"] or q["inserts"] or q["not_cached"] or q["prunes"]:
            emissions.extend([
                Emission.derive("cache_result", "qcache-hits", q["hits"]),
                Emission.derive("cache_result", "qcache-inserts", q["inserts"]),
                Emission.derive("cache_result", "qcache-not_cached", q["not_cached"]),
                Emission.derive("cache_result", "qcache-prunes", q["prunes"]),
                Emission.gauge("cache_size", "qcache", q["queries_in_cache"]),
            ])

        t = self.threads
        if t["created"]:
            emissions.extend([
                Emission.gauge("threads", "running", t["running"]),
                Emission.gauge("threads", "connected", t["connected"]),
                Emission.gauge("threads", "cached", t["cached"]),
                Emission.derive("total_threads", "created", t["created"]),
            ])

        emissions.append(Emission.derive("mysql_octets", "rx", self.traffic["rx"]))
        emissions.append(Emission.derive("mysql_octets", "tx", self.traffic["tx"]))
        return emissions


def classify_status(rows: Iterable[Sequence[Any]], innodb_stats: bool = False) -> List[Emission]:
    """Classify the full row set of the primary status query."""
    emissions: List[Emission] = []
    accumulator = StatusAccumulator()

    for row in rows:
        if len(row) < 2:
            continue
        key = to_text(row[0]) or ""
        match = match_status(key, row[1], innodb_stats)
        if match.action is Action.emit:
            emissions.append(match.emission)
        elif match.action is Action.accumulate:
            accumulator.add(match.group, match.field, match.value)

    emissions.extend(accumulator.flush())
    logger.debug(f"Classified status rows into {len(emissions)} value(s)")
    return emissions


def _classify_table(
    rows: Iterable[Sequence[Any]], table: Mapping[str, Tuple[str, MetricKind]]
) -> List[Emission]:
    emissions = []
    for row in rows:
        if len(row) < 2:
            continue
        key = to_text(row[0]) or ""
        entry = table.get(key)
        if entry is None:
            continue
        series, kind = entry
        emissions.append(_make(series, key, kind, parse_int(row[1])))
    return emissions


def classify_innodb_metrics(rows: Iterable[Sequence[Any]]) -> List[Emission]:
    """Classify ``information_schema.innodb_metrics`` rows (name, count, type)."""
    return _classify_table(rows, INNODB_METRICS_TABLE)


def classify_wsrep(rows: Iterable[Sequence[Any]]) -> List[Emission]:
    """Classify ``wsrep_%`` status rows."""
    return _classify_table(rows, WSREP_TABLE)
