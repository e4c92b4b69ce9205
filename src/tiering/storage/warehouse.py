"""DuckDB-backed warehouse with lifecycle-managed partitions.

The warehouse keeps everything in one DuckDB database:

- ``main.<table>``: HOT rows, visible to ordinary queries
- ``archive.<table>``: archived (COOL/COLD) rows tagged with their partition id
- ``meta.*``: table catalog, partition bookkeeping, policies and bindings
- ``account_usage.*``: policy execution and retrieval usage history

Partitions are calendar months of each table's partition column. Moving a
partition between states is a single DuckDB transaction, so a failure
leaves the partition exactly where it was.

Usage:
    from tiering.storage.warehouse import Warehouse
    from tiering.storage.schema import TRANSACTIONS_TABLE

    with Warehouse(database_path=":memory:") as warehouse:
        warehouse.create_table(TRANSACTIONS_TABLE, or_replace=True)
        warehouse.insert_rows("transactions", rows)
        partitions = warehouse.refresh_partitions("transactions")
"""

import math
import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterable, Optional, Sequence

import duckdb

from tiering.common.config import config
from tiering.common.exceptions import (
    InvalidTransitionError,
    TableAlreadyExistsError,
    TableNotFoundError,
)
from tiering.common.logging import get_logger
from tiering.common.metrics import create_component_metrics
from tiering.lifecycle.policy import ArchiveTier, normalize_identifier
from tiering.lifecycle.states import PartitionState, ensure_transition, transition_name
from tiering.storage.schema import TableDefinition

logger = get_logger(__name__, component="warehouse")
metrics = create_component_metrics("warehouse")

PARTITION_ID_COLUMN = "_partition_id"

_NEXTVAL = re.compile(r"nextval\('\"?([A-Za-z0-9_]+)\"?'\)")

_SYSTEM_DDL = [
    "CREATE SCHEMA IF NOT EXISTS meta",
    "CREATE SCHEMA IF NOT EXISTS archive",
    "CREATE SCHEMA IF NOT EXISTS account_usage",
    "CREATE SEQUENCE IF NOT EXISTS meta.partition_id_seq",
    """
    CREATE TABLE IF NOT EXISTS meta.tables (
        table_name VARCHAR NOT NULL,
        partition_column VARCHAR NOT NULL,
        comment VARCHAR,
        created_at TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS meta.partitions (
        partition_id BIGINT NOT NULL,
        table_name VARCHAR NOT NULL,
        partition_key DATE NOT NULL,
        state VARCHAR NOT NULL,
        archive_tier VARCHAR,
        row_count BIGINT NOT NULL,
        file_count BIGINT NOT NULL,
        byte_count BIGINT NOT NULL,
        min_value DATE,
        max_value DATE,
        created_at TIMESTAMP NOT NULL,
        archived_at TIMESTAMP,
        expires_at TIMESTAMP,
        expired_at TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS meta.policies (
        policy_name VARCHAR NOT NULL,
        column_name VARCHAR NOT NULL,
        quarters_back INTEGER NOT NULL,
        archive_tier VARCHAR NOT NULL,
        archive_for_days INTEGER NOT NULL,
        comment VARCHAR,
        created_on TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS meta.policy_bindings (
        table_name VARCHAR NOT NULL,
        policy_name VARCHAR NOT NULL,
        attached_at TIMESTAMP NOT NULL,
        last_run_at TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS account_usage.storage_lifecycle_policy_executions (
        execution_id VARCHAR NOT NULL,
        policy_name VARCHAR NOT NULL,
        table_name VARCHAR NOT NULL,
        execution_start_time TIMESTAMP NOT NULL,
        execution_end_time TIMESTAMP,
        status VARCHAR NOT NULL,
        partitions_archived BIGINT NOT NULL,
        partitions_expired BIGINT NOT NULL,
        rows_archived BIGINT NOT NULL,
        rows_expired BIGINT NOT NULL,
        error_message VARCHAR
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS account_usage.archive_storage_data_retrieval_usage_history (
        query_id VARCHAR NOT NULL,
        start_time TIMESTAMP NOT NULL,
        end_time TIMESTAMP,
        source_table_name VARCHAR NOT NULL,
        target_table_name VARCHAR NOT NULL,
        archive_tier VARCHAR,
        status VARCHAR NOT NULL,
        partitions_retrieved BIGINT NOT NULL,
        bytes_retrieved BIGINT NOT NULL,
        files_retrieved BIGINT NOT NULL,
        credits_used DOUBLE
    )
    """,
]


# ==============================================================================
# Time helpers (DuckDB stores naive UTC timestamps)
# ==============================================================================


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> datetime:
    """UTC-aware copy of `value`; naive values are taken as UTC, None means now."""
    if value is None:
        return utc_now()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_db_time(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def from_db_time(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


# ==============================================================================
# Records
# ==============================================================================


@dataclass(frozen=True)
class TableInfo:
    """Catalog entry of a managed table."""

    name: str
    partition_column: str
    comment: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class PartitionInfo:
    """Bookkeeping for one partition."""

    partition_id: int
    table_name: str
    partition_key: date
    state: PartitionState
    archive_tier: Optional[ArchiveTier]
    row_count: int
    file_count: int
    byte_count: int
    min_value: Optional[date]
    max_value: Optional[date]
    created_at: datetime
    archived_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "PartitionInfo":
        return cls(
            partition_id=row["partition_id"],
            table_name=row["table_name"],
            partition_key=row["partition_key"],
            state=PartitionState(row["state"]),
            archive_tier=ArchiveTier(row["archive_tier"]) if row["archive_tier"] else None,
            row_count=row["row_count"],
            file_count=row["file_count"],
            byte_count=row["byte_count"],
            min_value=row["min_value"],
            max_value=row["max_value"],
            created_at=from_db_time(row["created_at"]),
            archived_at=from_db_time(row["archived_at"]),
            expires_at=from_db_time(row["expires_at"]),
            expired_at=from_db_time(row["expired_at"]),
        )

    def time_in_archive(self, now: datetime) -> Optional[timedelta]:
        if self.archived_at is None:
            return None
        end = self.expired_at or ensure_utc(now)
        return end - self.archived_at

    def is_expirable(self, now: datetime) -> bool:
        return (
            self.state is PartitionState.COOL
            and self.expires_at is not None
            and ensure_utc(now) >= self.expires_at
        )


# ==============================================================================
# Warehouse
# ==============================================================================


class Warehouse:
    """DuckDB warehouse that tracks partitions through their lifecycle.

    All access to the connection goes through one re-entrant lock, so the
    warehouse can be shared between the scheduler and retrieval worker
    threads. Overlapping retrievals are serialized here.
    """

    def __init__(
        self,
        database_path: str | None = None,
        rows_per_file: int | None = None,
        estimated_row_bytes: int | None = None,
        memory_limit: str | None = None,
    ):
        """Open (or create) the warehouse database.

        Args:
            database_path: DuckDB file or ':memory:' (defaults to config)
            rows_per_file: Rows stored per physical file (defaults to config)
            estimated_row_bytes: Average row size for byte estimates (defaults to config)
            memory_limit: DuckDB memory limit (defaults to config)
        """
        self.database_path = database_path or config.warehouse.database_path
        self.rows_per_file = rows_per_file or config.warehouse.rows_per_file
        self.estimated_row_bytes = estimated_row_bytes or config.warehouse.estimated_row_bytes
        self.memory_limit = memory_limit or config.warehouse.memory_limit

        self._lock = threading.RLock()
        self._in_transaction = False
        self._conn = duckdb.connect(self.database_path)
        self._conn.execute(f"SET memory_limit = '{self.memory_limit}'")

        with self.transaction() as conn:
            for statement in _SYSTEM_DDL:
                conn.execute(statement)

        logger.info(
            "Warehouse opened",
            database_path=self.database_path,
            rows_per_file=self.rows_per_file,
            estimated_row_bytes=self.estimated_row_bytes,
        )

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self):
        """Run a block of statements atomically.

        Nested use joins the outer transaction.

        Yields:
            The DuckDB connection
        """
        with self._lock:
            if self._in_transaction:
                yield self._conn
                return

            self._conn.begin()
            self._in_transaction = True
            try:
                yield self._conn
            except Exception:
                self._conn.rollback()
                raise
            else:
                self._conn.commit()
            finally:
                self._in_transaction = False

    def fetch_all(self, sql: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]:
        """Execute a query and return rows as dictionaries."""
        with self._lock:
            cursor = self._conn.execute(sql, list(params or []))
            columns = [d[0] for d in cursor.description]
            return [dict(zip(columns, row)) for row in cursor.fetchall()]

    def fetch_one(self, sql: str, params: Sequence[Any] | None = None) -> dict[str, Any] | None:
        rows = self.fetch_all(sql, params)
        return rows[0] if rows else None

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> None:
        with self._lock:
            self._conn.execute(sql, list(params or []))

    def close(self) -> None:
        with self._lock:
            self._conn.close()
        logger.debug("Warehouse closed", database_path=self.database_path)

    def __enter__(self) -> "Warehouse":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def table_exists(self, table_name: str) -> bool:
        row = self.fetch_one(
            "SELECT 1 AS found FROM meta.tables WHERE table_name = ?",
            [normalize_identifier(table_name)],
        )
        return row is not None

    def get_table(self, table_name: str) -> TableInfo:
        """Catalog entry for a table.

        Raises:
            TableNotFoundError: If the table is not managed by this warehouse
        """
        name = normalize_identifier(table_name)
        row = self.fetch_one("SELECT * FROM meta.tables WHERE table_name = ?", [name])
        if row is None:
            raise TableNotFoundError(name)
        return TableInfo(
            name=row["table_name"],
            partition_column=row["partition_column"],
            comment=row["comment"],
            created_at=from_db_time(row["created_at"]),
        )

    def list_tables(self) -> list[TableInfo]:
        rows = self.fetch_all("SELECT table_name FROM meta.tables ORDER BY table_name")
        return [self.get_table(row["table_name"]) for row in rows]

    def columns(self, table_name: str) -> dict[str, str]:
        """Column name -> DuckDB type for a managed table, in table order."""
        name = self.get_table(table_name).name
        rows = self.fetch_all(
            """
            SELECT column_name, data_type
            FROM information_schema.columns
            WHERE table_schema = 'main' AND table_name = ?
            ORDER BY ordinal_position
            """,
            [name],
        )
        return {row["column_name"]: row["data_type"] for row in rows}

    def create_table(
        self,
        definition: TableDefinition,
        or_replace: bool = False,
        now: datetime | None = None,
    ) -> TableInfo:
        """Create a managed table and its archive store.

        Args:
            definition: Table definition
            or_replace: Drop an existing table of the same name first
            now: Creation time (defaults to current UTC time)

        Raises:
            TableAlreadyExistsError: If the table exists and or_replace is False
        """
        with self.transaction() as conn:
            if self.table_exists(definition.name):
                if not or_replace:
                    raise TableAlreadyExistsError(definition.name)
                self.drop_table(definition.name)

            for sequence in definition.sequences():
                conn.execute(f'CREATE SEQUENCE "{sequence}"')
            conn.execute(definition.create_statement())
            self._create_archive_store(conn, definition.name)
            conn.execute(
                "INSERT INTO meta.tables VALUES (?, ?, ?, ?)",
                [
                    definition.name,
                    definition.partition_column,
                    definition.comment,
                    to_db_time(ensure_utc(now)),
                ],
            )

        logger.info(
            "Table created",
            table=definition.name,
            partition_column=definition.partition_column,
            replaced=or_replace,
        )
        return self.get_table(definition.name)

    def _create_archive_store(self, conn: duckdb.DuckDBPyConnection, table_name: str) -> None:
        conn.execute(
            f'CREATE TABLE archive."{table_name}" AS '
            f'SELECT *, CAST(NULL AS BIGINT) AS {PARTITION_ID_COLUMN} '
            f'FROM main."{table_name}" LIMIT 0'
        )

    def drop_table(self, table_name: str, if_exists: bool = False) -> bool:
        """Drop a table together with its archive, partitions and policy binding.

        Returns:
            True if a table was dropped, False if it did not exist (if_exists only)

        Raises:
            TableNotFoundError: If the table does not exist and if_exists is False
        """
        name = normalize_identifier(table_name)
        with self.transaction() as conn:
            if not self.table_exists(name):
                if if_exists:
                    logger.debug("Drop skipped, table does not exist", table=name)
                    return False
                raise TableNotFoundError(name)

            defaults = conn.execute(
                "SELECT column_default FROM information_schema.columns "
                "WHERE table_schema = 'main' AND table_name = ? AND column_default LIKE 'nextval(%'",
                [name],
            ).fetchall()
            conn.execute(f'DROP TABLE IF EXISTS main."{name}"')
            conn.execute(f'DROP TABLE IF EXISTS archive."{name}"')
            for (default,) in defaults:
                match = _NEXTVAL.search(default)
                if match:
                    conn.execute(f'DROP SEQUENCE IF EXISTS "{match.group(1)}"')
            conn.execute("DELETE FROM meta.partitions WHERE table_name = ?", [name])
            conn.execute("DELETE FROM meta.policy_bindings WHERE table_name = ?", [name])
            conn.execute("DELETE FROM meta.tables WHERE table_name = ?", [name])

        logger.info("Table dropped", table=name)
        return True

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------

    def insert_rows(self, table_name: str, rows: Iterable[dict[str, Any]]) -> int:
        """Insert rows into the HOT store of a table.

        All rows must share the same keys. Omitted columns take their defaults.

        Returns:
            Number of rows inserted
        """
        name = self.get_table(table_name).name
        rows = list(rows)
        if not rows:
            return 0

        column_names = list(rows[0].keys())
        known = self.columns(name)
        unknown = [c for c in column_names if c not in known]
        if unknown:
            raise ValueError(f"Unknown columns for {name}: {unknown}")

        column_list = ", ".join(f'"{c}"' for c in column_names)
        placeholders = ", ".join("?" for _ in column_names)
        values = [[row.get(c) for c in column_names] for row in rows]

        with self.transaction() as conn:
            conn.executemany(
                f'INSERT INTO main."{name}" ({column_list}) VALUES ({placeholders})', values
            )

        logger.debug("Rows inserted", table=name, row_count=len(values))
        return len(values)

    def count_rows(self, table_name: str) -> int:
        name = self.get_table(table_name).name
        return self.fetch_one(f'SELECT count(*) AS n FROM main."{name}"')["n"]

    def count_archived_rows(self, table_name: str) -> int:
        name = self.get_table(table_name).name
        return self.fetch_one(f'SELECT count(*) AS n FROM archive."{name}"')["n"]

    def select_rows(
        self,
        table_name: str,
        limit: int = 100,
        order_by: str | None = None,
    ) -> list[dict[str, Any]]:
        """Read HOT rows of a table."""
        name = self.get_table(table_name).name
        if not (1 <= int(limit) <= 100_000):
            raise ValueError(f"Invalid limit: {limit}. Must be between 1 and 100,000")
        order_clause = ""
        if order_by:
            if order_by not in self.columns(name):
                raise ValueError(f"Unknown column for {name}: {order_by}")
            order_clause = f'ORDER BY "{order_by}"'
        return self.fetch_all(f'SELECT * FROM main."{name}" {order_clause} LIMIT {int(limit)}')

    # ------------------------------------------------------------------
    # Partitions
    # ------------------------------------------------------------------

    def _file_count(self, row_count: int) -> int:
        return math.ceil(row_count / self.rows_per_file) if row_count else 0

    def _byte_count(self, row_count: int) -> int:
        return row_count * self.estimated_row_bytes

    def refresh_partitions(self, table_name: str, now: datetime | None = None) -> list[PartitionInfo]:
        """Recompute HOT partition statistics from the table's rows.

        Rows arriving for a month that was already archived start a new
        HOT partition for that month.

        Returns:
            Current HOT partitions ordered by partition key
        """
        table = self.get_table(table_name)
        column = table.partition_column
        now = to_db_time(ensure_utc(now))

        with self.transaction() as conn:
            stats = conn.execute(
                f"""
                SELECT
                    CAST(date_trunc('month', "{column}") AS DATE) AS partition_key,
                    count(*) AS row_count,
                    min("{column}") AS min_value,
                    max("{column}") AS max_value
                FROM main."{table.name}"
                WHERE "{column}" IS NOT NULL
                GROUP BY 1
                """
            ).fetchall()
            existing = {
                key: partition_id
                for partition_id, key in conn.execute(
                    "SELECT partition_id, partition_key FROM meta.partitions "
                    "WHERE table_name = ? AND state = ?",
                    [table.name, PartitionState.HOT.value],
                ).fetchall()
            }

            seen = set()
            for partition_key, row_count, min_value, max_value in stats:
                seen.add(partition_key)
                if partition_key in existing:
                    conn.execute(
                        """
                        UPDATE meta.partitions
                        SET row_count = ?, file_count = ?, byte_count = ?,
                            min_value = ?, max_value = ?
                        WHERE partition_id = ?
                        """,
                        [
                            row_count,
                            self._file_count(row_count),
                            self._byte_count(row_count),
                            min_value,
                            max_value,
                            existing[partition_key],
                        ],
                    )
                else:
                    conn.execute(
                        """
                        INSERT INTO meta.partitions (
                            partition_id, table_name, partition_key, state, archive_tier,
                            row_count, file_count, byte_count, min_value, max_value, created_at
                        )
                        VALUES (nextval('meta.partition_id_seq'), ?, ?, ?, NULL, ?, ?, ?, ?, ?, ?)
                        """,
                        [
                            table.name,
                            partition_key,
                            PartitionState.HOT.value,
                            row_count,
                            self._file_count(row_count),
                            self._byte_count(row_count),
                            min_value,
                            max_value,
                            now,
                        ],
                    )

            # HOT partitions whose rows were all deleted upstream
            for partition_key, partition_id in existing.items():
                if partition_key not in seen:
                    conn.execute("DELETE FROM meta.partitions WHERE partition_id = ?", [partition_id])

        return self.list_partitions(table.name, states=[PartitionState.HOT])

    def list_partitions(
        self,
        table_name: str,
        states: Iterable[PartitionState] | None = None,
    ) -> list[PartitionInfo]:
        """Partitions of a table, optionally filtered by state, ordered by id."""
        name = self.get_table(table_name).name
        sql = "SELECT * FROM meta.partitions WHERE table_name = ?"
        params: list[Any] = [name]
        if states is not None:
            state_values = [PartitionState(s).value for s in states]
            if not state_values:
                return []
            sql += f" AND state IN ({', '.join('?' for _ in state_values)})"
            params.extend(state_values)
        sql += " ORDER BY partition_key, partition_id"
        return [PartitionInfo.from_row(row) for row in self.fetch_all(sql, params)]

    def get_partition(self, partition_id: int) -> PartitionInfo:
        row = self.fetch_one("SELECT * FROM meta.partitions WHERE partition_id = ?", [partition_id])
        if row is None:
            raise KeyError(f"Partition {partition_id} does not exist")
        return PartitionInfo.from_row(row)

    def partition_counts(self, table_name: str) -> dict[PartitionState, int]:
        name = self.get_table(table_name).name
        counts = {state: 0 for state in PartitionState}
        for row in self.fetch_all(
            "SELECT state, count(*) AS n FROM meta.partitions WHERE table_name = ? GROUP BY state",
            [name],
        ):
            counts[PartitionState(row["state"])] = row["n"]
        return counts

    def partition_rows_satisfy(
        self,
        partition: PartitionInfo,
        condition_sql: str,
        params: Sequence[Any],
    ) -> bool:
        """True when every HOT row of the partition satisfies the condition.

        A NULL result counts as not satisfied.
        """
        table = self.get_table(partition.table_name)
        row = self.fetch_one(
            f"""
            SELECT count(*) AS total,
                   count(*) FILTER (WHERE NOT coalesce(({condition_sql}), false)) AS failing
            FROM main."{table.name}"
            WHERE CAST(date_trunc('month', "{table.partition_column}") AS DATE) = ?
            """,
            [*params, partition.partition_key],
        )
        return row["total"] > 0 and row["failing"] == 0

    def archive_partition(
        self,
        partition_id: int,
        tier: ArchiveTier,
        archive_for_days: int,
        now: datetime | None = None,
    ) -> PartitionInfo:
        """Move a HOT partition's rows into archive storage (HOT -> COOL).

        Raises:
            InvalidTransitionError: If the partition is not HOT
        """
        now = ensure_utc(now)
        with self.transaction() as conn:
            partition = self.get_partition(partition_id)
            ensure_transition(partition.state, PartitionState.COOL)
            table = self.get_table(partition.table_name)
            month_filter = f"CAST(date_trunc('month', \"{table.partition_column}\") AS DATE) = ?"

            moved = conn.execute(
                f'INSERT INTO archive."{table.name}" '
                f'SELECT *, CAST(? AS BIGINT) AS {PARTITION_ID_COLUMN} '
                f'FROM main."{table.name}" WHERE {month_filter}',
                [partition_id, partition.partition_key],
            ).fetchone()[0]
            conn.execute(
                f'DELETE FROM main."{table.name}" WHERE {month_filter}',
                [partition.partition_key],
            )
            conn.execute(
                """
                UPDATE meta.partitions
                SET state = ?, archive_tier = ?, row_count = ?, file_count = ?, byte_count = ?,
                    archived_at = ?, expires_at = ?
                WHERE partition_id = ?
                """,
                [
                    PartitionState.COOL.value,
                    ArchiveTier(tier).value,
                    moved,
                    self._file_count(moved),
                    self._byte_count(moved),
                    to_db_time(now),
                    to_db_time(now + timedelta(days=archive_for_days)),
                    partition_id,
                ],
            )

        metrics.increment(
            "partition_transitions_total",
            labels={
                "table": table.name,
                "transition": transition_name(PartitionState.HOT, PartitionState.COOL),
            },
        )
        logger.info(
            "Partition archived",
            table=table.name,
            partition_id=partition_id,
            partition_key=str(partition.partition_key),
            tier=ArchiveTier(tier).value,
            rows=moved,
        )
        return self.get_partition(partition_id)

    def expire_partition(self, partition_id: int, now: datetime | None = None) -> PartitionInfo:
        """Permanently delete an archived partition (COOL -> EXPIRED).

        Raises:
            InvalidTransitionError: If the partition is not archived or its
                retention has not elapsed yet
        """
        now = ensure_utc(now)
        with self.transaction() as conn:
            partition = self.get_partition(partition_id)
            ensure_transition(partition.state, PartitionState.EXPIRED)
            if not partition.is_expirable(now):
                raise InvalidTransitionError(
                    f"Partition {partition_id} stays archived until {partition.expires_at.isoformat()}"
                )
            conn.execute(
                f'DELETE FROM archive."{partition.table_name}" WHERE {PARTITION_ID_COLUMN} = ?',
                [partition_id],
            )
            conn.execute(
                "UPDATE meta.partitions SET state = ?, expired_at = ? WHERE partition_id = ?",
                [PartitionState.EXPIRED.value, to_db_time(now), partition_id],
            )

        metrics.increment(
            "partition_transitions_total",
            labels={
                "table": partition.table_name,
                "transition": transition_name(PartitionState.COOL, PartitionState.EXPIRED),
            },
        )
        logger.info(
            "Partition expired",
            table=partition.table_name,
            partition_id=partition_id,
            partition_key=str(partition.partition_key),
            rows=partition.row_count,
        )
        return self.get_partition(partition_id)

    def create_table_from_archive(
        self,
        source_table: str,
        target_table: str,
        partition_ids: Sequence[int],
        condition_sql: str,
        params: Sequence[Any],
        now: datetime | None = None,
    ) -> int:
        """Materialize a new table from archived partitions of a source table.

        Only rows of the given partitions that satisfy the condition are
        copied. The new table is independent of its source and is partitioned
        on the same column.

        Returns:
            Number of rows in the new table

        Raises:
            TableNotFoundError: If the source table does not exist
            TableAlreadyExistsError: If the target table exists
        """
        source = self.get_table(source_table)
        target = normalize_identifier(target_table)

        with self.transaction() as conn:
            if self.table_exists(target):
                raise TableAlreadyExistsError(target)

            if partition_ids:
                id_list = ", ".join("?" for _ in partition_ids)
                where = f"{PARTITION_ID_COLUMN} IN ({id_list}) AND ({condition_sql})"
                all_params = [*partition_ids, *params]
            else:
                where = "false"
                all_params = []

            conn.execute(
                f'CREATE TABLE main."{target}" AS '
                f'SELECT * EXCLUDE ({PARTITION_ID_COLUMN}) FROM archive."{source.name}" WHERE {where}',
                all_params,
            )
            self._create_archive_store(conn, target)
            conn.execute(
                "INSERT INTO meta.tables VALUES (?, ?, ?, ?)",
                [
                    target,
                    source.partition_column,
                    f"Restored from archive of {source.name}",
                    to_db_time(ensure_utc(now)),
                ],
            )
            row_count = conn.execute(f'SELECT count(*) FROM main."{target}"').fetchone()[0]
            self.refresh_partitions(target, now=now)

        logger.info(
            "Table created from archive",
            source_table=source.name,
            target_table=target,
            partitions=len(partition_ids),
            rows=row_count,
        )
        return row_count
