"""Account usage views for lifecycle executions and archive retrievals.

Both views are append-only and read newest first:

- ``account_usage.storage_lifecycle_policy_executions``
- ``account_usage.archive_storage_data_retrieval_usage_history``

Scheduled policy runs have no caller to report to, so the execution
history is the only place their failures show up.
"""

from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from tiering.lifecycle.policy import ArchiveTier, normalize_identifier
from tiering.storage.warehouse import Warehouse, from_db_time, to_db_time


class ExecutionStatus(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class RetrievalStatus(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    CANCELLED = "CANCELLED"
    TIMED_OUT = "TIMED_OUT"
    FAILED = "FAILED"


@dataclass(frozen=True)
class PolicyExecution:
    """One run of a storage lifecycle policy against one table."""

    execution_id: str
    policy_name: str
    table_name: str
    execution_start_time: datetime
    execution_end_time: Optional[datetime]
    status: ExecutionStatus
    partitions_archived: int = 0
    partitions_expired: int = 0
    rows_archived: int = 0
    rows_expired: int = 0
    error_message: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass(frozen=True)
class RetrievalUsage:
    """One CREATE TABLE ... FROM ARCHIVE OF operation."""

    query_id: str
    start_time: datetime
    end_time: Optional[datetime]
    source_table_name: str
    target_table_name: str
    archive_tier: Optional[ArchiveTier]
    status: RetrievalStatus
    partitions_retrieved: int = 0
    bytes_retrieved: int = 0
    files_retrieved: int = 0
    credits_used: Optional[float] = None  # reported by billing, never computed locally

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["archive_tier"] = self.archive_tier.value if self.archive_tier else None
        return data


class AuditLog:
    """Writer and reader for the account usage views."""

    EXECUTIONS_VIEW = "account_usage.storage_lifecycle_policy_executions"
    RETRIEVALS_VIEW = "account_usage.archive_storage_data_retrieval_usage_history"

    def __init__(self, warehouse: Warehouse):
        self.warehouse = warehouse

    def record_policy_execution(self, execution: PolicyExecution) -> None:
        self.warehouse.execute(
            f"INSERT INTO {self.EXECUTIONS_VIEW} VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [
                execution.execution_id,
                execution.policy_name,
                execution.table_name,
                to_db_time(execution.execution_start_time),
                to_db_time(execution.execution_end_time),
                execution.status.value,
                execution.partitions_archived,
                execution.partitions_expired,
                execution.rows_archived,
                execution.rows_expired,
                execution.error_message,
            ],
        )

    def record_retrieval(self, usage: RetrievalUsage) -> None:
        self.warehouse.execute(
            f"INSERT INTO {self.RETRIEVALS_VIEW} VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [
                usage.query_id,
                to_db_time(usage.start_time),
                to_db_time(usage.end_time),
                usage.source_table_name,
                usage.target_table_name,
                usage.archive_tier.value if usage.archive_tier else None,
                usage.status.value,
                usage.partitions_retrieved,
                usage.bytes_retrieved,
                usage.files_retrieved,
                usage.credits_used,
            ],
        )

    def policy_executions(
        self,
        policy_name: str | None = None,
        table_name: str | None = None,
        limit: int = 100,
    ) -> list[PolicyExecution]:
        """Execution history, newest first."""
        conditions, params = [], []
        if policy_name:
            conditions.append("policy_name = ?")
            params.append(normalize_identifier(policy_name))
        if table_name:
            conditions.append("table_name = ?")
            params.append(normalize_identifier(table_name))
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        rows = self.warehouse.fetch_all(
            f"""
            SELECT * FROM {self.EXECUTIONS_VIEW}
            {where}
            ORDER BY execution_start_time DESC, execution_id DESC
            LIMIT {int(limit)}
            """,
            params,
        )
        return [
            PolicyExecution(
                execution_id=row["execution_id"],
                policy_name=row["policy_name"],
                table_name=row["table_name"],
                execution_start_time=from_db_time(row["execution_start_time"]),
                execution_end_time=from_db_time(row["execution_end_time"]),
                status=ExecutionStatus(row["status"]),
                partitions_archived=row["partitions_archived"],
                partitions_expired=row["partitions_expired"],
                rows_archived=row["rows_archived"],
                rows_expired=row["rows_expired"],
                error_message=row["error_message"],
            )
            for row in rows
        ]

    def retrieval_history(
        self,
        source_table: str | None = None,
        limit: int = 100,
    ) -> list[RetrievalUsage]:
        """Retrieval usage history, newest first."""
        where, params = "", []
        if source_table:
            where = "WHERE source_table_name = ?"
            params.append(normalize_identifier(source_table))

        rows = self.warehouse.fetch_all(
            f"""
            SELECT * FROM {self.RETRIEVALS_VIEW}
            {where}
            ORDER BY start_time DESC, query_id DESC
            LIMIT {int(limit)}
            """,
            params,
        )
        return [
            RetrievalUsage(
                query_id=row["query_id"],
                start_time=from_db_time(row["start_time"]),
                end_time=from_db_time(row["end_time"]),
                source_table_name=row["source_table_name"],
                target_table_name=row["target_table_name"],
                archive_tier=ArchiveTier(row["archive_tier"]) if row["archive_tier"] else None,
                status=RetrievalStatus(row["status"]),
                partitions_retrieved=row["partitions_retrieved"],
                bytes_retrieved=row["bytes_retrieved"],
                files_retrieved=row["files_retrieved"],
                credits_used=row["credits_used"],
            )
            for row in rows
        ]
