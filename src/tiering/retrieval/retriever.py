"""Archive retrieval: EXPLAIN estimates and CREATE TABLE ... FROM ARCHIVE OF.

Retrieval rebuilds a new, independent table from archived partitions that
match a mandatory filter. Cost scales with the number of archived files
touched, so the plan reports ``assigned_partitions``/``assigned_files``
before anything is restored.

A restore from the COLD tier can take up to 48 hours. Retrievals therefore
run as asyncio tasks with a deadline instead of blocking calls:

- the session's STATEMENT_TIMEOUT_IN_SECONDS cancels the statement itself
  (StatementTimeoutError);
- a caller that stops waiting (its own timeout or cancellation) detaches;
  the statement keeps running unless ABORT_DETACHED_QUERY is true.

Usage:
    retriever = ArchiveRetriever(warehouse)
    request = RetrievalRequest.from_sql(
        "transactions",
        "transactions_q1_2023_restored",
        "t.transaction_date BETWEEN '2023-01-01' AND '2023-03-31'",
    )

    plan = retriever.explain(request)
    print(plan.assigned_partitions, plan.assigned_files)

    session = Session().alter(statement_timeout_in_seconds=172800, abort_detached_query=False)
    result = await retriever.create_table_from_archive(request, session)
"""

import asyncio
import time
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Optional

from tiering.audit.history import AuditLog, RetrievalStatus, RetrievalUsage
from tiering.common.config import config
from tiering.common.exceptions import (
    RetrievalLimitExceededError,
    StatementTimeoutError,
    TableAlreadyExistsError,
)
from tiering.common.logging import get_logger, set_correlation_id
from tiering.common.metrics import create_component_metrics
from tiering.lifecycle.policy import ArchiveTier, normalize_identifier
from tiering.lifecycle.states import PartitionState
from tiering.retrieval.filters import ArchiveFilter, parse_filter
from tiering.retrieval.session import Session
from tiering.storage.warehouse import Warehouse, utc_now

logger = get_logger(__name__, component="retrieval")
metrics = create_component_metrics("retrieval")

RETRIEVAL_OPERATION = "createTableFromArchiveData"


@dataclass(frozen=True)
class RetrievalRequest:
    """CREATE TABLE <target_table> FROM ARCHIVE OF <source_table> WHERE <filter>."""

    source_table: str
    target_table: str
    filter: ArchiveFilter

    def __post_init__(self):
        object.__setattr__(self, "source_table", normalize_identifier(self.source_table))
        object.__setattr__(self, "target_table", normalize_identifier(self.target_table))

    @classmethod
    def from_sql(cls, source_table: str, target_table: str, where: str | None) -> "RetrievalRequest":
        return cls(source_table, target_table, parse_filter(where))


@dataclass(frozen=True)
class RetrievalPlan:
    """EXPLAIN output for an archive retrieval."""

    source_table: str
    target_table: str
    operation: str
    objects: str
    filter: str
    archive_tier: Optional[ArchiveTier]
    total_partitions: int
    assigned_partitions: int
    assigned_files: int
    estimated_bytes: int
    max_restore_seconds: int
    partition_ids: tuple[int, ...]

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["archive_tier"] = self.archive_tier.value if self.archive_tier else None
        data["partition_ids"] = list(self.partition_ids)
        return data


@dataclass(frozen=True)
class RetrievalResult:
    """Outcome of a completed retrieval."""

    query_id: str
    source_table: str
    target_table: str
    archive_tier: Optional[ArchiveTier]
    partitions_retrieved: int
    files_retrieved: int
    bytes_retrieved: int
    rows_retrieved: int
    start_time: datetime
    end_time: datetime


class RetrievalTask:
    """A running retrieval.

    Await wait() for the result. The statement timeout is enforced by the
    task itself, whether or not anyone is waiting.
    """

    def __init__(
        self,
        retriever: "ArchiveRetriever",
        plan: RetrievalPlan,
        bound_filter: ArchiveFilter,
        session: Session,
    ):
        self.query_id = str(uuid.uuid4())
        self.plan = plan
        self.session = session
        self._retriever = retriever
        self._filter = bound_filter
        self._task = asyncio.get_running_loop().create_task(self._run())

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> bool:
        """Cancel the statement explicitly."""
        return self._task.cancel()

    def detach(self) -> None:
        """The client went away."""
        if self._task.done():
            return
        if self.session.abort_detached_query:
            logger.warning("Client detached, aborting retrieval", query_id=self.query_id)
            self._task.cancel()
        else:
            logger.info("Client detached, retrieval continues", query_id=self.query_id)

    async def wait(self, timeout: float | None = None) -> RetrievalResult:
        """Wait for the result.

        Args:
            timeout: Seconds the caller is willing to wait. Hitting it
                detaches the caller and raises TimeoutError.

        Raises:
            StatementTimeoutError: If the statement hit the session timeout
            TimeoutError: If the caller's own timeout passed first
            asyncio.CancelledError: If the statement or the caller was cancelled
        """
        try:
            return await asyncio.wait_for(asyncio.shield(self._task), timeout)
        except asyncio.TimeoutError:
            self.detach()
            raise
        except asyncio.CancelledError:
            if not self._task.done():
                self.detach()
            raise

    async def _run(self) -> RetrievalResult:
        set_correlation_id(self.query_id)
        plan = self.plan
        start_time = utc_now()
        started = time.perf_counter()
        status = RetrievalStatus.FAILED
        rows = 0

        logger.info(
            "Retrieval started",
            query_id=self.query_id,
            source_table=plan.source_table,
            target_table=plan.target_table,
            assigned_partitions=plan.assigned_partitions,
            assigned_files=plan.assigned_files,
        )

        try:
            rows = await asyncio.wait_for(self._execute(), timeout=self.session.statement_timeout)
            status = RetrievalStatus.SUCCEEDED
        except asyncio.TimeoutError:
            status = RetrievalStatus.TIMED_OUT
            raise StatementTimeoutError(self.session.statement_timeout_in_seconds) from None
        except asyncio.CancelledError:
            status = RetrievalStatus.CANCELLED
            raise
        finally:
            end_time = utc_now()
            # Off the loop: the insert waits on the warehouse lock
            await asyncio.shield(
                asyncio.to_thread(
                    self._retriever._record,
                    self,
                    status,
                    start_time,
                    end_time,
                    time.perf_counter() - started,
                )
            )

        return RetrievalResult(
            query_id=self.query_id,
            source_table=plan.source_table,
            target_table=plan.target_table,
            archive_tier=plan.archive_tier,
            partitions_retrieved=plan.assigned_partitions,
            files_retrieved=plan.assigned_files,
            bytes_retrieved=plan.estimated_bytes,
            rows_retrieved=rows,
            start_time=start_time,
            end_time=end_time,
        )

    async def _execute(self) -> int:
        plan = self.plan
        delay = plan.max_restore_seconds * self._retriever.latency_scale
        if delay > 0:
            await asyncio.sleep(delay)

        condition_sql, params = self._filter.to_sql()
        warehouse = self._retriever.warehouse
        restore = asyncio.ensure_future(
            asyncio.to_thread(
                warehouse.create_table_from_archive,
                plan.source_table,
                plan.target_table,
                plan.partition_ids,
                condition_sql,
                params,
            )
        )
        try:
            return await asyncio.shield(restore)
        except asyncio.CancelledError:
            # The copy commits atomically; undo it if it landed after the cancel
            await asyncio.wait([restore])
            if not restore.cancelled() and restore.exception() is None:
                await asyncio.to_thread(warehouse.drop_table, plan.target_table, True)
            raise


class ArchiveRetriever:
    """Plans and runs archive retrievals against a warehouse."""

    def __init__(
        self,
        warehouse: Warehouse,
        audit: AuditLog | None = None,
        latency_scale: float | None = None,
    ):
        """Initialize retriever.

        Args:
            warehouse: Warehouse holding the archived data
            audit: Usage history writer (defaults to the warehouse's)
            latency_scale: Fraction of the worst-case restore time to wait
                (defaults to config; 0 restores instantly)
        """
        self.warehouse = warehouse
        self.audit = audit or AuditLog(warehouse)
        self.latency_scale = (
            config.retrieval.latency_scale if latency_scale is None else latency_scale
        )

    def _bind(self, request: RetrievalRequest) -> ArchiveFilter:
        self.warehouse.get_table(request.source_table)
        return request.filter.bind(self.warehouse.columns(request.source_table))

    def explain(self, request: RetrievalRequest) -> RetrievalPlan:
        """EXPLAIN CREATE TABLE ... FROM ARCHIVE OF ... WHERE ...

        Non-mutating: the same request against unchanged data always yields
        the same plan.

        Raises:
            TableNotFoundError: If the source table does not exist
            FilterSyntaxError: If the filter does not fit the source table
            RetrievalLimitExceededError: If a tier's file ceiling would be exceeded
        """
        bound = self._bind(request)
        table = self.warehouse.get_table(request.source_table)
        archived = self.warehouse.list_partitions(table.name, states=[PartitionState.COOL])
        assigned = [
            p
            for p in archived
            if bound.may_match_partition(table.partition_column, p.min_value, p.max_value)
        ]

        files_by_tier: dict[ArchiveTier, int] = {}
        for partition in assigned:
            files_by_tier[partition.archive_tier] = (
                files_by_tier.get(partition.archive_tier, 0) + partition.file_count
            )
        for tier, files in files_by_tier.items():
            limit = tier.max_files_per_retrieval
            if limit is not None and files > limit:
                raise RetrievalLimitExceededError(tier.value, files, limit)

        tier = max(files_by_tier, key=lambda t: t.rank) if files_by_tier else None
        plan = RetrievalPlan(
            source_table=table.name,
            target_table=request.target_table,
            operation=RETRIEVAL_OPERATION,
            objects=f"ARCHIVE OF {table.name}",
            filter=str(bound),
            archive_tier=tier,
            total_partitions=len(archived),
            assigned_partitions=len(assigned),
            assigned_files=sum(p.file_count for p in assigned),
            estimated_bytes=sum(p.byte_count for p in assigned),
            max_restore_seconds=tier.max_restore_seconds if tier else 0,
            partition_ids=tuple(p.partition_id for p in assigned),
        )

        metrics.increment("retrieval_estimates_total", labels={"table": table.name})
        logger.debug(
            "Retrieval planned",
            source_table=table.name,
            assigned_partitions=plan.assigned_partitions,
            total_partitions=plan.total_partitions,
            assigned_files=plan.assigned_files,
        )
        return plan

    def start(self, request: RetrievalRequest, session: Session | None = None) -> RetrievalTask:
        """Start CREATE TABLE ... FROM ARCHIVE OF in the running event loop.

        Planning errors and an existing target table are raised here,
        before anything runs.
        """
        session = session or Session()
        plan = self.explain(request)
        if self.warehouse.table_exists(request.target_table):
            raise TableAlreadyExistsError(request.target_table)

        for issue in session.long_retrieval_issues(plan.max_restore_seconds):
            logger.warning(
                "Session settings may interrupt this retrieval",
                tier=plan.archive_tier.value if plan.archive_tier else None,
                issue=issue,
            )

        return RetrievalTask(self, plan, self._bind(request), session)

    async def create_table_from_archive(
        self,
        request: RetrievalRequest,
        session: Session | None = None,
        timeout: float | None = None,
    ) -> RetrievalResult:
        """Run a retrieval and wait for it."""
        task = self.start(request, session)
        return await task.wait(timeout)

    def _record(
        self,
        task: RetrievalTask,
        status: RetrievalStatus,
        start_time: datetime,
        end_time: datetime,
        duration: float,
    ) -> None:
        plan = task.plan
        succeeded = status is RetrievalStatus.SUCCEEDED
        self.audit.record_retrieval(
            RetrievalUsage(
                query_id=task.query_id,
                start_time=start_time,
                end_time=end_time,
                source_table_name=plan.source_table,
                target_table_name=plan.target_table,
                archive_tier=plan.archive_tier,
                status=status,
                partitions_retrieved=plan.assigned_partitions if succeeded else 0,
                bytes_retrieved=plan.estimated_bytes if succeeded else 0,
                files_retrieved=plan.assigned_files if succeeded else 0,
            )
        )

        tier_label = plan.archive_tier.value.lower() if plan.archive_tier else "none"
        labels = {"table": plan.source_table, "tier": tier_label}
        metrics.increment("retrievals_total", labels={**labels, "status": status.value.lower()})
        metrics.histogram("retrieval_duration_seconds", duration, labels=labels)
        if succeeded:
            metrics.increment("retrieval_files_total", value=plan.assigned_files, labels=labels)

        logger.info(
            "Retrieval finished",
            query_id=task.query_id,
            status=status.value,
            source_table=plan.source_table,
            target_table=plan.target_table,
            duration_seconds=round(duration, 3),
        )
