"""Policy evaluation and the daily lifecycle scheduler.

PolicyEvaluator plays the platform's background job for one table: it
archives HOT partitions whose rows all satisfy the aging predicate and
expires archived partitions whose retention has elapsed.

LifecycleScheduler decides when each binding is due. The first run waits
for the activation delay after attachment; later runs happen at most once
per evaluation interval.

Evaluation never raises to its caller. Every run is written to the
policy execution history, including failures.

Usage:
    scheduler = LifecycleScheduler(warehouse)

    # Run whatever is due now (e.g. from cron)
    executions = scheduler.run_pending()

    # Or block and poll
    scheduler.serve(poll_interval_seconds=300)
"""

import threading
import time
import uuid
from datetime import datetime, timedelta
from typing import Optional

from tiering.audit.history import AuditLog, ExecutionStatus, PolicyExecution
from tiering.common.config import config
from tiering.common.logging import clear_correlation_id, get_logger, set_correlation_id
from tiering.common.metrics import create_component_metrics
from tiering.lifecycle.registry import PolicyBinding, PolicyRegistry
from tiering.lifecycle.states import PartitionState
from tiering.storage.warehouse import Warehouse, ensure_utc

logger = get_logger(__name__, component="lifecycle")
metrics = create_component_metrics("lifecycle")


class PolicyEvaluator:
    """Applies a table's attached policy to its partitions."""

    def __init__(
        self,
        warehouse: Warehouse,
        registry: PolicyRegistry | None = None,
        audit: AuditLog | None = None,
    ):
        self.warehouse = warehouse
        self.registry = registry or PolicyRegistry(warehouse)
        self.audit = audit or AuditLog(warehouse)

    def evaluate(self, table_name: str, now: datetime | None = None) -> Optional[PolicyExecution]:
        """Run the attached policy against a table once.

        Args:
            table_name: Table to evaluate
            now: Evaluation time (defaults to current UTC time)

        Returns:
            The recorded execution, or None if the table has no policy attached
        """
        now = ensure_utc(now)
        binding = self.registry.binding_for(table_name)
        if binding is None:
            logger.debug("No policy attached, skipping evaluation", table=table_name)
            return None

        execution_id = str(uuid.uuid4())
        set_correlation_id(execution_id)
        started = time.perf_counter()

        partitions_archived = partitions_expired = rows_archived = rows_expired = 0
        status = ExecutionStatus.SUCCEEDED
        error_message = None

        try:
            policy = self.registry.get_policy(binding.policy_name)
            predicate = policy.predicate
            condition_sql, params = predicate.to_sql(now.date())

            logger.info(
                "Evaluating storage lifecycle policy",
                table=binding.table_name,
                policy=policy.name,
                cutoff=str(predicate.cutoff(now.date())),
            )

            for partition in self.warehouse.refresh_partitions(binding.table_name, now=now):
                if not self.warehouse.partition_rows_satisfy(partition, condition_sql, params):
                    continue
                archived = self.warehouse.archive_partition(
                    partition.partition_id,
                    policy.archive_tier,
                    policy.archive_for_days,
                    now=now,
                )
                partitions_archived += 1
                rows_archived += archived.row_count
                metrics.increment(
                    "rows_archived_total",
                    value=archived.row_count,
                    labels={"table": binding.table_name, "tier": policy.archive_tier.value.lower()},
                )

            for partition in self.warehouse.list_partitions(
                binding.table_name, states=[PartitionState.COOL]
            ):
                if not partition.is_expirable(now):
                    continue
                self.warehouse.expire_partition(partition.partition_id, now=now)
                partitions_expired += 1
                rows_expired += partition.row_count
                metrics.increment(
                    "rows_expired_total",
                    value=partition.row_count,
                    labels={"table": binding.table_name},
                )

        except Exception as e:
            # Nobody is waiting on a scheduled run; the execution history is the error channel
            status = ExecutionStatus.FAILED
            error_message = str(e)
            logger.exception(
                "Storage lifecycle policy execution failed",
                table=binding.table_name,
                policy=binding.policy_name,
                error=error_message,
            )
        finally:
            clear_correlation_id()

        duration = time.perf_counter() - started
        execution = PolicyExecution(
            execution_id=execution_id,
            policy_name=binding.policy_name,
            table_name=binding.table_name,
            execution_start_time=now,
            execution_end_time=now + timedelta(seconds=duration),
            status=status,
            partitions_archived=partitions_archived,
            partitions_expired=partitions_expired,
            rows_archived=rows_archived,
            rows_expired=rows_expired,
            error_message=error_message,
        )
        self.registry.mark_run(binding.table_name, now)
        self.audit.record_policy_execution(execution)
        self._record_metrics(execution, duration)

        logger.info(
            "Storage lifecycle policy execution finished",
            table=execution.table_name,
            policy=execution.policy_name,
            status=execution.status.value,
            partitions_archived=partitions_archived,
            partitions_expired=partitions_expired,
        )
        return execution

    def _record_metrics(self, execution: PolicyExecution, duration: float) -> None:
        labels = {"table": execution.table_name, "policy": execution.policy_name}
        metrics.increment(
            "policy_executions_total",
            labels={**labels, "status": execution.status.value.lower()},
        )
        metrics.histogram("policy_execution_duration_seconds", duration, labels=labels)
        if self.warehouse.table_exists(execution.table_name):
            for state, count in self.warehouse.partition_counts(execution.table_name).items():
                metrics.gauge(
                    "partitions",
                    count,
                    labels={"table": execution.table_name, "state": state.value.lower()},
                )


class LifecycleScheduler:
    """Runs attached policies on the platform's daily cadence."""

    def __init__(
        self,
        warehouse: Warehouse,
        registry: PolicyRegistry | None = None,
        evaluator: PolicyEvaluator | None = None,
        activation_delay: timedelta | None = None,
        evaluation_interval: timedelta | None = None,
    ):
        self.warehouse = warehouse
        self.registry = registry or PolicyRegistry(warehouse)
        self.evaluator = evaluator or PolicyEvaluator(warehouse, self.registry)
        self.activation_delay = activation_delay if activation_delay is not None else timedelta(
            hours=config.lifecycle.activation_delay_hours
        )
        self.evaluation_interval = evaluation_interval or timedelta(
            hours=config.lifecycle.evaluation_interval_hours
        )

    def next_run_at(self, binding: PolicyBinding) -> datetime:
        if binding.last_run_at is None:
            return binding.attached_at + self.activation_delay
        return binding.last_run_at + self.evaluation_interval

    def is_due(self, binding: PolicyBinding, now: datetime) -> bool:
        return ensure_utc(now) >= self.next_run_at(binding)

    def run_pending(self, now: datetime | None = None) -> list[PolicyExecution]:
        """Evaluate every binding that is due.

        Returns:
            Executions recorded by this tick
        """
        now = ensure_utc(now)
        executions = []
        for binding in self.registry.bindings():
            if not self.is_due(binding, now):
                logger.debug(
                    "Policy not due",
                    table=binding.table_name,
                    policy=binding.policy_name,
                    next_run_at=self.next_run_at(binding).isoformat(),
                )
                continue
            execution = self.evaluator.evaluate(binding.table_name, now=now)
            if execution is not None:
                executions.append(execution)
        return executions

    def serve(
        self,
        poll_interval_seconds: float = 300.0,
        stop_event: threading.Event | None = None,
        max_ticks: int | None = None,
    ) -> int:
        """Poll for due policies until stopped.

        Args:
            poll_interval_seconds: Seconds between ticks
            stop_event: Set to stop the loop
            max_ticks: Stop after this many ticks

        Returns:
            Number of executions performed
        """
        stop_event = stop_event or threading.Event()
        ticks = executed = 0

        logger.info("Lifecycle scheduler started", poll_interval_seconds=poll_interval_seconds)
        while not stop_event.is_set():
            executed += len(self.run_pending())
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break
            stop_event.wait(poll_interval_seconds)

        logger.info("Lifecycle scheduler stopped", ticks=ticks, executions=executed)
        return executed
