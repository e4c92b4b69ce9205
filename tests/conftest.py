"""
Global pytest configuration and fixtures for the tiering test suite.

Every fixture works against an in-memory DuckDB warehouse, so tests need
no external services and never share state.

Reference clock: EVAL_TIME is 2025-11-05, which puts the archive cutoff of
the default policy (one quarter back) at 2025-07-01. Seeded transactions
run from 2023-01-01 to 2025-10-31 with one row per day.
"""

from collections.abc import Generator, Callable
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import pytest

from tiering.audit.history import AuditLog
from tiering.lifecycle.evaluator import LifecycleScheduler, PolicyEvaluator
from tiering.lifecycle.policy import transaction_retention_policy
from tiering.lifecycle.registry import PolicyRegistry
from tiering.storage.sample_data import generate_transactions
from tiering.storage.schema import TRANSACTIONS_TABLE
from tiering.storage.warehouse import Warehouse

EVAL_TIME = datetime(2025, 11, 5, 12, 0, tzinfo=timezone.utc)
ATTACH_TIME = EVAL_TIME - timedelta(days=2)
SEED_START = date(2023, 1, 1)
SEED_END = date(2025, 10, 31)


@pytest.fixture
def warehouse() -> Generator[Warehouse, None, None]:
    """Empty in-memory warehouse."""
    wh = Warehouse(database_path=":memory:", rows_per_file=10, estimated_row_bytes=100)
    yield wh
    wh.close()


@pytest.fixture
def make_row() -> Callable[..., dict[str, Any]]:
    """Build a minimal transactions row for a date."""

    def _make_row(transaction_date: date, customer_id: int = 1, amount: str = "10.00") -> dict[str, Any]:
        return {
            "customer_id": customer_id,
            "transaction_date": transaction_date,
            "transaction_amount": Decimal(amount),
            "transaction_type": "CREDIT",
        }

    return _make_row


@pytest.fixture
def transactions(warehouse: Warehouse) -> Warehouse:
    """Warehouse with a seeded transactions table."""
    warehouse.create_table(TRANSACTIONS_TABLE, now=ATTACH_TIME)
    warehouse.insert_rows(
        "transactions", generate_transactions(SEED_START, SEED_END, rows_per_day=1)
    )
    warehouse.refresh_partitions("transactions", now=ATTACH_TIME)
    return warehouse


@pytest.fixture
def registry(warehouse: Warehouse) -> PolicyRegistry:
    return PolicyRegistry(warehouse, cloud_provider="aws")


@pytest.fixture
def audit(warehouse: Warehouse) -> AuditLog:
    return AuditLog(warehouse)


@pytest.fixture
def evaluator(warehouse: Warehouse, registry: PolicyRegistry, audit: AuditLog) -> PolicyEvaluator:
    return PolicyEvaluator(warehouse, registry, audit)


@pytest.fixture
def scheduler(warehouse: Warehouse, registry: PolicyRegistry, evaluator: PolicyEvaluator) -> LifecycleScheduler:
    return LifecycleScheduler(
        warehouse,
        registry,
        evaluator,
        activation_delay=timedelta(hours=24),
        evaluation_interval=timedelta(hours=24),
    )


@pytest.fixture
def archived(transactions: Warehouse, registry: PolicyRegistry, evaluator: PolicyEvaluator) -> Warehouse:
    """Transactions with the retention policy attached and evaluated once at EVAL_TIME.

    Partitions 2023-01 .. 2025-06 are archived to COOL; 2025-07 .. 2025-10 stay HOT.
    """
    registry.create_policy(transaction_retention_policy(), now=ATTACH_TIME)
    registry.attach("transactions", "transaction_retention_policy", now=ATTACH_TIME)
    evaluator.evaluate("transactions", now=EVAL_TIME)
    return transactions
