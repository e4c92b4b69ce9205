"""Storage lifecycle policy catalog and table bindings.

Policies are stored in ``meta.policies``. The table -> policy binding lives
in ``meta.policy_bindings``: one row per table at most. The binding changes
only through attach() and detach(). Attaching a policy to a table that
already has one replaces the old binding.

Usage:
    registry = PolicyRegistry(warehouse)
    registry.create_policy(transaction_retention_policy(), or_replace=True)
    registry.attach("transactions", "transaction_retention_policy")

    registry.describe_policy("transaction_retention_policy")
    registry.show_parameters("transactions")
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from tiering.common.config import config
from tiering.common.exceptions import (
    FeatureNotAvailableError,
    InvalidPolicyBindingError,
    PolicyAlreadyExistsError,
    PolicyInUseError,
    PolicyNotFoundError,
)
from tiering.common.logging import get_logger
from tiering.lifecycle.policy import ArchiveTier, StorageLifecyclePolicy, normalize_identifier
from tiering.storage.warehouse import Warehouse, ensure_utc, from_db_time, to_db_time

logger = get_logger(__name__, component="lifecycle")

POLICY_PARAMETER = "STORAGE_LIFECYCLE_POLICY"
SUPPORTED_PROVIDERS = frozenset({"aws"})


@dataclass(frozen=True)
class PolicyBinding:
    """A policy attached to a table."""

    table_name: str
    policy_name: str
    attached_at: datetime
    last_run_at: Optional[datetime] = None


@dataclass(frozen=True)
class PolicyDescription:
    """Output of DESCRIBE STORAGE LIFECYCLE POLICY."""

    name: str
    signature: str
    return_type: str
    body: str
    archive_tier: ArchiveTier
    archive_for_days: int
    comment: str
    created_on: datetime
    attached_to: Optional[str]


@dataclass(frozen=True)
class TableParameter:
    """Output row of SHOW PARAMETERS ... IN TABLE."""

    key: str
    value: str
    default: str
    level: str
    description: str


class PolicyRegistry:
    """Catalog of storage lifecycle policies and their table bindings."""

    def __init__(self, warehouse: Warehouse, cloud_provider: str | None = None):
        self.warehouse = warehouse
        self.cloud_provider = cloud_provider or config.warehouse.cloud_provider

    # ------------------------------------------------------------------
    # Policies
    # ------------------------------------------------------------------

    def create_policy(
        self,
        policy: StorageLifecyclePolicy,
        or_replace: bool = False,
        now: datetime | None = None,
    ) -> StorageLifecyclePolicy:
        """Register a policy.

        Replacing a policy keeps its table binding. Partitions archived under
        the old definition keep their expiry time.

        Raises:
            FeatureNotAvailableError: If the cloud provider does not offer archival
            PolicyAlreadyExistsError: If the name is taken and or_replace is False
        """
        if self.cloud_provider not in SUPPORTED_PROVIDERS:
            raise FeatureNotAvailableError(
                f"Storage lifecycle policies with archival are not available on "
                f"{self.cloud_provider} accounts"
            )

        created = policy.model_copy(update={"created_on": ensure_utc(now)})
        with self.warehouse.transaction() as conn:
            if self._exists(policy.name):
                if not or_replace:
                    raise PolicyAlreadyExistsError(policy.name)
                conn.execute("DELETE FROM meta.policies WHERE policy_name = ?", [policy.name])

            conn.execute(
                "INSERT INTO meta.policies VALUES (?, ?, ?, ?, ?, ?, ?)",
                [
                    created.name,
                    created.column,
                    created.quarters_back,
                    created.archive_tier.value,
                    created.archive_for_days,
                    created.comment,
                    to_db_time(created.created_on),
                ],
            )

        logger.info(
            "Storage lifecycle policy created",
            policy=created.name,
            archive_tier=created.archive_tier.value,
            archive_for_days=created.archive_for_days,
            replaced=or_replace,
        )
        return created

    def _exists(self, name: str) -> bool:
        row = self.warehouse.fetch_one(
            "SELECT 1 AS found FROM meta.policies WHERE policy_name = ?", [name]
        )
        return row is not None

    def get_policy(self, name: str) -> StorageLifecyclePolicy:
        """Look up a policy by name.

        Raises:
            PolicyNotFoundError: If no such policy exists
        """
        policy_name = normalize_identifier(name)
        row = self.warehouse.fetch_one(
            "SELECT * FROM meta.policies WHERE policy_name = ?", [policy_name]
        )
        if row is None:
            raise PolicyNotFoundError(policy_name)
        return self._from_row(row)

    @staticmethod
    def _from_row(row: dict) -> StorageLifecyclePolicy:
        # Stored policies were validated when created; floors may have changed since
        return StorageLifecyclePolicy.model_construct(
            name=row["policy_name"],
            column=row["column_name"],
            quarters_back=row["quarters_back"],
            archive_tier=ArchiveTier(row["archive_tier"]),
            archive_for_days=row["archive_for_days"],
            comment=row["comment"] or "",
            created_on=from_db_time(row["created_on"]),
        )

    def list_policies(self) -> list[StorageLifecyclePolicy]:
        """SHOW STORAGE LIFECYCLE POLICIES."""
        rows = self.warehouse.fetch_all("SELECT * FROM meta.policies ORDER BY policy_name")
        return [self._from_row(row) for row in rows]

    def describe_policy(self, name: str) -> PolicyDescription:
        """DESCRIBE STORAGE LIFECYCLE POLICY."""
        policy = self.get_policy(name)
        attached = self.tables_for_policy(policy.name)
        predicate = policy.predicate
        return PolicyDescription(
            name=policy.name,
            signature=f"({predicate.column} DATE)",
            return_type="BOOLEAN",
            body=predicate.expression(),
            archive_tier=policy.archive_tier,
            archive_for_days=policy.archive_for_days,
            comment=policy.comment,
            created_on=policy.created_on,
            attached_to=attached[0] if attached else None,
        )

    def drop_policy(self, name: str, if_exists: bool = False) -> bool:
        """Drop a policy.

        Returns:
            True if dropped, False if it did not exist (if_exists only)

        Raises:
            PolicyNotFoundError: If the policy does not exist and if_exists is False
            PolicyInUseError: If the policy is still attached to a table
        """
        policy_name = normalize_identifier(name)
        with self.warehouse.transaction() as conn:
            if not self._exists(policy_name):
                if if_exists:
                    return False
                raise PolicyNotFoundError(policy_name)

            attached = self.tables_for_policy(policy_name)
            if attached:
                raise PolicyInUseError(policy_name, attached[0])

            conn.execute("DELETE FROM meta.policies WHERE policy_name = ?", [policy_name])

        logger.info("Storage lifecycle policy dropped", policy=policy_name)
        return True

    # ------------------------------------------------------------------
    # Bindings
    # ------------------------------------------------------------------

    def attach(self, table_name: str, policy_name: str, now: datetime | None = None) -> PolicyBinding:
        """ALTER TABLE ... SET STORAGE_LIFECYCLE_POLICY.

        Replaces any policy already attached to the table. The activation
        delay restarts from the new attachment time. A policy governs one
        table at a time.

        Raises:
            PolicyInUseError: If the policy is attached to a different table
            TableNotFoundError: If the table does not exist
            PolicyNotFoundError: If the policy does not exist
            InvalidPolicyBindingError: If the table lacks the policy's DATE column
        """
        table = self.warehouse.get_table(table_name)
        policy = self.get_policy(policy_name)

        column_type = self.warehouse.columns(table.name).get(policy.column)
        if column_type is None:
            raise InvalidPolicyBindingError(
                f"Table '{table.name}' has no column '{policy.column}' required by policy '{policy.name}'"
            )
        if column_type.upper() != "DATE":
            raise InvalidPolicyBindingError(
                f"Column '{policy.column}' of '{table.name}' is {column_type}, policy '{policy.name}' expects DATE"
            )

        attached_at = ensure_utc(now)
        with self.warehouse.transaction() as conn:
            previous = self.binding_for(table.name)
            others = [t for t in self.tables_for_policy(policy.name) if t != table.name]
            if others:
                raise PolicyInUseError(policy.name, others[0])
            conn.execute("DELETE FROM meta.policy_bindings WHERE table_name = ?", [table.name])
            conn.execute(
                "INSERT INTO meta.policy_bindings VALUES (?, ?, ?, NULL)",
                [table.name, policy.name, to_db_time(attached_at)],
            )

        logger.info(
            "Storage lifecycle policy attached",
            table=table.name,
            policy=policy.name,
            replaced_policy=previous.policy_name if previous else None,
        )
        return PolicyBinding(table.name, policy.name, attached_at)

    def detach(self, table_name: str) -> bool:
        """ALTER TABLE ... UNSET STORAGE_LIFECYCLE_POLICY.

        Returns:
            True if a policy was detached
        """
        table = self.warehouse.get_table(table_name)
        with self.warehouse.transaction() as conn:
            previous = self.binding_for(table.name)
            if previous is None:
                return False
            conn.execute("DELETE FROM meta.policy_bindings WHERE table_name = ?", [table.name])

        logger.info("Storage lifecycle policy detached", table=table.name, policy=previous.policy_name)
        return True

    def binding_for(self, table_name: str) -> Optional[PolicyBinding]:
        row = self.warehouse.fetch_one(
            "SELECT * FROM meta.policy_bindings WHERE table_name = ?",
            [normalize_identifier(table_name)],
        )
        if row is None:
            return None
        return PolicyBinding(
            table_name=row["table_name"],
            policy_name=row["policy_name"],
            attached_at=from_db_time(row["attached_at"]),
            last_run_at=from_db_time(row["last_run_at"]),
        )

    def bindings(self) -> list[PolicyBinding]:
        rows = self.warehouse.fetch_all("SELECT table_name FROM meta.policy_bindings ORDER BY table_name")
        return [self.binding_for(row["table_name"]) for row in rows]

    def tables_for_policy(self, policy_name: str) -> list[str]:
        rows = self.warehouse.fetch_all(
            "SELECT table_name FROM meta.policy_bindings WHERE policy_name = ? ORDER BY table_name",
            [normalize_identifier(policy_name)],
        )
        return [row["table_name"] for row in rows]

    def mark_run(self, table_name: str, run_at: datetime) -> None:
        self.warehouse.execute(
            "UPDATE meta.policy_bindings SET last_run_at = ? WHERE table_name = ?",
            [to_db_time(run_at), normalize_identifier(table_name)],
        )

    def show_parameters(self, table_name: str) -> TableParameter:
        """SHOW PARAMETERS LIKE 'STORAGE_LIFECYCLE_POLICY' IN TABLE."""
        table = self.warehouse.get_table(table_name)
        binding = self.binding_for(table.name)
        return TableParameter(
            key=POLICY_PARAMETER,
            value=binding.policy_name if binding else "",
            default="",
            level="TABLE" if binding else "",
            description="Storage lifecycle policy attached to the table",
        )
