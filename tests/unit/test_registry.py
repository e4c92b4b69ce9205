"""
Unit tests for the storage lifecycle policy registry.

Tests cover:
- CREATE / DESCRIBE / SHOW / DROP STORAGE LIFECYCLE POLICY
- Attaching and detaching policies
- Provider availability
"""

from dataclasses import replace

import pytest

from tests.conftest import ATTACH_TIME
from tiering.common.exceptions import (
    FeatureNotAvailableError,
    InvalidPolicyBindingError,
    PolicyAlreadyExistsError,
    PolicyInUseError,
    PolicyNotFoundError,
    TableNotFoundError,
)
from tiering.lifecycle.policy import ArchiveTier, StorageLifecyclePolicy, transaction_retention_policy
from tiering.lifecycle.registry import POLICY_PARAMETER, PolicyRegistry
from tiering.storage.schema import TRANSACTIONS_TABLE


@pytest.fixture
def policy(registry):
    return registry.create_policy(transaction_retention_policy(), now=ATTACH_TIME)


@pytest.fixture
def table(warehouse):
    return warehouse.create_table(TRANSACTIONS_TABLE, now=ATTACH_TIME)


class TestPolicies:
    """Test suite for policy catalog operations."""

    def test_create_and_get(self, registry, policy):
        """Test a created policy can be read back."""
        stored = registry.get_policy("TRANSACTION_RETENTION_POLICY")

        assert stored.name == "transaction_retention_policy"
        assert stored.archive_tier is ArchiveTier.COOL
        assert stored.archive_for_days == 1095
        assert stored.created_on == ATTACH_TIME

    def test_duplicate_rejected(self, registry, policy):
        """Test names are unique without or_replace."""
        with pytest.raises(PolicyAlreadyExistsError):
            registry.create_policy(transaction_retention_policy())

    def test_or_replace(self, registry, policy):
        """Test or_replace swaps the definition."""
        replacement = StorageLifecyclePolicy(
            name=policy.name, column="transaction_date", archive_for_days=365
        )
        registry.create_policy(replacement, or_replace=True)

        assert registry.get_policy(policy.name).archive_for_days == 365
        assert len(registry.list_policies()) == 1

    def test_or_replace_keeps_binding(self, registry, policy, table):
        """Test replacing an attached policy keeps it attached."""
        registry.attach("transactions", policy.name, now=ATTACH_TIME)
        registry.create_policy(transaction_retention_policy(), or_replace=True)

        assert registry.binding_for("transactions").policy_name == policy.name

    @pytest.mark.parametrize("provider", ["azure", "gcp"])
    def test_archival_unavailable_outside_aws(self, warehouse, provider):
        """Test policies are refused on providers without archive storage."""
        registry = PolicyRegistry(warehouse, cloud_provider=provider)
        with pytest.raises(FeatureNotAvailableError):
            registry.create_policy(transaction_retention_policy())

    def test_describe(self, registry, policy):
        """Test DESCRIBE output."""
        description = registry.describe_policy(policy.name)

        assert description.signature == "(transaction_date DATE)"
        assert description.return_type == "BOOLEAN"
        assert description.body == (
            "transaction_date < date_trunc(quarter, dateadd(quarter, -1, current_date()))"
        )
        assert description.archive_tier is ArchiveTier.COOL
        assert description.archive_for_days == 1095
        assert description.comment.startswith("Archives transactions older than 2 quarters")
        assert description.attached_to is None

    def test_list_policies_sorted(self, registry):
        """Test SHOW lists policies by name."""
        for name in ("zeta", "alpha"):
            registry.create_policy(
                StorageLifecyclePolicy(name=name, column="transaction_date", archive_for_days=90)
            )

        assert [p.name for p in registry.list_policies()] == ["alpha", "zeta"]

    def test_drop_then_describe_fails(self, registry, policy):
        """Test a dropped policy is gone."""
        assert registry.drop_policy(policy.name) is True
        with pytest.raises(PolicyNotFoundError):
            registry.describe_policy(policy.name)

    def test_drop_missing(self, registry):
        """Test DROP ... IF EXISTS is silent for missing policies."""
        with pytest.raises(PolicyNotFoundError):
            registry.drop_policy("missing")
        assert registry.drop_policy("missing", if_exists=True) is False

    def test_drop_attached_policy_fails(self, registry, policy, table):
        """Test a policy in use cannot be dropped."""
        registry.attach("transactions", policy.name, now=ATTACH_TIME)

        with pytest.raises(PolicyInUseError) as exc_info:
            registry.drop_policy(policy.name)

        assert exc_info.value.table_name == "transactions"
        assert registry.get_policy(policy.name)


class TestBindings:
    """Test suite for ALTER TABLE ... STORAGE_LIFECYCLE_POLICY."""

    def test_attach(self, registry, policy, table):
        """Test attaching records the binding and its time."""
        binding = registry.attach("Transactions", policy.name, now=ATTACH_TIME)

        assert binding.table_name == "transactions"
        assert binding.attached_at == ATTACH_TIME
        assert registry.binding_for("transactions") == binding
        assert registry.describe_policy(policy.name).attached_to == "transactions"

    def test_attach_replaces_previous(self, registry, policy, table):
        """Test at most one policy per table."""
        other = registry.create_policy(
            StorageLifecyclePolicy(name="other", column="transaction_date", archive_for_days=90)
        )
        registry.attach("transactions", policy.name, now=ATTACH_TIME)
        registry.attach("transactions", other.name, now=ATTACH_TIME)

        assert registry.binding_for("transactions").policy_name == "other"
        assert len(registry.bindings()) == 1

    def test_policy_governs_one_table(self, warehouse, registry, policy, table):
        """Test a policy attached to one table cannot be attached to another."""
        warehouse.create_table(replace(TRANSACTIONS_TABLE, name="transactions_eu"), now=ATTACH_TIME)
        registry.attach("transactions", policy.name, now=ATTACH_TIME)

        with pytest.raises(PolicyInUseError) as exc_info:
            registry.attach("transactions_eu", policy.name, now=ATTACH_TIME)

        assert exc_info.value.table_name == "transactions"
        assert registry.tables_for_policy(policy.name) == ["transactions"]
        assert registry.binding_for("transactions_eu") is None

    def test_reattach_same_table_allowed(self, registry, policy, table):
        registry.attach("transactions", policy.name, now=ATTACH_TIME)
        registry.attach("transactions", policy.name, now=ATTACH_TIME)

        assert registry.tables_for_policy(policy.name) == ["transactions"]

    def test_attach_missing_table(self, registry, policy):
        with pytest.raises(TableNotFoundError):
            registry.attach("missing", policy.name)

    def test_attach_missing_policy(self, registry, table):
        with pytest.raises(PolicyNotFoundError):
            registry.attach("transactions", "missing")

    def test_attach_requires_column(self, registry, table):
        """Test the table must have the policy's column."""
        registry.create_policy(
            StorageLifecyclePolicy(name="p", column="posted_date", archive_for_days=90)
        )
        with pytest.raises(InvalidPolicyBindingError, match="no column"):
            registry.attach("transactions", "p")

    def test_attach_requires_date_column(self, registry, table):
        """Test the policy's column must be DATE."""
        registry.create_policy(
            StorageLifecyclePolicy(name="p", column="customer_id", archive_for_days=90)
        )
        with pytest.raises(InvalidPolicyBindingError, match="expects DATE"):
            registry.attach("transactions", "p")

    def test_detach(self, registry, policy, table):
        """Test detaching removes the binding."""
        registry.attach("transactions", policy.name, now=ATTACH_TIME)

        assert registry.detach("transactions") is True
        assert registry.binding_for("transactions") is None
        assert registry.detach("transactions") is False

    def test_show_parameters(self, registry, policy, table):
        """Test SHOW PARAMETERS reflects the binding."""
        unset = registry.show_parameters("transactions")
        assert unset.key == POLICY_PARAMETER
        assert unset.value == ""

        registry.attach("transactions", policy.name, now=ATTACH_TIME)
        parameter = registry.show_parameters("transactions")

        assert parameter.value == policy.name
        assert parameter.level == "TABLE"

    def test_drop_table_removes_binding(self, warehouse, registry, policy, table):
        """Test dropping a table frees its policy."""
        registry.attach("transactions", policy.name, now=ATTACH_TIME)
        warehouse.drop_table("transactions")

        assert registry.bindings() == []
        assert registry.drop_policy(policy.name) is True
