"""
Unit tests for the tiering CLI.

Runs the commands against a DuckDB file in a temporary directory, the way
an operator would drive the lifecycle from a shell.
"""

import json

import pytest
from typer.testing import CliRunner

from tiering.cli import app
from tiering.common.config import config

runner = CliRunner()

Q1_2023 = "transaction_date BETWEEN '2023-01-01' AND '2023-03-31'"


@pytest.fixture
def invoke(tmp_path):
    database = str(tmp_path / "tiering.duckdb")

    def _invoke(*args: str):
        return runner.invoke(app, ["--database", database, *args])

    return _invoke


@pytest.fixture
def seeded(invoke):
    assert invoke("table", "create").exit_code == 0
    result = invoke(
        "table", "seed", "--start", "2023-01-01", "--end", "2025-10-31", "--rows-per-day", "1"
    )
    assert result.exit_code == 0, result.output
    return invoke


@pytest.fixture
def archived(seeded):
    assert seeded(
        "policy", "create", "transaction_retention_policy",
        "--column", "transaction_date", "--days", "1095",
    ).exit_code == 0
    assert seeded("policy", "attach", "transactions", "transaction_retention_policy").exit_code == 0
    # Far enough ahead to be past the activation delay
    result = seeded("scheduler", "tick", "--now", "2100-01-01", "--output", "json")
    assert result.exit_code == 0, result.output
    return seeded


class TestTableCommands:
    """Test suite for `tiering table`."""

    def test_create_and_seed(self, seeded):
        result = seeded("table", "show", "transactions", "--output", "json")

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["hot_rows"] == 1035
        assert data["archived_rows"] == 0
        assert len(data["partitions"]) == 34

    def test_create_twice_fails(self, seeded):
        result = seeded("table", "create")

        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_drop(self, seeded):
        assert seeded("table", "drop", "transactions").exit_code == 0
        assert seeded("table", "show", "transactions").exit_code == 1
        assert seeded("table", "drop", "transactions", "--if-exists").exit_code == 0


class TestPolicyCommands:
    """Test suite for `tiering policy`."""

    def test_retention_floor_enforced(self, seeded):
        result = seeded("policy", "create", "p", "--column", "transaction_date", "--days", "89")

        assert result.exit_code == 1
        assert "Error" in result.output

    def test_describe(self, archived):
        result = archived("policy", "describe", "transaction_retention_policy", "--output", "json")

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["archive_tier"] == "COOL"
        assert data["archive_for_days"] == 1095
        assert data["attached_to"] == "transactions"

    def test_parameters(self, archived):
        result = archived("policy", "parameters", "transactions", "--output", "json")
        assert json.loads(result.output)["value"] == "transaction_retention_policy"

    def test_drop_attached_policy_fails(self, archived):
        result = archived("policy", "drop", "transaction_retention_policy")

        assert result.exit_code == 1
        assert archived("policy", "detach", "transactions").exit_code == 0
        assert archived("policy", "drop", "transaction_retention_policy").exit_code == 0

    def test_list(self, archived):
        result = archived("policy", "list", "--output", "json")
        [policy] = json.loads(result.output)

        assert policy["name"] == "transaction_retention_policy"
        assert policy["attached_to"] == ["transactions"]


class TestSchedulerCommands:
    """Test suite for `tiering scheduler`."""

    def test_tick_archives_everything_old(self, archived):
        result = archived("table", "show", "transactions", "--output", "json")
        data = json.loads(result.output)

        assert data["hot_rows"] == 0
        assert data["archived_rows"] == 1035

    def test_tick_not_due(self, archived):
        result = archived("scheduler", "tick", "--now", "2100-01-01 06:00:00", "--output", "json")

        assert result.exit_code == 0
        assert json.loads(result.output) == []

    def test_bad_datetime(self, archived):
        assert archived("scheduler", "tick", "--now", "tomorrow").exit_code != 0


class TestArchiveCommands:
    """Test suite for `tiering archive`."""

    def test_explain(self, archived):
        result = archived("archive", "explain", "transactions", "restored", "--where", Q1_2023, "-o", "json")

        assert result.exit_code == 0
        plan = json.loads(result.output)
        assert plan["assigned_partitions"] == 3
        assert plan["total_partitions"] == 34
        assert plan["operation"] == "createTableFromArchiveData"

    def test_explain_requires_where(self, archived):
        result = archived("archive", "explain", "transactions", "restored")

        assert result.exit_code == 1
        assert "WHERE" in result.output

    def test_restore_and_history(self, archived):
        result = archived("archive", "restore", "transactions", "restored", "--where", Q1_2023)
        assert result.exit_code == 0, result.output

        show = json.loads(archived("table", "show", "restored", "--output", "json").output)
        assert show["hot_rows"] == 90

        history = json.loads(archived("history", "retrievals", "--output", "json").output)
        assert history[0]["status"] == "SUCCEEDED"
        assert history[0]["target_table_name"] == "restored"

    def test_execution_history(self, archived):
        result = archived("history", "executions", "--table", "transactions", "--output", "json")
        [execution] = json.loads(result.output)

        assert execution["status"] == "SUCCEEDED"
        assert execution["partitions_archived"] == 34


class TestRestoreDetach:
    """Test suite for `tiering archive restore --wait`."""

    @pytest.fixture
    def cold_archived(self, seeded, monkeypatch):
        """Transactions in the COLD tier, where a restore takes one second."""
        monkeypatch.setattr(config.retrieval, "latency_scale", 1.0)
        monkeypatch.setattr(config.retrieval, "cold_max_restore_seconds", 1)
        assert seeded(
            "policy", "create", "cold_policy",
            "--column", "transaction_date", "--tier", "COLD", "--days", "365",
        ).exit_code == 0
        assert seeded("policy", "attach", "transactions", "cold_policy").exit_code == 0
        assert seeded("scheduler", "tick", "--now", "2100-01-01").exit_code == 0
        return seeded

    def test_detached_restore_keeps_running(self, cold_archived):
        """Test --no-abort-detached finishes the restore after the caller gives up."""
        result = cold_archived(
            "archive", "restore", "transactions", "restored", "--where", Q1_2023,
            "--statement-timeout", "172800", "--no-abort-detached", "--wait", "0.05",
        )

        assert result.exit_code == 0, result.output
        assert "Detached" in result.output
        show = json.loads(cold_archived("table", "show", "restored", "--output", "json").output)
        assert show["hot_rows"] == 90
        history = json.loads(cold_archived("history", "retrievals", "--output", "json").output)
        assert history[0]["status"] == "SUCCEEDED"

    def test_detached_restore_aborted_by_default(self, cold_archived):
        """Test the default session cancels the restore when the caller gives up."""
        result = cold_archived(
            "archive", "restore", "transactions", "restored", "--where", Q1_2023,
            "--statement-timeout", "172800", "--wait", "0.05",
        )

        assert result.exit_code == 1
        assert "aborted" in result.output
        assert cold_archived("table", "show", "restored").exit_code == 1
        history = json.loads(cold_archived("history", "retrievals", "--output", "json").output)
        assert history[0]["status"] == "CANCELLED"
