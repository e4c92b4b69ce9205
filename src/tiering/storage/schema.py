"""Table definitions and DuckDB DDL generation.

The warehouse partitions every managed table by calendar month of one DATE
column. Lifecycle policies and archive retrieval work at that granularity.
"""

from dataclasses import dataclass, field
from typing import Optional

from tiering.lifecycle.policy import normalize_identifier


@dataclass(frozen=True)
class ColumnDefinition:
    """A typed column with optional constraints."""

    name: str
    data_type: str
    nullable: bool = True
    default: Optional[str] = None  # SQL expression
    primary_key: bool = False
    autoincrement: bool = False
    comment: Optional[str] = None

    def ddl(self, table_name: str) -> str:
        parts = [f'"{self.name}"', self.data_type]
        if self.primary_key:
            parts.append("PRIMARY KEY")
        if self.autoincrement:
            parts.append(f"DEFAULT nextval('{sequence_name(table_name, self.name)}')")
        elif self.default is not None:
            parts.append(f"DEFAULT {self.default}")
        if not self.nullable and not self.primary_key:
            parts.append("NOT NULL")
        return " ".join(parts)


@dataclass(frozen=True)
class TableDefinition:
    """A managed table: its columns plus the DATE column partitions are cut on."""

    name: str
    columns: tuple[ColumnDefinition, ...]
    partition_column: str
    comment: Optional[str] = None
    column_names: tuple[str, ...] = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, "name", normalize_identifier(self.name))
        names = tuple(column.name for column in self.columns)
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate column names in table {self.name}")
        if self.partition_column not in names:
            raise ValueError(
                f"Partition column {self.partition_column!r} is not a column of {self.name}"
            )
        partition = next(c for c in self.columns if c.name == self.partition_column)
        if partition.data_type.upper() != "DATE":
            raise ValueError(f"Partition column {self.partition_column!r} must be DATE")
        object.__setattr__(self, "column_names", names)

    def sequences(self) -> list[str]:
        return [sequence_name(self.name, c.name) for c in self.columns if c.autoincrement]

    def create_statement(self, schema: str = "main") -> str:
        body = ",\n    ".join(column.ddl(self.name) for column in self.columns)
        return f'CREATE TABLE {schema}."{self.name}" (\n    {body}\n)'


def sequence_name(table_name: str, column_name: str) -> str:
    return f"{table_name}_{column_name}_seq"


TRANSACTIONS_TABLE = TableDefinition(
    name="transactions",
    partition_column="transaction_date",
    comment="Customer account transactions",
    columns=(
        ColumnDefinition("transaction_id", "BIGINT", primary_key=True, autoincrement=True),
        ColumnDefinition("customer_id", "BIGINT", nullable=False),
        ColumnDefinition("account_id", "BIGINT"),
        ColumnDefinition("transaction_quarter", "VARCHAR(7)", comment="YYYY-Q# (e.g. '2024-Q3')"),
        ColumnDefinition("transaction_date", "DATE", nullable=False),
        ColumnDefinition("transaction_description", "VARCHAR(500)"),
        ColumnDefinition("transaction_amount", "DECIMAL(18,2)", nullable=False),
        ColumnDefinition("transaction_type", "VARCHAR(50)", comment="DEBIT, CREDIT, TRANSFER"),
        ColumnDefinition("currency_code", "VARCHAR(3)", default="'USD'"),
        ColumnDefinition("created_timestamp", "TIMESTAMPTZ", default="current_timestamp"),
        ColumnDefinition("modified_timestamp", "TIMESTAMPTZ", default="current_timestamp"),
    ),
)
