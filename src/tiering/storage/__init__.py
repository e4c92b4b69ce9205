"""Storage layer: table definitions and the DuckDB warehouse.

Components:
- schema: column and table definitions, including the transactions table
- warehouse: HOT tables, the archive store and partition bookkeeping
- sample_data: deterministic transaction rows for demos and tests
"""

from . import sample_data, schema, warehouse

__all__ = ["sample_data", "schema", "warehouse"]
