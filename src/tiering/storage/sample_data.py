"""Synthetic transaction rows for demos and tests.

Rows are deterministic for a given seed so EXPLAIN estimates and retrieval
results are reproducible.
"""

import random
from datetime import date, timedelta
from decimal import Decimal
from typing import Any

from tiering.lifecycle.aging import quarter_label

TRANSACTION_TYPES = ("DEBIT", "CREDIT", "TRANSFER")
CURRENCIES = ("USD", "USD", "USD", "EUR", "GBP")
DESCRIPTIONS = {
    "DEBIT": ("Card purchase", "ATM withdrawal", "Direct debit", "Subscription"),
    "CREDIT": ("Salary", "Refund", "Interest", "Cash deposit"),
    "TRANSFER": ("Transfer to savings", "Transfer from checking", "Wire transfer"),
}


def generate_transactions(
    start: date,
    end: date,
    rows_per_day: int = 10,
    customers: int = 50,
    seed: int = 42,
) -> list[dict[str, Any]]:
    """Generate transactions for every day in [start, end].

    Args:
        start: First transaction date
        end: Last transaction date (inclusive)
        rows_per_day: Transactions per calendar day
        customers: Number of distinct customers
        seed: Random seed

    Returns:
        Rows keyed by transactions column name (transaction_id is left to the sequence)
    """
    if end < start:
        raise ValueError(f"end ({end}) is before start ({start})")
    if rows_per_day < 0:
        raise ValueError(f"rows_per_day must be >= 0, got {rows_per_day}")

    rng = random.Random(seed)
    rows = []
    day = start
    while day <= end:
        for _ in range(rows_per_day):
            customer_id = rng.randint(1, customers)
            transaction_type = rng.choice(TRANSACTION_TYPES)
            amount = Decimal(rng.randint(100, 500_000)) / 100
            if transaction_type == "DEBIT":
                amount = -amount
            rows.append(
                {
                    "customer_id": customer_id,
                    "account_id": customer_id * 10 + rng.randint(0, 2),
                    "transaction_quarter": quarter_label(day),
                    "transaction_date": day,
                    "transaction_description": rng.choice(DESCRIPTIONS[transaction_type]),
                    "transaction_amount": amount,
                    "transaction_type": transaction_type,
                    "currency_code": rng.choice(CURRENCIES),
                }
            )
        day += timedelta(days=1)
    return rows
