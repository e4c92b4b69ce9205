"""Archive retrieval: CREATE TABLE ... FROM ARCHIVE OF.

Usage:
    from tiering.retrieval import ArchiveRetriever, RetrievalRequest, Session

    retriever = ArchiveRetriever(warehouse)
    request = RetrievalRequest.from_sql("transactions", "restored", "transaction_date < '2023-04-01'")
    plan = retriever.explain(request)
"""

from tiering.retrieval.filters import ArchiveFilter, Condition, parse_filter
from tiering.retrieval.retriever import (
    ArchiveRetriever,
    RetrievalPlan,
    RetrievalRequest,
    RetrievalResult,
    RetrievalTask,
)
from tiering.retrieval.session import Session

__all__ = [
    "ArchiveFilter",
    "ArchiveRetriever",
    "Condition",
    "RetrievalPlan",
    "RetrievalRequest",
    "RetrievalResult",
    "RetrievalTask",
    "Session",
    "parse_filter",
]
