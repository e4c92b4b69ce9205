"""Account usage history for policy executions and archive retrievals."""

from tiering.audit.history import (
    AuditLog,
    ExecutionStatus,
    PolicyExecution,
    RetrievalStatus,
    RetrievalUsage,
)

__all__ = ["AuditLog", "ExecutionStatus", "PolicyExecution", "RetrievalStatus", "RetrievalUsage"]
