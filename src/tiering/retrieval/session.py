"""Session parameters that govern long-running statements.

Restores from the COLD tier can take up to 48 hours. Before issuing one,
raise the statement timeout and stop the platform from aborting the query
when the client disconnects:

    session = Session().alter(statement_timeout_in_seconds=172800, abort_detached_query=False)
"""

from pydantic import BaseModel, ConfigDict, Field

from tiering.common.config import config


class Session(BaseModel):
    """Immutable set of session parameters (ALTER SESSION returns a new one)."""

    model_config = ConfigDict(frozen=True)

    statement_timeout_in_seconds: int = Field(
        default_factory=lambda: config.session.statement_timeout_in_seconds,
        ge=0,
        description="Cancel statements running longer than this (0 = no limit)",
    )
    abort_detached_query: bool = Field(
        default_factory=lambda: config.session.abort_detached_query,
        description="Cancel a running statement when its client goes away",
    )

    def alter(self, **parameters) -> "Session":
        """ALTER SESSION SET ... for the given parameters."""
        unknown = set(parameters) - set(type(self).model_fields)
        if unknown:
            raise ValueError(f"Unknown session parameter(s): {sorted(unknown)}")
        return type(self).model_validate({**self.model_dump(), **parameters})

    @property
    def statement_timeout(self) -> float | None:
        """Timeout in seconds, or None when unlimited."""
        return float(self.statement_timeout_in_seconds) or None

    def long_retrieval_issues(self, max_restore_seconds: int) -> list[str]:
        """Settings that would break a retrieval taking up to max_restore_seconds."""
        issues = []
        timeout = self.statement_timeout
        if timeout is not None and timeout < max_restore_seconds:
            issues.append(
                f"STATEMENT_TIMEOUT_IN_SECONDS={self.statement_timeout_in_seconds} "
                f"is below the worst-case restore time of {max_restore_seconds} seconds"
            )
        if self.abort_detached_query and max_restore_seconds > 0:
            issues.append("ABORT_DETACHED_QUERY=TRUE cancels the restore if the client disconnects")
        return issues
