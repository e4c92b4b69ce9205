"""Exception taxonomy for the tiering platform.

Synchronous operations raise these directly. Failures inside scheduled
policy executions are never raised; they are written to the execution
history instead.
"""


class TieringError(Exception):
    """Base class for all platform errors."""

    pass


class TableNotFoundError(TieringError):
    """Raised when a table does not exist."""

    def __init__(self, table_name: str):
        self.table_name = table_name
        super().__init__(f"Table '{table_name}' does not exist")


class TableAlreadyExistsError(TieringError):
    """Raised when creating a table that already exists."""

    def __init__(self, table_name: str):
        self.table_name = table_name
        super().__init__(f"Table '{table_name}' already exists")


class PolicyNotFoundError(TieringError):
    """Raised when a storage lifecycle policy does not exist."""

    def __init__(self, policy_name: str):
        self.policy_name = policy_name
        super().__init__(f"Storage lifecycle policy '{policy_name}' does not exist")


class PolicyAlreadyExistsError(TieringError):
    """Raised when creating a policy whose name is taken."""

    def __init__(self, policy_name: str):
        self.policy_name = policy_name
        super().__init__(f"Storage lifecycle policy '{policy_name}' already exists")


class PolicyInUseError(TieringError):
    """Raised when a policy attached to a table is dropped or attached elsewhere."""

    def __init__(self, policy_name: str, table_name: str):
        self.policy_name = policy_name
        self.table_name = table_name
        super().__init__(
            f"Storage lifecycle policy '{policy_name}' is attached to table '{table_name}'"
        )


class InvalidPolicyBindingError(TieringError):
    """Raised when a policy's signature does not fit the table it is attached to."""

    pass


class InvalidTransitionError(TieringError):
    """Raised when a partition state change is not allowed."""

    pass


class FeatureNotAvailableError(TieringError):
    """Raised when a feature is not offered for the account's cloud provider."""

    pass


class ArchiveFilterRequiredError(TieringError):
    """Raised when an archive retrieval has no filter predicate."""

    def __init__(self):
        super().__init__("A WHERE clause is required when creating a table from archive")


class FilterSyntaxError(TieringError):
    """Raised when an archive filter cannot be parsed or bound."""

    pass


class RetrievalLimitExceededError(TieringError):
    """Raised when a retrieval would restore more files than the tier allows."""

    def __init__(self, tier: str, files: int, limit: int):
        self.tier = tier
        self.files = files
        self.limit = limit
        super().__init__(
            f"Retrieval from {tier} would restore {files:,} files; the limit is {limit:,}"
        )


class StatementTimeoutError(TieringError):
    """Raised when a statement runs longer than the session timeout."""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Statement reached its statement timeout of {timeout_seconds:g} seconds and was canceled"
        )
