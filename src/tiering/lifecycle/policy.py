"""Storage lifecycle policy value object.

A policy bundles an aging predicate with the archive tier and retention it
triggers. Policies are immutable and validated when they are built, so an
out-of-range ARCHIVE_FOR_DAYS can never reach the registry.

Usage:
    policy = StorageLifecyclePolicy(
        name="transaction_retention_policy",
        column="transaction_date",
        archive_tier=ArchiveTier.COOL,
        archive_for_days=1095,
        comment="Archives transactions older than 2 quarters to COOL storage for 3 years",
    )
"""

import re
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tiering.common.config import config
from tiering.lifecycle.aging import AgingPredicate

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_$]*$")


class ArchiveTier(str, Enum):
    """Archive storage class a policy moves data into."""

    COOL = "COOL"
    COLD = "COLD"

    @property
    def min_archive_days(self) -> int:
        """Platform floor for ARCHIVE_FOR_DAYS."""
        if self is ArchiveTier.COLD:
            return config.lifecycle.cold_min_archive_days
        return config.lifecycle.cool_min_archive_days

    @property
    def max_restore_seconds(self) -> int:
        """Worst-case time to restore data from this tier."""
        if self is ArchiveTier.COLD:
            return config.retrieval.cold_max_restore_seconds
        return config.retrieval.cool_max_restore_seconds

    @property
    def max_files_per_retrieval(self) -> Optional[int]:
        """Hard ceiling on files restored by one retrieval, if any."""
        if self is ArchiveTier.COLD:
            return config.retrieval.cold_max_files
        return None

    @property
    def rank(self) -> int:
        return 1 if self is ArchiveTier.COLD else 0


def normalize_identifier(value: str) -> str:
    """Unquoted identifiers are case-insensitive; store them lower-cased."""
    normalized = (value or "").strip().lower()
    if not _IDENTIFIER.match(normalized):
        raise ValueError(f"Invalid identifier: {value!r}")
    return normalized


class StorageLifecyclePolicy(BaseModel):
    """Immutable storage lifecycle policy definition."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Policy name (case-insensitive identifier)")
    column: str = Field(description="DATE column the aging predicate reads")
    quarters_back: int = Field(
        default=1, ge=0, description="Archive rows older than this many quarters before the current one",
    )
    archive_tier: ArchiveTier = Field(default=ArchiveTier.COOL, description="Target archive tier")
    archive_for_days: int = Field(ge=1, description="Days data stays archived before expiring")
    comment: str = Field(default="", description="Free-text documentation")
    created_on: Optional[datetime] = Field(default=None, description="Set by the registry")

    @field_validator("name", "column")
    @classmethod
    def validate_identifier(cls, v: str) -> str:
        return normalize_identifier(v)

    @model_validator(mode="after")
    def validate_retention_floor(self) -> "StorageLifecyclePolicy":
        floor = self.archive_tier.min_archive_days
        if self.archive_for_days < floor:
            raise ValueError(
                f"ARCHIVE_FOR_DAYS must be at least {floor} for the "
                f"{self.archive_tier.value} tier, got {self.archive_for_days}"
            )
        return self

    @property
    def predicate(self) -> AgingPredicate:
        return AgingPredicate(self.column, self.quarters_back)


def transaction_retention_policy() -> StorageLifecyclePolicy:
    """Archive transactions older than two quarters to COOL for three years."""
    return StorageLifecyclePolicy(
        name="transaction_retention_policy",
        column="transaction_date",
        quarters_back=1,
        archive_tier=ArchiveTier.COOL,
        archive_for_days=1095,
        comment="Archives transactions older than 2 quarters to COOL storage for 3 years",
    )
