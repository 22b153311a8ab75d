"""Value types passed between the resolver, the executor and the service."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from outlink.exceptions import MigrationPartialFailure

# Array fields on a profile that name other profiles' keys
RELATIONSHIP_FIELDS = ("friends", "blocked")
# Pending friend requests, by sender and recipient key
REQUEST_FIELDS = ("incomingRequests", "outgoingRequests")
REFERENCE_FIELDS = RELATIONSHIP_FIELDS + REQUEST_FIELDS


@dataclass(frozen=True)
class Principal:
    """An authenticated identity-provider account."""

    auth_id: str
    email: str | None = None
    display_name: str | None = None
    photo_url: str | None = None


@dataclass(frozen=True)
class ResolutionPlan:
    """
    Where an account's profile should live and how to get it there.

    Computed from read snapshots only; nothing has been written yet.
    """

    auth_id: str
    target_key: str
    previous_key: str | None
    source_keys_to_delete: tuple[str, ...]
    merged_data: dict[str, Any]
    current_data: dict[str, Any] = field(default_factory=dict)
    created: bool = False
    username_changed: bool = False

    @property
    def stale_keys(self) -> tuple[str, ...]:
        """Keys whose back-references must be rewritten to ``target_key``."""
        keys: list[str] = []
        for key in (self.previous_key, *self.source_keys_to_delete):
            if key and key != self.target_key and key not in keys:
                keys.append(key)
        return tuple(keys)

    @property
    def requires_migration(self) -> bool:
        return bool(self.stale_keys)


@dataclass
class MigrationReport:
    target_key: str
    written: bool = False
    references_rewritten: int = 0
    deleted_keys: list[str] = field(default_factory=list)
    failure: MigrationPartialFailure | None = None

    @property
    def partial(self) -> bool:
        return self.failure is not None


@dataclass
class UpsertResult:
    profile: dict[str, Any]
    plan: ResolutionPlan
    written: bool
    report: MigrationReport | None = None

    @property
    def username_key(self) -> str:
        return self.plan.target_key

    @property
    def warnings(self) -> list[str]:
        if self.report and self.report.failure:
            return [self.report.failure.message]
        return []
