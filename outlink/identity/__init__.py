"""Username identity resolution and profile reconciliation."""

from outlink.identity.migration import MigrationExecutor
from outlink.identity.resolver import IdentityResolver
from outlink.identity.service import ProfileService
from outlink.identity.types import MigrationReport, Principal, ResolutionPlan, UpsertResult

__all__ = [
    "IdentityResolver",
    "MigrationExecutor",
    "MigrationReport",
    "Principal",
    "ProfileService",
    "ResolutionPlan",
    "UpsertResult",
]
