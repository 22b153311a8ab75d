"""
Identity resolution.

Decides which document key an account's profile belongs at, given every
document currently claiming the account's ``authId``. Handles first-time
creation, username changes (limited to one per account) and duplicate
documents left behind by racing writers.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

from outlink.exceptions import UsernameChangeLimitExceeded, UsernameTaken
from outlink.identity.types import REFERENCE_FIELDS, RELATIONSHIP_FIELDS, ResolutionPlan
from outlink.identity.usernames import (
    derive_username_candidates,
    normalize_username,
    validate_username_key,
)
from outlink.store.base import DocumentStore, Snapshot

logger = structlog.get_logger(__name__)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class ResolutionRequest:
    auth_id: str
    requested_username: str | None = None
    updates: Mapping[str, Any] = field(default_factory=dict)
    seed: Mapping[str, Any] = field(default_factory=dict)
    # Only applied when the plan creates the profile
    defaults: Mapping[str, Any] = field(default_factory=dict)
    derived_key: str | None = None
    now: str = field(default_factory=utc_now_iso)


def _updated_at(snapshot: Snapshot) -> str:
    return str(snapshot.get("updatedAt") or "")


def pick_canonical(snapshots: Sequence[Snapshot]) -> tuple[Snapshot, list[Snapshot]]:
    """Most recently updated document wins; ties go to the greatest key."""
    ordered = sorted(snapshots, key=lambda s: (_updated_at(s), s.key))
    return ordered[-1], ordered[:-1]


def merge_documents(snapshots: Sequence[Snapshot]) -> dict[str, Any]:
    """
    Merge duplicate documents for one account.

    Scalars: most recent wins. Reference arrays: union, canonical order first.
    ``createdAt``: earliest. ``hasChangedUsernameOnce``: true if any is.
    """
    canonical, others = pick_canonical(snapshots)
    merged: dict[str, Any] = {}
    for snapshot in [*others, canonical]:
        merged.update(snapshot.to_dict())

    for name in REFERENCE_FIELDS:
        combined: list[str] = []
        for snapshot in [canonical, *reversed(others)]:
            for value in snapshot.get(name) or []:
                if value not in combined:
                    combined.append(value)
        if combined or name in RELATIONSHIP_FIELDS:
            merged[name] = combined

    created = [str(s.get("createdAt")) for s in snapshots if s.get("createdAt")]
    if created:
        merged["createdAt"] = min(created)

    merged["hasChangedUsernameOnce"] = any(
        bool(s.get("hasChangedUsernameOnce")) for s in snapshots
    )
    return merged


class IdentityResolver:
    """Reads the account's current documents and plans the profile write."""

    def __init__(self, store: DocumentStore):
        self._store = store

    async def resolve(
        self,
        auth_id: str,
        requested_username: str | None = None,
        *,
        updates: Mapping[str, Any] | None = None,
        seed: Mapping[str, Any] | None = None,
        defaults: Mapping[str, Any] | None = None,
        email: str | None = None,
    ) -> ResolutionPlan:
        """Read snapshots for ``auth_id`` and compute a resolution plan."""
        owned = [s for s in await self._store.query_equal("authId", auth_id) if s.exists]
        request = ResolutionRequest(
            auth_id=auth_id,
            requested_username=requested_username,
            updates=dict(updates or {}),
            seed=dict(seed or {}),
            defaults=dict(defaults or {}),
        )

        if not owned and requested_username is None:
            return await self._plan_derived(request, email)

        occupant = None
        if requested_username is not None:
            target = validate_username_key(normalize_username(requested_username))
            if target not in {s.key for s in owned}:
                occupant = await self._store.get(target)

        return self.plan(request, owned, occupant)

    async def _plan_derived(self, request: ResolutionRequest, email: str | None) -> ResolutionPlan:
        candidates = derive_username_candidates(email, request.auth_id)
        for candidate in candidates:
            occupant = await self._store.get(candidate)
            if not occupant.exists:
                derived = ResolutionRequest(
                    auth_id=request.auth_id,
                    updates=request.updates,
                    seed=request.seed,
                    defaults=request.defaults,
                    derived_key=candidate,
                    now=request.now,
                )
                return self.plan(derived, [], occupant)
            logger.debug("identity.derived_username_taken", candidate=candidate)
        raise UsernameTaken(candidates[-1])

    def plan(
        self,
        request: ResolutionRequest,
        owned: Sequence[Snapshot],
        occupant: Snapshot | None = None,
    ) -> ResolutionPlan:
        """
        Compute the resolution plan. Pure: performs no I/O.

        ``owned`` are the documents whose ``authId`` matches; ``occupant`` is
        the current document at the requested key, when it was read.
        """
        owned = [s for s in owned if s.exists]
        requested_key = None
        if request.requested_username is not None:
            requested_key = validate_username_key(normalize_username(request.requested_username))

        if not owned:
            return self._plan_create(request, requested_key, occupant)

        canonical, duplicates = pick_canonical(owned)
        base = merge_documents(owned)
        duplicate_keys = [s.key for s in duplicates]
        username_changed = False

        if requested_key is None or requested_key == canonical.key:
            target_key = canonical.key
        elif requested_key in duplicate_keys:
            # Consolidate onto a key the account already holds
            target_key = requested_key
        else:
            if base["hasChangedUsernameOnce"]:
                raise UsernameChangeLimitExceeded(canonical.key)
            self._check_occupant(request.auth_id, requested_key, occupant)
            target_key = requested_key
            username_changed = True

        sources = tuple(s.key for s in owned if s.key != target_key)
        if duplicates:
            logger.info(
                "identity.duplicates_found",
                auth_id=request.auth_id,
                canonical=canonical.key,
                duplicates=duplicate_keys,
                target=target_key,
            )

        if request.requested_username is not None and requested_key == target_key:
            display_username = request.requested_username.strip()
        elif target_key == canonical.key:
            display_username = base.get("displayUsername") or target_key
        else:
            display_username = target_key

        merged = {**request.seed, **base, **request.updates}
        merged.update(
            authId=request.auth_id,
            usernameKey=target_key,
            displayUsername=display_username,
            hasChangedUsernameOnce=base["hasChangedUsernameOnce"] or username_changed,
            updatedAt=request.now,
        )
        self._drop_self_references(merged, {target_key, *sources})

        return ResolutionPlan(
            auth_id=request.auth_id,
            target_key=target_key,
            previous_key=canonical.key,
            source_keys_to_delete=sources,
            merged_data=merged,
            current_data=canonical.to_dict(),
            username_changed=username_changed,
        )

    def _plan_create(
        self,
        request: ResolutionRequest,
        requested_key: str | None,
        occupant: Snapshot | None,
    ) -> ResolutionPlan:
        target_key = requested_key or request.derived_key
        if target_key is None:
            raise ValueError("A requested username or a derived key is required")
        self._check_occupant(request.auth_id, target_key, occupant)

        display_username = (
            request.requested_username.strip() if requested_key else target_key
        )
        merged = {**request.defaults, **request.seed, **request.updates}
        merged.update(
            authId=request.auth_id,
            usernameKey=target_key,
            displayUsername=display_username,
            friends=[],
            blocked=[],
            hasChangedUsernameOnce=False,
            createdAt=request.now,
            updatedAt=request.now,
        )
        return ResolutionPlan(
            auth_id=request.auth_id,
            target_key=target_key,
            previous_key=None,
            source_keys_to_delete=(),
            merged_data=merged,
            created=True,
        )

    @staticmethod
    def _check_occupant(auth_id: str, key: str, occupant: Snapshot | None) -> None:
        if occupant is None or occupant.key != key or not occupant.exists:
            return
        if occupant.auth_id != auth_id:
            raise UsernameTaken(key)

    @staticmethod
    def _drop_self_references(document: dict[str, Any], own_keys: set[str]) -> None:
        for name in REFERENCE_FIELDS:
            if name in document:
                document[name] = [v for v in document[name] or [] if v not in own_keys]
