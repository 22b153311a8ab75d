"""
Profile service: the public entry point of the identity layer.

Wraps resolution and migration behind ``upsert``, and implements the profile
lifecycle (first-login bootstrap, account deletion), username search, and the
friend, block and friend-request relationships that reference profiles by
username key.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog

from outlink.config import settings
from outlink.exceptions import (
    DocumentConflict,
    NotAuthenticated,
    ProfileNotFound,
    RelationshipError,
)
from outlink.identity.migration import MigrationExecutor, queue_reference_rewrites, with_timeout
from outlink.identity.resolver import IdentityResolver, pick_canonical
from outlink.identity.types import Principal, ResolutionPlan, UpsertResult
from outlink.identity.usernames import looks_swapped, normalize_username, validate_username_key
from outlink.identity.write_queue import WriteQueue
from outlink.store.base import DeleteOp, DocumentStore, Snapshot, Transaction, WriteBatch

logger = structlog.get_logger(__name__)

# A plan invalidated by a concurrent writer is resolved again once
RESOLVE_ATTEMPTS = 2

# Fields only the identity layer may write
MANAGED_FIELDS = frozenset(
    {
        "authId",
        "usernameKey",
        "displayUsername",
        "friends",
        "blocked",
        "hasChangedUsernameOnce",
        "createdAt",
        "updatedAt",
    }
)


def clean_payload(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Drop unset fields and fields the caller may not write directly."""
    return {
        key: value
        for key, value in payload.items()
        if value is not None and key not in MANAGED_FIELDS
    }


def correct_swapped_names(payload: dict[str, Any]) -> bool:
    """Swap ``username`` and ``displayName`` back when they look exchanged."""
    if not looks_swapped(payload.get("username"), payload.get("displayName")):
        return False
    payload["username"], payload["displayName"] = payload["displayName"], payload["username"]
    return True


class ProfileService:
    """Profile upsert, lifecycle and relationship operations."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        resolver: IdentityResolver | None = None,
        executor: MigrationExecutor | None = None,
    ):
        self.store = store
        self.resolver = resolver or IdentityResolver(store)
        self.executor = executor or MigrationExecutor(store)

    # --- Upsert ---

    async def upsert(
        self,
        principal: Principal | None,
        auth_id: str,
        payload: Mapping[str, Any],
    ) -> UpsertResult:
        """
        Create or update the profile for ``auth_id``.

        ``payload`` uses stored field names plus ``username`` for the
        requested username. Omitted or None fields are left unchanged.
        Calling twice with the same payload yields the same stored state.
        """
        if principal is None or principal.auth_id != auth_id:
            raise NotAuthenticated("Cannot write another account's profile")

        updates = clean_payload(payload)
        if correct_swapped_names(updates):
            logger.warning("profile.name_username_swapped", auth_id=auth_id)
        requested_username = updates.pop("username", None)

        attempt = 1
        while True:
            plan = await self.resolver.resolve(
                auth_id,
                requested_username,
                updates=updates,
                seed=self._seed(principal),
                defaults=self._create_defaults(),
                email=principal.email,
            )
            try:
                return await self._apply(plan)
            except DocumentConflict:
                if attempt >= RESOLVE_ATTEMPTS:
                    raise
                # Another writer moved or created the document; plan again from fresh reads
                logger.info(
                    "profile.plan_conflict",
                    auth_id=auth_id,
                    username_key=plan.target_key,
                    attempt=attempt,
                )
                attempt += 1

    async def _apply(self, plan: ResolutionPlan) -> UpsertResult:
        if plan.created or plan.requires_migration:
            report = await self.executor.execute(plan)
            if plan.created:
                logger.info("profile.created", auth_id=plan.auth_id, username_key=plan.target_key)
            elif plan.username_changed:
                logger.info(
                    "profile.username_changed",
                    auth_id=plan.auth_id,
                    previous=plan.previous_key,
                    username_key=plan.target_key,
                )
            return UpsertResult(
                profile=plan.merged_data, plan=plan, written=True, report=report
            )

        return await self._write_changes(plan)

    async def _write_changes(self, plan: ResolutionPlan) -> UpsertResult:
        """
        Merge-write only the fields that differ from the stored profile.

        Raises DocumentConflict when the profile no longer sits at
        ``plan.target_key`` under this account, so nothing is written to a
        key another device has just vacated.
        """
        current = plan.current_data
        changes = {
            key: value
            for key, value in plan.merged_data.items()
            if key != "updatedAt" and current.get(key) != value
        }
        if not changes:
            return UpsertResult(profile=current, plan=plan, written=False)

        changes["updatedAt"] = plan.merged_data["updatedAt"]

        async def _write(txn: Transaction) -> None:
            stored = await txn.get(plan.target_key)
            if not stored.exists or stored.auth_id != plan.auth_id:
                raise DocumentConflict(
                    plan.target_key, f"Profile '{plan.target_key}' moved during the write"
                )
            txn.set(plan.target_key, changes, merge=True)

        await with_timeout(
            self.store.run_transaction(_write),
            settings.primary_write_timeout_seconds,
            "Profile write",
        )
        logger.info(
            "profile.updated",
            auth_id=plan.auth_id,
            username_key=plan.target_key,
            fields=sorted(k for k in changes if k != "updatedAt"),
        )
        return UpsertResult(profile={**current, **changes}, plan=plan, written=True)

    @staticmethod
    def _seed(principal: Principal) -> dict[str, Any]:
        """Defaults from the identity provider for fields the profile lacks."""
        display_name = principal.display_name
        if not display_name and principal.email:
            display_name = principal.email.split("@", 1)[0]
        seed = {
            "displayName": display_name or "User",
            "email": principal.email,
            "photoURL": principal.photo_url,
        }
        return {k: v for k, v in seed.items() if v is not None}

    @staticmethod
    def _create_defaults() -> dict[str, Any]:
        if settings.default_location is None:
            return {}
        return {"location": settings.default_location}

    # --- Lifecycle ---

    async def ensure_profile(self, principal: Principal) -> UpsertResult:
        """First-login bootstrap: create a placeholder profile or heal the existing one."""
        return await self.upsert(principal, principal.auth_id, {})

    async def get_profile(self, auth_id: str) -> dict[str, Any]:
        snapshot = await self._own_snapshot(auth_id)
        return snapshot.to_dict()

    async def get_profile_by_username(self, username: str) -> dict[str, Any]:
        snapshot = await self.store.get(normalize_username(username))
        if not snapshot.exists:
            raise ProfileNotFound(f"User '{username}' not found")
        return snapshot.to_dict()

    async def check_username_availability(
        self, username: str, auth_id: str | None = None
    ) -> tuple[str, bool]:
        """Return the normalized key and whether the caller may claim it."""
        key = validate_username_key(normalize_username(username))
        snapshot = await self.store.get(key)
        available = not snapshot.exists or (auth_id is not None and snapshot.auth_id == auth_id)
        return key, available

    async def delete_account(self, principal: Principal) -> list[str]:
        """
        Delete every profile document owned by the account.

        Other profiles' friends/blocked entries naming those keys are removed
        first. Returns the deleted keys.
        """
        owned = [s for s in await self.store.query_equal("authId", principal.auth_id) if s.exists]
        if not owned:
            raise ProfileNotFound("Profile not found")

        keys = [s.key for s in owned]
        queue = WriteQueue(settings.batch_max_operations)
        await queue_reference_rewrites(self.store, queue, keys, None, skip=set(keys))
        await queue.drain(self.store)

        for key in keys:
            queue.enqueue(DeleteOp(key))
        await queue.drain(self.store)

        logger.info("profile.deleted", auth_id=principal.auth_id, keys=keys)
        return keys

    # --- Relationships ---

    async def _own_snapshot(self, auth_id: str) -> Snapshot:
        owned = [s for s in await self.store.query_equal("authId", auth_id) if s.exists]
        if not owned:
            raise ProfileNotFound("Profile not found")
        canonical, duplicates = pick_canonical(owned)
        if duplicates:
            logger.info("profile.read_with_duplicates", auth_id=auth_id, canonical=canonical.key)
        return canonical

    async def _peer_snapshot(self, username: str) -> Snapshot:
        snapshot = await self.store.get(normalize_username(username))
        if not snapshot.exists:
            raise ProfileNotFound(f"User '{username}' not found")
        return snapshot

    @staticmethod
    def _clear_requests(batch: WriteBatch, me: Snapshot, peer_key: str) -> None:
        """Queue removal of any pending request between ``me`` and ``peer_key``."""
        if peer_key in (me.get("incomingRequests") or []):
            batch.array_remove(me.key, "incomingRequests", [peer_key])
            batch.array_remove(peer_key, "outgoingRequests", [me.key])
        if peer_key in (me.get("outgoingRequests") or []):
            batch.array_remove(me.key, "outgoingRequests", [peer_key])
            batch.array_remove(peer_key, "incomingRequests", [me.key])

    async def add_friend(self, principal: Principal, username: str) -> None:
        me = await self._own_snapshot(principal.auth_id)
        peer = await self._peer_snapshot(username)
        if peer.key == me.key or peer.auth_id == principal.auth_id:
            raise RelationshipError("Cannot add yourself as a friend")
        if peer.key in (me.get("blocked") or []) or me.key in (peer.get("blocked") or []):
            raise RelationshipError("Cannot add a blocked user as a friend")

        batch = self.store.batch()
        batch.array_union(me.key, "friends", [peer.key])
        batch.array_union(peer.key, "friends", [me.key])
        self._clear_requests(batch, me, peer.key)
        await batch.commit()
        logger.info("relationship.friend_added", username_key=me.key, friend=peer.key)

    async def remove_friend(self, principal: Principal, username: str) -> None:
        me = await self._own_snapshot(principal.auth_id)
        peer_key = normalize_username(username)
        if peer_key not in (me.get("friends") or []):
            raise ProfileNotFound(f"'{username}' is not in your friends list")

        batch = self.store.batch()
        batch.array_remove(me.key, "friends", [peer_key])
        batch.array_remove(peer_key, "friends", [me.key])
        await batch.commit()
        logger.info("relationship.friend_removed", username_key=me.key, friend=peer_key)

    async def block_user(self, principal: Principal, username: str) -> None:
        """One-way block; also ends any friendship and pending request in the same batch."""
        me = await self._own_snapshot(principal.auth_id)
        peer = await self._peer_snapshot(username)
        if peer.key == me.key or peer.auth_id == principal.auth_id:
            raise RelationshipError("Cannot block yourself")

        batch = self.store.batch()
        batch.array_union(me.key, "blocked", [peer.key])
        batch.array_remove(me.key, "friends", [peer.key])
        batch.array_remove(peer.key, "friends", [me.key])
        self._clear_requests(batch, me, peer.key)
        await batch.commit()
        logger.info("relationship.blocked", username_key=me.key, blocked=peer.key)

    async def unblock_user(self, principal: Principal, username: str) -> None:
        me = await self._own_snapshot(principal.auth_id)
        peer_key = normalize_username(username)
        if peer_key not in (me.get("blocked") or []):
            raise ProfileNotFound(f"'{username}' is not blocked")

        batch = self.store.batch()
        batch.array_remove(me.key, "blocked", [peer_key])
        await batch.commit()
        logger.info("relationship.unblocked", username_key=me.key, unblocked=peer_key)

    async def list_related(self, auth_id: str, field_name: str) -> list[dict[str, Any]]:
        """Profiles named in one of the account's reference arrays."""
        me = await self._own_snapshot(auth_id)
        profiles = []
        for key in me.get(field_name) or []:
            snapshot = await self.store.get(key)
            if snapshot.exists:
                profiles.append(snapshot.to_dict())
        return profiles

    # --- Friend requests ---

    async def send_friend_request(self, principal: Principal, username: str) -> None:
        """
        Ask another user to become friends.

        The request is recorded on both profiles: the recipient's
        ``incomingRequests`` and the sender's ``outgoingRequests`` name the
        other profile's key, so renames and deletions rewrite them like any
        other back-reference.
        """
        me = await self._own_snapshot(principal.auth_id)
        peer = await self._peer_snapshot(username)
        if peer.key == me.key or peer.auth_id == principal.auth_id:
            raise RelationshipError("Cannot send a friend request to yourself")
        if peer.key in (me.get("blocked") or []) or me.key in (peer.get("blocked") or []):
            raise RelationshipError("Cannot send a friend request to a blocked user")
        if peer.key in (me.get("friends") or []):
            raise RelationshipError("Already friends")
        if peer.key in (me.get("outgoingRequests") or []):
            raise RelationshipError("Request already sent")
        if peer.key in (me.get("incomingRequests") or []):
            raise RelationshipError(f"'{peer.key}' already sent you a friend request")

        batch = self.store.batch()
        batch.array_union(peer.key, "incomingRequests", [me.key])
        batch.array_union(me.key, "outgoingRequests", [peer.key])
        await batch.commit()
        logger.info("relationship.request_sent", username_key=me.key, to=peer.key)

    async def accept_friend_request(self, principal: Principal, username: str) -> None:
        """Accept a pending request: both profiles list each other and the request is cleared."""
        me = await self._own_snapshot(principal.auth_id)
        peer_key = normalize_username(username)

        async def _accept(txn: Transaction) -> None:
            mine = await txn.get(me.key)
            peer = await txn.get(peer_key)
            if peer_key not in (mine.get("incomingRequests") or []):
                raise ProfileNotFound(f"No friend request from '{username}'")
            if not peer.exists:
                raise ProfileNotFound(f"User '{username}' not found")
            txn.array_remove(me.key, "incomingRequests", [peer_key])
            txn.array_remove(peer_key, "outgoingRequests", [me.key])
            txn.array_union(me.key, "friends", [peer_key])
            txn.array_union(peer_key, "friends", [me.key])

        await self.store.run_transaction(_accept)
        logger.info("relationship.request_accepted", username_key=me.key, friend=peer_key)

    async def decline_friend_request(self, principal: Principal, username: str) -> None:
        me = await self._own_snapshot(principal.auth_id)
        peer_key = normalize_username(username)
        if peer_key not in (me.get("incomingRequests") or []):
            raise ProfileNotFound(f"No friend request from '{username}'")

        batch = self.store.batch()
        batch.array_remove(me.key, "incomingRequests", [peer_key])
        batch.array_remove(peer_key, "outgoingRequests", [me.key])
        await batch.commit()
        logger.info("relationship.request_declined", username_key=me.key, declined=peer_key)

    async def list_friend_requests(self, auth_id: str) -> list[dict[str, Any]]:
        """Senders of the account's pending requests, newest first."""
        return list(reversed(await self.list_related(auth_id, "incomingRequests")))

    # --- Search ---

    async def search_profiles(self, query: str, limit: int | None = None) -> list[dict[str, Any]]:
        """
        Find profiles by username.

        An exact username match is returned alone; otherwise profiles whose
        username starts with the query, in username order.
        """
        term = normalize_username(query)
        if not term:
            return []

        exact = await self.store.get(term)
        if exact.exists:
            return [exact.to_dict()]

        matches = await self.store.query_key_prefix(term, limit or settings.username_search_limit)
        return [s.to_dict() for s in matches]
