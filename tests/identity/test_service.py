"""
Tests for ProfileService:
- upsert (create, update, rename, idempotence, collisions, duplicate healing)
- profile lifecycle (bootstrap, lookup, availability, deletion)
- friend and block relationships
"""

import pytest

from outlink.exceptions import (
    DocumentConflict,
    InvalidUsername,
    NotAuthenticated,
    ProfileNotFound,
    RelationshipError,
    UsernameChangeLimitExceeded,
    UsernameTaken,
)
from outlink.identity.resolver import IdentityResolver
from outlink.identity.service import ProfileService, clean_payload, correct_swapped_names
from outlink.identity.types import Principal
from outlink.store.memory import InMemoryDocumentStore

ALICE = Principal(auth_id="u1", email="alice@example.com", display_name="Alice")
BOB = Principal(auth_id="u2", email="bob@example.com", display_name="Bob")
CAROL = Principal(auth_id="u3", email="carol@example.com", display_name="Carol")


class TestCleanPayload:
    def test_drops_none_values(self):
        assert clean_payload({"bio": None, "age": 30}) == {"age": 30}

    def test_drops_managed_fields(self):
        payload = {"friends": ["x"], "authId": "other", "hasChangedUsernameOnce": False, "bio": "hi"}
        assert clean_payload(payload) == {"bio": "hi"}

    def test_correct_swapped_names(self):
        payload = {"username": "Alice Wonderland Smith Jr", "displayName": "alice_w"}

        assert correct_swapped_names(payload) is True
        assert payload == {"username": "alice_w", "displayName": "Alice Wonderland Smith Jr"}


class TestUpsertCreate:
    async def test_free_username_creates_single_document(self, service, store):
        """After upsert, the account resolves to exactly one document at the normalized key."""
        await service.upsert(ALICE, "u1", {"username": "Alice"})

        owned = await store.query_equal("authId", "u1")
        assert [s.key for s in owned] == ["alice"]
        assert owned[0].get("displayUsername") == "Alice"

    async def test_created_profile_has_defaults(self, service):
        result = await service.upsert(ALICE, "u1", {"username": "alice"})

        profile = result.profile
        assert result.plan.created is True
        assert profile["friends"] == []
        assert profile["blocked"] == []
        assert profile["hasChangedUsernameOnce"] is False
        assert profile["displayName"] == "Alice"
        assert profile["email"] == "alice@example.com"
        assert profile["location"] == "Bloomington, IN"
        assert profile["createdAt"] == profile["updatedAt"]

    async def test_timestamps_are_utc_iso(self, service, frozen_time):
        with frozen_time("2026-05-04T03:02:01Z"):
            result = await service.upsert(ALICE, "u1", {"username": "alice"})

        assert result.profile["createdAt"] == "2026-05-04T03:02:01+00:00"

    async def test_must_be_authenticated_as_account(self, service, store):
        with pytest.raises(NotAuthenticated):
            await service.upsert(BOB, "u1", {"username": "alice"})
        with pytest.raises(NotAuthenticated):
            await service.upsert(None, "u1", {"username": "alice"})

        assert store.dump() == {}

    async def test_invalid_username_rejected(self, service, store):
        with pytest.raises(InvalidUsername):
            await service.upsert(ALICE, "u1", {"username": "a-b"})

        assert store.dump() == {}

    async def test_swapped_fields_are_corrected(self, service, store):
        result = await service.upsert(
            ALICE, "u1", {"username": "Alice Wonderland Smith Jr", "displayName": "alice_w"}
        )

        assert result.username_key == "alice_w"
        assert store.dump()["alice_w"]["displayName"] == "Alice Wonderland Smith Jr"


class TestUpsertIdempotence:
    async def test_same_payload_twice_yields_identical_state(self, service, store):
        payload = {"username": "alice", "bio": "hello", "age": 30}
        await service.upsert(ALICE, "u1", payload)
        before = store.dump()
        batches_before = len(store.committed_batches)

        result = await service.upsert(ALICE, "u1", payload)

        assert store.dump() == before
        assert result.written is False
        assert result.plan.requires_migration is False
        assert len(store.committed_batches) == batches_before

    async def test_changed_field_is_merge_written(self, service, store, frozen_time):
        with frozen_time("2026-01-01T00:00:00Z"):
            await service.upsert(ALICE, "u1", {"username": "alice", "bio": "old", "age": 30})
        with frozen_time("2026-01-02T00:00:00Z"):
            result = await service.upsert(ALICE, "u1", {"bio": "new"})

        stored = store.dump()["alice"]
        assert result.written is True
        assert stored["bio"] == "new"
        assert stored["age"] == 30
        assert stored["createdAt"] == "2026-01-01T00:00:00+00:00"
        assert stored["updatedAt"] == "2026-01-02T00:00:00+00:00"

    async def test_omitted_username_preserves_key(self, service, store):
        await service.upsert(ALICE, "u1", {"username": "alice"})

        result = await service.upsert(ALICE, "u1", {"gender": "female"})

        assert result.username_key == "alice"
        assert list(store.dump()) == ["alice"]


class TestUpsertCollision:
    async def test_username_owned_by_other_account(self, service, store):
        await service.upsert(BOB, "u2", {"username": "bob"})
        await service.upsert(ALICE, "u1", {"username": "alice"})
        before = store.dump()

        with pytest.raises(UsernameTaken):
            await service.upsert(ALICE, "u1", {"username": "Bob"})

        assert store.dump() == before

    async def test_create_on_taken_username(self, service, store):
        await service.upsert(BOB, "u2", {"username": "bob"})
        before = store.dump()

        with pytest.raises(UsernameTaken):
            await service.upsert(ALICE, "u1", {"username": "bob"})

        assert store.dump() == before


class TestUsernameChange:
    async def test_rename_scenario(self, service, store, document_factory):
        """alice -> alicia moves the profile and rewrites bob's friends list."""
        await store.set("alice", document_factory("alice", "u1", friends=["bob"]))
        await store.set("bob", document_factory("bob", "u2", friends=["alice"]))

        result = await service.upsert(ALICE, "u1", {"username": "alicia"})

        documents = store.dump()
        assert "alice" not in documents
        assert documents["alicia"]["friends"] == ["bob"]
        assert documents["alicia"]["hasChangedUsernameOnce"] is True
        assert documents["bob"]["friends"] == ["alicia"]
        assert result.plan.username_changed is True
        assert result.warnings == []

    async def test_back_references_never_list_both_keys(self, service, store, document_factory):
        await store.set("alice", document_factory("alice", "u1"))
        await store.set("bob", document_factory("bob", "u2", friends=["alice", "carol"]))
        await store.set("carol", document_factory("carol", "u3", blocked=["alice"]))

        await service.upsert(ALICE, "u1", {"username": "alicia"})

        for document in store.dump().values():
            for field_name in ("friends", "blocked"):
                assert not {"alice", "alicia"} <= set(document[field_name])
        assert store.dump()["bob"]["friends"] == ["alicia", "carol"]
        assert store.dump()["carol"]["blocked"] == ["alicia"]

    async def test_second_change_rejected_and_state_unchanged(self, service, store):
        await service.upsert(ALICE, "u1", {"username": "alice"})
        await service.upsert(ALICE, "u1", {"username": "alicia"})
        before = store.dump()

        with pytest.raises(UsernameChangeLimitExceeded):
            await service.upsert(ALICE, "u1", {"username": "ally"})

        assert store.dump() == before

    async def test_display_case_change_is_allowed_after_rename(self, service, store):
        await service.upsert(ALICE, "u1", {"username": "alice"})
        await service.upsert(ALICE, "u1", {"username": "alicia"})

        result = await service.upsert(ALICE, "u1", {"username": "Alicia"})

        assert result.username_key == "alicia"
        assert store.dump()["alicia"]["displayUsername"] == "Alicia"


class TestDuplicateHealing:
    async def test_two_documents_reduce_to_one(self, service, store, document_factory):
        await store.set(
            "alice",
            document_factory(
                "alice", "u1", updated_at="2026-01-01T00:00:00+00:00",
                friends=["bob"], blocked=["mallory"], bio="old bio", age=29,
            ),
        )
        await store.set(
            "alicia",
            document_factory(
                "alicia", "u1", updated_at="2026-02-01T00:00:00+00:00",
                friends=["carol"], bio="new bio",
            ),
        )

        result = await service.upsert(ALICE, "u1", {})

        owned = await store.query_equal("authId", "u1")
        assert [s.key for s in owned] == ["alicia"]
        healed = owned[0]
        assert set(healed.get("friends")) == {"bob", "carol"}
        assert healed.get("blocked") == ["mallory"]
        assert healed.get("bio") == "new bio"
        assert healed.get("age") == 29
        assert result.report.deleted_keys == ["alice"]

    async def test_healing_rewrites_references_to_duplicate(self, service, store, document_factory):
        await store.set("alice", document_factory("alice", "u1", updated_at="2026-01-01T00:00:00+00:00"))
        await store.set("alicia", document_factory("alicia", "u1", updated_at="2026-02-01T00:00:00+00:00"))
        await store.set("bob", document_factory("bob", "u2", friends=["alice"]))

        await service.upsert(ALICE, "u1", {})

        assert store.dump()["bob"]["friends"] == ["alicia"]

    async def test_resolve_after_healing_finds_one_document(self, service, store, document_factory):
        await store.set("alice", document_factory("alice", "u1", updated_at="2026-01-01T00:00:00+00:00"))
        await store.set("alicia", document_factory("alicia", "u1", updated_at="2026-02-01T00:00:00+00:00"))

        await service.upsert(ALICE, "u1", {})
        plan = await IdentityResolver(store).resolve("u1")

        assert plan.requires_migration is False
        assert plan.target_key == "alicia"


class TestLifecycle:
    async def test_ensure_profile_derives_username(self, service, store):
        result = await service.ensure_profile(Principal(auth_id="uid-99887766", email="dana@example.com"))

        assert result.plan.created is True
        assert result.username_key == "dana"
        assert store.dump()["dana"]["displayName"] == "dana"

    async def test_ensure_profile_is_noop_for_existing_profile(self, service, store):
        await service.upsert(ALICE, "u1", {"username": "alice"})
        before = store.dump()

        result = await service.ensure_profile(ALICE)

        assert result.written is False
        assert store.dump() == before

    async def test_get_profile(self, service):
        await service.upsert(ALICE, "u1", {"username": "alice"})

        profile = await service.get_profile("u1")

        assert profile["usernameKey"] == "alice"

    async def test_get_missing_profile_raises(self, service):
        with pytest.raises(ProfileNotFound):
            await service.get_profile("nobody")

    async def test_get_profile_by_username_normalizes(self, service):
        await service.upsert(ALICE, "u1", {"username": "alice"})

        profile = await service.get_profile_by_username(" ALICE ")

        assert profile["authId"] == "u1"

    async def test_username_availability(self, service):
        await service.upsert(ALICE, "u1", {"username": "alice"})

        assert await service.check_username_availability("Alice", "u2") == ("alice", False)
        assert await service.check_username_availability("Alice", "u1") == ("alice", True)
        assert await service.check_username_availability("newname", "u2") == ("newname", True)

    async def test_delete_account_removes_documents_and_references(self, service, store):
        await service.upsert(ALICE, "u1", {"username": "alice"})
        await service.upsert(BOB, "u2", {"username": "bob"})
        await service.upsert(CAROL, "u3", {"username": "carol"})
        await service.add_friend(BOB, "alice")
        await service.block_user(CAROL, "alice")

        deleted = await service.delete_account(ALICE)

        documents = store.dump()
        assert deleted == ["alice"]
        assert "alice" not in documents
        assert documents["bob"]["friends"] == []
        assert documents["carol"]["blocked"] == []

    async def test_delete_missing_account_raises(self, service):
        with pytest.raises(ProfileNotFound):
            await service.delete_account(ALICE)


class TestRelationships:
    @pytest.fixture
    async def people(self, service):
        for principal, username in ((ALICE, "alice"), (BOB, "bob"), (CAROL, "carol")):
            await service.upsert(principal, principal.auth_id, {"username": username})
        return service

    async def test_add_friend_is_mutual(self, people, store):
        await people.add_friend(ALICE, "Bob")

        documents = store.dump()
        assert documents["alice"]["friends"] == ["bob"]
        assert documents["bob"]["friends"] == ["alice"]

    async def test_add_friend_twice_keeps_one_entry(self, people, store):
        await people.add_friend(ALICE, "bob")
        await people.add_friend(ALICE, "bob")

        assert store.dump()["alice"]["friends"] == ["bob"]

    async def test_cannot_friend_self(self, people):
        with pytest.raises(RelationshipError):
            await people.add_friend(ALICE, "alice")

    async def test_cannot_friend_missing_user(self, people):
        with pytest.raises(ProfileNotFound):
            await people.add_friend(ALICE, "nobody")

    async def test_cannot_friend_blocked_user(self, people):
        await people.block_user(BOB, "alice")

        with pytest.raises(RelationshipError):
            await people.add_friend(ALICE, "bob")

    async def test_remove_friend_is_mutual(self, people, store):
        await people.add_friend(ALICE, "bob")

        await people.remove_friend(BOB, "alice")

        documents = store.dump()
        assert documents["alice"]["friends"] == []
        assert documents["bob"]["friends"] == []

    async def test_remove_non_friend_raises(self, people):
        with pytest.raises(ProfileNotFound):
            await people.remove_friend(ALICE, "carol")

    async def test_block_ends_friendship(self, people, store):
        await people.add_friend(ALICE, "bob")

        await people.block_user(ALICE, "bob")

        documents = store.dump()
        assert documents["alice"]["blocked"] == ["bob"]
        assert documents["alice"]["friends"] == []
        assert documents["bob"]["friends"] == []

    async def test_unblock(self, people, store):
        await people.block_user(ALICE, "bob")

        await people.unblock_user(ALICE, "bob")

        assert store.dump()["alice"]["blocked"] == []

    async def test_unblock_not_blocked_raises(self, people):
        with pytest.raises(ProfileNotFound):
            await people.unblock_user(ALICE, "bob")

    async def test_list_related(self, people):
        await people.add_friend(ALICE, "bob")
        await people.add_friend(ALICE, "carol")

        friends = await people.list_related("u1", "friends")

        assert [f["usernameKey"] for f in friends] == ["bob", "carol"]

    async def test_relationships_follow_rename(self, people, store):
        await people.add_friend(ALICE, "bob")
        await people.block_user(CAROL, "alice")

        await people.upsert(ALICE, "u1", {"username": "alicia"})

        documents = store.dump()
        assert documents["bob"]["friends"] == ["alicia"]
        assert documents["carol"]["blocked"] == ["alicia"]


class TestStoreBatchLimit:
    async def test_service_uses_store_batch_limit(self, document_factory):
        documents = {"alice": document_factory("alice", "u1")}
        for i in range(4):
            documents[f"fan{i}"] = document_factory(f"fan{i}", f"f{i}", friends=["alice"])
        store = InMemoryDocumentStore(documents, max_batch_operations=3)

        await ProfileService(store).upsert(ALICE, "u1", {"username": "alicia"})

        assert store.committed_batches == [3, 1, 1]


class TestCreateDefaults:
    async def test_existing_profile_does_not_gain_default_location(self, service, store, document_factory):
        await store.set("alice", document_factory("alice", "u1", email="alice@example.com"))

        await service.upsert(ALICE, "u1", {"bio": "hi"})

        stored = store.dump()["alice"]
        assert stored["bio"] == "hi"
        assert "location" not in stored

    async def test_sign_in_leaves_existing_profile_untouched(self, service, store, document_factory):
        await store.set("alice", document_factory("alice", "u1", email="alice@example.com"))
        before = store.dump()

        result = await service.ensure_profile(ALICE)

        assert result.written is False
        assert store.dump() == before


class RacingResolver(IdentityResolver):
    """Runs ``interleave`` once, right after the first plan has been computed."""

    def __init__(self, store, interleave):
        super().__init__(store)
        self._interleave = interleave

    async def resolve(self, *args, **kwargs):
        plan = await super().resolve(*args, **kwargs)
        if self._interleave is not None:
            interleave, self._interleave = self._interleave, None
            await interleave()
        return plan


class LostInsertStore(InMemoryDocumentStore):
    """The first transaction loses an insert race: ``winner`` lands first, then a conflict is raised."""

    def __init__(self, winner_key, winner_document):
        super().__init__()
        self._winner = (winner_key, winner_document)

    async def run_transaction(self, callback):
        if self._winner is not None:
            key, document = self._winner
            self._winner = None
            await self.set(key, document)
            raise DocumentConflict(key)
        return await super().run_transaction(callback)


class TestConcurrentWrites:
    async def test_stale_plan_never_writes_to_vacated_key(self, service, store):
        """A field edit planned before another device's rename must not recreate the old key."""
        await service.upsert(ALICE, "u1", {"username": "alice"})
        plan = await service.resolver.resolve("u1", updates={"bio": "hi"})
        await service.upsert(ALICE, "u1", {"username": "alicia"})

        with pytest.raises(DocumentConflict):
            await service._write_changes(plan)

        assert list(store.dump()) == ["alicia"]
        assert await service.check_username_availability("alice", "u9") == ("alice", True)

    async def test_upsert_replans_after_concurrent_rename(self, store):
        other_device = ProfileService(store)
        await other_device.upsert(ALICE, "u1", {"username": "alice"})
        racing = ProfileService(
            store,
            resolver=RacingResolver(
                store, lambda: other_device.upsert(ALICE, "u1", {"username": "alicia"})
            ),
        )

        result = await racing.upsert(ALICE, "u1", {"bio": "hi"})

        documents = store.dump()
        assert list(documents) == ["alicia"]
        assert documents["alicia"]["bio"] == "hi"
        assert documents["alicia"]["authId"] == "u1"
        assert result.username_key == "alicia"

    async def test_insert_race_with_own_device_is_not_username_taken(self, document_factory):
        store = LostInsertStore("alice", document_factory("alice", "u1", email="alice@example.com"))

        result = await ProfileService(store).upsert(ALICE, "u1", {"username": "alice", "bio": "hi"})

        stored = store.dump()["alice"]
        assert result.plan.created is False
        assert stored["authId"] == "u1"
        assert stored["bio"] == "hi"

    async def test_insert_race_with_other_account_is_username_taken(self, document_factory):
        store = LostInsertStore("alice", document_factory("alice", "u9"))

        with pytest.raises(UsernameTaken):
            await ProfileService(store).upsert(ALICE, "u1", {"username": "alice"})

        assert store.dump()["alice"]["authId"] == "u9"


class TestFriendRequests:
    @pytest.fixture
    async def people(self, service):
        for principal, username in ((ALICE, "alice"), (BOB, "bob"), (CAROL, "carol")):
            await service.upsert(principal, principal.auth_id, {"username": username})
        return service

    async def test_request_is_recorded_on_both_profiles(self, people, store):
        await people.send_friend_request(ALICE, "Bob")

        documents = store.dump()
        assert documents["bob"]["incomingRequests"] == ["alice"]
        assert documents["alice"]["outgoingRequests"] == ["bob"]
        assert documents["alice"]["friends"] == []

    async def test_duplicate_request_rejected(self, people):
        await people.send_friend_request(ALICE, "bob")

        with pytest.raises(RelationshipError, match="already sent"):
            await people.send_friend_request(ALICE, "bob")

    async def test_reverse_pending_request_rejected(self, people):
        await people.send_friend_request(ALICE, "bob")

        with pytest.raises(RelationshipError):
            await people.send_friend_request(BOB, "alice")

    async def test_request_to_self_rejected(self, people):
        with pytest.raises(RelationshipError):
            await people.send_friend_request(ALICE, "alice")

    async def test_request_to_friend_rejected(self, people):
        await people.add_friend(ALICE, "bob")

        with pytest.raises(RelationshipError, match="Already friends"):
            await people.send_friend_request(ALICE, "bob")

    async def test_request_to_blocker_rejected(self, people):
        await people.block_user(BOB, "alice")

        with pytest.raises(RelationshipError):
            await people.send_friend_request(ALICE, "bob")

    async def test_accept_makes_friends_and_clears_request(self, people, store):
        await people.send_friend_request(ALICE, "bob")

        await people.accept_friend_request(BOB, "alice")

        documents = store.dump()
        assert documents["alice"]["friends"] == ["bob"]
        assert documents["bob"]["friends"] == ["alice"]
        assert documents["bob"]["incomingRequests"] == []
        assert documents["alice"]["outgoingRequests"] == []

    async def test_accept_without_request_raises(self, people, store):
        before = store.dump()

        with pytest.raises(ProfileNotFound):
            await people.accept_friend_request(BOB, "alice")

        assert store.dump() == before

    async def test_decline_clears_request_without_friendship(self, people, store):
        await people.send_friend_request(ALICE, "bob")

        await people.decline_friend_request(BOB, "alice")

        documents = store.dump()
        assert documents["bob"]["incomingRequests"] == []
        assert documents["alice"]["outgoingRequests"] == []
        assert documents["bob"]["friends"] == []

    async def test_decline_unknown_request_raises(self, people):
        with pytest.raises(ProfileNotFound):
            await people.decline_friend_request(BOB, "carol")

    async def test_incoming_requests_newest_first(self, people):
        await people.send_friend_request(BOB, "alice")
        await people.send_friend_request(CAROL, "alice")

        requests = await people.list_friend_requests("u1")

        assert [r["usernameKey"] for r in requests] == ["carol", "bob"]

    async def test_block_clears_pending_request(self, people, store):
        await people.send_friend_request(BOB, "alice")

        await people.block_user(ALICE, "bob")

        documents = store.dump()
        assert documents["alice"]["incomingRequests"] == []
        assert documents["bob"]["outgoingRequests"] == []

    async def test_requests_follow_rename(self, people, store):
        await people.send_friend_request(ALICE, "bob")
        await people.send_friend_request(CAROL, "alice")

        await people.upsert(ALICE, "u1", {"username": "alicia"})
        await people.accept_friend_request(BOB, "alicia")

        documents = store.dump()
        assert documents["bob"]["friends"] == ["alicia"]
        assert documents["carol"]["outgoingRequests"] == ["alicia"]
        assert documents["alicia"]["incomingRequests"] == ["carol"]

    async def test_delete_account_removes_pending_requests(self, people, store):
        await people.send_friend_request(ALICE, "bob")
        await people.send_friend_request(CAROL, "alice")

        await people.delete_account(ALICE)

        documents = store.dump()
        assert documents["bob"]["incomingRequests"] == []
        assert documents["carol"]["outgoingRequests"] == []


class TestSearchProfiles:
    @pytest.fixture
    async def people(self, service):
        for principal, username in ((ALICE, "alice"), (BOB, "alicia_b"), (CAROL, "carol")):
            await service.upsert(principal, principal.auth_id, {"username": username})
        return service

    async def test_exact_match_is_returned_alone(self, people):
        results = await people.search_profiles(" Alice ")

        assert [r["usernameKey"] for r in results] == ["alice"]

    async def test_prefix_match(self, people):
        results = await people.search_profiles("ALI")

        assert [r["usernameKey"] for r in results] == ["alice", "alicia_b"]

    async def test_prefix_match_respects_limit(self, people):
        results = await people.search_profiles("ali", limit=1)

        assert [r["usernameKey"] for r in results] == ["alice"]

    async def test_blank_query_returns_nothing(self, people):
        assert await people.search_profiles("   ") == []

    async def test_no_match(self, people):
        assert await people.search_profiles("zed") == []
