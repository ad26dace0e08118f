"""Tests for the in-memory backend."""
import threading

import pytest

from scimgate.core.errors import (
    ConflictError,
    InvalidValueError,
    MutabilityError,
    NoTargetError,
    NotFoundError,
    PreconditionFailedError,
)
from scimgate.core.patch import PatchOperation, PatchRequest
from scimgate.core.query import QueryParams, QueryProcessor
from scimgate.plugins.memory import MemoryPlugin

USER_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:User"


@pytest.fixture
def plugin():
    return MemoryPlugin("memory")


@pytest.fixture
def alice(plugin):
    return plugin.create_resource("User", {"schemas": [USER_SCHEMA], "userName": "alice", "active": True})


class TestCreate:
    def test_assigns_id_and_meta(self, alice):
        assert alice["id"]
        assert alice["meta"]["resourceType"] == "User"
        assert alice["meta"]["version"]
        assert alice["meta"]["created"] == alice["meta"]["lastModified"]

    def test_client_meta_is_ignored(self, plugin):
        created = plugin.create_resource("User", {"userName": "bob", "meta": {"version": "forged"}})
        assert created["meta"]["version"] != "forged"

    def test_username_uniqueness_is_case_insensitive(self, plugin, alice):
        with pytest.raises(ConflictError) as exc_info:
            plugin.create_resource("User", {"userName": "ALICE"})
        assert exc_info.value.status == 409

    def test_group_display_name_is_unique(self, plugin):
        plugin.create_resource("Group", {"displayName": "Admins"})
        with pytest.raises(ConflictError):
            plugin.create_resource("Group", {"displayName": "admins"})

    def test_returned_copy_is_detached(self, plugin, alice):
        alice["userName"] = "mallory"
        assert plugin.get_resource("User", alice["id"])["userName"] == "alice"

    def test_unknown_type(self, plugin):
        with pytest.raises(NotFoundError):
            plugin.create_resource("Device", {})


class TestModify:
    def test_patch_bumps_version(self, plugin, alice):
        patched = plugin.modify_resource("User", alice["id"], PatchRequest((PatchOperation("replace", "active", False),)))
        assert patched["active"] is False
        assert patched["meta"]["version"] != alice["meta"]["version"]
        assert patched["meta"]["created"] == alice["meta"]["created"]

    @pytest.mark.critical
    def test_compare_and_swap(self, plugin, alice):
        request = PatchRequest((PatchOperation("replace", "active", False),))
        plugin.modify_resource("User", alice["id"], request, expected_version=alice["meta"]["version"])
        with pytest.raises(PreconditionFailedError):
            plugin.modify_resource("User", alice["id"], request, expected_version=alice["meta"]["version"])

    def test_failed_patch_leaves_store_untouched(self, plugin, alice):
        request = PatchRequest((
            PatchOperation("replace", "active", False),
            PatchOperation("remove", "nickName"),
        ))
        with pytest.raises(NoTargetError):
            plugin.modify_resource("User", alice["id"], request)
        stored = plugin.get_resource("User", alice["id"])
        assert stored["active"] is True
        assert stored["meta"]["version"] == alice["meta"]["version"]

    def test_patch_cannot_steal_username(self, plugin, alice):
        bob = plugin.create_resource("User", {"userName": "bob"})
        with pytest.raises(ConflictError):
            plugin.modify_resource("User", bob["id"], PatchRequest((PatchOperation("replace", "userName", "Alice"),)))

    @pytest.mark.parametrize(
        "operation, error",
        [
            (PatchOperation("remove", "userName"), InvalidValueError),
            (PatchOperation("replace", "userName", 42), InvalidValueError),
            (PatchOperation("remove", "schemas"), MutabilityError),
            (PatchOperation("replace", "schemas", []), InvalidValueError),
        ],
    )
    def test_patch_cannot_break_required_attributes(self, plugin, alice, operation, error):
        with pytest.raises(error):
            plugin.modify_resource("User", alice["id"], PatchRequest((operation,)))
        assert plugin.get_resource("User", alice["id"]) == alice

    def test_replace_keeps_id_and_created(self, plugin, alice):
        replaced = plugin.replace_resource("User", alice["id"], {"userName": "alice", "title": "Dr"})
        assert replaced["id"] == alice["id"]
        assert replaced["title"] == "Dr"
        assert "active" not in replaced
        assert replaced["meta"]["created"] == alice["meta"]["created"]
        assert replaced["meta"]["version"] != alice["meta"]["version"]

    def test_replace_compare_and_swap(self, plugin, alice):
        with pytest.raises(PreconditionFailedError):
            plugin.replace_resource("User", alice["id"], {"userName": "alice"}, expected_version="stale")

    def test_conflicting_replace_keeps_original(self, plugin, alice):
        plugin.create_resource("User", {"userName": "bob"})
        with pytest.raises(ConflictError):
            plugin.replace_resource("User", alice["id"], {"userName": "bob"})
        assert plugin.get_resource("User", alice["id"]) == alice

    def test_delete(self, plugin, alice):
        plugin.delete_resource("User", alice["id"])
        with pytest.raises(NotFoundError):
            plugin.get_resource("User", alice["id"])
        with pytest.raises(NotFoundError):
            plugin.delete_resource("User", alice["id"])

    def test_concurrent_patches_all_apply(self, plugin, alice):
        def add_email(i):
            plugin.modify_resource(
                "User", alice["id"],
                PatchRequest((PatchOperation("add", "emails", [{"value": f"a{i}@example.com"}]),)),
            )

        threads = [threading.Thread(target=add_email, args=(i,)) for i in range(20)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert len(plugin.get_resource("User", alice["id"])["emails"]) == 20


class TestFilterPushdown:
    @pytest.fixture
    def populated(self, plugin):
        for name in ("alice", "bob", "carol"):
            plugin.create_resource("User", {"userName": name})
        return plugin

    def test_pushdown_never_narrower_than_evaluation(self, populated):
        populated.create_resource("User", {"userName": "dave", "externalId": 123})
        pushed = populated.get_resources("User", QueryParams(filter='externalId eq "123"'))
        unpushed = populated.get_resources("User", QueryParams(filter='externalId eq "123" and userName pr'))
        assert len(unpushed) == 4
        expected = QueryProcessor().filter(unpushed, 'externalId eq "123"')
        assert [r["id"] for r in pushed] == [r["id"] for r in expected]
        assert [r["userName"] for r in pushed] == ["dave"]

    def test_simple_equality_is_pushed_down(self, populated):
        found = populated.get_resources("User", QueryParams(filter='userName eq "BOB"'))
        assert [r["userName"] for r in found] == ["bob"]

    @pytest.mark.parametrize(
        "filter_text",
        [
            None,
            'userName co "o"',
            'userName eq "bob" or userName eq "carol"',
            'userName eq "bob',
            "active eq true",
        ],
    )
    def test_everything_else_returns_all_candidates(self, populated, filter_text):
        assert len(populated.get_resources("User", QueryParams(filter=filter_text))) == 3
