"""Tests for SCIM PATCH processing."""
import copy

import pytest

from scimgate.core.attributes import ENTERPRISE_USER_SCHEMA, GROUP_SCHEMA
from scimgate.core.errors import (
    InvalidPathError,
    InvalidSyntaxError,
    InvalidValueError,
    MutabilityError,
    NoTargetError,
    TooManyError,
)
from scimgate.core.patch import PATCHOP_SCHEMA, PatchOperation, PatchProcessor, PatchRequest


def patch(resource, *operations):
    request = PatchRequest.from_dict({"schemas": [PATCHOP_SCHEMA], "Operations": list(operations)})
    return PatchProcessor().apply(resource, request)


@pytest.fixture
def group_resource():
    return {
        "schemas": [GROUP_SCHEMA],
        "id": "e9e30dba-f08f-4109-8486-d5c6a331660a",
        "displayName": "Tour Guides",
        "members": [
            {"value": "2819c223-7f76-453a-919d-413861904646", "display": "Babs Jensen"},
            {"value": "902c246b-6245-4190-8e05-00816be7344a", "display": "Mandy Pepperidge"},
        ],
    }


class TestPatchRequest:
    def test_parses_operations(self):
        request = PatchRequest.from_dict({
            "schemas": [PATCHOP_SCHEMA],
            "Operations": [{"op": "Replace", "path": "active", "value": False}],
        })
        assert request.operations == (PatchOperation("replace", "active", False),)

    def test_operations_key_is_case_insensitive(self):
        request = PatchRequest.from_dict({"schemas": [PATCHOP_SCHEMA], "operations": [{"op": "remove", "path": "title"}]})
        assert request.operations[0].op == "remove"

    def test_to_dict(self):
        request = PatchRequest((PatchOperation("add", "title", "Dr"),))
        assert request.to_dict() == {
            "schemas": [PATCHOP_SCHEMA],
            "Operations": [{"op": "add", "path": "title", "value": "Dr"}],
        }

    @pytest.mark.parametrize(
        "body, error",
        [
            ([], InvalidSyntaxError),
            ({"Operations": [{"op": "add", "value": {}}]}, InvalidSyntaxError),
            ({"schemas": [PATCHOP_SCHEMA], "Operations": []}, InvalidValueError),
            ({"schemas": [PATCHOP_SCHEMA]}, InvalidValueError),
            ({"schemas": [PATCHOP_SCHEMA], "Operations": ["add"]}, InvalidValueError),
            ({"schemas": [PATCHOP_SCHEMA], "Operations": [{"op": "move", "path": "a"}]}, InvalidValueError),
            ({"schemas": [PATCHOP_SCHEMA], "Operations": [{"op": "add", "path": 7, "value": 1}]}, InvalidPathError),
        ],
    )
    def test_malformed_requests(self, body, error):
        with pytest.raises(error):
            PatchRequest.from_dict(body)

    def test_operation_limit(self):
        body = {"schemas": [PATCHOP_SCHEMA], "Operations": [{"op": "remove", "path": "title"}] * 3}
        with pytest.raises(TooManyError) as exc_info:
            PatchRequest.from_dict(body, max_operations=2)
        assert exc_info.value.scim_type == "tooMany"


class TestSimpleAttributes:
    def test_replace_scalar(self, user_resource):
        patched = patch(user_resource, {"op": "replace", "path": "active", "value": False})
        assert patched["active"] is False

    def test_path_is_case_insensitive_and_keeps_stored_key(self, user_resource):
        patched = patch(user_resource, {"op": "replace", "path": "DISPLAYNAME", "value": "Barbara"})
        assert patched["displayName"] == "Barbara"
        assert "DISPLAYNAME" not in patched

    def test_add_and_replace_equivalent_on_absent_attribute(self, user_resource):
        added = patch(user_resource, {"op": "add", "path": "title", "value": "Tour Guide"})
        replaced = patch(user_resource, {"op": "replace", "path": "title", "value": "Tour Guide"})
        assert added == replaced
        assert added["title"] == "Tour Guide"

    def test_add_creates_intermediate_complex_attribute(self):
        patched = patch({"id": "1", "schemas": []}, {"op": "add", "path": "name.givenName", "value": "Ann"})
        assert patched["name"] == {"givenName": "Ann"}

    def test_replace_complex_merges(self, user_resource):
        patched = patch(user_resource, {"op": "replace", "path": "name", "value": {"givenName": "Babs"}})
        assert patched["name"] == {"givenName": "Babs", "familyName": "Jensen"}

    def test_remove_attribute(self, user_resource):
        patched = patch(user_resource, {"op": "remove", "path": "displayName"})
        assert "displayName" not in patched

    def test_remove_missing_attribute_is_no_target(self, user_resource):
        with pytest.raises(NoTargetError):
            patch(user_resource, {"op": "remove", "path": "name.middleName.x"})

    def test_add_without_value_is_invalid(self, user_resource):
        with pytest.raises(InvalidValueError):
            patch(user_resource, {"op": "add", "path": "title"})

    def test_scalar_attribute_rejects_object(self, user_resource):
        with pytest.raises(InvalidValueError):
            patch(user_resource, {"op": "replace", "path": "userName", "value": {"a": 1}})

    def test_remove_without_path_is_no_target(self, user_resource):
        with pytest.raises(NoTargetError):
            patch(user_resource, {"op": "remove"})


class TestMutability:
    @pytest.mark.parametrize(
        "operation",
        [
            {"op": "replace", "path": "id", "value": "other"},
            {"op": "remove", "path": "id"},
            {"op": "replace", "path": "meta.version", "value": "x"},
            {"op": "add", "path": "urn:ietf:params:scim:schemas:core:2.0:User:id", "value": "x"},
            {"op": "replace", "value": {"id": "other"}},
        ],
    )
    def test_immutable_attributes(self, user_resource, operation):
        with pytest.raises(MutabilityError) as exc_info:
            patch(user_resource, operation)
        assert exc_info.value.scim_type == "mutability"

    def test_root_merge_with_same_id_is_allowed(self, user_resource):
        patched = patch(user_resource, {"op": "replace", "value": {"id": user_resource["id"], "title": "Dr"}})
        assert patched["title"] == "Dr"

    def test_root_merge_ignores_meta(self, user_resource):
        patched = patch(user_resource, {"op": "replace", "value": {"meta": {"version": "x"}, "nickName": "Babs"}})
        assert patched["meta"] == user_resource["meta"]
        assert patched["nickName"] == "Babs"


class TestMultiValued:
    def test_add_appends(self, user_resource):
        patched = patch(user_resource, {"op": "add", "path": "emails", "value": [{"value": "b@example.org", "type": "other"}]})
        assert [e["value"] for e in patched["emails"]] == ["bjensen@example.com", "babs@jensen.org", "b@example.org"]

    def test_add_skips_duplicates(self, user_resource):
        patched = patch(user_resource, {"op": "add", "path": "emails", "value": [copy.deepcopy(user_resource["emails"][1])]})
        assert len(patched["emails"]) == 2

    def test_replace_swaps_whole_list(self, user_resource):
        patched = patch(user_resource, {"op": "replace", "path": "emails", "value": [{"value": "only@example.com"}]})
        assert patched["emails"] == [{"value": "only@example.com"}]

    def test_new_primary_demotes_old(self, user_resource):
        patched = patch(user_resource, {"op": "add", "path": "emails", "value": [{"value": "new@example.com", "primary": True}]})
        assert [e.get("primary") for e in patched["emails"]] == [False, None, True]

    def test_filtered_replace_updates_only_matching_element(self, user_resource):
        patched = patch(user_resource, {"op": "replace", "path": 'emails[type eq "work"].value', "value": "barbara@example.com"})
        assert patched["emails"][0]["value"] == "barbara@example.com"
        assert patched["emails"][1]["value"] == "babs@jensen.org"

    def test_filtered_add_merges_into_matching_element(self, user_resource):
        patched = patch(user_resource, {"op": "add", "path": 'emails[type eq "home"]', "value": {"display": "Home"}})
        assert patched["emails"][1] == {"value": "babs@jensen.org", "type": "home", "display": "Home"}

    def test_filtered_add_without_match_seeds_element(self, user_resource):
        patched = patch(user_resource, {"op": "add", "path": 'emails[type eq "other"].value', "value": "x@example.org"})
        assert patched["emails"][-1] == {"type": "other", "value": "x@example.org"}

    def test_filtered_add_without_seedable_match_is_no_target(self, user_resource):
        with pytest.raises(NoTargetError):
            patch(user_resource, {"op": "add", "path": 'emails[value co "nomatch"].display', "value": "x"})

    def test_filtered_remove(self, group_resource):
        patched = patch(group_resource, {"op": "remove", "path": 'members[value eq "2819c223-7f76-453a-919d-413861904646"]'})
        assert [m["display"] for m in patched["members"]] == ["Mandy Pepperidge"]

    def test_filtered_remove_without_match_is_noop(self, group_resource):
        patched = patch(group_resource, {"op": "remove", "path": 'members[value eq "unknown"]'})
        assert patched == group_resource

    def test_remove_last_member_drops_attribute(self, group_resource):
        patched = patch(group_resource, {"op": "remove", "path": 'members[value pr]'})
        assert "members" not in patched

    def test_remove_with_value_removes_listed_members(self, group_resource):
        patched = patch(group_resource, {
            "op": "remove",
            "path": "members",
            "value": [{"value": "902c246b-6245-4190-8e05-00816be7344a"}],
        })
        assert [m["value"] for m in patched["members"]] == ["2819c223-7f76-453a-919d-413861904646"]

    def test_null_elements_are_rejected(self, group_resource):
        with pytest.raises(InvalidValueError):
            patch(group_resource, {"op": "add", "path": "members", "value": [None]})


class TestSchemasInvariant:
    def test_remove_schemas_is_rejected(self, user_resource):
        with pytest.raises(MutabilityError):
            patch(user_resource, {"op": "remove", "path": "schemas"})

    def test_replace_with_empty_schemas_is_rejected(self, user_resource):
        with pytest.raises(InvalidValueError):
            patch(user_resource, {"op": "replace", "path": "schemas", "value": []})

    def test_removing_every_listed_schema_is_rejected(self, user_resource):
        with pytest.raises(InvalidValueError):
            patch(user_resource, {"op": "remove", "path": "schemas", "value": list(user_resource["schemas"])})

    def test_root_merge_with_non_list_schemas(self, user_resource):
        with pytest.raises(InvalidValueError):
            patch(user_resource, {"op": "replace", "value": {"schemas": "urn:x"}})

    def test_removing_one_extension_schema_is_allowed(self, user_resource):
        patched = patch(user_resource, {"op": "remove", "path": "schemas", "value": [ENTERPRISE_USER_SCHEMA]})
        assert patched["schemas"] == ["urn:ietf:params:scim:schemas:core:2.0:User"]


class TestExtensionsAndRootMerge:
    def test_replace_extension_attribute(self, user_resource):
        patched = patch(user_resource, {"op": "replace", "path": f"{ENTERPRISE_USER_SCHEMA}:employeeNumber", "value": "42"})
        assert patched[ENTERPRISE_USER_SCHEMA]["employeeNumber"] == "42"

    def test_add_extension_attribute_creates_container(self):
        resource = {"id": "1", "schemas": ["urn:ietf:params:scim:schemas:core:2.0:User"], "userName": "a"}
        patched = patch(resource, {"op": "add", "path": f"{ENTERPRISE_USER_SCHEMA}:department", "value": "Sales"})
        assert patched[ENTERPRISE_USER_SCHEMA] == {"department": "Sales"}
        assert ENTERPRISE_USER_SCHEMA in patched["schemas"]

    def test_root_merge_updates_nested_and_extension(self, user_resource):
        patched = patch(user_resource, {
            "op": "replace",
            "value": {
                "name": {"middleName": "J"},
                ENTERPRISE_USER_SCHEMA: {"department": "Tours"},
            },
        })
        assert patched["name"]["middleName"] == "J"
        assert patched["name"]["familyName"] == "Jensen"
        assert patched[ENTERPRISE_USER_SCHEMA]["department"] == "Tours"
        assert patched[ENTERPRISE_USER_SCHEMA]["employeeNumber"] == "701984"

    def test_root_merge_null_clears_attribute(self, user_resource):
        patched = patch(user_resource, {"op": "replace", "value": {"displayName": None}})
        assert "displayName" not in patched

    def test_root_merge_requires_object(self, user_resource):
        with pytest.raises(InvalidValueError):
            patch(user_resource, {"op": "add", "value": "flat"})


class TestAtomicity:
    def test_input_never_modified(self, user_resource):
        original = copy.deepcopy(user_resource)
        patch(user_resource, {"op": "replace", "path": "emails", "value": [{"value": "a@b.co"}]})
        assert user_resource == original

    def test_failure_leaves_no_partial_result(self, user_resource):
        original = copy.deepcopy(user_resource)
        processor = PatchProcessor()
        request = PatchRequest((
            PatchOperation("replace", "displayName", "Changed"),
            PatchOperation("remove", "nonexistent"),
        ))
        with pytest.raises(NoTargetError):
            processor.apply(user_resource, request)
        assert user_resource == original

    def test_operations_apply_in_order(self, user_resource):
        patched = patch(
            user_resource,
            {"op": "add", "path": "title", "value": "First"},
            {"op": "replace", "path": "title", "value": "Second"},
            {"op": "add", "path": "nickName", "value": "B"},
        )
        assert patched["title"] == "Second"
        assert patched["nickName"] == "B"
