"""Resource types, inbound normalisation and typed views over attribute trees.

Resources travel through the engine as plain dicts. The typed ``UserView`` /
``GroupView`` classes are read-only conveniences built on top of that tree,
used where code needs a few well-known attributes (backends, tests).

Usage:
    resource = ScimTransformer.normalize_inbound("User", payload)
    user = UserView.from_resource(resource)
    user.user_name
"""
from __future__ import annotations
import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from scimgate.core.attributes import GROUP_SCHEMA, USER_SCHEMA, find_key
from scimgate.core.errors import NotFoundError

RESOURCE_TYPES: Dict[str, Dict[str, str]] = {
    "User": {"endpoint": "Users", "schema": USER_SCHEMA, "description": "User Account"},
    "Group": {"endpoint": "Groups", "schema": GROUP_SCHEMA, "description": "Group"},
}

SERVER_MANAGED = ("id", "meta")


def resource_type_for_endpoint(endpoint: str) -> str:
    """Map ``Users``/``Groups`` (case-insensitive) to its resource type name."""
    for name, info in RESOURCE_TYPES.items():
        if info["endpoint"].lower() == endpoint.lower():
            return name
    raise NotFoundError(f"Unknown resource endpoint '{endpoint}'")


class ScimTransformer:
    """Shape inbound payloads and outbound resources."""

    @staticmethod
    def normalize_inbound(resource_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Copy of a client payload ready to hand to a backend.

        Server-managed attributes (``id``, ``meta``) are dropped, ``schemas``
        defaults to the core schema for the type, and Users default to
        ``active: true``.
        """
        resource = {
            key: copy.deepcopy(value)
            for key, value in payload.items()
            if key.lower() not in SERVER_MANAGED
        }
        core_schema = RESOURCE_TYPES[resource_type]["schema"]
        schemas = resource.get("schemas")
        if not isinstance(schemas, list) or not schemas:
            resource["schemas"] = [core_schema]
        elif not any(isinstance(s, str) and s.lower() == core_schema.lower() for s in schemas):
            resource["schemas"] = [core_schema] + list(schemas)

        if resource_type == "User" and find_key(resource, "active") is None:
            resource["active"] = True
        return resource

    @staticmethod
    def with_location(resource: Dict[str, Any], resource_type: str, base_url: str) -> Dict[str, Any]:
        """Set ``meta.resourceType`` and ``meta.location`` on an outbound resource, in place."""
        meta = resource.setdefault("meta", {})
        meta["resourceType"] = resource_type
        if resource.get("id"):
            endpoint = RESOURCE_TYPES[resource_type]["endpoint"]
            meta["location"] = f"{base_url.rstrip('/')}/{endpoint}/{resource['id']}"
        return resource


# ─────────────────────────────────────────────────────────────────────────────
# Typed views
# ─────────────────────────────────────────────────────────────────────────────

def _get(resource: Dict[str, Any], name: str) -> Any:
    key = find_key(resource, name)
    return resource[key] if key is not None else None


@dataclass(frozen=True)
class UserView:
    id: Optional[str]
    user_name: Optional[str]
    display_name: Optional[str] = None
    active: bool = True
    emails: List[str] = field(default_factory=list)
    external_id: Optional[str] = None

    @classmethod
    def from_resource(cls, resource: Dict[str, Any]) -> "UserView":
        emails = _get(resource, "emails") or []
        return cls(
            id=resource.get("id"),
            user_name=_get(resource, "userName"),
            display_name=_get(resource, "displayName"),
            active=_get(resource, "active") is not False,
            emails=[e.get("value") for e in emails if isinstance(e, dict) and e.get("value")],
            external_id=_get(resource, "externalId"),
        )

    @property
    def primary_email(self) -> Optional[str]:
        return self.emails[0] if self.emails else None


@dataclass(frozen=True)
class GroupView:
    id: Optional[str]
    display_name: Optional[str]
    member_ids: List[str] = field(default_factory=list)
    external_id: Optional[str] = None

    @classmethod
    def from_resource(cls, resource: Dict[str, Any]) -> "GroupView":
        members = _get(resource, "members") or []
        return cls(
            id=resource.get("id"),
            display_name=_get(resource, "displayName"),
            member_ids=[m.get("value") for m in members if isinstance(m, dict) and m.get("value")],
            external_id=_get(resource, "externalId"),
        )


def unique_key(resource_type: str, resource: Dict[str, Any]) -> Optional[str]:
    """Case-folded uniqueness key: userName for Users, displayName for Groups."""
    if resource_type == "User":
        value = UserView.from_resource(resource).user_name
    else:
        value = GroupView.from_resource(resource).display_name
    return value.casefold() if isinstance(value, str) else None
