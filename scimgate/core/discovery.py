"""Service discovery documents (RFC 7643 Sections 5-7, RFC 7644 Section 4)."""
from __future__ import annotations
from typing import Any, Dict, List, Optional

from scimgate.core.attributes import ENTERPRISE_USER_SCHEMA, GROUP_SCHEMA, USER_SCHEMA
from scimgate.core.resources import RESOURCE_TYPES

SERVICE_PROVIDER_CONFIG_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:ServiceProviderConfig"
RESOURCE_TYPE_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:ResourceType"
SCHEMA_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:Schema"

_AUTH_SCHEMES = {
    "basic": {
        "type": "httpbasic",
        "name": "HTTP Basic",
        "description": "Authentication scheme using the HTTP Basic Standard",
        "specUri": "http://www.rfc-editor.org/info/rfc2617",
    },
    "bearer": {
        "type": "oauthbearertoken",
        "name": "OAuth Bearer Token",
        "description": "Authentication scheme using the OAuth Bearer Token Standard",
        "specUri": "http://www.rfc-editor.org/info/rfc6750",
    },
}


def service_provider_config(
    max_results: int,
    auth_type: str = "none",
    documentation_uri: str = "",
) -> Dict[str, Any]:
    """ServiceProviderConfig for one plugin."""
    schemes: List[Dict[str, Any]] = []
    if auth_type in _AUTH_SCHEMES:
        schemes.append(dict(_AUTH_SCHEMES[auth_type], primary=True))

    config: Dict[str, Any] = {
        "schemas": [SERVICE_PROVIDER_CONFIG_SCHEMA],
        "patch": {"supported": True},
        "bulk": {"supported": False, "maxOperations": 0, "maxPayloadSize": 0},
        "filter": {"supported": True, "maxResults": max_results},
        "changePassword": {"supported": False},
        "sort": {"supported": True},
        "etag": {"supported": True},
        "authenticationSchemes": schemes,
        "meta": {"resourceType": "ServiceProviderConfig"},
    }
    if documentation_uri:
        config["documentationUri"] = documentation_uri
    return config


def resource_types(base_url: Optional[str] = None) -> List[Dict[str, Any]]:
    documents = []
    for name, info in RESOURCE_TYPES.items():
        document: Dict[str, Any] = {
            "schemas": [RESOURCE_TYPE_SCHEMA],
            "id": name,
            "name": name,
            "endpoint": f"/{info['endpoint']}",
            "description": info["description"],
            "schema": info["schema"],
            "meta": {"resourceType": "ResourceType"},
        }
        if name == "User":
            document["schemaExtensions"] = [{"schema": ENTERPRISE_USER_SCHEMA, "required": False}]
        if base_url:
            document["meta"]["location"] = f"{base_url.rstrip('/')}/ResourceTypes/{name}"
        documents.append(document)
    return documents


def _attribute(name: str, type_: str = "string", **overrides: Any) -> Dict[str, Any]:
    attribute = {
        "name": name,
        "type": type_,
        "multiValued": False,
        "required": False,
        "caseExact": False,
        "mutability": "readWrite",
        "returned": "default",
        "uniqueness": "none",
    }
    attribute.update(overrides)
    return attribute


def _multi_valued(name: str, sub_attributes: List[Dict[str, Any]], **overrides: Any) -> Dict[str, Any]:
    return _attribute(name, "complex", multiValued=True, subAttributes=sub_attributes, **overrides)


def _typed_values(value_type: str = "string") -> List[Dict[str, Any]]:
    return [
        _attribute("value", value_type),
        _attribute("display"),
        _attribute("type"),
        _attribute("primary", "boolean"),
    ]


def schemas() -> List[Dict[str, Any]]:
    user_attributes = [
        _attribute("userName", required=True, uniqueness="server"),
        _attribute("name", "complex", subAttributes=[
            _attribute("formatted"),
            _attribute("familyName"),
            _attribute("givenName"),
            _attribute("middleName"),
            _attribute("honorificPrefix"),
            _attribute("honorificSuffix"),
        ]),
        _attribute("displayName"),
        _attribute("nickName"),
        _attribute("title"),
        _attribute("userType"),
        _attribute("preferredLanguage"),
        _attribute("locale"),
        _attribute("timezone"),
        _attribute("active", "boolean"),
        _attribute("password", mutability="writeOnly", returned="never"),
        _multi_valued("emails", _typed_values()),
        _multi_valued("phoneNumbers", _typed_values()),
        _multi_valued("groups", [
            _attribute("value", mutability="readOnly"),
            _attribute("$ref", "reference", mutability="readOnly"),
            _attribute("display", mutability="readOnly"),
        ], mutability="readOnly"),
    ]
    group_attributes = [
        _attribute("displayName", required=True, uniqueness="server"),
        _multi_valued("members", [
            _attribute("value", mutability="immutable"),
            _attribute("$ref", "reference", mutability="immutable"),
            _attribute("display"),
            _attribute("type", mutability="immutable", canonicalValues=["User", "Group"]),
        ]),
    ]
    enterprise_attributes = [
        _attribute("employeeNumber"),
        _attribute("costCenter"),
        _attribute("organization"),
        _attribute("division"),
        _attribute("department"),
        _attribute("manager", "complex", subAttributes=[
            _attribute("value"),
            _attribute("$ref", "reference"),
            _attribute("displayName", mutability="readOnly"),
        ]),
    ]
    return [
        _schema(USER_SCHEMA, "User", "User Account", user_attributes),
        _schema(GROUP_SCHEMA, "Group", "Group", group_attributes),
        _schema(ENTERPRISE_USER_SCHEMA, "EnterpriseUser", "Enterprise User", enterprise_attributes),
    ]


def _schema(schema_id: str, name: str, description: str, attributes: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "schemas": [SCHEMA_SCHEMA],
        "id": schema_id,
        "name": name,
        "description": description,
        "attributes": attributes,
        "meta": {"resourceType": "Schema"},
    }
