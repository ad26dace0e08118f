"""Input validation for inbound User and Group payloads."""
from __future__ import annotations
import re
from typing import Any

from scimgate.core.attributes import find_key
from scimgate.core.errors import InvalidSyntaxError, InvalidValueError

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9._@\-]+$")
MAX_USERNAME_LENGTH = 256
MAX_DISPLAY_NAME_LENGTH = 256


def _lookup(node: dict, name: str) -> Any:
    """Case-insensitive attribute read."""
    key = find_key(node, name)
    return node[key] if key is not None else None


def validate_username(raw: Any) -> str:
    """Validate a userName.

    Args:
        raw: userName from the payload

    Returns:
        The userName, unchanged

    Raises:
        InvalidValueError: If missing or malformed
    """
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidValueError("userName is required")
    if len(raw) > MAX_USERNAME_LENGTH:
        raise InvalidValueError(f"userName must not exceed {MAX_USERNAME_LENGTH} characters")
    if not USERNAME_PATTERN.match(raw):
        raise InvalidValueError("userName may only contain letters, digits and . _ @ -")
    return raw


def validate_email(email: Any) -> str:
    """Validate email address.

    Raises:
        InvalidValueError: If email is invalid
    """
    if not isinstance(email, str):
        raise InvalidValueError("Email value must be a string")
    email = email.strip()
    if not email or "@" not in email:
        raise InvalidValueError(f"Invalid email format: '{email}'")

    local, domain = email.rsplit("@", 1)
    if not local or not domain or "." not in domain:
        raise InvalidValueError(f"Invalid email format: '{email}'")
    if len(email) > 254:
        raise InvalidValueError("Email exceeds maximum length")
    return email


def validate_display_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise InvalidValueError("displayName is required")
    if len(name) > MAX_DISPLAY_NAME_LENGTH:
        raise InvalidValueError(f"displayName must not exceed {MAX_DISPLAY_NAME_LENGTH} characters")
    return name


def validate_user(payload: Any) -> dict:
    if not isinstance(payload, dict):
        raise InvalidSyntaxError("User payload must be a JSON object")
    validate_username(_lookup(payload, "userName"))

    emails = _lookup(payload, "emails")
    if emails is not None:
        if not isinstance(emails, list):
            raise InvalidValueError("emails must be an array")
        for entry in emails:
            if not isinstance(entry, dict):
                raise InvalidValueError("Each email must be an object")
            validate_email(_lookup(entry, "value"))

    active = _lookup(payload, "active")
    if active is not None and not isinstance(active, bool):
        raise InvalidValueError("active must be a boolean")
    return payload


def validate_group(payload: Any) -> dict:
    if not isinstance(payload, dict):
        raise InvalidSyntaxError("Group payload must be a JSON object")
    validate_display_name(_lookup(payload, "displayName"))

    members = _lookup(payload, "members")
    if members is not None:
        if not isinstance(members, list):
            raise InvalidValueError("members must be an array")
        for member in members:
            if not isinstance(member, dict) or not _lookup(member, "value"):
                raise InvalidValueError("Each member must be an object with a 'value'")
    return payload


def validate_resource(resource_type: str, payload: Any) -> dict:
    """Dispatch to the validator for ``resource_type`` ("User" or "Group")."""
    if resource_type == "User":
        return validate_user(payload)
    if resource_type == "Group":
        return validate_group(payload)
    raise InvalidValueError(f"Unsupported resource type '{resource_type}'")
