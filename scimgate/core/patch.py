"""SCIM PATCH processing (RFC 7644 Section 3.5.2).

A ``PatchRequest`` is applied to a deep working copy of the resource; the
caller only ever sees the fully patched copy or an exception, never a
partially applied request.

Example:
    request = PatchRequest.from_dict({
        "schemas": [PATCHOP_SCHEMA],
        "Operations": [
            {"op": "replace", "path": "active", "value": False},
            {"op": "add", "path": "emails", "value": [{"value": "a@example.com", "type": "work"}]},
        ],
    })
    patched = PatchProcessor().apply(resource, request)
"""
from __future__ import annotations
import copy
import logging
from dataclasses import dataclass
from typing import Any, Optional

from scimgate.core.attributes import CORE_SCHEMAS, AttributePath, PathSegment, find_key, locate_root, parse_path
from scimgate.core.errors import (
    InvalidPathError,
    InvalidSyntaxError,
    InvalidValueError,
    MutabilityError,
    NoTargetError,
    TooManyError,
)
from scimgate.core.evaluator import evaluate
from scimgate.core.filter import equality_constraints

PATCHOP_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:PatchOp"
PATCH_OPERATIONS = frozenset({"add", "remove", "replace"})
IMMUTABLE_ATTRIBUTES = frozenset({"id", "meta"})

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Request model
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PatchOperation:
    op: str
    path: Optional[str] = None
    value: Any = None

    def to_dict(self) -> dict:
        operation: dict[str, Any] = {"op": self.op}
        if self.path:
            operation["path"] = self.path
        if self.value is not None:
            operation["value"] = self.value
        return operation


@dataclass(frozen=True)
class PatchRequest:
    operations: tuple[PatchOperation, ...]
    schemas: tuple[str, ...] = (PATCHOP_SCHEMA,)

    @classmethod
    def from_dict(cls, body: Any, max_operations: Optional[int] = None) -> "PatchRequest":
        """Validate and build a PatchRequest from a decoded JSON body.

        Args:
            body: Decoded request body
            max_operations: Upper bound on the number of operations (None = unbounded)

        Raises:
            InvalidSyntaxError: Body is not a PatchOp message
            InvalidValueError: Operations list empty or an operation malformed
            TooManyError: More than ``max_operations`` operations
        """
        if not isinstance(body, dict):
            raise InvalidSyntaxError("PATCH body must be a JSON object")

        schemas = body.get("schemas") or []
        if not isinstance(schemas, list) or PATCHOP_SCHEMA not in schemas:
            raise InvalidSyntaxError(f"PATCH body must declare schema {PATCHOP_SCHEMA}")

        key = find_key(body, "Operations")
        raw_operations = body.get(key) if key else None
        if not isinstance(raw_operations, list) or not raw_operations:
            raise InvalidValueError("PATCH request must contain at least one operation")
        if max_operations is not None and len(raw_operations) > max_operations:
            raise TooManyError(
                f"PATCH request contains {len(raw_operations)} operations; maximum is {max_operations}"
            )

        operations = []
        for index, raw in enumerate(raw_operations):
            if not isinstance(raw, dict):
                raise InvalidValueError(f"Operation {index} must be an object")
            op = str(raw.get("op") or raw.get("Op") or "").lower()
            if op not in PATCH_OPERATIONS:
                raise InvalidValueError(f"Operation {index} has invalid op '{raw.get('op')}'")
            path = raw.get("path")
            if path is not None and not isinstance(path, str):
                raise InvalidPathError(f"Operation {index} path must be a string")
            operations.append(PatchOperation(op, path or None, raw.get("value")))

        return cls(tuple(operations), tuple(schemas))

    def to_dict(self) -> dict:
        return {
            "schemas": list(self.schemas),
            "Operations": [operation.to_dict() for operation in self.operations],
        }


# ─────────────────────────────────────────────────────────────────────────────
# Processor
# ─────────────────────────────────────────────────────────────────────────────

class PatchProcessor:
    """Applies PatchRequests to generic resource trees. Stateless."""

    def apply(self, resource: dict, request: PatchRequest) -> dict:
        """Return a patched deep copy of ``resource``; the input is never modified."""
        working = copy.deepcopy(resource)
        for index, operation in enumerate(request.operations):
            try:
                self.apply_operation(working, operation)
            except Exception:
                logger.debug(f"PATCH operation {index} ({operation.op} {operation.path!r}) failed")
                raise
        _check_schemas(resource, working)
        return working

    def apply_operation(self, resource: dict, operation: PatchOperation) -> None:
        """Apply one operation in place."""
        if operation.op not in PATCH_OPERATIONS:
            raise InvalidValueError(f"Invalid patch op '{operation.op}'")

        if not operation.path:
            if operation.op == "remove":
                raise NoTargetError("Path is required for remove operations")
            self._merge_root(resource, operation)
            return

        path = parse_path(operation.path)
        self._apply_at_path(resource, operation.op, path, operation.value)

    # ── root merge (no path) ─────────────────────────────────────────────────

    def _merge_root(self, resource: dict, operation: PatchOperation) -> None:
        value = operation.value
        if not isinstance(value, dict):
            raise InvalidValueError(f"'{operation.op}' without a path requires an object value")

        added_schemas = value.get("schemas") or []
        if not isinstance(added_schemas, list):
            raise InvalidValueError("'schemas' must be a list of strings")
        declared = {s.lower() for s in (resource.get("schemas") or []) + added_schemas if isinstance(s, str)}
        for key, item in value.items():
            lowered = key.lower()
            if lowered == "meta":
                continue
            if lowered == "id":
                if item != resource.get("id"):
                    raise MutabilityError("Attribute 'id' is immutable")
                continue
            if lowered == "schemas":
                self._merge_schemas(resource, item)
                continue
            if lowered.startswith("urn:") and isinstance(item, dict) and (
                lowered in declared or find_key(resource, key) is not None
            ):
                self._merge_extension(resource, key, item, operation.op)
                continue
            if item is None:
                # null clears the attribute
                self._remove_if_present(resource, parse_path(key))
                continue
            self._apply_at_path(resource, operation.op, parse_path(key), item)

    def _merge_schemas(self, resource: dict, schemas: Any) -> None:
        if not isinstance(schemas, list) or not all(isinstance(s, str) for s in schemas):
            raise InvalidValueError("'schemas' must be a list of strings")
        current = list(resource.get("schemas") or [])
        for schema in schemas:
            if schema.lower() not in {s.lower() for s in current}:
                current.append(schema)
        resource["schemas"] = current

    def _merge_extension(self, resource: dict, urn: str, value: dict, op: str) -> None:
        key = find_key(resource, urn)
        if key is None or not isinstance(resource[key], dict):
            key = key or urn
            resource[key] = {}
        _merge_into(resource[key], value, append_lists=(op == "add"))
        self._merge_schemas(resource, [urn])

    def _remove_if_present(self, resource: dict, path: AttributePath) -> None:
        for container in self._containers(resource, path, create=False):
            key = find_key(container, path.last.name)
            if key is not None:
                del container[key]

    # ── path operations ──────────────────────────────────────────────────────

    def _apply_at_path(self, resource: dict, op: str, path: AttributePath, value: Any) -> None:
        if (path.schema is None or path.schema.lower() in CORE_SCHEMAS) and path.segments[0].name.lower() in IMMUTABLE_ATTRIBUTES:
            raise MutabilityError(f"Attribute '{path.segments[0].name}' is immutable")

        is_schemas = path.schema is None and path.segments[0].name.lower() == "schemas"
        if is_schemas and op == "remove" and value is None:
            raise MutabilityError("Attribute 'schemas' is required and cannot be removed")

        if op == "remove":
            self._remove(resource, path, value)
            return

        if value is None:
            raise InvalidValueError(f"'{op}' operation on '{path.raw}' requires a value")

        containers = self._containers(resource, path, create=True)
        if not containers:
            raise NoTargetError(f"No target found for path '{path.raw}'")
        for container in containers:
            if op == "add":
                self._add(container, path.last, value)
            else:
                self._replace(container, path.last, value)

    def _add(self, container: dict, segment: PathSegment, value: Any) -> None:
        key = find_key(container, segment.name)
        existing = container.get(key) if key is not None else None

        if segment.value_filter is not None:
            self._update_selected(container, segment, value, key, existing)
            return

        if existing is None:
            container[key or segment.name] = copy.deepcopy(value)
        elif isinstance(existing, list):
            _append_unique(existing, value if isinstance(value, list) else [value])
        elif isinstance(existing, dict):
            if not isinstance(value, dict):
                raise InvalidValueError(f"Attribute '{segment.name}' is complex; value must be an object")
            _merge_into(existing, value, append_lists=True)
        else:
            if isinstance(value, (dict, list)):
                raise InvalidValueError(f"Attribute '{segment.name}' is single-valued; value must be a scalar")
            container[key] = copy.deepcopy(value)

    def _replace(self, container: dict, segment: PathSegment, value: Any) -> None:
        key = find_key(container, segment.name)
        existing = container.get(key) if key is not None else None

        if segment.value_filter is not None:
            self._update_selected(container, segment, value, key, existing)
            return

        if existing is None:
            self._add(container, segment, value)
        elif isinstance(existing, list):
            items = value if isinstance(value, list) else [value]
            container[key] = []
            _append_unique(container[key], items)
        elif isinstance(existing, dict):
            if not isinstance(value, dict):
                raise InvalidValueError(f"Attribute '{segment.name}' is complex; value must be an object")
            _merge_into(existing, value, append_lists=False)
        else:
            if isinstance(value, (dict, list)):
                raise InvalidValueError(f"Attribute '{segment.name}' is single-valued; value must be a scalar")
            container[key] = copy.deepcopy(value)

    def _update_selected(self, container: dict, segment: PathSegment, value: Any, key: Optional[str], existing: Any) -> None:
        """add/replace on ``attr[filter]``: merge into matching elements or create one."""
        if not isinstance(value, dict):
            raise InvalidValueError(f"Value for '{segment.name}[...]' must be an object")
        if existing is not None and not isinstance(existing, list):
            raise InvalidPathError(f"Attribute '{segment.name}' is not multi-valued")

        elements = existing if existing is not None else []
        matched = [e for e in elements if isinstance(e, dict) and evaluate(segment.value_filter, e)]
        if not matched:
            element = _seed_element(segment)
            _merge_into(element, value, append_lists=False)
            _append_unique(elements, [element])
            container[key or segment.name] = elements
            return
        for element in matched:
            _merge_into(element, value, append_lists=False)
        _normalize_primary(elements)

    def _remove(self, resource: dict, path: AttributePath, value: Any) -> None:
        containers = self._containers(resource, path, create=False)
        if not containers:
            if path.has_filter:
                return
            raise NoTargetError(f"No target found for path '{path.raw}'")

        segment = path.last
        removed_any = False
        for container in containers:
            key = find_key(container, segment.name)
            if key is None:
                continue
            existing = container[key]

            if segment.value_filter is not None:
                if not isinstance(existing, list):
                    if isinstance(existing, dict) and evaluate(segment.value_filter, existing):
                        del container[key]
                    removed_any = True
                    continue
                kept = [e for e in existing if not (isinstance(e, dict) and evaluate(segment.value_filter, e))]
                _store_or_drop(container, key, kept)
                removed_any = True
            elif value is not None and isinstance(existing, list):
                targets = value if isinstance(value, list) else [value]
                kept = [e for e in existing if not any(_same_element(e, t) for t in targets)]
                _store_or_drop(container, key, kept)
                removed_any = True
            else:
                del container[key]
                removed_any = True

        if not removed_any:
            if path.has_filter:
                return
            raise NoTargetError(f"No target found for path '{path.raw}'")

    # ── navigation ───────────────────────────────────────────────────────────

    def _containers(self, resource: dict, path: AttributePath, create: bool) -> list[dict]:
        """Return every dict that directly holds the path's last segment."""
        root, segments = locate_root(resource, path, create=create)
        if root is None:
            return []

        current = [root]
        for segment in segments[:-1]:
            found: list[dict] = []
            for node in current:
                key = find_key(node, segment.name)
                value = node.get(key) if key is not None else None

                if value is None:
                    if not create:
                        continue
                    if segment.value_filter is not None:
                        element = _seed_element(segment)
                        node[key or segment.name] = [element]
                    else:
                        element = {}
                        node[key or segment.name] = element
                    found.append(element)
                elif isinstance(value, list):
                    if any(not isinstance(e, dict) for e in value):
                        raise InvalidPathError(f"Attribute '{segment.name}' in path '{path.raw}' is not complex")
                    elements = value
                    if segment.value_filter is not None:
                        elements = [e for e in value if evaluate(segment.value_filter, e)]
                        if not elements and create:
                            element = _seed_element(segment)
                            value.append(element)
                            elements = [element]
                    found.extend(elements)
                elif isinstance(value, dict):
                    if segment.value_filter is None or evaluate(segment.value_filter, value):
                        found.append(value)
                else:
                    raise InvalidPathError(f"Attribute '{segment.name}' in path '{path.raw}' is not complex")
            current = found
        return current


# ─────────────────────────────────────────────────────────────────────────────
# Tree helpers
# ─────────────────────────────────────────────────────────────────────────────

def _seed_element(segment: PathSegment) -> dict:
    constraints = equality_constraints(segment.value_filter)
    if not constraints:
        raise NoTargetError(f"No element of '{segment.name}' matches the value filter")
    element: dict = {}
    for name, value in constraints.items():
        parts = name.split(".")
        node = element
        for part in parts[:-1]:
            node = node.setdefault(part, {})
        node[parts[-1]] = value
    return element


def _merge_into(target: dict, value: dict, append_lists: bool) -> None:
    for name, item in value.items():
        key = find_key(target, name)
        if key is None:
            target[name] = copy.deepcopy(item)
        elif isinstance(target[key], dict) and isinstance(item, dict):
            _merge_into(target[key], item, append_lists)
        elif append_lists and isinstance(target[key], list):
            _append_unique(target[key], item if isinstance(item, list) else [item])
        else:
            target[key] = copy.deepcopy(item)


def _append_unique(elements: list, items: list) -> None:
    for item in items:
        if item is None:
            raise InvalidValueError("Multi-valued attributes cannot contain null")
        if not any(_same_element(existing, item, exact=True) for existing in elements):
            elements.append(copy.deepcopy(item))
    _normalize_primary(elements)


def _same_element(element: Any, target: Any, exact: bool = False) -> bool:
    if element == target:
        return True
    if exact:
        return False
    if isinstance(target, dict):
        key = find_key(target, "value")
        if key is None:
            return False
        target = target[key]
    if isinstance(element, dict):
        key = find_key(element, "value")
        element = element[key] if key is not None else None
    if isinstance(element, str) and isinstance(target, str):
        return element.casefold() == target.casefold()
    return element is not None and element == target


def _normalize_primary(elements: list) -> None:
    """Keep at most one ``primary: true`` element, the most recently added one."""
    primaries = [e for e in elements if isinstance(e, dict) and e.get("primary") is True]
    for element in primaries[:-1]:
        element["primary"] = False


def _store_or_drop(container: dict, key: str, elements: list) -> None:
    if elements:
        container[key] = elements
    else:
        del container[key]


def _schemas_of(resource: dict) -> Any:
    key = find_key(resource, "schemas")
    return resource[key] if key is not None else None


def _check_schemas(before: dict, after: dict) -> None:
    """A resource that declared schemas must still declare at least one."""
    if not _schemas_of(before):
        return
    schemas = _schemas_of(after)
    if not isinstance(schemas, list) or not schemas or not all(isinstance(s, str) for s in schemas):
        raise InvalidValueError("'schemas' must be a non-empty list of schema URNs")
