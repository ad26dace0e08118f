"""Thread-safe in-memory backend.

Useful for development, demos and tests. Every read returns deep copies so
callers can never mutate stored state behind the lock.
"""
from __future__ import annotations
import copy
import logging
import threading
import uuid
from typing import Optional

from scimgate.core.cancellation import CancellationToken
from scimgate.core.errors import ConflictError, InvalidFilterError, NotFoundError, PreconditionFailedError
from scimgate.core.evaluator import evaluate
from scimgate.core.filter import AttributeExpression, parse_filter
from scimgate.core.patch import PatchProcessor, PatchRequest
from scimgate.core.query import QueryParams
from scimgate.core.resources import RESOURCE_TYPES, unique_key
from scimgate.core.validators import validate_resource
from scimgate.core.versioning import VersionManager
from scimgate.plugins.base import Plugin

logger = logging.getLogger(__name__)

# Attributes the store can answer an ``eq`` filter for without scanning semantics.
PUSHDOWN_ATTRIBUTES = frozenset({"username", "displayname", "externalid"})


class MemoryPlugin(Plugin):
    def __init__(self, name: str = "memory"):
        self.name = name
        self._store: dict[str, dict[str, dict]] = {resource_type: {} for resource_type in RESOURCE_TYPES}
        self._lock = threading.RLock()
        self._patcher = PatchProcessor()
        self._versions = VersionManager()

    # ── reads ────────────────────────────────────────────────────────────────

    def get_resources(self, resource_type: str, params: QueryParams, cancellation: Optional[CancellationToken] = None) -> list[dict]:
        with self._lock:
            candidates = list(self._table(resource_type).values())
        pushed = self._pushdown(params.filter)
        if pushed is not None:
            candidates = [r for r in candidates if evaluate(pushed, r)]
        return copy.deepcopy(candidates)

    def get_resource(self, resource_type: str, resource_id: str, attributes: tuple[str, ...] = ()) -> dict:
        with self._lock:
            return copy.deepcopy(self._existing(resource_type, resource_id))

    # ── writes ───────────────────────────────────────────────────────────────

    def create_resource(self, resource_type: str, resource: dict) -> dict:
        stored = copy.deepcopy(resource)
        stored["id"] = stored.get("id") or str(uuid.uuid4())
        stored.pop("meta", None)
        with self._lock:
            table = self._table(resource_type)
            if stored["id"] in table:
                raise ConflictError(f"{resource_type} with id '{stored['id']}' already exists")
            self._check_unique(resource_type, stored)
            self._versions.stamp(stored, created=True)
            stored["meta"]["resourceType"] = resource_type
            table[stored["id"]] = stored
            logger.info(f"Created {resource_type} {stored['id']} in plugin '{self.name}'")
            return copy.deepcopy(stored)

    def modify_resource(
        self,
        resource_type: str,
        resource_id: str,
        patch: PatchRequest,
        expected_version: Optional[str] = None,
    ) -> dict:
        with self._lock:
            current = self._existing(resource_type, resource_id)
            self._compare_version(current, expected_version)
            patched = self._patcher.apply(current, patch)
            patched["id"] = current["id"]
            patched["meta"] = copy.deepcopy(current["meta"])
            validate_resource(resource_type, patched)
            self._check_unique(resource_type, patched)
            self._versions.stamp(patched)
            self._table(resource_type)[resource_id] = patched
            logger.info(f"Patched {resource_type} {resource_id} in plugin '{self.name}'")
            return copy.deepcopy(patched)

    def replace_resource(
        self,
        resource_type: str,
        resource_id: str,
        resource: dict,
        expected_version: Optional[str] = None,
    ) -> dict:
        with self._lock:
            current = self._existing(resource_type, resource_id)
            self._compare_version(current, expected_version)
            replacement = copy.deepcopy(resource)
            replacement["id"] = resource_id
            replacement["meta"] = copy.deepcopy(current["meta"])
            self._check_unique(resource_type, replacement)
            self._versions.stamp(replacement)
            self._table(resource_type)[resource_id] = replacement
            logger.info(f"Replaced {resource_type} {resource_id} in plugin '{self.name}'")
            return copy.deepcopy(replacement)

    def delete_resource(self, resource_type: str, resource_id: str) -> None:
        with self._lock:
            self._existing(resource_type, resource_id)
            del self._table(resource_type)[resource_id]
            logger.info(f"Deleted {resource_type} {resource_id} from plugin '{self.name}'")

    # ── helpers ──────────────────────────────────────────────────────────────

    def _table(self, resource_type: str) -> dict[str, dict]:
        if resource_type not in self._store:
            raise NotFoundError(f"Unknown resource type '{resource_type}'")
        return self._store[resource_type]

    def _existing(self, resource_type: str, resource_id: str) -> dict:
        resource = self._table(resource_type).get(resource_id)
        if resource is None:
            raise NotFoundError(f"{resource_type} {resource_id} not found")
        return resource

    def _check_unique(self, resource_type: str, resource: dict) -> None:
        key = unique_key(resource_type, resource)
        if key is None:
            return
        for other_id, other in self._table(resource_type).items():
            if other_id != resource.get("id") and unique_key(resource_type, other) == key:
                attribute = "userName" if resource_type == "User" else "displayName"
                raise ConflictError(f"{resource_type} with {attribute} already exists")

    def _compare_version(self, current: dict, expected_version: Optional[str]) -> None:
        if expected_version is not None and self._versions.current_version(current) != expected_version:
            raise PreconditionFailedError(f"Resource {current['id']} was modified concurrently")

    @staticmethod
    def _pushdown(filter_text: Optional[str]) -> Optional[AttributeExpression]:
        """Return a lone top-level ``attr eq "string"`` node to pre-filter with; anything else is not pushed down.

        Candidates are matched with the same evaluator the adapter uses, so the
        pushed-down result is never narrower than the authoritative one.
        """
        try:
            node = parse_filter(filter_text)
        except InvalidFilterError:
            return None
        if (
            isinstance(node, AttributeExpression)
            and node.operator == "eq"
            and isinstance(node.value, str)
            and node.path.lower() in PUSHDOWN_ATTRIBUTES
        ):
            return node
        return None

