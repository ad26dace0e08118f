"""Seam between a backend plugin and the protocol engine.

The adapter forwards query parameters to the plugin as a hint, then always
re-runs the QueryProcessor over whatever came back. Conditional request
headers are evaluated before any mutation is handed to the plugin, and the
version observed at that point is passed down as the compare-and-swap key.
"""
from __future__ import annotations
import copy
import logging
from typing import Any, Callable, Iterable, Optional, TypeVar, Union

from scimgate.core.cancellation import CancellationToken
from scimgate.core.errors import InternalError, ScimError
from scimgate.core.filter import parse_filter
from scimgate.core.patch import PatchRequest
from scimgate.core.projection import AttributeSelector
from scimgate.core.query import ListResponse, QueryParams, QueryProcessor
from scimgate.core.resources import RESOURCE_TYPES, ScimTransformer
from scimgate.core.validators import validate_resource
from scimgate.core.versioning import ConditionalHeaders, NotModified, VersionManager
from scimgate.plugins.base import Plugin

logger = logging.getLogger(__name__)

T = TypeVar("T")

NO_CONDITIONS = ConditionalHeaders()


class PluginAdapter:
    def __init__(
        self,
        plugin: Plugin,
        base_url: str = "",
        query_processor: Optional[QueryProcessor] = None,
        versions: Optional[VersionManager] = None,
        max_patch_operations: Optional[int] = None,
    ):
        self.plugin = plugin
        self.base_url = f"{base_url.rstrip('/')}/{plugin.name}" if base_url else f"/{plugin.name}"
        self.query_processor = query_processor or QueryProcessor()
        self.versions = versions or VersionManager()
        self.max_patch_operations = max_patch_operations

    # ─────────────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────────────

    def list_resources(
        self,
        resource_type: str,
        params: QueryParams,
        cancellation: Optional[CancellationToken] = None,
    ) -> ListResponse:
        """Collection read: backend hint fetch, then authoritative query processing."""
        # Malformed filters are client errors even if the backend would ignore them.
        parse_filter(params.filter)
        cancellation = cancellation or CancellationToken.none()

        cancellation.raise_if_cancelled("backend fetch")
        candidates = self._call(self.plugin.get_resources, resource_type, params, cancellation)
        cancellation.raise_if_cancelled("query processing")

        return self.query_processor.process(self._decorate_all(candidates, resource_type), params)

    def search(
        self,
        params: QueryParams,
        resource_types: Optional[Iterable[str]] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> ListResponse:
        """POST ``.search`` across one or more resource types."""
        parse_filter(params.filter)
        cancellation = cancellation or CancellationToken.none()

        candidates: list[dict] = []
        for resource_type in resource_types or RESOURCE_TYPES:
            cancellation.raise_if_cancelled("backend fetch")
            fetched = self._call(self.plugin.get_resources, resource_type, params, cancellation)
            candidates.extend(self._decorate_all(fetched, resource_type))
        cancellation.raise_if_cancelled("query processing")

        return self.query_processor.process(candidates, params)

    def get_resource(
        self,
        resource_type: str,
        resource_id: str,
        attributes: Iterable[str] = (),
        excluded_attributes: Iterable[str] = (),
        conditions: ConditionalHeaders = NO_CONDITIONS,
        cancellation: Optional[CancellationToken] = None,
    ) -> Union[dict, NotModified]:
        """Single read with projection; returns NotModified when If-None-Match matches."""
        selector = AttributeSelector(attributes, excluded_attributes)
        cancellation = cancellation or CancellationToken.none()

        cancellation.raise_if_cancelled("backend fetch")
        resource = self._call(self.plugin.get_resource, resource_type, resource_id, tuple(attributes))
        cancellation.raise_if_cancelled("response processing")

        not_modified = self.versions.check_preconditions(resource, conditions, is_read=True)
        if not_modified is not None:
            return not_modified
        return selector.apply(self._decorate(resource, resource_type))

    # ─────────────────────────────────────────────────────────────────────────
    # Mutations
    # ─────────────────────────────────────────────────────────────────────────

    def create_resource(
        self,
        resource_type: str,
        payload: Any,
        cancellation: Optional[CancellationToken] = None,
    ) -> dict:
        validate_resource(resource_type, payload)
        resource = ScimTransformer.normalize_inbound(resource_type, payload)
        cancellation = cancellation or CancellationToken.none()

        cancellation.raise_if_cancelled("backend create")
        created = self._call(self.plugin.create_resource, resource_type, resource)
        return self._decorate(created, resource_type)

    def patch_resource(
        self,
        resource_type: str,
        resource_id: str,
        patch: Union[PatchRequest, dict],
        conditions: ConditionalHeaders = NO_CONDITIONS,
        cancellation: Optional[CancellationToken] = None,
    ) -> dict:
        if not isinstance(patch, PatchRequest):
            patch = PatchRequest.from_dict(patch, self.max_patch_operations)
        expected = self._guard(resource_type, resource_id, conditions, cancellation)

        patched = self._call(self.plugin.modify_resource, resource_type, resource_id, patch, expected)
        return self._decorate(patched, resource_type)

    def replace_resource(
        self,
        resource_type: str,
        resource_id: str,
        payload: Any,
        conditions: ConditionalHeaders = NO_CONDITIONS,
        cancellation: Optional[CancellationToken] = None,
    ) -> dict:
        validate_resource(resource_type, payload)
        resource = ScimTransformer.normalize_inbound(resource_type, payload)
        expected = self._guard(resource_type, resource_id, conditions, cancellation)

        replaced = self._call(self.plugin.replace_resource, resource_type, resource_id, resource, expected)
        return self._decorate(replaced, resource_type)

    def delete_resource(
        self,
        resource_type: str,
        resource_id: str,
        conditions: ConditionalHeaders = NO_CONDITIONS,
        cancellation: Optional[CancellationToken] = None,
    ) -> None:
        if not conditions.is_empty:
            self._guard(resource_type, resource_id, conditions, cancellation)
        else:
            (cancellation or CancellationToken.none()).raise_if_cancelled("backend delete")
        self._call(self.plugin.delete_resource, resource_type, resource_id)

    # ─────────────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────────────

    def _guard(
        self,
        resource_type: str,
        resource_id: str,
        conditions: ConditionalHeaders,
        cancellation: Optional[CancellationToken],
    ) -> str:
        """Check preconditions against the current resource; return its version for CAS."""
        cancellation = cancellation or CancellationToken.none()
        cancellation.raise_if_cancelled("backend fetch")
        current = self._call(self.plugin.get_resource, resource_type, resource_id, ())
        self.versions.check_preconditions(current, conditions, is_read=False)
        cancellation.raise_if_cancelled("backend write")
        return self.versions.current_version(current)

    def _call(self, operation: Callable[..., T], *args: Any) -> T:
        """Invoke the plugin; non-SCIM failures become a sanitized InternalError."""
        try:
            return operation(*args)
        except ScimError:
            raise
        except Exception as exc:
            logger.error(
                f"Plugin '{self.plugin.name}' failed in {getattr(operation, '__name__', operation)}: {exc}",
                exc_info=True,
            )
            raise InternalError() from exc

    def _decorate_all(self, resources: Iterable[dict], resource_type: str) -> list[dict]:
        return [self._decorate(resource, resource_type) for resource in resources]

    def _decorate(self, resource: dict, resource_type: str) -> dict:
        """Outbound copy with ``meta.location``, ``meta.resourceType`` and a weak-ETag ``meta.version``."""
        outbound = copy.deepcopy(resource)
        token = self.versions.current_version(outbound)
        ScimTransformer.with_location(outbound, resource_type, self.base_url)
        outbound["meta"]["version"] = self.versions.as_weak_etag(token)
        return outbound
