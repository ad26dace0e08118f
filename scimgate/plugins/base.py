"""Backend plugin contract.

Plugins return complete resources from their backend; the adapter layer
applies every SCIM protocol rule (filtering, sorting, paging, projection,
conditional requests) on top. Plugins must be safe to call from many threads
at once.

Filter pushdown:
    ``get_resources`` receives the client's QueryParams as a hint. A plugin
    may translate ``params.filter`` into its own query language, but only
    conservatively: returning extra resources is fine, dropping a matching
    resource is not. A filter the plugin cannot translate must be ignored
    (return everything), never treated as "matches nothing".

Errors:
    Raise NotFoundError for missing resources, ConflictError for uniqueness
    violations and PreconditionFailedError when ``expected_version`` no
    longer matches. Anything else is reported to clients as a generic 500.
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Optional

from scimgate.core.cancellation import CancellationToken
from scimgate.core.patch import PatchRequest
from scimgate.core.query import QueryParams


class Plugin(ABC):
    """Base class for SCIM backends; ``name`` is the URL prefix (``/<name>/Users``)."""

    name: str = ""

    @abstractmethod
    def get_resources(self, resource_type: str, params: QueryParams, cancellation: Optional[CancellationToken] = None) -> list[dict]:
        """Return candidate resources of ``resource_type`` ("User" or "Group")."""

    @abstractmethod
    def get_resource(self, resource_type: str, resource_id: str, attributes: tuple[str, ...] = ()) -> dict:
        """Return one resource; ``attributes`` is an optional projection hint."""

    @abstractmethod
    def create_resource(self, resource_type: str, resource: dict) -> dict:
        """Store a new resource, assigning ``id`` unless one is supplied, and stamping ``meta``."""

    @abstractmethod
    def modify_resource(
        self,
        resource_type: str,
        resource_id: str,
        patch: PatchRequest,
        expected_version: Optional[str] = None,
    ) -> dict:
        """Apply a PATCH atomically; compare-and-swap on ``expected_version`` when given.

        The patched resource must pass ``validate_resource`` before it is stored.
        """

    @abstractmethod
    def delete_resource(self, resource_type: str, resource_id: str) -> None:
        """Delete a resource."""

    @abstractmethod
    def replace_resource(
        self,
        resource_type: str,
        resource_id: str,
        resource: dict,
        expected_version: Optional[str] = None,
    ) -> dict:
        """Full replace under the same ``id``, keeping ``meta.created``.

        The version check, uniqueness check and write must happen as one
        atomic step; on any error the stored resource is left untouched.
        """
