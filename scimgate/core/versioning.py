"""Resource versions, weak ETags and conditional requests (RFC 7644 Section 3.14).

Versions are opaque tokens compared for equality only. Each mutation gets a
fresh token derived from the resource content mixed with a random nonce, so
two writes of identical content still produce different tokens.

Usage:
    versions = VersionManager()
    versions.stamp(resource, created=True)            # sets meta.version etc.
    etag = versions.as_weak_etag(resource["meta"]["version"])   # W/"3f2a..."
    versions.check_preconditions(resource, ConditionalHeaders(if_match=etag), is_read=False)
"""
from __future__ import annotations
import hashlib
import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from scimgate.core.errors import PreconditionFailedError


@dataclass(frozen=True)
class ConditionalHeaders:
    if_match: Optional[str] = None
    if_none_match: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.if_match and not self.if_none_match


@dataclass(frozen=True)
class NotModified:
    """Read short-circuit: the client's cached copy is current."""
    version: str

    @property
    def etag(self) -> str:
        return VersionManager.as_weak_etag(self.version)


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class VersionManager:
    """Stateless helper; one instance can be shared by every thread."""

    def new_version(self, resource: dict) -> str:
        """Token for a freshly mutated resource (content hash + random nonce)."""
        digest = hashlib.sha256()
        digest.update(self._canonical(resource))
        digest.update(uuid.uuid4().bytes)
        return digest.hexdigest()[:20]

    def content_version(self, resource: dict) -> str:
        """Deterministic token for resources a backend never stamped."""
        return hashlib.sha256(self._canonical(resource)).hexdigest()[:20]

    def current_version(self, resource: dict) -> str:
        meta = resource.get("meta")
        if isinstance(meta, dict) and meta.get("version"):
            return self.parse_etag(str(meta["version"]))
        return self.content_version(resource)

    def stamp(self, resource: dict, created: bool = False) -> dict:
        """Assign a new version and ``lastModified`` (and ``created`` on create), in place."""
        meta = resource.get("meta")
        if not isinstance(meta, dict):
            meta = {}
            resource["meta"] = meta
        previous = meta.get("version")
        now = utc_now()
        if created or not meta.get("created"):
            meta["created"] = now
        meta["lastModified"] = now

        token = self.new_version(resource)
        while previous is not None and token == self.parse_etag(str(previous)):
            token = self.new_version(resource)
        meta["version"] = token
        return resource

    # ── ETag helpers ─────────────────────────────────────────────────────────

    @staticmethod
    def as_weak_etag(token: str) -> str:
        return f'W/"{token}"'

    @staticmethod
    def parse_etag(etag: str) -> str:
        """Strip the ``W/`` prefix and surrounding quotes."""
        value = etag.strip()
        if value[:2].upper() == "W/":
            value = value[2:]
        if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
            value = value[1:-1]
        return value

    def matches(self, header: Optional[str], token: str) -> bool:
        """True if any entity tag in an If-Match / If-None-Match header equals ``token``."""
        if not header:
            return False
        for candidate in header.split(","):
            candidate = candidate.strip()
            if candidate == "*":
                return True
            if candidate and self.parse_etag(candidate) == token:
                return True
        return False

    def check_preconditions(self, resource: dict, headers: ConditionalHeaders, is_read: bool) -> Optional[NotModified]:
        """Evaluate conditional headers against the current resource.

        Returns:
            NotModified for a read whose If-None-Match matches, otherwise None

        Raises:
            PreconditionFailedError: If-Match does not match, or If-None-Match
                matches on a write
        """
        token = self.current_version(resource)
        if headers.if_match and not self.matches(headers.if_match, token):
            raise PreconditionFailedError(
                f"Resource version {self.as_weak_etag(token)} does not match If-Match precondition"
            )
        if headers.if_none_match and self.matches(headers.if_none_match, token):
            if is_read:
                return NotModified(token)
            raise PreconditionFailedError("If-None-Match precondition matched the current version")
        return None

    @staticmethod
    def _canonical(resource: dict) -> bytes:
        content = {k: v for k, v in resource.items() if k != "meta"}
        return json.dumps(content, sort_keys=True, separators=(",", ":"), default=str).encode()
