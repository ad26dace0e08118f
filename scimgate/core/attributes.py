"""Attribute path parsing and resolution against generic resource trees.

Paths follow RFC 7644 Section 3.10::

    userName
    name.familyName
    emails[type eq "work"].value
    urn:ietf:params:scim:schemas:extension:enterprise:2.0:User:manager.value

Resources are plain ``dict``/``list``/scalar trees. Every segment is matched
case-insensitively against the keys of the current node. The same parsed
``AttributePath`` drives filter evaluation, sorting, projection and PATCH.
"""
from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Any, Optional

from scimgate.core.errors import InvalidFilterError, InvalidPathError
from scimgate.core.filter import FilterNode, parse_filter

USER_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:User"
GROUP_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:Group"
ENTERPRISE_USER_SCHEMA = "urn:ietf:params:scim:schemas:extension:enterprise:2.0:User"

CORE_SCHEMAS = frozenset({USER_SCHEMA.lower(), GROUP_SCHEMA.lower()})

_NAME_RE = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$\-]*$")


@dataclass(frozen=True)
class PathSegment:
    """One dotted step, optionally narrowed by a ``[filter]`` value selector."""
    name: str
    value_filter: Optional[FilterNode] = None


@dataclass(frozen=True)
class AttributePath:
    raw: str
    segments: tuple[PathSegment, ...]
    schema: Optional[str] = None

    @property
    def has_filter(self) -> bool:
        return any(segment.value_filter is not None for segment in self.segments)

    @property
    def last(self) -> PathSegment:
        return self.segments[-1]

    def parent(self) -> Optional["AttributePath"]:
        if len(self.segments) < 2:
            return None
        return AttributePath(self.raw, self.segments[:-1], self.schema)


# ─────────────────────────────────────────────────────────────────────────────
# Parsing
# ─────────────────────────────────────────────────────────────────────────────

def _split_outside_brackets(text: str, separator: str) -> list[str]:
    parts: list[str] = []
    depth = 0
    in_string = False
    start = 0
    index = 0
    while index < len(text):
        char = text[index]
        if in_string:
            if char == "\\":
                index += 1
            elif char == '"':
                in_string = False
        elif char == '"' and depth:
            in_string = True
        elif char == "[":
            depth += 1
        elif char == "]":
            depth -= 1
        elif char == separator and depth == 0:
            parts.append(text[start:index])
            start = index + 1
        index += 1
    if depth or in_string:
        raise InvalidPathError(f"Unbalanced '[' in attribute path '{text}'")
    parts.append(text[start:])
    return parts


def _parse_segment(text: str, raw: str) -> PathSegment:
    bracket = text.find("[")
    if bracket == -1:
        if not _NAME_RE.match(text):
            raise InvalidPathError(f"Invalid attribute path '{raw}'")
        return PathSegment(text)

    name = text[:bracket]
    if not _NAME_RE.match(name) or not text.endswith("]"):
        raise InvalidPathError(f"Invalid attribute path '{raw}'")
    filter_text = text[bracket + 1:-1]
    try:
        node = parse_filter(filter_text)
    except InvalidFilterError as exc:
        raise InvalidPathError(f"Invalid value filter in path '{raw}': {exc.detail}") from exc
    if node is None:
        raise InvalidPathError(f"Empty value filter in path '{raw}'")
    return PathSegment(name, node)


def parse_path(raw: str) -> AttributePath:
    """Parse an attribute path.

    Args:
        raw: Path text, optionally prefixed by a schema URN

    Returns:
        Parsed, immutable AttributePath

    Raises:
        InvalidPathError: If the path or an embedded value filter is malformed
    """
    text = (raw or "").strip()
    if not text:
        raise InvalidPathError("Attribute path is empty")

    schema = None
    if text.lower().startswith("urn:"):
        last_colon = _last_top_level_colon(text)
        schema, text = text[:last_colon], text[last_colon + 1:]
        if not text:
            raise InvalidPathError(f"Invalid attribute path '{raw}'")

    segments = tuple(_parse_segment(part, raw) for part in _split_outside_brackets(text, "."))
    return AttributePath(raw.strip(), segments, schema)


def _last_top_level_colon(text: str) -> int:
    last = -1
    depth = 0
    for index, char in enumerate(text):
        if char == "[":
            depth += 1
        elif char == "]":
            depth -= 1
        elif char == ":" and depth == 0:
            last = index
    return last


# ─────────────────────────────────────────────────────────────────────────────
# Resolution
# ─────────────────────────────────────────────────────────────────────────────

def find_key(node: dict, name: str) -> Optional[str]:
    """Return the actual key in ``node`` matching ``name`` case-insensitively."""
    if name in node:
        return name
    folded = name.casefold()
    for key in node:
        if isinstance(key, str) and key.casefold() == folded:
            return key
    return None


def locate_root(resource: dict, path: AttributePath, create: bool = False) -> tuple[Optional[dict], tuple[PathSegment, ...]]:
    """Find the container that the path's first segment is relative to.

    Core-schema prefixes resolve to the resource itself. An extension URN
    resolves to the sub-object stored under that URN; when the full
    ``schema:attribute`` text is itself a declared extension URN, the whole
    extension object is addressed. With ``create=True`` a missing extension
    container is added (and declared in ``schemas``).
    """
    if path.schema is None or path.schema.lower() in CORE_SCHEMAS:
        return resource, path.segments

    first = path.segments[0]
    whole = f"{path.schema}:{first.name}"
    declared = [s for s in resource.get("schemas") or [] if isinstance(s, str)]
    if find_key(resource, whole) is not None or any(s.lower() == whole.lower() for s in declared):
        return resource, (PathSegment(whole, first.value_filter),) + path.segments[1:]

    key = find_key(resource, path.schema)
    if key is not None:
        container = resource[key]
        if not isinstance(container, dict):
            raise InvalidPathError(f"Extension '{path.schema}' is not a complex attribute")
        return container, path.segments

    if not create:
        return None, path.segments

    container: dict = {}
    resource[path.schema] = container
    if not any(s.lower() == path.schema.lower() for s in declared):
        resource["schemas"] = declared + [path.schema]
    return container, path.segments


def _matches(node: FilterNode, element: Any) -> bool:
    from scimgate.core.evaluator import evaluate

    return isinstance(element, dict) and evaluate(node, element)


def resolve(resource: dict, path: AttributePath) -> list[Any]:
    """Resolve a path for reading.

    Multi-valued attributes are flattened, so ``emails.value`` yields every
    e-mail address. Missing attributes yield an empty list.

    Raises:
        InvalidPathError: If an intermediate attribute is present but not complex
    """
    root, segments = locate_root(resource, path)
    if root is None:
        return []

    current: list[Any] = [root]
    for position, segment in enumerate(segments):
        found: list[Any] = []
        for node in current:
            if not isinstance(node, dict):
                name = segments[position - 1].name if position else path.raw
                raise InvalidPathError(f"Attribute '{name}' in path '{path.raw}' is not complex")
            key = find_key(node, segment.name)
            if key is None or node[key] is None:
                continue
            value = node[key]
            items = value if isinstance(value, list) else [value]
            if segment.value_filter is not None:
                items = [item for item in items if _matches(segment.value_filter, item)]
            found.extend(item for item in items if item is not None)
        current = found
    return current


def sort_value(resource: dict, path: AttributePath) -> Any:
    """Value used to order resources by ``path``.

    For multi-valued attributes the primary element wins, otherwise the
    first; complex elements are represented by their ``value`` sub-attribute.
    Returns None when absent.
    """
    parent = path.parent()
    if parent is not None and path.last.value_filter is None:
        containers = [c for c in resolve(resource, parent) if isinstance(c, dict)]
        ordered = [c for c in containers if c.get("primary") is True] + containers
        for container in ordered:
            key = find_key(container, path.last.name)
            if key is not None and container[key] is not None:
                return _scalar(container[key])
        return None

    values = resolve(resource, path)
    if not values:
        return None
    primary = [v for v in values if isinstance(v, dict) and v.get("primary") is True]
    return _scalar((primary or values)[0])


def _scalar(value: Any) -> Any:
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        key = find_key(value, "value")
        return value[key] if key is not None else None
    return value
