"""Attribute projection (``attributes`` / ``excludedAttributes``, RFC 7644 Section 3.9)."""
from __future__ import annotations
from typing import Any, Iterable, Optional

from scimgate.core.attributes import CORE_SCHEMAS, parse_path
from scimgate.core.errors import InvalidPathError, InvalidValueError

ALWAYS_RETURNED = frozenset({"id", "schemas"})

# Leaf marker in a selection tree: the whole attribute is selected.
_WHOLE = None


class AttributeSelector:
    """Keep or drop attributes of resources according to a list of paths.

    Args:
        attributes: Paths to return (``id`` and ``schemas`` are always added)
        excluded_attributes: Paths to drop (``id`` and ``schemas`` are never dropped)

    Raises:
        InvalidValueError: If both lists are non-empty
        InvalidPathError: If a path is malformed or carries a value filter
    """

    def __init__(self, attributes: Optional[Iterable[str]] = None, excluded_attributes: Optional[Iterable[str]] = None):
        included = [a for a in (attributes or []) if a and a.strip()]
        excluded = [a for a in (excluded_attributes or []) if a and a.strip()]
        if included and excluded:
            raise InvalidValueError("attributes and excludedAttributes are mutually exclusive")
        self.include_tree = _build_tree(included) if included else None
        self.exclude_tree = _build_tree(excluded) if excluded else None

    @property
    def is_identity(self) -> bool:
        return self.include_tree is None and self.exclude_tree is None

    def apply(self, resource: dict) -> dict:
        """Return a projected shallow copy of ``resource``."""
        if self.include_tree is not None:
            projected = _include(resource, self.include_tree)
            for key, value in resource.items():
                if key.casefold() in ALWAYS_RETURNED:
                    projected[key] = value
            # keep the original key order
            return {key: projected[key] for key in resource if key in projected}
        if self.exclude_tree is not None:
            return _exclude(resource, self.exclude_tree, top_level=True)
        return dict(resource)


def _build_tree(paths: list[str]) -> dict:
    tree: dict = {}
    for raw in paths:
        path = parse_path(raw)
        if path.has_filter:
            raise InvalidPathError(f"Value filters are not allowed in attribute selection: '{raw}'")

        names = [segment.name for segment in path.segments]
        if path.schema is not None and path.schema.lower() not in CORE_SCHEMAS:
            # Either an attribute inside an extension or the extension object itself.
            _insert(tree, [path.schema] + names)
            _insert(tree, [f"{path.schema}:{names[0]}"] + names[1:])
        else:
            _insert(tree, names)
    return tree


def _insert(tree: dict, names: list[str]) -> None:
    node = tree
    for position, name in enumerate(names):
        key = name.casefold()
        last = position == len(names) - 1
        if key in node and node[key] is _WHOLE:
            return
        if last:
            node[key] = _WHOLE
            return
        node = node.setdefault(key, {})


def _include(node: dict, tree: dict) -> dict:
    result = {}
    for key, value in node.items():
        folded = key.casefold()
        if folded not in tree:
            continue
        subtree = tree[folded]
        if subtree is _WHOLE:
            result[key] = value
            continue
        picked = _include_nested(value, subtree)
        if picked is not None:
            result[key] = picked
    return result


def _include_nested(value: Any, subtree: dict) -> Any:
    if isinstance(value, dict):
        picked = _include(value, subtree)
        return picked or None
    if isinstance(value, list):
        elements = [_include(e, subtree) for e in value if isinstance(e, dict)]
        elements = [e for e in elements if e]
        return elements or None
    return None


def _exclude(node: dict, tree: dict, top_level: bool = False) -> dict:
    result = {}
    for key, value in node.items():
        folded = key.casefold()
        if folded not in tree or (top_level and folded in ALWAYS_RETURNED):
            result[key] = value
            continue
        subtree = tree[folded]
        if subtree is _WHOLE:
            continue
        if isinstance(value, dict):
            result[key] = _exclude(value, subtree)
        elif isinstance(value, list):
            result[key] = [_exclude(e, subtree) if isinstance(e, dict) else e for e in value]
        else:
            result[key] = value
    return result
