"""List query processing: filter → sort → paginate → project.

The processor is authoritative: whatever a backend returns (pre-filtered,
partially filtered or not filtered at all) is re-filtered, re-sorted and
paginated here, so results never depend on backend fidelity.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from scimgate.core.attributes import parse_path, sort_value
from scimgate.core.errors import InvalidSyntaxError, InvalidValueError
from scimgate.core.evaluator import evaluate
from scimgate.core.filter import parse_filter
from scimgate.core.projection import AttributeSelector

LIST_RESPONSE_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:ListResponse"
SEARCH_REQUEST_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:SearchRequest"

DEFAULT_COUNT = 100
MAX_COUNT = 1000
SORT_ORDERS = ("ascending", "descending")

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Query parameters
# ─────────────────────────────────────────────────────────────────────────────

def _split_attributes(raw: Any) -> tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str):
        items = raw.split(",")
    elif isinstance(raw, list):
        items = []
        for item in raw:
            if not isinstance(item, str):
                raise InvalidValueError("Attribute names must be strings")
            items.extend(item.split(","))
    else:
        raise InvalidValueError("Attribute lists must be strings or arrays of strings")
    return tuple(item.strip() for item in items if item.strip())


def _parse_int(name: str, raw: Any) -> Optional[int]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        raise InvalidValueError(f"{name} must be an integer")
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise InvalidValueError(f"{name} must be an integer, got '{raw}'") from None


@dataclass(frozen=True)
class QueryParams:
    """Parsed list/search parameters.

    ``count`` of None means "use the processor default"; ``count <= 0`` means
    no client limit (the processor maximum still applies). ``start_index`` values below 1 are treated as 1.
    """
    filter: Optional[str] = None
    sort_by: Optional[str] = None
    sort_order: str = "ascending"
    start_index: int = 1
    count: Optional[int] = None
    attributes: tuple[str, ...] = field(default_factory=tuple)
    excluded_attributes: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if self.sort_order not in SORT_ORDERS:
            raise InvalidValueError(f"sortOrder must be 'ascending' or 'descending', got '{self.sort_order}'")
        if self.attributes and self.excluded_attributes:
            raise InvalidValueError("attributes and excludedAttributes are mutually exclusive")

    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> "QueryParams":
        """Build from URL query parameters (``filter``, ``sortBy``, ``startIndex``, ...).

        Raises:
            InvalidValueError: For non-integer paging values, an unknown sortOrder,
                or both attributes and excludedAttributes
        """
        sort_order = (args.get("sortOrder") or "ascending").strip().lower()
        start_index = _parse_int("startIndex", args.get("startIndex"))
        return cls(
            filter=args.get("filter") or None,
            sort_by=(args.get("sortBy") or "").strip() or None,
            sort_order=sort_order,
            start_index=start_index if start_index is not None else 1,
            count=_parse_int("count", args.get("count")),
            attributes=_split_attributes(args.get("attributes")),
            excluded_attributes=_split_attributes(args.get("excludedAttributes")),
        )

    @classmethod
    def from_search_request(cls, body: Any) -> "QueryParams":
        """Build from a POST ``.search`` body (SearchRequest message)."""
        if not isinstance(body, dict):
            raise InvalidSyntaxError("Search request body must be a JSON object")
        schemas = body.get("schemas") or []
        if not isinstance(schemas, list) or SEARCH_REQUEST_SCHEMA not in schemas:
            raise InvalidValueError(f"Search request must declare schema {SEARCH_REQUEST_SCHEMA}")

        filter_text = body.get("filter")
        if filter_text is not None and not isinstance(filter_text, str):
            raise InvalidValueError("filter must be a string")
        sort_order = body.get("sortOrder") or "ascending"
        if not isinstance(sort_order, str):
            raise InvalidValueError("sortOrder must be a string")
        start_index = _parse_int("startIndex", body.get("startIndex"))
        return cls(
            filter=filter_text or None,
            sort_by=body.get("sortBy") or None,
            sort_order=sort_order.lower(),
            start_index=start_index if start_index is not None else 1,
            count=_parse_int("count", body.get("count")),
            attributes=_split_attributes(body.get("attributes")),
            excluded_attributes=_split_attributes(body.get("excludedAttributes")),
        )


@dataclass
class ListResponse:
    total_results: int
    start_index: int
    items_per_page: int
    resources: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "schemas": [LIST_RESPONSE_SCHEMA],
            "totalResults": self.total_results,
            "startIndex": self.start_index,
            "itemsPerPage": self.items_per_page,
            "Resources": self.resources,
        }


# ─────────────────────────────────────────────────────────────────────────────
# Processor
# ─────────────────────────────────────────────────────────────────────────────

class QueryProcessor:
    """Stateless list-query pipeline with configurable page-size limits."""

    def __init__(self, max_count: int = MAX_COUNT, default_count: int = DEFAULT_COUNT):
        self.max_count = max_count
        self.default_count = default_count

    def effective_count(self, count: Optional[int]) -> int:
        """Page size actually used; values <= 0 mean "as many as allowed"."""
        if count is None:
            count = self.default_count
        if count <= 0 or count > self.max_count:
            return self.max_count
        return count

    def process(self, resources: Iterable[dict], params: QueryParams) -> ListResponse:
        """Run the full pipeline over a candidate set.

        Raises:
            InvalidFilterError: Malformed non-empty filter
            InvalidValueError: attributes and excludedAttributes both set
            InvalidPathError: Malformed sortBy or projection path
        """
        selector = AttributeSelector(params.attributes, params.excluded_attributes)

        matched = self.filter(resources, params.filter)
        ordered = self.sort(matched, params.sort_by, params.sort_order)
        page = self.paginate(ordered, params.start_index, params.count)
        projected = page if selector.is_identity else [selector.apply(r) for r in page]

        logger.debug(
            f"Query processed | filter={params.filter!r} | total={len(matched)} | returned={len(projected)}"
        )
        return ListResponse(
            total_results=len(matched),
            start_index=max(params.start_index, 1),
            items_per_page=len(projected),
            resources=projected,
        )

    def filter(self, resources: Iterable[dict], filter_text: Optional[str]) -> list[dict]:
        node = parse_filter(filter_text)
        if node is None:
            return list(resources)
        return [resource for resource in resources if evaluate(node, resource)]

    def sort(self, resources: list[dict], sort_by: Optional[str], sort_order: str = "ascending") -> list[dict]:
        """Stable sort; resources lacking the key always come last."""
        if not sort_by:
            return sorted(resources, key=_creation_key)

        path = parse_path(sort_by)
        keyed = [(_rank(sort_value(resource, path)), resource) for resource in resources]
        present = [item for item in keyed if item[0] is not None]
        absent = [resource for rank, resource in keyed if rank is None]
        present.sort(key=lambda item: item[0], reverse=(sort_order == "descending"))
        return [resource for _, resource in present] + absent

    def paginate(self, resources: list[dict], start_index: int, count: Optional[int]) -> list[dict]:
        skip = max(start_index - 1, 0)
        return resources[skip:skip + self.effective_count(count)]


def _creation_key(resource: dict) -> str:
    meta = resource.get("meta")
    created = meta.get("created") if isinstance(meta, dict) else None
    # Missing timestamps sort first; the sort is stable so insertion order holds among them.
    return created if isinstance(created, str) else ""


def _rank(value: Any) -> Optional[tuple]:
    """Map a sort value onto a totally ordered key: booleans < numbers < strings."""
    if value is None:
        return None
    if isinstance(value, bool):
        return (0, int(value), "")
    if isinstance(value, (int, float)):
        return (1, value, "")
    if isinstance(value, str):
        return (2, 0, value.casefold())
    return None
