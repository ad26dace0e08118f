"""Evaluate parsed filter trees against a single resource.

``evaluate`` is total: any tree produced by the parser yields True or False
for any resource. Paths that cannot be resolved and operator/type mismatches
are simply non-matches.
"""
from __future__ import annotations
import logging
from datetime import datetime
from typing import Any, Optional, assert_never

from scimgate.core.attributes import parse_path, resolve
from scimgate.core.errors import InvalidPathError
from scimgate.core.filter import AttributeExpression, FilterNode, GroupExpression, LogicalExpression

logger = logging.getLogger(__name__)


def evaluate(node: FilterNode, resource: dict) -> bool:
    """Return True when ``resource`` satisfies ``node``."""
    if isinstance(node, AttributeExpression):
        return _evaluate_attribute(node, resource)
    if isinstance(node, LogicalExpression):
        if node.operator == "not":
            return not evaluate(node.left, resource)
        if node.right is None:
            return False
        if node.operator == "and":
            return evaluate(node.left, resource) and evaluate(node.right, resource)
        if node.operator == "or":
            return evaluate(node.left, resource) or evaluate(node.right, resource)
        return False
    if isinstance(node, GroupExpression):
        return evaluate(node.inner, resource)
    assert_never(node)


def _evaluate_attribute(node: AttributeExpression, resource: dict) -> bool:
    try:
        values = resolve(resource, parse_path(node.path))
    except InvalidPathError as exc:
        logger.debug(f"Filter path '{node.path}' did not resolve: {exc.detail}")
        return False

    operator = node.operator
    if operator == "pr":
        return any(_is_present(value) for value in values)

    if node.value is None and operator in ("eq", "ne"):
        present = any(_is_present(value) for value in values)
        return present if operator == "ne" else not present

    if operator == "ne":
        return not any(_compare("eq", value, node.value) for value in values)
    return any(_compare(operator, value, node.value) for value in values)


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (str, list, dict)):
        return len(value) > 0
    return True


def _element_value(value: Any) -> Any:
    """Complex multi-valued elements compare through their ``value`` sub-attribute."""
    if isinstance(value, dict):
        for key in value:
            if key.lower() == "value":
                return value[key]
        return None
    return value


# ─────────────────────────────────────────────────────────────────────────────
# Comparisons
# ─────────────────────────────────────────────────────────────────────────────

def _compare(operator: str, actual: Any, expected: Any) -> bool:
    actual = _element_value(actual)
    if actual is None:
        return False

    if operator == "eq":
        return _equals(actual, expected)
    if operator in ("co", "sw", "ew"):
        if not isinstance(actual, str) or not isinstance(expected, str):
            return False
        haystack, needle = actual.casefold(), expected.casefold()
        if operator == "co":
            return needle in haystack
        if operator == "sw":
            return haystack.startswith(needle)
        return haystack.endswith(needle)
    if operator in ("gt", "ge", "lt", "le"):
        return _ordered(operator, actual, expected)
    return False


def _equals(actual: Any, expected: Any) -> bool:
    if isinstance(actual, bool) or isinstance(expected, bool):
        left, right = _as_bool(actual), _as_bool(expected)
        return left is not None and left == right

    left_number, right_number = _as_number(actual), _as_number(expected)
    if isinstance(actual, (int, float)) or isinstance(expected, (int, float)):
        return left_number is not None and left_number == right_number

    if isinstance(actual, str) and isinstance(expected, str):
        if actual.casefold() == expected.casefold():
            return True
        left_time, right_time = _as_datetime(actual), _as_datetime(expected)
        return left_time is not None and left_time == right_time
    return False


def _ordered(operator: str, actual: Any, expected: Any) -> bool:
    if isinstance(actual, bool) or isinstance(expected, bool):
        return False

    left: Any = _as_number(actual)
    right: Any = _as_number(expected)
    if left is None or right is None:
        left, right = _as_datetime(actual), _as_datetime(expected)
        if left is None or right is None:
            return False

    try:
        if operator == "gt":
            return left > right
        if operator == "ge":
            return left >= right
        if operator == "lt":
            return left < right
        return left <= right
    except TypeError:
        # naive vs aware datetimes
        return False


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    return None


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _as_datetime(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or len(value) < 10:
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None
