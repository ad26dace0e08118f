"""SCIM filter expression parser (RFC 7644 Section 3.4.2.2).

Turns a filter string such as::

    userName sw "j" and (emails[type eq "work"].value co "@example.com" or not (active eq false))

into an immutable tree of three node types:

    AttributeExpression  - ``path operator [literal]``
    LogicalExpression    - ``and`` / ``or`` / ``not``
    GroupExpression      - a parenthesised sub-expression

Grammar (keywords and operators are case-insensitive)::

    expression := orExpr
    orExpr     := andExpr ("or" andExpr)*
    andExpr    := notExpr ("and" notExpr)*
    notExpr    := ["not"] primary
    primary    := "(" expression ")" | attrExpr
    attrExpr   := attributePath operator [literal]

Usage:
    node = parse_filter('userName eq "bjensen"')
    evaluate(node, resource)   # see scimgate.core.evaluator
"""
from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Any, Optional, Union

from scimgate.core.errors import InvalidFilterError

# Parser limits; exceeding either raises InvalidFilterError.
MAX_NESTING_DEPTH = 32
MAX_EXPRESSIONS = 200

COMPARISON_OPERATORS = frozenset({"eq", "ne", "co", "sw", "ew", "pr", "gt", "ge", "lt", "le"})
LOGICAL_OPERATORS = frozenset({"and", "or", "not"})

# Characters allowed in an attribute path outside of a value-selector bracket.
_PATH_CHARS = frozenset("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_-.:$")
_WHITESPACE = frozenset(" \t\r\n")
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?")
_ESCAPES = {
    '"': '"',
    "\\": "\\",
    "/": "/",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
}


# ─────────────────────────────────────────────────────────────────────────────
# AST
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class AttributeExpression:
    """``path operator value``; ``value`` is None for ``pr`` and for the ``null`` literal."""
    path: str
    operator: str
    value: Any = None


@dataclass(frozen=True)
class LogicalExpression:
    """``left and right``, ``left or right`` or ``not left`` (right is None)."""
    operator: str
    left: "FilterNode"
    right: Optional["FilterNode"] = None


@dataclass(frozen=True)
class GroupExpression:
    inner: "FilterNode"


FilterNode = Union[AttributeExpression, LogicalExpression, GroupExpression]


# ─────────────────────────────────────────────────────────────────────────────
# Parser
# ─────────────────────────────────────────────────────────────────────────────

class FilterParser:
    """Recursive-descent parser over the raw filter string.

    Every syntax problem raises ``InvalidFilterError`` carrying the UTF-8 byte
    offset at which parsing stopped.
    """

    def __init__(self, text: str):
        self.text = text
        self.pos = 0
        self.depth = 0
        self.expressions = 0

    def parse(self) -> Optional[FilterNode]:
        """Parse the whole input. Returns None for an empty/blank filter."""
        if not self.text.strip():
            return None

        node = self._parse_or()
        self._skip_whitespace()
        if self.pos < len(self.text):
            if self.text[self.pos] == ")":
                raise self._error("Unmatched ')'", self.pos)
            raise self._error(f"Unexpected input {self.text[self.pos:]!r}", self.pos)
        return node

    # ── grammar rules ────────────────────────────────────────────────────────

    def _parse_or(self) -> FilterNode:
        left = self._parse_and()
        while True:
            self._skip_whitespace()
            if not self._match_keyword("or"):
                return left
            self.pos += 2
            right = self._parse_and()
            left = LogicalExpression("or", left, right)

    def _parse_and(self) -> FilterNode:
        left = self._parse_not()
        while True:
            self._skip_whitespace()
            if not self._match_keyword("and"):
                return left
            self.pos += 3
            right = self._parse_not()
            left = LogicalExpression("and", left, right)

    def _parse_not(self) -> FilterNode:
        self._skip_whitespace()
        if self._match_keyword("not"):
            self.pos += 3
            return LogicalExpression("not", self._parse_primary())
        return self._parse_primary()

    def _parse_primary(self) -> FilterNode:
        self._skip_whitespace()
        if self.pos >= len(self.text):
            raise self._error("Unexpected end of filter", self.pos)

        char = self.text[self.pos]
        if char == "(":
            open_pos = self.pos
            if self.depth >= MAX_NESTING_DEPTH:
                raise self._error("Filter nesting too deep", open_pos)
            self.pos += 1
            self.depth += 1
            inner = self._parse_or()
            self.depth -= 1
            self._skip_whitespace()
            if self._peek() != ")":
                raise self._error("Unmatched '('", open_pos)
            self.pos += 1
            return GroupExpression(inner)
        if char == ")":
            raise self._error("Unexpected ')'", self.pos)
        return self._parse_attribute_expression()

    def _parse_attribute_expression(self) -> AttributeExpression:
        path_pos = self.pos
        self.expressions += 1
        if self.expressions > MAX_EXPRESSIONS:
            raise self._error(f"Filter has more than {MAX_EXPRESSIONS} expressions", path_pos)
        path = self._read_path()
        if not path:
            raise self._error(f"Expected attribute path, found {self.text[path_pos]!r}", path_pos)

        self._skip_whitespace()
        # A bare value path (``emails[type eq "work"]``) selects resources with a matching element.
        if path.endswith("]") and self._at_expression_end():
            return AttributeExpression(path, "pr")

        if self.pos >= len(self.text):
            raise self._error(f"Expected operator after {path!r}", self.pos)

        op_pos = self.pos
        word = self._read_word()
        operator = word.lower()
        if operator not in COMPARISON_OPERATORS:
            raise self._error(f"Unknown operator {word or self.text[op_pos]!r}", op_pos)

        if operator == "pr":
            return AttributeExpression(path, "pr")

        value = self._parse_literal()
        return AttributeExpression(path, operator, value)

    # ── lexical helpers ──────────────────────────────────────────────────────

    def _read_path(self) -> str:
        start = self.pos
        while self.pos < len(self.text):
            char = self.text[self.pos]
            if char in _PATH_CHARS:
                self.pos += 1
            elif char == "[" and self.pos > start:
                self._skip_bracket()
            else:
                break
        return self.text[start:self.pos]

    def _skip_bracket(self) -> None:
        """Advance past a ``[...]`` value selector, honouring quoted strings."""
        open_pos = self.pos
        self.pos += 1
        in_string = False
        while self.pos < len(self.text):
            char = self.text[self.pos]
            if in_string:
                if char == "\\":
                    self.pos += 1
                elif char == '"':
                    in_string = False
            elif char == '"':
                in_string = True
            elif char == "[":
                raise self._error("Nested '[' in value path", self.pos)
            elif char == "]":
                self.pos += 1
                return
            self.pos += 1
        if in_string:
            raise self._error("Unterminated string in value path", open_pos)
        raise self._error("Unmatched '['", open_pos)

    def _read_word(self) -> str:
        start = self.pos
        while self.pos < len(self.text) and self.text[self.pos].isalpha():
            self.pos += 1
        return self.text[start:self.pos]

    def _parse_literal(self) -> Any:
        self._skip_whitespace()
        if self.pos >= len(self.text):
            raise self._error("Expected value, found end of filter", self.pos)

        if self._peek() == '"':
            return self._parse_string()
        if self._match_keyword("true"):
            self.pos += 4
            return True
        if self._match_keyword("false"):
            self.pos += 5
            return False
        if self._match_keyword("null"):
            self.pos += 4
            return None

        match = _NUMBER_RE.match(self.text, self.pos)
        if match and not self._is_word_char(match.end()):
            self.pos = match.end()
            literal = match.group(0)
            if any(c in literal for c in ".eE"):
                return float(literal)
            return int(literal)

        raise self._error(f"Invalid value {self.text[self.pos:].split(' ', 1)[0]!r}", self.pos)

    def _parse_string(self) -> str:
        open_pos = self.pos
        self.pos += 1
        chars: list[str] = []
        while True:
            if self.pos >= len(self.text):
                raise self._error("Unterminated string", open_pos)
            char = self.text[self.pos]
            if char == '"':
                self.pos += 1
                return "".join(chars)
            if char != "\\":
                chars.append(char)
                self.pos += 1
                continue

            if self.pos + 1 >= len(self.text):
                raise self._error("Unterminated string", open_pos)
            escape = self.text[self.pos + 1]
            if escape in _ESCAPES:
                chars.append(_ESCAPES[escape])
                self.pos += 2
            elif escape == "u":
                digits = self.text[self.pos + 2:self.pos + 6]
                if len(digits) != 4 or any(c not in "0123456789abcdefABCDEF" for c in digits):
                    raise self._error("Invalid unicode escape", self.pos)
                chars.append(chr(int(digits, 16)))
                self.pos += 6
            else:
                raise self._error(f"Invalid escape sequence '\\{escape}'", self.pos)

    def _at_expression_end(self) -> bool:
        if self.pos >= len(self.text) or self.text[self.pos] == ")":
            return True
        return self._match_keyword("and") or self._match_keyword("or")

    def _match_keyword(self, keyword: str) -> bool:
        end = self.pos + len(keyword)
        if self.text[self.pos:end].lower() != keyword:
            return False
        return not self._is_word_char(end)

    def _is_word_char(self, index: int) -> bool:
        return index < len(self.text) and (self.text[index] in _PATH_CHARS or self.text[index] == "[")

    def _skip_whitespace(self) -> None:
        while self.pos < len(self.text) and self.text[self.pos] in _WHITESPACE:
            self.pos += 1

    def _peek(self) -> str:
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def _error(self, message: str, position: int) -> InvalidFilterError:
        """Build an InvalidFilterError whose position is a UTF-8 byte offset."""
        return InvalidFilterError(message, len(self.text[:position].encode("utf-8")))


def parse_filter(text: Optional[str]) -> Optional[FilterNode]:
    """Parse a filter string; None or blank input yields None.

    Raises:
        InvalidFilterError: On any syntax error (with the offending offset)
    """
    if text is None:
        return None
    return FilterParser(text).parse()


def equality_constraints(node: Optional[FilterNode]) -> dict[str, Any]:
    """Collect ``attr eq value`` terms joined only by ``and``.

    Used to seed a new multi-valued element from a value selector such as
    ``emails[type eq "work"]``. ``or``/``not`` branches contribute nothing.
    """
    if isinstance(node, AttributeExpression):
        if node.operator == "eq" and node.value is not None and "[" not in node.path:
            return {node.path: node.value}
        return {}
    if isinstance(node, GroupExpression):
        return equality_constraints(node.inner)
    if isinstance(node, LogicalExpression) and node.operator == "and":
        constraints = equality_constraints(node.left)
        constraints.update(equality_constraints(node.right))
        return constraints
    return {}
