"""Tests for filter evaluation against resources."""
import pytest

from scimgate.core.evaluator import evaluate
from scimgate.core.filter import AttributeExpression, LogicalExpression, parse_filter

SIMPLE = {"userName": "John.Doe", "active": True, "age": 30}


def matches(text, resource):
    return evaluate(parse_filter(text), resource)


class TestCorrectnessTable:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ('userName eq "john.doe"', True),
            ('userName eq "JOHN.DOE"', True),
            ("active eq false", False),
            ("age gt 18", True),
            ("age le 18", False),
            ('userName co "doe"', True),
            ("userName pr", True),
            ("missing pr", False),
        ],
    )
    def test_simple_resource(self, text, expected):
        assert matches(text, SIMPLE) is expected

    @pytest.mark.parametrize(
        "text, expected",
        [
            ('userName eq "john.doe" and age gt 18', True),
            ('userName eq "jane" or age gt 18', True),
            ("not (age lt 18)", True),
            ('userName eq "jane" and age gt 18', False),
            ("not (age gt 18) or active eq false", False),
        ],
    )
    def test_logical_combinations(self, text, expected):
        assert matches(text, SIMPLE) is expected


class TestComparisons:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ('USERNAME eq "john.doe"', True),
            ('userName ne "john.doe"', False),
            ('userName sw "JOHN"', True),
            ('userName ew ".DOE"', True),
            ('active co "tr"', False),
            ('age co "3"', False),
            ('age gt "18"', True),
            ('age eq "30"', True),
            ('active eq "true"', True),
            ("userName gt 5", False),
            ("active gt 0", False),
            ("title eq null", True),
            ("userName ne null", True),
            ('title ne "x"', True),
            ('title co "x"', False),
        ],
    )
    def test_operator_semantics(self, text, expected):
        assert matches(text, SIMPLE) is expected

    def test_empty_string_is_not_present(self):
        assert matches("nickName pr", {"nickName": ""}) is False

    def test_empty_list_is_not_present(self):
        assert matches("emails pr", {"emails": []}) is False

    @pytest.mark.parametrize(
        "text, expected",
        [
            ('meta.created gt "2024-01-01T00:00:00Z"', True),
            ('meta.created lt "2024-01-01T00:00:00Z"', False),
            ('meta.created eq "2024-01-23T04:56:22.000Z"', True),
            ('meta.lastModified ge "2024-05-13T04:42:34+00:00"', True),
        ],
    )
    def test_datetime_comparisons(self, user_resource, text, expected):
        assert matches(text, user_resource) is expected


class TestMultiValuedAndComplex:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ('emails.value co "jensen.org"', True),
            ('emails co "jensen.org"', True),
            ('emails[type eq "work"].value ew "example.com"', True),
            ('emails[type eq "home"].value ew "example.com"', False),
            ('emails[type eq "home" and primary eq true]', False),
            ('emails[type eq "work" and primary eq true]', True),
            ('emails.type ne "work"', False),
            ('emails.type eq "other"', False),
            ('name.familyName sw "jen"', True),
            ('urn:ietf:params:scim:schemas:extension:enterprise:2.0:User:employeeNumber eq "701984"', True),
            ('urn:ietf:params:scim:schemas:extension:enterprise:2.0:User:manager.value eq "26118915"', True),
            ('urn:ietf:params:scim:schemas:core:2.0:User:userName eq "BJENSEN"', True),
        ],
    )
    def test_paths(self, user_resource, text, expected):
        assert matches(text, user_resource) is expected

    def test_path_through_scalar_is_a_non_match(self, user_resource):
        assert matches('userName.first eq "b"', user_resource) is False


class TestTotality:
    def test_logical_node_missing_right_operand(self):
        node = LogicalExpression("and", AttributeExpression("userName", "pr"))
        assert evaluate(node, SIMPLE) is False

    def test_unknown_operator_is_false(self):
        assert evaluate(AttributeExpression("userName", "xx", "a"), SIMPLE) is False

    def test_malformed_path_is_false(self):
        assert evaluate(AttributeExpression("1bad", "pr"), SIMPLE) is False

    @pytest.mark.parametrize("value", [{"a": 1}, [1, 2], 3.5, None, True])
    def test_mixed_types_never_raise(self, value):
        resource = {"attr": value}
        for operator in ("eq", "ne", "co", "sw", "ew", "gt", "ge", "lt", "le", "pr"):
            for literal in ("x", 1, True, None):
                assert evaluate(AttributeExpression("attr", operator, literal), resource) in (True, False)
