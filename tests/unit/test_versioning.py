"""Tests for version tokens, weak ETags and conditional requests."""
import pytest

from scimgate.core.errors import PreconditionFailedError
from scimgate.core.versioning import ConditionalHeaders, NotModified, VersionManager


@pytest.fixture
def versions():
    return VersionManager()


@pytest.fixture
def stamped(versions):
    return versions.stamp({"id": "1", "userName": "alice"}, created=True)


class TestTokens:
    def test_thousand_stamps_are_distinct(self, versions):
        resource = {"id": "1", "userName": "alice"}
        tokens = set()
        for _ in range(1000):
            versions.stamp(resource)
            tokens.add(resource["meta"]["version"])
        assert len(tokens) == 1000

    def test_identical_content_still_gets_new_token(self, versions, stamped):
        before = stamped["meta"]["version"]
        versions.stamp(stamped)
        assert stamped["meta"]["version"] != before

    def test_stamp_sets_timestamps(self, versions, stamped):
        created = stamped["meta"]["created"]
        assert created.endswith("Z")
        assert stamped["meta"]["lastModified"] == created

        versions.stamp(stamped)
        assert stamped["meta"]["created"] == created
        assert stamped["meta"]["lastModified"] >= created

    def test_content_version_is_deterministic_and_ignores_meta(self, versions):
        a = {"id": "1", "userName": "alice", "meta": {"created": "x"}}
        b = {"userName": "alice", "id": "1"}
        assert versions.content_version(a) == versions.content_version(b)

    def test_current_version_accepts_stored_etag(self, versions):
        assert versions.current_version({"meta": {"version": 'W/"abc"'}}) == "abc"
        assert versions.current_version({"meta": {"version": "abc"}}) == "abc"


class TestEtags:
    def test_weak_etag_round_trip(self):
        etag = VersionManager.as_weak_etag("abc123")
        assert etag == 'W/"abc123"'
        assert VersionManager.parse_etag(etag) == "abc123"

    @pytest.mark.parametrize(
        "header, expected",
        [
            ('W/"abc"', True),
            ('"abc"', True),
            ("abc", True),
            ('W/"zzz", W/"abc"', True),
            ("*", True),
            ('W/"zzz"', False),
            ("", False),
            (None, False),
        ],
    )
    def test_matches(self, versions, header, expected):
        assert versions.matches(header, "abc") is expected


class TestPreconditions:
    def test_no_headers(self, versions, stamped):
        assert versions.check_preconditions(stamped, ConditionalHeaders(), is_read=True) is None

    def test_if_match_current(self, versions, stamped):
        etag = versions.as_weak_etag(stamped["meta"]["version"])
        assert versions.check_preconditions(stamped, ConditionalHeaders(if_match=etag), is_read=False) is None

    @pytest.mark.critical
    def test_stale_if_match_fails(self, versions, stamped):
        stale = versions.as_weak_etag(stamped["meta"]["version"])
        versions.stamp(stamped)
        with pytest.raises(PreconditionFailedError) as exc_info:
            versions.check_preconditions(stamped, ConditionalHeaders(if_match=stale), is_read=False)
        assert exc_info.value.status == 412

    def test_if_none_match_on_read_is_not_modified(self, versions, stamped):
        etag = versions.as_weak_etag(stamped["meta"]["version"])
        result = versions.check_preconditions(stamped, ConditionalHeaders(if_none_match=etag), is_read=True)
        assert result == NotModified(stamped["meta"]["version"])
        assert result.etag == etag

    def test_if_none_match_on_write_fails(self, versions, stamped):
        with pytest.raises(PreconditionFailedError):
            versions.check_preconditions(stamped, ConditionalHeaders(if_none_match="*"), is_read=False)

    def test_if_none_match_other_version_reads_normally(self, versions, stamped):
        headers = ConditionalHeaders(if_none_match='W/"old"')
        assert versions.check_preconditions(stamped, headers, is_read=True) is None
