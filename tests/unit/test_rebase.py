"""Tests for replica path rebasing."""

import pytest

from replication.lib.rebase import is_rebased_under, rebase

LOCATIONS = [
    "hdfs://primary:8020/warehouse/sales.db/t1",
    "hdfs://primary:8020/warehouse/sales.db/t2/country=india",
    "file:///tmp/warehouse/t3",
    "/custom/partition/location",
    "s3a://bucket/external/t4",
    "hdfs://primary:8020/warehouse/odd.db/t5#x?y=1",
]


class TestRebase:
    """Tests for rebase()."""

    @pytest.mark.parametrize("location", LOCATIONS)
    def test_identity_without_base(self, location):
        assert rebase(location, None) == location
        assert rebase(location, "") == location

    def test_replaces_authority_and_prefixes_path(self):
        assert (
            rebase(
                "hdfs://primary:8020/warehouse/sales.db/t2/country=us",
                "hdfs://replica:8020/replica_external_base",
            )
            == "hdfs://replica:8020/replica_external_base/warehouse/sales.db/t2/country=us"
        )

    def test_base_trailing_slash(self):
        assert (
            rebase("hdfs://p/warehouse/t1", "hdfs://r/replica_external_base/")
            == "hdfs://r/replica_external_base/warehouse/t1"
        )

    def test_bare_path_base(self):
        assert rebase("hdfs://p/warehouse/t1", "/replica_external_base") == "/replica_external_base/warehouse/t1"

    def test_file_scheme(self):
        assert (
            rebase("file:///tmp/w/t1", "file:///tmp/replica_external_base")
            == "file:///tmp/replica_external_base/tmp/w/t1"
        )

    @pytest.mark.parametrize(
        "location, expected_suffix",
        [
            ("hdfs://nn:8020/data/a#b/c?d", "/data/a#b/c?d"),
            ("hdfs://nn:8020/data/p=?x/q", "/data/p=?x/q"),
            ("file:///tmp/w/t#1", "/tmp/w/t#1"),
        ],
    )
    def test_query_and_fragment_characters_are_path(self, location, expected_suffix):
        base = "hdfs://replica:8020/base"
        rebased = rebase(location, base)
        assert rebased == f"{base}{expected_suffix}"
        assert is_rebased_under(rebased, base)

    @pytest.mark.parametrize("location", LOCATIONS)
    def test_containment(self, location):
        base = "hdfs://replica:8020/replica_external_base"
        rebased = rebase(location, base)
        assert is_rebased_under(rebased, base)
        suffix = rebased[len(base):]
        assert location.endswith(suffix)
        assert suffix.startswith("/")


class TestIsRebasedUnder:
    """Tests for is_rebased_under()."""

    def test_sibling_prefix_is_not_under(self):
        assert not is_rebased_under("hdfs://r/base2/t1", "hdfs://r/base")

    def test_other_authority_is_not_under(self):
        assert not is_rebased_under("hdfs://other/base/t1", "hdfs://r/base")

    def test_base_itself_is_not_under(self):
        assert not is_rebased_under("hdfs://r/base", "hdfs://r/base")
