"""Tests for major-version compatibility."""

import pytest

from common.types import NodeAddress
from replicator.exceptions import VersionIncompatibleError
from replicator.version_check import check_compatible, major_version


def node(version):
    return NodeAddress(host="10.0.0.5", port=443, version=version)


class TestVersionCheck:
    """Test version parsing and the compatibility gate."""

    def test_major_version(self):
        assert major_version("16.1.3") == 16
        assert major_version("17") == 17
        assert major_version(None) is None
        assert major_version("unknown") is None

    def test_same_major_is_compatible(self):
        check_compatible(node("16.1.0"), node("16.0.2"))

    def test_different_major_is_rejected(self):
        with pytest.raises(VersionIncompatibleError):
            check_compatible(node("16.1.0"), node("15.1.0"))

    def test_unknown_version_is_compatible(self):
        check_compatible(node(None), node("15.1.0"))
        check_compatible(node("16.1.0"), node(""))
