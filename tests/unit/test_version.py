"""Unit tests for version metadata."""

import vaultkeeper
from vaultkeeper import version


def test_package_version():
    assert vaultkeeper.__version__ == version.__version__ == "0.1.0"


def test_format_build_date():
    assert version.format_build_date("unknown") == "unknown"
    assert version.format_build_date("2024-05-01T10:20:30Z") == "2024-05-01 10:20:30 UTC"
    assert version.format_build_date("yesterday") == "yesterday"


def test_version_info_lines():
    lines = version.get_version_info().splitlines()
    assert lines[0] == "Version: 0.1.0"
    assert lines[1].startswith("Build Date: ")
    assert lines[2].startswith("Git Commit: ")
