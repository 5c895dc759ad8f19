"""Tests for dynamic version management.

Verifies that ``nobody_engine.__version__`` is resolved from the installed
package metadata (``pyproject.toml``).
"""

from __future__ import annotations

import importlib
import re
from importlib.metadata import PackageNotFoundError, version
from unittest.mock import patch

import pytest

import nobody_engine

# Matches semver-ish strings: major.minor.patch with optional pre-release
# suffix (e.g. "0.4.2", "1.0.0-rc.1", "0.0.0-dev").
_SEMVER_RE = re.compile(
    r"^\d+\.\d+\.\d+"  # major.minor.patch
    r"(-[A-Za-z0-9]+(\.[A-Za-z0-9]+)*)?$"  # optional pre-release
)


@pytest.mark.unit
class TestVersionAttribute:
    """Verify the ``nobody_engine.__version__`` package attribute."""

    def test_version_is_a_string(self) -> None:
        assert isinstance(nobody_engine.__version__, str)
        assert len(nobody_engine.__version__) > 0

    def test_version_matches_semver(self) -> None:
        assert _SEMVER_RE.match(nobody_engine.__version__), (
            f"__version__ {nobody_engine.__version__!r} does not match "
            f"expected semver pattern (major.minor.patch[-prerelease])"
        )

    def test_version_matches_distribution_metadata(self) -> None:
        """In an installed environment the attribute mirrors the metadata."""
        try:
            installed = version("nobody-engine")
        except PackageNotFoundError:
            pytest.skip("nobody-engine is not installed; running from the source tree")
        assert nobody_engine.__version__ == installed

    def test_source_tree_falls_back_to_dev_version(self) -> None:
        with patch("importlib.metadata.version", side_effect=PackageNotFoundError):
            reloaded = importlib.reload(nobody_engine)
        try:
            assert reloaded.__version__ == "0.0.0-dev"
        finally:
            importlib.reload(nobody_engine)
