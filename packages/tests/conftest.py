"""Pytest configuration and shared fixtures."""

import pytest

# The millbridge testing plugin is registered via a ``pytest11`` entry
# point for external consumers.  Our own suite disables it
# (``-p no:millbridge``) and loads it here so the package import chain
# is measured by coverage.
pytest_plugins = ["millbridge.testing._plugin"]


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (full app wiring, no network)"
    )
