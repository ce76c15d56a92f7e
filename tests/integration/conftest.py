"""Pytest configuration for integration tests."""

import pytest


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (drives complete runs)"
    )


@pytest.fixture
def durable_listing(workspace):
    """Relative paths of every file under the sample's durable root."""

    def _listing():
        root = workspace.durable_root
        if not root.exists():
            return set()
        return {str(p.relative_to(root)) for p in root.rglob("*") if p.is_file()}

    return _listing
