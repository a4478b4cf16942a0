"""Root-level test configuration for shard-registry.

Registers the ``requirement`` marker used to tie each test to the behaviour
it covers. Unit tests live under tests/unit/ and never touch the network.
"""

from __future__ import annotations

import pytest


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers",
        "requirement(id): Mark test with requirement ID for traceability",
    )
