"""Shared test fixtures."""

import pytest

from stepgraph.core.config import set_config


@pytest.fixture(autouse=True)
def reset_config():
    """Reload GraphConfig from the environment for every test."""
    set_config(None)
    yield
    set_config(None)
