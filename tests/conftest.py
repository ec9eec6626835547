"""
Shared fixtures.
"""

import pytest

from tributary.utils.logging import setup_logging


@pytest.fixture(autouse=True)
def quiet_logging():
    """Route tributary logs to the root logger only, so caplog sees them."""
    setup_logging(console_enabled=False)
    yield
    setup_logging(console_enabled=False)
