import os

# Must be set before config.get_settings() is first called by main
os.environ.setdefault("APP_ENV", "testing")

import pytest

from repositories import reset_repositories


@pytest.fixture(autouse=True)
def reset_state():
    """Reset repositories before each test."""
    reset_repositories()
