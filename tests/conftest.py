"""
Shared test configuration.

Forces a non-interactive matplotlib backend and restores the library
settings after every test.
"""

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
import pytest  # noqa: E402

from pycrn.config import reset_settings  # noqa: E402


@pytest.fixture(autouse=True)
def _clean_state():
    reset_settings()
    yield
    reset_settings()
    plt.close('all')
