import os

import pytest


@pytest.fixture(autouse=True)
def clean_layerkit_env(monkeypatch):
    """Configuration read by a test must not come from the environment of the machine running it."""
    for k in list(os.environ):
        if k.startswith("LAYERKIT_") and k not in ("LAYERKIT_LOGGING_LEVEL", "LAYERKIT_RICH_TRACEBACKS"):
            monkeypatch.delenv(k)
