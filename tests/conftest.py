"""Root test configuration for FrameRelay.

Clears FRAMERELAY_* environment overrides and the default config search paths
so no developer config file or shell variable leaks into a test run.
"""

import pytest


@pytest.fixture(autouse=True)
def isolate_config(monkeypatch: pytest.MonkeyPatch) -> None:
    """Make load_config() see only what a test explicitly provides."""
    for name in ("FRAMERELAY_CONFIG", "FRAMERELAY_PORT", "FRAMERELAY_TIMEOUT_MS"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("framerelay.config.DEFAULT_CONFIG_PATHS", [])
