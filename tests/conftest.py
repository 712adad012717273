from __future__ import annotations

import os

import pytest

from config import get_settings


_UNPREFIXED_KEYS = {"PERPLEXITY_API_KEY", "HERE_API_KEY", "MISSION_CONTROL_CLI"}


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch, tmp_path):
    for key in list(os.environ):
        if key.startswith("SHERLOCK_") or key in _UNPREFIXED_KEYS:
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("SHERLOCK_WORKSPACE", str(tmp_path))
    monkeypatch.setenv("SHERLOCK_MAX_RETRIES", "0")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
