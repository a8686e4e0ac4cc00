"""
tests/test_rate_limiting.py — Tests for rate limiting behavior

Covers: slowapi limiter configuration, storage resolution, and the manual
trigger endpoints staying usable while limits are disabled under TESTING.

Called by: pytest
Depends on: assistflow.rate_limit, routers/followups.py, routers/workflow.py
"""

import os
from unittest.mock import patch


def test_limiter_uses_remote_address():
    """Key function is get_remote_address (IP-based limiting)."""
    from slowapi.util import get_remote_address

    from assistflow.rate_limit import limiter

    assert limiter._key_func is get_remote_address


def test_limiter_disabled_in_test_mode():
    from assistflow.rate_limit import limiter

    assert os.environ.get("RATE_LIMIT_ENABLED") == "false"
    assert limiter.enabled is False


def test_resolve_storage_defaults_to_memory():
    from assistflow import rate_limit

    with patch.object(rate_limit.settings, "rate_limit_storage_uri", ""):
        assert rate_limit._resolve_storage() is None


def test_resolve_storage_uses_configured_uri():
    from assistflow import rate_limit

    with patch.object(rate_limit.settings, "rate_limit_storage_uri", "redis://cache:6379/1"):
        assert rate_limit._resolve_storage() == "redis://cache:6379/1"


def test_manual_triggers_respond_repeatedly(client):
    for _ in range(6):
        assert client.post("/api/followups/process-due").status_code == 200
        assert client.post("/api/escalations/run").status_code == 200
