"""
Global conftest for anchor sync tests.

This file combines:
1. A pretty unified-diff assertion helper for clearer dict-vs-dict failures.
2. An autouse fixture that pins the stage budgets and the registry endpoint
   so a developer's shell environment never leaks into the suite.
"""

import json
import difflib

import pytest

# --------------------------------------------------------------------------- #
# Pretty diff for dict comparisons                                            #
# --------------------------------------------------------------------------- #
def pytest_assertrepr_compare(op, left, right):
    """Pretty unified-diff output when comparing two dicts with ==."""
    if isinstance(left, dict) and isinstance(right, dict) and op == "==":
        lhs = json.dumps(left, indent=2, sort_keys=True).splitlines()
        rhs = json.dumps(right, indent=2, sort_keys=True).splitlines()
        return [""] + list(
            difflib.unified_diff(lhs, rhs, fromfile="left", tofile="right")
        )


# --------------------------------------------------------------------------- #
# Environment isolation                                                       #
# --------------------------------------------------------------------------- #
@pytest.fixture(autouse=True)
def _pinned_env(monkeypatch):
    monkeypatch.setenv("API_ENDPOINT", "http://registry.test")
    monkeypatch.setenv("TIMEOUT_REGISTRY_MS", "5000")
    monkeypatch.setenv("TIMEOUT_HOST_MS", "60000")
    monkeypatch.setenv("TIMEOUT_RESOLVE_MS", "60000")
    monkeypatch.setenv("CLOUD_ANCHOR_TTL_DAYS", "1")
    monkeypatch.setenv("ANCHOR_TAG", "placed-object")
    yield
