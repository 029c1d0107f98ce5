"""Shared pytest fixtures for leasely tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402

from leasely.observability.correlation import correlation_id_var  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_correlation_id():
    """Start every test without a correlation ID in context."""
    token = correlation_id_var.set("")
    yield
    correlation_id_var.reset(token)


@pytest.fixture
def task_env(monkeypatch):
    """Local-dev task auth: the internal secret header is accepted."""
    monkeypatch.setenv("TASKS_OIDC_AUDIENCE", "leasely-tasks-local")
    monkeypatch.setenv("INTERNAL_TASK_SECRET", "test-internal-secret")
    return {"X-Internal-Task-Secret": "test-internal-secret"}
