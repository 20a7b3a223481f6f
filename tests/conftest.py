"""
Pytest configuration and fixtures for credproxy tests.

This module provides shared fixtures used across unit and integration tests.
"""

import tempfile
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Generator

import pytest
import structlog

from credproxy.schema import Policy, PolicyType, ProxyRequest

# 2024-01-01 is a Monday.
MONDAY_NOON = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
SUNDAY_NOON = datetime(2024, 1, 7, 12, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def reset_structlog() -> Generator[None, None, None]:
    """Undo any structlog configuration a test (e.g., a CLI run) applied."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def make_request() -> Callable[..., ProxyRequest]:
    """Factory for proxy requests with sensible defaults."""

    def _make(**overrides: Any) -> ProxyRequest:
        fields: dict[str, Any] = {
            "id": "req-1",
            "application_id": "app-1",
            "credential_id": "cred-1",
            "operation": "read",
            "parameters": {},
            "timestamp": MONDAY_NOON,
            "ip": "192.168.1.100",
        }
        fields.update(overrides)
        return ProxyRequest(**fields)

    return _make


@pytest.fixture
def make_policy() -> Callable[..., Policy]:
    """Factory for policies: make_policy(PolicyType.ALLOW_LIST, {...}, priority=5)."""

    def _make(
        policy_type: PolicyType | str,
        config: dict[str, Any] | None = None,
        **overrides: Any,
    ) -> Policy:
        type_name = policy_type.value if isinstance(policy_type, PolicyType) else policy_type
        fields: dict[str, Any] = {
            "id": f"pol-{type_name.lower()}",
            "type": policy_type,
            "name": type_name.replace("_", " ").title(),
            "credential_id": "cred-1",
            "config": config or {},
        }
        fields.update(overrides)
        return Policy(**fields)

    return _make


@pytest.fixture
def sample_request_yaml() -> str:
    """Return a request YAML in the camelCase wire format."""
    return """
id: req-42
applicationId: app-1
credentialId: cred-1
operation: read
parameters:
  path: /reports
timestamp: "2024-01-01T12:00:00Z"
ip: 192.168.1.100
"""


@pytest.fixture
def sample_policies_yaml() -> str:
    """Return a policy set where the higher-priority deny list wins."""
    return """
policies:
  - id: allow-read
    type: ALLOW_LIST
    name: Allow reads
    priority: 5
    config:
      operations: [read]
  - id: deny-read
    type: DENY_LIST
    name: No reads
    priority: 10
    config:
      operations: [read]
"""
