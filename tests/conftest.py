"""
Pytest configuration for httptask tests.

This file contains shared fixtures and configuration
for all tests in the project.
"""

import pytest
from typing import AsyncIterator, Dict, List, Optional

from httptask.authorization import AuthzModule
from httptask.client import HttpClient
from httptask.transport.mock import MockTransport


class FakeAuthzModule(AuthzModule):
    """Authorization module recording every interaction."""

    def __init__(self, token: str = "token123", error: Optional[Exception] = None) -> None:
        self.token = token
        self.error = error
        self.access_requests = 0
        self.revocations = 0

    async def request_access(self) -> bool:
        self.access_requests += 1
        if self.error is not None:
            raise self.error
        return True

    def revoke_local_access_token(self) -> None:
        self.revocations += 1
        self.token = f"refreshed-{self.revocations}"

    def authorization_fields(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


class CompletionRecorder:
    """Completion handler recording every delivery."""

    def __init__(self) -> None:
        self.calls: List[tuple] = []

    def __call__(self, value, error) -> None:
        self.calls.append((value, error))


@pytest.fixture
def mock_transport():
    """Create a mock transport."""
    return MockTransport()


@pytest.fixture
def authz():
    """Create a fake authorization module."""
    return FakeAuthzModule()


@pytest.fixture
def recorder():
    """Create a completion recorder."""
    return CompletionRecorder()


@pytest.fixture
def client(mock_transport, tmp_path):
    """Create a client backed by the mock transport."""
    return HttpClient(
        base_url="https://api.example.com/v1",
        transport=mock_transport,
        default_download_directory=tmp_path / "default",
    )


@pytest.fixture
def authz_client(mock_transport, authz, tmp_path):
    """Create a client with an authorization module."""
    return HttpClient(
        base_url="https://api.example.com/v1",
        transport=mock_transport,
        authz_module=authz,
        default_download_directory=tmp_path / "default",
    )


@pytest.fixture
def sample_parameters():
    """Sample nested parameters for testing."""
    return {
        "name": "a",
        "tags": ["x", "y"],
        "owner": {"id": 7, "roles": ["admin"]},
    }


@pytest.fixture
def async_data_generator():
    """Create an async data generator for testing."""
    async def generator(data: List[bytes]) -> AsyncIterator[bytes]:
        for chunk in data:
            yield chunk

    return generator
