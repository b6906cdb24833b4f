"""Shared fixtures.

The app runs with ENVIRONMENT=testing: progress documents are kept in memory
and Redis is not contacted.
"""

import os
import tempfile


os.environ["ENVIRONMENT"] = "testing"
os.environ["PROGRESS_STORE_BACKEND"] = "memory"
os.environ["LOG_REQUESTS"] = "false"
os.environ["LOG_DIR"] = tempfile.mkdtemp(prefix="langplayer-logs-")

from collections.abc import Callable, Iterator  # noqa: E402
from datetime import UTC, datetime, timedelta  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from jose import jwt  # noqa: E402

from langplayer.config.settings import get_settings  # noqa: E402
from langplayer.main import create_app  # noqa: E402


TokenFactory = Callable[..., str]


def create_access_token(
    data: dict[str, Any],
    expires_delta: timedelta = timedelta(minutes=60),
) -> str:
    """Sign an access token the way the identity provider does."""
    settings = get_settings()

    to_encode = data.copy()
    now = datetime.now(UTC)
    to_encode.update({"exp": now + expires_delta, "iat": now, "type": "access"})

    return jwt.encode(
        to_encode,
        settings.auth_secret_key,
        algorithm=settings.auth_algorithm,
    )


@pytest.fixture
def issue_token() -> TokenFactory:
    return create_access_token


@pytest.fixture
def client() -> Iterator[TestClient]:
    """Test client with the app lifespan running (fresh memory store)."""
    with TestClient(create_app()) as test_client:
        yield test_client


@pytest.fixture
def user_id() -> str:
    return "user-123"


@pytest.fixture
def auth_headers(user_id: str) -> dict[str, str]:
    """Bearer header for ``user_id``."""
    token = create_access_token({"sub": user_id, "email": "ana@example.com"})
    return {"Authorization": f"Bearer {token}"}
