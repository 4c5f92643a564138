"""Root conftest - test infrastructure for all backend tests.

Provides:
- Mocked AsyncSession and StripeService fixtures
- API client with dependency overrides (get_db, get_stripe_service)
- Autouse mock of the stripe SDK so no test can reach Stripe
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from tests.helpers.mock_factories import make_mock_db, make_mock_stripe_service

# ─────────────────────────────────────────────────────────────────────────────
# Mocked Dependencies
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def mock_db() -> MagicMock:
    """AsyncSession stand-in; configure execute/get per test."""
    return make_mock_db()


@pytest.fixture
def mock_stripe() -> MagicMock:
    """StripeService stand-in injected wherever the app asks for Stripe."""
    return make_mock_stripe_service()


# ─────────────────────────────────────────────────────────────────────────────
# API Client
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
async def api_client(mock_db: MagicMock, mock_stripe: MagicMock):
    """HTTP client with the database session and Stripe client overridden.

    For testing endpoint logic without external dependencies.
    Overrides: get_db, get_stripe_service
    """
    from app.api.deps import get_stripe_service
    from app.core.database import get_db
    from app.main import app

    async def override_db():
        yield mock_db

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_stripe_service] = lambda: mock_stripe

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ─────────────────────────────────────────────────────────────────────────────
# External Service Mocks (autouse)
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def mock_stripe_sdk():
    """SAFETY: Always mock the stripe SDK module used by StripeService.

    Prevents accidental charges or coupon creation. Tests that exercise
    StripeService itself configure this mock directly.
    """
    with patch("app.services.stripe_service.stripe") as sdk:
        yield sdk
