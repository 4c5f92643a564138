"""API test fixtures.

Builds on root conftest fixtures (mock_db, mock_stripe, api_client).
"""

from __future__ import annotations

import pytest


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
