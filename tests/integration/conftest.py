"""
Fixtures for running the client against the in-process sandbox backend.
"""

from datetime import date, datetime
from typing import List

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from clinicbook.api.sandbox_server import app as sandbox_app
from clinicbook.api.sandbox_server import store
from clinicbook.app import ClinicApp
from clinicbook.config import Settings

# Monday; the sandbox has weekday slots from 09:00 onwards
TODAY = date(2025, 6, 9)
NOW = datetime(2025, 6, 9, 10, 0)


class RecordingTransport(ASGITransport):
    """ASGI transport that keeps every request it forwards."""

    def __init__(self, app):
        super().__init__(app=app)
        self.requests: List[httpx.Request] = []

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        await request.aread()
        self.requests.append(request)
        return await super().handle_async_request(request)

    def sent(self, method: str, path_prefix: str = "") -> List[httpx.Request]:
        return [
            r for r in self.requests if r.method == method and r.url.path.startswith(path_prefix)
        ]


@pytest.fixture(autouse=True)
def reset_store():
    """Reset the sandbox store before each test."""
    store.reset()
    store.initialize_sample_data(today=TODAY, days=14)
    yield
    store.reset()


@pytest.fixture
def transport():
    return RecordingTransport(sandbox_app)


@pytest.fixture
async def clinic_app(transport):
    """Client wired to the sandbox, push disabled, clock frozen at NOW."""
    settings = Settings(CLINIC_API_URL="http://test")
    clinic = ClinicApp(settings, transport=transport, enable_push=False, clock=lambda: NOW)
    await clinic.start()
    yield clinic
    await clinic.stop()


@pytest.fixture
async def client():
    """Raw HTTP client for the sandbox, for setting up backend-side changes."""
    async with AsyncClient(transport=ASGITransport(app=sandbox_app), base_url="http://test") as ac:
        yield ac
