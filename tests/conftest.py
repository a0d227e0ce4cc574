from __future__ import annotations

import os
import sys
from pathlib import Path

import httpx
import pytest


# Settings are instantiated at import time; keep tests offline and deterministic.
os.environ.setdefault("LLM_API_KEY", "test-key")
os.environ.setdefault("LLM_BASE_URL", "http://model.test/v4")
os.environ.setdefault("HOTEL_API_KEY", "sand_test-key")
os.environ.setdefault("HOTEL_API_BASE_URL", "http://hotels.test/v3.0")

# Ensure the monorepo root is importable (so `import services.*` and `import tests.*` work).
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from tests.upstream_stub import FakeHotelApi, ScriptedModel  # noqa: E402


@pytest.fixture()
def model_stub():
    from services.chat.app.model import ModelClient

    stub = ScriptedModel()
    ModelClient.set_default_transport(httpx.MockTransport(stub.handler))
    yield stub
    ModelClient.set_default_transport(None)


@pytest.fixture()
def hotel_api():
    from services.chat.app.hotel_client import HotelApiClient

    fake = FakeHotelApi()
    HotelApiClient.set_default_transport(httpx.MockTransport(fake.handler))
    yield fake
    HotelApiClient.set_default_transport(None)
