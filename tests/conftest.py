import asyncio
import inspect
import os
import sys
from pathlib import Path

# Test environment must be in place before the package reads settings
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
# Empty REDIS_URL: the runtime goes straight to the in-memory cache
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("AUTH_RATE_LIMIT", "1000")
os.environ.setdefault("SEARCH_RATE_LIMIT", "1000")
os.environ.setdefault("API_RATE_LIMIT", "10000")
os.environ.setdefault("LOG_JSON", "false")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from talentconnect.app import create_app  # noqa: E402
from talentconnect.config import Settings, reset_settings_cache  # noqa: E402

TEST_SECRET = "test-secret-key-for-testing-only-do-not-use-in-production"
STRONG_PASSWORD = "Abcdef1!"


def make_settings(**overrides) -> Settings:
    """Settings for an isolated in-memory app; overrides win."""
    values = dict(
        environment="test",
        use_memory_store=True,
        test_mode=True,
        redis_url="",
        jwt_secret=TEST_SECRET,
        auth_rate_limit=1000,
        search_rate_limit=1000,
        api_rate_limit=10000,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture(autouse=True)
def reset_settings_state():
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def client():
    """Test client bound to a fresh app; lifespan runs inside the block."""
    with TestClient(create_app(make_settings())) as test_client:
        yield test_client


@pytest.fixture
def register(client):
    """Register an account through the API and return the response data."""

    def _register(email, user_type="professional", password=STRONG_PASSWORD, **extra):
        payload = {
            "email": email,
            "password": password,
            "userType": user_type,
            "consents": {"terms": True, "privacy": True},
        }
        payload.update(extra)
        response = client.post("/api/v1/auth/register", json=payload)
        assert response.status_code == 201, response.text
        return response.json()["data"]

    return _register


def auth_header(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
