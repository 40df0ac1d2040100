# Centralized pytest configuration file (fixtures, hooks, plugins, etc.)
import os
from contextlib import AsyncExitStack

import pytest
from asgi_lifespan import LifespanManager
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport

from spark.app import create_app
from spark.config import Settings
from spark.testing.fake_upstream import make_upstream_app


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep SPARK_* variables from the outer environment out of the tests."""
    for name in list(os.environ):
        if name.startswith("SPARK_"):
            monkeypatch.delenv(name)


@pytest.fixture
def make_settings():
    def _make(**overrides) -> Settings:
        overrides.setdefault("body", "hello from spark")
        return Settings(_env_file=None, **overrides)

    return _make


@pytest.fixture
def upstream_app() -> FastAPI:
    return make_upstream_app()


@pytest.fixture
async def upstream_client(upstream_app: FastAPI):
    """Client the proxy uses to reach the fake upstream through ASGITransport."""
    async with AsyncClient(
            transport=ASGITransport(app=upstream_app),
            base_url="http://upstream") as client:
        yield client


@pytest.fixture
async def make_client(upstream_client: AsyncClient):
    """
    Factory building a spark app from settings and returning a test client for it.

    The app's outbound http client is swapped for one wired to the fake
    upstream unless another one is given.
    """
    async with AsyncExitStack() as stack:
        async def _make(settings: Settings, http_client: AsyncClient | None = None) -> AsyncClient:
            app = create_app(settings)
            await stack.enter_async_context(LifespanManager(app))
            app.state.http_client = http_client or upstream_client

            return await stack.enter_async_context(AsyncClient(
                transport=ASGITransport(app=app),
                base_url="http://spark"))

        yield _make
