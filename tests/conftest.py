from __future__ import annotations

import asyncio
import time
from typing import Any, Callable

import pytest
from jose import jwt

from sqlpractice_bff.main import app
from sqlpractice_bff.token_store import MemoryStore, TokenStorage


def make_token(**claims: Any) -> str:
    return jwt.encode(claims, "test-secret", algorithm="HS256")


@pytest.fixture
def token_factory() -> Callable[..., str]:
    return make_token


@pytest.fixture
def fresh_claims() -> dict[str, Any]:
    return {"sub": "student-1", "userId": 42, "exp": int(time.time()) + 3600}


@pytest.fixture
def storage() -> TokenStorage:
    return TokenStorage(MemoryStore())


@pytest.fixture(autouse=True)
def _reset_overrides():
    yield
    app.dependency_overrides.clear()


class Barrier:
    """Holds every 401 until `parties` requests have arrived, so they fail together."""

    def __init__(self, parties: int):
        self.parties = parties
        self.arrived = 0
        self.event = asyncio.Event()

    async def wait(self) -> None:
        self.arrived += 1
        if self.arrived >= self.parties:
            self.event.set()
        await self.event.wait()


@pytest.fixture
def barrier_factory() -> Callable[[int], Barrier]:
    return Barrier
