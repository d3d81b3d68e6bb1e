"""
Shared pytest fixtures for the Aetheria test suite.

Gemini is never called for real: MockGeminiClient replays canned replies
and records every request so tests can inspect the prompt contents.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from models.characters import Character, Item, EquipmentSlot
from tools.lobby_store import InMemoryLobbyStore


# ---------------------------------------------------------------------------
# Gemini Mock Helpers (reusable classes)
# ---------------------------------------------------------------------------

class MockGeminiResponse:
    """Simulates a Gemini response with .text property."""

    def __init__(self, text: str):
        self.text = text


class MockGeminiClient:
    """Mock Gemini client that returns canned text responses.

    Usage:
        client = MockGeminiClient(["response1", "response2"])
        resp = await client.aio.models.generate_content(model=..., contents=...)
        assert resp.text == "response1"
    """

    def __init__(self, responses=None):
        self._responses = responses or []
        self._call_count = 0
        self.calls = []

    @property
    def aio(self):
        return self

    @property
    def models(self):
        return self

    @property
    def call_count(self) -> int:
        return self._call_count

    async def generate_content(self, **kwargs):
        self.calls.append(kwargs)
        if self._call_count < len(self._responses):
            resp = self._responses[self._call_count]
        else:
            resp = "The Dungeon Master nods silently."
        self._call_count += 1
        if isinstance(resp, Exception):
            raise resp
        if isinstance(resp, str):
            return MockGeminiResponse(resp)
        # Allow passing pre-built response objects
        return resp


def make_character(name: str, email: str, hp: int = 12, inventory=None, equipment=None, **extra) -> Character:
    """Compact Character builder for roster tests."""
    return Character(
        id=extra.pop("id", f"char-{name.lower()}"),
        name=name,
        owner_email=email,
        hp=hp,
        max_hp=extra.pop("max_hp", max(hp, 1)),
        inventory=[Item(id=f"{name.lower()}-{i}", name=n) for i, n in enumerate(inventory or [])],
        equipment={EquipmentSlot(slot): Item(id=f"{name.lower()}-{slot}", name=n) for slot, n in (equipment or {}).items()},
        **extra,
    )


# ---------------------------------------------------------------------------
# Pytest fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def store():
    return InMemoryLobbyStore()


@pytest.fixture
def alice():
    return make_character("Alice", "alice@example.com", hp=10, inventory=["Rope"])


@pytest.fixture
def bob():
    return make_character("Bob", "bob@example.com", hp=14, inventory=["Torch"])


@pytest.fixture
def mock_gemini_limiter():
    """AsyncMock for the rate limiter — patches acquire() as a no-op."""
    limiter = MagicMock()
    limiter.acquire = AsyncMock()
    return limiter
