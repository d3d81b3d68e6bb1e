"""
LobbyStore — the shared-state gateway every client reads, writes and watches.

One document per lobby. `save()` always replaces the whole document; there
are no partial updates. Every save is pushed to every subscriber of that
lobby, including the client that wrote it, so subscribers must tolerate
seeing their own writes come back.

Two implementations:
  InMemoryLobbyStore  — this module; in-process fan-out, used by tests and
                        offline play.
  MongoLobbyStore     — tools/state_manager.py; MongoDB + change streams.

Concurrency: by default the last writer wins. Passing `expected_version`
turns a save into a compare-and-set on the document's `version` counter
and raises VersionConflict when another client got there first.
"""

import abc
import asyncio
import logging
from collections import defaultdict
from typing import Awaitable, Callable, Dict, List, Optional

from models.characters import Character
from models.lobby import GameState, JournalEntry, MESSAGE_HISTORY_LIMIT, build_document
from models.messages import Message

logger = logging.getLogger("LobbyStore")

ChangeCallback = Callable[[GameState], Awaitable[None]]


# ------------------------------------------------------------------
# Errors
# ------------------------------------------------------------------

class StorageError(Exception):
    """Any failure talking to the shared store."""


class LobbyNotFound(StorageError):
    def __init__(self, lobby_id: str):
        super().__init__(f"Lobby '{lobby_id}' does not exist")
        self.lobby_id = lobby_id


class VersionConflict(StorageError):
    def __init__(self, lobby_id: str, expected: int, actual: int):
        super().__init__(
            f"Lobby '{lobby_id}' is at version {actual}, save expected {expected}"
        )
        self.lobby_id = lobby_id
        self.expected = expected
        self.actual = actual


# ------------------------------------------------------------------
# Interface
# ------------------------------------------------------------------

class Subscription:
    """Handle returned by subscribe(); cancel() stops delivery."""

    def __init__(self, lobby_id: str, on_cancel: Callable[[], None]):
        self.lobby_id = lobby_id
        self._on_cancel = on_cancel
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self.active = False
            self._on_cancel()


class LobbyStore(abc.ABC):
    """Load / save / subscribe over per-lobby documents, plus the journal."""

    history_limit: int = MESSAGE_HISTORY_LIMIT

    @abc.abstractmethod
    async def load(self, lobby_id: str) -> GameState:
        """Point read. Raises LobbyNotFound."""

    @abc.abstractmethod
    async def save(
        self,
        lobby_id: str,
        party: List[Character],
        messages: List[Message],
        *,
        turn: Optional[int] = None,
        location: Optional[str] = None,
        in_combat: Optional[bool] = None,
        expected_version: Optional[int] = None,
    ) -> GameState:
        """Full-document upsert. Returns the document as stored.

        `turn`, `location` and `in_combat` default to the stored values.
        Raises VersionConflict / StorageError.
        """

    @abc.abstractmethod
    def subscribe(self, lobby_id: str, on_change: ChangeCallback) -> Subscription:
        """Register a callback for every new version of the lobby document."""

    @abc.abstractmethod
    async def delete(self, lobby_id: str) -> None:
        ...

    @abc.abstractmethod
    async def list_lobbies_for(self, owner_email: str) -> List[GameState]:
        """Lobbies where `owner_email` owns a character, most recently saved first."""

    @abc.abstractmethod
    async def append_journal(self, entry: JournalEntry) -> None:
        ...

    @abc.abstractmethod
    async def list_journal(self, lobby_id: str) -> List[JournalEntry]:
        """Journal entries ordered by turn number."""

    async def latest_journal(self, lobby_id: str) -> Optional[JournalEntry]:
        entries = await self.list_journal(lobby_id)
        return entries[-1] if entries else None


def carry_over_fields(stored: Optional[GameState], turn, location, in_combat):
    return (
        turn if turn is not None else (stored.turn if stored else 0),
        location if location is not None else (stored.location if stored else None),
        in_combat if in_combat is not None else (stored.in_combat if stored else False),
    )


# ------------------------------------------------------------------
# In-memory implementation
# ------------------------------------------------------------------

class InMemoryLobbyStore(LobbyStore):
    """Dict-backed store with synchronous in-process fan-out.

    Documents are kept as JSON strings so every reader gets its own copy
    and anything that would not survive a real round trip fails here too.
    Subscriber callbacks are awaited in registration order inside save().
    """

    def __init__(self, history_limit: int = MESSAGE_HISTORY_LIMIT):
        self.history_limit = history_limit
        self._docs: Dict[str, str] = {}
        self._subscribers: Dict[str, List[ChangeCallback]] = defaultdict(list)
        self._journal: Dict[str, List[JournalEntry]] = defaultdict(list)
        self._lock = asyncio.Lock()
        self.save_count = 0

    def _read(self, lobby_id: str) -> Optional[GameState]:
        raw = self._docs.get(lobby_id)
        return GameState.model_validate_json(raw) if raw is not None else None

    async def load(self, lobby_id: str) -> GameState:
        state = self._read(lobby_id)
        if state is None:
            raise LobbyNotFound(lobby_id)
        return state

    async def save(
        self,
        lobby_id: str,
        party: List[Character],
        messages: List[Message],
        *,
        turn: Optional[int] = None,
        location: Optional[str] = None,
        in_combat: Optional[bool] = None,
        expected_version: Optional[int] = None,
    ) -> GameState:
        async with self._lock:
            stored = self._read(lobby_id)
            current_version = stored.version if stored else 0
            if expected_version is not None and expected_version != current_version:
                raise VersionConflict(lobby_id, expected_version, current_version)

            turn, location, in_combat = carry_over_fields(stored, turn, location, in_combat)
            doc = build_document(
                lobby_id,
                party,
                messages,
                version=current_version + 1,
                turn=turn,
                location=location,
                in_combat=in_combat,
                limit=self.history_limit,
            )
            stored_json = doc.model_dump_json(by_alias=True)
            self._docs[lobby_id] = stored_json
            self.save_count += 1
            logger.debug(f"Saved lobby {lobby_id} v{doc.version} ({len(doc.party)} chars, {len(doc.messages)} msgs)")

        # Fan-out happens outside the lock so callbacks may save again.
        await self._notify(lobby_id)
        return GameState.model_validate_json(stored_json)

    async def _notify(self, lobby_id: str) -> None:
        raw = self._docs.get(lobby_id)
        if raw is None:
            return
        for callback in list(self._subscribers.get(lobby_id, [])):
            try:
                await callback(GameState.model_validate_json(raw))
            except Exception as e:
                logger.error(f"Subscriber for lobby {lobby_id} failed: {e}", exc_info=True)

    def subscribe(self, lobby_id: str, on_change: ChangeCallback) -> Subscription:
        self._subscribers[lobby_id].append(on_change)

        def _remove():
            if on_change in self._subscribers.get(lobby_id, []):
                self._subscribers[lobby_id].remove(on_change)

        return Subscription(lobby_id, _remove)

    def subscriber_count(self, lobby_id: str) -> int:
        return len(self._subscribers.get(lobby_id, []))

    async def redeliver(self, lobby_id: str) -> None:
        """Push the current document to every subscriber again (at-least-once delivery)."""
        await self._notify(lobby_id)

    async def delete(self, lobby_id: str) -> None:
        self._docs.pop(lobby_id, None)
        self._journal.pop(lobby_id, None)

    async def list_lobbies_for(self, owner_email: str) -> List[GameState]:
        states = [GameState.model_validate_json(raw) for raw in self._docs.values()]
        mine = [s for s in states if s.character_for(owner_email) is not None]
        return sorted(mine, key=lambda s: s.timestamp, reverse=True)

    async def append_journal(self, entry: JournalEntry) -> None:
        self._journal[entry.lobby_id].append(entry.model_copy(deep=True))

    async def list_journal(self, lobby_id: str) -> List[JournalEntry]:
        entries = self._journal.get(lobby_id, [])
        return sorted((e.model_copy(deep=True) for e in entries), key=lambda e: e.turn_number)
