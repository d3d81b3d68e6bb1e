"""
MongoLobbyStore — Async MongoDB implementation of the shared lobby store.

Every write passes through the pydantic models; raw dicts are never written
directly. Each lobby is one document in the `lobbies` collection:

    {_id: <lobby id>, game_state: {...}, version: int, updated_at: datetime}

Optimistic saves filter on `version`, so a client holding a stale snapshot
gets VersionConflict instead of silently overwriting someone else's write.

Change notification uses a MongoDB change stream per subscription, which
requires the server to run as a replica set (a single-node replica set is
enough for local play).

Requires:
  - MONGODB_URI in .env (default: mongodb://localhost:27017)
  - Database name: aetheria (configurable)
"""

import asyncio
import logging
import os
from datetime import datetime, timezone
from typing import Any, List, Optional

from motor.motor_asyncio import AsyncIOMotorClient
from pydantic import ValidationError
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from models.characters import Character
from models.lobby import GameState, JournalEntry, MESSAGE_HISTORY_LIMIT, build_document
from models.messages import Message
from tools.lobby_store import (
    ChangeCallback,
    LobbyNotFound,
    LobbyStore,
    StorageError,
    Subscription,
    VersionConflict,
    carry_over_fields,
)

logger = logging.getLogger("StateManager")


def _to_state(doc: dict) -> GameState:
    state = dict(doc.get("game_state") or {})
    state["lobbyId"] = doc["_id"]
    state["version"] = doc.get("version", 0)
    return GameState.model_validate(state)


class MongoLobbyStore(LobbyStore):
    """Async MongoDB-backed lobby store.

    Collections:
        lobbies — one document per lobby (the shared game state)
        journal — append-only long-term summaries, keyed by lobby_id
    """

    def __init__(
        self,
        uri: Optional[str] = None,
        db_name: str = "aetheria",
        history_limit: int = MESSAGE_HISTORY_LIMIT,
    ):
        self.uri = uri or os.getenv("MONGODB_URI", "mongodb://localhost:27017")
        self.db_name = db_name
        self.history_limit = history_limit
        self._client: Any = None
        self._db: Any = None
        self._watchers: List[asyncio.Task] = []

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def connect(self) -> bool:
        """Connect to MongoDB. Returns True on success."""
        try:
            self._client = AsyncIOMotorClient(self.uri)
            await self._client.admin.command("ping")
            self._db = self._client[self.db_name]
            await self._db.journal.create_index([("lobby_id", ASCENDING), ("turn_number", ASCENDING)])
            logger.info(f"MongoLobbyStore connected to MongoDB: {self.db_name}")
            return True
        except PyMongoError as e:
            logger.error(f"MongoDB connection failed: {e}")
            self._client = None
            self._db = None
            return False

    async def close(self):
        """Stop all change streams and close the connection."""
        for task in self._watchers:
            task.cancel()
        self._watchers.clear()
        if self._client:
            self._client.close()
            self._client = None
            self._db = None

    @property
    def is_connected(self) -> bool:
        return self._db is not None

    def _require_connection(self):
        if not self.is_connected:
            raise StorageError("MongoLobbyStore is not connected to MongoDB.")

    # ------------------------------------------------------------------
    # Lobby documents
    # ------------------------------------------------------------------

    async def load(self, lobby_id: str) -> GameState:
        self._require_connection()
        try:
            doc = await self._db.lobbies.find_one({"_id": lobby_id})
        except PyMongoError as e:
            raise StorageError(f"Failed to load lobby {lobby_id}: {e}") from e
        if not doc:
            raise LobbyNotFound(lobby_id)
        try:
            return _to_state(doc)
        except ValidationError as e:
            raise StorageError(f"Lobby {lobby_id} holds an unreadable document: {e}") from e

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
        self._require_connection()
        try:
            existing = await self._db.lobbies.find_one({"_id": lobby_id})
            stored = _to_state(existing) if existing else None
            current_version = stored.version if stored else 0
            if expected_version is not None and expected_version != current_version:
                raise VersionConflict(lobby_id, expected_version, current_version)

            turn, location, in_combat = carry_over_fields(stored, turn, location, in_combat)
            base_version = expected_version if expected_version is not None else current_version
            state = build_document(
                lobby_id,
                party,
                messages,
                version=base_version + 1,
                turn=turn,
                location=location,
                in_combat=in_combat,
                limit=self.history_limit,
            )
            game_state = state.to_document()
            game_state.pop("lobbyId", None)
            game_state.pop("version", None)
            record = {
                "game_state": game_state,
                "version": state.version,
                "updated_at": datetime.now(timezone.utc),
            }

            if expected_version is None:
                await self._db.lobbies.replace_one({"_id": lobby_id}, record, upsert=True)
            elif expected_version == 0 and existing is None:
                await self._db.lobbies.insert_one({"_id": lobby_id, **record})
            elif expected_version == 0:
                # Documents written before versioning carry no version field.
                result = await self._db.lobbies.replace_one(
                    {"_id": lobby_id, "version": {"$exists": False}}, record
                )
                if result.matched_count == 0:
                    raise VersionConflict(lobby_id, expected_version, -1)
            else:
                result = await self._db.lobbies.replace_one(
                    {"_id": lobby_id, "version": expected_version}, record
                )
                if result.matched_count == 0:
                    latest = await self._db.lobbies.find_one({"_id": lobby_id}, {"version": 1})
                    raise VersionConflict(lobby_id, expected_version, (latest or {}).get("version", 0))
        except DuplicateKeyError as e:
            raise VersionConflict(lobby_id, 0, -1) from e
        except PyMongoError as e:
            logger.error(f"Error saving lobby {lobby_id}: {e}")
            raise StorageError(str(e)) from e

        logger.debug(f"Saved lobby {lobby_id} v{state.version}")
        return state

    async def delete(self, lobby_id: str) -> None:
        self._require_connection()
        try:
            await self._db.lobbies.delete_one({"_id": lobby_id})
            await self._db.journal.delete_many({"lobby_id": lobby_id})
        except PyMongoError as e:
            logger.error(f"Error deleting lobby {lobby_id}: {e}")
            raise StorageError(str(e)) from e

    async def list_lobbies_for(self, owner_email: str) -> List[GameState]:
        self._require_connection()
        results = []
        try:
            cursor = self._db.lobbies.find(
                {"game_state.party.ownerEmail": owner_email}
            ).sort("updated_at", DESCENDING)
            async for doc in cursor:
                try:
                    results.append(_to_state(doc))
                except ValidationError as e:
                    logger.warning(f"Skipping unreadable lobby {doc.get('_id')}: {e.error_count()} error(s)")
        except PyMongoError as e:
            raise StorageError(f"Failed to list lobbies for {owner_email}: {e}") from e
        return results

    # ------------------------------------------------------------------
    # Change notification
    # ------------------------------------------------------------------

    def subscribe(self, lobby_id: str, on_change: ChangeCallback) -> Subscription:
        self._require_connection()
        task = asyncio.create_task(self._watch(lobby_id, on_change))
        self._watchers.append(task)

        def _stop():
            task.cancel()
            if task in self._watchers:
                self._watchers.remove(task)

        return Subscription(lobby_id, _stop)

    async def _watch(self, lobby_id: str, on_change: ChangeCallback) -> None:
        pipeline = [{"$match": {
            "documentKey._id": lobby_id,
            "operationType": {"$in": ["insert", "update", "replace"]},
        }}]
        try:
            async with self._db.lobbies.watch(pipeline, full_document="updateLookup") as stream:
                async for change in stream:
                    doc = change.get("fullDocument")
                    if not doc:
                        continue
                    try:
                        state = _to_state(doc)
                    except ValidationError as e:
                        logger.warning(f"Ignoring unreadable change for {lobby_id}: {e.error_count()} error(s)")
                        continue
                    try:
                        await on_change(state)
                    except Exception as e:
                        logger.error(f"Change handler for {lobby_id} failed: {e}", exc_info=True)
        except asyncio.CancelledError:
            raise
        except PyMongoError as e:
            logger.error(f"Change stream for lobby {lobby_id} stopped: {e}")

    # ------------------------------------------------------------------
    # Journal
    # ------------------------------------------------------------------

    async def append_journal(self, entry: JournalEntry) -> None:
        self._require_connection()
        doc = entry.model_dump()
        doc["_id"] = doc.pop("id")
        try:
            await self._db.journal.insert_one(doc)
        except PyMongoError as e:
            raise StorageError(f"Failed to append journal entry: {e}") from e

    async def list_journal(self, lobby_id: str) -> List[JournalEntry]:
        self._require_connection()
        entries = []
        try:
            cursor = self._db.journal.find({"lobby_id": lobby_id}).sort("turn_number", ASCENDING)
            async for doc in cursor:
                doc["id"] = doc.pop("_id")
                entries.append(JournalEntry.model_validate(doc))
        except PyMongoError as e:
            raise StorageError(f"Failed to read journal for lobby {lobby_id}: {e}") from e
        return entries
