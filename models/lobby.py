"""
Lobby document and journal schemas.

GameState is the single persisted record per lobby. Every save replaces it
wholesale; there is no partial update at the storage layer.
"""

from datetime import datetime, timezone
from typing import List, Optional, Dict, Any
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from models.characters import Character
from models.messages import Message, ensure_sequenced, now_ms

MESSAGE_HISTORY_LIMIT = 100


class GameState(BaseModel):
    """The shared lobby document: roster + (truncated) message log."""

    lobby_id: str = Field(alias="lobbyId", default="")
    party: List[Character] = []
    messages: List[Message] = []
    timestamp: int = Field(default_factory=now_ms)
    version: int = Field(default=0, ge=0)
    turn: int = Field(default=0, ge=0)
    location: Optional[str] = None
    in_combat: bool = Field(alias="inCombat", default=False)

    model_config = {"extra": "allow", "populate_by_name": True}

    @field_validator("party", "messages", mode="before")
    @classmethod
    def none_is_empty(cls, v):
        return v or []

    @field_validator("messages")
    @classmethod
    def sequence_messages(cls, v):
        return ensure_sequenced(v)

    def character_for(self, owner_email: str) -> Optional[Character]:
        for character in self.party:
            if character.owner_email == owner_email:
                return character
        return None

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def build_document(
    lobby_id: str,
    party: List[Character],
    messages: List[Message],
    *,
    version: int,
    turn: int = 0,
    location: Optional[str] = None,
    in_combat: bool = False,
    limit: int = MESSAGE_HISTORY_LIMIT,
) -> GameState:
    """Assemble the document a save writes: only the newest `limit` messages survive."""
    return GameState(
        lobby_id=lobby_id,
        party=list(party),
        messages=list(messages)[-limit:] if limit > 0 else [],
        timestamp=now_ms(),
        version=version,
        turn=turn,
        location=location,
        in_combat=in_combat,
    )


class JournalEntry(BaseModel):
    """A long-term memory summary. Append-only, independent of the message log."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    lobby_id: str
    title: str = ""
    summary_text: str
    turn_number: int = Field(default=0, ge=0)
    through_seq: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "allow"}
