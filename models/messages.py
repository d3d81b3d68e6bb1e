"""
Message schema — the append-only chat/narration log of a lobby.

Ids are random (uuid4) so two clients appending in the same millisecond
cannot collide. Chronological order comes from `seq`, which is assigned
when a message is appended to a log, never from the id or the clock.
"""

import time
from enum import Enum
from typing import List, Optional, Any, Iterable
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from models.state_delta import StateDelta, decode_state_delta


def now_ms() -> int:
    return int(time.time() * 1000)


class Sender(str, Enum):
    DM = "dm"
    PLAYER = "player"
    SYSTEM = "system"


class DiceRollRecord(BaseModel):
    formula: str
    result: int
    detail: str


class MessageMetadata(BaseModel):
    dm_state: Optional[StateDelta] = Field(alias="dmState", default=None)
    dice_roll: Optional[DiceRollRecord] = Field(alias="diceRoll", default=None)
    audio_url: Optional[str] = Field(alias="audioUrl", default=None)
    is_generating_audio: bool = Field(alias="isGeneratingAudio", default=False)

    model_config = {"extra": "allow", "populate_by_name": True}

    @field_validator("dm_state", mode="before")
    @classmethod
    def decode_delta(cls, v):
        if v is None:
            return None
        return decode_state_delta(v)


class Message(BaseModel):
    """A single log entry. Immutable once appended, apart from metadata enrichment."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    seq: int = Field(default=0, ge=0)
    sender: Sender
    text: str
    timestamp: int = Field(default_factory=now_ms)
    metadata: Optional[MessageMetadata] = None

    model_config = {"extra": "allow"}

    @property
    def delta(self) -> Optional[StateDelta]:
        return self.metadata.dm_state if self.metadata else None

    @property
    def is_story(self) -> bool:
        """DM narration and player actions; system notices are not story."""
        return self.sender in (Sender.DM, Sender.PLAYER)

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def system_message(text: str) -> Message:
    return Message(sender=Sender.SYSTEM, text=text)


def last_seq(messages: Iterable[Message]) -> int:
    return max((m.seq for m in messages), default=0)


def append_message(messages: List[Message], message: Message) -> List[Message]:
    """Return a new log with `message` appended and sequenced after the current tail."""
    sequenced = message.model_copy(update={"seq": last_seq(messages) + 1})
    return [*messages, sequenced]


def ensure_sequenced(messages: List[Any]) -> List[Message]:
    """Renumber logs written before `seq` existed, keeping stored order."""
    parsed = [m if isinstance(m, Message) else Message.model_validate(m) for m in messages]
    seqs = [m.seq for m in parsed]
    if all(s > 0 for s in seqs) and seqs == sorted(set(seqs)):
        return parsed
    base = 0
    renumbered = []
    for m in parsed:
        base += 1
        renumbered.append(m.model_copy(update={"seq": base}))
    return renumbered
