"""
DungeonMaster — the narrative session that talks to Gemini.

Turns a party (campaign opening) or a set of declared actions (turn
resolution) into one narration Message, and periodically compresses the
story into a running summary for long-term memory.

The model is asked to end every reply with a fenced ```json block holding
the state delta. That block is stripped from the narration and decoded into
Message.metadata.dm_state. A missing or broken block still yields a normal
DM message with the full text; an API failure yields a `system` message.
Nothing in here raises to the caller, so a flaky model can never wedge the
turn loop.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from google.genai import types

from models.characters import Character
from models.messages import Message, MessageMetadata, Sender, system_message
from models.state_delta import decode_state_delta
from tools.rate_limiter import RateLimiter

logger = logging.getLogger("DungeonMaster")

DEFAULT_MODEL = "gemini-2.5-flash-lite"

# Context window sizes (story messages) with / without a long-term summary
WINDOW_WITH_SUMMARY = 10
WINDOW_WITHOUT_SUMMARY = 20

NARRATION_TEMPERATURE = 0.9
SUMMARY_TEMPERATURE = 0.4

IDLE_ACTION = "Hesitates and does nothing."

DM_SYSTEM_INSTRUCTION = """You are the Dungeon Master (DM) for a Dungeons & Dragons 5th Edition game.
Your goal is to provide an immersive, text-based RPG experience for a small party of players.

RULES:
1. Act as the narrator and referee. Describe the environment, NPCs, and outcomes of actions.
2. Be descriptive but concise. Avoid walls of text.
3. Follow the spirit of D&D 5e for combat and skill checks.
4. If a player attempts something risky, ask that character to roll a specific check.
5. Track the health, inventory and equipment of the party based on the narrative.
6. Multiplayer turns: you will receive the actions of several characters at once. Resolve them
   together or in a sensible initiative order, then describe the collective outcome.
7. Write all narration in {language}.

CRITICAL OUTPUT FORMAT:
Write the story as natural text. At the very end of your reply you MUST add one JSON block
wrapped in ```json ... ``` that updates the game interface. Use this schema and omit keys that
did not change:
{{
  "hpUpdates": {{"CharacterName": 12}},            // NEW total HP, not the change
  "itemsAdded": {{"CharacterName": ["Item name"]}},
  "itemsRemoved": {{"CharacterName": ["Item name"]}},
  "equipmentUpdates": {{"CharacterName": {{"mainHand": "Item name", "head": null}}}},
  "location": "Current location name",
  "inCombat": false,
  "suggestedActions": ["Action 1", "Action 2", "Action 3"],
  "requiredRoll": {{"characterName": "CharacterName", "rollType": "Perception", "formula": "1d20+2", "dc": 12}}
}}
Equipment slots: head, chest, mainHand, offHand, legs, feet, ring1, ring2. Use null to unequip.
"""

_STATE_BLOCK_RE = re.compile(r"```json\s*(?P<body>[\s\S]*?)\s*```", re.IGNORECASE)


@dataclass
class TurnAction:
    """One character's declared action for the turn being resolved."""

    character_name: str
    action: str
    roll: Optional[str] = None

    def describe(self) -> str:
        text = self.action.strip() or IDLE_ACTION
        if self.roll:
            text += f" (Rolled: {self.roll})"
        return f"- {self.character_name}: {text}"


# ------------------------------------------------------------------
# Reply parsing
# ------------------------------------------------------------------

def extract_state_block(raw_text: str) -> Tuple[str, Optional[dict]]:
    """Split a reply into (narration, parsed JSON object or None).

    Uses the last ```json block. If it does not parse, the narration is the
    untouched raw text.
    """
    matches = list(_STATE_BLOCK_RE.finditer(raw_text))
    if not matches:
        return raw_text.strip(), None
    block = matches[-1]
    try:
        payload = json.loads(block.group("body"))
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse DM state JSON: {e}")
        return raw_text.strip(), None
    narration = (raw_text[: block.start()] + raw_text[block.end():]).strip()
    return narration, payload


def parse_dm_response(raw_text: str) -> Message:
    """Build the DM Message for a raw model reply."""
    narration, payload = extract_state_block(raw_text)
    delta = decode_state_delta(payload) if payload is not None else None
    if payload is not None and delta is None:
        # Valid JSON but not an object: keep what the model actually said.
        narration = raw_text.strip()
    if delta is not None and delta.is_empty():
        logger.warning("DM state block carried no usable fields")
    metadata = MessageMetadata(dm_state=delta) if delta is not None else None
    return Message(sender=Sender.DM, text=narration or raw_text.strip(), metadata=metadata)


# ------------------------------------------------------------------
# Prompt helpers
# ------------------------------------------------------------------

def describe_character(c: Character) -> str:
    s = c.stats
    inventory = ", ".join(item.name for item in c.inventory) or "nothing"
    equipped = ", ".join(
        f"{slot.value}: {item.name}" for slot, item in c.equipment.items() if item is not None
    ) or "nothing"
    return (
        f"{c.name} (Level {c.level} {c.class_type.value}) - HP: {c.hp}/{c.max_hp}. "
        f"Stats: STR {s.STR} DEX {s.DEX} CON {s.CON} INT {s.INT} WIS {s.WIS} CHA {s.CHA}. "
        f"Bio: {c.bio or 'unknown'}. Inventory: {inventory}. Equipped: {equipped}."
    )


def history_window(history: Sequence[Message], has_summary: bool) -> List[Message]:
    """The story messages that fit the context budget."""
    story = [m for m in sorted(history, key=lambda m: m.seq) if m.is_story]
    size = WINDOW_WITH_SUMMARY if has_summary else WINDOW_WITHOUT_SUMMARY
    return story[-size:]


def to_contents(messages: Sequence[Message]) -> List[types.Content]:
    return [
        types.Content(
            role="model" if m.sender == Sender.DM else "user",
            parts=[types.Part(text=m.text)],
        )
        for m in messages
        if m.is_story
    ]


def _user(text: str) -> types.Content:
    return types.Content(role="user", parts=[types.Part(text=text)])


class DungeonMaster:
    """Narrative session over a google-genai client.

    Args:
        client: `genai.Client` (or anything exposing `aio.models.generate_content`).
        model_id: Gemini model name.
        language: Language the narration must be written in.
        limiter: Optional token bucket shared by all Gemini calls.
    """

    def __init__(
        self,
        client,
        model_id: str = DEFAULT_MODEL,
        language: str = "English",
        limiter: Optional[RateLimiter] = None,
    ):
        self.client = client
        self.model_id = model_id
        self.language = language
        self.limiter = limiter
        self.system_instruction = DM_SYSTEM_INSTRUCTION.format(language=language)

    async def _generate(self, contents: List[types.Content], temperature: float) -> str:
        if not self.client:
            raise RuntimeError("Dungeon Master is not connected to a model.")
        if self.limiter:
            await self.limiter.acquire()
        response = await self.client.aio.models.generate_content(
            model=self.model_id,
            contents=contents,
            config=types.GenerateContentConfig(
                system_instruction=self.system_instruction,
                temperature=temperature,
                response_mime_type="text/plain",
            ),
        )
        text = response.text
        if not text or not text.strip():
            raise RuntimeError("No response from the model")
        return text

    async def initialize(self, roster: Sequence[Character]) -> Message:
        """Open the campaign for this party."""
        party = "\n".join(describe_character(c) for c in roster)
        prompt = f"""Start a new adventure for this party:
{party}

Create an interesting opening scenario (a tavern meeting, waking up in a dungeon, a king's summons...).
Set the scene and ask the party what they want to do."""

        logger.info(f"Opening campaign for {len(roster)} character(s)")
        try:
            raw = await self._generate([_user(prompt)], NARRATION_TEMPERATURE)
        except Exception as e:
            logger.error(f"Campaign opening failed: {e}", exc_info=True)
            return system_message(
                f"The Dungeon Master is having trouble reaching the astral plane (API error): {e}"
            )
        return parse_dm_response(raw)

    async def resolve_turn(
        self,
        actions: Sequence[TurnAction],
        history: Sequence[Message],
        long_term_summary: Optional[str] = None,
    ) -> Message:
        """Narrate the outcome of everyone's declared actions."""
        has_summary = bool(long_term_summary and long_term_summary.strip())
        contents: List[types.Content] = []
        if has_summary:
            contents.append(_user(f"## The story so far\n{long_term_summary.strip()}"))
        contents.extend(to_contents(history_window(history, has_summary)))

        declared = "\n".join(a.describe() for a in actions)
        contents.append(_user(f"""The players have made their decisions for this turn:
{declared}

Resolve these actions based on the current context and describe what happens next."""))

        logger.info(f"Resolving turn with {len(actions)} action(s), {len(contents) - 1} context turn(s)")
        try:
            raw = await self._generate(contents, NARRATION_TEMPERATURE)
        except Exception as e:
            logger.error(f"Turn resolution failed: {e}", exc_info=True)
            return system_message("The Dungeon Master is silent (API error). Submit your action again to retry.")
        return parse_dm_response(raw)

    async def summarize(self, previous_summary: Optional[str], recent_messages: Sequence[Message]) -> str:
        """Fold recent story into the running summary.

        Returns `previous_summary` unchanged if the model call fails.
        """
        previous = (previous_summary or "").strip()
        story = "\n".join(
            f"{'DM' if m.sender == Sender.DM else 'Player'}: {m.text}"
            for m in sorted(recent_messages, key=lambda m: m.seq)
            if m.is_story
        )
        if not story:
            return previous

        prompt = f"""## Summary so far
{previous or "The adventure has just begun."}

## Recent events
{story}

---

Rewrite the summary so it also covers the recent events. One or two factual paragraphs:
key decisions, fights, discoveries, items gained or lost, where the party is now.
Reply with the summary text only, no JSON block."""

        try:
            raw = await self._generate([_user(prompt)], SUMMARY_TEMPERATURE)
        except Exception as e:
            logger.error(f"Summary generation failed: {e}", exc_info=True)
            return previous
        narration, _ = extract_state_block(raw)
        return narration or previous
