"""
TurnCoordinator — per-client turn state machine for a shared lobby.

Every player's client runs its own coordinator; there is no server-side
arbiter. All coordination happens through the lobby document:

  1. A player submits an action → their character goes Thinking → Ready
     and the roster is saved, so every client sees the new readiness.
  2. Every client re-evaluates on each change notification. When the whole
     party is Ready, only the client owning roster position 0 (the leader)
     calls the Dungeon Master.
  3. The leader reconciles the returned delta into the roster, resets
     everyone to Thinking and appends the narration, all in one save.

Writes are optimistic: each save names the version it was computed from,
and a VersionConflict means "reload, re-apply, try again". Change
notifications with a version we already hold are ignored, so a document
delivered twice (or our own write echoed back) never triggers anything.

`is_loading` guards the leader against starting a second resolution while
the first narrative call is still in flight.

Long-term memory is written by the leader every `summary_every` resolved
turns, counted on the lobby's turn number rather than on the number of
story messages.
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Sequence

from agents.dungeon_master import DungeonMaster, TurnAction
from models.characters import Character
from models.lobby import GameState, JournalEntry
from models.messages import DiceRollRecord, Message, MessageMetadata, Sender, append_message, last_seq, system_message
from models.state_delta import RequiredRoll
from tools.character_factory import MAX_PARTY_SIZE
from tools.item_catalog import ItemCatalog
from tools.lobby_store import LobbyNotFound, LobbyStore, StorageError, Subscription, VersionConflict
from tools.name_matcher import NameMatcher, substring_match
from tools.roster_reconciler import reconcile, roster_changed

logger = logging.getLogger("TurnCoordinator")

DEFAULT_SUMMARY_EVERY = 5
DEFAULT_SAVE_ATTEMPTS = 3


# ------------------------------------------------------------------
# Pure turn rules
# ------------------------------------------------------------------

class TurnPhase(str, Enum):
    OPEN = "open"            # at least one character still Thinking
    ALL_READY = "all_ready"  # every character has a pending action


def all_ready(roster: Sequence[Character]) -> bool:
    """True only for a non-empty roster where every character is Ready."""
    return len(roster) > 0 and all(c.is_ready for c in roster)


def turn_phase(roster: Sequence[Character]) -> TurnPhase:
    return TurnPhase.ALL_READY if all_ready(roster) else TurnPhase.OPEN


def elect_leader(roster: Sequence[Character]) -> Optional[str]:
    """Id of the character whose owner resolves turns: roster position 0.

    Fixed by party-creation order; there is no failover.
    """
    return roster[0].id if roster else None


class Change(NamedTuple):
    """A computed next document: roster, log, and any top-level fields to overwrite."""

    party: List[Character]
    messages: List[Message]
    fields: Optional[Dict[str, Any]] = None


Mutation = Callable[[GameState], Optional[Change]]


# ------------------------------------------------------------------
# Coordinator
# ------------------------------------------------------------------

class TurnCoordinator:
    """Drives one player's view of a lobby.

    Args:
        lobby_id: Shared lobby identifier.
        player_email: The player this client acts for.
        store: Shared-state gateway.
        dungeon_master: Narrative session; only used when this client leads.
        catalog: Item lookup for reconciliation (placeholders when None).
        matcher: Name matching strategy for delta keys and items.
        summary_every: Write a journal summary every N resolved turns (0 disables).
        max_save_attempts: Optimistic-save retries before giving up.
        on_notice: Called with each local `system` notice (errors, warnings).
        on_update: Called with every newly adopted lobby document.
    """

    def __init__(
        self,
        lobby_id: str,
        player_email: str,
        store: LobbyStore,
        dungeon_master: DungeonMaster,
        catalog: Optional[ItemCatalog] = None,
        matcher: NameMatcher = substring_match,
        summary_every: int = DEFAULT_SUMMARY_EVERY,
        max_save_attempts: int = DEFAULT_SAVE_ATTEMPTS,
        on_notice: Optional[Callable[[Message], None]] = None,
        on_update: Optional[Callable[[GameState], None]] = None,
    ):
        self.lobby_id = lobby_id
        self.player_email = player_email
        self.store = store
        self.dm = dungeon_master
        self.catalog = catalog
        self.matcher = matcher
        self.summary_every = summary_every
        self.max_save_attempts = max(1, max_save_attempts)
        self._on_notice = on_notice
        self._on_update = on_update

        self.state = GameState(lobby_id=lobby_id)
        self._loaded = False
        self.is_loading = False
        self.notices: List[Message] = []
        self.suggested_actions: List[str] = []
        self.required_roll: Optional[RequiredRoll] = None
        self._subscription: Optional[Subscription] = None

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def party(self) -> List[Character]:
        return self.state.party

    @property
    def messages(self) -> List[Message]:
        return self.state.messages

    @property
    def my_character(self) -> Optional[Character]:
        return self.state.character_for(self.player_email)

    @property
    def is_leader(self) -> bool:
        me = self.my_character
        return me is not None and elect_leader(self.party) == me.id

    @property
    def phase(self) -> TurnPhase:
        return turn_phase(self.party)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def join(self) -> GameState:
        """Load the lobby (empty if new), subscribe, and evaluate once.

        Evaluating on join is what lets a returning leader pick up a turn
        that became AllReady while they were away.
        """
        await self._reload()
        if self._subscription is None:
            self._subscription = self.store.subscribe(self.lobby_id, self.on_change)
        logger.info(
            f"{self.player_email} joined lobby {self.lobby_id} "
            f"(v{self.state.version}, {len(self.party)} chars, leader={self.is_leader})"
        )
        await self.evaluate()
        return self.state

    async def leave(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

    async def _reload(self) -> None:
        try:
            state = await self.store.load(self.lobby_id)
        except LobbyNotFound:
            logger.info(f"Lobby {self.lobby_id} not found; starting empty")
            return
        except StorageError as e:
            self._notice(f"Could not load the lobby: {e}")
            return
        self._adopt(state)

    def _adopt(self, state: GameState) -> bool:
        """Take `state` as the local snapshot if it is newer than what we hold.

        The first document ever seen is always taken: lobbies saved before
        versioning load as version 0, the same as our empty starting snapshot.
        """
        if self._loaded and state.version <= self.state.version:
            return False
        self.state = state
        self._loaded = True
        latest = next((m for m in reversed(state.messages) if m.delta is not None), None)
        if latest is not None:
            self.suggested_actions = list(latest.delta.suggested_actions)
            self.required_roll = latest.delta.required_roll
        if self._on_update:
            self._on_update(state)
        return True

    def _notice(self, notice) -> Message:
        message = notice if isinstance(notice, Message) else system_message(str(notice))
        logger.warning(f"[{self.lobby_id}] {message.text}")
        self.notices.append(message)
        if self._on_notice:
            self._on_notice(message)
        return message

    # ------------------------------------------------------------------
    # Change notification
    # ------------------------------------------------------------------

    async def on_change(self, state: GameState) -> None:
        """Subscription callback. Stale and duplicate deliveries are no-ops."""
        if not self._adopt(state):
            logger.debug(
                f"Ignoring lobby document v{state.version} (holding v{self.state.version})"
            )
            return
        await self.evaluate()

    async def evaluate(self) -> None:
        """Leader-only: open the campaign on an empty log, else resolve once everyone is Ready."""
        if self.is_loading or not self.is_leader:
            return
        if not self.messages:
            await self.start_campaign()
        elif all_ready(self.party):
            await self.resolve_turn()

    async def retry(self) -> None:
        """Re-read the lobby and re-evaluate without waiting for a notification."""
        await self._reload()
        await self.evaluate()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _commit(self, mutation: Mutation) -> Optional[GameState]:
        """Apply `mutation` to the latest snapshot and save it optimistically.

        Returns the stored document, the unchanged snapshot when the mutation
        was a no-op, or None when it was abandoned or could not be saved.
        """
        for attempt in range(1, self.max_save_attempts + 1):
            base = self.state
            change = mutation(base)
            if change is None:
                return None

            fields = {k: v for k, v in (change.fields or {}).items() if getattr(base, k) != v}
            if not fields and change.messages == base.messages and not roster_changed(base.party, change.party):
                logger.debug("Mutation changed nothing; skipping save")
                return base

            try:
                saved = await self.store.save(
                    self.lobby_id,
                    change.party,
                    change.messages,
                    expected_version=base.version,
                    **fields,
                )
            except VersionConflict as e:
                logger.info(f"Save conflict on attempt {attempt}: {e}; reloading")
                await self._reload()
                continue
            except StorageError as e:
                self._notice(f"Could not save to the lobby: {e}")
                return None

            self._adopt(saved)
            return saved

        self._notice("The lobby kept changing underneath us; please try again.")
        return None

    async def add_character(self, character: Character) -> bool:
        """Join the party. One character per player, at most four per party."""
        if character.owner_email != self.player_email:
            raise ValueError("Players can only add their own characters")
        if self.my_character is not None:
            raise ValueError("You already have a character in this lobby")
        if len(self.party) >= MAX_PARTY_SIZE:
            raise ValueError(f"The party is full ({MAX_PARTY_SIZE} heroes)")

        def mutation(state: GameState) -> Optional[Change]:
            if state.character_for(self.player_email) is not None or len(state.party) >= MAX_PARTY_SIZE:
                return None
            return Change([*state.party, character], state.messages)

        saved = await self._commit(mutation)
        return saved is not None and saved.character_for(self.player_email) is not None

    async def submit_action(self, text: str, dice_roll: Optional[Dict[str, Any]] = None) -> bool:
        """Commit this player's action for the turn (Thinking → Ready).

        Submitting again while Ready replaces the pending action; that is how
        a player nudges a stalled turn.
        """
        me = self.my_character
        if me is None:
            self._notice("You have no character in this lobby.")
            return False
        if self.is_loading:
            self._notice("The Dungeon Master is still narrating; wait for the turn to finish.")
            return False
        text = (text or "").strip()
        if not text:
            return False

        metadata = None
        if dice_roll:
            text = f"{text} [Dice: {dice_roll['detail']}]"
            metadata = MessageMetadata(dice_roll=DiceRollRecord(
                formula=dice_roll["formula"], result=dice_roll["total"], detail=dice_roll["detail"],
            ))
        player_message = Message(sender=Sender.PLAYER, text=f"{me.name}: {text}", metadata=metadata)

        def mutation(state: GameState) -> Optional[Change]:
            if state.character_for(self.player_email) is None:
                return None
            party = [
                c.mark_ready(text) if c.owner_email == self.player_email else c
                for c in state.party
            ]
            return Change(party, append_message(state.messages, player_message))

        return await self._commit(mutation) is not None

    # ------------------------------------------------------------------
    # Narrative
    # ------------------------------------------------------------------

    async def start_campaign(self) -> Optional[Message]:
        """Leader opens the adventure once the party is assembled."""
        if not self.is_leader:
            self._notice("Only the party leader can start the adventure.")
            return None
        if self.messages or self.is_loading:
            return None

        self.is_loading = True
        try:
            message = await self.dm.initialize(self.party)
            if message.sender == Sender.SYSTEM:
                self._notice(message)
                return None

            def mutation(state: GameState) -> Optional[Change]:
                if state.messages:
                    return None
                return self._narration_change(state, message, advance_turn=False)

            saved = await self._commit(mutation)
            return message if saved is not None else None
        finally:
            self.is_loading = False

    async def resolve_turn(self) -> Optional[Message]:
        """Leader-only: narrate the turn, reconcile, reset readiness, save once.

        On a narrative failure the turn is left AllReady and the error is
        shown only to this client, so the party can retry.
        """
        if self.is_loading or not self.is_leader or not all_ready(self.party):
            return None

        self.is_loading = True
        try:
            snapshot = self.state
            actions = [TurnAction(c.name, c.pending_action or "") for c in snapshot.party]
            summary = await self._long_term_summary()
            logger.info(f"Leader resolving turn {snapshot.turn + 1} for lobby {self.lobby_id}")

            message = await self.dm.resolve_turn(actions, snapshot.messages, summary)
            if message.sender == Sender.SYSTEM:
                self._notice(message)
                return None

            def mutation(state: GameState) -> Optional[Change]:
                if not all_ready(state.party):
                    logger.info("Turn is no longer AllReady; dropping resolution")
                    return None
                return self._narration_change(state, message, advance_turn=True)

            saved = await self._commit(mutation)
            if saved is None:
                return None
            await self._maybe_summarize(saved)
            return message
        finally:
            self.is_loading = False

    def _narration_change(self, state: GameState, message: Message, advance_turn: bool) -> Change:
        delta = message.delta
        party = reconcile(state.party, delta, self.catalog, self.matcher)
        if advance_turn:
            party = [c.reset_turn() for c in party]
        fields: Dict[str, Any] = {}
        if advance_turn:
            fields["turn"] = state.turn + 1
        if delta is not None and delta.location:
            fields["location"] = delta.location
        if delta is not None and delta.in_combat is not None:
            fields["in_combat"] = delta.in_combat
        return Change(party, append_message(state.messages, message), fields)

    # ------------------------------------------------------------------
    # Long-term memory
    # ------------------------------------------------------------------

    async def _long_term_summary(self) -> Optional[str]:
        try:
            entry = await self.store.latest_journal(self.lobby_id)
        except StorageError as e:
            logger.warning(f"Journal unavailable, resolving without summary: {e}")
            return None
        return entry.summary_text if entry else None

    async def _maybe_summarize(self, state: GameState) -> Optional[JournalEntry]:
        if self.summary_every <= 0 or state.turn == 0 or state.turn % self.summary_every:
            return None
        try:
            previous = await self.store.latest_journal(self.lobby_id)
            covered = previous.through_seq if previous else 0
            recent = [m for m in state.messages if m.is_story and m.seq > covered]
            if not recent:
                return None
            prior_text = previous.summary_text if previous else None
            text = await self.dm.summarize(prior_text, recent)
            if not text or text == prior_text:
                return None
            title = f"Turn {state.turn}"
            if state.location:
                title += f": {state.location}"
            entry = JournalEntry(
                lobby_id=self.lobby_id,
                title=title,
                summary_text=text,
                turn_number=state.turn,
                through_seq=last_seq(state.messages),
            )
            await self.store.append_journal(entry)
            logger.info(f"Journal entry written for lobby {self.lobby_id} at turn {state.turn}")
            return entry
        except StorageError as e:
            logger.warning(f"Could not write journal entry: {e}")
            return None
