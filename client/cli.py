"""
Aetheria — terminal player client.

Each player runs one of these against the same MongoDB lobby. The client
creates (or reuses) the player's character, shows the shared log as it
changes, and submits typed actions. Whoever owns the first character in the
party resolves turns for everyone.

Usage:
    python -m client.cli --email ann@example.com --name Ann --class Wizard
    python -m client.cli --email bob@example.com --lobby k3x9qa --name Bob
    python -m client.cli --offline --email solo@example.com --name Solo

Commands at the prompt:
    /roll <formula>   roll dice and attach them to your next action
    /status           party, readiness and location
    /lobbies          lobbies you have a character in
    /retry            reload the lobby and re-evaluate the turn
    /quit             leave
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import Any, Dict, Optional
from uuid import uuid4

from google import genai

from agents.dungeon_master import DungeonMaster
from client import settings
from models.characters import CLASS_DESCRIPTIONS, ClassType
from models.lobby import GameState
from models.messages import Message, Sender
from tools.character_factory import MAX_PARTY_SIZE, create_character, random_point_buy
from tools.dice_roller import is_natural, roll
from tools.item_catalog import ItemCatalog
from tools.lobby_store import InMemoryLobbyStore, LobbyStore, StorageError
from tools.rate_limiter import gemini_limiter
from tools.state_manager import MongoLobbyStore
from tools.turn_coordinator import TurnCoordinator, TurnPhase, elect_leader

logger = logging.getLogger("AetheriaCLI")

PROMPT = "> "


def generate_lobby_id() -> str:
    """Short shareable lobby code."""
    return uuid4().hex[:6]


def setup_logging(level: str = settings.LOG_LEVEL, log_file: str = settings.LOG_FILE) -> None:
    log_dir = os.path.dirname(log_file)
    if log_dir and not os.path.exists(log_dir):
        os.makedirs(log_dir)

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(log_file, encoding="utf-8"),
            logging.StreamHandler(),
        ],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="aetheria", description="Multiplayer AI Dungeon Master client")
    parser.add_argument("--email", required=True, help="Your player identity")
    parser.add_argument("--lobby", help="Lobby code to join (a new one is generated if omitted)")
    parser.add_argument("--name", help="Character name, if you have no character in this lobby yet")
    parser.add_argument(
        "--class", dest="class_type", default=ClassType.FIGHTER.value,
        choices=[c.value for c in ClassType], help="Character class",
    )
    parser.add_argument("--bio", default="", help="A line of backstory")
    parser.add_argument("--random-stats", action="store_true", help="Spend point buy randomly")
    parser.add_argument("--offline", action="store_true", help="In-process store, no MongoDB")
    parser.add_argument("--language", default=settings.DM_LANGUAGE, help="Narration language")
    parser.add_argument("--model", default=settings.GEMINI_MODEL, help="Gemini model id")
    return parser


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def format_message(message: Message) -> str:
    if message.sender == Sender.DM:
        return f"\n[DM] {message.text}\n"
    if message.sender == Sender.SYSTEM:
        return f"[!] {message.text}"
    return f"  {message.text}"


def format_status(state: GameState, leader_id: Optional[str]) -> str:
    lines = [f"Lobby {state.lobby_id} | turn {state.turn} | v{state.version}"]
    if state.location:
        lines.append(f"Location: {state.location}{' (combat)' if state.in_combat else ''}")
    for c in state.party:
        mark = "Ready" if c.is_ready else "Thinking"
        crown = " *" if c.id == leader_id else ""
        lines.append(f"  {c.name}{crown} [{c.class_type.value}] HP {c.hp}/{c.max_hp} - {mark}")
    if not state.party:
        lines.append("  (no characters yet)")
    return "\n".join(lines)


class LogPrinter:
    """Prints each log message exactly once, in seq order."""

    def __init__(self):
        self.printed_seq = 0

    def on_update(self, state: GameState) -> None:
        for message in state.messages:
            if message.seq > self.printed_seq:
                print(format_message(message))
                self.printed_seq = message.seq


def print_notice(message: Message) -> None:
    print(format_message(message))


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

async def open_store(offline: bool) -> Optional[LobbyStore]:
    if offline:
        return InMemoryLobbyStore(history_limit=settings.MESSAGE_HISTORY_LIMIT)
    store = MongoLobbyStore(
        uri=settings.MONGODB_URI,
        db_name=settings.MONGODB_DB,
        history_limit=settings.MESSAGE_HISTORY_LIMIT,
    )
    if not await store.connect():
        print("Error: could not reach MongoDB. Check MONGODB_URI or use --offline.")
        return None
    return store


async def ensure_character(coordinator: TurnCoordinator, args: argparse.Namespace) -> bool:
    if coordinator.my_character is not None:
        return True
    if len(coordinator.party) >= MAX_PARTY_SIZE:
        print(f"Lobby {coordinator.lobby_id} is full.")
        return False

    name = args.name
    if not name:
        name = (await asyncio.to_thread(input, "Name your hero: ")).strip()
    class_type = ClassType(args.class_type)
    stats = random_point_buy() if args.random_stats else None
    try:
        character = create_character(name, args.email, class_type, stats=stats, bio=args.bio)
        added = await coordinator.add_character(character)
    except ValueError as e:
        print(f"Cannot create character: {e}")
        return False
    if added:
        print(f"{character.name} the {class_type.value} joins the party. {CLASS_DESCRIPTIONS[class_type]}")
    return added


async def handle_command(line: str, coordinator: TurnCoordinator, pending_roll: Dict[str, Any]) -> bool:
    """Run a slash command. Returns False when the player quits."""
    command, _, rest = line.partition(" ")
    command = command.lower()

    if command == "/quit":
        return False
    if command == "/roll":
        formula = rest.strip() or (coordinator.required_roll.formula if coordinator.required_roll else "1d20")
        result = roll(formula)
        pending_roll.clear()
        pending_roll.update(result)
        flourish = " Critical!" if is_natural(result, 20) else " Fumble." if is_natural(result, 1) else ""
        print(f"You rolled {result['total']} ({result['detail']}).{flourish} It will go with your next action.")
    elif command == "/status":
        print(format_status(coordinator.state, elect_leader(coordinator.party)))
        if coordinator.suggested_actions:
            print("Suggested: " + " | ".join(coordinator.suggested_actions))
        if coordinator.required_roll:
            r = coordinator.required_roll
            dc = f" DC {r.dc}" if r.dc else ""
            print(f"{r.character_name} must roll {r.roll_type} ({r.formula}){dc}")
    elif command == "/lobbies":
        try:
            lobbies = await coordinator.store.list_lobbies_for(coordinator.player_email)
        except StorageError as e:
            print(f"Could not list lobbies: {e}")
            return True
        for state in lobbies:
            names = ", ".join(c.name for c in state.party)
            print(f"  {state.lobby_id}: turn {state.turn}, {names}")
        if not lobbies:
            print("  (none)")
    elif command == "/retry":
        await coordinator.retry()
    else:
        print("Commands: /roll <formula>, /status, /lobbies, /retry, /quit")
    return True


async def run_session(args: argparse.Namespace) -> int:
    store = await open_store(args.offline)
    if store is None:
        return 1

    if not settings.GEMINI_API_KEY:
        print("Warning: GEMINI_API_KEY not set; the Dungeon Master will stay silent.")
        gemini_client = None
    else:
        gemini_client = genai.Client(api_key=settings.GEMINI_API_KEY)

    catalog = (
        ItemCatalog.from_json_file(settings.ITEM_CATALOG_PATH)
        if settings.ITEM_CATALOG_PATH else ItemCatalog()
    )
    dm = DungeonMaster(gemini_client, model_id=args.model, language=args.language, limiter=gemini_limiter)
    printer = LogPrinter()
    lobby_id = args.lobby or generate_lobby_id()
    coordinator = TurnCoordinator(
        lobby_id,
        args.email,
        store,
        dm,
        catalog=catalog,
        summary_every=settings.SUMMARY_EVERY_TURNS,
        on_notice=print_notice,
        on_update=printer.on_update,
    )

    print(f"Joining lobby {lobby_id} (share this code with your party)")
    try:
        await coordinator.join()
        if not await ensure_character(coordinator, args):
            return 1

        pending_roll: Dict[str, Any] = {}
        while True:
            line = (await asyncio.to_thread(input, PROMPT)).strip()
            if not line:
                continue
            if line.startswith("/"):
                if not await handle_command(line, coordinator, pending_roll):
                    break
                continue
            me = coordinator.my_character
            if me is not None and me.is_ready and coordinator.phase == TurnPhase.OPEN:
                print("(Replacing your pending action)")
            if await coordinator.submit_action(line, dice_roll=pending_roll or None):
                pending_roll.clear()
    except (EOFError, KeyboardInterrupt):
        pass
    finally:
        await coordinator.leave()
        if isinstance(store, MongoLobbyStore):
            await store.close()
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()
    logger.info(f"Starting client for {args.email} (offline={args.offline})")
    return asyncio.run(run_session(args))


if __name__ == "__main__":
    sys.exit(main())
