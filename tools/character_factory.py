"""
Character creation — 27-point buy, starting HP and class starter kits.

Pure Python. Validation failures raise ValueError with a message fit to
show the player.
"""

import logging
import random
from typing import Dict, Optional

from models.characters import Character, ClassType, Stats
from tools.item_catalog import starter_kit

logger = logging.getLogger("CharacterFactory")

POINT_BUY_TOTAL = 27
MIN_SCORE = 8
MAX_SCORE = 15
SCORE_COSTS: Dict[int, int] = {8: 0, 9: 1, 10: 2, 11: 3, 12: 4, 13: 5, 14: 7, 15: 9}

STAT_NAMES = ("STR", "DEX", "CON", "INT", "WIS", "CHA")

HIT_DICE: Dict[ClassType, int] = {
    ClassType.WIZARD: 6,
    ClassType.FIGHTER: 10,
}
DEFAULT_HIT_DIE = 8

MAX_PARTY_SIZE = 4


def point_buy_cost(stats: Stats) -> int:
    """Points spent on `stats`. Raises ValueError for scores outside 8-15."""
    total = 0
    for name in STAT_NAMES:
        score = getattr(stats, name)
        if score not in SCORE_COSTS:
            raise ValueError(f"{name} must be between {MIN_SCORE} and {MAX_SCORE} (got {score})")
        total += SCORE_COSTS[score]
    return total


def validate_point_buy(stats: Stats) -> int:
    """Return the unspent points, raising ValueError if the budget is exceeded."""
    spent = point_buy_cost(stats)
    if spent > POINT_BUY_TOTAL:
        raise ValueError(f"Point buy over budget: {spent}/{POINT_BUY_TOTAL}")
    return POINT_BUY_TOTAL - spent


def random_point_buy(rng: Optional[random.Random] = None) -> Stats:
    """Spend the point budget on random abilities."""
    rng = rng or random
    scores = {name: MIN_SCORE for name in STAT_NAMES}
    remaining = POINT_BUY_TOTAL
    for _ in range(100):
        if remaining <= 0:
            break
        stat = rng.choice(STAT_NAMES)
        current = scores[stat]
        if current >= MAX_SCORE:
            continue
        cost = SCORE_COSTS[current + 1] - SCORE_COSTS[current]
        if remaining >= cost:
            scores[stat] = current + 1
            remaining -= cost
    return Stats(**scores)


def starting_hp(class_type: ClassType, stats: Stats) -> int:
    hit_die = HIT_DICE.get(ClassType(class_type), DEFAULT_HIT_DIE)
    return max(1, hit_die + stats.modifier("CON"))


def create_character(
    name: str,
    owner_email: str,
    class_type: ClassType = ClassType.FIGHTER,
    stats: Optional[Stats] = None,
    bio: str = "",
    avatar_url: Optional[str] = None,
) -> Character:
    """Build a level-1 character with full HP and the class starter kit."""
    class_type = ClassType(class_type)
    stats = stats or Stats(**{n: MIN_SCORE for n in STAT_NAMES})
    validate_point_buy(stats)
    if not owner_email:
        raise ValueError("A character needs an owning player")

    hp = starting_hp(class_type, stats)
    equipment, inventory = starter_kit(class_type)
    character = Character(
        name=(name or "").strip() or "Unknown Hero",
        owner_email=owner_email,
        class_type=class_type,
        level=1,
        hp=hp,
        max_hp=hp,
        stats=stats,
        bio=bio,
        avatar_url=avatar_url,
        inventory=inventory,
        equipment=equipment,
    )
    logger.info(f"Created {character.name} ({class_type.value}, {hp} HP) for {owner_email}")
    return character
