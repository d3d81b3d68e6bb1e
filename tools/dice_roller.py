"""
Dice Roller — Pure Python dice parser and roller.

Handles standard formulas anywhere in a string: XdY, XdY+Z, XdY-Z, dY.
Anything that does not contain a formula falls back to a single d20, so
a player typing "roll for it" still gets a check.

This is flavor RNG for the table, not a simulation-grade generator.
"""

import random
import re
import logging
from typing import Dict, Any, Optional

logger = logging.getLogger("DiceRoller")

MAX_DICE = 100

_DICE_RE = re.compile(
    r"(?P<count>\d+)?"          # optional count (default 1)
    r"d"
    r"(?P<faces>\d+)"           # faces (required)
    r"(?P<mod>[+-]\s*\d+)?",    # optional signed modifier
    re.IGNORECASE,
)


def _fallback(formula: str, rng) -> Dict[str, Any]:
    value = rng.randint(1, 20)
    return {
        "total": value,
        "detail": f"d20 ({value})",
        "formula": "1d20",
        "rolls": [value],
        "modifier": 0,
    }


def roll(formula: str, rng: Optional[random.Random] = None) -> Dict[str, Any]:
    """Parse a dice formula and roll it.

    Examples:
        '2d6+3'   → roll 2d6, add 3    → total in [5, 15]
        '1d20-2'  → roll 1d20, subtract 2
        'd8'      → roll 1d8
        'garbage' → roll 1d20

    Returns:
        {
            "total": int,
            "detail": "2d6+3 -> [4+2]+3",
            "formula": "2d6+3",
            "rolls": [4, 2],
            "modifier": 3,
        }
    """
    rng = rng or random
    text = (formula or "").strip()
    match = _DICE_RE.search(text)
    if not match:
        logger.debug(f"No dice formula in '{text}', rolling a d20")
        return _fallback(text, rng)

    count = int(match.group("count") or "1")
    faces = int(match.group("faces"))
    if count < 1 or faces < 1 or count > MAX_DICE:
        logger.warning(f"Unusable dice formula '{match.group(0)}', rolling a d20")
        return _fallback(text, rng)

    modifier = int(re.sub(r"\s", "", match.group("mod") or "+0"))
    rolls = [rng.randint(1, faces) for _ in range(count)]
    total = sum(rolls) + modifier

    canonical = f"{count}d{faces}"
    mod_str = ""
    if modifier:
        mod_str = f"+{modifier}" if modifier > 0 else str(modifier)
    canonical += mod_str

    return {
        "total": total,
        "detail": f"{canonical} -> [{'+'.join(str(r) for r in rolls)}]{mod_str}",
        "formula": canonical,
        "rolls": rolls,
        "modifier": modifier,
    }


def is_natural(result: Dict[str, Any], value: int) -> bool:
    """True for a single d20 showing `value` (20 = critical, 1 = fumble)."""
    return result["formula"].startswith("1d20") and result["rolls"] == [value]
