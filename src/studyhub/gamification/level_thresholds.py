"""Level thresholds and promotion.

A level-L account is promoted when its balance reaches ``L**2 * 100``.
Promotion is single-step: one grant moves an account up at most one level,
even when the new balance also clears the next threshold.
"""

from __future__ import annotations

XP_PER_LEVEL_UNIT = 100


def threshold(level: int) -> int:
    """Balance required to leave ``level``."""
    if level < 1:
        msg = f"level must be >= 1, got {level}"
        raise ValueError(msg)
    return level * level * XP_PER_LEVEL_UNIT


def next_level(level: int, new_xp: int) -> int:
    """Level after a grant that brought the balance to ``new_xp``."""
    if new_xp >= threshold(level):
        return level + 1
    return level


def level_progress(level: int, xp: int) -> dict:
    """Progress of ``xp`` towards the current level's threshold."""
    target = threshold(level)
    floor = threshold(level - 1) if level > 1 else 0
    span = target - floor
    into = min(max(xp - floor, 0), span)
    return {
        "level": level,
        "xp": xp,
        "threshold": target,
        "xp_to_next": max(target - xp, 0),
        "progress_percent": round(100 * into / span, 1),
    }


def level_table(max_level: int = 20) -> list[dict]:
    """Threshold table for display, levels 1..max_level."""
    return [
        {"level": lvl, "threshold": threshold(lvl)}
        for lvl in range(1, max_level + 1)
    ]
