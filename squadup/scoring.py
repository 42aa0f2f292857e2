"""
squadup/scoring.py - Placement points, prize money and leaderboard ranking.

Pure functions over plain dicts. The server feeds these from ArenaDB rows;
nothing here touches storage.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

logger = logging.getLogger(__name__)

# ============================================================================
# Points
# ============================================================================

# Standard BR placement table: 1st-5th explicit, then bands.
POSITION_POINTS = {1: 15, 2: 12, 3: 10, 4: 8, 5: 6}
KILL_POINTS = 1


def position_points(position: int | None) -> int:
    """Placement points for a finishing position (1-indexed)."""
    if position is None or position < 1:
        return 0
    if position in POSITION_POINTS:
        return POSITION_POINTS[position]
    if position <= 10:
        return 4
    if position <= 15:
        return 2
    return 0


def match_points(position: int | None, kills: int | None) -> int:
    """Placement points plus one point per kill."""
    return position_points(position) + KILL_POINTS * max(kills or 0, 0)


# ============================================================================
# Prize money
# ============================================================================

# Percent of the prize pool per finishing position. Squads pay four places.
PRIZE_SHARES = {1: 50, 2: 30, 3: 20}
SQUAD_PRIZE_SHARES = {1: 40, 2: 30, 3: 20, 4: 10}


def prize_shares(mode: str | None) -> dict[int, int]:
    return SQUAD_PRIZE_SHARES if mode == "Squad" else PRIZE_SHARES


def position_prize(position: int | None, prize_pool: int, mode: str | None = None) -> int:
    """Placement share of the pool, rounded down to a whole unit."""
    percent = prize_shares(mode).get(position or 0, 0)
    return prize_pool * percent // 100


def match_prize(
    position: int | None,
    kills: int | None,
    prize_pool: int,
    per_kill: int,
    mode: str | None = None,
) -> int:
    """Total payout for one team: placement share plus the per-kill bonus.

    Examples:
        >>> match_prize(1, 4, 10000, 25)
        5100
        >>> match_prize(1, 4, 10000, 25, mode="Squad")
        4100
        >>> match_prize(7, 2, 10000, 25)
        50
    """
    return position_prize(position, prize_pool, mode) + max(kills or 0, 0) * per_kill


# ============================================================================
# Leaderboard
# ============================================================================

SORT_KEYS = ("points", "kills", "wins", "earnings")


@dataclass
class LeaderboardEntry:
    """One row of the leaderboard."""

    user_id: int
    username: str
    country: str | None = None
    game_mode: str | None = None
    matches: int = 0
    wins: int = 0
    kills: int = 0
    points: int = 0
    earnings: int = 0
    rank: int = 0
    match_ids: list[int] = field(default_factory=list, repr=False)


def build_leaderboard(
    users: Iterable[dict[str, Any]],
    matches: Iterable[dict[str, Any]],
    earnings: dict[int, int] | None = None,
    sort_by: str = "points",
) -> list[LeaderboardEntry]:
    """Aggregate approved matches into ranked entries.

    A team result counts for every member of the team: each member gets the
    placement points, the team's kills, and a win for a 1st place. Earnings
    come from prize transactions, which are paid to the team leader only.

    Users with no approved matches and no earnings are left out.

    Args:
        users: User rows (need ``id`` and ``username``).
        matches: Match rows with ``team_members``, ``position``, ``kills``.
            Only rows with ``result_approved`` set are counted.
        earnings: user_id -> total prize money.
        sort_by: One of SORT_KEYS. Ties fall back to points, then user id.

    Raises:
        ValueError: for an unknown sort key.
    """
    if sort_by not in SORT_KEYS:
        raise ValueError(f"Unknown sort key {sort_by!r} (expected one of {', '.join(SORT_KEYS)})")

    earnings = earnings or {}
    entries: dict[int, LeaderboardEntry] = {
        u["id"]: LeaderboardEntry(
            user_id=u["id"],
            username=u["username"],
            country=u.get("country"),
            game_mode=u.get("game_mode"),
            earnings=earnings.get(u["id"], 0),
        )
        for u in users
    }

    for match in matches:
        if not match.get("result_approved"):
            continue
        points = match_points(match.get("position"), match.get("kills"))
        kills = max(match.get("kills") or 0, 0)
        won = match.get("position") == 1
        for member in match.get("team_members", []):
            entry = entries.get(member["id"])
            if entry is None or match["id"] in entry.match_ids:
                continue
            entry.match_ids.append(match["id"])
            entry.matches += 1
            entry.points += points
            entry.kills += kills
            entry.wins += int(won)

    ranked = [e for e in entries.values() if e.matches or e.earnings]
    ranked.sort(key=lambda e: (-getattr(e, sort_by), -e.points, e.user_id))
    for i, entry in enumerate(ranked, start=1):
        entry.rank = i
    return ranked
