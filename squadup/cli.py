#!/usr/bin/env python3
"""
squadup/cli.py - Command line interface for SquadUp

Usage:
    squadup serve [--port 8000] [--db PATH] [--config PATH]
    squadup seed [--db PATH]
    squadup leaderboard [--db PATH] [--sort points] [--limit 20]
"""

import argparse
import logging
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


# Demo tournaments for a fresh install. Days are offsets from today.
SEED_TOURNAMENTS = [
    {
        "title": "BGMI Pro League Season 1",
        "description": "Squad up for the first season of the BGMI Pro League.",
        "mode": "Squad",
        "map": "Erangel",
        "game_mode": "BGMI",
        "entry_fee": 250,
        "prize_pool": 10000,
        "per_kill": 25,
        "max_players": 100,
        "days": 2,
    },
    {
        "title": "Solo Showdown",
        "description": "Last one standing takes half the pool.",
        "mode": "Solo",
        "map": "Miramar",
        "game_mode": "PUBG",
        "entry_fee": 100,
        "prize_pool": 5000,
        "per_kill": 20,
        "max_players": 100,
        "days": 3,
    },
    {
        "title": "Duo Destruction",
        "description": "Bring a partner. Sanhok rewards aggression.",
        "mode": "Duo",
        "map": "Sanhok",
        "game_mode": "PUBG",
        "entry_fee": 150,
        "prize_pool": 7500,
        "per_kill": 30,
        "max_players": 50,
        "days": 5,
    },
]


def _open_db(path: str | None):
    from arena.db import ArenaDB
    from squadup.config import load_config

    config = load_config()
    db_path = path or config.server.db_path
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    return ArenaDB(db_path, room_visible_minutes=config.matches.room_visible_minutes)


def cmd_serve(args):
    """Start the SquadUp API server."""
    import uvicorn

    from arena.server import app
    from squadup.config import load_config

    config = load_config(Path(args.config) if args.config else None)
    port = args.port or config.server.port

    # Set paths on app state so lifespan picks them up
    app.state.db_path = args.db
    app.state.config_path = Path(args.config) if args.config else None
    logger.info(f"Starting SquadUp server on port {port} (db: {args.db or config.server.db_path})")
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")
    return 0


def cmd_seed(args):
    """Insert the demo tournaments (skips any that already exist)."""
    db = _open_db(args.db)
    existing = {t["title"] for t in db.list_tournaments()}
    today = datetime.now(timezone.utc).replace(hour=18, minute=0, second=0, microsecond=0)

    created = 0
    for seed in SEED_TOURNAMENTS:
        if seed["title"] in existing:
            logger.info(f"Skipping {seed['title']} (already seeded)")
            continue
        data = {k: v for k, v in seed.items() if k != "days"}
        data["date"] = today + timedelta(days=seed["days"])
        db.create_tournament(data)
        created += 1

    db.close()
    print(f"\n🏆 Seeded {created} tournament(s)\n")
    return 0


def cmd_leaderboard(args):
    """Print the leaderboard."""
    from rich.console import Console
    from rich.table import Table
    from rich.text import Text

    from squadup.currency import format_amount
    from squadup.scoring import build_leaderboard

    db = _open_db(args.db)
    entries = build_leaderboard(
        db.list_users(country=args.country),
        db.list_matches(approved_only=True),
        earnings=db.prize_totals(),
        sort_by=args.sort,
    )
    currencies = {u["id"]: u["currency"] for u in db.list_users()}
    db.close()

    console = Console()
    if not entries:
        console.print("\n[dim]No ranked players yet.[/dim]\n")
        return 0

    table = Table(title=f"Leaderboard (by {args.sort})", show_header=True, header_style="bold cyan")
    table.add_column("#", justify="right")
    table.add_column("Player", style="bold", min_width=12)
    table.add_column("Country")
    table.add_column("Matches", justify="right")
    table.add_column("Wins", justify="right")
    table.add_column("Kills", justify="right")
    table.add_column("Points", justify="right")
    table.add_column("Earnings", justify="right", min_width=10)

    for e in entries[: args.limit]:
        rank_style = "bold yellow" if e.rank == 1 else ""
        table.add_row(
            Text(str(e.rank), style=rank_style),
            e.username,
            e.country or "",
            str(e.matches),
            str(e.wins),
            str(e.kills),
            str(e.points),
            format_amount(e.earnings, currencies.get(e.user_id, "USD")),
        )

    console.print()
    console.print(table)
    console.print()
    return 0


def main():
    from squadup.scoring import SORT_KEYS

    parser = argparse.ArgumentParser(
        prog="squadup",
        description="Esports tournament marketplace for PUBG/BGMI",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Run the API server")
    serve_parser.add_argument("--port", "-p", type=int, default=None, help="Port (default: from config, else 8000)")
    serve_parser.add_argument("--db", default=None, help="SQLite database path (default: from config)")
    serve_parser.add_argument("--config", default=None, help="Config file (default: ~/.squadup/config.toml)")
    serve_parser.set_defaults(func=cmd_serve)

    # seed command
    seed_parser = subparsers.add_parser("seed", help="Insert demo tournaments")
    seed_parser.add_argument("--db", default=None, help="SQLite database path (default: from config)")
    seed_parser.set_defaults(func=cmd_seed)

    # leaderboard command
    lb_parser = subparsers.add_parser("leaderboard", help="Print the leaderboard")
    lb_parser.add_argument("--db", default=None, help="SQLite database path (default: from config)")
    lb_parser.add_argument("--sort", choices=SORT_KEYS, default="points", help="Sort key (default: points)")
    lb_parser.add_argument("--limit", "-n", type=int, default=20, help="Rows to show (default: 20)")
    lb_parser.add_argument("--country", default=None, help="Only players from this country")
    lb_parser.set_defaults(func=cmd_leaderboard)

    args = parser.parse_args()
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
