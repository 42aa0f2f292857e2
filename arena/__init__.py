"""
arena - HTTP backend for SquadUp

Users, wallets, tournaments, matches, KYC, notifications and squads over
JSON. All state lives in one SQLite file behind ArenaDB.
"""

from .server import app
from .db import ArenaDB

__all__ = ["app", "ArenaDB"]
