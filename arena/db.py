"""
arena/db.py - SQLite storage for the tournament marketplace.

All queries go through ArenaDB. One instance per server lifetime,
backed by a single SQLite file (or :memory: for tests).

Two operations carry real invariants:
  - create_transaction(): balance delta + transaction row in one SQLite
    transaction. A debit never takes a wallet below zero.
  - join_tournament(): match row + registered-player bump (+ optional entry
    fee) in one SQLite transaction.

Every write runs under one store-wide lock so check-then-write sequences can't
interleave across request threads.
"""

import json
import logging
import sqlite3
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

logger = logging.getLogger(__name__)

# ============================================================================
# Vocabulary
# ============================================================================

CREDIT_TYPES = ("deposit", "prize", "refund")
DEBIT_TYPES = ("withdrawal", "entry_fee")
TRANSACTION_TYPES = CREDIT_TYPES + DEBIT_TYPES
TRANSACTION_STATUSES = ("pending", "completed", "failed")
# Largest single amount (transaction, fee or pool). Keeps balances inside SQLite INTEGER.
MAX_AMOUNT = 10**12

KYC_STATUSES = ("not_submitted", "pending", "verified", "rejected")
# Document decision -> resulting user kyc_status
KYC_DECISIONS = {"approved": "verified", "verified": "verified", "rejected": "rejected"}
# Documents themselves are only ever pending, approved or rejected.
KYC_DOCUMENT_ALIASES = {"verified": "approved"}

LEADER = "leader"
MEMBER = "member"

DEFAULT_ROOM_VISIBLE_MINUTES = 15


# ============================================================================
# Errors
# ============================================================================


class ArenaError(Exception):
    """Base for storage-level failures the API turns into error responses."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(ArenaError):
    entity = "Record"

    def __init__(self, entity_id: Any = None):
        super().__init__(f"{self.entity} not found")
        self.entity_id = entity_id


class UserNotFoundError(NotFoundError):
    entity = "User"


class TournamentNotFoundError(NotFoundError):
    entity = "Tournament"


class MatchNotFoundError(NotFoundError):
    entity = "Match"


class KycDocumentNotFoundError(NotFoundError):
    entity = "KYC document"


class NotificationNotFoundError(NotFoundError):
    entity = "Notification"


class SquadMemberNotFoundError(NotFoundError):
    entity = "Squad member"


class InsufficientFundsError(ArenaError):
    """Raised when a debit is larger than the wallet balance."""

    def __init__(self, user_id: int, balance: int, amount: int):
        super().__init__("Insufficient balance")
        self.user_id = user_id
        self.balance = balance
        self.amount = amount


class TournamentFullError(ArenaError):
    def __init__(self, tournament_id: int):
        super().__init__("Tournament is full")
        self.tournament_id = tournament_id


class TournamentClosedError(ArenaError):
    def __init__(self, tournament_id: int, status: str):
        super().__init__(f"Tournament is not open for registration (status: {status})")
        self.tournament_id = tournament_id
        self.status = status


class InvalidStateError(ArenaError):
    """Raised when an operation doesn't fit the record's current state."""


class DuplicateError(ArenaError):
    """Raised when a unique user attribute is already taken."""


# ============================================================================
# Team members
# ============================================================================


def build_team(leader_id: int, teammates: Iterable[int] = ()) -> list[dict[str, Any]]:
    """Leader first, then each distinct teammate as a member."""
    team = [{"id": leader_id, "role": LEADER}]
    seen = {leader_id}
    for mate in teammates:
        if mate in seen:
            continue
        seen.add(mate)
        team.append({"id": mate, "role": MEMBER})
    return team


def team_leader(team_members: list[dict[str, Any]]) -> int | None:
    for member in team_members:
        if member.get("role") == LEADER:
            return member["id"]
    return team_members[0]["id"] if team_members else None


# ============================================================================
# Storage
# ============================================================================

# Columns a PATCH may touch. Anything else (ids, balances, counters) only
# moves through the dedicated operations below.
_USER_EDITABLE = (
    "username", "phone_number", "country_code", "email", "game_id", "game_mode",
    "role", "profile_picture", "kyc_status", "currency", "country",
)
_TOURNAMENT_EDITABLE = (
    "title", "description", "image", "mode", "map", "game_mode", "entry_fee",
    "prize_pool", "per_kill", "date", "max_players", "status",
)
_MATCH_EDITABLE = (
    "tournament_title", "date", "status", "mode", "map", "position", "kills",
    "team_members", "room_id", "room_password", "room_visible_at",
    "result_submitted", "result_approved", "result_screenshot", "prize",
)
_KYC_EDITABLE = (
    "type", "document_number", "front_image", "back_image", "selfie", "status",
    "rejection_reason",
)
_NOTIFICATION_EDITABLE = ("title", "message", "type", "read")


class ArenaDB:
    """Thin wrapper around SQLite for users, wallets, tournaments and matches."""

    def __init__(
        self,
        path: str = "squadup.db",
        room_visible_minutes: int = DEFAULT_ROOM_VISIBLE_MINUTES,
    ):
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._lock = threading.RLock()
        self.room_visible_minutes = room_visible_minutes
        self._create_tables()

    def _create_tables(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT NOT NULL,
                phone_number TEXT NOT NULL,
                country_code TEXT NOT NULL,
                email TEXT,
                game_id TEXT,
                game_mode TEXT NOT NULL DEFAULT 'PUBG',
                role TEXT NOT NULL DEFAULT 'player',
                profile_picture TEXT,
                kyc_status TEXT NOT NULL DEFAULT 'not_submitted',
                currency TEXT NOT NULL DEFAULT 'USD',
                country TEXT NOT NULL DEFAULT 'Other',
                wallet_balance INTEGER NOT NULL DEFAULT 0 CHECK (wallet_balance >= 0),
                created_at TEXT
            );
            CREATE UNIQUE INDEX IF NOT EXISTS idx_users_username
                ON users (username COLLATE NOCASE);
            CREATE UNIQUE INDEX IF NOT EXISTS idx_users_phone
                ON users (phone_number, country_code);

            CREATE TABLE IF NOT EXISTS transactions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL REFERENCES users (id),
                amount INTEGER NOT NULL CHECK (amount > 0),
                type TEXT NOT NULL,
                status TEXT NOT NULL,
                details TEXT,
                created_at TEXT
            );
            CREATE INDEX IF NOT EXISTS idx_transactions_user ON transactions (user_id);

            CREATE TABLE IF NOT EXISTS tournaments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                description TEXT,
                image TEXT,
                mode TEXT NOT NULL,
                map TEXT NOT NULL,
                game_mode TEXT NOT NULL DEFAULT 'PUBG',
                entry_fee INTEGER NOT NULL DEFAULT 0,
                prize_pool INTEGER NOT NULL DEFAULT 0,
                per_kill INTEGER NOT NULL DEFAULT 0,
                date TEXT NOT NULL,
                max_players INTEGER NOT NULL,
                registered_players INTEGER NOT NULL DEFAULT 0,
                status TEXT NOT NULL DEFAULT 'upcoming',
                created_at TEXT
            );

            CREATE TABLE IF NOT EXISTS matches (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                tournament_id INTEGER NOT NULL,
                tournament_title TEXT NOT NULL,
                date TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'upcoming',
                mode TEXT NOT NULL,
                map TEXT NOT NULL,
                position INTEGER,
                kills INTEGER,
                team_members TEXT NOT NULL DEFAULT '[]',
                room_id TEXT,
                room_password TEXT,
                room_visible_at TEXT,
                result_submitted INTEGER NOT NULL DEFAULT 0,
                result_approved INTEGER NOT NULL DEFAULT 0,
                result_screenshot TEXT,
                prize INTEGER,
                created_at TEXT
            );
            CREATE INDEX IF NOT EXISTS idx_matches_tournament ON matches (tournament_id);

            CREATE TABLE IF NOT EXISTS kyc_documents (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL REFERENCES users (id),
                type TEXT NOT NULL,
                document_number TEXT NOT NULL,
                front_image TEXT NOT NULL,
                back_image TEXT,
                selfie TEXT,
                status TEXT NOT NULL DEFAULT 'pending',
                rejection_reason TEXT,
                created_at TEXT
            );

            CREATE TABLE IF NOT EXISTS notifications (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL REFERENCES users (id),
                title TEXT NOT NULL,
                message TEXT NOT NULL,
                type TEXT NOT NULL,
                read INTEGER NOT NULL DEFAULT 0,
                created_at TEXT
            );

            CREATE TABLE IF NOT EXISTS squad_members (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner_id INTEGER NOT NULL REFERENCES users (id),
                username TEXT NOT NULL,
                game_id TEXT NOT NULL,
                profile_picture TEXT,
                created_at TEXT
            );
            """
        )

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(
        self,
        username: str,
        phone_number: str,
        country_code: str,
        *,
        currency: str = "USD",
        country: str = "Other",
        game_mode: str = "PUBG",
        role: str = "player",
        email: str | None = None,
        game_id: str | None = None,
        profile_picture: str | None = None,
    ) -> dict[str, Any]:
        """Register a user. Wallets always open at zero.

        Raises:
            DuplicateError: phone number or username already registered.
        """
        with self._lock, self._conn:
            if self.get_user_by_phone(phone_number, country_code) is not None:
                raise DuplicateError("User with this phone number already exists")
            if self.get_user_by_username(username) is not None:
                raise DuplicateError("Username already taken")

            cursor = self._conn.execute(
                "INSERT INTO users (username, phone_number, country_code, email, game_id, "
                "game_mode, role, profile_picture, currency, country, wallet_balance, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?)",
                (
                    username, phone_number, country_code, email, game_id, game_mode,
                    role, profile_picture, currency, country, _now(),
                ),
            )
        logger.info(f"User registered: {username} ({country_code} {phone_number}) -> {cursor.lastrowid}")
        return self.get_user(cursor.lastrowid)

    def get_user(self, user_id: int) -> dict[str, Any] | None:
        row = self._conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return dict(row) if row else None

    def require_user(self, user_id: int) -> dict[str, Any]:
        user = self.get_user(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    def get_user_by_username(self, username: str) -> dict[str, Any] | None:
        """Case-insensitive username lookup."""
        row = self._conn.execute(
            "SELECT * FROM users WHERE username = ? COLLATE NOCASE", (username,)
        ).fetchone()
        return dict(row) if row else None

    def get_user_by_phone(self, phone_number: str, country_code: str) -> dict[str, Any] | None:
        row = self._conn.execute(
            "SELECT * FROM users WHERE phone_number = ? AND country_code = ?",
            (phone_number, country_code),
        ).fetchone()
        return dict(row) if row else None

    def list_users(self, country: str | None = None) -> list[dict[str, Any]]:
        if country:
            rows = self._conn.execute(
                "SELECT * FROM users WHERE country = ? COLLATE NOCASE ORDER BY id", (country,)
            ).fetchall()
        else:
            rows = self._conn.execute("SELECT * FROM users ORDER BY id").fetchall()
        return [dict(r) for r in rows]

    def update_user(self, user_id: int, fields: dict[str, Any]) -> dict[str, Any]:
        """Profile edit. Balance and id are not editable here.

        Raises:
            UserNotFoundError, DuplicateError
        """
        updates = _pick(fields, _USER_EDITABLE)
        with self._lock, self._conn:
            user = self.require_user(user_id)
            if "username" in updates:
                other = self.get_user_by_username(updates["username"])
                if other is not None and other["id"] != user_id:
                    raise DuplicateError("Username already taken")
            if "phone_number" in updates or "country_code" in updates:
                other = self.get_user_by_phone(
                    updates.get("phone_number", user["phone_number"]),
                    updates.get("country_code", user["country_code"]),
                )
                if other is not None and other["id"] != user_id:
                    raise DuplicateError("User with this phone number already exists")
            self._update_row("users", user_id, updates)
        return self.get_user(user_id)

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    def create_transaction(
        self,
        user_id: int,
        tx_type: str,
        amount: int,
        status: str = "completed",
        details: str | None = None,
    ) -> dict[str, Any]:
        """Record a wallet transaction and apply its balance delta.

        deposit/prize/refund credit the wallet; withdrawal/entry_fee debit it.
        Nothing is written if the user is missing or a debit would overdraw.

        Raises:
            ValueError: unknown type/status or non-positive amount.
            UserNotFoundError: no such user (no transaction is recorded).
            InsufficientFundsError: debit larger than the current balance.
        """
        _check_transaction(tx_type, amount, status)
        with self._lock, self._conn:
            return self._apply_transaction(user_id, tx_type, amount, status, details)

    def _apply_transaction(
        self,
        user_id: int,
        tx_type: str,
        amount: int,
        status: str,
        details: str | None,
    ) -> dict[str, Any]:
        # Caller holds self._lock inside an open SQLite transaction.
        row = self._conn.execute(
            "SELECT wallet_balance FROM users WHERE id = ?", (user_id,)
        ).fetchone()
        if row is None:
            raise UserNotFoundError(user_id)

        if tx_type in DEBIT_TYPES:
            # Compare-and-swap: only succeeds if the funds are still there
            cursor = self._conn.execute(
                "UPDATE users SET wallet_balance = wallet_balance - ? "
                "WHERE id = ? AND wallet_balance >= ?",
                (amount, user_id, amount),
            )
            if cursor.rowcount == 0:
                logger.warning(
                    f"Rejected {tx_type} of {amount} for user {user_id}: "
                    f"balance {row['wallet_balance']}"
                )
                raise InsufficientFundsError(user_id, row["wallet_balance"], amount)
        else:
            self._conn.execute(
                "UPDATE users SET wallet_balance = wallet_balance + ? WHERE id = ?",
                (amount, user_id),
            )

        cursor = self._conn.execute(
            "INSERT INTO transactions (user_id, amount, type, status, details, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (user_id, amount, tx_type, status, details, _now()),
        )
        tx = self._conn.execute(
            "SELECT * FROM transactions WHERE id = ?", (cursor.lastrowid,)
        ).fetchone()
        logger.info(f"Transaction {tx['id']}: {tx_type} {amount} for user {user_id} ({status})")
        return dict(tx)

    def get_transaction(self, tx_id: int) -> dict[str, Any] | None:
        row = self._conn.execute("SELECT * FROM transactions WHERE id = ?", (tx_id,)).fetchone()
        return dict(row) if row else None

    def get_user_transactions(self, user_id: int) -> list[dict[str, Any]]:
        rows = self._conn.execute(
            "SELECT * FROM transactions WHERE user_id = ? ORDER BY id", (user_id,)
        ).fetchall()
        return [dict(r) for r in rows]

    def get_balance(self, user_id: int) -> int:
        return self.require_user(user_id)["wallet_balance"]

    def wallet_summary(self, user_id: int) -> dict[str, Any]:
        """Balance plus lifetime earnings (prizes) and expenses (entry fees)."""
        user = self.require_user(user_id)
        totals = {
            r["type"]: (r["total"], r["n"])
            for r in self._conn.execute(
                "SELECT type, SUM(amount) AS total, COUNT(*) AS n FROM transactions "
                "WHERE user_id = ? GROUP BY type",
                (user_id,),
            ).fetchall()
        }
        return {
            "user_id": user_id,
            "balance": user["wallet_balance"],
            "currency": user["currency"],
            "earnings": totals.get("prize", (0, 0))[0],
            "expenses": totals.get("entry_fee", (0, 0))[0],
            "transaction_count": sum(n for _, n in totals.values()),
        }

    def prize_totals(self) -> dict[int, int]:
        """user_id -> total prize money, for the leaderboard."""
        rows = self._conn.execute(
            "SELECT user_id, SUM(amount) AS total FROM transactions "
            "WHERE type = 'prize' GROUP BY user_id"
        ).fetchall()
        return {r["user_id"]: r["total"] for r in rows}

    # ------------------------------------------------------------------
    # Tournaments
    # ------------------------------------------------------------------

    def create_tournament(self, data: dict[str, Any]) -> dict[str, Any]:
        fields = _pick(data, _TOURNAMENT_EDITABLE)
        fields["date"] = _iso(fields["date"])
        fields.setdefault("status", "upcoming")
        fields["registered_players"] = data.get("registered_players", 0)
        fields["created_at"] = _now()
        with self._lock, self._conn:
            tournament_id = self._insert_row("tournaments", fields)
        logger.info(f"Tournament created: {fields['title']} -> {tournament_id}")
        return self.get_tournament(tournament_id)

    def get_tournament(self, tournament_id: int) -> dict[str, Any] | None:
        row = self._conn.execute(
            "SELECT * FROM tournaments WHERE id = ?", (tournament_id,)
        ).fetchone()
        return dict(row) if row else None

    def require_tournament(self, tournament_id: int) -> dict[str, Any]:
        tournament = self.get_tournament(tournament_id)
        if tournament is None:
            raise TournamentNotFoundError(tournament_id)
        return tournament

    def list_tournaments(
        self,
        status: str | None = None,
        mode: str | None = None,
        game_mode: str | None = None,
    ) -> list[dict[str, Any]]:
        clauses, params = [], []
        for column, value in (("status", status), ("mode", mode), ("game_mode", game_mode)):
            if value:
                clauses.append(f"{column} = ? COLLATE NOCASE")
                params.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._conn.execute(
            f"SELECT * FROM tournaments {where} ORDER BY date, id", params
        ).fetchall()
        return [dict(r) for r in rows]

    def update_tournament(self, tournament_id: int, fields: dict[str, Any]) -> dict[str, Any]:
        updates = _pick(fields, _TOURNAMENT_EDITABLE)
        if "date" in updates:
            updates["date"] = _iso(updates["date"])
        with self._lock, self._conn:
            self.require_tournament(tournament_id)
            self._update_row("tournaments", tournament_id, updates)
        return self.get_tournament(tournament_id)

    def delete_tournament(self, tournament_id: int) -> None:
        with self._lock, self._conn:
            cursor = self._conn.execute("DELETE FROM tournaments WHERE id = ?", (tournament_id,))
        if cursor.rowcount == 0:
            raise TournamentNotFoundError(tournament_id)
        logger.info(f"Tournament deleted: {tournament_id}")

    def join_tournament(
        self,
        tournament_id: int,
        user_id: int,
        teammates: Iterable[int] = (),
        charge_entry_fee: bool = False,
    ) -> dict[str, Any]:
        """Register a team for a tournament. Returns the new match.

        The registered-player counter goes up by exactly one per join, no
        matter how many teammates come along.

        Raises:
            TournamentNotFoundError, UserNotFoundError
            TournamentClosedError: status isn't 'upcoming'.
            TournamentFullError: registered_players already at max_players.
            InsufficientFundsError: charge_entry_fee and the leader can't pay.
        """
        teammates = list(teammates)
        with self._lock, self._conn:
            tournament = self.require_tournament(tournament_id)
            self.require_user(user_id)

            if tournament["status"] != "upcoming":
                raise TournamentClosedError(tournament_id, tournament["status"])
            if tournament["registered_players"] >= tournament["max_players"]:
                raise TournamentFullError(tournament_id)

            if charge_entry_fee and tournament["entry_fee"] > 0:
                self._apply_transaction(
                    user_id, "entry_fee", tournament["entry_fee"], "completed",
                    f"Entry fee: {tournament['title']}",
                )

            match_id = self._insert_match(
                tournament, build_team(user_id, teammates), status="upcoming"
            )
            self._conn.execute(
                "UPDATE tournaments SET registered_players = registered_players + 1 WHERE id = ?",
                (tournament_id,),
            )

        logger.info(
            f"User {user_id} joined tournament {tournament_id} "
            f"({len(teammates)} teammates) -> match {match_id}"
        )
        return self.get_match(match_id)

    # ------------------------------------------------------------------
    # Matches
    # ------------------------------------------------------------------

    def _insert_match(
        self,
        tournament: dict[str, Any],
        team: list[dict[str, Any]],
        status: str,
    ) -> int:
        date = _iso(tournament["date"])
        return self._insert_row(
            "matches",
            {
                "tournament_id": tournament["id"],
                "tournament_title": tournament["title"],
                "date": date,
                "status": status,
                "mode": tournament["mode"],
                "map": tournament["map"],
                "team_members": json.dumps(team),
                "room_visible_at": self._visible_at(date),
                "created_at": _now(),
            },
        )

    def _visible_at(self, date: str) -> str:
        start = datetime.fromisoformat(date)
        return (start - timedelta(minutes=self.room_visible_minutes)).isoformat()

    def create_match(self, data: dict[str, Any]) -> dict[str, Any]:
        """Admin-side match creation with explicit fields."""
        fields = _pick(data, _MATCH_EDITABLE)
        fields["tournament_id"] = data["tournament_id"]
        fields["date"] = _iso(fields["date"])
        fields.setdefault("status", "upcoming")
        fields["team_members"] = json.dumps(_normalise_team(fields.get("team_members", [])))
        fields.setdefault("room_visible_at", self._visible_at(fields["date"]))
        fields["created_at"] = _now()
        with self._lock, self._conn:
            match_id = self._insert_row("matches", fields)
        return self.get_match(match_id)

    def get_match(self, match_id: int) -> dict[str, Any] | None:
        row = self._conn.execute("SELECT * FROM matches WHERE id = ?", (match_id,)).fetchone()
        return _match_dict(row) if row else None

    def require_match(self, match_id: int) -> dict[str, Any]:
        match = self.get_match(match_id)
        if match is None:
            raise MatchNotFoundError(match_id)
        return match

    def list_matches(
        self,
        tournament_id: int | None = None,
        approved_only: bool = False,
    ) -> list[dict[str, Any]]:
        clauses, params = [], []
        if tournament_id is not None:
            clauses.append("tournament_id = ?")
            params.append(tournament_id)
        if approved_only:
            clauses.append("result_approved = 1")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._conn.execute(f"SELECT * FROM matches {where} ORDER BY id", params).fetchall()
        return [_match_dict(r) for r in rows]

    def get_user_matches(self, user_id: int) -> list[dict[str, Any]]:
        """Matches whose team includes the user (leader or member)."""
        rows = self._conn.execute(
            "SELECT DISTINCT m.* FROM matches m, json_each(m.team_members) t "
            "WHERE json_extract(t.value, '$.id') = ? ORDER BY m.id",
            (user_id,),
        ).fetchall()
        return [_match_dict(r) for r in rows]

    def update_match(self, match_id: int, fields: dict[str, Any]) -> dict[str, Any]:
        updates = _pick(fields, _MATCH_EDITABLE)
        if "team_members" in updates:
            updates["team_members"] = json.dumps(_normalise_team(updates["team_members"]))
        if "date" in updates:
            updates["date"] = _iso(updates["date"])
        with self._lock, self._conn:
            self.require_match(match_id)
            self._update_row("matches", match_id, updates)
        return self.get_match(match_id)

    def submit_result(
        self,
        match_id: int,
        position: int,
        kills: int,
        screenshot: str | None = None,
    ) -> dict[str, Any]:
        """Player-side result upload. Goes to 'verifying' until an admin approves."""
        with self._lock, self._conn:
            match = self.require_match(match_id)
            if match["result_approved"]:
                raise InvalidStateError("Result already approved")
            if match["status"] == "cancelled":
                raise InvalidStateError("Match was cancelled")
            self._update_row(
                "matches",
                match_id,
                {
                    "position": position,
                    "kills": kills,
                    "result_screenshot": screenshot,
                    "result_submitted": 1,
                    "status": "verifying",
                },
            )
        logger.info(f"Result submitted for match {match_id}: #{position}, {kills} kills")
        return self.get_match(match_id)

    def approve_result(self, match_id: int, prize_fn) -> dict[str, Any]:
        """Admin approval: pay out and close the match.

        Args:
            prize_fn: (position, kills, prize_pool, per_kill, mode=) -> int,
                normally squadup.scoring.match_prize.

        Raises:
            MatchNotFoundError, TournamentNotFoundError
            InvalidStateError: no result submitted, already approved, or
                the match was cancelled.
        """
        with self._lock, self._conn:
            match = self.require_match(match_id)
            if match["result_approved"]:
                raise InvalidStateError("Result already approved")
            if match["status"] == "cancelled":
                raise InvalidStateError("Match was cancelled")
            if not match["result_submitted"]:
                raise InvalidStateError("No result submitted for this match")
            tournament = self.require_tournament(match["tournament_id"])

            prize = prize_fn(
                match["position"], match["kills"],
                tournament["prize_pool"], tournament["per_kill"],
                mode=tournament["mode"],
            )
            self._update_row(
                "matches",
                match_id,
                {"result_approved": 1, "status": "completed", "prize": prize},
            )
            leader = team_leader(match["team_members"])
            if prize > 0 and leader is not None:
                self._apply_transaction(
                    leader, "prize", prize, "completed",
                    f"Prize: {tournament['title']} (#{match['position']}, {match['kills']} kills)",
                )
        logger.info(f"Result approved for match {match_id}: prize {prize}")
        return self.get_match(match_id)

    def assign_room(self, match_id: int, room_id: str, room_password: str) -> dict[str, Any]:
        """Attach lobby credentials; they unlock room_visible_minutes before start."""
        with self._lock, self._conn:
            match = self.require_match(match_id)
            self._update_row(
                "matches",
                match_id,
                {
                    "room_id": room_id,
                    "room_password": room_password,
                    "room_visible_at": self._visible_at(match["date"]),
                },
            )
        logger.info(f"Room assigned for match {match_id}")
        return self.get_match(match_id)

    # ------------------------------------------------------------------
    # KYC
    # ------------------------------------------------------------------

    def create_kyc_document(self, data: dict[str, Any]) -> dict[str, Any]:
        """Submit a KYC document; a user who never submitted moves to 'pending'."""
        fields = _pick(data, _KYC_EDITABLE)
        fields["user_id"] = data["user_id"]
        fields["status"] = "pending"
        fields["created_at"] = _now()
        with self._lock, self._conn:
            user = self.require_user(fields["user_id"])
            doc_id = self._insert_row("kyc_documents", fields)
            if user["kyc_status"] == "not_submitted":
                self._update_row("users", user["id"], {"kyc_status": "pending"})
        logger.info(f"KYC document {doc_id} submitted by user {fields['user_id']}")
        return self.get_kyc_document(doc_id)

    def get_kyc_document(self, doc_id: int) -> dict[str, Any] | None:
        row = self._conn.execute("SELECT * FROM kyc_documents WHERE id = ?", (doc_id,)).fetchone()
        return dict(row) if row else None

    def get_user_kyc_documents(self, user_id: int) -> list[dict[str, Any]]:
        rows = self._conn.execute(
            "SELECT * FROM kyc_documents WHERE user_id = ? ORDER BY id", (user_id,)
        ).fetchall()
        return [dict(r) for r in rows]

    def get_pending_kyc_documents(self) -> list[dict[str, Any]]:
        rows = self._conn.execute(
            "SELECT * FROM kyc_documents WHERE status = 'pending' ORDER BY id"
        ).fetchall()
        return [dict(r) for r in rows]

    def update_kyc_document(self, doc_id: int, fields: dict[str, Any]) -> dict[str, Any]:
        """Review a document. approved/verified and rejected carry over to the user."""
        updates = _pick(fields, _KYC_EDITABLE)
        user_status = KYC_DECISIONS.get(updates.get("status"))
        if "status" in updates:
            updates["status"] = KYC_DOCUMENT_ALIASES.get(updates["status"], updates["status"])
        with self._lock, self._conn:
            doc = self.get_kyc_document(doc_id)
            if doc is None:
                raise KycDocumentNotFoundError(doc_id)
            self._update_row("kyc_documents", doc_id, updates)
            if user_status is not None:
                self._update_row("users", doc["user_id"], {"kyc_status": user_status})
                logger.info(f"KYC for user {doc['user_id']} -> {user_status}")
        return self.get_kyc_document(doc_id)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def create_notification(
        self,
        user_id: int,
        title: str,
        message: str,
        type: str = "system",
        read: bool = False,
    ) -> dict[str, Any]:
        with self._lock, self._conn:
            self.require_user(user_id)
            note_id = self._insert_row(
                "notifications",
                {
                    "user_id": user_id,
                    "title": title,
                    "message": message,
                    "type": type,
                    "read": int(read),
                    "created_at": _now(),
                },
            )
        return self.get_notification(note_id)

    def get_notification(self, note_id: int) -> dict[str, Any] | None:
        row = self._conn.execute("SELECT * FROM notifications WHERE id = ?", (note_id,)).fetchone()
        return _notification_dict(row) if row else None

    def get_user_notifications(self, user_id: int) -> list[dict[str, Any]]:
        rows = self._conn.execute(
            "SELECT * FROM notifications WHERE user_id = ? ORDER BY id DESC", (user_id,)
        ).fetchall()
        return [_notification_dict(r) for r in rows]

    def update_notification(self, note_id: int, fields: dict[str, Any]) -> dict[str, Any]:
        updates = _pick(fields, _NOTIFICATION_EDITABLE)
        if "read" in updates:
            updates["read"] = int(bool(updates["read"]))
        with self._lock, self._conn:
            if self.get_notification(note_id) is None:
                raise NotificationNotFoundError(note_id)
            self._update_row("notifications", note_id, updates)
        return self.get_notification(note_id)

    def mark_notifications_read(self, user_id: int) -> int:
        """Mark every unread notification for a user as read. Returns count."""
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "UPDATE notifications SET read = 1 WHERE user_id = ? AND read = 0", (user_id,)
            )
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Squad
    # ------------------------------------------------------------------

    def create_squad_member(
        self,
        owner_id: int,
        username: str,
        game_id: str,
        profile_picture: str | None = None,
    ) -> dict[str, Any]:
        with self._lock, self._conn:
            self.require_user(owner_id)
            member_id = self._insert_row(
                "squad_members",
                {
                    "owner_id": owner_id,
                    "username": username,
                    "game_id": game_id,
                    "profile_picture": profile_picture,
                    "created_at": _now(),
                },
            )
        row = self._conn.execute("SELECT * FROM squad_members WHERE id = ?", (member_id,)).fetchone()
        return dict(row)

    def get_user_squad_members(self, owner_id: int) -> list[dict[str, Any]]:
        rows = self._conn.execute(
            "SELECT * FROM squad_members WHERE owner_id = ? ORDER BY id", (owner_id,)
        ).fetchall()
        return [dict(r) for r in rows]

    def delete_squad_member(self, member_id: int) -> None:
        with self._lock, self._conn:
            cursor = self._conn.execute("DELETE FROM squad_members WHERE id = ?", (member_id,))
        if cursor.rowcount == 0:
            raise SquadMemberNotFoundError(member_id)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def counts(self) -> dict[str, int]:
        """Row counts for the health endpoint."""
        one = lambda sql: self._conn.execute(sql).fetchone()[0]  # noqa: E731
        return {
            "users": one("SELECT COUNT(*) FROM users"),
            "tournaments": one("SELECT COUNT(*) FROM tournaments"),
            "open_tournaments": one(
                "SELECT COUNT(*) FROM tournaments WHERE status = 'upcoming'"
            ),
            "matches": one("SELECT COUNT(*) FROM matches"),
        }

    # ------------------------------------------------------------------
    # Row helpers
    # ------------------------------------------------------------------

    def _insert_row(self, table: str, fields: dict[str, Any]) -> int:
        columns = ", ".join(fields)
        placeholders = ", ".join("?" for _ in fields)
        cursor = self._conn.execute(
            f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
            tuple(fields.values()),
        )
        return cursor.lastrowid

    def _update_row(self, table: str, row_id: int, fields: dict[str, Any]) -> None:
        if not fields:
            return
        assignments = ", ".join(f"{column} = ?" for column in fields)
        self._conn.execute(
            f"UPDATE {table} SET {assignments} WHERE id = ?",
            (*fields.values(), row_id),
        )


# ============================================================================
# Module helpers
# ============================================================================


def _check_transaction(tx_type: str, amount: int, status: str) -> None:
    if tx_type not in TRANSACTION_TYPES:
        raise ValueError(f"Unknown transaction type {tx_type!r}")
    if status not in TRANSACTION_STATUSES:
        raise ValueError(f"Unknown transaction status {status!r}")
    if not isinstance(amount, int) or amount <= 0:
        raise ValueError(f"Transaction amount must be a positive integer, got {amount!r}")
    if amount > MAX_AMOUNT:
        raise ValueError(f"Transaction amount {amount} exceeds the maximum of {MAX_AMOUNT}")


def _pick(fields: dict[str, Any], allowed: tuple[str, ...]) -> dict[str, Any]:
    return {k: v for k, v in fields.items() if k in allowed}


def _normalise_team(team: list[Any]) -> list[dict[str, Any]]:
    """Accept bare ids or {id, role} dicts; the first entry leads if nobody does."""
    members = []
    for i, member in enumerate(team):
        if isinstance(member, dict):
            members.append({"id": int(member["id"]), "role": member.get("role") or MEMBER})
        else:
            members.append({"id": int(member), "role": LEADER if i == 0 else MEMBER})
    if members and not any(m["role"] == LEADER for m in members):
        members[0]["role"] = LEADER
    return members


def _match_dict(row: sqlite3.Row) -> dict[str, Any]:
    match = dict(row)
    match["team_members"] = json.loads(match["team_members"] or "[]")
    match["result_submitted"] = bool(match["result_submitted"])
    match["result_approved"] = bool(match["result_approved"])
    return match


def _notification_dict(row: sqlite3.Row) -> dict[str, Any]:
    note = dict(row)
    note["read"] = bool(note["read"])
    return note


def _iso(value: datetime | str) -> str:
    """Normalise to an ISO string in UTC. Naive datetimes are taken as UTC."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _now() -> str:
    """ISO timestamp in UTC."""
    return datetime.now(timezone.utc).isoformat()
