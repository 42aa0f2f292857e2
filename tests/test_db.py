"""
tests/test_db.py - ArenaDB storage tests.

Ledger and registry invariants checked directly against the store, without
going through HTTP.
"""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from arena.db import (
    ArenaDB,
    DuplicateError,
    InsufficientFundsError,
    InvalidStateError,
    KycDocumentNotFoundError,
    MAX_AMOUNT,
    MatchNotFoundError,
    SquadMemberNotFoundError,
    TournamentClosedError,
    TournamentFullError,
    TournamentNotFoundError,
    UserNotFoundError,
    build_team,
    team_leader,
)
from squadup.scoring import match_prize


@pytest.fixture
def db():
    """Fresh in-memory DB for each test."""
    return ArenaDB(":memory:")


@pytest.fixture
def user(db):
    return db.create_user("ace", "9876543210", "+91", currency="INR", country="India")


def _tournament(db, **overrides):
    data = {
        "title": "BGMI Pro League Season 1",
        "mode": "Squad",
        "map": "Erangel",
        "game_mode": "BGMI",
        "entry_fee": 250,
        "prize_pool": 10000,
        "per_kill": 25,
        "date": datetime.now(timezone.utc) + timedelta(days=1),
        "max_players": 100,
    }
    data.update(overrides)
    return db.create_tournament(data)


# ======================================================================
# Users
# ======================================================================


class TestUsers:
    def test_wallet_starts_at_zero(self, user):
        assert user["wallet_balance"] == 0
        assert user["kyc_status"] == "not_submitted"

    def test_duplicate_phone(self, db, user):
        with pytest.raises(DuplicateError, match="phone number"):
            db.create_user("other", "9876543210", "+91")

    def test_same_phone_other_country_is_fine(self, db, user):
        other = db.create_user("other", "9876543210", "+234")
        assert other["id"] != user["id"]

    def test_duplicate_username_case_insensitive(self, db, user):
        with pytest.raises(DuplicateError, match="Username already taken"):
            db.create_user("ACE", "1111111111", "+91")

    def test_update_ignores_balance(self, db, user):
        updated = db.update_user(user["id"], {"wallet_balance": 10_000, "game_id": "5123456789"})
        assert updated["wallet_balance"] == 0
        assert updated["game_id"] == "5123456789"

    def test_update_rename_to_taken_username(self, db, user):
        other = db.create_user("blaze", "1111111111", "+91")
        with pytest.raises(DuplicateError):
            db.update_user(other["id"], {"username": "Ace"})

    def test_update_missing_user(self, db):
        with pytest.raises(UserNotFoundError):
            db.update_user(42, {"email": "x@example.com"})


# ======================================================================
# Ledger
# ======================================================================


class TestLedger:
    def test_deposits_sum(self, db, user):
        for amount in (100, 250, 650):
            db.create_transaction(user["id"], "deposit", amount)
        assert db.get_balance(user["id"]) == 1000

    def test_credit_types(self, db, user):
        db.create_transaction(user["id"], "deposit", 100)
        db.create_transaction(user["id"], "prize", 50)
        db.create_transaction(user["id"], "refund", 25)
        assert db.get_balance(user["id"]) == 175

    def test_debit_types(self, db, user):
        db.create_transaction(user["id"], "deposit", 500)
        db.create_transaction(user["id"], "withdrawal", 200)
        db.create_transaction(user["id"], "entry_fee", 100)
        assert db.get_balance(user["id"]) == 200

    def test_overdraft_rejected_without_mutation(self, db, user):
        db.create_transaction(user["id"], "deposit", 100)
        with pytest.raises(InsufficientFundsError) as exc_info:
            db.create_transaction(user["id"], "withdrawal", 101)
        assert exc_info.value.balance == 100
        assert exc_info.value.amount == 101
        assert db.get_balance(user["id"]) == 100
        assert len(db.get_user_transactions(user["id"])) == 1

    def test_exact_balance_debit_allowed(self, db, user):
        db.create_transaction(user["id"], "deposit", 300)
        db.create_transaction(user["id"], "entry_fee", 300)
        assert db.get_balance(user["id"]) == 0

    def test_missing_user_records_nothing(self, db):
        with pytest.raises(UserNotFoundError):
            db.create_transaction(999, "deposit", 100)
        assert db.get_user_transactions(999) == []

    def test_amount_cap(self, db, user):
        db.create_transaction(user["id"], "deposit", MAX_AMOUNT)
        with pytest.raises(ValueError, match="exceeds the maximum"):
            db.create_transaction(user["id"], "deposit", MAX_AMOUNT + 1)
        assert db.get_balance(user["id"]) == MAX_AMOUNT
        assert len(db.get_user_transactions(user["id"])) == 1

    def test_entry_fee_scenario(self, db, user):
        db.create_transaction(user["id"], "deposit", 500)
        db.create_transaction(user["id"], "entry_fee", 250)
        assert db.get_balance(user["id"]) == 250
        db.create_transaction(user["id"], "entry_fee", 250)
        assert db.get_balance(user["id"]) == 0
        with pytest.raises(InsufficientFundsError):
            db.create_transaction(user["id"], "entry_fee", 400)
        assert db.get_balance(user["id"]) == 0

    def test_invalid_inputs(self, db, user):
        with pytest.raises(ValueError):
            db.create_transaction(user["id"], "bonus", 100)
        with pytest.raises(ValueError):
            db.create_transaction(user["id"], "deposit", 0)
        with pytest.raises(ValueError):
            db.create_transaction(user["id"], "deposit", 10, status="settled")

    def test_transaction_row(self, db, user):
        tx = db.create_transaction(user["id"], "deposit", 100, "pending", "UPI")
        assert tx["user_id"] == user["id"]
        assert tx["type"] == "deposit"
        assert tx["status"] == "pending"
        assert tx["details"] == "UPI"
        assert tx["created_at"] is not None

    def test_wallet_summary(self, db, user):
        db.create_transaction(user["id"], "deposit", 1000)
        db.create_transaction(user["id"], "entry_fee", 250)
        db.create_transaction(user["id"], "prize", 700)
        summary = db.wallet_summary(user["id"])
        assert summary["balance"] == 1450
        assert summary["currency"] == "INR"
        assert summary["earnings"] == 700
        assert summary["expenses"] == 250
        assert summary["transaction_count"] == 3

    def test_prize_totals(self, db, user):
        db.create_transaction(user["id"], "prize", 100)
        db.create_transaction(user["id"], "prize", 40)
        db.create_transaction(user["id"], "deposit", 999)
        assert db.prize_totals() == {user["id"]: 140}


class TestConcurrentDebits:
    def test_parallel_debits_never_overdraw(self, db, user):
        db.create_transaction(user["id"], "deposit", 1000)
        outcomes = []
        outcomes_lock = threading.Lock()
        start = threading.Barrier(10)

        def spend():
            start.wait()
            try:
                db.create_transaction(user["id"], "entry_fee", 300)
                result = "ok"
            except InsufficientFundsError:
                result = "rejected"
            with outcomes_lock:
                outcomes.append(result)

        threads = [threading.Thread(target=spend) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("ok") == 3
        assert outcomes.count("rejected") == 7
        assert db.get_balance(user["id"]) == 100
        fees = [t for t in db.get_user_transactions(user["id"]) if t["type"] == "entry_fee"]
        assert len(fees) == 3

    def test_parallel_deposits_all_land(self, db, user):
        threads = [
            threading.Thread(target=db.create_transaction, args=(user["id"], "deposit", 10))
            for _ in range(20)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert db.get_balance(user["id"]) == 200


class TestConcurrentJoins:
    def _race(self, count, join):
        outcomes = []
        outcomes_lock = threading.Lock()
        start = threading.Barrier(count)

        def run(i):
            start.wait()
            try:
                join(i)
                result = "ok"
            except TournamentFullError:
                result = "full"
            except InsufficientFundsError:
                result = "broke"
            with outcomes_lock:
                outcomes.append(result)

        threads = [threading.Thread(target=run, args=(i,)) for i in range(count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return outcomes

    def test_parallel_joins_stop_at_capacity(self, db):
        t = _tournament(db, max_players=4)
        players = [db.create_user(f"player{i}", f"90000000{i:02d}", "+91") for i in range(12)]

        outcomes = self._race(12, lambda i: db.join_tournament(t["id"], players[i]["id"]))

        assert outcomes.count("ok") == 4
        assert outcomes.count("full") == 8
        assert db.get_tournament(t["id"])["registered_players"] == 4
        assert len(db.list_matches(tournament_id=t["id"])) == 4

    def test_parallel_paid_joins_never_overdraw(self, db, user):
        t = _tournament(db, entry_fee=250, max_players=50)
        db.create_transaction(user["id"], "deposit", 1000)

        outcomes = self._race(
            8, lambda i: db.join_tournament(t["id"], user["id"], charge_entry_fee=True)
        )

        assert outcomes.count("ok") == 4
        assert outcomes.count("broke") == 4
        assert db.get_balance(user["id"]) == 0
        assert db.get_tournament(t["id"])["registered_players"] == 4
        assert len(db.list_matches(tournament_id=t["id"])) == 4
        fees = [tx for tx in db.get_user_transactions(user["id"]) if tx["type"] == "entry_fee"]
        assert len(fees) == 4


# ======================================================================
# Registry
# ======================================================================


class TestJoinTournament:
    def test_join_creates_match_and_counts_one(self, db, user):
        t = _tournament(db)
        match = db.join_tournament(t["id"], user["id"], [7, 8, 9])
        assert db.get_tournament(t["id"])["registered_players"] == 1
        assert match["tournament_id"] == t["id"]
        assert match["tournament_title"] == t["title"]
        assert match["map"] == "Erangel"
        assert match["mode"] == "Squad"
        assert match["status"] == "upcoming"
        assert match["team_members"] == [
            {"id": user["id"], "role": "leader"},
            {"id": 7, "role": "member"},
            {"id": 8, "role": "member"},
            {"id": 9, "role": "member"},
        ]

    def test_room_visible_at_before_start(self, db, user):
        t = _tournament(db)
        match = db.join_tournament(t["id"], user["id"])
        start = datetime.fromisoformat(t["date"])
        assert datetime.fromisoformat(match["room_visible_at"]) == start - timedelta(minutes=15)
        assert match["room_id"] is None

    def test_custom_visibility_window(self):
        db = ArenaDB(":memory:", room_visible_minutes=30)
        u = db.create_user("ace", "9876543210", "+91")
        t = _tournament(db)
        match = db.join_tournament(t["id"], u["id"])
        start = datetime.fromisoformat(t["date"])
        assert datetime.fromisoformat(match["room_visible_at"]) == start - timedelta(minutes=30)

    def test_missing_tournament(self, db, user):
        with pytest.raises(TournamentNotFoundError):
            db.join_tournament(999, user["id"])

    def test_missing_user(self, db):
        t = _tournament(db)
        with pytest.raises(UserNotFoundError):
            db.join_tournament(t["id"], 999)
        assert db.get_tournament(t["id"])["registered_players"] == 0
        assert db.list_matches() == []

    def test_full_tournament(self, db, user):
        t = _tournament(db, max_players=1)
        db.join_tournament(t["id"], user["id"])
        with pytest.raises(TournamentFullError):
            db.join_tournament(t["id"], user["id"])
        assert db.get_tournament(t["id"])["registered_players"] == 1

    def test_closed_tournament(self, db, user):
        t = _tournament(db, status="completed")
        with pytest.raises(TournamentClosedError):
            db.join_tournament(t["id"], user["id"])

    def test_entry_fee_charged(self, db, user):
        db.create_transaction(user["id"], "deposit", 300)
        t = _tournament(db)
        db.join_tournament(t["id"], user["id"], charge_entry_fee=True)
        assert db.get_balance(user["id"]) == 50
        assert db.get_user_transactions(user["id"])[-1]["type"] == "entry_fee"

    def test_unpaid_entry_fee_rolls_back(self, db, user):
        t = _tournament(db)
        with pytest.raises(InsufficientFundsError):
            db.join_tournament(t["id"], user["id"], charge_entry_fee=True)
        assert db.get_tournament(t["id"])["registered_players"] == 0
        assert db.list_matches() == []
        assert db.get_user_transactions(user["id"]) == []

    def test_user_matches_include_teammates(self, db, user):
        mate = db.create_user("blaze", "1111111111", "+91")
        t = _tournament(db)
        match = db.join_tournament(t["id"], user["id"], [mate["id"]])
        assert [m["id"] for m in db.get_user_matches(mate["id"])] == [match["id"]]
        assert [m["id"] for m in db.get_user_matches(user["id"])] == [match["id"]]
        assert db.get_user_matches(999) == []


class TestTeam:
    def test_leader_first_and_duplicates_collapsed(self):
        assert build_team(1, [2, 2, 1, 3]) == [
            {"id": 1, "role": "leader"},
            {"id": 2, "role": "member"},
            {"id": 3, "role": "member"},
        ]

    def test_team_leader(self):
        assert team_leader([{"id": 4, "role": "member"}, {"id": 5, "role": "leader"}]) == 5
        assert team_leader([]) is None


class TestTournaments:
    def test_filters(self, db):
        _tournament(db, title="A", mode="Solo")
        _tournament(db, title="B", mode="Squad", game_mode="PUBG")
        _tournament(db, title="C", mode="Squad", status="completed")
        assert {t["title"] for t in db.list_tournaments(mode="Squad")} == {"B", "C"}
        assert {t["title"] for t in db.list_tournaments(status="upcoming")} == {"A", "B"}
        assert {t["title"] for t in db.list_tournaments(game_mode="PUBG")} == {"B"}

    def test_partial_update(self, db):
        t = _tournament(db)
        updated = db.update_tournament(t["id"], {"prize_pool": 20000, "registered_players": 50})
        assert updated["prize_pool"] == 20000
        assert updated["registered_players"] == 0
        assert updated["title"] == t["title"]

    def test_delete(self, db):
        t = _tournament(db)
        db.delete_tournament(t["id"])
        assert db.get_tournament(t["id"]) is None
        with pytest.raises(TournamentNotFoundError):
            db.delete_tournament(t["id"])


# ======================================================================
# Results
# ======================================================================


class TestResults:
    def test_submit_then_approve_pays_leader(self, db, user):
        mate = db.create_user("blaze", "1111111111", "+91")
        t = _tournament(db)
        match = db.join_tournament(t["id"], user["id"], [mate["id"]])

        submitted = db.submit_result(match["id"], 1, 4, "shot.png")
        assert submitted["status"] == "verifying"
        assert submitted["result_submitted"] is True
        assert submitted["result_approved"] is False

        approved = db.approve_result(match["id"], match_prize)
        assert approved["status"] == "completed"
        assert approved["result_approved"] is True
        assert approved["prize"] == 4100
        assert db.get_balance(user["id"]) == 4100
        assert db.get_balance(mate["id"]) == 0

    def test_approve_twice(self, db, user):
        t = _tournament(db)
        match = db.join_tournament(t["id"], user["id"])
        db.submit_result(match["id"], 2, 0)
        db.approve_result(match["id"], match_prize)
        with pytest.raises(InvalidStateError):
            db.approve_result(match["id"], match_prize)
        assert db.get_balance(user["id"]) == 3000

    def test_solo_winner_takes_half(self, db, user):
        t = _tournament(db, mode="Solo", per_kill=0)
        match = db.join_tournament(t["id"], user["id"])
        db.submit_result(match["id"], 1, 3)
        assert db.approve_result(match["id"], match_prize)["prize"] == 5000

    def test_squad_fourth_place_paid(self, db, user):
        t = _tournament(db, per_kill=0)
        match = db.join_tournament(t["id"], user["id"])
        db.submit_result(match["id"], 4, 0)
        assert db.approve_result(match["id"], match_prize)["prize"] == 1000
        assert db.get_balance(user["id"]) == 1000

    def test_cancelled_match_not_paid(self, db, user):
        t = _tournament(db, mode="Solo")
        match = db.join_tournament(t["id"], user["id"])
        db.submit_result(match["id"], 1, 2)
        db.update_match(match["id"], {"status": "cancelled"})
        with pytest.raises(InvalidStateError, match="cancelled"):
            db.approve_result(match["id"], match_prize)
        assert db.get_balance(user["id"]) == 0
        assert db.get_match(match["id"])["result_approved"] is False

    def test_approve_without_result(self, db, user):
        t = _tournament(db)
        match = db.join_tournament(t["id"], user["id"])
        with pytest.raises(InvalidStateError):
            db.approve_result(match["id"], match_prize)

    def test_no_prize_no_transaction(self, db, user):
        t = _tournament(db)
        match = db.join_tournament(t["id"], user["id"])
        db.submit_result(match["id"], 40, 0)
        approved = db.approve_result(match["id"], match_prize)
        assert approved["prize"] == 0
        assert db.get_user_transactions(user["id"]) == []

    def test_resubmit_after_approval(self, db, user):
        t = _tournament(db)
        match = db.join_tournament(t["id"], user["id"])
        db.submit_result(match["id"], 3, 1)
        db.approve_result(match["id"], match_prize)
        with pytest.raises(InvalidStateError):
            db.submit_result(match["id"], 1, 20)

    def test_missing_match(self, db):
        with pytest.raises(MatchNotFoundError):
            db.submit_result(999, 1, 0)

    def test_assign_room(self, db, user):
        t = _tournament(db)
        match = db.join_tournament(t["id"], user["id"])
        updated = db.assign_room(match["id"], "ROOM42", "pw")
        assert updated["room_id"] == "ROOM42"
        assert updated["room_password"] == "pw"
        assert updated["room_visible_at"] == match["room_visible_at"]


# ======================================================================
# KYC, notifications, squads
# ======================================================================


class TestKyc:
    def test_submit_moves_user_to_pending(self, db, user):
        doc = db.create_kyc_document(
            {"user_id": user["id"], "type": "aadhaar", "document_number": "1234", "front_image": "f.png"}
        )
        assert doc["status"] == "pending"
        assert db.get_user(user["id"])["kyc_status"] == "pending"
        assert [d["id"] for d in db.get_pending_kyc_documents()] == [doc["id"]]

    @pytest.mark.parametrize("decision,expected", [
        ("approved", "verified"),
        ("verified", "verified"),
        ("rejected", "rejected"),
    ])
    def test_decision_updates_user(self, db, user, decision, expected):
        doc = db.create_kyc_document(
            {"user_id": user["id"], "type": "pan", "document_number": "X", "front_image": "f"}
        )
        db.update_kyc_document(doc["id"], {"status": decision})
        assert db.get_user(user["id"])["kyc_status"] == expected
        assert db.get_pending_kyc_documents() == []

    def test_verified_stored_as_approved(self, db, user):
        doc = db.create_kyc_document(
            {"user_id": user["id"], "type": "pan", "document_number": "X", "front_image": "f"}
        )
        updated = db.update_kyc_document(doc["id"], {"status": "verified"})
        assert updated["status"] == "approved"
        assert db.get_user(user["id"])["kyc_status"] == "verified"

    def test_missing_user(self, db):
        with pytest.raises(UserNotFoundError):
            db.create_kyc_document({"user_id": 5, "type": "pan", "document_number": "X", "front_image": "f"})

    def test_missing_document(self, db):
        with pytest.raises(KycDocumentNotFoundError):
            db.update_kyc_document(5, {"status": "approved"})


class TestNotificationsAndSquad:
    def test_mark_all_read(self, db, user):
        db.create_notification(user["id"], "a", "b")
        db.create_notification(user["id"], "c", "d", "wallet")
        assert db.mark_notifications_read(user["id"]) == 2
        assert all(n["read"] for n in db.get_user_notifications(user["id"]))

    def test_newest_first(self, db, user):
        first = db.create_notification(user["id"], "first", "x")
        second = db.create_notification(user["id"], "second", "x")
        assert [n["id"] for n in db.get_user_notifications(user["id"])] == [second["id"], first["id"]]

    def test_squad_roundtrip(self, db, user):
        member = db.create_squad_member(user["id"], "blaze", "5123456789")
        assert db.get_user_squad_members(user["id"]) == [member]
        db.delete_squad_member(member["id"])
        assert db.get_user_squad_members(user["id"]) == []
        with pytest.raises(SquadMemberNotFoundError):
            db.delete_squad_member(member["id"])


class TestCounts:
    def test_counts(self, db, user):
        _tournament(db)
        _tournament(db, title="Old", status="completed")
        assert db.counts() == {"users": 1, "tournaments": 2, "open_tournaments": 1, "matches": 0}
