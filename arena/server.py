"""
arena/server.py - FastAPI server for the SquadUp tournament marketplace.

Endpoints (all JSON, camelCase keys):
    POST   /api/users                         Sign up
    GET    /api/users/{id}                    Profile
    PATCH  /api/users/{id}                    Edit profile

    POST   /api/transactions                  Deposit / withdraw / fee / prize / refund
    GET    /api/users/{id}/transactions       Wallet history
    GET    /api/users/{id}/wallet             Balance + earnings summary

    GET    /api/tournaments                   List (status/mode/gameMode filters)
    POST   /api/tournaments                   Create
    GET    /api/tournaments/{id}              Details
    PATCH  /api/tournaments/{id}              Edit
    DELETE /api/tournaments/{id}              Delete
    POST   /api/tournaments/{id}/join         Register a team

    GET    /api/matches                       List
    POST   /api/matches                       Create
    GET    /api/matches/{id}                  Details (room creds once visible)
    PATCH  /api/matches/{id}                  Edit
    GET    /api/users/{id}/matches            A user's matches
    POST   /api/matches/{id}/result           Submit placement + kills
    POST   /api/matches/{id}/approve          Approve result, pay prize
    POST   /api/matches/{id}/room             Assign room id/password

    POST   /api/kyc                           Submit document
    GET    /api/users/{id}/kyc                A user's documents
    GET    /api/kyc/pending                   Review queue
    PATCH  /api/kyc/{id}                      Approve / reject

    GET    /api/users/{id}/notifications      Inbox
    POST   /api/notifications                 Create
    PATCH  /api/notifications/{id}            Edit (mark read)
    POST   /api/users/{id}/notifications/read Mark all read

    GET    /api/users/{id}/squad              Saved squad roster
    POST   /api/squad                         Add squad member
    DELETE /api/squad/{id}                    Remove squad member

    GET    /api/leaderboard                   Ranked players
    GET    /api/currency/convert              Currency conversion
    GET    /health                            Server health check
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from starlette.exceptions import HTTPException as StarletteHTTPException

from squadup import currency, scoring
from squadup.config import SquadUpConfig, load_config
from squadup.currency import Currency

from .db import (
    ArenaDB,
    ArenaError,
    DuplicateError,
    InsufficientFundsError,
    InvalidStateError,
    MAX_AMOUNT,
    NotFoundError,
    TournamentClosedError,
    TournamentFullError,
    UserNotFoundError,
    team_leader,
)

logger = logging.getLogger(__name__)

# Global DB instance, set during lifespan
_db: ArenaDB | None = None
_config: SquadUpConfig = SquadUpConfig()


def get_db() -> ArenaDB:
    assert _db is not None, "DB not initialized"
    return _db


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _db, _config
    _config = load_config(getattr(app.state, "config_path", None))
    db_path = getattr(app.state, "db_path", None) or _config.server.db_path
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    _db = ArenaDB(db_path, room_visible_minutes=_config.matches.room_visible_minutes)
    logger.info(f"SquadUp DB initialized: {db_path}")

    _log_startup_config()

    yield
    _db.close()
    _db = None


def _log_startup_config():
    """Log server configuration on startup so operators can verify it."""
    logger.info("=" * 50)
    logger.info("SquadUp startup config:")
    logger.info(f"  Room details visible {_config.matches.room_visible_minutes} min before start")
    if _config.wallet.require_kyc_for_withdrawal:
        logger.info("  Withdrawals: KYC verification required")
    else:
        logger.info("  Withdrawals: KYC NOT required (wallet.require_kyc_for_withdrawal = false)")
    overridden = sorted(
        k for k, v in _config.currency_rates.items() if currency.DEFAULT_RATES.get(k) != v
    )
    if overridden:
        logger.info(f"  Currency rates overridden: {', '.join(overridden)}")
    logger.info("=" * 50)


app = FastAPI(title="SquadUp", lifespan=lifespan)

# Allow the web client to call the API from another origin
from starlette.middleware.cors import CORSMiddleware

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# ======================================================================
# Error handling
# ======================================================================

# Checked in order, so subclasses must come before their bases.
_ERROR_STATUS: list[tuple[type[ArenaError], int]] = [
    (NotFoundError, 404),
    (InsufficientFundsError, 400),
    (DuplicateError, 400),
    (TournamentFullError, 409),
    (TournamentClosedError, 409),
    (InvalidStateError, 409),
]


def _status_for(exc: ArenaError) -> int:
    for error_type, status in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 400


@app.exception_handler(ArenaError)
async def arena_error_handler(request: Request, exc: ArenaError) -> JSONResponse:
    status = _status_for(exc)
    logger.warning(f"{request.method} {request.url.path} -> {status}: {exc.message}")
    return JSONResponse(status_code=status, content={"message": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning(f"{request.method} {request.url.path} -> 400: validation failed")
    return JSONResponse(
        status_code=400,
        content={"message": "Validation failed", "errors": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"message": "Internal server error"})


# ======================================================================
# Request/Response Models
# ======================================================================

GameMode = Literal["PUBG", "BGMI"]
TournamentMode = Literal["Solo", "Duo", "Squad"]
TournamentStatus = Literal["upcoming", "live", "ongoing", "completed", "cancelled"]
MatchStatus = Literal["upcoming", "verifying", "completed", "cancelled"]
TransactionType = Literal["deposit", "withdrawal", "prize", "entry_fee", "refund"]
TransactionStatus = Literal["pending", "completed", "failed"]
KycType = Literal["aadhaar", "pan", "passport", "driving_license", "national_id", "voter_id"]
NotificationType = Literal["tournament", "match", "wallet", "kyc", "system"]

# Largest battle-royale lobby; bounds placements and kill counts.
MAX_LOBBY = 100


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MessageResponse(ApiModel):
    message: str


# --- Users -------------------------------------------------------------


class UserCreate(ApiModel):
    username: str = Field(min_length=3, max_length=32)
    phone_number: str = Field(min_length=5, max_length=20)
    country_code: str = Field(min_length=2, max_length=5)
    email: str | None = None
    game_id: str | None = None
    game_mode: GameMode | None = None  # defaults from country code
    role: Literal["player", "admin"] = "player"
    profile_picture: str | None = None
    currency: Currency | None = None
    country: str | None = None


class UserUpdate(ApiModel):
    username: str | None = Field(default=None, min_length=3, max_length=32)
    phone_number: str | None = Field(default=None, min_length=5, max_length=20)
    country_code: str | None = Field(default=None, min_length=2, max_length=5)
    email: str | None = None
    game_id: str | None = None
    game_mode: GameMode | None = None
    profile_picture: str | None = None
    currency: Currency | None = None
    country: str | None = None


class UserResponse(ApiModel):
    id: int
    username: str
    phone_number: str
    country_code: str
    email: str | None = None
    game_id: str | None = None
    game_mode: str
    role: str
    profile_picture: str | None = None
    kyc_status: str
    currency: str
    country: str
    wallet_balance: int
    created_at: str | None = None


class UserMessageResponse(ApiModel):
    message: str
    user: UserResponse


# --- Wallet ------------------------------------------------------------


class TransactionCreate(ApiModel):
    user_id: int
    type: TransactionType
    amount: int = Field(gt=0, le=MAX_AMOUNT)
    status: TransactionStatus = "completed"
    details: str | None = None


class TransactionResponse(ApiModel):
    id: int
    user_id: int
    type: str
    amount: int
    status: str
    details: str | None = None
    created_at: str | None = None


class TransactionCreatedResponse(ApiModel):
    message: str
    transaction: TransactionResponse
    user_balance: int


class WalletSummaryResponse(ApiModel):
    user_id: int
    balance: int
    currency: str
    formatted_balance: str
    earnings: int
    expenses: int
    transaction_count: int


# --- Tournaments -------------------------------------------------------


class TournamentCreate(ApiModel):
    title: str = Field(min_length=1)
    description: str | None = None
    image: str | None = None
    mode: TournamentMode
    map: str = Field(min_length=1)
    game_mode: GameMode = "PUBG"
    entry_fee: int = Field(default=0, ge=0, le=MAX_AMOUNT)
    prize_pool: int = Field(default=0, ge=0, le=MAX_AMOUNT)
    per_kill: int = Field(default=0, ge=0, le=MAX_AMOUNT)
    date: datetime
    max_players: int = Field(gt=0)
    status: TournamentStatus = "upcoming"


class TournamentUpdate(ApiModel):
    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    image: str | None = None
    mode: TournamentMode | None = None
    map: str | None = Field(default=None, min_length=1)
    game_mode: GameMode | None = None
    entry_fee: int | None = Field(default=None, ge=0, le=MAX_AMOUNT)
    prize_pool: int | None = Field(default=None, ge=0, le=MAX_AMOUNT)
    per_kill: int | None = Field(default=None, ge=0, le=MAX_AMOUNT)
    date: datetime | None = None
    max_players: int | None = Field(default=None, gt=0)
    status: TournamentStatus | None = None


class TournamentResponse(ApiModel):
    id: int
    title: str
    description: str | None = None
    image: str | None = None
    mode: str
    map: str
    game_mode: str
    entry_fee: int
    prize_pool: int
    per_kill: int
    date: str
    max_players: int
    registered_players: int
    status: str
    created_at: str | None = None


class TournamentMessageResponse(ApiModel):
    message: str
    tournament: TournamentResponse


class JoinRequest(ApiModel):
    user_id: int
    teammates: list[int] = []
    charge_entry_fee: bool = False


# --- Matches -----------------------------------------------------------


class TeamMember(ApiModel):
    id: int
    role: Literal["leader", "member"] = "member"


class RoomDetails(ApiModel):
    room_id: str | None = None
    room_password: str | None = None
    visible_at: str | None = None


class MatchResponse(ApiModel):
    id: int
    tournament_id: int
    tournament_title: str
    date: str
    status: str
    mode: str
    map: str
    team_members: list[TeamMember]
    room_details: RoomDetails
    room_visible: bool = False
    position: int | None = None
    kills: int | None = None
    result_screenshot: str | None = None
    result_submitted: bool = False
    result_approved: bool = False
    prize: int | None = None
    created_at: str | None = None


class MatchMessageResponse(ApiModel):
    message: str
    match: MatchResponse


class JoinResponse(ApiModel):
    message: str
    match: MatchResponse
    tournament: TournamentResponse


class MatchCreate(ApiModel):
    tournament_id: int
    tournament_title: str | None = None
    date: datetime | None = None
    status: MatchStatus = "upcoming"
    mode: str | None = None
    map: str | None = None
    team_members: list[TeamMember] = []


class MatchUpdate(ApiModel):
    status: MatchStatus | None = None
    position: int | None = Field(default=None, ge=1, le=MAX_LOBBY)
    kills: int | None = Field(default=None, ge=0, le=MAX_LOBBY)
    team_members: list[TeamMember] | None = None
    result_screenshot: str | None = None


class ResultRequest(ApiModel):
    position: int = Field(ge=1, le=MAX_LOBBY)
    kills: int = Field(ge=0, le=MAX_LOBBY)
    screenshot: str | None = None


class RoomRequest(ApiModel):
    room_id: str = Field(min_length=1)
    room_password: str = Field(min_length=1)


# --- KYC ---------------------------------------------------------------


class KycCreate(ApiModel):
    user_id: int
    type: KycType
    document_number: str = Field(min_length=1)
    front_image: str = Field(min_length=1)
    back_image: str | None = None
    selfie: str | None = None


class KycUpdate(ApiModel):
    status: Literal["pending", "approved", "verified", "rejected"] | None = None
    rejection_reason: str | None = None


class KycResponse(ApiModel):
    id: int
    user_id: int
    type: str
    document_number: str
    front_image: str
    back_image: str | None = None
    selfie: str | None = None
    status: str
    rejection_reason: str | None = None
    created_at: str | None = None


class KycMessageResponse(ApiModel):
    message: str
    document: KycResponse


# --- Notifications -----------------------------------------------------


class NotificationCreate(ApiModel):
    user_id: int
    title: str = Field(min_length=1)
    message: str = Field(min_length=1)
    type: NotificationType = "system"
    read: bool = False


class NotificationUpdate(ApiModel):
    title: str | None = None
    message: str | None = None
    read: bool | None = None


class NotificationResponse(ApiModel):
    id: int
    user_id: int
    title: str
    message: str
    type: str
    read: bool
    created_at: str | None = None


class NotificationMessageResponse(ApiModel):
    message: str
    notification: NotificationResponse


# --- Squad -------------------------------------------------------------


class SquadMemberCreate(ApiModel):
    owner_id: int
    username: str = Field(min_length=1)
    game_id: str = Field(min_length=1)
    profile_picture: str | None = None


class SquadMemberResponse(ApiModel):
    id: int
    owner_id: int
    username: str
    game_id: str
    profile_picture: str | None = None
    created_at: str | None = None


class SquadMemberMessageResponse(ApiModel):
    message: str
    member: SquadMemberResponse


# --- Leaderboard / currency / health -----------------------------------


class LeaderboardEntryResponse(ApiModel):
    rank: int
    user_id: int
    username: str
    country: str | None = None
    game_mode: str | None = None
    matches: int
    wins: int
    kills: int
    points: int
    earnings: int


class ConversionResponse(ApiModel):
    amount: float
    from_currency: str = Field(alias="from")
    to_currency: str = Field(alias="to")
    converted: float
    formatted: str


class HealthResponse(ApiModel):
    status: str
    users: int
    tournaments: int
    open_tournaments: int


# ======================================================================
# Helpers
# ======================================================================


def _notify(db: ArenaDB, user_id: int, title: str, message: str, type: str) -> None:
    db.create_notification(user_id, title, message, type)


def _room_visible(match: dict[str, Any], now: datetime | None = None) -> bool:
    if not match.get("room_id") or not match.get("room_visible_at"):
        return False
    now = now or datetime.now(timezone.utc)
    return now >= datetime.fromisoformat(match["room_visible_at"])


def _match_out(match: dict[str, Any], now: datetime | None = None) -> dict[str, Any]:
    """Shape a match row for the API. Room credentials stay hidden until visible."""
    visible = _room_visible(match, now)
    out = {k: v for k, v in match.items() if k not in ("room_id", "room_password", "room_visible_at")}
    out["room_visible"] = visible
    out["room_details"] = {
        "room_id": match["room_id"] if visible else None,
        "room_password": match["room_password"] if visible else None,
        "visible_at": match["room_visible_at"],
    }
    return out


# ======================================================================
# Users
# ======================================================================


@app.post("/api/users", response_model=UserMessageResponse, status_code=201)
def create_user(req: UserCreate) -> dict[str, Any]:
    """Sign up. Currency, country and game default from the dialling code."""
    db = get_db()
    default_currency, default_country, default_game = currency.defaults_for_country_code(
        req.country_code
    )
    user = db.create_user(
        req.username,
        req.phone_number,
        req.country_code,
        currency=req.currency.value if req.currency else default_currency,
        country=req.country or default_country,
        game_mode=req.game_mode or default_game,
        role=req.role,
        email=req.email,
        game_id=req.game_id,
        profile_picture=req.profile_picture,
    )
    return {"message": "User created successfully", "user": user}


@app.get("/api/users/{user_id}", response_model=UserResponse)
def get_user(user_id: int) -> dict[str, Any]:
    return get_db().require_user(user_id)


@app.patch("/api/users/{user_id}", response_model=UserMessageResponse)
def update_user(user_id: int, req: UserUpdate) -> dict[str, Any]:
    fields = req.model_dump(exclude_unset=True)
    if fields.get("currency") is not None:
        fields["currency"] = fields["currency"].value
    user = get_db().update_user(user_id, fields)
    return {"message": "User updated successfully", "user": user}


# ======================================================================
# Wallet
# ======================================================================


@app.post("/api/transactions", response_model=TransactionCreatedResponse, status_code=201)
def create_transaction(req: TransactionCreate) -> dict[str, Any]:
    """Record a wallet transaction and apply it to the balance atomically."""
    db = get_db()
    if req.type == "withdrawal" and _config.wallet.require_kyc_for_withdrawal:
        user = db.require_user(req.user_id)
        if user["kyc_status"] != "verified":
            logger.warning(f"Withdrawal blocked for user {req.user_id}: KYC {user['kyc_status']}")
            raise HTTPException(status_code=403, detail="KYC verification required for withdrawals")

    tx = db.create_transaction(req.user_id, req.type, req.amount, req.status, req.details)
    return {
        "message": "Transaction created successfully",
        "transaction": tx,
        "user_balance": db.get_balance(req.user_id),
    }


@app.get("/api/users/{user_id}/transactions", response_model=list[TransactionResponse])
def get_user_transactions(user_id: int) -> list[dict[str, Any]]:
    return get_db().get_user_transactions(user_id)


@app.get("/api/users/{user_id}/wallet", response_model=WalletSummaryResponse)
def get_wallet(user_id: int) -> dict[str, Any]:
    summary = get_db().wallet_summary(user_id)
    summary["formatted_balance"] = currency.format_amount(summary["balance"], summary["currency"])
    return summary


# ======================================================================
# Tournaments
# ======================================================================


@app.get("/api/tournaments", response_model=list[TournamentResponse])
def list_tournaments(
    status: TournamentStatus | None = None,
    mode: TournamentMode | None = None,
    game_mode: GameMode | None = Query(default=None, alias="gameMode"),
) -> list[dict[str, Any]]:
    return get_db().list_tournaments(status=status, mode=mode, game_mode=game_mode)


@app.post("/api/tournaments", response_model=TournamentMessageResponse, status_code=201)
def create_tournament(req: TournamentCreate) -> dict[str, Any]:
    tournament = get_db().create_tournament(req.model_dump())
    return {"message": "Tournament created successfully", "tournament": tournament}


@app.get("/api/tournaments/{tournament_id}", response_model=TournamentResponse)
def get_tournament(tournament_id: int) -> dict[str, Any]:
    return get_db().require_tournament(tournament_id)


@app.patch("/api/tournaments/{tournament_id}", response_model=TournamentMessageResponse)
def update_tournament(tournament_id: int, req: TournamentUpdate) -> dict[str, Any]:
    tournament = get_db().update_tournament(tournament_id, req.model_dump(exclude_unset=True))
    return {"message": "Tournament updated successfully", "tournament": tournament}


@app.delete("/api/tournaments/{tournament_id}", response_model=MessageResponse)
def delete_tournament(tournament_id: int) -> dict[str, Any]:
    get_db().delete_tournament(tournament_id)
    return {"message": "Tournament deleted successfully"}


@app.post("/api/tournaments/{tournament_id}/join", response_model=JoinResponse, status_code=201)
def join_tournament(tournament_id: int, req: JoinRequest) -> dict[str, Any]:
    """Register a team. One slot per join, whatever the team size."""
    db = get_db()
    match = db.join_tournament(
        tournament_id, req.user_id, req.teammates, charge_entry_fee=req.charge_entry_fee
    )
    tournament = db.require_tournament(tournament_id)
    _notify(
        db, req.user_id, "Tournament joined",
        f"You're registered for {tournament['title']} on {tournament['date']}.",
        "tournament",
    )
    return {
        "message": "Joined tournament successfully",
        "match": _match_out(match),
        "tournament": tournament,
    }


# ======================================================================
# Matches
# ======================================================================


@app.get("/api/matches", response_model=list[MatchResponse])
def list_matches(
    tournament_id: int | None = Query(default=None, alias="tournamentId"),
) -> list[dict[str, Any]]:
    now = datetime.now(timezone.utc)
    return [_match_out(m, now) for m in get_db().list_matches(tournament_id=tournament_id)]


@app.post("/api/matches", response_model=MatchMessageResponse, status_code=201)
def create_match(req: MatchCreate) -> dict[str, Any]:
    """Admin match creation. Missing details are copied from the tournament."""
    db = get_db()
    tournament = db.require_tournament(req.tournament_id)
    match = db.create_match(
        {
            "tournament_id": tournament["id"],
            "tournament_title": req.tournament_title or tournament["title"],
            "date": req.date or tournament["date"],
            "status": req.status,
            "mode": req.mode or tournament["mode"],
            "map": req.map or tournament["map"],
            "team_members": [m.model_dump() for m in req.team_members],
        }
    )
    return {"message": "Match created successfully", "match": _match_out(match)}


@app.get("/api/matches/{match_id}", response_model=MatchResponse)
def get_match(match_id: int) -> dict[str, Any]:
    return _match_out(get_db().require_match(match_id))


@app.patch("/api/matches/{match_id}", response_model=MatchMessageResponse)
def update_match(match_id: int, req: MatchUpdate) -> dict[str, Any]:
    match = get_db().update_match(match_id, req.model_dump(exclude_unset=True))
    return {"message": "Match updated successfully", "match": _match_out(match)}


@app.get("/api/users/{user_id}/matches", response_model=list[MatchResponse])
def get_user_matches(user_id: int) -> list[dict[str, Any]]:
    now = datetime.now(timezone.utc)
    return [_match_out(m, now) for m in get_db().get_user_matches(user_id)]


@app.post("/api/matches/{match_id}/result", response_model=MatchMessageResponse)
def submit_result(match_id: int, req: ResultRequest) -> dict[str, Any]:
    match = get_db().submit_result(match_id, req.position, req.kills, req.screenshot)
    return {"message": "Result submitted for verification", "match": _match_out(match)}


@app.post("/api/matches/{match_id}/approve", response_model=MatchMessageResponse)
def approve_result(match_id: int) -> dict[str, Any]:
    """Approve a submitted result and credit the team leader's prize."""
    db = get_db()
    match = db.approve_result(match_id, scoring.match_prize)
    leader = team_leader(match["team_members"])
    user = db.get_user(leader) if leader is not None else None
    if user is None:
        logger.warning(f"Match {match_id} approved but leader {leader} has no account to notify")
    else:
        prize = match["prize"] or 0
        _notify(
            db, leader, "Result approved",
            f"{match['tournament_title']}: #{match['position']} with {match['kills']} kills. "
            f"Prize {currency.format_amount(prize, user['currency'])}.",
            "match",
        )
    return {"message": "Result approved", "match": _match_out(match)}


@app.post("/api/matches/{match_id}/room", response_model=MatchMessageResponse)
def assign_room(match_id: int, req: RoomRequest) -> dict[str, Any]:
    match = get_db().assign_room(match_id, req.room_id, req.room_password)
    return {"message": "Room details assigned", "match": _match_out(match)}


# ======================================================================
# KYC
# ======================================================================


@app.post("/api/kyc", response_model=KycMessageResponse, status_code=201)
def submit_kyc(req: KycCreate) -> dict[str, Any]:
    document = get_db().create_kyc_document(req.model_dump())
    return {"message": "KYC document submitted successfully", "document": document}


@app.get("/api/users/{user_id}/kyc", response_model=list[KycResponse])
def get_user_kyc(user_id: int) -> list[dict[str, Any]]:
    return get_db().get_user_kyc_documents(user_id)


@app.get("/api/kyc/pending", response_model=list[KycResponse])
def get_pending_kyc() -> list[dict[str, Any]]:
    return get_db().get_pending_kyc_documents()


@app.patch("/api/kyc/{document_id}", response_model=KycMessageResponse)
def review_kyc(document_id: int, req: KycUpdate) -> dict[str, Any]:
    db = get_db()
    document = db.update_kyc_document(document_id, req.model_dump(exclude_unset=True))
    if req.status in ("approved", "verified"):
        _notify(db, document["user_id"], "KYC verified",
                "Your documents were approved. Withdrawals are unlocked.", "kyc")
    elif req.status == "rejected":
        reason = f" Reason: {req.rejection_reason}" if req.rejection_reason else ""
        _notify(db, document["user_id"], "KYC rejected",
                f"Your documents were rejected.{reason}", "kyc")
    return {"message": "KYC document updated successfully", "document": document}


# ======================================================================
# Notifications
# ======================================================================


@app.get("/api/users/{user_id}/notifications", response_model=list[NotificationResponse])
def get_notifications(user_id: int) -> list[dict[str, Any]]:
    return get_db().get_user_notifications(user_id)


@app.post("/api/notifications", response_model=NotificationMessageResponse, status_code=201)
def create_notification(req: NotificationCreate) -> dict[str, Any]:
    notification = get_db().create_notification(
        req.user_id, req.title, req.message, req.type, req.read
    )
    return {"message": "Notification created successfully", "notification": notification}


@app.patch("/api/notifications/{notification_id}", response_model=NotificationMessageResponse)
def update_notification(notification_id: int, req: NotificationUpdate) -> dict[str, Any]:
    notification = get_db().update_notification(
        notification_id, req.model_dump(exclude_unset=True)
    )
    return {"message": "Notification updated successfully", "notification": notification}


@app.post("/api/users/{user_id}/notifications/read", response_model=MessageResponse)
def mark_notifications_read(user_id: int) -> dict[str, Any]:
    get_db().mark_notifications_read(user_id)
    return {"message": "All notifications marked as read"}


# ======================================================================
# Squad
# ======================================================================


@app.get("/api/users/{user_id}/squad", response_model=list[SquadMemberResponse])
def get_squad(user_id: int) -> list[dict[str, Any]]:
    return get_db().get_user_squad_members(user_id)


@app.post("/api/squad", response_model=SquadMemberMessageResponse, status_code=201)
def add_squad_member(req: SquadMemberCreate) -> dict[str, Any]:
    try:
        member = get_db().create_squad_member(
            req.owner_id, req.username, req.game_id, req.profile_picture
        )
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail="Owner user not found")
    return {"message": "Squad member added successfully", "member": member}


@app.delete("/api/squad/{member_id}", response_model=MessageResponse)
def remove_squad_member(member_id: int) -> dict[str, Any]:
    get_db().delete_squad_member(member_id)
    return {"message": "Squad member removed successfully"}


# ======================================================================
# Leaderboard / currency / health
# ======================================================================


@app.get("/api/leaderboard", response_model=list[LeaderboardEntryResponse])
def leaderboard(
    sort_by: Literal["points", "kills", "wins", "earnings"] = Query(default="points", alias="sortBy"),
    country: str | None = None,
    limit: int = Query(default=50, ge=1, le=500),
) -> list[dict[str, Any]]:
    db = get_db()
    entries = scoring.build_leaderboard(
        db.list_users(country=country),
        db.list_matches(approved_only=True),
        earnings=db.prize_totals(),
        sort_by=sort_by,
    )
    return [
        {
            "rank": e.rank,
            "user_id": e.user_id,
            "username": e.username,
            "country": e.country,
            "game_mode": e.game_mode,
            "matches": e.matches,
            "wins": e.wins,
            "kills": e.kills,
            "points": e.points,
            "earnings": e.earnings,
        }
        for e in entries[:limit]
    ]


@app.get("/api/currency/convert", response_model=ConversionResponse)
def convert_currency(
    amount: float = Query(ge=0),
    from_currency: str = Query(alias="from"),
    to_currency: str = Query(alias="to"),
) -> dict[str, Any]:
    try:
        converted = currency.convert(
            amount, from_currency.upper(), to_currency.upper(), _config.currency_rates
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "amount": amount,
        "from": from_currency.upper(),
        "to": to_currency.upper(),
        "converted": round(converted, 2),
        "formatted": currency.format_amount(round(converted, 2), to_currency.upper()),
    }


@app.get("/health", response_model=HealthResponse)
def health() -> dict[str, Any]:
    """Server health check."""
    counts = get_db().counts()
    return {
        "status": "ok",
        "users": counts["users"],
        "tournaments": counts["tournaments"],
        "open_tournaments": counts["open_tournaments"],
    }
