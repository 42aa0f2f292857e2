"""
squadup/config.py - Local configuration management

Reads operator config from a platform-appropriate config directory:
  - macOS/Linux: ~/.squadup/config.toml
  - Windows: %APPDATA%\\squadup\\config.toml

The server also honours SQUADUP_CONFIG, which points at an alternative file.

Example:
    [server]
    db = "~/.squadup/squadup.db"
    port = 8000

    [wallet]
    require_kyc_for_withdrawal = true  # default false

    [matches]
    room_visible_minutes = 15

    [currency.rates]
    USD_TO_INR = 84.1
"""

import logging
import os
import sys
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from .currency import DEFAULT_RATES

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================


def _get_config_dir() -> Path:
    """Get platform-appropriate config directory."""
    if sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata) / "squadup"
    return Path.home() / ".squadup"


CONFIG_DIR = _get_config_dir()
CONFIG_PATH = CONFIG_DIR / "config.toml"
CONFIG_ENV_VAR = "SQUADUP_CONFIG"

DEFAULT_DB_PATH = str(CONFIG_DIR / "squadup.db")
DEFAULT_PORT = 8000
DEFAULT_ROOM_VISIBLE_MINUTES = 15


# ============================================================================
# Data Types
# ============================================================================

@dataclass
class ServerConfig:
    """Where the API listens and keeps its data."""

    db_path: str = DEFAULT_DB_PATH
    port: int = DEFAULT_PORT


@dataclass
class WalletConfig:
    """Ledger policy knobs."""

    require_kyc_for_withdrawal: bool = False


@dataclass
class MatchConfig:
    """Match lobby settings."""

    room_visible_minutes: int = DEFAULT_ROOM_VISIBLE_MINUTES  # before start


@dataclass
class SquadUpConfig:
    """Top-level configuration."""

    server: ServerConfig = field(default_factory=ServerConfig)
    wallet: WalletConfig = field(default_factory=WalletConfig)
    matches: MatchConfig = field(default_factory=MatchConfig)
    currency_rates: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_RATES))


# ============================================================================
# Parsing
# ============================================================================

def _expand(path: str | None) -> str | None:
    """Expand ~ in a path string."""
    if path is None:
        return None
    return str(Path(path).expanduser())


def _section(raw: dict, name: str) -> dict:
    data = raw.get(name, {})
    return data if isinstance(data, dict) else {}


def resolve_config_path(path: Path | None = None) -> Path:
    """Explicit path, then $SQUADUP_CONFIG, then the default location."""
    if path is not None:
        return path
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return CONFIG_PATH


def load_config(path: Path | None = None) -> SquadUpConfig:
    """
    Read config from TOML file.

    Args:
        path: Override config file path (default: $SQUADUP_CONFIG or
            ~/.squadup/config.toml)

    Returns:
        SquadUpConfig. Missing file or bad TOML returns defaults.
    """
    config_path = resolve_config_path(path)

    if not config_path.exists():
        return SquadUpConfig()

    try:
        with open(config_path, "rb") as f:
            raw = tomllib.load(f)
    except Exception as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return SquadUpConfig()

    # [server]
    server_data = _section(raw, "server")
    server = ServerConfig(
        db_path=_expand(server_data.get("db")) or DEFAULT_DB_PATH,
        port=server_data.get("port", DEFAULT_PORT),
    )

    # [wallet]
    wallet_data = _section(raw, "wallet")
    wallet = WalletConfig(
        require_kyc_for_withdrawal=wallet_data.get("require_kyc_for_withdrawal", False),
    )

    # [matches]
    matches_data = _section(raw, "matches")
    matches = MatchConfig(
        room_visible_minutes=matches_data.get(
            "room_visible_minutes", DEFAULT_ROOM_VISIBLE_MINUTES
        ),
    )

    # [currency.rates] overrides individual pairs; the rest keep defaults
    rates = dict(DEFAULT_RATES)
    rate_overrides = _section(_section(raw, "currency"), "rates")
    for key, value in rate_overrides.items():
        if key not in DEFAULT_RATES:
            logger.warning(f"Ignoring unknown currency rate {key!r} in {config_path}")
            continue
        rates[key] = float(value)

    return SquadUpConfig(
        server=server, wallet=wallet, matches=matches, currency_rates=rates,
    )
