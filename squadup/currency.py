"""
squadup/currency.py - Wallet currencies, conversion and display.

Balances are stored in the user's own currency. Conversion only happens for
display (e.g. showing a USD prize pool to an INR player), using a fixed rate
table that operators can override in config.toml [currency.rates].
"""

import logging
from enum import Enum

logger = logging.getLogger(__name__)


class Currency(str, Enum):
    INR = "INR"
    NGN = "NGN"
    USD = "USD"


# Direct pair rates. Keys are "<FROM>_TO_<TO>" so they map 1:1 onto the
# config file without any translation.
DEFAULT_RATES: dict[str, float] = {
    "USD_TO_INR": 83.5,
    "USD_TO_NGN": 1500,
    "INR_TO_USD": 0.012,
    "INR_TO_NGN": 18,
    "NGN_TO_USD": 0.00067,
    "NGN_TO_INR": 0.056,
}

SYMBOLS: dict[str, str] = {
    "USD": "$",
    "INR": "₹",
    "NGN": "₦",
}

# Dialling code -> (currency, country, default game)
# BGMI is the India-only build of PUBG Mobile.
COUNTRY_DEFAULTS: dict[str, tuple[str, str, str]] = {
    "+91": ("INR", "India", "BGMI"),
    "+234": ("NGN", "Nigeria", "PUBG"),
}
FALLBACK_DEFAULTS = ("USD", "Other", "PUBG")


def rate_key(from_currency: str, to_currency: str) -> str:
    return f"{from_currency}_TO_{to_currency}"


def convert(
    amount: float,
    from_currency: str,
    to_currency: str,
    rates: dict[str, float] | None = None,
) -> float:
    """Convert an amount between two supported currencies.

    Raises:
        ValueError: if either currency is unsupported or the pair has no rate.
    """
    from_currency = Currency(from_currency).value
    to_currency = Currency(to_currency).value
    if from_currency == to_currency:
        return amount

    table = rates if rates is not None else DEFAULT_RATES
    key = rate_key(from_currency, to_currency)
    if key not in table:
        raise ValueError(f"No conversion rate for {from_currency} -> {to_currency}")
    return amount * table[key]


def format_amount(amount: float, currency: str) -> str:
    """Render an amount with its symbol, e.g. ₹1,250 or $12.50.

    Whole amounts drop the decimals; anything else shows two places.
    """
    symbol = SYMBOLS.get(currency, "$")
    if float(amount).is_integer():
        return f"{symbol}{int(amount):,}"
    return f"{symbol}{amount:,.2f}"


def defaults_for_country_code(country_code: str) -> tuple[str, str, str]:
    """(currency, country, game_mode) for a dialling code like "+91"."""
    return COUNTRY_DEFAULTS.get(country_code.strip(), FALLBACK_DEFAULTS)
