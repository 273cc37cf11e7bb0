"""
Currency amount normalization to and from the gateway's minor units.

The gateway takes integer amounts in the smallest currency unit (paise for
INR). The number of decimal places is looked up per ISO 4217 code; anything
not listed uses two.
"""

from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Union

Amount = Union[Decimal, int, float, str]

DEFAULT_DECIMALS = 2

CURRENCY_DECIMALS: dict[str, int] = {
    # ─── Zero-decimal currencies ───────────────────────────────────────
    "BIF": 0,  # Burundian franc
    "CLP": 0,  # Chilean peso
    "DJF": 0,  # Djiboutian franc
    "GNF": 0,  # Guinean franc
    "JPY": 0,  # Japanese yen
    "KMF": 0,  # Comorian franc
    "KRW": 0,  # South Korean won
    "MGA": 0,  # Malagasy ariary
    "PYG": 0,  # Paraguayan guarani
    "RWF": 0,  # Rwandan franc
    "UGX": 0,  # Ugandan shilling
    "VND": 0,  # Vietnamese dong
    "VUV": 0,  # Vanuatu vatu
    "XAF": 0,  # Central African CFA franc
    "XOF": 0,  # West African CFA franc
    "XPF": 0,  # CFP franc
    # ─── Three-decimal currencies ──────────────────────────────────────
    # The gateway only accepts these in multiples of 10 minor units.
    "BHD": 3,  # Bahraini dinar
    "IQD": 3,  # Iraqi dinar
    "JOD": 3,  # Jordanian dinar
    "KWD": 3,  # Kuwaiti dinar
    "OMR": 3,  # Omani rial
    "TND": 3,  # Tunisian dinar
}


def currency_decimals(currency_code: str) -> int:
    return CURRENCY_DECIMALS.get((currency_code or "").upper(), DEFAULT_DECIMALS)


def currency_multiplier(currency_code: str) -> int:
    return 10 ** currency_decimals(currency_code)


def to_minor_units(amount: Amount, currency_code: str) -> int:
    """
    Convert a major-unit amount to the gateway's integer minor units.

    The amount is first rounded to the currency's precision, then scaled and
    floored. For three-decimal currencies the result is rounded up to the
    next multiple of 10, which the gateway requires for those currencies.

    Args:
        amount: Amount in major units (e.g. 100.50 INR).
        currency_code: ISO 4217 code, case-insensitive.

    Returns:
        Integer amount in minor units (e.g. 10050).
    """
    decimals = currency_decimals(currency_code)
    multiplier = 10 ** decimals

    rounded = Decimal(str(amount)).quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_HALF_UP)
    minor = rounded * multiplier

    if decimals == 3:
        minor = (minor / 10).to_integral_value(rounding=ROUND_CEILING) * 10

    return int(minor.to_integral_value(rounding=ROUND_FLOOR))


def from_minor_units(amount: Amount, currency_code: str) -> Decimal:
    """Convert gateway minor units back to a major-unit Decimal."""
    return Decimal(str(amount)) / currency_multiplier(currency_code)
