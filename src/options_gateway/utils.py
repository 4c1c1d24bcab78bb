"""
Utility functions for fixed-point amounts, addresses and labels.
"""

import re
from datetime import datetime, timezone
from decimal import Decimal, localcontext
from typing import Union

from eth_utils import to_checksum_address, is_address

MAX_UINT256 = 2 ** 256 - 1
WAD_DECIMALS = 18

_ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")
_QUOTE_ID_PATTERN = re.compile(r"^[a-fA-F0-9]{64}$|^0x[a-fA-F0-9]{64}$")


def parse_units(amount: Union[Decimal, float, int, str], decimals: int = WAD_DECIMALS) -> int:
    """Convert a decimal amount to its fixed-point integer representation"""
    with localcontext() as ctx:
        ctx.prec = 100
        value = Decimal(str(amount)).scaleb(decimals)
        if value != value.to_integral_value():
            raise ValueError(f"{amount} has more than {decimals} decimals")
        return int(value)


def format_units(value: Union[int, str], decimals: int = WAD_DECIMALS) -> Decimal:
    """Convert a fixed-point integer to a decimal amount"""
    with localcontext() as ctx:
        ctx.prec = 100
        return Decimal(int(value)).scaleb(-decimals).normalize()


def parse_ether(amount: Union[Decimal, float, int, str]) -> int:
    return parse_units(amount, WAD_DECIMALS)


def format_ether(value: Union[int, str]) -> Decimal:
    return format_units(value, WAD_DECIMALS)


def to_number(value: Decimal) -> Union[int, float]:
    """JSON friendly rendering of a decimal"""
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def validate_address(address: str) -> bool:
    """Validate EVM address format"""
    return bool(_ADDRESS_PATTERN.match(address)) and is_address(address)


def normalize_address(address: str) -> str:
    """Normalize address to checksum format"""
    return to_checksum_address(address)


def is_quote_id(value: str) -> bool:
    return bool(_QUOTE_ID_PATTERN.match(value))


def canonical_quote_id(value: str) -> str:
    """0x-prefixed lowercase form the orderbook uses for quote ids"""
    value = value.lower()
    return value if value.startswith("0x") else "0x" + value


def format_expiration(maturity: int) -> str:
    """Render a maturity timestamp as a DDMMMYY label"""
    return datetime.fromtimestamp(int(maturity), tz=timezone.utc).strftime("%d%b%y").upper()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
