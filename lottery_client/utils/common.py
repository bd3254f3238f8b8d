"""Common helpers for addresses and ether amounts."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Optional

from web3 import Web3

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def shorten_eth_address(address: Optional[str]) -> str:
    """Shorten an Ethereum address for display: '0x123456...abcd'.

    Returns the first 6 and last 4 hex characters, separated by '...'.
    Handles addresses with or without the '0x' prefix.
    """
    if not address:
        return ""
    addr = address.lower()
    if addr.startswith("0x"):
        addr = addr[2:]
    if len(addr) < 10:
        return f"0x{addr}"
    return f"0x{addr[:6]}...{addr[-4:]}"


def same_address(left: Optional[str], right: Optional[str]) -> bool:
    """Case-insensitive address comparison; empty values never match."""
    if not left or not right:
        return False
    return left.lower() == right.lower()


def is_zero_address(address: Optional[str]) -> bool:
    return not address or address.lower() == ZERO_ADDRESS


def parse_eth_amount(value: str | Decimal | int) -> int:
    """Convert an ether-denominated amount ("0.05") to wei.

    Raises ValueError when the value is not a finite decimal number or falls
    outside the uint256 wei range.
    """
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, AttributeError) as exc:
        raise ValueError(f"Invalid ETH amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Invalid ETH amount: {value!r}")
    return int(Web3.to_wei(amount, "ether"))


def format_eth_amount(wei_amount: int, places: int = 6) -> str:
    """Format a wei amount as ether with a fixed number of decimals."""
    try:
        ether = Web3.from_wei(int(wei_amount), "ether")
    except (TypeError, ValueError):
        return "0"
    return f"{Decimal(ether):.{places}f}"
