from eth_utils import is_address, to_checksum_address

from mcp_bonding_curve.errors import InvalidInputError

TOKEN_DECIMALS = 18


def normalize_address(value: str) -> str:
    """Validates an address and returns its checksummed form."""
    if not isinstance(value, str) or not is_address(value):
        raise InvalidInputError(f"Invalid address: {value!r}")
    return to_checksum_address(value)


def require_positive(name: str, amount: int) -> int:
    """Rejects non-integer or non-positive amounts."""
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidInputError(f"{name} must be a positive integer, got {amount!r}")
    return amount


def format_amount(amount: int, symbol: str, decimals: int = TOKEN_DECIMALS) -> str:
    """Format a base-unit amount with its decimal places and symbol."""
    whole, frac = divmod(amount, 10 ** decimals)
    frac_str = f"{frac:0{decimals}d}".rstrip("0") if decimals else ""
    return f"{whole}.{frac_str or '0'} {symbol}"
