"""
Bonding Curve Launchpad - MCP Server Implementation

This module exposes the launchpad protocol as MCP tools: creating launches, quoting and
executing trades along the bonding curve, following funding progress, harvesting the
fees of migrated liquidity positions and claiming referral fees.

The protocol runs on an in-process ledger deployed by launch_manager.get_launchpad().
The HTTP quote API (actions.py) is served from a background thread of this process so
both surfaces read and write the same ledger under launch_manager.launchpad_lock.
Every tool takes the acting address explicitly (there is no signing layer), and
fund_account credits sandbox balances.

Security Features:
- Input validation of addresses and amounts before touching the ledger
- Rate limiting of trade tools by client IP
- Protocol errors are reported by code; unexpected errors are logged, not exposed
"""
import json
import time
from typing import Optional

from pydantic import Field

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.fastmcp.utilities.logging import get_logger

from mcp_bonding_curve import actions
from mcp_bonding_curve import launch_manager
from mcp_bonding_curve.errors import LaunchpadError, RateLimitExceededError
from mcp_bonding_curve.rate_limiter import RateLimiter
from mcp_bonding_curve.utils import format_amount, normalize_address, require_positive

logger = get_logger(__name__)

# Constants
MAX_NAME_LENGTH = 64
MAX_SYMBOL_LENGTH = 16
MAX_CLIENT_IP_LENGTH = 64

# --- Server Setup ---
mcp = FastMCP(name="Bonding Curve Launchpad")

trade_limiter = RateLimiter()


def _protocol_error(operation: str, error: LaunchpadError) -> str:
    logger.warning(f"{operation} rejected: [{error.code}] {error}")
    return f"Error [{error.code}]: {error}"


def _unexpected_error(operation: str, error: Exception) -> str:
    logger.exception(f"Unexpected error in {operation}: {error}")
    return f"An unexpected server error occurred during {operation}."


def _check_client(client_ip: str) -> None:
    if not client_ip or not isinstance(client_ip, str) or len(client_ip) > MAX_CLIENT_IP_LENGTH:
        raise ValueError("Client IP must be a non-empty string")
    trade_limiter.enforce(client_ip)


def _symbol_of(launchpad: launch_manager.Launchpad, token: str) -> str:
    return launchpad.ledger.resolve(token).symbol


# --- Read Tools ---

@mcp.tool()
async def get_launch_info(context: Context, token: str = Field(..., description="The launched token address.")) -> str:
    """Get the curve state of a launch (phase, sold supply, raised amount, pool)."""
    try:
        with launch_manager.locked_launchpad() as launchpad:
            state = launchpad.engine.get_launch(token)
        return state.model_dump_json(indent=2)
    except LaunchpadError as e:
        return _protocol_error("get_launch_info", e)
    except Exception as e:
        return _unexpected_error("get_launch_info", e)


@mcp.tool()
async def get_launch_parameters(context: Context, version: int = Field(..., description="The launch version.")) -> str:
    """Get the parameters of a launch version."""
    try:
        with launch_manager.locked_launchpad() as launchpad:
            params = launchpad.engine.get_params(version)
        return params.model_dump_json(indent=2)
    except LaunchpadError as e:
        return _protocol_error("get_launch_parameters", e)
    except Exception as e:
        return _unexpected_error("get_launch_parameters", e)


@mcp.tool()
async def get_progress(context: Context, token: str = Field(..., description="The launched token address.")) -> str:
    """Get funding progress of a launch towards its goal."""
    try:
        with launch_manager.locked_launchpad() as launchpad:
            progress = launchpad.helper.progress_to_goal(token)
        return progress.model_dump_json(indent=2)
    except LaunchpadError as e:
        return _protocol_error("get_progress", e)
    except Exception as e:
        return _unexpected_error("get_progress", e)


@mcp.tool()
async def quote_buy(
    context: Context,
    token: str = Field(..., description="The launched token address."),
    amount_in: int = Field(..., description="Raised-asset amount to spend (base units)."),
    buyer: Optional[str] = Field(None, description="Buyer address, to account for a referral fee split."),
    referrer: Optional[str] = Field(None, description="Referrer offered with the buy (optional)."),
) -> str:
    """Quote the tokens a buy would return, with its fees and refund."""
    try:
        with launch_manager.locked_launchpad() as launchpad:
            quote = launchpad.helper.quote_buy(token, amount_in, buyer=buyer, referrer=referrer)
        return quote.model_dump_json(indent=2)
    except LaunchpadError as e:
        return _protocol_error("quote_buy", e)
    except Exception as e:
        return _unexpected_error("quote_buy", e)


# --- Mutating Tools ---

@mcp.tool()
async def fund_account(
    context: Context,
    address: str = Field(..., description="Address to credit."),
    amount: int = Field(..., description="Raised-asset amount to credit (base units)."),
) -> str:
    """Credit a sandbox balance on the in-process ledger."""
    try:
        address = normalize_address(address)
        with launch_manager.locked_launchpad() as launchpad:
            balance = launchpad.ledger.fund(address, amount)
        logger.info(f"Funded {address} with {amount}")
        return f"Funded {address}. Balance: {format_amount(balance, 'ETH')}"
    except LaunchpadError as e:
        return _protocol_error("fund_account", e)
    except Exception as e:
        return _unexpected_error("fund_account", e)


@mcp.tool()
async def create_launch(
    context: Context,
    creator: str = Field(..., description="Creator address paying the creation fee."),
    version: int = Field(..., description="Active launch version to use."),
    name: str = Field(..., description="Token name."),
    symbol: str = Field(..., description="Token symbol."),
    value: int = Field(..., description="Raised-asset amount sent; the excess over the creation fee is refunded."),
) -> str:
    """Create a token and open its bonding curve sale."""
    try:
        if not name or len(name) > MAX_NAME_LENGTH:
            raise ValueError(f"Token name must be 1-{MAX_NAME_LENGTH} characters")
        if not symbol or len(symbol) > MAX_SYMBOL_LENGTH:
            raise ValueError(f"Token symbol must be 1-{MAX_SYMBOL_LENGTH} characters")
        with launch_manager.locked_launchpad() as launchpad:
            token = launchpad.engine.create_launch(creator, version, name, symbol, value)
        return f"Launch created. Token {symbol} at {token}"
    except LaunchpadError as e:
        return _protocol_error("create_launch", e)
    except ValueError as e:
        logger.error(f"Validation error in create_launch: {e}")
        return f"Error: {e}"
    except Exception as e:
        return _unexpected_error("create_launch", e)


@mcp.tool()
async def buy_tokens(
    context: Context,
    caller: str = Field(..., description="Buyer address."),
    token: str = Field(..., description="The launched token address."),
    amount_in: int = Field(..., description="Raised-asset amount to spend (base units)."),
    min_tokens_out: int = Field(..., description="Minimum tokens to receive; the buy fails below it."),
    client_ip: str = Field(..., description="The client's IP address."),
    referrer: Optional[str] = Field(None, description="Referrer address (optional, first purchase only)."),
) -> str:
    """
    Buys launch tokens along the bonding curve.

    The part of amount_in beyond the remaining funding goal is refunded. The buy that
    completes the goal also migrates the launch into a locked exchange position.

    Returns:
        str: Success message with amounts, or an error message carrying the error code.
    """
    start_time = time.time()
    try:
        _check_client(client_ip)
        require_positive("amount_in", amount_in)
        with launch_manager.locked_launchpad() as launchpad:
            quote = launchpad.engine.buy(caller, token, amount_in, min_tokens_out, referrer=referrer)
            symbol = _symbol_of(launchpad, token)
        logger.info(
            f"Buy completed on {token}: {quote.tokens_out} {symbol} for {quote.amount_used}, "
            f"duration={time.time() - start_time:.3f}s, client_ip={client_ip}"
        )
        message = (
            f"Bought {format_amount(quote.tokens_out, symbol)} for {format_amount(quote.amount_used, 'ETH')} "
            f"(fee {format_amount(quote.fee, 'ETH')}, refund {format_amount(quote.refund, 'ETH')})."
        )
        if quote.completes_launch:
            message += " Funding goal reached; liquidity migrated and locked."
        return message
    except RateLimitExceededError as e:
        return str(e)
    except LaunchpadError as e:
        return _protocol_error("buy_tokens", e)
    except ValueError as e:
        logger.error(f"Validation error in buy_tokens: {e}, client_ip: {client_ip}")
        return "Error processing request: Invalid input parameters"
    except Exception as e:
        return _unexpected_error("buy_tokens", e)


@mcp.tool()
async def sell_tokens(
    context: Context,
    caller: str = Field(..., description="Seller address."),
    token: str = Field(..., description="The launched token address."),
    token_amount: int = Field(..., description="Token amount to sell back to the curve (base units)."),
    min_amount_out: int = Field(..., description="Minimum raised-asset amount to receive."),
    client_ip: str = Field(..., description="The client's IP address."),
) -> str:
    """Sells launch tokens back to the bonding curve before migration."""
    start_time = time.time()
    try:
        _check_client(client_ip)
        with launch_manager.locked_launchpad() as launchpad:
            quote = launchpad.engine.sell(caller, token, token_amount, min_amount_out)
            symbol = _symbol_of(launchpad, token)
        logger.info(
            f"Sell completed on {token}: {token_amount} {symbol} for {quote.amount_out}, "
            f"duration={time.time() - start_time:.3f}s, client_ip={client_ip}"
        )
        return (
            f"Sold {format_amount(token_amount, symbol)} for {format_amount(quote.amount_out, 'ETH')} "
            f"(fee {format_amount(quote.fee, 'ETH')})."
        )
    except RateLimitExceededError as e:
        return str(e)
    except LaunchpadError as e:
        return _protocol_error("sell_tokens", e)
    except ValueError as e:
        logger.error(f"Validation error in sell_tokens: {e}, client_ip: {client_ip}")
        return "Error processing request: Invalid input parameters"
    except Exception as e:
        return _unexpected_error("sell_tokens", e)


@mcp.tool()
async def harvest_fees(
    context: Context,
    caller: str = Field(..., description="Address triggering the harvest (anyone)."),
    token: str = Field(..., description="Token whose locked position to harvest."),
) -> str:
    """Collect and split the trading fees of a migrated launch's locked position."""
    try:
        with launch_manager.locked_launchpad() as launchpad:
            result = launchpad.locker.harvest_fees(caller, token)
        return json.dumps(result.model_dump(), indent=2)
    except LaunchpadError as e:
        return _protocol_error("harvest_fees", e)
    except Exception as e:
        return _unexpected_error("harvest_fees", e)


@mcp.tool()
async def claim_referral_fees(context: Context, caller: str = Field(..., description="Referrer address.")) -> str:
    """Pay out the caller's accumulated referral fees."""
    try:
        with launch_manager.locked_launchpad() as launchpad:
            amount = launchpad.referral_registry.claim(caller)
        return f"Claimed {format_amount(amount, 'ETH')} in referral fees."
    except LaunchpadError as e:
        return _protocol_error("claim_referral_fees", e)
    except Exception as e:
        return _unexpected_error("claim_referral_fees", e)


# --- Main Execution ---
if __name__ == "__main__":
    startup_start = time.time()
    logger.info("Starting Bonding Curve Launchpad MCP Server...")

    launchpad = launch_manager.get_launchpad()
    startup_duration = time.time() - startup_start
    logger.info(
        f"Server startup completed in {startup_duration:.3f}s on {launchpad.network.name}, "
        f"{len(launchpad.engine.params)} launch version(s)."
    )
    actions.start_quote_api()

    try:
        mcp.run(transport="stdio")
    except KeyboardInterrupt:
        logger.info("Server shutdown requested by user")
    except Exception as e:
        logger.exception(f"Server error: {e}")
    finally:
        logger.info("Bonding Curve Launchpad MCP Server stopped.")
