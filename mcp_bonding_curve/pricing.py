"""
Token Pricing Engine with Bonding Curves

This module implements the price schedules a launch sells along and the fee arithmetic
applied to every trade. All functions are pure: they take the launch parameters and the
current curve position and return integers in base units, so the engine and the quote
helper produce bit-identical results from the same inputs.

Bonding Curve Types Supported:
- Linear: P(s) = (A + B*s) / C
  The cost of buying d tokens from position s is the area under P between s and s+d.
- Constant product: (C + x) * (A - s) = B, i.e. s(x) = A - B / (C + x)
  A is the virtual token reserve, C the virtual raised reserve and B = A*C their product.
  The spot price is B / (A - s)^2.

Both schedules are non-decreasing in the sold supply s.

Rounding:
- Buy costs round up, sell proceeds round down, so round trips never leak value out
  of the curve.
- tokens_for_amount returns the largest token amount whose cost fits in the budget.

Fee Calculation Process (buys):
1. Deduct fee_percent from the amount sent
2. Cap the net amount at what is left of the funding goal
3. Convert the net amount to tokens along the curve
4. Cap the tokens at what is left of the funding supply (re-pricing the net amount)
5. Refund whatever part of the amount sent was not used
6. Split the fee between the referrer (when bound) and the treasury
"""
from fractions import Fraction
from math import isqrt
from typing import Tuple

from mcp.server.fastmcp.utilities.logging import get_logger

from mcp_bonding_curve.errors import InvalidInputError, InvariantViolationError
from mcp_bonding_curve.schemas import BASIS_POINTS, BuyQuote, CurveType, LaunchParameters, SellQuote

logger = get_logger(__name__)


def _ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


# --- Linear ---

def _linear_area2(params: LaunchParameters, start: int, end: int) -> int:
    """Twice the integral of A + B*s over [start, end]; kept integral by the factor two."""
    return 2 * params.a * (end - start) + params.b * (end * end - start * start)


def _linear_tokens_for(params: LaunchParameters, sold: int, amount: int) -> int:
    budget = 2 * amount * params.c
    if params.b == 0:
        return amount * params.c // params.a
    base = params.a + params.b * sold
    tokens = (isqrt(base * base + 2 * params.b * amount * params.c) - base) // params.b
    # isqrt floors; settle on the exact bound
    while tokens > 0 and _linear_area2(params, sold, sold + tokens) > budget:
        tokens -= 1
    while _linear_area2(params, sold, sold + tokens + 1) <= budget:
        tokens += 1
    return tokens


# --- Constant Product ---

def _virtual_tokens(params: LaunchParameters, sold: int) -> int:
    reserve = params.a - sold
    if reserve <= 0:
        raise InvariantViolationError(f"Virtual token reserve exhausted at sold supply {sold}")
    return reserve


# --- Curve Dispatch ---

def spot_price(params: LaunchParameters, sold: int) -> Fraction:
    """Marginal price (raised units per token unit) at the given sold supply."""
    if params.curve_type == CurveType.linear:
        return Fraction(params.a + params.b * sold, params.c)
    reserve = _virtual_tokens(params, sold)
    return Fraction(params.b, reserve * reserve)


def cost_for_tokens(params: LaunchParameters, sold: int, tokens: int) -> int:
    """Raised amount needed to buy `tokens` starting at `sold`, rounded up."""
    if tokens == 0:
        return 0
    if params.curve_type == CurveType.linear:
        return _ceil_div(_linear_area2(params, sold, sold + tokens), 2 * params.c)
    reserve = _virtual_tokens(params, sold)
    if tokens >= reserve:
        raise InvariantViolationError(f"Cannot buy {tokens} tokens from a virtual reserve of {reserve}")
    return _ceil_div(params.b * tokens, reserve * (reserve - tokens))


def proceeds_for_tokens(params: LaunchParameters, sold: int, tokens: int) -> int:
    """Raised amount released by selling `tokens` back from `sold`, rounded down."""
    if tokens == 0:
        return 0
    if tokens > sold:
        raise InvalidInputError(f"Cannot sell {tokens} tokens; only {sold} sold on the curve")
    if params.curve_type == CurveType.linear:
        return _linear_area2(params, sold - tokens, sold) // (2 * params.c)
    reserve = _virtual_tokens(params, sold)
    return params.b * tokens // (reserve * (reserve + tokens))


def tokens_for_amount(params: LaunchParameters, sold: int, amount: int) -> int:
    """Largest token amount whose cost from `sold` does not exceed `amount`."""
    if amount <= 0:
        return 0
    if params.curve_type == CurveType.linear:
        return _linear_tokens_for(params, sold, amount)
    reserve = _virtual_tokens(params, sold)
    return amount * reserve * reserve // (params.b + amount * reserve)


# --- Fees ---

def gross_for_net(net: int, fee_percent: int) -> int:
    """Smallest amount sent that leaves `net` after the floor-rounded trade fee."""
    gross = _ceil_div(net * BASIS_POINTS, BASIS_POINTS - fee_percent)
    # the fee rounds down, so the exact ceiling can overshoot by a unit or two
    while gross > net and (gross - 1) - (gross - 1) * fee_percent // BASIS_POINTS >= net:
        gross -= 1
    return gross


def split_fee(fee: int, referral_fee_percent: int, has_referrer: bool) -> Tuple[int, int]:
    """Returns (referral_fee, treasury_fee); the two always add up to `fee`."""
    referral_fee = fee * referral_fee_percent // BASIS_POINTS if has_referrer else 0
    return referral_fee, fee - referral_fee


# --- Trade Plans ---

def plan_buy(params: LaunchParameters, sold: int, raised: int, amount_in: int, has_referrer: bool) -> BuyQuote:
    """
    Computes the full outcome of a buy without touching any state.

    Args:
        params: Launch parameters of the token's version.
        sold: Current sold supply.
        raised: Current raised amount.
        amount_in: Raised-asset amount sent by the buyer.
        has_referrer: Whether the buyer has (or will bind) a referrer.

    Returns:
        The BuyQuote the engine executes verbatim.

    Raises:
        InvalidInputError: If the amount cannot buy a single token.
    """
    if amount_in <= 0:
        raise InvalidInputError("Buy amount must be positive")

    fee = amount_in * params.fee_percent // BASIS_POINTS
    net = amount_in - fee
    gross = amount_in

    remaining_goal = params.funding_goal - raised
    if net > remaining_goal:
        net = remaining_goal
        gross = gross_for_net(net, params.fee_percent)

    tokens = tokens_for_amount(params, sold, net)
    remaining_supply = params.funding_supply - sold
    if tokens > remaining_supply:
        tokens = remaining_supply
        net = cost_for_tokens(params, sold, tokens)
        gross = gross_for_net(net, params.fee_percent)

    completes_launch = raised + net >= params.funding_goal or sold + tokens >= params.funding_supply
    # a dust remainder of the goal still has to be buyable, or the launch could never migrate
    if tokens <= 0 and not completes_launch:
        raise InvalidInputError(f"Amount {amount_in} is too small to buy any tokens")

    fee = gross - net
    referral_fee, treasury_fee = split_fee(fee, params.referral_fee_percent, has_referrer)
    quote = BuyQuote(
        amount_in=amount_in,
        amount_used=gross,
        refund=amount_in - gross,
        fee=fee,
        referral_fee=referral_fee,
        treasury_fee=treasury_fee,
        net_amount=net,
        tokens_out=tokens,
        completes_launch=completes_launch,
    )
    logger.debug(f"Buy plan at sold={sold} raised={raised}: {quote}")
    return quote


def plan_sell(params: LaunchParameters, sold: int, token_amount: int, has_referrer: bool) -> SellQuote:
    """Computes the outcome of selling `token_amount` back to the curve."""
    if token_amount <= 0:
        raise InvalidInputError("Sell amount must be positive")

    proceeds = proceeds_for_tokens(params, sold, token_amount)
    if proceeds <= 0:
        raise InvalidInputError(f"Selling {token_amount} tokens yields nothing")

    fee = proceeds * params.fee_percent // BASIS_POINTS
    referral_fee, treasury_fee = split_fee(fee, params.referral_fee_percent, has_referrer)
    quote = SellQuote(
        token_amount=token_amount,
        proceeds=proceeds,
        fee=fee,
        referral_fee=referral_fee,
        treasury_fee=treasury_fee,
        amount_out=proceeds - fee,
    )
    logger.debug(f"Sell plan at sold={sold}: {quote}")
    return quote
