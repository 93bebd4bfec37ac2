import pytest
from pydantic import ValidationError

from mcp_bonding_curve.errors import InvalidInputError
from mcp_bonding_curve.pricing import (
    cost_for_tokens,
    gross_for_net,
    plan_buy,
    plan_sell,
    proceeds_for_tokens,
    split_fee,
    spot_price,
    tokens_for_amount,
)
from mcp_bonding_curve.schemas import CurveType, LaunchParameters

from conftest import constant_product_parameters, linear_parameters


def flat_parameters(**overrides) -> LaunchParameters:
    """Constant price of `a` raised units per token."""
    values = dict(
        max_supply=10**6,
        funding_supply=100,
        funding_goal=10**6,
        fee_percent=100,
        referral_fee_percent=2000,
        curve_type=CurveType.linear,
        a=1,
        b=0,
        c=1,
    )
    values.update(overrides)
    return LaunchParameters(**values)


SMALL_CP = dict(max_supply=2000, funding_supply=800, funding_goal=10**7, a=1000, c=10**6)


@pytest.mark.parametrize("params", [linear_parameters(), constant_product_parameters(), constant_product_parameters(**SMALL_CP)])
def test_tokens_for_amount_is_largest_affordable(params):
    for sold in (0, params.funding_supply // 3):
        for amount in (1, 7, 396, 10**6, 10**15):
            tokens = tokens_for_amount(params, sold, amount)
            assert cost_for_tokens(params, sold, tokens) <= amount
            if sold + tokens + 1 < params.a or params.curve_type == CurveType.linear:
                assert cost_for_tokens(params, sold, tokens + 1) > amount


@pytest.mark.parametrize("params", [linear_parameters(), constant_product_parameters(**SMALL_CP)])
def test_spot_price_is_non_decreasing(params):
    prices = [spot_price(params, sold) for sold in range(0, params.funding_supply, params.funding_supply // 50)]
    assert prices == sorted(prices)
    assert prices[0] > 0


def test_round_trip_never_returns_more_than_paid():
    params = constant_product_parameters(**SMALL_CP)
    for sold, tokens in ((0, 1), (0, 400), (250, 300)):
        assert proceeds_for_tokens(params, sold + tokens, tokens) <= cost_for_tokens(params, sold, tokens)
    params = linear_parameters()
    assert proceeds_for_tokens(params, 889_000, 889_000) <= cost_for_tokens(params, 0, 889_000)


def test_constant_product_spot_price_matches_reserves():
    params = constant_product_parameters(**SMALL_CP)
    assert params.b == 1000 * 10**6
    assert spot_price(params, 0) == 1000
    assert spot_price(params, 500) == 4000


def test_proceeds_rejects_selling_more_than_sold():
    with pytest.raises(InvalidInputError):
        proceeds_for_tokens(linear_parameters(), 10, 11)


def test_split_fee_adds_up():
    assert split_fee(1000, 2000, True) == (200, 800)
    assert split_fee(1000, 2000, False) == (0, 1000)
    assert split_fee(3, 2000, True) == (0, 3)
    for fee in (1, 99, 12345):
        referral, treasury = split_fee(fee, 3333, True)
        assert referral + treasury == fee


def test_gross_for_net_inverts_the_fee():
    assert gross_for_net(208, 100) == 210
    assert gross_for_net(100, 100) == 101
    assert gross_for_net(100, 0) == 100


def test_gross_for_net_is_the_smallest_sufficient_amount():
    for fee_percent in (1, 100, 250, 3333):
        for net in (1, 5, 99, 100, 208, 734, 1000, 123_457):
            gross = gross_for_net(net, fee_percent)
            assert gross - gross * fee_percent // 10_000 >= net
            assert (gross - 1) - (gross - 1) * fee_percent // 10_000 < net



def test_plan_buy_caps_at_remaining_goal_and_refunds():
    params = linear_parameters()
    quote = plan_buy(params, 1_700_000, 792, 400, has_referrer=False)
    assert quote.net_amount == 208
    assert quote.amount_used == 210
    assert quote.fee == 2
    assert quote.refund == 190
    assert quote.treasury_fee == 2
    assert quote.completes_launch


def test_plan_buy_caps_at_remaining_supply():
    quote = plan_buy(flat_parameters(), 0, 0, 1000, has_referrer=True)
    assert quote.tokens_out == 100
    assert quote.net_amount == 100
    assert quote.amount_used == 101
    assert quote.refund == 899
    assert quote.fee == 1
    assert quote.referral_fee + quote.treasury_fee == quote.fee
    assert quote.completes_launch


def test_plan_buy_allows_dust_that_completes_the_goal():
    params = flat_parameters(a=10, funding_supply=10**5, funding_goal=1000)
    quote = plan_buy(params, 99, 995, 100, has_referrer=False)
    assert quote.tokens_out == 0
    assert quote.net_amount == 5
    assert quote.completes_launch


def test_plan_buy_rejects_amount_too_small():
    params = flat_parameters(a=10)
    with pytest.raises(InvalidInputError):
        plan_buy(params, 0, 0, 5, has_referrer=False)
    with pytest.raises(InvalidInputError):
        plan_buy(params, 0, 0, 0, has_referrer=False)


def test_plan_sell_deducts_fee():
    params = flat_parameters(a=100)
    quote = plan_sell(params, 50, 10, has_referrer=True)
    assert quote.proceeds == 1000
    assert quote.fee == 10
    assert quote.referral_fee == 2
    assert quote.treasury_fee == 8
    assert quote.amount_out == 990


def test_parameters_reject_supply_over_cap():
    with pytest.raises(ValidationError):
        linear_parameters(initial_supply=300_000_000)


def test_parameters_reject_inconsistent_constant_product():
    with pytest.raises(ValidationError):
        constant_product_parameters(b=1)
    with pytest.raises(ValidationError):
        constant_product_parameters(a=733_058_550 * 10**18)


def test_parameters_reject_fee_out_of_range():
    with pytest.raises(ValidationError):
        linear_parameters(fee_percent=10_000)
    with pytest.raises(ValidationError):
        linear_parameters(referral_fee_percent=10_001)
