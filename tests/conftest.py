import pytest
from eth_utils import to_checksum_address

from mcp_bonding_curve import launch_manager
from mcp_bonding_curve.ledger import Ledger
from mcp_bonding_curve.schemas import CurveType, LaunchConfigModel, LaunchParameters

START_TIME = 1_700_000_000
DAY = 86_400

ADMIN = to_checksum_address("0x" + "ad" * 20)
CREATOR = to_checksum_address("0x" + "c0" * 20)
ALICE = to_checksum_address("0x" + "a1" * 20)
BOB = to_checksum_address("0x" + "b0" * 20)
CAROL = to_checksum_address("0x" + "ca" * 20)
ETH = 10**18


def linear_parameters(**overrides) -> LaunchParameters:
    """Small-number linear launch: P(s) = (1 + s) / 1e9, goal of 1000 units."""
    values = dict(
        max_supply=1_000_000_000,
        funding_supply=733_058_550,
        initial_supply=0,
        funding_goal=1000,
        creation_fee=10,
        liquidity_fee=50,
        creator_reward=20,
        referral_fee_percent=2000,
        fee_percent=100,
        curve_type=CurveType.linear,
        a=1,
        b=1,
        c=10**9,
        active=True,
        lock_duration=30 * DAY,
        lp_fee_treasury_percent=8000,
    )
    values.update(overrides)
    return LaunchParameters(**values)


def constant_product_parameters(**overrides) -> LaunchParameters:
    """Production-scale constant product launch with a 3.2 ETH goal."""
    values = dict(
        max_supply=1_000_000_000 * ETH,
        funding_supply=733_058_550 * ETH,
        initial_supply=0,
        funding_goal=32 * ETH // 10,
        creation_fee=ETH // 1000,
        liquidity_fee=ETH // 10,
        creator_reward=ETH // 20,
        referral_fee_percent=2000,
        fee_percent=100,
        curve_type=CurveType.constant_product,
        a=1_073_000_191 * ETH,
        c=15 * ETH // 10,
        active=True,
        lock_duration=365 * DAY,
        lp_fee_treasury_percent=8000,
    )
    values.update(overrides)
    return LaunchParameters(**values)


def deploy(params: LaunchParameters, network: str = "base") -> launch_manager.Launchpad:
    return launch_manager.bootstrap(
        admin=ADMIN,
        network=network,
        ledger=Ledger(start_time=START_TIME),
        versions={1: LaunchConfigModel(version=1, parameters=params)},
    )


def open_launch(pad: launch_manager.Launchpad, creator: str = CREATOR, value: int = None) -> str:
    params = pad.engine.get_params(1)
    value = params.creation_fee if value is None else value
    pad.ledger.fund(creator, value + 1)
    return pad.engine.create_launch(creator, 1, "Test Token", "TEST", value)


@pytest.fixture
def pad():
    """Launchpad running the small linear launch version."""
    launchpad = deploy(linear_parameters())
    for account in (ALICE, BOB, CAROL):
        launchpad.ledger.fund(account, 1_000_000)
    return launchpad


@pytest.fixture
def token(pad):
    return open_launch(pad)


@pytest.fixture
def cp_pad():
    """Launchpad running the constant product launch version."""
    launchpad = deploy(constant_product_parameters())
    for account in (ALICE, BOB, CAROL):
        launchpad.ledger.fund(account, 10 * ETH)
    return launchpad


@pytest.fixture
def cp_token(cp_pad):
    return open_launch(cp_pad)


@pytest.fixture
def migrated(pad, token):
    """The linear launch after the goal was reached with three buys of 400."""
    for _ in range(3):
        pad.engine.buy(ALICE, token, 400, 0)
    return token
