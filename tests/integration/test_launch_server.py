import json
import threading
import urllib.request
from unittest.mock import MagicMock, patch

import pytest

from mcp_bonding_curve import actions
from mcp_bonding_curve import launch_manager
from mcp_bonding_curve import server
from mcp_bonding_curve.schemas import LaunchConfigModel, LaunchPhase

from conftest import ADMIN, ALICE, BOB, CREATOR, deploy, linear_parameters

CLIENT_IP = "127.0.0.1"


@pytest.fixture
def launchpad():
    """Installs a fresh launchpad as the process-wide one."""
    pad = deploy(linear_parameters())
    with patch.object(launch_manager, "_launchpad", pad):
        server.trade_limiter.reset()
        actions.quote_limiter.reset()
        yield pad


@pytest.fixture
def context():
    return MagicMock()


@pytest.fixture
def launched(launchpad):
    launchpad.ledger.fund(CREATOR, 1000)
    launchpad.ledger.fund(ALICE, 10_000)
    return launchpad.engine.create_launch(CREATOR, 1, "Server Token", "SRV", 10)


def test_bootstrap_wires_the_components():
    pad = launch_manager.bootstrap(admin=ADMIN, network="base_sepolia", ledger=None, versions={})
    assert pad.exchange.address == pad.network.position_manager
    assert pad.engine.addresses.quote_asset == pad.network.weth
    assert pad.engine.addresses.locker == pad.locker.address
    assert pad.locker.bonding_curve == pad.engine.address
    assert pad.locker.treasury == pad.network.treasury_wallet
    assert pad.helper.bonding_curve == pad.engine.address
    assert pad.referral_registry.is_whitelisted(pad.engine.address)


def test_packaged_launch_versions_load():
    launch_manager.clear_launch_cache()
    versions = launch_manager.load_launch_configs()
    assert set(versions) >= {1, 2}
    v1 = versions[1].parameters
    assert v1.b == v1.a * v1.c
    assert v1.funding_goal == 3_200_000_000_000_000_000
    assert launch_manager.get_launch_config(2).parameters.curve_type.value == "linear"
    assert launch_manager.get_launch_config(9) is None

    pad = launch_manager.bootstrap(admin=ADMIN, network="base", versions=versions)
    assert pad.engine.get_params(1).active
    assert pad.engine.get_params(2).active
    assert pad.engine.get_params(1).fee_percent == pad.network.fee_percent


def test_network_fee_applies_when_a_version_leaves_it_unset():
    profile = launch_manager.load_network_profile("base").model_copy(update={"fee_percent": 250})
    unset = LaunchConfigModel.model_validate(
        {"version": 1, "parameters": linear_parameters().model_dump(exclude={"fee_percent"})}
    )
    explicit = LaunchConfigModel(version=2, parameters=linear_parameters(fee_percent=100))

    with patch.object(launch_manager, "load_network_profile", return_value=profile):
        pad = launch_manager.bootstrap(admin=ADMIN, network="base", versions={1: unset, 2: explicit})

    assert pad.engine.get_params(1).fee_percent == 250
    assert pad.engine.get_params(2).fee_percent == 100
    assert pad.network.fee_percent == 250


def test_get_launchpad_deploys_once():
    launch_manager.reset_launchpad()
    try:
        first = launch_manager.get_launchpad()
        assert launch_manager.get_launchpad() is first
        assert first.engine.params
    finally:
        launch_manager.reset_launchpad()


@pytest.mark.asyncio
async def test_get_launch_parameters(launchpad, context):
    result = await server.get_launch_parameters(context=context, version=1)
    assert json.loads(result)["funding_goal"] == 1000
    missing = await server.get_launch_parameters(context=context, version=9)
    assert missing.startswith("Error [InvalidInput]")


@pytest.mark.asyncio
async def test_quote_and_buy(launchpad, context, launched):
    quote = json.loads(
        await server.quote_buy(context=context, token=launched, amount_in=400, buyer=ALICE, referrer=None)
    )
    result = await server.buy_tokens(
        context=context,
        caller=ALICE,
        token=launched,
        amount_in=400,
        min_tokens_out=quote["tokens_out"],
        client_ip=CLIENT_IP,
        referrer=None,
    )
    assert result.startswith("Bought ")
    assert launchpad.ledger.resolve(launched).balance_of(ALICE) == quote["tokens_out"]

    info = json.loads(await server.get_launch_info(context=context, token=launched))
    assert info["raised_amount"] == 396
    assert info["phase"] == LaunchPhase.active.value


@pytest.mark.asyncio
async def test_buy_reports_protocol_errors(launchpad, context, launched):
    result = await server.buy_tokens(
        context=context,
        caller=ALICE,
        token=launched,
        amount_in=400,
        min_tokens_out=10**12,
        client_ip=CLIENT_IP,
        referrer=None,
    )
    assert result.startswith("Error [SlippageExceeded]")

    invalid = await server.buy_tokens(
        context=context, caller=ALICE, token=launched, amount_in=-5, min_tokens_out=0, client_ip=CLIENT_IP, referrer=None
    )
    assert invalid.startswith("Error [InvalidInput]")


@pytest.mark.asyncio
async def test_buy_is_rate_limited(launchpad, context, launched):
    with patch.object(server.trade_limiter, "limit", 2):
        for _ in range(2):
            await server.buy_tokens(
                context=context, caller=ALICE, token=launched, amount_in=10, min_tokens_out=0, client_ip=CLIENT_IP, referrer=None
            )
        result = await server.buy_tokens(
            context=context, caller=ALICE, token=launched, amount_in=10, min_tokens_out=0, client_ip=CLIENT_IP, referrer=None
        )
    assert "Rate limit exceeded" in result


@pytest.mark.asyncio
async def test_full_launch_through_the_tools(launchpad, context, launched):
    await server.fund_account(context=context, address=BOB, amount=10_000)
    await server.buy_tokens(
        context=context, caller=ALICE, token=launched, amount_in=400, min_tokens_out=0, client_ip=CLIENT_IP, referrer=BOB
    )
    await server.buy_tokens(
        context=context, caller=BOB, token=launched, amount_in=400, min_tokens_out=0, client_ip=CLIENT_IP, referrer=None
    )
    final = await server.buy_tokens(
        context=context, caller=ALICE, token=launched, amount_in=400, min_tokens_out=0, client_ip=CLIENT_IP, referrer=None
    )
    assert "liquidity migrated and locked" in final

    progress = json.loads(await server.get_progress(context=context, token=launched))
    assert progress["phase"] == LaunchPhase.migrated.value
    assert progress["progress_bps"] == 10_000

    sell = await server.sell_tokens(
        context=context, caller=ALICE, token=launched, token_amount=10, min_amount_out=0, client_ip=CLIENT_IP
    )
    assert sell.startswith("Error [LaunchMigrated]")

    launchpad.exchange.record_swap_fees(ALICE, launchpad.engine.get_launch(launched).position_id, 0, 1000)
    harvest = json.loads(await server.harvest_fees(context=context, caller=BOB, token=launched))
    assert harvest["treasury_amount"] == 800
    assert harvest["referrer_amount"] == 200

    nothing = await server.claim_referral_fees(context=context, caller=ALICE)
    assert nothing.startswith("Error [NothingToClaim]")


@pytest.mark.asyncio
async def test_claim_referral_fees(launchpad, context, launched):
    await server.buy_tokens(
        context=context, caller=ALICE, token=launched, amount_in=5000, min_tokens_out=0, client_ip=CLIENT_IP, referrer=BOB
    )
    credited = launchpad.referral_registry.balance_of(BOB)
    assert credited > 0
    result = await server.claim_referral_fees(context=context, caller=BOB)
    assert result.startswith("Claimed")
    assert launchpad.ledger.balance_of(BOB) == credited


@pytest.mark.asyncio
async def test_sell_tokens(launchpad, context, launched):
    await server.buy_tokens(
        context=context, caller=ALICE, token=launched, amount_in=400, min_tokens_out=0, client_ip=CLIENT_IP, referrer=None
    )
    held = launchpad.ledger.resolve(launched).balance_of(ALICE)
    result = await server.sell_tokens(
        context=context, caller=ALICE, token=launched, token_amount=held, min_amount_out=0, client_ip=CLIENT_IP
    )
    assert result.startswith("Sold ")
    assert launchpad.engine.get_launch(launched).sold_supply == 0


@pytest.mark.asyncio
async def test_fund_and_create_launch(launchpad, context):
    funded = await server.fund_account(context=context, address=CREATOR, amount=25)
    assert funded.startswith("Funded")
    result = await server.create_launch(
        context=context, creator=CREATOR, version=1, name="Tool Token", symbol="TOOL", value=25
    )
    assert result.startswith("Launch created. Token TOOL at ")
    token = result.rsplit(" ", 1)[-1]
    assert launchpad.engine.get_launch(token).creator == CREATOR
    assert launchpad.ledger.balance_of(CREATOR) == 15

    invalid = await server.fund_account(context=context, address="not-an-address", amount=1)
    assert invalid.startswith("Error [InvalidInput]")


@pytest.mark.asyncio
async def test_create_launch_validates_symbol(launchpad, context):
    result = await server.create_launch(context=context, creator=CREATOR, version=1, name="Token", symbol="", value=10)
    assert result.startswith("Error:")


# --- Quote API ---

@pytest.fixture
def client():
    actions.app.config["TESTING"] = True
    return actions.app.test_client()


def test_quote_api_routes(launchpad, launched, client):
    response = client.get(f"/launches/{launched}/quote/buy?amount=400")
    assert response.status_code == 200
    assert response.get_json() == launchpad.helper.quote_buy(launched, 400).model_dump()
    assert response.headers["Access-Control-Allow-Origin"] == "*"

    price = client.get(f"/launches/{launched}/price").get_json()
    assert price["numerator"] == "1"
    assert price["denominator"] == str(10**9)

    progress = client.get(f"/launches/{launched}/progress").get_json()
    assert progress["phase"] == "Active"

    preflight = client.options(f"/launches/{launched}/quote/sell")
    assert preflight.status_code == 204


def test_quote_api_errors(launchpad, launched, client):
    assert client.get(f"/launches/{launched}/quote/buy").status_code == 400
    assert client.get(f"/launches/{launched}/quote/buy?amount=abc").status_code == 400
    unknown = client.get(f"/launches/{'0x' + '42' * 20}/quote/buy?amount=400")
    assert unknown.status_code == 404
    assert unknown.get_json()["error"] == "InvalidInput"
    oversell = client.get(f"/launches/{launched}/quote/sell?amount=10")
    assert oversell.status_code == 400


def test_quote_api_rate_limit(launchpad, launched, client):
    with patch.object(actions.quote_limiter, "limit", 1):
        assert client.get(f"/launches/{launched}/progress").status_code == 200
        assert client.get(f"/launches/{launched}/progress").status_code == 429


# --- Shared process ---

def _fetch_json(url):
    with urllib.request.urlopen(url, timeout=5) as response:
        return response.status, json.loads(response.read())


@pytest.mark.asyncio
async def test_quote_api_sees_trades_made_through_the_tools(launchpad, context, client):
    await server.fund_account(context=context, address=CREATOR, amount=10)
    created = await server.create_launch(
        context=context, creator=CREATOR, version=1, name="Shared Token", symbol="SHR", value=10
    )
    token = created.rsplit(" ", 1)[-1]
    await server.fund_account(context=context, address=ALICE, amount=400)
    await server.buy_tokens(
        context=context, caller=ALICE, token=token, amount_in=400, min_tokens_out=0, client_ip=CLIENT_IP, referrer=None
    )

    progress = client.get(f"/launches/{token}/progress").get_json()
    assert progress["raised"] == 396
    assert progress["sold"] == launchpad.engine.get_launch(token).sold_supply


def test_quote_api_thread_serves_the_same_launchpad(launchpad, launched):
    quote_server = actions.start_quote_api(host="127.0.0.1", port=0)
    try:
        status, body = _fetch_json(f"http://127.0.0.1:{quote_server.server_port}/launches/{launched}/progress")
        assert status == 200
        assert body["phase"] == LaunchPhase.active.value
        assert body["goal"] == launchpad.engine.get_params(1).funding_goal
    finally:
        quote_server.shutdown()
        quote_server.server_close()


def test_quote_requests_wait_for_the_launchpad_lock(launchpad, launched):
    quote_server = actions.start_quote_api(host="127.0.0.1", port=0)
    url = f"http://127.0.0.1:{quote_server.server_port}/launches/{launched}/progress"
    results = []
    request_thread = threading.Thread(target=lambda: results.append(_fetch_json(url)))
    try:
        with launch_manager.launchpad_lock:
            request_thread.start()
            request_thread.join(timeout=0.5)
            assert request_thread.is_alive()
            assert results == []
        request_thread.join(timeout=5)
        assert results[0][0] == 200
    finally:
        quote_server.shutdown()
        quote_server.server_close()
