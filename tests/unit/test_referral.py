import pytest

from mcp_bonding_curve.errors import InvariantViolationError, NothingToClaimError, UnauthorizedError
from mcp_bonding_curve.ledger import Ledger
from mcp_bonding_curve.referral import ReferralRegistry

from conftest import ADMIN, ALICE, BOB, CAROL, START_TIME

ENGINE = "0x" + "ee" * 20


@pytest.fixture
def ledger():
    return Ledger(start_time=START_TIME)


@pytest.fixture
def registry(ledger):
    registry = ReferralRegistry(ledger, ADMIN)
    registry.add_to_whitelist(ADMIN, ENGINE)
    return registry


def test_add_to_whitelist_is_idempotent(registry):
    registry.add_to_whitelist(ADMIN, ENGINE)
    registry.add_to_whitelist(ADMIN, ENGINE.upper().replace("0X", "0x"))
    assert len(registry.whitelist) == 1
    assert registry.is_whitelisted(ENGINE)


def test_whitelist_is_admin_only(registry):
    with pytest.raises(UnauthorizedError):
        registry.add_to_whitelist(ALICE, ALICE)
    with pytest.raises(UnauthorizedError):
        registry.remove_from_whitelist(ALICE, ENGINE)
    assert registry.is_whitelisted(ENGINE)
    assert not registry.is_whitelisted(ALICE)


def test_record_referral_requires_whitelist(registry):
    with pytest.raises(UnauthorizedError):
        registry.record_referral(ALICE, BOB, CAROL)
    assert registry.referrer_of(BOB) is None
    assert registry.referrers == {}


def test_record_referral_first_write_wins(registry):
    assert registry.record_referral(ENGINE, ALICE, BOB) == BOB
    assert registry.record_referral(ENGINE, ALICE, CAROL) == BOB
    assert registry.referrer_of(ALICE) == BOB


def test_self_referral_is_ignored(registry):
    assert registry.record_referral(ENGINE, ALICE, ALICE) is None
    assert registry.referrer_of(ALICE) is None
    # a later genuine referral can still bind
    assert registry.record_referral(ENGINE, ALICE, BOB) == BOB


def test_removed_caller_loses_access(registry):
    registry.remove_from_whitelist(ADMIN, ENGINE)
    registry.remove_from_whitelist(ADMIN, ENGINE)
    with pytest.raises(UnauthorizedError):
        registry.record_referral(ENGINE, ALICE, BOB)


def test_credit_fee_must_be_funded(ledger, registry):
    with pytest.raises(InvariantViolationError):
        registry.credit_fee(ENGINE, BOB, 100)

    ledger.fund(ENGINE, 100)
    ledger.transfer(ENGINE, registry.address, 100)
    registry.credit_fee(ENGINE, BOB, 60)
    registry.credit_fee(ENGINE, CAROL, 40)
    assert registry.balance_of(BOB) == 60
    with pytest.raises(InvariantViolationError):
        registry.credit_fee(ENGINE, BOB, 1)
    with pytest.raises(UnauthorizedError):
        registry.credit_fee(ALICE, BOB, 1)


def test_claim_pays_out_once(ledger, registry):
    ledger.fund(ENGINE, 75)
    ledger.transfer(ENGINE, registry.address, 75)
    registry.credit_fee(ENGINE, BOB, 75)

    assert registry.claim(BOB) == 75
    assert ledger.balance_of(BOB) == 75
    assert registry.balance_of(BOB) == 0
    with pytest.raises(NothingToClaimError):
        registry.claim(BOB)
    with pytest.raises(NothingToClaimError):
        registry.claim(CAROL)
