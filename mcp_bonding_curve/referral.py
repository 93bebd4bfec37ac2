"""
Referral Registry

Gates and accounts referral incentives. Only whitelisted caller contracts (sale engines
registered by the administrator) may attribute buyers to referrers or credit fees; end
users can only claim what they were credited. Attribution is first-write-wins per buyer.
"""
from typing import Dict, Optional, Set

from mcp.server.fastmcp.utilities.logging import get_logger

from mcp_bonding_curve.errors import (
    InvariantViolationError,
    NothingToClaimError,
    UnauthorizedError,
)
from mcp_bonding_curve.guards import nonreentrant, transactional
from mcp_bonding_curve.ledger import Contract, Ledger
from mcp_bonding_curve.utils import normalize_address, require_positive

logger = get_logger(__name__)


class ReferralRegistry(Contract):
    _state_fields = ("whitelist", "referrers", "balances", "total_owed")

    def __init__(self, ledger: Ledger, admin: str):
        super().__init__(ledger, admin)
        self.admin = normalize_address(admin)
        self.whitelist: Set[str] = set()
        self.referrers: Dict[str, str] = {}
        self.balances: Dict[str, int] = {}
        self.total_owed = 0

    def _only_admin(self, caller: str) -> None:
        if normalize_address(caller) != self.admin:
            raise UnauthorizedError(f"{caller} is not the referral registry administrator")

    def _only_whitelisted(self, caller: str) -> None:
        if normalize_address(caller) not in self.whitelist:
            raise UnauthorizedError(f"{caller} is not whitelisted in the referral registry")

    def is_whitelisted(self, address: str) -> bool:
        return normalize_address(address) in self.whitelist

    def referrer_of(self, buyer: str) -> Optional[str]:
        return self.referrers.get(normalize_address(buyer))

    def balance_of(self, referrer: str) -> int:
        return self.balances.get(normalize_address(referrer), 0)

    @transactional
    def add_to_whitelist(self, caller: str, address: str) -> None:
        self._only_admin(caller)
        address = normalize_address(address)
        if address in self.whitelist:
            logger.debug(f"{address} already whitelisted")
            return
        self.whitelist.add(address)
        logger.info(f"Whitelisted {address} in referral registry")

    @transactional
    def remove_from_whitelist(self, caller: str, address: str) -> None:
        self._only_admin(caller)
        address = normalize_address(address)
        if address in self.whitelist:
            self.whitelist.discard(address)
            logger.info(f"Removed {address} from referral whitelist")

    @transactional
    def record_referral(self, caller: str, buyer: str, referrer: str) -> Optional[str]:
        """Binds `buyer` to `referrer` unless already bound. Returns the binding in force."""
        self._only_whitelisted(caller)
        buyer = normalize_address(buyer)
        referrer = normalize_address(referrer)
        existing = self.referrers.get(buyer)
        if existing is not None:
            return existing
        if buyer == referrer:
            logger.debug(f"Ignoring self-referral for {buyer}")
            return None
        self.referrers[buyer] = referrer
        logger.info(f"Recorded referral: {buyer} referred by {referrer}")
        return referrer

    @transactional
    def credit_fee(self, caller: str, referrer: str, amount: int) -> None:
        """Credits `amount` the caller has already transferred to this registry."""
        self._only_whitelisted(caller)
        referrer = normalize_address(referrer)
        require_positive("amount", amount)
        if self.total_owed + amount > self.ledger.balance_of(self.address):
            raise InvariantViolationError(
                f"Referral credit of {amount} is not backed by the registry balance"
            )
        self.balances[referrer] = self.balances.get(referrer, 0) + amount
        self.total_owed += amount
        logger.debug(f"Credited {amount} referral fee to {referrer}")

    @nonreentrant
    def claim(self, caller: str) -> int:
        caller = normalize_address(caller)
        amount = self.balances.get(caller, 0)
        if amount == 0:
            raise NothingToClaimError(f"No referral fees to claim for {caller}")
        self.balances[caller] = 0
        self.total_owed -= amount
        self.ledger.transfer(self.address, caller, amount)
        logger.info(f"Referrer {caller} claimed {amount}")
        return amount
