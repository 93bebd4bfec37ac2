"""
Treasury: passive fee sink with administrator-controlled disbursement.
"""
from typing import Dict

from mcp.server.fastmcp.utilities.logging import get_logger

from mcp_bonding_curve.errors import InsufficientBalanceError, UnauthorizedError
from mcp_bonding_curve.guards import nonreentrant, transactional
from mcp_bonding_curve.ledger import Contract, Ledger
from mcp_bonding_curve.utils import normalize_address, require_positive

logger = get_logger(__name__)


class Treasury(Contract):
    _state_fields = ("total_received",)

    def __init__(self, ledger: Ledger, admin: str):
        super().__init__(ledger, admin)
        self.admin = normalize_address(admin)
        self.total_received = 0

    @property
    def balance(self) -> int:
        return self.ledger.balance_of(self.address)

    def on_value_received(self, sender: str, amount: int) -> None:
        self.total_received += amount
        logger.debug(f"Treasury received {amount} from {sender}")

    @transactional
    def receive(self, sender: str, amount: int) -> None:
        """Anyone may send value to the treasury."""
        require_positive("amount", amount)
        self.ledger.transfer(sender, self.address, amount)

    def _only_admin(self, caller: str) -> None:
        if normalize_address(caller) != self.admin:
            raise UnauthorizedError(f"{caller} is not the treasury administrator")

    @nonreentrant
    def withdraw(self, caller: str, to: str, amount: int) -> None:
        self._only_admin(caller)
        require_positive("amount", amount)
        if amount > self.balance:
            raise InsufficientBalanceError(f"Treasury holds {self.balance}, cannot withdraw {amount}")
        self.ledger.transfer(self.address, to, amount)
        logger.info(f"Treasury withdrew {amount} to {to}")

    @nonreentrant
    def distribute(self, caller: str, payouts: Dict[str, int]) -> int:
        """Pays several recipients at once; either all payouts happen or none."""
        self._only_admin(caller)
        total = sum(require_positive("payout", amount) for amount in payouts.values())
        if total > self.balance:
            raise InsufficientBalanceError(f"Treasury holds {self.balance}, cannot distribute {total}")
        for recipient, amount in payouts.items():
            self.ledger.transfer(self.address, recipient, amount)
        logger.info(f"Treasury distributed {total} to {len(payouts)} recipients")
        return total
