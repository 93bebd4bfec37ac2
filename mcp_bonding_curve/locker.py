"""
Liquidity Locker

Takes custody of the exchange position minted at migration and keeps it for the lock
duration. Accrued trading fees can be harvested by anyone at any time and are split
between the treasury wallet and the referrer side (the inviter unless a referrer was
given); the principal position only goes back to the administrator after the lock ends,
and only once.
"""
from typing import Dict, Optional

from mcp.server.fastmcp.utilities.logging import get_logger

from mcp_bonding_curve.config import BASIS_POINTS
from mcp_bonding_curve.errors import (
    AlreadyConfiguredError,
    InvalidInputError,
    InvalidStateError,
    LockActiveError,
    UnauthorizedError,
)
from mcp_bonding_curve.guards import nonreentrant, transactional
from mcp_bonding_curve.ledger import Contract, Ledger
from mcp_bonding_curve.schemas import HarvestResult, LiquidityPosition
from mcp_bonding_curve.utils import normalize_address

logger = get_logger(__name__)


class LiquidityLocker(Contract):
    _state_fields = ("treasury", "inviter", "position_manager", "bonding_curve", "positions")

    def __init__(self, ledger: Ledger, admin: str):
        super().__init__(ledger, admin)
        self.admin = normalize_address(admin)
        self.treasury: Optional[str] = None
        self.inviter: Optional[str] = None
        self.position_manager: Optional[str] = None
        self.bonding_curve: Optional[str] = None
        self.positions: Dict[str, LiquidityPosition] = {}

    @property
    def configured(self) -> bool:
        return self.bonding_curve is not None

    def _exchange(self):
        if self.position_manager is None:
            raise InvalidStateError("Locker addresses are not configured")
        return self.ledger.resolve(self.position_manager)

    def get_position(self, token: str) -> LiquidityPosition:
        position = self.positions.get(normalize_address(token))
        if position is None:
            raise InvalidInputError(f"No locked position for token {token}")
        return position.model_copy()

    @transactional
    def set_addresses(self, caller: str, treasury: str, inviter: str, position_manager: str, bonding_curve: str) -> None:
        if normalize_address(caller) != self.admin:
            raise UnauthorizedError(f"{caller} is not the locker administrator")
        if self.configured:
            raise AlreadyConfiguredError("Locker addresses are already set")
        if self.ledger.resolve(position_manager) is None:
            raise InvalidInputError(f"No position manager deployed at {position_manager}")
        self.treasury = normalize_address(treasury)
        self.inviter = normalize_address(inviter)
        self.position_manager = normalize_address(position_manager)
        self.bonding_curve = normalize_address(bonding_curve)
        logger.info(
            f"Locker configured: treasury={self.treasury}, inviter={self.inviter}, "
            f"position_manager={self.position_manager}, bonding_curve={self.bonding_curve}"
        )

    @transactional
    def receive_position(
        self,
        caller: str,
        token: str,
        position_id: int,
        lock_duration: int,
        treasury_percent: int,
        referrer: Optional[str] = None,
    ) -> LiquidityPosition:
        if not self.configured or normalize_address(caller) != self.bonding_curve:
            raise UnauthorizedError(f"{caller} may not deposit positions into the locker")
        token = normalize_address(token)
        if token in self.positions:
            raise InvalidStateError(f"A position for {token} is already locked")
        if not 0 <= treasury_percent <= BASIS_POINTS:
            raise InvalidInputError(f"treasury_percent must be within 0..{BASIS_POINTS}")
        if self._exchange().owner_of(position_id) != self.address:
            raise InvalidStateError(f"Locker does not own position {position_id}")

        position = LiquidityPosition(
            position_id=position_id,
            token=token,
            locked_until=self.ledger.now() + lock_duration,
            treasury_percent=treasury_percent,
            referrer=referrer or self.inviter,
        )
        self.positions[token] = position
        logger.info(f"Locked position {position_id} for {token} until {position.locked_until}")
        return position.model_copy()

    @nonreentrant
    def harvest_fees(self, caller: str, token: str) -> HarvestResult:
        """Collects accrued fees of a locked position and splits them. Anyone may call."""
        position = self.positions.get(normalize_address(token))
        if position is None:
            raise InvalidInputError(f"No locked position for token {token}")
        if position.released:
            raise InvalidStateError(f"Position {position.position_id} has been released")

        fees_token, fees_raised = self._exchange().collect(self.address, position.position_id, self.address)
        result = HarvestResult(
            treasury_amount=fees_raised * position.treasury_percent // BASIS_POINTS,
            treasury_tokens=fees_token * position.treasury_percent // BASIS_POINTS,
        )
        result.referrer_amount = fees_raised - result.treasury_amount
        result.referrer_tokens = fees_token - result.treasury_tokens

        self.ledger.transfer(self.address, self.treasury, result.treasury_amount)
        self.ledger.transfer(self.address, position.referrer, result.referrer_amount)
        launch_token = self.ledger.resolve(position.token)
        launch_token.transfer(self.address, self.treasury, result.treasury_tokens)
        launch_token.transfer(self.address, position.referrer, result.referrer_tokens)

        logger.info(f"Harvested fees for {position.token} (by {caller}): {result}")
        return result

    @nonreentrant
    def withdraw_principal(self, caller: str, token: str) -> int:
        if normalize_address(caller) != self.admin:
            raise UnauthorizedError(f"{caller} is not the locker administrator")
        position = self.positions.get(normalize_address(token))
        if position is None:
            raise InvalidInputError(f"No locked position for token {token}")
        if position.released:
            raise InvalidStateError(f"Position {position.position_id} was already released")
        now = self.ledger.now()
        if now < position.locked_until:
            raise LockActiveError(f"Position {position.position_id} is locked until {position.locked_until} (now {now})")

        position.released = True
        self._exchange().transfer_position(self.address, position.position_id, self.admin)
        logger.info(f"Released position {position.position_id} for {position.token} to {self.admin}")
        return position.position_id
