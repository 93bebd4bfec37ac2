"""
Quote Helper

Read-only projections for front-ends. Quotes are computed with the same pricing
functions the engine executes, from the engine's live state, so a quote and the buy or
sell that follows it agree to the last base unit.
"""
from fractions import Fraction
from typing import Optional

from mcp.server.fastmcp.utilities.logging import get_logger

from mcp_bonding_curve.config import BASIS_POINTS
from mcp_bonding_curve.errors import AlreadyConfiguredError, InvalidInputError, InvalidStateError, UnauthorizedError
from mcp_bonding_curve.guards import transactional
from mcp_bonding_curve.ledger import Contract, Ledger
from mcp_bonding_curve.pricing import plan_buy, plan_sell, spot_price
from mcp_bonding_curve.schemas import BuyQuote, LaunchPhase, Progress, SellQuote
from mcp_bonding_curve.utils import normalize_address

logger = get_logger(__name__)


class BondingCurveHelper(Contract):
    _state_fields = ("bonding_curve", "position_manager")

    def __init__(self, ledger: Ledger, admin: str):
        super().__init__(ledger, admin)
        self.admin = normalize_address(admin)
        self.bonding_curve: Optional[str] = None
        self.position_manager: Optional[str] = None

    @transactional
    def set_addresses(self, caller: str, bonding_curve: str, position_manager: str) -> None:
        if normalize_address(caller) != self.admin:
            raise UnauthorizedError(f"{caller} is not the helper administrator")
        if self.bonding_curve is not None:
            raise AlreadyConfiguredError("Helper addresses are already set")
        for address in (bonding_curve, position_manager):
            if self.ledger.resolve(address) is None:
                raise InvalidInputError(f"No contract deployed at {address}")
        self.bonding_curve = normalize_address(bonding_curve)
        self.position_manager = normalize_address(position_manager)
        logger.info(f"Helper configured: bonding_curve={self.bonding_curve}, position_manager={self.position_manager}")

    def _engine(self):
        if self.bonding_curve is None:
            raise InvalidStateError("Helper addresses are not configured")
        return self.ledger.resolve(self.bonding_curve)

    def quote_buy(self, token: str, amount_in: int, buyer: Optional[str] = None, referrer: Optional[str] = None) -> BuyQuote:
        engine = self._engine()
        state = engine.get_launch(token)
        engine.require_trading(state)
        has_referrer = buyer is not None and engine.referrer_for(token, buyer, referrer) is not None
        return plan_buy(engine.get_params(state.version), state.sold_supply, state.raised_amount, amount_in, has_referrer)

    def quote_sell(self, token: str, token_amount: int, seller: Optional[str] = None) -> SellQuote:
        engine = self._engine()
        state = engine.get_launch(token)
        engine.require_trading(state)
        has_referrer = seller is not None and state.referrer_of.get(normalize_address(seller)) is not None
        return plan_sell(engine.get_params(state.version), state.sold_supply, token_amount, has_referrer)

    def current_price(self, token: str) -> Fraction:
        """Curve spot price while trading on the curve, pool price once migrated."""
        engine = self._engine()
        state = engine.get_launch(token)
        if state.phase == LaunchPhase.migrated:
            return self.ledger.resolve(self.position_manager).pool_price(state.pool_id)
        return spot_price(engine.get_params(state.version), state.sold_supply)

    def progress_to_goal(self, token: str) -> Progress:
        engine = self._engine()
        state = engine.get_launch(token)
        params = engine.get_params(state.version)
        return Progress(
            raised=state.raised_amount,
            goal=params.funding_goal,
            progress_bps=min(state.raised_amount * BASIS_POINTS // params.funding_goal, BASIS_POINTS),
            sold=state.sold_supply,
            funding_supply=params.funding_supply,
            phase=state.phase,
        )
