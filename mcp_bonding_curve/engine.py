"""
Bonding Curve Engine

The engine runs every launch of the platform. For each launched token it sells the
funding supply along the version's price curve, routes trade fees to the treasury and
the referral registry, and when the funding goal (or the funding supply) is exhausted
migrates the raised capital plus the remaining supply into an exchange position that
is handed to the liquidity locker.

Launch lifecycle:
    Configured -> Active -> GoalReached -> Migrated

Configured only exists inside create_launch, and GoalReached only inside the buy that
completes the launch: migration runs in the same transaction, so a failing exchange
call rolls the whole buy back and leaves the launch Active.

All mutating entry points are non-reentrant and atomic. They take the caller's address
as first argument; value moves through the shared ledger.
"""
from typing import Dict, Optional

from mcp.server.fastmcp.utilities.logging import get_logger

from mcp_bonding_curve import config
from mcp_bonding_curve.errors import (
    AlreadyConfiguredError,
    InactiveLaunchError,
    InsufficientBalanceError,
    InvalidInputError,
    InvalidStateError,
    InvariantViolationError,
    LaunchMigratedError,
    SlippageExceededError,
    UnauthorizedError,
    UnknownLaunchError,
)
from mcp_bonding_curve.guards import nonreentrant, transactional
from mcp_bonding_curve.ledger import Contract, Ledger
from mcp_bonding_curve.pricing import plan_buy, plan_sell, spot_price
from mcp_bonding_curve.schemas import (
    BuyQuote,
    CurveState,
    EngineAddresses,
    LaunchParameters,
    LaunchPhase,
    SellQuote,
)
from mcp_bonding_curve.utils import format_amount, normalize_address

logger = get_logger(__name__)


class BondingCurveEngine(Contract):
    _state_fields = ("addresses", "params", "launches")

    def __init__(self, ledger: Ledger, admin: str):
        super().__init__(ledger, admin)
        self.admin = normalize_address(admin)
        self.addresses: Optional[EngineAddresses] = None
        self.params: Dict[int, LaunchParameters] = {}
        self.launches: Dict[str, CurveState] = {}

    # --- Peers ---

    def _only_admin(self, caller: str) -> None:
        if normalize_address(caller) != self.admin:
            raise UnauthorizedError(f"{caller} is not the bonding curve administrator")

    def _require_addresses(self) -> EngineAddresses:
        if self.addresses is None:
            raise InvalidStateError("Bonding curve addresses are not configured")
        return self.addresses

    def _peer(self, address: str):
        return self.ledger.resolve(address)

    def _registry(self):
        return self._peer(self._require_addresses().referral_registry)

    # --- Administration ---

    @transactional
    def set_addresses(self, caller: str, addresses: EngineAddresses) -> None:
        self._only_admin(caller)
        if self.addresses is not None:
            raise AlreadyConfiguredError("Bonding curve addresses are already set")
        for field in ("token_factory", "treasury", "position_manager", "locker", "referral_registry"):
            address = getattr(addresses, field)
            if self.ledger.resolve(address) is None:
                raise InvalidInputError(f"No contract deployed at {field} address {address}")
        self.addresses = addresses
        logger.info(f"Bonding curve peers configured: {addresses.model_dump()}")

    @transactional
    def set_param(self, caller: str, version: int, params: LaunchParameters) -> None:
        self._only_admin(caller)
        if version < 1:
            raise InvalidInputError(f"Launch version must be >= 1, got {version}")
        if version in self.params:
            raise AlreadyConfiguredError(f"Parameters for version {version} are already set")
        self.params[version] = params
        logger.info(
            f"Set parameters for version {version}: {params.curve_type.value} curve, "
            f"goal {format_amount(params.funding_goal, 'ETH')}, funding supply {params.funding_supply}"
        )

    @transactional
    def set_active(self, caller: str, version: int) -> None:
        self._only_admin(caller)
        params = self.params.get(version)
        if params is None:
            raise InvalidStateError(f"Unknown launch version {version}")
        if params.active:
            raise AlreadyConfiguredError(f"Version {version} is already active")
        self.params[version] = params.model_copy(update={"active": True})
        logger.info(f"Activated launch version {version}")

    @transactional
    def configure(self, caller: str, addresses: EngineAddresses, version: int, params: LaunchParameters) -> None:
        """Sets the peers and one launch version, and activates it, in a single step."""
        self.set_addresses(caller, addresses)
        self.set_param(caller, version, params)
        if not self.params[version].active:
            self.set_active(caller, version)

    # --- Reads ---

    def get_params(self, version: int) -> LaunchParameters:
        params = self.params.get(version)
        if params is None:
            raise InvalidInputError(f"Unknown launch version {version}")
        return params

    def _launch(self, token: str) -> CurveState:
        state = self.launches.get(normalize_address(token))
        if state is None:
            raise UnknownLaunchError(f"No launch for token {token}")
        return state

    def get_launch(self, token: str) -> CurveState:
        return self._launch(token).model_copy(deep=True)

    def require_trading(self, state: CurveState) -> None:
        if state.phase == LaunchPhase.migrated:
            raise LaunchMigratedError(f"Launch {state.token} has migrated; trade on the exchange instead")
        if state.phase != LaunchPhase.active:
            raise InactiveLaunchError(f"Launch {state.token} is {state.phase.value}")

    def referrer_for(self, token: str, buyer: str, referrer: Optional[str] = None) -> Optional[str]:
        """
        Referrer a buy by `buyer` would be attributed to.

        The launch binding wins once it exists; before the first purchase the registry's
        earlier attribution wins over the referrer offered with the buy. Self-referrals
        are never bound.
        """
        state = self._launch(token)
        buyer = normalize_address(buyer)
        if buyer in state.referrer_of:
            return state.referrer_of[buyer]
        existing = self._registry().referrer_of(buyer)
        if existing is not None:
            return existing
        if referrer:
            referrer = normalize_address(referrer)
            if referrer != buyer:
                return referrer
        return None

    def quote_buy(self, token: str, amount_in: int, buyer: Optional[str] = None, referrer: Optional[str] = None) -> BuyQuote:
        state = self._launch(token)
        self.require_trading(state)
        has_referrer = buyer is not None and self.referrer_for(token, buyer, referrer) is not None
        return plan_buy(self.params[state.version], state.sold_supply, state.raised_amount, amount_in, has_referrer)

    def quote_sell(self, token: str, token_amount: int, seller: Optional[str] = None) -> SellQuote:
        state = self._launch(token)
        self.require_trading(state)
        has_referrer = seller is not None and state.referrer_of.get(normalize_address(seller)) is not None
        return plan_sell(self.params[state.version], state.sold_supply, token_amount, has_referrer)

    # --- Launch ---

    @nonreentrant
    def create_launch(self, creator: str, version: int, name: str, symbol: str, value: int) -> str:
        """
        Creates a token and opens its bonding curve sale.

        Args:
            creator: Address paying the creation fee; receives the initial supply at migration.
            version: Active launch version whose parameters the sale uses.
            name: Token name.
            symbol: Token symbol.
            value: Raised-asset amount sent; the excess over creation_fee is refunded.

        Returns:
            The new token's address.
        """
        creator = normalize_address(creator)
        addresses = self._require_addresses()
        params = self.params.get(version)
        if params is None:
            raise InvalidStateError(f"Unknown launch version {version}")
        if not params.active:
            raise InvalidStateError(f"Launch version {version} is not active")
        if value < params.creation_fee:
            raise InsufficientBalanceError(f"Creation fee is {params.creation_fee}, got {value}")

        self.ledger.transfer(creator, self.address, value)
        self.ledger.transfer(self.address, addresses.treasury, params.creation_fee)
        self.ledger.transfer(self.address, creator, value - params.creation_fee)

        token = self._peer(addresses.token_factory).create(self.address, name, symbol, params.max_supply)
        # the creator allocation stays in the engine until migration so it cannot be sold into the curve
        token.mint(self.address, self.address, params.initial_supply + params.funding_supply)

        state = CurveState(token=token.address, version=version, creator=creator, created_at=self.ledger.now())
        self.launches[token.address] = state
        self._advance(state, LaunchPhase.active)
        logger.info(f"Launched {symbol} at {token.address} (version {version}, creator {creator})")
        return token.address

    # --- Trading ---

    @nonreentrant
    def buy(self, caller: str, token: str, amount_in: int, min_tokens_out: int, referrer: Optional[str] = None) -> BuyQuote:
        caller = normalize_address(caller)
        state = self._launch(token)
        self.require_trading(state)
        params = self.params[state.version]
        addresses = self._require_addresses()

        bound = self.referrer_for(state.token, caller, referrer)
        quote = plan_buy(params, state.sold_supply, state.raised_amount, amount_in, bound is not None)
        if quote.tokens_out < min_tokens_out:
            raise SlippageExceededError(f"Buy yields {quote.tokens_out} tokens, minimum was {min_tokens_out}")

        self.ledger.transfer(caller, self.address, amount_in)
        if caller not in state.referrer_of:
            registry = self._registry()
            if bound is not None and registry.referrer_of(caller) is None:
                registry.record_referral(self.address, caller, bound)
            state.referrer_of[caller] = bound

        state.sold_supply += quote.tokens_out
        state.raised_amount += quote.net_amount
        self._check_invariants(state, params)

        self._pay_fees(bound, quote.referral_fee, quote.treasury_fee)
        self.ledger.transfer(self.address, caller, quote.refund)
        self._peer(state.token).transfer(self.address, caller, quote.tokens_out)
        logger.debug(
            f"Buy on {state.token} by {caller}: {quote.tokens_out} tokens for {quote.amount_used} "
            f"(refund {quote.refund}), sold={state.sold_supply} raised={state.raised_amount}"
        )

        if quote.completes_launch:
            self._advance(state, LaunchPhase.goal_reached)
            logger.info(f"Funding goal reached for {state.token}: raised {state.raised_amount}")
            self._migrate(state, params, addresses)
        return quote

    @nonreentrant
    def sell(self, caller: str, token: str, token_amount: int, min_amount_out: int) -> SellQuote:
        caller = normalize_address(caller)
        state = self._launch(token)
        self.require_trading(state)
        params = self.params[state.version]

        bound = state.referrer_of.get(caller)
        quote = plan_sell(params, state.sold_supply, token_amount, bound is not None)
        if quote.amount_out < min_amount_out:
            raise SlippageExceededError(f"Sell yields {quote.amount_out}, minimum was {min_amount_out}")
        if quote.proceeds > state.raised_amount:
            raise InvariantViolationError(f"Sell proceeds {quote.proceeds} exceed raised {state.raised_amount}")

        self._peer(state.token).transfer(caller, self.address, token_amount)
        state.sold_supply -= token_amount
        state.raised_amount -= quote.proceeds

        self._pay_fees(bound, quote.referral_fee, quote.treasury_fee)
        self.ledger.transfer(self.address, caller, quote.amount_out)
        logger.debug(
            f"Sell on {state.token} by {caller}: {token_amount} tokens for {quote.amount_out}, "
            f"sold={state.sold_supply} raised={state.raised_amount}"
        )
        return quote

    def _pay_fees(self, referrer: Optional[str], referral_fee: int, treasury_fee: int) -> None:
        addresses = self._require_addresses()
        if referral_fee:
            self.ledger.transfer(self.address, addresses.referral_registry, referral_fee)
            self._registry().credit_fee(self.address, referrer, referral_fee)
        self.ledger.transfer(self.address, addresses.treasury, treasury_fee)

    def _advance(self, state: CurveState, phase: LaunchPhase) -> None:
        if phase.rank <= state.phase.rank:
            raise InvariantViolationError(f"Launch {state.token} cannot move from {state.phase.value} to {phase.value}")
        state.phase = phase

    def _check_invariants(self, state: CurveState, params: LaunchParameters) -> None:
        if state.sold_supply > params.funding_supply:
            raise InvariantViolationError(f"Sold supply {state.sold_supply} exceeds funding supply {params.funding_supply}")
        if state.raised_amount > params.funding_goal:
            raise InvariantViolationError(f"Raised {state.raised_amount} exceeds funding goal {params.funding_goal}")

    # --- Migration ---

    def _migrate(self, state: CurveState, params: LaunchParameters, addresses: EngineAddresses) -> None:
        """Moves the raised capital and the remaining supply into a locked exchange position."""
        if state.phase != LaunchPhase.goal_reached:
            raise InvariantViolationError(f"Cannot migrate {state.token} from phase {state.phase.value}")
        token = self._peer(state.token)
        exchange = self._peer(addresses.position_manager)
        locker = self._peer(addresses.locker)

        raised = state.raised_amount
        liquidity_fee = min(params.liquidity_fee, raised)
        creator_reward = min(params.creator_reward, raised - liquidity_fee)
        self.ledger.transfer(self.address, addresses.treasury, liquidity_fee)
        self.ledger.transfer(self.address, state.creator, creator_reward)
        pool_raised = raised - liquidity_fee - creator_reward

        token.transfer(self.address, state.creator, params.initial_supply)
        token.mint(self.address, self.address, params.liquidity_supply)
        pool_tokens = token.balance_of(self.address)

        price = spot_price(params, state.sold_supply)
        pool_id = exchange.create_pool(self.address, state.token, addresses.quote_asset, config.POOL_FEE_TIER, price)
        token.transfer(self.address, exchange.address, pool_tokens)
        self.ledger.transfer(self.address, exchange.address, pool_raised)
        position_id = exchange.mint_position(self.address, pool_id, pool_tokens, pool_raised, self.address)
        exchange.transfer_position(self.address, position_id, locker.address)
        locker.receive_position(
            self.address,
            state.token,
            position_id,
            params.lock_duration,
            params.lp_fee_treasury_percent,
        )

        state.pool_id = pool_id
        state.position_id = position_id
        state.migrated_at = self.ledger.now()
        self._advance(state, LaunchPhase.migrated)
        logger.info(
            f"Migrated {state.token}: pool {pool_id}, position {position_id}, "
            f"{pool_tokens} tokens + {pool_raised} raised locked for {params.lock_duration}s"
        )
