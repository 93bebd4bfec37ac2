"""
Exchange Integration

Migration hands the raised capital and the remaining token supply to a concentrated
liquidity exchange. The engine and the locker only talk to it through the
PositionManager interface: create a pool, mint a position, move the position NFT and
collect its fees.

InMemoryExchange is the ledger-resident implementation used by the sandbox and tests.
Funds are pushed to the exchange address before a position is minted; the exchange
checks that the unallocated part of its holdings covers the new position.
"""
from abc import ABC, abstractmethod
from fractions import Fraction
from typing import Dict, Optional, Tuple

from mcp.server.fastmcp.utilities.logging import get_logger

from mcp_bonding_curve.errors import ExchangeError, InsufficientBalanceError, UnauthorizedError
from mcp_bonding_curve.guards import transactional
from mcp_bonding_curve.ledger import Contract, Ledger
from mcp_bonding_curve.schemas import Pool, Position
from mcp_bonding_curve.utils import normalize_address

logger = get_logger(__name__)


class PositionManager(ABC):
    """Operations migration and fee harvesting need from an exchange."""

    address: str

    @abstractmethod
    def create_pool(self, caller: str, token: str, quote_asset: str, fee_tier: int, price: Fraction) -> str:
        ...

    @abstractmethod
    def mint_position(self, caller: str, pool_id: str, token_amount: int, raised_amount: int, recipient: str) -> int:
        ...

    @abstractmethod
    def transfer_position(self, caller: str, position_id: int, to: str) -> None:
        ...

    @abstractmethod
    def collect(self, caller: str, position_id: int, recipient: str) -> Tuple[int, int]:
        """Pays out accrued fees as (token_amount, raised_amount)."""

    @abstractmethod
    def owner_of(self, position_id: int) -> str:
        ...

    @abstractmethod
    def pool_price(self, pool_id: str) -> Fraction:
        ...


class InMemoryExchange(Contract, PositionManager):
    _state_fields = ("pools", "positions", "next_position_id", "allocated_tokens", "allocated_raised")

    def __init__(self, ledger: Ledger, deployer: str, address: Optional[str] = None):
        super().__init__(ledger, deployer, address)
        self.pools: Dict[str, Pool] = {}
        self.positions: Dict[int, Position] = {}
        self.next_position_id = 1
        # token address -> amount held on behalf of positions (principal plus unpaid fees)
        self.allocated_tokens: Dict[str, int] = {}
        self.allocated_raised = 0
        # test switch: makes the next pool creation fail
        self.fail_pool_creation = False

    def _token(self, address: str):
        token = self.ledger.resolve(address)
        if token is None:
            raise ExchangeError(f"No token contract at {address}")
        return token

    def _position(self, position_id: int) -> Position:
        position = self.positions.get(position_id)
        if position is None:
            raise ExchangeError(f"Unknown position {position_id}")
        return position

    def get_pool(self, pool_id: str) -> Pool:
        pool = self.pools.get(pool_id)
        if pool is None:
            raise ExchangeError(f"Unknown pool {pool_id}")
        return pool

    def get_position(self, position_id: int) -> Position:
        return self._position(position_id).model_copy()

    def owner_of(self, position_id: int) -> str:
        return self._position(position_id).owner

    def pool_price(self, pool_id: str) -> Fraction:
        return self.get_pool(pool_id).price

    @transactional
    def create_pool(self, caller: str, token: str, quote_asset: str, fee_tier: int, price: Fraction) -> str:
        if self.fail_pool_creation:
            raise ExchangeError("Pool creation rejected by the exchange")
        token = normalize_address(token)
        quote_asset = normalize_address(quote_asset)
        if price <= 0:
            raise ExchangeError(f"Pool price must be positive, got {price}")
        pool_id = f"{token}/{quote_asset}/{fee_tier}"
        if pool_id in self.pools:
            raise ExchangeError(f"Pool {pool_id} already exists")
        self.pools[pool_id] = Pool(pool_id=pool_id, token=token, quote_asset=quote_asset, fee_tier=fee_tier, price=price)
        logger.info(f"Created pool {pool_id} at price {float(price):.3e} (requested by {caller})")
        return pool_id

    @transactional
    def mint_position(self, caller: str, pool_id: str, token_amount: int, raised_amount: int, recipient: str) -> int:
        pool = self.get_pool(pool_id)
        token = self._token(pool.token)
        free_tokens = token.balance_of(self.address) - self.allocated_tokens.get(pool.token, 0)
        free_raised = self.ledger.balance_of(self.address) - self.allocated_raised
        if token_amount < 0 or raised_amount < 0:
            raise ExchangeError("Position amounts must be non-negative")
        if token_amount > free_tokens or raised_amount > free_raised:
            raise ExchangeError(
                f"Position not funded: needs {token_amount} tokens / {raised_amount} raised, "
                f"exchange holds {free_tokens} / {free_raised} unallocated"
            )
        position_id = self.next_position_id
        self.next_position_id += 1
        self.positions[position_id] = Position(
            position_id=position_id,
            pool_id=pool_id,
            owner=normalize_address(recipient),
            token_amount=token_amount,
            raised_amount=raised_amount,
        )
        self.allocated_tokens[pool.token] = self.allocated_tokens.get(pool.token, 0) + token_amount
        self.allocated_raised += raised_amount
        logger.info(f"Minted position {position_id} in {pool_id}: {token_amount} tokens, {raised_amount} raised")
        return position_id

    @transactional
    def transfer_position(self, caller: str, position_id: int, to: str) -> None:
        position = self._position(position_id)
        if normalize_address(caller) != position.owner:
            raise UnauthorizedError(f"{caller} does not own position {position_id}")
        position.owner = normalize_address(to)
        logger.debug(f"Position {position_id} transferred to {position.owner}")

    @transactional
    def record_swap_fees(self, trader: str, position_id: int, fees_token: int, fees_raised: int) -> None:
        """Accrues trading fees to a position, paid in by `trader` (stands in for pool swaps)."""
        position = self._position(position_id)
        pool = self.get_pool(position.pool_id)
        if fees_token:
            self._token(pool.token).transfer(trader, self.address, fees_token)
        if fees_raised:
            self.ledger.transfer(trader, self.address, fees_raised)
        position.fees_token += fees_token
        position.fees_raised += fees_raised
        self.allocated_tokens[pool.token] = self.allocated_tokens.get(pool.token, 0) + fees_token
        self.allocated_raised += fees_raised

    @transactional
    def collect(self, caller: str, position_id: int, recipient: str) -> Tuple[int, int]:
        position = self._position(position_id)
        if normalize_address(caller) != position.owner:
            raise UnauthorizedError(f"{caller} does not own position {position_id}")
        pool = self.get_pool(position.pool_id)
        fees_token, fees_raised = position.fees_token, position.fees_raised
        position.fees_token = 0
        position.fees_raised = 0
        self.allocated_tokens[pool.token] -= fees_token
        self.allocated_raised -= fees_raised
        if self.allocated_raised < 0 or self.allocated_tokens[pool.token] < 0:
            raise InsufficientBalanceError("Exchange fee accounting underflow")
        if fees_token:
            self._token(pool.token).transfer(self.address, recipient, fees_token)
        if fees_raised:
            self.ledger.transfer(self.address, recipient, fees_raised)
        logger.debug(f"Collected fees of position {position_id}: {fees_token} tokens, {fees_raised} raised")
        return fees_token, fees_raised
