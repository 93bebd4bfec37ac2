"""
Launch token (asset template) and the factory that deploys one per launch.

Each token enforces its own max supply; only its minter (the bonding curve engine)
may mint. Balances live on the token contract itself.
"""
from typing import Dict, List

from mcp.server.fastmcp.utilities.logging import get_logger

from mcp_bonding_curve.errors import (
    InsufficientBalanceError,
    InvalidInputError,
    SupplyCapExceededError,
    UnauthorizedError,
)
from mcp_bonding_curve.guards import transactional
from mcp_bonding_curve.ledger import Contract, Ledger
from mcp_bonding_curve.utils import TOKEN_DECIMALS, normalize_address, require_positive

logger = get_logger(__name__)


class LaunchToken(Contract):
    _state_fields = ("total_supply", "balances")

    def __init__(self, ledger: Ledger, deployer: str, name: str, symbol: str, max_supply: int, minter: str):
        if not name or not symbol:
            raise InvalidInputError("Token name and symbol must be non-empty")
        super().__init__(ledger, deployer)
        self.name = name
        self.symbol = symbol
        self.decimals = TOKEN_DECIMALS
        self.max_supply = require_positive("max_supply", max_supply)
        self.minter = normalize_address(minter)
        self.total_supply = 0
        self.balances: Dict[str, int] = {}

    def balance_of(self, holder: str) -> int:
        return self.balances.get(normalize_address(holder), 0)

    @transactional
    def mint(self, caller: str, to: str, amount: int) -> None:
        if normalize_address(caller) != self.minter:
            raise UnauthorizedError(f"{caller} is not the minter of {self.symbol}")
        if amount == 0:
            return
        require_positive("amount", amount)
        if self.total_supply + amount > self.max_supply:
            raise SupplyCapExceededError(
                f"Minting {amount} {self.symbol} exceeds max supply {self.max_supply} "
                f"(current supply {self.total_supply})"
            )
        to = normalize_address(to)
        self.total_supply += amount
        self.balances[to] = self.balances.get(to, 0) + amount

    @transactional
    def transfer(self, caller: str, to: str, amount: int) -> None:
        caller = normalize_address(caller)
        to = normalize_address(to)
        if amount < 0:
            raise InvalidInputError(f"Transfer amount must be non-negative, got {amount}")
        available = self.balances.get(caller, 0)
        if available < amount:
            raise InsufficientBalanceError(
                f"Insufficient {self.symbol} balance for {caller}: required {amount}, available {available}"
            )
        if amount == 0:
            return
        self.balances[caller] = available - amount
        self.balances[to] = self.balances.get(to, 0) + amount


class TokenFactory(Contract):
    _state_fields = ("tokens",)

    def __init__(self, ledger: Ledger, deployer: str):
        super().__init__(ledger, deployer)
        self.tokens: List[str] = []

    @transactional
    def create(self, caller: str, name: str, symbol: str, max_supply: int) -> LaunchToken:
        """Deploys a token whose minter is the calling contract."""
        token = LaunchToken(self.ledger, self.address, name, symbol, max_supply, minter=caller)
        self.tokens.append(token.address)
        logger.info(f"Created token {symbol} at {token.address} (max supply {max_supply}, minter {token.minter})")
        return token
