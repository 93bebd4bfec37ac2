"""
In-Process Execution Ledger

The protocol components are written as contracts: objects with an address, a declared
set of state fields and entry points that take the caller's address. The ledger is the
execution substrate they share. It provides what a host chain would:

- deterministic contract addresses (keccak of deployer and nonce, like CREATE)
- native raised-asset balances and value transfers with receive hooks
- a monotonic clock used for lock-duration checks
- all-or-nothing transactions: the outermost transaction snapshots every registered
  contract's state fields plus the balance table and restores them on any exception

Calls are synchronous and serialized; there is no intra-call concurrency.
"""
import copy
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional, Tuple

from eth_utils import keccak, to_canonical_address, to_checksum_address
from mcp.server.fastmcp.utilities.logging import get_logger

from mcp_bonding_curve.errors import InsufficientBalanceError, InvalidInputError
from mcp_bonding_curve.utils import normalize_address, require_positive

logger = get_logger(__name__)


class Contract:
    """Base class for ledger-resident components.

    Subclasses list their mutable attributes in ``_state_fields``; only those are
    captured when a transaction snapshots the ledger.
    """

    _state_fields: Tuple[str, ...] = ()

    def __init__(self, ledger: "Ledger", deployer: str, address: Optional[str] = None):
        self.ledger = ledger
        self.deployer = normalize_address(deployer)
        self.address = ledger.register(self, address)

    def snapshot(self) -> Dict[str, Any]:
        return copy.deepcopy({name: getattr(self, name) for name in self._state_fields})

    def restore(self, state: Dict[str, Any]) -> None:
        for name, value in state.items():
            setattr(self, name, value)

    def on_value_received(self, sender: str, amount: int) -> None:
        """Called after native value lands on this contract. Accepts by default."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.address})"


class Ledger:
    """Balances, clock, contract registry and transaction atomicity."""

    def __init__(self, start_time: Optional[int] = None):
        self._now = int(start_time) if start_time else int(time.time())
        self.balances: Dict[str, int] = {}
        self.contracts: Dict[str, Contract] = {}
        self._nonces: Dict[str, int] = {}
        self._depth = 0

    # --- Clock ---

    def now(self) -> int:
        return self._now

    def advance(self, seconds: int) -> int:
        """Moves the clock forward. The clock never moves backwards."""
        if seconds < 0:
            raise InvalidInputError("Ledger clock cannot move backwards")
        self._now += seconds
        return self._now

    # --- Contracts ---

    def derive_address(self, deployer: str) -> str:
        deployer = normalize_address(deployer)
        nonce = self._nonces.get(deployer, 0)
        self._nonces[deployer] = nonce + 1
        digest = keccak(to_canonical_address(deployer) + nonce.to_bytes(32, "big"))
        return to_checksum_address("0x" + digest[-20:].hex())

    def register(self, contract: Contract, address: Optional[str] = None) -> str:
        address = normalize_address(address) if address else self.derive_address(contract.deployer)
        if address in self.contracts:
            raise InvalidInputError(f"Address {address} already holds {self.contracts[address]!r}")
        self.contracts[address] = contract
        logger.debug(f"Registered {type(contract).__name__} at {address}")
        return address

    def resolve(self, address: str) -> Optional[Contract]:
        return self.contracts.get(normalize_address(address))

    # --- Native Balances ---

    def balance_of(self, address: str) -> int:
        return self.balances.get(normalize_address(address), 0)

    def fund(self, address: str, amount: int) -> int:
        """Credits native value out of thin air (sandbox faucet and test setup)."""
        address = normalize_address(address)
        require_positive("amount", amount)
        self.balances[address] = self.balances.get(address, 0) + amount
        return self.balances[address]

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        """Moves native value and notifies the recipient contract, if any."""
        sender = normalize_address(sender)
        recipient = normalize_address(recipient)
        if amount < 0:
            raise InvalidInputError(f"Transfer amount must be non-negative, got {amount}")
        if amount == 0:
            return
        available = self.balances.get(sender, 0)
        if available < amount:
            raise InsufficientBalanceError(
                f"Insufficient balance for {sender}: required {amount}, available {available}"
            )
        self.balances[sender] = available - amount
        self.balances[recipient] = self.balances.get(recipient, 0) + amount
        target = self.contracts.get(recipient)
        if target is not None:
            target.on_value_received(sender, amount)

    # --- Transactions ---

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def _snapshot(self) -> Dict[str, Any]:
        return {
            "balances": dict(self.balances),
            "nonces": dict(self._nonces),
            "contracts": dict(self.contracts),
            "states": {address: contract.snapshot() for address, contract in self.contracts.items()},
        }

    def _restore(self, snapshot: Dict[str, Any]) -> None:
        self.balances = snapshot["balances"]
        self._nonces = snapshot["nonces"]
        self.contracts = snapshot["contracts"]
        for address, state in snapshot["states"].items():
            self.contracts[address].restore(state)

    @contextmanager
    def transaction(self) -> Iterator["Ledger"]:
        """All-or-nothing unit of work. Nested transactions join the outermost one."""
        if self._depth:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        snapshot = self._snapshot()
        self._depth = 1
        try:
            yield self
        except BaseException:
            self._restore(snapshot)
            logger.debug("Transaction rolled back")
            raise
        finally:
            self._depth = 0
