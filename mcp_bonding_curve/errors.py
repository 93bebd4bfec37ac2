"""
Custom Exception Classes for the Bonding Curve Launchpad

This module defines the exception classes raised by the launch / sale / migration protocol.
Every protocol error derives from LaunchpadError and carries a stable ``code`` so callers
(the MCP server, the quote API, deployment tooling) can branch on the cause of a failure
instead of parsing messages.

Exception Categories:
- Authorization Errors: caller lacks the administrative role or whitelist membership
- State Errors: operation attempted outside its valid phase (configuring twice, buying after migration)
- Trade Errors: slippage bounds and balances
- Invariant Errors: internal fatal conditions that valid inputs must never reach
- External Errors: failures reported by the exchange collaborator
- Service Errors: configuration and rate limiting on the outer surfaces

Usage:
    Protocol errors abort the whole operation; the ledger rolls back every state change made
    by the failing call. Nothing is retried internally - retrying with fresh parameters
    (e.g. a new min_tokens_out) is the caller's decision.
"""


class LaunchpadError(Exception):
    """Base class for all protocol errors."""

    code = "LaunchpadError"


class UnauthorizedError(LaunchpadError):
    """Raised when the caller lacks the required role or whitelist membership."""

    code = "Unauthorized"


class InvalidStateError(LaunchpadError):
    """Raised when an operation is attempted outside its valid phase."""

    code = "InvalidState"


class AlreadyConfiguredError(InvalidStateError):
    """Raised on a second attempt to set one-time configuration."""

    code = "AlreadyConfigured"


class InactiveLaunchError(InvalidStateError):
    """Raised when trading a launch (or launch version) that is not active."""

    code = "InactiveLaunch"


class LaunchMigratedError(InvalidStateError):
    """Raised when trading on the curve after liquidity has migrated."""

    code = "LaunchMigrated"


class LockActiveError(InvalidStateError):
    """Raised when withdrawing a liquidity position before its lock expires."""

    code = "LockActive"


class ReentrancyError(InvalidStateError):
    """Raised when a guarded entry point is re-entered during its own execution."""

    code = "Reentrancy"


class SlippageExceededError(LaunchpadError):
    """Raised when a trade would fall short of the caller's minimum output."""

    code = "SlippageExceeded"


class InsufficientBalanceError(LaunchpadError):
    """Raised when a transfer or withdrawal exceeds the available balance."""

    code = "InsufficientBalance"


class NothingToClaimError(InsufficientBalanceError):
    """Raised when claiming referral fees with a zero balance."""

    code = "NothingToClaim"


class InvariantViolationError(LaunchpadError):
    """Raised on an internal fatal condition. Reaching it is a defect, not a user error."""

    code = "InvariantViolation"


class SupplyCapExceededError(InvariantViolationError):
    """Raised when minting would push a token past its max supply."""

    code = "SupplyCapExceeded"


class ExchangeError(LaunchpadError):
    """Raised when the exchange collaborator rejects a pool or position operation."""

    code = "ExchangeError"


class InvalidInputError(LaunchpadError):
    """Raised for malformed amounts, addresses or unknown launches."""

    code = "InvalidInput"


class UnknownLaunchError(InvalidInputError):
    """Raised when no launch exists for the given token."""


class RateLimitExceededError(Exception):
    """Raised when the rate limit is exceeded for API requests."""


class ConfigurationError(Exception):
    """Raised when there are configuration-related errors."""
