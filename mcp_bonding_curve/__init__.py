"""
Bonding Curve Launchpad Package Initialization

This package provides a bonding-curve fundraising launchpad built on the Model Context
Protocol (MCP). Tokens are sold along a deterministic price curve until a funding goal is
reached; the raised capital and the remaining supply then migrate atomically into an
exchange liquidity position that is time-locked.

The package includes:
- An in-process execution ledger with all-or-nothing transactions
- Launch tokens, treasury, referral registry and liquidity locker components
- The bonding curve engine and a read-only quote helper
- Launch version and network configuration loading
- Rate limiting and custom error handling
- MCP server and Flask quote API implementations
"""
