import os
import logging
from typing import Optional
from dotenv import load_dotenv
from eth_utils import is_address, to_checksum_address

# Import custom errors
from mcp_bonding_curve.errors import ConfigurationError

"""
Configuration Management for the Bonding Curve Launchpad

This module handles configuration loading and validation for the launchpad service.
Settings come from environment variables (a local .env file is honoured) with defaults
matching the Base mainnet deployment.

Configuration Sources (in order of precedence):
1. Environment variables
2. Default values defined in this module

Environment Variables:
    ADMIN_ADDRESS: Administrator of every deployed component
    NETWORK: Network profile name under NETWORK_CONFIG_DIR (e.g. base, base_sepolia, sepolia)
    LAUNCH_CONFIG_DIR: Directory of launch version JSON files
    NETWORK_CONFIG_DIR: Directory of network profile JSON files
    DEFAULT_FEE_PERCENT: Trade fee in basis points when neither the launch config nor the network profile sets it
    DEFAULT_LOCK_DURATION: Liquidity lock in seconds when a launch config omits it
    DEFAULT_LP_FEE_TREASURY_PERCENT: Treasury share of harvested LP fees (basis points)
    POOL_FEE_TIER: Fee tier of the pool opened at migration
    LEDGER_START_TIME: Start time of the in-process ledger clock (0 = wall clock)
    RATE_LIMIT_PER_MINUTE: Rate limit per client
    CORS_ALLOWED_ORIGINS: Comma-separated allowed CORS origins
    QUOTE_API_PORT: Port for the quote API server
"""

# Set up logger
logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()

BASIS_POINTS = 10_000
SECONDS_PER_DAY = 86_400


def _get_env_str(key: str, default: str, required: bool = False) -> str:
    """Get environment variable as string with validation."""
    value = os.getenv(key, default)
    if required and not value:
        raise ConfigurationError(f"Required environment variable {key} is not set")
    return value


def _get_env_int(key: str, default: int, min_val: Optional[int] = None, max_val: Optional[int] = None) -> int:
    """Get environment variable as integer with validation."""
    try:
        value = int(os.getenv(key, str(default)))
    except ValueError:
        raise ConfigurationError(f"Environment variable {key} must be a valid integer")
    if min_val is not None and value < min_val:
        raise ConfigurationError(f"Environment variable {key} must be >= {min_val}")
    if max_val is not None and value > max_val:
        raise ConfigurationError(f"Environment variable {key} must be <= {max_val}")
    return value


def _get_env_address(key: str, default: str) -> str:
    """Get environment variable as a checksummed EVM address."""
    value = os.getenv(key, default)
    if not is_address(value):
        raise ConfigurationError(f"Environment variable {key} must be a valid address, got {value!r}")
    return to_checksum_address(value)


try:
    # --- Roles ---
    ADMIN_ADDRESS = _get_env_address("ADMIN_ADDRESS", "0x7ffdb03888bd6e3bd8b5ec2706f36a9122328590")

    # --- Config Files ---
    NETWORK = _get_env_str("NETWORK", "base", required=True)
    LAUNCH_CONFIG_DIR = _get_env_str("LAUNCH_CONFIG_DIR", "launch_configs")
    NETWORK_CONFIG_DIR = _get_env_str("NETWORK_CONFIG_DIR", "network_configs")

    # --- Launch Defaults ---
    DEFAULT_FEE_PERCENT = _get_env_int("DEFAULT_FEE_PERCENT", 100, min_val=0, max_val=BASIS_POINTS - 1)
    DEFAULT_LOCK_DURATION = _get_env_int("DEFAULT_LOCK_DURATION", 365 * SECONDS_PER_DAY, min_val=0)
    DEFAULT_LP_FEE_TREASURY_PERCENT = _get_env_int(
        "DEFAULT_LP_FEE_TREASURY_PERCENT", 8000, min_val=0, max_val=BASIS_POINTS
    )
    POOL_FEE_TIER = _get_env_int("POOL_FEE_TIER", 10_000, min_val=1, max_val=1_000_000)

    # --- Ledger ---
    LEDGER_START_TIME = _get_env_int("LEDGER_START_TIME", 0, min_val=0)

    # --- Rate Limiting ---
    RATE_LIMIT_PER_MINUTE = _get_env_int("RATE_LIMIT_PER_MINUTE", 10, min_val=1, max_val=1000)

    # --- Quote API Configuration ---
    QUOTE_API_PORT = _get_env_int("QUOTE_API_PORT", 5000, min_val=1024, max_val=65535)
    CORS_ALLOWED_ORIGINS = _get_env_str("CORS_ALLOWED_ORIGINS", "*").split(",")

    logger.info("Configuration loaded successfully")

except ConfigurationError as e:
    logger.error(f"Configuration error: {e}")
    raise
