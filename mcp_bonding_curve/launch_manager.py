import json
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from mcp_bonding_curve.config import ADMIN_ADDRESS, LAUNCH_CONFIG_DIR, LEDGER_START_TIME, NETWORK, NETWORK_CONFIG_DIR
from mcp_bonding_curve.engine import BondingCurveEngine
from mcp_bonding_curve.errors import ConfigurationError
from mcp_bonding_curve.exchange import InMemoryExchange
from mcp_bonding_curve.helper import BondingCurveHelper
from mcp_bonding_curve.launch_token import TokenFactory
from mcp_bonding_curve.ledger import Ledger
from mcp_bonding_curve.locker import LiquidityLocker
from mcp_bonding_curve.referral import ReferralRegistry
from mcp_bonding_curve.schemas import EngineAddresses, LaunchConfigModel, NetworkProfile
from mcp_bonding_curve.treasury import Treasury
from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

# Determine the absolute path to the directory containing this file
MODULE_DIR = Path(__file__).parent.resolve()

# Loaded launch versions, keyed by version number
launch_configs: Dict[int, LaunchConfigModel] = {}

# Simple file-based caching to avoid repeated I/O operations
_launch_cache_timestamp: float = 0
_LAUNCH_CACHE_DURATION = 300  # Cache for 5 minutes


def load_launch_configs(config_dir_name: str = LAUNCH_CONFIG_DIR) -> Dict[int, LaunchConfigModel]:
    """
    Loads launch versions from JSON files named v<version>.json in the specified directory
    relative to this module's location. Uses caching to avoid repeated I/O operations.

    Args:
        config_dir_name: The name of the directory containing launch configuration files.

    Returns:
        A dictionary mapping version to the validated LaunchConfigModel instance.
    """
    global _launch_cache_timestamp

    current_time = time.time()
    if current_time - _launch_cache_timestamp < _LAUNCH_CACHE_DURATION and launch_configs:
        logger.debug("Using cached launch configs")
        return launch_configs.copy()

    loaded: Dict[int, LaunchConfigModel] = {}
    config_path = MODULE_DIR / config_dir_name

    if not config_path.is_dir():
        logger.warning(f"Launch configuration directory not found: {config_path}. No versions loaded.")
        return loaded

    logger.info(f"Loading launch configurations from: {config_path.resolve()}")

    # Skip the reload if no file changed since the last one
    if _launch_cache_timestamp > 0 and launch_configs:
        if not any(file_path.stat().st_mtime > _launch_cache_timestamp for file_path in config_path.glob("*.json")):
            logger.debug("No config files modified, using cached data")
            return launch_configs.copy()

    for file_path in sorted(config_path.glob("*.json")):
        try:
            with open(file_path, "r") as f:
                launch_config = LaunchConfigModel.model_validate(json.load(f))

            if file_path.stem != f"v{launch_config.version}":
                logger.warning(f"Version mismatch in {file_path}: file declares version {launch_config.version}. Skipping.")
                continue
            if launch_config.version in loaded:
                logger.warning(f"Duplicate launch version {launch_config.version} in {file_path}. Skipping.")
                continue

            loaded[launch_config.version] = launch_config
            logger.info(f"Loaded launch version {launch_config.version} from {file_path.name}")

        except json.JSONDecodeError:
            logger.error(f"Error decoding JSON from file: {file_path}")
        except ValidationError as e:
            logger.error(f"Invalid launch configuration in file {file_path}: {e}")

    logger.info(f"Finished loading launch versions. Total loaded: {len(loaded)}")
    _launch_cache_timestamp = current_time
    launch_configs.clear()
    launch_configs.update(loaded)
    return loaded


def get_launch_config(version: int) -> Optional[LaunchConfigModel]:
    """Retrieves a launch version by number."""
    return launch_configs.get(version)


def clear_launch_cache():
    """Clears the launch config cache to force reload on next access."""
    global _launch_cache_timestamp
    _launch_cache_timestamp = 0
    logger.debug("Launch config cache cleared")


def load_network_profile(name: str = NETWORK, config_dir_name: str = NETWORK_CONFIG_DIR) -> NetworkProfile:
    """Loads the deployment addresses of a network (WETH, exchange, treasury wallet, inviter)."""
    file_path = MODULE_DIR / config_dir_name / f"{name}.json"
    if not file_path.is_file():
        raise ConfigurationError(f"Network profile not found: {file_path}")
    try:
        with open(file_path, "r") as f:
            profile = NetworkProfile.model_validate(json.load(f))
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Error decoding network profile {file_path}: {e}")
    except ValidationError as e:
        raise ConfigurationError(f"Invalid network profile {file_path}: {e}")
    if profile.name != name:
        raise ConfigurationError(f"Network profile {file_path} is named {profile.name!r}, expected {name!r}")
    return profile


# --- Deployment ---

class Launchpad(BaseModel):
    """A deployed and wired set of launchpad components sharing one ledger."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    ledger: Ledger
    admin: str
    network: NetworkProfile
    token_factory: TokenFactory
    treasury: Treasury
    referral_registry: ReferralRegistry
    exchange: InMemoryExchange
    locker: LiquidityLocker
    engine: BondingCurveEngine
    helper: BondingCurveHelper


def bootstrap(
    admin: str = ADMIN_ADDRESS,
    network: str = NETWORK,
    ledger: Optional[Ledger] = None,
    versions: Optional[Dict[int, LaunchConfigModel]] = None,
) -> Launchpad:
    """
    Deploys every component and wires them the way the deployment scripts do:
    peer addresses on the engine, locker and helper, the engine whitelisted in the
    referral registry, then every launch version set (and activated when flagged).

    Args:
        admin: Administrator of every component.
        network: Network profile providing WETH, the exchange address, the fee wallets and the default trade fee.
        ledger: Ledger to deploy on; a fresh one is created when omitted.
        versions: Launch versions to register; defaults to the loaded config files.
    """
    profile = load_network_profile(network)
    ledger = ledger or Ledger(start_time=LEDGER_START_TIME or None)
    if versions is None:
        versions = load_launch_configs()

    with ledger.transaction():
        token_factory = TokenFactory(ledger, admin)
        treasury = Treasury(ledger, admin)
        referral_registry = ReferralRegistry(ledger, admin)
        exchange = InMemoryExchange(ledger, admin, address=profile.position_manager)
        locker = LiquidityLocker(ledger, admin)
        engine = BondingCurveEngine(ledger, admin)
        helper = BondingCurveHelper(ledger, admin)

        engine.set_addresses(
            admin,
            EngineAddresses(
                token_factory=token_factory.address,
                treasury=treasury.address,
                quote_asset=profile.weth,
                position_manager=exchange.address,
                locker=locker.address,
                referral_registry=referral_registry.address,
            ),
        )
        locker.set_addresses(admin, profile.treasury_wallet, profile.inviter, exchange.address, engine.address)
        helper.set_addresses(admin, engine.address, exchange.address)
        referral_registry.add_to_whitelist(admin, engine.address)

        for version, launch_config in sorted(versions.items()):
            params = launch_config.parameters
            update = {"active": False}
            # versions that leave the trade fee unset take the network's
            if "fee_percent" not in params.model_fields_set:
                update["fee_percent"] = profile.fee_percent
            engine.set_param(admin, version, params.model_copy(update=update))
            if params.active:
                engine.set_active(admin, version)

    logger.info(f"Bootstrapped launchpad on {profile.name}: engine {engine.address}, {len(versions)} version(s)")
    return Launchpad(
        ledger=ledger,
        admin=admin,
        network=profile,
        token_factory=token_factory,
        treasury=treasury,
        referral_registry=referral_registry,
        exchange=exchange,
        locker=locker,
        engine=engine,
        helper=helper,
    )


_launchpad: Optional[Launchpad] = None

# Serializes every access to the process-wide launchpad; the MCP tools and the quote API share it
launchpad_lock = threading.RLock()


def get_launchpad() -> Launchpad:
    """Returns the process-wide launchpad, deploying it on first use."""
    global _launchpad
    with launchpad_lock:
        if _launchpad is None:
            _launchpad = bootstrap()
        return _launchpad


@contextmanager
def locked_launchpad() -> Iterator[Launchpad]:
    """Yields the process-wide launchpad while holding the lock that guards it."""
    with launchpad_lock:
        yield get_launchpad()


def reset_launchpad():
    """Drops the process-wide launchpad; the next get_launchpad() redeploys."""
    global _launchpad
    with launchpad_lock:
        _launchpad = None


# --- Initial Load ---
# Load launch versions when the module is imported
load_launch_configs()
