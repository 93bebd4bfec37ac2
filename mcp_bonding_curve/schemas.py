"""
Pydantic Data Models and Validation Schemas

This module defines the data models of the launchpad using Pydantic. Configuration
models are frozen once validated; state models are mutable and owned by the contract
that stores them.

Key Components:
- CurveType / LaunchPhase: enums for the price schedule and the per-launch state machine
- LaunchParameters: per-version launch configuration (supplies, goal, fees, curve coefficients)
- EngineAddresses: peer addresses handed to the bonding curve engine by deployment tooling
- CurveState: mutable per-token funding state
- BuyQuote / SellQuote / Progress: read-only projections returned to callers
- LiquidityPosition / HarvestResult: locker bookkeeping
- LaunchConfigModel / NetworkProfile: JSON configuration files

Amounts are integers in base units (18 decimals for launch tokens and the raised asset).
Percent fields are basis points.
"""
from enum import Enum
from fractions import Fraction
from typing import Annotated, Dict, Optional

from eth_utils import is_address, to_checksum_address
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator

from mcp_bonding_curve import config

BASIS_POINTS = config.BASIS_POINTS


def _checksum(value: str) -> str:
    if not is_address(value):
        raise ValueError(f"invalid address {value!r}")
    return to_checksum_address(value)


Address = Annotated[str, AfterValidator(_checksum)]


class CurveType(str, Enum):
    linear = "linear"
    constant_product = "constant_product"


class LaunchPhase(str, Enum):
    configured = "Configured"
    active = "Active"
    goal_reached = "GoalReached"
    migrated = "Migrated"

    @property
    def rank(self) -> int:
        return _PHASE_ORDER.index(self)


_PHASE_ORDER = [LaunchPhase.configured, LaunchPhase.active, LaunchPhase.goal_reached, LaunchPhase.migrated]


class LaunchParameters(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_supply: int = Field(gt=0)
    funding_supply: int = Field(gt=0)
    initial_supply: int = Field(0, ge=0)
    funding_goal: int = Field(gt=0, description="Raised-asset target that triggers migration")
    creation_fee: int = Field(0, ge=0)
    liquidity_fee: int = Field(0, ge=0)
    creator_reward: int = Field(0, ge=0)
    referral_fee_percent: int = Field(0, ge=0, le=BASIS_POINTS)
    fee_percent: int = Field(config.DEFAULT_FEE_PERCENT, ge=0, lt=BASIS_POINTS)
    curve_type: CurveType = CurveType.constant_product
    a: int = Field(ge=0)
    b: int = Field(ge=0)
    c: int = Field(gt=0)
    active: bool = False
    lock_duration: int = Field(config.DEFAULT_LOCK_DURATION, ge=0)
    lp_fee_treasury_percent: int = Field(config.DEFAULT_LP_FEE_TREASURY_PERCENT, ge=0, le=BASIS_POINTS)

    @model_validator(mode="before")
    @classmethod
    def _derive_constant_product_b(cls, data):
        # (C + x)(A - s) = B starts at zero supply only when B = A*C
        if (
            isinstance(data, dict)
            and data.get("curve_type") in (CurveType.constant_product, CurveType.constant_product.value, None)
            and data.get("b") is None
            and "a" in data
            and "c" in data
        ):
            data = {**data, "b": int(data["a"]) * int(data["c"])}
        return data

    @model_validator(mode="after")
    def _check_invariants(self) -> "LaunchParameters":
        if self.initial_supply + self.funding_supply > self.max_supply:
            raise ValueError("initial_supply + funding_supply must not exceed max_supply")
        if self.curve_type == CurveType.linear:
            if self.a + self.b == 0:
                raise ValueError("linear curve needs a > 0 or b > 0")
        else:
            if self.a <= self.funding_supply:
                raise ValueError("constant_product curve needs a > funding_supply")
            if self.b != self.a * self.c:
                raise ValueError("constant_product curve needs b == a * c")
        return self

    @property
    def liquidity_supply(self) -> int:
        """Supply minted at migration on top of the unsold funding supply."""
        return self.max_supply - self.initial_supply - self.funding_supply


class EngineAddresses(BaseModel):
    model_config = ConfigDict(frozen=True)

    token_factory: Address
    treasury: Address
    quote_asset: Address = Field(description="Raised asset paired in the pool (WETH)")
    position_manager: Address
    locker: Address
    referral_registry: Address


class CurveState(BaseModel):
    token: Address
    version: int
    creator: Address
    sold_supply: int = 0
    raised_amount: int = 0
    phase: LaunchPhase = LaunchPhase.configured
    referrer_of: Dict[str, Optional[str]] = Field(default_factory=dict)
    created_at: int = 0
    pool_id: Optional[str] = None
    position_id: Optional[int] = None
    migrated_at: Optional[int] = None


class BuyQuote(BaseModel):
    amount_in: int
    amount_used: int
    refund: int
    fee: int
    referral_fee: int
    treasury_fee: int
    net_amount: int
    tokens_out: int
    completes_launch: bool


class SellQuote(BaseModel):
    token_amount: int
    proceeds: int
    fee: int
    referral_fee: int
    treasury_fee: int
    amount_out: int


class Progress(BaseModel):
    raised: int
    goal: int
    progress_bps: int
    sold: int
    funding_supply: int
    phase: LaunchPhase


class LiquidityPosition(BaseModel):
    position_id: int
    token: Address
    locked_until: int
    treasury_percent: int
    referrer: Address
    released: bool = False


class HarvestResult(BaseModel):
    treasury_amount: int = 0
    referrer_amount: int = 0
    treasury_tokens: int = 0
    referrer_tokens: int = 0


class Pool(BaseModel):
    pool_id: str
    token: Address
    quote_asset: Address
    fee_tier: int
    price: Fraction

    model_config = ConfigDict(arbitrary_types_allowed=True)


class Position(BaseModel):
    position_id: int
    pool_id: str
    owner: Address
    token_amount: int
    raised_amount: int
    fees_token: int = 0
    fees_raised: int = 0


class LaunchConfigModel(BaseModel):
    version: int = Field(ge=1)
    description: Optional[str] = None
    parameters: LaunchParameters


class NetworkProfile(BaseModel):
    name: str
    weth: Address
    position_manager: Address
    fee_percent: int = Field(config.DEFAULT_FEE_PERCENT, ge=0, lt=BASIS_POINTS)
    treasury_wallet: Address
    inviter: Address
