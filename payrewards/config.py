"""
config.py - Engine parameters and mutable configuration records

EngineParameters holds the fixed economics of an engine instance (fee ceiling,
reward scale, milestone thresholds and bonuses). FeeConfig and RewardConfig
hold the administrator-controlled values; the engine replaces them wholesale
on every change so readers never see a half-updated record.

Default economics (6-decimal stable unit, 18-decimal reward credit):
    - fee ceiling 300 bps (3%), default fee 50 bps (0.5%)
    - $100 settled = 1 reward credit at the default reward rate
    - first transfer bonus 5 credits
    - $1,000 cumulative volume: 25 credits
    - $10,000 cumulative volume: 100 credits
"""

from __future__ import annotations
from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping

from .core import (
    BASIS_POINTS, MAX_UINT256, InvalidParameters, RewardIssuer, Principal,
)


STABLE_DECIMALS = 6
REWARD_DECIMALS = 18

STABLE_UNIT = 10 ** STABLE_DECIMALS
REWARD_UNIT = 10 ** REWARD_DECIMALS

MAX_FEE_BPS = 300
DEFAULT_FEE_RATE_BPS = 50

# $100 of volume normalizes to one unit of reward_rate.
REWARD_SCALE = 100 * STABLE_UNIT
DEFAULT_REWARD_RATE = REWARD_UNIT

FIRST_TRANSFER_BONUS = 5 * REWARD_UNIT
MILESTONE1_THRESHOLD = 1_000 * STABLE_UNIT
MILESTONE1_BONUS = 25 * REWARD_UNIT
MILESTONE2_THRESHOLD = 10_000 * STABLE_UNIT
MILESTONE2_BONUS = 100 * REWARD_UNIT


@dataclass(frozen=True, slots=True)
class EngineParameters:
    """
    Fixed economics of one engine instance.

    Attributes:
        max_fee_bps: Ceiling for the administrator-set fee rate.
        basis_points: Denominator for fee rates.
        reward_scale: Volume divisor for the per-unit reward rate.
        first_transfer_bonus: B0, paid once on a principal's first settlement.
        milestone1_threshold: T1, cumulative volume unlocking B1.
        milestone1_bonus: B1.
        milestone2_threshold: T2, cumulative volume unlocking B2.
        milestone2_bonus: B2.
    """
    max_fee_bps: int = MAX_FEE_BPS
    basis_points: int = BASIS_POINTS
    reward_scale: int = REWARD_SCALE
    first_transfer_bonus: int = FIRST_TRANSFER_BONUS
    milestone1_threshold: int = MILESTONE1_THRESHOLD
    milestone1_bonus: int = MILESTONE1_BONUS
    milestone2_threshold: int = MILESTONE2_THRESHOLD
    milestone2_bonus: int = MILESTONE2_BONUS

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidParameters(f"{f.name} must be an integer", {f.name: repr(value)})
            if value < 0 or value > MAX_UINT256:
                raise InvalidParameters(f"{f.name} out of range", {f.name: value})
        if self.basis_points == 0:
            raise InvalidParameters("basis_points must be positive")
        if self.reward_scale == 0:
            raise InvalidParameters("reward_scale must be positive")
        if self.max_fee_bps > self.basis_points:
            raise InvalidParameters(
                "max_fee_bps cannot exceed basis_points",
                {"max_fee_bps": self.max_fee_bps, "basis_points": self.basis_points},
            )
        if self.milestone1_threshold >= self.milestone2_threshold:
            raise InvalidParameters(
                "milestone1_threshold must be below milestone2_threshold",
                {"t1": self.milestone1_threshold, "t2": self.milestone2_threshold},
            )

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> 'EngineParameters':
        """
        Build parameters from a plain mapping, e.g. a parsed config file.

        Missing keys take their defaults; unknown keys are rejected.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise InvalidParameters("unknown engine parameters", {"keys": unknown})
        return cls(**dict(values))

    def to_dict(self) -> Dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True, slots=True)
class FeeConfig:
    fee_rate_bps: int
    fee_recipient: Principal


@dataclass(frozen=True, slots=True)
class RewardConfig:
    reward_rate: int
    reward_ledger: RewardIssuer
