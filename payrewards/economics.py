"""
economics.py - Pure fee and reward calculations

All functions take explicit inputs and return immutable results. The engine's
settle() and estimate() paths both call these, so a projection computed before
a settlement always matches the settlement's own arithmetic.

Integer floor division throughout; fee + delivered == amount exactly.
"""

from __future__ import annotations
from typing import Tuple

from .config import EngineParameters
from .core import AccountRecord, RewardBreakdown


def compute_fee(amount: int, fee_rate_bps: int, basis_points: int) -> Tuple[int, int]:
    """
    Split a gross amount into (delivered, fee).

    fee = floor(amount * fee_rate_bps / basis_points)

    Example:
        >>> compute_fee(100_000000, 50, 10_000)
        (99500000, 500000)
    """
    fee = amount * fee_rate_bps // basis_points
    return amount - fee, fee


def compute_volume_reward(amount: int, reward_rate: int, reward_scale: int) -> int:
    """Reward proportional to the pre-fee amount."""
    return amount * reward_rate // reward_scale


def compute_milestone_reward(
    record: AccountRecord,
    new_total: int,
    params: EngineParameters,
) -> Tuple[int, AccountRecord, Tuple[bool, bool, bool]]:
    """
    Evaluate one-time bonuses for a principal whose volume is now new_total.

    The input record is not modified.

    Returns:
        (bonus, updated_record, (first_fired, milestone1_fired, milestone2_fired))
    """
    updated = record.copy()
    updated.total_volume = new_total
    bonus = 0

    first = not updated.first_transfer_awarded
    if first:
        bonus += params.first_transfer_bonus
        updated.first_transfer_awarded = True

    m1 = new_total >= params.milestone1_threshold and not updated.milestone1_awarded
    if m1:
        bonus += params.milestone1_bonus
        updated.milestone1_awarded = True

    m2 = new_total >= params.milestone2_threshold and not updated.milestone2_awarded
    if m2:
        bonus += params.milestone2_bonus
        updated.milestone2_awarded = True

    return bonus, updated, (first, m1, m2)


def compute_rewards(
    record: AccountRecord,
    amount: int,
    reward_rate: int,
    params: EngineParameters,
) -> Tuple[RewardBreakdown, AccountRecord]:
    """
    Full reward for settling amount on top of record.

    record is the principal's state *before* this settlement; the returned
    record has the new volume and any newly set milestone flags.
    """
    volume_reward = compute_volume_reward(amount, reward_rate, params.reward_scale)
    bonus, updated, (first, m1, m2) = compute_milestone_reward(
        record, record.total_volume + amount, params
    )
    breakdown = RewardBreakdown(
        volume_reward=volume_reward,
        milestone_reward=bonus,
        first_transfer_bonus=first,
        milestone1_reached=m1,
        milestone2_reached=m2,
    )
    return breakdown, updated
