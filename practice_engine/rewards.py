"""
Practice rewards.

Rewards (10 questions, default constants):
  10/10: 175 XP, 60 coins
   7/10: 130 XP, 45 coins
   5/10: 100 XP, 35 coins
   0/10:  25 XP, 10 coins
"""
from __future__ import annotations

from dataclasses import dataclass

from config import get_settings


@dataclass(frozen=True)
class RewardConfig:
    base_xp: int = 25
    bonus_xp_per_correct: int = 15
    base_coins: int = 10
    bonus_coins_per_correct: int = 5

    @classmethod
    def from_settings(cls) -> RewardConfig:
        return cls(**get_settings().get_reward_config())


def compute_rewards(correct_count: int, config: RewardConfig | None = None) -> tuple[int, int]:
    """Return ``(xp, coins)`` for a completed session."""
    cfg = config or RewardConfig()
    correct = max(0, correct_count)
    xp = cfg.base_xp + correct * cfg.bonus_xp_per_correct
    coins = cfg.base_coins + correct * cfg.bonus_coins_per_correct
    return xp, coins


def compute_level(xp: int, xp_per_level: int = 500) -> int:
    """Student level for a total XP; level 1 starts at 0 XP."""
    return max(0, xp) // xp_per_level + 1
