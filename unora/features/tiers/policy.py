"""
Subscription tier policy.

Immutable table of per-tier limits plus pure predicates over a user's
counters. Components receive a TierPolicy instance instead of reading the
table directly, so tests can inject custom limits.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

DEFAULT_TIER = "free"


@dataclass(frozen=True)
class TierConfig:
    connection_slots: int
    refresh_cooldown: timedelta
    nudges_per_day: int
    free_recoveries: int
    earned_reveals: int
    purchasable_reveals: int
    reveal_days: Tuple[int, ...]


TIER_CONFIGS: Mapping[str, TierConfig] = MappingProxyType({
    "free": TierConfig(
        connection_slots=1,
        refresh_cooldown=timedelta(hours=24),
        nudges_per_day=1,
        free_recoveries=0,
        earned_reveals=2,
        purchasable_reveals=3,
        reveal_days=(5, 12),
    ),
    "plus": TierConfig(
        connection_slots=2,
        refresh_cooldown=timedelta(hours=12),
        nudges_per_day=3,
        free_recoveries=1,
        earned_reveals=3,
        purchasable_reveals=2,
        reveal_days=(4, 8, 12),
    ),
    "pro": TierConfig(
        connection_slots=4,
        refresh_cooldown=timedelta(hours=6),
        nudges_per_day=4,
        free_recoveries=2,
        earned_reveals=4,
        purchasable_reveals=1,
        reveal_days=(3, 6, 9, 12),
    ),
})


class TierPolicy:
    """Read-only view over a tier table; unknown tiers fall back to free."""

    def __init__(self, configs: Mapping[str, TierConfig] = TIER_CONFIGS, default_tier: str = DEFAULT_TIER):
        if default_tier not in configs:
            raise ValueError(f"default tier {default_tier!r} missing from tier table")
        self._configs = MappingProxyType(dict(configs))
        self._default_tier = default_tier

    @property
    def tiers(self) -> Tuple[str, ...]:
        return tuple(self._configs)

    def config_for(self, tier: Optional[str]) -> TierConfig:
        return self._configs.get((tier or "").lower(), self._configs[self._default_tier])

    def can_refresh(self, tier: Optional[str], last_refresh_at: Optional[datetime], now: datetime) -> bool:
        if last_refresh_at is None:
            return True
        return now >= last_refresh_at + self.config_for(tier).refresh_cooldown

    def refresh_available_at(self, tier: Optional[str], last_refresh_at: Optional[datetime]) -> Optional[datetime]:
        """None means a refresh is available right away."""
        if last_refresh_at is None:
            return None
        return last_refresh_at + self.config_for(tier).refresh_cooldown

    def can_connect(self, tier: Optional[str], active_connections: int) -> bool:
        return active_connections < self.config_for(tier).connection_slots

    def has_free_recovery(self, tier: Optional[str], recoveries_used: int) -> bool:
        return recoveries_used < self.config_for(tier).free_recoveries

    def can_send_nudge(self, tier: Optional[str], nudges_sent_today: int) -> bool:
        return nudges_sent_today < self.config_for(tier).nudges_per_day


tier_policy = TierPolicy()
