"""Service providers for route dependencies; override in tests via app.dependency_overrides."""

from unora.features.matching.connections import ConnectionManager
from unora.features.matching.interests import InterestLedger
from unora.features.nudges.service import NudgeTracker
from unora.features.reveals.content import RevealContentService
from unora.features.reveals.service import RevealUnlockEngine
from unora.features.safety.service import SafetyHooks
from unora.features.streaks.service import StreakService
from unora.features.streaks.state_machine import StreakStateMachine
from unora.features.tiers.policy import TierPolicy, tier_policy


def get_tier_policy() -> TierPolicy:
    return tier_policy


def get_connection_manager() -> ConnectionManager:
    return ConnectionManager(tier_policy)


def get_interest_ledger() -> InterestLedger:
    return InterestLedger(ConnectionManager(tier_policy), tier_policy)


def get_state_machine() -> StreakStateMachine:
    return StreakStateMachine(tier_policy)


def get_streak_service() -> StreakService:
    return StreakService(StreakStateMachine(tier_policy), tier_policy)


def get_nudge_tracker() -> NudgeTracker:
    return NudgeTracker()


def get_reveal_engine() -> RevealUnlockEngine:
    return RevealUnlockEngine()


def get_reveal_content_service() -> RevealContentService:
    return RevealContentService()


def get_safety_hooks() -> SafetyHooks:
    return SafetyHooks()
