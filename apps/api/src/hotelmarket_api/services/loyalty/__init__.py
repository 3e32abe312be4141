"""Loyalty ledger building blocks.

Only dependency-free modules are re-exported here; import the member and program
services from their modules directly.
"""

from .errors import (  # noqa: F401
    ConfigInvalidError,
    InsufficientPointsError,
    InsufficientPointsReason,
    LedgerConflictError,
    RewardUnavailableError,
)
from .events import LoyaltyEvent, MemberEnrolled, PointsExpired, RewardRedeemed, TierChanged  # noqa: F401
from .ledger import LedgerEntry, PointsLedger  # noqa: F401
from .program import LoyaltyProgramConfig, RedemptionRules  # noqa: F401
from .tiers import Tier, TierProgress, TierTable, resolve_tier, tier_progress, validate_tier_table  # noqa: F401
