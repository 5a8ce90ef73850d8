"""
Monthly report quota per subscription tier.

The counter is consumed with a single atomic check-and-increment before the
generation backend is contacted. The month rolls over lazily: the first
consume of a new period resets the counter.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from radlaudo.utils.config import settings
from radlaudo.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIER = "free"


@dataclass
class QuotaDecision:
    allowed: bool
    used: int
    limit: Optional[int]
    tier: str
    period: str


@dataclass
class _Profile:
    tier: str = DEFAULT_TIER
    reports_this_month: int = 0
    period: str = ""


class QuotaStore:
    """Backend that performs the atomic consume."""

    async def consume(
        self,
        user_id: str,
        limits: Dict[str, Optional[int]],
        default_limit: int,
        period: str,
    ) -> QuotaDecision:
        raise NotImplementedError


class InMemoryQuotaStore(QuotaStore):
    """Process-local quota counters guarded by an asyncio lock."""

    def __init__(self):
        self._profiles: Dict[str, _Profile] = {}
        self._lock = asyncio.Lock()

    def set_tier(self, user_id: str, tier: str) -> None:
        self._profiles.setdefault(user_id, _Profile()).tier = tier

    def set_usage(self, user_id: str, count: int, period: str) -> None:
        profile = self._profiles.setdefault(user_id, _Profile())
        profile.reports_this_month = count
        profile.period = period

    def usage(self, user_id: str) -> int:
        profile = self._profiles.get(user_id)
        return profile.reports_this_month if profile else 0

    async def consume(self, user_id, limits, default_limit, period) -> QuotaDecision:
        async with self._lock:
            # Auto-provision on first use
            profile = self._profiles.setdefault(user_id, _Profile(period=period))
            if profile.period != period:
                profile.reports_this_month = 0
                profile.period = period

            limit = limits[profile.tier] if profile.tier in limits else default_limit
            if limit is not None and profile.reports_this_month >= limit:
                return QuotaDecision(False, profile.reports_this_month, limit, profile.tier, period)

            profile.reports_this_month += 1
            return QuotaDecision(True, profile.reports_this_month, limit, profile.tier, period)


class SupabaseQuotaStore(QuotaStore):
    """Delegates to the ``consume_report_quota`` Postgres function."""

    def __init__(self, storage):
        self.storage = storage

    async def consume(self, user_id, limits, default_limit, period) -> QuotaDecision:
        row = await self.storage.consume_quota(user_id, limits, default_limit, period)
        return QuotaDecision(
            allowed=bool(row["allowed"]),
            used=int(row["used"]),
            limit=row.get("monthly_limit"),
            tier=row.get("tier") or DEFAULT_TIER,
            period=period,
        )


class QuotaService:
    def __init__(
        self,
        store: QuotaStore,
        limits: Optional[Dict[str, Optional[int]]] = None,
        default_limit: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.limits = dict(limits if limits is not None else settings.tier_limits)
        self.default_limit = (
            default_limit if default_limit is not None else settings.default_tier_limit
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def current_period(self) -> str:
        return self._clock().strftime("%Y-%m")

    async def consume(self, user_id: str) -> QuotaDecision:
        """Check and increment in one step. Rejections leave the counter unchanged."""
        decision = await self.store.consume(
            user_id, self.limits, self.default_limit, self.current_period()
        )
        if not decision.allowed:
            logger.warning(
                f"Quota exhausted for user {user_id}: {decision.used}/{decision.limit} "
                f"({decision.tier})"
            )
        return decision
