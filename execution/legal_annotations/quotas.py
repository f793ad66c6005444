"""
Subscription Usage Limits for Legal Annotations

Monthly per-resource counters checked against the user's subscription tier.
A check reads the counter, the caller performs the action, and record_usage
increments it afterwards. The two steps are not transactional.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

logger = logging.getLogger(__name__)

RESOURCE_TYPES = ("ai_query", "document_upload", "document_download", "custom_document")

UNLIMITED = -1

# Alert thresholds, in percent of the monthly limit
WARNING_THRESHOLD = 80
LIMIT_THRESHOLD = 100


@dataclass
class TierLimits:
    """Monthly limits for a subscription tier (-1 means unlimited)."""
    ai_query: int = 10
    document_upload: int = 1
    document_download: int = 1
    custom_document: int = 0

    def limit_for(self, resource_type: str) -> int:
        validate_resource_type(resource_type)
        return getattr(self, resource_type)


# Predefined tiers
QUOTA_TIERS = {
    "free": TierLimits(
        ai_query=10,
        document_upload=1,
        document_download=1,
        custom_document=0,
    ),
    "premium": TierLimits(
        ai_query=50,
        document_upload=10,
        document_download=10,
        custom_document=3,
    ),
    "pro": TierLimits(
        ai_query=500,
        document_upload=50,
        document_download=20,
        custom_document=20,
    ),
    "enterprise": TierLimits(
        ai_query=UNLIMITED,
        document_upload=UNLIMITED,
        document_download=UNLIMITED,
        custom_document=UNLIMITED,
    ),
}

DEFAULT_TIER = "free"


def validate_resource_type(resource_type: str) -> str:
    if resource_type not in RESOURCE_TYPES:
        raise ValueError(f"Unknown resource type: {resource_type!r}")
    return resource_type


def month_start(today: Optional[date] = None) -> date:
    """First day of the month containing ``today``."""
    today = today or date.today()
    return today.replace(day=1)


@dataclass
class UsageLimit:
    """Result of a usage check."""
    allowed: bool
    limit: int
    current: int
    remaining: int
    tier: str
    percentage: float

    @property
    def unlimited(self) -> bool:
        return self.limit == UNLIMITED

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "limit": self.limit,
            "current": self.current,
            "remaining": self.remaining,
            "tier": self.tier,
            "percentage": self.percentage,
        }


class QuotaExceededError(Exception):
    """Raised when a monthly usage limit is exhausted."""

    def __init__(self, message: str, resource_type: str, current: int, limit: int):
        super().__init__(message)
        self.resource_type = resource_type
        self.current = current
        self.limit = limit


class QuotaManager:
    """
    Checks and records monthly usage per user.

    Usage:
        manager = QuotaManager(repository)

        # Check before an action
        manager.enforce(user_id, "document_upload")

        # Record afterwards
        manager.record_usage(user_id, "document_upload", resource_id=doc_id)
    """

    def __init__(self, store=None):
        """
        Initialize quota manager.

        Args:
            store: AnnotationRepository (or compatible) for tiers and
                counters. Without one, usage lives in memory only.
        """
        self.store = store
        # (user_id, resource_type, month) -> count
        self._usage_cache: dict[tuple[str, str, date], int] = {}
        self._tier_cache: dict[str, str] = {}

    def get_limits(self, tier: str = DEFAULT_TIER) -> TierLimits:
        """Get limits for a tier. Unknown tiers get the free limits."""
        return QUOTA_TIERS.get(tier, QUOTA_TIERS[DEFAULT_TIER])

    def get_tier(self, user_id: str) -> str:
        """Subscription tier of a user (free when unknown)."""
        if not self.store:
            return self._tier_cache.get(user_id, DEFAULT_TIER)

        try:
            tier = self.store.get_user_tier(user_id) or DEFAULT_TIER
            self._tier_cache[user_id] = tier
            return tier
        except Exception as e:
            logger.warning(f"Failed to get tier for {user_id}: {e}")
            return self._tier_cache.get(user_id, DEFAULT_TIER)

    def get_usage(self, user_id: str, resource_type: str, today: Optional[date] = None) -> int:
        """
        Current month's usage count.

        Queries the database when a store is attached; falls back to the
        last known value if the query fails.
        """
        validate_resource_type(resource_type)
        key = (user_id, resource_type, month_start(today))

        if not self.store:
            return self._usage_cache.get(key, 0)

        try:
            count = int(self.store.get_monthly_usage(user_id, resource_type, key[2]))
            self._usage_cache[key] = count
            return count
        except Exception as e:
            logger.warning(f"Failed to get {resource_type} usage for {user_id}: {e}")
            return self._usage_cache.get(key, 0)

    def check_usage_limit(
        self,
        user_id: str,
        resource_type: str,
        tier: Optional[str] = None,
        today: Optional[date] = None,
    ) -> UsageLimit:
        """
        Check whether one more unit of a resource may be used this month.

        Args:
            user_id: User identifier
            resource_type: One of RESOURCE_TYPES
            tier: Subscription tier; looked up when omitted

        Returns:
            UsageLimit describing the current state
        """
        tier = tier or self.get_tier(user_id)
        limit = self.get_limits(tier).limit_for(resource_type)
        current = self.get_usage(user_id, resource_type, today)

        if limit == UNLIMITED:
            return UsageLimit(
                allowed=True, limit=UNLIMITED, current=current,
                remaining=UNLIMITED, tier=tier, percentage=0.0,
            )

        return UsageLimit(
            allowed=current < limit,
            limit=limit,
            current=current,
            remaining=max(limit - current, 0),
            tier=tier,
            percentage=round(current / limit * 100, 1) if limit > 0 else 0.0,
        )

    def enforce(
        self,
        user_id: str,
        resource_type: str,
        tier: Optional[str] = None,
    ) -> UsageLimit:
        """
        Like check_usage_limit, but raises when the limit is exhausted.

        Raises:
            QuotaExceededError: If no usage remains this month
        """
        status = self.check_usage_limit(user_id, resource_type, tier)
        if not status.allowed:
            raise QuotaExceededError(
                f"Monthly {resource_type} limit reached ({status.limit} on {status.tier} plan)",
                resource_type=resource_type,
                current=status.current,
                limit=status.limit,
            )
        return status

    def record_usage(
        self,
        user_id: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        metadata: Optional[dict] = None,
        today: Optional[date] = None,
    ):
        """Record one unit of usage and raise billing alerts if thresholds are crossed."""
        validate_resource_type(resource_type)
        key = (user_id, resource_type, month_start(today))
        self._usage_cache[key] = self._usage_cache.get(key, 0) + 1

        if self.store:
            try:
                self.store.increment_usage(user_id, resource_type, resource_id, metadata or {})
            except Exception as e:
                logger.warning(f"Failed to update usage: {e}")

        self._check_alerts(user_id, resource_type, today)

    def _check_alerts(self, user_id: str, resource_type: str, today: Optional[date] = None):
        """Create billing alerts at 80% and 100% of the limit. Failures are logged."""
        try:
            status = self.check_usage_limit(user_id, resource_type, today=today)
            if status.unlimited or status.limit <= 0:
                return

            if WARNING_THRESHOLD <= status.percentage < LIMIT_THRESHOLD:
                self._create_alert(user_id, "usage_limit_warning", resource_type, round(status.percentage))
            elif status.percentage >= LIMIT_THRESHOLD:
                self._create_alert(user_id, "usage_limit_reached", resource_type, LIMIT_THRESHOLD)
        except Exception as e:
            logger.warning(f"Failed to check usage alerts for {user_id}: {e}")

    def _create_alert(self, user_id: str, alert_type: str, resource_type: str, threshold: int):
        logger.info(f"Billing alert {alert_type} for {user_id}: {resource_type} at {threshold}%")
        if self.store:
            self.store.create_billing_alert(user_id, alert_type, resource_type, threshold)

    def check_and_record(
        self,
        user_id: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> UsageLimit:
        """
        Check the limit and record one unit.

        Returns:
            The UsageLimit after recording, so ``current`` includes this unit

        Raises:
            QuotaExceededError: If no usage remained; nothing is recorded
        """
        status = self.enforce(user_id, resource_type)
        self.record_usage(user_id, resource_type, resource_id, metadata)
        return self.check_usage_limit(user_id, resource_type, status.tier)

    def get_usage_status(self, user_id: str, tier: Optional[str] = None) -> dict:
        """
        Usage vs limits for every resource type.

        Returns a dictionary keyed by resource type plus the tier.
        """
        tier = tier or self.get_tier(user_id)
        status = {"tier": tier}
        for resource_type in RESOURCE_TYPES:
            limit = self.check_usage_limit(user_id, resource_type, tier)
            status[resource_type] = {
                "used": limit.current,
                "limit": limit.limit,
                "remaining": limit.remaining,
                "percentage": limit.percentage,
            }
        return status


# Global quota manager instance
_manager = None


def get_quota_manager(store=None) -> QuotaManager:
    """Get the global quota manager instance."""
    global _manager
    if _manager is None:
        _manager = QuotaManager(store)
    elif store and _manager.store is None:
        _manager.store = store
    return _manager
