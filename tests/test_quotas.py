"""
Tests for execution/legal_annotations/quotas.py

Covers: TierLimits, QUOTA_TIERS, UsageLimit, QuotaExceededError,
        QuotaManager (tier lookup, monthly usage caching, limit checks,
        recording, billing alerts, usage status), and get_quota_manager.
"""

from datetime import date
from unittest.mock import MagicMock

import pytest


def _store(tier="free", usage=0):
    store = MagicMock()
    store.get_user_tier.return_value = tier
    store.get_monthly_usage.return_value = usage
    return store


# ---------------------------------------------------------------------------
# TierLimits and QUOTA_TIERS
# ---------------------------------------------------------------------------

class TestTierLimits:
    """Tests for tier definitions."""

    def test_all_tiers_defined(self):
        from execution.legal_annotations.quotas import QUOTA_TIERS
        assert set(QUOTA_TIERS) == {"free", "premium", "pro", "enterprise"}

    @pytest.mark.parametrize("tier,expected", [
        ("free", (10, 1, 1, 0)),
        ("premium", (50, 10, 10, 3)),
        ("pro", (500, 50, 20, 20)),
        ("enterprise", (-1, -1, -1, -1)),
    ])
    def test_tier_limits(self, tier, expected):
        from execution.legal_annotations.quotas import QUOTA_TIERS, RESOURCE_TYPES
        limits = QUOTA_TIERS[tier]
        assert tuple(limits.limit_for(rt) for rt in RESOURCE_TYPES) == expected

    def test_unknown_resource_rejected(self):
        from execution.legal_annotations.quotas import TierLimits
        with pytest.raises(ValueError):
            TierLimits().limit_for("annotation")

    def test_month_start(self):
        from execution.legal_annotations.quotas import month_start
        assert month_start(date(2024, 3, 17)) == date(2024, 3, 1)


class TestQuotaExceededError:
    """Tests for the QuotaExceededError exception class."""

    def test_attributes_stored(self):
        from execution.legal_annotations.quotas import QuotaExceededError
        err = QuotaExceededError("limit", resource_type="ai_query", current=10, limit=10)
        assert str(err) == "limit"
        assert err.resource_type == "ai_query"
        assert (err.current, err.limit) == (10, 10)

    def test_is_exception(self):
        from execution.legal_annotations.quotas import QuotaExceededError
        with pytest.raises(QuotaExceededError):
            raise QuotaExceededError("x", "ai_query", 1, 1)


# ---------------------------------------------------------------------------
# QuotaManager without a store
# ---------------------------------------------------------------------------

class TestQuotaManagerInMemory:
    """Tests for QuotaManager with in-memory counters."""

    def test_unknown_tier_falls_back_to_free(self):
        from execution.legal_annotations.quotas import QuotaManager, QUOTA_TIERS
        assert QuotaManager().get_limits("platinum") == QUOTA_TIERS["free"]

    def test_default_tier(self):
        from execution.legal_annotations.quotas import QuotaManager
        assert QuotaManager().get_tier("user-1") == "free"

    def test_check_fresh_user(self):
        from execution.legal_annotations.quotas import QuotaManager
        status = QuotaManager().check_usage_limit("user-1", "ai_query")
        assert status.allowed
        assert (status.limit, status.current, status.remaining) == (10, 0, 10)
        assert status.percentage == 0.0
        assert status.tier == "free"

    def test_record_then_check(self):
        from execution.legal_annotations.quotas import QuotaManager
        manager = QuotaManager()
        for _ in range(3):
            manager.record_usage("user-1", "ai_query")
        status = manager.check_usage_limit("user-1", "ai_query")
        assert status.current == 3
        assert status.remaining == 7
        assert status.percentage == 30.0

    def test_limit_reached(self):
        from execution.legal_annotations.quotas import QuotaManager
        manager = QuotaManager()
        manager.record_usage("user-1", "document_upload")
        status = manager.check_usage_limit("user-1", "document_upload")
        assert status.allowed is False
        assert status.remaining == 0
        assert status.percentage == 100.0

    def test_zero_limit_never_allowed(self):
        from execution.legal_annotations.quotas import QuotaManager
        status = QuotaManager().check_usage_limit("user-1", "custom_document")
        assert status.allowed is False
        assert status.percentage == 0.0

    def test_unlimited_tier(self):
        from execution.legal_annotations.quotas import QuotaManager, UNLIMITED
        manager = QuotaManager()
        for _ in range(5):
            manager.record_usage("user-1", "ai_query")
        status = manager.check_usage_limit("user-1", "ai_query", tier="enterprise")
        assert status.allowed
        assert status.unlimited
        assert status.remaining == UNLIMITED
        assert status.current == 5

    def test_counters_are_monthly(self):
        from execution.legal_annotations.quotas import QuotaManager
        manager = QuotaManager()
        manager.record_usage("user-1", "document_upload", today=date(2024, 3, 31))
        assert manager.check_usage_limit("user-1", "document_upload", today=date(2024, 3, 5)).allowed is False
        assert manager.check_usage_limit("user-1", "document_upload", today=date(2024, 4, 1)).allowed is True

    def test_enforce_raises(self):
        from execution.legal_annotations.quotas import QuotaManager, QuotaExceededError
        manager = QuotaManager()
        manager.record_usage("user-1", "document_download")
        with pytest.raises(QuotaExceededError) as exc_info:
            manager.enforce("user-1", "document_download")
        assert exc_info.value.limit == 1

    def test_check_and_record_reports_usage_after_recording(self):
        from execution.legal_annotations.quotas import QuotaManager
        manager = QuotaManager()
        status = manager.check_and_record("user-1", "ai_query")
        assert status.current == 1
        assert status.remaining == 9
        assert status.percentage == 10.0

    def test_check_and_record_stops_at_limit(self):
        from execution.legal_annotations.quotas import QuotaManager, QuotaExceededError
        manager = QuotaManager()
        last = manager.check_and_record("user-1", "document_upload")
        assert last.current == 1
        assert not last.allowed
        with pytest.raises(QuotaExceededError):
            manager.check_and_record("user-1", "document_upload")
        assert manager.get_usage("user-1", "document_upload") == 1

    def test_usage_status(self):
        from execution.legal_annotations.quotas import QuotaManager, RESOURCE_TYPES
        manager = QuotaManager()
        manager.record_usage("user-1", "ai_query")
        status = manager.get_usage_status("user-1", tier="premium")
        assert status["tier"] == "premium"
        assert set(status) == {"tier", *RESOURCE_TYPES}
        assert status["ai_query"] == {"used": 1, "limit": 50, "remaining": 49, "percentage": 2.0}

    def test_unknown_resource_rejected(self):
        from execution.legal_annotations.quotas import QuotaManager
        with pytest.raises(ValueError):
            QuotaManager().record_usage("user-1", "annotation")


# ---------------------------------------------------------------------------
# QuotaManager with a store
# ---------------------------------------------------------------------------

class TestQuotaManagerWithStore:
    """Tests for QuotaManager backed by a repository."""

    def test_tier_from_store(self):
        from execution.legal_annotations.quotas import QuotaManager
        assert QuotaManager(_store(tier="pro")).get_tier("user-1") == "pro"

    def test_tier_failure_uses_cache(self):
        from execution.legal_annotations.quotas import QuotaManager
        store = _store(tier="premium")
        manager = QuotaManager(store)
        manager.get_tier("user-1")
        store.get_user_tier.side_effect = Exception("db down")
        assert manager.get_tier("user-1") == "premium"

    def test_usage_failure_uses_cache(self):
        from execution.legal_annotations.quotas import QuotaManager
        store = _store(usage=4)
        manager = QuotaManager(store)
        assert manager.get_usage("user-1", "ai_query") == 4
        store.get_monthly_usage.side_effect = Exception("db down")
        assert manager.get_usage("user-1", "ai_query") == 4

    def test_record_increments_store(self):
        from execution.legal_annotations.quotas import QuotaManager
        store = _store(usage=1)
        QuotaManager(store).record_usage("user-1", "ai_query", resource_id="doc-1", metadata={"q": "x"})
        store.increment_usage.assert_called_once_with("user-1", "ai_query", "doc-1", {"q": "x"})
        store.create_billing_alert.assert_not_called()

    def test_store_increment_failure_is_logged(self):
        from execution.legal_annotations.quotas import QuotaManager
        store = _store(usage=1)
        store.increment_usage.side_effect = Exception("db down")
        QuotaManager(store).record_usage("user-1", "ai_query")

    def test_warning_alert_at_80_percent(self):
        from execution.legal_annotations.quotas import QuotaManager
        store = _store(tier="free", usage=8)
        QuotaManager(store).record_usage("user-1", "ai_query")
        store.create_billing_alert.assert_called_once_with("user-1", "usage_limit_warning", "ai_query", 80)

    def test_reached_alert_at_limit(self):
        from execution.legal_annotations.quotas import QuotaManager
        store = _store(tier="free", usage=10)
        QuotaManager(store).record_usage("user-1", "ai_query")
        store.create_billing_alert.assert_called_once_with("user-1", "usage_limit_reached", "ai_query", 100)

    def test_no_alerts_for_unlimited(self):
        from execution.legal_annotations.quotas import QuotaManager
        store = _store(tier="enterprise", usage=10_000)
        QuotaManager(store).record_usage("user-1", "ai_query")
        store.create_billing_alert.assert_not_called()

    def test_alert_failure_is_swallowed(self):
        from execution.legal_annotations.quotas import QuotaManager
        store = _store(tier="free", usage=10)
        store.create_billing_alert.side_effect = Exception("db down")
        QuotaManager(store).record_usage("user-1", "ai_query")


class TestGetQuotaManager:
    """Tests for the global accessor."""

    def test_singleton(self):
        from execution.legal_annotations.quotas import get_quota_manager
        assert get_quota_manager() is get_quota_manager()

    def test_attaches_store_later(self):
        from execution.legal_annotations.quotas import get_quota_manager
        manager = get_quota_manager()
        store = _store()
        assert get_quota_manager(store).store is store
        assert manager.store is store
