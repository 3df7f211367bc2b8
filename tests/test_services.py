"""Unit tests for service helpers, cleanup and app wiring"""
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from fastapi import status

from sellify.core.config import Settings, validate_environment
from sellify.models.base import utcnow
from sellify.models.checkout_page import CheckoutPage
from sellify.models.payment import Payment, PaymentStatus
from sellify.models.webhook_event import WebhookEvent
from sellify.services.payment_service import apply_payment_status
from sellify.services.stripe_service import calculate_checkout_amounts, get_stripe_value, to_minor_units
from sellify.services.webhook_event_service import purge_expired_events
from sellify.tasks import cleanup
from sellify.utils.slug import slugify


@pytest.mark.high
class TestAmounts:
    """Price conversion and platform fee"""

    def test_to_minor_units_rounds_half_up(self):
        assert to_minor_units("19.99") == 1999
        assert to_minor_units(Decimal("0.005")) == 1
        assert to_minor_units(10) == 1000

    def test_checkout_amounts_include_bumps(self):
        page = CheckoutPage(
            price=Decimal("19.99"),
            order_bumps=[{"title": "A", "price": "5.00"}, {"title": "B", "price": "0.01", "recurring": True}],
        )
        assert calculate_checkout_amounts(page) == {
            "base_amount": 1999,
            "total_amount": 2500,
            "application_fee_amount": 125,
        }

    def test_get_stripe_value(self):
        assert get_stripe_value({"a": None}, "a", "x") == "x"
        assert get_stripe_value(None, "a", 1) == 1
        assert get_stripe_value({"refunded": False}, "refunded", True) is False


@pytest.mark.critical
class TestPaymentTransitions:
    """Status only moves forward"""

    @pytest.mark.parametrize("current,target,allowed", [
        (PaymentStatus.PENDING, PaymentStatus.COMPLETED, True),
        (PaymentStatus.PROCESSING, PaymentStatus.FAILED, True),
        (PaymentStatus.FAILED, PaymentStatus.COMPLETED, True),
        (PaymentStatus.COMPLETED, PaymentStatus.REFUNDED, True),
        (PaymentStatus.COMPLETED, PaymentStatus.FAILED, False),
        (PaymentStatus.COMPLETED, PaymentStatus.PENDING, False),
        (PaymentStatus.CANCELLED, PaymentStatus.COMPLETED, False),
        (PaymentStatus.REFUNDED, PaymentStatus.COMPLETED, False),
    ])
    def test_transition_map(self, current, target, allowed):
        assert Payment(status=current.value).can_transition_to(target) is allowed

    def test_apply_sets_completion_fields(self, db_session, test_payment):
        assert apply_payment_status(test_payment, PaymentStatus.COMPLETED, db_session) is True

        assert test_payment.payment_completed_at is not None
        assert test_payment.webhook_processed is True
        assert test_payment.submission.payment_status == "completed"

    def test_apply_same_status_is_noop(self, db_session, test_payment):
        assert apply_payment_status(test_payment, PaymentStatus.PENDING, db_session) is False


@pytest.mark.high
class TestSlugify:
    def test_slugify(self):
        assert slugify("  My Great Course! ") == "my-great-course"
        assert slugify("a__b--c") == "a-b-c"
        assert slugify("!!!") == "page"


@pytest.mark.high
class TestCleanup:
    """Retention of webhook events"""

    def _event(self, event_id, age_days):
        return WebhookEvent(
            stripe_event_id=event_id,
            event_type="checkout.session.completed",
            event_data={},
            created_at=utcnow() - timedelta(days=age_days),
        )

    def test_purge_expired_events(self, db_session):
        db_session.add_all([self._event("evt_old", 120), self._event("evt_new", 1)])
        db_session.commit()

        assert purge_expired_events(db_session, retention_days=90) == 1
        assert [e.stripe_event_id for e in db_session.query(WebhookEvent).all()] == ["evt_new"]

    def test_run_cleanup_uses_retention_setting(self, db_session):
        db_session.add(self._event("evt_old", 120))
        db_session.commit()

        with patch.object(cleanup, "SessionLocal", return_value=db_session):
            assert cleanup.run_cleanup() == 1


@pytest.mark.high
class TestEnvironmentValidation:
    def test_production_requires_stripe_settings(self):
        with pytest.raises(RuntimeError):
            validate_environment(Settings(ENVIRONMENT="production", STRIPE_SECRET_KEY="", STRIPE_PUBLISHABLE_KEY=""))

    def test_development_only_warns(self):
        validate_environment(Settings(ENVIRONMENT="development", STRIPE_SECRET_KEY=""))

    def test_rejects_malformed_secret_key(self):
        with pytest.raises(ValueError):
            Settings(STRIPE_SECRET_KEY="pk_wrong")


@pytest.mark.high
class TestAppEndpoints:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"status": "healthy"}

    def test_metrics(self, client):
        response = client.get("/metrics")
        assert response.status_code == status.HTTP_200_OK
        assert "sellify_webhook_events_total" in response.text
