"""Stripe webhook ingestion and reconciliation tests"""
import json
from datetime import timedelta
from unittest.mock import patch

import pytest
from fastapi import status

from conftest import make_event, sign_payload
from sellify.core.config import settings
from sellify.models.base import utcnow
from sellify.models.payment import Payment, PaymentStatus
from sellify.models.submission import SubmissionPaymentStatus
from sellify.models.webhook_event import WebhookEvent, WebhookEventStatus
from sellify.services import webhook_service
from sellify.services.webhook_service import StripeEventType, record_if_new


def checkout_session(session_id="cs_test_1", payment_intent="pi_test_1", **overrides):
    session = {
        "id": session_id,
        "object": "checkout.session",
        "payment_intent": payment_intent,
        "payment_status": "paid",
        "customer_details": {"email": "ada@example.com", "name": "Ada Buyer"},
        "metadata": {"reference": "ref_test_1"},
    }
    session.update(overrides)
    return session


def payment_intent(intent_id="pi_test_1", reference="ref_test_1", **overrides):
    intent = {
        "id": intent_id,
        "object": "payment_intent",
        "metadata": {"reference": reference},
    }
    intent.update(overrides)
    return intent


@pytest.mark.critical
class TestSignatureVerification:
    """Deliveries that fail verification are rejected before anything is stored"""

    def test_tampered_signature_returns_400_and_stores_nothing(self, client, db_session, test_payment):
        event = make_event("evt_1", "checkout.session.completed", checkout_session())
        payload = json.dumps(event)
        signature = sign_payload(payload, secret="whsec_wrong_secret")

        response = client.post(
            "/api/webhooks/stripe",
            content=payload,
            headers={"Stripe-Signature": signature, "Content-Type": "application/json"},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert db_session.query(WebhookEvent).count() == 0
        db_session.refresh(test_payment)
        assert test_payment.status == PaymentStatus.PENDING.value

    def test_body_modified_after_signing_returns_400(self, client, db_session):
        event = make_event("evt_1", "checkout.session.completed", checkout_session())
        signature = sign_payload(json.dumps(event))
        event["data"]["object"]["id"] = "cs_other"

        response = client.post(
            "/api/webhooks/stripe",
            content=json.dumps(event),
            headers={"Stripe-Signature": signature, "Content-Type": "application/json"},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert db_session.query(WebhookEvent).count() == 0

    def test_missing_signature_header_returns_400(self, client, db_session):
        event = make_event("evt_1", "checkout.session.completed", checkout_session())
        response = client.post("/api/webhooks/stripe", content=json.dumps(event))

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert db_session.query(WebhookEvent).count() == 0

    def test_missing_webhook_secret_returns_400(self, send_webhook, db_session):
        event = make_event("evt_1", "checkout.session.completed", checkout_session())
        with patch.object(settings, "STRIPE_WEBHOOK_SECRET", ""):
            response = send_webhook(event, signature="t=1,v1=abc")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert db_session.query(WebhookEvent).count() == 0


@pytest.mark.critical
class TestIdempotency:
    """Redelivery of the same event id never repeats side effects"""

    def test_duplicate_delivery_is_acknowledged_without_reprocessing(self, send_webhook, db_session, test_payment):
        event = make_event("evt_1", "checkout.session.completed", checkout_session())

        first = send_webhook(event)
        assert first.status_code == status.HTTP_200_OK
        assert first.json().get("duplicate") is None

        db_session.refresh(test_payment)
        completed_at = test_payment.payment_completed_at
        assert test_payment.status == PaymentStatus.COMPLETED.value

        with patch.object(webhook_service, "reconcile_checkout_session") as reconcile:
            second = send_webhook(event)
            reconcile.assert_not_called()

        assert second.status_code == status.HTTP_200_OK
        assert second.json() == {"received": True, "duplicate": True, "event_id": "evt_1"}

        db_session.refresh(test_payment)
        assert test_payment.status == PaymentStatus.COMPLETED.value
        assert test_payment.payment_completed_at == completed_at
        assert db_session.query(WebhookEvent).count() == 1
        assert db_session.query(Payment).count() == 1

    def test_event_completion_is_recorded(self, send_webhook, db_session, test_payment, test_user):
        send_webhook(make_event("evt_1", "checkout.session.completed", checkout_session()))

        event_row = db_session.query(WebhookEvent).filter(WebhookEvent.stripe_event_id == "evt_1").one()
        assert event_row.status == WebhookEventStatus.COMPLETED.value
        assert event_row.processed_at is not None
        assert event_row.payment_id == test_payment.id
        assert event_row.user_id == test_user.id
        assert event_row.page_id == test_payment.page_id
        assert event_row.event_data["id"] == "cs_test_1"
        assert event_row.processing_result["handled"] is True

    def test_record_if_new_claims_only_once(self, db_session):
        event = make_event("evt_claim", "customer.created", {"id": "cus_1"})

        row, claimed = record_if_new(event, db_session)
        assert claimed is True
        assert row.status == WebhookEventStatus.PROCESSING.value

        again, claimed_again = record_if_new(event, db_session)
        assert claimed_again is False
        assert again.id == row.id
        assert db_session.query(WebhookEvent).count() == 1

    def test_stale_processing_event_is_reclaimed(self, db_session):
        stale = WebhookEvent(
            stripe_event_id="evt_stale",
            event_type="customer.created",
            status=WebhookEventStatus.PROCESSING.value,
            event_data={},
            updated_at=utcnow() - timedelta(seconds=settings.WEBHOOK_PROCESSING_TIMEOUT_SECONDS + 60),
        )
        db_session.add(stale)
        db_session.commit()

        row, claimed = record_if_new(make_event("evt_stale", "customer.created", {}), db_session)

        assert claimed is True
        assert row.status == WebhookEventStatus.RETRYING.value
        assert row.retry_count == 1
        assert row.last_retry_at is not None

    def test_completed_event_is_never_reclaimed(self, db_session):
        done = WebhookEvent(
            stripe_event_id="evt_done",
            event_type="customer.created",
            status=WebhookEventStatus.COMPLETED.value,
            event_data={},
            updated_at=utcnow() - timedelta(days=1),
        )
        db_session.add(done)
        db_session.commit()

        row, claimed = record_if_new(make_event("evt_done", "customer.created", {}), db_session)

        assert claimed is False
        assert row.status == WebhookEventStatus.COMPLETED.value


@pytest.mark.critical
class TestReconciliation:
    """Payment and submission state follows the events"""

    def test_checkout_completed_marks_payment_and_submission(self, send_webhook, db_session, test_payment, test_submission):
        response = send_webhook(make_event("evt_1", "checkout.session.completed", checkout_session()))
        assert response.status_code == status.HTTP_200_OK

        db_session.refresh(test_payment)
        db_session.refresh(test_submission)
        assert test_payment.status == PaymentStatus.COMPLETED.value
        assert test_payment.payment_completed_at is not None
        assert test_payment.webhook_processed is True
        assert test_payment.stripe_payment_intent_id == "pi_test_1"
        assert test_payment.customer_name == "Ada Buyer"
        assert test_submission.payment_status == SubmissionPaymentStatus.COMPLETED.value

    def test_unpaid_checkout_moves_to_processing(self, send_webhook, db_session, test_payment, test_submission):
        session = checkout_session(payment_status="unpaid")
        send_webhook(make_event("evt_1", "checkout.session.completed", session))

        db_session.refresh(test_payment)
        db_session.refresh(test_submission)
        assert test_payment.status == PaymentStatus.PROCESSING.value
        assert test_payment.payment_completed_at is None
        assert test_submission.payment_status == SubmissionPaymentStatus.PENDING.value

        send_webhook(make_event("evt_2", "checkout.session.async_payment_succeeded", session))
        db_session.refresh(test_payment)
        assert test_payment.status == PaymentStatus.COMPLETED.value

    def test_intent_succeeded_after_checkout_completed_does_not_regress(self, send_webhook, db_session, test_payment):
        send_webhook(make_event("evt_1", "checkout.session.completed", checkout_session()))
        response = send_webhook(make_event("evt_2", "payment_intent.succeeded", payment_intent()))

        assert response.status_code == status.HTTP_200_OK
        db_session.refresh(test_payment)
        assert test_payment.status == PaymentStatus.COMPLETED.value

    def test_intent_succeeded_before_checkout_completed(self, send_webhook, db_session, test_payment, test_submission):
        """Out-of-order delivery: the intent is matched through the reference in its metadata"""
        send_webhook(make_event("evt_2", "payment_intent.succeeded", payment_intent()))

        db_session.refresh(test_payment)
        assert test_payment.status == PaymentStatus.COMPLETED.value
        assert test_payment.stripe_payment_intent_id == "pi_test_1"

        response = send_webhook(make_event("evt_1", "checkout.session.completed", checkout_session()))
        assert response.status_code == status.HTTP_200_OK

        db_session.refresh(test_payment)
        db_session.refresh(test_submission)
        assert test_payment.status == PaymentStatus.COMPLETED.value
        assert test_submission.payment_status == SubmissionPaymentStatus.COMPLETED.value

    def test_payment_failed_marks_submission_failed_and_stores_error(self, send_webhook, db_session, test_payment, test_submission):
        intent = payment_intent(last_payment_error={"message": "Your card was declined."})
        send_webhook(make_event("evt_1", "payment_intent.payment_failed", intent))

        db_session.refresh(test_payment)
        db_session.refresh(test_submission)
        assert test_payment.status == PaymentStatus.FAILED.value
        assert test_payment.last_error == "Your card was declined."
        assert test_submission.payment_status == SubmissionPaymentStatus.FAILED.value

        # Redelivery and unrelated later events keep it failed
        send_webhook(make_event("evt_1", "payment_intent.payment_failed", intent))
        send_webhook(make_event("evt_3", "checkout.session.expired", checkout_session()))
        db_session.refresh(test_submission)
        assert test_submission.payment_status == SubmissionPaymentStatus.FAILED.value

    def test_late_failure_never_overrides_completion(self, send_webhook, db_session, test_payment, test_submission):
        send_webhook(make_event("evt_1", "checkout.session.completed", checkout_session()))
        send_webhook(make_event("evt_2", "payment_intent.payment_failed", payment_intent()))

        db_session.refresh(test_payment)
        db_session.refresh(test_submission)
        assert test_payment.status == PaymentStatus.COMPLETED.value
        assert test_payment.last_error is None
        assert test_submission.payment_status == SubmissionPaymentStatus.COMPLETED.value

    def test_expired_session_cancels_pending_payment(self, send_webhook, db_session, test_payment, test_submission):
        send_webhook(make_event("evt_1", "checkout.session.expired", checkout_session(payment_intent=None)))

        db_session.refresh(test_payment)
        db_session.refresh(test_submission)
        assert test_payment.status == PaymentStatus.CANCELLED.value
        assert test_submission.payment_status == SubmissionPaymentStatus.FAILED.value

    def test_full_refund_moves_completed_payment_to_refunded(self, send_webhook, db_session, test_payment):
        send_webhook(make_event("evt_1", "checkout.session.completed", checkout_session()))

        partial = {"id": "ch_1", "object": "charge", "payment_intent": "pi_test_1", "refunded": False}
        send_webhook(make_event("evt_2", "charge.refunded", partial))
        db_session.refresh(test_payment)
        assert test_payment.status == PaymentStatus.COMPLETED.value

        full = dict(partial, refunded=True)
        send_webhook(make_event("evt_3", "charge.refunded", full))
        db_session.refresh(test_payment)
        assert test_payment.status == PaymentStatus.REFUNDED.value

    def test_async_payment_failure_fails_payment_and_submission(self, send_webhook, db_session, test_payment, test_submission):
        send_webhook(make_event("evt_1", "checkout.session.completed", checkout_session(payment_status="unpaid")))
        response = send_webhook(make_event("evt_2", "checkout.session.async_payment_failed", checkout_session()))

        assert response.status_code == status.HTTP_200_OK
        db_session.refresh(test_payment)
        db_session.refresh(test_submission)
        assert test_payment.status == PaymentStatus.FAILED.value
        assert test_payment.webhook_processed is True
        assert test_submission.payment_status == SubmissionPaymentStatus.FAILED.value

    def test_late_session_event_leaves_refunded_payment_details_alone(self, send_webhook, db_session, test_payment):
        send_webhook(make_event("evt_1", "checkout.session.completed", checkout_session()))
        refund = {"id": "ch_1", "object": "charge", "payment_intent": "pi_test_1", "refunded": True}
        send_webhook(make_event("evt_2", "charge.refunded", refund))

        late = checkout_session(customer_details={"email": "someone-else@example.com", "name": "Someone Else"})
        send_webhook(make_event("evt_3", "checkout.session.async_payment_failed", late))

        db_session.refresh(test_payment)
        assert test_payment.status == PaymentStatus.REFUNDED.value
        assert test_payment.customer_email == "ada@example.com"
        assert test_payment.customer_name == "Ada Buyer"

    def test_unknown_session_does_not_create_payment(self, send_webhook, db_session, test_payment):
        response = send_webhook(make_event("evt_1", "checkout.session.completed", checkout_session(session_id="cs_unknown")))

        assert response.status_code == status.HTTP_200_OK
        assert db_session.query(Payment).count() == 1
        db_session.refresh(test_payment)
        assert test_payment.status == PaymentStatus.PENDING.value

        event_row = db_session.query(WebhookEvent).one()
        assert event_row.status == WebhookEventStatus.COMPLETED.value
        assert event_row.processing_result["matched"] is False

    def test_unknown_event_type_is_recorded_without_side_effects(self, send_webhook, db_session, test_payment):
        response = send_webhook(make_event("evt_1", "customer.created", {"id": "cus_1", "object": "customer"}))

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["handled"] is False
        event_row = db_session.query(WebhookEvent).one()
        assert event_row.status == WebhookEventStatus.COMPLETED.value
        db_session.refresh(test_payment)
        assert test_payment.status == PaymentStatus.PENDING.value


@pytest.mark.critical
class TestFailureAndRetry:
    """A handler failure rolls back, answers 500 and lets Stripe's retry finish the work"""

    def test_handler_failure_rolls_back_and_redelivery_completes(self, send_webhook, db_session, test_payment):
        event = make_event("evt_1", "checkout.session.completed", checkout_session())

        def failing_handler(session, db):
            webhook_service.reconcile_checkout_session(session, PaymentStatus.COMPLETED, db)
            raise RuntimeError("database unavailable")

        with patch.dict(
            webhook_service.EVENT_HANDLERS,
            {StripeEventType.CHECKOUT_SESSION_COMPLETED: failing_handler},
        ):
            response = send_webhook(event)

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        event_row = db_session.query(WebhookEvent).one()
        assert event_row.status == WebhookEventStatus.FAILED.value
        assert "database unavailable" in event_row.processing_error
        db_session.refresh(test_payment)
        assert test_payment.status == PaymentStatus.PENDING.value

        retry = send_webhook(event)
        assert retry.status_code == status.HTTP_200_OK
        assert retry.json().get("duplicate") is None

        db_session.refresh(event_row)
        db_session.refresh(test_payment)
        assert event_row.status == WebhookEventStatus.COMPLETED.value
        assert event_row.retry_count == 1
        assert test_payment.status == PaymentStatus.COMPLETED.value


@pytest.mark.high
class TestAccountUpdated:
    """Connected account capability flags are refreshed"""

    def test_account_updated_refreshes_user_flags(self, send_webhook, db_session, test_user):
        account = {
            "id": "acct_test123",
            "object": "account",
            "charges_enabled": True,
            "payouts_enabled": True,
            "details_submitted": True,
        }
        response = send_webhook(make_event("evt_1", "account.updated", account))

        assert response.status_code == status.HTTP_200_OK
        db_session.refresh(test_user)
        assert test_user.stripe_charges_enabled is True
        assert test_user.stripe_payouts_enabled is True
        assert test_user.stripe_details_submitted is True

        event_row = db_session.query(WebhookEvent).one()
        assert event_row.user_id == test_user.id

    def test_account_updated_for_unknown_account_is_noop(self, send_webhook, db_session, test_user):
        account = {"id": "acct_unknown", "object": "account", "charges_enabled": True}
        response = send_webhook(make_event("evt_1", "account.updated", account))

        assert response.status_code == status.HTTP_200_OK
        db_session.refresh(test_user)
        assert test_user.stripe_charges_enabled is False
