"""Prometheus metrics for the application"""
from prometheus_client import Counter, REGISTRY


def _counter(name, documentation, labelnames=()):
    # Re-importing the module (tests, reloads) must not register twice
    try:
        return Counter(name, documentation, labelnames)
    except ValueError:
        return REGISTRY._names_to_collectors.get(name)


# Webhook metrics
webhook_events_counter = _counter(
    'sellify_webhook_events_total',
    'Total number of Stripe webhook deliveries by event type and outcome',
    ['event_type', 'outcome']
)

webhook_signature_failures_counter = _counter(
    'sellify_webhook_signature_failures_total',
    'Total number of webhook deliveries rejected during signature verification'
)

# Payment metrics
payment_transitions_counter = _counter(
    'sellify_payment_transitions_total',
    'Total number of applied payment status transitions',
    ['status']
)

mock_payments_counter = _counter(
    'sellify_mock_payments_total',
    'Total number of payments completed through the mock checkout path'
)

# Cleanup metrics
cleanup_runs_counter = _counter(
    'sellify_cleanup_runs_total',
    'Total number of webhook event cleanup runs',
    ['status']
)

cleanup_events_removed_counter = _counter(
    'sellify_cleanup_webhook_events_removed_total',
    'Total number of expired webhook events removed by cleanup'
)
