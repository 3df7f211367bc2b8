"""Process-wide Stripe client.

The client is created once at startup by ``init_stripe_client`` and handed
out by ``get_stripe_client``. Request handlers never build their own.
"""
import logging
from typing import Optional

import stripe

from sellify.core.config import settings

logger = logging.getLogger(__name__)

_client: Optional[stripe.StripeClient] = None


def init_stripe_client(api_key: Optional[str] = None) -> Optional[stripe.StripeClient]:
    """Create the shared StripeClient. Returns None when no secret key is configured."""
    global _client
    api_key = api_key if api_key is not None else settings.STRIPE_SECRET_KEY
    if not api_key:
        logger.warning("STRIPE_SECRET_KEY not set, Stripe API calls are disabled")
        _client = None
        return None

    _client = stripe.StripeClient(api_key)
    logger.info("Stripe client initialized")
    return _client


def get_stripe_client() -> stripe.StripeClient:
    """Return the shared client or raise if Stripe was never configured"""
    if _client is None:
        raise ValueError("Stripe is not configured")
    return _client


def reset_stripe_client() -> None:
    global _client
    _client = None
