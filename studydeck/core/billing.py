"""
Subscription billing through Stripe hosted checkout.

Creates checkout sessions tagged with the user id and applies signed
webhook events to profile subscription state.
"""

import json
import logging
from typing import Any, Dict, Optional

import stripe

from .errors import BillingNotConfigured, SignatureInvalid
from studydeck.config.loader import BillingSettings
from studydeck.storage.models import Plan
from studydeck.storage.repository import StudyRepository

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"


def create_checkout_session(user_id: str, settings: BillingSettings) -> str:
    """Create a subscription checkout session and return its redirect URL.

    The user id is stored in the session metadata so the completion webhook
    can be matched back to the profile.
    """
    if settings.secret_key:
        stripe.api_key = settings.secret_key

    session = stripe.checkout.Session.create(
        mode="subscription",
        line_items=[{"price": settings.price_id, "quantity": 1}],
        success_url=f"{settings.app_url}/payment/success",
        cancel_url=f"{settings.app_url}/payment/cancel",
        metadata={"userId": user_id},
    )
    logger.info("Created checkout session %s for %s", session.id, user_id)
    return session.url


def verify_webhook(payload: bytes, signature: Optional[str], secret: str) -> Dict[str, Any]:
    """Verify a webhook signature and return the event as a plain dict.

    Raises:
        BillingNotConfigured: If no webhook secret is configured
        SignatureInvalid: If the signature header is missing or does not match
    """
    if not secret:
        raise BillingNotConfigured("Stripe is not configured")
    if not signature:
        raise SignatureInvalid("No signature")

    try:
        stripe.Webhook.construct_event(payload, signature, secret)
    except (stripe.SignatureVerificationError, ValueError) as e:
        logger.warning("Webhook signature verification failed: %s", e)
        raise SignatureInvalid("Invalid signature") from e

    return json.loads(payload)


def apply_billing_event(event: Dict[str, Any], repository: StudyRepository) -> bool:
    """Apply a verified billing event to profile subscription state.

    Args:
        event: Event with "type" and "data.object"
        repository: Store holding the profiles

    Returns:
        True if the event kind is recognized, False if it was ignored
    """
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}

    if event_type == CHECKOUT_COMPLETED:
        user_id = (obj.get("metadata") or {}).get("userId")
        if user_id:
            repository.set_subscription(user_id, Plan.PRO, obj.get("subscription"))
            logger.info("Subscription %s started for %s", obj.get("subscription"), user_id)
        return True

    if event_type == SUBSCRIPTION_UPDATED:
        profile = repository.find_profile_by_subscription(obj.get("id"))
        if profile:
            plan = Plan.PRO if obj.get("status") == "active" else Plan.CANCELLED
            repository.set_plan(profile.id, plan)
        return True

    if event_type == SUBSCRIPTION_DELETED:
        profile = repository.find_profile_by_subscription(obj.get("id"))
        if profile:
            repository.set_subscription(profile.id, Plan.CANCELLED, None)
        return True

    logger.info("Unhandled event type: %s", event_type)
    return False
