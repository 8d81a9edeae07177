"""
Grant handlers run when the payment provider writes subscription or payment
rows. They translate product metadata into balance and capability updates
on the user's billing profile.

Product metadata may sit under ``metadata`` or in flattened
``stripe_metadata_<key>`` columns depending on how the catalogue was synced;
both are read.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .store import DrillStore, product_id_of

logger = logging.getLogger(__name__)


ACTIVE_SUBSCRIPTION_STATUSES = ("active", "trialing")
PAYMENT_SUCCEEDED = "succeeded"


@dataclass
class Grant:
    """What a handler applied to the user's profile"""
    type: str
    amount: int

    def to_dict(self) -> dict:
        return {"success": True, "type": self.type, "amount": self.amount}


def metadata_value(record: Optional[Dict[str, Any]], key: str) -> Optional[Any]:
    if not record:
        return None
    metadata = record.get("metadata") or {}
    value = metadata.get(key)
    if value in (None, ""):
        value = record.get(f"stripe_metadata_{key}")
    return None if value in (None, "") else value


def metadata_int(record: Optional[Dict[str, Any]], key: str) -> int:
    value = metadata_value(record, key)
    try:
        return int(value) if value is not None else 0
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric %s metadata: %r", key, value)
        return 0


def metadata_flag(record: Optional[Dict[str, Any]], key: str) -> bool:
    value = metadata_value(record, key)
    return value is True or value == "true"


def handle_subscription_change(store: DrillStore, user_id: str, subscription_id: str,
                               subscription: Optional[Dict[str, Any]]) -> Optional[Grant]:
    """Set credits and plan flags from the subscribed product"""
    if not subscription:
        logger.info("No data for subscription %s. Skipping.", subscription_id)
        return None

    status = subscription.get("status")
    logger.info("Subscription change for user %s, sub %s. Status: %s", user_id, subscription_id, status)
    if status not in ACTIVE_SUBSCRIPTION_STATUSES:
        logger.info("Subscription %s is not active (%s). Skipping credit grant.", subscription_id, status)
        return None

    product_id = product_id_of(subscription)
    if not product_id:
        logger.error("Could not find product id in subscription data. Keys: %s", sorted(subscription))
        return None

    product = store.get_product(product_id)
    if product is None:
        logger.error("Product data for %s not found.", product_id)
        return None

    credits = metadata_int(product, "credits")
    pep_points = metadata_int(product, "pepPoints")
    tier = metadata_value(product, "tier") or "free"
    logger.info("Metadata found: credits=%d, pepPoints=%d, tier=%s", credits, pep_points, tier)

    if credits == 0 and pep_points == 0:
        logger.info("No credits or pepPoints defined for product %s. Skipping.", product_id)
        return None

    update = {
        "credits": credits,
        "can_save": metadata_flag(product, "can_save"),
        "can_export": metadata_flag(product, "can_export"),
        "tier": tier,
    }
    if pep_points > 0:
        update["pep_points"] = store.get_profile(user_id).pep_points + pep_points

    logger.info("Granting %d credits and %d pepPoints to user %s", credits, pep_points, user_id)
    store.update_profile(user_id, update)
    return Grant("subscription", credits)


def handle_payment_success(store: DrillStore, user_id: str, payment_id: str,
                           payment: Optional[Dict[str, Any]]) -> Optional[Grant]:
    """
    Apply a succeeded payment.

    Checked in order, the first positive amount wins:
      1. pepPoints in the payment metadata (added)
      2. credits in the payment metadata (set)
      3. pepPoints in the purchased product's metadata (added)
      4. credits of the user's active subscription product (refill)
    """
    status = payment.get("status") if payment else None
    if status != PAYMENT_SUCCEEDED:
        logger.info("Payment %s status is %s. Skipping.", payment_id, status)
        return None

    points = metadata_int(payment, "pepPoints")
    if points > 0:
        store.add_pep_points(user_id, points)
        logger.info("Added %d Pep Points to user %s from payment metadata", points, user_id)
        return Grant("pepPoints", points)

    credits = metadata_int(payment, "credits")
    if credits > 0:
        store.update_profile(user_id, {"credits": credits})
        logger.info("Refilled %d credits for user %s from payment metadata", credits, user_id)
        return Grant("credits", credits)

    product_id = product_id_of(payment)
    if product_id:
        points = metadata_int(store.get_product(product_id), "pepPoints")
        if points > 0:
            store.add_pep_points(user_id, points)
            logger.info("Added %d Pep Points to user %s from product metadata", points, user_id)
            return Grant("pepPoints", points)

    subscription = store.get_active_subscription(user_id)
    if subscription is None:
        logger.info("No active subscription found for user %s during payment processing.", user_id)
        return None

    sub_product_id = product_id_of(subscription)
    if not sub_product_id:
        logger.error("Could not find product id in subscription data.")
        return None

    product = store.get_product(sub_product_id)
    if product is None:
        logger.error("Product %s not found.", sub_product_id)
        return None

    credits = metadata_int(product, "credits")
    if credits > 0:
        store.update_profile(user_id, {"credits": credits})
        logger.info("Refilled %d credits for user %s", credits, user_id)
        return Grant("credits", credits)
    return None
