"""
Billing gate for paid actions.

An AI action (generate, refine, voice session) costs either
AI_ACTION_CREDIT_COST credits or AI_ACTION_POINT_COST pep points, at the
coach's choice. Saving to history and exporting need the ``can_save`` /
``can_export`` capability flags granted by a plan.

The balance check and the deduction are two separate store calls, so two
concurrent requests from the same user can both pass the check.
"""

import logging
from enum import Enum
from typing import Optional

from .errors import CapabilityError, InsufficientBalanceError, NotAuthenticatedError
from .schema import BillingProfile
from .store import DrillStore

logger = logging.getLogger(__name__)


AI_ACTION_CREDIT_COST = 5
AI_ACTION_POINT_COST = 1


class Currency(str, Enum):
    CREDITS = "credits"
    PEP_POINTS = "pepPoints"


class Capability(str, Enum):
    SAVE = "can_save"
    EXPORT = "can_export"


COSTS = {
    Currency.CREDITS: AI_ACTION_CREDIT_COST,
    Currency.PEP_POINTS: AI_ACTION_POINT_COST,
}


def balance_of(profile: BillingProfile, currency: Currency) -> int:
    return profile.credits if currency == Currency.CREDITS else profile.pep_points


def can_afford(profile: BillingProfile, currency: Currency) -> bool:
    return balance_of(profile, currency) >= COSTS[currency]


class BillingGate:
    """Checks and charges billing profiles held in a DrillStore"""

    def __init__(self, store: DrillStore):
        self.store = store

    @staticmethod
    def require_user(user_id: Optional[str]) -> str:
        if not user_id:
            raise NotAuthenticatedError("No user id on request")
        return user_id

    def check_and_deduct(self, user_id: Optional[str], currency: Currency = Currency.CREDITS) -> BillingProfile:
        """
        Charge one AI action, returning the updated profile.

        Raises:
            NotAuthenticatedError: no user
            InsufficientBalanceError: balance below the action cost
        """
        user_id = self.require_user(user_id)
        currency = Currency(currency)
        profile = self.store.get_profile(user_id)
        cost = COSTS[currency]
        balance = balance_of(profile, currency)

        if balance < cost:
            logger.info("User %s cannot afford action: %s=%d, cost %d", user_id, currency.value, balance, cost)
            raise InsufficientBalanceError(currency.value, balance, cost)

        if currency == Currency.CREDITS:
            profile.credits = balance - cost
            self.store.update_profile(user_id, {"credits": profile.credits})
        else:
            profile.pep_points = balance - cost
            self.store.update_profile(user_id, {"pep_points": profile.pep_points})

        logger.info("Charged user %s %d %s", user_id, cost, currency.value)
        return profile

    def require_capability(self, user_id: Optional[str], capability: Capability) -> BillingProfile:
        user_id = self.require_user(user_id)
        capability = Capability(capability)
        profile = self.store.get_profile(user_id)
        if not getattr(profile, capability.value):
            raise CapabilityError(capability.value)
        return profile
