"""
Error taxonomy.

Every failure a coach can see maps to one of these exceptions. Each carries
a short, non-technical ``user_message`` that is safe to show; the raw
exception text is only exposed in development mode.
"""

from typing import Optional


class PepAIError(Exception):
    """Base class for all domain errors"""

    status_code = 500
    user_message = "Something went wrong. Try again."

    def __init__(self, message: Optional[str] = None, *, user_message: Optional[str] = None):
        super().__init__(message or user_message or self.user_message)
        if user_message:
            self.user_message = user_message


class ConfigurationError(PepAIError):
    """A required server setting (API key, store URL) is missing"""
    status_code = 503
    user_message = "The server is not configured for this action yet."


class PromptValidationError(PepAIError):
    """Empty or oversized prompt - rejected immediately, never retried"""
    status_code = 400
    user_message = "Missing or empty prompt."


class InvalidDrillError(PepAIError):
    """A drill or session sent by the client is not usable"""
    status_code = 400
    user_message = "Invalid drill."


class HighDemandError(PepAIError):
    """The model provider stayed overloaded for every retry attempt"""
    status_code = 502
    user_message = (
        "Pep is currently overwhelmed with tactical requests (High Demand). "
        "Please try again in a moment."
    )


class MalformedResponseError(PepAIError):
    """The model returned text that is not a usable drill"""
    status_code = 502
    user_message = "Could not parse the generated drill. Try again."


class UpstreamError(PepAIError):
    """Any other model provider failure"""
    status_code = 502
    user_message = "Something went wrong while generating the drill."


class BillingError(PepAIError):
    """Base for errors that redirect the coach instead of failing"""
    status_code = 402
    redirect = "/pricing"


class NotAuthenticatedError(BillingError):
    status_code = 401
    redirect = "/login"
    user_message = "Log in to continue."


class InsufficientBalanceError(BillingError):
    user_message = "Not enough credits for this action. Top up to continue."

    def __init__(self, currency: str, balance: int, cost: int):
        super().__init__(f"{currency} balance {balance} is below cost {cost}")
        self.currency = currency
        self.balance = balance
        self.cost = cost


class CapabilityError(BillingError):
    status_code = 403
    user_message = "Upgrade your plan to unlock this feature."

    def __init__(self, capability: str):
        super().__init__(f"Missing capability: {capability}")
        self.capability = capability


class PersistenceError(PepAIError):
    """Document store read/write failure - local data is kept"""
    status_code = 503
    user_message = "Could not reach your drill library. Your work is kept locally, try again shortly."


class NotFoundError(PepAIError):
    status_code = 404
    user_message = "Not found."


def public_message(exc: BaseException, dev_mode: bool = False) -> str:
    """Message to show a coach for ``exc``"""
    if dev_mode:
        return str(exc) or exc.__class__.__name__
    if isinstance(exc, PepAIError):
        return exc.user_message
    return PepAIError.user_message
