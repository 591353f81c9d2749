"""
Error taxonomy for the entitlement engine.

Admission and ledger decisions come back as typed results; these exceptions
are what the optimization flow and the routes raise when a decision has to
stop the request. Routes translate them to HTTP responses.
"""


class EntitlementError(Exception):
    """Base class for entitlement, ledger and reconciliation errors."""


class AccountNotFound(EntitlementError):
    def __init__(self, account_id):
        super().__init__(f"Account {account_id} not found")
        self.account_id = account_id


class RateLimitExceeded(EntitlementError):
    """Free tier exhausted for the current period. User can wait or upgrade."""

    def __init__(self, used: int, limit: int):
        super().__init__(
            f"Free tier limit reached ({limit} optimizations/month). Please upgrade to Premium."
        )
        self.used = used
        self.limit = limit


class PromotionInvalid(EntitlementError):
    """Promotion code cannot be applied. reason is a RedemptionStatus value."""

    MESSAGES = {
        "not_found": "The promocode you entered is invalid.",
        "expired": "The promocode you entered has expired.",
        "exhausted": "The promocode you entered has reached its usage limit.",
        "already_used": "You have already used this promocode.",
    }

    def __init__(self, reason: str):
        super().__init__(self.MESSAGES.get(reason, "The promocode you entered is invalid."))
        self.reason = reason


class UnknownBillingCustomer(EntitlementError):
    """Billing event references a customer no account is linked to. Internal only."""

    def __init__(self, customer_ref):
        super().__init__(f"No account linked to billing customer {customer_ref}")
        self.customer_ref = customer_ref


class MalformedBillingEvent(EntitlementError):
    """Provider payload is missing fields required to build a billing event."""


class ConcurrencyConflict(EntitlementError):
    """Per-row compare-and-swap kept losing; the caller may retry later."""


class RewriteUpstreamFailure(EntitlementError):
    """The rewrite collaborator failed after the optimization slot was charged."""

    def __init__(self, message: str, charged: bool = True):
        super().__init__(message)
        self.charged = charged


class RecordNotFound(EntitlementError):
    pass


class RecordAccessDenied(EntitlementError):
    pass
