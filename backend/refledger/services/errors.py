"""
Ledger error taxonomy.

Every failure a service can surface to its caller is a ``LedgerError``
subclass. ``code`` is the stable machine-readable name returned by the API,
``status_code`` the HTTP status the API maps it to.
"""


class LedgerError(Exception):
    code = "ledger_error"
    status_code = 400

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or (self.__class__.__doc__ or self.code).strip()


class DuplicateIdentity(LedgerError):
    """Platform identity is already registered."""

    code = "duplicate_identity"
    status_code = 409


class UnknownReferralCode(LedgerError):
    """Referral code does not match any user."""

    code = "unknown_referral_code"
    status_code = 404


class CodeAllocationExhausted(LedgerError):
    """Unable to allocate a unique code."""

    code = "code_allocation_exhausted"
    status_code = 503


class LinkNotFound(LedgerError):
    """Referral link not found."""

    code = "link_not_found"
    status_code = 404


class LinkInactiveOrUnknown(LedgerError):
    """Invite code is inactive or unknown."""

    code = "link_inactive_or_unknown"
    status_code = 404


class InvalidAmount(LedgerError):
    """Amount must be greater than zero."""

    code = "invalid_amount"
    status_code = 400


class InsufficientUnpaidBalance(LedgerError):
    """Amount exceeds the unpaid reward balance."""

    code = "insufficient_unpaid_balance"
    status_code = 409


class NotFound(LedgerError):
    """Record not found."""

    code = "not_found"
    status_code = 404


class Unauthorized(LedgerError):
    """Acting admin lacks the required role."""

    code = "unauthorized"
    status_code = 403


class ReferralCycle(LedgerError):
    """Referrer assignment would create a referral cycle."""

    code = "referral_cycle"
    status_code = 409


class ReferrerAlreadySet(LedgerError):
    """Referrer is already assigned and cannot be changed."""

    code = "referrer_already_set"
    status_code = 409


class StorageUnavailable(LedgerError):
    """Storage is unavailable."""

    code = "storage_unavailable"
    status_code = 503


class InvalidRequest(LedgerError):
    """Request is missing a required value."""

    code = "invalid_request"
    status_code = 400
