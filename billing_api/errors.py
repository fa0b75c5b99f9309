# billing_api/errors.py
"""
Error taxonomy for the billing core.

Every error raised from the services layer is a BillingError; main.py turns
it into the ``{"success": false, "error": {"message": ...}}`` envelope using
``status_code``.
"""


class BillingError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BillingError):
    """Malformed or out-of-range input."""

    status_code = 400


class AuthenticationError(BillingError):
    status_code = 401


class NotFoundError(BillingError):
    """Unknown id, or an id outside the caller's ownership scope."""

    status_code = 404


class PermissionDeniedError(BillingError):
    status_code = 403


class BillLockedError(PermissionDeniedError):
    """A paid bill was mutated by a non-privileged actor."""


class ConflictError(BillingError):
    """The request contradicts the bill's current balance (e.g. overpayment)."""

    status_code = 400


class ConcurrentUpdateError(ConflictError):
    status_code = 409


class BillNumberError(BillingError):
    """Sequential numbering could not be derived; callers fall back locally."""

    status_code = 500
