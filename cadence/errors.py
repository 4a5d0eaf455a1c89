"""
Error taxonomy for the scheduling and billing core.

Every error carries a short machine-readable ``code`` that the API layer
returns next to the human readable detail.
"""


class CadenceError(Exception):
    """Base class for all domain errors."""
    code = "error"


class RecordNotFound(CadenceError, LookupError):
    """Raised when a student or lesson id is not in the collection."""
    code = "not_found"


class InvalidInvoiceReference(CadenceError, LookupError):
    """Raised when an operation names an invoice id that does not exist."""
    code = "invalid_invoice"


class InvalidAmount(CadenceError, ValueError):
    """Raised for non-positive payments, bad line amounts and overpayments."""
    code = "invalid_amount"


class EmptyRecurrenceRule(CadenceError, ValueError):
    """Raised when a recurrence rule cannot produce any lesson dates."""
    code = "empty_recurrence_rule"


class InvalidTransition(CadenceError):
    """Raised when an invoice status change is not allowed."""
    code = "invalid_transition"


class StaleSnapshot(CadenceError):
    """Raised when a stored collection changed after it was read."""
    code = "stale_snapshot"
