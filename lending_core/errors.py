"""
Error Hierarchy

Every error raised by the loan accounting engine derives from LendingError
and carries a context dict (loan id, payment id, failed precondition) that
callers can use to render a message. Nothing in the engine retries
automatically; LedgerConsistencyError is the only kind that is safe to retry
because the failed unit of work left no partial state behind. AuditTrailError
is the opposite case: the change committed and only its audit event is
missing.
"""

from typing import Any, Dict, Optional


class LendingError(Exception):
    """Base exception for all lending engine errors"""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "context": {k: str(v) for k, v in self.context.items()},
        }


class ValidationError(LendingError, ValueError):
    """Malformed input; always caller-fixable"""


class InvalidAmountError(ValidationError):
    """Payment amount is zero or negative"""


class NotFoundError(LendingError, LookupError):
    """A referenced record does not exist"""


class LoanNotFoundError(NotFoundError):
    pass


class CustomerNotFoundError(NotFoundError):
    pass


class PaymentNotFoundError(NotFoundError):
    pass


class PaymentRejectedError(LendingError):
    """The loan is in a state that cannot accept a payment"""


class LoanAlreadySettledError(PaymentRejectedError):
    pass


class LoanNotPayableError(PaymentRejectedError):
    """Loan is Reversed or Restructured"""


class PaymentNotReversibleError(LendingError):
    """Payment is missing or already reversed"""


class LedgerConsistencyError(LendingError):
    """An atomic ledger unit failed and was rolled back"""


class LoanTypeNotFoundError(NotFoundError):
    pass


class AuditTrailError(LendingError):
    """
    A ledger change committed but its audit event could not be written.

    The change is durable, so retrying the call would apply it again.
    `result` holds what the call would have returned.
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        result: Any = None
    ):
        super().__init__(message, context)
        self.result = result
