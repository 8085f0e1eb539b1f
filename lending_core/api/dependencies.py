"""
Engine dependency and error translation shared by the routers
"""

from typing import NoReturn, Optional

from fastapi import HTTPException

from ..engine import LendingEngine
from ..errors import (
    LendingError, ValidationError, NotFoundError, PaymentRejectedError,
    PaymentNotReversibleError, LedgerConsistencyError, AuditTrailError,
)


_engine: Optional[LendingEngine] = None


def get_engine() -> LendingEngine:
    """Dependency returning the process-wide engine, built on first use"""
    global _engine
    if _engine is None:
        _engine = LendingEngine()
    return _engine


def set_engine(engine: Optional[LendingEngine]) -> None:
    """Replace the process-wide engine (used by tests and embedding apps)"""
    global _engine
    _engine = engine


def raise_http_error(error: LendingError) -> NoReturn:
    """Translate a ledger error into the matching HTTP error"""
    if isinstance(error, NotFoundError):
        code = 404
    elif isinstance(error, ValidationError):
        code = 422
    elif isinstance(error, (PaymentRejectedError, PaymentNotReversibleError)):
        code = 409
    elif isinstance(error, LedgerConsistencyError):
        code = 503
    elif isinstance(error, AuditTrailError):
        code = 500
    else:
        code = 400
    raise HTTPException(status_code=code, detail=error.to_dict()) from error
