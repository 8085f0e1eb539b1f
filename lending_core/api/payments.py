"""
Payment endpoints
"""

from fastapi import APIRouter, Depends, status

from .dependencies import get_engine, raise_http_error
from .schemas import (
    ApplyPaymentRequest, BulkFailureModel, BulkPaymentRequest, BulkPaymentResultModel,
    LoanModel, PaymentModel, PaymentResultModel, ReversePaymentRequest,
)
from ..engine import LendingEngine
from ..errors import LendingError
from ..payments import PaymentRequest


router = APIRouter()


def _to_payment_request(request: ApplyPaymentRequest) -> PaymentRequest:
    return PaymentRequest(
        loan_id=request.loan_id,
        amount=request.amount,
        payment_date=request.payment_date,
        method=request.payment_method,
        reference=request.reference_number,
        collector_id=request.collector_id,
        collected_by=request.collected_by,
        idempotency_key=request.idempotency_key,
    )


@router.post("", status_code=status.HTTP_201_CREATED, response_model=PaymentResultModel)
async def apply_payment(
    request: ApplyPaymentRequest,
    engine: LendingEngine = Depends(get_engine)
):
    """Apply a payment to a loan"""
    try:
        result = engine.apply_payment(**vars(_to_payment_request(request)))
        return PaymentResultModel(
            payment=PaymentModel.from_payment(result.payment),
            loan=LoanModel.from_loan(result.loan),
        )
    except LendingError as e:
        raise_http_error(e)


@router.post("/bulk", response_model=BulkPaymentResultModel)
async def apply_bulk_payments(
    request: BulkPaymentRequest,
    engine: LendingEngine = Depends(get_engine)
):
    """Apply a batch of payments; each succeeds or fails on its own"""
    result = engine.apply_bulk_payments(_to_payment_request(p) for p in request.payments)
    return BulkPaymentResultModel(
        successful=[PaymentModel.from_payment(p) for p in result.successful],
        failed=[
            BulkFailureModel(
                loan_id=failure["data"].loan_id,
                error=failure["error"],
                error_type=failure["error_type"],
            )
            for failure in result.failed
        ],
    )


@router.get("/{payment_id}", response_model=PaymentModel)
async def get_payment(payment_id: str, engine: LendingEngine = Depends(get_engine)):
    """Get payment details"""
    try:
        return PaymentModel.from_payment(engine.get_payment(payment_id))
    except LendingError as e:
        raise_http_error(e)


@router.post("/{payment_id}/reverse", response_model=PaymentModel)
async def reverse_payment(
    payment_id: str,
    request: ReversePaymentRequest,
    engine: LendingEngine = Depends(get_engine)
):
    """Reverse a payment recorded in error"""
    try:
        payment = engine.reverse_payment(payment_id, request.reason, request.reversed_by)
        return PaymentModel.from_payment(payment)
    except LendingError as e:
        raise_http_error(e)
