"""
Customer endpoints
"""

from typing import List

from fastapi import APIRouter, Depends, status

from .dependencies import get_engine, raise_http_error
from .schemas import CreateCustomerRequest, CustomerModel, LoanModel, PaymentModel
from ..engine import LendingEngine
from ..errors import LendingError


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED, response_model=CustomerModel)
async def create_customer(
    request: CreateCustomerRequest,
    engine: LendingEngine = Depends(get_engine)
):
    """Create a new customer"""
    try:
        customer = engine.create_customer(
            first_name=request.first_name,
            last_name=request.last_name,
            credit_score=request.credit_score,
        )
        return CustomerModel.from_customer(customer)
    except LendingError as e:
        raise_http_error(e)


@router.get("/{customer_id}", response_model=CustomerModel)
async def get_customer(customer_id: str, engine: LendingEngine = Depends(get_engine)):
    """Get customer by ID, with credit standing"""
    try:
        return CustomerModel.from_customer(engine.get_customer(customer_id))
    except LendingError as e:
        raise_http_error(e)


@router.get("/{customer_id}/loans", response_model=List[LoanModel])
async def get_customer_loans(customer_id: str, engine: LendingEngine = Depends(get_engine)):
    """Get all loans for a customer"""
    try:
        return [LoanModel.from_loan(loan) for loan in engine.get_customer_loans(customer_id)]
    except LendingError as e:
        raise_http_error(e)


@router.get("/{customer_id}/payments", response_model=List[PaymentModel])
async def get_customer_payments(customer_id: str, engine: LendingEngine = Depends(get_engine)):
    """Get the customer's payment history across all loans"""
    try:
        return [PaymentModel.from_payment(p) for p in engine.get_customer_payments(customer_id)]
    except LendingError as e:
        raise_http_error(e)
