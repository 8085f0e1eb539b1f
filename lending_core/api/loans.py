"""
Loan endpoints
"""

from typing import List

from fastapi import APIRouter, Depends, status

from .dependencies import get_engine, raise_http_error
from .schemas import (
    CreateLoanRequest, CreateLoanTypeRequest, LoanModel, LoanTermsModel, LoanTermsRequest,
    LoanTypeModel, PaymentModel, ScheduleEntryModel, UpdateLoanStatusRequest,
)
from ..engine import LendingEngine
from ..errors import LendingError, ValidationError
from ..loans import LoanStatus


router = APIRouter()


@router.post("/terms", response_model=LoanTermsModel)
async def compute_loan_terms(
    request: LoanTermsRequest,
    engine: LendingEngine = Depends(get_engine)
):
    """Compute interest, total obligation and maturity date without booking"""
    try:
        terms = engine.originate_loan(
            principal=request.principal,
            rate_percent=request.rate_percent,
            release_date=request.release_date,
            term_days=request.term_days,
        )
        return LoanTermsModel.from_terms(terms)
    except LendingError as e:
        raise_http_error(e)


@router.post("", status_code=status.HTTP_201_CREATED, response_model=LoanModel)
async def book_loan(
    request: CreateLoanRequest,
    engine: LendingEngine = Depends(get_engine)
):
    """Book a new loan for an existing customer"""
    try:
        loan = engine.book_loan(
            customer_id=request.customer_id,
            principal=request.principal,
            rate_percent=request.rate_percent,
            release_date=request.release_date,
            term_days=request.term_days,
            collector_id=request.collector_id,
            loan_category=request.loan_category,
            created_by=request.created_by,
            loan_type_id=request.loan_type_id,
        )
        return LoanModel.from_loan(loan)
    except LendingError as e:
        raise_http_error(e)


@router.get("", response_model=List[LoanModel])
async def list_loans(engine: LendingEngine = Depends(get_engine)):
    """List all loans"""
    return [LoanModel.from_loan(loan) for loan in engine.get_all_loans()]


@router.post("/types", status_code=status.HTTP_201_CREATED, response_model=LoanTypeModel)
async def create_loan_type(
    request: CreateLoanTypeRequest,
    engine: LendingEngine = Depends(get_engine)
):
    """Add a loan type to the catalog"""
    try:
        loan_type = engine.create_loan_type(
            type_name=request.type_name,
            interest_rate=request.interest_rate,
            term_days=request.term_days,
            term_months=request.term_months,
            description=request.description,
            created_by=request.created_by,
        )
        return LoanTypeModel.from_loan_type(loan_type)
    except LendingError as e:
        raise_http_error(e)


@router.get("/types", response_model=List[LoanTypeModel])
async def list_loan_types(engine: LendingEngine = Depends(get_engine)):
    """List active loan types, shortest term first"""
    return [LoanTypeModel.from_loan_type(t) for t in engine.get_loan_types()]


@router.get("/{loan_id}", response_model=LoanModel)
async def get_loan(loan_id: str, engine: LendingEngine = Depends(get_engine)):
    """Get loan details"""
    try:
        return LoanModel.from_loan(engine.get_loan(loan_id))
    except LendingError as e:
        raise_http_error(e)


@router.get("/{loan_id}/schedule", response_model=List[ScheduleEntryModel])
async def get_loan_schedule(loan_id: str, engine: LendingEngine = Depends(get_engine)):
    """Get the loan's amortization schedule"""
    try:
        return [
            ScheduleEntryModel.from_entry(entry)
            for entry in engine.get_amortization_schedule(loan_id)
        ]
    except LendingError as e:
        raise_http_error(e)


@router.get("/{loan_id}/payments", response_model=List[PaymentModel])
async def get_loan_payments(loan_id: str, engine: LendingEngine = Depends(get_engine)):
    """Get every payment recorded against the loan, reversed ones included"""
    try:
        return [PaymentModel.from_payment(p) for p in engine.get_loan_payments(loan_id)]
    except LendingError as e:
        raise_http_error(e)


@router.put("/{loan_id}/status", response_model=LoanModel)
async def update_loan_status(
    loan_id: str,
    request: UpdateLoanStatusRequest,
    engine: LendingEngine = Depends(get_engine)
):
    """Mark a loan Reversed or Restructured"""
    try:
        try:
            new_status = LoanStatus(request.status)
        except ValueError:
            raise ValidationError(f"Unknown loan status: {request.status}")
        loan = engine.update_loan_status(loan_id, new_status, request.changed_by)
        return LoanModel.from_loan(loan)
    except LendingError as e:
        raise_http_error(e)
