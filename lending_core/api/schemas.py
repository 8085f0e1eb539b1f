"""
Pydantic schemas for API requests and responses
"""

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field

from ..customers import Customer
from ..loans import AmortizationScheduleEntry, Loan, LoanTerms, LoanType
from ..payments import Payment
from ..portfolio import (
    DailyCollectionReport, OverdueLoan, PaymentSummary, PortfolioSummary,
)


def _money(value) -> Optional[str]:
    return None if value is None else str(value)


# Customer schemas
class CreateCustomerRequest(BaseModel):
    first_name: str
    last_name: str
    credit_score: Optional[int] = None


class CustomerModel(BaseModel):
    id: str
    customer_code: str
    first_name: str
    last_name: str
    credit_score: int
    late_payment_count: int
    late_payment_points: int

    @classmethod
    def from_customer(cls, customer: Customer) -> 'CustomerModel':
        return cls(
            id=customer.id,
            customer_code=customer.customer_code,
            first_name=customer.first_name,
            last_name=customer.last_name,
            credit_score=customer.credit_score,
            late_payment_count=customer.late_payment_count,
            late_payment_points=customer.late_payment_points,
        )


# Loan schemas
class LoanTermsRequest(BaseModel):
    principal: str = Field(..., description="Decimal amount as string")
    rate_percent: str = Field(..., description="Flat interest rate in percent")
    release_date: date
    term_days: int = Field(..., description="Term in business days (Sundays excluded)")


class CreateLoanRequest(BaseModel):
    customer_id: str
    principal: str = Field(..., description="Decimal amount as string")
    release_date: date
    rate_percent: Optional[str] = Field(None, description="Defaults to the loan type's rate")
    term_days: Optional[int] = Field(None, description="Defaults to the loan type's term")
    loan_type_id: Optional[str] = None
    collector_id: Optional[str] = None
    loan_category: Optional[str] = None
    created_by: Optional[str] = None


class CreateLoanTypeRequest(BaseModel):
    type_name: str
    interest_rate: str = Field(..., description="Flat interest rate in percent")
    term_days: int
    term_months: int = 1
    description: Optional[str] = None
    created_by: Optional[str] = None


class LoanTypeModel(BaseModel):
    id: str
    type_name: str
    interest_rate: str
    term_days: int
    term_months: int
    description: Optional[str] = None
    status: str

    @classmethod
    def from_loan_type(cls, loan_type: LoanType) -> 'LoanTypeModel':
        return cls(
            id=loan_type.id,
            type_name=loan_type.type_name,
            interest_rate=str(loan_type.interest_rate),
            term_days=loan_type.term_days,
            term_months=loan_type.term_months,
            description=loan_type.description,
            status=loan_type.status.value,
        )


class UpdateLoanStatusRequest(BaseModel):
    status: str = Field(..., description="Reversed or Restructured")
    changed_by: Optional[str] = None


class LoanTermsModel(BaseModel):
    interest_amount: str
    total_amortization: str
    maturity_date: date

    @classmethod
    def from_terms(cls, terms: LoanTerms) -> 'LoanTermsModel':
        return cls(
            interest_amount=str(terms.interest_amount),
            total_amortization=str(terms.total_amortization),
            maturity_date=terms.maturity_date,
        )


class LoanModel(BaseModel):
    id: str
    loan_code: str
    customer_id: str
    principal_amount: str
    interest_rate: str
    interest_amount: str
    total_amortization: str
    current_balance: str
    term_days: int
    release_date: date
    maturity_date: date
    status: str
    collector_id: Optional[str] = None
    loan_category: Optional[str] = None
    loan_type_id: Optional[str] = None

    @classmethod
    def from_loan(cls, loan: Loan) -> 'LoanModel':
        return cls(
            id=loan.id,
            loan_code=loan.loan_code,
            customer_id=loan.customer_id,
            principal_amount=str(loan.principal_amount),
            interest_rate=str(loan.interest_rate),
            interest_amount=str(loan.interest_amount),
            total_amortization=str(loan.total_amortization),
            current_balance=str(loan.current_balance),
            term_days=loan.term_days,
            release_date=loan.release_date,
            maturity_date=loan.maturity_date,
            status=loan.status.value,
            collector_id=loan.collector_id,
            loan_category=loan.loan_category,
            loan_type_id=loan.loan_type_id,
        )


class ScheduleEntryModel(BaseModel):
    payment_number: int
    due_date: date
    principal_amount: str
    interest_amount: str
    total_payment: str
    remaining_balance: str
    payment_status: str
    actual_payment_date: Optional[date] = None
    actual_amount_paid: Optional[str] = None

    @classmethod
    def from_entry(cls, entry: AmortizationScheduleEntry) -> 'ScheduleEntryModel':
        return cls(
            payment_number=entry.payment_number,
            due_date=entry.due_date,
            principal_amount=str(entry.principal_amount),
            interest_amount=str(entry.interest_amount),
            total_payment=str(entry.total_payment),
            remaining_balance=str(entry.remaining_balance),
            payment_status=entry.payment_status.value,
            actual_payment_date=entry.actual_payment_date,
            actual_amount_paid=_money(entry.actual_amount_paid),
        )


# Payment schemas
class ApplyPaymentRequest(BaseModel):
    loan_id: str
    amount: str = Field(..., description="Decimal amount as string")
    payment_date: date
    payment_method: Optional[str] = Field(None, description="Cash, Check or Bank Transfer")
    reference_number: Optional[str] = None
    collector_id: Optional[str] = None
    collected_by: Optional[str] = None
    idempotency_key: Optional[str] = None


class BulkPaymentRequest(BaseModel):
    payments: List[ApplyPaymentRequest]


class ReversePaymentRequest(BaseModel):
    reason: str
    reversed_by: str


class PaymentModel(BaseModel):
    id: str
    payment_id: str
    loan_id: str
    customer_id: str
    payment_amount: str
    payment_date: date
    new_balance: str
    days_late: int
    late_payment_fee: str
    is_late_payment: bool
    payment_method: str
    excess_amount: str
    reference_number: Optional[str] = None
    collector_id: Optional[str] = None
    collected_by: Optional[str] = None
    payment_status: str
    reversal_reason: Optional[str] = None
    reversed_by: Optional[str] = None
    reversed_at: Optional[str] = None

    @classmethod
    def from_payment(cls, payment: Payment) -> 'PaymentModel':
        return cls(
            id=payment.id,
            payment_id=payment.payment_id,
            loan_id=payment.loan_id,
            customer_id=payment.customer_id,
            payment_amount=str(payment.payment_amount),
            payment_date=payment.payment_date,
            new_balance=str(payment.new_balance),
            days_late=payment.days_late,
            late_payment_fee=str(payment.late_payment_fee),
            is_late_payment=payment.is_late_payment,
            payment_method=payment.payment_method.value,
            excess_amount=str(payment.excess_amount),
            reference_number=payment.reference_number,
            collector_id=payment.collector_id,
            collected_by=payment.collected_by,
            payment_status=payment.payment_status.value,
            reversal_reason=payment.reversal_reason,
            reversed_by=payment.reversed_by,
            reversed_at=payment.reversed_at.isoformat() if payment.reversed_at else None,
        )


class PaymentResultModel(BaseModel):
    payment: PaymentModel
    loan: LoanModel


class BulkFailureModel(BaseModel):
    loan_id: str
    error: str
    error_type: str


class BulkPaymentResultModel(BaseModel):
    successful: List[PaymentModel]
    failed: List[BulkFailureModel]


# Report schemas
class PortfolioSummaryModel(BaseModel):
    total_loans: int
    total_principal: str
    total_current_balance: str
    active_loans: int
    past_due_loans: int
    fully_paid_loans: int

    @classmethod
    def from_summary(cls, summary: PortfolioSummary) -> 'PortfolioSummaryModel':
        return cls(
            total_loans=summary.total_loans,
            total_principal=str(summary.total_principal),
            total_current_balance=str(summary.total_current_balance),
            active_loans=summary.active_loans,
            past_due_loans=summary.past_due_loans,
            fully_paid_loans=summary.fully_paid_loans,
        )


class PaymentSummaryModel(BaseModel):
    total_payments: int
    total_amount: str
    today_payments: int
    today_amount: str
    late_payments: int
    late_payment_fees: str

    @classmethod
    def from_summary(cls, summary: PaymentSummary) -> 'PaymentSummaryModel':
        return cls(
            total_payments=summary.total_payments,
            total_amount=str(summary.total_amount),
            today_payments=summary.today_payments,
            today_amount=str(summary.today_amount),
            late_payments=summary.late_payments,
            late_payment_fees=str(summary.late_payment_fees),
        )


class DailyCollectionModel(BaseModel):
    collection_date: date
    payments: List[PaymentModel]
    total_collection: str
    total_transactions: int
    late_payments: int
    late_payment_fees: str

    @classmethod
    def from_report(cls, report: DailyCollectionReport) -> 'DailyCollectionModel':
        return cls(
            collection_date=report.date,
            payments=[PaymentModel.from_payment(p) for p in report.payments],
            total_collection=str(report.total_collection),
            total_transactions=report.total_transactions,
            late_payments=report.late_payments,
            late_payment_fees=str(report.late_payment_fees),
        )


class OverdueLoanModel(BaseModel):
    loan: LoanModel
    days_overdue: int
    accrued_late_fee: str

    @classmethod
    def from_overdue(cls, overdue: OverdueLoan) -> 'OverdueLoanModel':
        return cls(
            loan=LoanModel.from_loan(overdue.loan),
            days_overdue=overdue.days_overdue,
            accrued_late_fee=str(overdue.accrued_late_fee),
        )
