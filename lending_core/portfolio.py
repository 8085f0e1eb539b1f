"""
Portfolio Reporting Module

Read-only folds over loans and payments for dashboards and report screens:
the portfolio summary, payment totals, the daily collection sheet and the
overdue loan list. Nothing here writes to storage.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional

from .late_payments import LatePaymentAssessor
from .loans import Loan, LoanStatus
from .payments import Payment


@dataclass
class PortfolioSummary:
    total_loans: int = 0
    total_principal: Decimal = Decimal('0')
    total_current_balance: Decimal = Decimal('0')
    active_loans: int = 0
    past_due_loans: int = 0
    fully_paid_loans: int = 0


@dataclass
class PaymentSummary:
    total_payments: int = 0
    total_amount: Decimal = Decimal('0')
    today_payments: int = 0
    today_amount: Decimal = Decimal('0')
    late_payments: int = 0
    late_payment_fees: Decimal = Decimal('0')


@dataclass
class DailyCollectionReport:
    date: date
    payments: List[Payment] = field(default_factory=list)
    total_collection: Decimal = Decimal('0')
    total_transactions: int = 0
    late_payments: int = 0
    late_payment_fees: Decimal = Decimal('0')


@dataclass
class OverdueLoan:
    loan: Loan
    days_overdue: int
    accrued_late_fee: Decimal


class PortfolioAggregator:
    """Builds summary reports from loan and payment collections"""

    def __init__(self, assessor: Optional[LatePaymentAssessor] = None):
        self.assessor = assessor or LatePaymentAssessor()

    def summarize(self, loans: Iterable[Loan]) -> PortfolioSummary:
        """
        Fold loans into counts and totals.

        Active loans are the ones in Good standing; Reversed and
        Restructured loans count toward the totals only.
        """
        summary = PortfolioSummary()
        for loan in loans:
            summary.total_loans += 1
            summary.total_principal += loan.principal_amount
            summary.total_current_balance += loan.current_balance
            if loan.status == LoanStatus.GOOD:
                summary.active_loans += 1
            elif loan.status == LoanStatus.PAST_DUE:
                summary.past_due_loans += 1
            elif loan.status == LoanStatus.FULL_PAID:
                summary.fully_paid_loans += 1
        return summary

    def payment_summary(self, payments: Iterable[Payment], today: date) -> PaymentSummary:
        """Totals over active payments, with today's share broken out"""
        summary = PaymentSummary()
        for payment in payments:
            if not payment.is_active:
                continue
            summary.total_payments += 1
            summary.total_amount += payment.payment_amount
            if payment.payment_date == today:
                summary.today_payments += 1
                summary.today_amount += payment.payment_amount
            if payment.is_late_payment:
                summary.late_payments += 1
                summary.late_payment_fees += payment.late_payment_fee
        return summary

    def daily_collection(self, payments: Iterable[Payment], day: date) -> DailyCollectionReport:
        report = DailyCollectionReport(date=day)
        for payment in payments:
            if not payment.is_active or payment.payment_date != day:
                continue
            report.payments.append(payment)
            report.total_collection += payment.payment_amount
            report.total_transactions += 1
            if payment.is_late_payment:
                report.late_payments += 1
                report.late_payment_fees += payment.late_payment_fee
        report.payments.sort(key=lambda p: p.sequence_number)
        return report

    def overdue_loans(self, loans: Iterable[Loan], as_of: date) -> List[OverdueLoan]:
        """
        Open loans past maturity, most overdue first.

        Days overdue and the accrued fee are what a payment made on `as_of`
        would be assessed.
        """
        overdue = []
        for loan in loans:
            if loan.is_settled or not loan.status.is_payable:
                continue
            assessment = self.assessor.assess(loan.maturity_date, as_of)
            if not assessment.is_late:
                continue
            overdue.append(OverdueLoan(
                loan=loan,
                days_overdue=assessment.days_late,
                accrued_late_fee=assessment.late_fee,
            ))
        overdue.sort(key=lambda o: (-o.days_overdue, o.loan.loan_code))
        return overdue
