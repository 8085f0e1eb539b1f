"""
Lending Engine

Wires storage, locks, the audit trail and every ledger component together
and exposes the operations the API and other callers use. Business rules
(late fee, credit penalty, code prefixes) come from configuration and are
injected into the components here.
"""

from datetime import date, datetime, timezone
from typing import Any, Callable, Iterable, List, Optional

from .audit import AuditTrail
from .config import LendingConfig, get_config
from .credit import CreditScoreAdjuster
from .customers import Customer, CustomerManager, CustomerRepository
from .late_payments import LatePaymentAssessor
from .loans import (
    AmortizationScheduleEntry, Loan, LoanManager, LoanRepository, LoanStatus,
    LoanTermCalculator, LoanTerms, LoanType,
)
from .locks import KeyedLock
from .payments import (
    BulkPaymentResult, Payment, PaymentLedger, PaymentMethod, PaymentRepository,
    PaymentRequest, PaymentResult,
)
from .portfolio import (
    DailyCollectionReport, OverdueLoan, PaymentSummary, PortfolioAggregator,
    PortfolioSummary,
)
from .reversals import ReversalHandler
from .storage import StorageInterface, create_storage


class LendingEngine:
    """Lending core with all components initialized"""

    def __init__(
        self,
        storage: Optional[StorageInterface] = None,
        config: Optional[LendingConfig] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config.database_url)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self.audit_trail = AuditTrail(self.storage, enabled=self.config.enable_audit_logging)
        self.loan_locks = KeyedLock("loans")
        self.customer_locks = KeyedLock("customers")

        self.loan_repository = LoanRepository(self.storage)
        self.payment_repository = PaymentRepository(self.storage)
        self.customer_repository = CustomerRepository(self.storage)

        self.calculator = LoanTermCalculator()
        self.assessor = LatePaymentAssessor(self.config.flat_weekly_fee)
        self.credit_adjuster = CreditScoreAdjuster(
            penalty=self.config.late_payment_penalty,
            max_credit_score=self.config.max_credit_score,
        )

        self.customer_manager = CustomerManager(
            self.storage, self.customer_repository, self.audit_trail,
            default_credit_score=self.config.default_credit_score,
            max_credit_score=self.config.max_credit_score,
        )
        self.loan_manager = LoanManager(
            self.storage, self.loan_repository, self.customer_repository,
            self.audit_trail, self.loan_locks,
            calculator=self.calculator,
            code_prefix=self.config.loan_code_prefix,
        )
        self.payment_ledger = PaymentLedger(
            self.storage, self.loan_repository, self.payment_repository,
            self.customer_repository, self.assessor, self.credit_adjuster,
            self.audit_trail, self.loan_locks, self.customer_locks,
            code_prefix=self.config.payment_code_prefix,
            default_method=PaymentMethod(self.config.default_payment_method),
            clock=self.clock,
        )
        self.reversal_handler = ReversalHandler(
            self.storage, self.loan_repository, self.payment_repository,
            self.customer_repository, self.credit_adjuster, self.audit_trail,
            self.loan_locks, self.customer_locks,
            clock=self.clock,
        )
        self.portfolio = PortfolioAggregator(self.assessor)

    # Loans

    def originate_loan(
        self,
        principal: Any,
        rate_percent: Any,
        release_date: date,
        term_days: int
    ) -> LoanTerms:
        return self.calculator.originate(principal, rate_percent, release_date, term_days)

    def book_loan(self, customer_id: str, principal: Any, rate_percent: Any = None,
                  release_date: Optional[date] = None, term_days: Optional[int] = None,
                  **kwargs: Any) -> Loan:
        return self.loan_manager.book_loan(
            customer_id, principal, rate_percent, release_date, term_days, **kwargs
        )

    def create_loan_type(self, type_name: str, interest_rate: Any, term_days: int,
                         **kwargs: Any) -> LoanType:
        return self.loan_manager.create_loan_type(type_name, interest_rate, term_days, **kwargs)

    def get_loan_types(self) -> List[LoanType]:
        return self.loan_manager.get_loan_types()

    def get_loan(self, loan_id: str) -> Loan:
        return self.loan_repository.require(loan_id)

    def get_all_loans(self) -> List[Loan]:
        return self.loan_manager.get_all_loans()

    def get_amortization_schedule(self, loan_id: str) -> List[AmortizationScheduleEntry]:
        return self.loan_manager.get_amortization_schedule(loan_id)

    def update_loan_status(self, loan_id: str, status: LoanStatus,
                           changed_by: Optional[str] = None) -> Loan:
        return self.loan_manager.update_status(loan_id, status, changed_by)

    # Customers

    def create_customer(self, first_name: str, last_name: str,
                        credit_score: Optional[int] = None) -> Customer:
        return self.customer_manager.create_customer(first_name, last_name, credit_score)

    def get_customer(self, customer_id: str) -> Customer:
        return self.customer_repository.require(customer_id)

    def get_customer_loans(self, customer_id: str) -> List[Loan]:
        self.customer_repository.require(customer_id)
        return self.loan_manager.get_customer_loans(customer_id)

    def get_customer_payments(self, customer_id: str) -> List[Payment]:
        self.customer_repository.require(customer_id)
        return self.payment_ledger.get_customer_payments(customer_id)

    # Payments

    def apply_payment(
        self,
        loan_id: str,
        amount: Any,
        payment_date: date,
        method: Optional[Any] = None,
        reference: Optional[str] = None,
        collector_id: Optional[str] = None,
        collected_by: Optional[str] = None,
        idempotency_key: Optional[str] = None
    ) -> PaymentResult:
        return self.payment_ledger.apply_payment(
            loan_id, amount, payment_date,
            method=method,
            reference=reference,
            collector_id=collector_id,
            collected_by=collected_by,
            idempotency_key=idempotency_key,
        )

    def apply_bulk_payments(self, requests: Iterable[PaymentRequest]) -> BulkPaymentResult:
        return self.payment_ledger.apply_bulk_payments(requests)

    def reverse_payment(self, payment_id: str, reason: str, reversed_by: str) -> Payment:
        return self.reversal_handler.reverse(payment_id, reason, reversed_by)

    def get_payment(self, payment_id: str) -> Payment:
        return self.payment_repository.require(payment_id)

    def get_loan_payments(self, loan_id: str) -> List[Payment]:
        self.loan_repository.require(loan_id)
        return self.payment_ledger.get_loan_payments(loan_id)

    # Reports

    def get_portfolio_summary(self, loans: Optional[Iterable[Loan]] = None) -> PortfolioSummary:
        if loans is None:
            loans = self.loan_repository.list_all()
        return self.portfolio.summarize(loans)

    def get_payment_summary(self, today: Optional[date] = None) -> PaymentSummary:
        today = today or self.clock().date()
        return self.portfolio.payment_summary(self.payment_repository.list_all(), today)

    def get_daily_collection(self, day: Optional[date] = None) -> DailyCollectionReport:
        day = day or self.clock().date()
        return self.portfolio.daily_collection(self.payment_repository.list_all(), day)

    def get_overdue_loans(self, as_of: Optional[date] = None) -> List[OverdueLoan]:
        as_of = as_of or self.clock().date()
        return self.portfolio.overdue_loans(self.loan_repository.list_all(), as_of)

    def close(self) -> None:
        self.storage.close()
