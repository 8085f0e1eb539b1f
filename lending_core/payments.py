"""
Payment Ledger Module

Applies payments to loans. A payment is assessed for lateness against the
loan's maturity date, reduces the balance (flooring at zero), derives the
loan's new status, and, when late, penalizes the borrower's credit standing
exactly once. The payment record, the loan mutation, the schedule entry and
the customer mutation are written as one unit of work under a per-loan
lock; if any write fails, none of them persist.
"""

from contextlib import nullcontext
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone, date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional
import uuid

from .audit import AuditTrail, AuditEventType
from .credit import CreditAdjustment, CreditScoreAdjuster
from .customers import CustomerRepository
from .errors import (
    LendingError, ValidationError, InvalidAmountError, PaymentNotFoundError,
    LoanAlreadySettledError, LoanNotPayableError, LedgerConsistencyError, AuditTrailError,
)
from .late_payments import LateAssessment, LatePaymentAssessor
from .loans import Loan, LoanRepository, LoanStatus, ScheduleStatus, check_date, to_decimal
from .locks import KeyedLock
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord


ZERO = Decimal('0')


class PaymentStatus(Enum):
    ACTIVE = "Active"
    REVERSED = "Reversed"


class PaymentMethod(Enum):
    CASH = "Cash"
    CHECK = "Check"
    BANK_TRANSFER = "Bank Transfer"


def derive_loan_status(
    balance: Decimal,
    is_late: bool,
    current: LoanStatus = LoanStatus.GOOD
) -> LoanStatus:
    """
    Status a loan takes after a payment leaves it at `balance`.

    Past Due only ever moves to Full Paid; a later on-time (or backdated)
    payment does not bring it back to Good.
    """
    if balance == ZERO:
        return LoanStatus.FULL_PAID
    if is_late or current == LoanStatus.PAST_DUE:
        return LoanStatus.PAST_DUE
    return LoanStatus.GOOD


@dataclass
class Payment(StorageRecord):
    """
    Immutable record of one payment and its effect on the loan.

    Only the reversal fields ever change, once, from unset to set.
    """
    sequence_number: int
    payment_id: str  # PAY000001
    loan_id: str
    customer_id: str
    payment_amount: Decimal
    payment_date: date
    new_balance: Decimal
    days_late: int
    late_payment_fee: Decimal
    is_late_payment: bool
    payment_method: PaymentMethod

    # Effect record, used by reversal
    previous_balance: Decimal
    previous_status: LoanStatus
    excess_amount: Decimal = ZERO
    credit_score_deduction: int = 0
    late_points_added: int = 0

    reference_number: Optional[str] = None
    collector_id: Optional[str] = None
    collected_by: Optional[str] = None
    idempotency_key: Optional[str] = None

    payment_status: PaymentStatus = PaymentStatus.ACTIVE
    reversal_reason: Optional[str] = None
    reversed_by: Optional[str] = None
    reversed_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.payment_status == PaymentStatus.ACTIVE

    @property
    def applied_amount(self) -> Decimal:
        """Portion of the payment that reduced the balance"""
        return self.payment_amount - self.excess_amount


@dataclass
class PaymentResult:
    payment: Payment
    loan: Loan


@dataclass
class PaymentRequest:
    """One entry of a bulk payment batch"""
    loan_id: str
    amount: Any
    payment_date: date
    method: Optional[Any] = None
    reference: Optional[str] = None
    collector_id: Optional[str] = None
    collected_by: Optional[str] = None
    idempotency_key: Optional[str] = None


@dataclass
class BulkPaymentResult:
    successful: List[Payment] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)


class PaymentRepository:
    """Loads and saves payments"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "payments"

    def get(self, payment_id: str) -> Optional[Payment]:
        data = self.storage.load(self.table_name, payment_id)
        return self._payment_from_dict(data) if data else None

    def require(self, payment_id: str) -> Payment:
        payment = self.get(payment_id)
        if payment is None:
            raise PaymentNotFoundError(
                f"Payment {payment_id} not found", {"payment_id": payment_id}
            )
        return payment

    def save(self, payment: Payment) -> None:
        self.storage.save(self.table_name, payment.id, self._payment_to_dict(payment))

    def list_all(self) -> List[Payment]:
        return self._sorted(self.storage.load_all(self.table_name))

    def find_by_loan(self, loan_id: str) -> List[Payment]:
        return self._sorted(self.storage.find(self.table_name, {'loan_id': loan_id}))

    def find_by_customer(self, customer_id: str) -> List[Payment]:
        return self._sorted(self.storage.find(self.table_name, {'customer_id': customer_id}))

    def find_by_idempotency_key(self, key: str) -> Optional[Payment]:
        found = self.storage.find(self.table_name, {'idempotency_key': key})
        return self._payment_from_dict(found[0]) if found else None

    def _sorted(self, records: Iterable[Dict]) -> List[Payment]:
        payments = [self._payment_from_dict(d) for d in records]
        payments.sort(key=lambda p: p.sequence_number)
        return payments

    def _payment_to_dict(self, payment: Payment) -> Dict:
        result = payment.to_dict()
        result['payment_date'] = payment.payment_date.isoformat()
        result['payment_method'] = payment.payment_method.value
        result['previous_status'] = payment.previous_status.value
        result['payment_status'] = payment.payment_status.value
        if payment.reversed_at:
            result['reversed_at'] = payment.reversed_at.isoformat()
        return result

    def _payment_from_dict(self, data: Dict) -> Payment:
        reversed_at = None
        if data.get('reversed_at'):
            reversed_at = datetime.fromisoformat(data['reversed_at'])

        return Payment(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            sequence_number=data['sequence_number'],
            payment_id=data['payment_id'],
            loan_id=data['loan_id'],
            customer_id=data['customer_id'],
            payment_amount=Decimal(data['payment_amount']),
            payment_date=date.fromisoformat(data['payment_date']),
            new_balance=Decimal(data['new_balance']),
            days_late=data['days_late'],
            late_payment_fee=Decimal(data['late_payment_fee']),
            is_late_payment=data['is_late_payment'],
            payment_method=PaymentMethod(data['payment_method']),
            previous_balance=Decimal(data['previous_balance']),
            previous_status=LoanStatus(data['previous_status']),
            excess_amount=Decimal(data.get('excess_amount', '0')),
            credit_score_deduction=data.get('credit_score_deduction', 0),
            late_points_added=data.get('late_points_added', 0),
            reference_number=data.get('reference_number'),
            collector_id=data.get('collector_id'),
            collected_by=data.get('collected_by'),
            idempotency_key=data.get('idempotency_key'),
            payment_status=PaymentStatus(data['payment_status']),
            reversal_reason=data.get('reversal_reason'),
            reversed_by=data.get('reversed_by'),
            reversed_at=reversed_at,
        )


def parse_payment_method(method: Any, default: PaymentMethod = PaymentMethod.CASH) -> PaymentMethod:
    if method is None:
        return default
    if isinstance(method, PaymentMethod):
        return method
    try:
        return PaymentMethod(method)
    except ValueError:
        raise ValidationError(
            f"Unknown payment method: {method}",
            {"payment_method": method, "allowed": [m.value for m in PaymentMethod]},
        )


class PaymentLedger:
    """
    Applies payments to loans, at most once each, atomically
    """

    def __init__(
        self,
        storage: StorageInterface,
        loans: LoanRepository,
        payments: PaymentRepository,
        customers: CustomerRepository,
        assessor: LatePaymentAssessor,
        credit_adjuster: CreditScoreAdjuster,
        audit_trail: AuditTrail,
        loan_locks: KeyedLock,
        customer_locks: KeyedLock,
        code_prefix: str = "PAY",
        default_method: PaymentMethod = PaymentMethod.CASH,
        clock=None
    ):
        self.storage = storage
        self.loans = loans
        self.payments = payments
        self.customers = customers
        self.assessor = assessor
        self.credit_adjuster = credit_adjuster
        self.audit_trail = audit_trail
        self.loan_locks = loan_locks
        self.customer_locks = customer_locks
        self.code_prefix = code_prefix
        self.key_locks = KeyedLock("idempotency_keys")
        self.default_method = default_method
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = get_logger("lending.payments")

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
        """
        Apply a payment to a loan

        Args:
            loan_id: Loan being paid
            amount: Amount received; must be positive. Amounts above the
                balance are accepted and the balance floors at zero.
            payment_date: Date the money was received
            method: Cash, Check or Bank Transfer (default Cash)
            reference: External reference number
            collector_id: Collector who received the money
            collected_by: Name or user id recorded on the receipt
            idempotency_key: Retrying with the same key returns the first
                result instead of applying the payment again

        Returns:
            PaymentResult with the stored payment and the updated loan

        Raises:
            InvalidAmountError, LoanNotFoundError, LoanNotPayableError,
            LoanAlreadySettledError, LedgerConsistencyError,
            AuditTrailError (the payment committed; do not retry)
        """
        amount = to_decimal(amount, "amount")
        if amount <= ZERO:
            self._reject("invalid_amount", loan_id, amount)
            raise InvalidAmountError(
                "Payment amount must be positive", {"loan_id": loan_id, "amount": amount}
            )
        check_date(payment_date, "payment_date")
        payment_method = parse_payment_method(method, self.default_method)

        # Lock order: idempotency key, loan, customer
        key_lock = self.key_locks.hold(idempotency_key) if idempotency_key else nullcontext()
        with key_lock, self.loan_locks.hold(loan_id):
            if idempotency_key:
                existing = self.payments.find_by_idempotency_key(idempotency_key)
                if existing is not None:
                    return self._replayed_result(existing, loan_id, idempotency_key)

            loan = self.loans.require(loan_id)
            self._check_payable(loan, amount)

            assessment = self.assessor.assess(loan.maturity_date, payment_date)
            new_balance = max(ZERO, loan.current_balance - amount)
            new_status = derive_loan_status(new_balance, assessment.is_late, loan.status)
            now = self.clock()

            sequence = self.storage.next_sequence("payment_id")
            payment = Payment(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                sequence_number=sequence,
                payment_id=f"{self.code_prefix}{sequence:06d}",
                loan_id=loan.id,
                customer_id=loan.customer_id,
                payment_amount=amount,
                payment_date=payment_date,
                new_balance=new_balance,
                days_late=assessment.days_late,
                late_payment_fee=assessment.late_fee,
                is_late_payment=assessment.is_late,
                payment_method=payment_method,
                previous_balance=loan.current_balance,
                previous_status=loan.status,
                excess_amount=max(ZERO, amount - loan.current_balance),
                reference_number=reference,
                collector_id=collector_id,
                collected_by=collected_by,
                idempotency_key=idempotency_key,
            )
            updated_loan = replace(
                loan, current_balance=new_balance, status=new_status, updated_at=now
            )

            customer_lock = (
                self.customer_locks.hold(loan.customer_id) if assessment.is_late else nullcontext()
            )
            with customer_lock:
                adjustment = None
                if assessment.is_late:
                    adjustment = self.credit_adjuster.on_late_payment(
                        self.customers.require(loan.customer_id)
                    )
                    payment.credit_score_deduction = adjustment.score_before - adjustment.score_after
                    payment.late_points_added = adjustment.points_delta

                self._commit(payment, updated_loan, adjustment)

            result = PaymentResult(payment=payment, loan=updated_loan)
            self._record(result, assessment, adjustment)

        return result

    def apply_bulk_payments(self, requests: Iterable[PaymentRequest]) -> BulkPaymentResult:
        """
        Apply each request independently; a failure never aborts the batch
        """
        result = BulkPaymentResult()
        for request in requests:
            try:
                applied = self.apply_payment(
                    loan_id=request.loan_id,
                    amount=request.amount,
                    payment_date=request.payment_date,
                    method=request.method,
                    reference=request.reference,
                    collector_id=request.collector_id,
                    collected_by=request.collected_by,
                    idempotency_key=request.idempotency_key,
                )
                result.successful.append(applied.payment)
            except AuditTrailError as e:
                result.successful.append(e.result.payment)
            except LendingError as e:
                result.failed.append({
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "data": request,
                })
        return result

    def get_loan_payments(self, loan_id: str) -> List[Payment]:
        return self.payments.find_by_loan(loan_id)

    def get_customer_payments(self, customer_id: str) -> List[Payment]:
        return self.payments.find_by_customer(customer_id)

    def _check_payable(self, loan: Loan, amount: Decimal) -> None:
        if not loan.status.is_payable:
            self._reject("loan_not_payable", loan.id, amount, status=loan.status.value)
            raise LoanNotPayableError(
                f"Loan {loan.loan_code} is {loan.status.value} and cannot accept payments",
                {"loan_id": loan.id, "status": loan.status.value},
            )
        if loan.current_balance == ZERO:
            self._reject("loan_already_settled", loan.id, amount)
            raise LoanAlreadySettledError(
                f"Loan {loan.loan_code} is already fully paid",
                {"loan_id": loan.id},
            )

    def _replayed_result(self, existing: Payment, loan_id: str, key: str) -> PaymentResult:
        if existing.loan_id != loan_id:
            raise ValidationError(
                "Idempotency key was already used for a different loan",
                {"idempotency_key": key, "loan_id": loan_id, "payment_id": existing.id},
            )
        log_action(
            self.logger, "info", f"Duplicate payment request for {existing.payment_id}",
            action="apply_payment_replayed", resource=f"payment:{existing.id}",
            extra={"idempotency_key": key},
        )
        return PaymentResult(payment=existing, loan=self.loans.require(loan_id))

    def _commit(
        self,
        payment: Payment,
        loan: Loan,
        adjustment: Optional[CreditAdjustment]
    ) -> None:
        """Write payment, loan, schedule entry and customer as one unit"""
        try:
            with self.storage.atomic():
                self.payments.save(payment)
                self.loans.save(loan)
                if loan.status == LoanStatus.FULL_PAID:
                    self._mark_schedule_paid(loan, payment.payment_date)
                if adjustment is not None:
                    self.customers.save(adjustment.customer)
        except Exception as e:
            log_action(
                self.logger, "error", f"Payment {payment.payment_id} rolled back",
                action="apply_payment", resource=f"loan:{loan.id}",
                extra={"payment_id": payment.payment_id}, exc_info=True,
            )
            raise LedgerConsistencyError(
                f"Payment {payment.payment_id} could not be recorded and was rolled back",
                {"loan_id": loan.id, "payment_id": payment.payment_id},
            ) from e

    def _mark_schedule_paid(self, loan: Loan, paid_on: date) -> None:
        entry = self.loans.get_schedule_entry(loan.id)
        if entry is None:
            return
        entry.payment_status = ScheduleStatus.PAID
        entry.actual_payment_date = paid_on
        entry.actual_amount_paid = loan.total_amortization
        entry.updated_at = loan.updated_at
        self.loans.save_schedule_entry(entry)

    def _record(
        self,
        result: PaymentResult,
        assessment: LateAssessment,
        adjustment: Optional[CreditAdjustment]
    ) -> None:
        """Audit and log a committed payment"""
        payment, loan = result.payment, result.loan
        try:
            self._audit(payment, loan, assessment, adjustment)
        except Exception as e:
            log_action(
                self.logger, "error", f"Payment {payment.payment_id} committed without audit event",
                user_id=payment.collected_by, action="apply_payment",
                resource=f"loan:{loan.id}", extra={"payment_id": payment.payment_id},
                exc_info=True,
            )
            raise AuditTrailError(
                f"Payment {payment.payment_id} was recorded but its audit event was not written",
                {"payment_id": payment.id, "loan_id": loan.id},
                result=result,
            ) from e

        log_action(
            self.logger, "info", f"Payment applied: {payment.payment_id}",
            user_id=payment.collected_by, action="apply_payment",
            resource=f"loan:{loan.id}",
            extra={
                "payment_id": payment.payment_id,
                "amount": str(payment.payment_amount),
                "new_balance": str(payment.new_balance),
                "status": loan.status.value,
                "days_late": assessment.days_late,
                "late_fee": str(assessment.late_fee),
            }
        )

    def _audit(
        self,
        payment: Payment,
        loan: Loan,
        assessment: LateAssessment,
        adjustment: Optional[CreditAdjustment]
    ) -> None:
        self.audit_trail.log_event(
            event_type=AuditEventType.PAYMENT_APPLIED,
            entity_type="payment",
            entity_id=payment.id,
            user_id=payment.collected_by,
            metadata={
                "payment_id": payment.payment_id,
                "loan_id": loan.id,
                "amount": payment.payment_amount,
                "previous_balance": payment.previous_balance,
                "new_balance": payment.new_balance,
                "status": loan.status,
                "days_late": assessment.days_late,
                "late_fee": assessment.late_fee,
            }
        )
        if adjustment is not None:
            self.audit_trail.log_event(
                event_type=AuditEventType.CREDIT_SCORE_PENALIZED,
                entity_type="customer",
                entity_id=payment.customer_id,
                metadata={
                    "payment_id": payment.payment_id,
                    "score_before": adjustment.score_before,
                    "score_after": adjustment.score_after,
                    "late_payment_count": adjustment.customer.late_payment_count,
                    "late_payment_points": adjustment.customer.late_payment_points,
                }
            )

    def _reject(self, reason: str, loan_id: str, amount: Decimal, **extra: Any) -> None:
        log_action(
            self.logger, "warning", f"Payment rejected: {reason}",
            action="apply_payment", resource=f"loan:{loan_id}",
            extra={"reason": reason, "amount": str(amount), **extra},
        )
