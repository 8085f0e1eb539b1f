"""
Payment Reversal Module

Reverses a payment that was recorded in error. The payment itself is kept
and marked Reversed; the loan's balance and status are recomputed as if the
payment had never been applied, and any credit penalty it caused is given
back. Everything happens under the same locks and in one unit of work, so a
reversal can never race a payment on the same loan.
"""

from contextlib import nullcontext
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional

from .audit import AuditTrail, AuditEventType
from .credit import CreditAdjustment, CreditScoreAdjuster
from .customers import CustomerRepository
from .errors import (
    ValidationError, PaymentNotReversibleError, LedgerConsistencyError, AuditTrailError,
)
from .loans import Loan, LoanRepository, LoanStatus, ScheduleStatus
from .locks import KeyedLock
from .logging_config import get_logger, log_action
from .payments import Payment, PaymentRepository, PaymentStatus, derive_loan_status, ZERO
from .storage import StorageInterface


@dataclass(frozen=True)
class ReplayedState:
    """Loan balance and status rebuilt from its active payments"""
    balance: Decimal
    status: LoanStatus


def replay_loan_state(loan: Loan, payments: Iterable[Payment]) -> ReplayedState:
    """
    Rebuild a loan's balance and status from scratch.

    Starts at the total amortization and applies each Active payment in
    sequence order with the same floor and status rules the ledger uses.
    Loans marked Reversed or Restructured keep that status.
    """
    balance = loan.total_amortization
    status = LoanStatus.GOOD
    for payment in sorted(payments, key=lambda p: p.sequence_number):
        if not payment.is_active:
            continue
        balance = max(ZERO, balance - payment.payment_amount)
        status = derive_loan_status(balance, payment.is_late_payment, status)

    if not loan.status.is_payable:
        status = loan.status
    return ReplayedState(balance=balance, status=status)


class ReversalHandler:
    """Reverses payments and restores the state they changed"""

    def __init__(
        self,
        storage: StorageInterface,
        loans: LoanRepository,
        payments: PaymentRepository,
        customers: CustomerRepository,
        credit_adjuster: CreditScoreAdjuster,
        audit_trail: AuditTrail,
        loan_locks: KeyedLock,
        customer_locks: KeyedLock,
        clock=None
    ):
        self.storage = storage
        self.loans = loans
        self.payments = payments
        self.customers = customers
        self.credit_adjuster = credit_adjuster
        self.audit_trail = audit_trail
        self.loan_locks = loan_locks
        self.customer_locks = customer_locks
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = get_logger("lending.reversals")

    def reverse(self, payment_id: str, reason: str, reversed_by: str) -> Payment:
        """
        Reverse an active payment

        Args:
            payment_id: Payment record ID
            reason: Why the payment is being reversed
            reversed_by: User performing the reversal

        Returns:
            The payment, now Reversed

        Raises:
            ValidationError: If reason or reversed_by is empty
            PaymentNotReversibleError: If the payment doesn't exist or was
                already reversed
            LedgerConsistencyError: If the unit of work failed
            AuditTrailError: If the reversal committed but was not audited
        """
        if not reason or not reason.strip():
            raise ValidationError("Reversal reason is required", {"payment_id": payment_id})
        if not reversed_by or not reversed_by.strip():
            raise ValidationError("Reversing user is required", {"payment_id": payment_id})

        # The loan id is immutable, so it is safe to read it before locking
        loan_id = self._require_active(payment_id, reversed_by).loan_id

        with self.loan_locks.hold(loan_id):
            payment = self._require_active(payment_id, reversed_by)

            loan = self.loans.require(loan_id)
            now = self.clock()
            reversed_payment = replace(
                payment,
                payment_status=PaymentStatus.REVERSED,
                reversal_reason=reason,
                reversed_by=reversed_by,
                reversed_at=now,
                updated_at=now,
            )

            remaining = [p for p in self.payments.find_by_loan(loan_id) if p.id != payment.id]
            state = replay_loan_state(loan, remaining)
            updated_loan = replace(
                loan, current_balance=state.balance, status=state.status, updated_at=now
            )

            penalized = payment.is_late_payment
            customer_lock = (
                self.customer_locks.hold(payment.customer_id) if penalized else nullcontext()
            )
            with customer_lock:
                adjustment = None
                if penalized:
                    adjustment = self.credit_adjuster.undo_late_payment(
                        self.customers.require(payment.customer_id),
                        score_deduction=payment.credit_score_deduction,
                        points_added=payment.late_points_added,
                    )
                self._commit(reversed_payment, loan, updated_loan, adjustment)

            self._record(reversed_payment, loan, updated_loan, adjustment)

        return reversed_payment

    def _require_active(self, payment_id: str, reversed_by: str) -> Payment:
        payment = self.payments.get(payment_id)
        if payment is None:
            self._refuse(payment_id, "not_found", reversed_by)
            raise PaymentNotReversibleError(
                f"Payment {payment_id} not found",
                {"payment_id": payment_id, "reason": "not_found"},
            )
        if not payment.is_active:
            self._refuse(payment.id, "already_reversed", reversed_by)
            raise PaymentNotReversibleError(
                f"Payment {payment.payment_id} is already reversed",
                {"payment_id": payment.id, "status": payment.payment_status.value,
                 "reason": "already_reversed"},
            )
        return payment

    def _refuse(self, payment_id: str, reason: str, reversed_by: str) -> None:
        log_action(
            self.logger, "warning", f"Reversal refused: {reason}",
            user_id=reversed_by, action="reverse_payment",
            resource=f"payment:{payment_id}", extra={"reason": reason},
        )


    def _commit(
        self,
        payment: Payment,
        previous_loan: Loan,
        loan: Loan,
        adjustment: Optional[CreditAdjustment]
    ) -> None:
        try:
            with self.storage.atomic():
                self.payments.save(payment)
                self.loans.save(loan)
                if previous_loan.is_settled and not loan.is_settled:
                    self._reopen_schedule(loan)
                if adjustment is not None:
                    self.customers.save(adjustment.customer)
        except Exception as e:
            log_action(
                self.logger, "error", f"Reversal of {payment.payment_id} rolled back",
                user_id=payment.reversed_by, action="reverse_payment",
                resource=f"payment:{payment.id}", exc_info=True,
            )
            raise LedgerConsistencyError(
                f"Reversal of {payment.payment_id} could not be recorded and was rolled back",
                {"payment_id": payment.id, "loan_id": loan.id},
            ) from e

    def _reopen_schedule(self, loan: Loan) -> None:
        entry = self.loans.get_schedule_entry(loan.id)
        if entry is None:
            return
        entry.payment_status = ScheduleStatus.PENDING
        entry.actual_payment_date = None
        entry.actual_amount_paid = None
        entry.updated_at = loan.updated_at
        self.loans.save_schedule_entry(entry)

    def _record(
        self,
        payment: Payment,
        previous_loan: Loan,
        loan: Loan,
        adjustment: Optional[CreditAdjustment]
    ) -> None:
        """Audit and log a committed reversal"""
        try:
            self._audit(payment, previous_loan, loan, adjustment)
        except Exception as e:
            log_action(
                self.logger, "error", f"Reversal of {payment.payment_id} committed without audit event",
                user_id=payment.reversed_by, action="reverse_payment",
                resource=f"payment:{payment.id}", exc_info=True,
            )
            raise AuditTrailError(
                f"Reversal of {payment.payment_id} was recorded but its audit event was not written",
                {"payment_id": payment.id, "loan_id": loan.id},
                result=payment,
            ) from e

        log_action(
            self.logger, "info", f"Payment reversed: {payment.payment_id}",
            user_id=payment.reversed_by, action="reverse_payment",
            resource=f"loan:{loan.id}",
            extra={
                "payment_id": payment.payment_id,
                "reason": payment.reversal_reason,
                "balance_before": str(previous_loan.current_balance),
                "balance_after": str(loan.current_balance),
                "status": loan.status.value,
            }
        )

    def _audit(
        self,
        payment: Payment,
        previous_loan: Loan,
        loan: Loan,
        adjustment: Optional[CreditAdjustment]
    ) -> None:
        self.audit_trail.log_event(
            event_type=AuditEventType.PAYMENT_REVERSED,
            entity_type="payment",
            entity_id=payment.id,
            user_id=payment.reversed_by,
            metadata={
                "payment_id": payment.payment_id,
                "loan_id": loan.id,
                "amount": payment.payment_amount,
                "reason": payment.reversal_reason,
                "balance_before": previous_loan.current_balance,
                "balance_after": loan.current_balance,
                "status_before": previous_loan.status,
                "status_after": loan.status,
            }
        )
        if adjustment is not None:
            self.audit_trail.log_event(
                event_type=AuditEventType.CREDIT_SCORE_RESTORED,
                entity_type="customer",
                entity_id=payment.customer_id,
                user_id=payment.reversed_by,
                metadata={
                    "payment_id": payment.payment_id,
                    "score_before": adjustment.score_before,
                    "score_after": adjustment.score_after,
                }
            )
