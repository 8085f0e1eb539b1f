"""
Loan Module

Loan records, the loan type catalog, flat-rate term calculation, the single
balloon amortization entry, loan persistence and loan booking. Loan balances and statuses are
changed only by the payment ledger and the reversal handler; the manager
here creates loans and records externally decided status changes
(reversal or restructuring of the whole loan).
"""

from decimal import Decimal, InvalidOperation
from datetime import datetime, timezone, date
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from enum import Enum
import uuid

from .audit import AuditTrail, AuditEventType
from .business_days import add_business_days
from .customers import CustomerRepository
from .errors import ValidationError, LoanNotFoundError, LoanTypeNotFoundError
from .locks import KeyedLock
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord


class LoanStatus(Enum):
    """Loan statuses"""
    GOOD = "Good"
    PAST_DUE = "Past Due"
    FULL_PAID = "Full Paid"
    REVERSED = "Reversed"
    RESTRUCTURED = "Restructured"

    @property
    def is_payable(self) -> bool:
        return self not in (LoanStatus.REVERSED, LoanStatus.RESTRUCTURED)


class ScheduleStatus(Enum):
    PENDING = "Pending"
    PAID = "Paid"


def to_decimal(value: Any, field_name: str) -> Decimal:
    """Convert user input to Decimal, rejecting floats' binary noise via str()"""
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a number", {field_name: value})
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"{field_name} must be a number", {field_name: value})
    if not result.is_finite():
        raise ValidationError(f"{field_name} must be finite", {field_name: value})
    return result


def check_date(value: Any, field_name: str) -> date:
    """Accept a calendar date; datetimes are rejected, not truncated"""
    if isinstance(value, datetime) or not isinstance(value, date):
        raise ValidationError(f"{field_name} must be a date", {field_name: value})
    return value


@dataclass(frozen=True)
class LoanTerms:
    """Terms derived at origination"""
    interest_amount: Decimal
    total_amortization: Decimal
    maturity_date: date


class LoanTermCalculator:
    """
    Flat-rate loan terms.

    Interest is a fixed percentage of principal charged once; the maturity
    date is the release date plus the term in business days (Sundays are
    skipped entirely). No rounding is applied beyond Decimal precision;
    currency rounding is the caller's policy.
    """

    def compute_interest(self, principal: Any, rate_percent: Any) -> Decimal:
        principal = self._validate_principal(principal)
        rate_percent = self._validate_rate(rate_percent)
        return principal * rate_percent / Decimal('100')

    def compute_total_obligation(self, principal: Any, interest_amount: Any) -> Decimal:
        principal = self._validate_principal(principal)
        interest_amount = to_decimal(interest_amount, "interest_amount")
        if interest_amount < 0:
            raise ValidationError(
                "Interest amount cannot be negative", {"interest_amount": interest_amount}
            )
        return principal + interest_amount

    def compute_maturity_date(self, release_date: date, term_days: int) -> date:
        check_date(release_date, "release_date")
        if isinstance(term_days, bool) or not isinstance(term_days, int):
            raise ValidationError("Term must be a whole number of days", {"term_days": term_days})
        if term_days < 1:
            raise ValidationError("Term must be at least one day", {"term_days": term_days})
        return add_business_days(release_date, term_days)

    def originate(
        self,
        principal: Any,
        rate_percent: Any,
        release_date: date,
        term_days: int
    ) -> LoanTerms:
        """Compute interest, total obligation and maturity date for a new loan"""
        interest_amount = self.compute_interest(principal, rate_percent)
        return LoanTerms(
            interest_amount=interest_amount,
            total_amortization=self.compute_total_obligation(principal, interest_amount),
            maturity_date=self.compute_maturity_date(release_date, term_days),
        )

    def _validate_principal(self, principal: Any) -> Decimal:
        principal = to_decimal(principal, "principal")
        if principal <= 0:
            raise ValidationError("Principal must be positive", {"principal": principal})
        return principal

    def _validate_rate(self, rate_percent: Any) -> Decimal:
        rate_percent = to_decimal(rate_percent, "rate_percent")
        if rate_percent < 0:
            raise ValidationError("Interest rate cannot be negative", {"rate_percent": rate_percent})
        return rate_percent


class LoanTypeStatus(Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


@dataclass
class LoanType(StorageRecord):
    """Loan product whose rate and term prefill new loans"""
    type_name: str
    interest_rate: Decimal  # percent
    term_days: int
    term_months: int = 1
    description: Optional[str] = None
    status: LoanTypeStatus = LoanTypeStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == LoanTypeStatus.ACTIVE


class LoanTypeRepository:
    """Loads and saves the loan type catalog"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "loan_types"

    def get(self, loan_type_id: str) -> Optional[LoanType]:
        data = self.storage.load(self.table_name, loan_type_id)
        return self._loan_type_from_dict(data) if data else None

    def require(self, loan_type_id: str) -> LoanType:
        loan_type = self.get(loan_type_id)
        if loan_type is None:
            raise LoanTypeNotFoundError(
                f"Loan type {loan_type_id} not found", {"loan_type_id": loan_type_id}
            )
        return loan_type

    def save(self, loan_type: LoanType) -> None:
        result = loan_type.to_dict()
        result['status'] = loan_type.status.value
        self.storage.save(self.table_name, loan_type.id, result)

    def list_active(self) -> List[LoanType]:
        """Active loan types, shortest term first"""
        found = self.storage.find(self.table_name, {'status': LoanTypeStatus.ACTIVE.value})
        types = [self._loan_type_from_dict(d) for d in found]
        types.sort(key=lambda t: (t.term_days, t.type_name))
        return types

    def _loan_type_from_dict(self, data: Dict) -> LoanType:
        return LoanType(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            type_name=data['type_name'],
            interest_rate=Decimal(data['interest_rate']),
            term_days=data['term_days'],
            term_months=data.get('term_months', 1),
            description=data.get('description'),
            status=LoanTypeStatus(data.get('status', LoanTypeStatus.ACTIVE.value)),
        )


@dataclass
class Loan(StorageRecord):
    """Loan with flat-rate terms and its current balance"""
    loan_code: str
    customer_id: str
    principal_amount: Decimal
    interest_rate: Decimal  # percent, e.g. Decimal('6') for 6%
    interest_amount: Decimal
    total_amortization: Decimal
    current_balance: Decimal
    term_days: int
    release_date: date
    maturity_date: date
    status: LoanStatus = LoanStatus.GOOD
    collector_id: Optional[str] = None
    loan_category: Optional[str] = None
    created_by: Optional[str] = None
    loan_type_id: Optional[str] = None

    @property
    def is_settled(self) -> bool:
        return self.current_balance == Decimal('0')


@dataclass
class AmortizationScheduleEntry(StorageRecord):
    """The single balloon installment of a loan, due at maturity"""
    loan_id: str
    payment_number: int
    due_date: date
    principal_amount: Decimal
    interest_amount: Decimal
    total_payment: Decimal
    remaining_balance: Decimal
    payment_status: ScheduleStatus = ScheduleStatus.PENDING
    actual_payment_date: Optional[date] = None
    actual_amount_paid: Optional[Decimal] = None


class LoanRepository:
    """Loads and saves loans and their schedule entries"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.loans_table = "loans"
        self.schedule_table = "amortization_schedule"

    def get(self, loan_id: str) -> Optional[Loan]:
        data = self.storage.load(self.loans_table, loan_id)
        return self._loan_from_dict(data) if data else None

    def require(self, loan_id: str) -> Loan:
        loan = self.get(loan_id)
        if loan is None:
            raise LoanNotFoundError(f"Loan {loan_id} not found", {"loan_id": loan_id})
        return loan

    def save(self, loan: Loan) -> None:
        self.storage.save(self.loans_table, loan.id, self._loan_to_dict(loan))

    def list_all(self) -> List[Loan]:
        loans = [self._loan_from_dict(d) for d in self.storage.load_all(self.loans_table)]
        loans.sort(key=lambda loan: loan.loan_code)
        return loans

    def find_by_customer(self, customer_id: str) -> List[Loan]:
        found = self.storage.find(self.loans_table, {'customer_id': customer_id})
        return sorted((self._loan_from_dict(d) for d in found), key=lambda loan: loan.loan_code)

    def get_schedule_entry(self, loan_id: str) -> Optional[AmortizationScheduleEntry]:
        found = self.storage.find(self.schedule_table, {'loan_id': loan_id})
        return self._entry_from_dict(found[0]) if found else None

    def save_schedule_entry(self, entry: AmortizationScheduleEntry) -> None:
        self.storage.save(self.schedule_table, entry.id, self._entry_to_dict(entry))

    def _loan_to_dict(self, loan: Loan) -> Dict:
        result = loan.to_dict()
        result['status'] = loan.status.value
        result['release_date'] = loan.release_date.isoformat()
        result['maturity_date'] = loan.maturity_date.isoformat()
        return result

    def _loan_from_dict(self, data: Dict) -> Loan:
        return Loan(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            loan_code=data['loan_code'],
            customer_id=data['customer_id'],
            principal_amount=Decimal(data['principal_amount']),
            interest_rate=Decimal(data['interest_rate']),
            interest_amount=Decimal(data['interest_amount']),
            total_amortization=Decimal(data['total_amortization']),
            current_balance=Decimal(data['current_balance']),
            term_days=data['term_days'],
            release_date=date.fromisoformat(data['release_date']),
            maturity_date=date.fromisoformat(data['maturity_date']),
            status=LoanStatus(data['status']),
            collector_id=data.get('collector_id'),
            loan_category=data.get('loan_category'),
            created_by=data.get('created_by'),
            loan_type_id=data.get('loan_type_id'),
        )

    def _entry_to_dict(self, entry: AmortizationScheduleEntry) -> Dict:
        result = entry.to_dict()
        result['payment_status'] = entry.payment_status.value
        result['due_date'] = entry.due_date.isoformat()
        if entry.actual_payment_date:
            result['actual_payment_date'] = entry.actual_payment_date.isoformat()
        if entry.actual_amount_paid is not None:
            result['actual_amount_paid'] = str(entry.actual_amount_paid)
        return result

    def _entry_from_dict(self, data: Dict) -> AmortizationScheduleEntry:
        actual_payment_date = None
        if data.get('actual_payment_date'):
            actual_payment_date = date.fromisoformat(data['actual_payment_date'])
        actual_amount_paid = None
        if data.get('actual_amount_paid') is not None:
            actual_amount_paid = Decimal(data['actual_amount_paid'])

        return AmortizationScheduleEntry(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            loan_id=data['loan_id'],
            payment_number=data['payment_number'],
            due_date=date.fromisoformat(data['due_date']),
            principal_amount=Decimal(data['principal_amount']),
            interest_amount=Decimal(data['interest_amount']),
            total_payment=Decimal(data['total_payment']),
            remaining_balance=Decimal(data['remaining_balance']),
            payment_status=ScheduleStatus(data['payment_status']),
            actual_payment_date=actual_payment_date,
            actual_amount_paid=actual_amount_paid,
        )


class LoanManager:
    """
    Books loans, keeps the loan type catalog and answers loan lookups
    """

    def __init__(
        self,
        storage: StorageInterface,
        loans: LoanRepository,
        customers: CustomerRepository,
        audit_trail: AuditTrail,
        loan_locks: KeyedLock,
        calculator: Optional[LoanTermCalculator] = None,
        code_prefix: str = "LN",
        loan_types: Optional[LoanTypeRepository] = None,
    ):
        self.storage = storage
        self.loans = loans
        self.customers = customers
        self.audit_trail = audit_trail
        self.loan_locks = loan_locks
        self.calculator = calculator or LoanTermCalculator()
        self.code_prefix = code_prefix
        self.loan_types = loan_types or LoanTypeRepository(storage)
        self.logger = get_logger("lending.loans")

    def create_loan_type(
        self,
        type_name: str,
        interest_rate: Any,
        term_days: int,
        term_months: int = 1,
        description: Optional[str] = None,
        created_by: Optional[str] = None
    ) -> LoanType:
        """Add an active loan type to the catalog"""
        if not type_name or not type_name.strip():
            raise ValidationError("Loan type name is required")
        interest_rate = to_decimal(interest_rate, "interest_rate")
        if interest_rate < 0:
            raise ValidationError(
                "Interest rate cannot be negative", {"interest_rate": interest_rate}
            )
        if isinstance(term_days, bool) or not isinstance(term_days, int) or term_days < 1:
            raise ValidationError("Term must be at least one day", {"term_days": term_days})

        now = datetime.now(timezone.utc)
        loan_type = LoanType(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            type_name=type_name,
            interest_rate=interest_rate,
            term_days=term_days,
            term_months=term_months,
            description=description,
        )
        self.loan_types.save(loan_type)

        self.audit_trail.log_event(
            event_type=AuditEventType.LOAN_TYPE_CREATED,
            entity_type="loan_type",
            entity_id=loan_type.id,
            user_id=created_by,
            metadata={
                "type_name": type_name,
                "interest_rate": interest_rate,
                "term_days": term_days,
            }
        )
        log_action(
            self.logger, "info", f"Loan type created: {type_name}",
            user_id=created_by, action="create_loan_type",
            resource=f"loan_type:{loan_type.id}",
        )
        return loan_type

    def get_loan_types(self) -> List[LoanType]:
        return self.loan_types.list_active()

    def book_loan(
        self,
        customer_id: str,
        principal: Any,
        rate_percent: Any = None,
        release_date: Optional[date] = None,
        term_days: Optional[int] = None,
        collector_id: Optional[str] = None,
        loan_category: Optional[str] = None,
        created_by: Optional[str] = None,
        loan_type_id: Optional[str] = None
    ) -> Loan:
        """
        Create a loan with its computed terms and balloon schedule entry

        Args:
            customer_id: Borrower customer ID (must already exist)
            principal: Amount lent
            rate_percent: Flat interest rate in percent; defaults to the
                loan type's rate
            release_date: Date the funds are released
            term_days: Term in business days; defaults to the loan type's term
            collector_id: Collector assigned to the loan
            loan_category: Free-form category label
            created_by: User booking the loan
            loan_type_id: Active loan type supplying the default rate and term

        Returns:
            Created Loan, status Good, balance = total amortization
        """
        if loan_type_id is not None:
            loan_type = self.loan_types.require(loan_type_id)
            if not loan_type.is_active:
                raise ValidationError(
                    f"Loan type {loan_type.type_name} is not active",
                    {"loan_type_id": loan_type_id},
                )
            if rate_percent is None:
                rate_percent = loan_type.interest_rate
            if term_days is None:
                term_days = loan_type.term_days
        if rate_percent is None or term_days is None:
            raise ValidationError(
                "Interest rate and term are required when no loan type supplies them",
                {"customer_id": customer_id},
            )

        terms = self.calculator.originate(principal, rate_percent, release_date, term_days)

        self.customers.require(customer_id)
        principal = to_decimal(principal, "principal")
        rate_percent = to_decimal(rate_percent, "rate_percent")

        now = datetime.now(timezone.utc)
        sequence = self.storage.next_sequence("loan_code")
        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            loan_code=f"{self.code_prefix}{sequence:04d}",
            customer_id=customer_id,
            principal_amount=principal,
            interest_rate=rate_percent,
            interest_amount=terms.interest_amount,
            total_amortization=terms.total_amortization,
            current_balance=terms.total_amortization,
            term_days=term_days,
            release_date=release_date,
            maturity_date=terms.maturity_date,
            collector_id=collector_id,
            loan_category=loan_category,
            created_by=created_by,
            loan_type_id=loan_type_id,
        )
        entry = AmortizationScheduleEntry(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            loan_id=loan.id,
            payment_number=1,
            due_date=loan.maturity_date,
            principal_amount=loan.principal_amount,
            interest_amount=loan.interest_amount,
            total_payment=loan.total_amortization,
            remaining_balance=Decimal('0'),
        )

        with self.storage.atomic():
            self.loans.save(loan)
            self.loans.save_schedule_entry(entry)

        self.audit_trail.log_event(
            event_type=AuditEventType.LOAN_BOOKED,
            entity_type="loan",
            entity_id=loan.id,
            user_id=created_by,
            metadata={
                "loan_code": loan.loan_code,
                "customer_id": customer_id,
                "principal_amount": loan.principal_amount,
                "loan_type_id": loan_type_id,
                "interest_rate": loan.interest_rate,
                "total_amortization": loan.total_amortization,
                "release_date": loan.release_date,
                "maturity_date": loan.maturity_date,
            }
        )
        log_action(
            self.logger, "info", f"Loan booked: {loan.loan_code}",
            user_id=created_by, action="book_loan", resource=f"loan:{loan.id}",
            extra={
                "customer_id": customer_id,
                "principal_amount": str(loan.principal_amount),
                "total_amortization": str(loan.total_amortization),
                "maturity_date": loan.maturity_date.isoformat(),
            }
        )
        return loan

    def get_customer_loans(self, customer_id: str) -> List[Loan]:
        return self.loans.find_by_customer(customer_id)

    def get_all_loans(self) -> List[Loan]:
        return self.loans.list_all()

    def get_amortization_schedule(self, loan_id: str) -> List[AmortizationScheduleEntry]:
        self.loans.require(loan_id)
        entry = self.loans.get_schedule_entry(loan_id)
        return [entry] if entry else []

    def update_status(self, loan_id: str, status: LoanStatus, changed_by: Optional[str] = None) -> Loan:
        """
        Mark a whole loan Reversed or Restructured.

        Good, Past Due and Full Paid are derived from payments and cannot be
        set here.
        """
        if status.is_payable:
            raise ValidationError(
                f"Status {status.value} is derived from payments and cannot be set directly",
                {"loan_id": loan_id, "status": status.value},
            )

        with self.loan_locks.hold(loan_id):
            loan = self.loans.require(loan_id)
            previous_status = loan.status
            loan.status = status
            loan.updated_at = datetime.now(timezone.utc)
            self.loans.save(loan)

        self.audit_trail.log_event(
            event_type=AuditEventType.LOAN_STATUS_CHANGED,
            entity_type="loan",
            entity_id=loan_id,
            user_id=changed_by,
            metadata={"from": previous_status, "to": status},
        )
        log_action(
            self.logger, "info", f"Loan {loan.loan_code} status changed to {status.value}",
            user_id=changed_by, action="update_loan_status", resource=f"loan:{loan_id}",
            extra={"from": previous_status.value, "to": status.value},
        )
        return loan
