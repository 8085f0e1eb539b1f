"""
Test suite for loans module

Tests flat-rate term calculation, maturity dates in business days, loan
booking, the loan type catalog and manual status changes.
"""

import pytest
from dataclasses import replace
from decimal import Decimal
from datetime import date, datetime

from lending_core.audit import AuditEventType
from lending_core.business_days import SUNDAY, count_business_days
from lending_core.config import LendingConfig
from lending_core.engine import LendingEngine
from lending_core.errors import (
    CustomerNotFoundError, LoanNotFoundError, LoanTypeNotFoundError, ValidationError,
)
from lending_core.loans import LoanStatus, LoanTermCalculator, LoanTypeStatus, ScheduleStatus
from lending_core.storage import InMemoryStorage


class TestLoanTermCalculator:
    """Test loan term calculations"""

    def setup_method(self):
        """Set up test fixtures"""
        self.calculator = LoanTermCalculator()

    def test_compute_interest(self):
        """Test flat interest is principal times rate percent"""
        assert self.calculator.compute_interest(10000, 6) == Decimal('600')

    def test_compute_interest_keeps_decimal_precision(self):
        """Test no rounding is applied to fractional interest"""
        assert self.calculator.compute_interest('1234.56', '3.5') == Decimal('43.2096')

    def test_zero_rate_is_allowed(self):
        """Test a zero rate yields zero interest"""
        assert self.calculator.compute_interest(5000, 0) == Decimal('0')

    def test_compute_total_obligation(self):
        """Test total obligation is principal plus interest"""
        assert self.calculator.compute_total_obligation(10000, 600) == Decimal('10600')

    def test_maturity_skips_sundays(self):
        """Test a one-day term released on Saturday matures on Monday"""
        assert self.calculator.compute_maturity_date(date(2025, 1, 4), 1) == date(2025, 1, 6)

    def test_maturity_never_sunday(self):
        """Test maturity lands on a business day with exactly term_days elapsed"""
        release = date(2025, 3, 1)
        for term in range(1, 120):
            maturity = self.calculator.compute_maturity_date(release, term)
            assert maturity.weekday() != SUNDAY
            assert count_business_days(release, maturity) == term

    def test_originate(self):
        """Test origination returns all derived terms"""
        terms = self.calculator.originate(10000, 6, date(2025, 1, 1), 26)
        assert terms.interest_amount == Decimal('600')
        assert terms.total_amortization == Decimal('10600')
        assert terms.maturity_date == date(2025, 1, 31)

    @pytest.mark.parametrize("principal", [0, -100, "abc", None])
    def test_invalid_principal(self, principal):
        """Test non-positive or non-numeric principal is rejected"""
        with pytest.raises(ValidationError):
            self.calculator.compute_interest(principal, 6)

    def test_negative_rate(self):
        """Test negative rate is rejected"""
        with pytest.raises(ValidationError):
            self.calculator.compute_interest(10000, -1)

    @pytest.mark.parametrize("term_days", [0, -5, 2.5, True])
    def test_invalid_term(self, term_days):
        """Test terms must be whole positive day counts"""
        with pytest.raises(ValidationError):
            self.calculator.compute_maturity_date(date(2025, 1, 1), term_days)

    @pytest.mark.parametrize("release_date", ["2025-01-01", datetime(2025, 1, 1, 8, 0)])
    def test_release_date_must_be_date(self, release_date):
        """Test strings and datetimes are rejected as release dates"""
        with pytest.raises(ValidationError):
            self.calculator.compute_maturity_date(release_date, 10)


class TestLoanManager:
    """Test loan booking and lookups"""

    def setup_method(self):
        """Set up test fixtures"""
        self.engine = LendingEngine(
            storage=InMemoryStorage(), config=LendingConfig(database_url="memory://")
        )
        self.customer = self.engine.create_customer("Maria", "Santos")

    def _book(self, **overrides):
        params = dict(
            customer_id=self.customer.id,
            principal=Decimal('10000'),
            rate_percent=Decimal('6'),
            release_date=date(2025, 1, 1),
            term_days=26,
        )
        params.update(overrides)
        return self.engine.book_loan(**params)

    def test_book_loan(self):
        """Test a booked loan starts in Good standing at full balance"""
        loan = self._book(collector_id="COL-1", created_by="officer")
        assert loan.loan_code == "LN0001"
        assert loan.status == LoanStatus.GOOD
        assert loan.current_balance == Decimal('10600')
        assert loan.total_amortization == Decimal('10600')
        assert loan.maturity_date == date(2025, 1, 31)
        assert loan.collector_id == "COL-1"

        stored = self.engine.get_loan(loan.id)
        assert stored == loan

    def test_loan_codes_are_sequential(self):
        """Test each booked loan gets the next code"""
        first = self._book()
        second = self._book()
        assert first.loan_code == "LN0001"
        assert second.loan_code == "LN0002"

    def test_schedule_has_single_balloon_entry(self):
        """Test the schedule holds one Pending entry due at maturity"""
        loan = self._book()
        schedule = self.engine.get_amortization_schedule(loan.id)
        assert len(schedule) == 1
        entry = schedule[0]
        assert entry.due_date == loan.maturity_date
        assert entry.total_payment == Decimal('10600')
        assert entry.payment_status == ScheduleStatus.PENDING

    def test_book_for_unknown_customer(self):
        """Test booking requires an existing customer"""
        with pytest.raises(CustomerNotFoundError):
            self._book(customer_id="missing")

    def test_book_with_invalid_terms(self):
        """Test invalid terms are rejected before anything is stored"""
        with pytest.raises(ValidationError):
            self._book(principal=0)
        assert self.engine.get_all_loans() == []

    def test_get_unknown_loan(self):
        """Test loading a missing loan raises"""
        with pytest.raises(LoanNotFoundError):
            self.engine.get_loan("missing")

    def test_customer_loans(self):
        """Test loans are listed per customer"""
        other = self.engine.create_customer("Jose", "Reyes")
        mine = self._book()
        self._book(customer_id=other.id)
        assert [l.id for l in self.engine.get_customer_loans(self.customer.id)] == [mine.id]

    def test_update_status_to_restructured(self):
        """Test a loan can be marked Restructured"""
        loan = self._book()
        updated = self.engine.update_loan_status(loan.id, LoanStatus.RESTRUCTURED, "manager")
        assert updated.status == LoanStatus.RESTRUCTURED
        assert self.engine.get_loan(loan.id).status == LoanStatus.RESTRUCTURED

        events = self.engine.audit_trail.get_events_by_type(AuditEventType.LOAN_STATUS_CHANGED)
        assert len(events) == 1

    def test_update_status_rejects_derived_status(self):
        """Test payment-derived statuses cannot be set manually"""
        loan = self._book()
        with pytest.raises(ValidationError):
            self.engine.update_loan_status(loan.id, LoanStatus.FULL_PAID)

    def test_booking_is_audited(self):
        """Test booking writes a LOAN_BOOKED event"""
        loan = self._book()
        events = self.engine.audit_trail.get_events_for_entity("loan", loan.id)
        assert [e.event_type for e in events] == [AuditEventType.LOAN_BOOKED]


class TestLoanTypes:
    """Test the loan type catalog and booking from a loan type"""

    def setup_method(self):
        """Set up test fixtures"""
        self.engine = LendingEngine(
            storage=InMemoryStorage(), config=LendingConfig(database_url="memory://")
        )
        self.customer = self.engine.create_customer("Maria", "Santos")
        self.monthly = self.engine.create_loan_type(
            "Monthly", Decimal('6'), 26, description="26 business days at 6%"
        )

    def test_create_loan_type(self):
        """Test a new loan type is active and audited"""
        assert self.monthly.type_name == "Monthly"
        assert self.monthly.interest_rate == Decimal('6')
        assert self.monthly.term_days == 26
        assert self.monthly.term_months == 1
        assert self.monthly.status == LoanTypeStatus.ACTIVE

        events = self.engine.audit_trail.get_events_for_entity("loan_type", self.monthly.id)
        assert [e.event_type for e in events] == [AuditEventType.LOAN_TYPE_CREATED]

    def test_active_types_sorted_by_term(self):
        """Test active types are listed shortest term first"""
        weekly = self.engine.create_loan_type("Weekly", '3', 6)
        closed = self.engine.create_loan_type("Old product", '9', 13)
        self.engine.loan_manager.loan_types.save(
            replace(closed, status=LoanTypeStatus.INACTIVE)
        )

        assert [t.id for t in self.engine.get_loan_types()] == [weekly.id, self.monthly.id]

    @pytest.mark.parametrize("name,rate,term", [
        ("", '6', 26), ("Bad rate", '-1', 26), ("Bad term", '6', 0),
    ])
    def test_invalid_loan_type(self, name, rate, term):
        """Test name, rate and term are validated"""
        with pytest.raises(ValidationError):
            self.engine.create_loan_type(name, rate, term)

    def test_book_from_loan_type(self):
        """Test the loan type supplies rate and term"""
        loan = self.engine.book_loan(
            self.customer.id, Decimal('10000'), release_date=date(2025, 1, 1),
            loan_type_id=self.monthly.id,
        )
        assert loan.loan_type_id == self.monthly.id
        assert loan.interest_rate == Decimal('6')
        assert loan.term_days == 26
        assert loan.total_amortization == Decimal('10600')
        assert loan.maturity_date == date(2025, 1, 31)
        assert self.engine.get_loan(loan.id).loan_type_id == self.monthly.id

    def test_explicit_terms_override_loan_type(self):
        """Test a given rate and term win over the type's defaults"""
        loan = self.engine.book_loan(
            self.customer.id, Decimal('10000'), Decimal('5'), date(2025, 1, 1), 10,
            loan_type_id=self.monthly.id,
        )
        assert loan.interest_rate == Decimal('5')
        assert loan.term_days == 10

    def test_unknown_loan_type(self):
        """Test booking with a missing loan type raises"""
        with pytest.raises(LoanTypeNotFoundError):
            self.engine.book_loan(
                self.customer.id, 1000, release_date=date(2025, 1, 1), loan_type_id="missing"
            )

    def test_inactive_loan_type(self):
        """Test an inactive loan type cannot be booked"""
        self.engine.loan_manager.loan_types.save(
            replace(self.monthly, status=LoanTypeStatus.INACTIVE)
        )
        with pytest.raises(ValidationError):
            self.engine.book_loan(
                self.customer.id, 1000, release_date=date(2025, 1, 1),
                loan_type_id=self.monthly.id,
            )

    def test_terms_required_without_loan_type(self):
        """Test rate and term must be given when no loan type is used"""
        with pytest.raises(ValidationError):
            self.engine.book_loan(self.customer.id, 1000, release_date=date(2025, 1, 1))
