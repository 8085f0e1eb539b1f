"""
Late Payment Assessment

Measures how late a payment is, in business days past the due date, and
the flat late fee that goes with it: a fixed amount per started week of
lateness. The fee is recorded on the payment; it is not interest-bearing
and is not added to the loan balance.
"""

import math
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from .business_days import count_business_days
from .errors import ValidationError


DEFAULT_FLAT_WEEKLY_FEE = Decimal('50')


@dataclass(frozen=True)
class LateAssessment:
    """Outcome of comparing a payment date with a due date"""
    days_late: int
    is_late: bool
    late_fee: Decimal

    @classmethod
    def on_time(cls) -> 'LateAssessment':
        return cls(days_late=0, is_late=False, late_fee=Decimal('0'))


class LatePaymentAssessor:
    """Computes lateness and late fee between a due date and a payment date"""

    def __init__(self, flat_weekly_fee: Decimal = DEFAULT_FLAT_WEEKLY_FEE):
        flat_weekly_fee = Decimal(str(flat_weekly_fee))
        if flat_weekly_fee < 0:
            raise ValidationError(
                "Flat weekly fee cannot be negative",
                {"flat_weekly_fee": flat_weekly_fee},
            )
        self.flat_weekly_fee = flat_weekly_fee

    def assess(self, due_date: date, payment_date: date) -> LateAssessment:
        """
        Assess a payment made on `payment_date` against `due_date`.

        Days late counts every non-Sunday in (due_date, payment_date]; the
        fee is ceil(days_late / 7) times the flat weekly fee.
        """
        if payment_date <= due_date:
            return LateAssessment.on_time()

        days_late = count_business_days(due_date, payment_date)
        if days_late == 0:
            # Due on Saturday, paid on the following Sunday
            return LateAssessment.on_time()

        weeks_late = math.ceil(days_late / 7)
        return LateAssessment(
            days_late=days_late,
            is_late=True,
            late_fee=self.flat_weekly_fee * weeks_late,
        )
