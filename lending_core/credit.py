"""
Credit Score Adjustment

Penalizes a customer's credit standing for a late payment and, when that
payment is reversed, gives back exactly what the penalty took. The adjuster
knows nothing about loans or payments beyond being told a payment was
late; calling it at most once per late payment is the ledger's job.

Late payment points grow by the penalty on every late payment. Points are
a running total of penalties, not derived from the current score.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timezone

from .customers import Customer
from .errors import ValidationError


DEFAULT_LATE_PAYMENT_PENALTY = 5
DEFAULT_MAX_CREDIT_SCORE = 100


@dataclass(frozen=True)
class CreditAdjustment:
    """What a single adjustment did to a customer's credit fields"""
    customer: Customer
    score_before: int
    score_after: int
    points_delta: int
    count_delta: int

    @property
    def score_delta(self) -> int:
        return self.score_after - self.score_before


class CreditScoreAdjuster:
    """Applies and undoes late-payment credit penalties"""

    def __init__(
        self,
        penalty: int = DEFAULT_LATE_PAYMENT_PENALTY,
        max_credit_score: int = DEFAULT_MAX_CREDIT_SCORE
    ):
        if penalty < 0:
            raise ValidationError("Late payment penalty cannot be negative", {"penalty": penalty})
        self.penalty = penalty
        self.max_credit_score = max_credit_score

    def on_late_payment(self, customer: Customer) -> CreditAdjustment:
        """
        Penalize a late payment.

        Score drops by the penalty but never below zero, so the actual
        deduction can be smaller than the penalty; points always grow by
        the full penalty.
        """
        score_after = max(0, customer.credit_score - self.penalty)
        updated = replace(
            customer,
            credit_score=score_after,
            late_payment_count=customer.late_payment_count + 1,
            late_payment_points=customer.late_payment_points + self.penalty,
            updated_at=datetime.now(timezone.utc),
        )
        return CreditAdjustment(
            customer=updated,
            score_before=customer.credit_score,
            score_after=score_after,
            points_delta=self.penalty,
            count_delta=1,
        )

    def undo_late_payment(
        self,
        customer: Customer,
        score_deduction: int,
        points_added: int
    ) -> CreditAdjustment:
        """
        Undo one recorded late-payment penalty.

        `score_deduction` and `points_added` come from the payment's effect
        record, so a penalty that hit the zero floor is restored by the
        amount actually taken, not by the nominal penalty.
        """
        score_after = min(self.max_credit_score, customer.credit_score + score_deduction)
        points_after = max(0, customer.late_payment_points - points_added)
        count_after = max(0, customer.late_payment_count - 1)
        updated = replace(
            customer,
            credit_score=score_after,
            late_payment_count=count_after,
            late_payment_points=points_after,
            updated_at=datetime.now(timezone.utc),
        )
        return CreditAdjustment(
            customer=updated,
            score_before=customer.credit_score,
            score_after=score_after,
            points_delta=points_after - customer.late_payment_points,
            count_delta=count_after - customer.late_payment_count,
        )
