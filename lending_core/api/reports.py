"""
Reporting endpoints
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends

from .dependencies import get_engine
from .schemas import (
    DailyCollectionModel, OverdueLoanModel, PaymentSummaryModel, PortfolioSummaryModel,
)
from ..engine import LendingEngine


router = APIRouter()


@router.get("/portfolio", response_model=PortfolioSummaryModel)
async def portfolio_summary(engine: LendingEngine = Depends(get_engine)):
    """Loan counts and totals across the portfolio"""
    return PortfolioSummaryModel.from_summary(engine.get_portfolio_summary())


@router.get("/payments", response_model=PaymentSummaryModel)
async def payment_summary(
    today: Optional[date] = None,
    engine: LendingEngine = Depends(get_engine)
):
    """Totals over active payments"""
    return PaymentSummaryModel.from_summary(engine.get_payment_summary(today))


@router.get("/daily-collection", response_model=DailyCollectionModel)
async def daily_collection(
    day: Optional[date] = None,
    engine: LendingEngine = Depends(get_engine)
):
    """Payments collected on a single day"""
    return DailyCollectionModel.from_report(engine.get_daily_collection(day))


@router.get("/overdue-loans", response_model=List[OverdueLoanModel])
async def overdue_loans(
    as_of: Optional[date] = None,
    engine: LendingEngine = Depends(get_engine)
):
    """Open loans past maturity, most overdue first"""
    return [OverdueLoanModel.from_overdue(o) for o in engine.get_overdue_loans(as_of)]
