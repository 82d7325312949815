"""
Summary and reporting endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends

from .auth import PlanPocketSystem, get_system, get_current_user
from .schemas import envelope, parse_date


router = APIRouter()


@router.get("")
async def get_financial_summary(
    user_id: str = Depends(get_current_user),
    system: PlanPocketSystem = Depends(get_system)
):
    """Dashboard summary for the current month and all time"""
    return envelope(system.summary_engine.financial_summary(user_id))


@router.get("/monthly/{year}/{month}")
async def get_monthly_analysis(
    year: int,
    month: int,
    user_id: str = Depends(get_current_user),
    system: PlanPocketSystem = Depends(get_system)
):
    """Breakdown for one calendar month"""
    return envelope(system.summary_engine.monthly_analysis(user_id, year, month))


@router.get("/yearly/{year}")
async def get_yearly_analysis(
    year: int,
    user_id: str = Depends(get_current_user),
    system: PlanPocketSystem = Depends(get_system)
):
    """Breakdown for one calendar year"""
    return envelope(system.summary_engine.yearly_analysis(user_id, year))


@router.get("/category-breakdown")
async def get_category_breakdown(
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    type: Optional[str] = None,
    user_id: str = Depends(get_current_user),
    system: PlanPocketSystem = Depends(get_system)
):
    """Totals per category, optionally filtered"""
    return envelope(system.summary_engine.category_breakdown(
        user_id, parse_date(start_date), parse_date(end_date), type))


@router.get("/spending-trends")
async def get_spending_trends(
    period: str = "monthly",
    limit: int = 12,
    user_id: str = Depends(get_current_user),
    system: PlanPocketSystem = Depends(get_system)
):
    """Income and expense trends by day, week or month"""
    return envelope(system.summary_engine.spending_trends(user_id, period, limit))


@router.get("/cash-flow/{period}")
async def get_cash_flow(
    period: str,
    user_id: str = Depends(get_current_user),
    system: PlanPocketSystem = Depends(get_system)
):
    """Cash flow with running balance"""
    return envelope(system.summary_engine.cash_flow(user_id, period))


@router.get("/metrics")
async def get_financial_metrics(
    user_id: str = Depends(get_current_user),
    system: PlanPocketSystem = Depends(get_system)
):
    """Financial health metrics over the last 30 days"""
    return envelope(system.summary_engine.financial_metrics(user_id))
