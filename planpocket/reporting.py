"""
Reporting Module

Read-only summaries over a user's transactions and loans: the dashboard
summary, monthly and yearly analyses, category breakdowns, spending trends,
cash flow with running balance, and the derived financial health metrics.
Nothing here writes to storage.
"""

from decimal import Decimal, ROUND_HALF_UP
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple
from collections import defaultdict
from enum import Enum
import calendar

from .amortization import LoanStatus
from .currency import Currency, DEFAULT_CURRENCY, round_money
from .loans import LoanManager
from .transactions import Transaction, TransactionManager, TransactionType
from .users import UserManager


ZERO = Decimal('0')
HUNDRED = Decimal('100')
METRICS_WINDOW_DAYS = 30


class TrendPeriod(Enum):
    """Bucket size for spending trends"""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class CashFlowPeriod(Enum):
    """Bucket size for cash flow; each has a fixed look-back window"""
    MONTHLY = "monthly"        # last 12 months
    QUARTERLY = "quarterly"    # last 3 calendar years
    YEARLY = "yearly"          # last 5 calendar years


def _percent(part: Decimal, whole: Decimal, places: str = '0.01') -> Decimal:
    if whole <= ZERO:
        return ZERO
    return (part / whole * HUNDRED).quantize(Decimal(places), rounding=ROUND_HALF_UP)


def _parse_period(enum_cls, value, valid: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise ValueError(f"Invalid period. Use {valid}")


def _totals(transactions: List[Transaction]) -> Dict[str, Any]:
    income = [t for t in transactions if t.type == TransactionType.INCOME]
    expense = [t for t in transactions if t.type == TransactionType.EXPENSE]
    total_income = sum((t.amount for t in income), ZERO)
    total_expenses = sum((t.amount for t in expense), ZERO)
    return {
        "income": total_income,
        "expenses": total_expenses,
        "net_amount": total_income - total_expenses,
        "transaction_count": {"income": len(income), "expense": len(expense)},
    }


class SummaryEngine:
    """
    Builds financial summaries for a single user
    """

    def __init__(
        self,
        transaction_manager: TransactionManager,
        loan_manager: LoanManager,
        user_manager: UserManager,
        recent_limit: int = 5,
        currency: Optional[Currency] = None
    ):
        self.transaction_manager = transaction_manager
        self.loan_manager = loan_manager
        self.user_manager = user_manager
        self.recent_limit = recent_limit
        self.currency = currency or DEFAULT_CURRENCY

    def financial_summary(self, user_id: str, today: Optional[date] = None) -> Dict[str, Any]:
        """
        Dashboard summary: current month, all time, loans and recent activity

        Budget utilization is current-month expenses as a whole percentage of
        the profile's monthly income (0 when no income is set).
        """
        today = today or date.today()
        user = self.user_manager.require_user(user_id)
        all_transactions = self.transaction_manager.list_transactions(user_id)

        month_start, month_end = self._month_bounds(today.year, today.month)
        current = _totals([t for t in all_transactions if month_start <= t.date <= month_end])
        current["budget_utilization"] = _percent(current["expenses"], user.monthly_income, '1')
        current["remaining"] = user.monthly_income - current["expenses"]

        loans = self.loan_manager.list_loans(user_id)
        loan_summary = {
            "total_loan_amount": sum((l.terms.principal for l in loans), ZERO),
            "total_remaining_balance": sum((l.remaining_balance for l in loans), ZERO),
            "total_monthly_emi": sum(
                (l.monthly_installment for l in loans if l.status != LoanStatus.COMPLETED), ZERO),
            "active_loans": sum(1 for l in loans if l.status == LoanStatus.ACTIVE),
        }

        return {
            "user": {
                "name": user.name,
                "email": user.email,
                "annual_income": user.annual_income,
                "monthly_income": user.monthly_income,
            },
            "current_month": current,
            "all_time": _totals(all_transactions),
            "loans": loan_summary,
            "recent_transactions": all_transactions[:self.recent_limit],
        }

    def monthly_analysis(self, user_id: str, year: int, month: int) -> Dict[str, Any]:
        """Transactions, category and daily breakdowns for one calendar month"""
        start, end = self._month_bounds(year, month)
        transactions = self.transaction_manager.list_transactions(
            user_id, start_date=start, end_date=end)

        daily: Dict[int, Dict[str, Decimal]] = defaultdict(lambda: {"income": ZERO, "expense": ZERO})
        for t in transactions:
            daily[t.date.day][t.type.value] += t.amount

        return {
            "period": {"year": year, "month": month},
            "transactions": transactions,
            "category_breakdown": self._categories_by_type(transactions),
            "daily_breakdown": [
                {"day": day, "income": values["income"], "expense": values["expense"]}
                for day, values in sorted(daily.items())
            ],
            "totals": _totals(transactions),
        }

    def yearly_analysis(self, user_id: str, year: int) -> Dict[str, Any]:
        """Per-month and per-category totals for one calendar year"""
        transactions = self.transaction_manager.list_transactions(
            user_id, start_date=date(year, 1, 1), end_date=date(year, 12, 31))

        monthly: Dict[int, Dict[str, Decimal]] = defaultdict(lambda: {"income": ZERO, "expense": ZERO})
        for t in transactions:
            monthly[t.date.month][t.type.value] += t.amount

        totals = _totals(transactions)
        return {
            "year": year,
            "monthly_breakdown": [
                {"month": m, "income": values["income"], "expense": values["expense"]}
                for m, values in sorted(monthly.items())
            ],
            "category_breakdown": self._categories_by_type(transactions),
            "totals": {
                "income": totals["income"],
                "expenses": totals["expenses"],
                "net_amount": totals["net_amount"],
                "average_monthly_income": round_money(totals["income"] / 12, self.currency),
                "average_monthly_expenses": round_money(totals["expenses"] / 12, self.currency),
            },
        }

    def category_breakdown(
        self,
        user_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        type: Optional[TransactionType] = None
    ) -> Dict[str, Any]:
        """Total, count and average per (category, type), largest total first"""
        if start_date and end_date and start_date > end_date:
            raise ValueError("Start date must be on or before end date")
        transactions = self.transaction_manager.list_transactions(
            user_id, type=type, start_date=start_date, end_date=end_date)

        groups: Dict[Tuple[str, str], List[Decimal]] = defaultdict(list)
        for t in transactions:
            groups[(t.category, t.type.value)].append(t.amount)

        breakdown = []
        for (category, type_value), amounts in groups.items():
            total = sum(amounts, ZERO)
            breakdown.append({
                "category": category,
                "type": type_value,
                "total": total,
                "count": len(amounts),
                "average": round_money(total / len(amounts), self.currency),
            })
        breakdown.sort(key=lambda row: row["total"], reverse=True)

        return {
            "breakdown": breakdown,
            "filters": {
                "start_date": start_date,
                "end_date": end_date,
                "type": TransactionType(type).value if type else None,
            },
        }

    def spending_trends(self, user_id: str, period: str = "monthly", limit: int = 12) -> Dict[str, Any]:
        """
        Income and expense grouped by day, ISO week or month

        Returns the most recent `limit` buckets, ordered oldest to newest.
        """
        period = _parse_period(TrendPeriod, period, "daily, weekly, or monthly")
        if limit < 1:
            raise ValueError("limit must be positive")

        buckets: Dict[Tuple[int, ...], Dict[str, Any]] = {}
        for t in self.transaction_manager.list_transactions(user_id):
            key = self._trend_key(t.date, period)
            bucket = buckets.setdefault(key, {"income": ZERO, "expense": ZERO, "transaction_count": 0})
            bucket[t.type.value] += t.amount
            bucket["transaction_count"] += 1

        recent = sorted(buckets.items(), reverse=True)[:limit]
        trends = [
            dict(self._trend_label(key, period), **values)
            for key, values in reversed(recent)
        ]
        return {
            "period": period.value,
            "trends": trends,
            "summary": {
                "periods": len(trends),
                "total_income": sum((t["income"] for t in trends), ZERO),
                "total_expenses": sum((t["expense"] for t in trends), ZERO),
            },
        }

    def cash_flow(self, user_id: str, period: str, today: Optional[date] = None) -> Dict[str, Any]:
        """Net cash flow per bucket with a running balance across the window"""
        period = _parse_period(CashFlowPeriod, period, "monthly, quarterly, or yearly")
        today = today or date.today()

        if period == CashFlowPeriod.MONTHLY:
            first_month = today.year * 12 + today.month - 1 - 11
            start = date(first_month // 12, first_month % 12 + 1, 1)
            end = self._month_bounds(today.year, today.month)[1]
        elif period == CashFlowPeriod.QUARTERLY:
            start, end = date(today.year - 2, 1, 1), date(today.year, 12, 31)
        else:
            start, end = date(today.year - 4, 1, 1), date(today.year, 12, 31)

        buckets: Dict[Tuple[int, ...], Dict[str, Decimal]] = {}
        for t in self.transaction_manager.list_transactions(user_id, start_date=start, end_date=end):
            if period == CashFlowPeriod.MONTHLY:
                key = (t.date.year, t.date.month)
            elif period == CashFlowPeriod.QUARTERLY:
                key = (t.date.year, (t.date.month - 1) // 3 + 1)
            else:
                key = (t.date.year,)
            bucket = buckets.setdefault(key, {"income": ZERO, "expense": ZERO})
            bucket[t.type.value] += t.amount

        running = ZERO
        rows = []
        for key, values in sorted(buckets.items()):
            net = values["income"] - values["expense"]
            running += net
            label = {"year": key[0]}
            if period == CashFlowPeriod.MONTHLY:
                label["month"] = key[1]
            elif period == CashFlowPeriod.QUARTERLY:
                label["quarter"] = key[1]
            rows.append(dict(label, income=values["income"], expense=values["expense"],
                             net_cash_flow=net, running_balance=running))

        return {
            "period": period.value,
            "cash_flow": rows,
            "summary": {
                "total_income": sum((r["income"] for r in rows), ZERO),
                "total_expenses": sum((r["expense"] for r in rows), ZERO),
                "total_net_cash_flow": sum((r["net_cash_flow"] for r in rows), ZERO),
                "final_balance": running,
            },
        }

    def financial_metrics(self, user_id: str, today: Optional[date] = None) -> Dict[str, Any]:
        """
        Financial health over the last 30 days

        Net cash flow subtracts the installments of every loan that is not
        completed; debt-to-income and savings rate are percentages of the
        30-day transaction income (0 when there is none).
        """
        today = today or date.today()
        recent = self.transaction_manager.list_transactions(
            user_id, start_date=today - timedelta(days=METRICS_WINDOW_DAYS), end_date=today)
        totals = _totals(recent)
        income, expenses = totals["income"], totals["expenses"]

        open_loans = [l for l in self.loan_manager.list_loans(user_id) if l.status != LoanStatus.COMPLETED]
        installments = sum((l.monthly_installment for l in open_loans), ZERO)
        outstanding = sum((l.remaining_balance for l in open_loans), ZERO)
        net_cash_flow = income - expenses - installments

        return {
            "monthly_income_from_transactions": income,
            "total_expenses_from_transactions": expenses,
            "total_loan_installments": installments,
            "total_outstanding_debt": outstanding,
            "net_cash_flow": net_cash_flow,
            "debt_to_income_ratio": _percent(installments, income),
            "monthly_savings_rate": _percent(net_cash_flow, income),
        }

    def _categories_by_type(self, transactions: List[Transaction]) -> Dict[str, List[Dict[str, Any]]]:
        grouped: Dict[str, Dict[str, Dict[str, Any]]] = {"income": {}, "expense": {}}
        for t in transactions:
            row = grouped[t.type.value].setdefault(t.category, {"category": t.category, "total": ZERO, "count": 0})
            row["total"] += t.amount
            row["count"] += 1
        return {
            type_value: sorted(rows.values(), key=lambda r: r["total"], reverse=True)
            for type_value, rows in grouped.items()
        }

    def _month_bounds(self, year: int, month: int) -> Tuple[date, date]:
        if not 1 <= month <= 12:
            raise ValueError(f"Month must be between 1 and 12, got {month}")
        return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])

    def _trend_key(self, day: date, period: TrendPeriod) -> Tuple[int, ...]:
        if period == TrendPeriod.DAILY:
            return (day.year, day.month, day.day)
        if period == TrendPeriod.WEEKLY:
            iso = day.isocalendar()
            return (iso[0], iso[1])
        return (day.year, day.month)

    def _trend_label(self, key: Tuple[int, ...], period: TrendPeriod) -> Dict[str, int]:
        if period == TrendPeriod.DAILY:
            return {"year": key[0], "month": key[1], "day": key[2]}
        if period == TrendPeriod.WEEKLY:
            return {"year": key[0], "week": key[1]}
        return {"year": key[0], "month": key[1]}
