"""
PlanPocket

Personal-finance backend: income/expense tracking, loan registration with
EMI amortization, and aggregated financial summaries. All monetary math
uses Decimal precision.
"""

__version__ = "1.0.0"
