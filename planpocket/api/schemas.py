"""
Pydantic schemas for API requests, and serialization of responses
"""

from decimal import Decimal
from datetime import date, datetime
from dataclasses import asdict, is_dataclass
from enum import Enum
from typing import Any, List, Optional
from pydantic import BaseModel, Field


def parse_date(value: Optional[str]) -> Optional[date]:
    """Parse an ISO date string; None passes through"""
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValueError(f"Invalid date '{value}', expected YYYY-MM-DD")


def serialize(value: Any) -> Any:
    """Convert domain objects to JSON-safe values; money stays a string"""
    if hasattr(value, "to_dict"):
        return serialize(value.to_dict())
    if is_dataclass(value) and not isinstance(value, type):
        return serialize(asdict(value))
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize(v) for v in value]
    return value


def envelope(data: Any = None, message: Optional[str] = None) -> dict:
    """Standard success body"""
    body = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = serialize(data)
    return body


# Auth and user schemas
class RegisterRequest(BaseModel):
    name: str
    email: str
    password: str


class LoginRequest(BaseModel):
    email: str
    password: str


class UpdateProfileRequest(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    annual_income: Optional[Decimal] = None
    date_of_birth: Optional[str] = None  # ISO date string


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


class UpdateIncomeRequest(BaseModel):
    annual_income: Decimal = Field(..., description="Annual income, must be positive")


# Transaction schemas
class CreateTransactionRequest(BaseModel):
    type: str = Field(..., description="Transaction type (income, expense)")
    description: str
    amount: Decimal
    category: str
    date: Optional[str] = None  # ISO date string, defaults to today
    notes: Optional[str] = None
    recurring: bool = False
    recurring_frequency: Optional[str] = Field(None, description="daily, weekly, monthly, yearly")
    tags: List[str] = Field(default_factory=list)


class UpdateTransactionRequest(BaseModel):
    type: Optional[str] = None
    description: Optional[str] = None
    amount: Optional[Decimal] = None
    category: Optional[str] = None
    date: Optional[str] = None
    notes: Optional[str] = None
    recurring: Optional[bool] = None
    recurring_frequency: Optional[str] = None
    tags: Optional[List[str]] = None


# Loan schemas
class CreateLoanRequest(BaseModel):
    loan_type: str = Field(..., description="personal, home, car, education, business")
    lender_name: str
    principal: Decimal
    annual_interest_rate_percent: Decimal
    term_months: int
    start_date: Optional[str] = None  # ISO date string, defaults to today
    notes: Optional[str] = None
    status: str = "active"


class UpdateLoanRequest(BaseModel):
    loan_type: Optional[str] = None
    lender_name: Optional[str] = None
    principal: Optional[Decimal] = None
    annual_interest_rate_percent: Optional[Decimal] = None
    term_months: Optional[int] = None
    start_date: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[str] = None


class LoanPaymentRequest(BaseModel):
    amount: Decimal
    payment_date: Optional[str] = None  # ISO date string
    payment_method: str = "bank_transfer"
    note: Optional[str] = None


class CalculateEMIRequest(BaseModel):
    principal: Decimal
    annual_interest_rate_percent: Decimal
    term_months: int
