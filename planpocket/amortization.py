"""
Loan Amortization Module

Pure EMI (equal monthly installment) math: installment and totals for a set
of loan terms, the full amortization schedule, and the split of a single
payment into interest and principal. Every caller that needs an installment
or a balance update goes through this module; nothing here performs I/O,
logs, or keeps state.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from enum import Enum

from dateutil.relativedelta import relativedelta

from .currency import Currency, Numeric, round_money, to_decimal


ZERO = Decimal('0')
HUNDRED = Decimal('100')
MONTHS_PER_YEAR = Decimal('12')
MAX_TERM_MONTHS = 600


class LoanStatus(Enum):
    """Loan lifecycle states"""
    PENDING = "pending"        # Registered, repayments not started
    ACTIVE = "active"          # Regular repayments in progress
    COMPLETED = "completed"    # Balance fully repaid
    DEFAULTED = "defaulted"    # Set by business rules, never by this module


class PaymentMethod(Enum):
    """How a loan payment was made"""
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"
    CHEQUE = "cheque"
    ONLINE = "online"
    AUTO_DEBIT = "auto_debit"


class InvalidLoanTerms(ValueError):
    """Raised when principal, rate or term is out of range"""

    def __init__(self, field_name: str, message: str):
        super().__init__(f"{field_name}: {message}")
        self.field = field_name


class InvalidPayment(ValueError):
    """Raised when a payment cannot be applied"""


@dataclass(frozen=True)
class LoanTerms:
    """Loan terms as supplied at creation"""
    principal: Decimal
    annual_interest_rate_percent: Decimal
    term_months: int
    start_date: date

    def __post_init__(self):
        principal, rate = _validate_terms(self.principal, self.annual_interest_rate_percent, self.term_months)
        object.__setattr__(self, 'principal', principal)
        object.__setattr__(self, 'annual_interest_rate_percent', rate)


@dataclass(frozen=True)
class InstallmentQuote:
    """Fixed installment and the totals derived from it"""
    installment: Decimal
    total_payable: Decimal
    total_interest: Decimal


@dataclass(frozen=True)
class ScheduleEntry:
    """Single row of an amortization schedule"""
    installment_number: int
    due_date: date
    payment_amount: Decimal
    principal_amount: Decimal
    interest_amount: Decimal
    remaining_balance: Decimal


@dataclass(frozen=True)
class PaymentRecord:
    """Append-only history entry for one payment"""
    payment_date: date
    amount_paid: Decimal
    principal_paid: Decimal
    interest_paid: Decimal
    remaining_balance_after: Decimal
    payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    note: Optional[str] = None

    @property
    def overpayment(self) -> Decimal:
        """Part of the payment that exceeded interest plus outstanding principal"""
        return self.amount_paid - self.principal_paid - self.interest_paid

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payment_date": self.payment_date.isoformat(),
            "amount_paid": str(self.amount_paid),
            "principal_paid": str(self.principal_paid),
            "interest_paid": str(self.interest_paid),
            "remaining_balance_after": str(self.remaining_balance_after),
            "payment_method": self.payment_method.value,
            "note": self.note,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PaymentRecord':
        return cls(
            payment_date=date.fromisoformat(data["payment_date"]),
            amount_paid=Decimal(data["amount_paid"]),
            principal_paid=Decimal(data["principal_paid"]),
            interest_paid=Decimal(data["interest_paid"]),
            remaining_balance_after=Decimal(data["remaining_balance_after"]),
            payment_method=PaymentMethod(data.get("payment_method", PaymentMethod.BANK_TRANSFER.value)),
            note=data.get("note"),
        )


@dataclass(frozen=True)
class PaymentOutcome:
    """Result of applying one payment to a loan"""
    record: PaymentRecord
    new_remaining_balance: Decimal
    new_status: LoanStatus
    new_next_payment_date: Optional[date]


@dataclass(frozen=True)
class LoanAccount:
    """Derived and mutable loan fields computed from LoanTerms"""
    monthly_installment: Decimal
    total_payable: Decimal
    total_interest: Decimal
    end_date: date
    remaining_balance: Decimal
    status: LoanStatus = LoanStatus.ACTIVE
    next_payment_date: Optional[date] = None


def _validate_terms(principal: Numeric, annual_rate_percent: Numeric, term_months: int):
    """Normalize and check loan terms, returning Decimal principal and rate"""
    try:
        principal = to_decimal(principal)
    except ValueError as e:
        raise InvalidLoanTerms("principal", str(e))
    try:
        rate = to_decimal(annual_rate_percent)
    except ValueError as e:
        raise InvalidLoanTerms("annual_interest_rate_percent", str(e))

    if principal <= ZERO:
        raise InvalidLoanTerms("principal", f"must be greater than 0, got {principal}")
    if rate < ZERO or rate > HUNDRED:
        raise InvalidLoanTerms("annual_interest_rate_percent", f"must be between 0 and 100, got {rate}")
    if isinstance(term_months, bool) or not isinstance(term_months, int):
        raise InvalidLoanTerms("term_months", f"must be a whole number of months, got {term_months!r}")
    if term_months < 1:
        raise InvalidLoanTerms("term_months", f"must be at least 1, got {term_months}")
    if term_months > MAX_TERM_MONTHS:
        raise InvalidLoanTerms("term_months", f"must be at most {MAX_TERM_MONTHS}, got {term_months}")
    return principal, rate


def monthly_rate(annual_rate_percent: Numeric) -> Decimal:
    """Convert an annual percentage rate to a monthly fraction"""
    return to_decimal(annual_rate_percent) / (MONTHS_PER_YEAR * HUNDRED)


def compute_installment(
    principal: Numeric,
    annual_rate_percent: Numeric,
    term_months: int,
    currency: Optional[Currency] = None
) -> InstallmentQuote:
    """
    Compute the fixed monthly installment and totals

    Standard annuity formula: P * r(1+r)^n / ((1+r)^n - 1), straight-line
    P / n when the rate is zero. Totals derive from the rounded installment.

    Args:
        principal: Amount borrowed
        annual_rate_percent: Annual interest rate in percent, 0-100
        term_months: Number of monthly installments
        currency: Currency whose minor unit defines rounding

    Returns:
        InstallmentQuote

    Raises:
        InvalidLoanTerms: If any term is out of range
    """
    principal, rate = _validate_terms(principal, annual_rate_percent, term_months)
    r = monthly_rate(rate)

    if r == ZERO:
        raw_installment = principal / term_months
    else:
        factor = (Decimal('1') + r) ** term_months
        raw_installment = principal * r * factor / (factor - Decimal('1'))

    installment = round_money(raw_installment, currency)
    total_payable = installment * term_months
    return InstallmentQuote(
        installment=installment,
        total_payable=total_payable,
        total_interest=total_payable - principal,
    )


def calculate_emi(
    principal: Numeric,
    annual_rate_percent: Numeric,
    term_months: int,
    currency: Optional[Currency] = None
) -> InstallmentQuote:
    """Stateless "what would my EMI be" query"""
    return compute_installment(principal, annual_rate_percent, term_months, currency)


def add_months(start: date, months: int) -> date:
    """Calendar-month addition (Jan 31 + 1 month -> Feb 28/29)"""
    return start + relativedelta(months=months)


def compute_end_date(start_date: date, term_months: int) -> date:
    """Date of the final installment, term_months after start_date"""
    if isinstance(term_months, bool) or not isinstance(term_months, int) or not 1 <= term_months <= MAX_TERM_MONTHS:
        raise InvalidLoanTerms("term_months", f"must be between 1 and {MAX_TERM_MONTHS}, got {term_months!r}")
    return add_months(start_date, term_months)


def build_schedule(
    principal: Numeric,
    annual_rate_percent: Numeric,
    term_months: int,
    start_date: date,
    currency: Optional[Currency] = None
) -> List[ScheduleEntry]:
    """
    Generate the full amortization schedule

    Row k is due k months after start_date. Interest accrues on the balance
    outstanding before the row; the final row settles the exact remaining
    balance, so the schedule always ends at zero.

    Returns:
        One ScheduleEntry per month of the term
    """
    quote = compute_installment(principal, annual_rate_percent, term_months, currency)
    r = monthly_rate(annual_rate_percent)
    balance = to_decimal(principal)
    schedule = []

    for number in range(1, term_months + 1):
        interest = round_money(balance * r, currency)
        if number == term_months:
            principal_part = balance
        else:
            principal_part = max(min(quote.installment - interest, balance), ZERO)
        balance = balance - principal_part

        schedule.append(ScheduleEntry(
            installment_number=number,
            due_date=add_months(start_date, number),
            payment_amount=principal_part + interest,
            principal_amount=principal_part,
            interest_amount=interest,
            remaining_balance=balance,
        ))

    return schedule


def initial_account(terms: LoanTerms, status: LoanStatus = LoanStatus.ACTIVE,
                    currency: Optional[Currency] = None) -> LoanAccount:
    """
    Derive every computed field for a newly registered loan

    Args:
        terms: Validated loan terms
        status: Starting status, ACTIVE unless the caller says otherwise

    Returns:
        LoanAccount with balance equal to the principal
    """
    quote = compute_installment(terms.principal, terms.annual_interest_rate_percent,
                                terms.term_months, currency)
    next_payment_date = add_months(terms.start_date, 1) if status == LoanStatus.ACTIVE else None
    return LoanAccount(
        monthly_installment=quote.installment,
        total_payable=quote.total_payable,
        total_interest=quote.total_interest,
        end_date=compute_end_date(terms.start_date, terms.term_months),
        remaining_balance=terms.principal,
        status=status,
        next_payment_date=next_payment_date,
    )


def apply_payment(
    remaining_balance: Numeric,
    annual_rate_percent: Numeric,
    amount_paid: Numeric,
    payment_date: date,
    payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER,
    note: Optional[str] = None,
    status: LoanStatus = LoanStatus.ACTIVE,
    currency: Optional[Currency] = None
) -> PaymentOutcome:
    """
    Apply one payment: interest first, the rest to principal

    Interest for one period accrues on the pre-payment balance. A payment
    smaller than that interest is booked entirely as interest with zero
    principal; the unpaid interest is not carried forward.

    Args:
        remaining_balance: Outstanding principal before the payment
        annual_rate_percent: Annual interest rate in percent
        amount_paid: Payment amount, must be positive
        payment_date: Date the payment was made
        payment_method: How the payment was made
        note: Free-text note
        status: Loan status before the payment

    Returns:
        PaymentOutcome with the history record and updated loan fields

    Raises:
        InvalidPayment: If the amount is not positive or the balance negative
    """
    try:
        balance = to_decimal(remaining_balance)
        amount = to_decimal(amount_paid)
    except ValueError as e:
        raise InvalidPayment(str(e))

    if amount <= ZERO:
        raise InvalidPayment(f"Payment amount must be greater than 0, got {amount}")
    if balance < ZERO:
        raise InvalidPayment(f"Remaining balance cannot be negative, got {balance}")

    interest_due = round_money(balance * monthly_rate(annual_rate_percent), currency)

    if amount < interest_due:
        interest_paid = amount
        principal_paid = ZERO
    else:
        interest_paid = interest_due
        principal_paid = min(amount - interest_due, balance)

    new_balance = max(balance - principal_paid, ZERO)

    new_status = LoanStatus.COMPLETED if new_balance == ZERO else status
    if new_status == LoanStatus.ACTIVE and new_balance > ZERO:
        next_payment_date = add_months(payment_date, 1)
    else:
        next_payment_date = None

    record = PaymentRecord(
        payment_date=payment_date,
        amount_paid=amount,
        principal_paid=principal_paid,
        interest_paid=interest_paid,
        remaining_balance_after=new_balance,
        payment_method=payment_method,
        note=note,
    )
    return PaymentOutcome(
        record=record,
        new_remaining_balance=new_balance,
        new_status=new_status,
        new_next_payment_date=next_payment_date,
    )


def installment_due(
    remaining_balance: Numeric,
    annual_rate_percent: Numeric,
    installment: Numeric,
    installments_remaining: int,
    currency: Optional[Currency] = None
) -> Decimal:
    """
    Amount that settles the next scheduled installment

    The fixed installment is rounded, so paying it every month can leave a
    few minor units outstanding. The last installment is therefore the full
    payoff: the remaining balance plus one period of interest, matching the
    final row of build_schedule. Earlier installments never exceed the payoff.

    Args:
        remaining_balance: Outstanding principal
        annual_rate_percent: Annual interest rate in percent
        installment: Fixed monthly installment
        installments_remaining: Scheduled installments not yet paid

    Returns:
        Amount due, zero when nothing is outstanding
    """
    balance = to_decimal(remaining_balance)
    if balance <= ZERO:
        return ZERO
    payoff = balance + round_money(balance * monthly_rate(annual_rate_percent), currency)
    if installments_remaining <= 1:
        return payoff
    return min(to_decimal(installment), payoff)
