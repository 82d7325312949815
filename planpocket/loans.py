"""
Loan Module

Loan lifecycle management: registration, edits, payment recording and
deletion. All installment, balance and status math is delegated to the
amortization module; this module owns persistence, ownership checks and the
serialization of concurrent payments against the same loan.
"""

from decimal import Decimal
from datetime import date, datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
import logging
import threading
import uuid
from contextlib import contextmanager

from .amortization import (
    LoanAccount, LoanStatus, LoanTerms, PaymentMethod, PaymentRecord,
    ScheduleEntry, apply_payment, build_schedule, initial_account, installment_due, add_months
)
from .currency import Currency, DEFAULT_CURRENCY
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .exceptions import ConcurrentModificationError, NotFoundError
from .logging_config import log_action

logger = logging.getLogger("planpocket.loans")


class LoanType(Enum):
    """Kinds of loans a user can register"""
    PERSONAL = "personal"
    HOME = "home"
    CAR = "car"
    EDUCATION = "education"
    BUSINESS = "business"


@dataclass
class Loan(StorageRecord):
    """Loan with its terms, derived fields and payment history"""
    user_id: str
    loan_type: LoanType
    lender_name: str
    terms: LoanTerms
    monthly_installment: Decimal
    total_payable: Decimal
    total_interest: Decimal
    end_date: date
    remaining_balance: Decimal
    status: LoanStatus = LoanStatus.ACTIVE
    next_payment_date: Optional[date] = None
    next_installment_amount: Optional[Decimal] = None
    notes: Optional[str] = None
    payments: List[PaymentRecord] = field(default_factory=list)
    version: int = 1

    @property
    def principal_repaid(self) -> Decimal:
        """Total principal covered by recorded payments"""
        return sum((p.principal_paid for p in self.payments), Decimal('0'))

    @property
    def interest_repaid(self) -> Decimal:
        """Total interest covered by recorded payments"""
        return sum((p.interest_paid for p in self.payments), Decimal('0'))

    @property
    def total_paid(self) -> Decimal:
        return sum((p.amount_paid for p in self.payments), Decimal('0'))

    @property
    def installments_remaining(self) -> int:
        """Scheduled installments not yet covered by a payment"""
        return max(self.terms.term_months - len(self.payments), 0)

    def apply_account(self, account: LoanAccount) -> None:
        """Copy engine-derived fields onto this loan"""
        self.monthly_installment = account.monthly_installment
        self.total_payable = account.total_payable
        self.total_interest = account.total_interest
        self.end_date = account.end_date
        self.remaining_balance = account.remaining_balance
        self.status = account.status
        self.next_payment_date = account.next_payment_date

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "user_id": self.user_id,
            "loan_type": self.loan_type.value,
            "lender_name": self.lender_name,
            "principal": str(self.terms.principal),
            "annual_interest_rate_percent": str(self.terms.annual_interest_rate_percent),
            "term_months": self.terms.term_months,
            "start_date": self.terms.start_date.isoformat(),
            "monthly_installment": str(self.monthly_installment),
            "total_payable": str(self.total_payable),
            "total_interest": str(self.total_interest),
            "end_date": self.end_date.isoformat(),
            "remaining_balance": str(self.remaining_balance),
            "status": self.status.value,
            "next_payment_date": self.next_payment_date.isoformat() if self.next_payment_date else None,
            "next_installment_amount": (
                str(self.next_installment_amount) if self.next_installment_amount is not None else None
            ),
            "notes": self.notes,
            "payments": [p.to_dict() for p in self.payments],
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        terms = LoanTerms(
            principal=Decimal(data["principal"]),
            annual_interest_rate_percent=Decimal(data["annual_interest_rate_percent"]),
            term_months=int(data["term_months"]),
            start_date=date.fromisoformat(data["start_date"]),
        )
        return cls(
            id=data["id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            user_id=data["user_id"],
            loan_type=LoanType(data["loan_type"]),
            lender_name=data["lender_name"],
            terms=terms,
            monthly_installment=Decimal(data["monthly_installment"]),
            total_payable=Decimal(data["total_payable"]),
            total_interest=Decimal(data["total_interest"]),
            end_date=date.fromisoformat(data["end_date"]),
            remaining_balance=Decimal(data["remaining_balance"]),
            status=LoanStatus(data["status"]),
            next_payment_date=date.fromisoformat(data["next_payment_date"]) if data.get("next_payment_date") else None,
            next_installment_amount=(
                Decimal(data["next_installment_amount"]) if data.get("next_installment_amount") is not None else None
            ),
            notes=data.get("notes"),
            payments=[PaymentRecord.from_dict(p) for p in data.get("payments", [])],
            version=data.get("version", 1),
        )


class LoanManager:
    """
    Manages loan lifecycle from registration through completion
    """

    TERM_FIELDS = ("principal", "annual_interest_rate_percent", "term_months", "start_date")
    DETAIL_FIELDS = ("loan_type", "lender_name", "notes", "status")

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 currency: Optional[Currency] = None):
        self.storage = storage
        self.audit_trail = audit_trail
        self.currency = currency or DEFAULT_CURRENCY
        self.loans_table = "loans"
        # loan id -> [lock, number of callers holding or waiting on it]
        self._locks: Dict[str, List[Any]] = {}
        self._locks_guard = threading.Lock()

    def create_loan(
        self,
        user_id: str,
        loan_type: LoanType,
        lender_name: str,
        principal: Decimal,
        annual_interest_rate_percent: Decimal,
        term_months: int,
        start_date: Optional[date] = None,
        notes: Optional[str] = None,
        status: LoanStatus = LoanStatus.ACTIVE
    ) -> Loan:
        """
        Register a new loan

        Args:
            user_id: Borrower
            loan_type: Kind of loan
            lender_name: 1-100 characters
            principal: Amount borrowed
            annual_interest_rate_percent: 0-100
            term_months: Number of monthly installments
            start_date: First period start (defaults to today)
            notes: Free text
            status: Starting status (active unless registered as pending)

        Returns:
            Created Loan with installment, totals and end date filled in

        Raises:
            InvalidLoanTerms: If the terms are out of range
        """
        now = datetime.now(timezone.utc)
        status = LoanStatus(status)
        if status == LoanStatus.COMPLETED:
            raise ValueError("A new loan cannot start as completed")

        terms = LoanTerms(
            principal=principal,
            annual_interest_rate_percent=annual_interest_rate_percent,
            term_months=term_months,
            start_date=start_date or now.date(),
        )
        account = initial_account(terms, status, self.currency)

        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            user_id=user_id,
            loan_type=LoanType(loan_type),
            lender_name=self._validate_lender(lender_name),
            terms=terms,
            monthly_installment=account.monthly_installment,
            total_payable=account.total_payable,
            total_interest=account.total_interest,
            end_date=account.end_date,
            remaining_balance=account.remaining_balance,
            status=account.status,
            next_payment_date=account.next_payment_date,
            notes=notes,
        )
        self._refresh_installment_due(loan)
        self._save_loan(loan)

        self.audit_trail.log_event(
            event_type=AuditEventType.LOAN_CREATED,
            entity_type="loan",
            entity_id=loan.id,
            metadata={
                "principal": terms.principal,
                "annual_rate_percent": terms.annual_interest_rate_percent,
                "term_months": terms.term_months,
                "monthly_installment": loan.monthly_installment,
            },
            user_id=user_id
        )
        log_action(logger, "info", "Loan created", user_id=user_id,
                   action="create", resource="loan", extra={"loan_id": loan.id})
        return loan

    def get_loan(self, user_id: str, loan_id: str) -> Loan:
        """
        Get one of the user's loans

        Raises:
            NotFoundError: If missing or owned by someone else
        """
        data = self.storage.load(self.loans_table, loan_id)
        if not data or data.get("user_id") != user_id:
            raise NotFoundError(f"Loan {loan_id} not found")
        return Loan.from_dict(data)

    def list_loans(self, user_id: str) -> List[Loan]:
        """All of the user's loans, most recent start date first"""
        loans = [Loan.from_dict(d) for d in self.storage.find(self.loans_table, {"user_id": user_id})]
        return sorted(loans, key=lambda l: (l.terms.start_date, l.created_at), reverse=True)

    def list_loans_by_status(self, user_id: str, status: LoanStatus) -> List[Loan]:
        """The user's loans in one status"""
        status = LoanStatus(status)
        return [loan for loan in self.list_loans(user_id) if loan.status == status]

    def update_loan(self, user_id: str, loan_id: str, **changes) -> Loan:
        """
        Edit loan details or terms

        Term edits recompute the installment, totals and end date; the
        remaining balance becomes the new principal less principal already
        repaid. Status changes made here are the external business decisions
        (pending -> active, active -> defaulted).

        Returns:
            Updated Loan
        """
        unknown = set(changes) - set(self.TERM_FIELDS) - set(self.DETAIL_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        with self._loan_lock(loan_id):
            loan = self.get_loan(user_id, loan_id)

            if "loan_type" in changes:
                loan.loan_type = LoanType(changes["loan_type"])
            if "lender_name" in changes:
                loan.lender_name = self._validate_lender(changes["lender_name"])
            if "notes" in changes:
                loan.notes = changes["notes"]

            status = LoanStatus(changes["status"]) if "status" in changes else loan.status
            terms_changed = any(k in changes for k in self.TERM_FIELDS)

            if terms_changed:
                if status == LoanStatus.COMPLETED and "status" not in changes:
                    status = LoanStatus.ACTIVE
                loan.terms = LoanTerms(
                    principal=changes.get("principal", loan.terms.principal),
                    annual_interest_rate_percent=changes.get(
                        "annual_interest_rate_percent", loan.terms.annual_interest_rate_percent),
                    term_months=changes.get("term_months", loan.terms.term_months),
                    start_date=changes.get("start_date", loan.terms.start_date),
                )
                account = initial_account(loan.terms, status, self.currency)
                loan.apply_account(account)
                loan.remaining_balance = max(loan.terms.principal - loan.principal_repaid, Decimal('0'))
                if loan.payments:
                    loan.next_payment_date = None

            self._set_status(loan, status)
            self._refresh_installment_due(loan)
            loan.version += 1
            loan.touch()
            self._save_loan(loan)

        self.audit_trail.log_event(
            event_type=AuditEventType.LOAN_UPDATED,
            entity_type="loan",
            entity_id=loan.id,
            metadata={"fields": sorted(changes), "status": loan.status},
            user_id=user_id
        )
        return loan

    def delete_loan(self, user_id: str, loan_id: str) -> None:
        """Delete one of the user's loans and its payment history"""
        with self._loan_lock(loan_id):
            self.get_loan(user_id, loan_id)
            self.storage.delete(self.loans_table, loan_id)

        self.audit_trail.log_event(
            event_type=AuditEventType.LOAN_DELETED,
            entity_type="loan",
            entity_id=loan_id,
            user_id=user_id
        )
        log_action(logger, "info", "Loan deleted", user_id=user_id,
                   action="delete", resource="loan", extra={"loan_id": loan_id})

    def record_payment(
        self,
        user_id: str,
        loan_id: str,
        amount: Decimal,
        payment_date: Optional[date] = None,
        payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER,
        note: Optional[str] = None
    ) -> Loan:
        """
        Record a payment against a loan

        The read-apply-write cycle runs under a per-loan lock inside a storage
        transaction, and the stored version must not change in between.

        Args:
            user_id: Borrower
            loan_id: Loan being repaid
            amount: Payment amount
            payment_date: Date of payment (defaults to today)
            payment_method: How the payment was made
            note: Free text

        Returns:
            Updated Loan; the new PaymentRecord is the last entry of payments

        Raises:
            InvalidPayment: If the amount is not positive
            ValueError: If the loan is already completed
            ConcurrentModificationError: If the loan changed mid-update
        """
        payment_date = payment_date or date.today()

        with self._loan_lock(loan_id):
            with self.storage.atomic():
                loan = self.get_loan(user_id, loan_id)
                if loan.status == LoanStatus.COMPLETED:
                    raise ValueError(f"Loan {loan_id} is already fully repaid")

                outcome = apply_payment(
                    remaining_balance=loan.remaining_balance,
                    annual_rate_percent=loan.terms.annual_interest_rate_percent,
                    amount_paid=amount,
                    payment_date=payment_date,
                    payment_method=PaymentMethod(payment_method),
                    note=note,
                    status=loan.status,
                    currency=self.currency,
                )

                loan.payments.append(outcome.record)
                loan.remaining_balance = outcome.new_remaining_balance
                loan.status = outcome.new_status
                loan.next_payment_date = outcome.new_next_payment_date
                self._refresh_installment_due(loan)
                self._save_versioned(loan)

        self.audit_trail.log_event(
            event_type=AuditEventType.LOAN_PAYMENT_RECORDED,
            entity_type="loan",
            entity_id=loan.id,
            metadata={
                "amount_paid": outcome.record.amount_paid,
                "principal_paid": outcome.record.principal_paid,
                "interest_paid": outcome.record.interest_paid,
                "remaining_balance": outcome.new_remaining_balance,
            },
            user_id=user_id
        )
        if loan.status == LoanStatus.COMPLETED:
            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_COMPLETED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={"payments": len(loan.payments)},
                user_id=user_id
            )
            log_action(logger, "info", "Loan fully repaid", user_id=user_id,
                       action="complete", resource="loan", extra={"loan_id": loan.id})
        return loan

    def get_schedule(self, user_id: str, loan_id: str) -> List[ScheduleEntry]:
        """Full amortization schedule for the loan's current terms"""
        loan = self.get_loan(user_id, loan_id)
        return build_schedule(
            loan.terms.principal,
            loan.terms.annual_interest_rate_percent,
            loan.terms.term_months,
            loan.terms.start_date,
            self.currency,
        )

    def _set_status(self, loan: Loan, status: LoanStatus) -> None:
        """Apply an externally decided status and keep derived dates consistent"""
        if loan.remaining_balance == Decimal('0'):
            status = LoanStatus.COMPLETED
        elif status == LoanStatus.COMPLETED:
            raise ValueError("A loan with an outstanding balance cannot be marked completed")
        loan.status = status

        if status == LoanStatus.ACTIVE:
            if loan.next_payment_date is None:
                last = loan.payments[-1].payment_date if loan.payments else loan.terms.start_date
                loan.next_payment_date = add_months(last, 1)
        else:
            loan.next_payment_date = None

    def _validate_lender(self, lender_name: str) -> str:
        lender_name = (lender_name or "").strip()
        if not 1 <= len(lender_name) <= 100:
            raise ValueError("Lender name must be between 1 and 100 characters")
        return lender_name

    @contextmanager
    def _loan_lock(self, loan_id: str):
        """Hold the loan's lock; the entry is dropped when the last caller leaves"""
        with self._locks_guard:
            entry = self._locks.setdefault(loan_id, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[loan_id]

    def _refresh_installment_due(self, loan: Loan) -> None:
        """Quote the amount that settles the next installment"""
        if loan.status == LoanStatus.COMPLETED:
            loan.next_installment_amount = None
            return
        loan.next_installment_amount = installment_due(
            loan.remaining_balance,
            loan.terms.annual_interest_rate_percent,
            loan.monthly_installment,
            loan.installments_remaining,
            self.currency,
        )

    def _save_versioned(self, loan: Loan) -> None:
        """Compare-and-swap on the version field, then persist"""
        stored = self.storage.load(self.loans_table, loan.id)
        if not stored or stored.get("version", 1) != loan.version:
            raise ConcurrentModificationError(f"Loan {loan.id} was modified concurrently")
        loan.version += 1
        loan.touch()
        self._save_loan(loan)

    def _save_loan(self, loan: Loan) -> None:
        self.storage.save(self.loans_table, loan.id, loan.to_dict())
