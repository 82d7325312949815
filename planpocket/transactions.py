"""
Transaction Module

Income and expense records: creation with category validation, filtered
listing, updates and deletion. Every query is scoped to the owning user.
"""

from decimal import Decimal
from datetime import date, datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
import logging
import uuid

from .currency import Currency, DEFAULT_CURRENCY, round_money, to_decimal
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .exceptions import NotFoundError
from .logging_config import log_action

logger = logging.getLogger("planpocket.transactions")

MIN_AMOUNT = Decimal('0.01')
MAX_DESCRIPTION_LENGTH = 200
MAX_NOTES_LENGTH = 500


class TransactionType(Enum):
    """Direction of money flow"""
    INCOME = "income"
    EXPENSE = "expense"


class RecurringFrequency(Enum):
    """Repeat interval for recurring entries"""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


INCOME_CATEGORIES = (
    "salary", "business", "investment", "freelance", "bonus", "other-income",
)

EXPENSE_CATEGORIES = (
    "food", "transportation", "utilities", "entertainment", "healthcare",
    "shopping", "education", "travel", "insurance", "rent", "groceries",
    "fuel", "maintenance", "subscriptions", "charity", "other-expense",
)

CATEGORIES = {
    TransactionType.INCOME: INCOME_CATEGORIES,
    TransactionType.EXPENSE: EXPENSE_CATEGORIES,
}


@dataclass
class Transaction(StorageRecord):
    """Single income or expense entry"""
    user_id: str
    type: TransactionType
    description: str
    amount: Decimal
    category: str
    date: date
    notes: Optional[str] = None
    recurring: bool = False
    recurring_frequency: Optional[RecurringFrequency] = None
    tags: List[str] = field(default_factory=list)

    @property
    def signed_amount(self) -> Decimal:
        """Amount as a cash-flow contribution (expenses negative)"""
        return self.amount if self.type == TransactionType.INCOME else -self.amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "user_id": self.user_id,
            "type": self.type.value,
            "description": self.description,
            "amount": str(self.amount),
            "category": self.category,
            "date": self.date.isoformat(),
            "notes": self.notes,
            "recurring": self.recurring,
            "recurring_frequency": self.recurring_frequency.value if self.recurring_frequency else None,
            "tags": list(self.tags),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transaction':
        return cls(
            id=data["id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            user_id=data["user_id"],
            type=TransactionType(data["type"]),
            description=data["description"],
            amount=Decimal(data["amount"]),
            category=data["category"],
            date=date.fromisoformat(data["date"]),
            notes=data.get("notes"),
            recurring=data.get("recurring", False),
            recurring_frequency=RecurringFrequency(data["recurring_frequency"]) if data.get("recurring_frequency") else None,
            tags=list(data.get("tags") or []),
        )


class TransactionManager:
    """
    Manages a user's income and expense records
    """

    EDITABLE_FIELDS = (
        "type", "description", "amount", "category", "date",
        "notes", "recurring", "recurring_frequency", "tags",
    )

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 currency: Optional[Currency] = None):
        self.storage = storage
        self.audit_trail = audit_trail
        self.currency = currency or DEFAULT_CURRENCY
        self.table_name = "transactions"

    def create_transaction(
        self,
        user_id: str,
        type: TransactionType,
        description: str,
        amount: Decimal,
        category: str,
        date: Optional[date] = None,
        notes: Optional[str] = None,
        recurring: bool = False,
        recurring_frequency: Optional[RecurringFrequency] = None,
        tags: Optional[List[str]] = None
    ) -> Transaction:
        """
        Record an income or expense

        Args:
            user_id: Owner
            type: INCOME or EXPENSE
            description: 1-200 characters
            amount: At least 0.01
            category: Must belong to the type's category list
            date: Transaction date (defaults to today)
            notes: Up to 500 characters
            recurring: Whether this entry repeats
            recurring_frequency: Required when recurring
            tags: Free-form labels

        Returns:
            Created Transaction
        """
        now = datetime.now(timezone.utc)
        transaction = Transaction(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            user_id=user_id,
            type=TransactionType(type),
            description=description,
            amount=amount,
            category=category,
            date=date or now.date(),
            notes=notes,
            recurring=recurring,
            recurring_frequency=RecurringFrequency(recurring_frequency) if recurring_frequency else None,
            tags=list(tags or []),
        )
        self._validate(transaction)
        self.storage.save(self.table_name, transaction.id, transaction.to_dict())

        self.audit_trail.log_event(
            event_type=AuditEventType.TRANSACTION_CREATED,
            entity_type="transaction",
            entity_id=transaction.id,
            metadata={
                "type": transaction.type.value,
                "amount": transaction.amount,
                "category": transaction.category,
            },
            user_id=user_id
        )
        log_action(logger, "info", "Transaction created", user_id=user_id,
                   action="create", resource="transaction",
                   extra={"transaction_id": transaction.id, "type": transaction.type.value})
        return transaction

    def get_transaction(self, user_id: str, transaction_id: str) -> Transaction:
        """
        Get one of the user's transactions

        Raises:
            NotFoundError: If missing or owned by someone else
        """
        data = self.storage.load(self.table_name, transaction_id)
        if not data or data.get("user_id") != user_id:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return Transaction.from_dict(data)

    def list_transactions(
        self,
        user_id: str,
        type: Optional[TransactionType] = None,
        category: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        page: int = 1,
        limit: Optional[int] = None
    ) -> List[Transaction]:
        """
        List the user's transactions, newest first

        Args:
            type: Only this type
            category: Only this category
            start_date: Inclusive lower bound on date
            end_date: Inclusive upper bound on date
            page: 1-based page number, used with limit
            limit: Page size; None returns everything

        Returns:
            Matching transactions sorted by date descending
        """
        filters: Dict[str, Any] = {"user_id": user_id}
        if type is not None:
            filters["type"] = TransactionType(type).value
        if category is not None:
            filters["category"] = category

        transactions = [Transaction.from_dict(d) for d in self.storage.find(self.table_name, filters)]
        if start_date:
            transactions = [t for t in transactions if t.date >= start_date]
        if end_date:
            transactions = [t for t in transactions if t.date <= end_date]

        transactions.sort(key=lambda t: (t.date, t.created_at), reverse=True)

        if limit is not None:
            if page < 1 or limit < 1:
                raise ValueError("page and limit must be positive")
            offset = (page - 1) * limit
            transactions = transactions[offset:offset + limit]
        return transactions

    def get_by_category(self, user_id: str, category: str) -> List[Transaction]:
        """All of the user's transactions in one category"""
        return self.list_transactions(user_id, category=category)

    def get_by_date_range(self, user_id: str, start_date: date, end_date: date) -> List[Transaction]:
        """All of the user's transactions between two dates, inclusive"""
        if start_date > end_date:
            raise ValueError("Start date must be on or before end date")
        return self.list_transactions(user_id, start_date=start_date, end_date=end_date)

    def update_transaction(self, user_id: str, transaction_id: str, **changes) -> Transaction:
        """
        Update editable fields of a transaction

        Returns:
            Updated Transaction
        """
        transaction = self.get_transaction(user_id, transaction_id)

        unknown = set(changes) - set(self.EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        for key, value in changes.items():
            if key == "type":
                value = TransactionType(value)
            elif key == "recurring_frequency" and value is not None:
                value = RecurringFrequency(value)
            elif key == "tags":
                value = list(value or [])
            setattr(transaction, key, value)

        if "recurring" in changes and not transaction.recurring:
            transaction.recurring_frequency = None

        self._validate(transaction)
        transaction.touch()
        self.storage.save(self.table_name, transaction.id, transaction.to_dict())

        self.audit_trail.log_event(
            event_type=AuditEventType.TRANSACTION_UPDATED,
            entity_type="transaction",
            entity_id=transaction.id,
            metadata={"fields": sorted(changes)},
            user_id=user_id
        )
        return transaction

    def delete_transaction(self, user_id: str, transaction_id: str) -> None:
        """Delete one of the user's transactions"""
        self.get_transaction(user_id, transaction_id)
        self.storage.delete(self.table_name, transaction_id)
        self.audit_trail.log_event(
            event_type=AuditEventType.TRANSACTION_DELETED,
            entity_type="transaction",
            entity_id=transaction_id,
            user_id=user_id
        )
        log_action(logger, "info", "Transaction deleted", user_id=user_id,
                   action="delete", resource="transaction",
                   extra={"transaction_id": transaction_id})

    def _validate(self, transaction: Transaction) -> None:
        """Normalize fields in place and enforce field rules"""
        transaction.description = (transaction.description or "").strip()
        if not 1 <= len(transaction.description) <= MAX_DESCRIPTION_LENGTH:
            raise ValueError("Description must be between 1 and 200 characters")

        transaction.amount = round_money(to_decimal(transaction.amount), self.currency)
        if transaction.amount < MIN_AMOUNT:
            raise ValueError("Amount must be greater than 0")

        transaction.category = (transaction.category or "").strip().lower()
        if transaction.category not in CATEGORIES[transaction.type]:
            raise ValueError(
                f"Category '{transaction.category}' is not valid for {transaction.type.value} transactions"
            )

        if transaction.notes is not None:
            transaction.notes = transaction.notes.strip()
            if len(transaction.notes) > MAX_NOTES_LENGTH:
                raise ValueError("Notes cannot be more than 500 characters")

        if transaction.recurring and not transaction.recurring_frequency:
            raise ValueError("Recurring transactions need a recurring frequency")

        transaction.tags = [t.strip() for t in transaction.tags if t and t.strip()]
