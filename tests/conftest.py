"""
Shared fixtures: in-memory storage with every manager wired to it
"""

import pytest

from planpocket.storage import InMemoryStorage
from planpocket.audit import AuditTrail
from planpocket.users import UserManager
from planpocket.transactions import TransactionManager
from planpocket.loans import LoanManager
from planpocket.reporting import SummaryEngine


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def audit_trail(storage):
    return AuditTrail(storage)


@pytest.fixture
def user_manager(storage, audit_trail):
    return UserManager(storage, audit_trail)


@pytest.fixture
def transaction_manager(storage, audit_trail):
    return TransactionManager(storage, audit_trail)


@pytest.fixture
def loan_manager(storage, audit_trail):
    return LoanManager(storage, audit_trail)


@pytest.fixture
def summary_engine(transaction_manager, loan_manager, user_manager):
    return SummaryEngine(transaction_manager, loan_manager, user_manager)


@pytest.fixture
def user(user_manager):
    """Registered user with no income set"""
    return user_manager.register("Asha Rao", "asha@example.com", "secret123")


@pytest.fixture
def other_user(user_manager):
    return user_manager.register("Ravi Kumar", "ravi@example.com", "secret456")
