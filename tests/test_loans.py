"""
Test suite for loans module

Tests loan registration, edits, payment recording, completion and the
serialization of concurrent payments. All financial math must be precise.
"""

import pytest
import threading
from decimal import Decimal
from datetime import date

import planpocket.loans as loans_module
from planpocket.amortization import (
    LoanStatus, PaymentMethod, InvalidLoanTerms, InvalidPayment,
    apply_payment, compute_installment, add_months
)
from planpocket.audit import AuditEventType
from planpocket.currency import Currency
from planpocket.exceptions import ConcurrentModificationError, NotFoundError
from planpocket.loans import Loan, LoanManager, LoanType


def _reference_loan(loan_manager, user_id, **overrides):
    """120000 at 12% over 12 months starting 15 Jan 2024"""
    params = dict(
        user_id=user_id,
        loan_type=LoanType.PERSONAL,
        lender_name="State Bank",
        principal=Decimal('120000'),
        annual_interest_rate_percent=Decimal('12'),
        term_months=12,
        start_date=date(2024, 1, 15),
    )
    params.update(overrides)
    return loan_manager.create_loan(**params)


class TestCreateLoan:
    """Test loan registration"""

    def test_derived_fields(self, loan_manager, user):
        """Test installment, totals and dates are filled in"""
        loan = _reference_loan(loan_manager, user.id)

        assert loan.monthly_installment == Decimal('10661.85')
        assert loan.total_payable == Decimal('127942.20')
        assert loan.total_interest == Decimal('7942.20')
        assert loan.end_date == date(2025, 1, 15)
        assert loan.remaining_balance == Decimal('120000')
        assert loan.status == LoanStatus.ACTIVE
        assert loan.next_payment_date == date(2024, 2, 15)
        assert loan.payments == []
        assert loan.next_installment_amount == Decimal('10661.85')
        assert loan.version == 1

    def test_persisted_and_audited(self, loan_manager, user, audit_trail):
        """Test the loan round-trips through storage and is audited"""
        loan = _reference_loan(loan_manager, user.id, notes="Car repair")
        assert loan_manager.get_loan(user.id, loan.id) == loan

        events = audit_trail.get_events(entity_type="loan", entity_id=loan.id)
        assert events[0].event_type == AuditEventType.LOAN_CREATED
        assert events[0].metadata["monthly_installment"] == "10661.85"

    def test_zero_rate_loan(self, loan_manager, user):
        """Test straight-line installment"""
        loan = _reference_loan(loan_manager, user.id, principal=Decimal('10000'),
                               annual_interest_rate_percent=Decimal('0'), term_months=10)
        assert loan.monthly_installment == Decimal('1000.00')
        assert loan.total_interest == Decimal('0.00')

    def test_pending_loan(self, loan_manager, user):
        """Test pending loans have no next payment date"""
        loan = _reference_loan(loan_manager, user.id, status="pending")
        assert loan.status == LoanStatus.PENDING
        assert loan.next_payment_date is None

    def test_cannot_start_completed(self, loan_manager, user):
        """Test completed is never a starting status"""
        with pytest.raises(ValueError):
            _reference_loan(loan_manager, user.id, status=LoanStatus.COMPLETED)

    def test_invalid_terms(self, loan_manager, user):
        """Test engine validation surfaces unchanged"""
        with pytest.raises(InvalidLoanTerms):
            _reference_loan(loan_manager, user.id, term_months=0)
        with pytest.raises(InvalidLoanTerms):
            _reference_loan(loan_manager, user.id, annual_interest_rate_percent=Decimal('150'))

    def test_invalid_details(self, loan_manager, user):
        """Test loan type and lender name rules"""
        with pytest.raises(ValueError):
            _reference_loan(loan_manager, user.id, loan_type="yacht")
        with pytest.raises(ValueError):
            _reference_loan(loan_manager, user.id, lender_name="  ")
        with pytest.raises(ValueError):
            _reference_loan(loan_manager, user.id, lender_name="x" * 101)


class TestQueries:
    """Test listing and ownership"""

    def test_list_by_start_date_descending(self, loan_manager, user):
        """Test most recent start date first"""
        older = _reference_loan(loan_manager, user.id, start_date=date(2023, 6, 1))
        newer = _reference_loan(loan_manager, user.id, start_date=date(2024, 6, 1))
        assert [l.id for l in loan_manager.list_loans(user.id)] == [newer.id, older.id]

    def test_list_by_status(self, loan_manager, user):
        """Test status filter"""
        active = _reference_loan(loan_manager, user.id)
        _reference_loan(loan_manager, user.id, status="pending")
        assert [l.id for l in loan_manager.list_loans_by_status(user.id, "active")] == [active.id]
        assert loan_manager.list_loans_by_status(user.id, LoanStatus.COMPLETED) == []
        with pytest.raises(ValueError):
            loan_manager.list_loans_by_status(user.id, "archived")

    def test_other_users_loans_are_invisible(self, loan_manager, user, other_user):
        """Test owner scoping on every entry point"""
        loan = _reference_loan(loan_manager, user.id)
        assert loan_manager.list_loans(other_user.id) == []
        with pytest.raises(NotFoundError):
            loan_manager.get_loan(other_user.id, loan.id)
        with pytest.raises(NotFoundError):
            loan_manager.record_payment(other_user.id, loan.id, Decimal('100'))
        with pytest.raises(NotFoundError):
            loan_manager.delete_loan(other_user.id, loan.id)

    def test_schedule(self, loan_manager, user):
        """Test the schedule follows the stored terms"""
        loan = _reference_loan(loan_manager, user.id)
        schedule = loan_manager.get_schedule(user.id, loan.id)
        assert len(schedule) == 12
        assert schedule[0].due_date == date(2024, 2, 15)
        assert schedule[-1].remaining_balance == Decimal('0')
        assert sum(row.principal_amount for row in schedule) == Decimal('120000')


class TestRecordPayment:
    """Test payment recording"""

    def test_first_payment(self, loan_manager, user, audit_trail):
        """Test the reference first payment split"""
        loan = _reference_loan(loan_manager, user.id)
        updated = loan_manager.record_payment(
            user.id, loan.id, Decimal('10660.62'), payment_date=date(2024, 2, 15),
            payment_method="online", note="February"
        )

        record = updated.payments[-1]
        assert record.interest_paid == Decimal('1200.00')
        assert record.principal_paid == Decimal('9460.62')
        assert record.payment_method == PaymentMethod.ONLINE
        assert record.note == "February"
        assert updated.remaining_balance == Decimal('110539.38')
        assert updated.next_payment_date == date(2024, 3, 15)
        assert updated.version == 2
        assert updated.installments_remaining == 11

        stored = loan_manager.get_loan(user.id, loan.id)
        assert stored.remaining_balance == Decimal('110539.38')
        assert len(stored.payments) == 1

        events = audit_trail.get_events(entity_type="loan", entity_id=loan.id)
        assert events[-1].event_type == AuditEventType.LOAN_PAYMENT_RECORDED

    def test_payment_completes_loan(self, loan_manager, user, audit_trail):
        """Test paying off the balance completes the loan"""
        loan = _reference_loan(loan_manager, user.id, principal=Decimal('1000'), term_months=1)
        assert loan.monthly_installment == Decimal('1010.00')

        updated = loan_manager.record_payment(user.id, loan.id, Decimal('1010.00'),
                                              payment_date=date(2024, 2, 15))
        assert updated.remaining_balance == Decimal('0')
        assert updated.status == LoanStatus.COMPLETED
        assert updated.next_payment_date is None
        assert updated.total_paid == Decimal('1010.00')
        assert updated.interest_repaid == Decimal('10.00')

        event_types = [e.event_type for e in audit_trail.get_events(entity_type="loan", entity_id=loan.id)]
        assert event_types[-2:] == [AuditEventType.LOAN_PAYMENT_RECORDED, AuditEventType.LOAN_COMPLETED]

    def test_completed_loan_rejects_payments(self, loan_manager, user):
        """Test no payments after completion"""
        loan = _reference_loan(loan_manager, user.id, principal=Decimal('1000'), term_months=1)
        loan_manager.record_payment(user.id, loan.id, Decimal('2000'))
        with pytest.raises(ValueError, match="already fully repaid"):
            loan_manager.record_payment(user.id, loan.id, Decimal('10'))

    def test_invalid_payment_leaves_loan_untouched(self, loan_manager, user):
        """Test a rejected payment rolls back"""
        loan = _reference_loan(loan_manager, user.id)
        with pytest.raises(InvalidPayment):
            loan_manager.record_payment(user.id, loan.id, Decimal('0'))
        stored = loan_manager.get_loan(user.id, loan.id)
        assert stored.payments == []
        assert stored.version == 1

    def test_payment_date_defaults_to_today(self, loan_manager, user):
        """Test omitted payment date"""
        loan = _reference_loan(loan_manager, user.id)
        updated = loan_manager.record_payment(user.id, loan.id, Decimal('5000'))
        assert updated.payments[-1].payment_date == date.today()

    def test_version_conflict(self, loan_manager, user, storage, monkeypatch):
        """Test a concurrent write between read and save is refused and rolled back"""
        loan = _reference_loan(loan_manager, user.id)
        real_apply = loans_module.apply_payment

        def apply_after_foreign_write(*args, **kwargs):
            document = storage.load("loans", loan.id)
            document["version"] += 1
            storage.save("loans", loan.id, document)
            return real_apply(*args, **kwargs)

        monkeypatch.setattr(loans_module, "apply_payment", apply_after_foreign_write)
        with pytest.raises(ConcurrentModificationError):
            loan_manager.record_payment(user.id, loan.id, Decimal('10660.62'))

        stored = storage.load("loans", loan.id)
        assert stored["version"] == 1
        assert stored["payments"] == []

    def test_concurrent_payments_are_serialized(self, loan_manager, user):
        """Test parallel payments on one loan all land, in some order"""
        loan = _reference_loan(loan_manager, user.id)
        errors = []

        def pay():
            try:
                loan_manager.record_payment(user.id, loan.id, Decimal('5000'),
                                            payment_date=date(2024, 2, 15))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=pay) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        stored = loan_manager.get_loan(user.id, loan.id)
        assert len(stored.payments) == 10
        assert stored.version == 11

        expected = Decimal('120000')
        for _ in range(10):
            expected = apply_payment(expected, Decimal('12'), Decimal('5000'),
                                     date(2024, 2, 15)).new_remaining_balance
        assert stored.remaining_balance == expected

    def test_quoted_final_installment_completes_loan(self, loan_manager, user):
        """Test paying the quoted amount every month repays the loan on schedule"""
        loan = _reference_loan(loan_manager, user.id)
        payment_date = date(2024, 2, 15)
        for _ in range(11):
            assert loan.next_installment_amount == Decimal('10661.85')
            loan = loan_manager.record_payment(user.id, loan.id, loan.next_installment_amount,
                                               payment_date=payment_date)
            payment_date = add_months(payment_date, 1)

        assert loan.installments_remaining == 1
        final_row = loan_manager.get_schedule(user.id, loan.id)[-1]
        assert loan.next_installment_amount == final_row.payment_amount == Decimal('10661.91')

        loan = loan_manager.record_payment(user.id, loan.id, loan.next_installment_amount,
                                           payment_date=payment_date)
        assert loan.remaining_balance == Decimal('0')
        assert loan.status == LoanStatus.COMPLETED
        assert loan.next_installment_amount is None

    def test_fixed_installments_leave_residue_quoted(self, loan_manager, user):
        """Test a borrower paying only the fixed amount is quoted the leftover paise"""
        loan = _reference_loan(loan_manager, user.id)
        for _ in range(12):
            loan = loan_manager.record_payment(user.id, loan.id, Decimal('10661.85'),
                                               payment_date=date(2024, 2, 15))
        assert loan.status == LoanStatus.ACTIVE
        assert loan.next_installment_amount == Decimal('0.06')

    def test_loan_locks_are_released(self, loan_manager, user):
        """Test per-loan locks do not accumulate once payments finish"""
        loan = _reference_loan(loan_manager, user.id)
        loan_manager.record_payment(user.id, loan.id, Decimal('5000'))
        loan_manager.update_loan(user.id, loan.id, notes="tracked")
        assert loan_manager._locks == {}

    def test_configured_currency_sets_rounding(self, storage, audit_trail, user):
        """Test a manager built for yen rounds to whole units"""
        manager = LoanManager(storage, audit_trail, currency=Currency.JPY)
        loan = _reference_loan(manager, user.id)
        assert loan.monthly_installment == Decimal('10662')
        assert loan.total_payable == Decimal('127944')


class TestUpdateLoan:
    """Test edits to details, terms and status"""

    def test_update_details(self, loan_manager, user, audit_trail):
        """Test non-term fields change without touching the math"""
        loan = _reference_loan(loan_manager, user.id)
        updated = loan_manager.update_loan(user.id, loan.id, lender_name="HDFC", notes="refinanced",
                                           loan_type="car")
        assert updated.lender_name == "HDFC"
        assert updated.loan_type == LoanType.CAR
        assert updated.monthly_installment == Decimal('10661.85')
        assert updated.version == 2

        events = audit_trail.get_events(entity_type="loan", entity_id=loan.id)
        assert events[-1].event_type == AuditEventType.LOAN_UPDATED

    def test_term_edit_recomputes_and_keeps_repaid_principal(self, loan_manager, user):
        """Test remaining balance is the new principal less principal already repaid"""
        loan = _reference_loan(loan_manager, user.id)
        loan_manager.record_payment(user.id, loan.id, Decimal('10660.62'), payment_date=date(2024, 2, 15))

        updated = loan_manager.update_loan(user.id, loan.id, principal=Decimal('100000'))
        expected = compute_installment(Decimal('100000'), Decimal('12'), 12)
        assert updated.monthly_installment == expected.installment
        assert updated.total_payable == expected.total_payable
        assert updated.remaining_balance == Decimal('90539.38')
        assert updated.next_payment_date == date(2024, 3, 15)
        assert len(updated.payments) == 1

    def test_term_edit_below_repaid_completes(self, loan_manager, user):
        """Test balance never goes negative after shrinking the principal"""
        loan = _reference_loan(loan_manager, user.id)
        loan_manager.record_payment(user.id, loan.id, Decimal('10660.62'), payment_date=date(2024, 2, 15))

        updated = loan_manager.update_loan(user.id, loan.id, principal=Decimal('5000'))
        assert updated.remaining_balance == Decimal('0')
        assert updated.status == LoanStatus.COMPLETED
        assert updated.next_payment_date is None

    def test_term_edit_extends_end_date(self, loan_manager, user):
        """Test term changes move the end date"""
        loan = _reference_loan(loan_manager, user.id)
        updated = loan_manager.update_loan(user.id, loan.id, term_months=24)
        assert updated.end_date == date(2026, 1, 15)
        assert updated.monthly_installment == compute_installment(120000, 12, 24).installment

    def test_status_transitions(self, loan_manager, user):
        """Test external status decisions"""
        loan = _reference_loan(loan_manager, user.id, status="pending")

        activated = loan_manager.update_loan(user.id, loan.id, status="active")
        assert activated.status == LoanStatus.ACTIVE
        assert activated.next_payment_date == date(2024, 2, 15)

        defaulted = loan_manager.update_loan(user.id, loan.id, status="defaulted")
        assert defaulted.status == LoanStatus.DEFAULTED
        assert defaulted.next_payment_date is None

    def test_cannot_mark_completed_with_balance(self, loan_manager, user):
        """Test completion only follows from a zero balance"""
        loan = _reference_loan(loan_manager, user.id)
        with pytest.raises(ValueError):
            loan_manager.update_loan(user.id, loan.id, status="completed")

    def test_unknown_fields_rejected(self, loan_manager, user):
        """Test derived fields cannot be edited directly"""
        loan = _reference_loan(loan_manager, user.id)
        with pytest.raises(ValueError):
            loan_manager.update_loan(user.id, loan.id, remaining_balance=Decimal('1'))


class TestDeleteLoan:
    """Test deletion"""

    def test_delete_loan(self, loan_manager, user, audit_trail):
        """Test the loan and its history are gone"""
        loan = _reference_loan(loan_manager, user.id)
        loan_manager.record_payment(user.id, loan.id, Decimal('5000'))
        loan_manager.delete_loan(user.id, loan.id)

        with pytest.raises(NotFoundError):
            loan_manager.get_loan(user.id, loan.id)
        events = audit_trail.get_events(entity_type="loan", entity_id=loan.id)
        assert events[-1].event_type == AuditEventType.LOAN_DELETED


class TestLoanRecord:
    """Test the stored representation"""

    def test_round_trip_with_payments(self, loan_manager, user):
        """Test dict conversion keeps terms and history"""
        loan = _reference_loan(loan_manager, user.id)
        updated = loan_manager.record_payment(user.id, loan.id, Decimal('10660.62'),
                                              payment_date=date(2024, 2, 15))
        data = updated.to_dict()
        assert data["remaining_balance"] == "110539.38"
        assert data["payments"][0]["principal_paid"] == "9460.62"
        assert Loan.from_dict(data) == updated
