"""
Test suite for users module

Tests registration, authentication, profile updates and password changes.
"""

import pytest
from decimal import Decimal
from datetime import date, timedelta

from planpocket.audit import AuditEventType
from planpocket.exceptions import AuthenticationError, NotFoundError


class TestRegistration:
    """Test user registration"""

    def test_register_user(self, user_manager, audit_trail):
        """Test a new user is stored with a hashed password"""
        user = user_manager.register("  Asha Rao ", "Asha@Example.com", "secret123")

        assert user.name == "Asha Rao"
        assert user.email == "asha@example.com"
        assert user.password_hash and user.password_hash != "secret123"
        assert user.password_salt
        assert user.monthly_income == Decimal('0')
        assert user_manager.get_user(user.id).email == "asha@example.com"

        events = audit_trail.get_events(entity_type="user", entity_id=user.id)
        assert events[0].event_type == AuditEventType.USER_REGISTERED

    def test_duplicate_email_rejected(self, user_manager, user):
        """Test emails are unique regardless of case"""
        with pytest.raises(ValueError, match="already exists"):
            user_manager.register("Someone Else", "ASHA@example.com", "another1")

    @pytest.mark.parametrize("name, email, password", [
        ("A", "a@example.com", "secret123"),
        ("Asha", "not-an-email", "secret123"),
        ("Asha", "a@example.com", "123"),
    ])
    def test_invalid_registration(self, user_manager, name, email, password):
        """Test name, email and password rules"""
        with pytest.raises(ValueError):
            user_manager.register(name, email, password)

    def test_public_dict_hides_credentials(self, user):
        """Test the profile view carries no password material"""
        profile = user.to_public_dict()
        assert "password_hash" not in profile
        assert "password_salt" not in profile
        assert profile["currency"] == "INR"


class TestAuthentication:
    """Test credential checks"""

    def test_authenticate(self, user_manager, user):
        """Test correct credentials return the user and stamp the login"""
        authenticated = user_manager.authenticate("asha@example.com", "secret123")
        assert authenticated.id == user.id
        assert user_manager.get_user(user.id).last_login_at is not None

    def test_wrong_password(self, user_manager, user, audit_trail):
        """Test wrong password raises and is audited"""
        with pytest.raises(AuthenticationError):
            user_manager.authenticate("asha@example.com", "wrong-password")
        events = audit_trail.get_events(entity_type="user", entity_id=user.id)
        assert events[-1].event_type == AuditEventType.LOGIN_FAILED

    def test_unknown_email(self, user_manager):
        """Test unknown email gives the same error"""
        with pytest.raises(AuthenticationError, match="Invalid credentials"):
            user_manager.authenticate("nobody@example.com", "secret123")


class TestProfile:
    """Test profile and income updates"""

    def test_update_income_sets_monthly(self, user_manager, user):
        """Test monthly income is a twelfth of annual income"""
        updated = user_manager.update_income(user.id, Decimal('120000'))
        assert updated.annual_income == Decimal('120000.00')
        assert updated.monthly_income == Decimal('10000.00')

    def test_update_income_rounds_monthly(self, user_manager, user):
        """Test uneven division rounds to paise"""
        updated = user_manager.update_income(user.id, Decimal('100000'))
        assert updated.monthly_income == Decimal('8333.33')

    def test_update_income_must_be_positive(self, user_manager, user):
        """Test zero or negative income is rejected"""
        with pytest.raises(ValueError):
            user_manager.update_income(user.id, Decimal('0'))
        with pytest.raises(ValueError):
            user_manager.update_income(user.id, Decimal('-5'))

    def test_update_profile(self, user_manager, user):
        """Test only supplied fields change"""
        updated = user_manager.update_profile(
            user.id, phone="+91 98765 43210", date_of_birth=date(1990, 5, 17)
        )
        assert updated.name == "Asha Rao"
        assert updated.phone == "+91 98765 43210"
        assert updated.date_of_birth == date(1990, 5, 17)

        reloaded = user_manager.get_user(user.id)
        assert reloaded.date_of_birth == date(1990, 5, 17)

    def test_future_birth_date_rejected(self, user_manager, user):
        """Test date of birth cannot be in the future"""
        with pytest.raises(ValueError):
            user_manager.update_profile(user.id, date_of_birth=date.today() + timedelta(days=1))

    def test_unknown_user(self, user_manager):
        """Test updates on a missing user"""
        with pytest.raises(NotFoundError):
            user_manager.update_income("missing", Decimal('1000'))


class TestChangePassword:
    """Test password changes"""

    def test_change_password(self, user_manager, user):
        """Test the new password works and the old one does not"""
        user_manager.change_password(user.id, "secret123", "newsecret")
        assert user_manager.authenticate("asha@example.com", "newsecret").id == user.id
        with pytest.raises(AuthenticationError):
            user_manager.authenticate("asha@example.com", "secret123")

    def test_wrong_current_password(self, user_manager, user):
        """Test the current password must match"""
        with pytest.raises(AuthenticationError):
            user_manager.change_password(user.id, "wrong", "newsecret")

    def test_new_password_too_short(self, user_manager, user):
        """Test the minimum length applies to the new password"""
        with pytest.raises(ValueError):
            user_manager.change_password(user.id, "secret123", "abc")
