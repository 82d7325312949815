"""
User Management Module

Registration, password authentication and profile management. Passwords are
stored as salted scrypt hashes; monthly income is derived from the annual
figure the user enters.
"""

from decimal import Decimal
from datetime import date, datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, Optional
import hashlib
import hmac
import logging
import re
import secrets
import uuid

from .currency import Currency, DEFAULT_CURRENCY, round_money, to_decimal
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .exceptions import AuthenticationError, NotFoundError
from .logging_config import log_action

logger = logging.getLogger("planpocket.users")

EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


@dataclass
class User(StorageRecord):
    """Registered PlanPocket user"""
    name: str
    email: str
    password_hash: str = ""
    password_salt: str = ""
    phone: Optional[str] = None
    date_of_birth: Optional[date] = None
    annual_income: Decimal = Decimal('0')
    monthly_income: Decimal = Decimal('0')
    currency: Currency = DEFAULT_CURRENCY
    last_login_at: Optional[datetime] = None

    def to_public_dict(self) -> Dict[str, Any]:
        """Profile without credentials"""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "date_of_birth": self.date_of_birth.isoformat() if self.date_of_birth else None,
            "annual_income": str(self.annual_income),
            "monthly_income": str(self.monthly_income),
            "currency": self.currency.code,
            "created_at": self.created_at.isoformat(),
        }


class UserManager:
    """
    Manages user accounts and credentials
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 password_min_length: int = 6, currency: Optional[Currency] = None):
        self.storage = storage
        self.audit_trail = audit_trail
        self.password_min_length = password_min_length
        self.currency = currency or DEFAULT_CURRENCY
        self.table_name = "users"

    def register(self, name: str, email: str, password: str) -> User:
        """
        Register a new user

        Args:
            name: Display name, 2-50 characters
            email: Login email, unique
            password: Plain-text password

        Returns:
            Created User

        Raises:
            ValueError: If validation fails or the email is taken
        """
        name = self._validate_name(name)
        email = self._normalize_email(email)
        self._validate_password(password)

        if self.get_user_by_email(email):
            raise ValueError("User already exists with this email")

        now = datetime.now(timezone.utc)
        user = User(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name,
            email=email,
            currency=self.currency
        )
        self._set_password(user, password)
        self._save_user(user)

        self.audit_trail.log_event(
            event_type=AuditEventType.USER_REGISTERED,
            entity_type="user",
            entity_id=user.id,
            metadata={"email": email},
            user_id=user.id
        )
        log_action(logger, "info", "User registered", user_id=user.id,
                   action="register", resource="user")
        return user

    def authenticate(self, email: str, password: str) -> User:
        """
        Check credentials and return the user

        Raises:
            AuthenticationError: If the email is unknown or the password wrong
        """
        user = self.get_user_by_email(email or "")
        if not user or not self._verify_password(user, password):
            self.audit_trail.log_event(
                event_type=AuditEventType.LOGIN_FAILED,
                entity_type="user",
                entity_id=user.id if user else "unknown",
                metadata={"email": (email or "").strip().lower()}
            )
            log_action(logger, "warning", "Authentication failed",
                       action="login_failed", resource="auth")
            raise AuthenticationError("Invalid credentials")

        user.last_login_at = datetime.now(timezone.utc)
        self._save_user(user)
        self.audit_trail.log_event(
            event_type=AuditEventType.LOGIN_SUCCESS,
            entity_type="user",
            entity_id=user.id,
            user_id=user.id
        )
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        """Get user by ID"""
        data = self.storage.load(self.table_name, user_id)
        return self._user_from_dict(data) if data else None

    def require_user(self, user_id: str) -> User:
        """Get user by ID or raise NotFoundError"""
        user = self.get_user(user_id)
        if not user:
            raise NotFoundError(f"User {user_id} not found")
        return user

    def get_user_by_email(self, email: str) -> Optional[User]:
        """Get user by email (case-insensitive)"""
        matches = self.storage.find(self.table_name, {"email": email.strip().lower()})
        return self._user_from_dict(matches[0]) if matches else None

    def update_profile(
        self,
        user_id: str,
        name: Optional[str] = None,
        phone: Optional[str] = None,
        annual_income: Optional[Decimal] = None,
        date_of_birth: Optional[date] = None
    ) -> User:
        """
        Update profile fields; omitted fields are left unchanged

        Returns:
            Updated User
        """
        user = self.require_user(user_id)
        changes = {}

        if name is not None:
            user.name = self._validate_name(name)
            changes["name"] = user.name
        if phone is not None:
            user.phone = phone.strip() or None
            changes["phone"] = user.phone
        if annual_income is not None:
            self._apply_income(user, annual_income, allow_zero=True)
            changes["annual_income"] = user.annual_income
        if date_of_birth is not None:
            if date_of_birth > date.today():
                raise ValueError("Date of birth cannot be in the future")
            user.date_of_birth = date_of_birth
            changes["date_of_birth"] = date_of_birth

        user.touch()
        self._save_user(user)
        self.audit_trail.log_event(
            event_type=AuditEventType.USER_UPDATED,
            entity_type="user",
            entity_id=user.id,
            metadata=changes,
            user_id=user.id
        )
        return user

    def update_income(self, user_id: str, annual_income: Decimal) -> User:
        """Set annual income (must be positive) and derive monthly income"""
        user = self.require_user(user_id)
        self._apply_income(user, annual_income, allow_zero=False)
        user.touch()
        self._save_user(user)
        self.audit_trail.log_event(
            event_type=AuditEventType.USER_UPDATED,
            entity_type="user",
            entity_id=user.id,
            metadata={"annual_income": user.annual_income},
            user_id=user.id
        )
        return user

    def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        """
        Replace the password after checking the current one

        Raises:
            AuthenticationError: If the current password is wrong
            ValueError: If the new password is too short
        """
        user = self.require_user(user_id)
        if not self._verify_password(user, current_password):
            raise AuthenticationError("Current password is incorrect")
        self._validate_password(new_password)

        user.password_salt = ""
        self._set_password(user, new_password)
        user.touch()
        self._save_user(user)
        self.audit_trail.log_event(
            event_type=AuditEventType.PASSWORD_CHANGED,
            entity_type="user",
            entity_id=user.id,
            user_id=user.id
        )

    def _apply_income(self, user: User, annual_income, allow_zero: bool) -> None:
        income = to_decimal(annual_income)
        if income < 0 or (income == 0 and not allow_zero):
            raise ValueError("Annual income must be a positive number")
        user.annual_income = round_money(income, user.currency)
        user.monthly_income = round_money(income / 12, user.currency)

    def _validate_name(self, name: str) -> str:
        name = (name or "").strip()
        if not 2 <= len(name) <= 50:
            raise ValueError("Name must be between 2 and 50 characters")
        return name

    def _normalize_email(self, email: str) -> str:
        email = (email or "").strip().lower()
        if not EMAIL_PATTERN.match(email):
            raise ValueError("Please provide a valid email")
        return email

    def _validate_password(self, password: str) -> None:
        if not password or len(password) < self.password_min_length:
            raise ValueError(
                f"Password must be at least {self.password_min_length} characters long"
            )

    def _hash_password(self, password: str, salt: str) -> str:
        """Hash password with salt using scrypt"""
        return hashlib.scrypt(
            password.encode(),
            salt=salt.encode(),
            n=16384, r=8, p=1
        ).hex()

    def _set_password(self, user: User, password: str) -> None:
        if not user.password_salt:
            user.password_salt = secrets.token_hex(16)
        user.password_hash = self._hash_password(password, user.password_salt)

    def _verify_password(self, user: User, password: str) -> bool:
        if not password or not user.password_hash or not user.password_salt:
            return False
        expected = self._hash_password(password, user.password_salt)
        return hmac.compare_digest(expected, user.password_hash)

    def _save_user(self, user: User) -> None:
        self.storage.save(self.table_name, user.id, self._user_to_dict(user))

    def _user_to_dict(self, user: User) -> Dict[str, Any]:
        return {
            "id": user.id,
            "created_at": user.created_at.isoformat(),
            "updated_at": user.updated_at.isoformat(),
            "name": user.name,
            "email": user.email,
            "password_hash": user.password_hash,
            "password_salt": user.password_salt,
            "phone": user.phone,
            "date_of_birth": user.date_of_birth.isoformat() if user.date_of_birth else None,
            "annual_income": str(user.annual_income),
            "monthly_income": str(user.monthly_income),
            "currency": user.currency.code,
            "last_login_at": user.last_login_at.isoformat() if user.last_login_at else None,
        }

    def _user_from_dict(self, data: Dict[str, Any]) -> User:
        return User(
            id=data["id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            name=data["name"],
            email=data["email"],
            password_hash=data.get("password_hash", ""),
            password_salt=data.get("password_salt", ""),
            phone=data.get("phone"),
            date_of_birth=date.fromisoformat(data["date_of_birth"]) if data.get("date_of_birth") else None,
            annual_income=Decimal(data.get("annual_income", "0")),
            monthly_income=Decimal(data.get("monthly_income", "0")),
            currency=Currency[data.get("currency", DEFAULT_CURRENCY.code)],
            last_login_at=datetime.fromisoformat(data["last_login_at"]) if data.get("last_login_at") else None,
        )
