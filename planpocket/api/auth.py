"""
Authentication dependencies, rate limiting and the system container
"""

from collections import defaultdict
from datetime import datetime, timezone, timedelta
from typing import Optional
import time

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..storage import StorageInterface, create_storage
from ..audit import AuditTrail
from ..users import UserManager
from ..transactions import TransactionManager
from ..loans import LoanManager
from ..reporting import SummaryEngine
from ..config import PlanPocketConfig, get_config


class PlanPocketSystem:
    """PlanPocket with all components initialized"""

    def __init__(self, config: Optional[PlanPocketConfig] = None,
                 storage: Optional[StorageInterface] = None):
        self.config = config or get_config()

        # Initialize storage
        self.storage = storage or create_storage(
            self.config.database_path, in_memory=self.config.use_in_memory_storage
        )

        # Initialize components
        self.audit_trail = AuditTrail(self.storage, enabled=self.config.enable_audit_logging)
        self.user_manager = UserManager(
            self.storage, self.audit_trail,
            password_min_length=self.config.password_min_length,
            currency=self.config.currency
        )
        self.transaction_manager = TransactionManager(self.storage, self.audit_trail, currency=self.config.currency)
        self.loan_manager = LoanManager(self.storage, self.audit_trail, currency=self.config.currency)
        self.summary_engine = SummaryEngine(
            self.transaction_manager, self.loan_manager, self.user_manager,
            recent_limit=self.config.recent_transactions_limit,
            currency=self.config.currency
        )


_system: Optional[PlanPocketSystem] = None


# Dependency to get the PlanPocket system
def get_system() -> PlanPocketSystem:
    global _system
    if _system is None:
        _system = PlanPocketSystem()
    return _system


# JWT Security
security = HTTPBearer(auto_error=False)


def create_access_token(user_id: str, config: PlanPocketConfig) -> str:
    """Issue a signed bearer token for the user"""
    now = datetime.now(timezone.utc)
    token_payload = {
        "sub": user_id,
        "iat": now,
        "exp": now + timedelta(hours=config.jwt_expiry_hours),
    }
    return jwt.encode(token_payload, config.jwt_secret, algorithm=config.jwt_algorithm)


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    system: PlanPocketSystem = Depends(get_system)
) -> str:
    """Dependency that validates JWT and returns the current user id"""
    if not credentials:
        raise HTTPException(status_code=401, detail="Not authorized, no token")
    try:
        payload = jwt.decode(
            credentials.credentials, system.config.jwt_secret,
            algorithms=[system.config.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = payload.get("sub")
    if not user_id or not system.user_manager.get_user(user_id):
        raise HTTPException(status_code=401, detail="Invalid token")
    return user_id


# Rate Limiting
class RateLimiter:
    def __init__(self, requests_per_minute=100):
        self.requests = defaultdict(list)
        self.rpm = requests_per_minute

    async def __call__(self, request: Request, call_next):
        client_ip = request.client.host if request.client else "unknown"
        now = time.time()
        # Clean old entries
        self.requests[client_ip] = [t for t in self.requests[client_ip] if now - t < 60]
        if len(self.requests[client_ip]) >= self.rpm:
            return JSONResponse(
                status_code=429,
                content={"success": False, "message": "Too many requests, please try again later"}
            )
        self.requests[client_ip].append(now)
        return await call_next(request)
