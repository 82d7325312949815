"""
Authentication and user profile endpoints
"""

import logging

from fastapi import APIRouter, Depends, status

from .auth import PlanPocketSystem, get_system, get_current_user, create_access_token
from .schemas import (
    RegisterRequest, LoginRequest, UpdateProfileRequest, ChangePasswordRequest,
    UpdateIncomeRequest, envelope, parse_date
)
from ..logging_config import log_action


logger = logging.getLogger("planpocket.api")

auth_router = APIRouter()
user_router = APIRouter()


def _token_response(user, system: PlanPocketSystem) -> dict:
    return {
        "token": create_access_token(user.id, system.config),
        "token_type": "bearer",
        "user": user.to_public_dict(),
    }


@auth_router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    request: RegisterRequest,
    system: PlanPocketSystem = Depends(get_system)
):
    """Register a new user and return a token"""
    user = system.user_manager.register(request.name, request.email, request.password)
    return envelope(_token_response(user, system), message="User registered successfully")


@auth_router.post("/login")
async def login(
    request: LoginRequest,
    system: PlanPocketSystem = Depends(get_system)
):
    """Authenticate user and return JWT token"""
    user = system.user_manager.authenticate(request.email, request.password)
    log_action(
        logger, "info", "User authenticated successfully",
        user_id=user.id, action="login", resource="auth"
    )
    return envelope(_token_response(user, system), message="Login successful")


@auth_router.get("/me")
async def get_me(
    user_id: str = Depends(get_current_user),
    system: PlanPocketSystem = Depends(get_system)
):
    """Get the authenticated user's profile"""
    return envelope(system.user_manager.require_user(user_id).to_public_dict())


@auth_router.put("/profile")
async def update_profile(
    request: UpdateProfileRequest,
    user_id: str = Depends(get_current_user),
    system: PlanPocketSystem = Depends(get_system)
):
    """Update profile fields"""
    user = system.user_manager.update_profile(
        user_id,
        name=request.name,
        phone=request.phone,
        annual_income=request.annual_income,
        date_of_birth=parse_date(request.date_of_birth),
    )
    return envelope(user.to_public_dict(), message="Profile updated successfully")


@auth_router.put("/change-password")
async def change_password(
    request: ChangePasswordRequest,
    user_id: str = Depends(get_current_user),
    system: PlanPocketSystem = Depends(get_system)
):
    """Change the authenticated user's password"""
    system.user_manager.change_password(user_id, request.current_password, request.new_password)
    return envelope(message="Password changed successfully")


@auth_router.post("/logout")
async def logout(user_id: str = Depends(get_current_user)):
    """Logout user; tokens are stateless, the client discards its copy"""
    log_action(logger, "info", "User logged out", user_id=user_id,
               action="logout", resource="auth")
    return envelope(message="Logged out successfully")


@user_router.put("/income")
async def update_income(
    request: UpdateIncomeRequest,
    user_id: str = Depends(get_current_user),
    system: PlanPocketSystem = Depends(get_system)
):
    """Set annual income; monthly income is derived"""
    user = system.user_manager.update_income(user_id, request.annual_income)
    return envelope(user.to_public_dict(), message="Income updated successfully")


@user_router.get("/dashboard")
async def get_dashboard(
    user_id: str = Depends(get_current_user),
    system: PlanPocketSystem = Depends(get_system)
):
    """Profile together with the financial summary"""
    user = system.user_manager.require_user(user_id)
    return envelope({
        "user": user.to_public_dict(),
        "summary": system.summary_engine.financial_summary(user_id),
    })
