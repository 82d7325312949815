"""
Transaction endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, status

from .auth import PlanPocketSystem, get_system, get_current_user
from .schemas import CreateTransactionRequest, UpdateTransactionRequest, envelope, parse_date


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_transaction(
    request: CreateTransactionRequest,
    user_id: str = Depends(get_current_user),
    system: PlanPocketSystem = Depends(get_system)
):
    """Record an income or expense"""
    transaction = system.transaction_manager.create_transaction(
        user_id=user_id,
        type=request.type,
        description=request.description,
        amount=request.amount,
        category=request.category,
        date=parse_date(request.date),
        notes=request.notes,
        recurring=request.recurring,
        recurring_frequency=request.recurring_frequency,
        tags=request.tags,
    )
    return envelope(transaction, message="Transaction created successfully")


@router.get("")
async def list_transactions(
    type: Optional[str] = None,
    category: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    page: int = 1,
    limit: Optional[int] = None,
    user_id: str = Depends(get_current_user),
    system: PlanPocketSystem = Depends(get_system)
):
    """List transactions, newest first, with optional filters"""
    transactions = system.transaction_manager.list_transactions(
        user_id,
        type=type,
        category=category,
        start_date=parse_date(start_date),
        end_date=parse_date(end_date),
        page=page,
        limit=limit,
    )
    return envelope({"transactions": transactions, "count": len(transactions), "page": page})


@router.get("/category/{category}")
async def get_by_category(
    category: str,
    user_id: str = Depends(get_current_user),
    system: PlanPocketSystem = Depends(get_system)
):
    """Transactions in one category"""
    transactions = system.transaction_manager.get_by_category(user_id, category)
    return envelope({"transactions": transactions, "count": len(transactions)})


@router.get("/date-range/{start_date}/{end_date}")
async def get_by_date_range(
    start_date: str,
    end_date: str,
    user_id: str = Depends(get_current_user),
    system: PlanPocketSystem = Depends(get_system)
):
    """Transactions between two dates, inclusive"""
    transactions = system.transaction_manager.get_by_date_range(
        user_id, parse_date(start_date), parse_date(end_date))
    return envelope({"transactions": transactions, "count": len(transactions)})


@router.get("/{transaction_id}")
async def get_transaction(
    transaction_id: str,
    user_id: str = Depends(get_current_user),
    system: PlanPocketSystem = Depends(get_system)
):
    """Get transaction details"""
    return envelope(system.transaction_manager.get_transaction(user_id, transaction_id))


@router.put("/{transaction_id}")
async def update_transaction(
    transaction_id: str,
    request: UpdateTransactionRequest,
    user_id: str = Depends(get_current_user),
    system: PlanPocketSystem = Depends(get_system)
):
    """Update transaction fields"""
    changes = {
        k: v for k, v in request.model_dump(exclude_unset=True).items()
        if v is not None or k in ("notes", "recurring_frequency")
    }
    if "date" in changes:
        changes["date"] = parse_date(changes["date"])
    transaction = system.transaction_manager.update_transaction(user_id, transaction_id, **changes)
    return envelope(transaction, message="Transaction updated successfully")


@router.delete("/{transaction_id}")
async def delete_transaction(
    transaction_id: str,
    user_id: str = Depends(get_current_user),
    system: PlanPocketSystem = Depends(get_system)
):
    """Delete a transaction"""
    system.transaction_manager.delete_transaction(user_id, transaction_id)
    return envelope(message="Transaction deleted successfully")
