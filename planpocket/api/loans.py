"""
Loan endpoints
"""

from fastapi import APIRouter, Depends, status

from .auth import PlanPocketSystem, get_system, get_current_user
from .schemas import (
    CreateLoanRequest, UpdateLoanRequest, LoanPaymentRequest, CalculateEMIRequest,
    envelope, parse_date
)
from ..amortization import calculate_emi


router = APIRouter()


@router.post("/calculate-emi")
async def calculate_loan_emi(
    request: CalculateEMIRequest,
    system: PlanPocketSystem = Depends(get_system)
):
    """Quote the installment for a set of terms without saving anything"""
    quote = calculate_emi(request.principal, request.annual_interest_rate_percent,
                          request.term_months, system.config.currency)
    return envelope({
        "installment": quote.installment,
        "totalPayable": quote.total_payable,
        "totalInterest": quote.total_interest,
    })


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(
    request: CreateLoanRequest,
    user_id: str = Depends(get_current_user),
    system: PlanPocketSystem = Depends(get_system)
):
    """Register a new loan"""
    loan = system.loan_manager.create_loan(
        user_id=user_id,
        loan_type=request.loan_type,
        lender_name=request.lender_name,
        principal=request.principal,
        annual_interest_rate_percent=request.annual_interest_rate_percent,
        term_months=request.term_months,
        start_date=parse_date(request.start_date),
        notes=request.notes,
        status=request.status,
    )
    return envelope(loan, message="Loan created successfully")


@router.get("")
async def list_loans(
    user_id: str = Depends(get_current_user),
    system: PlanPocketSystem = Depends(get_system)
):
    """All of the user's loans"""
    loans = system.loan_manager.list_loans(user_id)
    return envelope({"loans": loans, "count": len(loans)})


@router.get("/status/{loan_status}")
async def list_loans_by_status(
    loan_status: str,
    user_id: str = Depends(get_current_user),
    system: PlanPocketSystem = Depends(get_system)
):
    """The user's loans in one status"""
    loans = system.loan_manager.list_loans_by_status(user_id, loan_status)
    return envelope({"loans": loans, "count": len(loans)})


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    user_id: str = Depends(get_current_user),
    system: PlanPocketSystem = Depends(get_system)
):
    """Get loan details"""
    return envelope(system.loan_manager.get_loan(user_id, loan_id))


@router.put("/{loan_id}")
async def update_loan(
    loan_id: str,
    request: UpdateLoanRequest,
    user_id: str = Depends(get_current_user),
    system: PlanPocketSystem = Depends(get_system)
):
    """Update loan details or terms"""
    changes = {
        k: v for k, v in request.model_dump(exclude_unset=True).items()
        if v is not None or k == "notes"
    }
    if "start_date" in changes:
        changes["start_date"] = parse_date(changes["start_date"])
    loan = system.loan_manager.update_loan(user_id, loan_id, **changes)
    return envelope(loan, message="Loan updated successfully")


@router.delete("/{loan_id}")
async def delete_loan(
    loan_id: str,
    user_id: str = Depends(get_current_user),
    system: PlanPocketSystem = Depends(get_system)
):
    """Delete a loan"""
    system.loan_manager.delete_loan(user_id, loan_id)
    return envelope(message="Loan deleted successfully")


@router.post("/{loan_id}/payments")
async def make_loan_payment(
    loan_id: str,
    request: LoanPaymentRequest,
    user_id: str = Depends(get_current_user),
    system: PlanPocketSystem = Depends(get_system)
):
    """Record a loan payment"""
    loan = system.loan_manager.record_payment(
        user_id=user_id,
        loan_id=loan_id,
        amount=request.amount,
        payment_date=parse_date(request.payment_date),
        payment_method=request.payment_method,
        note=request.note,
    )
    return envelope({"loan": loan, "payment": loan.payments[-1]},
                    message="Loan payment recorded successfully")


@router.get("/{loan_id}/schedule")
async def get_loan_schedule(
    loan_id: str,
    user_id: str = Depends(get_current_user),
    system: PlanPocketSystem = Depends(get_system)
):
    """Get loan amortization schedule"""
    schedule = system.loan_manager.get_schedule(user_id, loan_id)
    return envelope({"schedule": schedule})
