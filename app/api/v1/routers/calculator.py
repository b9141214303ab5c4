from decimal import Decimal

from fastapi import APIRouter, HTTPException, Query, status

from app.schemas.calculator import EmiResult, LoanTypesResponse
from app.services import calculator

router = APIRouter(prefix="/calculator", tags=["calculator"])


@router.get("/emi", response_model=EmiResult, summary="Calculate the monthly instalment for a loan")
async def calculate_emi(
    principal: Decimal = Query(..., gt=0),
    rate: Decimal = Query(..., ge=0, le=100, description="Annual interest rate in percent"),
    tenure_months: int = Query(..., ge=1, le=600),
) -> EmiResult:
    try:
        return calculator.calculate_emi(principal, rate, tenure_months)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.get("/loan-types", response_model=LoanTypesResponse, summary="Indicative interest rates by loan type")
async def list_loan_types() -> LoanTypesResponse:
    return LoanTypesResponse(loan_types=calculator.loan_types())
