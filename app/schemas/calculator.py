from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class EmiResult(BaseModel):
    model_config = ConfigDict(json_encoders={Decimal: lambda value: str(value)})

    principal: Decimal
    annual_rate_percent: Decimal
    tenure_months: int
    emi: Decimal
    total_amount: Decimal
    total_interest: Decimal


class LoanTypeRate(BaseModel):
    loan_type: str
    label: str
    min_rate: Decimal
    max_rate: Decimal
    default_rate: Decimal


class LoanTypesResponse(BaseModel):
    loan_types: list[LoanTypeRate]
