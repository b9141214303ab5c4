from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from app.schemas.calculator import EmiResult, LoanTypeRate

CENT = Decimal("0.01")

LOAN_TYPES: list[LoanTypeRate] = [
    LoanTypeRate(
        loan_type="education",
        label="Education Loan",
        min_rate=Decimal("8.5"),
        max_rate=Decimal("12"),
        default_rate=Decimal("10"),
    ),
    LoanTypeRate(
        loan_type="personal",
        label="Personal Loan",
        min_rate=Decimal("10"),
        max_rate=Decimal("18"),
        default_rate=Decimal("14"),
    ),
    LoanTypeRate(
        loan_type="home",
        label="Home Loan",
        min_rate=Decimal("8"),
        max_rate=Decimal("10"),
        default_rate=Decimal("9"),
    ),
    LoanTypeRate(
        loan_type="car",
        label="Car Loan",
        min_rate=Decimal("7"),
        max_rate=Decimal("12"),
        default_rate=Decimal("9.5"),
    ),
]


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_emi(principal: Decimal, annual_rate_percent: Decimal, tenure_months: int) -> EmiResult:
    """Equated monthly instalment for a reducing-balance loan.

    ``emi = P * r * (1 + r)^n / ((1 + r)^n - 1)`` with ``r`` the monthly rate;
    a zero rate degrades to ``P / n``.
    """
    principal = Decimal(principal)
    annual_rate_percent = Decimal(annual_rate_percent)
    if principal <= 0:
        raise ValueError("principal must be positive")
    if annual_rate_percent < 0:
        raise ValueError("annual_rate_percent cannot be negative")
    if tenure_months <= 0:
        raise ValueError("tenure_months must be positive")

    monthly_rate = annual_rate_percent / Decimal(1200)
    if monthly_rate == 0:
        emi = principal / tenure_months
    else:
        factor = (1 + monthly_rate) ** tenure_months
        emi = principal * monthly_rate * factor / (factor - 1)
    emi = _money(emi)
    total_amount = _money(emi * tenure_months)
    return EmiResult(
        principal=_money(principal),
        annual_rate_percent=annual_rate_percent,
        tenure_months=tenure_months,
        emi=emi,
        total_amount=total_amount,
        total_interest=_money(total_amount - principal),
    )


def loan_types() -> list[LoanTypeRate]:
    return list(LOAN_TYPES)
