from __future__ import annotations

import re
from enum import Enum

from pydantic import BaseModel

PHONE_PATTERN = re.compile(r"^[6-9]\d{9}$")
PAN_PATTERN = re.compile(r"^[A-Z]{5}[0-9]{4}[A-Z]$")
AADHAR_PATTERN = re.compile(r"^\d{12}$")
PINCODE_PATTERN = re.compile(r"^\d{6}$")


class Bank(str, Enum):
    SBI = "SBI"
    HDFC = "HDFC"
    ICICI = "ICICI"
    AXIS = "AXIS"
    KOTAK = "KOTAK"

    @classmethod
    def _missing_(cls, value):  # type: ignore[override]
        if isinstance(value, str):
            return cls._value2member_map_.get(value.strip().upper())
        return None


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, total: int, page: int, limit: int) -> "Pagination":
        total_pages = (total + limit - 1) // limit if limit else 0
        return cls(
            total=total,
            page=page,
            limit=limit,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )


def normalize_phone(value: str | None) -> str | None:
    """Strip separators and a leading +91/0 so stored numbers are the bare 10 digits."""
    if value is None:
        return None
    digits = re.sub(r"[\s\-()]", "", str(value))
    if digits.startswith("+91"):
        digits = digits[3:]
    elif digits.startswith("91") and len(digits) == 12:
        digits = digits[2:]
    elif digits.startswith("0") and len(digits) == 11:
        digits = digits[1:]
    if not PHONE_PATTERN.match(digits):
        raise ValueError("Please enter a valid Indian mobile number")
    return digits
