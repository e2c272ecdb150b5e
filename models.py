"""Transaction record and candidate validation shared by the store and importer."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Mapping, Optional

TRANSACTION_TYPES = ("income", "expenditure")

# Everything except digits, sign and decimal point is dropped from string amounts
# ("$1,200.50" -> "1200.50"), then the leading number is parsed.
_AMOUNT_JUNK = re.compile(r"[^0-9.+-]")
_LEADING_NUMBER = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)")


@dataclass(frozen=True)
class Transaction:
    id: Optional[int]
    type: str
    name: str
    date: str
    amount: float
    created_by: Optional[str] = None
    updated_by: Optional[str] = None

    @property
    def key(self) -> tuple[str, str, str, float]:
        """The dedup tuple enforced unique in storage."""
        return (self.type, self.name, self.date, self.amount)

    def to_params(self) -> dict[str, Any]:
        """Bind parameters for the insert statement."""
        return {
            "type": self.type,
            "name": self.name,
            "date": self.date,
            "amount": self.amount,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
        }

    def to_client(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "date": self.date,
            "amount": self.amount,
            "createdBy": self.created_by or None,
            "updatedBy": self.updated_by or None,
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Transaction":
        return cls(
            id=row.get("id"),
            type=row["type"],
            name=row["name"],
            date=normalize_date(row["date"]),
            amount=normalize_amount(row["amount"]),
            created_by=row.get("created_by"),
            updated_by=row.get("updated_by"),
        )


def normalize_date(value: Any) -> str:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def normalize_amount(value: Any) -> float:
    # NUMERIC columns come back from PostgreSQL as Decimal.
    return float(value)


def format_amount(value: Optional[float]) -> str:
    """Render an amount for CSV output; integral values lose the ``.0``."""
    if value is None:
        return ""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    # Positional notation: "1e-05" would not parse back as an amount.
    return format(Decimal(repr(value)), "f")


def parse_amount(raw: Any) -> Optional[float]:
    """Coerce a client-supplied amount to a finite float, or ``None``."""
    if isinstance(raw, bool) or raw is None:
        return None
    if isinstance(raw, (int, float, Decimal)):
        try:
            value = float(raw)
        except (OverflowError, ValueError):
            return None
    elif isinstance(raw, str):
        match = _LEADING_NUMBER.match(_AMOUNT_JUNK.sub("", raw))
        if not match:
            return None
        try:
            value = float(match.group(0))
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(value):
        return None
    return value


def _text(raw: Any, *, strip: bool = True) -> Optional[str]:
    if raw is None or isinstance(raw, bool):
        return None
    s = str(raw)
    if not s.strip():
        return None
    return s.strip() if strip else s


def candidate_from_payload(item: Any) -> Optional[Transaction]:
    """Validate one proposed transaction from a client payload.

    Returns ``None`` when the candidate must be skipped: not a mapping, type
    outside the enumeration, empty name or date, or an amount that does not
    parse to a finite number.
    """
    if not isinstance(item, Mapping):
        return None
    tx_type = _text(item.get("type"))
    if tx_type not in TRANSACTION_TYPES:
        return None
    # Names are stored as submitted; only blank ones are rejected.
    name = _text(item.get("name"), strip=False)
    tx_date = _text(item.get("date"))
    if not name or not tx_date:
        return None
    amount = parse_amount(item.get("amount"))
    if amount is None:
        return None
    return Transaction(
        id=None,
        type=tx_type,
        name=name,
        date=tx_date,
        amount=amount,
        created_by=_text(item.get("createdBy")) or _text(item.get("created_by")),
        updated_by=_text(item.get("updatedBy")) or _text(item.get("updated_by")),
    )
