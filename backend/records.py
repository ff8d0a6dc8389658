"""
Entity records shared by every storage backend.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping, Optional

CENTS = Decimal("0.01")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def quantize_amount(value: Optional[float]) -> Optional[float]:
    """Round a money amount to cents, half away from zero like NUMERIC(12, 2)."""
    if value is None:
        return None
    return float(Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP))


@dataclass
class NewUser:
    username: str
    email: str
    # Credential hash, never the plaintext password.
    password: str


@dataclass
class User:
    id: int
    username: str
    email: str
    password: str
    created_at: Optional[datetime] = None

    def as_dict(self) -> dict:
        """Public view of the user; the credential hash is left out."""
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "created_at": self.created_at,
        }


@dataclass
class NewFinancialProfile:
    user_id: int
    monthly_income: Optional[float] = None
    housing_expense: Optional[float] = None
    transport_expense: Optional[float] = None
    food_expense: Optional[float] = None
    other_expenses: Optional[float] = None
    savings_goal: Optional[float] = None
    retirement_goal: Optional[float] = None
    risk_tolerance: Optional[str] = None


@dataclass
class FinancialProfile:
    """A user's finances; amounts are kept to cents."""

    id: int
    user_id: int
    monthly_income: Optional[float] = None
    housing_expense: Optional[float] = None
    transport_expense: Optional[float] = None
    food_expense: Optional[float] = None
    other_expenses: Optional[float] = None
    savings_goal: Optional[float] = None
    retirement_goal: Optional[float] = None
    risk_tolerance: Optional[str] = None
    updated_at: Optional[datetime] = None

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class NewChatMessage:
    user_id: int
    message: str
    is_user_message: bool


@dataclass(frozen=True)
class ChatMessage:
    id: int
    user_id: int
    message: str
    is_user_message: bool
    timestamp: Optional[datetime] = None

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class NewFinancialGoal:
    user_id: int
    title: str
    target_amount: float
    current_amount: float
    category: str
    deadline: Optional[datetime] = None


@dataclass
class FinancialGoal:
    """A savings target; amounts are kept to cents."""

    id: int
    user_id: int
    title: str
    target_amount: float
    current_amount: float
    category: str
    deadline: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def as_dict(self) -> dict:
        return asdict(self)


PROFILE_UPDATABLE_FIELDS = frozenset(f.name for f in fields(NewFinancialProfile))
GOAL_UPDATABLE_FIELDS = frozenset(f.name for f in fields(NewFinancialGoal))

PROFILE_AMOUNT_FIELDS = frozenset(
    {
        "monthly_income",
        "housing_expense",
        "transport_expense",
        "food_expense",
        "other_expenses",
        "savings_goal",
        "retirement_goal",
    }
)
GOAL_AMOUNT_FIELDS = frozenset({"target_amount", "current_amount"})


def quantize_amounts(values: Mapping[str, Any], amount_fields: frozenset[str]) -> dict:
    """Copy of ``values`` with every money field rounded to cents."""
    return {
        key: quantize_amount(value) if key in amount_fields else value
        for key, value in values.items()
    }


def check_partial(partial: Mapping[str, Any], allowed: frozenset[str]) -> dict:
    """
    Validate a partial update against the updatable fields of an entity.

    Raises:
        ValueError: If the mapping names a field that is unknown or not
            updatable (ids and timestamps are assigned by the store).
    """
    unknown = sorted(set(partial) - allowed)
    if unknown:
        raise ValueError(f"Cannot update field(s): {', '.join(unknown)}")
    return dict(partial)


def timestamp_sort_key(value: Optional[datetime]) -> tuple[int, float]:
    """
    Ordering key that places a missing timestamp before every real one.

    Naive datetimes (SQLite drops the zone) are read as UTC. Real timestamps
    keep their true chronological order; a missing one is never replaced
    by a default value.
    """
    if value is None:
        return (0, 0.0)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (1, value.timestamp())
