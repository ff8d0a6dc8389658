"""
Pydantic schemas for the FinanceGuru API. Field names are camelCase on the wire.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from backend.config import AIModel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateUserRequest(ApiModel):
    username: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=100)
    password: str = Field(..., min_length=1, max_length=72)

    @field_validator("password")
    @classmethod
    def _fits_bcrypt(cls, value):
        # bcrypt only accepts 72 bytes of input.
        if len(value.encode("utf-8")) > 72:
            raise ValueError("must be at most 72 bytes when UTF-8 encoded")
        return value


class UserResponse(ApiModel):
    id: int
    username: str
    email: str
    created_at: Optional[datetime] = None


class FinancialProfilePayload(ApiModel):
    """Body for creating a profile, or a partial update when sent with PATCH."""

    monthly_income: Optional[float] = Field(default=None, ge=0)
    housing_expense: Optional[float] = Field(default=None, ge=0)
    transport_expense: Optional[float] = Field(default=None, ge=0)
    food_expense: Optional[float] = Field(default=None, ge=0)
    other_expenses: Optional[float] = Field(default=None, ge=0)
    savings_goal: Optional[float] = Field(default=None, ge=0)
    retirement_goal: Optional[float] = Field(default=None, ge=0)
    risk_tolerance: Optional[str] = Field(default=None, max_length=50)


class FinancialProfileResponse(ApiModel):
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


class ChatRequest(ApiModel):
    message: str = Field(..., min_length=1, max_length=4000)
    model: Optional[AIModel] = None


class ChatMessageResponse(ApiModel):
    id: int
    user_id: int
    message: str
    is_user_message: bool
    timestamp: Optional[datetime] = None


class ChatResponse(ApiModel):
    user_message: ChatMessageResponse
    assistant_message: ChatMessageResponse


class CreateGoalRequest(ApiModel):
    title: str = Field(..., min_length=1, max_length=100)
    target_amount: float = Field(..., ge=0)
    current_amount: float = Field(default=0, ge=0)
    deadline: Optional[datetime] = None
    category: str = Field(..., min_length=1, max_length=50)


class UpdateGoalRequest(ApiModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    target_amount: Optional[float] = Field(default=None, ge=0)
    current_amount: Optional[float] = Field(default=None, ge=0)
    deadline: Optional[datetime] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=50)

    @field_validator("title", "target_amount", "current_amount", "category")
    @classmethod
    def _not_null(cls, value):
        # Only deadline may be cleared; the other columns are NOT NULL.
        if value is None:
            raise ValueError("may be omitted but not null")
        return value


class FinancialGoalResponse(ApiModel):
    id: int
    user_id: int
    title: str
    target_amount: float
    current_amount: float
    deadline: Optional[datetime] = None
    category: str
    created_at: Optional[datetime] = None


class HealthResponse(BaseModel):
    status: Literal["ok"]
    storage: Literal["memory", "relational"]
