"""
HTTP routes for the FinanceGuru API.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from starlette.concurrency import run_in_threadpool

from advisor.finance import generate_finance_response
from backend.config import Settings
from backend.db import DbClient, InMemoryDbClient
from backend.dependencies import get_app_settings, get_db_client
from backend.errors import ConflictError
from backend.records import (
    ChatMessage,
    NewChatMessage,
    NewFinancialGoal,
    NewFinancialProfile,
    NewUser,
    User,
)
from backend.schemas import (
    ChatMessageResponse,
    ChatRequest,
    ChatResponse,
    CreateGoalRequest,
    CreateUserRequest,
    FinancialGoalResponse,
    FinancialProfilePayload,
    FinancialProfileResponse,
    HealthResponse,
    UpdateGoalRequest,
    UserResponse,
)
from backend.security import hash_password

logger = logging.getLogger(__name__)

router = APIRouter()


async def _require_user(db: DbClient, user_id: int) -> User:
    user = await db.get_user(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def _history_turns(messages: list[ChatMessage]) -> list[str]:
    """
    Message texts for the model as alternating user/assistant turns.

    Only a user message directly followed by an assistant message is kept;
    unanswered questions and stray assistant messages are dropped.
    """
    turns: list[str] = []
    for question, answer in zip(messages, messages[1:]):
        if question.is_user_message and not answer.is_user_message:
            turns.extend((question.message, answer.message))
    return turns


@router.get("/health", response_model=HealthResponse)
async def health(db: DbClient = Depends(get_db_client)):
    storage = "memory" if isinstance(db, InMemoryDbClient) else "relational"
    return HealthResponse(status="ok", storage=storage)


@router.post("/users", response_model=UserResponse, status_code=201)
async def create_user(
    payload: CreateUserRequest, db: DbClient = Depends(get_db_client)
):
    # bcrypt is CPU-bound.
    password_hash = await run_in_threadpool(hash_password, payload.password)
    try:
        user = await db.create_user(
            NewUser(
                username=payload.username,
                email=payload.email,
                password=password_hash,
            )
        )
    except ConflictError as exc:
        raise HTTPException(status_code=409, detail=exc.message) from exc
    return UserResponse.model_validate(user.as_dict())


@router.get("/users/{user_id}", response_model=UserResponse)
async def get_user(user_id: int, db: DbClient = Depends(get_db_client)):
    user = await _require_user(db, user_id)
    return UserResponse.model_validate(user.as_dict())


@router.get("/users/{user_id}/profile", response_model=FinancialProfileResponse)
async def get_financial_profile(user_id: int, db: DbClient = Depends(get_db_client)):
    profile = await db.get_financial_profile(user_id)
    if not profile:
        raise HTTPException(status_code=404, detail="Financial profile not found")
    return FinancialProfileResponse.model_validate(profile.as_dict())


@router.post(
    "/users/{user_id}/profile",
    response_model=FinancialProfileResponse,
    status_code=201,
)
async def create_financial_profile(
    user_id: int,
    payload: FinancialProfilePayload,
    db: DbClient = Depends(get_db_client),
):
    await _require_user(db, user_id)
    profile = await db.create_financial_profile(
        NewFinancialProfile(user_id=user_id, **payload.model_dump())
    )
    return FinancialProfileResponse.model_validate(profile.as_dict())


@router.patch("/users/{user_id}/profile", response_model=FinancialProfileResponse)
async def update_financial_profile(
    user_id: int,
    payload: FinancialProfilePayload,
    db: DbClient = Depends(get_db_client),
):
    profile = await db.update_financial_profile(
        user_id, payload.model_dump(exclude_unset=True)
    )
    if not profile:
        raise HTTPException(status_code=404, detail="Financial profile not found")
    return FinancialProfileResponse.model_validate(profile.as_dict())


@router.get("/users/{user_id}/messages", response_model=list[ChatMessageResponse])
async def get_chat_messages(
    user_id: int,
    limit: Optional[int] = Query(default=None),
    db: DbClient = Depends(get_db_client),
):
    await _require_user(db, user_id)
    messages = await db.get_chat_messages(user_id, limit=limit)
    return [ChatMessageResponse.model_validate(m.as_dict()) for m in messages]


@router.post("/users/{user_id}/chat", response_model=ChatResponse)
async def chat(
    user_id: int,
    payload: ChatRequest,
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_app_settings),
):
    """
    Store the user's question, ask the advisor, and store its answer.
    """
    await _require_user(db, user_id)
    history: list[ChatMessage] = []
    if settings.chat_history_limit > 0:
        history = await db.get_chat_messages(
            user_id, limit=settings.chat_history_limit
        )
    question = await db.create_chat_message(
        NewChatMessage(user_id=user_id, message=payload.message, is_user_message=True)
    )
    model = payload.model or settings.default_ai_model
    logger.info("Generating advice for user %s with %s", user_id, model)
    reply = await run_in_threadpool(
        generate_finance_response,
        payload.message,
        _history_turns(history),
        model,
        settings,
    )
    answer = await db.create_chat_message(
        NewChatMessage(user_id=user_id, message=reply, is_user_message=False)
    )
    return ChatResponse(
        user_message=ChatMessageResponse.model_validate(question.as_dict()),
        assistant_message=ChatMessageResponse.model_validate(answer.as_dict()),
    )


@router.get("/users/{user_id}/goals", response_model=list[FinancialGoalResponse])
async def get_financial_goals(user_id: int, db: DbClient = Depends(get_db_client)):
    await _require_user(db, user_id)
    goals = await db.get_financial_goals(user_id)
    return [FinancialGoalResponse.model_validate(g.as_dict()) for g in goals]


@router.post(
    "/users/{user_id}/goals", response_model=FinancialGoalResponse, status_code=201
)
async def create_financial_goal(
    user_id: int,
    payload: CreateGoalRequest,
    db: DbClient = Depends(get_db_client),
):
    await _require_user(db, user_id)
    goal = await db.create_financial_goal(
        NewFinancialGoal(user_id=user_id, **payload.model_dump())
    )
    return FinancialGoalResponse.model_validate(goal.as_dict())


@router.get("/goals/{goal_id}", response_model=FinancialGoalResponse)
async def get_financial_goal(goal_id: int, db: DbClient = Depends(get_db_client)):
    goal = await db.get_financial_goal(goal_id)
    if not goal:
        raise HTTPException(status_code=404, detail="Financial goal not found")
    return FinancialGoalResponse.model_validate(goal.as_dict())


@router.patch("/goals/{goal_id}", response_model=FinancialGoalResponse)
async def update_financial_goal(
    goal_id: int,
    payload: UpdateGoalRequest,
    db: DbClient = Depends(get_db_client),
):
    goal = await db.update_financial_goal(
        goal_id, payload.model_dump(exclude_unset=True)
    )
    if not goal:
        raise HTTPException(status_code=404, detail="Financial goal not found")
    return FinancialGoalResponse.model_validate(goal.as_dict())


@router.delete("/goals/{goal_id}", status_code=204)
async def delete_financial_goal(goal_id: int, db: DbClient = Depends(get_db_client)):
    if not await db.delete_financial_goal(goal_id):
        raise HTTPException(status_code=404, detail="Financial goal not found")
    return Response(status_code=204)
