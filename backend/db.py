"""
Database abstraction for Postgres and an in-memory test implementation.
"""

from __future__ import annotations

import itertools
import logging
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Dict,
    Iterable,
    Mapping,
    Optional,
    Protocol,
    TypeVar,
)

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    delete,
    func,
    select,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from backend.errors import ConflictError
from backend.records import (
    GOAL_AMOUNT_FIELDS,
    GOAL_UPDATABLE_FIELDS,
    PROFILE_AMOUNT_FIELDS,
    PROFILE_UPDATABLE_FIELDS,
    ChatMessage,
    FinancialGoal,
    FinancialProfile,
    NewChatMessage,
    NewFinancialGoal,
    NewFinancialProfile,
    NewUser,
    User,
    check_partial,
    quantize_amount,
    quantize_amounts,
    timestamp_sort_key,
    utcnow,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DbClient(Protocol):
    """
    Interface for database access.

    Lookups return ``None`` when nothing matches; they never raise for
    absence. Returned records are snapshots owned by the caller.
    """

    async def get_user(self, user_id: int) -> Optional[User]:
        ...

    async def get_user_by_username(self, username: str) -> Optional[User]:
        ...

    async def get_user_by_email(self, email: str) -> Optional[User]:
        ...

    async def create_user(self, data: NewUser) -> User:
        """Raises ConflictError if the username or email is already taken."""
        ...

    async def get_financial_profile(self, user_id: int) -> Optional[FinancialProfile]:
        ...

    async def create_financial_profile(
        self, data: NewFinancialProfile
    ) -> FinancialProfile:
        ...

    async def update_financial_profile(
        self, user_id: int, partial: Mapping[str, Any]
    ) -> Optional[FinancialProfile]:
        ...

    async def get_chat_messages(
        self, user_id: int, limit: Optional[int] = None
    ) -> list[ChatMessage]:
        ...

    async def create_chat_message(self, data: NewChatMessage) -> ChatMessage:
        ...

    async def get_financial_goals(self, user_id: int) -> list[FinancialGoal]:
        ...

    async def get_financial_goal(self, goal_id: int) -> Optional[FinancialGoal]:
        ...

    async def create_financial_goal(self, data: NewFinancialGoal) -> FinancialGoal:
        ...

    async def update_financial_goal(
        self, goal_id: int, partial: Mapping[str, Any]
    ) -> Optional[FinancialGoal]:
        ...

    async def delete_financial_goal(self, goal_id: int) -> bool:
        ...


def sort_by_timestamp(records: Iterable[T], key: Callable[[T], Any]) -> list[T]:
    """
    Stable ascending sort on a nullable timestamp; missing timestamps first.

    Input must already be in insertion order so that ties keep it.
    """
    return sorted(records, key=lambda record: timestamp_sort_key(key(record)))


def latest(items: list[T], limit: Optional[int]) -> list[T]:
    """Return the last ``limit`` items, or all of them for a non-positive limit."""
    if limit and limit > 0:
        return items[-limit:]
    return items


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.users: Dict[int, User] = {}
        self.financial_profiles: Dict[int, FinancialProfile] = {}
        self.chat_messages: Dict[int, ChatMessage] = {}
        self.financial_goals: Dict[int, FinancialGoal] = {}
        self._reset_counters()

    def _reset_counters(self) -> None:
        self._user_ids = itertools.count(1)
        self._profile_ids = itertools.count(1)
        self._message_ids = itertools.count(1)
        self._goal_ids = itertools.count(1)

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.users.clear()
        self.financial_profiles.clear()
        self.chat_messages.clear()
        self.financial_goals.clear()
        self._reset_counters()

    async def get_user(self, user_id: int) -> Optional[User]:
        user = self.users.get(user_id)
        return replace(user) if user else None

    async def get_user_by_username(self, username: str) -> Optional[User]:
        for user in self.users.values():
            if user.username == username:
                return replace(user)
        return None

    async def get_user_by_email(self, email: str) -> Optional[User]:
        for user in self.users.values():
            if user.email == email:
                return replace(user)
        return None

    async def create_user(self, data: NewUser) -> User:
        for user in self.users.values():
            if user.username == data.username:
                raise ConflictError("Username already exists", field="username")
            if user.email == data.email:
                raise ConflictError("Email already exists", field="email")
        user = User(
            id=next(self._user_ids),
            username=data.username,
            email=data.email,
            password=data.password,
            created_at=utcnow(),
        )
        self.users[user.id] = user
        return replace(user)

    def _first_profile(self, user_id: int) -> Optional[FinancialProfile]:
        for profile in self.financial_profiles.values():
            if profile.user_id == user_id:
                return profile
        return None

    async def get_financial_profile(self, user_id: int) -> Optional[FinancialProfile]:
        profile = self._first_profile(user_id)
        return replace(profile) if profile else None

    async def create_financial_profile(
        self, data: NewFinancialProfile
    ) -> FinancialProfile:
        profile = FinancialProfile(
            id=next(self._profile_ids),
            updated_at=utcnow(),
            **quantize_amounts(vars(data), PROFILE_AMOUNT_FIELDS),
        )
        self.financial_profiles[profile.id] = profile
        return replace(profile)

    async def update_financial_profile(
        self, user_id: int, partial: Mapping[str, Any]
    ) -> Optional[FinancialProfile]:
        changes = quantize_amounts(
            check_partial(partial, PROFILE_UPDATABLE_FIELDS), PROFILE_AMOUNT_FIELDS
        )
        existing = self._first_profile(user_id)
        if not existing:
            return None
        updated = replace(existing, **changes, updated_at=utcnow())
        self.financial_profiles[existing.id] = updated
        return replace(updated)

    async def get_chat_messages(
        self, user_id: int, limit: Optional[int] = None
    ) -> list[ChatMessage]:
        messages = sort_by_timestamp(
            (m for m in self.chat_messages.values() if m.user_id == user_id),
            key=lambda m: m.timestamp,
        )
        return latest(messages, limit)

    async def create_chat_message(self, data: NewChatMessage) -> ChatMessage:
        message = ChatMessage(
            id=next(self._message_ids),
            user_id=data.user_id,
            message=data.message,
            is_user_message=data.is_user_message,
            timestamp=utcnow(),
        )
        self.chat_messages[message.id] = message
        return message

    async def get_financial_goals(self, user_id: int) -> list[FinancialGoal]:
        goals = sort_by_timestamp(
            (g for g in self.financial_goals.values() if g.user_id == user_id),
            key=lambda g: g.created_at,
        )
        return [replace(goal) for goal in goals]

    async def get_financial_goal(self, goal_id: int) -> Optional[FinancialGoal]:
        goal = self.financial_goals.get(goal_id)
        return replace(goal) if goal else None

    async def create_financial_goal(self, data: NewFinancialGoal) -> FinancialGoal:
        goal = FinancialGoal(
            id=next(self._goal_ids),
            created_at=utcnow(),
            **quantize_amounts(vars(data), GOAL_AMOUNT_FIELDS),
        )
        self.financial_goals[goal.id] = goal
        return replace(goal)

    async def update_financial_goal(
        self, goal_id: int, partial: Mapping[str, Any]
    ) -> Optional[FinancialGoal]:
        changes = quantize_amounts(
            check_partial(partial, GOAL_UPDATABLE_FIELDS), GOAL_AMOUNT_FIELDS
        )
        existing = self.financial_goals.get(goal_id)
        if not existing:
            return None
        updated = replace(existing, **changes)
        self.financial_goals[goal_id] = updated
        return replace(updated)

    async def delete_financial_goal(self, goal_id: int) -> bool:
        return self.financial_goals.pop(goal_id, None) is not None


def normalize_database_url(url: str) -> str:
    """Point plain Postgres/SQLite URLs at their asyncio drivers."""
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


def _amount(value: Any) -> Optional[float]:
    return quantize_amount(float(value)) if value is not None else None


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes; SQLite does not store the zone."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _conflict_field(exc: IntegrityError) -> Optional[str]:
    detail = str(exc.orig)
    for field in ("username", "email"):
        if field in detail:
            return field
    return None


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str, *, echo: bool = False):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        self.engine = create_async_engine(
            normalize_database_url(database_url),
            echo=echo,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = async_sessionmaker(
            bind=self.engine, class_=AsyncSession, expire_on_commit=False
        )

    async def create_tables(self) -> None:
        """Create missing tables; existing tables and rows are left alone."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def _session(self, action: str, **context: Any) -> AsyncIterator[AsyncSession]:
        try:
            async with self.Session() as session:
                yield session
        except SQLAlchemyError:
            logger.exception("Error %s %s", action, context)
            raise

    def _to_user(self, row: "UserRow") -> User:
        return User(
            id=row.id,
            username=row.username,
            email=row.email,
            password=row.password,
            created_at=_aware(row.created_at),
        )

    def _to_profile(self, row: "FinancialProfileRow") -> FinancialProfile:
        return FinancialProfile(
            id=row.id,
            user_id=row.user_id,
            monthly_income=_amount(row.monthly_income),
            housing_expense=_amount(row.housing_expense),
            transport_expense=_amount(row.transport_expense),
            food_expense=_amount(row.food_expense),
            other_expenses=_amount(row.other_expenses),
            savings_goal=_amount(row.savings_goal),
            retirement_goal=_amount(row.retirement_goal),
            risk_tolerance=row.risk_tolerance,
            updated_at=_aware(row.updated_at),
        )

    def _to_chat_message(self, row: "ChatMessageRow") -> ChatMessage:
        return ChatMessage(
            id=row.id,
            user_id=row.user_id,
            message=row.message,
            is_user_message=bool(row.is_user_message),
            timestamp=_aware(row.timestamp),
        )

    def _to_goal(self, row: "FinancialGoalRow") -> FinancialGoal:
        return FinancialGoal(
            id=row.id,
            user_id=row.user_id,
            title=row.title,
            target_amount=_amount(row.target_amount),
            current_amount=_amount(row.current_amount),
            category=row.category,
            deadline=_aware(row.deadline),
            created_at=_aware(row.created_at),
        )

    async def get_user(self, user_id: int) -> Optional[User]:
        async with self._session("fetching user by id", user_id=user_id) as session:
            row = await session.get(UserRow, user_id)
            return self._to_user(row) if row else None

    async def get_user_by_username(self, username: str) -> Optional[User]:
        async with self._session("fetching user by username", username=username) as session:
            row = await session.scalar(
                select(UserRow).where(UserRow.username == username).limit(1)
            )
            return self._to_user(row) if row else None

    async def get_user_by_email(self, email: str) -> Optional[User]:
        async with self._session("fetching user by email", email=email) as session:
            row = await session.scalar(
                select(UserRow).where(UserRow.email == email).limit(1)
            )
            return self._to_user(row) if row else None

    async def create_user(self, data: NewUser) -> User:
        async with self._session("creating user", username=data.username) as session:
            row = UserRow(
                username=data.username,
                email=data.email,
                password=data.password,
                created_at=utcnow(),
            )
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as exc:
                field = _conflict_field(exc)
                logger.warning(
                    "Rejected duplicate user %s (conflict on %s)",
                    data.username,
                    field or "unique constraint",
                )
                raise ConflictError(
                    f"{(field or 'user').capitalize()} already exists", field=field
                ) from exc
            await session.refresh(row)
            return self._to_user(row)

    def _first_profile_stmt(self, user_id: int):
        return (
            select(FinancialProfileRow)
            .where(FinancialProfileRow.user_id == user_id)
            .order_by(FinancialProfileRow.id.asc())
            .limit(1)
        )

    async def get_financial_profile(self, user_id: int) -> Optional[FinancialProfile]:
        async with self._session("fetching financial profile", user_id=user_id) as session:
            row = await session.scalar(self._first_profile_stmt(user_id))
            return self._to_profile(row) if row else None

    async def create_financial_profile(
        self, data: NewFinancialProfile
    ) -> FinancialProfile:
        async with self._session(
            "creating financial profile", user_id=data.user_id
        ) as session:
            row = FinancialProfileRow(
                **quantize_amounts(vars(data), PROFILE_AMOUNT_FIELDS),
                updated_at=utcnow(),
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return self._to_profile(row)

    async def update_financial_profile(
        self, user_id: int, partial: Mapping[str, Any]
    ) -> Optional[FinancialProfile]:
        changes = quantize_amounts(
            check_partial(partial, PROFILE_UPDATABLE_FIELDS), PROFILE_AMOUNT_FIELDS
        )
        async with self._session(
            "updating financial profile", user_id=user_id, fields=sorted(changes)
        ) as session:
            # Read and write share one transaction so a concurrent update
            # cannot slip in between them.
            row = await session.scalar(
                self._first_profile_stmt(user_id).with_for_update()
            )
            if not row:
                return None
            for key, value in changes.items():
                setattr(row, key, value)
            row.updated_at = utcnow()
            await session.commit()
            await session.refresh(row)
            return self._to_profile(row)

    async def get_chat_messages(
        self, user_id: int, limit: Optional[int] = None
    ) -> list[ChatMessage]:
        async with self._session("fetching chat messages", user_id=user_id) as session:
            rows = await session.scalars(
                select(ChatMessageRow)
                .where(ChatMessageRow.user_id == user_id)
                .order_by(ChatMessageRow.id.asc())
            )
            # Timestamp ordering happens here so rows without a timestamp
            # sort first instead of wherever the database puts NULLs.
            messages = sort_by_timestamp(
                (self._to_chat_message(row) for row in rows),
                key=lambda m: m.timestamp,
            )
            return latest(messages, limit)

    async def create_chat_message(self, data: NewChatMessage) -> ChatMessage:
        async with self._session("creating chat message", user_id=data.user_id) as session:
            row = ChatMessageRow(
                user_id=data.user_id,
                message=data.message,
                is_user_message=data.is_user_message,
                timestamp=utcnow(),
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return self._to_chat_message(row)

    async def get_financial_goals(self, user_id: int) -> list[FinancialGoal]:
        async with self._session("fetching financial goals", user_id=user_id) as session:
            rows = await session.scalars(
                select(FinancialGoalRow)
                .where(FinancialGoalRow.user_id == user_id)
                .order_by(FinancialGoalRow.id.asc())
            )
            return sort_by_timestamp(
                (self._to_goal(row) for row in rows), key=lambda g: g.created_at
            )

    async def get_financial_goal(self, goal_id: int) -> Optional[FinancialGoal]:
        async with self._session("fetching financial goal", goal_id=goal_id) as session:
            row = await session.get(FinancialGoalRow, goal_id)
            return self._to_goal(row) if row else None

    async def create_financial_goal(self, data: NewFinancialGoal) -> FinancialGoal:
        async with self._session("creating financial goal", user_id=data.user_id) as session:
            row = FinancialGoalRow(
                **quantize_amounts(vars(data), GOAL_AMOUNT_FIELDS),
                created_at=utcnow(),
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return self._to_goal(row)

    async def update_financial_goal(
        self, goal_id: int, partial: Mapping[str, Any]
    ) -> Optional[FinancialGoal]:
        changes = quantize_amounts(
            check_partial(partial, GOAL_UPDATABLE_FIELDS), GOAL_AMOUNT_FIELDS
        )
        async with self._session(
            "updating financial goal", goal_id=goal_id, fields=sorted(changes)
        ) as session:
            row = await session.scalar(
                select(FinancialGoalRow)
                .where(FinancialGoalRow.id == goal_id)
                .with_for_update()
            )
            if not row:
                return None
            for key, value in changes.items():
                setattr(row, key, value)
            await session.commit()
            await session.refresh(row)
            return self._to_goal(row)

    async def delete_financial_goal(self, goal_id: int) -> bool:
        async with self._session("deleting financial goal", goal_id=goal_id) as session:
            result = await session.execute(
                delete(FinancialGoalRow).where(FinancialGoalRow.id == goal_id)
            )
            await session.commit()
            return (result.rowcount or 0) > 0


Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(100), nullable=False, unique=True)
    email = Column(String(100), nullable=False, unique=True)
    password = Column("password_hash", String(100), nullable=False)
    created_at = Column(
        DateTime(timezone=True), nullable=True, server_default=func.now()
    )


class FinancialProfileRow(Base):
    __tablename__ = "financial_profiles"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True
    )
    monthly_income = Column(Numeric(12, 2, asdecimal=False), nullable=True)
    housing_expense = Column(Numeric(12, 2, asdecimal=False), nullable=True)
    transport_expense = Column(Numeric(12, 2, asdecimal=False), nullable=True)
    food_expense = Column(Numeric(12, 2, asdecimal=False), nullable=True)
    other_expenses = Column(Numeric(12, 2, asdecimal=False), nullable=True)
    savings_goal = Column(Numeric(12, 2, asdecimal=False), nullable=True)
    retirement_goal = Column(Numeric(12, 2, asdecimal=False), nullable=True)
    risk_tolerance = Column(String(50), nullable=True)
    updated_at = Column(
        DateTime(timezone=True), nullable=True, server_default=func.now()
    )


class ChatMessageRow(Base):
    __tablename__ = "chat_messages"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True
    )
    message = Column(Text, nullable=False)
    is_user_message = Column(Boolean, nullable=False)
    timestamp = Column(
        DateTime(timezone=True), nullable=True, server_default=func.now()
    )


class FinancialGoalRow(Base):
    __tablename__ = "financial_goals"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True
    )
    title = Column(String(100), nullable=False)
    target_amount = Column(Numeric(12, 2, asdecimal=False), nullable=False)
    current_amount = Column(Numeric(12, 2, asdecimal=False), nullable=False)
    deadline = Column(DateTime(timezone=True), nullable=True)
    category = Column(String(50), nullable=False)
    created_at = Column(
        DateTime(timezone=True), nullable=True, server_default=func.now()
    )
