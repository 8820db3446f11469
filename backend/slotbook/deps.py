from functools import lru_cache
from typing import AsyncIterator

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import ProgrammingError
from sqlalchemy.ext.asyncio import AsyncSession

from .config import get_settings
from .database import async_session
from .domain.guard import CallerIdentity
from .engine import SchedulingEngine
from .infrastructure.collaborators import LoggingNotificationDispatcher, SqlAlchemyReceiptGenerator
from .infrastructure.repositories import SqlAlchemyTenantRepository
from .infrastructure.unit_of_work import SqlAlchemyUnitOfWork
from .models import User
from .utils.auth import TokenError, decode_access_token, extract_bearer_token


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


async def get_current_user_id(
    authorization: str | None = Header(default=None),
    session: AsyncSession = Depends(get_session),
) -> int:
    settings = get_settings()
    try:
        token = extract_bearer_token(authorization)
        user_id = decode_access_token(
            token,
            secret=settings.auth_secret,
            algorithms=[settings.auth_algorithm],
        )
    except TokenError as exc:
        raise _unauthorized(str(exc)) from exc

    try:
        exists = await session.scalar(select(User.id).where(User.id == user_id))
    except ProgrammingError as exc:
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="user store unavailable",
        ) from exc
    if exists is None:
        raise _unauthorized("user not found")
    return user_id


async def get_caller(
    user_id: int = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> CallerIdentity:
    tenant_ids = await SqlAlchemyTenantRepository(session).memberships(user_id)
    return CallerIdentity(user_id=user_id, tenant_ids=tenant_ids)


@lru_cache
def get_scheduling_engine() -> SchedulingEngine:
    return SchedulingEngine(
        lambda: SqlAlchemyUnitOfWork(async_session),
        settings=get_settings(),
        receipts=SqlAlchemyReceiptGenerator(async_session),
        notifier=LoggingNotificationDispatcher(),
    )
