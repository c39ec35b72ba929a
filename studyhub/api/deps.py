"""
FastAPI dependencies for database sessions and the caller's identity.

Authentication happens upstream: the gateway forwards the learner id in the
X-User-ID header.
"""

import uuid
from typing import Annotated, AsyncGenerator, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studyhub.database import async_session_maker

USER_ID_HEADER = "X-User-ID"


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for services that manage their own transactions."""
    return async_session_maker


SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]


async def get_db(factory: SessionFactory) -> AsyncGenerator[AsyncSession, None]:
    """Dependency that yields database sessions."""
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


DbSession = Annotated[AsyncSession, Depends(get_db)]


async def get_current_user_id(
    x_user_id: Annotated[Optional[str], Header(alias=USER_ID_HEADER)] = None,
) -> uuid.UUID:
    """Learner id forwarded by the gateway, or 401."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {USER_ID_HEADER} header",
        )
    try:
        return uuid.UUID(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid {USER_ID_HEADER} header",
        )


CurrentUserId = Annotated[uuid.UUID, Depends(get_current_user_id)]
