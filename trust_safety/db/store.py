from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from trust_safety.config import get_settings
from trust_safety.errors import StoreUnavailable

logger = logging.getLogger(__name__)


@asynccontextmanager
async def store_call(operation: str) -> AsyncIterator[None]:
    """Bound a store round-trip by the configured timeout.

    Timeouts and driver errors surface as ``StoreUnavailable`` so callers can
    apply their own failure policy without knowing about SQLAlchemy.
    """
    timeout = get_settings().store_timeout_seconds
    try:
        async with asyncio.timeout(timeout):
            yield
    except TimeoutError as exc:
        raise StoreUnavailable(f"{operation} timed out after {timeout:.1f}s") from exc
    except SQLAlchemyError as exc:
        raise StoreUnavailable(f"{operation} failed") from exc


async def dialect_name(session: AsyncSession) -> str | None:
    bind = session.get_bind()
    if inspect.isawaitable(bind):
        bind = await bind
    return getattr(getattr(bind, "dialect", None), "name", None)


def ensure_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything we store is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


async def safe_rollback(session: AsyncSession) -> None:
    try:
        await session.rollback()
    except SQLAlchemyError:
        logger.warning("Rollback after store failure also failed", exc_info=True)
