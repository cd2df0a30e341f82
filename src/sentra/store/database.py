"""Database models and connection for the Sentra document store."""

from datetime import datetime
from pathlib import Path
from typing import Any

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ..config import settings

DATABASE_URL = settings.DATABASE_URL


def make_engine(url: str = DATABASE_URL, **kwargs: Any) -> AsyncEngine:
    """Create an async engine; pooled connections are pinged outside SQLite."""
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=False, **kwargs)
    return create_async_engine(url, echo=False, pool_pre_ping=True, **kwargs)


# Create async engine
engine = make_engine()

# Session factory
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class Document(Base):
    """One JSON document addressed by its slash-separated path."""

    __tablename__ = "documents"

    path: Mapped[str] = mapped_column(String(512), primary_key=True)
    collection: Mapped[str] = mapped_column(String(512), index=True, nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


async def init_db(bind: AsyncEngine = engine) -> None:
    """Initialize database tables."""
    if bind.url.get_backend_name() == "sqlite" and bind.url.database:
        Path(bind.url.database).parent.mkdir(parents=True, exist_ok=True)
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
