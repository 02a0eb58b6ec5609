# -*- coding: utf-8 -*-
"""
SQLAlchemy ORM models for the deal store.

Uses async SQLAlchemy engine (asyncpg for PostgreSQL, aiosqlite fallback).
Tables: users, merchants, deals, price_history.
"""
from __future__ import annotations

import os
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Integer,
    String, Text, Index,
)
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

from dealhub.config import settings
from dealhub.schemas import PriceSource, VerificationStatus, utcnow
from dealhub.utils.logger import get_logger

logger = get_logger(__name__)

Base = declarative_base()


def _uuid() -> str:
    return str(uuid4())


# ═══════════════════════════════════════════════════════════════════════════════
# TABLE: users
# ═══════════════════════════════════════════════════════════════════════════════


class User(Base):
    __tablename__ = "users"

    id         = Column(String(36), primary_key=True, default=_uuid)
    username   = Column(String(50), nullable=False, unique=True)
    email      = Column(String(255), nullable=False, unique=True)
    reputation = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)


# ═══════════════════════════════════════════════════════════════════════════════
# TABLE: merchants
# ═══════════════════════════════════════════════════════════════════════════════


class Merchant(Base):
    __tablename__ = "merchants"

    id                      = Column(String(36), primary_key=True, default=_uuid)
    name                    = Column(String(100), nullable=False, unique=True)
    slug                    = Column(String(100), nullable=False, unique=True, index=True)
    base_url                = Column(Text, nullable=True)
    is_active               = Column(Boolean, nullable=False, default=True)
    scraping_enabled        = Column(Boolean, nullable=False, default=True)
    scraping_interval_hours = Column(Integer, nullable=False, default=6)
    last_sync_at            = Column(DateTime, nullable=True)
    deals_scraped_count     = Column(Integer, nullable=False, default=0)
    created_at              = Column(DateTime, nullable=False, default=utcnow)
    updated_at              = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


# ═══════════════════════════════════════════════════════════════════════════════
# TABLE: deals
# ═══════════════════════════════════════════════════════════════════════════════


class Deal(Base):
    __tablename__ = "deals"

    id                  = Column(String(36), primary_key=True, default=_uuid)
    title               = Column(String(255), nullable=False)
    description         = Column(Text, nullable=True)
    price               = Column(Integer, nullable=False)
    original_price      = Column(Integer, nullable=True)
    discount_percentage = Column(Integer, nullable=True)
    merchant            = Column(String(100), nullable=False, index=True)
    url                 = Column(Text, nullable=True, unique=True)
    image_url           = Column(Text, nullable=True)
    external_product_id = Column(String(100), nullable=True)
    expires_at          = Column(DateTime, nullable=True)
    is_expired          = Column(Boolean, nullable=False, default=False)

    # Verification
    verification_status  = Column(String(20), nullable=False, default=VerificationStatus.PENDING.value)
    verified             = Column(Boolean, nullable=False, default=False)
    verified_at          = Column(DateTime, nullable=True)
    last_verified_at     = Column(DateTime, nullable=True)
    verification_attempts = Column(Integer, nullable=False, default=0)
    url_accessible       = Column(Boolean, nullable=True)
    price_match          = Column(Boolean, nullable=True)
    auto_flagged         = Column(Boolean, nullable=False, default=False)
    flag_reason          = Column(Text, nullable=True)

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    # Counters, mutated by voting/comment collaborators
    upvotes       = Column(Integer, nullable=False, default=0)
    downvotes     = Column(Integer, nullable=False, default=0)
    comment_count = Column(Integer, nullable=False, default=0)
    view_count    = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    price_history = relationship(
        "PriceHistory",
        back_populates="deal",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# TABLE: price_history
# ═══════════════════════════════════════════════════════════════════════════════


class PriceHistory(Base):
    __tablename__ = "price_history"

    id             = Column(String(36), primary_key=True, default=_uuid)
    deal_id        = Column(
        String(36),
        ForeignKey("deals.id", ondelete="CASCADE"),
        nullable=False,
    )
    price          = Column(Integer, nullable=False)
    original_price = Column(Integer, nullable=True)
    merchant       = Column(String(100), nullable=False)
    scraped_at     = Column(DateTime, nullable=False, default=utcnow)
    source         = Column(String(20), nullable=False, default=PriceSource.SCRAPER.value)

    deal = relationship("Deal", back_populates="price_history")

    __table_args__ = (
        Index("price_history_deal_scraped_idx", "deal_id", "scraped_at"),
    )


# ═══════════════════════════════════════════════════════════════════════════════
# ENGINE & SESSION
# ═══════════════════════════════════════════════════════════════════════════════


def build_engine(url: str = "") -> AsyncEngine:
    """Create the async engine, rewriting postgres URLs for asyncpg.

    Falls back to a local SQLite file when no URL is configured.
    """
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+asyncpg://", 1)

    if not url:
        data_dir = os.path.join(os.path.dirname(__file__), "..", "..", "data")
        os.makedirs(data_dir, exist_ok=True)
        sqlite_path = os.path.abspath(os.path.join(data_dir, "dealhub.db"))
        url = f"sqlite+aiosqlite:///{sqlite_path}"
        logger.info("Deal store using SQLite fallback: %s", sqlite_path)

    return create_async_engine(url, echo=False)


def build_session_factory(bind: AsyncEngine) -> sessionmaker:
    return sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings.database_url or "")

async_session = build_session_factory(engine)


async def init_db(bind: Optional[AsyncEngine] = None) -> None:
    """Create tables if they don't exist. Safe to call on every startup."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Deal store tables created / verified")
