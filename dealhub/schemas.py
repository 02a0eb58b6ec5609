# -*- coding: utf-8 -*-
"""
Central Pydantic schemas for the ingestion pipeline.
Scrapers, the dedup engine, the scorer and the job queue all import from here.

Pydantic v2 models, no class Config.
"""
from __future__ import annotations
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════


class VerificationStatus(str, Enum):
    PENDING  = "pending"
    VERIFIED = "verified"
    FAILED   = "failed"
    FLAGGED  = "flagged"


class PriceSource(str, Enum):
    MANUAL  = "manual"
    SCRAPER = "scraper"
    API     = "api"
    INITIAL = "initial"


class DedupAction(str, Enum):
    CREATE  = "create"
    REPLACE = "replace"
    REJECT  = "reject"


class JobType(str, Enum):
    SCRAPE_MERCHANT      = "scrape-merchant"
    SCRAPE_ALL_MERCHANTS = "scrape-all-merchants"
    SCRAPE_PRODUCT_URL   = "scrape-product-url"
    TRACK_DEAL_PRICE     = "track-deal-price"
    TRACK_ALL_PRICES     = "track-all-prices"
    EXPIRE_DEALS         = "expire-deals"
    VERIFY_DEAL          = "verify-deal"
    VERIFY_ALL_DEALS     = "verify-all-deals"


class JobState(str, Enum):
    WAITING   = "waiting"
    ACTIVE    = "active"
    DELAYED   = "delayed"
    COMPLETED = "completed"
    FAILED    = "failed"


# ═══════════════════════════════════════════════════════════════════════════════
# SCRAPER OUTPUT
# ═══════════════════════════════════════════════════════════════════════════════


class CandidateDeal(BaseModel):
    """A product/price observation produced by a scraper, not yet persisted."""

    title:               str           = Field(..., min_length=1)
    price:               int           = Field(..., gt=0)
    original_price:      Optional[int] = Field(None, gt=0)
    discount_percentage: Optional[int] = Field(None, ge=0, le=100)
    product_url:         Optional[str] = None
    image_url:           Optional[str] = None
    merchant:            str
    description:         Optional[str] = None
    external_product_id: Optional[str] = None

    @field_validator("title", "merchant")
    @classmethod
    def _squash_whitespace(cls, v: str) -> str:
        return " ".join(v.split())


# ═══════════════════════════════════════════════════════════════════════════════
# DEDUPLICATION
# ═══════════════════════════════════════════════════════════════════════════════


class DuplicateCheck(BaseModel):
    is_duplicate:       bool
    similarity_score:   int           = Field(0, ge=0, le=100)
    matched_deal_id:    Optional[str] = None
    matched_deal_price: Optional[int] = None
    reason:             str           = ""


# ═══════════════════════════════════════════════════════════════════════════════
# QUALITY SCORE
# ═══════════════════════════════════════════════════════════════════════════════


class ScoreBreakdown(BaseModel):
    value_prop:   int = Field(0, ge=0, le=100)
    authenticity: int = Field(0, ge=0, le=100)
    urgency:      int = Field(0, ge=0, le=100)
    social_proof: int = Field(0, ge=0, le=100)


class ScoreResult(BaseModel):
    total_score: int            = Field(..., ge=0, le=100)
    breakdown:   ScoreBreakdown = Field(default_factory=ScoreBreakdown)
    badges:      List[str]      = Field(default_factory=list, max_length=5)
    reasoning:   str            = ""


class RankedDeal(BaseModel):
    deal_id:             str
    title:               str
    merchant:            str
    price:               int
    discount_percentage: Optional[int] = None
    score:               ScoreResult


# ═══════════════════════════════════════════════════════════════════════════════
# JOBS
# ═══════════════════════════════════════════════════════════════════════════════


class BackoffPolicy(BaseModel):
    type:  str   = "exponential"     # exponential | fixed
    delay: float = Field(2.0, ge=0)  # seconds

    def delay_for(self, attempt: int) -> float:
        """Delay before the retry that follows failed attempt number *attempt*."""
        if self.type == "fixed":
            return self.delay
        return self.delay * (2 ** max(attempt - 1, 0))


class ScrapeJob(BaseModel):
    id:            str              = Field(default_factory=lambda: uuid4().hex)
    type:          JobType
    payload:       Dict[str, Any]   = Field(default_factory=dict)
    attempts:      int              = 0
    max_attempts:  int              = Field(3, ge=1)
    backoff:       BackoffPolicy    = Field(default_factory=BackoffPolicy)
    state:         JobState         = JobState.WAITING
    recurring_key: Optional[str]    = None
    result:        Optional[Any]    = None
    error:         Optional[str]    = None
    created_at:    datetime         = Field(default_factory=utcnow)
    finished_at:   Optional[datetime] = None


class IngestionResult(BaseModel):
    merchant:       str
    created:        int           = 0
    updated:        int           = 0
    skipped:        int           = 0
    errors:         int           = 0
    scraped:        int           = 0
    duration_ms:    int           = 0
    skipped_reason: Optional[str] = None


class FanOutResult(BaseModel):
    total_merchants: int                  = 0
    queued_jobs:     int                  = 0
    errors:          int                  = 0
    results:         List[Dict[str, Any]] = Field(default_factory=list)


class ProductUrlResult(BaseModel):
    action:           DedupAction
    deal_id:          Optional[str] = None
    merchant:         str
    similarity_score: int           = 0
    reason:           str           = ""
    deal:             CandidateDeal


class PriceTrackResult(BaseModel):
    deal_id:   str
    old_price: int
    new_price: Optional[int] = None
    changed:   bool          = False
    skipped_reason: Optional[str] = None


class VerificationResult(BaseModel):
    deal_id:        str
    status:         Optional[VerificationStatus] = None
    url_accessible: Optional[bool] = None
    scraped_price:  Optional[int]  = None
    price_match:    Optional[bool] = None
    flagged:        bool           = False
    expired:        bool           = False
    flag_reason:    Optional[str]  = None
    skipped_reason: Optional[str]  = None
