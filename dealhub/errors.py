# -*- coding: utf-8 -*-
"""
Exception taxonomy for the ingestion pipeline.

Anything deriving from NonRetryableError is a configuration or
precondition failure: the job queue marks the job failed on the first
attempt instead of retrying it.
"""
from __future__ import annotations

from typing import Optional


class DealHubError(Exception):
    """Base class for every error raised by dealhub."""


class NavigationError(DealHubError):
    """Page navigation failed on every attempt."""

    def __init__(self, url: str, attempts: int, cause: Optional[BaseException] = None):
        self.url      = url
        self.attempts = attempts
        self.cause    = cause
        super().__init__(
            f"Navigation to {url} failed after {attempts} attempt(s): {cause}"
        )


class NonRetryableError(DealHubError):
    pass


class PageGone(NavigationError, NonRetryableError):
    """The merchant answered 404 or 410: the page no longer exists."""

    def __init__(self, url: str, status: int):
        super().__init__(url, 1)
        self.status = status
        self.args   = (f"{url} is gone (HTTP {status})",)


class MerchantNotFound(NonRetryableError):

    def __init__(self, merchant: str):
        self.merchant = merchant
        super().__init__(f"Merchant {merchant} not found in database")


class ScraperNotImplemented(NonRetryableError):

    def __init__(self, merchant: str):
        self.merchant = merchant
        super().__init__(f"Scraper not implemented for {merchant}")


class UnsupportedMerchantURL(NonRetryableError):

    def __init__(self, url: str):
        self.url = url
        super().__init__(f"Unsupported merchant URL: {url}")


class ProductNotFound(NonRetryableError):

    def __init__(self, url: str):
        self.url = url
        super().__init__(f"No product data found at {url}")


class DealNotFound(NonRetryableError):

    def __init__(self, deal_id: str):
        self.deal_id = deal_id
        super().__init__(f"Deal {deal_id} not found")
