from __future__ import annotations
import os
from dataclasses import dataclass, field
from typing import Optional, List, Dict
from urllib.parse import urlparse
import yaml
from dealhub.utils.logger import get_logger

logger = get_logger(__name__)

_PACKAGED_DIR = os.path.join(os.path.dirname(__file__), "configs")


@dataclass
class SelectorConfig:
    primary:  Optional[str]
    fallback: Optional[str] = None


@dataclass
class ListingSelectors:
    card:           Optional[str]
    title:          SelectorConfig = field(default_factory=lambda: SelectorConfig(None))
    price:          SelectorConfig = field(default_factory=lambda: SelectorConfig(None))
    original_price: SelectorConfig = field(default_factory=lambda: SelectorConfig(None))
    discount:       SelectorConfig = field(default_factory=lambda: SelectorConfig(None))
    link:           SelectorConfig = field(default_factory=lambda: SelectorConfig(None))
    image:          SelectorConfig = field(default_factory=lambda: SelectorConfig(None))


@dataclass
class ProductSelectors:
    title:          SelectorConfig = field(default_factory=lambda: SelectorConfig(None))
    price:          SelectorConfig = field(default_factory=lambda: SelectorConfig(None))
    original_price: SelectorConfig = field(default_factory=lambda: SelectorConfig(None))
    discount:       SelectorConfig = field(default_factory=lambda: SelectorConfig(None))
    image:          SelectorConfig = field(default_factory=lambda: SelectorConfig(None))
    description:    SelectorConfig = field(default_factory=lambda: SelectorConfig(None))


@dataclass
class MerchantConfig:
    slug:              str
    name:              str
    enabled:           bool
    base_url:          str
    hosts:             List[str]
    listing_paths:     List[str]
    listing:           ListingSelectors
    product:           ProductSelectors
    cron:              Optional[str]   = None
    interval_hours:    int             = 6
    scraper_module:    Optional[str]   = None
    ready_selector:    Optional[str]   = None
    needs_scroll:      bool            = False
    requires_product_id: bool          = False

    def matches_host(self, host: str) -> bool:
        host = host.lower().split(":")[0]
        return any(host == h or host.endswith("." + h) for h in self.hosts)


def _sel(data: dict, key: str) -> SelectorConfig:
    v = data.get(key, {}) or {}
    if isinstance(v, str):
        return SelectorConfig(primary=v)
    return SelectorConfig(
        primary=v.get("primary"),
        fallback=v.get("fallback"),
    )


def _load(raw: dict) -> MerchantConfig:
    ls = raw.get("listing_selectors", {}) or {}
    ps = raw.get("product_selectors", {}) or {}
    listing = ListingSelectors(
        card=ls.get("card"),
        title=_sel(ls, "title"),
        price=_sel(ls, "price"),
        original_price=_sel(ls, "original_price"),
        discount=_sel(ls, "discount"),
        link=_sel(ls, "link"),
        image=_sel(ls, "image"),
    )
    product = ProductSelectors(
        title=_sel(ps, "title"),
        price=_sel(ps, "price"),
        original_price=_sel(ps, "original_price"),
        discount=_sel(ps, "discount"),
        image=_sel(ps, "image"),
        description=_sel(ps, "description"),
    )
    base_url = raw["base_url"]
    hosts = raw.get("hosts") or [urlparse(base_url).netloc.replace("www.", "")]
    return MerchantConfig(
        slug=raw["slug"],
        name=raw["name"],
        enabled=raw.get("enabled", True),
        base_url=base_url,
        hosts=[h.lower() for h in hosts],
        listing_paths=raw.get("listing_paths", []) or [],
        listing=listing,
        product=product,
        cron=raw.get("cron"),
        interval_hours=int(raw.get("interval_hours", 6)),
        scraper_module=raw.get("scraper_module"),
        ready_selector=raw.get("ready_selector"),
        needs_scroll=raw.get("needs_scroll", False),
        requires_product_id=raw.get("requires_product_id", False),
    )


class MerchantRegistry:
    def __init__(self, configs_dir: str):
        self._dir     = configs_dir or _PACKAGED_DIR
        self._configs: Dict[str, MerchantConfig] = {}
        self.reload()

    def reload(self):
        self._configs.clear()
        if not os.path.isdir(self._dir):
            logger.warning("Merchant configs dir not found: %s", self._dir)
            return
        for fname in sorted(os.listdir(self._dir)):
            if not fname.endswith(".yaml"):
                continue
            path = os.path.join(self._dir, fname)
            try:
                with open(path, encoding="utf-8") as f:
                    raw = yaml.safe_load(f)
                if raw and raw.get("slug"):
                    cfg = _load(raw)
                    self._configs[cfg.slug] = cfg
                    logger.debug("Loaded merchant: %s (%s)", cfg.slug, cfg.name)
            except (OSError, KeyError, TypeError, ValueError, yaml.YAMLError) as e:
                logger.error("Failed to load %s: %s", fname, e)
        logger.info("Registry: %d merchants loaded", len(self._configs))

    def all(self) -> List[MerchantConfig]:
        return list(self._configs.values())

    def all_enabled(self) -> List[MerchantConfig]:
        return [c for c in self._configs.values() if c.enabled]

    def get(self, slug: str) -> Optional[MerchantConfig]:
        return self._configs.get(slug)

    def for_url(self, url: str) -> Optional[MerchantConfig]:
        """Merchant whose host list covers the URL's host, if any."""
        host = urlparse(url).netloc
        if not host:
            return None
        for cfg in self._configs.values():
            if cfg.matches_host(host):
                return cfg
        return None


from dealhub.config import settings
merchant_registry = MerchantRegistry(settings.merchants_dir)
