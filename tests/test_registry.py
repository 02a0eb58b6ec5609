# -*- coding: utf-8 -*-
from dealhub.merchants.registry import MerchantRegistry, merchant_registry


def test_packaged_merchants_load():
    slugs = sorted(c.slug for c in merchant_registry.all())
    assert slugs == ["amazon", "croma", "flipkart"]

    amazon = merchant_registry.get("amazon")
    assert amazon.name == "Amazon India"
    assert amazon.requires_product_id
    assert amazon.listing_paths == ["/deals", "/gp/goldbox"]
    assert amazon.cron == "0 3,9,15,21 * * *"
    assert amazon.listing.title.primary and amazon.listing.title.fallback
    assert amazon.product.title.primary == "#productTitle"


def test_merchant_lookup_by_url_host():
    assert merchant_registry.for_url("https://www.amazon.in/dp/B09XS7JWHH").slug == "amazon"
    assert merchant_registry.for_url("https://amazon.in/gp/product/B09XS7JWHH").slug == "amazon"
    assert merchant_registry.for_url("https://dl.flipkart.com/s/abc").slug == "flipkart"
    assert merchant_registry.for_url("https://www.croma.com/x/p/1").slug == "croma"
    assert merchant_registry.for_url("https://www.notamazon.in/dp/B09XS7JWHH") is None
    assert merchant_registry.for_url("https://www.amazon.com/dp/B09XS7JWHH") is None
    assert merchant_registry.for_url("not a url") is None


def test_custom_configs_dir(tmp_path):
    (tmp_path / "tatacliq.yaml").write_text(
        "slug: tatacliq\n"
        "name: Tata CLiQ\n"
        "enabled: false\n"
        "base_url: https://www.tatacliq.com\n"
        "listing_paths: [/deals]\n"
        "listing_selectors:\n"
        "  card: .ProductModule\n"
        "  title: .ProductDescription__name\n",
        encoding="utf-8",
    )
    (tmp_path / "broken.yaml").write_text("name: [unclosed\n", encoding="utf-8")
    (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")

    registry = MerchantRegistry(str(tmp_path))

    assert [c.slug for c in registry.all()] == ["tatacliq"]
    assert registry.all_enabled() == []
    cfg = registry.get("tatacliq")
    assert cfg.hosts == ["tatacliq.com"]
    assert cfg.listing.title.primary == ".ProductDescription__name"
    assert cfg.listing.title.fallback is None
    assert cfg.scraper_module is None


def test_missing_configs_dir(tmp_path):
    registry = MerchantRegistry(str(tmp_path / "nope"))
    assert registry.all() == []
