# -*- coding: utf-8 -*-
from datetime import timedelta

from dealhub.dedup.engine import check_for_duplicates, resolve_action
from dealhub.schemas import DedupAction, DuplicateCheck


async def test_exact_url_match_wins_over_title(db, make_deal, make_candidate):
    existing = await make_deal(title="Completely different listing title", price=25000)
    candidate = make_candidate(title="Prestige Iris Mixer Grinder", product_url=existing.url)

    check = await check_for_duplicates(db, candidate)

    assert check.is_duplicate
    assert check.similarity_score == 100
    assert check.matched_deal_id == existing.id
    assert check.matched_deal_price == 25000
    assert check.reason == "Same product URL as existing deal"


async def test_empty_catalog_is_unique(db, make_candidate):
    check = await check_for_duplicates(db, make_candidate())

    assert not check.is_duplicate
    assert check.similarity_score == 0
    assert check.reason == "No recent deals from this merchant"


async def test_other_merchants_are_never_compared(db, make_deal, make_candidate):
    await make_deal(merchant="Flipkart", url="https://www.flipkart.com/sony/p/itm1")
    check = await check_for_duplicates(db, make_candidate(merchant="Amazon India"))

    assert not check.is_duplicate
    assert check.reason == "No recent deals from this merchant"


async def test_merchant_match_ignores_case(db, make_deal, make_candidate):
    existing = await make_deal(merchant="Amazon India")
    check = await check_for_duplicates(db, make_candidate(merchant="amazon india"))

    assert check.is_duplicate
    assert check.similarity_score == 100
    assert check.matched_deal_id == existing.id


async def test_near_identical_title_is_duplicate(db, make_deal, make_candidate):
    existing = await make_deal(title="Sony WH-1000XM5 Wireless Noise Cancelling Headphones - Black")
    check = await check_for_duplicates(db, make_candidate(
        title="Sony WH-1000XM5 Wireless Noise Cancelling Headphones (Black) Deal of the Day",
    ))

    assert check.is_duplicate
    assert check.matched_deal_id == existing.id
    assert check.reason.startswith('Similar to: "Sony WH-1000XM5')
    assert check.reason.endswith("(100% match)")


async def test_model_variants_are_distinct(db, make_deal, make_candidate):
    await make_deal(title="Sony WH-1000XM4 Wireless Headphones (Silver)")
    check = await check_for_duplicates(db, make_candidate(
        title="Sony WH-1000XM5 Wireless Headphones (Black)",
    ))

    assert not check.is_duplicate
    assert 0 < check.similarity_score < 75
    assert check.reason == f"Unique deal (highest similarity: {check.similarity_score}%)"


async def test_threshold_is_configurable(db, make_deal, make_candidate):
    await make_deal(title="Sony WH-1000XM4 Wireless Headphones (Silver)")
    candidate = make_candidate(title="Sony WH-1000XM5 Wireless Headphones (Black)")

    check = await check_for_duplicates(db, candidate, threshold=50)
    assert check.is_duplicate


async def test_old_deals_fall_out_of_the_pool(db, make_deal, make_candidate):
    await make_deal(age=timedelta(days=10))
    check = await check_for_duplicates(db, make_candidate())

    assert not check.is_duplicate
    assert check.reason == "No recent deals from this merchant"


async def test_best_match_is_reported(db, make_deal, make_candidate):
    await make_deal(title="Sony WH-1000XM4 Wireless Headphones (Silver)")
    best = await make_deal(title="Sony WH-1000XM5 Wireless Noise Cancelling Headphones")
    await make_deal(title="Apple iPhone 15 (Blue, 128 GB)")

    check = await check_for_duplicates(db, make_candidate())

    assert check.matched_deal_id == best.id
    assert check.similarity_score == 100


# ── Price policy ──────────────────────────────────────────────────────────────


def _dup(price):
    return DuplicateCheck(
        is_duplicate=True, similarity_score=90, matched_deal_id="d1", matched_deal_price=price,
    )


def test_unique_candidate_is_created(make_candidate):
    check = DuplicateCheck(is_duplicate=False)
    assert resolve_action(check, make_candidate(price=25000)) is DedupAction.CREATE


def test_cheaper_duplicate_replaces(make_candidate):
    assert resolve_action(_dup(25000), make_candidate(price=22000)) is DedupAction.REPLACE


def test_same_or_higher_price_is_rejected(make_candidate):
    assert resolve_action(_dup(25000), make_candidate(price=25000)) is DedupAction.REJECT
    assert resolve_action(_dup(25000), make_candidate(price=26000)) is DedupAction.REJECT
