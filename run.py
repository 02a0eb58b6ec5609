# run.py
"""
Operator entry point.

  python run.py                  start the worker (scheduler + job handlers)
  python run.py setup            create tables and seed merchants
  python run.py schedule         print the recurring jobs the worker registers
  python run.py scrape <slug>    scrape one merchant now
  python run.py url <url>        scrape one product URL now
  python run.py track [deal_id]  track one deal, or every live deal
  python run.py expire           expire stale deals
  python run.py verify [deal_id] verify one deal, or the least recently checked ones
  python run.py top [N]          print the top N deals by quality score
"""
import asyncio
import json
import sys

USAGE = __doc__


def _set_loop_policy():
    # Playwright needs subprocess support, only the Proactor loop has it on Windows
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())


def _dump(obj):
    print(json.dumps(obj, indent=2, default=str, ensure_ascii=False))


async def _schedule():
    from dealhub.jobs.scheduler import (
        EXPIRE_DEALS_CRON, EXPIRE_DEALS_KEY,
        TRACK_PRICES_CRON, TRACK_PRICES_KEY,
        VERIFY_DEALS_CRON, VERIFY_DEALS_KEY,
        merchant_job_key,
    )
    from dealhub.merchants.registry import merchant_registry

    for cfg in merchant_registry.all_enabled():
        if cfg.cron:
            print(f"  {merchant_job_key(cfg.slug):<32} {cfg.cron}")
    print(f"  {TRACK_PRICES_KEY:<32} {TRACK_PRICES_CRON}")
    print(f"  {EXPIRE_DEALS_KEY:<32} {EXPIRE_DEALS_CRON}")
    print(f"  {VERIFY_DEALS_KEY:<32} {VERIFY_DEALS_CRON}")


async def _oneshot(action: str, args):
    from dealhub.db.models import async_session, engine
    from dealhub.jobs.ingestion import IngestionOrchestrator
    from dealhub.scoring.quality import get_top_quality_deals
    from dealhub.worker import prepare_store

    try:
        await prepare_store()
        orchestrator = IngestionOrchestrator()

        if action == "setup":
            print("✅  Deal store ready")
        elif action == "scrape":
            _dump((await orchestrator.scrape_merchant(args[0])).model_dump())
        elif action == "url":
            _dump((await orchestrator.scrape_product_url(args[0])).model_dump(mode="json"))
        elif action == "track":
            if args:
                _dump((await orchestrator.track_deal_price(args[0])).model_dump())
            else:
                _dump(await orchestrator.track_all_prices())
        elif action == "expire":
            _dump(await orchestrator.expire_stale_deals())
        elif action == "verify":
            if args:
                _dump((await orchestrator.verify_deal(args[0])).model_dump(mode="json"))
            else:
                _dump(await orchestrator.verify_all_deals())
        elif action == "top":
            limit = int(args[0]) if args else 20
            async with async_session() as db:
                ranked = await get_top_quality_deals(db, limit=limit)
            for i, r in enumerate(ranked, 1):
                print(f"{i:>3}. [{r.score.total_score:>3}] ₹{r.price:<8} {r.merchant:<14} {r.title[:60]}")
                if r.score.badges:
                    print(f"       {' · '.join(r.score.badges)}")
    finally:
        await engine.dispose()


def main(argv):
    _set_loop_policy()
    action = argv[0] if argv else "worker"
    args   = argv[1:]

    if action in ("-h", "--help", "help"):
        print(USAGE)
        return 0
    if action == "worker":
        from dealhub.worker import run_worker
        try:
            asyncio.run(run_worker())
        except KeyboardInterrupt:
            print("👋  Worker stopped")
        return 0
    if action == "schedule":
        asyncio.run(_schedule())
        return 0
    if action in ("scrape", "url") and not args:
        print(f"⚠  '{action}' needs an argument\n{USAGE}")
        return 2
    if action in ("setup", "scrape", "url", "track", "expire", "verify", "top"):
        asyncio.run(_oneshot(action, args))
        return 0

    print(f"⚠  Unknown command: {action}\n{USAGE}")
    return 2


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
