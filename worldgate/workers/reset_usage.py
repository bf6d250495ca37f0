"""
Scheduled usage reset.

Run daily at midnight with `daily` and on the 1st of each month with
`monthly`. Requires PLAN_STORE=sql (an in-memory store holds nothing
between processes).
"""
import argparse
import logging
from typing import Dict, Optional

from worldgate.core.config import settings
from worldgate.core.logging import configure_logging
from worldgate.features.entitlements.service import EntitlementGate
from worldgate.features.usage.store import build_store_from_settings

logger = logging.getLogger("worldgate.workers.reset_usage")


def run_reset(period: str, gate: Optional[EntitlementGate] = None) -> Dict:
    gate = gate or EntitlementGate(build_store_from_settings())
    if period == "daily":
        users = gate.reset_daily()
    elif period == "monthly":
        users = gate.reset_monthly()
    else:
        raise ValueError(f"Unknown reset period: {period}")

    logger.info("[reset] usage counters reset", extra={"period": period, "users": users})
    return {"period": period, "users_reset": users}


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Reset daily or monthly usage counters for every known user.")
    parser.add_argument("period", choices=["daily", "monthly"])
    args = parser.parse_args(argv)

    configure_logging(settings.ENV)
    if str(settings.PLAN_STORE).lower() != "sql":
        logger.warning("[reset] PLAN_STORE is not 'sql'; nothing persistent to reset")

    report = run_reset(args.period)
    print(report)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
