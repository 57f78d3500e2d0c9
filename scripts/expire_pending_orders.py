#!/usr/bin/env python3
"""Expire stale pending orders.

Cancels orders still pending past the TTL and returns their reserved
stock. Meant to run from cron or another external scheduler.

Usage:
    python scripts/expire_pending_orders.py
    python scripts/expire_pending_orders.py --older-than-minutes 30
"""

import argparse
import asyncio
from datetime import timedelta

import structlog

from marketplace.application.order_service import OrderService
from marketplace.infrastructure.config import settings
from marketplace.infrastructure.database import dispose_engine
from marketplace.infrastructure.logging import configure_logging
from marketplace.infrastructure.payment_gateway import reset_payment_gateway

logger = structlog.get_logger()


async def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Cancel pending orders past their TTL")
    parser.add_argument(
        "--older-than-minutes",
        type=int,
        default=settings.pending_order_ttl_minutes,
        help=f"Order age in minutes (default: {settings.pending_order_ttl_minutes})",
    )
    args = parser.parse_args()

    configure_logging(settings.log_level)
    try:
        expired = await OrderService().expire_pending_orders(
            older_than=timedelta(minutes=args.older_than_minutes)
        )
        print(f"Expired {len(expired)} pending order(s)")
        for order_id in expired:
            print(f"  {order_id}")
    finally:
        await reset_payment_gateway()
        await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
