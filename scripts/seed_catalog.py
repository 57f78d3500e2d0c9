#!/usr/bin/env python3
"""Seed the catalog projection.

Loads products from a JSON file into the products table so offers can
be listed against them. Existing products are skipped.

Usage:
    python scripts/seed_catalog.py products.json
    python scripts/seed_catalog.py products.json --create-tables

File format:
    [{"id": "p-1", "title": "Desk Lamp", "base_price_cents": 129900,
      "currency": "INR", "category": "Home", "brand": "Lumo"}]
"""

import argparse
import asyncio
import json
from pathlib import Path

from marketplace.domain.value_objects import Money, ProductRef
from marketplace.infrastructure import models  # noqa: F401
from marketplace.infrastructure.config import settings
from marketplace.infrastructure.database import (
    Base,
    dispose_engine,
    get_engine,
    get_session_factory,
)
from marketplace.infrastructure.repositories import CatalogRepository


async def create_tables() -> None:
    """Create database tables if they don't exist."""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def load_products(path: Path) -> list[ProductRef]:
    return [
        ProductRef(
            id=str(entry["id"]),
            title=entry["title"],
            base_price=Money(
                entry["base_price_cents"], entry.get("currency", settings.default_currency)
            ),
            category=entry.get("category"),
            brand=entry.get("brand"),
        )
        for entry in json.loads(path.read_text())
    ]


async def seed(products: list[ProductRef]) -> tuple[int, int]:
    """Insert missing products.

    Returns:
        Counts of inserted and skipped products.
    """
    inserted = skipped = 0
    async with get_session_factory()() as session, session.begin():
        catalog = CatalogRepository(session)
        for product in products:
            if await catalog.get_product(product.id) is not None:
                skipped += 1
                continue
            await catalog.add_product(product)
            inserted += 1
    return inserted, skipped


async def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Seed the product catalog")
    parser.add_argument("file", type=Path, help="JSON file with a list of products")
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create tables first (development databases without migrations)",
    )
    args = parser.parse_args()

    try:
        if args.create_tables:
            await create_tables()
        inserted, skipped = await seed(load_products(args.file))
        print(f"Seeded {inserted} product(s), skipped {skipped} existing")
    finally:
        await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
