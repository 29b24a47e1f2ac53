#!/usr/bin/env python3
"""
Provider Directory Seeder
=========================
Seeds the default service providers into the provider directory.

Seeding is an idempotent upsert by provider id, so running it twice is safe.
The target store follows the app's configuration: Lakebase when LAKEBASE_HOST
is set, otherwise the in-memory directory (useful only with --list).

Usage:
    python scripts/seed_providers.py               # Seed the default providers
    python scripts/seed_providers.py --list        # Seed, then list the directory
    python scripts/seed_providers.py --category Moving   # Seed, then query one category

Configuration:
    - LAKEBASE_HOST, LAKEBASE_PORT, LAKEBASE_DATABASE, LAKEBASE_SCHEMA
    - LAKEBASE_USER, LAKEBASE_PASSWORD (OAuth token from the Databricks SDK when unset)
"""

import argparse
import asyncio
import logging
import sys

from needs_ai.directory import (
    find_providers_by_category,
    get_directory_store,
    seed_providers,
)
from needs_ai.errors import NeedsAIError


async def run(args: argparse.Namespace) -> int:
    store = get_directory_store()
    print(f"📦 Directory store: {type(store).__name__}")

    result = await seed_providers(store)
    if not result.success:
        print(f"❌ {result.message}")
        return 1
    print(f"✅ {result.message}")

    try:
        if args.category:
            providers = await find_providers_by_category(args.category, store)
            print(f"\n🔎 Available in '{args.category}': {len(providers)}")
        elif args.list:
            providers = await store.get_all()
            print(f"\n📋 Directory ({len(providers)} providers)")
        else:
            return 0
    except NeedsAIError as e:
        print(f"❌ {e}")
        return 1

    for p in providers:
        flag = "✓" if p.available else "✗"
        print(f"   {flag} {p.id:<6} {p.name:<22} {p.category:<10} {p.phone_number}  ${p.avg_cost:.0f}")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Seed the provider directory")
    parser.add_argument("--list", action="store_true", help="List the directory after seeding")
    parser.add_argument("--category", help="Query one category after seeding")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
