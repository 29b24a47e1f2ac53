"""
Needs AI - Smart Search
=======================

Two-stage provider search: a free-text need is mapped to one of the
directory's categories by the `match_category` flow, then the directory is
queried for available providers in exactly that category.

An empty directory is seeded with the default providers on first use.
"""

import logging
from typing import List, Optional

from needs_ai.api import match_category
from needs_ai.directory import DirectoryStore, get_directory_store, seed_providers
from needs_ai.errors import DirectoryStoreError, FlowError
from needs_ai.models import MatchCategoryInput, ServiceProvider

logger = logging.getLogger(__name__)


async def find_providers_by_smart_search(
    description: str,
    engine=None,
    store: Optional[DirectoryStore] = None,
) -> List[ServiceProvider]:
    """
    Find available providers for a free-text need.

    Args:
        description: What the user needs, in their own words.
        engine: FlowEngine used for category matching. Defaults to the shared engine.
        store: Directory store. Defaults to the process store.

    Returns:
        Matching providers; empty when nothing matches.

    Raises:
        FlowError: The category matcher failed, or the directory could not be read.
    """
    description = (description or "").strip()
    if not description:
        return []

    store = store or get_directory_store()

    try:
        providers = await store.get_all()
        if not providers:
            logger.info("[SmartSearch] Directory is empty, seeding default providers")
            seeded = await seed_providers(store)
            if not seeded.success:
                logger.error(f"[SmartSearch] Seeding failed: {seeded.message}")
                return []
            providers = await store.get_all()
    except DirectoryStoreError as e:
        logger.error(f"[SmartSearch] Could not read directory: {e}")
        raise FlowError("Could not perform provider search.") from e

    categories = sorted({p.category for p in providers if p.category})
    if not categories:
        return []

    # Matcher errors are already caller-safe
    matched = await match_category(
        MatchCategoryInput(user_query=description, available_categories=categories),
        engine=engine,
    )
    category = matched.matched_category
    logger.info(f"[SmartSearch] '{description[:60]}' -> '{category}'")
    if not category:
        return []

    try:
        return await store.query(category, available_only=True)
    except DirectoryStoreError as e:
        logger.error(f"[SmartSearch] Category lookup failed for '{category}': {e}")
        raise FlowError("Could not perform provider search.") from e
