"""
Needs AI - Directory Lookup Executor
====================================

Finds available service providers for one category in the provider
directory. Store failures are expected and never reach the model: they
become an empty provider list with status FAILURE, while "nothing in that
category" is an empty list with status NO_DATA.
"""

import logging
from typing import Any, Dict

from needs_ai.directory import DirectoryStore, get_directory_store
from needs_ai.errors import DirectoryStoreError, ToolExecutionError
from needs_ai.executors.base import META_KEY, BaseExecutor
from needs_ai.models import ToolStatus

logger = logging.getLogger(__name__)


class DirectoryLookupExecutor(BaseExecutor):
    """
    Executor for provider directory lookups.

    Exact, case-sensitive category match; only available providers.
    """

    def _get_store(self) -> DirectoryStore:
        if self.services.store is None:
            self.services.store = get_directory_store()
        return self.services.store

    async def _execute(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        """Query the directory for one category."""
        category = inputs.get("category") or ""
        if not category.strip():
            logger.info("[DirectoryLookup] Blank category, skipping store query")
            return {"providers": [], META_KEY: {"reason": "blank_category"}}

        try:
            providers = await self._get_store().query(category, available_only=True)
        except DirectoryStoreError as e:
            logger.error(f"[DirectoryLookup] Store query failed for '{category}': {e}")
            raise ToolExecutionError("Directory store unavailable", {"category": category}) from e

        logger.info(f"[DirectoryLookup] {len(providers)} providers for '{category}'")
        return {
            "providers": [p.model_dump() for p in providers],
            META_KEY: {"category": category, "count": len(providers)},
        }

    def _result_status(self, output: Dict[str, Any], metadata: Dict[str, Any]) -> ToolStatus:
        return ToolStatus.SUCCESS if output.get("providers") else ToolStatus.NO_DATA

    async def _mock_execute(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        """Return a canned provider for any non-blank category."""
        category = (inputs.get("category") or "").strip()
        if not category:
            return {"providers": []}
        return {
            "providers": [
                {
                    "id": "mock1",
                    "name": f"Mock {category} Pros",
                    "category": category,
                    "phone_number": "555-0100",
                    "avg_cost": 100.0,
                    "available": True,
                }
            ],
            META_KEY: {"category": category, "count": 1},
        }
