"""
Needs AI - Executors
====================

Typed executor classes for each tool type. Each executor knows how to
interpret a tool manifest and run the corresponding action.

Executor Registry:
    - DirectoryLookupExecutor → Queries the provider directory by category
    - WebSearchExecutor       → Searches the web and summarizes the results
"""

from needs_ai.executors.base import BaseExecutor, ToolServices
from needs_ai.executors.directory_executor import DirectoryLookupExecutor
from needs_ai.executors.web_search_executor import WebSearchExecutor

__all__ = [
    "BaseExecutor",
    "ToolServices",
    "DirectoryLookupExecutor",
    "WebSearchExecutor",
]
