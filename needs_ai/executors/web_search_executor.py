"""
Needs AI - Web Search Executor
==============================

Searches the web through SerpAPI and summarizes the top organic results with
a second, structured-output generation. Every failure branch is a fixed,
explanatory answer with an empty link list; none of them raise:

    no API key       → "not configured" answer, no HTTP call
    HTTP error       → "search failed with status N" answer
    zero results     → "couldn't find any relevant results" answer
    no summary       → raw titles/links with an apologetic note
    network error    → "unexpected error" answer
"""

import asyncio
import logging
import os
from typing import Any, Dict, List

import requests

from needs_ai import templates
from needs_ai.errors import GenerationFailure, ToolExecutionError
from needs_ai.executors.base import META_KEY, BaseExecutor
from needs_ai.generation import GenerationInvoker, get_model_client
from needs_ai.models import GenerationRequest, ToolStatus

logger = logging.getLogger(__name__)


SERPAPI_URL = "https://serpapi.com/search.json"

NOT_CONFIGURED_ANSWER = (
    "The web search tool is not configured. Please ask the user to contact support "
    "and mention that the {env} is missing."
)
HTTP_ERROR_ANSWER = (
    "Sorry, the web search failed with status: {status}. I cannot complete the request right now."
)
NO_RESULTS_ANSWER = (
    "I couldn't find any relevant results on the web for that query. "
    "You could try rephrasing your request."
)
SUMMARY_FAILED_ANSWER = "I found some results, but I had trouble summarizing them."
UNEXPECTED_ERROR_ANSWER = (
    "I encountered an unexpected error while trying to search the web. Please try again later."
)

DEFAULT_SUMMARY_PROMPT = """You are a research assistant. Based on the following web search results for the query "{{query}}", synthesize a helpful, conversational answer for the user.
Format your response in clear markdown. If you find useful links, include them in your answer. Do not just list the results; provide a cohesive summary.
Also provide a list of the source links you used.

Search Results:
{{json results}}
"""

STATUS_BY_SEARCH_STATUS = {
    "ok": ToolStatus.SUCCESS,
    "summary_failed": ToolStatus.SUCCESS,
    "no_results": ToolStatus.NO_DATA,
    "no_config": ToolStatus.SKIPPED,
    "http_error": ToolStatus.FAILURE,
    "error": ToolStatus.FAILURE,
}


class WebSearchExecutor(BaseExecutor):
    """
    Executor for web search + summarize.

    The summarization is not a tool call: it runs every time the search
    returns results.
    """

    async def _execute(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        """Search, then summarize."""
        query = inputs["query"]
        config = self.manifest.config
        api_key_env = config.api_key_env or "SERP_API_KEY"
        api_key = os.getenv(api_key_env)

        if not api_key:
            logger.warning(f"[WebSearch] No API key configured ({api_key_env})")
            return self._answer(NOT_CONFIGURED_ANSWER.format(env=api_key_env), [], "no_config")

        num_results = config.max_results or 5
        logger.info(f"[WebSearch] Searching: {query[:80]}")

        try:
            response = await asyncio.to_thread(
                requests.get,
                SERPAPI_URL,
                params={"q": query, "engine": "google", "api_key": api_key},
                timeout=config.timeout_seconds or 30,
            )
        except requests.RequestException as e:
            logger.error(f"[WebSearch] Request failed: {e}")
            return self._answer(UNEXPECTED_ERROR_ANSWER, [], "error", error=str(e))

        if not response.ok:
            logger.error(f"[WebSearch] SerpAPI returned {response.status_code}: {response.text[:200]}")
            return self._answer(
                HTTP_ERROR_ANSWER.format(status=response.status_code), [], "http_error",
                error=f"HTTP {response.status_code}",
            )

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"[WebSearch] Invalid JSON from SerpAPI: {e}")
            return self._answer(UNEXPECTED_ERROR_ANSWER, [], "error", error=str(e))

        if not isinstance(data, dict):
            logger.error(f"[WebSearch] Unexpected SerpAPI body: {type(data).__name__}")
            return self._answer(UNEXPECTED_ERROR_ANSWER, [], "error", error="unexpected_body")

        results = data.get("organic_results") or []
        if isinstance(results, list):
            results = [item for item in results if isinstance(item, dict)]
        else:
            results = []

        if not results:
            return self._answer(NO_RESULTS_ANSWER, [], "no_results")

        snippets = [
            {
                "title": item.get("title", ""),
                "link": item.get("link", ""),
                "snippet": item.get("snippet", ""),
            }
            for item in results[:num_results]
        ]
        return await self._summarize(query, snippets)

    async def _summarize(self, query: str, snippets: List[Dict[str, str]]) -> Dict[str, Any]:
        """Second-stage generation over the snippets."""
        config = self.manifest.config
        prompt_source = DEFAULT_SUMMARY_PROMPT
        if config.prompt and config.prompt.inline_text:
            prompt_source = config.prompt.inline_text

        request = GenerationRequest(
            prompt=templates.render(prompt_source, {"query": query, "results": snippets}),
            output_schema=config.summary_schema or self.manifest.output_schema,
            config=config.model,
        )

        client = self.services.model_client or get_model_client()
        try:
            result = await GenerationInvoker(client, max_tool_rounds=0).invoke(request)
        except GenerationFailure as e:
            raise ToolExecutionError(f"Summarization failed: {e.message}") from e

        if not result.output:
            logger.warning("[WebSearch] Summarization produced no output, returning raw links")
            links = [{"title": s["title"], "link": s["link"]} for s in snippets]
            return self._answer(SUMMARY_FAILED_ANSWER, links, "summary_failed")

        output = dict(result.output)
        output[META_KEY] = {"search_status": "ok", "result_count": len(snippets)}
        return output

    @staticmethod
    def _answer(answer: str, links: List[Dict[str, str]], search_status: str, error: str = None) -> Dict[str, Any]:
        meta: Dict[str, Any] = {"search_status": search_status}
        if error:
            meta["error"] = error
        return {"answer": answer, "links": links, META_KEY: meta}

    def _result_status(self, output: Dict[str, Any], metadata: Dict[str, Any]) -> ToolStatus:
        return STATUS_BY_SEARCH_STATUS.get(metadata.get("search_status", "ok"), ToolStatus.SUCCESS)

    async def _mock_execute(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        """Return mock search results."""
        query = inputs.get("query", "")
        return {
            "answer": f"Here is what I found about **{query}**. Several guides cover this topic in detail.",
            "links": [
                {"title": f"A practical guide to {query}", "link": "https://example.com/guide"},
                {"title": "Community discussion", "link": "https://example.com/forum"},
            ],
            META_KEY: {"search_status": "ok", "mock": True},
        }
