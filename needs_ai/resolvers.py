"""
Needs AI - Output Resolvers
===========================

A resolver turns a GenerationResult into a flow's final output, before
validation and post-processing. Flows pick one by name with `resolver:` and
configure it with `resolver_config:`.

    structured_output → the model's validated structured output, as-is
    chat_support      → canned reply + matches when the lookup tool ran
    provider_finder   → like chat_support, with a canned reply for no output
    category_match    → snaps the matched category to the offered spelling

Returning None means "no usable output"; the engine applies the flow's
fallback policy.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from needs_ai.models import FlowDefinition, GenerationResult

logger = logging.getLogger(__name__)

Resolver = Callable[[FlowDefinition, Dict[str, Any], GenerationResult], Optional[Dict[str, Any]]]

DEFAULT_LOOKUP_TOOL = "find_providers_for_project"


def resolve_structured_output(
    flow: FlowDefinition, inputs: Dict[str, Any], generation: GenerationResult
) -> Optional[Dict[str, Any]]:
    return generation.output


def _looked_up_providers(
    flow: FlowDefinition, generation: GenerationResult
) -> Optional[List[Dict[str, Any]]]:
    """Providers from the most recent lookup that ran, or None if none ran."""
    tool_id = flow.resolver_config.get("tool", DEFAULT_LOOKUP_TOOL)
    invocations = generation.invocations_of(tool_id, executed_only=True)
    if not invocations:
        return None
    result = invocations[-1].result
    logger.debug(f"[Resolver] {tool_id} returned {result.status.value}")
    return list(result.output.get("providers") or [])


def resolve_chat_support(
    flow: FlowDefinition, inputs: Dict[str, Any], generation: GenerationResult
) -> Optional[Dict[str, Any]]:
    """
    Canned reply when the model looked up providers, else its own answer.

    Matches only ever come from the directory lookup; a direct answer keeps
    just its text.
    """
    providers = _looked_up_providers(flow, generation)
    if providers is None:
        if generation.output is None:
            return None
        return {"response": generation.output["response"]}
    if providers:
        return {"response": flow.resolver_config["found_text"], "matchedProviders": providers}
    return {"response": flow.resolver_config["empty_text"]}


def resolve_provider_finder(
    flow: FlowDefinition, inputs: Dict[str, Any], generation: GenerationResult
) -> Optional[Dict[str, Any]]:
    """Like chat support, but always answers and always carries a match list."""
    config = flow.resolver_config
    providers = _looked_up_providers(flow, generation)
    if providers is not None:
        text = config["found_text"] if providers else config["empty_text"]
        return {"response": text, "matchedProviders": providers}

    if generation.output is not None:
        return {"response": generation.output["response"], "matchedProviders": []}

    return {"response": config["no_output_text"], "matchedProviders": []}


def resolve_category_match(
    flow: FlowDefinition, inputs: Dict[str, Any], generation: GenerationResult
) -> Optional[Dict[str, Any]]:
    """
    Normalize the model's pick to a category from the offered list.

    Comparison ignores case and surrounding whitespace. Anything that is not
    one of the offered categories becomes the "no match" empty string.
    """
    if generation.output is None:
        return None

    picked = str(generation.output.get("matchedCategory") or "").strip().lower()
    if not picked:
        return {"matchedCategory": ""}

    for category in inputs.get("availableCategories", []):
        if category.strip().lower() == picked:
            return {"matchedCategory": category}

    logger.info(f"[Resolver] Model picked a category outside the list: {picked!r}")
    return {"matchedCategory": ""}


BUILTIN_RESOLVERS: Dict[str, Resolver] = {
    "structured_output": resolve_structured_output,
    "chat_support": resolve_chat_support,
    "provider_finder": resolve_provider_finder,
    "category_match": resolve_category_match,
}


def get_resolver(name: str) -> Resolver:
    resolver = BUILTIN_RESOLVERS.get(name)
    if resolver is None:
        raise ValueError(f"Unknown resolver: {name}")
    return resolver
