"""
Needs AI - Flow API
===================

One async function per flow: typed input in, typed output out. Each raises
`FlowError` exactly where the flow's policy says to, and
`SchemaValidationError` on invalid input.

    output = await analyze_need(AnalyzeNeedInput(description="My sink is leaking"))

Every function accepts an optional `engine`; the shared one is built lazily.
"""

import logging
from typing import List, Optional

from needs_ai.engine import FlowEngine
from needs_ai.models import (
    AnalyzeDocumentForRolesInput,
    AnalyzeDocumentForRolesOutput,
    AnalyzeNeedInput,
    AnalyzeNeedOutput,
    AppMessage,
    ChatInput,
    ChatOutput,
    DescribeImageInput,
    DescribeImageOutput,
    FindProfilesInput,
    FindProfilesOutput,
    FindProvidersInConversationInput,
    FindProvidersInConversationOutput,
    FlowModel,
    GenerateLinkedInPostInput,
    GenerateLinkedInPostOutput,
    HiringAssistantInput,
    HiringAssistantOutput,
    MatchCategoryInput,
    MatchCategoryOutput,
)
from needs_ai.registry import FlowRegistry

logger = logging.getLogger(__name__)


# =============================================================================
# Singletons
# =============================================================================

_registry: Optional[FlowRegistry] = None
_engine: Optional[FlowEngine] = None


def get_registry() -> FlowRegistry:
    """Get or create the flow registry singleton."""
    global _registry
    if _registry is None:
        _registry = FlowRegistry()
        _registry.load()
    return _registry


def get_engine() -> FlowEngine:
    """Get or create the flow engine singleton."""
    global _engine
    if _engine is None:
        _engine = FlowEngine(get_registry())
    return _engine


async def _run(flow_id: str, payload: FlowModel, engine: Optional[FlowEngine]) -> dict:
    result = await (engine or get_engine()).execute_flow(flow_id, payload.to_payload())
    return result.output


# =============================================================================
# Flows
# =============================================================================

async def analyze_need(
    payload: AnalyzeNeedInput, engine: Optional[FlowEngine] = None
) -> AnalyzeNeedOutput:
    """Structured solution for a described need, optionally with a photo."""
    return AnalyzeNeedOutput.model_validate(await _run("analyze_need", payload, engine))


async def chat(payload: ChatInput, engine: Optional[FlowEngine] = None) -> ChatOutput:
    """
    One chat turn. Never raises on generation failure; the reply is then an
    apology.
    """
    return ChatOutput.model_validate(await _run("chat_support", payload, engine))


async def chat_with_messages(
    messages: List[AppMessage], new_message: str, engine: Optional[FlowEngine] = None
) -> ChatOutput:
    """Chat turn from stored app messages."""
    return await chat(ChatInput.from_messages(messages, new_message), engine=engine)


async def describe_image(
    payload: DescribeImageInput, engine: Optional[FlowEngine] = None
) -> DescribeImageOutput:
    return DescribeImageOutput.model_validate(await _run("describe_image", payload, engine))


async def analyze_document_for_roles(
    payload: AnalyzeDocumentForRolesInput, engine: Optional[FlowEngine] = None
) -> AnalyzeDocumentForRolesOutput:
    return AnalyzeDocumentForRolesOutput.model_validate(
        await _run("analyze_document_for_roles", payload, engine)
    )


async def hiring_assistant(
    payload: HiringAssistantInput, engine: Optional[FlowEngine] = None
) -> HiringAssistantOutput:
    """Job description as raw markdown plus a display HTML copy."""
    return HiringAssistantOutput.model_validate(await _run("hiring_assistant", payload, engine))


async def generate_linkedin_post(
    payload: GenerateLinkedInPostInput, engine: Optional[FlowEngine] = None
) -> GenerateLinkedInPostOutput:
    return GenerateLinkedInPostOutput.model_validate(
        await _run("generate_linkedin_post", payload, engine)
    )


async def find_profiles(
    payload: FindProfilesInput, engine: Optional[FlowEngine] = None
) -> FindProfilesOutput:
    """Candidate profiles from the web. Degrades to an empty list on failure."""
    return FindProfilesOutput.model_validate(await _run("find_profiles", payload, engine))


async def find_providers_in_conversation(
    payload: FindProvidersInConversationInput, engine: Optional[FlowEngine] = None
) -> FindProvidersInConversationOutput:
    """Providers for a conversational need. Errors propagate unmodified."""
    return FindProvidersInConversationOutput.model_validate(
        await _run("find_providers_in_conversation", payload, engine)
    )


async def match_category(
    payload: MatchCategoryInput, engine: Optional[FlowEngine] = None
) -> MatchCategoryOutput:
    """Best category from the list, or "" when none fits."""
    return MatchCategoryOutput.model_validate(await _run("match_category", payload, engine))
