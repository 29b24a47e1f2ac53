"""
Tests for FlowEngine
====================

Runs the packaged flows end to end against a scripted model, covering each
flow's tool policy and its behavior when generation fails.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import call_tool, call_tool_raw, provider, reply
from needs_ai.config import get_settings
from needs_ai.directory import InMemoryDirectoryStore
from needs_ai.errors import (
    DirectoryStoreError,
    FlowError,
    FlowNotFoundError,
    GenerationFailure,
    SchemaValidationError,
)
from needs_ai.models import FlowState, ToolStatus


def run_async(coro):
    """Helper to run async tests without pytest-asyncio."""
    return asyncio.run(coro)


INVENTED_PROVIDER = {
    "id": "x9",
    "name": "Invented Co",
    "category": "Moving",
    "phone_number": "555-9999",
    "avg_cost": 10,
    "available": True,
}

GENERIC_FAILURE = "The AI service is currently unavailable or encountered an error. Please try again later."
CHAT_APOLOGY = "Sorry, I'm having trouble connecting to the AI service right now. Please try again in a few moments."


class TestValidation:
    """Tests for input validation and lookup."""

    def test_unknown_flow(self, make_engine):
        """Should raise FlowNotFoundError for an unregistered flow."""
        engine, _ = make_engine()
        with pytest.raises(FlowNotFoundError):
            run_async(engine.execute_flow("no_such_flow", {}))

    def test_missing_input_rejected_before_generation(self, make_engine):
        """Should reject a missing required field without calling the model."""
        engine, client = make_engine()
        with pytest.raises(SchemaValidationError) as exc_info:
            run_async(engine.execute_flow("hiring_assistant", {}))
        assert exc_info.value.fields == ["need"]
        assert client.calls == []

    def test_degrading_flow_still_rejects_bad_input(self, make_engine):
        """Should raise on invalid input even when the flow degrades on failure."""
        engine, client = make_engine()
        with pytest.raises(SchemaValidationError):
            run_async(engine.execute_flow("find_profiles", {"jobDescription": 7}))
        assert client.calls == []


class TestAnalyzeNeed:
    """Analyze Need: two tools, no short-circuit, raises on failure."""

    def test_tool_output_woven_into_answer(self, make_engine):
        """Should run the lookup tool and return the model's final answer."""
        engine, client = make_engine(
            call_tool("findProvidersForProject", {"category": "Plumbing"}),
            reply({
                "summary": "Fix-It-Fast can repair your sink.",
                "steps": [{"title": "Call", "description": "Phone 555-0109"}],
                "additionalInfo": "Turn off the **main valve** first.",
            }),
        )
        result = run_async(engine.execute_flow("analyze_need", {"description": "My sink is leaking"}))

        assert result.state == FlowState.DONE
        assert result.output["summary"] == "Fix-It-Fast can repair your sink."
        assert "<strong>main valve</strong>" in result.output["additionalInfo"]
        assert result.tool_invocations[0].result.status == ToolStatus.SUCCESS
        assert result.tool_invocations[0].result.output["providers"][0]["id"] == "prov8"
        assert len(client.calls) == 2

        tool_message = client.calls[1]["messages"][-1]
        assert tool_message["role"] == "tool"
        assert "Fix-It-Fast" in tool_message["content"]

    def test_both_tools_offered(self, make_engine):
        """Should offer both tools by their model-facing names."""
        engine, client = make_engine(reply({"summary": "Just tighten the nut."}))
        run_async(engine.execute_flow("analyze_need", {"description": "Loose tap"}))

        names = [t["function"]["name"] for t in client.calls[0]["tools"]]
        assert names == ["findProvidersForProject", "searchWebForExperts"]

    def test_image_attached_as_media(self, make_engine):
        """Should send the photo as an image part of the user message."""
        uri = "data:image/png;base64,iVBORw0KGgo="
        engine, client = make_engine(reply({"summary": "A cracked tile."}))
        run_async(engine.execute_flow("analyze_need", {"description": "", "imageDataUri": uri}))

        user = client.calls[0]["messages"][-1]
        assert user["content"][1]["image_url"]["url"] == uri
        assert "Photo of the need:" in user["content"][0]["text"]

    def test_no_output_raises(self, make_engine):
        """Should raise the caller-safe message when generation yields nothing."""
        engine, _ = make_engine(reply("I cannot answer in JSON"))
        with pytest.raises(FlowError) as exc_info:
            run_async(engine.execute_flow("analyze_need", {"description": "Help"}))
        assert exc_info.value.message == GENERIC_FAILURE

    def test_model_outage_raises_safe_message(self, make_engine):
        """Should not leak the underlying error to the caller."""
        engine, _ = make_engine(GenerationFailure("secret internal detail"))
        with pytest.raises(FlowError) as exc_info:
            run_async(engine.execute_flow("analyze_need", {"description": "Help"}))
        assert "secret" not in str(exc_info.value)

    def test_store_outage_reaches_model_as_empty_list(self, make_engine):
        """Should hand the model an empty provider list when the store is down."""
        broken = MagicMock()
        broken.query = AsyncMock(side_effect=DirectoryStoreError("down"))
        engine, client = make_engine(
            call_tool("findProvidersForProject", {"category": "Plumbing"}),
            reply({"summary": "No plumbers right now."}),
            directory_store=broken,
        )
        result = run_async(engine.execute_flow("analyze_need", {"description": "Leak"}))

        assert result.output == {"summary": "No plumbers right now."}
        assert result.tool_invocations[0].result.status == ToolStatus.FAILURE
        assert result.tool_invocations[0].result.output == {"providers": []}


class TestChatSupport:
    """Chat Support: short-circuits on the lookup tool, apologizes on failure."""

    HISTORY = [
        {"role": "user", "content": "Hi"},
        {"role": "assistant", "content": "Hello! How can I help?"},
    ]

    def test_providers_found(self, make_engine):
        """Should return the canned reply with matches and no second model call."""
        engine, client = make_engine(call_tool("findProvidersForProject", {"category": "Moving"}))
        result = run_async(engine.execute_flow(
            "chat_support", {"history": self.HISTORY, "newMessage": "I need a mover"}
        ))

        assert result.output["response"].startswith("I found some professionals")
        assert [p["id"] for p in result.output["matchedProviders"]] == ["prov1"]
        assert len(client.calls) == 1

    def test_no_providers(self, make_engine):
        """Should return the canned no-match reply, never raise."""
        engine, _ = make_engine(call_tool("findProvidersForProject", {"category": "Astronaut"}))
        result = run_async(engine.execute_flow(
            "chat_support", {"history": [], "newMessage": "Find me an astronaut"}
        ))

        assert result.output["response"].startswith("I looked, but I couldn't find")
        assert "matchedProviders" not in result.output

    def test_direct_answer(self, make_engine):
        """Should return the model's own answer when no tool was called."""
        engine, client = make_engine(reply({"response": "Paris is the capital of France."}))
        result = run_async(engine.execute_flow(
            "chat_support", {"history": self.HISTORY, "newMessage": "Capital of France?"}
        ))

        assert result.output == {"response": "Paris is the capital of France."}
        prompt = client.calls[0]["messages"][-1]["content"]
        assert "user: Hi\nassistant: Hello! How can I help?\nuser: Capital of France?" in prompt

    def test_direct_answer_drops_model_matches(self, make_engine):
        """Should not pass on matches the model wrote without a directory lookup."""
        engine, _ = make_engine(reply({"response": "Try these", "matchedProviders": [INVENTED_PROVIDER]}))
        result = run_async(engine.execute_flow("chat_support", {"history": [], "newMessage": "I need a mover"}))

        assert result.output == {"response": "Try these"}

    def test_unparseable_tool_arguments_do_not_short_circuit(self, make_engine):
        """A refused lookup is not a lookup that found nothing; the model gets another turn."""
        engine, client = make_engine(
            call_tool_raw("findProvidersForProject", "{not json"),
            reply({"response": "Which kind of help do you need?"}),
        )
        result = run_async(engine.execute_flow("chat_support", {"history": [], "newMessage": "Help"}))

        assert result.output == {"response": "Which kind of help do you need?"}
        assert [inv.result.error for inv in result.tool_invocations] == ["invalid_arguments"]
        assert result.tool_invocations[0].executed is False
        assert len(client.calls) == 2

    def test_failure_returns_apology(self, make_engine):
        """Should degrade to the apology text when the model is unavailable."""
        engine, _ = make_engine(GenerationFailure("down"))
        result = run_async(engine.execute_flow("chat_support", {"history": [], "newMessage": "Hi"}))

        assert result.output == {"response": CHAT_APOLOGY}
        assert result.degraded is True

    def test_empty_generation_returns_apology(self, make_engine):
        """Should degrade to the apology text when the model output is unusable."""
        engine, _ = make_engine(reply("garbled"))
        result = run_async(engine.execute_flow("chat_support", {"history": [], "newMessage": "Hi"}))

        assert result.output == {"response": CHAT_APOLOGY}


class TestNoToolFlows:
    """Flows without tools that raise on failure."""

    @pytest.mark.parametrize("flow_id,inputs,message", [
        ("describe_image", {"imageDataUri": "data:image/png;base64,AAAA"}, GENERIC_FAILURE),
        ("analyze_document_for_roles", {"documentText": "Build a web app"},
         "The AI service could not analyze the document. Please try again later."),
        ("hiring_assistant", {"need": "An AI engineer"}, GENERIC_FAILURE),
        ("generate_linkedin_post", {"jobDescription": "Senior engineer"},
         "The post generation service failed. Please try again later."),
        ("match_category", {"userQuery": "pipes", "availableCategories": ["Plumbing"]}, GENERIC_FAILURE),
    ])
    def test_empty_generation_raises(self, make_engine, flow_id, inputs, message):
        """Should raise the flow's own caller-safe message."""
        engine, _ = make_engine(reply("{}"))
        with pytest.raises(FlowError) as exc_info:
            run_async(engine.execute_flow(flow_id, inputs))
        assert exc_info.value.message == message

    def test_describe_image(self, make_engine):
        """Should return the description of the image."""
        engine, client = make_engine(reply({"description": "Leaking pipe under the sink."}))
        result = run_async(engine.execute_flow(
            "describe_image", {"imageDataUri": "data:image/jpeg;base64,/9j/4AAQ"}
        ))

        assert result.output == {"description": "Leaking pipe under the sink."}
        assert client.calls[0]["tools"] == []

    def test_hiring_assistant_keeps_markdown(self, make_engine):
        """Should keep the raw markdown and add an HTML copy."""
        markdown_text = "**Role:** AI Engineer\n\n- Build models"
        engine, _ = make_engine(reply({"jobDescription": markdown_text}))
        result = run_async(engine.execute_flow("hiring_assistant", {"need": "AI engineer"}))

        assert result.output["jobDescription"] == markdown_text
        assert "<strong>Role:</strong>" in result.output["jobDescriptionHtml"]
        assert "<li>Build models</li>" in result.output["jobDescriptionHtml"]

    def test_linkedin_post_rendered(self, make_engine):
        """Should render the post to HTML in place."""
        engine, _ = make_engine(reply({"linkedInPost": "🚀 **We're hiring!** #Hiring"}))
        result = run_async(engine.execute_flow("generate_linkedin_post", {"jobDescription": "Engineer"}))

        assert "<strong>We're hiring!</strong>" in result.output["linkedInPost"]

    def test_document_roles(self, make_engine):
        engine, _ = make_engine(reply({"rolesDescription": "Need a Frontend Developer."}))
        result = run_async(engine.execute_flow("analyze_document_for_roles", {"documentText": "SPA"}))
        assert result.output == {"rolesDescription": "Need a Frontend Developer."}


class TestFindProfiles:
    """Find Profiles: web search tool, degrades to an empty list."""

    def test_candidates_returned(self, make_engine):
        """Should return candidates with HTML summaries."""
        engine, _ = make_engine(
            call_tool("searchWebForExperts", {"query": "Top ML engineers on LinkedIn"}),
            reply({"suggestedCandidates": [
                {"name": "Jane Doe", "link": "https://linkedin.com/in/jane", "summary": "Built **ranking** systems"},
            ]}),
        )
        result = run_async(engine.execute_flow("find_profiles", {"jobDescription": "ML engineer"}))

        candidate = result.output["suggestedCandidates"][0]
        assert candidate["name"] == "Jane Doe"
        assert "<strong>ranking</strong>" in candidate["summary"]
        assert result.tool_invocations[0].result.metadata["search_status"] == "no_config"

    def test_failure_degrades_to_empty_list(self, make_engine):
        """Should return an empty candidate list, never raise."""
        engine, _ = make_engine(GenerationFailure("down"))
        result = run_async(engine.execute_flow("find_profiles", {"jobDescription": "ML engineer"}))

        assert result.output == {"suggestedCandidates": []}
        assert result.degraded is True

    def test_empty_generation_degrades(self, make_engine):
        engine, _ = make_engine(reply("nothing useful"))
        result = run_async(engine.execute_flow("find_profiles", {"jobDescription": "ML engineer"}))
        assert result.output == {"suggestedCandidates": []}


class TestFindProvidersInConversation:
    """Find Providers in Conversation: short-circuits, errors propagate."""

    def test_providers_found(self, make_engine):
        """Should return the canned reply with the matches."""
        engine, _ = make_engine(call_tool("findProvidersForProject", {"category": "Tutoring"}))
        result = run_async(engine.execute_flow("find_providers_in_conversation", {"need": "Math tutor"}))

        assert result.output["response"].startswith("I found a few professionals")
        assert [p["id"] for p in result.output["matchedProviders"]] == ["prov3"]

    def test_no_providers(self, make_engine):
        """Should return the canned no-match reply with an empty list."""
        engine, _ = make_engine(call_tool("findProvidersForProject", {"category": "Events"}))
        result = run_async(engine.execute_flow("find_providers_in_conversation", {"need": "Party planner"}))

        assert result.output["response"].startswith("I'm sorry, I couldn't find any available providers")
        assert result.output["matchedProviders"] == []

    def test_direct_answer_drops_model_matches(self, make_engine):
        """Should answer with an empty match list when no lookup ran."""
        engine, _ = make_engine(reply({"response": "Try these", "matchedProviders": [INVENTED_PROVIDER]}))
        result = run_async(engine.execute_flow("find_providers_in_conversation", {"need": "Movers"}))

        assert result.output == {"response": "Try these", "matchedProviders": []}

    def test_refused_lookup_is_not_empty_lookup(self, make_engine):
        """Should fall back to the rephrase reply, not the no-providers reply."""
        engine, client = make_engine(
            call_tool_raw("findProvidersForProject", "{not json"),
            reply("???"),
        )
        result = run_async(engine.execute_flow("find_providers_in_conversation", {"need": "Something"}))

        assert result.output["response"].startswith("I'm sorry, I wasn't able to find a specific provider")
        assert len(client.calls) == 2

    def test_no_output(self, make_engine):
        """Should ask the user to rephrase when there is no output at all."""
        engine, _ = make_engine(reply("???"))
        result = run_async(engine.execute_flow("find_providers_in_conversation", {"need": "Something"}))

        assert result.output == {
            "response": "I'm sorry, I wasn't able to find a specific provider for that. Could you try rephrasing your request?",
            "matchedProviders": [],
        }

    def test_errors_propagate_unmodified(self, make_engine):
        """Should let the original exception through."""
        engine, _ = make_engine(GenerationFailure("endpoint down"))
        with pytest.raises(GenerationFailure, match="endpoint down"):
            run_async(engine.execute_flow("find_providers_in_conversation", {"need": "Plumber"}))


class TestMatchCategory:
    """Match Category: normalizes to the offered spelling."""

    CATEGORIES = ["Plumbing", "Tutoring", "Moving"]

    def test_match(self, make_engine):
        engine, client = make_engine(reply({"matchedCategory": "Plumbing"}))
        result = run_async(engine.execute_flow(
            "match_category", {"userQuery": "fix a leaky pipe", "availableCategories": self.CATEGORIES}
        ))

        assert result.output == {"matchedCategory": "Plumbing"}
        prompt = client.calls[0]["messages"][-1]["content"]
        assert "- Plumbing\n- Tutoring\n- Moving\n" in prompt
        assert 'User Query: "fix a leaky pipe"' in prompt

    def test_no_match(self, make_engine):
        engine, _ = make_engine(reply({"matchedCategory": ""}))
        result = run_async(engine.execute_flow(
            "match_category", {"userQuery": "underwater basket weaving", "availableCategories": self.CATEGORIES}
        ))
        assert result.output == {"matchedCategory": ""}

    def test_case_normalized(self, make_engine):
        """Should return the category as spelled in the list."""
        engine, _ = make_engine(reply({"matchedCategory": " plumbing "}))
        result = run_async(engine.execute_flow(
            "match_category", {"userQuery": "pipes", "availableCategories": self.CATEGORIES}
        ))
        assert result.output == {"matchedCategory": "Plumbing"}

    def test_outside_list_becomes_empty(self, make_engine):
        """Should never return a category that was not offered."""
        engine, _ = make_engine(reply({"matchedCategory": "Doctor"}))
        result = run_async(engine.execute_flow(
            "match_category", {"userQuery": "healthcare", "availableCategories": self.CATEGORIES}
        ))
        assert result.output == {"matchedCategory": ""}


class TestMockMode:
    """Tests for mock mode."""

    def test_mock_tools(self, make_engine, monkeypatch):
        """Should use canned tool results when APP_MOCK_MODE is on."""
        monkeypatch.setenv("APP_MOCK_MODE", "true")
        get_settings.cache_clear()

        engine, _ = make_engine(
            call_tool("findProvidersForProject", {"category": "Gardening"}),
            directory_store=InMemoryDirectoryStore([provider("g1", "Gardening", available=False)]),
        )
        result = run_async(engine.execute_flow("chat_support", {"history": [], "newMessage": "Garden help"}))

        assert result.output["matchedProviders"][0]["name"] == "Mock Gardening Pros"
