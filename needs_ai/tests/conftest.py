"""
Shared fixtures for the Needs AI tests.

The model is replaced by a scripted client: each test lists the responses
the model should give, in order, and can inspect every request it received.
"""

import copy
import json
from typing import Any, Dict, List

import pytest

from needs_ai import api, directory
from needs_ai.config import get_settings
from needs_ai.directory import DEFAULT_PROVIDERS, InMemoryDirectoryStore
from needs_ai.engine import FlowEngine
from needs_ai.generation import ModelClient, ModelResponse, ToolCall
from needs_ai.models import ModelConfig, ServiceProvider
from needs_ai.registry import FlowRegistry


class ScriptedModelClient(ModelClient):
    """Plays back canned model responses; exceptions in the script are raised."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls: List[Dict[str, Any]] = []

    async def complete(self, messages, tools, config: ModelConfig) -> ModelResponse:
        self.calls.append({
            "messages": copy.deepcopy(messages),
            "tools": tools,
            "config": config,
        })
        if not self.responses:
            raise AssertionError("Model called more times than scripted")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def reply(payload: Any) -> ModelResponse:
    """A final answer from the model."""
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return ModelResponse(content=text)


def call_tool(name: str, arguments: Dict[str, Any], call_id: str = "call_1") -> ModelResponse:
    """A single tool call from the model."""
    return ModelResponse(tool_calls=[ToolCall(id=call_id, name=name, arguments=json.dumps(arguments))])


def call_tool_raw(name: str, arguments: str, call_id: str = "call_1") -> ModelResponse:
    """A tool call whose argument text is passed through unparsed."""
    return ModelResponse(tool_calls=[ToolCall(id=call_id, name=name, arguments=arguments)])


def provider(id: str, category: str, available: bool = True) -> ServiceProvider:
    return ServiceProvider(
        id=id,
        name=f"{category} {id}",
        category=category,
        phone_number="555-0000",
        avg_cost=10,
        available=available,
    )


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Isolate tests from the developer's environment and shared singletons."""
    for name in ("SERP_API_KEY", "APP_MOCK_MODE", "LAKEBASE_HOST", "ENVIRONMENT", "MAX_TOOL_ROUNDS"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    directory.set_directory_store(None)
    monkeypatch.setattr(api, "_engine", None)
    yield
    get_settings.cache_clear()
    directory.set_directory_store(None)


@pytest.fixture(scope="session")
def registry():
    """The real registry, loaded from the package's manifests."""
    reg = FlowRegistry()
    reg.load()
    return reg


@pytest.fixture
def store():
    return InMemoryDirectoryStore(DEFAULT_PROVIDERS)


@pytest.fixture
def make_engine(registry, store):
    """Build an engine whose model plays back the given responses."""
    def _make(*responses, directory_store=None):
        client = ScriptedModelClient(responses)
        engine = FlowEngine(registry, model_client=client, store=directory_store or store)
        return engine, client
    return _make
