"""
Needs AI - Generation Invoker
=============================

Sends a rendered prompt, the expected output schema and the offered tools to
a chat-completions model and drives the tool-call protocol:

    1. The model receives tool descriptors alongside the prompt
    2. It answers directly, or asks for one or more tool calls
    3. Requested tools run locally; their outputs go back as `tool` messages
    4. Repeat until a final answer, the round limit, or (for short-circuit
       flows) the first round that ran a tool

The final answer is parsed as JSON and validated against the output schema.
Unusable output yields `GenerationResult.output = None`, never an exception.

Model access goes through the `ModelClient` interface. The production
client talks to a Databricks model serving endpoint through the
OpenAI-compatible client from `databricks-sdk`.
"""

import asyncio
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from needs_ai import schema
from needs_ai.config import Settings, get_settings, resolve_env_var
from needs_ai.errors import GenerationFailure, SchemaValidationError
from needs_ai.models import (
    FieldSchema,
    GenerationRequest,
    GenerationResult,
    ModelConfig,
    ToolInvocation,
    ToolManifest,
    ToolResult,
    ToolStatus,
)

logger = logging.getLogger(__name__)


FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)

# (manifest, arguments, call_id) -> result
ToolRunner = Callable[[ToolManifest, Dict[str, Any], str], Awaitable[ToolResult]]


# =============================================================================
# Model client interface
# =============================================================================

@dataclass
class ToolCall:
    """A tool call requested by the model. `arguments` is the raw JSON text."""
    id: str
    name: str
    arguments: str = "{}"


@dataclass
class ModelResponse:
    content: Optional[str] = None
    tool_calls: List[ToolCall] = field(default_factory=list)


class ModelClient(ABC):
    """A chat-completions model."""

    @abstractmethod
    async def complete(
        self,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        config: ModelConfig,
    ) -> ModelResponse:
        """
        Run one completion.

        Raises:
            GenerationFailure: When the model service cannot be reached or
                rejects the request.
        """
        ...


class ServingEndpointClient(ModelClient):
    """
    Databricks model serving through the OpenAI-compatible API.

    The OpenAI client comes from `WorkspaceClient().serving_endpoints
    .get_open_ai_client()`, so authentication follows the standard Databricks
    SDK chain. Calls are blocking and run in a worker thread.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._client = None

    def _get_client(self):
        """
        Lazy-load the OpenAI client for the workspace.

        Raises:
            GenerationFailure: When the workspace client cannot be configured
                (missing host, failed authentication).
        """
        if self._client is None:
            from databricks.sdk import WorkspaceClient

            try:
                self._client = WorkspaceClient().serving_endpoints.get_open_ai_client()
            except Exception as e:
                logger.error(f"[ServingEndpoint] Could not create serving client: {e}")
                raise GenerationFailure("Model serving client unavailable", {"error": str(e)}) from e
        return self._client

    def _endpoint_name(self, config: ModelConfig) -> str:
        endpoint = resolve_env_var(config.endpoint)
        if not endpoint or endpoint.startswith("${"):
            endpoint = self.settings.serving_endpoint
        # Accept full invocation URLs as well as bare endpoint names
        return endpoint.split("/serving-endpoints/")[-1].split("/")[0]

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        config: ModelConfig,
    ) -> ModelResponse:
        import openai

        kwargs: Dict[str, Any] = {
            "model": self._endpoint_name(config),
            "messages": messages,
            "temperature": config.temperature if config.temperature is not None else self.settings.model_temperature,
            "max_tokens": config.max_tokens or self.settings.model_max_tokens,
        }
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        elif config.json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        logger.info(f"[ServingEndpoint] Calling endpoint: {kwargs['model']}")

        client = self._get_client()
        try:
            response = await asyncio.to_thread(client.chat.completions.create, **kwargs)
        except openai.OpenAIError as e:
            raise GenerationFailure(
                "Model serving call failed", {"endpoint": kwargs["model"], "error": str(e)}
            ) from e

        if not response.choices:
            return ModelResponse()

        message = response.choices[0].message
        return ModelResponse(
            content=message.content,
            tool_calls=[
                ToolCall(id=tc.id, name=tc.function.name, arguments=tc.function.arguments or "{}")
                for tc in (message.tool_calls or [])
            ],
        )


_model_client: Optional[ModelClient] = None


def get_model_client() -> ModelClient:
    """Get or create the process model client."""
    global _model_client
    if _model_client is None:
        _model_client = ServingEndpointClient()
    return _model_client


# =============================================================================
# Generation Invoker
# =============================================================================

class GenerationInvoker:
    """
    Runs one generation, including any tool rounds the model asks for.

    Holds no per-invocation state; one instance serves concurrent flows.
    """

    def __init__(self, client: ModelClient, max_tool_rounds: Optional[int] = None):
        self.client = client
        self.max_tool_rounds = (
            max_tool_rounds if max_tool_rounds is not None else get_settings().max_tool_rounds
        )

    async def invoke(
        self,
        request: GenerationRequest,
        run_tool: Optional[ToolRunner] = None,
    ) -> GenerationResult:
        """
        Invoke the model.

        Args:
            request: Prompt, output schema, offered tools and model config.
            run_tool: Executes a tool call. Required when tools are offered.

        Returns:
            GenerationResult with validated output (or None) and every tool
            invocation that happened along the way.
        """
        messages = build_messages(request)
        descriptors = [tool_descriptor(t) for t in request.tools]
        offered = {t.name: t for t in request.tools}
        invocations: List[ToolInvocation] = []

        for round_no in range(1, self.max_tool_rounds + 2):
            logger.debug(f"[Invoker] Round {round_no}, {len(messages)} messages")
            response = await self.client.complete(messages, descriptors, request.config)

            if not response.tool_calls:
                output = parse_output(response.content, request.output_schema)
                return GenerationResult(
                    output=output,
                    tool_invocations=invocations,
                    rounds=round_no,
                    raw_text=response.content,
                )

            if round_no > self.max_tool_rounds:
                logger.warning(f"[Invoker] Tool round limit ({self.max_tool_rounds}) reached without a final answer")
                break

            messages.append({
                "role": "assistant",
                "content": response.content,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": call.arguments},
                    }
                    for call in response.tool_calls
                ],
            })

            executed = False
            for call in response.tool_calls:
                invocation = await self._run_call(call, offered, run_tool)
                executed = executed or invocation.executed
                invocations.append(invocation)
                messages.append({
                    "role": "tool",
                    "tool_call_id": call.id,
                    "content": json.dumps(_tool_message(invocation.result), default=str),
                })

            if request.stop_after_tools and executed:
                logger.debug("[Invoker] Short-circuit after tool round")
                return GenerationResult(
                    output=None,
                    tool_invocations=invocations,
                    rounds=round_no,
                )

        return GenerationResult(
            output=None,
            tool_invocations=invocations,
            rounds=self.max_tool_rounds + 1,
        )

    async def _run_call(
        self,
        call: ToolCall,
        offered: Dict[str, ToolManifest],
        run_tool: Optional[ToolRunner],
    ) -> ToolInvocation:
        manifest = offered.get(call.name)
        arguments = parse_arguments(call.arguments)

        if manifest is None or run_tool is None:
            logger.warning(f"[Invoker] Model called a tool that was not offered: {call.name}")
            result = ToolResult(
                tool_id=call.name,
                call_id=call.id,
                status=ToolStatus.FAILURE,
                output={"error": f"Unknown tool: {call.name}"},
                error="tool_not_offered",
            )
            return ToolInvocation(
                tool_id=call.name, call_id=call.id, arguments=arguments or {}, result=result, executed=False
            )

        if arguments is None:
            logger.warning(f"[Invoker] Unparseable arguments for {call.name}: {call.arguments[:200]}")
            result = ToolResult(
                tool_id=manifest.tool_id,
                call_id=call.id,
                status=ToolStatus.FAILURE,
                output={"error": "Tool arguments were not valid JSON"},
                error="invalid_arguments",
            )
            return ToolInvocation(tool_id=manifest.tool_id, call_id=call.id, result=result, executed=False)

        result = await run_tool(manifest, arguments, call.id)
        return ToolInvocation(
            tool_id=manifest.tool_id,
            call_id=call.id,
            arguments=arguments,
            result=result,
        )


# =============================================================================
# Message building
# =============================================================================

def build_messages(request: GenerationRequest) -> List[Dict[str, Any]]:
    """Build the chat-completions messages for a request."""
    messages: List[Dict[str, Any]] = []

    if request.output_schema:
        output_schema = json.dumps(schema.json_schema(request.output_schema, "Output"), indent=2)
        messages.append({
            "role": "system",
            "content": (
                "Respond with a single JSON object that conforms to this JSON Schema. "
                "Do not wrap it in markdown and do not add any other text.\n\n"
                f"{output_schema}"
            ),
        })

    if request.prompt.media:
        parts: List[Dict[str, Any]] = [{"type": "text", "text": request.prompt.text}]
        for media in request.prompt.media:
            parts.append({"type": "image_url", "image_url": {"url": media.url}})
        messages.append({"role": "user", "content": parts})
    else:
        messages.append({"role": "user", "content": request.prompt.text})

    return messages


def tool_descriptor(manifest: ToolManifest) -> Dict[str, Any]:
    """Describe a tool in OpenAI function-calling format."""
    parameters = schema.json_schema(manifest.input_schema, f"{manifest.tool_id}_input")
    return {
        "type": "function",
        "function": {
            "name": manifest.name,
            "description": manifest.description or "",
            "parameters": {
                "type": "object",
                "properties": parameters.get("properties", {}),
                "required": parameters.get("required", []),
            },
        },
    }


def _tool_message(result: ToolResult) -> Dict[str, Any]:
    """What the model sees of a tool result."""
    if result.output:
        return result.output
    return {"error": result.error or "Tool returned no data"}


# =============================================================================
# Output parsing
# =============================================================================

def parse_arguments(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def extract_json(text: Optional[str]) -> Optional[Any]:
    """
    Pull a JSON object out of model text.

    Tolerates markdown fences and prose around the object.
    """
    if not text:
        return None
    candidates = [text.strip()]
    fenced = FENCE_PATTERN.search(text)
    if fenced:
        candidates.append(fenced.group(1).strip())
    first, last = text.find("{"), text.rfind("}")
    if first != -1 and last > first:
        candidates.append(text[first:last + 1])

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    return None


def parse_output(text: Optional[str], output_schema: List[FieldSchema]) -> Optional[Dict[str, Any]]:
    """Parse and validate the final answer; None when unusable."""
    value = extract_json(text)
    if not isinstance(value, dict):
        logger.warning("[Invoker] Model output is not a JSON object")
        return None
    if not output_schema:
        return value
    try:
        return schema.validate(output_schema, value, label="model output")
    except SchemaValidationError as e:
        logger.warning(f"[Invoker] Model output failed validation: {e.fields}")
        return None
