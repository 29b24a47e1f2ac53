"""
Needs AI - Flow Engine
======================

The orchestration engine that executes a flow by:
1. Validating the caller's input against the flow's input schema
2. Rendering the flow's prompt template
3. Invoking the model, running any tools it calls
4. Resolving the final output (directly, or from tool results)
5. Applying the flow's fallback policy when there is no usable output
6. Validating and post-processing the output

State machine (per invocation):
    validating → rendering → generating → (tool_executing)? → resolving
    → post_processing → done, with `failed` reachable from any step.

The engine keeps no per-invocation state on the instance; one engine
serves any number of concurrent flows.
"""

import copy
import logging
import time
from typing import Any, Dict, List, Optional, Type

from needs_ai import postprocess, schema
from needs_ai.config import get_settings
from needs_ai.directory import DirectoryStore
from needs_ai.errors import FlowError, FlowNotFoundError, SchemaValidationError
from needs_ai.executors.base import BaseExecutor, ToolServices
from needs_ai.executors.directory_executor import DirectoryLookupExecutor
from needs_ai.executors.web_search_executor import WebSearchExecutor
from needs_ai.generation import GenerationInvoker, ModelClient, get_model_client
from needs_ai.models import (
    FallbackStrategy,
    FlowDefinition,
    FlowResult,
    FlowState,
    GenerationRequest,
    ToolInvocation,
    ToolManifest,
    ToolResult,
    ToolType,
)
from needs_ai.resolvers import get_resolver

logger = logging.getLogger(__name__)


# Mapping from tool type to executor class
EXECUTOR_MAP: Dict[ToolType, Type[BaseExecutor]] = {
    ToolType.DIRECTORY_LOOKUP: DirectoryLookupExecutor,
    ToolType.WEB_SEARCH: WebSearchExecutor,
}

DEFAULT_ERROR_MESSAGE = (
    "The AI service is currently unavailable or encountered an error. Please try again later."
)


class FlowEngine:
    """
    Orchestration engine that executes declarative, tool-aware flows.

    Args:
        registry: A FlowRegistry for looking up flows and tools.
        model_client: Model backend. Defaults to the serving endpoint client.
        store: Directory store handed to the lookup tool. Defaults to the
            process-wide store.
        max_tool_rounds: Override for the tool round limit.
    """

    def __init__(
        self,
        registry: Any,
        model_client: Optional[ModelClient] = None,
        store: Optional[DirectoryStore] = None,
        max_tool_rounds: Optional[int] = None,
    ):
        self.registry = registry
        self.model_client = model_client
        self.store = store
        self.max_tool_rounds = max_tool_rounds
        self._executor_cache: Dict[str, BaseExecutor] = {}
        self._invoker: Optional[GenerationInvoker] = None

    async def execute_flow(
        self,
        flow_id: str,
        inputs: Dict[str, Any],
        mock_mode: Optional[bool] = None,
    ) -> FlowResult:
        """
        Execute a complete flow.

        Args:
            flow_id: ID of the flow to execute.
            inputs: Caller input, keyed by the flow's input field names.
            mock_mode: Override mock mode (defaults to APP_MOCK_MODE).

        Returns:
            FlowResult with the final output and every tool invocation.

        Raises:
            FlowNotFoundError: No flow with this ID is registered.
            SchemaValidationError: The input does not match the flow's input schema.
            FlowError: The flow failed and its policy is to raise.
        """
        start_time = time.time()
        logger.info(f"[FlowEngine] Executing flow: {flow_id}")

        flow = self.registry.get_flow(flow_id)
        if not flow:
            raise FlowNotFoundError(f"Flow not found: {flow_id}", context={"flow_id": flow_id})

        if mock_mode is None:
            mock_mode = get_settings().mock_mode

        # Input validation is never subject to the flow's fallback policy
        self._transition(flow_id, FlowState.VALIDATING)
        validated = schema.validate(flow.input_schema, inputs, label=f"input for {flow_id}")

        invocations: List[ToolInvocation] = []
        degraded = False
        try:
            output = await self._run(flow, validated, mock_mode, invocations)
            if output is None:
                logger.warning(f"[FlowEngine] Flow {flow_id} produced no usable output")
                output = self._apply_fallback(flow)
                degraded = True
        except FlowError:
            self._transition(flow_id, FlowState.FAILED)
            raise
        except Exception as e:
            if flow.propagate_errors:
                self._transition(flow_id, FlowState.FAILED)
                raise
            logger.error(f"[FlowEngine] Flow {flow_id} failed: {e}", exc_info=True)
            output = self._apply_fallback(flow, cause=e)
            degraded = True

        total_latency = int((time.time() - start_time) * 1000)
        self._transition(flow_id, FlowState.DONE)
        logger.info(
            f"[FlowEngine] Flow {flow_id} completed in {total_latency}ms"
            + (" (degraded)" if degraded else "")
        )

        return FlowResult(
            flow_id=flow_id,
            state=FlowState.DONE,
            output=output,
            tool_invocations=invocations,
            total_latency_ms=total_latency,
            degraded=degraded,
        )

    async def _run(
        self,
        flow: FlowDefinition,
        inputs: Dict[str, Any],
        mock_mode: bool,
        invocations: List[ToolInvocation],
    ) -> Optional[Dict[str, Any]]:
        """Render, generate, resolve and post-process. None means no usable output."""
        self._transition(flow.flow_id, FlowState.RENDERING)
        template = self.registry.get_template(flow.flow_id)
        prompt = template.render(inputs)

        tools = [self.registry.get_tool(tool_id) for tool_id in flow.tools]
        request = GenerationRequest(
            prompt=prompt,
            output_schema=flow.output_schema,
            tools=[t for t in tools if t is not None],
            config=flow.config,
            stop_after_tools=flow.tool_policy.short_circuit,
        )

        async def run_tool(manifest: ToolManifest, arguments: Dict[str, Any], call_id: str) -> ToolResult:
            self._transition(flow.flow_id, FlowState.TOOL_EXECUTING)
            executor = self._get_executor(manifest)
            return await executor.execute(arguments, call_id=call_id, mock_mode=mock_mode)

        self._transition(flow.flow_id, FlowState.GENERATING)
        generation = await self._get_invoker().invoke(request, run_tool=run_tool)
        invocations.extend(generation.tool_invocations)

        self._transition(flow.flow_id, FlowState.RESOLVING)
        resolved = get_resolver(flow.resolver)(flow, inputs, generation)
        if resolved is None:
            return None

        try:
            output = schema.validate(flow.output_schema, resolved, label=f"output of {flow.flow_id}")
        except SchemaValidationError as e:
            logger.warning(f"[FlowEngine] Resolved output rejected: {e.message}")
            return None

        self._transition(flow.flow_id, FlowState.POST_PROCESSING)
        return postprocess.apply(output, flow.postprocess)

    # =========================================================================
    # Fallback
    # =========================================================================

    def _apply_fallback(self, flow: FlowDefinition, cause: Optional[Exception] = None) -> Dict[str, Any]:
        """Degrade to the flow's default output, or raise a caller-safe FlowError."""
        fb = flow.fallback
        if fb.strategy == FallbackStrategy.DEFAULT_VALUE:
            logger.info(f"[FlowEngine] Flow {flow.flow_id} degraded to its default output")
            return copy.deepcopy(fb.default_value) if fb.default_value is not None else {}

        if fb.strategy == FallbackStrategy.SKIP:
            return {}

        self._transition(flow.flow_id, FlowState.FAILED)
        message = fb.error_message or DEFAULT_ERROR_MESSAGE
        error = FlowError(message, context={"flow_id": flow.flow_id})
        if cause is not None:
            raise error from cause
        raise error

    # =========================================================================
    # Collaborators
    # =========================================================================

    def _get_invoker(self) -> GenerationInvoker:
        if self._invoker is None:
            if self.model_client is None:
                self.model_client = get_model_client()
            self._invoker = GenerationInvoker(self.model_client, max_tool_rounds=self.max_tool_rounds)
        return self._invoker

    def _get_executor(self, manifest: ToolManifest) -> BaseExecutor:
        """Get or create an executor for a tool."""
        if manifest.tool_id in self._executor_cache:
            return self._executor_cache[manifest.tool_id]

        executor_class = EXECUTOR_MAP.get(manifest.type)
        if not executor_class:
            raise ValueError(f"No executor for tool type: {manifest.type}")

        services = ToolServices(store=self.store, model_client=self.model_client)
        executor = executor_class(manifest, services)
        self._executor_cache[manifest.tool_id] = executor
        return executor

    @staticmethod
    def _transition(flow_id: str, state: FlowState) -> None:
        logger.debug(f"[FlowEngine] {flow_id} -> {state.value}")
