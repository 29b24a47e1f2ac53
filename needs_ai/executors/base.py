"""
Needs AI - Base Executor
========================

Abstract base class for all tool executors. Provides common lifecycle hooks:
- Input validation against the tool's input schema
- Execution (or mock execution)
- Fallback handling for expected failures
- Result status classification

Expected failures (`ToolExecutionError`, timeouts, invalid input) never leave
the executor: they become a structured fallback result. Anything else is a
programming error and propagates to the flow engine.
"""

import copy
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from needs_ai import schema
from needs_ai.errors import SchemaValidationError, ToolExecutionError
from needs_ai.models import (
    FallbackStrategy,
    ToolManifest,
    ToolResult,
    ToolStatus,
)

logger = logging.getLogger(__name__)


# Reserved output key for result metadata; stripped before the model sees it
META_KEY = "_meta"


@dataclass
class ToolServices:
    """Collaborators an executor may need. Unset ones are resolved lazily."""
    store: Optional[Any] = None          # DirectoryStore
    model_client: Optional[Any] = None   # ModelClient


class BaseExecutor(ABC):
    """
    Abstract base class for tool executors.

    Subclasses implement `_execute()` and optionally `_mock_execute()` and
    `_result_status()`. The base class handles validation, timing, fallback
    and logging.
    """

    def __init__(self, manifest: ToolManifest, services: Optional[ToolServices] = None):
        """
        Initialize the executor with a tool manifest.

        Args:
            manifest: The tool's declarative configuration.
            services: Shared collaborators (directory store, model client).
        """
        self.manifest = manifest
        self.tool_id = manifest.tool_id
        self.services = services or ToolServices()

    async def execute(
        self,
        inputs: Dict[str, Any],
        call_id: str = "",
        mock_mode: bool = False,
    ) -> ToolResult:
        """
        Execute the tool with full lifecycle management.

        Args:
            inputs: Arguments chosen by the model, keyed by field name.
            call_id: The model's tool call ID (for logging and correlation).
            mock_mode: Whether to use mock execution.

        Returns:
            ToolResult with output data and metadata.
        """
        start_time = time.time()
        label = self.tool_id + (f"/{call_id}" if call_id else "")

        logger.info(f"[Executor:{label}] Starting execution")
        logger.debug(f"[Executor:{label}] Inputs: {list(inputs.keys())}")

        try:
            validated = schema.validate(
                self.manifest.input_schema, inputs, label=f"input for tool {self.tool_id}"
            )
        except SchemaValidationError as e:
            logger.error(f"[Executor:{label}] Validation failed: {e.message}")
            return self._handle_fallback(call_id, e.message, start_time)

        try:
            if mock_mode and self.manifest.mock_enabled:
                logger.info(f"[Executor:{label}] Running in MOCK mode")
                output = await self._mock_execute(validated)
            else:
                output = await self._execute(validated)

        except ToolExecutionError as e:
            logger.warning(f"[Executor:{label}] Expected failure: {e}")
            return self._handle_fallback(call_id, e.message, start_time)

        except TimeoutError as e:
            latency_ms = int((time.time() - start_time) * 1000)
            logger.warning(f"[Executor:{label}] Timed out after {latency_ms}ms")
            return self._handle_fallback(call_id, f"Timeout: {e}", start_time, ToolStatus.TIMEOUT)

        metadata = output.pop(META_KEY, {}) if isinstance(output, dict) else {}
        status = self._result_status(output, metadata)
        latency_ms = int((time.time() - start_time) * 1000)
        logger.info(f"[Executor:{label}] {status.value} in {latency_ms}ms")

        return ToolResult(
            tool_id=self.tool_id,
            call_id=call_id,
            status=status,
            output=output,
            error=metadata.get("error"),
            latency_ms=latency_ms,
            metadata=metadata,
        )

    # =========================================================================
    # Template methods for subclasses
    # =========================================================================

    @abstractmethod
    async def _execute(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        """
        Execute the tool logic.

        Args:
            inputs: Validated input values.

        Returns:
            Dict of output field name → value. May carry a `_meta` dict that
            ends up in `ToolResult.metadata`.

        Raises:
            ToolExecutionError: For expected failures; the fallback applies.
        """
        ...

    async def _mock_execute(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        """
        Mock execution for development/testing.

        Default implementation returns schema defaults. Override in subclass.
        """
        return {field.name: field.default for field in self.manifest.output_schema}

    def _result_status(self, output: Dict[str, Any], metadata: Dict[str, Any]) -> ToolStatus:
        """Classify a completed execution. Override to report NO_DATA and friends."""
        return ToolStatus.SUCCESS

    # =========================================================================
    # Internal helpers
    # =========================================================================

    def _handle_fallback(
        self,
        call_id: str,
        error: str,
        start_time: float,
        status: ToolStatus = ToolStatus.FAILURE,
    ) -> ToolResult:
        """Apply the manifest's fallback strategy on failure."""
        latency_ms = int((time.time() - start_time) * 1000)
        fb = self.manifest.fallback

        if fb.strategy == FallbackStrategy.DEFAULT_VALUE and fb.default_value is not None:
            default = fb.default_value if isinstance(fb.default_value, dict) else {"result": fb.default_value}
            return ToolResult(
                tool_id=self.tool_id,
                call_id=call_id,
                status=status,
                output=copy.deepcopy(default),
                error=error,
                latency_ms=latency_ms,
                metadata={"fallback_strategy": "default_value"},
            )

        # Tools never raise to the model; "raise" degrades to skip here
        return ToolResult(
            tool_id=self.tool_id,
            call_id=call_id,
            status=ToolStatus.SKIPPED,
            output={},
            error=error,
            latency_ms=latency_ms,
            metadata={"fallback_strategy": "skip"},
        )
