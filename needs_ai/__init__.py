"""
Needs AI
========

Prompt-driven, tool-aware generation flows for the YOLO Needs app.

Flows and tools are YAML manifests. A flow renders a prompt from validated
input, lets the model call the tools it lists (provider directory lookup,
web search), resolves the final output and post-processes it for display.

Architecture Layers:
    1. Flow Registry    - Loads tool manifests, flow definitions and shared schemas
    2. Executors        - Typed runners for each tool type
    3. Generation       - Model client and the tool-calling loop
    4. Flow Engine      - Validation, resolution, fallback policy, post-processing
    5. Directory        - Provider store, seeding and smart search

Usage:
    from needs_ai import FlowRegistry, FlowEngine

    registry = FlowRegistry()
    engine = FlowEngine(registry)
    result = await engine.execute_flow("analyze_need", {"description": "My sink is leaking"})
"""

__version__ = "0.1.0"

from needs_ai.registry import FlowRegistry
from needs_ai.engine import FlowEngine
from needs_ai.errors import FlowError, NeedsAIError, SchemaValidationError
from needs_ai.models import FlowDefinition, FlowResult, ToolManifest, ToolResult

__all__ = [
    "FlowRegistry",
    "FlowEngine",
    "FlowDefinition",
    "FlowResult",
    "ToolManifest",
    "ToolResult",
    "FlowError",
    "NeedsAIError",
    "SchemaValidationError",
]
