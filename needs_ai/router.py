"""
Needs AI - FastAPI Router Integration
=====================================

Exposes the flow engine and the provider directory as API endpoints.

Endpoints (mounted under /api):
    POST /flows/{flow_id}            → Execute a flow
    GET  /flows?tag=                 → List flows, optionally by tag
    GET  /flows/{flow_id}            → Get flow details
    GET  /flows-health               → Registry health check
    GET  /providers?category=        → Available providers in a category
    POST /providers/smart-search     → Providers for a free-text need
    POST /providers/seed             → Seed the default providers

Error mapping:
    SchemaValidationError → 422 (message + offending fields)
    FlowNotFoundError     → 404
    FlowError             → 502 (caller-safe message only)
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from needs_ai.api import get_engine, get_registry
from needs_ai.directory import find_providers_by_category, seed_providers
from needs_ai.errors import FlowError, FlowNotFoundError, SchemaValidationError
from needs_ai.models import SeedResult, ServiceProvider
from needs_ai.search import find_providers_by_smart_search

logger = logging.getLogger(__name__)

router = APIRouter(tags=["needs-ai"])


# =============================================================================
# Request/Response Models
# =============================================================================

class FlowExecuteRequest(BaseModel):
    """Request to execute a flow."""
    inputs: Dict[str, Any] = Field(default_factory=dict)
    mock_mode: Optional[bool] = None


class ToolInvocationSummary(BaseModel):
    """Summary of a tool call made during a flow."""
    tool_id: str
    call_id: str
    status: str
    latency_ms: int
    error: Optional[str] = None


class FlowExecuteResponse(BaseModel):
    """Response from flow execution."""
    flow_id: str
    state: str
    output: Dict[str, Any]
    tools: List[ToolInvocationSummary]
    total_latency_ms: int
    degraded: bool = False


class SmartSearchRequest(BaseModel):
    description: str


class FlowSummary(BaseModel):
    """Summary of a registered flow."""
    flow_id: str
    name: str
    description: Optional[str] = None
    tools: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    version: int = 1


# =============================================================================
# Error mapping
# =============================================================================

def _to_http_error(error: Exception) -> HTTPException:
    if isinstance(error, SchemaValidationError):
        return HTTPException(
            status_code=422,
            detail={"message": error.message, "fields": error.fields},
        )
    if isinstance(error, FlowNotFoundError):
        return HTTPException(status_code=404, detail=error.message)
    return HTTPException(status_code=502, detail=error.message)


# =============================================================================
# Flow endpoints
# =============================================================================

@router.post("/flows/{flow_id}", response_model=FlowExecuteResponse)
async def execute_flow(flow_id: str, request: FlowExecuteRequest) -> FlowExecuteResponse:
    """
    Execute a flow by ID.

    Validates the inputs, runs generation (and any tools the model calls)
    and returns the resolved, post-processed output.
    """
    engine = get_engine()

    logger.info(f"[NeedsRouter] Executing flow: {flow_id}")

    try:
        result = await engine.execute_flow(
            flow_id=flow_id,
            inputs=request.inputs,
            mock_mode=request.mock_mode,
        )
    except (SchemaValidationError, FlowError) as e:
        logger.warning(f"[NeedsRouter] Flow {flow_id} rejected: {e.message}")
        raise _to_http_error(e) from e

    tool_summaries = [
        ToolInvocationSummary(
            tool_id=inv.tool_id,
            call_id=inv.call_id,
            status=inv.result.status.value,
            latency_ms=inv.result.latency_ms,
            error=inv.result.error,
        )
        for inv in result.tool_invocations
    ]

    return FlowExecuteResponse(
        flow_id=result.flow_id,
        state=result.state.value,
        output=result.output,
        tools=tool_summaries,
        total_latency_ms=result.total_latency_ms,
        degraded=result.degraded,
    )


@router.get("/flows")
async def list_flows(tag: Optional[str] = None):
    """List all registered flows, optionally only those with a tag."""
    registry = get_registry()
    flows = registry.get_flows_by_tag(tag) if tag else registry.list_flows()
    return {
        "flows": [
            FlowSummary(
                flow_id=f.flow_id,
                name=f.name,
                description=f.description,
                tools=f.tools,
                tags=f.tags,
                version=f.version,
            ).model_dump()
            for f in flows
        ]
    }


@router.get("/flows/{flow_id}")
async def get_flow_detail(flow_id: str):
    """Get detailed information about a specific flow."""
    registry = get_registry()
    flow = registry.get_flow(flow_id)
    if not flow:
        raise HTTPException(status_code=404, detail=f"Flow not found: {flow_id}")

    return {
        "flow_id": flow.flow_id,
        "name": flow.name,
        "description": flow.description,
        "version": flow.version,
        "tools": [
            {"tool_id": t.tool_id, "name": t.name, "type": t.type.value}
            for t in (registry.get_tool(tool_id) for tool_id in flow.tools)
            if t is not None
        ],
        "short_circuit": flow.tool_policy.short_circuit,
        "resolver": flow.resolver,
        "input_schema": [f.model_dump(exclude_none=True) for f in flow.input_schema],
        "output_schema": [f.model_dump(exclude_none=True) for f in flow.output_schema],
        "fallback": flow.fallback.strategy.value,
        "propagate_errors": flow.propagate_errors,
        "postprocess": [r.model_dump(exclude_none=True) for r in flow.postprocess],
        "tags": flow.tags,
    }


@router.get("/flows-health")
async def flows_health():
    """Health check for the flow registry."""
    try:
        registry = get_registry()
        return {
            "status": "ok",
            "tools_loaded": len(registry.list_tools()),
            "flows_loaded": len(registry.list_flows()),
        }
    except Exception as e:
        logger.error(f"[NeedsRouter] Registry health check failed: {e}", exc_info=True)
        return {
            "status": "error",
            "error": str(e),
        }


# =============================================================================
# Provider endpoints
# =============================================================================

@router.get("/providers", response_model=List[ServiceProvider])
async def get_providers(category: str = "") -> List[ServiceProvider]:
    """Available providers whose category matches exactly."""
    try:
        return await find_providers_by_category(category)
    except FlowError as e:
        raise _to_http_error(e) from e


@router.post("/providers/smart-search", response_model=List[ServiceProvider])
async def smart_search(request: SmartSearchRequest) -> List[ServiceProvider]:
    """Providers for a free-text need, via category matching."""
    try:
        return await find_providers_by_smart_search(request.description, engine=get_engine())
    except (SchemaValidationError, FlowError) as e:
        raise _to_http_error(e) from e


@router.post("/providers/seed", response_model=SeedResult)
async def seed() -> SeedResult:
    """Seed the default providers. Failures are reported in the body."""
    return await seed_providers()
