"""
Needs AI - Core Models
======================

Pydantic models that define the schema for tools, flows, generation and
execution results, plus the typed inputs and outputs of every flow.
These models are the contract between all layers of the package.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# =============================================================================
# Enums
# =============================================================================

class ToolType(str, Enum):
    """Supported tool executor types."""
    DIRECTORY_LOOKUP = "directory_lookup"
    WEB_SEARCH = "web_search"


class ToolStatus(str, Enum):
    """Execution status of a tool call."""
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"
    TIMEOUT = "timeout"
    NO_DATA = "no_data"


class FallbackStrategy(str, Enum):
    """What to do when a tool or flow cannot produce a result."""
    RAISE = "raise"                  # Raise a caller-safe FlowError
    DEFAULT_VALUE = "default_value"  # Return a static default
    SKIP = "skip"                    # Return an empty output


class PromptSource(str, Enum):
    """Where to load a prompt template from."""
    INLINE = "inline"              # Defined directly in the manifest
    REGISTRY = "registry"          # Databricks Prompt Registry URI
    FILE = "file"                  # Local file path


class FlowState(str, Enum):
    """Lifecycle of a single flow invocation."""
    VALIDATING = "validating"
    RENDERING = "rendering"
    GENERATING = "generating"
    TOOL_EXECUTING = "tool_executing"
    RESOLVING = "resolving"
    POST_PROCESSING = "post_processing"
    DONE = "done"
    FAILED = "failed"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


# =============================================================================
# Shared configuration
# =============================================================================

class FieldSchema(BaseModel):
    """
    Schema definition for an input or output field.

    Lists describe their elements with `items`; objects describe their
    members with `fields`. `ref` names a shared schema declared in
    registry.yaml and is expanded when the registry loads.
    """
    model_config = ConfigDict(frozen=True)

    name: str = ""
    type: str = "string"  # string, number, integer, boolean, list, object
    required: bool = True
    description: Optional[str] = None
    default: Optional[Any] = None
    items: Optional[FieldSchema] = None
    fields: List[FieldSchema] = Field(default_factory=list)
    enum: Optional[List[str]] = None
    pattern: Optional[str] = None
    ref: Optional[str] = None


class FallbackConfig(BaseModel):
    """Configuration for failure handling."""
    model_config = ConfigDict(frozen=True)

    strategy: FallbackStrategy = FallbackStrategy.SKIP
    default_value: Optional[Any] = None
    error_message: Optional[str] = None


class PromptConfig(BaseModel):
    """Configuration for prompt loading."""
    model_config = ConfigDict(frozen=True)

    source: PromptSource = PromptSource.INLINE
    inline_text: Optional[str] = None
    registry_uri: Optional[str] = None
    file_path: Optional[str] = None
    version: Optional[int] = None


class ModelConfig(BaseModel):
    """Generation settings for a flow or a tool's internal generation."""
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    endpoint: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    json_mode: bool = True


# =============================================================================
# Tool Manifest
# =============================================================================

class ToolConfig(BaseModel):
    """Provider-specific configuration for a tool."""
    model_config = ConfigDict(frozen=True)

    provider: Optional[str] = None
    api_key_env: Optional[str] = None
    timeout_seconds: Optional[int] = None
    max_results: Optional[int] = None
    # Internal generation step (web search summarization)
    prompt: Optional[PromptConfig] = None
    model: ModelConfig = Field(default_factory=ModelConfig)
    summary_schema: List[FieldSchema] = Field(default_factory=list)
    # Arbitrary extra config
    extra: Dict[str, Any] = Field(default_factory=dict)


class ToolManifest(BaseModel):
    """
    Declarative definition of a single tool.

    A tool is a side-effecting unit (directory query, web search) that the
    model may call while a flow is generating.
    """
    model_config = ConfigDict(frozen=True)

    tool_id: str
    name: str
    description: Optional[str] = None
    version: int = 1
    type: ToolType
    config: ToolConfig = Field(default_factory=ToolConfig)
    input_schema: List[FieldSchema] = Field(default_factory=list)
    output_schema: List[FieldSchema] = Field(default_factory=list)
    fallback: FallbackConfig = Field(default_factory=FallbackConfig)
    tags: List[str] = Field(default_factory=list)
    mock_enabled: bool = True


# =============================================================================
# Flow Definition
# =============================================================================

class ToolPolicy(BaseModel):
    """How a flow treats tool calls made by the model."""
    model_config = ConfigDict(frozen=True)

    short_circuit: bool = False  # Resolve from tool output, no second round


class PostProcessRule(BaseModel):
    """Markdown field to convert to display HTML, optionally into a new field."""
    model_config = ConfigDict(frozen=True)

    field: str                     # e.g. "additionalInfo", "suggestedCandidates[].summary"
    target: Optional[str] = None   # Sibling field to write to; in place when omitted


class FlowDefinition(BaseModel):
    """
    Declarative definition of a prompt-driven, tool-aware generation.

    Flows render a prompt from validated input, let the model call the
    listed tools, resolve the result and post-process the output.
    """
    model_config = ConfigDict(frozen=True)

    flow_id: str
    name: str
    description: Optional[str] = None
    version: int = 1
    tools: List[str] = Field(default_factory=list)
    tool_policy: ToolPolicy = Field(default_factory=ToolPolicy)
    resolver: str = "structured_output"
    resolver_config: Dict[str, Any] = Field(default_factory=dict)
    input_schema: List[FieldSchema] = Field(default_factory=list)
    output_schema: List[FieldSchema] = Field(default_factory=list)
    prompt: PromptConfig = Field(default_factory=PromptConfig)
    config: ModelConfig = Field(default_factory=ModelConfig)
    fallback: FallbackConfig = Field(
        default_factory=lambda: FallbackConfig(strategy=FallbackStrategy.RAISE)
    )
    propagate_errors: bool = False
    postprocess: List[PostProcessRule] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)


# =============================================================================
# Generation
# =============================================================================

class MediaRef(BaseModel):
    """Inline media attached to a rendered prompt."""
    url: str
    content_type: Optional[str] = None


class RenderedPrompt(BaseModel):
    text: str
    media: List[MediaRef] = Field(default_factory=list)


class GenerationRequest(BaseModel):
    """Everything the model needs for one generation."""
    prompt: RenderedPrompt
    output_schema: List[FieldSchema] = Field(default_factory=list)
    tools: List[ToolManifest] = Field(default_factory=list)
    config: ModelConfig = Field(default_factory=ModelConfig)
    stop_after_tools: bool = False


class ToolResult(BaseModel):
    """Result of executing a single tool call."""
    tool_id: str
    call_id: str = ""
    status: ToolStatus
    output: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    latency_ms: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.status == ToolStatus.SUCCESS


class ToolInvocation(BaseModel):
    """A tool call the model made, with concrete arguments and its result."""
    tool_id: str
    call_id: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    result: ToolResult
    # False when the call was refused (unknown tool, unparseable arguments)
    executed: bool = True


class GenerationResult(BaseModel):
    """Structured output, tool invocations, or both."""
    output: Optional[Dict[str, Any]] = None
    tool_invocations: List[ToolInvocation] = Field(default_factory=list)
    rounds: int = 0
    raw_text: Optional[str] = None

    def invocations_of(self, tool_id: str, executed_only: bool = False) -> List[ToolInvocation]:
        return [
            inv for inv in self.tool_invocations
            if inv.tool_id == tool_id and (inv.executed or not executed_only)
        ]

    @property
    def used_tools(self) -> bool:
        return bool(self.tool_invocations)


class FlowResult(BaseModel):
    """Result of executing a complete flow."""
    flow_id: str
    state: FlowState
    output: Dict[str, Any] = Field(default_factory=dict)
    tool_invocations: List[ToolInvocation] = Field(default_factory=list)
    total_latency_ms: int = 0
    degraded: bool = False
    error: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.state == FlowState.DONE


# =============================================================================
# Registry Config
# =============================================================================

class RegistryConfig(BaseModel):
    """Top-level registry configuration."""
    version: int = 1
    description: Optional[str] = None
    tools: List[str] = Field(default_factory=list)       # Tool folder names
    flows: List[str] = Field(default_factory=list)       # Flow file names
    schemas: Dict[str, List[FieldSchema]] = Field(default_factory=dict)
    settings: Dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Directory
# =============================================================================

class ServiceProvider(BaseModel):
    """A directory entry: a provider reachable by category."""
    id: str
    name: str
    category: str
    phone_number: str
    avg_cost: float = Field(ge=0)
    available: bool


class SeedResult(BaseModel):
    success: bool
    message: str


# =============================================================================
# Flow inputs and outputs
# =============================================================================

class FlowModel(BaseModel):
    """Base for flow I/O: snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ChatMessage(FlowModel):
    role: MessageRole
    content: str


class AppMessage(FlowModel):
    """A chat message as the app stores it."""
    text: str
    is_current_user: bool
    name: Optional[str] = None
    matched_providers: Optional[List[ServiceProvider]] = None


class AnalyzeNeedInput(FlowModel):
    description: str
    image_data_uri: Optional[str] = None


class NeedStep(FlowModel):
    title: str
    description: str


class AnalyzeNeedOutput(FlowModel):
    summary: str
    steps: Optional[List[NeedStep]] = None
    additional_info: Optional[str] = None


class ChatInput(FlowModel):
    history: List[ChatMessage] = Field(default_factory=list)
    new_message: str

    @classmethod
    def from_messages(cls, messages: List[AppMessage], new_message: str) -> "ChatInput":
        """Build chat input from stored app messages."""
        history = [
            ChatMessage(
                role=MessageRole.USER if msg.is_current_user else MessageRole.ASSISTANT,
                content=msg.text,
            )
            for msg in messages
        ]
        return cls(history=history, new_message=new_message)


class ChatOutput(FlowModel):
    response: str
    matched_providers: Optional[List[ServiceProvider]] = None


class DescribeImageInput(FlowModel):
    image_data_uri: str


class DescribeImageOutput(FlowModel):
    description: str


class AnalyzeDocumentForRolesInput(FlowModel):
    document_text: str


class AnalyzeDocumentForRolesOutput(FlowModel):
    roles_description: str


class HiringAssistantInput(FlowModel):
    need: str


class HiringAssistantOutput(FlowModel):
    job_description: str
    job_description_html: Optional[str] = None


class GenerateLinkedInPostInput(FlowModel):
    job_description: str


class GenerateLinkedInPostOutput(FlowModel):
    linked_in_post: str


class FindProfilesInput(FlowModel):
    job_description: str


class Candidate(FlowModel):
    name: str
    link: str
    summary: str
    thumbnail: Optional[str] = None


class FindProfilesOutput(FlowModel):
    suggested_candidates: List[Candidate] = Field(default_factory=list)


class FindProvidersInConversationInput(FlowModel):
    need: str


class FindProvidersInConversationOutput(FlowModel):
    response: str
    matched_providers: List[ServiceProvider] = Field(default_factory=list)


class MatchCategoryInput(FlowModel):
    user_query: str
    available_categories: List[str]


class MatchCategoryOutput(FlowModel):
    matched_category: str = ""


class WebLink(FlowModel):
    title: str
    link: str


class WebSearchResult(FlowModel):
    answer: str
    links: List[WebLink] = Field(default_factory=list)
