"""
Needs AI - Flow Registry
========================

Discovers, loads, and manages tool manifests and flow definitions from YAML
files. Acts as the central lookup table for the flow engine.

Shared schemas declared in registry.yaml can be referenced from any field
with `ref: <name>`; references are expanded while loading, so the models the
engine sees are self-contained.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from needs_ai.errors import TemplateError
from needs_ai.models import (
    FlowDefinition,
    PromptSource,
    RegistryConfig,
    ToolManifest,
)
from needs_ai.templates import Template

logger = logging.getLogger(__name__)


class FlowRegistry:
    """
    Central registry for tools and flows.

    Loads tool manifests and flow definitions from a directory structure:

        needs_ai/
            registry.yaml               ← master config + shared schemas
            tools/
                find_providers_for_project/
                    manifest.yaml
                search_web_for_experts/
                    manifest.yaml
            flows/
                analyze_need.yaml
                chat_support.yaml
                ...

    Definitions are immutable once loaded and safe to share between
    concurrent flow invocations.
    """

    def __init__(self, base_dir: Optional[str] = None):
        """
        Initialize the registry.

        Args:
            base_dir: Root directory of the definitions. Defaults to this package's dir.
        """
        self.base_dir = Path(base_dir or os.path.dirname(__file__))
        self.tools_dir = self.base_dir / "tools"
        self.flows_dir = self.base_dir / "flows"

        self._tools: Dict[str, ToolManifest] = {}
        self._flows: Dict[str, FlowDefinition] = {}
        self._templates: Dict[str, Template] = {}
        self._config: Optional[RegistryConfig] = None

        self._loaded = False

    # =========================================================================
    # Public API
    # =========================================================================

    def load(self) -> None:
        """Load all tools and flows from disk."""
        logger.info(f"[FlowRegistry] Loading from {self.base_dir}")

        config_path = self.base_dir / "registry.yaml"
        if config_path.exists():
            self._config = self._load_registry_config(config_path)
            logger.info(f"[FlowRegistry] Registry config loaded: {self._config.description}")
        else:
            self._config = RegistryConfig()
            logger.warning("[FlowRegistry] No registry.yaml found, using defaults")

        self._load_all_tools()
        self._load_all_flows()

        self._loaded = True
        logger.info(
            f"[FlowRegistry] Loaded {len(self._tools)} tools, {len(self._flows)} flows"
        )

    def get_tool(self, tool_id: str) -> Optional[ToolManifest]:
        """Get a tool manifest by ID."""
        self._ensure_loaded()
        return self._tools.get(tool_id)

    def get_flow(self, flow_id: str) -> Optional[FlowDefinition]:
        """Get a flow definition by ID."""
        self._ensure_loaded()
        return self._flows.get(flow_id)

    def get_template(self, flow_id: str) -> Optional[Template]:
        """Get the parsed prompt template of a flow."""
        self._ensure_loaded()
        return self._templates.get(flow_id)

    def list_tools(self) -> List[ToolManifest]:
        """List all registered tools."""
        self._ensure_loaded()
        return list(self._tools.values())

    def list_flows(self) -> List[FlowDefinition]:
        """List all registered flows."""
        self._ensure_loaded()
        return list(self._flows.values())

    def get_flows_by_tag(self, tag: str) -> List[FlowDefinition]:
        """Get all flows with a given tag."""
        self._ensure_loaded()
        return [f for f in self._flows.values() if tag in f.tags]

    def register_tool(self, manifest: ToolManifest) -> None:
        """Programmatically register a tool."""
        self._tools[manifest.tool_id] = manifest
        logger.info(f"[FlowRegistry] Registered tool: {manifest.tool_id}")

    def register_flow(self, flow: FlowDefinition) -> None:
        """
        Programmatically register a flow.

        Raises:
            ValueError: If the flow references an unknown tool.
            TemplateError: If its prompt does not parse.
        """
        missing = [t for t in flow.tools if t not in self._tools]
        if missing:
            raise ValueError(f"Flow {flow.flow_id} references unknown tools: {missing}")
        self._templates[flow.flow_id] = Template(self._load_prompt_text(flow))
        self._flows[flow.flow_id] = flow
        logger.info(f"[FlowRegistry] Registered flow: {flow.flow_id}")

    @property
    def config(self) -> RegistryConfig:
        """Get the registry configuration."""
        self._ensure_loaded()
        return self._config or RegistryConfig()

    # =========================================================================
    # Internal Loading
    # =========================================================================

    def _ensure_loaded(self) -> None:
        """Lazy-load if not already loaded."""
        if not self._loaded:
            self.load()

    def _load_registry_config(self, path: Path) -> RegistryConfig:
        """Load the master registry config."""
        data = self._read_yaml(path)
        return RegistryConfig(**data) if data else RegistryConfig()

    def _load_all_tools(self) -> None:
        """Load tool manifests, restricted to the ids listed in registry.yaml when present."""
        if not self.tools_dir.exists():
            logger.warning(f"[FlowRegistry] Tools directory not found: {self.tools_dir}")
            return

        listed = set(self._config.tools) if self._config and self._config.tools else None
        for tool_dir in sorted(self.tools_dir.iterdir()):
            if not tool_dir.is_dir() or (listed is not None and tool_dir.name not in listed):
                continue
            manifest_path = tool_dir / "manifest.yaml"
            if manifest_path.exists():
                self._load_tool(manifest_path)

    def _load_tool(self, manifest_path: Path) -> None:
        """Load a single tool manifest."""
        try:
            data = self._read_yaml(manifest_path)
            if not data:
                return
            manifest = ToolManifest(**self._expand_refs(data))
            self._tools[manifest.tool_id] = manifest
            logger.info(f"[FlowRegistry]   Tool loaded: {manifest.tool_id} (v{manifest.version})")
        except Exception as e:
            logger.error(f"[FlowRegistry] Failed to load tool from {manifest_path}: {e}")

    def _load_all_flows(self) -> None:
        """Load all flow definitions from the flows directory."""
        if not self.flows_dir.exists():
            logger.warning(f"[FlowRegistry] Flows directory not found: {self.flows_dir}")
            return

        listed = set(self._config.flows) if self._config and self._config.flows else None
        for flow_file in sorted(self.flows_dir.glob("*.yaml")):
            if listed is not None and flow_file.stem not in listed:
                continue
            self._load_flow(flow_file)

    def _load_flow(self, flow_path: Path) -> None:
        """Load a single flow definition."""
        try:
            data = self._read_yaml(flow_path)
            if not data:
                return
            flow = FlowDefinition(**self._expand_refs(data))
            self.register_flow(flow)
            logger.info(f"[FlowRegistry]   Flow loaded: {flow.flow_id} (v{flow.version})")
        except (TemplateError, ValueError) as e:
            logger.error(f"[FlowRegistry] Rejected flow {flow_path.name}: {e}")
        except Exception as e:
            logger.error(f"[FlowRegistry] Failed to load flow from {flow_path}: {e}")

    def _expand_refs(self, node: Any) -> Any:
        """Replace `ref: name` field entries with the shared schema they name."""
        if isinstance(node, list):
            return [self._expand_refs(item) for item in node]
        if not isinstance(node, dict):
            return node

        expanded = {key: self._expand_refs(value) for key, value in node.items()}
        ref = expanded.get("ref")
        if ref:
            shared = (self._config.schemas if self._config else {}).get(ref)
            if shared is None:
                raise ValueError(f"Unknown schema reference: {ref}")
            expanded.setdefault("type", "object")
            if expanded["type"] == "object":
                expanded["fields"] = [f.model_dump(exclude_none=True) for f in shared]
            else:
                # A list of refs: the shared schema describes each element
                expanded["items"] = {
                    "type": "object",
                    "fields": [f.model_dump(exclude_none=True) for f in shared],
                }
        return expanded

    def _load_prompt_text(self, flow: FlowDefinition) -> str:
        """Load the prompt template text from the configured source."""
        prompt = flow.prompt
        if prompt.source == PromptSource.INLINE:
            return prompt.inline_text or ""

        if prompt.source == PromptSource.FILE:
            path = Path(prompt.file_path or "")
            if not path.is_absolute():
                path = self.base_dir / path
            try:
                return path.read_text()
            except OSError as e:
                logger.error(f"[FlowRegistry] Failed to load prompt from file {path}: {e}")
                return ""

        return self._load_from_prompt_registry(prompt.registry_uri or "", prompt.version)

    def _load_from_prompt_registry(self, uri: str, version: Optional[int] = None) -> str:
        """Load a prompt from the Databricks Prompt Registry (prompts:/catalog.schema.name/version)."""
        try:
            from databricks.sdk import WorkspaceClient

            parts = uri.replace("prompts:/", "").split("/")
            prompt_name = parts[0]
            prompt_version = int(parts[1]) if len(parts) > 1 else (version or 1)

            response = WorkspaceClient().api_client.do(
                "GET",
                f"/api/2.0/mlflow/unity-catalog/prompts/{prompt_name}/versions/{prompt_version}",
            )
            template = response.get("prompt_version", {}).get("template", "")
            logger.info(f"[FlowRegistry] Loaded prompt from registry: {prompt_name}/v{prompt_version}")
            return template
        except Exception as e:
            logger.error(f"[FlowRegistry] Failed to load prompt from registry {uri}: {e}")
            return ""

    @staticmethod
    def _read_yaml(path: Path) -> Optional[dict]:
        """Read and parse a YAML file."""
        try:
            with open(path, "r") as f:
                return yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"[FlowRegistry] Failed to read YAML {path}: {e}")
            return None
