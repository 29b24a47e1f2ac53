"""
Needs AI - Prompt Template Engine
=================================

Renders flow prompts from validated input. Supports a small handlebars-style
syntax, enough for instruction templates:

    {{name}} / {{{name}}}              → Scalar substitution (dotted paths allowed)
    {{#if name}} ... {{else}} ... {{/if}}
    {{#unless name}} ... {{/unless}}
    {{#each items}} ... {{this}} {{field}} {{@index}} ... {{/each}}
    {{media url=name}}                 → Attach inline media, renders nothing
    {{json name}}                      → Pretty-printed JSON of a value

Templates are parsed once and rendered many times; a parsed `Template`
holds no per-render state.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from needs_ai.errors import TemplateError
from needs_ai.models import MediaRef, RenderedPrompt

logger = logging.getLogger(__name__)


# Triple braces first so "{{{x}}}" is not read as "{" + "{{x}}" + "}"
TAG_PATTERN = re.compile(r"\{\{\{\s*(.+?)\s*\}\}\}|\{\{\s*(.+?)\s*\}\}", re.DOTALL)
DATA_URI_PATTERN = re.compile(r"^data:([\w.+-]+/[\w.+-]+)[;,]")

_MISSING = object()


# =============================================================================
# Syntax tree
# =============================================================================

@dataclass
class _Text:
    text: str


@dataclass
class _Var:
    path: str


@dataclass
class _Media:
    path: str


@dataclass
class _Json:
    path: str


@dataclass
class _Block:
    kind: str  # "if", "unless", "each"
    path: str
    body: List["_Node"] = field(default_factory=list)
    inverse: List["_Node"] = field(default_factory=list)


_Node = Union[_Text, _Var, _Media, _Json, _Block]


# =============================================================================
# Template
# =============================================================================

class Template:
    """A parsed prompt template."""

    def __init__(self, source: str):
        self.source = source or ""
        self._nodes = self._parse(self.source)

    def render(self, data: Dict[str, Any]) -> RenderedPrompt:
        """
        Render the template.

        Args:
            data: Validated input values.

        Returns:
            RenderedPrompt with the text and any media references collected
            from `{{media}}` tags.
        """
        media: List[MediaRef] = []
        text = self._render_nodes(self._nodes, [data], media)
        return RenderedPrompt(text=text, media=media)

    # =========================================================================
    # Parsing
    # =========================================================================

    def _parse(self, source: str) -> List[_Node]:
        root: List[_Node] = []
        # Open blocks, each with the list it was appended to
        stack: List[Tuple[_Block, List[_Node]]] = []
        current = root
        pos = 0

        for match in TAG_PATTERN.finditer(source):
            start, end = match.start(), match.end()
            tag = (match.group(2) or "").strip()

            # Block tags alone on a line take the whole line with them
            if tag[:1] in ("#", "/") or tag == "else":
                line_start = source.rfind("\n", 0, start) + 1
                line_end = source.find("\n", end)
                line_end = len(source) if line_end == -1 else line_end + 1
                if (
                    line_start >= pos
                    and not source[line_start:start].strip()
                    and not source[end:line_end].strip()
                ):
                    start, end = line_start, line_end

            if start > pos:
                current.append(_Text(source[pos:start]))
            pos = end

            raw = match.group(1)
            if raw is not None:
                current.append(_Var(raw.strip()))
                continue

            if tag.startswith("#"):
                kind, _, path = tag[1:].partition(" ")
                if kind not in ("if", "unless", "each") or not path.strip():
                    raise TemplateError(f"Unsupported block tag: {{{{{tag}}}}}")
                block = _Block(kind=kind, path=path.strip())
                current.append(block)
                stack.append((block, current))
                current = block.body

            elif tag == "else":
                if not stack or current is stack[-1][0].inverse:
                    raise TemplateError("Unexpected {{else}} outside a block")
                current = stack[-1][0].inverse

            elif tag.startswith("/"):
                kind = tag[1:].strip()
                if not stack or stack[-1][0].kind != kind:
                    raise TemplateError(f"Unexpected closing tag: {{{{/{kind}}}}}")
                _, current = stack.pop()

            elif tag.startswith("media "):
                args = dict(
                    part.split("=", 1) for part in tag[6:].split() if "=" in part
                )
                if "url" not in args:
                    raise TemplateError("{{media}} requires a url= argument")
                current.append(_Media(args["url"]))

            elif tag.startswith("json "):
                current.append(_Json(tag[5:].strip()))

            elif tag.startswith("!"):
                continue  # comment

            else:
                current.append(_Var(tag))

        if pos < len(source):
            current.append(_Text(source[pos:]))

        if stack:
            block = stack[-1][0]
            raise TemplateError(f"Unclosed block: {{{{#{block.kind} {block.path}}}}}")

        return root

    # =========================================================================
    # Rendering
    # =========================================================================

    def _render_nodes(
        self, nodes: List[_Node], scopes: List[Any], media: List[MediaRef]
    ) -> str:
        out: List[str] = []
        for node in nodes:
            if isinstance(node, _Text):
                out.append(node.text)
            elif isinstance(node, _Var):
                out.append(self._stringify(self._lookup(node.path, scopes)))
            elif isinstance(node, _Json):
                value = self._lookup(node.path, scopes)
                out.append(json.dumps(None if value is _MISSING else value, indent=2, default=str))
            elif isinstance(node, _Media):
                url = self._lookup(node.path, scopes)
                if url is not _MISSING and url:
                    media.append(MediaRef(url=str(url), content_type=content_type_of(str(url))))
            else:
                out.append(self._render_block(node, scopes, media))
        return "".join(out)

    def _render_block(self, block: _Block, scopes: List[Any], media: List[MediaRef]) -> str:
        value = self._lookup(block.path, scopes)
        if value is _MISSING:
            value = None

        if block.kind == "each":
            if not value:
                return self._render_nodes(block.inverse, scopes, media)
            items = value.items() if isinstance(value, dict) else enumerate(value)
            parts = []
            for index, item in items:
                frame = {"@index": index, "@first": index == 0, "@item": item}
                parts.append(self._render_nodes(block.body, scopes + [frame], media))
            return "".join(parts)

        truthy = bool(value)
        if block.kind == "unless":
            truthy = not truthy
        return self._render_nodes(block.body if truthy else block.inverse, scopes, media)

    @staticmethod
    def _lookup(path: str, scopes: List[Any]) -> Any:
        """Resolve a dotted path against the innermost scope that has it."""
        if path in ("this", "."):
            for scope in reversed(scopes):
                if isinstance(scope, dict) and "@item" in scope:
                    return scope["@item"]
            return scopes[0]

        if path.startswith("this."):
            path = path[5:]
            scopes = [Template._lookup("this", scopes)]

        head, *rest = path.split(".")
        for scope in reversed(scopes):
            candidates = [scope]
            if isinstance(scope, dict) and "@item" in scope:
                if head.startswith("@"):
                    candidates = [scope]
                else:
                    candidates = [scope["@item"]]
            for candidate in candidates:
                value = _get(candidate, head)
                if value is _MISSING:
                    continue
                for part in rest:
                    value = _get(value, part)
                    if value is _MISSING:
                        return _MISSING
                return value
        return _MISSING

    @staticmethod
    def _stringify(value: Any) -> str:
        if value is _MISSING or value is None:
            return ""
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (dict, list)):
            return json.dumps(value, default=str)
        return str(value)


# =============================================================================
# Helpers
# =============================================================================

def _get(container: Any, key: str) -> Any:
    if isinstance(container, dict):
        return container.get(key, _MISSING)
    if key.isdigit() and isinstance(container, (list, tuple)):
        idx = int(key)
        return container[idx] if idx < len(container) else _MISSING
    return _MISSING


def content_type_of(url: str) -> Optional[str]:
    """Extract the MIME type from a data URI, if it is one."""
    match = DATA_URI_PATTERN.match(url)
    return match.group(1) if match else None


def render(source: str, data: Dict[str, Any]) -> RenderedPrompt:
    """Parse and render a template in one step."""
    return Template(source).render(data)
