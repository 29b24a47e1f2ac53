"""
Needs AI - Post-processor
=========================

Converts markdown fields of a flow's output into sanitized display HTML.
Deterministic and local: `markdown` renders, `nh3` sanitizes.

Field paths address nested values with dots and `[]` for "every element":

    additionalInfo
    suggestedCandidates[].summary
"""

import copy
import logging
import re
from typing import Any, Dict, List, Sequence

import markdown
import nh3

from needs_ai.models import PostProcessRule

logger = logging.getLogger(__name__)

MARKDOWN_EXTENSIONS = ["nl2br", "fenced_code", "tables"]

# Output of to_html starts with a block tag; such text is only re-sanitized.
HTML_PATTERN = re.compile(r"^\s*<(p|h[1-6]|ul|ol|pre|table|blockquote|div|hr)\b", re.IGNORECASE)


def to_html(text: str) -> str:
    """Render markdown to sanitized HTML. Already-rendered HTML is left as is."""
    if not text:
        return text
    if HTML_PATTERN.match(text):
        return nh3.clean(text)
    rendered = markdown.markdown(text, extensions=MARKDOWN_EXTENSIONS)
    return nh3.clean(rendered)


def apply(output: Dict[str, Any], rules: Sequence[PostProcessRule]) -> Dict[str, Any]:
    """Return a copy of the output with every rule applied."""
    if not rules:
        return output
    result = copy.deepcopy(output)
    for rule in rules:
        parts = _split_path(rule.field)
        _apply_rule(result, parts, rule.target)
    return result


def _split_path(path: str) -> List[str]:
    parts: List[str] = []
    for piece in path.split("."):
        if piece.endswith("[]"):
            parts.append(piece[:-2])
            parts.append("[]")
        else:
            parts.append(piece)
    return parts


def _apply_rule(node: Any, parts: List[str], target: str = None) -> None:
    head, rest = parts[0], parts[1:]

    if head == "[]":
        if isinstance(node, list):
            for item in node:
                _apply_rule(item, rest, target)
        return

    if not isinstance(node, dict) or head not in node:
        return

    if rest:
        _apply_rule(node[head], rest, target)
        return

    value = node[head]
    if not isinstance(value, str):
        return
    node[target or head] = to_html(value)
    logger.debug(f"[PostProcess] Rendered {head} -> {target or head}")
