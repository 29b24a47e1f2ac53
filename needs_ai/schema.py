"""
Needs AI - Schema Validator
===========================

Turns declarative `FieldSchema` lists into pydantic models and uses them to
validate flow inputs, tool inputs and model outputs, and to describe the
expected shapes to the model as JSON Schema.

Validation is applied at three points per flow invocation:
    1. Caller input, before the prompt is rendered
    2. Tool input, before a tool handler runs
    3. Model output, before it is resolved into the flow's result
"""

import json
import logging
from functools import lru_cache
from typing import Annotated, Any, Dict, List, Literal, Optional, Sequence, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, ValidationError, create_model

from needs_ai.errors import SchemaValidationError
from needs_ai.models import FieldSchema

logger = logging.getLogger(__name__)


SCALAR_TYPES: Dict[str, Any] = {
    "string": str,
    "number": float,
    "integer": int,
    "boolean": bool,
}


# =============================================================================
# Model building
# =============================================================================

def build_model(fields: Sequence[FieldSchema], name: str = "Payload") -> Type[BaseModel]:
    """
    Build (or fetch from cache) a pydantic model for a list of fields.

    Args:
        fields: Declared fields of an object.
        name: Model name, used in JSON Schema titles and error messages.

    Returns:
        A pydantic model class that ignores unknown keys.
    """
    key = json.dumps([f.model_dump(mode="json") for f in fields], sort_keys=True)
    return _build_model_cached(key, name)


@lru_cache(maxsize=256)
def _build_model_cached(key: str, name: str) -> Type[BaseModel]:
    fields = [FieldSchema(**raw) for raw in json.loads(key)]
    return _create(fields, name)


def _create(fields: List[FieldSchema], name: str) -> Type[BaseModel]:
    definitions: Dict[str, Tuple[Any, Any]] = {}
    for field in fields:
        annotation = _annotation_for(field, f"{name}_{field.name}")
        if field.required:
            definitions[field.name] = (
                annotation,
                Field(..., description=field.description),
            )
        else:
            definitions[field.name] = (
                Optional[annotation],
                Field(default=field.default, description=field.description),
            )
    return create_model(
        name,
        __config__=ConfigDict(extra="ignore"),
        **definitions,
    )


def _annotation_for(field: FieldSchema, model_name: str) -> Any:
    """Map a single field schema to a type annotation."""
    if field.type in SCALAR_TYPES:
        if field.enum:
            return Literal[tuple(field.enum)]
        if field.type == "string" and field.pattern:
            return Annotated[str, StringConstraints(pattern=field.pattern)]
        return SCALAR_TYPES[field.type]

    if field.type == "object":
        if field.fields:
            return _create(list(field.fields), model_name)
        return Dict[str, Any]

    if field.type == "list":
        if field.items is None:
            return List[Any]
        return List[_annotation_for(field.items, f"{model_name}_item")]

    raise ValueError(f"Unsupported field type '{field.type}' for field '{field.name}'")


# =============================================================================
# Public helpers
# =============================================================================

def validate(
    fields: Sequence[FieldSchema],
    value: Any,
    label: str = "payload",
) -> Dict[str, Any]:
    """
    Validate a value against a list of fields.

    Args:
        fields: The declared schema.
        value: Candidate value, normally a dict.
        label: What is being validated, used in the error message.

    Returns:
        The validated value as a plain dict. Unknown keys are dropped and
        absent optional fields are omitted.

    Raises:
        SchemaValidationError: Naming every offending field path.
    """
    if not isinstance(value, dict):
        raise SchemaValidationError(
            f"Invalid {label}: expected an object, got {type(value).__name__}",
            fields=[],
        )

    model = build_model(fields, _model_name(label))
    try:
        instance = model.model_validate(value)
    except ValidationError as e:
        errors = e.errors(include_url=False)
        paths = [_error_path(err) for err in errors]
        details = "; ".join(
            f"{path}: {err['msg']}" for path, err in zip(paths, errors)
        )
        logger.debug(f"[Schema] {label} rejected: {details}")
        raise SchemaValidationError(
            f"Invalid {label}: {details}",
            fields=_unique(paths),
            errors=[{"field": p, "type": err["type"], "message": err["msg"]} for p, err in zip(paths, errors)],
        ) from e

    return instance.model_dump(exclude_none=True)


def json_schema(fields: Sequence[FieldSchema], name: str = "Payload") -> Dict[str, Any]:
    """Describe a list of fields as JSON Schema."""
    return build_model(fields, name).model_json_schema()


# =============================================================================
# Internal helpers
# =============================================================================

def _error_path(error: Dict[str, Any]) -> str:
    parts = []
    for part in error.get("loc", ()):
        if isinstance(part, int):
            parts.append(f"[{part}]")
        elif parts:
            parts.append(f".{part}")
        else:
            parts.append(str(part))
    return "".join(parts) or "<root>"


def _model_name(label: str) -> str:
    cleaned = "".join(ch if ch.isalnum() else " " for ch in label)
    return "".join(word.capitalize() for word in cleaned.split()) or "Payload"


def _unique(items: List[str]) -> List[str]:
    seen = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen
