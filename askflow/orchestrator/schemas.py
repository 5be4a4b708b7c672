"""
Strict JSON Schema inference for structured outputs and tool arguments.

Output shapes and tool argument shapes are pydantic models - the single
source of truth. The LLM-facing schema is derived from
``model.model_json_schema()`` and rewritten into OpenAI strict mode:

  - every object has ``additionalProperties: false``
  - every property is listed in ``required``; properties the model does not
    require become nullable, and a null falls back to the field default
    when decoding
  - ``$ref``/``$defs`` are inlined, ``title``/``default`` are dropped

Shapes that strict mode cannot express (free-form dicts, ``Any``, tuples,
recursive models, non-model roots) raise SchemaError when the schema is
built, i.e. before any request is sent.
"""

import copy
import functools
import inspect
import json
import typing
from typing import Any

from pydantic import BaseModel, ValidationError

from askflow.shared.errors import DecodeError, SchemaError

RESPONSE_SCHEMA_NAME = "json_schema_response"

_DROPPED_KEYS = frozenset({"title", "default", "$defs", "definitions", "examples"})
_COMBINATORS = ("anyOf", "oneOf", "allOf")
_NULL = {"type": "null"}


def is_free_text(shape: Any) -> bool:
    """Free-text mode is selected by asking for ``str``."""
    return shape is str


def infer_json_schema(shape: Any) -> dict:
    """Return the strict-mode JSON schema for a pydantic model class."""
    if not (inspect.isclass(shape) and issubclass(shape, BaseModel)):
        raise SchemaError(
            f"Unsupported output shape {shape!r}: expected str or a pydantic BaseModel subclass"
        )
    return copy.deepcopy(_infer_cached(shape))


@functools.lru_cache(maxsize=256)
def _infer_cached(shape: type) -> dict:
    try:
        raw = shape.model_json_schema()
    except Exception as e:
        raise SchemaError(f"Cannot build JSON schema for {shape.__name__}: {e}") from e

    defs = raw.get("$defs", {})
    schema = _to_strict(raw, defs, stack=(), path=shape.__name__)
    if schema.get("type") != "object":
        raise SchemaError(f"{shape.__name__}: root schema must be an object")
    return schema


def response_format(shape: Any) -> dict:
    """The ``response_format`` request field constraining output to ``shape``."""
    return {
        "type": "json_schema",
        "json_schema": {
            "name": RESPONSE_SCHEMA_NAME,
            "strict": True,
            "schema": infer_json_schema(shape),
        },
    }


def _to_strict(node: dict, defs: dict, stack: tuple, path: str) -> dict:
    if "$ref" in node:
        name = node["$ref"].rsplit("/", 1)[-1]
        if name in stack:
            raise SchemaError(f"Recursive shape {name!r} at {path} is not supported")
        if name not in defs:
            raise SchemaError(f"Unresolvable reference {node['$ref']!r} at {path}")
        resolved = _to_strict(defs[name], defs, stack + (name,), path)
        # Keep annotations written next to the $ref (e.g. a field description)
        for key, value in node.items():
            if key != "$ref" and key not in _DROPPED_KEYS:
                resolved[key] = value
        return resolved

    out = {k: v for k, v in node.items() if k not in _DROPPED_KEYS}

    for key in _COMBINATORS:
        if key in node:
            out[key] = [_to_strict(sub, defs, stack, path) for sub in node[key]]
    if len(out.get("allOf", ())) == 1:
        # pydantic wraps a described $ref as allOf[ref]
        (single,) = out.pop("allOf")
        return {**single, **out}

    node_type = out.get("type")
    if node_type == "object":
        out.update(_strict_object(node, defs, stack, path))
    elif node_type == "array":
        if "prefixItems" in node:
            raise SchemaError(f"Tuple shape at {path} is not supported")
        items = node.get("items")
        if not items:
            raise SchemaError(f"Array without item shape at {path}")
        out["items"] = _to_strict(items, defs, stack, f"{path}[]")
    elif node_type is None and not any(k in out for k in (*_COMBINATORS, "enum", "const")):
        raise SchemaError(f"Untyped (Any) shape at {path} is not supported")
    return out


def _strict_object(node: dict, defs: dict, stack: tuple, path: str) -> dict:
    extra = node.get("additionalProperties")
    if extra not in (None, False):
        raise SchemaError(f"Free-form mapping at {path} is not supported in strict mode")
    if "properties" not in node:
        raise SchemaError(f"Object without declared properties at {path}")

    required = set(node.get("required", ()))
    properties = {}
    for name, sub in node.get("properties", {}).items():
        prop = _to_strict(sub, defs, stack, f"{path}.{name}")
        if name not in required:
            prop = _nullable(prop)
        properties[name] = prop

    return {
        "properties": properties,
        "required": list(properties),
        "additionalProperties": False,
    }


def _nullable(schema: dict) -> dict:
    if schema.get("type") == "null" or _NULL in schema.get("anyOf", ()):
        return schema
    description = schema.pop("description", None)
    wrapped: dict = {"anyOf": [schema, dict(_NULL)]}
    if description:
        wrapped["description"] = description
    return wrapped


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

def decode_structured(shape: type, content: Any) -> BaseModel:
    """Decode assistant content into ``shape``. Any mismatch is a DecodeError."""
    if not isinstance(content, str) or not content.strip():
        raise DecodeError("Assistant returned empty content for a structured answer", content)
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise DecodeError(f"Assistant content is not valid JSON: {e}", content) from e
    if not isinstance(data, dict):
        raise DecodeError(
            f"Expected a JSON object for {shape.__name__}, got {type(data).__name__}", content
        )
    try:
        return shape.model_validate(_drop_null_defaults(shape, data))
    except ValidationError as e:
        raise DecodeError(f"Content does not match {shape.__name__}: {e}", content) from e


def _drop_null_defaults(shape: type, data: dict) -> dict:
    """Remove nulls the strict schema allowed for optional fields that reject None."""
    cleaned = dict(data)
    for name, info in shape.model_fields.items():
        key = info.alias or name
        if key not in cleaned:
            continue
        value = cleaned[key]
        if value is None:
            if not info.is_required() and not _accepts_none(info.annotation):
                del cleaned[key]
            continue
        nested = _model_of(info.annotation)
        if nested is not None and isinstance(value, dict):
            cleaned[key] = _drop_null_defaults(nested, value)
            continue
        item_model = _list_item_model(info.annotation)
        if item_model is not None and isinstance(value, list):
            cleaned[key] = [
                _drop_null_defaults(item_model, v) if isinstance(v, dict) else v
                for v in value
            ]
    return cleaned


def _accepts_none(annotation: Any) -> bool:
    if annotation is None or annotation is type(None) or annotation is Any:
        return True
    return type(None) in typing.get_args(annotation)


def _model_of(annotation: Any):
    if inspect.isclass(annotation) and issubclass(annotation, BaseModel):
        return annotation
    for arg in typing.get_args(annotation):
        if inspect.isclass(arg) and issubclass(arg, BaseModel):
            return arg
    return None


def _list_item_model(annotation: Any):
    candidates = [annotation, *typing.get_args(annotation)]
    for candidate in candidates:
        if typing.get_origin(candidate) in (list, typing.List):
            args = typing.get_args(candidate)
            return _model_of(args[0]) if args else None
    return None
