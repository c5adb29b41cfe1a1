"""MCP Client — Input schema repair.

Remote servers ship loosely written JSON schemas. Several LLM providers reject
array fields without ``items``, so every array node gets an item schema.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, Optional

from toolbridge.mcp.errors import SchemaError

logger = logging.getLogger("toolbridge.mcp.schema")

EMPTY_OBJECT_SCHEMA: Dict[str, Any] = {"type": "object", "properties": {}, "required": []}

_COMBINATORS = ("oneOf", "anyOf", "allOf")


def empty_object_schema() -> Dict[str, Any]:
    """Return a fresh unconstrained object schema."""
    return copy.deepcopy(EMPTY_OBJECT_SCHEMA)


def default_items_for(name: Optional[str]) -> Dict[str, Any]:
    """Item schema for an array field that declared none, chosen by field name."""
    if name == "actions":
        return {
            "type": "object",
            "properties": {
                "type": {"type": "string"},
                "selector": {"type": "string"},
            },
        }
    return {"type": "string"}


def normalize_schema(schema: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Return a repaired deep copy of *schema*.

    - ``None`` stays ``None``.
    - Root objects always get ``properties`` and ``required``.
    - Root arrays without ``items`` get string items.
    - Array fields anywhere below get ``items`` via :func:`default_items_for`.

    Raises:
        SchemaError: If *schema* is not a mapping or cannot be copied.
    """
    if schema is None:
        return None
    if not isinstance(schema, dict):
        raise SchemaError(f"schema must be a mapping, got {type(schema).__name__}")

    try:
        fixed = copy.deepcopy(schema)
    except Exception as e:
        raise SchemaError(f"schema could not be copied: {e}") from e

    schema_type = fixed.get("type")
    if schema_type == "object":
        if fixed.get("required") is None:
            fixed["required"] = []
        if fixed.get("properties") is None:
            fixed["properties"] = {}
        _fix_subtree(fixed, None, "root")
    elif schema_type == "array":
        _fix_subtree(fixed, None, "root")
    elif not schema_type:
        logger.warning("Schema has no type, some LLMs may reject it")

    return fixed


def _fix_array_items(node: Any, name: Optional[str] = None) -> None:
    """Depth-first, pre-order repair. Failing subtrees are logged and left as-is."""
    if not isinstance(node, dict):
        return

    if node.get("type") == "array" and node.get("items") is None:
        node["items"] = default_items_for(name)
        logger.debug("Added items to array field %s", name or "<anonymous>")

    props = node.get("properties")
    if isinstance(props, dict):
        for key, prop in props.items():
            _fix_subtree(prop, key, f"properties.{key}")

    items = node.get("items")
    if isinstance(items, dict):
        _fix_subtree(items, None, "items")

    pattern_props = node.get("patternProperties")
    if isinstance(pattern_props, dict):
        for pattern, prop in pattern_props.items():
            _fix_subtree(prop, None, f"patternProperties[{pattern}]")

    for combinator in _COMBINATORS:
        members = node.get(combinator)
        if isinstance(members, list):
            for index, member in enumerate(members):
                _fix_subtree(member, None, f"{combinator}[{index}]")


def _fix_subtree(node: Any, name: Optional[str], where: str) -> None:
    try:
        _fix_array_items(node, name)
    except Exception as e:
        logger.warning("Error repairing schema at %s: %s", where, e)
