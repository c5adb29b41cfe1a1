"""MCP Client — Best-effort coercion of loosely structured tool input.

Agents often hand tools a bare string, a JSON blob wrapped in a markdown
fence, or JavaScript-ish ``{key: 'value'}`` text instead of an argument
mapping. :func:`coerce_input` turns those into the mapping MCP expects.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Dict, List, Mapping, Optional

logger = logging.getLogger("toolbridge.mcp.coercion")

_CODE_BLOCK_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_UNQUOTED_KEY_RE = re.compile(r"([{,]\s*)([a-zA-Z0-9_]+)(\s*:)")
_SINGLE_QUOTED_VALUE_RE = re.compile(r":\s*'([^']*)'")

Rule = Callable[[Any], Optional[Dict[str, Any]]]


def is_argument_mapping(value: Any) -> bool:
    """True for a non-empty mapping that can be sent as tool arguments as-is."""
    return isinstance(value, Mapping) and len(value) > 0


def _as_mapping(parsed: Any) -> Optional[Dict[str, Any]]:
    return dict(parsed) if isinstance(parsed, dict) else None


def _blank_string(value: Any) -> Optional[Dict[str, Any]]:
    if isinstance(value, str) and not value.strip():
        return {}
    return None


def _fenced_code_block(value: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(value, str) or "```" not in value:
        return None
    match = _CODE_BLOCK_RE.search(value.strip())
    if not match or not match.group(1):
        return None
    try:
        return _as_mapping(json.loads(match.group(1).strip()))
    except ValueError as e:
        logger.debug("Code block is not JSON: %s", e)
        return None


def repair_json_like(text: str) -> str:
    """Quote bare keys and turn single-quoted values into JSON strings."""
    fixed = _UNQUOTED_KEY_RE.sub(r'\1"\2"\3', text)
    return _SINGLE_QUOTED_VALUE_RE.sub(r': "\1"', fixed)


def _json_like_object(value: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not (text.startswith("{") and text.endswith("}")):
        return None
    try:
        return _as_mapping(json.loads(repair_json_like(text)))
    except ValueError as e:
        logger.debug("JSON-like input did not parse: %s", e)
        return None


def _scalar_string(value: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(value, str):
        return None
    text = value.strip()
    if ":" in text or "{" in text:
        return None
    return {"input": text}


def _sequence(value: Any) -> Optional[Dict[str, Any]]:
    if isinstance(value, (list, tuple)):
        return {"inputs": list(value)}
    return None


def _primitive(value: Any) -> Optional[Dict[str, Any]]:
    if isinstance(value, (bool, int, float)):
        return {"value": value}
    return None


COERCION_RULES: List[Rule] = [
    _blank_string,
    _fenced_code_block,
    _json_like_object,
    _scalar_string,
    _sequence,
    _primitive,
]


def try_coerce_input(raw: Any) -> Optional[Dict[str, Any]]:
    """Apply :data:`COERCION_RULES` in order; ``None`` when no rule matches."""
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    for rule in COERCION_RULES:
        result = rule(raw)
        if result is not None:
            return result
    return None


def coerce_input(raw: Any) -> Dict[str, Any]:
    """Turn *raw* into a tool argument mapping, falling back to ``{}``.

    Examples::

        coerce_input("")          # {}
        coerce_input("5")         # {"input": "5"}
        coerce_input(["a", "b"])  # {"inputs": ["a", "b"]}
        coerce_input(True)        # {"value": True}
    """
    result = try_coerce_input(raw)
    if result is None:
        logger.warning("Could not coerce tool input of type %s, using {}", type(raw).__name__)
        return {}
    return result
