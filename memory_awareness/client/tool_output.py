"""Parsing of memory-service tool output.

Tool results carry their payload as text. Most servers emit JSON, but some
emit a Python repr (single quotes, True/False/None). Parsing tries strict
JSON first, then the python-literal conversion when the text looks like a
repr, then the first balanced {...} object. Anything unparseable yields [].
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional


logger = logging.getLogger(__name__)

_PY_LITERAL_SNIFF = re.compile(r"\b(True|False|None)\b|'")
_DECODER = json.JSONDecoder()


def looks_like_python_literal(text: str) -> bool:
    return bool(_PY_LITERAL_SNIFF.search(text))


def convert_python_literal(text: str) -> str:
    """Rewrite a Python repr into JSON text (heuristic)."""
    converted = text.replace("'", '"')
    converted = re.sub(r"\bTrue\b", "true", converted)
    converted = re.sub(r"\bFalse\b", "false", converted)
    return re.sub(r"\bNone\b", "null", converted)


def _unwrap(parsed: Any) -> List[Dict[str, Any]]:
    if isinstance(parsed, list):
        return [_result_memory(item) for item in parsed if isinstance(item, dict)]
    if isinstance(parsed, dict):
        for key in ("results", "memories"):
            value = parsed.get(key)
            if isinstance(value, list):
                return [_result_memory(item) for item in value if isinstance(item, dict)]
        return [parsed]
    return []


def _result_memory(item: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten {memory: {...}, similarity_score} result entries."""
    if isinstance(item.get("memory"), dict):
        return {**item["memory"], "similarity_score": item.get("similarity_score")}
    return item


def extract_object(text: str) -> Optional[Dict[str, Any]]:
    """Decode the first balanced JSON object embedded in surrounding text."""
    start = text.find("{")
    while start != -1:
        try:
            parsed, _ = _DECODER.raw_decode(text, start)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict):
            return parsed
        start = text.find("{", start + 1)
    return None


def parse_memory_text(text: Optional[str]) -> List[Dict[str, Any]]:
    """Parse tool output text into a list of memory dicts."""
    if not text or not text.strip():
        return []

    try:
        return _unwrap(json.loads(text))
    except json.JSONDecodeError:
        pass

    if looks_like_python_literal(text):
        try:
            return _unwrap(json.loads(convert_python_literal(text)))
        except json.JSONDecodeError:
            pass

    extracted = extract_object(text)
    if extracted is not None:
        return _unwrap(extracted)

    logger.warning("[Memory Client] Could not parse memory results (%d chars)", len(text))
    return []


def extract_text(content: Any) -> str:
    """Pull the first text block out of a tool result's content."""
    if not content:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text":
                return block.get("text", "")
            if getattr(block, "type", None) == "text":
                return getattr(block, "text", "")
        return ""
    if isinstance(content, dict):
        return content.get("text", "")
    return getattr(content, "text", "") or ""


def parse_tool_response(content: Any) -> List[Dict[str, Any]]:
    return parse_memory_text(extract_text(content))


def parse_tool_object(content: Any) -> Dict[str, Any]:
    """Parse tool content expected to hold a single object (e.g. health data)."""
    parsed = parse_tool_response(content)
    return parsed[0] if len(parsed) == 1 else {"items": parsed}
