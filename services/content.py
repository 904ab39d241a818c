"""Human-readable summaries for setting and personality records."""

from __future__ import annotations

import json
from typing import Any

from models.records import RawDocument


def _render_value(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    return str(value)


def _stored_content(document: RawDocument) -> str | None:
    content = document.get("content")
    if isinstance(content, str) and content.strip():
        return content
    return None


def setting_content(document: RawDocument) -> str:
    stored = _stored_content(document)
    if stored is not None:
        return stored

    change_type = document.get("changeType")
    value = document.get("value")
    if change_type or value is not None:
        rendered = _render_value(value) if value is not None else "-"
        return f"{change_type or 'Setting'}: {rendered}"
    return "Setting changed"


def personality_content(document: RawDocument) -> str:
    stored = _stored_content(document)
    if stored is not None:
        return stored

    bias_type = document.get("biasType")
    bias_value = document.get("biasValue")

    if bias_type == "temperature_offset" and isinstance(bias_value, dict) and "offset" in bias_value:
        offset = bias_value["offset"]
        sign = "+" if isinstance(offset, (int, float)) and offset > 0 else ""
        return f"Temperature offset bias: {sign}{offset}°C"
    if bias_type == "sensitivity" and isinstance(bias_value, dict) and "level" in bias_value:
        return f"Sensitivity: {bias_value['level']}"
    if bias_type and bias_value is not None:
        return f"{bias_type}: {json.dumps(bias_value, ensure_ascii=False)}"
    if bias_type:
        return f"{bias_type} setting"
    return "Personality updated"
