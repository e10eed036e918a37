"""Turn a generation-service response body into plain reply text.

The upstream API returns the reply under several layouts. Each strategy
below looks for one layout and returns ``None`` when it does not apply;
``extract_reply`` tries them in order and falls back to the serialized body.
"""
from __future__ import annotations

import json
from typing import Any, Callable, Optional, Sequence

MAX_FALLBACK_CHARS = 2000

Strategy = Callable[[Any], Optional[str]]


def _first(value: Any) -> Any:
    if isinstance(value, list) and value:
        return value[0]
    return None


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value:
        return value
    return None


def _field(value: Any, key: str) -> Any:
    return value.get(key) if isinstance(value, dict) else None


def from_output_content(body: Any) -> Optional[str]:
    """``output[0].content[0].text``, else ``output[0].contentText``."""
    output = _first(_field(body, "output"))
    text = _text(_field(_first(_field(output, "content")), "text"))
    return text or _text(_field(output, "contentText"))


def from_choice_message(body: Any) -> Optional[str]:
    """``choices[0].message.content``"""
    choice = _first(_field(body, "choices"))
    return _text(_field(_field(choice, "message"), "content"))


def from_choice_text(body: Any) -> Optional[str]:
    """``choices[0].text``"""
    return _text(_field(_first(_field(body, "choices")), "text"))


STRATEGIES: Sequence[Strategy] = (
    from_output_content,
    from_choice_message,
    from_choice_text,
)


def serialize_fallback(body: Any) -> str:
    return json.dumps(body, ensure_ascii=False, separators=(",", ":"))[:MAX_FALLBACK_CHARS]


def extract_reply(body: Any, strategies: Sequence[Strategy] = STRATEGIES) -> str:
    for strategy in strategies:
        text = strategy(body)
        if text:
            return text
    return serialize_fallback(body)


__all__ = [
    "MAX_FALLBACK_CHARS",
    "STRATEGIES",
    "extract_reply",
    "from_choice_message",
    "from_choice_text",
    "from_output_content",
    "serialize_fallback",
]
