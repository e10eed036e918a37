"""Build the single text prompt sent to the generation service."""
from __future__ import annotations

from typing import List, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from session_manager import Turn

HISTORY_WINDOW = 6
MAX_PRODUCTS = 6
MAX_FAQ = 6


def _blank_if_none(value):
    return "" if value is None else value


def _list_if_none(value):
    if value is None:
        return []
    if isinstance(value, list):
        return [item for item in value if item is not None]
    return value


class Product(BaseModel):
    title: str = ""
    price: Optional[Union[str, int, float]] = None
    url: str = ""

    blank_strings = field_validator("title", "url", mode="before")(_blank_if_none)


class FAQEntry(BaseModel):
    q: str = ""
    a: str = ""

    blank_strings = field_validator("q", "a", mode="before")(_blank_if_none)


class StoreMeta(BaseModel):
    """Store description supplied by the widget on every request.

    Widgets send ``null`` for unset fields; those read as empty strings/lists.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = ""
    url: str = ""
    currency: str = ""
    shipping: str = ""
    support_email: str = Field(default="", alias="supportEmail")
    top_products: List[Product] = Field(default_factory=list, alias="topProducts")
    faq: List[FAQEntry] = Field(default_factory=list)

    blank_strings = field_validator(
        "name", "url", "currency", "shipping", "support_email", mode="before"
    )(_blank_if_none)
    empty_lists = field_validator("top_products", "faq", mode="before")(_list_if_none)


def build_instructions(meta: StoreMeta) -> str:
    return " ".join(
        [
            f"You are an ecommerce assistant for {meta.name}.",
            f"Store URL: {meta.url}",
            f"Currency: {meta.currency}. Shipping policy: {meta.shipping}.",
            "Answer customer queries concisely, politely, and include product links when relevant.",
            "If a user asks for order status or personal orders, say: "
            f'"I cannot access orders here; please contact support at {meta.support_email}".',
            "You must not invent pricing or availability. "
            "If unsure, ask user to check product page.",
        ]
    )


def _price(value: Optional[Union[str, int, float]]) -> str:
    return "" if value is None else str(value)


def build_grounding(meta: StoreMeta) -> str:
    lines = ["Top products (brief):"]
    lines.extend(
        f"- {p.title} - {_price(p.price)} - {p.url}" for p in meta.top_products[:MAX_PRODUCTS]
    )
    lines.append("FAQ:")
    lines.extend(f"Q: {f.q}\nA: {f.a}" for f in meta.faq[:MAX_FAQ])
    return "\n".join(lines)


def conversation_window(turns: Sequence[Turn], message: str) -> List[Turn]:
    """Last ``HISTORY_WINDOW`` turns, leaving out the current message.

    The current message is always rendered as the trailing ``User:`` line, so
    when it is already the newest turn it is not repeated inside the window.
    """

    history = list(turns)
    if history and history[-1].role == "user" and history[-1].text == message:
        history.pop()
    return history[-HISTORY_WINDOW:]


def render_turns(turns: Sequence[Turn]) -> str:
    return "\n".join(f"{t.label()}: {t.text}" for t in turns)


def build_prompt(meta: Optional[StoreMeta], turns: Sequence[Turn], message: str) -> str:
    meta = meta or StoreMeta()
    recent = render_turns(conversation_window(turns, message))
    return (
        f"{build_instructions(meta)}\n\n"
        f"{build_grounding(meta)}\n\n"
        f"Conversation:\n{recent}\nUser: {message}\n\nAssistant:"
    )


__all__ = [
    "StoreMeta",
    "Product",
    "FAQEntry",
    "HISTORY_WINDOW",
    "build_instructions",
    "build_grounding",
    "conversation_window",
    "build_prompt",
]
