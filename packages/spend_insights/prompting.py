"""Prompt construction and request serialization for external categorization.

This module builds:
- The deterministic JSON request payload (``transactions``, ``categories``,
  ``context``) with a fixed field order per transaction.
- The system instructions and user content for the categorization task.
- The strict ``text.format`` JSON Schema object for the OpenAI Responses API.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from openai.types.responses.response_format_text_json_schema_config_param import (
    ResponseFormatTextJSONSchemaConfigParam,
)

if TYPE_CHECKING:
    from .categorization import ClassifyContext, ClassifyItem

TRANSACTION_FIELD_ORDER: tuple[str, ...] = ("idx", "description", "amount", "date")

_USER_TEMPLATE = """\
Categorize each transaction below into exactly one of the allowed categories.

Allowed categories:
{{CATEGORIES}}
Rules:
- Use only a name from the allowed list, spelled exactly as shown.
- Positive amounts are money spent; negative amounts are money received.
- "confidence" is your probability (0 to 1) that the category is right. Use a
  low value rather than guessing when a description is ambiguous.
- Return one result per transaction, echoing its "idx".
{{PREFERENCES}}{{PREVIOUS}}
BEGIN_TRANSACTIONS_JSON
{{TRANSACTIONS_JSON}}
END_TRANSACTIONS_JSON
"""


def serialize_request(
    items: Sequence[ClassifyItem],
    categories: Sequence[str],
    context: ClassifyContext,
) -> dict[str, Any]:
    """Return the request payload as a plain JSON-ready mapping."""

    return {
        "transactions": [
            {
                "idx": it.idx,
                "description": it.description,
                "amount": f"{it.amount:.2f}",
                "date": it.date.isoformat(),
            }
            for it in items
        ],
        "categories": list(categories),
        "context": {
            "userPreferences": context.user_preferences,
            "previousCategorizations": [dict(p) for p in context.previous_categorizations],
        },
    }


def serialize_transactions_to_json(transactions: Sequence[Mapping[str, Any]]) -> str:
    """Serialize transaction dicts to a JSON array with a fixed field order."""

    arr = [{key: t.get(key) for key in TRANSACTION_FIELD_ORDER} for t in transactions]
    return json.dumps(arr, ensure_ascii=False)


def build_system_instructions() -> str:
    return (
        "You are an agent that assigns personal-finance transactions to spending or income "
        "categories. Choose exactly one category per transaction from the provided list. "
        "Never invent categories. Output JSON only that conforms to the specified schema."
    )


def build_user_content(payload: Mapping[str, Any]) -> str:
    """Render the user prompt from a payload built by :func:`serialize_request`."""

    categories = "".join(f"  - {name}\n" for name in payload["categories"])
    context = payload.get("context") or {}

    prefs = str(context.get("userPreferences") or "").strip()
    prefs_text = f"\nUser preferences:\n{prefs}\n" if prefs else ""

    previous = context.get("previousCategorizations") or []
    if previous:
        lines = [f"  - {p['pattern']} -> {p['category']}" for p in previous]
        previous_text = (
            "\nThe user previously corrected these merchants; follow them:\n"
            + "\n".join(lines)
            + "\n"
        )
    else:
        previous_text = ""

    return (
        _USER_TEMPLATE.replace("{{CATEGORIES}}", categories)
        .replace("{{PREFERENCES}}", prefs_text)
        .replace("{{PREVIOUS}}", previous_text)
        .replace("{{TRANSACTIONS_JSON}}", serialize_transactions_to_json(payload["transactions"]))
    )


def build_response_format(categories: Sequence[str]) -> ResponseFormatTextJSONSchemaConfigParam:
    """Return the strict JSON Schema format restricting ``category`` to ``categories``.

    Schema shape::

        {"results": [{"idx": int, "category": <enum>, "confidence": 0..1,
                      "rationale": str}]}
    """

    names = [c for c in dict.fromkeys(str(c).strip() for c in categories) if c]
    if not names:
        raise ValueError("categories must contain at least one non-blank name")

    return {
        "type": "json_schema",
        "name": "transaction_categories",
        "schema": {
            "type": "object",
            "properties": {
                "results": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "idx": {"type": "integer"},
                            "category": {"type": "string", "enum": names},
                            "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                            "rationale": {"type": "string"},
                        },
                        "required": ["idx", "category", "confidence", "rationale"],
                        "additionalProperties": False,
                    },
                }
            },
            "required": ["results"],
            "additionalProperties": False,
        },
        "strict": True,
    }
