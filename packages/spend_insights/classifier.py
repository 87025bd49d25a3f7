"""External categorization capability.

Categorization talks to the outside world only through the
:class:`Classifier` protocol, so tests (and offline runs) can drive the whole
pipeline with a deterministic fake. :class:`OpenAIClassifier` is the
production implementation on the OpenAI Responses API.

Implementations must return one decision per input item in input order and
signal failures by raising :class:`~spend_insights.errors.ExternalServiceError`
with ``retryable`` set; the orchestrator owns retries.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

import openai
from openai import OpenAI

from . import prompting
from .categorization import (
    ClassifyContext,
    ClassifyDecision,
    ClassifyItem,
    ensure_valid_items,
    parse_decisions,
)
from .errors import ExternalServiceError
from .logging_setup import get_logger

_logger = get_logger("spend_insights.classifier")


@runtime_checkable
class Classifier(Protocol):
    def classify(
        self,
        batch: Sequence[ClassifyItem],
        *,
        categories: Sequence[str],
        context: ClassifyContext,
    ) -> list[ClassifyDecision]: ...


def _extract_response_json_mapping(resp: Any) -> Mapping[str, Any]:
    """Decode the JSON mapping from a Responses SDK result.

    Prefers ``resp.output_text`` and falls back to
    ``resp.output[0].content[0].text``.
    """

    text: str | None = getattr(resp, "output_text", None)
    if not text:
        output = getattr(resp, "output", None) or []
        content = getattr(output[0], "content", None) if output else None
        if content:
            txt_obj = getattr(content[0], "text", None)
            if isinstance(txt_obj, str):
                text = txt_obj
            else:
                maybe_val = getattr(txt_obj, "value", None)
                if isinstance(maybe_val, str):
                    text = maybe_val
    if not text or not isinstance(text, str):
        raise ValueError("Unexpected Responses API shape; unable to locate text output")

    try:
        decoded: Mapping[str, Any] = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError("Model output was not valid JSON per the requested schema") from e
    return decoded


def is_retryable(exc: BaseException) -> bool:
    """Timeouts, connection failures, HTTP 429 and 5xx are worth retrying."""

    if isinstance(exc, ExternalServiceError):
        return exc.retryable
    if isinstance(exc, (openai.APITimeoutError, openai.APIConnectionError, TimeoutError)):
        return True
    sc = getattr(exc, "status_code", None)
    return isinstance(sc, int) and (sc == 429 or 500 <= sc < 600)


class OpenAIClassifier:
    """Classify batches with the Responses API and a strict JSON schema.

    The SDK's own retries are disabled (``max_retries=0``); retry policy
    lives in :mod:`spend_insights.categorize`.
    """

    def __init__(
        self,
        *,
        model: str = "gpt-5",
        timeout_s: float = 30.0,
        client: OpenAI | None = None,
    ) -> None:
        self.model = model
        self.timeout_s = timeout_s
        self._client = client

    def _get_client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(timeout=self.timeout_s, max_retries=0)
        return self._client

    def classify(
        self,
        batch: Sequence[ClassifyItem],
        *,
        categories: Sequence[str],
        context: ClassifyContext,
    ) -> list[ClassifyDecision]:
        ensure_valid_items(batch)
        if not batch:
            return []
        payload = prompting.serialize_request(batch, categories, context)
        try:
            resp = self._get_client().responses.create(
                model=self.model,
                instructions=prompting.build_system_instructions(),
                input=prompting.build_user_content(payload),
                text={"format": prompting.build_response_format(categories)},
                timeout=self.timeout_s,
            )
        except openai.OpenAIError as e:
            retryable = is_retryable(e)
            _logger.debug(
                "classifier:request_failed error=%s retryable=%s", e.__class__.__name__, retryable
            )
            raise ExternalServiceError(
                f"categorization request failed: {e}", retryable=retryable
            ) from e

        try:
            body = _extract_response_json_mapping(resp)
            return parse_decisions(body, num_items=len(batch), allowed_categories=categories)
        except ValueError as e:
            # Malformed answers are terminal.
            raise ExternalServiceError(
                f"categorization response invalid: {e}", retryable=False
            ) from e


__all__ = ["Classifier", "OpenAIClassifier", "is_retryable"]
