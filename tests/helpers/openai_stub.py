"""Test helpers to stub the OpenAI Responses client used by ``OpenAIClassifier``.

The stub parses the user content to extract the embedded transactions JSON
array and returns a deterministic ``{"results": [...]}`` body. Tests provide a
``decide`` callable mapping each transaction dict to a
``(category, confidence, rationale)`` tuple so the test surface stays small.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

BEGIN = "BEGIN_TRANSACTIONS_JSON\n"
END = "\nEND_TRANSACTIONS_JSON"


def extract_transactions(user_content: str) -> list[dict[str, Any]]:
    b = user_content.find(BEGIN)
    e = user_content.rfind(END)
    if b == -1 or e == -1 or e <= b:
        raise AssertionError("classifier: user content missing embedded transactions JSON block")
    return json.loads(user_content[b + len(BEGIN) : e])


class _Resp:
    def __init__(self, output_text: str) -> None:
        self.output_text = output_text


class OpenAIStub:
    """Minimal stand-in for ``openai.OpenAI`` exposing ``responses.create``.

    Parameters
    ----------
    decide:
        Receives one transaction mapping and returns ``(category, confidence,
        rationale)``; ``idx`` is threaded through into the response.
    raise_exc:
        When set, every ``create`` call raises it instead of answering.
    raw_text:
        When set, returned verbatim as ``output_text`` (for malformed answers).
    """

    def __init__(
        self,
        decide: Callable[[dict[str, Any]], tuple[str, float, str]] | None = None,
        *,
        raise_exc: BaseException | None = None,
        raw_text: str | None = None,
    ) -> None:
        self._decide = decide
        self._raise = raise_exc
        self._raw_text = raw_text
        self.calls: list[dict[str, Any]] = []

        class _Responses:
            def __init__(self, outer: OpenAIStub) -> None:
                self._outer = outer

            def create(self, **kwargs: Any) -> _Resp:
                outer = self._outer
                outer.calls.append(kwargs)
                if outer._raise is not None:
                    raise outer._raise
                if outer._raw_text is not None:
                    return _Resp(outer._raw_text)
                assert outer._decide is not None
                results = []
                for item in extract_transactions(kwargs["input"]):
                    category, confidence, rationale = outer._decide(item)
                    results.append(
                        {
                            "idx": item["idx"],
                            "category": category,
                            "confidence": float(confidence),
                            "rationale": rationale,
                        }
                    )
                return _Resp(json.dumps({"results": results}))

        self.responses = _Responses(self)
