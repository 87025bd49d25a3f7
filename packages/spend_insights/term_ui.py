"""Terminal prompts for the pipeline's user decision points (prompt_toolkit).

- :func:`prompt_review_decision`: keep or drop a flagged transaction.
- :func:`select_category`: pick (or ask to create) a category for a group.
- :func:`prompt_new_category_name`: validated name for a new category.
- :func:`prompt_allocation`: percentage splits for a multi-vendor merchant.

Every helper accepts an optional ``session`` whose input/output are reused, so
tests drive them with a pipe input and ``DummyOutput``.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from prompt_toolkit import PromptSession
from prompt_toolkit.auto_suggest import AutoSuggest, Suggestion
from prompt_toolkit.completion import WordCompleter
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.styles import Style
from prompt_toolkit.validation import ValidationError, Validator

from .allocation import AllocationSet
from .categories import validate_name as _validate_name
from .filtering import ReviewDecision

CREATE_SENTINEL = "+ Create new category..."
_CREATE_HINT_PREFIX = "  [Create "


class CreateCategoryRequest:
    """Returned by :func:`select_category` when the user wants a new category."""

    __slots__ = ("name",)

    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:  # pragma: no cover - trivial repr
        return f"CreateCategoryRequest(name={self.name!r})"


def _session_like(session: PromptSession | None, kb: KeyBindings | None = None) -> PromptSession:
    if session is None:
        return PromptSession(key_bindings=kb)
    return PromptSession(
        input=getattr(session, "input", None),
        output=getattr(session, "output", None),
        key_bindings=kb,
    )


class _PrefixSuggest(AutoSuggest):
    """Grey inline completion of a known category; hints creation otherwise."""

    def __init__(self, vocab: Sequence[str], allow_create: bool) -> None:
        self._vocab = [w for w in vocab if w != CREATE_SENTINEL]
        self._allow_create = allow_create

    def get_suggestion(self, buffer, document):
        text = document.text
        if not text:
            return None
        lower = text.lower()
        if any(w.lower() == lower for w in self._vocab):
            return None
        for w in self._vocab:
            if w.lower().startswith(lower):
                return Suggestion(w[len(text) :]) if len(w) > len(text) else None
        if self._allow_create:
            return Suggestion(f"{_CREATE_HINT_PREFIX}'{text}'?]")
        return None


def select_category(
    categories: Sequence[str] | Iterable[str],
    *,
    default: str = "",
    message: str = "Category (Enter to accept): ",
    session: PromptSession | None = None,
    allow_create: bool = True,
) -> str | CreateCategoryRequest:
    """Prompt for one category, pre-filled with ``default``.

    Tab completes the inline suggestion (or opens the menu); Enter accepts the
    highlighted completion or the prefix suggestion. An unknown name, or the
    explicit create entry, returns a :class:`CreateCategoryRequest`.
    """

    names = list(categories)
    words = names + [CREATE_SENTINEL] if allow_create else names
    canonical = {w.lower(): w for w in names}

    def _prefix_match(text: str) -> str | None:
        if not text:
            return None
        lower = text.lower()
        if lower in canonical:
            return None
        return next((w for w in words if w.lower().startswith(lower)), None)

    def _suggested_remainder(b) -> str | None:
        s = getattr(b, "suggestion", None)
        remainder = getattr(s, "text", None)
        if remainder and remainder.startswith(_CREATE_HINT_PREFIX):
            remainder = None
        if not remainder:
            cand = _prefix_match(b.document.text)
            remainder = cand[len(b.document.text) :] if cand else None
        return remainder or None

    kb = KeyBindings()

    @kb.add("tab", eager=True)
    def _(event) -> None:  # pragma: no cover - integration path
        b = event.app.current_buffer
        remainder = _suggested_remainder(b)
        if remainder:
            b.insert_text(remainder)
        elif b.complete_state is None:
            b.start_completion(select_first=True)
        else:
            b.complete_next()

    @kb.add("down", eager=True)
    def _(event) -> None:  # pragma: no cover - integration path
        b = event.app.current_buffer
        if b.complete_state is None:
            b.start_completion(select_first=True)
        else:
            b.complete_next()

    @kb.add("enter", eager=True)
    def _(event) -> None:  # pragma: no cover - integration path
        b = event.app.current_buffer
        cs = b.complete_state
        if cs is not None and cs.current_completion is not None:
            b.apply_completion(cs.current_completion)
        else:
            remainder = _suggested_remainder(b)
            if remainder:
                b.insert_text(remainder)
        b.validate_and_handle()

    sess = _session_like(session, kb)
    result = sess.prompt(
        message,
        default=default,
        completer=WordCompleter(words, ignore_case=True, match_middle=True, sentence=True),
        auto_suggest=_PrefixSuggest(words, allow_create),
        style=Style.from_dict({"auto-suggestion": "fg:#888888"}),
        key_bindings=kb,
    ).strip()

    if not result:
        result = default
    if result == CREATE_SENTINEL:
        return CreateCategoryRequest("")
    if result.lower() in canonical:
        return canonical[result.lower()]
    if allow_create:
        return CreateCategoryRequest(result)
    return result


def prompt_new_category_name(
    *,
    initial: str = "",
    session: PromptSession | None = None,
    message: str = "New category name (Enter to save, Esc to cancel): ",
) -> str | None:
    """Collect a new category name; ``None`` when cancelled with Esc."""

    kb = KeyBindings()

    @kb.add("escape")
    def _(event) -> None:  # pragma: no cover - exercised indirectly
        event.app.exit(result=None)

    class _NameValidator(Validator):
        def validate(self, document) -> None:
            v = _validate_name(document.text)
            if not v.ok:
                raise ValidationError(message=v.reason or "Invalid name")

    return _session_like(session, kb).prompt(
        message, default=initial, validator=_NameValidator(), validate_while_typing=False
    )


_DECISION_WORDS = {
    "k": ReviewDecision.KEEP,
    "keep": ReviewDecision.KEEP,
    "d": ReviewDecision.DROP,
    "drop": ReviewDecision.DROP,
}


def prompt_review_decision(
    summary: str,
    *,
    session: PromptSession | None = None,
    default: ReviewDecision = ReviewDecision.KEEP,
) -> ReviewDecision:
    """Ask whether a flagged transaction should be kept as spending."""

    class _DecisionValidator(Validator):
        def validate(self, document) -> None:
            text = document.text.strip().lower()
            if text and text not in _DECISION_WORDS:
                raise ValidationError(message="Answer keep (k) or drop (d)")

    answer = _session_like(session).prompt(
        f"{summary}\nKeep or drop? [k/d] ",
        default=str(default),
        completer=WordCompleter(["keep", "drop"], ignore_case=True),
        validator=_DecisionValidator(),
        validate_while_typing=False,
    )
    return _DECISION_WORDS.get(answer.strip().lower(), default)


def parse_allocation_text(text: str) -> dict[str, str]:
    """Parse ``"Groceries=60, Household=40"`` into ``{name: percent}``."""

    out: dict[str, str] = {}
    for part in text.split(","):
        if not part.strip():
            continue
        name, sep, pct = part.partition("=")
        if not sep or not name.strip() or not pct.strip():
            raise ValueError(f"expected Category=percent, got {part.strip()!r}")
        out[name.strip()] = pct.strip().rstrip("%").strip()
    if not out:
        raise ValueError("enter at least one Category=percent pair")
    return out


def prompt_allocation(
    categories: Sequence[str],
    *,
    merchant: str,
    session: PromptSession | None = None,
) -> dict[str, str]:
    """Collect percentage splits that sum to 100 for ``merchant``."""

    known = {c.lower(): c for c in categories}

    class _AllocationValidator(Validator):
        def validate(self, document) -> None:
            try:
                splits = parse_allocation_text(document.text)
                unknown = [n for n in splits if n.lower() not in known]
                if unknown:
                    raise ValueError(f"unknown categories: {', '.join(unknown)}")
                AllocationSet.from_mapping(splits)
            except ValueError as e:
                raise ValidationError(message=str(e)) from e

    text = _session_like(session).prompt(
        f"Split {merchant} (e.g. Groceries=60, Household=40): ",
        validator=_AllocationValidator(),
        validate_while_typing=False,
    )
    return {known[n.lower()]: pct for n, pct in parse_allocation_text(text).items()}


__all__ = [
    "CREATE_SENTINEL",
    "CreateCategoryRequest",
    "select_category",
    "prompt_new_category_name",
    "prompt_review_decision",
    "parse_allocation_text",
    "prompt_allocation",
]
