"""CLI for the ``spend_insights`` package.

Command handlers (``cmd_analyze``, ``cmd_categories``) return a process exit
code and print ``Error: ...`` to stderr on failure; the Typer commands below
are thin wrappers. ``.env`` is loaded with ``python-dotenv`` before settings
are read, so ``OPENAI_API_KEY`` and ``SPEND_INSIGHTS_*`` can live there.
"""

from __future__ import annotations

import json
import os
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .categories import load_categories
from .config import Settings
from .errors import AmbiguousColumnsError, ParseError, SpendInsightsError
from .filtering import ReviewDecision
from .logging_setup import configure_logging
from .models import (
    AnnualProjection,
    CategorizationResult,
    CategoryKind,
    ResolutionState,
    TransactionKind,
    merchant_key,
)
from .pipeline import AnalysisSession


def _err(msg: str) -> None:
    print(f"Error: {msg}", file=sys.stderr)


def _parse_column_map(pairs: Sequence[str]) -> dict[str, str] | None:
    """``["date=Posted Date", ...]`` -> ``{"date": "Posted Date", ...}``."""

    if not pairs:
        return None
    out: dict[str, str] = {}
    for pair in pairs:
        role, sep, header = pair.partition("=")
        if not sep or not role.strip() or not header.strip():
            raise ValueError(f"--column expects role=Header, got {pair!r}")
        out[role.strip().lower()] = header.strip()
    return out


def _format_table(projections: Sequence[AnnualProjection]) -> list[str]:
    width = max([len("Category")] + [len(p.category) for p in projections])
    lines = [f"{'Category':<{width}}  {'Total':>12}  {'Monthly':>12}  {'Annual':>12}"]
    for p in projections:
        lines.append(
            f"{p.category:<{width}}  {p.total:>12.2f}  {p.monthly_average:>12.2f}  "
            f"{p.projected_annual:>12.2f}"
        )
    return lines


def _load_files(session: AnalysisSession, files: Sequence[Path], column_map, day_first) -> int:
    """Ingest every file; a file that fails to parse is reported and skipped."""

    loaded = 0
    for path in files:
        try:
            data = path.read_bytes()
        except OSError as e:
            _err(f"cannot read {path}: {e}")
            continue
        try:
            session.add_file(
                data,
                path.suffix,
                source_file=path.name,
                column_map=column_map,
                day_first=day_first,
            )
        except AmbiguousColumnsError as e:
            _err(f"{path.name}: {e}")
            print(
                "Hint: pass --column role=Header (e.g. --column 'date=Posted Date').",
                file=sys.stderr,
            )
            continue
        except ParseError as e:
            _err(f"{path.name}: {e}")
            continue
        loaded += 1
    return loaded


def _review_flagged(session: AnalysisSession, flagged_policy: str, interactive: bool) -> None:
    outcome = session.filter_outcome
    if outcome is None or not outcome.flagged:
        return
    if flagged_policy in ("keep", "drop"):
        decision = ReviewDecision(flagged_policy)
        session.resolve_review({t.id: decision for t in outcome.flagged})
        return
    if not interactive:
        raise SpendInsightsError(
            f"{len(outcome.flagged)} transaction(s) need a keep/drop decision; "
            "rerun with --interactive or --flagged keep|drop"
        )

    from .term_ui import prompt_review_decision

    decisions = {}
    for t in outcome.flagged:
        summary = f"{t.date.isoformat()}  {t.description}  {t.amount:.2f}"
        decisions[t.id] = prompt_review_decision(summary)
    session.resolve_review(decisions)


def _needs_attention(result: CategorizationResult) -> bool:
    if result.is_final:
        return False
    return result.needs_review or result.state in (
        ResolutionState.STILL_UNCATEGORIZED,
        ResolutionState.PENDING_EXTERNAL,
    )


def _review_categories(session: AnalysisSession, settings: Settings) -> None:
    from .term_ui import (
        CreateCategoryRequest,
        prompt_allocation,
        prompt_new_category_name,
        select_category,
    )

    if session.run is None:
        raise SpendInsightsError("Categorization has not run yet")
    multi_vendor = {merchant_key(m) for m in settings.multi_vendor_merchants}
    for item_id in [r.item_id for r in session.run.ordered_results() if _needs_attention(r)]:
        # Earlier feedback may already have re-matched this group.
        current = session.run.results[item_id]
        if not _needs_attention(current):
            continue
        grp = session.run.group(item_id)
        kind = grp.kind
        names = session.categories.names(kind)
        print(
            f"\n{grp.representative_merchant}: {len(grp.members)} transaction(s), "
            f"total {grp.total_amount:.2f}"
        )
        if grp.exemplar.merchant_key in multi_vendor:
            splits = prompt_allocation(names, merchant=grp.representative_merchant)
            session.apply_allocation(item_id, splits)
            continue

        choice = select_category(names, default=current.category or "")
        if isinstance(choice, CreateCategoryRequest):
            name = prompt_new_category_name(initial=choice.name)
            if not name:
                continue
            category_kind = (
                CategoryKind.INCOME if kind is TransactionKind.INCOME else CategoryKind.EXPENSE
            )
            choice = session.add_category(name, kind=category_kind)
        session.apply_user_feedback(item_id, choice)


def cmd_analyze(
    files: Sequence[Path],
    categories_path: Path,
    *,
    period_months: float | None = None,
    offline: bool = False,
    interactive: bool = False,
    flagged: str = "ask",
    columns: Sequence[str] = (),
    day_first: bool | None = None,
    report_path: Path | None = None,
) -> int:
    """Run the whole pipeline over ``files`` and print the projection table."""

    try:
        settings = Settings.from_env()
        categories = load_categories(categories_path)
        column_map = _parse_column_map(columns)
    except (SpendInsightsError, ValueError) as e:
        _err(str(e))
        return 1

    if flagged not in ("ask", "keep", "drop"):
        _err(f"--flagged must be ask, keep or drop, got {flagged!r}")
        return 1

    if not offline and not os.getenv("OPENAI_API_KEY"):
        _err("OPENAI_API_KEY is not set in the environment (or use --offline).")
        return 1

    session = AnalysisSession(categories=categories, settings=settings)
    if _load_files(session, files, column_map, day_first) == 0:
        _err("no input file could be parsed")
        return 1

    try:
        outcome = session.prepare()
        print(
            f"{len(session.records)} records: kept {len(outcome.kept)}, "
            f"flagged {len(outcome.flagged)}, dropped {len(outcome.dropped)}"
        )
        _review_flagged(session, flagged, interactive)

        classifier = None
        if not offline:
            from .classifier import OpenAIClassifier

            classifier = OpenAIClassifier(model=settings.model, timeout_s=settings.timeout_s)
        run = session.categorize(classifier)
        queue = [r for r in run.ordered_results() if _needs_attention(r)]
        if queue:
            print(f"{len(queue)} group(s) need review.")
            if interactive:
                _review_categories(session, settings)

        projections = session.projections(period_months)
    except SpendInsightsError as e:
        _err(str(e))
        return 1

    for line in _format_table(projections):
        print(line)

    if report_path is not None:
        report = session.report(period_months)
        report_path.write_text(json.dumps(report, indent=2), encoding="utf-8")
        print(f"Report written to {report_path}")
    return 0


def cmd_categories(categories_path: Path) -> int:
    """Validate a category configuration and list it."""

    try:
        rules = load_categories(categories_path)
    except SpendInsightsError as e:
        _err(str(e))
        return 1
    for c in rules.categories:
        extras = []
        if c.keywords:
            extras.append("keywords=" + ",".join(sorted(c.keywords)))
        if c.patterns:
            extras.append(f"patterns={len(c.patterns)}")
        if c.color:
            extras.append(f"color={c.color}")
        print(f"{c.kind}\t{c.name}\t{' '.join(extras)}".rstrip())
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Normalize, filter, categorize and project personal spending from bank exports. "
        "Loads OPENAI_API_KEY and SPEND_INSIGHTS_* settings from a local .env."
    ),
)

# Module-level option objects (ruff B008: no calls in parameter defaults).
CATEGORIES_OPTION: OptionInfo = typer.Option(
    ...,
    "--categories",
    help="Path to the category configuration JSON.",
    dir_okay=False,
    file_okay=True,
    exists=False,
)
FILES_OPTION: OptionInfo = typer.Option(
    ...,
    "--file",
    help="Bank/card export (.csv, .tsv or .xlsx). Repeat for several files.",
    dir_okay=False,
    file_okay=True,
    exists=False,
)
COLUMN_OPTION: OptionInfo = typer.Option(
    "--column",
    help="Confirm a column role, e.g. --column 'date=Posted Date'. Repeatable.",
)


@app.command("analyze")
def analyze_cmd(
    files: Annotated[list[Path], FILES_OPTION],
    categories: Annotated[Path, CATEGORIES_OPTION],
    *,
    columns: Annotated[list[str] | None, COLUMN_OPTION] = None,
    period_months: float | None = typer.Option(
        None, help="Months covered by the data (defaults to the date span)."
    ),
    offline: bool = typer.Option(False, help="Skip the external categorization service."),
    interactive: bool = typer.Option(
        False, "--interactive/--no-interactive", help="Prompt for review decisions."
    ),
    flagged: str = typer.Option(
        "ask", help="Flagged transactions: ask (interactive), keep or drop."
    ),
    day_first: bool | None = typer.Option(
        None, "--day-first/--month-first", help="Resolve ambiguous dates like 03/04/2024."
    ),
    report: Path | None = typer.Option(None, help="Write chart + detail JSON to this path."),
) -> None:
    """Analyze one or more export files."""

    code = cmd_analyze(
        files,
        categories,
        period_months=period_months,
        offline=offline,
        interactive=interactive,
        flagged=flagged,
        columns=columns or (),
        day_first=day_first,
        report_path=report,
    )
    raise typer.Exit(code)


@app.command("categories")
def categories_cmd(categories: Annotated[Path, CATEGORIES_OPTION]) -> None:
    """Validate and list configured categories."""

    raise typer.Exit(cmd_categories(categories))


@app.callback(invoke_without_command=True)
def _root(ctx: typer.Context) -> None:
    """Load ``.env`` (without overriding the environment) and configure logging."""

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()

    if ctx.invoked_subcommand is None:
        typer.echo("No subcommand provided. Use --help to see available commands.")
        raise typer.Exit(1)


if __name__ == "__main__":  # pragma: no cover
    app()
