"""Public interface for the ``spend_insights`` package.

Symbol re-exports only; see :mod:`spend_insights.pipeline` for the session
that strings the stages together.
"""

from .aggregate import aggregate, chart_payload, infer_period_months
from .allocation import AllocationSet, Percentage
from .categories import add_user_category, load_categories
from .categorize import (
    CategorizationRun,
    apply_allocation,
    apply_user_feedback,
    categorize,
    resolve_pending,
)
from .classifier import Classifier, OpenAIClassifier
from .config import Settings
from .errors import (
    AmbiguousColumnsError,
    ConfigurationError,
    ExternalServiceError,
    ParseError,
    ParseErrorKind,
    SpendInsightsError,
    ValidationError,
)
from .filtering import FilterOutcome, ReviewDecision, filter_transactions, resolve_review
from .grouping import amount_band, group
from .ingest import parse
from .models import (
    AnnualProjection,
    CategorizationResult,
    Category,
    CategoryKind,
    CategorySource,
    NormalizedTransaction,
    RawRecord,
    ResolutionState,
    TransactionGroup,
    TransactionKind,
)
from .normalize import normalize, normalize_all
from .pipeline import AnalysisSession, Stage
from .rules import (
    CategoryRuleSet,
    FilterRuleSet,
    NormalizationRuleSet,
    default_filter_rules,
    default_normalization_rules,
)

__all__ = [
    # Pipeline stages
    "parse",
    "normalize",
    "normalize_all",
    "filter_transactions",
    "resolve_review",
    "group",
    "amount_band",
    "categorize",
    "resolve_pending",
    "apply_user_feedback",
    "apply_allocation",
    "aggregate",
    "infer_period_months",
    "chart_payload",
    "load_categories",
    "add_user_category",
    "AnalysisSession",
    "Stage",
    # Models / types
    "RawRecord",
    "NormalizedTransaction",
    "TransactionKind",
    "TransactionGroup",
    "Category",
    "CategoryKind",
    "CategorySource",
    "ResolutionState",
    "CategorizationResult",
    "CategorizationRun",
    "AnnualProjection",
    "AllocationSet",
    "Percentage",
    "FilterOutcome",
    "ReviewDecision",
    "CategoryRuleSet",
    "NormalizationRuleSet",
    "FilterRuleSet",
    "default_normalization_rules",
    "default_filter_rules",
    "Settings",
    "Classifier",
    "OpenAIClassifier",
    # Errors
    "SpendInsightsError",
    "ParseError",
    "ParseErrorKind",
    "AmbiguousColumnsError",
    "ConfigurationError",
    "ValidationError",
    "ExternalServiceError",
]
