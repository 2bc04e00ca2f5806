from insightgen.schemas.discovery import (
    DiscoveryRunHistoryRead,
    DiscoveryRunResultRead,
    DiscoveryStageSelection,
    DiscoverySummaryRead,
)
from insightgen.schemas.query import (
    ComplexityAnalysisRead,
    ComplexityIndicatorsRead,
    ComplexityRequest,
    ComplexityThresholdsPayload,
    CompositionChainRead,
    CompositionValidateRequest,
    CompositionValidationRead,
    ResidualFilterPayload,
    SnippetPayload,
    SqlValidateRequest,
    SqlValidationDetailsRead,
    SqlValidationRead,
)

__all__ = [
    "ComplexityAnalysisRead",
    "ComplexityIndicatorsRead",
    "ComplexityRequest",
    "ComplexityThresholdsPayload",
    "CompositionChainRead",
    "CompositionValidateRequest",
    "CompositionValidationRead",
    "DiscoveryRunHistoryRead",
    "DiscoveryRunResultRead",
    "DiscoveryStageSelection",
    "DiscoverySummaryRead",
    "ResidualFilterPayload",
    "SnippetPayload",
    "SqlValidateRequest",
    "SqlValidationDetailsRead",
    "SqlValidationRead",
]
