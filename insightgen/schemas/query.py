from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SnippetPayload(BaseModel):
    id: str = Field(..., min_length=1)
    name: str = ""
    intent: str
    inputs: list[str] = Field(default_factory=list)
    outputs: list[str] = Field(default_factory=list)
    required_context: list[str] = Field(default_factory=list, alias="requiredContext")
    description: str = ""

    model_config = ConfigDict(populate_by_name=True)


class CompositionValidateRequest(BaseModel):
    intent: str
    snippets: list[SnippetPayload] = Field(default_factory=list)


class CompositionChainRead(BaseModel):
    intent: str
    name: str
    description: str
    steps: list[str]
    optional_steps: list[str] = Field(alias="optionalSteps")
    required_order: bool = Field(alias="requiredOrder")
    input_mapping: dict[str, str] = Field(alias="inputMapping")
    outputs: list[str]
    example: str
    visualization: str

    model_config = ConfigDict(populate_by_name=True)


class CompositionValidationRead(BaseModel):
    valid: bool
    intent: str
    applied_chain: Optional[CompositionChainRead] = Field(default=None, alias="appliedChain")
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    message: str

    model_config = ConfigDict(populate_by_name=True)


class ResidualFilterPayload(BaseModel):
    field: str = Field(..., min_length=1)
    operator: str = "="
    value: Any = None
    required: bool = True
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    original_text: str = Field(default="", alias="originalText")
    source: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class SqlValidateRequest(BaseModel):
    sql: Optional[str] = None
    snippets: list[SnippetPayload] = Field(default_factory=list)
    filters: list[ResidualFilterPayload] = Field(default_factory=list)


class SqlValidationDetailsRead(BaseModel):
    cte_names: list[str] = Field(default_factory=list, alias="cteNames")
    has_where_clause: bool = Field(alias="hasWhereClause")
    where_clause_content: Optional[str] = Field(default=None, alias="whereClauseContent")

    model_config = ConfigDict(populate_by_name=True)


class SqlValidationRead(BaseModel):
    verdict: Literal["pass", "clarify", "reject"]
    used_snippets: list[str] = Field(default_factory=list, alias="usedSnippets")
    missing_snippets: list[str] = Field(default_factory=list, alias="missingSnippets")
    applied_filters: list[ResidualFilterPayload] = Field(default_factory=list, alias="appliedFilters")
    dropped_filters: list[ResidualFilterPayload] = Field(default_factory=list, alias="droppedFilters")
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    details: SqlValidationDetailsRead

    model_config = ConfigDict(populate_by_name=True)


class ComplexityThresholdsPayload(BaseModel):
    simple: int = Field(default=4, ge=0, le=10)
    medium: int = Field(default=7, ge=0, le=10)
    complex: int = Field(default=10, ge=0, le=10)

    @model_validator(mode="after")
    def check_ordering(self) -> "ComplexityThresholdsPayload":
        if not self.simple <= self.medium <= self.complex:
            raise ValueError("Thresholds must satisfy simple <= medium <= complex")
        return self


class ComplexityRequest(BaseModel):
    question: str = Field(..., min_length=1)
    thresholds: Optional[ComplexityThresholdsPayload] = None


class ComplexityIndicatorsRead(BaseModel):
    multi_step: bool = Field(alias="multiStep")
    aggregations: int
    comparisons: int
    time_series: bool = Field(alias="timeSeries")
    multi_entity: bool = Field(alias="multiEntity")
    grouping: bool

    model_config = ConfigDict(populate_by_name=True)


class ComplexityAnalysisRead(BaseModel):
    complexity: Literal["simple", "medium", "complex"]
    score: int
    strategy: Literal["auto", "preview", "inspect"]
    strategy_label: str = Field(alias="strategyLabel")
    confidence: float
    reasons: list[str]
    indicators: ComplexityIndicatorsRead
    explanation: str

    model_config = ConfigDict(populate_by_name=True)
