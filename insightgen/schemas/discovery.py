from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from insightgen.services.discovery_orchestrator import DiscoveryStageOptions


class DiscoveryStageSelection(BaseModel):
    form_discovery: bool = Field(default=True, alias="formDiscovery")
    non_form_schema: bool = Field(default=True, alias="nonFormSchema")
    relationships: bool = True
    assessment_types: bool = Field(default=True, alias="assessmentTypes")
    discovery_logging: bool = Field(default=True, alias="discoveryLogging")

    model_config = ConfigDict(populate_by_name=True)

    def to_options(self) -> DiscoveryStageOptions:
        return DiscoveryStageOptions(
            form_discovery=self.form_discovery,
            non_form_schema=self.non_form_schema,
            relationships=self.relationships,
            assessment_types=self.assessment_types,
            discovery_logging=self.discovery_logging,
        )


class DiscoverySummaryRead(BaseModel):
    forms_discovered: int = Field(alias="formsDiscovered")
    fields_discovered: int = Field(alias="fieldsDiscovered")
    avg_confidence: Optional[float] = Field(default=None, alias="avgConfidence")
    fields_requiring_review: int = Field(alias="fieldsRequiringReview")
    non_form_columns: int = Field(alias="nonFormColumns")
    non_form_columns_requiring_review: int = Field(alias="nonFormColumnsRequiringReview")
    relationships_discovered: int = Field(alias="relationshipsDiscovered")
    assessment_types_discovered: int = Field(alias="assessmentTypesDiscovered")
    warnings: list[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class DiscoveryRunResultRead(BaseModel):
    status: str
    customer_id: UUID = Field(alias="customerId")
    run_id: UUID = Field(alias="runId")
    started_at: datetime = Field(alias="startedAt")
    completed_at: datetime = Field(alias="completedAt")
    duration_seconds: float = Field(alias="durationSeconds")
    summary: Optional[DiscoverySummaryRead] = None
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    error: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class DiscoveryRunHistoryRead(BaseModel):
    run_id: UUID = Field(alias="runId")
    status: str
    started_at: datetime = Field(alias="startedAt")
    completed_at: Optional[datetime] = Field(default=None, alias="completedAt")
    duration_seconds: Optional[float] = Field(default=None, alias="durationSeconds")
    stages: dict[str, bool] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    forms_discovered: Optional[int] = Field(default=None, alias="formsDiscovered")
    fields_discovered: Optional[int] = Field(default=None, alias="fieldsDiscovered")
    avg_confidence: Optional[float] = Field(default=None, alias="avgConfidence")
    fields_requiring_review: Optional[int] = Field(default=None, alias="fieldsRequiringReview")
    non_form_columns: Optional[int] = Field(default=None, alias="nonFormColumns")
    relationships_discovered: Optional[int] = Field(default=None, alias="relationshipsDiscovered")
    assessment_types_discovered: Optional[int] = Field(default=None, alias="assessmentTypesDiscovered")
    error_message: Optional[str] = Field(default=None, alias="errorMessage")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)
