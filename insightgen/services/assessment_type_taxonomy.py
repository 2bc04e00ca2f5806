"""Static taxonomy of semantic concepts used to label assessment types (forms).

Concept names are customer-neutral; matching is done against assessment type
names using regular expressions first and keyword overlap second.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal, Pattern

AssessmentCategory = Literal["clinical", "billing", "administrative", "treatment"]

KEYWORD_CONFIDENCE_FACTOR = 0.7
MIN_KEYWORD_HITS = 2


@dataclass(frozen=True)
class AssessmentTypeConcept:
    concept: str
    category: AssessmentCategory
    description: str
    name_patterns: tuple[Pattern[str], ...]
    keywords: tuple[str, ...]
    is_wound_specific: bool
    default_confidence: float
    subcategory: str | None = None


@dataclass(frozen=True)
class ConceptMatchResult:
    concept: AssessmentTypeConcept
    confidence: float


def _patterns(*expressions: str) -> tuple[Pattern[str], ...]:
    return tuple(re.compile(expression, re.IGNORECASE) for expression in expressions)


ASSESSMENT_TYPE_TAXONOMY: tuple[AssessmentTypeConcept, ...] = (
    AssessmentTypeConcept(
        concept="clinical_wound_assessment",
        category="clinical",
        description="Clinical assessment of wound characteristics, measurements, and status",
        name_patterns=_patterns(
            r"wound\s*assessment",
            r"wound\s*eval",
            r"wound\s*measurement",
            r"wound\s*documentation",
            r"wound\s*progress",
        ),
        keywords=("wound", "assessment", "measurement", "area", "depth", "tissue"),
        is_wound_specific=True,
        default_confidence=0.95,
    ),
    AssessmentTypeConcept(
        concept="clinical_visit_documentation",
        category="clinical",
        description="Documentation of clinical visits, encounters, or consultations",
        name_patterns=_patterns(
            r"visit\s*detail", r"visit\s*note", r"encounter\s*note", r"clinical\s*visit", r"consultation"
        ),
        keywords=("visit", "encounter", "consultation", "clinical", "note"),
        is_wound_specific=False,
        default_confidence=0.90,
    ),
    AssessmentTypeConcept(
        concept="clinical_initial_assessment",
        category="clinical",
        subcategory="initial",
        description="Initial patient assessment or intake evaluation",
        name_patterns=_patterns(
            r"initial\s*assessment", r"intake\s*assessment", r"admission\s*assessment", r"baseline\s*assessment"
        ),
        keywords=("initial", "intake", "admission", "baseline", "new patient"),
        is_wound_specific=False,
        default_confidence=0.92,
    ),
    AssessmentTypeConcept(
        concept="clinical_follow_up_assessment",
        category="clinical",
        subcategory="follow_up",
        description="Follow-up assessment or progress evaluation",
        name_patterns=_patterns(r"follow[\s-]*up", r"progress\s*note", r"reassessment", r"re-assessment"),
        keywords=("follow-up", "followup", "progress", "reassessment", "ongoing"),
        is_wound_specific=False,
        default_confidence=0.88,
    ),
    AssessmentTypeConcept(
        concept="clinical_discharge_assessment",
        category="clinical",
        subcategory="discharge",
        description="Discharge or closing assessment",
        name_patterns=_patterns(r"discharge", r"final\s*assessment", r"termination", r"closure"),
        keywords=("discharge", "final", "termination", "closure", "exit"),
        is_wound_specific=False,
        default_confidence=0.93,
    ),
    AssessmentTypeConcept(
        concept="clinical_progress_note",
        category="clinical",
        subcategory="progress",
        description="Progress or SOAP note",
        name_patterns=_patterns(r"progress\s*note", r"soap\s*note", r"status\s*update", r"clinical\s*note"),
        keywords=("progress", "soap", "status", "note", "update"),
        is_wound_specific=False,
        default_confidence=0.87,
    ),
    AssessmentTypeConcept(
        concept="billing_documentation",
        category="billing",
        description="Billing and reimbursement documentation",
        name_patterns=_patterns(r"billing", r"charge\s*capture", r"reimbursement", r"invoice", r"claim"),
        keywords=("billing", "charge", "reimbursement", "invoice", "claim", "payment"),
        is_wound_specific=False,
        default_confidence=0.90,
    ),
    AssessmentTypeConcept(
        concept="billing_charge_capture",
        category="billing",
        description="Itemised service and procedure charges",
        name_patterns=_patterns(r"charge\s*capture", r"service\s*code", r"cpt\s*code", r"procedure\s*code"),
        keywords=("charge", "service code", "cpt", "procedure code", "itemized"),
        is_wound_specific=False,
        default_confidence=0.92,
    ),
    AssessmentTypeConcept(
        concept="billing_claim_form",
        category="billing",
        description="Insurance claim submission forms",
        name_patterns=_patterns(r"claim\s*form", r"insurance\s*claim", r"ub[\s-]*04", r"cms[\s-]*1500", r"hcfa"),
        keywords=("claim", "insurance", "ub-04", "cms-1500", "hcfa", "submission"),
        is_wound_specific=False,
        default_confidence=0.95,
    ),
    AssessmentTypeConcept(
        concept="administrative_intake",
        category="administrative",
        description="Patient registration and intake paperwork",
        name_patterns=_patterns(r"intake", r"registration", r"enrollment", r"onboarding"),
        keywords=("intake", "registration", "enrollment", "onboarding", "new patient"),
        is_wound_specific=False,
        default_confidence=0.88,
    ),
    AssessmentTypeConcept(
        concept="administrative_consent",
        category="administrative",
        description="Consent and authorisation forms",
        name_patterns=_patterns(r"consent", r"authorization", r"permission", r"hipaa"),
        keywords=("consent", "authorization", "permission", "hipaa", "agreement"),
        is_wound_specific=False,
        default_confidence=0.90,
    ),
    AssessmentTypeConcept(
        concept="administrative_demographics",
        category="administrative",
        description="Demographic and contact details",
        name_patterns=_patterns(r"demographic", r"contact\s*info", r"patient\s*info", r"personal\s*info"),
        keywords=("demographics", "contact", "address", "phone", "emergency contact"),
        is_wound_specific=False,
        default_confidence=0.85,
    ),
    AssessmentTypeConcept(
        concept="treatment_plan",
        category="treatment",
        description="Treatment or care plans",
        name_patterns=_patterns(r"treatment\s*plan", r"care\s*plan", r"plan\s*of\s*care", r"therapeutic\s*plan"),
        keywords=("treatment plan", "care plan", "therapeutic", "interventions"),
        is_wound_specific=False,
        default_confidence=0.90,
    ),
    AssessmentTypeConcept(
        concept="treatment_order",
        category="treatment",
        description="Physician or treatment orders",
        name_patterns=_patterns(r"treatment\s*order", r"physician\s*order", r"prescription", r"order\s*set"),
        keywords=("order", "prescription", "physician", "medication", "treatment"),
        is_wound_specific=False,
        default_confidence=0.92,
    ),
    AssessmentTypeConcept(
        concept="treatment_procedure",
        category="treatment",
        description="Procedures performed on a wound",
        name_patterns=_patterns(r"debridement", r"dressing\s*change", r"procedure", r"irrigation"),
        keywords=("procedure", "debridement", "dressing", "irrigation", "intervention"),
        is_wound_specific=True,
        default_confidence=0.90,
    ),
    AssessmentTypeConcept(
        concept="treatment_management_plan",
        category="treatment",
        description="Comprehensive wound management plans",
        name_patterns=_patterns(
            r"management\s*plan", r"wound\s*care\s*plan", r"wound\s*management", r"care\s*management"
        ),
        keywords=("management", "care plan", "wound care", "comprehensive"),
        is_wound_specific=True,
        default_confidence=0.90,
    ),
    AssessmentTypeConcept(
        concept="clinical_medical_history",
        category="clinical",
        subcategory="history",
        description="Medical history capture",
        name_patterns=_patterns(r"medical\s*history", r"health\s*history", r"past\s*medical", r"pmh"),
        keywords=("medical history", "health history", "past medical", "pmh", "background"),
        is_wound_specific=False,
        default_confidence=0.90,
    ),
    AssessmentTypeConcept(
        concept="clinical_medication_record",
        category="clinical",
        subcategory="medication",
        description="Medication lists and records",
        name_patterns=_patterns(r"medication", r"prescription", r"drug\s*list", r"med\s*list"),
        keywords=("medication", "prescription", "drug", "pharmaceutical", "med list"),
        is_wound_specific=False,
        default_confidence=0.92,
    ),
    AssessmentTypeConcept(
        concept="clinical_risk_assessment",
        category="clinical",
        subcategory="risk",
        description="Risk screenings such as pressure injury or falls",
        name_patterns=_patterns(r"risk\s*assessment", r"risk\s*screening", r"fall\s*risk", r"pressure\s*risk"),
        keywords=("risk", "assessment", "screening", "fall", "pressure"),
        is_wound_specific=False,
        default_confidence=0.88,
    ),
    AssessmentTypeConcept(
        concept="clinical_investigation",
        category="clinical",
        subcategory="investigation",
        description="Diagnostic investigations and results",
        name_patterns=_patterns(r"investigation", r"diagnostic", r"lab\s*result", r"test\s*result"),
        keywords=("investigation", "diagnostic", "lab", "test", "result"),
        is_wound_specific=False,
        default_confidence=0.85,
    ),
    AssessmentTypeConcept(
        concept="clinical_limb_assessment",
        category="clinical",
        subcategory="limb",
        description="Limb and extremity assessments",
        name_patterns=_patterns(
            r"limb\s*assessment", r"lower\s*limb", r"upper\s*limb", r"extremity\s*assessment"
        ),
        keywords=("limb", "extremity", "circulation", "sensation", "mobility"),
        is_wound_specific=False,
        default_confidence=0.87,
    ),
    AssessmentTypeConcept(
        concept="clinical_wound_state",
        category="clinical",
        description="Wound state or healing status",
        name_patterns=_patterns(r"wound\s*state", r"wound\s*status"),
        keywords=("wound state", "wound status", "healing", "condition"),
        is_wound_specific=True,
        default_confidence=0.90,
    ),
)


def find_matching_concepts(assessment_name: str) -> list[ConceptMatchResult]:
    """Return candidate concepts for an assessment type name, best first."""

    name_lower = (assessment_name or "").lower()
    matches: list[ConceptMatchResult] = []
    for concept in ASSESSMENT_TYPE_TAXONOMY:
        if any(pattern.search(assessment_name or "") for pattern in concept.name_patterns):
            matches.append(ConceptMatchResult(concept=concept, confidence=concept.default_confidence))
            continue
        hits = sum(1 for keyword in concept.keywords if keyword.lower() in name_lower)
        if hits >= MIN_KEYWORD_HITS:
            matches.append(
                ConceptMatchResult(
                    concept=concept,
                    confidence=round(concept.default_confidence * KEYWORD_CONFIDENCE_FACTOR, 4),
                )
            )
    matches.sort(key=lambda match: match.confidence, reverse=True)
    return matches


def get_concept_by_name(concept_name: str) -> AssessmentTypeConcept | None:
    for concept in ASSESSMENT_TYPE_TAXONOMY:
        if concept.concept == concept_name:
            return concept
    return None


def get_concepts_by_category(category: AssessmentCategory) -> list[AssessmentTypeConcept]:
    return [concept for concept in ASSESSMENT_TYPE_TAXONOMY if concept.category == category]
