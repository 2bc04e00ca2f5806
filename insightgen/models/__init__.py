from insightgen.models.entities import (
    ClinicalOntologyConcept,
    Customer,
    CustomerDiscoveryRun,
    DiscoveryLog,
    SemanticIndexAssessmentType,
    SemanticIndexField,
    SemanticIndexForm,
    SemanticIndexNonForm,
    SemanticIndexRelationship,
    utcnow,
)

__all__ = [
    "ClinicalOntologyConcept",
    "Customer",
    "CustomerDiscoveryRun",
    "DiscoveryLog",
    "SemanticIndexAssessmentType",
    "SemanticIndexField",
    "SemanticIndexForm",
    "SemanticIndexNonForm",
    "SemanticIndexRelationship",
    "utcnow",
]
