from insightgen.services.complexity_detector import analyze_complexity
from insightgen.services.composition_validator import validate_composition
from insightgen.services.discovery_orchestrator import DiscoveryOrchestrator, discovery_orchestrator
from insightgen.services.sql_validator import validate_generated_sql

__all__ = [
	"DiscoveryOrchestrator",
	"analyze_complexity",
	"discovery_orchestrator",
	"validate_composition",
	"validate_generated_sql",
]
