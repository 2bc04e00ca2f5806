from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from insightgen.models import ClinicalOntologyConcept

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_NON_WORD = re.compile(r"[^a-z0-9]+")

EXACT_MATCH_CONFIDENCE = 0.95
MINIMUM_MATCH_SCORE = 0.5


@dataclass(frozen=True)
class ConceptMatch:
    concept_name: str
    semantic_concept: str
    semantic_category: str | None
    similarity: float


class ConceptMatcher(Protocol):
    def match(self, text: str) -> ConceptMatch | None:
        ...


def tokenize(text: str) -> tuple[str, ...]:
    """Split identifiers and phrases into lower-case word tokens (``woundArea`` -> ``wound``, ``area``)."""

    spaced = _CAMEL_BOUNDARY.sub(" ", text or "")
    return tuple(token for token in _NON_WORD.split(spaced.lower()) if token)


@dataclass(frozen=True)
class _ConceptTerms:
    concept: ConceptMatch
    phrases: tuple[tuple[str, ...], ...]


class OntologyConceptMatcher:
    """Token-overlap matcher over the clinical ontology's names and synonyms."""

    def __init__(self, concepts: Sequence[ClinicalOntologyConcept]) -> None:
        self._terms: list[_ConceptTerms] = []
        self._data_sources: dict[str, ConceptMatch] = {}
        for concept in concepts:
            if concept.is_deprecated:
                continue
            match = ConceptMatch(
                concept_name=concept.concept_name,
                semantic_concept=concept.semantic_concept,
                semantic_category=concept.semantic_category,
                similarity=EXACT_MATCH_CONFIDENCE,
            )
            phrases = [tokenize(concept.concept_name)]
            phrases.extend(tokenize(synonym) for synonym in concept.synonyms or [])
            self._terms.append(_ConceptTerms(concept=match, phrases=tuple(p for p in phrases if p)))
            for source in concept.data_sources or []:
                self._data_sources[str(source).strip().lower()] = match

    @classmethod
    def from_session(cls, session: Session) -> "OntologyConceptMatcher":
        concepts = session.execute(
            select(ClinicalOntologyConcept).where(ClinicalOntologyConcept.is_deprecated.is_(False))
        ).scalars().all()
        return cls(concepts)

    def match_data_source(self, schema: str, table: str, column: str) -> ConceptMatch | None:
        for candidate in (f"{schema}.{table}.{column}", f"{table}.{column}"):
            found = self._data_sources.get(candidate.lower())
            if found is not None:
                return found
        return None

    def match(self, text: str) -> ConceptMatch | None:
        tokens = tokenize(text)
        if not tokens:
            return None
        token_set = set(tokens)

        best: ConceptMatch | None = None
        for terms in self._terms:
            for phrase in terms.phrases:
                if phrase == tokens:
                    score = EXACT_MATCH_CONFIDENCE
                else:
                    overlap = len(token_set.intersection(phrase))
                    if not overlap:
                        continue
                    score = round(0.9 * overlap / max(len(phrase), len(token_set)), 2)
                if score >= MINIMUM_MATCH_SCORE and (best is None or score > best.similarity):
                    best = ConceptMatch(
                        concept_name=terms.concept.concept_name,
                        semantic_concept=terms.concept.semantic_concept,
                        semantic_category=terms.concept.semantic_category,
                        similarity=score,
                    )
        return best
