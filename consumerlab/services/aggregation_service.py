"""
AggregationService - summary statistics over preference records.

Computes overall averages, the top-performing concept, per-concept
roll-ups and demographic-filtered views of a completed analysis.
"""

import logging
from typing import Dict, List, Optional

from ..core.exceptions import NoDataError
from .models import (
    AnalysisSummary,
    Concept,
    ConceptScore,
    DemographicFilters,
    FilteredSummary,
    Persona,
    PreferenceRecord,
)

logger = logging.getLogger(__name__)


# Upper bounds (exclusive) of the reporting age buckets
AGE_BUCKETS = [
    (25, "18-24"),
    (35, "25-34"),
    (45, "35-44"),
    (55, "45-54"),
    (65, "55-64"),
]
OLDEST_AGE_BUCKET = "65+"


def age_bucket(age: int) -> str:
    """Reporting bucket label for an age."""
    for upper, label in AGE_BUCKETS:
        if age < upper:
            return label
    return OLDEST_AGE_BUCKET


def _mean(values: List[float]) -> float:
    return sum(values) / len(values)


class AggregationService:
    """Derives summaries from a concept set and its preference records."""

    def summarize(
        self,
        concepts: List[Concept],
        analyses: List[PreferenceRecord],
        insights: Optional[List[str]] = None
    ) -> AnalysisSummary:
        """
        Overall averages plus the concept with the highest mean preference.

        Records for concepts outside `concepts` are ignored.

        Raises:
            NoDataError: If no record belongs to a given concept
        """
        if not analyses:
            raise NoDataError("No analysis records to summarize")

        concept_ids = {c.id for c in concepts}
        records = [a for a in analyses if a.concept_id in concept_ids]
        if not records:
            raise NoDataError("No analysis records reference the submitted concepts")
        if len(records) < len(analyses):
            logger.warning(f"Ignoring {len(analyses) - len(records)} records for unknown concepts")

        top = self.top_performing_concept(concepts, records)

        return AnalysisSummary(
            average_preference=_mean([a.preference for a in records]),
            average_innovativeness=_mean([a.innovativeness for a in records]),
            average_differentiation=_mean([a.differentiation for a in records]),
            top_performing_concept=top.title,
            insights=list(insights or []),
        )

    def top_performing_concept(
        self,
        concepts: List[Concept],
        analyses: List[PreferenceRecord]
    ) -> Optional[Concept]:
        """
        Concept whose own records have the highest mean preference.

        Concepts without records are skipped; ties keep the first concept.
        """
        best: Optional[Concept] = None
        best_score = float("-inf")

        for concept in concepts:
            own = [a.preference for a in analyses if a.concept_id == concept.id]
            if not own:
                continue
            score = _mean(own)
            if score > best_score:
                best, best_score = concept, score

        return best

    def concept_scores(
        self,
        concepts: List[Concept],
        analyses: List[PreferenceRecord]
    ) -> List[ConceptScore]:
        """Per-concept averages in concept order; concepts without records are omitted."""
        by_concept: Dict[str, List[PreferenceRecord]] = {}
        for record in analyses:
            by_concept.setdefault(record.concept_id, []).append(record)

        scores = []
        for concept in concepts:
            own = by_concept.get(concept.id)
            if not own:
                continue
            preference = _mean([a.preference for a in own])
            innovativeness = _mean([a.innovativeness for a in own])
            differentiation = _mean([a.differentiation for a in own])
            scores.append(ConceptScore(
                concept_id=concept.id,
                title=concept.title,
                average_preference=preference,
                average_innovativeness=innovativeness,
                average_differentiation=differentiation,
                overall_score=(preference + innovativeness + differentiation) / 3,
                responses=len(own),
            ))
        return scores

    def rank_concepts(
        self,
        concepts: List[Concept],
        analyses: List[PreferenceRecord]
    ) -> List[ConceptScore]:
        """Concept scores ordered by overall score, best first (stable on ties)."""
        return sorted(self.concept_scores(concepts, analyses), key=lambda s: -s.overall_score)

    # =========================================================================
    # Demographic filtering
    # =========================================================================

    @staticmethod
    def matches(profile: Persona, filters: DemographicFilters) -> bool:
        """True if the persona satisfies every non-empty filter."""
        checks = [
            (filters.age_ranges, age_bucket(profile.age)),
            (filters.genders, profile.gender),
            (filters.locations, profile.location),
            (filters.income_ranges, profile.income),
            (filters.education_levels, profile.education),
            (filters.tech_savviness, profile.tech_savviness),
            (filters.environmental_awareness, profile.environmental_awareness),
            (filters.brand_loyalty, profile.brand_loyalty),
            (filters.price_sensitivity, profile.price_sensitivity),
        ]
        return all(not allowed or value in allowed for allowed, value in checks)

    def filter_profiles(self, profiles: List[Persona], filters: DemographicFilters) -> List[Persona]:
        return [p for p in profiles if self.matches(p, filters)]

    @staticmethod
    def filter_analyses(analyses: List[PreferenceRecord], profiles: List[Persona]) -> List[PreferenceRecord]:
        """Records belonging to the given personas."""
        profile_ids = {p.id for p in profiles}
        return [a for a in analyses if a.profile_id in profile_ids]

    def filtered_summary(
        self,
        profiles: List[Persona],
        concepts: List[Concept],
        analyses: List[PreferenceRecord],
        filters: DemographicFilters,
        insights: Optional[List[str]] = None
    ) -> FilteredSummary:
        """
        Summary and concept ranking restricted to personas matching `filters`.

        Raises:
            NoDataError: If no record belongs to a matching persona
        """
        selected = self.filter_profiles(profiles, filters)
        records = self.filter_analyses(analyses, selected)
        logger.info(f"Filtered summary over {len(selected)}/{len(profiles)} profiles, {len(records)} records")

        return FilteredSummary(
            summary=self.summarize(concepts, records, insights),
            concept_scores=self.rank_concepts(concepts, records),
            matching_profiles=len(selected),
            matching_analyses=len(records),
        )
