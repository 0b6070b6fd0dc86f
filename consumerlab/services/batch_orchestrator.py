"""
Batch orchestration for persona generation and preference analysis.

Both pipelines issue a bounded sequence of completion calls, strictly one
at a time per job, and absorb per-batch failures:

- ProfileGenerationOrchestrator builds a panel in chunks over a single
  conversation, so later chunks see recent output and avoid duplicates.
- PreferenceAnalysisOrchestrator scores every (profile batch, concept) pair,
  rotating models per pair and retrying once on a fallback model.

A failed or unparseable batch is logged and skipped, never retried. Only a
run that yields zero usable records raises GenerationFailedError.
"""

import asyncio
import logging
import math
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import logfire
from pydantic import ValidationError

from ..core.config import Config
from ..core.exceptions import (
    ConsumerLabError,
    GenerationFailedError,
    JobCancelledError,
)
from .completion_service import CompletionProvider
from .models import Concept, DemographicInput, Persona, PreferenceRecord
from .response_parser import extract_json_payload, parse_structured_response

logger = logging.getLogger(__name__)


PROFILE_SYSTEM_PROMPT = (
    "You are an expert consumer research analyst. Generate realistic and diverse consumer "
    "profiles based on demographic inputs. IMPORTANT: Respond with valid JSON only - no "
    "markdown code blocks, no explanations, just a pure JSON array. When asked to continue, "
    "generate more profiles following the same format and demographic constraints, ensuring "
    "variety and no duplicates."
)

PROFILE_PROMPT = """Generate exactly {batch_size} diverse consumer profiles based on the following demographics:

Age Range: {age_range}
Genders: {genders}
Locations: {locations}
Income Range: {income_range}
Education Levels: {education_levels}
{additional_context}
For each profile, provide realistic and diverse characteristics including:
- Unique lifestyle description including family situation, occupation, daily habits
- 2-4 interests/hobbies
- Shopping behavior patterns
- Technology adoption level (Low/Medium/High/Very High)
- Environmental awareness level (Low/Medium/High/Very High)
- Brand loyalty tendencies (Low/Medium/High/Very High)
- Price sensitivity (Low/Medium/High/Very High)
- A realistic first and last name that fits the demographic (no placeholder names)

Return ONLY a valid JSON array with exactly {batch_size} profiles, each with this structure:
[
  {{
    "id": "unique_id_string",
    "name": "first and last name",
    "age": number,
    "gender": "string",
    "location": "string",
    "income": "string",
    "education": "string",
    "lifestyle": "string",
    "interests": ["interest1", "interest2"],
    "shoppingBehavior": "string",
    "techSavviness": "string",
    "environmentalAwareness": "string",
    "brandLoyalty": "string",
    "priceSensitivity": "string"
  }}
]"""

CONTINUE_PROMPT = (
    "continue - generate exactly {batch_size} more diverse consumer profiles following the same "
    "format and demographic constraints. Ensure they are different from previous profiles and "
    "maintain variety."
)

ANALYSIS_SYSTEM_PROMPT = (
    "You are a method actor who can embody different consumer personas. When given consumer "
    "profiles, you think and respond exactly as each person would, in their own voice, "
    "considering their background, values and circumstances. IMPORTANT: Respond with valid JSON "
    "only - no markdown code blocks, no explanations, just a pure JSON array with first-person "
    "reasoning."
)

ANALYSIS_PROMPT = """Put yourself in the shoes of each consumer profile below and respond to this product concept from their personal perspective.

PRODUCT CONCEPT TO EVALUATE:
"{title}"
Description: "{description}"

CONSUMER PROFILES TO EMBODY:
{profiles}

For each profile, speaking as that person, rate on a scale of 1-10:
1. PREFERENCE: How much would I personally like this concept?
2. INNOVATIVENESS: How new does this concept seem to me?
3. DIFFERENTIATION: How different is it from what I've seen from competitors?

Also give brief reasoning from that person's perspective (1-2 sentences starting with "I think..." or "I feel...").

Return as JSON array:
[
  {{
    "profileId": "profile_id",
    "conceptId": "{concept_id}",
    "preference": number,
    "innovativeness": number,
    "differentiation": number,
    "reasoning": "first person explanation"
  }}
]"""

PERSONA_BRIEF = """Profile {id} - Put yourself in my shoes as:
- I am {age} years old, {gender}
- I live in {location}
- My income level: {income}
- My education: {education}
- My lifestyle: {lifestyle}
- My interests: {interests}
- How I shop: {shopping_behavior}
- My tech comfort level: {tech_savviness}
- My environmental views: {environmental_awareness}
- My brand loyalty: {brand_loyalty}
- My price sensitivity: {price_sensitivity}"""

INSIGHTS_SYSTEM_PROMPT = (
    "You are a senior market research analyst. Generate actionable insights from consumer "
    "preference data. Focus on practical recommendations and clear patterns. IMPORTANT: Respond "
    "with valid JSON only - no markdown code blocks, no explanations, just a pure JSON array of "
    "strings."
)

INSIGHTS_PROMPT = """Based on the consumer preference analysis data, generate 5-7 key insights about how different consumer segments respond to the product concepts.

SUMMARY DATA:
- Total Profiles Analyzed: {profile_count}
- Total Concepts Tested: {concept_count}
- Total Analyses: {analysis_count}

CONCEPTS:
{concepts}

AVERAGE SCORES BY CONCEPT:
{scores}

Generate actionable insights about:
1. Which concepts perform best/worst and why
2. Demographic patterns in responses
3. Opportunities for improvement
4. Market positioning recommendations
5. Target audience insights

Return as a JSON array of insight strings:
["insight 1", "insight 2", "insight 3"]"""

INSIGHTS_FALLBACK = "Unable to generate detailed insights from the analysis data."

# System message plus the two most recent exchanges
HISTORY_KEEP_MESSAGES = 4


# ============================================================================
# Conversation log and cancellation
# ============================================================================

@dataclass(frozen=True)
class ConversationLog:
    """
    Append-only chat history.

    `append` and `prune` return new logs, so each chunk step receives and
    returns its conversation explicitly.
    """
    messages: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def start(cls, system_prompt: str) -> "ConversationLog":
        return cls(messages=(("system", system_prompt),))

    def append(self, role: str, content: str) -> "ConversationLog":
        return ConversationLog(messages=self.messages + ((role, content),))

    def prune(self, keep: int = HISTORY_KEEP_MESSAGES) -> "ConversationLog":
        """Keep the leading system message plus the last `keep` messages."""
        if not self.messages or self.messages[0][0] != "system":
            return ConversationLog(messages=self.messages[-keep:])
        system, rest = self.messages[0], self.messages[1:]
        if len(rest) <= keep:
            return self
        return ConversationLog(messages=(system,) + rest[-keep:])

    @property
    def has_assistant_turn(self) -> bool:
        return any(role == "assistant" for role, _ in self.messages)

    def to_messages(self) -> List[Dict[str, str]]:
        return [{"role": role, "content": content} for role, content in self.messages]

    def __len__(self) -> int:
        return len(self.messages)


class CancellationToken:
    """Cooperative cancellation flag checked between provider calls."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise JobCancelledError()


def plan_chunks(count: int, batch_size: int) -> List[int]:
    """Split `count` into consecutive chunk sizes of at most `batch_size`."""
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    return [min(batch_size, count - start) for start in range(0, max(count, 0), batch_size)]


# ============================================================================
# Profile generation
# ============================================================================

class ProfileGenerationOrchestrator:
    """Generates a persona panel in chunks over one provider conversation."""

    def __init__(
        self,
        provider: CompletionProvider,
        model: Optional[str] = None,
        batch_size: Optional[int] = None,
        max_tokens: Optional[int] = None,
        document_char_limit: Optional[int] = None
    ):
        self.provider = provider
        self.model = model or Config.get_model("profile")
        self.batch_size = batch_size or Config.PROFILE_BATCH_SIZE
        self.max_tokens = max_tokens or Config.PROFILE_MAX_TOKENS
        self.document_char_limit = document_char_limit or Config.DOCUMENT_CHAR_LIMIT

    async def generate(
        self,
        demographics: DemographicInput,
        count: int,
        cancel_token: Optional[CancellationToken] = None
    ) -> List[Persona]:
        """
        Generate up to `count` personas.

        Returns:
            Valid personas, truncated to `count`; may be fewer if chunks failed

        Raises:
            GenerationFailedError: If no chunk produced a usable persona
            JobCancelledError: If the token is cancelled between chunks
        """
        chunks = plan_chunks(count, self.batch_size)
        logger.info(f"Generating {count} profiles in {len(chunks)} chunks with {self.model}")

        records: List[dict] = []
        log = ConversationLog.start(PROFILE_SYSTEM_PROMPT)

        for index, chunk_size in enumerate(chunks, start=1):
            if cancel_token:
                cancel_token.raise_if_cancelled()

            if log.has_assistant_turn:
                request = log.append("user", CONTINUE_PROMPT.format(batch_size=chunk_size))
            else:
                # No successful chunk yet: start over with the full instructions
                request = ConversationLog.start(PROFILE_SYSTEM_PROMPT).append(
                    "user", self.build_prompt(demographics, chunk_size)
                )

            with logfire.span("profile_chunk", chunk=index, size=chunk_size):
                try:
                    content = await self.provider.complete(
                        self.model, request.to_messages(), self.max_tokens
                    )
                    batch = parse_structured_response(content, expected=list)
                except ConsumerLabError as e:
                    logger.error(f"Profile chunk {index}/{len(chunks)} failed: {e}")
                    continue
                except Exception as e:
                    logger.error(f"Profile chunk {index}/{len(chunks)} failed unexpectedly: {e}", exc_info=True)
                    continue

            if not batch:
                logger.warning(f"Profile chunk {index}/{len(chunks)} returned an empty array")
                continue

            records.extend(batch)
            log = request.append("assistant", extract_json_payload(content)).prune()
            logger.info(f"Chunk {index}/{len(chunks)} produced {len(batch)} profiles")

        profiles = self.validate_profiles(records[:count])
        if not profiles:
            raise GenerationFailedError("Failed to generate consumer profiles")

        logger.info(f"Generated {len(profiles)} valid profiles ({count} requested)")
        return profiles

    def build_prompt(self, demographics: DemographicInput, batch_size: int) -> str:
        """Full first-chunk instruction prompt."""
        if demographics.age_min is not None and demographics.age_max is not None:
            age_range = f"{demographics.age_min}-{demographics.age_max}"
        else:
            age_range = ", ".join(demographics.age_ranges)

        if demographics.income_min is not None and demographics.income_max is not None:
            income_range = f"${demographics.income_min:,} - ${demographics.income_max:,}"
        else:
            income_range = ", ".join(demographics.income_ranges)

        return PROFILE_PROMPT.format(
            batch_size=batch_size,
            age_range=age_range,
            genders=", ".join(demographics.genders),
            locations=", ".join(demographics.locations),
            income_range=income_range,
            education_levels=", ".join(demographics.education_levels),
            additional_context=self.build_context(demographics),
        )

    def build_context(self, demographics: DemographicInput) -> str:
        """Free-text context plus uploaded documents, each capped in length."""
        sections = []
        if demographics.additional_context:
            sections.append(f"\nADDITIONAL CONTEXT:\n{demographics.additional_context}\n")
        if demographics.uploaded_files:
            sections.append("\nUPLOADED RESEARCH DOCUMENTS:")
            for document in demographics.uploaded_files:
                excerpt = document.content[:self.document_char_limit]
                sections.append(f"--- {document.name} ---\n{excerpt}\n")
        return "\n".join(sections)

    @staticmethod
    def validate_profiles(records: Sequence) -> List[Persona]:
        """Drop records missing required fields; re-key duplicate ids."""
        profiles = []
        seen_ids = set()
        dropped = 0

        for record in records:
            if not isinstance(record, dict):
                dropped += 1
                continue
            try:
                profile = Persona.model_validate(record)
            except ValidationError:
                dropped += 1
                continue

            if profile.id in seen_ids:
                profile = profile.model_copy(update={"id": str(uuid.uuid4())})
            seen_ids.add(profile.id)
            profiles.append(profile)

        if dropped:
            logger.warning(f"{dropped} profiles missing required fields were dropped")
        return profiles


# ============================================================================
# Preference analysis
# ============================================================================

@dataclass
class ModelRotationPolicy:
    """
    Chooses the model for each (profile batch, concept) call.

    The default rotation indexes the model list by batch start plus concept
    index; `fallback_model` is the single retry target.
    """
    models: List[str] = field(default_factory=lambda: list(Config.ANALYSIS_MODELS))
    fallback_model: str = field(default_factory=lambda: Config.get_model("analysis_fallback"))

    def __post_init__(self):
        if not self.models:
            raise ValueError("ModelRotationPolicy needs at least one model")

    def select(self, batch_start: int, concept_index: int) -> str:
        return self.models[(batch_start + concept_index) % len(self.models)]


class PreferenceAnalysisOrchestrator:
    """Scores every persona against every concept, one batch-concept call at a time."""

    def __init__(
        self,
        provider: CompletionProvider,
        policy: Optional[ModelRotationPolicy] = None,
        batch_size: Optional[int] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        insights_model: Optional[str] = None
    ):
        self.provider = provider
        self.policy = policy or ModelRotationPolicy()
        self.batch_size = batch_size or Config.ANALYSIS_BATCH_SIZE
        self.max_tokens = max_tokens or Config.ANALYSIS_MAX_TOKENS
        self.temperature = Config.ANALYSIS_TEMPERATURE if temperature is None else temperature
        self.insights_model = insights_model or Config.get_model("insights")

    async def analyze(
        self,
        profiles: List[Persona],
        concepts: List[Concept],
        cancel_token: Optional[CancellationToken] = None
    ) -> List[PreferenceRecord]:
        """
        Produce one PreferenceRecord per (profile, concept) pair where possible.

        Raises:
            GenerationFailedError: If no pair produced a usable record
            JobCancelledError: If the token is cancelled between calls
        """
        total_batches = math.ceil(len(profiles) / self.batch_size) if profiles else 0
        logger.info(
            f"Analyzing {len(profiles)} profiles x {len(concepts)} concepts "
            f"({total_batches * len(concepts)} calls)"
        )

        analyses: List[PreferenceRecord] = []
        seen_pairs = set()

        for batch_start in range(0, len(profiles), self.batch_size):
            batch = profiles[batch_start:batch_start + self.batch_size]
            batch_number = batch_start // self.batch_size + 1

            for concept_index, concept in enumerate(concepts):
                if cancel_token:
                    cancel_token.raise_if_cancelled()

                model = self.policy.select(batch_start, concept_index)
                logger.info(
                    f"Batch {batch_number}/{total_batches}, concept "
                    f"{concept_index + 1}/{len(concepts)} using {model}"
                )

                with logfire.span("analysis_pair", batch=batch_number, concept_id=concept.id, model=model):
                    records = await self._analyze_pair(batch, concept, model)

                for record in records:
                    pair = (record.profile_id, record.concept_id)
                    if pair in seen_pairs:
                        continue
                    seen_pairs.add(pair)
                    analyses.append(record)

        if not analyses:
            raise GenerationFailedError("Failed to analyze concept preferences")

        logger.info(f"Analysis finished with {len(analyses)} records")
        return analyses

    async def _analyze_pair(
        self,
        batch: List[Persona],
        concept: Concept,
        model: str
    ) -> List[PreferenceRecord]:
        messages = [
            {"role": "system", "content": ANALYSIS_SYSTEM_PROMPT},
            {"role": "user", "content": self.build_prompt(batch, concept)},
        ]

        try:
            content = await self._complete_with_fallback(model, messages)
        except ConsumerLabError as e:
            logger.error(f"Analysis of concept {concept.id} failed on {model} and fallback: {e}")
            return []
        except Exception as e:
            logger.error(
                f"Analysis of concept {concept.id} failed unexpectedly on {model} and fallback: {e}",
                exc_info=True
            )
            return []

        try:
            raw_records = parse_structured_response(content, expected=list)
        except ConsumerLabError as e:
            logger.error(f"Failed to parse analysis for concept {concept.id}: {e}")
            return []

        return self.validate_records(raw_records, batch, concept)

    async def _complete_with_fallback(self, model: str, messages: List[Dict[str, str]]) -> str:
        try:
            return await self.provider.complete(model, messages, self.max_tokens, self.temperature)
        except Exception as e:
            fallback = self.policy.fallback_model
            logger.warning(f"Model {model} failed, falling back to {fallback}: {e}")
            return await self.provider.complete(fallback, messages, self.max_tokens, self.temperature)

    def build_prompt(self, batch: List[Persona], concept: Concept) -> str:
        briefs = "\n\n".join(
            PERSONA_BRIEF.format(
                id=profile.id,
                age=profile.age,
                gender=profile.gender,
                location=profile.location,
                income=profile.income,
                education=profile.education,
                lifestyle=profile.lifestyle,
                interests=", ".join(profile.interests),
                shopping_behavior=profile.shopping_behavior,
                tech_savviness=profile.tech_savviness,
                environmental_awareness=profile.environmental_awareness,
                brand_loyalty=profile.brand_loyalty,
                price_sensitivity=profile.price_sensitivity,
            )
            for profile in batch
        )
        return ANALYSIS_PROMPT.format(
            title=concept.title,
            description=concept.description,
            profiles=briefs,
            concept_id=concept.id,
        )

    @staticmethod
    def validate_records(
        raw_records: Sequence,
        batch: List[Persona],
        concept: Concept
    ) -> List[PreferenceRecord]:
        """Keep records for personas in this batch; pin the concept id."""
        batch_ids = {profile.id for profile in batch}
        records = []
        dropped = 0

        for raw in raw_records:
            if not isinstance(raw, dict):
                dropped += 1
                continue
            try:
                record = PreferenceRecord.model_validate({**raw, "conceptId": concept.id})
            except ValidationError:
                dropped += 1
                continue
            if record.profile_id not in batch_ids:
                dropped += 1
                continue
            records.append(record)

        if dropped:
            logger.warning(f"Dropped {dropped} invalid analysis records for concept {concept.id}")
        return records

    async def generate_insights(
        self,
        profiles: List[Persona],
        concepts: List[Concept],
        analyses: List[PreferenceRecord]
    ) -> List[str]:
        """Narrative insights; degrades to a single fallback line on any failure."""
        messages = [
            {"role": "system", "content": INSIGHTS_SYSTEM_PROMPT},
            {"role": "user", "content": self.build_insights_prompt(profiles, concepts, analyses)},
        ]

        try:
            with logfire.span("insights", model=self.insights_model):
                content = await self.provider.complete(
                    self.insights_model, messages, Config.INSIGHTS_MAX_TOKENS, Config.INSIGHTS_TEMPERATURE
                )
            insights = parse_structured_response(content, expected=list)
        except Exception as e:
            logger.error(f"Insight generation failed: {e}")
            return [INSIGHTS_FALLBACK]

        insights = [str(item).strip() for item in insights if str(item).strip()]
        return insights or [INSIGHTS_FALLBACK]

    @staticmethod
    def build_insights_prompt(
        profiles: List[Persona],
        concepts: List[Concept],
        analyses: List[PreferenceRecord]
    ) -> str:
        score_lines = []
        for concept in concepts:
            own = [a for a in analyses if a.concept_id == concept.id]
            if not own:
                score_lines.append(f"{concept.title}: no responses")
                continue
            pref = sum(a.preference for a in own) / len(own)
            inno = sum(a.innovativeness for a in own) / len(own)
            diff = sum(a.differentiation for a in own) / len(own)
            score_lines.append(
                f"{concept.title}: Preference {pref:.1f}, Innovation {inno:.1f}, Differentiation {diff:.1f}"
            )

        return INSIGHTS_PROMPT.format(
            profile_count=len(profiles),
            concept_count=len(concepts),
            analysis_count=len(analyses),
            concepts="\n".join(f"- {c.title}: {c.description}" for c in concepts),
            scores="\n".join(score_lines),
        )

