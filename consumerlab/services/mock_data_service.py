"""
MockDataService - deterministic persona and preference synthesis.

Produces demographically-constrained personas, plausible preference scores
and generic insights without any provider call. Used when the completion
provider yields nothing usable, when USE_MOCK_DATA is set, and as a fast
path in tests.
"""

import logging
import random
import uuid
from typing import List, Optional

from .models import LEVELS, Concept, DemographicInput, Persona, PreferenceRecord

logger = logging.getLogger(__name__)


FIRST_NAMES = [
    'Emma', 'Liam', 'Olivia', 'Noah', 'Ava', 'Ethan', 'Sophia', 'Mason', 'Isabella', 'William',
    'Mia', 'James', 'Charlotte', 'Benjamin', 'Amelia', 'Lucas', 'Harper', 'Henry', 'Evelyn', 'Alexander',
    'Abigail', 'Michael', 'Emily', 'Daniel', 'Elizabeth', 'Matthew', 'Mila', 'Aiden', 'Ella', 'Jackson',
    'Madison', 'David', 'Scarlett', 'Joseph', 'Victoria', 'Samuel', 'Aria', 'John', 'Grace', 'Owen',
    'Chloe', 'Wyatt', 'Camila', 'Jack', 'Penelope', 'Luke', 'Riley', 'Jayden', 'Layla', 'Dylan',
]

LAST_NAMES = [
    'Smith', 'Johnson', 'Williams', 'Brown', 'Jones', 'Garcia', 'Miller', 'Davis', 'Rodriguez', 'Martinez',
    'Hernandez', 'Lopez', 'Gonzalez', 'Wilson', 'Anderson', 'Thomas', 'Taylor', 'Moore', 'Jackson', 'Martin',
    'Lee', 'Perez', 'Thompson', 'White', 'Harris', 'Sanchez', 'Clark', 'Ramirez', 'Lewis', 'Robinson',
    'Walker', 'Young', 'Allen', 'King', 'Wright', 'Scott', 'Torres', 'Nguyen', 'Hill', 'Flores',
    'Green', 'Adams', 'Nelson', 'Baker', 'Hall', 'Rivera', 'Campbell', 'Mitchell', 'Carter', 'Roberts',
]

LIFESTYLES = [
    "Health-conscious and active lifestyle",
    "Family-oriented and community-focused",
    "Tech-savvy urban professional",
    "Budget-conscious value seeker",
    "Premium quality enthusiast",
    "Environmentally conscious consumer",
    "Social media influencer lifestyle",
    "Traditional and brand loyal",
    "Adventure-seeking and spontaneous",
    "Minimalist and efficiency-focused",
]

INTERESTS = [
    "Fitness and wellness", "Cooking and food", "Travel and exploration", "Technology and gadgets",
    "Art and culture", "Sports and recreation", "Fashion and style", "Music and entertainment",
    "Reading and learning", "Gardening and nature", "Gaming and digital entertainment",
    "Photography and visual arts", "Social causes and volunteering", "DIY and crafts",
    "Financial planning and investment",
]

SHOPPING_BEHAVIORS = [
    "Researches extensively before purchasing",
    "Impulse buyer influenced by promotions",
    "Brand loyal and prefers familiar products",
    "Price-sensitive and comparison shops",
    "Values convenience and quick purchases",
    "Seeks recommendations from others",
    "Prefers online shopping",
    "Enjoys in-store browsing experience",
    "Bulk buyer for value savings",
    "Trend-follower and early adopter",
]

MIN_INTERESTS = 2
MAX_INTERESTS = 5

# Keyword triggers for score adjustments (matched against lowercased descriptions)
ECO_KEYWORDS = ("eco", "green", "sustain")
TECH_KEYWORDS = ("technolog", "advanced", "innovation")
PREMIUM_KEYWORDS = ("premium", "luxury")
VALUE_KEYWORDS = ("value", "affordable")
HIGH_LEVELS = ("High", "Very High")

REASONING_TEMPLATES = [
    "I think my {lifestyle} lifestyle and my interest in {interest} make this a good fit for me.",
    "On a {income} income with my {education} background, I feel this is {appeal} to me.",
    "Because I'm someone who {shopping}, and my price sensitivity is {price}, I'm {appeal_adverb} drawn to it.",
    "I feel my {environment} environmental awareness shapes how much this resonates with my values.",
    "With {tech} comfort around technology and {loyalty} brand loyalty, I think this feels {novelty} to me.",
    "I think living in a {location} area, this has {appeal} appeal for my day-to-day life.",
    "Given how much I care about {interest}, I feel this concept is {appeal} for someone like me.",
]

INSIGHT_POOL = [
    "Analysis of {profile_count} consumer profiles reveals significant preference variations across demographic segments.",
    "{top_phrase} shows strong appeal among tech-savvy consumers aged 25-45.",
    "Environmental consciousness strongly correlates with preference scores for sustainability-focused concepts.",
    "Price-sensitive consumers show lower preference for premium-positioned concepts but respond well to value-oriented messaging.",
    "Urban consumers rate concepts as more innovative than rural consumers do.",
    "Higher education levels correlate with increased appreciation for detailed product specifications and technical features.",
    "Brand loyalty varies significantly across age groups, with older consumers showing stronger loyalty tendencies.",
]

MIN_INSIGHTS = 5
MAX_INSIGHTS = 7


def _clamp_score(value: float) -> int:
    return max(1, min(10, int(round(value))))


def _mentions(text: str, keywords) -> bool:
    return any(keyword in text for keyword in keywords)


class MockDataService:
    """Synthesizes personas, preference records and insights locally."""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    # =========================================================================
    # Personas
    # =========================================================================

    def generate_profiles(self, demographics: DemographicInput, count: int) -> List[Persona]:
        """
        Generate `count` personas drawn from the demographic constraints.

        Raises:
            ValueError: If a category needed for sampling is empty or an age
                range label is malformed
        """
        logger.info(f"Generating {count} mock profiles")

        age_bounds = demographics.age_bounds()
        categories = {
            "genders": demographics.genders,
            "locations": demographics.locations,
            "income_ranges": demographics.income_ranges,
            "education_levels": demographics.education_levels,
        }
        empty = [name for name, values in categories.items() if not values]
        if not age_bounds:
            empty.insert(0, "age_ranges")
        if empty:
            raise ValueError(f"Cannot generate profiles without: {', '.join(empty)}")

        rng = self.rng
        profiles = []
        for _ in range(count):
            low, high = rng.choice(age_bounds)
            interest_count = rng.randint(MIN_INTERESTS, MAX_INTERESTS)

            profiles.append(Persona(
                id=str(uuid.uuid4()),
                name=f"{rng.choice(FIRST_NAMES)} {rng.choice(LAST_NAMES)}",
                age=rng.randint(low, high),
                gender=rng.choice(demographics.genders),
                location=rng.choice(demographics.locations),
                income=rng.choice(demographics.income_ranges),
                education=rng.choice(demographics.education_levels),
                lifestyle=rng.choice(LIFESTYLES),
                interests=rng.sample(INTERESTS, interest_count),
                shopping_behavior=rng.choice(SHOPPING_BEHAVIORS),
                tech_savviness=rng.choice(LEVELS),
                environmental_awareness=rng.choice(LEVELS),
                brand_loyalty=rng.choice(LEVELS),
                price_sensitivity=rng.choice(LEVELS),
            ))

        return profiles

    # =========================================================================
    # Preference Records
    # =========================================================================

    def generate_analyses(
        self,
        profiles: List[Persona],
        concepts: List[Concept]
    ) -> List[PreferenceRecord]:
        """Score every (profile, concept) pair with keyword-adjusted random scores."""
        logger.info(f"Generating mock analyses for {len(profiles)} profiles x {len(concepts)} concepts")

        analyses = []
        for profile in profiles:
            for concept in concepts:
                preference, innovativeness, differentiation = self._score(profile, concept)
                analyses.append(PreferenceRecord(
                    profile_id=profile.id,
                    concept_id=concept.id,
                    preference=preference,
                    innovativeness=innovativeness,
                    differentiation=differentiation,
                    reasoning=self._reasoning(profile, preference, innovativeness),
                ))

        return analyses

    def _score(self, profile: Persona, concept: Concept):
        rng = self.rng
        preference = rng.random() * 10
        innovation = rng.random() * 10
        differentiation = rng.random() * 10

        description = (concept.description or "").lower()

        if profile.environmental_awareness in HIGH_LEVELS and _mentions(description, ECO_KEYWORDS):
            preference += 2
            differentiation += 1

        if profile.tech_savviness in HIGH_LEVELS and _mentions(description, TECH_KEYWORDS):
            innovation += 2
            preference += 1

        if profile.price_sensitivity in HIGH_LEVELS:
            if _mentions(description, PREMIUM_KEYWORDS):
                preference -= 1
            if _mentions(description, VALUE_KEYWORDS):
                preference += 1

        return _clamp_score(preference), _clamp_score(innovation), _clamp_score(differentiation)

    def _reasoning(self, profile: Persona, preference: int, innovativeness: int) -> str:
        template = self.rng.choice(REASONING_TEMPLATES)
        lifestyle_words = profile.lifestyle.split()
        return template.format(
            lifestyle=lifestyle_words[0].lower() if lifestyle_words else "busy",
            interest=profile.interests[0].lower() if profile.interests else "everyday life",
            income=profile.income.lower() or "typical",
            education=profile.education.lower() or "general",
            shopping=(profile.shopping_behavior[:1].lower() + profile.shopping_behavior[1:]) or "shops around",
            price=profile.price_sensitivity.lower() or "moderate",
            environment=profile.environmental_awareness.lower() or "moderate",
            tech=profile.tech_savviness.lower() or "some",
            loyalty=profile.brand_loyalty.lower() or "some",
            location=profile.location.lower() or "local",
            appeal="appealing" if preference >= 6 else "only somewhat relevant",
            appeal_adverb="genuinely" if preference >= 6 else "not especially",
            novelty="fresh" if innovativeness >= 6 else "fairly familiar",
        )

    # =========================================================================
    # Insights
    # =========================================================================

    def generate_insights(
        self,
        profiles: List[Persona],
        concepts: List[Concept],
        analyses: List[PreferenceRecord]
    ) -> List[str]:
        """Pick 5-7 distinct generic insight sentences."""
        logger.info(f"Generating mock insights from {len(analyses)} analyses")

        top_phrase = "The top-performing concept" if len(concepts) > 1 else "The analyzed concept"
        pool = [
            insight.format(profile_count=len(profiles), top_phrase=top_phrase)
            for insight in INSIGHT_POOL
        ]
        count = self.rng.randint(MIN_INSIGHTS, min(MAX_INSIGHTS, len(pool)))
        return self.rng.sample(pool, count)
