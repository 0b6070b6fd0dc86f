"""
Shared fixtures: scripted completion providers and sample domain data.
"""

import json
import os
import re

# Must be set before consumerlab.api.app is imported
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("CONSUMERLAB_API_KEY", "")

import logfire
import pytest

from consumerlab.core.exceptions import ProviderError
from consumerlab.services.completion_service import CompletionProvider
from consumerlab.services.models import Concept, DemographicInput, Persona

logfire.configure(send_to_logfire=False, console=False)


PROFILE_BRIEF_ID = re.compile(r"Profile (\S+) - Put yourself in my shoes")
CONCEPT_ID = re.compile(r'"conceptId": "([^"]+)"')
BATCH_SIZE = re.compile(r"exactly (\d+)")


def make_persona_dict(index: int, **overrides) -> dict:
    data = {
        "id": f"p{index}",
        "name": f"Test Person {index}",
        "age": 30,
        "gender": "Female",
        "location": "Urban",
        "income": "$50,000-$75,000",
        "education": "Bachelor's Degree",
        "lifestyle": "Tech-savvy urban professional",
        "interests": ["Cooking and food", "Travel and exploration"],
        "shoppingBehavior": "Researches extensively before purchasing",
        "techSavviness": "High",
        "environmentalAwareness": "Medium",
        "brandLoyalty": "Low",
        "priceSensitivity": "Medium",
    }
    data.update(overrides)
    return data


class FakeProvider(CompletionProvider):
    """
    Provider driven by a handler(model, messages) -> str.

    Records every call as (model, messages) for assertions.
    """

    def __init__(self, handler):
        self.handler = handler
        self.calls = []

    async def complete(self, model, messages, max_tokens, temperature=None):
        self.calls.append((model, [dict(m) for m in messages]))
        return self.handler(model, messages)


class FailingProvider(CompletionProvider):
    """Provider whose every call fails."""

    def __init__(self):
        self.calls = 0

    async def complete(self, model, messages, max_tokens, temperature=None):
        self.calls += 1
        raise ProviderError("provider unavailable", model=model)


class PanelProvider(FakeProvider):
    """
    Answers profile, analysis and insight prompts with well-formed JSON.

    Profile chunks return as many personas as the prompt asks for. Analysis
    calls score each briefed persona with `preferences[concept_id]`.
    """

    def __init__(self, preferences=None):
        super().__init__(self._answer)
        self.preferences = preferences or {}
        self.generated = 0

    def _answer(self, model, messages):
        system = messages[0]["content"]
        prompt = messages[-1]["content"]

        if "method actor" in system:
            concept_id = CONCEPT_ID.search(prompt).group(1)
            preference = self.preferences.get(concept_id, 5)
            return json.dumps([
                {
                    "profileId": profile_id,
                    "conceptId": concept_id,
                    "preference": preference,
                    "innovativeness": 6,
                    "differentiation": 4,
                    "reasoning": "I think this fits my routine.",
                }
                for profile_id in PROFILE_BRIEF_ID.findall(prompt)
            ])

        if "market research analyst" in system:
            return json.dumps(["Concept A leads with urban buyers.", "Price matters less than expected."])

        size = int(BATCH_SIZE.search(prompt).group(1))
        batch = []
        for _ in range(size):
            self.generated += 1
            batch.append(make_persona_dict(self.generated, id=f"gen{self.generated}"))
        return json.dumps(batch)


@pytest.fixture
def demographics():
    return DemographicInput(
        age_ranges=["25-34"],
        genders=["Female"],
        locations=["Urban"],
        income_ranges=["$50,000-$75,000"],
        education_levels=["Bachelor's Degree"],
        consumer_count=20,
    )


@pytest.fixture
def personas():
    return [Persona.model_validate(make_persona_dict(i)) for i in range(1, 5)]


@pytest.fixture
def concepts():
    return [
        Concept(id="c1", title="Solar Backpack", description="Eco-friendly backpack with sustainable materials"),
        Concept(id="c2", title="Smart Mug", description="Advanced technology keeps coffee hot"),
        Concept(id="c3", title="Value Blender", description="Affordable everyday blender"),
    ]
