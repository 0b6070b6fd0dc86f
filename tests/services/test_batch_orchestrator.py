"""
Unit tests for batch orchestration.

Tests cover:
- Chunk planning and the conversation log (append, prune, immutability)
- Profile generation: partial failure, fresh restarts, validation, cancellation
- Model rotation and fallback for preference analysis
- Record filtering, zero-yield failure and insight degradation
"""

import json

import pytest

from consumerlab.core.exceptions import (
    GenerationFailedError,
    JobCancelledError,
    ProviderError,
)
from consumerlab.services.batch_orchestrator import (
    INSIGHTS_FALLBACK,
    CancellationToken,
    ConversationLog,
    ModelRotationPolicy,
    PreferenceAnalysisOrchestrator,
    ProfileGenerationOrchestrator,
    plan_chunks,
)
from consumerlab.services.models import UploadedFile

from conftest import FailingProvider, FakeProvider, PanelProvider, make_persona_dict


def profile_batch(start: int, size: int) -> str:
    return json.dumps([make_persona_dict(i, id=f"gen{i}") for i in range(start, start + size)])


# ============================================================================
# Chunk planning and conversation log
# ============================================================================

class TestPlanChunks:
    """Tests for plan_chunks."""

    def test_remainder_chunk(self):
        assert plan_chunks(27, 10) == [10, 10, 7]

    def test_exact_multiple(self):
        assert plan_chunks(20, 10) == [10, 10]

    def test_smaller_than_batch(self):
        assert plan_chunks(3, 10) == [3]

    def test_zero(self):
        assert plan_chunks(0, 10) == []

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError):
            plan_chunks(10, 0)


class TestConversationLog:
    """Tests for ConversationLog."""

    def test_append_returns_new_log(self):
        log = ConversationLog.start("sys")
        longer = log.append("user", "hi")

        assert len(log) == 1
        assert len(longer) == 2
        assert longer.to_messages() == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "hi"},
        ]

    def test_prune_keeps_system_and_last_four(self):
        log = ConversationLog.start("sys")
        for i in range(6):
            log = log.append("user" if i % 2 == 0 else "assistant", f"m{i}")

        pruned = log.prune()

        assert len(log) == 7
        assert [content for _, content in pruned.messages] == ["sys", "m2", "m3", "m4", "m5"]

    def test_prune_short_log_is_unchanged(self):
        log = ConversationLog.start("sys").append("user", "a").append("assistant", "b")
        assert log.prune() == log

    def test_has_assistant_turn(self):
        log = ConversationLog.start("sys").append("user", "a")
        assert not log.has_assistant_turn
        assert log.append("assistant", "b").has_assistant_turn


# ============================================================================
# Profile generation
# ============================================================================

class TestProfileGeneration:
    """Tests for ProfileGenerationOrchestrator.generate."""

    @pytest.mark.asyncio
    async def test_all_chunks_succeed(self, demographics):
        provider = PanelProvider()
        orchestrator = ProfileGenerationOrchestrator(provider, model="test-model", batch_size=10)

        profiles = await orchestrator.generate(demographics, 27)

        assert len(profiles) == 27
        assert len(provider.calls) == 3
        assert all(model == "test-model" for model, _ in provider.calls)

    @pytest.mark.asyncio
    async def test_failed_middle_chunk_is_skipped(self, demographics):
        sizes = iter([10, None, 7])
        generated = {"next": 1}

        def handler(model, messages):
            size = next(sizes)
            if size is None:
                raise ProviderError("timeout", model=model)
            start = generated["next"]
            generated["next"] += size
            return profile_batch(start, size)

        provider = FakeProvider(handler)
        orchestrator = ProfileGenerationOrchestrator(provider, batch_size=10)

        profiles = await orchestrator.generate(demographics, 27)

        assert 10 <= len(profiles) <= 17
        assert len(profiles) == 17
        assert len(provider.calls) == 3

        # The third request continues from the first successful exchange only
        third = provider.calls[2][1]
        assert [m["role"] for m in third] == ["system", "user", "assistant", "user"]
        assert third[-1]["content"].startswith("continue")

    @pytest.mark.asyncio
    async def test_unparseable_chunk_leaves_log_unchanged(self, demographics):
        replies = iter([profile_batch(1, 10), "Sorry, I cannot help with that.", profile_batch(11, 10)])
        provider = FakeProvider(lambda model, messages: next(replies))
        orchestrator = ProfileGenerationOrchestrator(provider, batch_size=10)

        profiles = await orchestrator.generate(demographics, 30)

        assert len(profiles) == 20
        assert provider.calls[1][1] == provider.calls[2][1]

    @pytest.mark.asyncio
    async def test_restarts_fresh_until_first_success(self, demographics):
        replies = iter([None, profile_batch(1, 10), profile_batch(11, 10)])

        def handler(model, messages):
            reply = next(replies)
            if reply is None:
                raise ProviderError("rate limited", model=model)
            return reply

        provider = FakeProvider(handler)
        orchestrator = ProfileGenerationOrchestrator(provider, batch_size=10)

        await orchestrator.generate(demographics, 30)

        first, second, third = (messages for _, messages in provider.calls)
        assert len(first) == 2 and len(second) == 2
        assert "Generate exactly 10 diverse consumer profiles" in second[1]["content"]
        assert third[-1]["content"].startswith("continue")

    @pytest.mark.asyncio
    async def test_history_is_pruned(self, demographics):
        provider = PanelProvider()
        orchestrator = ProfileGenerationOrchestrator(provider, batch_size=5)

        await orchestrator.generate(demographics, 30)

        # system + last 4 messages + the new continue turn
        assert max(len(messages) for _, messages in provider.calls) == 6
        for _, messages in provider.calls:
            assert messages[0]["role"] == "system"

    @pytest.mark.asyncio
    async def test_fenced_reply_stored_cleaned(self, demographics):
        replies = iter([f"```json\n{profile_batch(1, 5)}\n```", profile_batch(6, 5)])
        provider = FakeProvider(lambda model, messages: next(replies))
        orchestrator = ProfileGenerationOrchestrator(provider, batch_size=5)

        profiles = await orchestrator.generate(demographics, 10)

        assert len(profiles) == 10
        assistant_turn = provider.calls[1][1][2]
        assert assistant_turn["role"] == "assistant"
        assert assistant_turn["content"].startswith("[")

    @pytest.mark.asyncio
    async def test_all_chunks_fail_raises(self, demographics):
        provider = FailingProvider()
        orchestrator = ProfileGenerationOrchestrator(provider, batch_size=10)

        with pytest.raises(GenerationFailedError):
            await orchestrator.generate(demographics, 20)
        assert provider.calls == 2

    @pytest.mark.asyncio
    async def test_result_truncated_to_count(self, demographics):
        provider = FakeProvider(lambda model, messages: profile_batch(1, 15))
        orchestrator = ProfileGenerationOrchestrator(provider, batch_size=10)

        profiles = await orchestrator.generate(demographics, 10)

        assert len(profiles) == 10

    @pytest.mark.asyncio
    async def test_cancelled_before_first_call(self, demographics):
        provider = PanelProvider()
        orchestrator = ProfileGenerationOrchestrator(provider, batch_size=10)
        token = CancellationToken()
        token.cancel()

        with pytest.raises(JobCancelledError):
            await orchestrator.generate(demographics, 20, cancel_token=token)
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_cancelled_between_chunks(self, demographics):
        token = CancellationToken()

        def handler(model, messages):
            token.cancel()
            return profile_batch(1, 10)

        provider = FakeProvider(handler)
        orchestrator = ProfileGenerationOrchestrator(provider, batch_size=10)

        with pytest.raises(JobCancelledError):
            await orchestrator.generate(demographics, 30, cancel_token=token)
        assert len(provider.calls) == 1

    def test_prompt_includes_context_and_truncated_documents(self, demographics):
        demographics = demographics.model_copy(update={
            "additional_context": "Shoppers in coastal cities",
            "uploaded_files": [UploadedFile(name="survey.txt", content="x" * 5000)],
        })
        orchestrator = ProfileGenerationOrchestrator(PanelProvider(), document_char_limit=2000)

        prompt = orchestrator.build_prompt(demographics, 10)

        assert "Shoppers in coastal cities" in prompt
        assert "--- survey.txt ---" in prompt
        assert "x" * 2000 in prompt
        assert "x" * 2001 not in prompt

    def test_prompt_prefers_slider_bounds(self, demographics):
        demographics = demographics.model_copy(update={
            "age_min": 30, "age_max": 40, "income_min": 40000, "income_max": 90000,
        })
        prompt = ProfileGenerationOrchestrator(PanelProvider()).build_prompt(demographics, 10)

        assert "Age Range: 30-40" in prompt
        assert "Income Range: $40,000 - $90,000" in prompt


class TestValidateProfiles:
    """Tests for ProfileGenerationOrchestrator.validate_profiles."""

    def test_drops_records_missing_required_fields(self):
        records = [
            make_persona_dict(1),
            {k: v for k, v in make_persona_dict(2).items() if k != "name"},
            {k: v for k, v in make_persona_dict(3).items() if k != "age"},
            "not a dict",
        ]
        profiles = ProfileGenerationOrchestrator.validate_profiles(records)
        assert [p.id for p in profiles] == ["p1"]

    def test_duplicate_ids_are_rekeyed(self):
        records = [make_persona_dict(1), make_persona_dict(1, name="Someone Else")]
        profiles = ProfileGenerationOrchestrator.validate_profiles(records)

        assert len(profiles) == 2
        assert profiles[0].id == "p1"
        assert profiles[1].id != "p1"

    def test_lenient_field_shapes(self):
        record = make_persona_dict(1, id=17, interests="Cooking, Travel", priceSensitivity=None)
        record.pop("priceSensitivity")
        record["pricesensitivity"] = "High"

        profile = ProfileGenerationOrchestrator.validate_profiles([record])[0]

        assert profile.id == "17"
        assert profile.interests == ["Cooking", "Travel"]
        assert profile.price_sensitivity == "High"


# ============================================================================
# Preference analysis
# ============================================================================

class TestModelRotationPolicy:
    """Tests for ModelRotationPolicy."""

    def test_rotation_by_batch_start_and_concept(self):
        policy = ModelRotationPolicy(models=["a", "b", "c", "d"], fallback_model="f")

        assert policy.select(0, 0) == "a"
        assert policy.select(0, 1) == "b"
        assert policy.select(5, 0) == "b"
        assert policy.select(5, 1) == "c"
        assert policy.select(5, 3) == "a"

    def test_empty_models_rejected(self):
        with pytest.raises(ValueError):
            ModelRotationPolicy(models=[], fallback_model="f")


class TestPreferenceAnalysis:
    """Tests for PreferenceAnalysisOrchestrator."""

    def _orchestrator(self, provider, batch_size=5):
        policy = ModelRotationPolicy(models=["m1", "m2"], fallback_model="fallback")
        return PreferenceAnalysisOrchestrator(provider, policy=policy, batch_size=batch_size)

    @pytest.mark.asyncio
    async def test_one_record_per_pair(self, personas, concepts):
        provider = PanelProvider(preferences={"c1": 8, "c2": 5, "c3": 3})
        orchestrator = self._orchestrator(provider, batch_size=2)

        analyses = await orchestrator.analyze(personas, concepts)

        assert len(analyses) == 12
        assert len(provider.calls) == 6
        assert {(a.profile_id, a.concept_id) for a in analyses} == {
            (p.id, c.id) for p in personas for c in concepts
        }
        assert [model for model, _ in provider.calls] == ["m1", "m2", "m1", "m1", "m2", "m1"]

    @pytest.mark.asyncio
    async def test_fallback_model_on_failure(self, personas, concepts):
        inner = PanelProvider()

        def handler(model, messages):
            if model == "m1":
                raise ProviderError("boom", model=model)
            return inner._answer(model, messages)

        provider = FakeProvider(handler)
        analyses = await self._orchestrator(provider).analyze(personas, concepts[:1])

        assert [model for model, _ in provider.calls] == ["m1", "fallback"]
        assert len(analyses) == 4

    @pytest.mark.asyncio
    async def test_pair_skipped_when_fallback_also_fails(self, personas, concepts):
        inner = PanelProvider()

        def handler(model, messages):
            if "Solar Backpack" in messages[-1]["content"]:
                raise ProviderError("down", model=model)
            return inner._answer(model, messages)

        provider = FakeProvider(handler)
        analyses = await self._orchestrator(provider).analyze(personas, concepts)

        assert len(analyses) == 8
        assert "c1" not in {a.concept_id for a in analyses}

    @pytest.mark.asyncio
    async def test_unexpected_error_on_fallback_skips_pair(self, personas, concepts):
        inner = PanelProvider()

        def handler(model, messages):
            if "Solar Backpack" in messages[-1]["content"]:
                raise RuntimeError("socket reset")
            return inner._answer(model, messages)

        provider = FakeProvider(handler)
        analyses = await self._orchestrator(provider).analyze(personas, concepts)

        assert len(analyses) == 8
        assert {a.concept_id for a in analyses} == {"c2", "c3"}
        assert [model for model, _ in provider.calls[:2]] == ["m1", "fallback"]

    @pytest.mark.asyncio
    async def test_parse_failure_skips_pair_without_retry(self, personas, concepts):
        provider = FakeProvider(lambda model, messages: "not json at all")

        with pytest.raises(GenerationFailedError):
            await self._orchestrator(provider).analyze(personas, concepts[:1])
        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_zero_records_raises(self, personas, concepts):
        with pytest.raises(GenerationFailedError):
            await self._orchestrator(FailingProvider()).analyze(personas, concepts)

    @pytest.mark.asyncio
    async def test_cancellation_between_pairs(self, personas, concepts):
        token = CancellationToken()
        inner = PanelProvider()

        def handler(model, messages):
            token.cancel()
            return inner._answer(model, messages)

        provider = FakeProvider(handler)
        with pytest.raises(JobCancelledError):
            await self._orchestrator(provider).analyze(personas, concepts, cancel_token=token)
        assert len(provider.calls) == 1

    def test_validate_records_filters_and_pins(self, personas, concepts):
        raw = [
            {"profileId": "p1", "conceptId": "wrong", "preference": 7.6, "innovativeness": "5",
             "differentiation": 4, "reasoning": "I think so."},
            {"profileId": "stranger", "conceptId": "c1", "preference": 5, "innovativeness": 5,
             "differentiation": 5},
            {"profileId": "p2", "conceptId": "c1", "preference": 11, "innovativeness": 5,
             "differentiation": 5},
            {"profileId": "p3", "conceptId": "c1", "preference": 5},
            ["not", "a", "record"],
        ]

        records = PreferenceAnalysisOrchestrator.validate_records(raw, personas, concepts[0])

        assert len(records) == 1
        assert records[0].profile_id == "p1"
        assert records[0].concept_id == "c1"
        assert records[0].preference == 8
        assert records[0].innovativeness == 5

    @pytest.mark.asyncio
    async def test_insights(self, personas, concepts):
        provider = PanelProvider()
        orchestrator = self._orchestrator(provider)
        analyses = await orchestrator.analyze(personas, concepts)

        insights = await orchestrator.generate_insights(personas, concepts, analyses)

        assert insights == ["Concept A leads with urban buyers.", "Price matters less than expected."]
        prompt = provider.calls[-1][1][-1]["content"]
        assert "Total Analyses: 12" in prompt
        assert "Solar Backpack: Preference" in prompt

    @pytest.mark.asyncio
    async def test_insights_degrade_on_failure(self, personas, concepts):
        orchestrator = self._orchestrator(FailingProvider())
        assert await orchestrator.generate_insights(personas, concepts, []) == [INSIGHTS_FALLBACK]

    @pytest.mark.asyncio
    async def test_insights_degrade_on_parse_error(self, personas, concepts):
        orchestrator = self._orchestrator(FakeProvider(lambda model, messages: '{"insights": []}'))
        assert await orchestrator.generate_insights(personas, concepts, []) == [INSIGHTS_FALLBACK]
