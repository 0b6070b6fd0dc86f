"""
CLI tests for the consumerlab command group.

Tests cover:
- Help output for every command
- generate/analyze in mock mode, chained through JSON files
- Failure reporting
"""

import json
from pathlib import Path
from unittest.mock import patch

from click.testing import CliRunner

from consumerlab.cli.main import cli
from consumerlab.services.batch_orchestrator import (
    PreferenceAnalysisOrchestrator,
    ProfileGenerationOrchestrator,
)
from consumerlab.services.job_service import JobService

from conftest import FailingProvider


GENERATE_ARGS = [
    'generate',
    '--age-range', '25-34',
    '--gender', 'Female',
    '--location', 'Urban',
    '--income', '$50,000-$75,000',
    '--education', "Bachelor's Degree",
]

CONCEPTS = [
    {"id": "c1", "title": "Solar Backpack", "description": "Eco-friendly backpack"},
    {"id": "c2", "title": "Smart Mug", "description": "Advanced technology keeps coffee hot"},
]


class TestHelp:
    """Every command documents its options."""

    def test_group_help(self):
        result = CliRunner().invoke(cli, ['--help'])
        assert result.exit_code == 0
        for command in ('serve', 'generate', 'analyze'):
            assert command in result.output

    def test_generate_help(self):
        result = CliRunner().invoke(cli, ['generate', '--help'])
        assert result.exit_code == 0
        assert '--age-range' in result.output
        assert '--mock' in result.output
        assert '--output' in result.output

    def test_analyze_help(self):
        result = CliRunner().invoke(cli, ['analyze', '--help'])
        assert result.exit_code == 0
        assert '--profiles' in result.output
        assert '--concepts' in result.output


class TestMockRuns:
    """generate and analyze end to end with deterministic data."""

    def test_generate_then_analyze(self):
        runner = CliRunner()

        with runner.isolated_filesystem():
            result = runner.invoke(cli, GENERATE_ARGS + ['--count', '6', '--mock', '--output', 'panel.json'])

            assert result.exit_code == 0, result.output
            assert 'Generated 6 personas' in result.output
            panel = json.loads(Path('panel.json').read_text())
            assert panel["status"] == "completed"
            assert panel["count"] == 6
            assert all(p["gender"] == "Female" for p in panel["profiles"])

            Path('concepts.json').write_text(json.dumps(CONCEPTS))
            result = runner.invoke(cli, [
                'analyze', '--profiles', 'panel.json', '--concepts', 'concepts.json',
                '--mock', '--output', 'results.json',
            ])

            assert result.exit_code == 0, result.output
            assert '12 preference records' in result.output
            results = json.loads(Path('results.json').read_text())
            assert results["totalAnalyses"] == 12
            assert results["summary"]["topPerformingConcept"] in {"Solar Backpack", "Smart Mug"}

    def test_missing_category_is_usage_error(self):
        result = CliRunner().invoke(cli, ['generate', '--age-range', '25-34', '--mock'])
        assert result.exit_code == 2

    def test_malformed_age_range_reported(self):
        args = [a if a != '25-34' else 'young' for a in GENERATE_ARGS]
        result = CliRunner().invoke(cli, args + ['--mock'])

        assert result.exit_code == 1
        assert 'Invalid age range' in result.output

    def test_invalid_profiles_file(self):
        runner = CliRunner()
        with runner.isolated_filesystem():
            Path('panel.json').write_text('[{"id": "p1"}]')
            Path('concepts.json').write_text(json.dumps(CONCEPTS))

            result = runner.invoke(cli, ['analyze', '--profiles', 'panel.json', '--concepts', 'concepts.json'])

        assert result.exit_code == 1
        assert 'Invalid input file' in result.output


class TestFailures:
    """Failed jobs exit non-zero with the job error."""

    def test_generation_failure_reported(self):
        provider = FailingProvider()
        service = JobService(
            profile_orchestrator=ProfileGenerationOrchestrator(provider),
            analysis_orchestrator=PreferenceAnalysisOrchestrator(provider),
            use_mock_data=False,
            fallback_to_mock=False,
        )

        with patch('consumerlab.cli.panel._build_service', return_value=service):
            result = CliRunner().invoke(cli, GENERATE_ARGS + ['--count', '5'])

        assert result.exit_code == 1
        assert 'Failed to generate consumer profiles' in result.output
