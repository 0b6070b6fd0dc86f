"""
Panel CLI Commands

Commands for generating persona panels and scoring concepts against them.
Each command runs the same JobService as the API and waits for the job.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional, Tuple

import click
from pydantic import TypeAdapter, ValidationError

from ..core.config import Config
from ..core.exceptions import ConsumerLabError
from ..core.observability import setup_logfire
from ..services.job_service import JobService
from ..services.models import (
    Concept,
    DemographicInput,
    JobStatus,
    JobStatusView,
    Persona,
)


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)

logger = logging.getLogger(__name__)


def load_items(path: str, key: str) -> list:
    """
    Read a JSON array from a file.

    Accepts either a bare array or an object holding the array under `key`
    (so `generate --output` files can be fed straight into `analyze`).
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get(key, [])
    if not isinstance(data, list):
        raise click.BadParameter(f"{path} must contain a JSON array or an object with '{key}'")
    return data


def dump_response(view: JobStatusView, output: Optional[str]) -> None:
    """Write the flattened job response as JSON."""
    if not output:
        return
    with open(output, 'w', encoding="utf-8") as f:
        json.dump(view.to_response(), f, indent=2, default=str)
    click.echo(f"\n📄 Results exported to: {output}")


async def _run_job(service: JobService, submit) -> JobStatusView:
    try:
        job_id = submit()
        click.echo(f"⏳ Job {job_id} started...")
        return await service.wait(job_id)
    finally:
        await service.shutdown()


def _build_service(mock: bool) -> JobService:
    if not mock:
        try:
            Config.validate()
        except ValueError as e:
            click.echo(f"⚠️  {e} - results will come from mock data fallback")
    return JobService(use_mock_data=True if mock else None)


@click.command(name="generate")
@click.option('--age-range', 'age_ranges', multiple=True, required=True, help='Age range, e.g. 25-34 (repeatable)')
@click.option('--gender', 'genders', multiple=True, required=True, help='Gender (repeatable)')
@click.option('--location', 'locations', multiple=True, required=True, help='Location type, e.g. Urban (repeatable)')
@click.option('--income', 'income_ranges', multiple=True, required=True, help='Income range (repeatable)')
@click.option('--education', 'education_levels', multiple=True, required=True, help='Education level (repeatable)')
@click.option('--count', type=int, default=None, help=f'Number of personas (default: {Config.DEFAULT_PROFILE_COUNT})')
@click.option('--context', 'additional_context', default=None, help='Extra research context for the prompt')
@click.option('--mock', is_flag=True, help='Use deterministic mock data instead of the completion provider')
@click.option('--output', type=click.Path(dir_okay=False), help='Write the result JSON to this file')
def generate_command(
    age_ranges: Tuple[str, ...],
    genders: Tuple[str, ...],
    locations: Tuple[str, ...],
    income_ranges: Tuple[str, ...],
    education_levels: Tuple[str, ...],
    count: Optional[int],
    additional_context: Optional[str],
    mock: bool,
    output: Optional[str]
):
    """
    Generate a synthetic consumer panel.

    Examples:
        consumerlab generate --age-range 25-34 --gender Female --location Urban \\
            --income '$50,000-$75,000' --education "Bachelor's Degree" --count 20
        consumerlab generate ... --mock --output panel.json
    """
    setup_logfire()

    demographics = DemographicInput(
        age_ranges=list(age_ranges),
        genders=list(genders),
        locations=list(locations),
        income_ranges=list(income_ranges),
        education_levels=list(education_levels),
        additional_context=additional_context,
    )

    click.echo("=" * 60)
    click.echo("👥 Consumer Panel Generation")
    click.echo("=" * 60)

    service = _build_service(mock)
    try:
        view = asyncio.run(_run_job(
            service, lambda: service.submit_profile_generation(demographics, count)
        ))
    except ConsumerLabError as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()

    if view.status != JobStatus.COMPLETED:
        click.echo(f"❌ Generation failed: {view.error}", err=True)
        raise click.Abort()

    profiles = view.result.profiles
    click.echo(f"\n✅ Generated {len(profiles)} personas")
    for profile in profiles[:5]:
        click.echo(f"   • {profile.name}, {profile.age}, {profile.gender}, {profile.location}")
    if len(profiles) > 5:
        click.echo(f"   ... and {len(profiles) - 5} more")

    dump_response(view, output)


@click.command(name="analyze")
@click.option('--profiles', 'profiles_path', required=True, type=click.Path(exists=True, dir_okay=False), help='JSON file of personas')
@click.option('--concepts', 'concepts_path', required=True, type=click.Path(exists=True, dir_okay=False), help='JSON file of concepts')
@click.option('--mock', is_flag=True, help='Use deterministic mock data instead of the completion provider')
@click.option('--output', type=click.Path(dir_okay=False), help='Write the result JSON to this file')
def analyze_command(profiles_path: str, concepts_path: str, mock: bool, output: Optional[str]):
    """
    Score every concept against every persona.

    Examples:
        consumerlab analyze --profiles panel.json --concepts concepts.json
        consumerlab analyze --profiles panel.json --concepts concepts.json --mock --output results.json
    """
    setup_logfire()

    try:
        profiles: List[Persona] = TypeAdapter(List[Persona]).validate_python(load_items(profiles_path, "profiles"))
        concepts: List[Concept] = TypeAdapter(List[Concept]).validate_python(load_items(concepts_path, "concepts"))
    except (ValueError, ValidationError) as e:
        click.echo(f"❌ Invalid input file: {e}", err=True)
        raise click.Abort()

    click.echo("=" * 60)
    click.echo(f"📊 Concept Analysis: {len(profiles)} personas x {len(concepts)} concepts")
    click.echo("=" * 60)

    service = _build_service(mock)
    try:
        view = asyncio.run(_run_job(
            service, lambda: service.submit_analysis(profiles, concepts)
        ))
    except ConsumerLabError as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()

    if view.status != JobStatus.COMPLETED:
        click.echo(f"❌ Analysis failed: {view.error}", err=True)
        raise click.Abort()

    result = view.result
    summary = result.summary
    click.echo(f"\n✅ {result.total_analyses} preference records")
    click.echo(f"   Average preference:      {summary.average_preference:.2f}")
    click.echo(f"   Average innovativeness:  {summary.average_innovativeness:.2f}")
    click.echo(f"   Average differentiation: {summary.average_differentiation:.2f}")
    click.echo(f"   Top concept: {summary.top_performing_concept}")

    if summary.insights:
        click.echo("\n💡 Insights:")
        for insight in summary.insights:
            click.echo(f"   • {insight}")

    dump_response(view, output)
