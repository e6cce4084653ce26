#!/usr/bin/env python3
"""CLI for scoring submissions and inspecting the reference bank."""

import click
import logging
import sys
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from skillscore.clustering import SkillClusterAnalyzer
from skillscore.libs.config_loader import load_default_configs
from skillscore.references import InMemoryReferenceStore, ReferenceMatcher, ReferencePolicy, alignment_message
from skillscore.scoring import (
    InMemoryExerciseCatalog,
    RubricValidationPolicy,
    ScoringEngine,
    ScoringRequest,
    UnknownExerciseError,
    parse_judgment,
    reconcile_rubric,
)

LOG = logging.getLogger(__name__)

console = Console()

CONFIDENCE_STYLES = {'high': 'green', 'medium': 'yellow', 'low': 'red'}
RISK_STYLES = {'low': 'green', 'medium': 'yellow', 'high': 'red'}


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def _load_configs(config_path: Optional[Path]):
    extra = [str(config_path)] if config_path else []
    try:
        return load_default_configs(*extra)
    except ValueError:
        # No config files at all: every policy falls back to its defaults
        LOG.warning("No configuration found, using built-in defaults")
        return {}


def _load_catalog(catalog_path: Path) -> InMemoryExerciseCatalog:
    try:
        return InMemoryExerciseCatalog.load(catalog_path)
    except (TypeError, ValidationError, yaml.YAMLError) as e:
        console.print(f"[red]Could not load exercise catalog {catalog_path}:[/red] {e}")
        sys.exit(1)


def _load_judgment(judgment_path: Path):
    """YAML judgments are decoded here; anything else goes to the parser as raw text."""
    text = judgment_path.read_text()
    if judgment_path.suffix.lower() in ('.yaml', '.yml'):
        return yaml.safe_load(text)
    return text


def _print_issues(result) -> None:
    if not result.issues:
        console.print("[green]No rubric issues found[/green]")
        return
    table = Table(title="Rubric Issues")
    table.add_column("Severity")
    table.add_column("Type", style="cyan")
    table.add_column("Criterion")
    table.add_column("Message")
    for issue in result.issues:
        style = 'red' if issue.severity == 'error' else 'yellow'
        table.add_row(f"[{style}]{issue.severity}[/{style}]", issue.type, issue.criterion or "", issue.message)
    console.print(table)


def _print_breakdown(result) -> None:
    table = Table(title="Reconciled Breakdown")
    table.add_column("Criterion", style="cyan")
    table.add_column("Points", justify="right")
    table.add_column("Max", justify="right")
    table.add_column("Judge Label")
    for name, entry in result.breakdown.items():
        table.add_row(name, f"{entry.points_awarded:g}", f"{entry.max_points:g}", entry.source_label or "-")
    agg = result.aggregation
    table.add_row("[bold]Total[/bold]", f"{agg.total_awarded:g}", f"{agg.total_max:g}", f"{agg.percentage}%")
    console.print(table)


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
def cli(verbose):
    """Score skill-exercise submissions and manage the reference bank."""
    _setup_logging(verbose)


@cli.command()
@click.option(
    '--catalog',
    '-c',
    type=click.Path(exists=True, path_type=Path),
    required=True,
    help='Exercise catalog YAML file'
)
@click.option(
    '--submission',
    '-s',
    type=click.Path(exists=True, path_type=Path),
    required=True,
    help='Submission YAML file (exercise_id, submission, judgment, validator_score, ...)'
)
@click.option(
    '--references',
    '-r',
    type=click.Path(path_type=Path),
    default=None,
    help='Reference bank YAML file'
)
@click.option(
    '--config',
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help='Extra config file merged over the defaults'
)
@click.option(
    '--output',
    '-o',
    type=click.Path(path_type=Path),
    default=None,
    help='Write the scoring outcome to this YAML file'
)
@click.option(
    '--retain',
    is_flag=True,
    help='Add the submission to the reference bank if it qualifies'
)
def score(catalog, submission, references, config, output, retain):
    """
    Score one submission against its exercise.

    Example:
        skillscore score -c exercises.yaml -s submission.yaml -r references.yaml
    """
    configs = _load_configs(config)
    exercise_catalog = _load_catalog(catalog)

    with open(submission, 'r') as f:
        data = yaml.safe_load(f)
    try:
        request = ScoringRequest.model_validate(data)
    except ValidationError as e:
        console.print(f"[red]Invalid submission file {submission}:[/red] {e}")
        sys.exit(1)

    store = None
    matcher = None
    if references is not None:
        store = InMemoryReferenceStore.load(references)
        matcher = ReferenceMatcher(store, ReferencePolicy.from_config(configs))

    engine = ScoringEngine.from_config(configs, exercise_catalog, matcher=matcher)
    try:
        outcome = engine.score(request)
    except UnknownExerciseError:
        console.print(f"[red]Unknown exercise:[/red] {request.exercise_id}")
        sys.exit(1)

    ensemble = outcome.ensemble
    band_style = CONFIDENCE_STYLES[ensemble.confidence_band]
    console.print(f"\n[bold cyan]Exercise {outcome.exercise_id}[/bold cyan]")
    console.print("=" * 50)
    console.print(f"Final score: [bold]{outcome.final_score}[/bold] "
                  f"(range {ensemble.range[0]}-{ensemble.range[1]})")
    console.print(f"Confidence: [{band_style}]{ensemble.confidence} ({ensemble.confidence_band})[/{band_style}], "
                  f"agreement {ensemble.agreement}")

    table = Table(title="Ensemble Components")
    table.add_column("Signal", style="cyan")
    table.add_column("Score", justify="right")
    table.add_column("Weight", justify="right")
    for name, value in ensemble.component_scores.items():
        table.add_row(name, f"{value:.1f}", f"{ensemble.component_weights[name]:.2f}")
    console.print(table)
    for adjustment in ensemble.adjustments:
        console.print(f"  [yellow]adjusted:[/yellow] {adjustment}")

    risk_style = RISK_STYLES[outcome.integrity.risk_level]
    console.print(f"\nIntegrity risk: [{risk_style}]{outcome.integrity.risk_level}[/{risk_style}]")
    for flag in outcome.integrity.flags:
        console.print(f"  - {flag}")

    if outcome.parse_error:
        console.print(f"\n[red]Judgment could not be parsed:[/red] {outcome.parse_error}")
    if outcome.rubric is not None:
        console.print()
        _print_breakdown(outcome.rubric)
        _print_issues(outcome.rubric)

    pool = outcome.references
    console.print(f"\nReference pool: {len(pool.references)} references "
                  f"({pool.total_from_exercise} direct, {pool.total_from_cross_exercise} cross-exercise), "
                  f"percentile ~{pool.percentile_estimate}")
    message = alignment_message(pool)
    if message:
        console.print(f"  {message}")
    for error in outcome.errors:
        console.print(f"[red]  collaborator error:[/red] {error}")

    if output:
        with open(output, 'w') as f:
            yaml.dump(outcome.model_dump(mode='json'), f, default_flow_style=False, sort_keys=False)
        console.print(f"\n[green]Outcome saved to:[/green] {output}")

    if retain:
        if store is None:
            console.print("[red]--retain needs a --references file[/red]")
            sys.exit(1)
        added = engine.retain_reference(request, outcome)
        if added.added:
            store.save(references)
            console.print(f"[green]Stored as reference {added.id}[/green]")
        else:
            console.print(f"[yellow]Not stored as a reference:[/yellow] {added.reason}")


@cli.command()
@click.option('--catalog', '-c', type=click.Path(exists=True, path_type=Path), required=True,
              help='Exercise catalog YAML file')
@click.option('--exercise-id', '-e', required=True, help='Exercise to reconcile against')
@click.option('--judgment', '-j', type=click.Path(exists=True, path_type=Path), required=True,
              help='Judgment as JSON (or judge response text) or YAML')
@click.option('--config', type=click.Path(exists=True, path_type=Path), default=None,
              help='Extra config file merged over the defaults')
def reconcile(catalog, exercise_id, judgment, config):
    """Reconcile a judgment's breakdown against the exercise rubric."""
    configs = _load_configs(config)
    exercise = _load_catalog(catalog).get_exercise(exercise_id)
    if exercise is None:
        console.print(f"[red]Unknown exercise:[/red] {exercise_id}")
        sys.exit(1)

    parsed = parse_judgment(_load_judgment(judgment))
    if not parsed.success:
        console.print(f"[red]Judgment could not be parsed:[/red] {parsed.error}")
        sys.exit(1)
    for warning in parsed.warnings:
        console.print(f"[yellow]{warning}[/yellow]")

    result = reconcile_rubric(
        parsed.judgment.criteria,
        exercise.rubric,
        parsed.judgment.overall_score,
        RubricValidationPolicy.from_config(configs),
    )
    _print_breakdown(result)
    _print_issues(result)
    for note in result.notes:
        console.print(f"  note: {note}")

    status = "[green]valid[/green]" if result.is_valid else "[red]invalid[/red]"
    console.print(f"\nJudgment is {status} "
                  f"(claimed {parsed.judgment.overall_score:g}, rubric {result.aggregation.percentage})")
    if not result.is_valid:
        sys.exit(2)


@cli.command()
@click.option('--catalog', '-c', type=click.Path(exists=True, path_type=Path), required=True,
              help='Exercise catalog YAML file')
@click.option('--exercise-id', '-e', required=True, help='Exercise to find relatives of')
@click.option('--limit', '-n', type=int, default=5, help='Maximum number of exercises to list')
@click.option('--config', type=click.Path(exists=True, path_type=Path), default=None,
              help='Extra config file merged over the defaults')
def similar(catalog, exercise_id, limit, config):
    """List exercises related to an exercise."""
    configs = _load_configs(config)
    exercise_catalog = _load_catalog(catalog)
    if exercise_catalog.get_exercise(exercise_id) is None:
        console.print(f"[red]Unknown exercise:[/red] {exercise_id}")
        sys.exit(1)

    analyzer = SkillClusterAnalyzer.from_config(
        configs, (e.to_embedding_record() for e in exercise_catalog.list_exercises())
    )
    related = analyzer.find_similar_exercises(exercise_id, limit=limit)
    if not related:
        console.print("No related exercises found")
        return

    table = Table(title=f"Exercises related to {exercise_id}")
    table.add_column("Exercise", style="cyan")
    table.add_column("Skill")
    table.add_column("Difficulty")
    table.add_column("Similarity", justify="right")
    table.add_column("Relationship", style="yellow")
    for entry in related:
        table.add_row(entry.exercise_id, entry.skill_category, entry.difficulty,
                      f"{entry.similarity:.2f}", entry.relationship)
    console.print(table)


@cli.command('seed-status')
@click.option('--catalog', '-c', type=click.Path(exists=True, path_type=Path), required=True,
              help='Exercise catalog YAML file')
@click.option('--references', '-r', type=click.Path(exists=True, path_type=Path), required=True,
              help='Reference bank YAML file')
def seed_status(catalog, references):
    """Report which exercises have enough reference answers."""
    exercise_ids = [e.exercise_id for e in _load_catalog(catalog).list_exercises()]
    matcher = ReferenceMatcher(InMemoryReferenceStore.load(references))
    status = matcher.seeding_status(exercise_ids)

    table = Table(title="Reference Seeding Status")
    table.add_column("Status", style="cyan")
    table.add_column("Count", justify="right")
    table.add_column("Exercises")
    table.add_row("well seeded", str(len(status.well_seeded)), ", ".join(status.well_seeded))
    table.add_row("partially seeded", str(len(status.partially_seeded)), ", ".join(status.partially_seeded))
    table.add_row("not seeded", str(len(status.not_seeded)), ", ".join(status.not_seeded))
    console.print(table)


def main():
    cli()


if __name__ == '__main__':
    main()
