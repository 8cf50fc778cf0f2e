# ABOUTME: CLI over the tutoring policy engine: struggle analytics, profiles, bandits, and guidance.
# ABOUTME: Reads interaction logs with pandas and renders results as rich tables.

"""
Tutoring Policy CLI

Usage:
    python -m scripts.policy_cli hdi --events-path data/events.parquet
    python -m scripts.policy_cli thresholds --learner-id learner-1 --events-path data/events.csv
    python -m scripts.policy_cli simulate-bandit --learners 50 --steps 40
    python -m scripts.policy_cli guide --bundle bundle.json --rung 2
"""

import json
import logging
from pathlib import Path
from typing import List, Optional

import numpy as np
import pandas as pd
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from src.analytics.hdi import generate_hdi_report
from src.analytics.struggle import generate_csi_report, get_adaptive_profile_thresholds
from src.common.config import DEFAULT_CONFIG_PATH, load_policy_config
from src.common.schemas import LearningOutcome, RetrievalBundle, events_from_frame
from src.guidance.contracts import generate_fallback_content
from src.guidance.llm_client import generate_guidance_sync
from src.policy.learner_bandits import BanditArmId, LearnerBanditManager
from src.policy.profiles import AssignmentContext, DiagnosticResults, assign_profile, hash_learner_id

console = Console()
app = typer.Typer(help="Adaptive tutoring policy: escalation profiles, struggle analytics, grounded guidance.")

LEVEL_COLORS = {"low": "green", "medium": "yellow", "high": "red"}


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=console, rich_tracebacks=True)],
        )


def load_events(events_path: Path) -> pd.DataFrame:
    """Read an interaction log from parquet, csv, or jsonl."""
    if not events_path.exists():
        console.print(f"[red]Events file not found: {events_path}[/red]")
        raise typer.Exit(code=1)
    suffix = events_path.suffix.lower()
    if suffix == ".parquet":
        return pd.read_parquet(events_path)
    if suffix == ".csv":
        return pd.read_csv(events_path)
    if suffix in (".jsonl", ".json"):
        return pd.read_json(events_path, lines=suffix == ".jsonl")
    console.print(f"[red]Unsupported events format: {suffix}[/red]")
    raise typer.Exit(code=1)


def _report_table(report: pd.DataFrame, score_column: str) -> Table:
    table = Table(show_header=True, header_style="bold magenta")
    for column in report.columns:
        table.add_column(column)
    for _, row in report.iterrows():
        color = LEVEL_COLORS.get(row["level"], "white")
        cells = []
        for column in report.columns:
            value = row[column]
            text = f"{value:.3f}" if isinstance(value, float) else str(value)
            if column in (score_column, "level"):
                text = f"[{color}]{text}[/{color}]"
            cells.append(text)
        table.add_row(*cells)
    return table


@app.command()
def hdi(
    events_path: Path = typer.Option(..., "--events-path", help="Interaction log (parquet, csv, or jsonl)."),
    output: Optional[Path] = typer.Option(None, "--output", help="Optional parquet path for the report."),
) -> None:
    """
    Hint Dependency Index per learner.
    """
    report = generate_hdi_report(load_events(events_path))
    console.rule("[bold blue]Hint Dependency Index[/bold blue]")
    console.print(_report_table(report, "hdi"))
    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        report.to_parquet(output, index=False)
        console.print(f"[green]✅ Report saved to {output}[/green]")


@app.command()
def csi(
    events_path: Path = typer.Option(..., "--events-path", help="Interaction log (parquet, csv, or jsonl)."),
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", help="Policy config YAML."),
) -> None:
    """
    Cognitive Strain Index per learner over their most recent interactions.
    """
    config = load_policy_config(config_path)
    report = generate_csi_report(load_events(events_path), window=config.csi_window)
    console.rule("[bold blue]Cognitive Strain Index[/bold blue]")
    console.print(_report_table(report, "csi"))


@app.command()
def thresholds(
    learner_id: str = typer.Option(..., "--learner-id", help="Learner to compute thresholds for."),
    events_path: Path = typer.Option(..., "--events-path", help="Interaction log (parquet, csv, or jsonl)."),
    difficulty: str = typer.Option("intermediate", "--difficulty", help="beginner, intermediate, or advanced."),
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", help="Policy config YAML."),
) -> None:
    """
    Adaptive escalate/aggregate thresholds from a learner's recovery history.
    """
    config = load_policy_config(config_path)
    events = [e for e in events_from_frame(load_events(events_path)) if e.learner_id == learner_id]
    if not events:
        console.print(f"[yellow]No interactions for {learner_id}; using neutral history[/yellow]")

    result = get_adaptive_profile_thresholds(
        events,
        difficulty=difficulty,
        base_escalate=config.base_escalate_threshold,
        base_aggregate=config.base_aggregate_threshold,
    )
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Threshold")
    table.add_column("Base")
    table.add_column("Adjusted")
    table.add_row("escalate", str(config.base_escalate_threshold), str(result.escalate))
    table.add_row("aggregate", str(config.base_aggregate_threshold), str(result.aggregate))
    console.print(table)
    for reason in result.adjustment_reasons:
        console.print(f"  → {reason}")


@app.command("assign-profile")
def assign_profile_command(
    learner_id: str = typer.Option(..., "--learner-id", help="Learner identifier."),
    strategy: str = typer.Option("static", "--strategy", help="static, diagnostic, or bandit."),
    persistence: float = typer.Option(0.5, "--persistence", help="Diagnostic persistence score."),
    recovery: float = typer.Option(0.5, "--recovery", help="Diagnostic recovery rate."),
) -> None:
    """
    Assign an escalation profile with the chosen strategy.
    """
    context = AssignmentContext(
        learner_id=learner_id,
        diagnostic_results=DiagnosticResults(persistence_score=persistence, recovery_rate=recovery),
    )
    profile = assign_profile(context, strategy)
    console.print(f"[bold]Learner:[/] {learner_id}")
    console.print(f"[bold]Profile:[/] {profile.name} ({profile.id.value})")
    console.print(f"  {profile.description}")
    console.print(
        f"  escalate after {profile.thresholds.escalate} errors, "
        f"aggregate after {profile.thresholds.aggregate}"
    )


def _simulated_outcome(rng: np.random.Generator, success_probability: float) -> LearningOutcome:
    solved = bool(rng.random() < success_probability)
    return LearningOutcome(
        solved=solved,
        used_explanation=bool(rng.random() < 0.3),
        error_count=int(rng.integers(0, 3)) if solved else int(rng.integers(2, 6)),
        baseline_errors=3.0,
        time_spent_ms=float(rng.uniform(60_000, 600_000)),
        median_time_ms=300_000.0,
        hdi_score=float(rng.uniform(0.0, 0.6)),
    )


@app.command("simulate-bandit")
def simulate_bandit(
    learners: int = typer.Option(20, "--learners", help="Number of simulated learners."),
    steps: int = typer.Option(30, "--steps", help="Problems per learner."),
    success: List[str] = typer.Option(
        [],
        "--success",
        help="Per-arm solve probability as arm=prob, e.g. --success conservative=0.8.",
    ),
    seed: int = typer.Option(42, "--seed", help="Random seed."),
    output: Optional[Path] = typer.Option(None, "--output", help="Optional JSON path for the bandit snapshot."),
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", help="Policy config YAML."),
) -> None:
    """
    Simulate learners solving problems under bandit-selected profiles.
    """
    probabilities = {arm: 0.5 for arm in BanditArmId}
    for item in success:
        arm_name, _, value = item.partition("=")
        try:
            probabilities[BanditArmId(arm_name)] = float(value)
        except ValueError:
            console.print(f"[red]Invalid --success value: {item}[/red]")
            raise typer.Exit(code=1)

    config = load_policy_config(config_path)
    rng = np.random.default_rng(seed)
    manager = LearnerBanditManager(
        weights=config.reward_weights,
        rng_factory=lambda learner_id: np.random.default_rng([seed, int(hash_learner_id(learner_id) * 2**31)]),
    )

    console.rule("[bold blue]Simulating Learner Bandits[/bold blue]")
    total_reward = 0.0
    for n in range(learners):
        learner_id = f"sim-learner-{n}"
        for _ in range(steps):
            _, arm_id = manager.select_profile_for_learner(learner_id)
            total_reward += manager.record_outcome(learner_id, arm_id, _simulated_outcome(rng, probabilities[arm_id]))

    pulls = {arm: 0 for arm in BanditArmId}
    reward_sums = {arm: 0.0 for arm in BanditArmId}
    for learner_id in manager.get_learner_ids():
        for stat in manager.get_learner_stats(learner_id):
            pulls[stat.arm_id] += stat.pull_count
            reward_sums[stat.arm_id] += stat.mean_reward * stat.pull_count

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Arm")
    table.add_column("Solve p")
    table.add_column("Pulls")
    table.add_column("Mean reward")
    for arm in BanditArmId:
        mean = reward_sums[arm] / pulls[arm] if pulls[arm] else 0.0
        table.add_row(arm.value, f"{probabilities[arm]:.2f}", f"{pulls[arm]:,}", f"{mean:.3f}")
    console.print(table)
    console.print(f"   Learners: {manager.get_learner_count():,}")
    console.print(f"   Average reward: {total_reward / max(learners * steps, 1):.3f}")

    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(json.dumps(manager.snapshot(), indent=2, default=str))
        console.print(f"[green]✅ Snapshot saved to {output}[/green]")


@app.command()
def guide(
    bundle_path: Path = typer.Option(..., "--bundle", help="Retrieval bundle JSON file."),
    rung: int = typer.Option(1, "--rung", min=1, max=3, help="Guidance rung (1-3)."),
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", help="Policy config YAML."),
) -> None:
    """
    Generate grounded guidance for a rung with the configured LLM provider.
    """
    if not bundle_path.exists():
        console.print(f"[red]Bundle file not found: {bundle_path}[/red]")
        raise typer.Exit(code=1)
    bundle = RetrievalBundle.from_dict(json.loads(bundle_path.read_text()))
    config = load_policy_config(config_path)

    if config.llm.enabled:
        output = generate_guidance_sync(rung, bundle, config.llm)
    else:
        console.print("[yellow]LLM guidance disabled (set USE_LLM_EXPLANATIONS=true); showing fallback.[/yellow]")
        output = generate_fallback_content(rung, bundle.last_error_subtype_id)

    status = "[yellow]fallback[/yellow]" if output.fallback_used else "[green]generated[/green]"
    console.rule(f"[bold blue]Rung {rung} guidance ({status})[/bold blue]")
    console.print(output.content)
    console.print()
    console.print(f"[bold]Grounded:[/] {output.metadata.grounded}")
    console.print(f"[bold]Concepts:[/] {', '.join(output.concept_ids) or '-'}")
    console.print(f"[bold]Sources:[/] {', '.join(output.source_ref_ids) or '-'}")
    if output.fallback_reason:
        console.print(f"[dim]Fallback reason: {output.fallback_reason}[/dim]")
    for error in output.metadata.validation_errors:
        console.print(f"  [red]✗[/red] {error}")


if __name__ == "__main__":
    app()
