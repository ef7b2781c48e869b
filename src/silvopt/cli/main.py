from __future__ import annotations

import logging
from pathlib import Path

import click
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from silvopt.core.errors import SilvoptValueError
from silvopt.optimization.heuristics import (
    PrescriptionCoordinateAscent,
    PrescriptionEnumeration,
    solve_ga,
    solve_prescription,
    solve_sa,
)
from silvopt.optimization.heuristics.common import Heuristic, HeuristicResult
from silvopt.optimization.parameters import (
    GeneticParameters,
    PrescriptionParameters,
    RunParameters,
    SimulatedAnnealingParameters,
)
from silvopt.silviculture import SilviculturalSpace, optimize_space
from silvopt.simulation.objective import Objective, ObjectiveEvaluator, ObjectiveKind
from silvopt.simulation.trajectory import StandTrajectory
from silvopt.simulation.treatments import Treatments
from silvopt.stand.io import load_financial_scenarios, load_stand
from silvopt.telemetry import SnapshotBus, summarize_snapshots

app = typer.Typer(add_completion=False, no_args_is_help=True)
console = Console()
HEURISTIC = click.Choice(["sa", "ga", "prescription"], case_sensitive=False)
OBJECTIVE = click.Choice([kind.value for kind in ObjectiveKind], case_sensitive=False)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _trajectory_table(trajectory: StandTrajectory, title: str) -> Table:
    frame = trajectory.to_frame()
    table = Table(title=title)
    for column in frame.columns:
        table.add_column(str(column), justify="right")
    for row in frame.itertuples(index=False):
        table.add_row(
            *(f"{value:.2f}" if isinstance(value, float) else str(value) for value in row)
        )
    return table


def _run_parameters(
    stand: Path,
    last_period: int,
    thin: list[int] | None,
    rotation: list[int] | None,
    objective: str,
) -> RunParameters:
    try:
        return RunParameters(
            last_planning_period=last_period,
            thin_periods=thin or [],
            rotation_lengths=rotation or [],
            financial=load_financial_scenarios(stand),
            objective=ObjectiveKind(objective.lower()),
        )
    except ValueError as exc:  # pragma: no cover - CLI validation
        raise typer.BadParameter(str(exc)) from exc


def _progress_table(summary: dict[tuple[str, str, str], dict[str, float]]) -> Table:
    table = Table(title="Progress by thinning combination")
    for column in ("heuristic", "thins", "moves", "best objective", "seconds"):
        table.add_column(column, justify="right")
    for (_, heuristic, combination), entry in sorted(summary.items()):
        table.add_row(
            heuristic,
            combination,
            str(int(entry["iterations"])),
            f"{entry['best_objective']:.2f}",
            f"{entry['runtime_seconds']:.2f}",
        )
    return table


@app.command()
def simulate(
    stand: Path = typer.Argument(..., exists=True, dir_okay=False, help="Stand YAML"),
    last_period: int = typer.Option(9, "--last-period", min=1, help="Planning periods to grow."),
    out: Path | None = typer.Option(None, "--out", help="Optional CSV of per-period results."),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Grow a stand without thinning and print per-period volumes."""
    _configure_logging(verbose)
    config = load_stand(stand)
    trajectory = StandTrajectory(config, last_period)
    timesteps = trajectory.simulate()
    console.print(_trajectory_table(trajectory, f"Stand: {config.name}"))
    console.print(f"[dim]{timesteps} growth timesteps[/]")
    if out:
        out.parent.mkdir(parents=True, exist_ok=True)
        trajectory.to_frame().to_csv(out, index=False)
        console.print(f"Saved to {out}")


@app.command()
def optimize(
    stand: Path = typer.Argument(..., exists=True, dir_okay=False, help="Stand YAML"),
    heuristic: str = typer.Option(
        "sa", "--heuristic", "-H", click_type=HEURISTIC, show_choices=True
    ),
    thin: list[int] | None = typer.Option(
        None, "--thin", "-t", help="Thin period (repeatable, at most three)."
    ),
    last_period: int = typer.Option(9, "--last-period", min=1),
    rotation: int | None = typer.Option(
        None, "--rotation", help="Rotation length in periods. Defaults to the last period."
    ),
    objective: str = typer.Option(
        ObjectiveKind.LAND_EXPECTATION_VALUE.value, "--objective", click_type=OBJECTIVE
    ),
    seed: int = 42,
    iterations: int | None = typer.Option(None, "--iterations", help="Annealing iterations."),
    generations: int = typer.Option(100, "--generations", min=1),
    population: int = typer.Option(40, "--population", min=1),
    initial_probability: float = typer.Option(
        0.0, "--initial-probability", help="Probability each tree starts scheduled for a thin."
    ),
    ascent: bool = typer.Option(
        False, "--ascent", help="Use coordinate ascent instead of enumerating prescriptions."
    ),
    out: Path | None = typer.Option(None, "--out", help="CSV of the best trajectory."),
    telemetry_log: Path | None = typer.Option(
        None,
        "--telemetry-log",
        help="Append run telemetry to a JSONL file; step logs land in steps/ beside it.",
        writable=True,
        dir_okay=False,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Optimize thinning for one stand with SA, GA, or prescription search."""
    _configure_logging(verbose)
    config = load_stand(stand)
    run = _run_parameters(stand, last_period, thin, [rotation] if rotation else None, objective)
    target = Objective(kind=run.objective, rotation_length=run.rotation_lengths[0])
    evaluator = ObjectiveEvaluator(run.financial)
    heuristic = heuristic.lower()
    treatments = (
        Treatments.prescriptions(run.thin_periods)
        if heuristic == "prescription"
        else Treatments.individual_tree_selection(run.thin_periods)
    )
    trajectory = StandTrajectory(config, run.last_planning_period, treatments=treatments)

    try:
        result: HeuristicResult
        if heuristic == "sa":
            result = solve_sa(
                trajectory,
                SimulatedAnnealingParameters(
                    iterations=iterations, initial_thinning_probability=initial_probability
                ),
                objective=target,
                evaluator=evaluator,
                seed=seed,
                telemetry_log=telemetry_log,
            )
        elif heuristic == "ga":
            result = solve_ga(
                trajectory,
                GeneticParameters(
                    population_size=population,
                    maximum_generations=generations,
                    initial_thinning_probability=initial_probability,
                ),
                objective=target,
                evaluator=evaluator,
                seed=seed,
                telemetry_log=telemetry_log,
            )
        else:
            result = solve_prescription(
                trajectory,
                PrescriptionParameters(),
                enumerate_all=not ascent,
                objective=target,
                evaluator=evaluator,
                seed=seed,
                telemetry_log=telemetry_log,
            )
    except SilvoptValueError as exc:
        console.print(f"[red]Optimization failed:[/red] {exc}")
        raise typer.Exit(1)

    console.print(_trajectory_table(result.best_trajectory, f"Best trajectory: {config.name}"))
    console.print(
        f"Objective ({run.objective.value}, {result.heuristic}): {result.best_objective:.3f}"
    )
    counters = result.counters
    console.print(
        f"[dim]moves accepted={counters.moves_accepted}, rejected={counters.moves_rejected}, "
        f"timesteps={counters.growth_model_timesteps}[/]"
    )
    if out:
        out.parent.mkdir(parents=True, exist_ok=True)
        result.best_trajectory.to_frame().to_csv(out, index=False)
        console.print(f"Saved to {out}")


@app.command()
def sweep(
    stand: Path = typer.Argument(..., exists=True, dir_okay=False, help="Stand YAML"),
    first_thin: list[int] | None = typer.Option(
        None, "--first-thin", help="Candidate first thin period (repeatable, 0 for none)."
    ),
    second_thin: list[int] | None = typer.Option(
        None, "--second-thin", help="Candidate second thin period (repeatable, 0 for none)."
    ),
    rotation: list[int] | None = typer.Option(
        None, "--rotation", help="Candidate rotation length (repeatable)."
    ),
    last_period: int = typer.Option(9, "--last-period", min=1),
    pool_size: int = typer.Option(4, "--pool-size", min=1),
    workers: int = typer.Option(1, "--workers", min=1),
    ascent: bool = typer.Option(False, "--ascent"),
    watch: bool = typer.Option(
        False, "--watch", help="Summarize progress snapshots for every thinning combination."
    ),
    out: Path | None = typer.Option(None, "--out", help="CSV summary of every cell."),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Prescription search over every thinning and rotation combination."""
    _configure_logging(verbose)
    config = load_stand(stand)
    run = _run_parameters(stand, last_period, None, rotation, ObjectiveKind.LAND_EXPECTATION_VALUE.value)
    space = SilviculturalSpace(
        first_thin_periods=first_thin or [0],
        second_thin_periods=second_thin or [0],
        rotation_lengths=run.rotation_lengths,
        financial_scenarios=run.financial,
        pool_capacity=pool_size,
    )
    evaluator = ObjectiveEvaluator(run.financial)
    bus = SnapshotBus() if watch else None

    def factory(trajectory: StandTrajectory, parameter_index: int) -> Heuristic:
        if ascent:
            return PrescriptionCoordinateAscent(
                trajectory,
                objective=Objective(rotation_length=trajectory.last_planning_period),
                evaluator=evaluator,
            )
        return PrescriptionEnumeration(
            trajectory,
            evaluator=evaluator,
            objective=Objective(rotation_length=trajectory.last_planning_period),
            rotation_lengths=run.rotation_lengths,
        )

    try:
        result = optimize_space(
            config,
            space,
            factory,
            prescriptions=True,
            last_planning_period=run.last_planning_period,
            max_workers=workers,
            watch_sink=bus.sink() if bus else None,
        )
    except SilvoptValueError as exc:
        console.print(f"[red]Sweep failed:[/red] {exc}")
        raise typer.Exit(1)

    frame = space.to_frame()
    table = Table(title=f"Silvicultural space: {config.name}")
    for column in frame.columns:
        table.add_column(str(column), justify="right")
    for row in frame.itertuples(index=False):
        table.add_row(
            *(f"{value:.2f}" if isinstance(value, float) else str(value) for value in row)
        )
    console.print(table)
    if bus is not None:
        console.print(_progress_table(summarize_snapshots(bus.drain())))
    counters = space.get_pool_performance_counters()
    console.print(
        f"[dim]{len(result.results)} combinations in {result.duration_seconds:.1f} s; "
        f"pooled={counters.solutions_cached}, accepted={counters.solutions_accepted}, "
        f"rejected={counters.solutions_rejected}[/]"
    )
    if out:
        out.parent.mkdir(parents=True, exist_ok=True)
        frame.to_csv(out, index=False)
        console.print(f"Saved to {out}")


if __name__ == "__main__":
    app()
