"""
Command-line interface for golf-edge.
Built with Click and Rich for terminal output.
"""

import logging
import sys
from typing import Optional, Tuple

import click
import pandas as pd
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich import box

from . import __version__
from .api import DataGolfAPI
from .calibration import train_from_history
from .config import get_config
from .database import Database
from .errors import GolfEdgeError
from .form import compute_form_snapshots
from .identity import normalize
from .models import Market, SkillRating, Tier
from .params import build_course_profile, build_player_parameters
from .pipeline import RunOptions, RunOrchestrator
from .simulator import TournamentSimulator

console = Console()

TIER_STYLES = {
    Tier.PAR: "green",
    Tier.BIRDIE: "cyan",
    Tier.EAGLE: "yellow",
    Tier.LONG_SHOTS: "magenta",
}


def _pct(value: Optional[float], digits: int = 1) -> str:
    return f"{value * 100:.{digits}f}%" if value is not None else "N/A"


@click.group()
@click.version_option(version=__version__, prog_name="golf-edge")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def cli(verbose: bool):
    """golf-edge - value bets for the week's golf tournaments."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )


@cli.command()
@click.option("--api-key", default=None, help="Data Golf API key")
@click.option("--tour", "tours", multiple=True, help="Tour to build picks for (repeatable)")
def setup(api_key: Optional[str], tours: Tuple[str, ...]):
    """First-time setup: save settings and check the Data Golf key."""
    console.print(Panel.fit(
        "[bold green]golf-edge setup[/]",
        subtitle="Settings are saved to the data directory"
    ))

    config = get_config()
    if api_key:
        config.datagolf_api_key = api_key
    elif not config.datagolf_api_key:
        console.print("\n[yellow]No Data Golf API key found.[/]")
        config.datagolf_api_key = click.prompt("Enter your Data Golf API key", default="", show_default=False)
    if tours:
        config.tours = [t.upper() for t in tours]

    config.save_to_env()
    console.print(f"\n[green]Configuration saved to {config.data_dir / '.env'}[/]")

    db = Database(config.db_path, config.artifact_compress_bytes)
    console.print("[green]Database initialized![/]")

    if not config.datagolf_api_key:
        console.print("[yellow]No API key set. Runs need DATAGOLF_API_KEY to fetch odds.[/]")
        return

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console
    ) as progress:
        task = progress.add_task("Checking Data Golf API...", total=None)
        healthy = DataGolfAPI(api_key=config.datagolf_api_key, db=db).health_check()
        progress.update(task, completed=True)

    if not healthy:
        console.print("[red]Data Golf API key was rejected or the API is unreachable.[/]")
        sys.exit(1)
    console.print("[green]Data Golf API key is valid.[/]")
    console.print("\n[bold green]Setup complete! Run 'golf-edge run' to build this week's picks.[/]")


@cli.command()
@click.option("--run-key", default=None, help="Run key (default: weekly_<monday>)")
@click.option("--tour", "tours", multiple=True, help="Tour to include (repeatable)")
@click.option("--sims", "-n", type=int, default=None, help="Simulations per event")
@click.option("--seed", type=int, default=None, help="Random seed for reproducible runs")
@click.option("--date", "today", type=click.DateTime(formats=["%Y-%m-%d"]), default=None,
              help="Reference date for the run window")
@click.option("--dry-run", is_flag=True, help="Run everything but persist nothing")
def run(run_key: Optional[str], tours: Tuple[str, ...], sims: Optional[int], seed: Optional[int],
        today, dry_run: bool):
    """Build this week's recommendations."""
    options = RunOptions(
        tours=list(tours) or None,
        sim_count=sims,
        seed=seed,
        today=today.date() if today else None,
        dry_run=dry_run,
    )

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console
        ) as progress:
            task = progress.add_task("Running pipeline...", total=None)
            summary = RunOrchestrator().run(run_key, options)
            progress.update(task, completed=True)
    except GolfEdgeError as e:
        console.print(f"[red]Run failed: {e}[/]")
        sys.exit(1)

    console.print(Panel(
        f"[cyan]Events:[/] {summary.events_discovered}\n"
        f"[cyan]Players:[/] {summary.players_ingested}\n"
        f"[cyan]Odds markets:[/] {summary.odds_markets_ingested}\n"
        f"[cyan]Recommendations:[/] {summary.recommendations_created}\n"
        f"[cyan]Input hash:[/] {summary.input_hash[:16] if summary.input_hash else '-'}",
        title=f"{summary.run_key} {'(dry run)' if dry_run else ''}",
        border_style="green",
    ))

    if summary.issues:
        console.print("\n[bold yellow]Top issues:[/]")
        for issue in summary.issues:
            where = f" [{issue.tour}]" if issue.tour else ""
            console.print(f"  {issue.severity.value.upper():7} {issue.step}{where}: {issue.message}")


@cli.command("show-run")
@click.argument("run_key", required=False)
@click.option("--details", is_flag=True, help="Print the analysis for each pick")
def show_run(run_key: Optional[str], details: bool):
    """Show a stored run's recommendations (latest run by default)."""
    db = Database()
    if run_key:
        run_record = db.get_run(run_key)
    else:
        latest = db.list_runs(limit=1)
        run_record = latest[0] if latest else None

    if run_record is None:
        console.print("[yellow]No run found. Run 'golf-edge run' first.[/]")
        return

    console.print(Panel.fit(
        f"[bold]{run_record.run_key}[/]  {run_record.week_start} to {run_record.week_end}\n"
        f"Status: {run_record.status.value}"
        + (f"  (failed at {run_record.failure_step}: {run_record.failure_reason})"
           if run_record.failure_step else "")
    ))

    picks = db.get_recommendations(run_record.run_key)
    if not picks:
        console.print("[yellow]No recommendations stored for this run.[/]")
    else:
        table = Table(
            title="Recommendations",
            box=box.ROUNDED,
            show_header=True,
            header_style="bold cyan"
        )
        table.add_column("Tier", width=10)
        table.add_column("Event", width=24)
        table.add_column("Market", width=12)
        table.add_column("Selection", style="white", width=22)
        table.add_column("Odds", justify="right")
        table.add_column("Book")
        table.add_column("Fair %", justify="right")
        table.add_column("Edge", justify="right", style="green")
        table.add_column("EV", justify="right", style="green")
        table.add_column("Conf", justify="center")

        for pick in picks:
            selection = pick.selection + (" [dim](fallback)[/]" if pick.is_fallback else "")
            table.add_row(
                f"[{TIER_STYLES[pick.tier]}]{pick.tier.value}[/]",
                pick.event_name,
                pick.market.value,
                selection,
                f"{pick.best_odds:.2f}",
                pick.best_book,
                _pct(pick.fair_prob),
                f"{pick.edge * 100:+.2f}%",
                f"{pick.ev * 100:+.1f}%",
                "*" * pick.confidence,
            )
        console.print(table)

        if details:
            for pick in picks:
                body = pick.analysis + "\n\n" + "\n".join(f"- {b}" for b in pick.bullets)
                if pick.fallback_reason:
                    body += f"\n\n[yellow]{pick.fallback_reason}[/]"
                console.print(Panel(body, title=pick.selection, border_style=TIER_STYLES[pick.tier]))

    issues = db.get_issues(run_record.run_key)
    if issues:
        console.print(f"\n[cyan]Data issues:[/] {len(issues)}")
        for issue in sorted(issues, key=lambda i: i.severity.rank)[:10]:
            console.print(f"  {issue.severity.value.upper():7} {issue.step}: {issue.message}")


@cli.command()
@click.option("--limit", default=20, help="Number of runs")
def runs(limit: int):
    """List recent runs."""
    db = Database()
    records = db.list_runs(limit=limit)
    if not records:
        console.print("[yellow]No runs recorded yet.[/]")
        return

    table = Table(title="Runs", box=box.ROUNDED)
    table.add_column("Run key", style="cyan")
    table.add_column("Week")
    table.add_column("Status")
    table.add_column("Picks", justify="right")
    table.add_column("Completed")
    for record in records:
        status_style = {"completed": "green", "failed": "red"}.get(record.status.value, "yellow")
        table.add_row(
            record.run_key,
            f"{record.week_start} - {record.week_end}",
            f"[{status_style}]{record.status.value}[/]",
            str(db.count_recommendations(record.run_key)),
            record.completed_at.strftime("%Y-%m-%d %H:%M") if record.completed_at else "-",
        )
    console.print(table)


@cli.command()
@click.argument("history_csv", type=click.Path(exists=True, dir_okay=False))
@click.option("--bin-size", default=50, help="Rows per isotonic bin")
@click.option("--dry-run", is_flag=True, help="Report metrics without saving models")
def calibrate(history_csv: str, bin_size: int, dry_run: bool):
    """Train isotonic calibration from a CSV of market, predicted, outcome."""
    results = train_from_history(history_csv, bin_size=bin_size)
    if not results:
        console.print("[yellow]Not enough history to train any market.[/]")
        return

    db = None if dry_run else Database()
    table = Table(title="Calibration", box=box.ROUNDED)
    table.add_column("Market", style="cyan")
    table.add_column("Rows", justify="right")
    table.add_column("Bins", justify="right")
    table.add_column("Brier before", justify="right")
    table.add_column("Brier after", justify="right", style="green")
    table.add_column("Log loss before", justify="right")
    table.add_column("Log loss after", justify="right", style="green")

    for market, result in results.items():
        calibrator = result["calibrator"]
        if db is not None:
            db.save_calibration_model(market, calibrator.to_dict(), {
                "rows": result["rows"], "before": result["before"], "after": result["after"],
            })
        table.add_row(
            market.value,
            str(result["rows"]),
            str(len(calibrator.bins)),
            f"{result['before']['brier']:.4f}",
            f"{result['after']['brier']:.4f}",
            f"{result['before']['log_loss']:.4f}",
            f"{result['after']['log_loss']:.4f}",
        )
    console.print(table)
    if dry_run:
        console.print("[yellow]Dry run: models not saved.[/]")
    else:
        console.print(f"[green]Saved {len(results)} calibration models.[/]")


@cli.command()
@click.argument("players_csv", type=click.Path(exists=True, dir_okay=False))
@click.option("--tour", default="PGA", help="Tour (sets rating scale and cut rule)")
@click.option("--sims", "-n", type=int, default=None, help="Number of simulations")
@click.option("--seed", type=int, default=None)
@click.option("--rounds-csv", type=click.Path(exists=True, dir_okay=False), default=None,
              help="Recent rounds: player, event_id, year, tee_time, sg_total")
@click.option("--course-csv", type=click.Path(exists=True, dir_okay=False), default=None,
              help="Historical round scores at the venue (column: score)")
@click.option("--top", default=20, help="Rows to show")
def simulate(players_csv: str, tour: str, sims: Optional[int], seed: Optional[int],
             rounds_csv: Optional[str], course_csv: Optional[str], top: int):
    """Simulate a field from a CSV of player, sg_total (plus optional fit columns)."""
    frame = pd.read_csv(players_csv)
    name_column = next((c for c in ("player_name", "player", "name") if c in frame.columns), None)
    if name_column is None or "sg_total" not in frame.columns:
        raise click.UsageError("Players CSV needs a player name column and sg_total")

    optional = ["driving", "approach", "around_green", "putting", "total_fit",
                "course_history", "course_experience", "approach_skill"]
    players = []
    ratings = {}
    for row in frame.to_dict("records"):
        key = normalize(row[name_column])
        if not key:
            continue
        players.append((key, str(row[name_column])))
        if pd.notna(row["sg_total"]):
            extras = {c: float(row[c]) for c in optional if c in row and pd.notna(row[c])}
            ratings[key] = SkillRating(name=str(row[name_column]), sg_total=float(row["sg_total"]), **extras)

    form = None
    if rounds_csv:
        rounds = pd.read_csv(rounds_csv)
        if "tee_time" in rounds.columns:
            rounds["tee_time"] = pd.to_datetime(rounds["tee_time"], errors="coerce")
        grouped = {}
        for row in rounds.to_dict("records"):
            tee_time = row.get("tee_time")
            row["tee_time"] = None if tee_time is None or pd.isna(tee_time) else tee_time.to_pydatetime()
            grouped.setdefault(normalize(row.get("player")), []).append(row)
        form = compute_form_snapshots(grouped)

    profile = build_course_profile(pd.read_csv(course_csv)["score"].dropna()) if course_csv else None

    config = get_config()
    params = build_player_parameters(players, ratings, tour, course_profile=profile, form=form)
    simulator = TournamentSimulator()
    n = sims or config.sim_count
    console.print(f"\n[cyan]Running {n:,} simulations for {len(params)} players...[/]")
    result = simulator.simulate(params, cut_rule=config.cut_rule_for(tour), sim_count=n, seed=seed)

    names = dict(players)
    ranked = sorted(result.probabilities.items(), key=lambda item: -item[1].win)[:top]
    table = Table(title="Simulation Results", box=box.ROUNDED)
    table.add_column("Player", style="cyan")
    for market in (Market.WIN, Market.TOP_5, Market.TOP_10, Market.TOP_20, Market.MAKE_CUT, Market.FRL):
        table.add_column(market.value, justify="right")
    for key, outcome in ranked:
        table.add_row(
            names.get(key, key),
            _pct(outcome.win, 2),
            _pct(outcome.top_5),
            _pct(outcome.top_10),
            _pct(outcome.top_20),
            _pct(outcome.make_cut, 0),
            _pct(outcome.frl, 2),
        )
    console.print(table)


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
