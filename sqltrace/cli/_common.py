"""Shared CLI helpers: console, input loading, rich rendering."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from ..analyzers.schemas import AdvisorAnalysis, Severity
from ..benchmark.schemas import BenchmarkResult, ComparisonResult, StatisticalSignificance
from ..config import get_settings
from ..plan.models import PlanNode, PlanTree

console = Console()

SEVERITY_COLORS = {
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "blue",
}

SIGNIFICANCE_COLORS = {
    StatisticalSignificance.HIGHLY_SIGNIFICANT: "bold green",
    StatisticalSignificance.SIGNIFICANT: "green",
    StatisticalSignificance.MARGINALLY_SIGNIFICANT: "yellow",
    StatisticalSignificance.NOT_SIGNIFICANT: "dim",
}


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, get_settings().log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def read_sql_arg(value: str) -> str:
    """Accept inline SQL or a path to a .sql file."""
    path = Path(value)
    if path.suffix.lower() in (".sql", ".txt"):
        if not path.exists():
            raise click.ClickException(f"File not found: {value}")
        return path.read_text(encoding="utf-8")
    return value


def read_plan_file(file_path: str) -> Any:
    path = Path(file_path)
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise click.ClickException(f"{file_path} is not valid JSON: {e.msg}")


def resolve_dsn(dsn: Optional[str]) -> str:
    dsn = dsn or get_settings().database_url
    if not dsn:
        raise click.ClickException("No database given. Pass --dsn or set SQLTRACE_DATABASE_URL.")
    return dsn


def print_json(data: Any) -> None:
    console.print_json(json.dumps(data, default=str))


def score_color(score: float) -> str:
    return "green" if score >= 80 else "yellow" if score >= 60 else "red"


def _node_label(node: PlanNode, index: int, flagged: set[int]) -> str:
    parts = [f"[bold]{node.label}[/bold]"]
    if node.total_cost is not None:
        parts.append(f"cost={node.total_cost:,.2f}")
    if node.actual_rows is not None:
        parts.append(f"rows={node.actual_rows:,}")
    if node.actual_total_time is not None:
        parts.append(f"time={node.actual_total_time:,.2f}ms")
    text = f"[dim]#{index}[/dim] " + "  ".join(parts)
    return f"[red]{text}[/red]" if index in flagged else text


def display_plan(tree: PlanTree, analysis: Optional[AdvisorAnalysis] = None) -> None:
    """Render the plan as a rich tree; nodes with suggestions are highlighted."""
    flagged = {s.node_index for s in analysis.suggestions} if analysis else set()
    root = Tree("[bold]Execution Plan[/bold]")
    branches = {}
    parents = tree.parent_map()
    for idx, _depth in tree.walk():
        parent = branches.get(parents.get(idx), root)
        branches[idx] = parent.add(_node_label(tree[idx], idx, flagged))
    console.print(root)


def display_analysis(analysis: AdvisorAnalysis, verbose: bool = False) -> None:
    score = analysis.performance_score
    color = score_color(score)
    summary = analysis.summary
    console.print(Panel(
        f"Score: [bold {color}]{score}/100[/bold {color}]  {summary.potential_improvement}\n"
        f"Most expensive: {summary.most_expensive_operation}  "
        f"Total cost: {summary.total_cost:,.2f}  "
        f"High severity: {summary.high_severity_count}",
        title="Advisor Analysis",
        border_style=color,
    ))

    if not analysis.suggestions:
        console.print("[green]No suggestions.[/green]")
        return

    table = Table(title="Suggestions", show_header=True, header_style="bold")
    table.add_column("Severity", width=8)
    table.add_column("Node", justify="right", width=5)
    table.add_column("Title", width=36)
    table.add_column("Recommendation")
    for s in analysis.suggestions:
        c = SEVERITY_COLORS[s.severity]
        table.add_row(f"[{c}]{s.severity.value}[/{c}]", str(s.node_index), s.title, s.recommendation)
    console.print(table)

    if verbose:
        for i, s in enumerate(analysis.suggestions, 1):
            console.print(f"[bold]{i}. {s.title}[/bold] ({s.suggestion_type.value})")
            console.print(f"   [dim]Description:[/dim] {s.description}")
            console.print(f"   [dim]Impact:[/dim] {s.impact}")


def _ms(value: Optional[float]) -> str:
    return "-" if value is None else f"{value:,.2f}"


def display_benchmark(result: BenchmarkResult, verbose: bool = False) -> None:
    stats = result.statistics
    table = Table(title="Benchmark", show_header=True, header_style="bold")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Successful runs", f"{stats.successful_runs}/{len(result.runs)}")
    table.add_row("Timed out", str(stats.timed_out_runs))
    table.add_row("Avg (ms)", _ms(stats.avg_execution_time_ms))
    table.add_row("Min (ms)", _ms(stats.min_execution_time_ms))
    table.add_row("Max (ms)", _ms(stats.max_execution_time_ms))
    table.add_row("p95 (ms)", _ms(stats.p95_execution_time_ms))
    table.add_row("Std dev (ms)", _ms(stats.std_deviation_ms))
    table.add_row("Avg cost", _ms(stats.avg_cost))
    table.add_row("Avg advisor score", _ms(stats.avg_advisor_score))
    console.print(table)

    status_color = {"ok": "green", "degraded": "yellow"}.get(result.status, "red")
    console.print(f"Status: [{status_color}]{result.status}[/{status_color}]")

    if verbose:
        for run in result.runs:
            line = f"  run {run.run_number}: {run.status.value} {run.execution_time_ms:,.2f}ms"
            console.print(line + (f" ({run.error})" if run.error else ""))


def display_comparison(result: ComparisonResult) -> None:
    table = Table(title=f"{result.label_a} vs {result.label_b}", show_header=True, header_style="bold")
    table.add_column("Metric")
    table.add_column(result.label_a, justify="right")
    table.add_column(result.label_b, justify="right")
    a, b = result.statistics_a, result.statistics_b
    table.add_row("Successful runs", str(a.successful_runs), str(b.successful_runs))
    table.add_row("Avg (ms)", _ms(a.avg_execution_time_ms), _ms(b.avg_execution_time_ms))
    table.add_row("p95 (ms)", _ms(a.p95_execution_time_ms), _ms(b.p95_execution_time_ms))
    table.add_row("Std dev (ms)", _ms(a.std_deviation_ms), _ms(b.std_deviation_ms))
    table.add_row("Avg cost", _ms(a.avg_cost), _ms(b.avg_cost))
    table.add_row("Avg advisor score", _ms(a.avg_advisor_score), _ms(b.avg_advisor_score))
    console.print(table)

    sig_color = SIGNIFICANCE_COLORS[result.statistical_significance]
    improvement = result.performance_improvement_percent
    lines = [
        f"Improvement: [bold]{improvement:+.2f}%[/bold] ({result.label_b} vs {result.label_a})",
        f"Significance: [{sig_color}]{result.statistical_significance.value}[/{sig_color}] "
        f"(p={result.p_value:.4f})",
    ]
    if result.confidence_interval_ms is not None:
        low, high = result.confidence_interval_ms
        lines.append(f"95% CI for difference: [{low:,.2f}, {high:,.2f}] ms")
    if result.faster_label:
        lines.append(f"Faster: [bold green]{result.faster_label}[/bold green]")
    console.print(Panel("\n".join(lines), title="Comparison"))
