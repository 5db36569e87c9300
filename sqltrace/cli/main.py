"""sqltrace CLI.

Commands:
    sqltrace explain <sql|file.sql> --dsn DSN          EXPLAIN + advisor
    sqltrace explain-file <plan.json> --engine ENGINE  Analyze captured EXPLAIN output
    sqltrace benchmark <sql|file.sql> --dsn DSN        Repeated timed runs
    sqltrace compare <a.sql> <b.sql> --dsn DSN         A/B benchmark with Welch t-test
"""

import logging
import sys
from typing import Optional

import click

from ..benchmark.schemas import BenchmarkConfig
from ..errors import InsufficientSamples, SqlTraceError
from ..execution.factory import create_executor_from_dsn
from ..plan.adapters import supported_engines
from ..service import SqlTraceService
from ._common import (
    console,
    display_analysis,
    display_benchmark,
    display_comparison,
    display_plan,
    print_json,
    read_plan_file,
    read_sql_arg,
    resolve_dsn,
    setup_logging,
)

logger = logging.getLogger(__name__)


def _fail(message: str, output_json: bool) -> None:
    if output_json:
        print_json({"error": message})
    else:
        console.print(f"[red]Error: {message}[/red]")
    sys.exit(1)


def _benchmark_config(
    warmup: Optional[int],
    runs: Optional[int],
    timeout: Optional[float],
    no_plans: bool,
    no_advisor: bool,
) -> BenchmarkConfig:
    defaults = BenchmarkConfig.from_settings()
    overrides = {
        "warmup_runs": warmup,
        "benchmark_runs": runs,
        "timeout_seconds": timeout,
        "include_execution_plans": False if no_plans else None,
        "include_advisor_analysis": False if no_advisor else None,
    }
    try:
        return BenchmarkConfig.from_dict(
            {k: v for k, v in overrides.items() if v is not None}, defaults=defaults
        )
    except ValueError as e:
        raise click.BadParameter(str(e))


def benchmark_options(func):
    """Options shared by benchmark and compare."""
    options = [
        click.option("--warmup", type=int, default=None, help="Warmup runs (discarded)"),
        click.option("--runs", "-n", type=int, default=None, help="Measured runs"),
        click.option("--timeout", type=float, default=None, help="Per-run timeout in seconds"),
        click.option("--no-plans", is_flag=True, help="Skip plan normalization per run"),
        click.option("--no-advisor", is_flag=True, help="Skip advisor scoring per run"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
@click.version_option(version="0.1.0", prog_name="sqltrace")
def cli():
    """sqltrace - execution plan analysis and query benchmarking."""
    pass


@cli.command()
@click.argument("query")
@click.option("--dsn", default=None, help="Database DSN (postgres://..., *.duckdb, *.db)")
@click.option("--plan/--no-plan", "show_plan", default=True, help="Show the plan tree")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging and suggestion details")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
def explain(query: str, dsn: Optional[str], show_plan: bool, verbose: bool, output_json: bool):
    """Run EXPLAIN ANALYZE on QUERY (inline SQL or a .sql file) and analyze the plan.

    Examples:
        sqltrace explain "SELECT * FROM orders WHERE status = 'open'" --dsn postgres://localhost/shop
        sqltrace explain report.sql --dsn warehouse.duckdb --json
    """
    setup_logging(verbose)
    sql = read_sql_arg(query)
    try:
        with create_executor_from_dsn(resolve_dsn(dsn)) as executor:
            outcome = SqlTraceService(executor).explain(sql)
    except (SqlTraceError, ValueError) as e:
        _fail(str(e), output_json)

    if output_json:
        print_json(outcome.to_dict())
        return

    if show_plan:
        display_plan(outcome.plan, outcome.analysis)
    display_analysis(outcome.analysis, verbose=verbose)
    if outcome.execution_time_ms is not None:
        console.print(f"[dim]Execution time: {outcome.execution_time_ms:,.2f}ms[/dim]")


@cli.command("explain-file")
@click.argument("plan_file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--engine", "-e",
    type=click.Choice(supported_engines(), case_sensitive=False),
    default="postgres",
    help="Engine that produced the EXPLAIN output",
)
@click.option("--plan/--no-plan", "show_plan", default=True, help="Show the plan tree")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging and suggestion details")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
def explain_file(plan_file: str, engine: str, show_plan: bool, verbose: bool, output_json: bool):
    """Analyze EXPLAIN output saved as JSON, without a database.

    SQLite plans are a JSON list of [id, parent, notused, detail] rows.

    Examples:
        sqltrace explain-file plan.json
        sqltrace explain-file mysql_plan.json --engine mysql --json
    """
    setup_logging(verbose)
    raw = read_plan_file(plan_file)
    try:
        outcome = SqlTraceService().explain_raw_plan(engine, raw)
    except SqlTraceError as e:
        _fail(str(e), output_json)

    if output_json:
        print_json(outcome.to_dict())
        return

    if show_plan:
        display_plan(outcome.plan, outcome.analysis)
    display_analysis(outcome.analysis, verbose=verbose)


@cli.command()
@click.argument("query")
@click.option("--dsn", default=None, help="Database DSN")
@benchmark_options
@click.option("--verbose", "-v", is_flag=True, help="Debug logging and per-run details")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
def benchmark(
    query: str,
    dsn: Optional[str],
    warmup: Optional[int],
    runs: Optional[int],
    timeout: Optional[float],
    no_plans: bool,
    no_advisor: bool,
    verbose: bool,
    output_json: bool,
):
    """Benchmark QUERY with warmup and repeated timed runs.

    Exits non-zero when no run succeeded.

    Examples:
        sqltrace benchmark report.sql --dsn warehouse.duckdb --runs 10
    """
    setup_logging(verbose)
    sql = read_sql_arg(query)
    config = _benchmark_config(warmup, runs, timeout, no_plans, no_advisor)
    try:
        with create_executor_from_dsn(resolve_dsn(dsn)) as executor:
            if output_json:
                result = SqlTraceService(executor).benchmark(sql, config)
            else:
                with console.status(f"Running {config.warmup_runs} warmup + {config.benchmark_runs} runs..."):
                    result = SqlTraceService(executor).benchmark(sql, config)
    except (SqlTraceError, ValueError) as e:
        _fail(str(e), output_json)

    if output_json:
        print_json(result.to_dict())
    else:
        display_benchmark(result, verbose=verbose)

    try:
        result.raise_for_samples()
    except InsufficientSamples as e:
        if not output_json:
            console.print(f"[red]{e}[/red]")
        sys.exit(1)


@cli.command()
@click.argument("query_a")
@click.argument("query_b")
@click.option("--dsn", default=None, help="Database DSN")
@click.option("--label-a", default="A", help="Label for QUERY_A")
@click.option("--label-b", default="B", help="Label for QUERY_B")
@click.option("--parallel", is_flag=True, help="Benchmark both queries at once on separate connections")
@benchmark_options
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
def compare(
    query_a: str,
    query_b: str,
    dsn: Optional[str],
    label_a: str,
    label_b: str,
    parallel: bool,
    warmup: Optional[int],
    runs: Optional[int],
    timeout: Optional[float],
    no_plans: bool,
    no_advisor: bool,
    verbose: bool,
    output_json: bool,
):
    """Benchmark QUERY_A and QUERY_B and test whether B is faster.

    Examples:
        sqltrace compare before.sql after.sql --dsn postgres://localhost/shop --runs 20
        sqltrace compare a.sql b.sql --dsn app.db --label-a old --label-b new --json
    """
    setup_logging(verbose)
    sql_a, sql_b = read_sql_arg(query_a), read_sql_arg(query_b)
    config = _benchmark_config(warmup, runs, timeout, no_plans, no_advisor)
    target = resolve_dsn(dsn)

    try:
        if parallel:
            service = SqlTraceService(executor_factory=lambda: create_executor_from_dsn(target))
            result = service.compare(sql_a, sql_b, label_a, label_b, config)
        else:
            with create_executor_from_dsn(target) as executor:
                result = SqlTraceService(executor).compare(sql_a, sql_b, label_a, label_b, config)
    except (SqlTraceError, ValueError) as e:
        _fail(str(e), output_json)

    if output_json:
        print_json(result.to_dict())
        return
    display_comparison(result)


def main():
    cli()


if __name__ == "__main__":
    main()
