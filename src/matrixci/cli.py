# cli.py
from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click

from matrixci.config import DEFAULT_WORKFLOW, YAML_WORKFLOWS, load_settings
from matrixci.dag import Graph, load
from matrixci.errors import GraphError
from matrixci.executor import ShellExecutor
from matrixci.loader import load_workflow
from matrixci.matrix import expand_all
from matrixci.scheduler import run_pipeline
from matrixci.status import summarize
from matrixci.ui.console import Console, get_console, set_console

# exit codes
EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2
EXIT_INTERRUPTED = 130


def find_workflow_files(root: Path = Path(".")) -> list[Path]:
    """Candidate workflow files in `root`: the default name, *_workflow.py, .matrixci.yml."""
    candidates = {root / DEFAULT_WORKFLOW, *root.glob("*_workflow.py")}
    candidates.update(root / name for name in YAML_WORKFLOWS)
    return sorted(p for p in candidates if p.is_file())


def discover_workflow(workflow_arg: str | None) -> Path:
    """Resolve --workflow (or MATRIXCI_WORKFLOW), else the single workflow in cwd. Exits 2 otherwise."""
    console = get_console()

    if workflow_arg:
        path = Path(workflow_arg)
        if not path.suffix and not path.exists():
            path = path.with_suffix(".py")
        if path.is_file():
            return path
        console.print_error(
            "Workflow not found",
            f"No such workflow file: {workflow_arg}",
            suggestion="Pass an existing file, e.g.\n  matrixci run --workflow examples/ci.yml",
        )
        sys.exit(EXIT_INVALID)

    found = find_workflow_files()
    if len(found) == 1:
        return found[0]

    if not found:
        looked_for = [DEFAULT_WORKFLOW, "*_workflow.py", *YAML_WORKFLOWS]
        console.print_error(
            "No workflow",
            "Nothing to run in the current directory.",
            details=["searched: " + ", ".join(looked_for)],
            suggestion=f"Create {DEFAULT_WORKFLOW} or pass --workflow.",
        )
    else:
        console.print_error(
            "Ambiguous workflow",
            f"{len(found)} workflow files found; choose one with --workflow:",
            details=[str(p) for p in found],
        )
    sys.exit(EXIT_INVALID)


def _load_graph(ctx: click.Context, workflow: str | None) -> tuple[Path, Graph]:
    """Discover, read and validate a workflow; exits with EXIT_INVALID on a bad definition."""
    console = get_console()
    workflow_path = discover_workflow(workflow or ctx.obj["settings"].workflow)

    try:
        graph = load(load_workflow(workflow_path))
    except GraphError as e:
        console.print_error(
            "Invalid pipeline",
            f"{workflow_path} could not be loaded. Nothing was run.",
            details=str(e).splitlines(),
        )
        sys.exit(EXIT_INVALID)
    except Exception as e:
        console.print_error("Failed to load workflow", f"Could not load workflow from {workflow_path}")
        console.print_exception(e)
        sys.exit(EXIT_FAILED)

    return workflow_path, graph


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces, step output and engine logs)",
)
@click.pass_context
def cli(ctx, debug):
    """matrixci: run CI pipelines (job DAGs, build matrices, gating jobs)."""
    console = Console(debug=debug)
    set_console(console)
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = load_settings()
    except ValueError as e:
        console.print_error("Invalid configuration", str(e))
        sys.exit(EXIT_INVALID)

    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["settings"] = settings


@cli.command()
@click.option(
    "--workflow",
    default=None,
    help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)",
)
@click.option("--workers", default=None, type=click.IntRange(min=1), help="Number of parallel workers")
@click.option(
    "--fail-fast/--no-fail-fast",
    default=None,
    help="Stop starting new work after the first failed job instance",
)
@click.option("--timeout", default=None, type=click.FloatRange(min=0, min_open=True), help="Per-step timeout in seconds")
@click.option("--repo-root", default=".", show_default=True, help="Directory steps run in")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the run result as JSON")
@click.pass_context
def run(ctx, workflow, workers, fail_fast, timeout, repo_root, as_json):
    """Run a matrixci workflow."""
    console = get_console()
    settings = ctx.obj["settings"]

    workflow_path, graph = _load_graph(ctx, workflow)

    if as_json:
        console.quiet = True

    try:
        instance_count = len(expand_all(graph))
        console.print_run_started(
            pipeline=graph.pipeline.name or workflow_path.stem,
            workflow=workflow_path.name,
            job_count=len(graph.jobs),
            instance_count=instance_count,
        )

        result = run_pipeline(
            graph,
            ShellExecutor(repo_root, timeout=timeout if timeout is not None else settings.step_timeout),
            max_workers=workers or settings.max_workers,
            fail_fast=settings.fail_fast if fail_fast is None else fail_fast,
            console=console,
        )

        if as_json:
            data = result.to_dict()
            data["summary"] = summarize(result.instances)
            click.echo(json.dumps(data, indent=2))
        else:
            console.print_results(result)

    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(EXIT_INTERRUPTED)
    except Exception as e:
        console.print_exception(e)
        sys.exit(EXIT_FAILED)

    sys.exit(EXIT_OK if result.succeeded else EXIT_FAILED)


@cli.command()
@click.option("--workflow", default=None, help="Workflow file path")
@click.pass_context
def plan(ctx, workflow):
    """Show stages and matrix instances without running anything."""
    console = get_console()
    workflow_path, graph = _load_graph(ctx, workflow)

    console.print_header(f"Plan: {graph.pipeline.name or workflow_path.stem}")
    console.print_plan(graph.levels(), expand_all(graph), graph.gate)
    if graph.gate:
        console.print_info(f"\nGate: {graph.gate}")
    else:
        console.print_info(f"\nNo gate; result decided by sink jobs: {graph.sinks}")


@cli.command()
@click.option("--workflow", default=None, help="Workflow file path")
@click.pass_context
def validate(ctx, workflow):
    """Check a workflow definition (references, cycles, matrices, conditions)."""
    console = get_console()
    workflow_path, graph = _load_graph(ctx, workflow)
    console.print_info(
        f"OK: {workflow_path.name} defines {len(graph.jobs)} job(s), "
        f"{len(expand_all(graph))} instance(s)"
        + (f", gate '{graph.gate}'" if graph.gate else "")
    )


if __name__ == "__main__":
    cli()
