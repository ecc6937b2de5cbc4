# matrixci_workflow.py
# Workflow for matrixci itself: lint, tests across interpreters, gate.
from __future__ import annotations
from matrixci.dsl import wf, job, sh


def workflow():
    return wf(
        # Lint job - runs ruff on the codebase
        job(
            "lint",
            sh("Ruff check", "ruff check src tests"),
            sh("Ruff format check", "ruff format --check src tests"),
        ),

        # Test job - one instance per interpreter
        job(
            "test",
            sh("Install package", "${{ matrix.python }} -m pip install -e '.[test]'"),
            sh("Run pytest", "${{ matrix.python }} -m pytest -q"),
            needs=["lint"],
            matrix={"python": ["python3.10", "python3.11", "python3.12"]},
        ),

        # Config check - validates project configuration
        job(
            "config-check",
            sh("Validate pyproject.toml", "python3 -c 'import tomllib; tomllib.load(open(\"pyproject.toml\", \"rb\"))'"),
        ),

        # Gate - the pipeline passes only if everything it needs passed
        job(
            "ci-success",
            sh("CI succeeded", "exit 0"),
            needs=["test", "config-check"],
            name="ci",
            gate=True,
        ),
        name="matrixci",
    )
