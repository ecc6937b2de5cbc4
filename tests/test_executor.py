"""Tests for the shell step executor. These run real /bin/sh commands."""

import pytest

from matrixci.dsl import sh
from matrixci.errors import ExecutorError
from matrixci.executor import ShellExecutor, StepContext, matrix_env
from matrixci.model import StepOutcome


def _ctx(**kw):
    kw.setdefault("job_id", "job")
    return StepContext(**kw)


@pytest.fixture
def shell(tmp_path):
    return ShellExecutor(tmp_path)


class TestShellExecutor:
    def test_success(self, shell):
        result = shell.run(sh("ok", "true"), _ctx())

        assert result.outcome is StepOutcome.SUCCESS
        assert result.exit_code == 0

    def test_non_zero_exit_is_failure(self, shell):
        result = shell.run(sh("bad", "echo boom >&2; exit 3"), _ctx())

        assert result.outcome is StepOutcome.FAILURE
        assert result.exit_code == 3
        assert result.message == "exit code 3"
        assert "boom" in result.output

    def test_command_not_found(self, shell):
        result = shell.run(sh("tool", "definitely-not-a-real-tool-xyz --version"), _ctx())

        assert result.outcome is StepOutcome.EXECUTOR_ERROR
        assert result.exit_code == 127
        assert "definitely-not-a-real-tool-xyz is not available" in result.message

    def test_runs_in_repo_root_and_step_cwd(self, tmp_path, shell):
        (tmp_path / "sub").mkdir()

        shell.run(sh("touch", "touch here.txt", cwd="sub"), _ctx())

        assert (tmp_path / "sub" / "here.txt").exists()

    def test_missing_cwd(self, shell):
        with pytest.raises(ExecutorError) as exc:
            shell.run(sh("x", "true", cwd="nope"), _ctx())
        assert exc.value.step == "x"

    def test_matrix_and_env_exposed(self, tmp_path, shell):
        step = sh(
            "write",
            'printf "%s %s %s %s" "$MATRIX_OS" "$LEVEL" "$STEP_VAR" "${{ matrix.os }}" > out.txt',
            env={"STEP_VAR": "${{ matrix.py }}"},
        )

        result = shell.run(step, _ctx(matrix={"os": "linux", "py": "3.12"}, env={"LEVEL": "job"}))

        assert result.outcome is StepOutcome.SUCCESS
        assert (tmp_path / "out.txt").read_text() == "linux job 3.12 linux"

    def test_timeout(self, tmp_path):
        with pytest.raises(ExecutorError) as exc:
            ShellExecutor(tmp_path, timeout=0.2).run(sh("slow", "sleep 5"), _ctx())
        assert "timed out" in exc.value.message

    def test_bad_interpolation(self, shell):
        with pytest.raises(ExecutorError):
            shell.run(sh("x", "echo ${{ matrix. }}"), _ctx())


class TestActions:
    def test_checkout_is_a_no_op(self, shell):
        result = shell.run(sh("checkout", "uses:actions/checkout@v2"), _ctx())

        assert result.outcome is StepOutcome.SUCCESS

    def test_other_actions_unsupported(self, shell):
        with pytest.raises(ExecutorError) as exc:
            shell.run(sh("setup", "uses:actions/setup-python@v5"), _ctx())
        assert "actions/setup-python@v5" in exc.value.message


def test_matrix_env_names():
    assert matrix_env({"os": "linux", "python-version": 3.12, "none": None}) == {
        "MATRIX_OS": "linux",
        "MATRIX_PYTHON_VERSION": "3.12",
        "MATRIX_NONE": "",
    }
