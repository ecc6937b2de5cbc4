"""Tests for matrix expansion."""

from matrixci.dag import load
from matrixci.dsl import job, sh
from matrixci.matrix import expand, expand_all
from matrixci.model import InstanceStatus


class TestExpand:
    """Cartesian product in declared order."""

    def test_no_axes_single_instance(self):
        instances = expand(job("lint", sh("ruff", "ruff check .")))

        assert len(instances) == 1
        assert instances[0].job_id == "lint"
        assert instances[0].matrix_assignment == {}
        assert instances[0].status is InstanceStatus.PENDING

    def test_two_axes_product_order(self):
        spec = job(
            "test",
            sh("run", "make test"),
            matrix={"os": ["ubuntu", "macos", "windows"], "py": ["3.11", "3.12"]},
        )

        assignments = [i.matrix_assignment for i in expand(spec)]

        assert assignments == [
            {"os": "ubuntu", "py": "3.11"},
            {"os": "ubuntu", "py": "3.12"},
            {"os": "macos", "py": "3.11"},
            {"os": "macos", "py": "3.12"},
            {"os": "windows", "py": "3.11"},
            {"os": "windows", "py": "3.12"},
        ]

    def test_axis_order_follows_declaration(self):
        spec = job("t", sh("run", "true"), matrix={"py": ["3.11", "3.12"], "os": ["a", "b"]})

        first = expand(spec)[:2]

        assert [list(i.matrix_assignment) for i in first] == [["py", "os"], ["py", "os"]]
        assert [i.matrix_assignment["os"] for i in first] == ["a", "b"]

    def test_assignments_unique(self):
        spec = job("t", sh("run", "true"), matrix={"a": [1, 2, 3], "b": ["x", "y"]})

        instances = expand(spec)
        keys = {tuple(sorted(i.matrix_assignment.items())) for i in instances}

        assert len(instances) == 6
        assert len(keys) == 6

    def test_repeated_expansion_identical(self):
        spec = job("t", sh("run", "true"), matrix={"os": ["l", "m", "w"], "v": [1, 2]})

        first = [i.matrix_assignment for i in expand(spec)]
        second = [i.matrix_assignment for i in expand(spec)]

        assert first == second

    def test_instances_are_fresh_objects(self):
        spec = job("t", sh("run", "true"), matrix={"os": ["l"]})

        a = expand(spec)[0]
        b = expand(spec)[0]
        a.status = InstanceStatus.FAILED

        assert b.status is InstanceStatus.PENDING

    def test_instance_key(self):
        spec = job("test", sh("run", "true"), matrix={"os": ["linux"], "py": ["3.12"]})

        assert expand(spec)[0].key == "test (os=linux, py=3.12)"
        assert expand(job("lint", sh("r", "true")))[0].key == "lint"


class TestExpandAll:
    """Whole-graph expansion follows graph order."""

    def test_graph_order(self):
        graph = load([
            job("ci", sh("ok", "true"), needs=["test"]),
            job("test", sh("run", "true"), matrix={"os": ["l", "m"]}),
        ])

        instances = expand_all(graph)

        assert [i.key for i in instances] == ["test (os=l)", "test (os=m)", "ci"]
