from __future__ import annotations

import pytest
from deploy_pipeline.core import CycleDetected, DuplicateStage, GraphError, UnknownDependency
from deploy_pipeline.pipeline import build_graph, stage


def _noop(ctx):
    return None


def test_order_respects_dependencies_and_declaration_order() -> None:
    g = build_graph(
        [
            stage("lint", _noop),
            stage("test", _noop),
            stage("publish", _noop, depends_on=["test", "lint"]),
            stage("docs", _noop),
        ]
    )
    assert g.order == ("lint", "test", "docs", "publish")
    assert g.levels() == [["lint", "test", "docs"], ["publish"]]
    assert g.roots() == ["lint", "test", "docs"]
    assert g.downstream("test") == ("publish",)


def test_declared_order_breaks_ties_for_ready_stages() -> None:
    g = build_graph(
        [
            stage("z", _noop),
            stage("a", _noop, depends_on=["z"]),
            stage("m", _noop, depends_on=["z"]),
        ]
    )
    assert g.order == ("z", "a", "m")


def test_transitive_relations() -> None:
    g = build_graph(
        [
            stage("test", _noop),
            stage("provision", _noop, depends_on=["test"]),
            stage("publish", _noop, depends_on=["provision"]),
            stage("notify", _noop),
        ]
    )
    assert g.ancestors("publish") == {"test", "provision"}
    assert g.descendants("test") == {"provision", "publish"}
    assert g.depends_on("publish", "test")
    assert not g.depends_on("notify", "test")
    assert "publish" in g and "nope" not in g
    assert len(g) == 4


def test_cycle_is_rejected() -> None:
    with pytest.raises(CycleDetected) as ei:
        build_graph(
            [
                stage("a", _noop, depends_on=["c"]),
                stage("b", _noop, depends_on=["a"]),
                stage("c", _noop, depends_on=["b"]),
                stage("free", _noop),
            ]
        )
    assert sorted(ei.value.stages) == ["a", "b", "c"]


def test_self_dependency_is_a_cycle() -> None:
    with pytest.raises(CycleDetected):
        build_graph([stage("a", _noop, depends_on=["a"])])


def test_unknown_dependency_names_both_stages() -> None:
    with pytest.raises(UnknownDependency) as ei:
        build_graph(
            [stage("test", _noop), stage("publish", _noop, depends_on=["provsion"])]
        )
    assert ei.value.stage == "publish"
    assert ei.value.dependency == "provsion"


def test_duplicate_and_empty() -> None:
    with pytest.raises(DuplicateStage):
        build_graph([stage("a", _noop), stage("a", _noop)])
    with pytest.raises(GraphError):
        build_graph([])
    with pytest.raises(GraphError):
        build_graph([stage(" ", _noop)])


@pytest.mark.parametrize("name", ["a/b", "../up", "Publish", "x" * 65, "-lead"])
def test_names_unusable_as_file_names_are_rejected(name: str) -> None:
    with pytest.raises(GraphError, match="Invalid stage name"):
        build_graph([stage(name, _noop)])


def test_unknown_stage_lookup() -> None:
    g = build_graph([stage("a", _noop)])
    with pytest.raises(KeyError):
        g.get("b")
