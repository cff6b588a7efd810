from __future__ import annotations

import heapq
import re
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Mapping

from deploy_pipeline.core import CycleDetected, DuplicateStage, GraphError, UnknownDependency

from .stage import StageDefinition

STAGE_NAME_PATTERN = r"^[a-z0-9][a-z0-9_\-]*$"
STAGE_NAME_MAX = 64
_NAME_RE = re.compile(STAGE_NAME_PATTERN)


@dataclass(frozen=True, slots=True)
class PipelineGraph:
    """
    Validated, read-only dependency graph of stages.

    `order` is the deterministic topological order used as the default
    execution order: whenever several stages are ready, the one declared
    first goes first.
    """

    stages: tuple[StageDefinition, ...]
    order: tuple[str, ...]
    _by_name: Mapping[str, StageDefinition]
    _downstream: Mapping[str, tuple[str, ...]]

    def __iter__(self) -> Iterator[StageDefinition]:
        return (self._by_name[n] for n in self.order)

    def __len__(self) -> int:
        return len(self.stages)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    @property
    def names(self) -> list[str]:
        return [s.name for s in self.stages]

    def get(self, name: str) -> StageDefinition:
        try:
            return self._by_name[name]
        except KeyError:
            raise KeyError(f"Unknown stage: {name}") from None

    def upstream(self, name: str) -> tuple[str, ...]:
        return self.get(name).depends_on

    def downstream(self, name: str) -> tuple[str, ...]:
        self.get(name)
        return self._downstream[name]

    def ancestors(self, name: str) -> set[str]:
        return self._closure(name, self.upstream)

    def descendants(self, name: str) -> set[str]:
        return self._closure(name, self.downstream)

    def depends_on(self, name: str, other: str) -> bool:
        """True if `name` transitively depends on `other`."""
        return other in self.ancestors(name)

    def levels(self) -> list[list[str]]:
        """
        Group stages by dependency depth. Stages in the same level have no
        dependency relation and may run concurrently.
        """
        depth: dict[str, int] = {}
        for n in self.order:
            ups = self.upstream(n)
            depth[n] = 1 + max((depth[u] for u in ups), default=-1)

        out: list[list[str]] = []
        for n in self.order:
            d = depth[n]
            while len(out) <= d:
                out.append([])
            out[d].append(n)
        return out

    def roots(self) -> list[str]:
        return [n for n in self.order if not self.upstream(n)]

    def describe(self) -> dict[str, Any]:
        return {
            "order": list(self.order),
            "levels": self.levels(),
            "stages": [self._by_name[n].describe() for n in self.order],
        }

    @staticmethod
    def _closure(name: str, step) -> set[str]:
        seen: set[str] = set()
        stack = list(step(name))
        while stack:
            cur = stack.pop()
            if cur in seen:
                continue
            seen.add(cur)
            stack.extend(step(cur))
        return seen


def build_graph(definitions: Iterable[StageDefinition]) -> PipelineGraph:
    """
    Validate stage definitions and compute a topological order (Kahn's
    algorithm, ties broken by declaration order).

    Raises:
      DuplicateStage: two definitions share a name
      UnknownDependency: a stage depends on an undeclared name
      CycleDetected: the dependency relation is not a DAG
      GraphError: no stages, or a name unusable as a file name
    """
    defs = list(definitions)
    if not defs:
        raise GraphError("A pipeline needs at least one stage")

    by_name: dict[str, StageDefinition] = {}
    position: dict[str, int] = {}
    for idx, d in enumerate(defs):
        if (
            not isinstance(d.name, str)
            or len(d.name) > STAGE_NAME_MAX
            or not _NAME_RE.fullmatch(d.name)
        ):
            raise GraphError(
                f"Invalid stage name {d.name!r}: expected 1-{STAGE_NAME_MAX} lowercase "
                "letters, digits, '_' or '-', starting with a letter or digit"
            )
        if d.name in by_name:
            raise DuplicateStage(f"Duplicate stage name: {d.name}")
        by_name[d.name] = d
        position[d.name] = idx

    for d in defs:
        for dep in d.depends_on:
            if dep not in by_name:
                raise UnknownDependency(d.name, dep)

    incoming: dict[str, int] = {}
    downstream: dict[str, list[str]] = {d.name: [] for d in defs}
    for d in defs:
        ups = set(d.depends_on)
        incoming[d.name] = len(ups)
        for dep in ups:
            downstream[dep].append(d.name)

    ready: list[tuple[int, str]] = [
        (position[n], n) for n, c in incoming.items() if c == 0
    ]
    heapq.heapify(ready)
    order: list[str] = []

    while ready:
        _, name = heapq.heappop(ready)
        order.append(name)
        for child in downstream[name]:
            incoming[child] -= 1
            if incoming[child] == 0:
                heapq.heappush(ready, (position[child], child))

    if len(order) != len(defs):
        stuck = [d.name for d in defs if incoming[d.name] > 0]
        raise CycleDetected(stuck)

    return PipelineGraph(
        stages=tuple(defs),
        order=tuple(order),
        _by_name=by_name,
        _downstream={
            n: tuple(sorted(children, key=position.__getitem__))
            for n, children in downstream.items()
        },
    )
