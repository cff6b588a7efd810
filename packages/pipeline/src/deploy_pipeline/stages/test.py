from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TypedDict

from deploy_pipeline.collaborators import TestRunner
from deploy_pipeline.core import TestFailure, Timer
from deploy_pipeline.pipeline import StageContext
from deploy_pipeline.pipeline.events import EventType


class StageTestResult(TypedDict):
    tests: str
    _metrics: dict[str, int]


@dataclass(slots=True)
class TestStage:
    """Run the application test suite; a failing suite fails the stage."""

    runner: TestRunner
    source_root: Path

    __test__ = False

    def run(self, ctx: StageContext) -> StageTestResult:
        with Timer() as t:
            report = self.runner.run(Path(self.source_root), credentials=ctx.credentials)
        duration = t.duration_ms or 0

        ctx.emit(
            EventType.TESTS_FINISHED,
            passed=report.passed,
            returncode=report.returncode,
            duration_ms=duration,
        )
        if not report.passed:
            raise TestFailure(
                f"Test suite failed for revision {ctx.trigger.revision}",
                detail=report.tail(),
            )
        return {"tests": "passed", "_metrics": {"test_duration_ms": duration}}
