from __future__ import annotations

import threading

from deploy_pipeline.core import ILogger

from .record import RunRecord
from .runner import CancelToken, Orchestrator
from .types import RevisionPushed


class Dispatcher:
    """
    Turns RevisionPushed events into runs.

    Pushes to other branches are ignored. A push that arrives while a run
    for the same environment is in flight cancels that run; its executing
    stages still finish.
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        *,
        tracked_branch: str = "main",
        logger: ILogger | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.tracked_branch = tracked_branch
        self.logger: ILogger = (logger or orchestrator.logger).bind(
            component="dispatcher"
        )
        self._lock = threading.Lock()
        self._active: dict[str, tuple[str, CancelToken]] = {}

    def accepts(self, event: RevisionPushed) -> bool:
        return event.branch == self.tracked_branch

    def in_flight(self, environment: str | None = None) -> str | None:
        """Revision currently running for the environment, if any."""
        env = environment or self.orchestrator.environment
        with self._lock:
            active = self._active.get(env)
            return active[0] if active else None

    def handle(self, event: RevisionPushed) -> RunRecord | None:
        """Run the pipeline for `event`; blocks until the run is sealed."""
        if not self.accepts(event):
            self.logger.info(
                "Push ignored",
                branch=event.branch,
                tracked_branch=self.tracked_branch,
                revision=event.revision,
            )
            return None

        env = self.orchestrator.environment
        token = CancelToken()
        with self._lock:
            previous = self._active.get(env)
            self._active[env] = (event.revision, token)

        if previous is not None:
            prev_revision, prev_token = previous
            self.logger.warning(
                "Superseding in-flight run",
                environment=env,
                previous_revision=prev_revision,
                revision=event.revision,
            )
            prev_token.cancel(f"superseded by {event.revision}")

        try:
            return self.orchestrator.run(event, cancel=token)
        finally:
            with self._lock:
                current = self._active.get(env)
                if current is not None and current[1] is token:
                    del self._active[env]
