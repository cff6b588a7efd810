from __future__ import annotations

from deploy_pipeline.core import AmbiguousBootstrap

from .graph import PipelineGraph
from .types import BootstrapPolicy, StageKind


def _stages_of_kind(graph: PipelineGraph, kind: StageKind) -> list[str]:
    return [s.name for s in graph.stages if s.kind == kind]


def validate_bootstrap(graph: PipelineGraph, policy: BootstrapPolicy) -> None:
    """
    Reject graphs whose first run could bring up a compute service pointing
    at an image that has not been published yet.

    A stage provisioning "service" passes when it transitively depends on a
    publish stage. Under the placeholder policy it may instead declare a
    bootstrap image, provided some update_service stage depends on both it
    and a publish stage.

    Under the placeholder policy, in a graph that provisions a service, every
    publish stage must also be followed by an update_service stage, otherwise
    a new image would never reach the service. An update_service stage always
    needs a publish stage upstream.
    """
    policy = BootstrapPolicy(policy)
    publishers = set(_stages_of_kind(graph, StageKind.publish))
    updaters = _stages_of_kind(graph, StageKind.update_service)

    for upd in updaters:
        if not publishers & graph.ancestors(upd):
            raise AmbiguousBootstrap(
                upd, "update_service stage does not depend on any publish stage"
            )

    for st in graph.stages:
        if not st.provisions_service:
            continue
        if publishers & graph.ancestors(st.name):
            continue

        if policy != BootstrapPolicy.placeholder:
            raise AmbiguousBootstrap(
                st.name,
                "compute service is provisioned before any image is published; "
                "depend on a publish stage",
            )
        if not st.bootstrap_image:
            raise AmbiguousBootstrap(
                st.name,
                "compute service does not depend on a publish stage and declares "
                "no bootstrap image",
            )
        covered = any(
            st.name in graph.ancestors(upd)
            and publishers & graph.ancestors(upd)
            for upd in updaters
        )
        if not covered:
            raise AmbiguousBootstrap(
                st.name,
                "placeholder image is never replaced; add an update_service stage "
                "downstream of this stage and a publish stage",
            )

    has_service = any(st.provisions_service for st in graph.stages)
    if policy == BootstrapPolicy.placeholder and has_service:
        for pub in sorted(publishers, key=graph.names.index):
            followers = graph.descendants(pub)
            if not any(graph.get(d).kind == StageKind.update_service for d in followers):
                raise AmbiguousBootstrap(
                    pub,
                    "published image never reaches the service; "
                    "no update_service stage follows it",
                )


__all__ = ["BootstrapPolicy", "validate_bootstrap"]
