import logging

from buildpipe.schemas import RepoEvent, EventKind
from buildpipe.schemas.pipeline import PipelineDef

logger = logging.getLogger(__name__)


def should_trigger(event: RepoEvent, pipeline: PipelineDef) -> bool:
    if event.kind == EventKind.push:
        branch = event.source_branch
    else:
        branch = event.destination_branch
    accepted = branch in pipeline.on.branches_for(event.kind)
    if not accepted:
        logger.info(
            f'Ignoring {event.kind.value} event for {event.repo_name}@{branch}'
        )
    return accepted
