import logging
from pathlib import Path

from buildpipe.config import config
from buildpipe.runner.dispatcher import Dispatcher
from buildpipe.runner.utils import load_pipeline
from buildpipe.schemas import EventKind, RepoEvent, Run, RunOutcome

logger = logging.getLogger('buildpipe')


def local_event(repo: str, commit: str, branch: str) -> RepoEvent:
    if Path(repo).is_dir():
        clone_url = str(Path(repo).absolute())
        repo_name = Path(clone_url).name
    else:
        clone_url = repo
        repo_name = repo.rstrip('/').removesuffix('.git').rsplit('/', 1)[-1]
    return RepoEvent(
        kind=EventKind.push,
        source_branch=branch,
        destination_branch=branch,
        commit_ref=commit,
        clone_url=clone_url,
        repo_name=repo_name,
        provider='local',
    )


def log_run(run: Run):
    logger.info(f'{run.target}: {run.outcome.value}')
    if run.outcome == RunOutcome.success:
        return
    # aborted runs have no failed stage and may have no stages at all
    if run.failed_stage is not None:
        logger.info(f'{run.failed_stage.value} failed: {run.error}')
    if run.stages:
        for line in run.stages[-1].output.splitlines():
            logger.info(line)


async def run_once(repo: str, commit: str, branch: str | None) -> bool:
    pipeline = load_pipeline(config.pipeline_file)
    branch = branch or pipeline.on.branches_for(EventKind.push)[0]
    dispatched = Dispatcher(pipeline).dispatch(local_event(repo, commit, branch))
    if dispatched is None:
        return True
    runs, task = dispatched
    await task
    for run in runs:
        log_run(run)
    return all(run.outcome == RunOutcome.success for run in runs)
