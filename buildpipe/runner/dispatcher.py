import asyncio
import logging

from buildpipe.config import config
from buildpipe.runner.fetch import WorkspaceFetcher
from buildpipe.runner.runner import Runner
from buildpipe.runner.toolchain import ToolchainProvisioner
from buildpipe.schemas import RepoEvent, Run
from buildpipe.schemas.pipeline import PipelineDef
from buildpipe.trigger import should_trigger

logger = logging.getLogger(__name__)


class Dispatcher:
    pipeline: PipelineDef
    fetcher: WorkspaceFetcher
    provisioner: ToolchainProvisioner
    max_runs: int
    runs: dict[str, Run]
    _active: dict[str, asyncio.Task]

    def __init__(
        self,
        pipeline: PipelineDef,
        fetcher: WorkspaceFetcher | None = None,
        provisioner: ToolchainProvisioner | None = None,
        max_runs: int = config.max_runs,
    ):
        self.pipeline = pipeline
        self.fetcher = fetcher or WorkspaceFetcher()
        self.provisioner = provisioner or ToolchainProvisioner()
        self.max_runs = max_runs
        self.runs = {}
        self._active = {}

    def get_run(self, run_id: str) -> Run | None:
        return self.runs.get(run_id)

    def _evict_finished(self, incoming: int):
        # oldest first, unfinished runs are never dropped
        excess = len(self.runs) + incoming - self.max_runs
        if excess <= 0:
            return
        finished = [run_id for run_id, run in self.runs.items() if run.is_finished]
        for run_id in finished[:excess]:
            del self.runs[run_id]

    def dispatch(self, event: RepoEvent) -> tuple[list[Run], asyncio.Task] | None:
        """Start the runs for an event.

        Returns None if the event does not trigger the pipeline. An unfinished
        task for the same branch or pull request is cancelled first.
        """
        if not should_trigger(event, self.pipeline):
            return None

        key = event.concurrency_key
        if (previous := self._active.get(key)) is not None and not previous.done():
            logger.info(f'Superseding runs for {key}')
            previous.cancel()

        runner = Runner(event, self.pipeline, self.fetcher, self.provisioner)
        self._evict_finished(len(runner.runs))
        for run in runner.runs:
            self.runs[run.run_id] = run
        logger.info(
            f'Starting {len(runner.runs)} run(s) for {event.repo_name}@{event.commit_ref}'
        )
        task = asyncio.create_task(runner.run())
        self._active[key] = task

        def forget(done: asyncio.Task):
            if self._active.get(key) is done:
                del self._active[key]
            if done.cancelled():
                # a task cancelled before its first step never enters Runner.run
                runner.abort_pending()
            elif done.exception() is not None:
                logger.error(
                    f'Runs for {key} crashed', exc_info=done.exception()
                )

        task.add_done_callback(forget)
        return runner.runs, task

    async def wait(self):
        tasks = [task for task in self._active.values() if not task.done()]
        await asyncio.gather(*tasks, return_exceptions=True)
