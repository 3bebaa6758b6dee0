import asyncio

from buildpipe.runner.fetch import WorkspaceFetcher
from buildpipe.runner.run import RunRunner
from buildpipe.runner.toolchain import ToolchainProvisioner
from buildpipe.schemas import RepoEvent, Run, RunStatus
from buildpipe.schemas.pipeline import PipelineDef


class Runner:
    """Runs the pipeline for one accepted event, one run per matrix entry."""

    event: RepoEvent
    pipeline: PipelineDef
    runs: list[Run]
    _run_runners: list[RunRunner]

    def __init__(
        self,
        event: RepoEvent,
        pipeline: PipelineDef,
        fetcher: WorkspaceFetcher,
        provisioner: ToolchainProvisioner,
    ):
        self.event = event
        self.pipeline = pipeline
        self.runs = [
            Run(event=event, matrix_entry=entry) for entry in pipeline.entries
        ]
        self._run_runners = [
            RunRunner(run, pipeline, fetcher, provisioner) for run in self.runs
        ]

    def abort_pending(self):
        # runs whose task was cancelled before it started never reach execute()
        for run in self.runs:
            if run.status == RunStatus.pending:
                run.transition(RunStatus.aborted)

    async def run(self) -> list[Run]:
        try:
            await asyncio.gather(*(r.execute() for r in self._run_runners))
        except asyncio.CancelledError:
            self.abort_pending()
            raise
        return self.runs
