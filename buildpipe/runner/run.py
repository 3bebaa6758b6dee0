import asyncio
import logging
import shutil
from collections.abc import Awaitable, Callable
from pathlib import Path
from time import monotonic

from buildpipe.config import config
from buildpipe.exceptions import PipelineError
from buildpipe.runner.fetch import WorkspaceFetcher
from buildpipe.runner.stage import StageRunner
from buildpipe.runner.toolchain import ToolchainProvisioner
from buildpipe.schemas import Run, RunStatus, StageName, StageStatus, TRANSITIONS
from buildpipe.schemas.pipeline import PipelineDef

logger = logging.getLogger(__name__)


class RunRunner:
    run: Run
    pipeline: PipelineDef
    fetcher: WorkspaceFetcher
    provisioner: ToolchainProvisioner
    host_workdir: Path

    def __init__(
        self,
        run: Run,
        pipeline: PipelineDef,
        fetcher: WorkspaceFetcher,
        provisioner: ToolchainProvisioner,
    ):
        self.run = run
        self.pipeline = pipeline
        self.fetcher = fetcher
        self.provisioner = provisioner
        self.host_workdir = config.runs_dir / run.run_id

    async def _stage(
        self, name: StageName, command: str, action: Callable[[], Awaitable[str]]
    ):
        stage = self.run.start_stage(name, command)
        logger.info(f'[{self.run.run_id}] {name.value}: {command}')
        start = monotonic()
        try:
            stage.output = await action()
        except PipelineError as e:
            stage.status = StageStatus.failed
            stage.exit_code = e.exit_code
            stage.output = e.output
            raise
        except asyncio.CancelledError:
            stage.status = StageStatus.aborted
            raise
        finally:
            stage.duration = monotonic() - start
        stage.status = StageStatus.succeeded
        stage.exit_code = 0

    async def _execute(self):
        event = self.run.event
        spec = self.pipeline.toolchain_spec(self.run.matrix_entry)
        env = dict(self.pipeline.env)

        async def fetch():
            await self.fetcher.fetch(event, self.host_workdir)
            return ''

        async def provision():
            env.update(await self.provisioner.provision(spec))
            return ''

        await self._stage(
            StageName.fetch, f'checkout {event.repo_name}@{event.commit_ref}', fetch
        )
        await self._stage(
            StageName.provision,
            f'toolchain {spec.channel} ({spec.profile}) for {spec.target}',
            provision,
        )
        for name, template in (
            (StageName.build, self.pipeline.build),
            (StageName.test, self.pipeline.test),
        ):
            command = template.replace('{target}', spec.target)
            stage_runner = StageRunner(name, command, self.host_workdir, env)
            await self._stage(name, command, stage_runner.run)

    async def execute(self) -> Run:
        try:
            await self._execute()
            self.run.transition(RunStatus.succeeded)
            logger.info(f'[{self.run.run_id}] succeeded')
        except PipelineError as e:
            self.run.failed_stage = StageName(e.stage)
            self.run.error = str(e)
            self.run.transition(RunStatus.failed)
            logger.error(f'[{self.run.run_id}] failed at {e.stage}: {e}')
        except asyncio.CancelledError:
            self.run.transition(RunStatus.aborted)
            logger.warning(f'[{self.run.run_id}] aborted')
            raise
        except Exception as e:
            self.run.error = f'Internal error: {e}'
            if RunStatus.failed in TRANSITIONS[self.run.status]:
                self.run.transition(RunStatus.failed)
            raise
        finally:
            if not config.keep_workdirs:
                shutil.rmtree(self.host_workdir, ignore_errors=True)
        return self.run
