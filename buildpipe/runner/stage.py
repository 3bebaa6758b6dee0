import logging
import os
from pathlib import Path

from buildpipe.config import config
from buildpipe.exceptions import BuildError, PipelineError, TestError
from buildpipe.schemas import StageName
from buildpipe.utils import run_captured, tail_lines, BASH

logger = logging.getLogger(__name__)

STAGE_ERRORS: dict[StageName, type[PipelineError]] = {
    StageName.build: BuildError,
    StageName.test: TestError,
}


class StageRunner:
    name: StageName
    command: str
    host_workdir: Path
    env: dict[str, str]

    def __init__(
        self,
        name: StageName,
        command: str,
        host_workdir: Path,
        env: dict[str, str] | None = None,
    ):
        if name not in STAGE_ERRORS:
            raise ValueError(f'{name.value} is not a command stage')
        self.name = name
        self.command = command
        self.host_workdir = host_workdir
        self.env = env or {}

    async def run(self) -> str:
        """Run the stage command, returning the tail of its output."""
        try:
            returncode, output = await run_captured(
                BASH,
                '-c',
                'set -e\n' + self.command,
                cwd=self.host_workdir,
                env=os.environ | self.env,
            )
        except OSError as e:
            raise STAGE_ERRORS[self.name](f'Could not start {self.name.value}: {e}')

        output = tail_lines(output, config.output_tail_lines)
        if returncode:
            logger.error(f'{self.name.value} exited with code {returncode}')
            raise STAGE_ERRORS[self.name](
                f'{self.name.value} exited with code {returncode}',
                exit_code=returncode,
                output=output,
            )
        return output
