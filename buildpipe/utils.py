import asyncio
from asyncio import create_subprocess_exec

import logging
import os
import shutil
from pathlib import Path
from subprocess import DEVNULL, PIPE, STDOUT

from buildpipe.exceptions import CommandFailed

logger = logging.getLogger(__name__)


def get_bin(name: str) -> str:
    abspath = shutil.which(name)
    if abspath is None:
        return name
    if Path(abspath).is_symlink():
        return os.path.realpath(abspath)
    return abspath


BASH = get_bin('bash')
GIT = get_bin('git')
RUSTUP = get_bin('rustup')


def tail_lines(output: str, count: int) -> str:
    return '\n'.join(output.splitlines()[-count:])


async def run_captured(
    *args: str | Path, cwd: Path | str, env: dict[str, str] | None = None
) -> tuple[int, str]:
    """Run a process to completion with stdout and stderr merged.

    The child is killed if the awaiting task is cancelled.
    """
    logger.debug(f'Running {args}')
    p = await create_subprocess_exec(
        *args, cwd=cwd, env=env, stdin=DEVNULL, stdout=PIPE, stderr=STDOUT
    )
    try:
        stdout, _ = await p.communicate()
    except asyncio.CancelledError:
        if p.returncode is None:
            p.kill()
            await p.wait()
        raise
    return p.returncode, stdout.decode(errors='replace')


async def async_check_output(*args: str | Path, cwd: Path | str) -> str:
    returncode, output = await run_captured(*args, cwd=cwd)
    if returncode:
        logger.error(f'Process exited with code {returncode}')
        raise CommandFailed(returncode, output)
    return output
