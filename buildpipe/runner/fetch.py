import asyncio
from asyncio import sleep
import logging
import shutil
from collections import defaultdict
from pathlib import Path

from buildpipe.config import config
from buildpipe.exceptions import CommandFailed, FetchError
from buildpipe.schemas import RepoEvent
from buildpipe.utils import async_check_output, GIT

logger = logging.getLogger(__name__)


class WorkspaceFetcher:
    """Materializes a commit into a private working directory.

    Each repository is kept as a bare mirror under ``repos_dir``; runs clone
    from the mirror so only the first fetch of a repository hits the network.
    """

    attempts: int
    backoff: float
    repos_dir: Path
    _mirror_locks: defaultdict[Path, asyncio.Lock]

    def __init__(
        self,
        attempts: int = config.fetch_attempts,
        backoff: float = config.fetch_backoff,
        repos_dir: Path = config.repos_dir,
    ):
        self.attempts = attempts
        self.backoff = backoff
        self.repos_dir = repos_dir
        self._mirror_locks = defaultdict(asyncio.Lock)

    async def update_mirror(self, event: RepoEvent) -> Path:
        repo_path = self.repos_dir / event.provider / event.repo_name
        async with self._mirror_locks[repo_path]:
            if repo_path.is_dir():
                await async_check_output(
                    GIT, 'remote', 'set-url', 'origin', event.clone_url, cwd=repo_path
                )
                await async_check_output(GIT, 'fetch', '--prune', cwd=repo_path)
            else:
                repo_path.mkdir(parents=True)
                try:
                    await async_check_output(
                        GIT,
                        'clone',
                        '--mirror',
                        event.clone_url,
                        '.',
                        cwd=repo_path,
                    )
                except BaseException:
                    shutil.rmtree(repo_path, ignore_errors=True)
                    raise
        return repo_path

    async def checkout(self, event: RepoEvent, at: Path):
        repo_path = await self.update_mirror(event)
        await async_check_output(GIT, 'clone', repo_path, '.', cwd=at)
        await async_check_output(GIT, 'switch', '-d', event.commit_ref, cwd=at)

    async def fetch(self, event: RepoEvent, at: Path):
        last_error = None
        for attempt in range(1, self.attempts + 1):
            at.mkdir(parents=True, exist_ok=True)
            try:
                await self.checkout(event, at)
                return
            except (CommandFailed, OSError) as e:
                last_error = e
                logger.warning(
                    f'Fetching {event.repo_name}@{event.commit_ref} failed '
                    f'(attempt {attempt}/{self.attempts}): {e}'
                )
            shutil.rmtree(at, ignore_errors=True)
            if attempt < self.attempts:
                await sleep(self.backoff * 2 ** (attempt - 1))

        raise FetchError(
            f'Could not fetch {event.repo_name}@{event.commit_ref} '
            f'after {self.attempts} attempts',
            exit_code=getattr(last_error, 'exit_code', None),
            output=getattr(last_error, 'output', str(last_error)),
        )
