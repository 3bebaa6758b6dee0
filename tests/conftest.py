"""Pytest configuration and fixtures for buildpipe tests."""

import os
import tempfile

# buildpipe.config is loaded on import, point it at a scratch directory first
os.environ.setdefault('BUILDPIPE_DATA_DIR', tempfile.mkdtemp(prefix='buildpipe-tests-'))
os.environ['XDG_CONFIG_HOME'] = tempfile.mkdtemp(prefix='buildpipe-config-')

from pathlib import Path

import pytest

from buildpipe.exceptions import CommandFailed
from buildpipe.runner.fetch import WorkspaceFetcher
from buildpipe.runner.toolchain import ToolchainProvisioner
from buildpipe.schemas import EventKind, RepoEvent
from buildpipe.schemas.pipeline import PipelineDef


class FakeRustup:
    """Shell script standing in for rustup. Logs every invocation."""

    def __init__(self, directory: Path):
        self.path = directory / 'rustup'
        self.log = directory / 'rustup.log'
        self.path.write_text(
            '#!/bin/sh\n'
            f'echo "$@" >> "{self.log}"\n'
            'sleep 0.1\n'
            'case "$*" in\n'
            '  *"--target bogus-"*)\n'
            '    echo "error: target not supported by this toolchain" >&2\n'
            '    exit 1;;\n'
            '  *"--target slow-"*)\n'
            '    sleep 10;;\n'
            'esac\n'
            'echo "info: toolchain installed"\n'
        )
        self.path.chmod(0o755)

    @property
    def calls(self) -> list[str]:
        if not self.log.exists():
            return []
        return self.log.read_text().splitlines()


class FakeFetcher(WorkspaceFetcher):
    """Fetcher that creates an empty workspace instead of talking to git.

    Refs listed in ``unresolvable`` fail every attempt.
    """

    def __init__(self, unresolvable: tuple[str, ...] = ()):
        super().__init__(attempts=3, backoff=0)
        self.unresolvable = unresolvable
        self.checkouts: list[str] = []

    async def checkout(self, event: RepoEvent, at: Path):
        self.checkouts.append(event.commit_ref)
        if event.commit_ref in self.unresolvable:
            raise CommandFailed(128, f'fatal: invalid reference: {event.commit_ref}')
        (at / 'Cargo.toml').write_text('[package]\nname = "demo"\n')


def _make_event(
    kind: str = 'push',
    source: str = 'main',
    destination: str = 'main',
    ref: str = 'abc123',
) -> RepoEvent:
    return RepoEvent(
        kind=EventKind(kind),
        source_branch=source,
        destination_branch=destination,
        commit_ref=ref,
        clone_url='https://example.com/acme/widget.git',
        repo_name='acme/widget',
    )


@pytest.fixture
def fake_rustup(tmp_path) -> FakeRustup:
    return FakeRustup(tmp_path)


@pytest.fixture
def provisioner(fake_rustup) -> ToolchainProvisioner:
    return ToolchainProvisioner(rustup=str(fake_rustup.path))


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher(unresolvable=('def456',))


@pytest.fixture
def stage_log(tmp_path) -> Path:
    return tmp_path / 'stages.log'


@pytest.fixture
def pipeline(stage_log) -> PipelineDef:
    return PipelineDef(
        build=f'echo "build {{target}} $RUSTUP_TOOLCHAIN" >> {stage_log}',
        test=f'echo "test {{target}}" >> {stage_log}',
    )


@pytest.fixture
def make_event():
    return _make_event
