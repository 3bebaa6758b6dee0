"""Tests for the one-shot local run."""

import logging

import pytest

from buildpipe import cli
from buildpipe.runner.dispatcher import Dispatcher
from buildpipe.schemas import MatrixEntry, Run, RunOutcome, RunStatus, StageName


class TestLogRun:

    def test_aborted_run_without_stages(self, make_event, caplog: pytest.LogCaptureFixture) -> None:
        caplog.set_level(logging.INFO, logger='buildpipe')
        run = Run(event=make_event(), matrix_entry=MatrixEntry(target='aarch64-unknown-linux-gnu'))
        run.transition(RunStatus.aborted)

        cli.log_run(run)

        assert run.failed_stage is None
        assert caplog.messages == ['aarch64-unknown-linux-gnu: aborted']

    def test_failed_run_logs_stage_output(self, make_event, caplog: pytest.LogCaptureFixture) -> None:
        caplog.set_level(logging.INFO, logger='buildpipe')
        run = Run(event=make_event(), matrix_entry=MatrixEntry(target='aarch64-unknown-linux-gnu'))
        stage = run.start_stage(StageName.fetch, 'checkout acme/widget@abc123')
        stage.output = 'fatal: invalid reference\n'
        run.failed_stage = StageName.fetch
        run.error = 'Could not fetch'
        run.transition(RunStatus.failed)

        cli.log_run(run)

        assert caplog.messages[1:] == ['fetch failed: Could not fetch', 'fatal: invalid reference']


class TestRunOnce:

    @pytest.fixture(autouse=True)
    def local_dispatcher(self, monkeypatch, pipeline, fetcher, provisioner):
        monkeypatch.setattr(cli, 'load_pipeline', lambda path: pipeline)
        monkeypatch.setattr(
            cli, 'Dispatcher', lambda p: Dispatcher(p, fetcher, provisioner)
        )

    @pytest.mark.asyncio
    async def test_success(self, fetcher) -> None:
        assert await cli.run_once('https://example.com/acme/widget.git', 'abc123', None)
        assert fetcher.checkouts == ['abc123']

    @pytest.mark.asyncio
    async def test_failure(self) -> None:
        assert not await cli.run_once('https://example.com/acme/widget.git', 'def456', None)

    @pytest.mark.asyncio
    async def test_untriggered_branch_is_not_a_failure(self, fetcher) -> None:
        assert await cli.run_once('https://example.com/acme/widget.git', 'abc123', 'develop')
        assert fetcher.checkouts == []

    def test_local_event_from_path(self, tmp_path) -> None:
        repo = tmp_path / 'widget'
        repo.mkdir()

        event = cli.local_event(str(repo), 'abc123', 'main')

        assert event.repo_name == 'widget'
        assert event.clone_url == str(repo)
        assert event.provider == 'local'
