"""Tests for the toolchain provisioner, driven by a fake rustup script."""

import asyncio
from time import monotonic

import pytest

from buildpipe.exceptions import ProvisionError
from buildpipe.runner.toolchain import ProvisionState, ToolchainProvisioner
from buildpipe.schemas import ToolchainSpec

SPEC = ToolchainSpec(channel='nightly', target='aarch64-unknown-linux-gnu', profile='minimal')


class TestProvision:

    @pytest.mark.asyncio
    async def test_installs_and_activates(self, provisioner, fake_rustup) -> None:
        assert provisioner.state(SPEC) == ProvisionState.unprovisioned

        env = await provisioner.provision(SPEC)

        assert env == {'RUSTUP_TOOLCHAIN': 'nightly'}
        assert provisioner.state(SPEC) == ProvisionState.active
        assert fake_rustup.calls == [
            'toolchain install nightly --profile minimal '
            '--target aarch64-unknown-linux-gnu --no-self-update'
        ]

    @pytest.mark.asyncio
    async def test_second_provision_is_a_no_op(self, provisioner, fake_rustup) -> None:
        start = monotonic()
        await provisioner.provision(SPEC)
        first = monotonic() - start

        start = monotonic()
        await provisioner.provision(SPEC)
        second = monotonic() - start

        assert provisioner.installs == 1
        assert len(fake_rustup.calls) == 1
        assert second < first

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_install(self, provisioner, fake_rustup) -> None:
        results = await asyncio.gather(*(provisioner.provision(SPEC) for _ in range(5)))

        assert all(env == {'RUSTUP_TOOLCHAIN': 'nightly'} for env in results)
        assert provisioner.installs == 1
        assert len(fake_rustup.calls) == 1

    @pytest.mark.asyncio
    async def test_distinct_specs_install_separately(self, provisioner, fake_rustup) -> None:
        other = SPEC.model_copy(update={'target': 'x86_64-unknown-linux-gnu'})

        await asyncio.gather(provisioner.provision(SPEC), provisioner.provision(other))

        assert provisioner.installs == 2
        assert len(fake_rustup.calls) == 2


class TestProvisionFailure:

    @pytest.mark.asyncio
    async def test_unsupported_target(self, provisioner, fake_rustup) -> None:
        spec = SPEC.model_copy(update={'target': 'bogus-unknown-none'})

        with pytest.raises(ProvisionError) as exc_info:
            await provisioner.provision(spec)

        assert exc_info.value.exit_code == 1
        assert 'not supported' in exc_info.value.output
        assert provisioner.state(spec) == ProvisionState.failed

    @pytest.mark.asyncio
    async def test_failed_spec_is_retried_by_next_caller(self, provisioner, fake_rustup) -> None:
        spec = SPEC.model_copy(update={'target': 'bogus-unknown-none'})
        for _ in range(2):
            with pytest.raises(ProvisionError):
                await provisioner.provision(spec)

        assert provisioner.installs == 2

    @pytest.mark.asyncio
    async def test_missing_rustup(self, tmp_path) -> None:
        provisioner = ToolchainProvisioner(rustup=str(tmp_path / 'no-such-rustup'))

        with pytest.raises(ProvisionError):
            await provisioner.provision(SPEC)

        assert provisioner.state(SPEC) == ProvisionState.failed
