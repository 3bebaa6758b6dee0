import asyncio
import enum
import logging
from collections import defaultdict
from enum import Enum

from buildpipe.config import config
from buildpipe.exceptions import ProvisionError
from buildpipe.schemas import ToolchainSpec
from buildpipe.utils import run_captured, tail_lines, RUSTUP

logger = logging.getLogger(__name__)


class ProvisionState(Enum):
    unprovisioned = enum.auto()
    provisioning = enum.auto()
    active = enum.auto()
    failed = enum.auto()


class ToolchainProvisioner:
    """Installs rustup toolchains, at most once per spec.

    Shared between runs. Concurrent requests for a spec that is being
    installed wait for that install instead of starting another one.
    """

    rustup: str
    installs: int
    _states: dict[ToolchainSpec, ProvisionState]
    _locks: defaultdict[ToolchainSpec, asyncio.Lock]

    def __init__(self, rustup: str = RUSTUP):
        self.rustup = rustup
        self.installs = 0
        self._states = {}
        self._locks = defaultdict(asyncio.Lock)

    def state(self, spec: ToolchainSpec) -> ProvisionState:
        return self._states.get(spec, ProvisionState.unprovisioned)

    @staticmethod
    def activation_env(spec: ToolchainSpec) -> dict[str, str]:
        return {'RUSTUP_TOOLCHAIN': spec.channel}

    def install_command(self, spec: ToolchainSpec) -> list[str]:
        return [
            self.rustup,
            'toolchain',
            'install',
            spec.channel,
            '--profile',
            spec.profile,
            '--target',
            spec.target,
            '--no-self-update',
        ]

    async def provision(self, spec: ToolchainSpec) -> dict[str, str]:
        if self.state(spec) == ProvisionState.active:
            return self.activation_env(spec)

        async with self._locks[spec]:
            if self.state(spec) != ProvisionState.active:
                await self._install(spec)
        return self.activation_env(spec)

    async def _install(self, spec: ToolchainSpec):
        logger.info(f'Installing toolchain {spec.channel} for {spec.target}')
        self._states[spec] = ProvisionState.provisioning
        self.installs += 1
        try:
            returncode, output = await run_captured(
                *self.install_command(spec), cwd=config.data_dir
            )
        except OSError as e:
            self._states[spec] = ProvisionState.failed
            raise ProvisionError(f'Could not run rustup: {e}')
        except BaseException:
            self._states[spec] = ProvisionState.unprovisioned
            raise
        if returncode:
            self._states[spec] = ProvisionState.failed
            raise ProvisionError(
                f'Toolchain {spec.channel} for {spec.target} could not be installed',
                exit_code=returncode,
                output=tail_lines(output, config.output_tail_lines),
            )
        self._states[spec] = ProvisionState.active
        logger.info(f'Toolchain {spec.channel} for {spec.target} is active')
