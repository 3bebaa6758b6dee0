from pydantic import BaseModel, ConfigDict, field_validator
from typing import Literal

from buildpipe.const import (
    DEFAULT_BRANCH,
    DEFAULT_BUILD_COMMAND,
    DEFAULT_CHANNEL,
    DEFAULT_ENV,
    DEFAULT_PROFILE,
    DEFAULT_TARGET,
    DEFAULT_TEST_COMMAND,
)
from buildpipe.schemas import (
    ChannelName,
    EventKind,
    MatrixEntry,
    TargetTriple,
    ToolchainSpec,
)


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra='forbid')


class BranchFilter(_Frozen):
    branches: tuple[str, ...] = (DEFAULT_BRANCH,)


class TriggerDef(_Frozen):
    push: BranchFilter | None = BranchFilter()
    pull_request: BranchFilter | None = BranchFilter()

    def branches_for(self, kind: EventKind) -> tuple[str, ...]:
        branch_filter = getattr(self, kind.value)
        if branch_filter is None:
            return ()
        return branch_filter.branches


class MatrixDef(_Frozen):
    target: tuple[TargetTriple, ...] = (DEFAULT_TARGET,)

    @field_validator('target')
    @classmethod
    def v_target(cls, v: tuple[str, ...]):
        if not v:
            raise ValueError('matrix must contain at least one target')
        if len(set(v)) != len(v):
            raise ValueError('matrix targets must be unique')
        return v


class ToolchainDef(_Frozen):
    channel: ChannelName = DEFAULT_CHANNEL
    profile: Literal['minimal', 'default', 'complete'] = DEFAULT_PROFILE


class PipelineDef(_Frozen):
    on: TriggerDef = TriggerDef()
    env: dict[str, str] = DEFAULT_ENV
    matrix: MatrixDef = MatrixDef()
    toolchain: ToolchainDef = ToolchainDef()
    build: str = DEFAULT_BUILD_COMMAND
    test: str = DEFAULT_TEST_COMMAND

    @property
    def entries(self) -> tuple[MatrixEntry, ...]:
        return tuple(MatrixEntry(target=target) for target in self.matrix.target)

    def toolchain_spec(self, entry: MatrixEntry) -> ToolchainSpec:
        return ToolchainSpec(
            channel=self.toolchain.channel,
            target=entry.target,
            profile=self.toolchain.profile,
        )
