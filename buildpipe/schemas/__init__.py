from datetime import datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, StringConstraints, computed_field
from typing import Annotated
from uuid import uuid4

TargetTriple = Annotated[str, StringConstraints(pattern=r'^[a-z0-9_]+(-[a-z0-9_.]+)+$')]
ChannelName = Annotated[str, StringConstraints(pattern=r'^[a-z0-9][\w.\-]*$')]


class EventKind(str, Enum):
    push = 'push'
    pull_request = 'pull_request'


class RepoEvent(BaseModel):
    kind: EventKind
    source_branch: str
    destination_branch: str
    commit_ref: str
    clone_url: str = Field(repr=False, exclude=True)
    repo_name: str
    provider: str = 'github'

    @property
    def concurrency_key(self) -> str:
        if self.kind == EventKind.push:
            branch = self.source_branch
        else:
            branch = f'{self.source_branch}->{self.destination_branch}'
        return f'{self.provider}/{self.repo_name}/{self.kind.value}/{branch}'


class MatrixEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    target: TargetTriple


class ToolchainSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    channel: ChannelName
    target: TargetTriple
    profile: str


class RunStatus(str, Enum):
    pending = 'pending'
    fetching = 'fetching'
    provisioning = 'provisioning'
    building = 'building'
    testing = 'testing'
    succeeded = 'succeeded'
    failed = 'failed'
    aborted = 'aborted'


class RunOutcome(str, Enum):
    pending = 'pending'
    success = 'success'
    failed = 'failed'
    aborted = 'aborted'


_WORKING = (
    RunStatus.fetching,
    RunStatus.provisioning,
    RunStatus.building,
    RunStatus.testing,
)
TRANSITIONS: dict[RunStatus, set[RunStatus]] = {
    RunStatus.pending: {RunStatus.fetching, RunStatus.aborted},
    RunStatus.fetching: {RunStatus.provisioning},
    RunStatus.provisioning: {RunStatus.building},
    RunStatus.building: {RunStatus.testing},
    RunStatus.testing: {RunStatus.succeeded},
    RunStatus.succeeded: set(),
    RunStatus.failed: set(),
    RunStatus.aborted: set(),
}
for _status in _WORKING:
    TRANSITIONS[_status] |= {RunStatus.failed, RunStatus.aborted}


class StageName(str, Enum):
    fetch = 'fetch'
    provision = 'provision'
    build = 'build'
    test = 'test'

    @property
    def run_status(self) -> RunStatus:
        return _STAGE_STATUS[self]


_STAGE_STATUS = {
    StageName.fetch: RunStatus.fetching,
    StageName.provision: RunStatus.provisioning,
    StageName.build: RunStatus.building,
    StageName.test: RunStatus.testing,
}


class StageStatus(str, Enum):
    running = 'running'
    succeeded = 'succeeded'
    failed = 'failed'
    aborted = 'aborted'


class StageResult(BaseModel):
    name: StageName
    command: str
    status: StageStatus = StageStatus.running
    exit_code: int | None = None
    output: str = ''
    started_at: datetime = Field(default_factory=datetime.now)
    duration: float | None = None


class Run(BaseModel):
    run_id: str = Field(default_factory=lambda: uuid4().hex)
    event: RepoEvent
    matrix_entry: MatrixEntry
    status: RunStatus = RunStatus.pending
    stages: list[StageResult] = []
    failed_stage: StageName | None = None
    error: str | None = None

    @property
    def commit_ref(self) -> str:
        return self.event.commit_ref

    @property
    def target(self) -> str:
        return self.matrix_entry.target

    @property
    def is_finished(self) -> bool:
        return not TRANSITIONS[self.status]

    @computed_field
    @property
    def outcome(self) -> RunOutcome:
        if self.status == RunStatus.succeeded:
            return RunOutcome.success
        if self.status == RunStatus.failed:
            return RunOutcome.failed
        if self.status == RunStatus.aborted:
            return RunOutcome.aborted
        return RunOutcome.pending

    def transition(self, status: RunStatus):
        if status not in TRANSITIONS[self.status]:
            raise ValueError(
                f'Run {self.run_id} cannot move from {self.status.value} to {status.value}'
            )
        self.status = status

    def start_stage(self, name: StageName, command: str) -> StageResult:
        if self.stages and self.stages[-1].status != StageStatus.succeeded:
            raise ValueError(
                f'Stage {name.value} cannot start after {self.stages[-1].name.value}'
            )
        self.transition(name.run_status)
        stage = StageResult(name=name, command=command)
        self.stages.append(stage)
        return stage
