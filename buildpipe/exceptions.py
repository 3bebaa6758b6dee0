class ConfigurationError(Exception):
    pass


class CommandFailed(Exception):
    exit_code: int
    output: str

    def __init__(self, exit_code: int, output: str = ''):
        super().__init__(f'Process exited with code {exit_code}')
        self.exit_code = exit_code
        self.output = output


class PipelineError(Exception):
    """Fatal stage error. Ends the run with status ``failed``."""

    stage: str
    exit_code: int | None
    output: str

    def __init__(self, message: str, exit_code: int | None = None, output: str = ''):
        super().__init__(message)
        self.exit_code = exit_code
        self.output = output


class FetchError(PipelineError):
    stage = 'fetch'


class ProvisionError(PipelineError):
    stage = 'provision'


class BuildError(PipelineError):
    stage = 'build'


class TestError(PipelineError):
    __test__ = False
    stage = 'test'
