import os
import yaml
from joserfc.jwk import RSAKey
from pathlib import Path
from pydantic import BeforeValidator, AfterValidator, field_validator
from pydantic_core.core_schema import ValidationInfo
from pydantic_settings import BaseSettings
from typing import Annotated


class Config(BaseSettings, frozen=True):
    host: str = '127.0.0.1'
    port: int = 8000
    debug: bool = False

    data_dir: Annotated[Path, AfterValidator(lambda path: path.absolute())]
    runs_dir: Path = None
    repos_dir: Path = None

    pipeline_file: Path | None = None
    fetch_attempts: int = 3
    fetch_backoff: float = 1.0
    output_tail_lines: int = 50
    keep_workdirs: bool = False
    max_runs: int = 1000

    gh_app_id: int | None = None
    gh_key: (
        Annotated[RSAKey, BeforeValidator(lambda data: RSAKey.import_key(data))] | None
    ) = None

    # noinspection PyNestedDecorators
    @field_validator('runs_dir', 'repos_dir', mode='before')
    @classmethod
    def default_dirs(cls, v: Path | None, info: ValidationInfo):
        if 'data_dir' not in info.data:
            # pydantic won't show errors until everything is validated
            # we don't want to show all _dir fields as errored if data_dir is not set
            return ''
        if v is None:
            dirname = info.field_name.removesuffix('_dir')
            res = info.data['data_dir'] / dirname
        else:
            res = Path(v)
        res.mkdir(parents=True, exist_ok=True)
        return res

    # noinspection PyNestedDecorators
    @field_validator('fetch_attempts', 'output_tail_lines', 'max_runs')
    @classmethod
    def positive(cls, v: int):
        if v < 1:
            raise ValueError('must be at least 1')
        return v


config_home = Path(os.getenv('XDG_CONFIG_HOME') or os.path.expanduser('~/.config'))
config_file = config_home / 'buildpipe' / 'config.yml'
if config_file.is_file():
    config_values = yaml.safe_load(config_file.read_text())
else:
    config_values = {}
config = Config(**config_values, _env_file='.env', _env_prefix='BUILDPIPE_')

__all__ = ['config']
