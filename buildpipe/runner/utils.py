import yaml
from pathlib import Path
from pydantic import ValidationError
from yaml import YAMLError

from buildpipe.exceptions import ConfigurationError
from buildpipe.schemas.pipeline import PipelineDef


def load_pipeline(file: Path | None) -> PipelineDef:
    if file is None:
        return PipelineDef()
    if not file.is_file():
        raise ConfigurationError(f'Pipeline file {file} not found')
    try:
        data = yaml.safe_load(file.read_text()) or {}
        if not isinstance(data, dict):
            raise ConfigurationError('Pipeline file must contain a mapping')
        # YAML 1.1 reads a bare `on:` key as boolean true
        if True in data:
            data['on'] = data.pop(True)
        return PipelineDef.model_validate(data)
    except (YAMLError, ValidationError) as e:
        raise ConfigurationError(str(e))
