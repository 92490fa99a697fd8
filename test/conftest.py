from pathlib import Path

import pytest

from puggle.core import BuildSettings, Context, Step
from puggle.custody import Custodian


@pytest.fixture
def step_settings(tmp_path: Path):
    settings = BuildSettings(
        input_dir=tmp_path / 'input',
        output_dir=tmp_path / 'output',
        working_dir=tmp_path / 'working',
        custody_cache=None,
        purge_dirs=True,
    )
    for key in ('input_dir', 'output_dir', 'working_dir'):
        settings[key].mkdir()
    return settings


@pytest.fixture
def bind_step(step_settings: BuildSettings):
    """
    Bind Steps to a throwaway Context so they can be called directly.
    """
    def bind(step: Step, live: bool = False):
        context = Context(step_settings, [], Custodian(), live)
        context.bind(step)
        return step
    return bind
