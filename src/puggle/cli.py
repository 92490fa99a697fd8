"""
This is the toolkit for Puggle's own CLI, but offers an accessible API for
building project-specific CLIs.
"""
from __future__ import annotations

import argparse
import contextlib
import importlib
import runpy
import sys
import tempfile
import typing as t
from pathlib import Path

import rich.markup

from .build import Build
from .config import SiteConfig
from .core import BuildSettings, InputBuildSettings, Step, StepUnavailableException
from .custody import Custodian
from .presets import site_parameters, starter_tasks
from .pretty_utils import print_with_style
from .tasks import PipelineTask, TaskRegistry


DEFAULT_CONFIG = Path('pugglefile.py')
DEFAULT_TARGETS = ['default']


class BuildNamespace:
    """
    Internal used to preserve typing between InputBuildSettings, argparse, and
    BuildSettings.
    """
    input_dir: Path
    output_dir: Path
    working_dir: Path | None
    custody_cache: Path | None
    purge_dirs: bool | None
    targets: list[str]

    def __init__(self, settings: InputBuildSettings | None = None):
        if settings:
            self.__dict__.update(settings)

    def to_build_settings(self, resolved_working_dir: Path):
        """
        Convert this argparse-oriented namespace into a Build-ready
        BuildSettings.
        """
        purge_dirs = self.purge_dirs
        if purge_dirs is None and self.custody_cache is None:
            purge_dirs = True
        return BuildSettings(
            input_dir=self.input_dir,
            output_dir=self.output_dir,
            working_dir=resolved_working_dir,
            custody_cache=self.custody_cache,
            purge_dirs=purge_dirs
        )


@contextlib.contextmanager
def _wrap_temp(path: Path | None):
    if path:
        yield path
    else:
        with tempfile.TemporaryDirectory() as temp_dir:
            yield Path(temp_dir)


def parse_settings_args(settings: InputBuildSettings | None = None, argv: list[str] | None = None, **kw):
    """
    Internal function used by `run_from_tasks()` to combine an instance of
    InputBuildSettings with CLI arguments to produce a BuildNamespace, which
    can be easily turned into BuildSettings.
    """
    namespace = BuildNamespace(settings)

    parser = argparse.ArgumentParser(**kw)
    parser.add_argument('targets',
                        nargs='*',
                        help='tasks to run; defaults to "default"',
                        metavar='TARGET')
    parser.add_argument('-i', '--input',
                        help='input directory with raw files to process',
                        type=Path,
                        dest='input_dir',
                        default=Path('app'))
    parser.add_argument('-o', '--output',
                        help='output directory for final built files',
                        type=Path,
                        dest='output_dir',
                        default=Path('dist'))

    group = parser.add_mutually_exclusive_group()
    group.add_argument('-w', '--working',
                       help='directory for intermediate files; defaults to .tmp',
                       type=Path,
                       dest='working_dir',
                       default=Path('.tmp'))
    group.add_argument('--use-temporary',
                       help='use a new temporary directory for intermediate files',
                       action='store_const',
                       dest='working_dir',
                       const=None)

    parser.add_argument('--custody-cache',
                        help='path to a cache file for chain of custody and change detection',
                        type=Path,
                        default=None)
    parser.add_argument('--purge',
                        help='purge the output and working directories when cleaning',
                        action=argparse.BooleanOptionalAction,
                        dest='purge_dirs',
                        default=None)

    args = parser.parse_args(argv, namespace=namespace)
    if not args.targets:
        args.targets = list(DEFAULT_TARGETS)
    return args


def run_from_tasks(settings: InputBuildSettings | None,
                   tasks: TaskRegistry,
                   custodian: Custodian | None = None,
                   **kw):
    """
    Build a new Build from Settings, a TaskRegistry, and command line
    arguments, then run the requested targets. A Custodian may be
    additionally supplied.
    """
    final_settings = parse_settings_args(settings, **kw)
    with _wrap_temp(final_settings.working_dir) as working_dir:
        build = Build(final_settings.to_build_settings(working_dir), tasks, custodian)
        build.run(final_settings.targets)
    return build


def pprint_step(step: t.Type[Step]):
    """
    Prettily display dependency information for the given Step class.
    """
    missing = [
        str(d) for d in step.get_dependencies()
        if d.needed and not d.satisfied
    ]
    if missing:
        text = ', '.join(missing)
        print_with_style(f'✗ {step.__name__} (missing: {text})', style='red')
    else:
        print_with_style(f'✓ {step.__name__}', style='green')


def pprint_missing_deps(step: Step):
    """
    Prettily display an error for the given Step with missing dependencies.
    """
    print_with_style(
        f'{step.__class__.__name__} is unavailable due to missing dependencies!',
        file='stderr',
        style='red'
    )
    for dep in step.get_dependencies():
        missing = False
        if not dep.needed:
            style = None
        elif dep.satisfied:
            style = 'green'
        else:
            missing = True
            style = 'red'

        text = f'✗ {dep}: {dep.install_hint}' if missing else f'✓ {dep}'
        print_with_style(text, style=style)


def pprint_tasks(tasks: TaskRegistry):
    for task in tasks:
        deps = f' [dim](after {", ".join(task.deps)})[/dim]' if task.deps else ''
        print_with_style(f'[cyan]{task.name}[/cyan] {task.description}{deps}')


def audit_steps(tasks: TaskRegistry):
    all_steps = set(Step.get_all_steps())
    available_steps = set(Step.get_available_steps())
    unavailable_steps = all_steps - available_steps
    used_steps = {
        r.step.__class__
        for task in tasks if isinstance(task, PipelineTask)
        for r in task.rules if r.step
    }

    groups = {
        'Available steps': available_steps,
        'Unavailable steps': unavailable_steps,
        'Used steps': used_steps,
    }
    for group_label, step_group in groups.items():
        print_with_style(f'{group_label} ({len(step_group)})')
        for step in sorted(step_group, key=lambda s: s.__name__):
            pprint_step(step)


def load_config(namespace: dict[str, t.Any] | t.Any):
    """
    Pull settings, tasks and an optional Custodian out of a config module or
    its globals. Configs define either `TASKS`, a TaskRegistry, or `SITE`, a
    SiteConfig for the starter tasks.
    """
    def get(name: str):
        if isinstance(namespace, dict):
            return namespace.get(name)
        return getattr(namespace, name, None)

    settings: InputBuildSettings | None = get('SETTINGS')
    tasks: TaskRegistry | None = get('TASKS')
    site: SiteConfig | None = get('SITE')
    custodian: Custodian | None = get('CUSTODIAN')

    if tasks is None and site is not None:
        tasks = starter_tasks(site)
        custodian = custodian or Custodian(site_parameters(site))
    return settings, tasks, custodian


def main(arguments: list[str] | None = None):
    """
    Puggle main function. Loads a Puggle config file, combines its settings
    with command line arguments, then runs the requested tasks.
    """
    parser = argparse.ArgumentParser(description='Build a puggle project.', add_help=False)
    parser.add_argument('--audit-steps',
                        help=('show information about available, unavailable, '
                              'and used steps, instead of building the project'),
                        action='store_true')
    parser.add_argument('--list-tasks',
                        help='list the tasks the config file defines, instead of building the project',
                        action='store_true')
    group = parser.add_mutually_exclusive_group()
    group.add_argument('-m',
                       help='import path of a config file to build',
                       type=importlib.import_module,
                       dest='module',
                       default=None)
    group.add_argument('config_file',
                       nargs='?',
                       help=f'file path to a config file to build; defaults to {DEFAULT_CONFIG}',
                       type=Path,
                       default=None)

    args, remaining = parser.parse_known_args(arguments)

    if args.module:
        label = f'-m {args.module.__name__}'
        settings, tasks, custodian = load_config(args.module)
    else:
        config_file: Path | None = args.config_file
        if config_file and config_file.suffix != '.py':
            # Not a config file, but the first target.
            remaining.insert(0, str(config_file))
            config_file = None
        config_file = config_file or DEFAULT_CONFIG
        if not config_file.is_file():
            print_with_style(f'No puggle config file found at {rich.markup.escape(str(config_file))}',
                             file='stderr', style='red')
            sys.exit(1)
        label = str(config_file)
        settings, tasks, custodian = load_config(runpy.run_path(label))

    if tasks is None:
        print_with_style(
            'Puggle config files must have a TASKS or SITE attribute!',
            file='stderr',
            style='red'
        )
        sys.exit(1)

    if args.audit_steps:
        audit_steps(tasks)
        return
    if args.list_tasks:
        pprint_tasks(tasks)
        return

    try:
        run_from_tasks(settings, tasks, custodian, argv=remaining, prog=f'puggle {label}')
    except StepUnavailableException as e:
        pprint_missing_deps(e.step)
        sys.exit(1)
    except Exception as e:  # pylint: disable=broad-except
        print_with_style(f'{e.__class__.__name__}: {rich.markup.escape(str(e))}', file='stderr', style='red')
        sys.exit(1)
