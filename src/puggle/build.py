"""
The Build ties settings, the task registry and the shared Custodian together
and runs targets.
"""
from __future__ import annotations

import shutil
import time
import typing as t
from pathlib import Path

from .core import BuildSettings, ContextDir
from .custody import Custodian
from .pretty_utils import format_duration, print_with_style
from .tasks import TaskRegistry, TaskRunner

if t.TYPE_CHECKING:
    from collections.abc import Sequence


KEEP_IN_OUTPUT = {'.git'}


def _rm_children(path: Path, keep: set[str] | None = None):
    if not path.exists():
        return
    for child in path.iterdir():
        if keep and child.name in keep:
            continue
        if child.is_dir():
            shutil.rmtree(child)
        else:
            child.unlink()


def _rm_orphans(path: Path, exclude: set[Path]):
    if not path.exists():
        return False
    removed_all = True
    for child in path.iterdir():
        if child in exclude:
            removed_all = False
            continue
        if child.is_dir():
            if _rm_orphans(child, exclude):
                child.rmdir()
            else:
                removed_all = False
        else:
            child.unlink()
    return removed_all


class Build:
    """
    One invocation of the build: runs the requested targets with a fresh
    TaskRunner, with the custody cache loaded before and saved after.
    """
    def __init__(self,
                 settings: BuildSettings,
                 registry: TaskRegistry,
                 custodian: Custodian | None = None,
                 live: bool = False):
        self.settings = settings
        self.registry = registry
        self.live = live
        self.targets: list[str] = []
        self.custodian = custodian or Custodian()
        self.custodian.bind(self)

    @t.overload
    def __getitem__(self, key: ContextDir) -> Path: ...
    @t.overload
    def __getitem__(self, key: t.Literal['custody_cache']) -> Path | None: ...
    @t.overload
    def __getitem__(self, key: t.Literal['purge_dirs']) -> bool | None: ...
    def __getitem__(self, key):
        return self.settings[key]

    def clean(self, force: bool = False):
        """
        Empty the output directory, keeping version control data, and the
        working directory. Skipped when directory purging is not enabled,
        unless @force is set.
        """
        if not (force or self['purge_dirs']):
            print_with_style('Purging disabled, leaving stale files to orphan removal', style='dim')
            return
        _rm_children(self['output_dir'], KEEP_IN_OUTPUT)
        _rm_children(self['working_dir'])

    def file_tasks(self):
        return {task.name for task in self.registry if task.produces_files}

    def is_complete(self, targets: Sequence[str]):
        """
        Whether running @targets runs every task that writes files, so that
        anything the Custodian does not know about is an orphan.
        """
        return self.file_tasks() <= self.registry.closure(targets)

    def remove_orphans(self):
        touched = set(self.custodian.get_all_paths())
        if cache_file := self['custody_cache']:
            touched.add(cache_file)
        touched.update(self['output_dir'] / name for name in KEEP_IN_OUTPUT)
        _rm_orphans(self['output_dir'], touched)
        _rm_orphans(self['working_dir'], touched)

    def save(self):
        """
        Write the custody cache, if one is configured.
        """
        if cache_file := self['custody_cache']:
            self.custodian.carry_forward()
            self.custodian.dump_file(cache_file)

    def run(self, targets: Sequence[str] = ('default',)):
        """
        Run @targets, in parallel when there are several.
        """
        self.targets = list(targets)
        self.registry.validate()
        closure = self.registry.closure(self.targets)
        self.live = self.live or any(self.registry[name].live for name in closure)
        self['output_dir'].mkdir(parents=True, exist_ok=True)
        self['working_dir'].mkdir(parents=True, exist_ok=True)
        if cache_file := self['custody_cache']:
            self.custodian.load_file(cache_file)

        start = time.perf_counter()
        runner = TaskRunner(self)
        runner.run(self.targets)

        self.save()
        if cache_file and self['purge_dirs'] is None and self.is_complete(self.targets):
            self.remove_orphans()
        print_with_style(f'Built {", ".join(self.targets)} in {format_duration(time.perf_counter() - start)}',
                         style='green')
        return runner

    def rebuild(self, names: Sequence[str]):
        """
        Run @names again within the same process, using the records of the
        previous run for change detection.
        """
        self.custodian.advance()
        runner = TaskRunner(self)
        runner.run(names)
        self.save()
        return runner
