"""
Polling file watcher mapping input changes onto the tasks that rebuild them.
"""
from __future__ import annotations

import threading
import typing as t
from pathlib import Path

import rich.markup

from .config import WATCH
from .paths import GlobMatcher
from .pretty_utils import print_with_style

if t.TYPE_CHECKING:
    from collections.abc import Sequence
    from .build import Build


Snapshot = dict[str, tuple[int, int]]


def take_snapshot(root: Path) -> Snapshot:
    """
    Modification time and size of every file below @root, by relative posix
    path.
    """
    snapshot: Snapshot = {}
    if not root.exists():
        return snapshot
    for path in root.rglob('*'):
        if path.is_file():
            stat = path.stat()
            snapshot[path.relative_to(root).as_posix()] = (stat.st_mtime_ns, stat.st_size)
    return snapshot


def changed_paths(old: Snapshot, new: Snapshot) -> set[str]:
    """
    Paths added, removed or modified between two snapshots.
    """
    return {p for p in old.keys() | new.keys() if old.get(p) != new.get(p)}


class Watcher:
    """
    Polls the input directory of a Build every @interval seconds. Changed
    files are matched against @mapping, a list of `(globs, task names)`
    pairs, and the tasks of every matching entry are rebuilt together.
    @on_rebuild is called after each successful rebuild.
    """
    def __init__(self,
                 build: Build,
                 mapping: Sequence[tuple[Sequence[str], Sequence[str]]] = WATCH,
                 interval: float = 0.5,
                 on_rebuild: t.Callable[[], t.Any] | None = None):
        self.build = build
        self.interval = interval
        self.on_rebuild = on_rebuild
        self.mapping = [(GlobMatcher(list(globs)), list(names)) for globs, names in mapping]
        self.snapshot: Snapshot = {}

    def tasks_for(self, changed: t.Iterable[str]) -> list[str]:
        """
        Registered tasks to run for @changed, in mapping order.
        """
        changed = sorted(changed)
        names: dict[str, None] = {}
        for matcher, tasks in self.mapping:
            if any(matcher.match_relative(rel) for rel in changed):
                names.update((n, None) for n in tasks if n in self.build.registry)
        return list(names)

    def rebuild(self, names: list[str]):
        print_with_style(f'Changes detected, running {", ".join(names)}', style='cyan')
        try:
            self.build.rebuild(names)
        except Exception as e:  # pylint: disable=broad-except
            # Keep watching; the next save will likely fix it.
            print_with_style(f'Rebuild failed: {rich.markup.escape(str(e))}', file='stderr', style='red')
            return False
        if self.on_rebuild:
            self.on_rebuild()
        return True

    def poll(self):
        """
        Compare the input directory against the last snapshot and rebuild
        what changed. Returns the tasks that were run.
        """
        new = take_snapshot(self.build['input_dir'])
        changed = changed_paths(self.snapshot, new)
        self.snapshot = new
        if not changed:
            return []
        names = self.tasks_for(changed)
        if names:
            self.rebuild(names)
        return names

    def run(self, stop: threading.Event | None = None):
        """
        Poll until @stop is set, or forever.
        """
        stop = stop or threading.Event()
        self.snapshot = take_snapshot(self.build['input_dir'])
        print_with_style(f'Watching {self.build["input_dir"]} for changes', style='dim')
        while not stop.wait(self.interval):
            self.poll()
