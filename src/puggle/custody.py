"""
Chain of custody tracking and change detection for incremental builds.
"""
from __future__ import annotations

import hashlib
import json
import threading
import typing as t
from importlib.metadata import version
from pathlib import Path

import rich.markup

from .pretty_utils import print_with_style

if t.TYPE_CHECKING:
    from collections.abc import Sequence
    from .build import Build
    from .core import ContextDir


_JsonSerializable: t.TypeAlias = 'str | int | float | bool | None | _JsonDict | Sequence[_JsonSerializable]'
_JsonDict = dict[str, _JsonSerializable]

CONTEXT_DIR_KEYS: set[ContextDir] = {'input_dir', 'output_dir', 'working_dir'}


def checksum(path: Path, hashname: str = 'sha1', _bufsize=2**18):
    """
    Calculate a checksum for a `Path`. Directories result in empty checksums.
    """
    if path.is_dir():
        return ''
    digest = hashlib.new(hashname)

    buf = bytearray(_bufsize)
    view = memoryview(buf)
    with path.open('rb') as file:
        while True:
            size = file.readinto(buf)
            if size == 0:
                break
            digest.update(view[:size])

    return digest.hexdigest()


class CustodyEntry:
    """
    Custody info for a single input or output resource.
    """
    def __init__(self, entry_type: str, key: str, meta: dict | None = None):
        self.entry_type = entry_type
        self.key = key
        self.meta = meta or {}

    def __str__(self):
        return f'{self.entry_type}:{self.key}'

    def __getitem__(self, key):
        return self.meta[key]


class Custodian:
    """
    Records which inputs produced which outputs, persists that record between
    builds, and decides whether a step has to run again.

    A single Custodian is shared by every task of a build, including tasks
    running in parallel, so all mutation happens under a lock.
    """
    encoding = 'utf-8'
    newline = '\n'
    build: Build

    def __init__(self,
                 parameters: _JsonDict | None = None,
                 info: dict[str, str] | None = None):
        self.checkers: dict[str, t.Callable[[CustodyEntry], bool]] = {'path': self.check_path}
        self._lock = threading.RLock()

        self.parameters: _JsonDict = {'puggle_version': version('puggle')}
        if parameters:
            self.parameters.update(parameters)
        self.prior_parameters: _JsonDict = {}
        self.stale_parameters = True

        self.info = info or {}

        # output_key: {input_key: [sibling_keys]}
        self.graph: dict[str, dict[str, list[str]]] = {}
        self.prior_graph: dict[str, dict[str, list[str]]] = {}

        # key: (type, meta)
        self.meta: dict[str, tuple[str, _JsonDict]] = {}
        self.prior_meta: dict[str, tuple[str, _JsonDict]] = {}

    def bind(self, build: Build):
        """
        Bind this Custodian to a Build and record its settings as info.
        """
        self.build = build
        for key in build.settings:
            if key not in self.info:
                self.info[key] = str(build.settings[key])

    def genericize_path(self, path: Path):
        """
        Turn a path into a key relative to one of the configured directories.
        """
        for dir_key in CONTEXT_DIR_KEYS:
            parent = self.build[dir_key]
            if path.is_relative_to(parent):
                path = dir_key / path.relative_to(parent)
                break
        return path.as_posix()

    def degenericize_path(self, key: str):
        """
        Undo `genericize_path()`.
        """
        if key in CONTEXT_DIR_KEYS:
            return self.build[key]

        path = Path(key)
        # parents[-1] is '.', so parents[-2] is the directory key.
        dir_key = t.cast('ContextDir', str(path.parents[-2]))
        return self.build[dir_key] / path.relative_to(dir_key)

    def get_all_paths(self):
        """
        Generator of every output key in the graph as a Path.
        """
        return (self.degenericize_path(key) for key in self.graph)

    def entry_from_path(self, path: Path):
        """
        Create a `CustodyEntry` for a path, with its sha1 checksum, modified
        time and size.
        """
        stat = path.stat()
        meta = {'sha1': checksum(path), 'm_time': stat.st_mtime, 'size': stat.st_size}
        return CustodyEntry('path', self.genericize_path(path), meta)

    def check_path(self, entry: CustodyEntry) -> bool:
        """
        Default sha1-based checker for path freshness.
        """
        path = self.degenericize_path(entry.key)
        return path.exists() and entry['sha1'] == checksum(path)

    def ensure_entry(self, record: Path | CustodyEntry):
        if isinstance(record, CustodyEntry):
            return record
        return self.entry_from_path(record)

    def register_checker(self, entry_type: str, override: bool = True):
        """
        Decorator for registering a freshness checker for a type of
        `CustodyEntry`.
        """
        def register(func: t.Callable[[CustodyEntry], bool]):
            with self._lock:
                if override or entry_type not in self.checkers:
                    self.checkers[entry_type] = func
            return func
        return register

    def load_file(self, path: Path):
        """
        Load the custody record of a previous build and evaluate parameter
        staleness.
        """
        if not path.exists():
            return
        data = json.loads(path.read_text(self.encoding))
        self.prior_parameters = data['parameters']
        self.stale_parameters = self.parameters != self.prior_parameters
        self.prior_graph = data['graph']
        self.prior_meta = data['meta']

    def dump_file(self, path: Path):
        """
        Write the custody record of this build as JSON.
        """
        data = {
            'info': self.info,
            'parameters': self.parameters,
            'graph': self.graph,
            'meta': self.meta,
        }
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open('w', encoding=self.encoding, newline=self.newline) as file:
            json.dump(data, file, indent=2)

    def carry_forward(self):
        """
        Copy prior records for outputs that this build did not revisit, as
        long as they and everything upstream of them, transitively, are
        unchanged. Used after partial builds so the next build still knows
        about them.
        """
        if self.stale_parameters:
            return
        with self._lock:
            intact: dict[str, bool] = {}

            def check(key: str) -> bool:
                if key in self.graph:
                    return True
                if key not in intact:
                    # Provisional answer, in case of cycles.
                    intact[key] = False
                    sources = self.prior_graph.get(key, {})
                    intact[key] = self.check_prior(key) and all(check(s) for s in sources)
                return intact[key]

            for o_key, sources in list(self.prior_graph.items()):
                if o_key not in self.graph and check(o_key):
                    self.graph[o_key] = dict(sources)
                    for key in (o_key, *sources):
                        self.meta.setdefault(key, self.prior_meta[key])

    def advance(self):
        """
        Make the records of this run the baseline for the next one, for
        processes that build repeatedly without reloading the cache file.
        """
        self.carry_forward()
        with self._lock:
            self.prior_graph, self.graph = self.graph, {}
            self.prior_meta, self.meta = self.meta, {}
            self.prior_parameters = dict(self.parameters)
            self.stale_parameters = False

    def update_meta(self, entry: CustodyEntry):
        self.meta[entry.key] = (entry.entry_type, entry.meta)

    def add_step(self,
                 sources: Sequence[Path | CustodyEntry],
                 outputs: Sequence[Path],
                 stale_msg: str):
        """
        Mark a Step as run, updating custody data and logging accordingly.
        """
        self.log_step(sources, outputs, stale=True, stale_msg=stale_msg)
        o_entries = [self.ensure_entry(o) for o in outputs]
        i_entries = [self.ensure_entry(s) for s in sources]

        with self._lock:
            keys = [o.key for o in o_entries]
            for o_entry in o_entries:
                self.update_meta(o_entry)
            for i_entry in i_entries:
                self.update_meta(i_entry)
                for o_key in keys:
                    self.graph.setdefault(o_key, {})[i_entry.key] = keys

    def skip_step(self, source: Path, outputs: list[Path]):
        """
        Mark a Step as skipped, reusing its prior outputs.
        """
        prior_outputs = [self.degenericize_path(p) for p in self.find_downstream(source, outputs)]
        self.log_step([source], prior_outputs, stale=False)
        s_entry = self.entry_from_path(source)
        o_entries = [self.entry_from_path(p) for p in prior_outputs]

        with self._lock:
            self.update_meta(s_entry)
            for o_entry in o_entries:
                self.update_meta(o_entry)
                self.graph.setdefault(o_entry.key, {}).update(self.prior_graph[o_entry.key])
                for s_key in self.prior_graph[o_entry.key]:
                    self.meta.setdefault(s_key, self.prior_meta[s_key])
        return prior_outputs

    def log_step(self,
                 sources: Sequence[Path | CustodyEntry],
                 outputs: Sequence[Path],
                 *,
                 stale: bool = True,
                 stale_msg: str = ''):
        if len(sources) == 1:
            msg = f'{sources[0]} ⇒ {", ".join(str(p) for p in outputs)}'
        else:
            msg = ''.join([
                '{\n\t',
                ',\n\t'.join(str(s) for s in sources),
                '\n} ⇒ {\n\t',
                ',\n\t'.join(str(p) for p in outputs),
                '\n}',
            ])
        msg = rich.markup.escape(msg)
        if stale:
            print_with_style(f'{rich.markup.escape(stale_msg)}...\n{msg}')
        else:
            print_with_style('Skipped', msg, style='yellow')

    def check_prior(self, key: str):
        """
        Check whether the resource for @key still matches its recorded
        fingerprint.
        """
        try:
            ptype, pmeta = self.prior_meta[key]
        except KeyError:
            return False

        try:
            checker = self.checkers[ptype]
        except KeyError as e:
            raise KeyError(f'No checker found for type {ptype!r}!') from e

        return checker(CustodyEntry(ptype, key, pmeta))

    def find_upstream(self, paths: list[Path]):
        """
        Keys of every recorded input one step upstream of @paths.
        """
        return {
            s
            for p in paths
            for s in self.prior_graph.get(self.genericize_path(p), ())
        }

    def find_downstream(self, source: Path, outputs: list[Path]):
        """
        Keys of every recorded output produced together with @outputs from
        @source.
        """
        g_source = self.genericize_path(source)
        g_output = self.genericize_path(outputs[0])
        return iter(self.prior_graph[g_output][g_source])

    def refresh_needed(self, source: Path, outputs: list[Path]):
        """
        Determine whether a step has to run again for @source.

        :return: Whether the step should be rerun and a message explaining why
            or why not.
        """
        if self.stale_parameters:
            return True, 'Stale parameters'

        if not outputs:
            return True, 'No recorded outputs'

        for path in outputs:
            if not path.exists():
                return True, f'Missing output ({path})'

        upstreams = self.find_upstream(outputs)
        if self.genericize_path(source) not in upstreams:
            return True, f'Missing upstream record ({source})'

        for up_key in upstreams:
            if not self.check_prior(up_key):
                return True, f'Stale upstream ({up_key})'

        for down_key in self.find_downstream(source, outputs):
            if not self.check_prior(down_key):
                return True, f'Stale downstream ({down_key})'

        return False, 'Up to date'
