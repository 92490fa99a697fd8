"""
Core classes and types for Puggle pipelines.
"""
from __future__ import annotations

import abc
import typing as t
from pathlib import Path

from .custody import CustodyEntry, Custodian
from .dependencies import Dependency
from .pretty_utils import track_progress

if t.TYPE_CHECKING:
    from collections.abc import Sequence, Set


T = t.TypeVar('T')
T2 = t.TypeVar('T2')
ContextDir = t.Literal['input_dir', 'output_dir', 'working_dir']
BuildSettingsKey = t.Literal[ContextDir, 'custody_cache', 'purge_dirs']


class InputBuildSettings(t.TypedDict, total=False):
    """
    TypedDict for defining build settings in a Puggle config file.
    """
    input_dir: Path
    output_dir: Path
    working_dir: Path | None
    custody_cache: Path | None
    purge_dirs: bool | None


class BuildSettings(t.TypedDict):
    """
    TypedDict for processed build settings ready for passing to a Build.
    """
    input_dir: Path
    output_dir: Path
    working_dir: Path
    custody_cache: Path | None
    purge_dirs: bool | None


class Context:
    """
    Runs one pipeline: matches files against a list of Rules and feeds them to
    the Steps of those Rules, consulting the shared Custodian to skip work
    that is already up to date.
    """
    def __init__(self,
                 settings: BuildSettings,
                 rules: list[Rule],
                 custodian: Custodian,
                 live: bool = False):
        self.settings = settings
        self.live = live
        # The Custodian must exist before Steps are bound, since Steps may
        # register checkers on it.
        self.custodian = custodian
        self.rules: list[Rule] = []
        for rule in rules:
            self.rules.append(rule)
            self.bind(rule.step)

    @t.overload
    def __getitem__(self, key: ContextDir) -> Path: ...
    @t.overload
    def __getitem__(self, key: t.Literal['custody_cache']) -> Path | None: ...
    @t.overload
    def __getitem__(self, key: t.Literal['purge_dirs']) -> bool | None: ...
    def __getitem__(self, key):
        return self.settings[key]

    def bind(self, step: Step | None):
        """
        Bind a Step to this Context, checking to ensure its availability.
        """
        if step:
            if not step.is_available():
                raise StepUnavailableException(step)
            step.bind(self)

    def find_inputs(self, path: Path):
        """
        Recursively yield every file below @path.
        """
        if not path.exists():
            return
        for candidate in sorted(path.iterdir()):
            if candidate.is_dir():
                yield from self.find_inputs(candidate)
            else:
                yield candidate

    def match_paths(self, input_paths: list[Path]):
        """
        Match input paths against the Rules, grouping them by Step in Rule
        definition order.
        """
        tasks: dict[Step, list[tuple[Path, list[Path]]]]
        tasks = {r.step: [] for r in self.rules if r.step}

        for path in track_progress(input_paths, 'Planning...'):
            for rule in self.rules:
                if not (match := rule.matcher(self, path)):
                    continue
                # A Rule without a Step swallows the path.
                if not rule.step:
                    break
                output_paths: list[Path] = []
                halt = False
                for pathcalc in rule.path_calcs:
                    # A None PathCalc means: process, then stop matching.
                    if not pathcalc:
                        halt = True
                        break
                    output_paths.append(pathcalc(self, path, match))
                tasks[rule.step].append((path, output_paths))
                if halt:
                    break

        return tasks

    def process(self, input_paths: list[Path] | None = None) -> list[Path]:
        """
        Process @input_paths, or every file in the input directory, and return
        the output paths produced. Outputs that land in the working directory
        are processed again with the same Rules.
        """
        input_paths = input_paths or list(self.find_inputs(self.settings['input_dir']))

        tasks = self.match_paths(input_paths)

        flattened: list[tuple[Step, Path, list[Path]]] = []
        for step, paths in tasks.items():
            flattened.extend((step, p, ops) for p, ops in paths)

        produced: list[Path] = []
        further_processing: list[Path] = []
        for step, path, output_paths in track_progress(flattened, 'Processing...'):
            stale, msg = self.custodian.refresh_needed(path, output_paths)
            if stale:
                explicit_chain = step(path, output_paths)
                if explicit_chain:
                    sources, output_paths = explicit_chain
                else:
                    sources = [path]
                self.custodian.add_step(sources, output_paths, msg)
            else:
                output_paths = self.custodian.skip_step(path, output_paths)

            produced.extend(output_paths)
            further_processing.extend(
                p for p in output_paths
                if p.is_relative_to(self['working_dir'])
            )

        if further_processing:
            produced.extend(self.process(further_processing))
        return produced


class Matcher(t.Generic[T], abc.ABC):
    """
    Abstract base class for Path Matchers. Matchers combine with |, & and ~.
    """
    @abc.abstractmethod
    def __call__(self, context: Context, path: Path) -> T:
        ...

    def __or__(self, other: Matcher[T2]):
        return _OrMatcher(self, other)

    def __and__(self, other: Matcher[T2]):
        return _AndMatcher(self, other)

    def __invert__(self):
        return _NotMatcher(self)


class _OrMatcher(Matcher[T | T2]):
    def __init__(self, left: Matcher[T], right: Matcher[T2]):
        self.left = left
        self.right = right

    def __call__(self, context: Context, path: Path):
        return self.left(context, path) or self.right(context, path)


class _AndMatcher(Matcher[T | T2]):
    def __init__(self, left: Matcher[T], right: Matcher[T2]):
        self.left = left
        self.right = right

    def __call__(self, context: Context, path: Path):
        return self.left(context, path) and self.right(context, path)


class _NotMatcher(Matcher[Path | None]):
    def __init__(self, inner: Matcher):
        self.inner = inner

    def __call__(self, context: Context, path: Path):
        return None if self.inner(context, path) else path


class PathCalc(t.Generic[T], abc.ABC):
    """
    Abstract base class for path calculators which use `Matcher` match data to
    determine output paths from input paths.
    """
    @abc.abstractmethod
    def __call__(self, context: Context, path: Path, match: T) -> Path:
        ...


class Rule(t.Generic[T]):
    """
    A single processing rule: a matcher, output path calculators, and an
    optional Step to run.
    """
    def __init__(self,
                 matcher: Matcher[T],
                 path_calc: t.Sequence[PathCalc[T] | Path | None] | PathCalc[T] | Path | None,
                 step: Step | None = None):
        self.matcher = matcher
        self.step = step
        if not isinstance(path_calc, t.Sequence):
            path_calc = [path_calc]
        self.path_calcs = [self._path_to_pathcalc(p) if isinstance(p, Path) else p for p in path_calc]

    def _path_to_pathcalc(self, path: Path):
        # pylint: disable=unused-argument
        def wrapper(context: Context, input_path: Path, match: t.Any):
            return path
        return wrapper


class Step(abc.ABC):
    """
    Abstract base class for Steps, the individual tool invocations a pipeline
    is made of.
    """
    context: Context
    _step_registry: list[t.Type[Step]] = []

    def __init_subclass__(cls, **kw):
        super().__init_subclass__(**kw)
        cls._step_registry.append(cls)

    @classmethod
    def get_all_steps(cls):
        """
        Return a list of all currently known Steps.
        """
        return list(cls._step_registry)

    @classmethod
    def get_available_steps(cls):
        """
        Return a list of all currently known Steps whose requirements are met.
        """
        return [s for s in cls._step_registry if s.is_available()]

    @classmethod
    def is_available(cls) -> bool:
        """
        Return whether this Step's requirements are installed.
        """
        return all(d.satisfied for d in cls.get_dependencies())

    @classmethod
    def get_dependencies(cls) -> Set[Dependency]:
        """
        Return the requirements for this Step.
        """
        return set()

    def bind(self, context: Context):
        """
        Bind this Step to a Context.
        """
        self.context = context

    @abc.abstractmethod
    def __call__(
        self,
        path: Path,
        output_paths: list[Path]
    ) -> None | tuple[Sequence[Path | CustodyEntry], list[Path]]:
        ...


class StepUnavailableException(Exception):
    """
    Raised when a Step to be used is unavailable due to missing dependencies.
    """
    def __init__(self, step: Step, *args: t.Any):
        self.step = step
        super().__init__(f'{step.__class__.__name__} is missing dependencies', *args)
