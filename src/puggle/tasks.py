"""
Named build tasks, their registry, and the runner that executes them with
dependency ordering and parallel fan-out.
"""
from __future__ import annotations

import concurrent.futures
import threading
import time
import typing as t

from .core import Context, Rule
from .pretty_utils import format_duration, print_with_style, report_size

if t.TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from .build import Build


Stage = t.Union[str, 'Sequence[str]']


class UnknownTaskError(KeyError):
    """
    Raised when a task name is not registered.
    """
    def __init__(self, name: str, referrer: str | None = None):
        self.name = name
        self.referrer = referrer
        msg = f'Unknown task {name!r}'
        if referrer:
            msg += f' (referenced by {referrer!r})'
        super().__init__(msg)

    def __str__(self):
        return self.args[0]


class TaskCycleError(ValueError):
    """
    Raised when tasks depend on each other in a loop.
    """
    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__('Task cycle: ' + ' -> '.join(cycle))


class Task:
    """
    A named unit of build work. @deps are run, in parallel, before the task
    itself. Tasks marked @live keep a process running (serving, watching),
    and make the whole build tolerate errors a developer is about to fix.
    """
    produces_files = False
    live = False

    def __init__(self, name: str, deps: Sequence[str] = (), description: str = ''):
        self.name = name
        self.deps = list(deps)
        self.description = description

    def __repr__(self):
        return f'{self.__class__.__name__}({self.name!r})'

    def references(self) -> list[str]:
        """
        Names of every task this one runs.
        """
        return list(self.deps)

    def run(self, runner: TaskRunner):
        """
        Do the work of this task; dependencies have already completed.
        """


class PipelineTask(Task):
    """
    A task running a list of Rules over the input directory through its own
    Context, then reporting the size of what it wrote to the output directory.
    """
    produces_files = True

    def __init__(self,
                 name: str,
                 rules: list[Rule],
                 deps: Sequence[str] = (),
                 description: str = '',
                 show_files: bool = False):
        super().__init__(name, deps, description)
        self.rules = rules
        self.show_files = show_files

    def run(self, runner: TaskRunner):
        build = runner.build
        context = Context(build.settings, self.rules, build.custodian, build.live)
        outputs = context.process()
        output_dir = build['output_dir']
        report_size(self.name, sorted({p for p in outputs if p.is_relative_to(output_dir)}), self.show_files)
        return outputs


class FunctionTask(Task):
    """
    A task calling `func(build)`.
    """
    def __init__(self,
                 name: str,
                 func: t.Callable[[Build], t.Any],
                 deps: Sequence[str] = (),
                 description: str = '',
                 produces_files: bool = False,
                 live: bool = False):
        super().__init__(name, deps, description or (func.__doc__ or '').strip().split('\n')[0])
        self.func = func
        self.produces_files = produces_files
        self.live = live

    def run(self, runner: TaskRunner):
        return self.func(runner.build)


class SequenceTask(Task):
    """
    A task running stages one after another. A stage is either one task name
    or a list of names run in parallel.
    """
    def __init__(self,
                 name: str,
                 stages: Sequence[Stage],
                 deps: Sequence[str] = (),
                 description: str = ''):
        super().__init__(name, deps, description)
        self.stages = [[s] if isinstance(s, str) else list(s) for s in stages]

    def references(self):
        return [*self.deps, *(n for stage in self.stages for n in stage)]

    def run(self, runner: TaskRunner):
        for stage in self.stages:
            runner.run_group(stage)


class TaskRegistry:
    """
    The set of tasks known to a build, by name.
    """
    def __init__(self):
        self.tasks: dict[str, Task] = {}

    def __contains__(self, name: str):
        return name in self.tasks

    def __iter__(self):
        return iter(self.tasks.values())

    def __len__(self):
        return len(self.tasks)

    def __getitem__(self, name: str) -> Task:
        try:
            return self.tasks[name]
        except KeyError:
            raise UnknownTaskError(name) from None

    def add(self, task: Task):
        if task.name in self.tasks:
            raise ValueError(f'Task {task.name!r} is already registered')
        self.tasks[task.name] = task
        return task

    def task(self,
             name: str | None = None,
             deps: Sequence[str] = (),
             description: str = '',
             produces_files: bool = False,
             live: bool = False):
        """
        Decorator registering a function as a task. The task name defaults to
        the function name with underscores turned into dashes.
        """
        def register(func: t.Callable[[Build], t.Any]):
            self.add(FunctionTask(
                name or func.__name__.replace('_', '-'),
                func,
                deps,
                description,
                produces_files,
                live,
            ))
            return func
        return register

    def pipeline(self,
                 name: str,
                 rules: list[Rule],
                 deps: Sequence[str] = (),
                 description: str = '',
                 show_files: bool = False):
        return t.cast(PipelineTask, self.add(PipelineTask(name, rules, deps, description, show_files)))

    def sequence(self,
                 name: str,
                 stages: Sequence[Stage],
                 deps: Sequence[str] = (),
                 description: str = ''):
        return t.cast(SequenceTask, self.add(SequenceTask(name, stages, deps, description)))

    def validate(self):
        """
        Check that every referenced task exists and that no task depends on
        itself, directly or not.
        """
        for task in self.tasks.values():
            for ref in task.references():
                if ref not in self.tasks:
                    raise UnknownTaskError(ref, task.name)

        done: set[str] = set()
        path: list[str] = []

        def visit(name: str):
            if name in path:
                raise TaskCycleError(path[path.index(name):] + [name])
            if name in done:
                return
            path.append(name)
            for ref in self.tasks[name].references():
                visit(ref)
            path.pop()
            done.add(name)

        for name in self.tasks:
            visit(name)

    def closure(self, names: Iterable[str]) -> set[str]:
        """
        @names and every task they run, transitively.
        """
        found: set[str] = set()
        pending = list(names)
        while pending:
            name = pending.pop()
            if name in found:
                continue
            found.add(name)
            pending.extend(self[name].references())
        return found


class TaskRunner:
    """
    Executes tasks for a Build. Each task runs at most once per runner, even
    when several parallel branches ask for it: the first caller runs it and
    the others wait for its result.
    """
    def __init__(self, build: Build):
        self.build = build
        self.registry = build.registry
        self._lock = threading.Lock()
        self._futures: dict[str, concurrent.futures.Future] = {}

    @property
    def completed(self):
        with self._lock:
            return [n for n, f in self._futures.items() if f.done() and not f.exception()]

    def run(self, names: Sequence[str]):
        self.registry.validate()
        for name in names:
            self.registry[name]
        self.run_group(names)

    def run_group(self, names: Sequence[str]):
        """
        Run @names in parallel and wait for all of them. If any failed, the
        first failure, in the order given, is raised once the whole group is
        done.
        """
        names = list(names)
        if len(names) <= 1:
            for name in names:
                self.run_task(name)
            return

        with concurrent.futures.ThreadPoolExecutor(max_workers=len(names)) as pool:
            futures = [pool.submit(self.run_task, name) for name in names]
            concurrent.futures.wait(futures)
        for future in futures:
            if error := future.exception():
                raise error

    def run_task(self, name: str):
        with self._lock:
            future = self._futures.get(name)
            owner = future is None
            if owner:
                future = self._futures[name] = concurrent.futures.Future()
        if not owner:
            return future.result()

        try:
            task = self.registry[name]
            self.run_group(task.deps)
            print_with_style(f"Starting '[cyan]{name}[/cyan]'...")
            start = time.perf_counter()
            result = task.run(self)
            print_with_style(
                f"Finished '[cyan]{name}[/cyan]' after [magenta]{format_duration(time.perf_counter() - start)}[/magenta]"
            )
        except BaseException as e:
            future.set_exception(e)
            raise
        future.set_result(result)
        return result

