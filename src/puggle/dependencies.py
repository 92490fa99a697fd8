"""
Requirement tracking for Steps, so missing tools are reported before a build
starts instead of halfway through it.
"""
from __future__ import annotations

import abc
import importlib.util
import shutil
from pathlib import Path


class Dependency(abc.ABC):
    """
    A base class for trackable, evaluable, composable dependencies.
    """

    @property
    @abc.abstractmethod
    def satisfied(self) -> bool:
        """
        A bool indicating whether this dependency is met.
        """

    @property
    def needed(self) -> bool:
        """
        A bool indicating whether this dependency is needed on the current platform.
        """
        return True

    @property
    @abc.abstractmethod
    def install_hint(self) -> str:
        """
        A string giving help on how to install this dependency.
        """

    def __repr__(self):
        return f'{self.__class__.__name__}({self}, needed={self.needed}, satisfied={self.satisfied})'

    def __or__(self, other: Dependency):
        return _OrDependency(self, other)

    def __and__(self, other: Dependency):
        return _AndDependency(self, other)


class _CompoundDependency(Dependency):
    symbol = '?'

    def __init__(self, left: Dependency, right: Dependency):
        self.left = left
        self.right = right

    def __repr__(self):
        return f'({self.left!r} {self.symbol} {self.right!r})'

    def __str__(self):
        return f'({self.left} {self.symbol} {self.right})'

    @property
    def needed(self):
        return self.left.needed or self.right.needed


class _OrDependency(_CompoundDependency):
    symbol = '|'

    @property
    def satisfied(self):
        return self.left.satisfied or self.right.satisfied

    @property
    def install_hint(self):
        return (
            (self.left.needed and self.left.install_hint)
            or (self.right.needed and self.right.install_hint)
            or ''
        )


class _AndDependency(_CompoundDependency):
    symbol = '&'

    @property
    def satisfied(self):
        return self.left.satisfied and self.right.satisfied

    @property
    def install_hint(self):
        return '; '.join(d.install_hint for d in [self.left, self.right] if d.needed)


class PipDependency(Dependency):
    """
    A Dependency on a pip-installable package. @check_name is the importable
    module name when it differs from the distribution name.
    """
    def __init__(self,
                 name: str,
                 source: str | None = None,
                 check_name: str | None = None):
        self.name = name
        self.source = source or name
        self.check_name = check_name or name

    def __str__(self):
        return self.name

    @property
    def satisfied(self):
        return importlib.util.find_spec(self.check_name) is not None

    @property
    def install_hint(self):
        return f'pip install {self.source}'


class WebExecDependency(Dependency):
    """
    A Dependency on a general internet-sourced executable.
    """
    def __init__(self,
                 name: str,
                 source: str | None = None,
                 check_name: str | None = None):
        self.name = name
        self.source = source or name
        self.check_name = check_name or name

    def __str__(self):
        return self.name

    def locate(self) -> str | None:
        """
        Return the full path of the executable, if it can be found.
        """
        return shutil.which(self.check_name)

    @property
    def satisfied(self):
        return bool(self.locate())

    @property
    def install_hint(self):
        return self.source


class NodeExecDependency(WebExecDependency):
    """
    A Dependency on an executable shipped by an npm package, which may be
    installed globally or into the project's `node_modules`.
    """
    bin_dir = Path('node_modules') / '.bin'

    def __init__(self, name: str, package: str | None = None):
        self.package = package or name
        super().__init__(name, f'npm install --save-dev {self.package}')

    def locate(self):
        return shutil.which(self.check_name) or shutil.which(self.check_name, path=str(self.bin_dir.resolve()))
