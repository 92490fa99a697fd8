"""
Simple Steps and base classes for Steps that write files or invoke external
commandline tools.
"""
from __future__ import annotations

import abc
import contextlib
import shutil
import subprocess
import typing as t
from pathlib import Path

from .core import Step

if t.TYPE_CHECKING:
    from _typeshed import StrOrBytesPath


def write_if_changed(path: Path, data: str | bytes, encoding: str = 'utf-8', newline: str = '\n'):
    """
    Write @data to @path unless the file already holds exactly that content,
    so untouched outputs keep their modification times. Returns whether the
    file was written.
    """
    raw = data.replace('\n', newline).encode(encoding) if isinstance(data, str) else data
    if path.is_file() and path.read_bytes() == raw:
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(raw)
    return True


class DirectCopyStep(Step):
    """
    A simple Step which only copies a file to its output paths.
    """
    def __call__(self, path: Path, output_paths: list[Path]):
        for target_path in output_paths:
            target_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy(path, target_path)


class BaseStandardStep(Step):
    """
    A base class providing helper behaviors for typical steps creating one file
    and copying to others.
    """
    encoding = 'utf-8'
    newline = '\n'

    def ensure_output_dirs(self, output_paths: list[Path]):
        for o_path in output_paths:
            o_path.parent.mkdir(parents=True, exist_ok=True)

    def duplicate_output_paths(self, output_paths: list[Path]):
        for o_path in output_paths[1:]:
            shutil.copy(output_paths[0], o_path)

    @contextlib.contextmanager
    def ensure_outputs(self, output_paths: list[Path]):
        self.ensure_output_dirs(output_paths)
        yield
        self.duplicate_output_paths(output_paths)

    def write_text(self, output_paths: list[Path], data: str):
        """
        Write @data to the first output path and copy it to the rest.
        """
        with self.ensure_outputs(output_paths):
            output_paths[0].write_text(data, self.encoding, newline=self.newline)


class BaseCommandStep(Step):
    """
    A base class for steps that run an external command.
    """
    @abc.abstractmethod
    def get_command(self, input_path: Path, output_path: Path | None) -> list[StrOrBytesPath]:
        """
        Return a commandline ready for subprocess.
        """

    def run_command(self, command: list[StrOrBytesPath], check: bool = True):
        """
        Run @command, capturing combined output as text.
        """
        return subprocess.run(
            command,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            check=check,
        )
