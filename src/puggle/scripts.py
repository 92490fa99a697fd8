"""
Steps for linting, bundling and minifying client-side JavaScript.
"""
from __future__ import annotations

import typing as t
from pathlib import Path

import rich.markup

from .core import ContextDir
from .dependencies import NodeExecDependency, PipDependency
from .pretty_utils import print_with_style
from .simple import BaseCommandStep, BaseStandardStep

if t.TYPE_CHECKING:
    from _typeshed import StrOrBytesPath


class LintError(Exception):
    """
    Raised when the linter reports errors for a file.
    """
    def __init__(self, path: Path, report: str):
        self.path = path
        self.report = report
        super().__init__(f'Lint errors in {path}')


class ESLintStep(BaseCommandStep):
    """
    Lint a JavaScript file with ESLint. The report is always printed; errors
    abort the build unless @fail_after_error is False. When left as None,
    errors only abort builds that are not live, so a typo does not kill a
    running development server.
    """
    eslint = NodeExecDependency('eslint')

    @classmethod
    def get_dependencies(cls):
        return {cls.eslint}

    def __init__(self,
                 fail_after_error: bool | None = None,
                 options: t.Iterable[str] = ('--format', 'stylish')):
        self.fail_after_error = fail_after_error
        self.options = list(options)

    def get_command(self, input_path: Path, output_path: Path | None = None) -> list[StrOrBytesPath]:
        return [self.eslint.locate() or 'eslint', *self.options, input_path]

    @property
    def should_fail(self):
        if self.fail_after_error is not None:
            return self.fail_after_error
        return not self.context.live

    def __call__(self, path: Path, output_paths: list[Path]):
        result = self.run_command(self.get_command(path), check=False)
        report = result.stdout.strip()
        if report:
            print_with_style(rich.markup.escape(report), style='red' if result.returncode else None)
        if result.returncode and self.should_fail:
            raise LintError(path, report)


class ResourcePackerStep(BaseStandardStep):
    """
    Concatenate the files listed in a bundle file (one path per line,
    relative to @source_dir; blank lines and `#` comments ignored).
    """
    separator = '\n;\n'

    def __init__(self, source_dir: ContextDir = 'input_dir', separator: str | None = None):
        self.source_dir: ContextDir = source_dir
        if separator is not None:
            self.separator = separator

    def read_bundle(self, path: Path):
        parent_dir = self.context[self.source_dir]
        with path.open(encoding=self.encoding) as file:
            return [
                parent_dir / cleaned
                for line in file
                if (cleaned := line.strip()) and not cleaned.startswith('#')
            ]

    def __call__(self, path: Path, output_paths: list[Path]):
        input_paths = self.read_bundle(path)
        data = self.separator.join(f.read_text(self.encoding).strip() for f in input_paths)
        self.write_text(output_paths, data + '\n')
        return [path, *input_paths], output_paths


class JSMinifierStep(BaseStandardStep):
    """
    Minify JavaScript with rjsmin, keeping `/*! ... */` comments, which
    conventionally carry licenses.
    """
    @classmethod
    def get_dependencies(cls):
        return {
            PipDependency('rjsmin'),
        }

    def __init__(self, keep_bang_comments: bool = True):
        self.keep_bang_comments = keep_bang_comments

    def __call__(self, path: Path, output_paths: list[Path]):
        import rjsmin
        data = rjsmin.jsmin(path.read_text(self.encoding), keep_bang_comments=self.keep_bang_comments)
        self.write_text(output_paths, data)
